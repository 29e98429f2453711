from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Business(db.Model):
    """
    Multi-tenant root: every tenant is a Business.

    Stores, variants, sales and returns all belong to exactly one business,
    directly or through their store.
    """
    __tablename__ = "businesses"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    contact_email = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Business id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact_email": self.contact_email,
            "created_at": to_utc_z(self.created_at),
        }


class Store(db.Model):
    """
    Store within a business.

    contact_email receives low-stock alerts.
    """
    __tablename__ = "stores"
    __table_args__ = (
        db.UniqueConstraint("business_id", "code", name="uq_stores_business_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    code = db.Column(db.String(32), nullable=True)
    contact_email = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    business = db.relationship("Business", backref=db.backref("stores", lazy=True))

    def __repr__(self) -> str:
        return f"<Store id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "name": self.name,
            "code": self.code,
            "contact_email": self.contact_email,
            "created_at": to_utc_z(self.created_at),
        }
