from __future__ import annotations

from ..enums import (
    ExchangeStatus,
    RefundStatus,
    ReturnResolution,
    ReturnStatus,
    StoreCreditStatus,
)
from ..extensions import db
from ..time_utils import to_utc_z
from .columns import enum_column


class ReturnPolicy(db.Model):
    """
    Per-store return rules.

    A store without a policy accepts every resolution with no time window and
    no restocking fee.
    """
    __tablename__ = "return_policies"
    __table_args__ = (
        db.UniqueConstraint("store_id", name="uq_return_policies_store"),
        db.CheckConstraint("days_allowed >= 0", name="ck_return_policies_days_nonneg"),
        db.CheckConstraint(
            "restocking_fee_bps >= 0 AND restocking_fee_bps <= 10000",
            name="ck_return_policies_fee_range",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False)

    days_allowed = db.Column(db.Integer, nullable=False, default=7)
    allow_refund = db.Column(db.Boolean, nullable=False, default=True)
    allow_exchange = db.Column(db.Boolean, nullable=False, default=True)
    allow_store_credit = db.Column(db.Boolean, nullable=False, default=True)
    # Basis points of the line amount withheld from cash refunds (250 = 2.5%)
    restocking_fee_bps = db.Column(db.Integer, nullable=False, default=0)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def allows(self, resolution: ReturnResolution) -> bool:
        return {
            ReturnResolution.REFUND: self.allow_refund,
            ReturnResolution.EXCHANGE: self.allow_exchange,
            ReturnResolution.STORE_CREDIT: self.allow_store_credit,
        }[resolution]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "store_id": self.store_id,
            "days_allowed": self.days_allowed,
            "allow_refund": self.allow_refund,
            "allow_exchange": self.allow_exchange,
            "allow_store_credit": self.allow_store_credit,
            "restocking_fee_bps": self.restocking_fee_bps,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Return(db.Model):
    """
    Customer return against one sale item.

    LIFECYCLE:
    1. pending: created by staff, dependent refund/exchange/credit pre-created
       in their own pending state. Nothing moves yet.
    2. approved: manager accepted; settlement runs in the same transaction.
    3. refunded / exchanged / credited: settled (terminal).
    4. rejected: manager declined (terminal). No stock or money effect.

    is_defective decides whether the returned units go back on the shelf.
    """
    __tablename__ = "returns"
    __table_args__ = (
        db.UniqueConstraint("return_code", name="uq_returns_return_code"),
        db.Index("ix_returns_store_status_created", "store_id", "status", "created_at"),
        db.CheckConstraint("quantity > 0", name="ck_returns_quantity_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    sale_item_id = db.Column(db.Integer, db.ForeignKey("sale_items.id"), nullable=False, index=True)

    # Human-readable reference (e.g., "RET-20260211-AB12CD34")
    return_code = db.Column(db.String(64), nullable=False)

    reason = db.Column(db.Text, nullable=False)
    resolution = enum_column(ReturnResolution)
    is_defective = db.Column(db.Boolean, nullable=False, default=False)
    status = enum_column(ReturnStatus, default=ReturnStatus.PENDING, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    staff_id = db.Column(db.Integer, nullable=True)
    manager_id = db.Column(db.Integer, nullable=True)
    inspection_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    reviewed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    settled_at = db.Column(db.DateTime(timezone=True), nullable=True)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    sale = db.relationship("Sale", backref=db.backref("returns", lazy=True))
    sale_item = db.relationship("SaleItem", backref=db.backref("returns", lazy=True))
    refunds = db.relationship("Refund", backref="return_doc", lazy=True, order_by="Refund.id")
    exchanges = db.relationship("Exchange", backref="return_doc", lazy=True, order_by="Exchange.id")
    store_credit = db.relationship("StoreCredit", backref="return_doc", uselist=False, lazy=True)
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_dependents: bool = False) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "sale_id": self.sale_id,
            "sale_item_id": self.sale_item_id,
            "return_code": self.return_code,
            "reason": self.reason,
            "resolution": str(self.resolution),
            "is_defective": self.is_defective,
            "status": str(self.status),
            "quantity": self.quantity,
            "staff_id": self.staff_id,
            "manager_id": self.manager_id,
            "inspection_notes": self.inspection_notes,
            "created_at": to_utc_z(self.created_at),
            "reviewed_at": to_utc_z(self.reviewed_at),
            "settled_at": to_utc_z(self.settled_at),
            "version_id": self.version_id,
        }
        if include_dependents:
            data["refunds"] = [r.to_dict() for r in self.refunds]
            data["exchanges"] = [e.to_dict() for e in self.exchanges]
            data["store_credit"] = self.store_credit.to_dict() if self.store_credit else None
        return data


class Refund(db.Model):
    """
    Money returned to the customer.

    Either the settlement of a refund-resolution return, or the negative price
    difference of an exchange leg.
    """
    __tablename__ = "refunds"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    amount_cents = db.Column(db.Integer, nullable=False)
    restocking_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    method = db.Column(db.String(32), nullable=False)
    status = enum_column(RefundStatus, default=RefundStatus.PENDING, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "sale_id": self.sale_id,
            "store_id": self.store_id,
            "amount_cents": self.amount_cents,
            "restocking_fee_cents": self.restocking_fee_cents,
            "method": self.method,
            "status": str(self.status),
            "created_at": to_utc_z(self.created_at),
            "processed_at": to_utc_z(self.processed_at),
        }


class Exchange(db.Model):
    """
    One swap leg of an exchange return: one unit of new_variant goes out.

    price_difference_cents = new variant price - original unit price, fixed
    when the return is opened.
    """
    __tablename__ = "exchanges"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    new_variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)

    price_difference_cents = db.Column(db.Integer, nullable=False, default=0)
    status = enum_column(ExchangeStatus, default=ExchangeStatus.PENDING, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    new_variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "store_id": self.store_id,
            "new_variant_id": self.new_variant_id,
            "price_difference_cents": self.price_difference_cents,
            "status": str(self.status),
            "created_at": to_utc_z(self.created_at),
            "completed_at": to_utc_z(self.completed_at),
        }


class StoreCredit(db.Model):
    """
    Credit issued instead of cash.

    pending until the return is approved, then active. Redemptions move
    used_amount_cents up to amount_cents (partially_used -> redeemed).
    """
    __tablename__ = "store_credits"
    __table_args__ = (
        db.CheckConstraint(
            "used_amount_cents >= 0 AND used_amount_cents <= amount_cents",
            name="ck_store_credits_used_range",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    return_id = db.Column(db.Integer, db.ForeignKey("returns.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    customer_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)

    amount_cents = db.Column(db.Integer, nullable=False, default=0)
    used_amount_cents = db.Column(db.Integer, nullable=False, default=0)
    status = enum_column(StoreCreditStatus, default=StoreCreditStatus.PENDING, index=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )
    version_id = db.Column(db.Integer, nullable=False, default=1)
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def balance_cents(self) -> int:
        return self.amount_cents - self.used_amount_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "return_id": self.return_id,
            "store_id": self.store_id,
            "customer": {
                "name": self.customer_name,
                "email": self.customer_email,
                "phone": self.customer_phone,
            },
            "amount_cents": self.amount_cents,
            "used_amount_cents": self.used_amount_cents,
            "balance_cents": self.balance_cents,
            "status": str(self.status),
            "expires_at": to_utc_z(self.expires_at),
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
