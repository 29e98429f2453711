from __future__ import annotations

from ..enums import PaymentMethod, PaymentStatus, SaleItemStatus
from ..extensions import db
from ..time_utils import to_utc_z
from .columns import enum_column


class Sale(db.Model):
    """
    Sale header.

    Totals are fixed at creation except net_amount_cents, which is the running
    "money actually kept" figure: approved refunds and store credits lower it,
    exchange price differences move it either way. Only the return service
    writes it after creation.

    idempotency_key is distinct from the inventory ledger keys; each line is
    deducted under the reserved ledger key "sale:<id>:<line_no>".
    """
    __tablename__ = "sales"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_sales_idempotency_key"),
        db.UniqueConstraint("sale_code", name="uq_sales_sale_code"),
        db.Index("ix_sales_store_created", "store_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)

    # Human-readable reference (e.g., "SALE-20260211-AB12CD34")
    sale_code = db.Column(db.String(64), nullable=False)

    idempotency_key = db.Column(db.String(128), nullable=False)
    request_fingerprint = db.Column(db.String(64), nullable=False)

    # Money (cents)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    total_discount_cents = db.Column(db.Integer, nullable=False, default=0)
    net_amount_cents = db.Column(db.Integer, nullable=False)

    payment_method = enum_column(PaymentMethod, default=PaymentMethod.CASH)
    payment_status = enum_column(PaymentStatus, default=PaymentStatus.PAID, index=True)

    # Customer snapshot (not a foreign identity)
    customer_name = db.Column(db.String(255), nullable=True)
    customer_email = db.Column(db.String(255), nullable=True)
    customer_phone = db.Column(db.String(64), nullable=True)

    receipt_url = db.Column(db.String(512), nullable=True)

    created_by = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    version_id = db.Column(db.Integer, nullable=False, default=1)

    store = db.relationship("Store", backref=db.backref("sales", lazy=True))
    items = db.relationship(
        "SaleItem",
        backref="sale",
        lazy=True,
        order_by="SaleItem.line_no",
    )
    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self, include_items: bool = False) -> dict:
        data = {
            "id": self.id,
            "store_id": self.store_id,
            "business_id": self.business_id,
            "sale_code": self.sale_code,
            "idempotency_key": self.idempotency_key,
            "total_amount_cents": self.total_amount_cents,
            "total_discount_cents": self.total_discount_cents,
            "net_amount_cents": self.net_amount_cents,
            "payment_method": str(self.payment_method),
            "payment_status": str(self.payment_status),
            "customer": {
                "name": self.customer_name,
                "email": self.customer_email,
                "phone": self.customer_phone,
            },
            "receipt_url": self.receipt_url,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "version_id": self.version_id,
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        return data


class SaleItem(db.Model):
    """
    Line item on a sale.

    returned_quantity only grows, and only when a return against this line is
    approved; status follows it (sold -> partially_returned -> returned).
    """
    __tablename__ = "sale_items"
    __table_args__ = (
        db.UniqueConstraint("sale_id", "line_no", name="uq_sale_items_sale_line"),
        db.CheckConstraint("quantity > 0", name="ck_sale_items_quantity_pos"),
        db.CheckConstraint(
            "returned_quantity >= 0 AND returned_quantity <= quantity",
            name="ck_sale_items_returned_range",
        ),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey("sales.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False)
    line_no = db.Column(db.Integer, nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    line_total_cents = db.Column(db.Integer, nullable=False)

    returned_quantity = db.Column(db.Integer, nullable=False, default=0)
    status = enum_column(SaleItemStatus, default=SaleItemStatus.SOLD)

    # Ledger entry that deducted this line
    inventory_log_id = db.Column(db.Integer, db.ForeignKey("inventory_logs.id"), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    variant = db.relationship("ProductVariant")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "variant_id": self.variant_id,
            "line_no": self.line_no,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "discount_cents": self.discount_cents,
            "line_total_cents": self.line_total_cents,
            "returned_quantity": self.returned_quantity,
            "status": str(self.status),
            "inventory_log_id": self.inventory_log_id,
            "created_at": to_utc_z(self.created_at),
        }
