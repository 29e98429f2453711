from __future__ import annotations

from ..enums import AdjustmentType, AlertStatus
from ..extensions import db
from ..time_utils import to_utc_z
from .columns import enum_column


class StoreInventory(db.Model):
    """
    Inventory record: one row per (store, variant).

    INVARIANTS:
    - quantity >= 0 and reserved >= 0 at all times (also enforced by CHECK).
    - quantity is mutated ONLY through inventory_service.adjust(), which uses a
      conditional UPDATE so concurrent deductions cannot drive it negative.
    - Rows are never deleted while the variant is active.

    available = quantity - reserved is what a sale may draw on.
    """
    __tablename__ = "store_inventory"
    __table_args__ = (
        db.UniqueConstraint("store_id", "variant_id", name="uq_store_inventory_store_variant"),
        db.CheckConstraint("quantity >= 0", name="ck_store_inventory_quantity_nonneg"),
        db.CheckConstraint("reserved >= 0", name="ck_store_inventory_reserved_nonneg"),
        db.CheckConstraint("low_stock_threshold >= 0", name="ck_store_inventory_threshold_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    business_id = db.Column(db.Integer, db.ForeignKey("businesses.id"), nullable=False, index=True)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    reserved = db.Column(db.Integer, nullable=False, default=0)
    low_stock_threshold = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    store = db.relationship("Store", backref=db.backref("inventory", lazy=True))
    variant = db.relationship("ProductVariant", backref=db.backref("inventory", lazy=True))

    @property
    def available(self) -> int:
        return self.quantity - self.reserved

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "business_id": self.business_id,
            "store_id": self.store_id,
            "variant_id": self.variant_id,
            "quantity": self.quantity,
            "reserved": self.reserved,
            "available": self.available,
            "low_stock_threshold": self.low_stock_threshold,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryLog(db.Model):
    """
    Append-only stock ledger entry.

    One row per applied adjustment, keyed by a caller-supplied idempotency key.
    quantity_after / alert_created snapshot the outcome so a replay returns the
    original result without touching the inventory row again.

    No updates or deletes.
    """
    __tablename__ = "inventory_logs"
    __table_args__ = (
        db.UniqueConstraint("idempotency_key", name="uq_inventory_logs_idempotency_key"),
        db.Index("ix_inventory_logs_inventory_created", "inventory_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    # Client keys are capped at 128; derived keys add a namespace and suffix
    idempotency_key = db.Column(db.String(200), nullable=False)

    inventory_id = db.Column(db.Integer, db.ForeignKey("store_inventory.id"), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)
    variant_id = db.Column(db.Integer, db.ForeignKey("product_variants.id"), nullable=False, index=True)

    change = db.Column(db.Integer, nullable=False)
    type = enum_column(AdjustmentType, index=True)
    reason = db.Column(db.String(255), nullable=True)
    reference = db.Column(db.String(128), nullable=True)
    actor_id = db.Column(db.Integer, nullable=True)

    quantity_after = db.Column(db.Integer, nullable=False)
    alert_created = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    inventory = db.relationship("StoreInventory", backref=db.backref("logs", lazy="dynamic"))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "idempotency_key": self.idempotency_key,
            "inventory_id": self.inventory_id,
            "store_id": self.store_id,
            "variant_id": self.variant_id,
            "change": self.change,
            "type": str(self.type),
            "reason": self.reason,
            "reference": self.reference,
            "actor_id": self.actor_id,
            "quantity_after": self.quantity_after,
            "alert_created": self.alert_created,
            "created_at": to_utc_z(self.created_at),
        }


class StockAlert(db.Model):
    """
    Low-stock alert raised when an adjustment leaves quantity <= threshold.

    LIFECYCLE: open -> acknowledged (staff saw it) -> resolved (stock went back
    above threshold). threshold and quantity_at_trigger are snapshots.
    """
    __tablename__ = "stock_alerts"
    __table_args__ = (
        db.Index("ix_stock_alerts_inventory_status", "inventory_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_id = db.Column(db.Integer, db.ForeignKey("store_inventory.id"), nullable=False)
    store_id = db.Column(db.Integer, db.ForeignKey("stores.id"), nullable=False, index=True)

    threshold = db.Column(db.Integer, nullable=False)
    quantity_at_trigger = db.Column(db.Integer, nullable=False)
    status = enum_column(AlertStatus, default=AlertStatus.OPEN, index=True)

    triggered_at = db.Column(db.DateTime(timezone=True), nullable=False)
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)
    acknowledged_by = db.Column(db.Integer, nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)

    inventory = db.relationship("StoreInventory", backref=db.backref("alerts", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "inventory_id": self.inventory_id,
            "store_id": self.store_id,
            "threshold": self.threshold,
            "quantity_at_trigger": self.quantity_at_trigger,
            "status": str(self.status),
            "triggered_at": to_utc_z(self.triggered_at),
            "acknowledged_at": to_utc_z(self.acknowledged_at),
            "acknowledged_by": self.acknowledged_by,
            "resolved_at": to_utc_z(self.resolved_at),
        }
