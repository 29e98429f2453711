# Overview: Stock adjustment engine and ledger store operations.

# backend/shopledger/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..enums import AdjustmentType
from ..extensions import db
from ..models import InventoryLog, ProductVariant, StockAlert, Store, StoreInventory
from ..validation import (
    ConflictError,
    NotFoundError,
    MAX_LEDGER_KEY_LENGTH,
    ValidationError,
    coerce_int,
    coerce_optional_int,
    require_client_idempotency_key,
    require_idempotency_key,
)
from . import alert_service
from .concurrency import WriteRaceError, lock_for_update, run_with_retry, transaction_scope
"""
Ledger Invariants (authoritative)

Inventory model:
- One StoreInventory row per (store, variant) holds the aggregate quantity.
- Every change to quantity goes through adjust(); nothing else writes it.
- quantity never goes negative. adjust() applies the delta with a conditional
  UPDATE (quantity + change >= 0) after taking a row lock, so two concurrent
  deductions serialize even where SELECT ... FOR UPDATE is ignored (SQLite).

Idempotency:
- Every applied change appends exactly one InventoryLog row keyed by a unique
  idempotency key, inside the same DB transaction as the quantity update.
- A repeated key returns the recorded outcome (quantity_after, alert_created)
  and changes nothing. Same key with a different inventory/change/type is a
  conflict, never a silent replay.
- Keys written by the pipelines live in reserved namespaces that callers of
  the direct endpoints cannot use: "sale:<sale_id>:<line_no>",
  "restock:<key>:<variant_id>", "return:<return_id>:restock" and
  "exchange:<leg_id>". A client key can never replay a pipeline write.

Transactions:
- adjust() never commits. Callers group sibling adjustments of one logical
  event (all lines of a sale, all legs of a return review) in one
  transaction_scope(), so any failure leaves no partial stock change.
- Notifications for alerts raised here are sent by the caller after commit.
"""


class InsufficientStockError(Exception):
    """Raised when an adjustment or pre-flight check would drive stock below zero."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


class IdempotencyConflictError(ConflictError):
    """Idempotency key already used for a different adjustment."""


# InventoryLog.reason width; longer reasons (e.g. a return's free text) are cut
MAX_LOG_REASON_LENGTH = 255

# Types a caller may post directly; the rest are written only by the pipelines
DIRECT_ADJUSTMENT_TYPES = (AdjustmentType.RESTOCK, AdjustmentType.DEDUCT)


@dataclass(frozen=True)
class AdjustmentResult:
    new_quantity: int
    alert_created: bool
    log_entry: InventoryLog
    replayed: bool = False
    alert: StockAlert | None = None

    def to_dict(self) -> dict:
        return {
            "new_quantity": self.new_quantity,
            "alert_created": self.alert_created,
            "replayed": self.replayed,
            "log": self.log_entry.to_dict(),
        }


def adjust(
    session,
    *,
    inventory_id: int,
    change: int,
    type: AdjustmentType | str,
    idempotency_key: str,
    reason: str | None = None,
    reference: str | None = None,
    actor_id: int | None = None,
) -> AdjustmentResult:
    """
    Apply one signed quantity change to an inventory record.

    validate -> replay check -> lock row -> conditional update -> alert
    evaluation -> append log entry. Runs inside the caller's transaction.

    Raises:
        ValidationError: malformed change/type/key
        IdempotencyConflictError: key reused for a different adjustment
        NotFoundError: inventory record missing
        InsufficientStockError: quantity + change < 0 (nothing applied)
        WriteRaceError: a concurrent call inserted the same key first
    """
    adjustment_type = AdjustmentType.parse(type, "type")
    change = coerce_int(change, "change")
    if change == 0:
        raise ValidationError("change must be non-zero")
    key = require_idempotency_key(idempotency_key, max_length=MAX_LEDGER_KEY_LENGTH)
    actor_id = coerce_optional_int(actor_id, "actor_id")
    if reason is not None:
        reason = reason[:MAX_LOG_REASON_LENGTH]

    existing = session.query(InventoryLog).filter_by(idempotency_key=key).first()
    if existing is not None:
        if (
            existing.inventory_id != inventory_id
            or existing.change != change
            or existing.type != adjustment_type
        ):
            raise IdempotencyConflictError(
                f"idempotency_key {key!r} was already used for a different adjustment"
            )
        return AdjustmentResult(
            new_quantity=existing.quantity_after,
            alert_created=existing.alert_created,
            log_entry=existing,
            replayed=True,
        )

    inventory = lock_for_update(session.query(StoreInventory).filter_by(id=inventory_id)).first()
    if inventory is None:
        raise NotFoundError(f"Inventory {inventory_id} not found")

    result = session.execute(
        update(StoreInventory)
        .where(
            StoreInventory.id == inventory_id,
            StoreInventory.quantity + change >= 0,
        )
        .values(quantity=StoreInventory.quantity + change)
        .execution_options(synchronize_session=False)
    )
    session.refresh(inventory)
    if result.rowcount != 1:
        raise InsufficientStockError(
            f"Insufficient stock for inventory {inventory_id}",
            details={
                "inventory_id": inventory_id,
                "variant_id": inventory.variant_id,
                "on_hand": inventory.quantity,
                "requested_change": change,
            },
        )
    new_quantity = inventory.quantity

    alert = alert_service.evaluate_stock_level(session, inventory, new_quantity)

    entry = InventoryLog(
        idempotency_key=key,
        inventory_id=inventory.id,
        store_id=inventory.store_id,
        variant_id=inventory.variant_id,
        change=change,
        type=adjustment_type,
        reason=reason,
        reference=reference,
        actor_id=actor_id,
        quantity_after=new_quantity,
        alert_created=alert is not None,
    )
    session.add(entry)
    try:
        session.flush()
    except IntegrityError as exc:
        raise WriteRaceError(f"idempotency_key {key!r} inserted concurrently") from exc

    return AdjustmentResult(
        new_quantity=new_quantity,
        alert_created=alert is not None,
        log_entry=entry,
        alert=alert,
    )


def find_inventory(session, store_id: int, variant_id: int, *, lock: bool = False) -> StoreInventory | None:
    query = session.query(StoreInventory).filter_by(store_id=store_id, variant_id=variant_id)
    if lock:
        query = lock_for_update(query)
    return query.first()


def ensure_inventory(session, store: Store, variant: ProductVariant) -> StoreInventory:
    """Get or create the (store, variant) inventory record with zero stock."""
    if variant.store_id != store.id:
        raise NotFoundError(f"Variant {variant.id} not found in store {store.id}")

    inventory = find_inventory(session, store.id, variant.id)
    if inventory is not None:
        return inventory

    inventory = StoreInventory(
        business_id=store.business_id,
        store_id=store.id,
        variant_id=variant.id,
        quantity=0,
        reserved=0,
        low_stock_threshold=0,
    )
    session.add(inventory)
    try:
        session.flush()
    except IntegrityError as exc:
        raise WriteRaceError(f"inventory for variant {variant.id} created concurrently") from exc
    return inventory


def apply_adjustment(
    *,
    inventory_id: int,
    change: int,
    type: AdjustmentType | str,
    idempotency_key: str,
    reason: str | None = None,
    reference: str | None = None,
    actor_id: int | None = None,
) -> tuple[AdjustmentResult, list[str]]:
    """
    Standalone adjustment in its own transaction, alert dispatched after commit.

    Only restock and deduct may be posted directly, and the key may not use a
    reserved ledger namespace. Returns (result, warnings).
    """
    key = require_client_idempotency_key(idempotency_key)
    adjustment_type = AdjustmentType.parse(type, "type")
    if adjustment_type not in DIRECT_ADJUSTMENT_TYPES:
        raise ValidationError(
            f"type must be one of: {', '.join(t.value for t in DIRECT_ADJUSTMENT_TYPES)}"
        )

    def _op():
        with transaction_scope() as session:
            return adjust(
                session,
                inventory_id=inventory_id,
                change=change,
                type=adjustment_type,
                idempotency_key=key,
                reason=reason,
                reference=reference,
                actor_id=actor_id,
            )

    result = run_with_retry(_op)
    warnings = alert_service.dispatch_stock_alerts([result.alert.id] if result.alert else [])
    return result, warnings


def _parse_restock_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    parsed = []
    seen: set[int] = set()
    for i, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{i}] must be an object")
        variant_id = coerce_int(raw.get("variant_id"), f"items[{i}].variant_id")
        quantity = coerce_int(raw.get("quantity"), f"items[{i}].quantity")
        if quantity <= 0:
            raise ValidationError(f"items[{i}].quantity must be > 0")
        threshold = coerce_optional_int(raw.get("low_stock_threshold"), f"items[{i}].low_stock_threshold")
        if threshold is not None and threshold < 0:
            raise ValidationError(f"items[{i}].low_stock_threshold must be >= 0")
        if variant_id in seen:
            raise ValidationError(f"variant {variant_id} appears more than once")
        seen.add(variant_id)
        parsed.append({
            "variant_id": variant_id,
            "quantity": quantity,
            "low_stock_threshold": threshold,
            "reason": raw.get("reason"),
        })
    return parsed


def restock_variants(
    *,
    store_id: int,
    items: list[dict],
    idempotency_key: str,
    reference: str | None = None,
    actor_id: int | None = None,
) -> tuple[list[AdjustmentResult], list[str]]:
    """
    Restock a batch of variants in one transaction.

    Missing inventory records are created. Each line is keyed
    "restock:<idempotency_key>:<variant_id>", so a retried batch replays line by line.
    """
    key = require_client_idempotency_key(idempotency_key)
    lines = _parse_restock_items(items)

    def _op():
        with transaction_scope() as session:
            store = session.get(Store, store_id)
            if store is None:
                raise NotFoundError(f"Store {store_id} not found")

            results = []
            for line in lines:
                variant = session.get(ProductVariant, line["variant_id"])
                if variant is None or variant.store_id != store.id:
                    raise NotFoundError(f"Variant {line['variant_id']} not found in store {store.id}")
                if not variant.is_active:
                    raise ValidationError(f"Variant {variant.id} is inactive")

                inventory = ensure_inventory(session, store, variant)
                if line["low_stock_threshold"] is not None:
                    inventory.low_stock_threshold = line["low_stock_threshold"]

                results.append(adjust(
                    session,
                    inventory_id=inventory.id,
                    change=line["quantity"],
                    type=AdjustmentType.RESTOCK,
                    idempotency_key=f"restock:{key}:{variant.id}",
                    reason=line["reason"] or "restock",
                    reference=reference,
                    actor_id=actor_id,
                ))
            return results

    results = run_with_retry(_op)
    warnings = alert_service.dispatch_stock_alerts([r.alert.id for r in results if r.alert])
    return results, warnings


def set_low_stock_threshold(inventory_id: int, threshold: int) -> tuple[StoreInventory, list[str]]:
    """Change the alert threshold and re-evaluate the current level against it."""
    threshold = coerce_int(threshold, "low_stock_threshold")
    if threshold < 0:
        raise ValidationError("low_stock_threshold must be >= 0")

    def _op():
        with transaction_scope() as session:
            inventory = lock_for_update(session.query(StoreInventory).filter_by(id=inventory_id)).first()
            if inventory is None:
                raise NotFoundError(f"Inventory {inventory_id} not found")
            inventory.low_stock_threshold = threshold
            alert = alert_service.evaluate_stock_level(session, inventory, inventory.quantity)
            return inventory, alert

    inventory, alert = run_with_retry(_op)
    warnings = alert_service.dispatch_stock_alerts([alert.id] if alert else [])
    return inventory, warnings


def get_inventory(inventory_id: int) -> StoreInventory:
    inventory = db.session.get(StoreInventory, inventory_id)
    if inventory is None:
        raise NotFoundError(f"Inventory {inventory_id} not found")
    return inventory


def list_store_inventory(store_id: int) -> list[StoreInventory]:
    return db.session.query(StoreInventory).filter_by(
        store_id=store_id,
    ).order_by(StoreInventory.id).all()


def list_low_stock(store_id: int) -> list[StoreInventory]:
    """Records at or below their threshold, out-of-stock first."""
    return db.session.query(StoreInventory).filter(
        StoreInventory.store_id == store_id,
        StoreInventory.quantity <= StoreInventory.low_stock_threshold,
    ).order_by(StoreInventory.quantity.asc(), StoreInventory.id).all()


def list_inventory_logs(*, inventory_id: int, limit: int = 200) -> list[InventoryLog]:
    get_inventory(inventory_id)

    q = db.session.query(InventoryLog).filter_by(
        inventory_id=inventory_id,
    ).order_by(
        InventoryLog.created_at.desc(),
        InventoryLog.id.desc(),
    )

    return q.limit(limit).all()
