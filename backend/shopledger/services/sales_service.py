"""
Sale Transaction Pipeline

WHY: A sale is the main consumer of the stock ledger. Either the whole cart
is recorded and every line deducted, or nothing is.

ORDER (one transaction):
1. Idempotency: same key + same request -> stored result; same key with a
   different request -> conflict.
2. Pre-flight: store belongs to business, every variant has an inventory
   record, summed quantity per variant fits available stock. Nothing is
   mutated before this pass succeeds.
3. Sale header, sale items.
4. One ledger deduction per item, keyed "sale:<sale_id>:<line_no>". A fresh
   sale that finds its ledger key already written is a conflict.

After commit: low-stock alerts and receipt delivery. Their failures become
warnings on the result.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..enums import AdjustmentType, PaymentMethod, PaymentStatus, ReceiptChannel
from ..extensions import db
from ..models import ProductVariant, Sale, SaleItem, Store
from ..references import generate_reference
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_bool,
    coerce_int,
    coerce_optional_int,
    enforce_rules_price,
    require_idempotency_key,
)
from . import alert_service, inventory_service, receipt_service
from .concurrency import WriteRaceError, run_with_retry, transaction_scope
from .inventory_service import InsufficientStockError


class SaleError(Exception):
    """Sale-specific 400: the cart names a variant that can no longer be sold."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}


@dataclass(frozen=True)
class SaleLineInput:
    variant_id: int
    quantity: int
    unit_price_cents: int
    discount_cents: int = 0

    @property
    def gross_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    @property
    def line_total_cents(self) -> int:
        return self.gross_cents - self.discount_cents


@dataclass
class SaleResult:
    sale: Sale
    message: str
    replayed: bool = False
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "sale_id": self.sale.id,
            "sale_code": self.sale.sale_code,
            "message": self.message,
            "replayed": self.replayed,
            "net_amount_cents": self.sale.net_amount_cents,
            "warnings": list(self.warnings),
        }


# =============================================================================
# INPUT PARSING (before any transaction opens)
# =============================================================================

def _parse_items(items) -> list[SaleLineInput]:
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    lines = []
    for i, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{i}] must be an object")
        variant_id = coerce_int(raw.get("variant_id"), f"items[{i}].variant_id")
        quantity = coerce_int(raw.get("quantity"), f"items[{i}].quantity")
        if quantity <= 0:
            raise ValidationError(f"items[{i}].quantity must be > 0")
        unit_price = coerce_int(raw.get("unit_price_cents"), f"items[{i}].unit_price_cents")
        enforce_rules_price(unit_price, f"items[{i}].unit_price_cents")
        discount = coerce_optional_int(raw.get("discount_cents"), f"items[{i}].discount_cents") or 0
        if discount < 0:
            raise ValidationError(f"items[{i}].discount_cents must be >= 0")

        line = SaleLineInput(variant_id, quantity, unit_price, discount)
        if discount > line.gross_cents:
            raise ValidationError(f"items[{i}].discount_cents cannot exceed the line amount")
        lines.append(line)
    return lines


def _parse_customer(customer) -> dict:
    if customer is None:
        return {"name": None, "email": None, "phone": None}
    if not isinstance(customer, dict):
        raise ValidationError("customer must be an object")

    parsed = {}
    for k in ("name", "email", "phone"):
        value = customer.get(k)
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"customer.{k} must be a string")
        parsed[k] = value.strip() or None if value else None
    return parsed


def _parse_receipt(receipt) -> tuple[bool, ReceiptChannel]:
    if receipt is None:
        return False, ReceiptChannel.NONE
    if not isinstance(receipt, dict):
        raise ValidationError("receipt must be an object")
    needed = coerce_bool(receipt.get("needed", False), "receipt.needed")
    channel = ReceiptChannel.parse(receipt.get("channel") or "email", "receipt.channel")
    return needed, channel


def _fingerprint(store_id: int, business_id: int, lines: list[SaleLineInput], customer: dict,
                 payment_method: PaymentMethod) -> str:
    canonical = json.dumps(
        {
            "store_id": store_id,
            "business_id": business_id,
            "items": [
                [l.variant_id, l.quantity, l.unit_price_cents, l.discount_cents] for l in lines
            ],
            "customer": customer,
            "payment_method": payment_method.value,
        },
        sort_keys=True,
        separators=(",", ":"),
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# =============================================================================
# PIPELINE
# =============================================================================

def _preflight(session, store: Store, lines: list[SaleLineInput]) -> dict:
    """Resolve every line to its inventory record and check stock for the whole cart."""
    requested: dict[int, int] = {}
    for line in lines:
        requested[line.variant_id] = requested.get(line.variant_id, 0) + line.quantity

    inventories = {}
    insufficient = []
    for variant_id, qty in requested.items():
        variant = session.get(ProductVariant, variant_id)
        if variant is None or variant.store_id != store.id:
            raise NotFoundError(f"Variant {variant_id} not found in store {store.id}")
        if not variant.is_active:
            raise SaleError(
                f"Variant {variant_id} is inactive and cannot be sold",
                details={"variant_id": variant_id},
            )

        inventory = inventory_service.find_inventory(session, store.id, variant_id)
        if inventory is None:
            raise NotFoundError(f"No inventory record for variant {variant_id} in store {store.id}")

        if inventory.available < qty:
            insufficient.append({
                "variant_id": variant_id,
                "requested_quantity": qty,
                "available": inventory.available,
            })
        inventories[variant_id] = inventory

    if insufficient:
        raise InsufficientStockError(
            "Insufficient inventory to record sale",
            details={"items": insufficient},
        )
    return inventories


def create_sale(
    *,
    store_id: int,
    business_id: int,
    items: list[dict],
    idempotency_key: str,
    customer: dict | None = None,
    payment_method: str | None = None,
    payment_status: str | None = None,
    receipt: dict | None = None,
    created_by: int | None = None,
) -> SaleResult:
    """
    Record a sale and deduct its stock atomically.

    Raises:
        ValidationError: malformed input (nothing opened)
        SaleError: a line names an inactive variant (nothing persisted)
        ConflictError: idempotency_key reused for a different request, or a
            line's ledger key was already written (nothing persisted)
        NotFoundError: store/variant/inventory missing (nothing persisted)
        InsufficientStockError: any line exceeds available stock (nothing persisted)
    """
    store_id = coerce_int(store_id, "store_id")
    business_id = coerce_int(business_id, "business_id")
    key = require_idempotency_key(idempotency_key)
    lines = _parse_items(items)
    customer_snapshot = _parse_customer(customer)
    method = PaymentMethod.parse(payment_method or PaymentMethod.CASH.value, "payment_method")
    pay_status = PaymentStatus.parse(payment_status or PaymentStatus.PAID.value, "payment_status")
    receipt_needed, receipt_channel = _parse_receipt(receipt)
    created_by = coerce_optional_int(created_by, "created_by")
    fingerprint = _fingerprint(store_id, business_id, lines, customer_snapshot, method)

    def _op():
        with transaction_scope() as session:
            existing = session.query(Sale).filter_by(idempotency_key=key).first()
            if existing is not None:
                if existing.request_fingerprint != fingerprint:
                    raise ConflictError(
                        f"idempotency_key {key!r} was already used for a different sale"
                    )
                return existing, [], True

            store = session.get(Store, store_id)
            if store is None or store.business_id != business_id:
                raise NotFoundError(f"Store {store_id} not found for business {business_id}")

            inventories = _preflight(session, store, lines)

            total = sum(l.gross_cents for l in lines)
            discount = sum(l.discount_cents for l in lines)
            sale = Sale(
                store_id=store.id,
                business_id=business_id,
                sale_code=generate_reference("SALE"),
                idempotency_key=key,
                request_fingerprint=fingerprint,
                total_amount_cents=total,
                total_discount_cents=discount,
                net_amount_cents=total - discount,
                payment_method=method,
                payment_status=pay_status,
                customer_name=customer_snapshot["name"],
                customer_email=customer_snapshot["email"],
                customer_phone=customer_snapshot["phone"],
                created_by=created_by,
            )
            session.add(sale)
            try:
                session.flush()
            except IntegrityError as exc:
                raise WriteRaceError(f"sale {key!r} inserted concurrently") from exc

            alert_ids = []
            for line_no, line in enumerate(lines, start=1):
                item = SaleItem(
                    sale_id=sale.id,
                    store_id=store.id,
                    variant_id=line.variant_id,
                    line_no=line_no,
                    quantity=line.quantity,
                    unit_price_cents=line.unit_price_cents,
                    discount_cents=line.discount_cents,
                    line_total_cents=line.line_total_cents,
                )
                session.add(item)

                result = inventory_service.adjust(
                    session,
                    inventory_id=inventories[line.variant_id].id,
                    change=-line.quantity,
                    type=AdjustmentType.DEDUCT,
                    idempotency_key=f"sale:{sale.id}:{line_no}",
                    reason="sale",
                    reference=sale.sale_code,
                    actor_id=created_by,
                )
                if result.replayed:
                    raise ConflictError(
                        f"Ledger entry for sale {sale.id} line {line_no} already exists"
                    )
                item.inventory_log_id = result.log_entry.id
                if result.alert is not None:
                    alert_ids.append(result.alert.id)

            return sale, alert_ids, False

    sale, alert_ids, replayed = run_with_retry(_op)

    if replayed:
        current_app.logger.info("Duplicate sale request replayed: %s", key)
        return SaleResult(sale=sale, message="Sale already recorded", replayed=True)

    warnings = alert_service.dispatch_stock_alerts(alert_ids)
    if receipt_needed:
        warnings.extend(receipt_service.deliver_receipt(sale, receipt_channel))

    return SaleResult(sale=sale, message="Sale created successfully", warnings=warnings)


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(sale_id: int) -> Sale:
    sale = db.session.get(Sale, sale_id)
    if sale is None:
        raise NotFoundError(f"Sale {sale_id} not found")
    return sale


def list_sales(store_id: int, limit: int = 100) -> list[Sale]:
    return db.session.query(Sale).filter_by(
        store_id=store_id,
    ).order_by(Sale.created_at.desc(), Sale.id.desc()).limit(limit).all()
