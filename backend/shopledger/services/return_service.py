"""
Return Resolution Machine

WHY: A return touches three ledgers at once: stock (restock unless
defective, exchange legs go out), money (refund, store credit, sale net
amount) and the sale line itself (returned quantity). A review either
settles every return in the batch or none of them.

LIFECYCLE:
1. create_returns(): PENDING return per line, dependents pre-created pending
   (Refund, Exchange legs or StoreCredit). No stock or money moves.
2. review_returns(approve=False): REJECTED, dependents closed
   (refund failed, exchanges cancelled, store credit expired).
3. review_returns(approve=True): APPROVED, then settled by resolution
   (REFUNDED / EXCHANGED / CREDITED) inside the same transaction.

MONEY:
- line amount = original unit price * returned quantity
- refund pays line amount minus the restocking fee (policy basis points)
- sale.net_amount_cents drops by the full line amount for refund and credit;
  exchange legs move it by their price difference
"""

from __future__ import annotations

from datetime import timedelta

from flask import current_app

from ..enums import (
    RETURN_TRANSITIONS,
    AdjustmentType,
    ExchangeStatus,
    PaymentMethod,
    RefundStatus,
    ReturnResolution,
    ReturnStatus,
    SaleItemStatus,
    StoreCreditStatus,
)
from ..extensions import db
from ..models import (
    Exchange,
    ProductVariant,
    Refund,
    Return,
    ReturnPolicy,
    Sale,
    SaleItem,
    Store,
    StoreCredit,
)
from ..references import generate_reference
from ..time_utils import as_utc_naive, utcnow
from ..validation import (
    ModelValidationPolicy,
    NotFoundError,
    ValidationError,
    coerce_bool,
    coerce_int,
    coerce_optional_int,
    enforce_rules_return_policy,
    validate_payload,
)
from . import alert_service, inventory_service
from .collaborators import get_notifier
from .concurrency import lock_for_update, run_with_retry, transaction_scope
from .inventory_service import InsufficientStockError


class ReturnError(Exception):
    """Raised for return operation errors."""
    pass


# Substrings of a return reason that mark the item as defective when the
# caller does not say so explicitly.
DEFECT_KEYWORDS = ("fault", "defect", "damag")

# Statuses that still hold quantity of a sale item
OPEN_RETURN_STATUSES = (ReturnStatus.PENDING, ReturnStatus.APPROVED)

RETURN_POLICY_POLICY = ModelValidationPolicy(
    writable_fields={
        "days_allowed",
        "allow_refund",
        "allow_exchange",
        "allow_store_credit",
        "restocking_fee_bps",
        "notes",
    },
    required_on_create=set(),
)


def infer_defective(reason: str) -> bool:
    lowered = (reason or "").lower()
    return any(k in lowered for k in DEFECT_KEYWORDS)


def _transition(ret: Return, target: ReturnStatus) -> None:
    if target not in RETURN_TRANSITIONS[ret.status]:
        raise ReturnError(
            f"Return {ret.id} cannot move from {ret.status} to {target}"
        )
    ret.status = target


# =============================================================================
# RETURN CREATION
# =============================================================================

def _parse_return_items(items) -> list[dict]:
    if not isinstance(items, list) or not items:
        raise ValidationError("items must be a non-empty list")

    parsed = []
    for i, raw in enumerate(items):
        if not isinstance(raw, dict):
            raise ValidationError(f"items[{i}] must be an object")

        sale_item_id = coerce_int(raw.get("sale_item_id"), f"items[{i}].sale_item_id")
        reason = raw.get("reason")
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError(f"items[{i}].reason is required")
        resolution = ReturnResolution.parse(raw.get("resolution"), f"items[{i}].resolution")

        quantity = coerce_optional_int(raw.get("quantity"), f"items[{i}].quantity")
        if quantity is not None and quantity <= 0:
            raise ValidationError(f"items[{i}].quantity must be > 0")

        if raw.get("is_defective") is None:
            is_defective = infer_defective(reason)
        else:
            is_defective = coerce_bool(raw["is_defective"], f"items[{i}].is_defective")

        targets = []
        if resolution == ReturnResolution.EXCHANGE:
            exchanges = raw.get("exchanges")
            if not isinstance(exchanges, list) or not exchanges:
                raise ValidationError(f"items[{i}].exchanges must list at least one replacement")
            for j, leg in enumerate(exchanges):
                if not isinstance(leg, dict):
                    raise ValidationError(f"items[{i}].exchanges[{j}] must be an object")
                targets.append(
                    coerce_int(leg.get("new_variant_id"), f"items[{i}].exchanges[{j}].new_variant_id")
                )

        parsed.append({
            "sale_item_id": sale_item_id,
            "reason": reason.strip(),
            "resolution": resolution,
            "quantity": quantity,
            "is_defective": is_defective,
            "targets": targets,
        })
    return parsed


def _held_quantity(session, sale_item: SaleItem) -> int:
    """Units of a sale item already returned or tied up in an open return."""
    open_returns = session.query(Return).filter(
        Return.sale_item_id == sale_item.id,
        Return.status.in_(OPEN_RETURN_STATUSES),
    ).all()
    return sale_item.returned_quantity + sum(r.quantity for r in open_returns)


def _check_policy(policy: ReturnPolicy | None, sale: Sale, resolution: ReturnResolution) -> None:
    if policy is None:
        return
    if not policy.allows(resolution):
        raise ReturnError(f"Store return policy does not allow {resolution}")
    deadline = as_utc_naive(sale.created_at) + timedelta(days=policy.days_allowed)
    if utcnow() > deadline:
        raise ReturnError(
            f"Sale {sale.sale_code} is outside the {policy.days_allowed}-day return window"
        )


def create_returns(
    *,
    store_id: int,
    sale_code: str,
    items: list[dict],
    staff_id: int | None = None,
) -> list[Return]:
    """
    Open one PENDING return per line of a past sale.

    Raises:
        ValidationError: malformed lines
        NotFoundError: sale, sale item or replacement variant missing
        ReturnError: policy violation or quantity beyond what is left to return
    """
    store_id = coerce_int(store_id, "store_id")
    if not isinstance(sale_code, str) or not sale_code.strip():
        raise ValidationError("sale_code is required")
    sale_code = sale_code.strip()
    lines = _parse_return_items(items)
    staff_id = coerce_optional_int(staff_id, "staff_id")

    def _op():
        with transaction_scope() as session:
            sale = session.query(Sale).filter_by(sale_code=sale_code, store_id=store_id).first()
            if sale is None:
                raise NotFoundError(f"Sale {sale_code} not found in store {store_id}")

            policy = session.query(ReturnPolicy).filter_by(store_id=store_id).first()

            created = []
            for line in lines:
                _check_policy(policy, sale, line["resolution"])

                sale_item = session.get(SaleItem, line["sale_item_id"])
                if sale_item is None or sale_item.sale_id != sale.id:
                    raise NotFoundError(
                        f"Sale item {line['sale_item_id']} not found on sale {sale.sale_code}"
                    )

                quantity = line["quantity"] or sale_item.quantity
                if quantity > sale_item.quantity:
                    raise ReturnError(
                        f"Cannot return {quantity} units of sale item {sale_item.id}; "
                        f"only {sale_item.quantity} were sold"
                    )
                held = _held_quantity(session, sale_item)
                if held + quantity > sale_item.quantity:
                    raise ReturnError(
                        f"Cannot return {quantity} units of sale item {sale_item.id}; "
                        f"{sale_item.quantity - held} left to return"
                    )

                if len(line["targets"]) > quantity:
                    raise ValidationError(
                        f"Sale item {sale_item.id}: more replacements than returned units"
                    )

                ret = Return(
                    store_id=store_id,
                    sale_id=sale.id,
                    sale_item_id=sale_item.id,
                    return_code=generate_reference("RET"),
                    reason=line["reason"],
                    resolution=line["resolution"],
                    is_defective=line["is_defective"],
                    status=ReturnStatus.PENDING,
                    quantity=quantity,
                    staff_id=staff_id,
                )
                session.add(ret)
                session.flush()

                _create_dependents(session, ret, sale, sale_item, line["targets"])
                created.append(ret)

            return created

    return run_with_retry(_op)


def _create_dependents(session, ret: Return, sale: Sale, sale_item: SaleItem, targets: list[int]) -> None:
    line_amount = sale_item.unit_price_cents * ret.quantity

    if ret.resolution == ReturnResolution.REFUND:
        session.add(Refund(
            return_id=ret.id,
            sale_id=sale.id,
            store_id=ret.store_id,
            amount_cents=line_amount,
            restocking_fee_cents=0,
            method=str(sale.payment_method),
            status=RefundStatus.PENDING,
        ))

    elif ret.resolution == ReturnResolution.EXCHANGE:
        for variant_id in targets:
            variant = session.get(ProductVariant, variant_id)
            if variant is None or variant.store_id != ret.store_id or not variant.is_active:
                raise NotFoundError(f"Replacement variant {variant_id} not found in store {ret.store_id}")
            session.add(Exchange(
                return_id=ret.id,
                store_id=ret.store_id,
                new_variant_id=variant.id,
                price_difference_cents=variant.price_cents - sale_item.unit_price_cents,
                status=ExchangeStatus.PENDING,
            ))

    elif ret.resolution == ReturnResolution.STORE_CREDIT:
        session.add(StoreCredit(
            return_id=ret.id,
            store_id=ret.store_id,
            customer_name=sale.customer_name,
            customer_email=sale.customer_email,
            customer_phone=sale.customer_phone,
            amount_cents=line_amount,
            used_amount_cents=0,
            status=StoreCreditStatus.PENDING,
        ))

    session.flush()


# =============================================================================
# RETURN REVIEW
# =============================================================================

def _restock_returned_units(session, ret: Return, sale_item: SaleItem, sale: Sale, alert_ids: list[int]) -> None:
    """Put returned units back on the shelf unless they are defective."""
    if ret.is_defective:
        return
    store = session.get(Store, sale.store_id)
    inventory = inventory_service.ensure_inventory(session, store, sale_item.variant)
    result = inventory_service.adjust(
        session,
        inventory_id=inventory.id,
        change=ret.quantity,
        type=AdjustmentType.RETURN_RESTOCK,
        idempotency_key=f"return:{ret.id}:restock",
        reason=ret.reason,
        reference=ret.return_code,
        actor_id=ret.manager_id,
    )
    if result.alert is not None:
        alert_ids.append(result.alert.id)


def _mark_item_returned(sale_item: SaleItem, quantity: int) -> None:
    sale_item.returned_quantity += quantity
    if sale_item.returned_quantity > sale_item.quantity:
        raise ReturnError(f"Sale item {sale_item.id} would be returned more than sold")
    if sale_item.returned_quantity == sale_item.quantity:
        sale_item.status = SaleItemStatus.RETURNED
    else:
        sale_item.status = SaleItemStatus.PARTIALLY_RETURNED


def _settle_refund(session, ret, sale, sale_item, ctx) -> dict:
    refund = next((r for r in ret.refunds if r.status == RefundStatus.PENDING), None)
    if refund is None:
        raise ReturnError(f"Return {ret.id} has no pending refund")

    line_amount = sale_item.unit_price_cents * ret.quantity
    fee = line_amount * ctx["fee_bps"] // 10_000
    now = utcnow()

    refund.amount_cents = line_amount - fee
    refund.restocking_fee_cents = fee
    refund.method = ctx["refund_method"] or str(sale.payment_method)
    refund.status = RefundStatus.COMPLETED
    refund.processed_at = now

    sale.net_amount_cents -= line_amount
    _mark_item_returned(sale_item, ret.quantity)
    _restock_returned_units(session, ret, sale_item, sale, ctx["alert_ids"])
    _transition(ret, ReturnStatus.REFUNDED)
    return {"refund": refund.to_dict()}


def _settle_store_credit(session, ret, sale, sale_item, ctx) -> dict:
    credit = ret.store_credit
    if credit is None or credit.status != StoreCreditStatus.PENDING:
        raise ReturnError(f"Return {ret.id} has no pending store credit")

    line_amount = sale_item.unit_price_cents * ret.quantity
    validity_days = current_app.config.get("STORE_CREDIT_VALIDITY_DAYS", 365)

    credit.amount_cents = line_amount
    credit.status = StoreCreditStatus.ACTIVE
    credit.expires_at = utcnow() + timedelta(days=validity_days) if validity_days else None

    sale.net_amount_cents -= line_amount
    _mark_item_returned(sale_item, ret.quantity)
    _restock_returned_units(session, ret, sale_item, sale, ctx["alert_ids"])
    _transition(ret, ReturnStatus.CREDITED)
    return {"store_credit": credit.to_dict()}


def _settle_exchange(session, ret, sale, sale_item, ctx) -> dict:
    legs = [e for e in ret.exchanges if e.status == ExchangeStatus.PENDING]
    if not legs:
        raise ReturnError(f"Return {ret.id} has no pending exchange")

    now = utcnow()
    refunds = []
    for leg in legs:
        inventory = inventory_service.find_inventory(session, ret.store_id, leg.new_variant_id, lock=True)
        if inventory is None:
            raise NotFoundError(
                f"No inventory record for replacement variant {leg.new_variant_id} in store {ret.store_id}"
            )
        if inventory.available < 1:
            raise InsufficientStockError(
                f"Replacement variant {leg.new_variant_id} is out of stock",
                details={
                    "inventory_id": inventory.id,
                    "variant_id": leg.new_variant_id,
                    "available": inventory.available,
                },
            )

        result = inventory_service.adjust(
            session,
            inventory_id=inventory.id,
            change=-1,
            type=AdjustmentType.EXCHANGE_ADJUST,
            idempotency_key=f"exchange:{leg.id}",
            reason=f"exchange for {ret.return_code}",
            reference=ret.return_code,
            actor_id=ret.manager_id,
        )
        if result.alert is not None:
            ctx["alert_ids"].append(result.alert.id)

        diff = leg.price_difference_cents
        if diff < 0:
            refund = Refund(
                return_id=ret.id,
                sale_id=sale.id,
                store_id=ret.store_id,
                amount_cents=-diff,
                restocking_fee_cents=0,
                method=ctx["refund_method"] or str(sale.payment_method),
                status=RefundStatus.COMPLETED,
                processed_at=now,
            )
            session.add(refund)
            refunds.append(refund)
        # Positive difference is collected from the customer and kept
        sale.net_amount_cents += diff

        leg.status = ExchangeStatus.COMPLETED
        leg.completed_at = now

    session.flush()
    _mark_item_returned(sale_item, ret.quantity)
    _restock_returned_units(session, ret, sale_item, sale, ctx["alert_ids"])
    _transition(ret, ReturnStatus.EXCHANGED)
    return {
        "exchanges": [leg.to_dict() for leg in legs],
        "refunds": [r.to_dict() for r in refunds],
    }


_SETTLEMENT_HANDLERS = {
    ReturnResolution.REFUND: _settle_refund,
    ReturnResolution.EXCHANGE: _settle_exchange,
    ReturnResolution.STORE_CREDIT: _settle_store_credit,
}

_unhandled = set(ReturnResolution) - set(_SETTLEMENT_HANDLERS)
if _unhandled:
    raise RuntimeError(f"No settlement handler for resolutions: {sorted(_unhandled)}")


def _reject(ret: Return) -> None:
    _transition(ret, ReturnStatus.REJECTED)
    for refund in ret.refunds:
        if refund.status == RefundStatus.PENDING:
            refund.status = RefundStatus.FAILED
    for leg in ret.exchanges:
        if leg.status == ExchangeStatus.PENDING:
            leg.status = ExchangeStatus.CANCELLED
    if ret.store_credit is not None and ret.store_credit.status == StoreCreditStatus.PENDING:
        ret.store_credit.status = StoreCreditStatus.EXPIRED


def _parse_return_ids(return_ids) -> list[int]:
    if not isinstance(return_ids, list) or not return_ids:
        raise ValidationError("return_ids must be a non-empty list")
    ids = [coerce_int(v, f"return_ids[{i}]") for i, v in enumerate(return_ids)]
    if len(set(ids)) != len(ids):
        raise ValidationError("return_ids contains duplicates")
    return ids


def review_returns(
    *,
    return_ids: list[int],
    approve: bool,
    notes: str | None = None,
    manager_id: int | None = None,
    refund_method: str | None = None,
    store_id: int | None = None,
) -> tuple[list[dict], list[str]]:
    """
    Approve (and settle) or reject a batch of PENDING returns, all-or-nothing.

    Returns (results, warnings). Warnings come from post-commit alert and
    customer notifications only.

    Raises:
        ValidationError: malformed input
        NotFoundError: a return, its sale or a replacement inventory is missing
        ReturnError: illegal transition (e.g. reviewing twice)
        InsufficientStockError: a replacement variant is out of stock
    """
    ids = _parse_return_ids(return_ids)
    approve = coerce_bool(approve, "approve")
    manager_id = coerce_optional_int(manager_id, "manager_id")
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("notes must be a string")
    if store_id is not None:
        store_id = coerce_int(store_id, "store_id")
    method = str(PaymentMethod.parse(refund_method, "refund_method")) if refund_method else None

    def _op():
        with transaction_scope() as session:
            fee_by_store: dict[int, int] = {}
            ctx = {"refund_method": method, "alert_ids": []}
            results = []
            notices = []

            for return_id in ids:
                ret = lock_for_update(session.query(Return).filter_by(id=return_id)).first()
                if ret is None or (store_id is not None and ret.store_id != store_id):
                    raise NotFoundError(f"Return {return_id} not found")
                sale = session.get(Sale, ret.sale_id)
                if sale is None:
                    raise NotFoundError(f"Sale {ret.sale_id} for return {ret.id} not found")
                sale_item = session.get(SaleItem, ret.sale_item_id)
                if sale_item is None:
                    raise NotFoundError(f"Sale item {ret.sale_item_id} for return {ret.id} not found")

                ret.manager_id = manager_id
                ret.inspection_notes = notes
                ret.reviewed_at = utcnow()

                entry = {"return_id": ret.id, "return_code": ret.return_code, "resolution": str(ret.resolution)}
                if not approve:
                    _reject(ret)
                else:
                    _transition(ret, ReturnStatus.APPROVED)
                    if ret.store_id not in fee_by_store:
                        policy = session.query(ReturnPolicy).filter_by(store_id=ret.store_id).first()
                        fee_by_store[ret.store_id] = policy.restocking_fee_bps if policy else 0
                    ctx["fee_bps"] = fee_by_store[ret.store_id]

                    entry.update(_SETTLEMENT_HANDLERS[ret.resolution](session, ret, sale, sale_item, ctx))
                    ret.settled_at = utcnow()

                entry["status"] = str(ret.status)
                results.append(entry)
                if sale.customer_email:
                    notices.append((sale.customer_email, ret.return_code, str(ret.status)))

            return results, ctx["alert_ids"], notices

    results, alert_ids, notices = run_with_retry(_op)

    warnings = alert_service.dispatch_stock_alerts(alert_ids)
    warnings.extend(_notify_customers(notices))
    return results, warnings


def _notify_customers(notices: list[tuple[str, str, str]]) -> list[str]:
    warnings = []
    notifier = get_notifier()
    for email, return_code, status in notices:
        body = (
            f"Your return {return_code} has been reviewed.\n"
            f"Current status: {status}.\n"
        )
        try:
            notifier.send(email, "Return Update", body)
        except Exception:
            current_app.logger.warning("Failed to notify customer about return %s", return_code, exc_info=True)
            warnings.append(f"Customer notification for return {return_code} could not be delivered")
    return warnings


# =============================================================================
# STORE CREDIT
# =============================================================================

def redeem_store_credit(credit_id: int, amount_cents: int) -> StoreCredit:
    amount = coerce_int(amount_cents, "amount_cents")
    if amount <= 0:
        raise ValidationError("amount_cents must be > 0")

    def _op():
        with transaction_scope() as session:
            credit = lock_for_update(session.query(StoreCredit).filter_by(id=credit_id)).first()
            if credit is None:
                raise NotFoundError(f"Store credit {credit_id} not found")
            if credit.status not in (StoreCreditStatus.ACTIVE, StoreCreditStatus.PARTIALLY_USED):
                raise ReturnError(f"Store credit {credit_id} is {credit.status} and cannot be redeemed")
            if credit.expires_at is not None and utcnow() > as_utc_naive(credit.expires_at):
                raise ReturnError(f"Store credit {credit_id} has expired")
            if amount > credit.balance_cents:
                raise ReturnError(
                    f"Store credit {credit_id} balance is {credit.balance_cents}, cannot redeem {amount}"
                )

            credit.used_amount_cents += amount
            if credit.used_amount_cents == credit.amount_cents:
                credit.status = StoreCreditStatus.REDEEMED
            else:
                credit.status = StoreCreditStatus.PARTIALLY_USED
            return credit

    return run_with_retry(_op)


def list_store_credits(store_id: int, status: StoreCreditStatus | None = None) -> list[StoreCredit]:
    q = db.session.query(StoreCredit).filter_by(store_id=store_id)
    if status is not None:
        q = q.filter(StoreCredit.status == status)
    return q.order_by(StoreCredit.created_at.desc(), StoreCredit.id.desc()).all()


# =============================================================================
# RETURN POLICY
# =============================================================================

def get_return_policy(store_id: int) -> ReturnPolicy:
    policy = db.session.query(ReturnPolicy).filter_by(store_id=store_id).first()
    if policy is None:
        raise NotFoundError(f"Store {store_id} has no return policy")
    return policy


def upsert_return_policy(store_id: int, payload: dict) -> tuple[ReturnPolicy, bool]:
    """Create or patch the store's policy. Returns (policy, created)."""
    patch = validate_payload(model=ReturnPolicy, payload=payload, policy=RETURN_POLICY_POLICY, partial=True)
    enforce_rules_return_policy(patch)

    with transaction_scope() as session:
        if session.get(Store, store_id) is None:
            raise NotFoundError(f"Store {store_id} not found")

        policy = session.query(ReturnPolicy).filter_by(store_id=store_id).first()
        created = policy is None
        if created:
            policy = ReturnPolicy(store_id=store_id)
            session.add(policy)
        for k, v in patch.items():
            setattr(policy, k, v)

    return policy, created


def delete_return_policy(store_id: int) -> None:
    with transaction_scope() as session:
        policy = session.query(ReturnPolicy).filter_by(store_id=store_id).first()
        if policy is None:
            raise NotFoundError(f"Store {store_id} has no return policy")
        session.delete(policy)


# =============================================================================
# QUERIES
# =============================================================================

def get_return(return_id: int) -> Return:
    ret = db.session.get(Return, return_id)
    if ret is None:
        raise NotFoundError(f"Return {return_id} not found")
    return ret


def list_returns(store_id: int, status: ReturnStatus | None = None) -> list[Return]:
    q = db.session.query(Return).filter_by(store_id=store_id)
    if status is not None:
        q = q.filter(Return.status == status)
    return q.order_by(Return.created_at.desc(), Return.id.desc()).all()
