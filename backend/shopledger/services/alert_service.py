# Overview: Low-stock alert emitter; records alerts inside the ledger transaction and dispatches them after commit.

from __future__ import annotations

from flask import current_app

from ..enums import AlertStatus
from ..extensions import db
from ..models import StockAlert, StoreInventory
from ..time_utils import utcnow
from ..validation import ConflictError, NotFoundError
from .collaborators import get_notifier


UNRESOLVED_STATUSES = (AlertStatus.OPEN, AlertStatus.ACKNOWLEDGED)


def evaluate_stock_level(session, inventory: StoreInventory, new_quantity: int) -> StockAlert | None:
    """
    Record an alert when new_quantity <= threshold.

    With STOCK_ALERT_DEDUPLICATE on, an unresolved alert for the same record
    suppresses a new one. Going back above the threshold resolves unresolved
    alerts, so the next crossing alerts again.
    """
    threshold = inventory.low_stock_threshold
    if new_quantity > threshold:
        _resolve_alerts(session, inventory.id)
        return None

    if current_app.config.get("STOCK_ALERT_DEDUPLICATE", True):
        unresolved = session.query(StockAlert).filter(
            StockAlert.inventory_id == inventory.id,
            StockAlert.status.in_(UNRESOLVED_STATUSES),
        ).first()
        if unresolved is not None:
            return None

    alert = StockAlert(
        inventory_id=inventory.id,
        store_id=inventory.store_id,
        threshold=threshold,
        quantity_at_trigger=new_quantity,
        status=AlertStatus.OPEN,
        triggered_at=utcnow(),
    )
    session.add(alert)
    session.flush()
    return alert


def _resolve_alerts(session, inventory_id: int) -> None:
    now = utcnow()
    alerts = session.query(StockAlert).filter(
        StockAlert.inventory_id == inventory_id,
        StockAlert.status.in_(UNRESOLVED_STATUSES),
    ).all()
    for alert in alerts:
        alert.status = AlertStatus.RESOLVED
        alert.resolved_at = now


def acknowledge_alert(alert_id: int, actor_id: int | None = None) -> StockAlert:
    alert = db.session.get(StockAlert, alert_id)
    if alert is None:
        raise NotFoundError(f"Stock alert {alert_id} not found")
    if alert.status != AlertStatus.OPEN:
        raise ConflictError(f"Only open alerts can be acknowledged. Alert {alert_id} is {alert.status}")

    alert.status = AlertStatus.ACKNOWLEDGED
    alert.acknowledged_at = utcnow()
    alert.acknowledged_by = actor_id
    db.session.commit()
    return alert


def list_alerts(store_id: int, status: AlertStatus | None = None) -> list[StockAlert]:
    q = db.session.query(StockAlert).filter_by(store_id=store_id)
    if status is not None:
        q = q.filter(StockAlert.status == status)
    return q.order_by(StockAlert.triggered_at.desc(), StockAlert.id.desc()).all()


def _alert_message(alert: StockAlert) -> str:
    variant = alert.inventory.variant
    return (
        f"Stock for {variant.name} (SKU {variant.sku}) has reached its alert threshold.\n"
        f"On hand: {alert.quantity_at_trigger}, threshold: {alert.threshold}.\n"
        f"Please review and restock to prevent stockouts."
    )


def dispatch_stock_alerts(alert_ids: list[int]) -> list[str]:
    """
    Send each alert to its store contact. Call only after commit.

    Delivery failures are logged and returned as warnings; they never undo the
    adjustment that raised the alert.
    """
    warnings: list[str] = []
    if not alert_ids:
        return warnings

    notifier = get_notifier()
    for alert_id in alert_ids:
        alert = db.session.get(StockAlert, alert_id)
        if alert is None:
            continue
        store = alert.inventory.store
        recipient = store.contact_email or store.business.contact_email
        if not recipient:
            current_app.logger.info("Store %s has no contact email; stock alert %s not sent", store.id, alert.id)
            continue
        try:
            notifier.send(recipient, "Stock Alert", _alert_message(alert))
        except Exception:
            current_app.logger.warning("Failed to deliver stock alert %s", alert.id, exc_info=True)
            warnings.append(f"Stock alert {alert.id} could not be delivered")
    return warnings
