# Overview: Post-commit receipt generation and delivery for sales.

from __future__ import annotations

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from ..enums import ReceiptChannel
from ..extensions import db
from ..models import Sale
from ..time_utils import to_utc_z
from .collaborators import get_notifier, get_receipt_store


def build_receipt(sale: Sale) -> dict:
    """Structured receipt data handed to the receipt store for rendering."""
    store = sale.store
    items = []
    for item in sale.items:
        items.append({
            "sku": item.variant.sku,
            "name": item.variant.name,
            "quantity": item.quantity,
            "unit_price_cents": item.unit_price_cents,
            "discount_cents": item.discount_cents,
            "subtotal_cents": item.line_total_cents,
        })

    return {
        "reference": sale.sale_code,
        "business": store.business.name,
        "store": store.name,
        "created_at": to_utc_z(sale.created_at),
        "customer": {
            "name": sale.customer_name,
            "email": sale.customer_email,
            "phone": sale.customer_phone,
        },
        "payment_method": str(sale.payment_method),
        "payment_status": str(sale.payment_status),
        "items": items,
        "total_amount_cents": sale.total_amount_cents,
        "total_discount_cents": sale.total_discount_cents,
        "net_amount_cents": sale.net_amount_cents,
    }


def _receipt_email(sale: Sale, url: str) -> str:
    business = sale.store.business.name
    return (
        f"Thank you for your purchase from {business}.\n\n"
        f"Reference: {sale.sale_code}\n"
        f"Total paid: {sale.net_amount_cents / 100:,.2f}\n"
        f"Date: {to_utc_z(sale.created_at)}\n\n"
        f"Download your receipt: {url}\n"
    )


def deliver_receipt(sale: Sale, channel: ReceiptChannel) -> list[str]:
    """
    Store the receipt, remember its URL on the sale and optionally email it.

    Runs after the sale committed: every failure is logged and returned as a
    warning, none of them touches the sale's stock or totals.
    """
    warnings: list[str] = []

    try:
        url = get_receipt_store().save(build_receipt(sale))
    except Exception:
        current_app.logger.warning("Failed to generate receipt for sale %s", sale.id, exc_info=True)
        return ["Receipt could not be generated"]

    try:
        sale.receipt_url = url
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.warning("Failed to save receipt URL for sale %s", sale.id, exc_info=True)
        warnings.append("Receipt URL could not be saved on the sale")

    if channel != ReceiptChannel.EMAIL:
        return warnings

    if not sale.customer_email:
        warnings.append("Receipt not emailed: sale has no customer email")
        return warnings

    try:
        get_notifier().send(sale.customer_email, "Your Purchase Receipt", _receipt_email(sale, url))
    except Exception:
        current_app.logger.warning("Failed to email receipt for sale %s", sale.id, exc_info=True)
        warnings.append("Receipt email could not be delivered")

    return warnings
