# Overview: Closed value sets for ledger, sale and return state stored as strings.

from __future__ import annotations

import enum


class StrEnum(str, enum.Enum):
    """String-valued enum; members compare equal to their stored value."""

    def __str__(self) -> str:
        return self.value

    @classmethod
    def parse(cls, value, field: str):
        """Coerce client input to a member or raise ValidationError."""
        from .validation import ValidationError

        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        allowed = ", ".join(m.value for m in cls)
        raise ValidationError(f"{field} must be one of: {allowed}")


class AdjustmentType(StrEnum):
    RESTOCK = "restock"
    DEDUCT = "deduct"
    RETURN_RESTOCK = "return_restock"
    EXCHANGE_ADJUST = "exchange_adjust"


class AlertStatus(StrEnum):
    OPEN = "open"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"


class PaymentMethod(StrEnum):
    CASH = "cash"
    CARD = "card"
    TRANSFER = "transfer"
    STORE_CREDIT = "store_credit"


class PaymentStatus(StrEnum):
    PAID = "paid"
    PENDING = "pending"


class SaleItemStatus(StrEnum):
    SOLD = "sold"
    PARTIALLY_RETURNED = "partially_returned"
    RETURNED = "returned"


class ReturnResolution(StrEnum):
    REFUND = "refund"
    EXCHANGE = "exchange"
    STORE_CREDIT = "store_credit"


class ReturnStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REFUNDED = "refunded"
    EXCHANGED = "exchanged"
    CREDITED = "credited"


# PENDING -> APPROVED -> settled, or PENDING -> REJECTED
RETURN_TRANSITIONS: dict[ReturnStatus, frozenset[ReturnStatus]] = {
    ReturnStatus.PENDING: frozenset({ReturnStatus.APPROVED, ReturnStatus.REJECTED}),
    ReturnStatus.APPROVED: frozenset(
        {ReturnStatus.REFUNDED, ReturnStatus.EXCHANGED, ReturnStatus.CREDITED}
    ),
    ReturnStatus.REJECTED: frozenset(),
    ReturnStatus.REFUNDED: frozenset(),
    ReturnStatus.EXCHANGED: frozenset(),
    ReturnStatus.CREDITED: frozenset(),
}


class RefundStatus(StrEnum):
    PENDING = "pending"
    INITIATED = "initiated"
    COMPLETED = "completed"
    FAILED = "failed"


class ExchangeStatus(StrEnum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class StoreCreditStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    PARTIALLY_USED = "partially_used"
    REDEEMED = "redeemed"
    EXPIRED = "expired"


class ReceiptChannel(StrEnum):
    EMAIL = "email"
    NONE = "none"
