from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import DeclarativeMeta


# Upper bound for any price or amount in cents ($9,999,999.99)
MAX_PRICE_CENTS = 999_999_999

MAX_IDEMPOTENCY_KEY_LENGTH = 128
# Width of inventory_logs.idempotency_key (client key plus namespace and suffix)
MAX_LEDGER_KEY_LENGTH = 200

# Ledger key namespaces derived by the sale, restock and return pipelines
RESERVED_KEY_PREFIXES = ("sale:", "restock:", "return:", "exchange:")


class ValidationError(ValueError):
    """400-level input problem."""


class NotFoundError(LookupError):
    """404-level missing entity (sale, sale item, inventory record, variant)."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., reused idempotency key)."""


@dataclass(frozen=True)
class ModelValidationPolicy:
    """Which columns a client may set, and which must be present on create."""
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(value: Any, field: str) -> int:
    """Strict integer coercion: rejects bools, floats, decimals and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise ValidationError(f"{field} must be an integer (no decimals)")
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    raise ValidationError(f"{field} must be an integer")


def coerce_optional_int(value: Any, field: str) -> int | None:
    if value is None:
        return None
    return coerce_int(value, field)


def coerce_bool(value: Any, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in {"true", "false"}:
        return value.strip().lower() == "true"
    raise ValidationError(f"{field} must be a boolean")


def require_fields(payload: dict, fields: list[str]) -> None:
    missing = [f for f in fields if payload.get(f) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def require_idempotency_key(
    value: Any,
    field: str = "idempotency_key",
    max_length: int = MAX_IDEMPOTENCY_KEY_LENGTH,
) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    key = value.strip()
    if len(key) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}")
    return key


def require_client_idempotency_key(value: Any, field: str = "idempotency_key") -> str:
    """Key supplied by a caller of a direct ledger endpoint; may not use a reserved namespace."""
    key = require_idempotency_key(value, field)
    if key.lower().startswith(RESERVED_KEY_PREFIXES):
        raise ValidationError(
            f"{field} may not start with a reserved prefix ({', '.join(RESERVED_KEY_PREFIXES)})"
        )
    return key


def require_payload(payload: Any) -> dict:
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload


def _coerce_value(col, value: Any):
    if isinstance(col.type, Boolean):
        return coerce_bool(value, col.key)
    if isinstance(col.type, Integer):
        return coerce_int(value, col.key)
    if isinstance(col.type, (String, Text)):
        if not isinstance(value, str):
            raise ValidationError(f"{col.key} must be a string")
        return value.strip()
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Turn a client JSON object into a column patch for `model`.

    Keys outside policy.writable_fields are refused before any value is looked
    at. Values are coerced by column type and checked against nullability and
    String(n) length. With partial=False every required_on_create key must be
    present.
    """
    payload = require_payload(payload)

    if not partial:
        missing = sorted((policy.required_on_create or set()) - payload.keys())
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)
    refused = sorted(k for k in payload if k not in policy.writable_fields or k not in cols)
    if refused:
        raise ValidationError(f"Field not allowed: {', '.join(refused)}")

    patch: dict = {}
    for key, raw in payload.items():
        col = cols[key]
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{key} cannot be null")
            patch[key] = None
            continue

        value = _coerce_value(col, raw)
        if isinstance(value, str):
            if value == "" and not col.nullable:
                raise ValidationError(f"{key} cannot be blank")
            length = getattr(col.type, "length", None)
            if length and len(value) > length:
                raise ValidationError(f"{key} exceeds max length {length}")
        patch[key] = value

    return patch


def enforce_rules_price(value: int, field: str) -> None:
    if value < 0:
        raise ValidationError(f"{field} must be >= 0")
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{field} cannot exceed {MAX_PRICE_CENTS} (${MAX_PRICE_CENTS / 100:,.2f})")


def enforce_rules_return_policy(patch: dict) -> None:
    if "days_allowed" in patch and patch["days_allowed"] is not None:
        if patch["days_allowed"] < 0:
            raise ValidationError("days_allowed must be >= 0")
    if "restocking_fee_bps" in patch and patch["restocking_fee_bps"] is not None:
        if not 0 <= patch["restocking_fee_bps"] <= 10_000:
            raise ValidationError("restocking_fee_bps must be between 0 and 10000")
