from __future__ import annotations

import secrets

from .time_utils import utcnow


def generate_reference(prefix: str = "REF") -> str:
    """
    Human-readable document reference, e.g. "SALE-20260211-AB12CD34".

    Date part is UTC; the suffix is 4 random bytes in hex. Uniqueness is
    enforced by the owning table's constraint.
    """
    date_part = utcnow().strftime("%Y%m%d")
    return f"{prefix}-{date_part}-{secrets.token_hex(4).upper()}"
