"""Kenyan phone number normalization for M-Pesa targets."""

from __future__ import annotations

import re
from typing import Optional

_NON_DIGITS = re.compile(r"[^0-9]")


def digits_only(value: Optional[str]) -> str:
    return _NON_DIGITS.sub("", value or "")


def to_mpesa_phone(value: Optional[str]) -> Optional[str]:
    """Normalize user input to the gateway's ``2547XXXXXXXX`` / ``2541XXXXXXXX`` form.

    Accepts ``0712345678``, ``712345678``, ``+254712345678`` and
    ``254712345678``. Returns ``None`` when the input cannot be a Kenyan
    mobile number.
    """

    digits = digits_only(value)
    if not digits:
        return None

    # Already 254XXXXXXXXX; other prefixes are left for the backend to judge.
    if digits.startswith("254") and len(digits) == 12:
        return digits

    if digits[:2] in ("07", "01") and len(digits) == 10:
        return f"254{digits[1:]}"

    if digits[:1] in ("7", "1") and len(digits) == 9:
        return f"254{digits}"

    return None


def to_e164_phone(value: Optional[str]) -> Optional[str]:
    mpesa = to_mpesa_phone(value)
    if not mpesa:
        return None
    return f"+{mpesa}"


def mask_phone(value: Optional[str]) -> str:
    digits = digits_only(value)
    if not digits:
        return "-"
    if len(digits) < 7:
        return digits
    return f"{digits[:4]}***{digits[-3:]}"
