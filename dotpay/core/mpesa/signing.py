"""
Authorization message and signature handling.

The message layout is verified byte-for-byte by the backend: changing the
order of lines, their labels or the number formatting invalidates every
signature.
"""

from __future__ import annotations

import math
import re
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, NewType, Optional

from ..errors import InvalidSignatureError
from ...types.mpesa import FlowType, MpesaTransaction

MESSAGE_HEADER = "DotPay Authorization"
DEFAULT_BUYGOODS_REFERENCE = "DotPay"

# 65-byte ECDSA signatures are 130 hex chars; smart accounts wrap them in longer blobs.
_SIGNATURE_RE = re.compile(r"^0x[0-9a-fA-F]{130,}$")
_BARE_SIGNATURE_RE = re.compile(r"^[0-9a-fA-F]{130,}$")

Signature = NewType("Signature", str)


def _format_fixed(value: Any, decimals: int) -> str:
    """Fixed-point rendering that rounds half-up on the exact binary value."""
    try:
        number = float(value or 0)
    except (TypeError, ValueError):
        number = 0.0
    if not math.isfinite(number) or number == 0:
        number = 0.0
    quantum = Decimal(1).scaleb(-decimals)
    return format(Decimal(number).quantize(quantum, rounding=ROUND_HALF_UP), "f")


def target_descriptor(tx: MpesaTransaction) -> str:
    targets = tx.targets
    if tx.flow_type is FlowType.OFFRAMP:
        return f"phone:{targets.phone_number or '-'}"
    if tx.flow_type is FlowType.PAYBILL:
        return f"paybill:{targets.paybill_number or '-'}:{targets.account_reference or '-'}"
    if tx.flow_type is FlowType.BUYGOODS:
        reference = targets.account_reference or DEFAULT_BUYGOODS_REFERENCE
        return f"buygoods:{targets.till_number or '-'}:{reference}"
    return "onramp"


def build_authorization_message(tx: MpesaTransaction, signed_at: str, nonce: str) -> str:
    quote = tx.quote
    amount_kes = (quote.total_debit_kes or quote.amount_kes) if quote else 0
    amount_usdc = (tx.onchain.expected_amount_usd if tx.onchain else None) or (
        quote.amount_usd if quote else 0
    )

    return "\n".join([
        MESSAGE_HEADER,
        f"Transaction: {tx.transaction_id}",
        f"Flow: {tx.flow_type.value}",
        f"Quote: {(quote.quote_id if quote else None) or '-'}",
        f"AmountKES: {_format_fixed(amount_kes, 2)}",
        f"AmountUSDC: {_format_fixed(amount_usdc, 6)}",
        f"Target: {target_descriptor(tx)}",
        f"Nonce: {nonce}",
        f"SignedAt: {signed_at}",
    ])


def create_nonce() -> str:
    return uuid.uuid4().hex


def utc_timestamp(now: Optional[datetime] = None) -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a trailing ``Z``."""
    moment = (now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _text_signature(value: str) -> str:
    trimmed = value.strip()
    if _BARE_SIGNATURE_RE.match(trimmed):
        return f"0x{trimmed}"
    return trimmed


def _coerce_signature(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, str):
        return _text_signature(raw)
    if isinstance(raw, (bytes, bytearray, memoryview)):
        return f"0x{bytes(raw).hex()}"
    if isinstance(raw, (list, tuple)) and raw and all(
        isinstance(b, int) and not isinstance(b, bool) and 0 <= b <= 255 for b in raw
    ):
        return f"0x{bytes(raw).hex()}"

    # Wallet wrappers: {"signature": ...}, {"result": ...}, {"data": ...} or attributes.
    for key in ("signature", "result", "data"):
        if isinstance(raw, Mapping):
            inner = raw.get(key)
        else:
            inner = getattr(raw, key, None)
        if isinstance(inner, (str, bytes, bytearray)):
            return _coerce_signature(inner)

    return str(raw).strip()


def normalize_signature(raw: Any) -> Signature:
    """Adapt whatever a wallet returned into one ``0x``-prefixed hex signature."""
    signature = _coerce_signature(raw)
    if not _SIGNATURE_RE.match(signature):
        raise InvalidSignatureError(
            "Failed to generate a valid authorization signature. Reconnect and try again."
        )
    return Signature(signature)


__all__ = [
    "MESSAGE_HEADER",
    "DEFAULT_BUYGOODS_REFERENCE",
    "Signature",
    "build_authorization_message",
    "target_descriptor",
    "create_nonce",
    "utc_timestamp",
    "normalize_signature",
]
