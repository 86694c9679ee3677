"""
M-Pesa payment flows.

- signing: canonical authorization message, nonce and signature adapter
- settlement: per-flow settlement requests and their endpoints
- poller: status polling with cancellable handles
- receipt: labels and shareable receipt text
- orchestrator (import directly): TransactionOrchestrator and FlowAttempt

Usage:
    from dotpay.core.mpesa.orchestrator import TransactionOrchestrator

    orchestrator = TransactionOrchestrator(backend=client, wallet=wallet, funding=submitter)
    await orchestrator.create_quote(FlowType.OFFRAMP, 1000, phone_number="0712345678")
    result = await orchestrator.confirm_and_send(pin="123456")
"""

from .phone import mask_phone, to_e164_phone, to_mpesa_phone
from .poller import PollHandle, PollOutcome, PollResult, StatusPoller
from .receipt import build_receipt_text, flow_label, status_label
from .settlement import SETTLEMENT_PATHS, build_settlement_request, settlement_path
from .signing import (
    build_authorization_message,
    create_nonce,
    normalize_signature,
    utc_timestamp,
)

__all__ = [
    "mask_phone",
    "to_e164_phone",
    "to_mpesa_phone",
    "PollHandle",
    "PollOutcome",
    "PollResult",
    "StatusPoller",
    "build_receipt_text",
    "flow_label",
    "status_label",
    "SETTLEMENT_PATHS",
    "build_settlement_request",
    "settlement_path",
    "build_authorization_message",
    "create_nonce",
    "normalize_signature",
    "utc_timestamp",
]
