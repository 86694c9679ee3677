"""Human-readable labels and shareable receipt text for M-Pesa transactions."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Union

from ...types.mpesa import FlowType, MpesaTransaction, TransactionStatus
from .phone import mask_phone


FLOW_LABELS = {
    FlowType.ONRAMP: "Top up",
    FlowType.OFFRAMP: "Cash out",
    FlowType.PAYBILL: "PayBill",
    FlowType.BUYGOODS: "Till payment",
}

STATUS_LABELS = {
    TransactionStatus.CREATED: "Created",
    TransactionStatus.QUOTED: "Quote created",
    TransactionStatus.AWAITING_USER_AUTHORIZATION: "Approved in DotPay",
    TransactionStatus.AWAITING_ONCHAIN_FUNDING: "Processing payment",
    TransactionStatus.MPESA_SUBMITTED: "Sent request to M-Pesa",
    TransactionStatus.MPESA_PROCESSING: "Waiting for M-Pesa confirmation",
    TransactionStatus.SUCCEEDED: "Succeeded",
    TransactionStatus.FAILED: "Failed",
    TransactionStatus.REFUND_PENDING: "Refund pending",
    TransactionStatus.REFUNDED: "Refunded",
}


def flow_label(flow_type: Union[FlowType, str, None]) -> str:
    key = str(getattr(flow_type, "value", flow_type) or "").strip()
    try:
        return FLOW_LABELS[FlowType(key)]
    except ValueError:
        return "Payment"


def status_label(status: Union[TransactionStatus, str, None]) -> str:
    key = str(getattr(status, "value", status) or "").strip()
    try:
        return STATUS_LABELS[TransactionStatus(key)]
    except ValueError:
        return key.replace("_", " ") if key else "Unknown"


def format_ksh(value: Optional[float]) -> str:
    return f"KSh {float(value or 0):,.2f}"


def format_usd(value: Optional[float]) -> str:
    text = f"{float(value or 0):,.6f}".rstrip("0")
    whole, _, fraction = text.partition(".")
    return f"${whole}.{fraction.ljust(2, '0')}"


def format_receipt_datetime(value: Optional[datetime]) -> str:
    if value is None:
        return "-"
    return value.strftime("%d %b %Y, %I:%M:%S %p")


def result_code(tx: MpesaTransaction) -> str:
    value = tx.daraja.result_code if tx.daraja.result_code is not None else tx.daraja.result_code_raw
    if value is None:
        return "-"
    return str(value).strip() or "-"


def target_lines(tx: MpesaTransaction, mask_phone_number: bool = False) -> List[str]:
    targets = tx.targets
    lines = []
    phone = mask_phone(targets.phone_number) if mask_phone_number else targets.phone_number
    if phone and phone != "-":
        lines.append(f"Phone: {phone}")
    if targets.paybill_number:
        lines.append(f"PayBill: {targets.paybill_number}")
    if targets.till_number:
        lines.append(f"Till: {targets.till_number}")
    if targets.account_reference:
        lines.append(f"Reference: {targets.account_reference}")
    return lines


def build_receipt_text(tx: MpesaTransaction, mask_phone_number: bool = False) -> str:
    """Plain-text receipt suitable for sharing or printing in a terminal."""
    quote = tx.quote
    total_debit = quote.total_debit_kes if quote else 0
    expected_receive = quote.expected_receive_kes if quote else 0

    lines = [
        "DotPay receipt",
        f"Type: {flow_label(tx.flow_type)}",
        f"Status: {status_label(tx.status)}",
        f"Amount: {format_ksh(total_debit)}",
    ]
    if tx.flow_type is FlowType.ONRAMP:
        lines.append(f"Wallet credit: {format_ksh(expected_receive)}")
        lines.append(f"USD credit: {format_usd(quote.amount_usd if quote else 0)}")
    else:
        lines.append(f"M-Pesa amount: {format_ksh(expected_receive)}")

    lines.extend(target_lines(tx, mask_phone_number))
    lines.append(f"M-Pesa receipt: {tx.daraja.receipt_number or '-'}")
    lines.append(f"Result code: {result_code(tx)}")
    lines.append(f"Result: {tx.daraja.result_desc or '-'}")
    lines.append(f"Transaction ID: {tx.transaction_id}")
    lines.append(f"Updated: {format_receipt_datetime(tx.updated_at or tx.created_at)}")
    return "\n".join(lines)
