"""
M-Pesa payment wire models.

Field names follow the backend's camelCase JSON through aliases; Python code
uses the snake_case attribute names.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Dict, Generic, List, Literal, Optional, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field


T = TypeVar("T")


class FlowType(str, Enum):
    """Payment flow; determines target fields and the settlement endpoint."""

    ONRAMP = "onramp"
    OFFRAMP = "offramp"
    PAYBILL = "paybill"
    BUYGOODS = "buygoods"

    @property
    def requires_authorization(self) -> bool:
        """Flows that push crypto out of the wallet need a PIN and a signature."""
        return self is not FlowType.ONRAMP


class TransactionStatus(str, Enum):
    """Backend-owned transaction lifecycle, read-only to the client."""

    CREATED = "created"
    QUOTED = "quoted"
    AWAITING_USER_AUTHORIZATION = "awaiting_user_authorization"
    AWAITING_ONCHAIN_FUNDING = "awaiting_onchain_funding"
    MPESA_SUBMITTED = "mpesa_submitted"
    MPESA_PROCESSING = "mpesa_processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUND_PENDING = "refund_pending"
    REFUNDED = "refunded"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    TransactionStatus.SUCCEEDED,
    TransactionStatus.FAILED,
    TransactionStatus.REFUNDED,
})


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class MpesaQuote(_WireModel):
    """Immutable, time-boxed price lock issued by the backend."""

    quote_id: str = Field(..., alias="quoteId")
    currency: Literal["KES", "USD"] = "KES"
    amount_requested: float = Field(0.0, alias="amountRequested")
    amount_kes: float = Field(0.0, alias="amountKes")
    amount_usd: float = Field(0.0, alias="amountUsd")
    rate_kes_per_usd: float = Field(0.0, alias="rateKesPerUsd")
    fee_amount_kes: float = Field(0.0, alias="feeAmountKes")
    network_fee_kes: float = Field(0.0, alias="networkFeeKes")
    total_debit_kes: float = Field(0.0, alias="totalDebitKes")
    expected_receive_kes: float = Field(0.0, alias="expectedReceiveKes")
    expires_at: Optional[datetime] = Field(None, alias="expiresAt")
    snapshot_at: Optional[datetime] = Field(None, alias="snapshotAt")

    def is_expired(self, now: datetime) -> bool:
        """True once `now` (timezone-aware) has reached the quote expiry."""
        if self.expires_at is None:
            return False
        expires_at = self.expires_at
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        return now >= expires_at


class MpesaTargets(_WireModel):
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    paybill_number: Optional[str] = Field(None, alias="paybillNumber")
    till_number: Optional[str] = Field(None, alias="tillNumber")
    account_reference: Optional[str] = Field(None, alias="accountReference")


class DarajaDetails(_WireModel):
    """Gateway detail block; every field stays null until the gateway responds."""

    merchant_request_id: Optional[str] = Field(None, alias="merchantRequestId")
    checkout_request_id: Optional[str] = Field(None, alias="checkoutRequestId")
    conversation_id: Optional[str] = Field(None, alias="conversationId")
    originator_conversation_id: Optional[str] = Field(None, alias="originatorConversationId")
    response_code: Optional[str] = Field(None, alias="responseCode")
    response_description: Optional[str] = Field(None, alias="responseDescription")
    result_code: Optional[int] = Field(None, alias="resultCode")
    result_code_raw: Optional[str] = Field(None, alias="resultCodeRaw")
    result_desc: Optional[str] = Field(None, alias="resultDesc")
    receipt_number: Optional[str] = Field(None, alias="receiptNumber")
    customer_message: Optional[str] = Field(None, alias="customerMessage")
    callback_received_at: Optional[datetime] = Field(None, alias="callbackReceivedAt")


class RefundStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class RefundDetails(_WireModel):
    status: RefundStatus = RefundStatus.NONE
    reason: Optional[str] = None
    tx_hash: Optional[str] = Field(None, alias="txHash")
    initiated_at: Optional[datetime] = Field(None, alias="initiatedAt")
    completed_at: Optional[datetime] = Field(None, alias="completedAt")


class HistoryItem(_WireModel):
    from_status: Optional[str] = Field(None, alias="from")
    to_status: str = Field(..., alias="to")
    reason: Optional[str] = None
    source: str = ""
    at: Optional[datetime] = None


class OnchainFunding(_WireModel):
    """Funding descriptor attached to quotes that need a treasury transfer."""

    required: bool = False
    tx_hash: Optional[str] = Field(None, alias="txHash")
    chain_id: Optional[int] = Field(None, alias="chainId")
    verification_status: Optional[Literal["not_required", "pending", "verified", "failed"]] = Field(
        None, alias="verificationStatus"
    )
    token_address: Optional[str] = Field(None, alias="tokenAddress")
    token_symbol: Optional[str] = Field(None, alias="tokenSymbol")
    treasury_address: Optional[str] = Field(None, alias="treasuryAddress")
    expected_amount_usd: Optional[float] = Field(None, alias="expectedAmountUsd")
    # Already scaled to the token's smallest unit; kept as the backend's string.
    expected_amount_units: Optional[str] = Field(None, alias="expectedAmountUnits")
    funded_amount_usd: Optional[float] = Field(None, alias="fundedAmountUsd")
    funded_amount_units: Optional[str] = Field(None, alias="fundedAmountUnits")
    from_address: Optional[str] = Field(None, alias="fromAddress")
    to_address: Optional[str] = Field(None, alias="toAddress")
    log_index: Optional[int] = Field(None, alias="logIndex")
    verification_error: Optional[str] = Field(None, alias="verificationError")
    verified_by: Optional[str] = Field(None, alias="verifiedBy")
    verified_at: Optional[datetime] = Field(None, alias="verifiedAt")


class MpesaTransaction(_WireModel):
    transaction_id: str = Field(..., alias="transactionId")
    flow_type: FlowType = Field(..., alias="flowType")
    status: TransactionStatus
    quote: Optional[MpesaQuote] = None
    targets: MpesaTargets = Field(default_factory=MpesaTargets)
    onchain: Optional[OnchainFunding] = None
    daraja: DarajaDetails = Field(default_factory=DarajaDetails)
    refund: RefundDetails = Field(default_factory=RefundDetails)
    history: List[HistoryItem] = Field(default_factory=list)
    business_id: Optional[str] = Field(None, alias="businessId")
    created_at: Optional[datetime] = Field(None, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def requires_funding(self) -> bool:
        return bool(self.onchain and self.onchain.required)


class ApiEnvelope(BaseModel, Generic[T]):
    """Response wrapper shared by every backend endpoint."""

    success: bool
    message: Optional[str] = None
    data: Optional[T] = None
    idempotent: Optional[bool] = None


class QuoteResult(_WireModel):
    quote: MpesaQuote
    transaction: MpesaTransaction


class TransactionList(_WireModel):
    transactions: List[MpesaTransaction] = Field(default_factory=list)


class QuoteRequest(_WireModel):
    flow_type: FlowType = Field(..., alias="flowType")
    amount: float
    currency: Literal["KES", "USD"] = "KES"
    phone_number: Optional[str] = Field(None, alias="phoneNumber")
    paybill_number: Optional[str] = Field(None, alias="paybillNumber")
    till_number: Optional[str] = Field(None, alias="tillNumber")
    account_reference: Optional[str] = Field(None, alias="accountReference")
    business_id: Optional[str] = Field(None, alias="businessId")

    def to_payload(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class LiquidityPrecheckRequest(_WireModel):
    quote_id: str = Field(..., alias="quoteId")
    flow_type: FlowType = Field(..., alias="flowType")


# Settlement requests: one variant per flow, discriminated on flow_type.

class _SettlementBase(_WireModel):
    quote_id: str = Field(..., alias="quoteId")
    business_id: Optional[str] = Field(None, alias="businessId")

    def to_payload(self) -> Dict[str, Any]:
        """Request body; the flow type travels in the path, not the body."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude_none=True,
            exclude={"flow_type"},
        )


class _AuthorizedSettlement(_SettlementBase):
    pin: str
    signature: str
    signed_at: str = Field(..., alias="signedAt")
    nonce: str
    onchain_tx_hash: Optional[str] = Field(None, alias="onchainTxHash")
    chain_id: Optional[int] = Field(None, alias="chainId")


class OnrampSettlement(_SettlementBase):
    flow_type: Literal[FlowType.ONRAMP] = Field(FlowType.ONRAMP, alias="flowType")
    phone_number: str = Field(..., alias="phoneNumber")


class OfframpSettlement(_AuthorizedSettlement):
    flow_type: Literal[FlowType.OFFRAMP] = Field(FlowType.OFFRAMP, alias="flowType")
    phone_number: str = Field(..., alias="phoneNumber")


class PaybillSettlement(_AuthorizedSettlement):
    flow_type: Literal[FlowType.PAYBILL] = Field(FlowType.PAYBILL, alias="flowType")
    paybill_number: str = Field(..., alias="paybillNumber")
    account_reference: str = Field(..., alias="accountReference")


class BuygoodsSettlement(_AuthorizedSettlement):
    flow_type: Literal[FlowType.BUYGOODS] = Field(FlowType.BUYGOODS, alias="flowType")
    till_number: str = Field(..., alias="tillNumber")
    account_reference: Optional[str] = Field(None, alias="accountReference")


SettlementRequest = Annotated[
    Union[OnrampSettlement, OfframpSettlement, PaybillSettlement, BuygoodsSettlement],
    Field(discriminator="flow_type"),
]


__all__ = [
    "FlowType",
    "TransactionStatus",
    "TERMINAL_STATUSES",
    "MpesaQuote",
    "MpesaTargets",
    "DarajaDetails",
    "RefundStatus",
    "RefundDetails",
    "HistoryItem",
    "OnchainFunding",
    "MpesaTransaction",
    "ApiEnvelope",
    "QuoteResult",
    "TransactionList",
    "QuoteRequest",
    "LiquidityPrecheckRequest",
    "OnrampSettlement",
    "OfframpSettlement",
    "PaybillSettlement",
    "BuygoodsSettlement",
    "SettlementRequest",
]
