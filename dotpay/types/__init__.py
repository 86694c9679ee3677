from .mpesa import (
    ApiEnvelope,
    BuygoodsSettlement,
    FlowType,
    MpesaQuote,
    MpesaTargets,
    MpesaTransaction,
    OfframpSettlement,
    OnrampSettlement,
    PaybillSettlement,
    QuoteRequest,
    QuoteResult,
    SettlementRequest,
    TERMINAL_STATUSES,
    TransactionStatus,
)

__all__ = [
    "ApiEnvelope",
    "BuygoodsSettlement",
    "FlowType",
    "MpesaQuote",
    "MpesaTargets",
    "MpesaTransaction",
    "OfframpSettlement",
    "OnrampSettlement",
    "PaybillSettlement",
    "QuoteRequest",
    "QuoteResult",
    "SettlementRequest",
    "TERMINAL_STATUSES",
    "TransactionStatus",
]
