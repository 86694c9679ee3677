"""
Payment flow errors.

Every failure that can reach a user is an `MpesaFlowError` carrying a
human-readable message plus an `ErrorContext` with enough identifiers
(quote, idempotency key, funding hash) to reconcile an ambiguous outcome.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


DEFAULT_ERROR_MESSAGE = "Failed to submit transaction."


class ErrorCategory(str, Enum):
    """Where in the flow an error originated."""

    VALIDATION = "validation"                      # Bad user input, caught before any call
    QUOTE = "quote"                                # Backend rejected quote parameters
    FUNDING_PRECONDITION = "funding_precondition"  # Quote funding parameters unusable
    ONCHAIN = "onchain"                            # Wallet or network failed the transfer
    AUTHORIZATION = "authorization"                # Signature could not be produced
    SETTLEMENT = "settlement"                      # Backend rejected the payment intent
    BACKEND = "backend"                            # Non-2xx or success=false from backend
    NETWORK = "network"                            # Transport could not reach the backend
    TIMEOUT = "timeout"                            # Transport timed out
    UNKNOWN = "unknown"


@dataclass
class ErrorContext:
    """Identifiers attached to an error for display and manual reconciliation."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    suggested_action: Optional[str] = None
    phase: Optional[str] = None
    transaction_id: Optional[str] = None
    quote_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    tx_hash: Optional[str] = None
    chain_id: Optional[int] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "category": self.category.value,
            "recoverable": self.recoverable,
            "suggested_action": self.suggested_action,
            "phase": self.phase,
            "transaction_id": self.transaction_id,
            "quote_id": self.quote_id,
            "idempotency_key": self.idempotency_key,
            "tx_hash": self.tx_hash,
            "chain_id": self.chain_id,
        }
        data = {key: value for key, value in data.items() if value is not None}
        if self.details:
            data["details"] = dict(self.details)
        return data


class MpesaFlowError(Exception):
    """Base class for every user-facing payment flow failure."""

    category: ErrorCategory = ErrorCategory.UNKNOWN
    recoverable: bool = True
    suggested_action: Optional[str] = None

    def __init__(
        self,
        message: str,
        context: Optional[ErrorContext] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = context or ErrorContext(
            category=self.category,
            recoverable=self.recoverable,
            suggested_action=self.suggested_action,
        )

    def __str__(self) -> str:
        return self.message


class InputValidationError(MpesaFlowError):
    """Form input rejected before any network call."""

    category = ErrorCategory.VALIDATION
    recoverable = False
    suggested_action = "Correct the highlighted field"

    def __init__(self, message: str, field_name: Optional[str] = None):
        super().__init__(message)
        self.field = field_name
        if field_name:
            self.context.details["field"] = field_name


class QuoteError(MpesaFlowError):
    category = ErrorCategory.QUOTE
    suggested_action = "Check the amount and recipient, then request a new quote"


class FundingPreconditionError(MpesaFlowError):
    """Quote funding parameters are missing, malformed or for the wrong chain."""

    category = ErrorCategory.FUNDING_PRECONDITION
    recoverable = False
    suggested_action = "Request a new quote or switch the wallet to the expected network"


class OnchainFundingError(MpesaFlowError):
    """The treasury transfer was rejected, reverted or never confirmed."""

    category = ErrorCategory.ONCHAIN
    suggested_action = "Check the wallet and retry; contact support with the transfer hash if funds left the wallet"

    def __init__(
        self,
        message: str,
        tx_hash: Optional[str] = None,
        chain_id: Optional[int] = None,
    ):
        super().__init__(message)
        self.context.tx_hash = tx_hash
        self.context.chain_id = chain_id


class InvalidSignatureError(MpesaFlowError):
    category = ErrorCategory.AUTHORIZATION
    suggested_action = "Reconnect the wallet and try again"


class BackendError(MpesaFlowError):
    """Backend answered with a non-2xx status or `success: false`."""

    category = ErrorCategory.BACKEND

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        payload: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload
        if status_code is not None:
            self.context.details["status_code"] = status_code


class BackendNetworkError(BackendError):
    category = ErrorCategory.NETWORK
    suggested_action = "Check your connection and retry; the same request is safe to resend"

    def __init__(self, message: str = "Network request failed"):
        super().__init__(message, status_code=0)


class BackendTimeoutError(BackendError):
    category = ErrorCategory.TIMEOUT
    suggested_action = "Retry; the same request is safe to resend"

    def __init__(self, message: str = "Request timed out"):
        super().__init__(message, status_code=0)


class SettlementError(MpesaFlowError):
    """Backend rejected the payment intent (PIN, expiry, signature, liquidity)."""

    category = ErrorCategory.SETTLEMENT
    suggested_action = "Correct the input and retry; the payment will not be charged twice"

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code
        if status_code is not None:
            self.context.details["status_code"] = status_code


class PinNotSetError(SettlementError):
    suggested_action = "Set an app PIN before sending payments"


class SubmissionInProgressError(MpesaFlowError):
    """Another confirm-and-send for the same attempt has not finished yet."""

    category = ErrorCategory.VALIDATION
    recoverable = False
    suggested_action = "Wait for the current payment to finish"


def extract_error_message(error: BaseException, fallback: str = DEFAULT_ERROR_MESSAGE) -> str:
    """
    Reduce any exception to a single user-facing message.

    Wallet and RPC libraries hide the useful text in different attributes,
    so those are probed before falling back.
    """
    if isinstance(error, MpesaFlowError) and error.message.strip():
        return error.message.strip()

    for attr in ("message", "short_message", "reason", "details"):
        candidate = getattr(error, attr, None)
        if isinstance(candidate, str) and candidate.strip():
            return candidate.strip()

    text = str(error).strip()
    if text:
        return text

    cause = error.__cause__ or error.__context__
    if cause is not None and cause is not error:
        return extract_error_message(cause, fallback)

    return fallback


__all__ = [
    "DEFAULT_ERROR_MESSAGE",
    "ErrorCategory",
    "ErrorContext",
    "MpesaFlowError",
    "InputValidationError",
    "QuoteError",
    "FundingPreconditionError",
    "OnchainFundingError",
    "InvalidSignatureError",
    "BackendError",
    "BackendNetworkError",
    "BackendTimeoutError",
    "SettlementError",
    "PinNotSetError",
    "SubmissionInProgressError",
    "extract_error_message",
]
