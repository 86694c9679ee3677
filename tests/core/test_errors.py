"""
Tests for payment flow errors and log redaction
"""

import pytest
import structlog

from dotpay.core.errors import (
    BackendNetworkError,
    ErrorCategory,
    FundingPreconditionError,
    InputValidationError,
    OnchainFundingError,
    PinNotSetError,
    SettlementError,
    extract_error_message,
)
from dotpay.logging_config import _redact_secrets, bind_attempt_context, clear_attempt_context


class TestErrorContext:
    """Tests for the identifiers carried by errors."""

    def test_categories(self):
        assert InputValidationError("bad").context.category is ErrorCategory.VALIDATION
        assert FundingPreconditionError("bad").context.category is ErrorCategory.FUNDING_PRECONDITION
        assert BackendNetworkError().context.category is ErrorCategory.NETWORK
        assert isinstance(PinNotSetError("PIN is not set"), SettlementError)

    def test_precondition_errors_are_not_recoverable(self):
        assert FundingPreconditionError("bad").context.recoverable is False
        assert SettlementError("bad").context.recoverable is True

    def test_onchain_error_carries_hash(self):
        error = OnchainFundingError("reverted", tx_hash="0xabc", chain_id=42161)

        assert error.context.to_dict() == {
            "category": "onchain",
            "recoverable": True,
            "suggested_action": OnchainFundingError.suggested_action,
            "tx_hash": "0xabc",
            "chain_id": 42161,
        }

    def test_field_in_details(self):
        error = InputValidationError("Enter a valid amount.", field_name="amount")

        assert error.field == "amount"
        assert error.context.to_dict()["details"] == {"field": "amount"}
        assert str(error) == "Enter a valid amount."

    def test_contexts_are_not_shared(self):
        first = SettlementError("a", status_code=400)
        second = SettlementError("b")

        first.context.quote_id = "q_1"

        assert second.context.quote_id is None
        assert "status_code" not in second.context.details


class TestExtractErrorMessage:
    """Tests for reducing arbitrary exceptions to one message."""

    def test_plain_exception(self):
        assert extract_error_message(RuntimeError(" boom ")) == "boom"

    def test_short_message_attribute(self):
        class WalletError(Exception):
            short_message = "User rejected the request."

        assert extract_error_message(WalletError("long technical text")) == "User rejected the request."

    def test_falls_back_to_cause(self):
        try:
            try:
                raise ValueError("inner failure")
            except ValueError as inner:
                raise RuntimeError() from inner
        except RuntimeError as outer:
            assert extract_error_message(outer) == "inner failure"

    def test_default(self):
        assert extract_error_message(RuntimeError()) == "Failed to submit transaction."
        assert extract_error_message(RuntimeError(), "Other") == "Other"


class TestLogging:

    @pytest.mark.parametrize("key", ["pin", "signature", "token", "Authorization"])
    def test_secrets_redacted(self, key):
        event = _redact_secrets(None, "info", {"event": "x", key: "secret"})

        assert event[key] == "[redacted]"
        assert event["event"] == "x"

    def test_attempt_context_bound_and_cleared(self):
        structlog.contextvars.clear_contextvars()
        bind_attempt_context(flow_type="offramp", quote_id="q_1", transaction_id=None)

        assert structlog.contextvars.get_contextvars() == {"flow_type": "offramp", "quote_id": "q_1"}

        clear_attempt_context()

        assert structlog.contextvars.get_contextvars() == {}
