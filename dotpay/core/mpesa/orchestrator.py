"""
M-Pesa transaction orchestration.

Drives one payment attempt through its stages:

    form -> confirm -> processing -> receipt

``create_quote`` validates the form and locks a price (form -> confirm).
``confirm_and_send`` authorizes, funds, settles and polls (confirm ->
processing -> receipt). Any failure after the quote returns the attempt to
``confirm`` with the quote and idempotency key intact, so the same call can
simply be retried; a funding transfer that already confirmed is reused
rather than sent twice.
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional, Union

from ...config import settings
from ...logging_config import bind_attempt_context, clear_attempt_context
from ...providers.mpesa import MpesaBackendClient
from ...types.mpesa import (
    FlowType,
    LiquidityPrecheckRequest,
    MpesaTargets,
    MpesaTransaction,
    QuoteRequest,
)
from ..errors import (
    BackendError,
    BackendNetworkError,
    BackendTimeoutError,
    InputValidationError,
    InvalidSignatureError,
    MpesaFlowError,
    OnchainFundingError,
    PinNotSetError,
    QuoteError,
    SettlementError,
    SubmissionInProgressError,
    extract_error_message,
)
from ..execution.funding import OnchainFundingSubmitter
from ..execution.models import NOT_REQUIRED, FundingResult
from ..execution.wallet import WalletSigner
from .phone import to_mpesa_phone
from .poller import PollHandle, PollResult, StatusPoller, UpdateCallback
from .settlement import build_settlement_request
from .signing import build_authorization_message, create_nonce, normalize_signature, utc_timestamp


logger = logging.getLogger(__name__)

_BUSINESS_NUMBER_RE = re.compile(r"^\d{5,8}$")
PIN_NOT_SET_MARKER = "pin is not set"


class FlowStage(str, Enum):
    FORM = "form"
    CONFIRM = "confirm"
    PROCESSING = "processing"
    RECEIPT = "receipt"


class FlowPhase(str, Enum):
    """Last step reached inside ``confirm_and_send``; reported with failures."""

    START = "start"
    SIGN_INTENT = "sign_intent"
    ONCHAIN_FUNDING = "onchain_funding"
    INITIATE = "initiate"
    POLL = "poll_transaction"


def new_idempotency_key(flow_type: FlowType) -> str:
    return f"{flow_type.value}:{uuid.uuid4()}"


@dataclass
class FlowAttempt:
    """Everything one orchestrator remembers about the payment in progress."""

    flow_type: FlowType
    targets: MpesaTargets
    amount: float
    currency: str = "KES"
    business_id: Optional[str] = None
    quote_transaction: Optional[MpesaTransaction] = None
    idempotency_key: Optional[str] = None
    stage: FlowStage = FlowStage.FORM
    phase: Optional[FlowPhase] = None
    last_error: Optional[MpesaFlowError] = None
    funding: Optional[FundingResult] = None
    transaction_id: Optional[str] = None
    last_transaction: Optional[MpesaTransaction] = None

    @property
    def quote_id(self) -> Optional[str]:
        if self.quote_transaction is None or self.quote_transaction.quote is None:
            return None
        return self.quote_transaction.quote.quote_id

    @property
    def current_transaction_id(self) -> Optional[str]:
        if self.transaction_id:
            return self.transaction_id
        if self.quote_transaction is not None:
            return self.quote_transaction.transaction_id
        return None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_amount(amount: Union[float, int, str, None]) -> float:
    try:
        value = float(amount)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        raise InputValidationError("Enter a valid amount.", field_name="amount") from None
    if not math.isfinite(value) or value <= 0:
        raise InputValidationError("Enter a valid amount.", field_name="amount")
    return value


def validate_targets(
    flow_type: FlowType,
    phone_number: Optional[str] = None,
    paybill_number: Optional[str] = None,
    till_number: Optional[str] = None,
    account_reference: Optional[str] = None,
) -> MpesaTargets:
    """Normalize the recipient fields a flow needs; raise InputValidationError otherwise."""
    if flow_type in (FlowType.ONRAMP, FlowType.OFFRAMP):
        phone = to_mpesa_phone(phone_number)
        if not phone:
            raise InputValidationError("Enter a valid M-Pesa phone number.", field_name="phone_number")
        return MpesaTargets(phone_number=phone)

    reference = (account_reference or "").strip()

    if flow_type is FlowType.PAYBILL:
        number = (paybill_number or "").strip()
        if not _BUSINESS_NUMBER_RE.match(number):
            raise InputValidationError("Enter a valid PayBill number.", field_name="paybill_number")
        if len(reference) < 2:
            raise InputValidationError("Enter the account reference.", field_name="account_reference")
        return MpesaTargets(paybill_number=number, account_reference=reference)

    till = (till_number or "").strip()
    if not _BUSINESS_NUMBER_RE.match(till):
        raise InputValidationError("Enter a valid till number.", field_name="till_number")
    return MpesaTargets(
        till_number=till,
        account_reference=reference or settings.default_account_reference,
    )


class TransactionOrchestrator:
    """
    Client-side coordinator for one M-Pesa payment at a time.

    Collaborators are injected: the backend client, the user's wallet, the
    funding submitter and the status poller. The wallet and submitter are
    only needed for flows that move crypto out of the wallet.
    """

    def __init__(
        self,
        backend: MpesaBackendClient,
        wallet: Optional[WalletSigner] = None,
        funding: Optional[OnchainFundingSubmitter] = None,
        poller: Optional[StatusPoller] = None,
        pin_length: Optional[int] = None,
        enforce_quote_expiry: Optional[bool] = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.backend = backend
        self.wallet = wallet
        self.funding = funding
        self.poller = poller or StatusPoller(backend.get_transaction)
        self.pin_length = pin_length or settings.pin_length
        self.enforce_quote_expiry = (
            settings.enforce_quote_expiry if enforce_quote_expiry is None else enforce_quote_expiry
        )
        self._now = now
        self._submit_lock = asyncio.Lock()
        self.attempt: Optional[FlowAttempt] = None

    # ------------------------------------------------------------------
    # Quote
    # ------------------------------------------------------------------

    async def create_quote(
        self,
        flow_type: FlowType,
        amount: Union[float, int, str],
        phone_number: Optional[str] = None,
        paybill_number: Optional[str] = None,
        till_number: Optional[str] = None,
        account_reference: Optional[str] = None,
        currency: str = "KES",
        business_id: Optional[str] = None,
    ) -> MpesaTransaction:
        """Validate the form, request a quote and move to ``confirm``."""
        flow_type = FlowType(flow_type)
        value = _parse_amount(amount)
        targets = validate_targets(flow_type, phone_number, paybill_number, till_number, account_reference)

        request = QuoteRequest(
            flow_type=flow_type,
            amount=value,
            currency=currency,
            business_id=business_id,
            **targets.model_dump(exclude_none=True),
        )

        await self.backend.refresh_token()
        try:
            result = await self.backend.create_quote(request)
        except (BackendNetworkError, BackendTimeoutError):
            raise
        except BackendError as exc:
            raise QuoteError(exc.message or "Failed to create quote.") from exc

        transaction = result.transaction
        if transaction.quote is None:
            transaction = transaction.model_copy(update={"quote": result.quote})

        # A new quote always starts a new attempt with a fresh key.
        if self.attempt is not None and self.attempt.transaction_id:
            self.poller.stop(self.attempt.transaction_id)
        self.attempt = FlowAttempt(
            flow_type=flow_type,
            targets=targets,
            amount=value,
            currency=currency,
            business_id=business_id,
            quote_transaction=transaction,
            idempotency_key=new_idempotency_key(flow_type),
            stage=FlowStage.CONFIRM,
        )
        logger.info(
            "Quote %s created for %s (%s %s, total debit %s KES)",
            result.quote.quote_id,
            flow_type.value,
            value,
            currency,
            result.quote.total_debit_kes,
        )
        return transaction

    # ------------------------------------------------------------------
    # Confirm and send
    # ------------------------------------------------------------------

    def _normalize_pin(self, pin: Optional[str]) -> str:
        normalized = (pin or "").strip()
        if not normalized.isdigit() or len(normalized) != self.pin_length:
            raise InputValidationError(f"Enter your {self.pin_length}-digit app PIN.", field_name="pin")
        return normalized

    def _check_quote_expiry(self, tx: MpesaTransaction) -> None:
        if tx.quote is None or not tx.quote.is_expired(self._now()):
            return
        if self.enforce_quote_expiry:
            raise QuoteError("Quote has expired. Request a new quote.")
        logger.warning("Quote %s has expired; submitting anyway", tx.quote.quote_id)

    async def _sign_intent(self, tx: MpesaTransaction, signed_at: str, nonce: str) -> str:
        if self.wallet is None:
            raise InvalidSignatureError(
                "Wallet signer is unavailable. Reconnect your wallet to authorize this transfer."
            )
        message = build_authorization_message(tx, signed_at, nonce)
        raw = await self.wallet.sign_message(message)
        return normalize_signature(raw)

    async def _fund(self, tx: MpesaTransaction) -> FundingResult:
        if not tx.requires_funding:
            return NOT_REQUIRED
        if self.funding is None:
            raise OnchainFundingError(
                "Wallet signer is unavailable. Reconnect your wallet to authorize this transfer."
            )
        return await self.funding.submit(tx)

    def _track(self, on_update: Optional[UpdateCallback]) -> UpdateCallback:
        def record(tx: MpesaTransaction) -> None:
            if self.attempt is not None:
                self.attempt.last_transaction = tx
            if on_update is not None:
                on_update(tx)

        return record

    async def confirm_and_send(
        self,
        pin: Optional[str] = None,
        on_update: Optional[UpdateCallback] = None,
        handle: Optional[PollHandle] = None,
    ) -> PollResult:
        """
        Authorize, fund, settle and poll the quoted transaction.

        Returns the poll result; a timed-out poll leaves the attempt in
        ``processing`` for manual refresh. Raises a ``MpesaFlowError`` with
        the attempt's identifiers in its context on any failure, and
        ``SubmissionInProgressError`` while an earlier call is still running.
        """
        if self._submit_lock.locked():
            raise SubmissionInProgressError("A payment is already being submitted. Wait for it to finish.")
        async with self._submit_lock:
            return await self._confirm_and_send(pin, on_update, handle)

    async def _confirm_and_send(
        self,
        pin: Optional[str],
        on_update: Optional[UpdateCallback],
        handle: Optional[PollHandle],
    ) -> PollResult:
        attempt = self.attempt
        if attempt is None or attempt.quote_transaction is None or not attempt.quote_id:
            raise InputValidationError("Missing quote. Start again.", field_name="quote")

        tx = attempt.quote_transaction
        flow = attempt.flow_type
        normalized_pin = self._normalize_pin(pin) if flow.requires_authorization else None
        self._check_quote_expiry(tx)

        if not attempt.idempotency_key:
            attempt.idempotency_key = new_idempotency_key(flow)

        attempt.stage = FlowStage.PROCESSING
        attempt.phase = FlowPhase.START
        attempt.last_error = None
        bind_attempt_context(
            flow_type=flow.value,
            quote_id=attempt.quote_id,
            idempotency_key=attempt.idempotency_key,
        )

        try:
            await self.backend.refresh_token()

            signature = signed_at = nonce = None
            if flow.requires_authorization:
                attempt.phase = FlowPhase.SIGN_INTENT
                signed_at = utc_timestamp(self._now())
                nonce = create_nonce()
                signature = await self._sign_intent(tx, signed_at, nonce)

                attempt.phase = FlowPhase.ONCHAIN_FUNDING
                if attempt.funding is None:
                    attempt.funding = await self._fund(tx)
                elif attempt.funding.funded:
                    logger.info("Reusing confirmed funding transfer %s", attempt.funding.onchain_tx_hash)

            attempt.phase = FlowPhase.INITIATE
            request = build_settlement_request(
                tx,
                pin=normalized_pin,
                signature=signature,
                signed_at=signed_at,
                nonce=nonce,
                funding=attempt.funding,
                business_id=attempt.business_id,
                targets=attempt.targets,
            )
            initiated = await self._initiate(request, attempt.idempotency_key)

            attempt.transaction_id = initiated.transaction_id
            attempt.last_transaction = initiated
            bind_attempt_context(transaction_id=initiated.transaction_id)
            logger.info("Settlement initiated: transaction %s is %s", initiated.transaction_id, initiated.status.value)

            attempt.phase = FlowPhase.POLL
            result = await self.poller.poll(
                initiated.transaction_id,
                on_update=self._track(on_update),
                handle=handle,
            )
            if result.transaction is not None:
                attempt.last_transaction = result.transaction
            attempt.stage = FlowStage.RECEIPT if result.is_terminal else FlowStage.PROCESSING
            return result

        except Exception as exc:
            error = self._normalize_error(exc, attempt)
            attempt.stage = FlowStage.CONFIRM
            attempt.last_error = error
            logger.error(
                "M-Pesa submit failed phase=%s: %s",
                attempt.phase.value if attempt.phase else None,
                error.message,
            )
            if error is exc:
                raise
            raise error from exc
        finally:
            clear_attempt_context()

    async def _initiate(self, request: Any, idempotency_key: str) -> MpesaTransaction:
        try:
            return await self.backend.initiate(request, idempotency_key)
        except (BackendNetworkError, BackendTimeoutError):
            raise
        except BackendError as exc:
            message = exc.message or "Failed to submit transaction."
            if PIN_NOT_SET_MARKER in message.lower():
                raise PinNotSetError(message, status_code=exc.status_code) from exc
            raise SettlementError(message, status_code=exc.status_code) from exc

    def _normalize_error(self, exc: BaseException, attempt: FlowAttempt) -> MpesaFlowError:
        if isinstance(exc, MpesaFlowError):
            error = exc
        elif attempt.phase is FlowPhase.SIGN_INTENT:
            error = InvalidSignatureError(extract_error_message(exc))
        elif attempt.phase is FlowPhase.ONCHAIN_FUNDING:
            error = OnchainFundingError(extract_error_message(exc))
        else:
            error = MpesaFlowError(extract_error_message(exc))

        context = error.context
        context.phase = attempt.phase.value if attempt.phase else None
        context.quote_id = attempt.quote_id
        context.idempotency_key = attempt.idempotency_key
        context.transaction_id = attempt.current_transaction_id
        if attempt.funding is not None and attempt.funding.funded:
            context.tx_hash = context.tx_hash or attempt.funding.onchain_tx_hash
            context.chain_id = context.chain_id or attempt.funding.chain_id
        return error

    # ------------------------------------------------------------------
    # Status, reset, liquidity
    # ------------------------------------------------------------------

    async def refresh(self) -> MpesaTransaction:
        """Fetch the attempt's transaction once; moves to ``receipt`` when terminal."""
        attempt = self.attempt
        transaction_id = attempt.current_transaction_id if attempt else None
        if attempt is None or not transaction_id:
            raise InputValidationError("No transaction to refresh.", field_name="transaction_id")

        await self.backend.refresh_token()
        tx = await self.poller.refresh(transaction_id)
        attempt.last_transaction = tx
        if tx.is_terminal:
            attempt.stage = FlowStage.RECEIPT
        return tx

    def cancel_polling(self) -> None:
        if self.attempt is not None and self.attempt.transaction_id:
            self.poller.stop(self.attempt.transaction_id)

    def reset(self) -> None:
        """Discard the attempt, its quote and its idempotency key."""
        self.cancel_polling()
        self.attempt = None

    async def precheck_liquidity(self) -> Dict[str, Any]:
        attempt = self.attempt
        if attempt is None or not attempt.quote_id:
            raise InputValidationError("Missing quote. Start again.", field_name="quote")
        await self.backend.refresh_token()
        return await self.backend.precheck_liquidity(
            LiquidityPrecheckRequest(quote_id=attempt.quote_id, flow_type=attempt.flow_type)
        )

    @property
    def stage(self) -> FlowStage:
        return self.attempt.stage if self.attempt else FlowStage.FORM

    @property
    def idempotency_key(self) -> Optional[str]:
        return self.attempt.idempotency_key if self.attempt else None
