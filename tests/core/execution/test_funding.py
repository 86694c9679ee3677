"""
Tests for the on-chain funding stage
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from dotpay.core.errors import FundingPreconditionError, OnchainFundingError
from dotpay.core.execution.funding import OnchainFundingSubmitter, plan_funding
from dotpay.core.execution.models import NOT_REQUIRED, OnchainStatus, PreparedTransaction, TransactionResult
from dotpay.core.execution.tx_builder import ERC20_TRANSFER_SELECTOR, TransactionBuilder

from conftest import FUNDING_TX_HASH, TREASURY_ADDRESS, USDC_ADDRESS, WALLET_ADDRESS


def _with_onchain(make_transaction, **onchain):
    tx = make_transaction("offramp")
    return tx.model_copy(update={"onchain": tx.onchain.model_copy(update=onchain)})


def _submitter(status=OnchainStatus.CONFIRMED, error=None):
    wallet = MagicMock()
    wallet.address = WALLET_ADDRESS
    wallet.send_transaction = AsyncMock(return_value=FUNDING_TX_HASH)
    rpc = MagicMock()
    rpc.wait_for_receipt = AsyncMock(return_value=TransactionResult(
        tx_hash=FUNDING_TX_HASH, chain_id=42161, status=status, error=error,
    ))
    submitter = OnchainFundingSubmitter(
        wallet=wallet,
        rpc=rpc,
        chain_id=42161,
        fallback_token_address=USDC_ADDRESS,
        confirmation_timeout_seconds=60,
        required_confirmations=2,
        poll_interval=0.5,
    )
    return submitter, wallet, rpc


# =============================================================================
# Preconditions
# =============================================================================

class TestPlanFunding:
    """Tests for funding precondition checks."""

    def test_valid_plan(self, make_transaction):
        plan = plan_funding(make_transaction("offramp"), 42161)

        assert plan.amount_units == 6560000
        assert plan.treasury_address == TREASURY_ADDRESS
        assert plan.token_address == USDC_ADDRESS
        assert plan.chain_id == 42161

    def test_not_required(self, make_transaction):
        assert plan_funding(make_transaction("onramp"), 42161) is None
        assert plan_funding(make_transaction("offramp", onchain_required=False), 42161) is None
        assert plan_funding(_with_onchain(make_transaction, required=False), 42161) is None

    @pytest.mark.parametrize("units", [None, "", "6.56", "-1", "abc", "６５６００００", "٦٥٦٠٠٠٠"])
    def test_units_must_be_integer_string(self, make_transaction, units):
        tx = _with_onchain(make_transaction, expected_amount_units=units)

        with pytest.raises(FundingPreconditionError, match="funding amount"):
            plan_funding(tx, 42161)

    def test_treasury_must_be_address(self, make_transaction):
        tx = _with_onchain(make_transaction, treasury_address="0x" + "2" * 39)

        with pytest.raises(FundingPreconditionError, match="Treasury"):
            plan_funding(tx, 42161)

    def test_token_falls_back_then_validates(self, make_transaction):
        tx = _with_onchain(make_transaction, token_address=None)

        assert plan_funding(tx, 42161, USDC_ADDRESS).token_address == USDC_ADDRESS
        with pytest.raises(FundingPreconditionError, match="USDC contract"):
            plan_funding(tx, 42161, None)

    def test_chain_mismatch(self, make_transaction):
        tx = _with_onchain(make_transaction, chain_id=421614)

        with pytest.raises(FundingPreconditionError, match="Expected chain 42161, quote uses chain 421614"):
            plan_funding(tx, 42161)

    def test_missing_chain_uses_active(self, make_transaction):
        tx = _with_onchain(make_transaction, chain_id=None)

        assert plan_funding(tx, 42161).chain_id == 42161


# =============================================================================
# Submission
# =============================================================================

class TestOnchainFundingSubmitter:
    """Tests for sending and confirming the treasury transfer."""

    @pytest.mark.asyncio
    async def test_confirmed_transfer(self, make_transaction):
        submitter, wallet, rpc = _submitter()

        result = await submitter.submit(make_transaction("offramp"))

        assert result.funded
        assert result.onchain_tx_hash == FUNDING_TX_HASH
        assert result.chain_id == 42161
        assert result.amount_units == 6560000

        prepared = wallet.send_transaction.await_args.args[0]
        assert isinstance(prepared, PreparedTransaction)
        assert prepared.to_address == USDC_ADDRESS.lower()
        assert prepared.value == 0
        assert prepared.quote_id == "q_123"
        assert prepared.data == (
            ERC20_TRANSFER_SELECTOR
            + TREASURY_ADDRESS[2:].lower().zfill(64)
            + format(6560000, "064x")
        )

        rpc.wait_for_receipt.assert_awaited_once_with(
            FUNDING_TX_HASH,
            timeout_seconds=60,
            required_confirmations=2,
            poll_interval=0.5,
        )

    @pytest.mark.asyncio
    async def test_not_required_sends_nothing(self, make_transaction):
        submitter, wallet, _ = _submitter()

        assert await submitter.submit(make_transaction("onramp")) is NOT_REQUIRED
        wallet.send_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_precondition_failure_sends_nothing(self, make_transaction):
        submitter, wallet, _ = _submitter()

        with pytest.raises(FundingPreconditionError):
            await submitter.submit(_with_onchain(make_transaction, chain_id=1))

        wallet.send_transaction.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_wallet_rejection(self, make_transaction):
        submitter, wallet, rpc = _submitter()
        wallet.send_transaction.side_effect = RuntimeError("User rejected the request")

        with pytest.raises(OnchainFundingError, match="User rejected the request") as exc_info:
            await submitter.submit(make_transaction("offramp"))

        assert exc_info.value.context.tx_hash is None
        assert exc_info.value.context.chain_id == 42161
        rpc.wait_for_receipt.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, error",
        [
            (OnchainStatus.REVERTED, "Transaction reverted"),
            (OnchainStatus.TIMEOUT, "Confirmation timeout after 60s"),
        ],
    )
    async def test_unconfirmed_transfer_reports_hash(self, make_transaction, status, error):
        submitter, _, _ = _submitter(status=status, error=error)

        with pytest.raises(OnchainFundingError) as exc_info:
            await submitter.submit(make_transaction("offramp"))

        assert exc_info.value.message == f"{error}. Transfer hash: {FUNDING_TX_HASH}"
        assert exc_info.value.context.tx_hash == FUNDING_TX_HASH

    @pytest.mark.asyncio
    async def test_rpc_failure_keeps_hash(self, make_transaction):
        submitter, _, rpc = _submitter()
        rpc.wait_for_receipt.side_effect = ConnectionError("node unreachable")

        with pytest.raises(OnchainFundingError, match="node unreachable") as exc_info:
            await submitter.submit(make_transaction("offramp"))

        assert exc_info.value.context.tx_hash == FUNDING_TX_HASH


def test_transfer_amount_out_of_range():
    with pytest.raises(ValueError):
        TransactionBuilder.build_erc20_transfer(
            chain_id=42161,
            from_address=WALLET_ADDRESS,
            token_address=USDC_ADDRESS,
            to_address=TREASURY_ADDRESS,
            amount=-1,
        )
