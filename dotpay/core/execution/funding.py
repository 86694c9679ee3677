"""
On-chain funding stage.

Moves the quoted token amount from the user's wallet to the treasury and
waits for the network to confirm it. Nothing is dispatched unless every
funding precondition on the quote holds.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from eth_utils import to_checksum_address

from ...config import settings
from ...providers.evm import EvmRpcProvider
from ...types.mpesa import MpesaTransaction
from ..errors import FundingPreconditionError, OnchainFundingError, extract_error_message
from .models import NOT_REQUIRED, FundingResult, OnchainStatus
from .tx_builder import TransactionBuilder
from .wallet import WalletSigner


logger = logging.getLogger(__name__)

_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_UNITS_RE = re.compile(r"^[0-9]+$")


@dataclass(frozen=True)
class FundingPlan:
    """Validated transfer parameters taken from a quote."""
    amount_units: int
    treasury_address: str
    token_address: str
    chain_id: int


def plan_funding(
    tx: MpesaTransaction,
    active_chain_id: int,
    fallback_token_address: Optional[str] = None,
) -> Optional[FundingPlan]:
    """
    Check the quote's funding descriptor.

    Returns None when the quote does not need an on-chain leg. Raises
    FundingPreconditionError for the first failing precondition.
    """
    onchain = tx.onchain
    if onchain is None or not onchain.required:
        return None

    expected_units = (onchain.expected_amount_units or "").strip()
    treasury = (onchain.treasury_address or "").strip()
    token = (onchain.token_address or "").strip() or (fallback_token_address or "").strip()
    chain_id = onchain.chain_id if onchain.chain_id is not None else active_chain_id

    if not _UNITS_RE.match(expected_units):
        raise FundingPreconditionError("Quote is missing the required USDC funding amount.")
    if not _ADDRESS_RE.match(treasury):
        raise FundingPreconditionError("Treasury address is not configured correctly.")
    if not _ADDRESS_RE.match(token):
        raise FundingPreconditionError("USDC contract address is not configured correctly.")
    if chain_id != active_chain_id:
        raise FundingPreconditionError(
            f"Wrong chain for funding. Expected chain {active_chain_id}, quote uses chain {chain_id}."
        )

    return FundingPlan(
        amount_units=int(expected_units),
        treasury_address=treasury,
        token_address=token,
        chain_id=chain_id,
    )


class OnchainFundingSubmitter:
    """Sends the treasury transfer for a quote and blocks until it is confirmed."""

    def __init__(
        self,
        wallet: WalletSigner,
        rpc: EvmRpcProvider,
        chain_id: Optional[int] = None,
        fallback_token_address: Optional[str] = None,
        confirmation_timeout_seconds: Optional[float] = None,
        required_confirmations: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ):
        self.wallet = wallet
        self.rpc = rpc
        self.chain_id = chain_id if chain_id is not None else settings.chain_id
        self.fallback_token_address = (
            fallback_token_address if fallback_token_address is not None else settings.usdc_address
        )
        self.confirmation_timeout_seconds = confirmation_timeout_seconds
        self.required_confirmations = required_confirmations
        self.poll_interval = poll_interval

    def plan(self, tx: MpesaTransaction) -> Optional[FundingPlan]:
        return plan_funding(tx, self.chain_id, self.fallback_token_address)

    async def submit(self, tx: MpesaTransaction) -> FundingResult:
        plan = self.plan(tx)
        if plan is None:
            return NOT_REQUIRED

        prepared = TransactionBuilder.build_erc20_transfer(
            chain_id=plan.chain_id,
            from_address=self.wallet.address,
            token_address=plan.token_address,
            to_address=plan.treasury_address,
            amount=plan.amount_units,
            description=f"Fund {tx.flow_type.value} {tx.transaction_id}",
            quote_id=tx.quote.quote_id if tx.quote else None,
        )

        try:
            tx_hash = await self.wallet.send_transaction(prepared)
        except Exception as exc:
            raise OnchainFundingError(extract_error_message(exc), chain_id=plan.chain_id) from exc

        logger.info(
            "Funding transfer submitted: %s units to %s on chain %s (tx %s)",
            plan.amount_units,
            to_checksum_address(plan.treasury_address),
            plan.chain_id,
            tx_hash,
        )

        try:
            result = await self.rpc.wait_for_receipt(
                tx_hash,
                timeout_seconds=self.confirmation_timeout_seconds,
                required_confirmations=self.required_confirmations,
                poll_interval=self.poll_interval,
            )
        except Exception as exc:
            raise OnchainFundingError(
                extract_error_message(exc), tx_hash=tx_hash, chain_id=plan.chain_id
            ) from exc

        if result.status is not OnchainStatus.CONFIRMED:
            reason = result.error or f"Funding transfer ended as {result.status.value}"
            raise OnchainFundingError(
                f"{reason}. Transfer hash: {tx_hash}",
                tx_hash=tx_hash,
                chain_id=plan.chain_id,
            )

        return FundingResult(
            onchain_tx_hash=tx_hash,
            chain_id=plan.chain_id,
            amount_units=plan.amount_units,
            treasury_address=to_checksum_address(plan.treasury_address),
        )
