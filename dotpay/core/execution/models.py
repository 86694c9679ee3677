"""
On-chain funding models.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OnchainStatus(str, Enum):
    """Lifecycle of a funding transfer as seen from the client."""
    PENDING = "pending"          # Built, not yet handed to the wallet
    SUBMITTED = "submitted"      # Wallet returned a hash
    CONFIRMING = "confirming"    # Mined, waiting for confirmations
    CONFIRMED = "confirmed"      # Enough confirmations
    REVERTED = "reverted"        # Mined with status 0x0
    TIMEOUT = "timeout"          # No receipt within the confirmation window


@dataclass
class PreparedTransaction:
    """A token transfer ready for the wallet to sign and broadcast."""
    tx_id: str                                  # Internal tracking ID
    chain_id: int
    from_address: str
    to_address: str                             # Token contract for ERC-20 calls
    data: str                                   # Encoded calldata (hex)
    value: int = 0                              # Native value, zero for token transfers

    description: str = ""
    quote_id: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-RPC transaction object (hex quantities)."""
        tx = {
            "to": self.to_address,
            "data": self.data,
            "value": hex(self.value),
            "chainId": hex(self.chain_id),
        }
        if self.from_address:
            tx["from"] = self.from_address
        return tx


@dataclass
class TransactionResult:
    """Outcome of waiting on a submitted transfer."""
    tx_hash: str
    chain_id: int
    status: OnchainStatus = OnchainStatus.SUBMITTED

    block_number: Optional[int] = None
    block_hash: Optional[str] = None
    gas_used: Optional[int] = None
    confirmations: int = 0

    submitted_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None

    error: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.status == OnchainStatus.CONFIRMED


@dataclass(frozen=True)
class FundingResult:
    """What the settlement call needs to know about funding.

    Both fields are None when the quote did not require an on-chain leg.
    """
    onchain_tx_hash: Optional[str] = None
    chain_id: Optional[int] = None
    amount_units: Optional[int] = None
    treasury_address: Optional[str] = None

    @property
    def funded(self) -> bool:
        return self.onchain_tx_hash is not None


NOT_REQUIRED = FundingResult()
