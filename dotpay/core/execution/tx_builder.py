"""
ERC-20 calldata encoding for treasury funding transfers.
"""

import secrets
from typing import Optional

from .models import PreparedTransaction


ERC20_TRANSFER_SELECTOR = "0xa9059cbb"  # transfer(address,uint256)

MAX_UINT256 = 2**256 - 1


def _encode_uint256(value: int) -> str:
    """Encode a uint256 as a 32-byte hex string (without 0x prefix)."""
    if value < 0 or value > MAX_UINT256:
        raise ValueError(f"uint256 out of range: {value}")
    return format(value, "064x")


def _encode_address(address: str) -> str:
    """Encode an address as a 32-byte hex string (without 0x prefix)."""
    addr = address.lower().replace("0x", "")
    return addr.zfill(64)


class TransactionBuilder:
    """Builds the transactions the funding stage hands to the wallet."""

    @staticmethod
    def generate_tx_id() -> str:
        return f"tx_{secrets.token_hex(16)}"

    @staticmethod
    def build_erc20_transfer(
        chain_id: int,
        from_address: str,
        token_address: str,
        to_address: str,
        amount: int,
        description: str = "",
        quote_id: Optional[str] = None,
    ) -> PreparedTransaction:
        """
        Build an ERC20 transfer transaction.

        Args:
            chain_id: The chain ID
            from_address: The sender address
            token_address: The ERC20 token contract
            to_address: The recipient address
            amount: The amount to transfer (in smallest units)
            description: Human-readable description
            quote_id: Quote the transfer funds

        Returns:
            PreparedTransaction ready to be signed
        """
        calldata = (
            ERC20_TRANSFER_SELECTOR +
            _encode_address(to_address) +
            _encode_uint256(amount)
        )

        return PreparedTransaction(
            tx_id=TransactionBuilder.generate_tx_id(),
            chain_id=chain_id,
            from_address=from_address.lower(),
            to_address=token_address.lower(),
            data=calldata,
            value=0,
            description=description or f"Transfer tokens to {to_address[:10]}...",
            quote_id=quote_id,
        )
