"""
Wallet boundary.

The orchestrator never holds keys. It asks a `WalletSigner` to sign the
authorization message and to broadcast the funding transfer; whatever shape
the wallet returns for a signature is normalized by the signing module.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

from .models import PreparedTransaction

if TYPE_CHECKING:
    from ...providers.evm import EvmRpcProvider


class WalletSigner(ABC):
    """The user's connected wallet."""

    @property
    @abstractmethod
    def address(self) -> str:
        """Checksummed or lower-case 0x address of the account."""

    @abstractmethod
    async def sign_message(self, message: str) -> Any:
        """Sign a UTF-8 message (EIP-191 personal_sign); return the raw wallet result."""

    @abstractmethod
    async def send_transaction(self, tx: PreparedTransaction) -> str:
        """Sign and broadcast ``tx``; return its transaction hash."""


class JsonRpcWalletSigner(WalletSigner):
    """
    Account managed by the node behind a JSON-RPC endpoint.

    Works with development nodes and remote signers that expose the
    standard ``personal_sign`` / ``eth_sendTransaction`` methods.
    """

    def __init__(self, address: str, rpc: "EvmRpcProvider"):
        self._address = address
        self.rpc = rpc

    @property
    def address(self) -> str:
        return self._address

    async def sign_message(self, message: str) -> Any:
        encoded = "0x" + message.encode("utf-8").hex()
        return await self.rpc.rpc_call("personal_sign", [encoded, self._address])

    async def send_transaction(self, tx: PreparedTransaction) -> str:
        payload = tx.to_dict()
        payload["from"] = self._address
        return await self.rpc.rpc_call("eth_sendTransaction", [payload])
