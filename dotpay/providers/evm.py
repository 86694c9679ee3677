"""
JSON-RPC access to the funding chain.

Only the calls the funding stage needs: receipts, the head block and a
confirmation wait built on top of them.
"""

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, List, Optional

import httpx

from ..config import settings
from ..core.execution.models import OnchainStatus, TransactionResult


logger = logging.getLogger(__name__)


class RpcError(Exception):
    """The node answered with a JSON-RPC error object."""

    def __init__(self, message: str, code: Optional[int] = None, data: Any = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data


class EvmRpcProvider:
    """Thin async JSON-RPC client bound to one chain."""

    def __init__(
        self,
        rpc_url: Optional[str] = None,
        chain_id: Optional[int] = None,
        timeout_s: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.rpc_url = rpc_url or settings.rpc_url
        self.chain_id = chain_id if chain_id is not None else settings.chain_id
        self.timeout_s = timeout_s
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._request_id = 0

        if not self.rpc_url:
            raise ValueError(f"No RPC URL configured for chain {self.chain_id}")

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport)
        return self._client

    async def rpc_call(self, method: str, params: List[Any]) -> Any:
        """Make an RPC call and return its ``result``."""
        client = await self._get_client()
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": self._request_id,
        }

        response = await client.post(self.rpc_url, json=payload)
        response.raise_for_status()
        result = response.json()

        error = result.get("error")
        if error:
            if isinstance(error, dict):
                raise RpcError(
                    str(error.get("message") or "RPC error"),
                    code=error.get("code"),
                    data=error.get("data"),
                )
            raise RpcError(f"RPC error: {error}")

        return result.get("result")

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        return await self.rpc_call("eth_getTransactionReceipt", [tx_hash])

    async def block_number(self) -> int:
        return int(await self.rpc_call("eth_blockNumber", []), 16)

    async def wait_for_receipt(
        self,
        tx_hash: str,
        timeout_seconds: Optional[float] = None,
        required_confirmations: Optional[int] = None,
        poll_interval: Optional[float] = None,
    ) -> TransactionResult:
        """
        Wait until a transaction is mined with enough confirmations.

        Returns a result whose status is CONFIRMED, REVERTED or TIMEOUT.
        Transient RPC failures are logged and retried until the timeout.
        """
        timeout = timeout_seconds if timeout_seconds is not None else settings.confirmation_timeout_seconds
        confirmations_needed = required_confirmations or settings.required_confirmations
        interval = poll_interval if poll_interval is not None else settings.confirmation_poll_interval_seconds

        result = TransactionResult(
            tx_hash=tx_hash,
            chain_id=self.chain_id,
            status=OnchainStatus.SUBMITTED,
            submitted_at=datetime.now(timezone.utc),
        )
        started = time.monotonic()

        while True:
            try:
                receipt = await self.get_transaction_receipt(tx_hash)

                if receipt:
                    result.block_number = int(receipt["blockNumber"], 16)
                    result.block_hash = receipt.get("blockHash")
                    result.gas_used = int(receipt.get("gasUsed", "0x0"), 16)

                    # 0x1 = success, 0x0 = revert
                    if int(receipt.get("status", "0x1"), 16) == 0:
                        result.status = OnchainStatus.REVERTED
                        result.error = "Transaction reverted"
                        return result

                    head = await self.block_number()
                    result.confirmations = head - result.block_number + 1
                    if result.confirmations >= confirmations_needed:
                        result.status = OnchainStatus.CONFIRMED
                        result.confirmed_at = datetime.now(timezone.utc)
                        logger.info(
                            "Transaction confirmed: %s (block %s, %s confirmations)",
                            tx_hash,
                            result.block_number,
                            result.confirmations,
                        )
                        return result

                    result.status = OnchainStatus.CONFIRMING

            except (httpx.HTTPError, RpcError, KeyError, ValueError) as exc:
                logger.warning("Error checking transaction status for %s: %s", tx_hash, exc)

            if time.monotonic() - started >= timeout:
                result.status = OnchainStatus.TIMEOUT
                result.error = f"Confirmation timeout after {timeout}s"
                return result

            await asyncio.sleep(interval)

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
