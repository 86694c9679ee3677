"""Async client for the DotPay M-Pesa backend API."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Type, TypeVar
from urllib.parse import quote as url_quote

import httpx
from pydantic import BaseModel, ValidationError

from ..auth.backend_token import BackendTokenError, TokenProvider
from ..config import settings
from ..core.errors import BackendError, BackendNetworkError, BackendTimeoutError
from ..core.mpesa.settlement import settlement_path
from ..types.mpesa import (
    ApiEnvelope,
    FlowType,
    LiquidityPrecheckRequest,
    MpesaTransaction,
    QuoteRequest,
    QuoteResult,
    SettlementRequest,
    TransactionList,
    TransactionStatus,
)


logger = logging.getLogger(__name__)

IDEMPOTENCY_HEADER = "Idempotency-Key"
UNEXPECTED_RESPONSE = "Unexpected response from backend"

ModelT = TypeVar("ModelT", bound=BaseModel)


def backend_error_from_token_error(exc: BackendTokenError) -> BackendError:
    """Map a token failure onto the backend error family; unreachable endpoints stay retry-safe."""
    cause = exc.__cause__
    if isinstance(cause, httpx.TimeoutException):
        return BackendTimeoutError(exc.message)
    if isinstance(cause, httpx.RequestError):
        return BackendNetworkError(exc.message)
    return BackendError(exc.message, status_code=exc.status_code)


class MpesaBackendClient:
    """
    Thin wrapper around the ``/api/mpesa`` endpoints.

    Every response arrives in the ``{success, message, data, idempotent}``
    envelope; ``_request`` unwraps it and raises ``BackendError`` (or one of
    its transport subclasses) when the call did not succeed.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token_provider: Optional[TokenProvider] = None,
        timeout_s: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        configured = base_url or settings.mpesa_base_url
        if not configured:
            raise BackendError("Missing NEXT_PUBLIC_DOTPAY_API_URL.", status_code=500)
        self.base_url = configured.rstrip("/")
        self.token_provider = token_provider
        self.timeout_s = timeout_s if timeout_s is not None else settings.request_timeout_seconds
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/",
                timeout=self.timeout_s,
                transport=self._transport,
            )
        return self._client

    async def _headers(self, idempotency_key: Optional[str] = None) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token_provider is not None:
            token = await self._get_token()
            headers["Authorization"] = f"Bearer {token}"
        if idempotency_key:
            headers[IDEMPOTENCY_HEADER] = idempotency_key
        return headers

    async def _get_token(self, force_refresh: bool = False) -> str:
        try:
            return await self.token_provider.get_token(force_refresh=force_refresh)
        except BackendTokenError as exc:
            logger.warning("Backend token unavailable: %s", exc.message)
            raise backend_error_from_token_error(exc) from exc

    async def refresh_token(self) -> None:
        """Mint a fresh bearer token ahead of the next operation."""
        if self.token_provider is not None:
            await self._get_token(force_refresh=True)

    @staticmethod
    def _parse(model: Type[ModelT], data: Any) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as exc:
            logger.warning("M-Pesa backend sent a malformed %s: %s", model.__name__, exc)
            raise BackendError(UNEXPECTED_RESPONSE, payload=data) from exc

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
    ) -> Any:
        client = await self._get_client()
        headers = await self._headers(idempotency_key)

        try:
            response = await client.request(
                method,
                path.lstrip("/"),
                json=json,
                params=params,
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            logger.warning("M-Pesa backend timed out: %s %s", method, path)
            raise BackendTimeoutError(f"Request to {path} timed out") from exc
        except httpx.RequestError as exc:
            logger.warning("M-Pesa backend unreachable: %s %s (%s)", method, path, exc)
            raise BackendNetworkError(f"Network request failed: {exc}") from exc

        try:
            payload: Any = response.json()
        except ValueError:
            payload = {"message": response.text}

        if not isinstance(payload, dict):
            payload = {"message": str(payload)}

        if response.is_error or not payload.get("success"):
            message = payload.get("message") or "M-Pesa request failed."
            logger.info(
                "M-Pesa backend rejected %s %s: %s (%s)",
                method,
                path,
                message,
                response.status_code,
            )
            raise BackendError(message, status_code=response.status_code, payload=payload)

        envelope = self._parse(ApiEnvelope[Any], payload)
        if envelope.idempotent:
            logger.info("M-Pesa backend replayed an idempotent response for %s", path)

        return envelope.data

    async def create_quote(self, request: QuoteRequest) -> QuoteResult:
        data = await self._request("POST", "quotes", json=request.to_payload())
        return self._parse(QuoteResult, data)

    async def initiate(self, request: SettlementRequest, idempotency_key: str) -> MpesaTransaction:
        """Submit a settlement request to its flow endpoint under ``idempotency_key``."""
        data = await self._request(
            "POST",
            settlement_path(request),
            json=request.to_payload(),
            idempotency_key=idempotency_key,
        )
        return self._parse(MpesaTransaction, data)

    async def get_transaction(self, transaction_id: str) -> MpesaTransaction:
        data = await self._request("GET", f"transactions/{url_quote(transaction_id, safe='')}")
        return self._parse(MpesaTransaction, data)

    async def list_transactions(
        self,
        flow_type: Optional[FlowType] = None,
        status: Optional[TransactionStatus] = None,
        limit: Optional[int] = None,
    ) -> TransactionList:
        params: Dict[str, Any] = {}
        if flow_type is not None:
            params["flowType"] = flow_type.value
        if status is not None:
            params["status"] = status.value
        if limit is not None:
            params["limit"] = limit
        data = await self._request("GET", "transactions", params=params or None)
        return self._parse(TransactionList, data or {})

    async def precheck_liquidity(self, request: LiquidityPrecheckRequest) -> Dict[str, Any]:
        data = await self._request(
            "POST",
            "liquidity/precheck",
            json=request.model_dump(mode="json", by_alias=True),
        )
        return data or {}

    async def get_liquidity_state(self, force: bool = True) -> Dict[str, Any]:
        params = {"force": "true"} if force else None
        data = await self._request("GET", "liquidity/state", params=params)
        return data or {}

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None
