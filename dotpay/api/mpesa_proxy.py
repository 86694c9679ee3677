"""
M-Pesa backend proxy.

Forwards ``/api/mpesa/{path}`` to the payments backend with a freshly
minted bearer token for the session wallet. The Idempotency-Key header and
query string pass through untouched; the response body and status are
returned as the backend sent them.
"""

import json
import time
from typing import Any, Dict, Optional
from urllib.parse import quote

import httpx
import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from ..auth import BackendTokenError, get_session_address, sign_backend_token
from ..config import settings


logger = structlog.stdlib.get_logger("mpesa_proxy")

router = APIRouter(prefix="/api/mpesa", tags=["M-Pesa"])

# Fields echoed verbatim in request logs.
_LOGGED_FIELDS = (
    "flowType",
    "quoteId",
    "amount",
    "currency",
    "phoneNumber",
    "paybillNumber",
    "tillNumber",
    "accountReference",
    "businessId",
    "chainId",
    "onchainTxHash",
)

_client: Optional[httpx.AsyncClient] = None


async def get_backend_http_client() -> httpx.AsyncClient:
    """Shared client for upstream calls; tests override this dependency."""
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(timeout=settings.request_timeout_seconds)
    return _client


async def close_backend_http_client() -> None:
    global _client
    if _client is not None and not _client.is_closed:
        await _client.aclose()
    _client = None


def _present(value: Any) -> bool:
    return bool(str(value or "").strip())


def summarize_body(raw: Optional[bytes]) -> Dict[str, Any]:
    """Loggable view of a request body; secrets are reduced to provided/missing."""
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {}
    if not isinstance(parsed, dict):
        return {}

    summary: Dict[str, Any] = {
        key: parsed[key]
        for key in _LOGGED_FIELDS
        if parsed.get(key) not in (None, "")
    }
    if "pin" in parsed:
        summary["pin"] = "provided" if _present(parsed["pin"]) else "missing"
    if "signature" in parsed:
        length = len(str(parsed["signature"] or "").strip())
        summary["signature"] = f"provided(len:{length})" if length else "missing"
    if "nonce" in parsed:
        summary["nonce"] = "provided" if _present(parsed["nonce"]) else "missing"
    if "signedAt" in parsed:
        summary["signedAt"] = "provided" if _present(parsed["signedAt"]) else "missing"
    return summary


def _backend_message(content: bytes) -> str:
    try:
        parsed = json.loads(content) if content else {}
    except ValueError:
        return ""
    if isinstance(parsed, dict):
        return str(parsed.get("message") or "").strip()
    return ""


@router.api_route("/{path:path}", methods=["GET", "POST"])
async def proxy_mpesa(
    path: str,
    request: Request,
    address: Optional[str] = Depends(get_session_address),
    client: httpx.AsyncClient = Depends(get_backend_http_client),
) -> Response:
    """Forward one M-Pesa API call to the payments backend."""
    started = time.perf_counter()
    backend_base = settings.mpesa_base_url
    if not backend_base:
        logger.error("mpesa_proxy_misconfigured", reason="missing NEXT_PUBLIC_DOTPAY_API_URL")
        return JSONResponse(
            {"success": False, "message": "NEXT_PUBLIC_DOTPAY_API_URL is not configured."},
            status_code=500,
        )

    if not address:
        logger.warning("mpesa_proxy_unauthorized", reason="missing session address")
        return JSONResponse({"success": False, "message": "Unauthorized."}, status_code=401)

    try:
        token = sign_backend_token(address, settings.backend_token_ttl_seconds)
    except BackendTokenError as e:
        logger.error("mpesa_proxy_token_failed", error=e.message)
        return JSONResponse({"success": False, "message": e.message}, status_code=500)

    joined_path = "/".join(quote(segment, safe="") for segment in path.split("/") if segment)
    target = f"{backend_base}/{joined_path}"

    headers = {
        "Authorization": f"Bearer {token}",
        "Accept": "application/json",
    }
    idempotency_key = request.headers.get("idempotency-key")
    if idempotency_key:
        headers["Idempotency-Key"] = idempotency_key

    method = request.method.upper()
    body: Optional[bytes] = None
    if method not in ("GET", "HEAD"):
        body = await request.body()
        if body:
            headers["Content-Type"] = "application/json"
        else:
            body = None

    logger.info(
        "mpesa_proxy_start",
        method=method,
        path=f"/api/mpesa/{joined_path}",
        query=str(request.query_params) or None,
        user=address,
        idempotency_key=idempotency_key or "-",
        body=summarize_body(body),
    )

    try:
        upstream = await client.request(
            method,
            target,
            params=list(request.query_params.multi_items()),
            headers=headers,
            content=body,
        )
    except httpx.HTTPError as e:
        logger.error(
            "mpesa_proxy_backend_unreachable",
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
            error=str(e),
        )
        return JSONResponse(
            {"success": False, "message": "Failed to reach backend M-Pesa service."},
            status_code=502,
        )

    logger.info(
        "mpesa_proxy_finish",
        status=upstream.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
        message=_backend_message(upstream.content) or "-",
    )
    return Response(
        content=upstream.content or b"{}",
        status_code=upstream.status_code,
        media_type=upstream.headers.get("content-type") or "application/json",
    )
