"""
Backend users proxy.

Profile sync, lookup and PIN verification for the signed-in wallet. Reads
and writes are limited to the session's own address; writes carry a
freshly minted bearer token.
"""

import json
import time
from typing import Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx
import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from ..auth import BackendTokenError, get_session_address, sign_backend_token
from ..config import settings
from .mpesa_proxy import get_backend_http_client


logger = structlog.stdlib.get_logger("users_proxy")

router = APIRouter(prefix="/api/backend/users", tags=["Users"])


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse({"success": False, "message": message}, status_code=status_code)


def _misconfigured() -> Optional[JSONResponse]:
    if settings.has_backend_url:
        return None
    logger.error("users_proxy_misconfigured", reason="missing NEXT_PUBLIC_DOTPAY_API_URL")
    return _error("NEXT_PUBLIC_DOTPAY_API_URL is not configured.", 500)


def _own_address(address: str, session_address: str) -> Tuple[Optional[str], Optional[JSONResponse]]:
    """Normalize a path address and require it to be the session's."""
    normalized = (address or "").strip().lower()
    if not normalized:
        return None, _error("address is required.", 400)
    if normalized != session_address:
        logger.warning("users_proxy_forbidden_address", user=session_address, requested=normalized)
        return None, _error("Unauthorized.", 401)
    return normalized, None


async def _forward(
    client: httpx.AsyncClient,
    method: str,
    path: str,
    *,
    session_address: Optional[str] = None,
    params: Optional[List[Tuple[str, str]]] = None,
    body: Optional[bytes] = None,
) -> Response:
    """Send one call to ``/api/users`` and relay the backend's body and status."""
    started = time.perf_counter()
    headers: Dict[str, str] = {"Accept": "application/json"}

    if session_address:
        try:
            token = sign_backend_token(session_address, settings.backend_token_ttl_seconds)
        except BackendTokenError as e:
            logger.error("users_proxy_token_failed", error=e.message)
            return _error(e.message, 500)
        headers["Authorization"] = f"Bearer {token}"

    if body:
        headers["Content-Type"] = "application/json"

    target = f"{settings.dotpay_api_url}/api/users{path}"
    try:
        upstream = await client.request(method, target, params=params, headers=headers, content=body or None)
    except httpx.HTTPError as e:
        logger.error(
            "users_proxy_backend_unreachable",
            path=path,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
            error=str(e),
        )
        return _error("Failed to reach backend users service.", 502)

    logger.info(
        "users_proxy_finish",
        method=method,
        path=f"/api/users{path}",
        status=upstream.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000, 1),
    )
    return Response(
        content=upstream.content or b"{}",
        status_code=upstream.status_code,
        media_type=upstream.headers.get("content-type") or "application/json",
    )


@router.post("")
async def sync_user(
    session_address: Optional[str] = Depends(get_session_address),
    client: httpx.AsyncClient = Depends(get_backend_http_client),
) -> Response:
    """Register or refresh the session wallet's user record; any client-sent address is ignored."""
    misconfigured = _misconfigured()
    if misconfigured:
        return misconfigured
    if not session_address:
        return _error("Unauthorized.", 401)

    body = json.dumps({"address": session_address}).encode()
    return await _forward(client, "POST", "", session_address=session_address, body=body)


@router.get("/lookup")
async def lookup_user(
    request: Request,
    session_address: Optional[str] = Depends(get_session_address),
    client: httpx.AsyncClient = Depends(get_backend_http_client),
) -> Response:
    """Find a user by the query the app passes through (phone, username, address)."""
    misconfigured = _misconfigured()
    if misconfigured:
        return misconfigured
    if not session_address:
        return _error("Unauthorized.", 401)

    params = list(dict(request.query_params).items())
    return await _forward(client, "GET", "/lookup", params=params)


@router.get("/{address}")
async def get_user(
    address: str,
    session_address: Optional[str] = Depends(get_session_address),
    client: httpx.AsyncClient = Depends(get_backend_http_client),
) -> Response:
    misconfigured = _misconfigured()
    if misconfigured:
        return misconfigured
    if not session_address:
        return _error("Unauthorized.", 401)

    normalized, rejected = _own_address(address, session_address)
    if rejected:
        return rejected
    return await _forward(client, "GET", f"/{quote(normalized, safe='')}")


@router.post("/{address}/pin/verify")
async def verify_pin(
    address: str,
    request: Request,
    session_address: Optional[str] = Depends(get_session_address),
    client: httpx.AsyncClient = Depends(get_backend_http_client),
) -> Response:
    """Check the app PIN for the session wallet; the body passes through unlogged."""
    misconfigured = _misconfigured()
    if misconfigured:
        return misconfigured
    if not session_address:
        return _error("Unauthorized.", 401)

    normalized, rejected = _own_address(address, session_address)
    if rejected:
        return rejected

    body = await request.body()
    return await _forward(
        client,
        "POST",
        f"/{quote(normalized, safe='')}/pin/verify",
        session_address=session_address,
        body=body,
    )
