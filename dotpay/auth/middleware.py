"""
FastAPI session dependencies.

The wallet address of the signed-in user comes from a session JWT signed
with ``DOTPAY_SESSION_SECRET``. Browsers send it as the ``dotpay_session``
cookie; other clients send it as a bearer token.
"""

import time
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..config import settings
from .backend_token import JWT_ALGORITHM, BackendTokenError, normalize_wallet_address


SESSION_COOKIE_NAME = "dotpay_session"
DEFAULT_SESSION_TTL_SECONDS = 7 * 24 * 3600

# HTTP Bearer token scheme
bearer_scheme = HTTPBearer(auto_error=False)


class SessionError(Exception):
    """Session token missing, malformed or expired."""


def _session_secret(secret: Optional[str]) -> str:
    resolved = (secret if secret is not None else settings.session_secret).strip()
    if not resolved:
        raise SessionError("DOTPAY_SESSION_SECRET is not configured.")
    return resolved


def create_session_token(
    address: str,
    ttl_seconds: int = DEFAULT_SESSION_TTL_SECONDS,
    secret: Optional[str] = None,
) -> str:
    now = int(time.time())
    payload = {
        "sub": normalize_wallet_address(address),
        "iat": now,
        "exp": now + ttl_seconds,
    }
    return jwt.encode(payload, _session_secret(secret), algorithm=JWT_ALGORITHM)


def verify_session_token(token: str, secret: Optional[str] = None) -> str:
    """Return the lower-cased wallet address a session token was issued for."""
    try:
        claims = jwt.decode(token, _session_secret(secret), algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise SessionError("Session has expired") from exc
    except jwt.InvalidTokenError as exc:
        raise SessionError(f"Invalid session: {exc}") from exc

    try:
        return normalize_wallet_address(claims.get("address") or claims.get("sub"))
    except BackendTokenError as exc:
        raise SessionError("Session has no valid wallet address") from exc


def _session_token_from_request(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
) -> Optional[str]:
    if credentials is not None and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(SESSION_COOKIE_NAME)


async def get_session_address(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[str]:
    """
    Get the session wallet address from the request.

    Returns None if no valid session is present.
    Use `require_session_address` for endpoints that need a session.
    """
    token = _session_token_from_request(request, credentials)
    if not token:
        return None
    try:
        return verify_session_token(token)
    except SessionError:
        return None


async def require_session_address(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    """
    Require a wallet session for an endpoint.

    Raises HTTPException 401 if not signed in.
    """
    token = _session_token_from_request(request, credentials)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return verify_session_token(token)
    except SessionError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )
