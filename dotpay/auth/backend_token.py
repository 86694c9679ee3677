"""
Short-lived bearer tokens for the payments backend.

The backend accepts HS256 JWTs scoped to ``mpesa`` and bound to one wallet
address. Server-side code mints them locally; remote clients fetch them
from the backend-token endpoint. Either way a token is refreshed before
each payment operation.
"""

import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import jwt

from ..config import settings


JWT_ALGORITHM = "HS256"
BACKEND_TOKEN_SCOPE = "mpesa"
MIN_TTL_SECONDS = 60
# Refresh a cached token this long before it expires.
EXPIRY_MARGIN_SECONDS = 30

_ADDRESS_RE = re.compile(r"^0x[a-f0-9]{40}$")


class BackendTokenError(Exception):
    """A backend token could not be minted, fetched or verified."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class BackendTokenPayload:
    sub: str
    address: str
    scope: str
    iat: int
    exp: int


def normalize_wallet_address(address: Optional[str]) -> str:
    normalized = (address or "").strip().lower()
    if not _ADDRESS_RE.match(normalized):
        raise BackendTokenError("Invalid wallet address for backend token.")
    return normalized


def _resolve_secret(secret: Optional[str]) -> str:
    resolved = (secret if secret is not None else settings.backend_jwt_secret).strip()
    if not resolved:
        raise BackendTokenError("DOTPAY_BACKEND_JWT_SECRET is not configured.")
    return resolved


def sign_backend_token(
    address: str,
    ttl_seconds: Optional[int] = None,
    secret: Optional[str] = None,
    now: Optional[int] = None,
) -> str:
    """Mint an HS256 token for ``address``; TTL is clamped to at least a minute."""
    signing_secret = _resolve_secret(secret)
    normalized = normalize_wallet_address(address)
    issued_at = int(now if now is not None else time.time())
    ttl = ttl_seconds if ttl_seconds is not None else settings.backend_token_ttl_seconds

    payload = {
        "sub": normalized,
        "address": normalized,
        "scope": BACKEND_TOKEN_SCOPE,
        "iat": issued_at,
        "exp": issued_at + max(MIN_TTL_SECONDS, ttl),
    }
    return jwt.encode(payload, signing_secret, algorithm=JWT_ALGORITHM)


def verify_backend_token(token: str, secret: Optional[str] = None) -> BackendTokenPayload:
    try:
        claims = jwt.decode(token, _resolve_secret(secret), algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError as exc:
        raise BackendTokenError("Backend token has expired.", status_code=401) from exc
    except jwt.InvalidTokenError as exc:
        raise BackendTokenError(f"Invalid backend token: {exc}", status_code=401) from exc

    if claims.get("scope") != BACKEND_TOKEN_SCOPE:
        raise BackendTokenError("Backend token has the wrong scope.", status_code=403)

    return BackendTokenPayload(
        sub=claims["sub"],
        address=claims.get("address", claims["sub"]),
        scope=claims["scope"],
        iat=int(claims["iat"]),
        exp=int(claims["exp"]),
    )


class TokenProvider(ABC):
    """Source of bearer tokens for backend calls, with a small cache."""

    def __init__(self) -> None:
        self._token: Optional[str] = None
        self._expires_at: float = 0.0

    def _cached(self) -> Optional[str]:
        if self._token and time.time() < self._expires_at - EXPIRY_MARGIN_SECONDS:
            return self._token
        return None

    async def get_token(self, force_refresh: bool = False) -> str:
        if not force_refresh:
            cached = self._cached()
            if cached:
                return cached
        token, expires_in = await self._issue()
        self._token = token
        self._expires_at = time.time() + expires_in
        return token

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    @abstractmethod
    async def _issue(self) -> "tuple[str, int]":
        """Return a fresh token and its lifetime in seconds."""


class StaticTokenProvider(TokenProvider):
    """Uses a token obtained elsewhere; refreshing is the caller's job."""

    def __init__(self, token: str, expires_in: int = 300):
        super().__init__()
        self._static = token
        self._static_ttl = expires_in

    async def _issue(self) -> "tuple[str, int]":
        return self._static, self._static_ttl


class LocalTokenProvider(TokenProvider):
    """Mints tokens in-process with the shared backend secret."""

    def __init__(
        self,
        address: str,
        secret: Optional[str] = None,
        ttl_seconds: Optional[int] = None,
    ):
        super().__init__()
        self.address = normalize_wallet_address(address)
        self.secret = secret
        self.ttl_seconds = max(
            MIN_TTL_SECONDS,
            ttl_seconds if ttl_seconds is not None else settings.backend_token_ttl_seconds,
        )

    async def _issue(self) -> "tuple[str, int]":
        return sign_backend_token(self.address, self.ttl_seconds, secret=self.secret), self.ttl_seconds


class RemoteTokenProvider(TokenProvider):
    """
    Fetches tokens from the backend-token endpoint.

    The endpoint answers ``{success, data: {token, tokenType, expiresIn}}``
    for an authenticated wallet session.
    """

    def __init__(
        self,
        token_url: Optional[str] = None,
        session_token: Optional[str] = None,
        timeout_s: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self.token_url = token_url or settings.backend_token_url
        self.session_token = session_token
        self.timeout_s = timeout_s
        self._transport = transport

        if not self.token_url:
            raise BackendTokenError("Backend token URL is not configured.")

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.session_token:
            headers["Authorization"] = f"Bearer {self.session_token}"
        return headers

    async def _issue(self) -> "tuple[str, int]":
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                response = await client.get(self.token_url, headers=self._headers())
        except httpx.RequestError as exc:
            raise BackendTokenError(f"Failed to reach token endpoint: {exc}") from exc

        try:
            payload: Any = response.json()
        except ValueError:
            payload = {}

        if response.status_code >= 400 or not isinstance(payload, dict) or not payload.get("success"):
            message = (payload.get("message") if isinstance(payload, dict) else None) or "Failed to mint backend token."
            raise BackendTokenError(message, status_code=response.status_code)

        data = payload.get("data") or {}
        token = data.get("token")
        if not token:
            raise BackendTokenError("Token endpoint returned no token.", status_code=response.status_code)
        return token, int(data.get("expiresIn") or settings.backend_token_ttl_seconds)
