"""
Tests for backend bearer tokens and wallet sessions
"""

import time

import httpx
import jwt
import pytest

from dotpay.auth.backend_token import (
    BACKEND_TOKEN_SCOPE,
    BackendTokenError,
    LocalTokenProvider,
    RemoteTokenProvider,
    sign_backend_token,
    verify_backend_token,
)
from dotpay.auth.middleware import SessionError, create_session_token, verify_session_token

from conftest import WALLET_ADDRESS


SECRET = "test-backend-secret"
MIXED_CASE_ADDRESS = "0xAbCdEf0123456789aBcDeF0123456789AbCdEf01"


# =============================================================================
# Signing and Verification
# =============================================================================

class TestSignBackendToken:
    """Tests for minting backend tokens."""

    def test_claims(self):
        token = sign_backend_token(MIXED_CASE_ADDRESS, ttl_seconds=300, secret=SECRET, now=1_900_000_000)

        claims = jwt.decode(token, SECRET, algorithms=["HS256"], options={"verify_exp": False, "verify_iat": False})
        assert claims == {
            "sub": MIXED_CASE_ADDRESS.lower(),
            "address": MIXED_CASE_ADDRESS.lower(),
            "scope": BACKEND_TOKEN_SCOPE,
            "iat": 1_900_000_000,
            "exp": 1_900_000_300,
        }

    def test_ttl_clamped_to_a_minute(self):
        token = sign_backend_token(WALLET_ADDRESS, ttl_seconds=5, secret=SECRET, now=1_900_000_000)

        claims = jwt.decode(token, SECRET, algorithms=["HS256"], options={"verify_exp": False, "verify_iat": False})
        assert claims["exp"] - claims["iat"] == 60

    @pytest.mark.parametrize("address", [None, "", "0x123", "1111111111111111111111111111111111111111"])
    def test_invalid_address(self, address):
        with pytest.raises(BackendTokenError, match="Invalid wallet address"):
            sign_backend_token(address, secret=SECRET)

    def test_missing_secret(self):
        with pytest.raises(BackendTokenError, match="DOTPAY_BACKEND_JWT_SECRET"):
            sign_backend_token(WALLET_ADDRESS, secret="  ")


class TestVerifyBackendToken:

    def test_round_trip(self):
        token = sign_backend_token(WALLET_ADDRESS, secret=SECRET)

        payload = verify_backend_token(token, secret=SECRET)

        assert payload.address == WALLET_ADDRESS
        assert payload.scope == "mpesa"
        assert payload.exp > payload.iat

    def test_expired(self):
        token = sign_backend_token(WALLET_ADDRESS, secret=SECRET, now=int(time.time()) - 3600)

        with pytest.raises(BackendTokenError, match="expired") as exc_info:
            verify_backend_token(token, secret=SECRET)

        assert exc_info.value.status_code == 401

    def test_wrong_secret(self):
        token = sign_backend_token(WALLET_ADDRESS, secret=SECRET)

        with pytest.raises(BackendTokenError) as exc_info:
            verify_backend_token(token, secret="other-secret")

        assert exc_info.value.status_code == 401

    def test_wrong_scope(self):
        now = int(time.time())
        token = jwt.encode(
            {"sub": WALLET_ADDRESS, "scope": "admin", "iat": now, "exp": now + 300},
            SECRET,
            algorithm="HS256",
        )

        with pytest.raises(BackendTokenError, match="scope") as exc_info:
            verify_backend_token(token, secret=SECRET)

        assert exc_info.value.status_code == 403


# =============================================================================
# Token Providers
# =============================================================================

class TestLocalTokenProvider:
    """Tests for in-process token minting with caching."""

    @pytest.mark.asyncio
    async def test_cached_until_forced(self):
        provider = LocalTokenProvider(WALLET_ADDRESS, secret=SECRET, ttl_seconds=300)

        first = await provider.get_token()
        assert await provider.get_token() == first

        time.sleep(1)
        refreshed = await provider.get_token(force_refresh=True)

        assert refreshed != first
        assert verify_backend_token(refreshed, secret=SECRET).address == WALLET_ADDRESS

    @pytest.mark.asyncio
    async def test_invalidate_drops_cache(self):
        provider = LocalTokenProvider(WALLET_ADDRESS, secret=SECRET)
        await provider.get_token()

        provider.invalidate()

        assert provider._cached() is None

    def test_rejects_bad_address(self):
        with pytest.raises(BackendTokenError):
            LocalTokenProvider("not-an-address", secret=SECRET)


class TestRemoteTokenProvider:
    """Tests for fetching tokens from the backend-token endpoint."""

    TOKEN_URL = "https://wallet.dotpay.test/api/auth/backend-token"

    @pytest.mark.asyncio
    async def test_fetches_with_session(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={
                "success": True,
                "data": {"token": "remote-jwt", "tokenType": "Bearer", "expiresIn": 300},
            })

        provider = RemoteTokenProvider(
            self.TOKEN_URL, session_token="session-jwt", transport=httpx.MockTransport(handler)
        )

        assert await provider.get_token() == "remote-jwt"
        assert await provider.get_token() == "remote-jwt"
        assert len(seen) == 1
        assert seen[0].headers["Authorization"] == "Bearer session-jwt"

    @pytest.mark.asyncio
    async def test_unauthorized(self):
        transport = httpx.MockTransport(
            lambda request: httpx.Response(401, json={"success": False, "message": "Unauthorized."})
        )
        provider = RemoteTokenProvider(self.TOKEN_URL, transport=transport)

        with pytest.raises(BackendTokenError, match="Unauthorized.") as exc_info:
            await provider.get_token()

        assert exc_info.value.status_code == 401

    @pytest.mark.asyncio
    async def test_missing_token(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"success": True, "data": {}}))
        provider = RemoteTokenProvider(self.TOKEN_URL, transport=transport)

        with pytest.raises(BackendTokenError, match="no token"):
            await provider.get_token()

    @pytest.mark.asyncio
    async def test_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused")

        provider = RemoteTokenProvider(self.TOKEN_URL, transport=httpx.MockTransport(handler))

        with pytest.raises(BackendTokenError, match="Failed to reach token endpoint"):
            await provider.get_token()

    def test_requires_url(self, monkeypatch):
        monkeypatch.setattr("dotpay.auth.backend_token.settings.backend_token_url", "")

        with pytest.raises(BackendTokenError):
            RemoteTokenProvider()


# =============================================================================
# Sessions
# =============================================================================

class TestSessionTokens:

    def test_round_trip_lowercases(self):
        token = create_session_token(MIXED_CASE_ADDRESS, secret=SECRET)

        assert verify_session_token(token, secret=SECRET) == MIXED_CASE_ADDRESS.lower()

    def test_expired_session(self):
        token = create_session_token(WALLET_ADDRESS, ttl_seconds=-10, secret=SECRET)

        with pytest.raises(SessionError, match="expired"):
            verify_session_token(token, secret=SECRET)

    def test_address_claim_preferred(self):
        now = int(time.time())
        token = jwt.encode(
            {"sub": "user-1", "address": WALLET_ADDRESS, "iat": now, "exp": now + 60},
            SECRET,
            algorithm="HS256",
        )

        assert verify_session_token(token, secret=SECRET) == WALLET_ADDRESS

    def test_session_without_address(self):
        now = int(time.time())
        token = jwt.encode({"sub": "user-1", "iat": now, "exp": now + 60}, SECRET, algorithm="HS256")

        with pytest.raises(SessionError, match="wallet address"):
            verify_session_token(token, secret=SECRET)

    def test_missing_session_secret(self):
        with pytest.raises(SessionError, match="DOTPAY_SESSION_SECRET"):
            create_session_token(WALLET_ADDRESS, secret="")
