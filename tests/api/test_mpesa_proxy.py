"""
Tests for the HTTP surface: M-Pesa proxy, backend token endpoint, health
"""

import json

import httpx
import pytest
from fastapi.testclient import TestClient

from dotpay.api.mpesa_proxy import get_backend_http_client, summarize_body
from dotpay.auth import create_session_token, verify_backend_token
from dotpay.main import app

from conftest import WALLET_ADDRESS, transaction_payload


BACKEND_URL = "https://api.dotpay.test"
JWT_SECRET = "backend-secret"
SESSION_SECRET = "session-secret"


@pytest.fixture
def configured(monkeypatch):
    monkeypatch.setattr("dotpay.config.settings.dotpay_api_url", BACKEND_URL)
    monkeypatch.setattr("dotpay.config.settings.mpesa_api_prefix", "/api/mpesa")
    monkeypatch.setattr("dotpay.config.settings.backend_jwt_secret", JWT_SECRET)
    monkeypatch.setattr("dotpay.config.settings.session_secret", SESSION_SECRET)


@pytest.fixture
def upstream():
    """Records proxied requests; ``respond`` sets the canned upstream reply."""
    state = {"requests": [], "respond": lambda request: httpx.Response(200, json={"success": True, "data": {}})}

    def handler(request):
        state["requests"].append(request)
        return state["respond"](request)

    app.dependency_overrides[get_backend_http_client] = lambda: httpx.AsyncClient(
        transport=httpx.MockTransport(handler)
    )
    yield state
    app.dependency_overrides.pop(get_backend_http_client, None)


@pytest.fixture
def client():
    return TestClient(app)


def _session_headers(**extra):
    token = create_session_token(WALLET_ADDRESS, secret=SESSION_SECRET)
    return {"Authorization": f"Bearer {token}", **extra}


# =============================================================================
# Proxy
# =============================================================================

class TestMpesaProxy:
    """Tests for forwarding M-Pesa calls to the backend."""

    def test_requires_session(self, configured, upstream, client):
        response = client.get("/api/mpesa/transactions")

        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "Unauthorized."}
        assert upstream["requests"] == []

    def test_invalid_session_is_unauthorized(self, configured, upstream, client):
        response = client.get("/api/mpesa/transactions", headers={"Authorization": "Bearer junk"})

        assert response.status_code == 401

    def test_missing_backend_url(self, configured, upstream, client, monkeypatch):
        monkeypatch.setattr("dotpay.config.settings.dotpay_api_url", "")

        response = client.get("/api/mpesa/transactions", headers=_session_headers())

        assert response.status_code == 500
        assert response.json()["message"] == "NEXT_PUBLIC_DOTPAY_API_URL is not configured."

    def test_missing_jwt_secret(self, configured, upstream, client, monkeypatch):
        monkeypatch.setattr("dotpay.config.settings.backend_jwt_secret", "")

        response = client.get("/api/mpesa/transactions", headers=_session_headers())

        assert response.status_code == 500
        assert "DOTPAY_BACKEND_JWT_SECRET" in response.json()["message"]
        assert upstream["requests"] == []

    def test_forwards_settlement(self, configured, upstream, client):
        upstream["respond"] = lambda request: httpx.Response(
            200, json={"success": True, "data": transaction_payload("offramp", status="mpesa_submitted")}
        )
        body = {"quoteId": "q_123", "phoneNumber": "254712345678", "pin": "123456"}

        response = client.post(
            "/api/mpesa/offramp/initiate",
            headers=_session_headers(**{"Idempotency-Key": "offramp:abc"}),
            json=body,
        )

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "mpesa_submitted"

        forwarded = upstream["requests"][0]
        assert str(forwarded.url) == f"{BACKEND_URL}/api/mpesa/offramp/initiate"
        assert forwarded.method == "POST"
        assert forwarded.headers["Idempotency-Key"] == "offramp:abc"
        assert forwarded.headers["Content-Type"] == "application/json"
        assert json.loads(forwarded.content) == body

        token = forwarded.headers["Authorization"].removeprefix("Bearer ")
        assert verify_backend_token(token, secret=JWT_SECRET).address == WALLET_ADDRESS

    def test_forwards_query_string(self, configured, upstream, client):
        response = client.get(
            "/api/mpesa/transactions",
            params={"flowType": "paybill", "limit": "5"},
            headers=_session_headers(),
        )

        assert response.status_code == 200
        forwarded = upstream["requests"][0]
        assert forwarded.method == "GET"
        assert forwarded.url.params["flowType"] == "paybill"
        assert forwarded.url.params["limit"] == "5"
        assert "Idempotency-Key" not in forwarded.headers

    def test_backend_errors_pass_through(self, configured, upstream, client):
        upstream["respond"] = lambda request: httpx.Response(
            409, json={"success": False, "message": "Quote expired"}
        )

        response = client.post("/api/mpesa/offramp/initiate", headers=_session_headers(), json={})

        assert response.status_code == 409
        assert response.json()["message"] == "Quote expired"

    def test_unreachable_backend(self, configured, upstream, client):
        def refuse(request):
            raise httpx.ConnectError("refused")

        upstream["respond"] = refuse

        response = client.get("/api/mpesa/transactions/tx_1", headers=_session_headers())

        assert response.status_code == 502
        assert response.json() == {"success": False, "message": "Failed to reach backend M-Pesa service."}

    def test_empty_upstream_body(self, configured, upstream, client):
        upstream["respond"] = lambda request: httpx.Response(200, content=b"")

        response = client.get("/api/mpesa/liquidity/state", headers=_session_headers())

        assert response.content == b"{}"


class TestSummarizeBody:
    """Tests for the loggable request summary."""

    def test_secrets_are_reduced(self):
        raw = json.dumps({
            "quoteId": "q_123",
            "phoneNumber": "254712345678",
            "pin": "908172",
            "signature": "0x" + "ab" * 65,
            "nonce": "",
            "signedAt": "2030-01-01T00:00:30.000Z",
        }).encode()

        summary = summarize_body(raw)

        assert summary == {
            "quoteId": "q_123",
            "phoneNumber": "254712345678",
            "pin": "provided",
            "signature": "provided(len:132)",
            "nonce": "missing",
            "signedAt": "provided",
        }
        assert "908172" not in json.dumps(summary)

    @pytest.mark.parametrize("raw", [None, b"", b"not json", b"[1, 2]"])
    def test_unparseable(self, raw):
        assert summarize_body(raw) == {}


# =============================================================================
# Backend Token Endpoint and Health
# =============================================================================

class TestBackendTokenEndpoint:

    def test_issues_token_for_session(self, configured, client):
        response = client.get("/api/auth/backend-token", headers=_session_headers())

        assert response.status_code == 200
        payload = response.json()
        assert payload["success"] is True
        assert payload["data"]["tokenType"] == "Bearer"
        assert payload["data"]["expiresIn"] == 300
        claims = verify_backend_token(payload["data"]["token"], secret=JWT_SECRET)
        assert claims.address == WALLET_ADDRESS

    def test_session_cookie(self, configured, client):
        token = create_session_token(WALLET_ADDRESS, secret=SESSION_SECRET)

        response = client.get("/api/auth/backend-token", headers={"Cookie": f"dotpay_session={token}"})

        assert response.status_code == 200

    def test_unauthorized(self, configured, client):
        response = client.get("/api/auth/backend-token")

        assert response.status_code == 401
        assert response.json() == {"success": False, "message": "Unauthorized."}


class TestHealth:

    def test_healthy_when_configured(self, configured, client):
        response = client.get("/healthz")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"] == {"backend_url": True, "backend_jwt_secret": True, "session_secret": True}

    def test_degraded_without_secret(self, configured, client, monkeypatch):
        monkeypatch.setattr("dotpay.config.settings.backend_jwt_secret", "")

        assert client.get("/healthz").json()["status"] == "degraded"

    def test_request_id_header(self, client):
        response = client.get("/healthz", headers={"x-request-id": "req-1"})

        assert response.headers["x-request-id"] == "req-1"
