import httpx
import pytest

from prepcoach.auth.errors import STAGE_TOKEN_EXCHANGE, AuthError
from prepcoach.auth.models import AuthAttempt
from prepcoach.auth.token_exchange import TokenExchangeClient

TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
REDIRECT = "https://app.example.com/auth/callback"


class DummyResponse:
    def __init__(self, status_code, json_data=None, text=""):
        self.status_code = status_code
        self._json = json_data
        self.text = text or (str(json_data) if json_data is not None else "")

    def json(self):
        if self._json is None:
            raise ValueError("Expecting value")
        return self._json


class DummyAsyncClient:
    def __init__(self, resp: DummyResponse = None, raise_exc: Exception | None = None):
        self._resp = resp
        self._raise = raise_exc
        self.calls = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, url, data=None, headers=None):
        self.calls.append((url, data, headers))
        if self._raise:
            raise self._raise
        return self._resp


def _client():
    return TokenExchangeClient(TOKEN_URL, "client-abc", "secret-xyz", timeout=10.0)


def _attempt():
    return AuthAttempt(state_token="st", active_redirect_uri=REDIRECT)


def _patch(monkeypatch, dummy):
    monkeypatch.setattr(
        "prepcoach.auth.token_exchange.httpx.AsyncClient",
        lambda timeout: dummy,
    )


@pytest.mark.asyncio
async def test_exchange_success_posts_form(monkeypatch):
    dummy = DummyAsyncClient(DummyResponse(200, {"access_token": "at-1", "expires_in": 5184000}))
    _patch(monkeypatch, dummy)

    token = await _client().exchange("code-1", _attempt())

    assert token.access_token == "at-1"
    assert token.expires_in == 5184000
    url, data, headers = dummy.calls[0]
    assert url == TOKEN_URL
    assert data == {
        "grant_type": "authorization_code",
        "code": "code-1",
        "redirect_uri": REDIRECT,
        "client_id": "client-abc",
        "client_secret": "secret-xyz",
    }
    assert headers["Content-Type"] == "application/x-www-form-urlencoded"


@pytest.mark.asyncio
async def test_redirect_mismatch_is_flagged(monkeypatch):
    body = {
        "error": "invalid_request",
        "error_description": "Unable to retrieve access token: appid/redirect uri/code verifier does not match authorization code.",
    }
    _patch(monkeypatch, DummyAsyncClient(DummyResponse(400, body)))

    with pytest.raises(AuthError) as ei:
        await _client().exchange("code-1", _attempt())
    e = ei.value
    assert e.stage == STAGE_TOKEN_EXCHANGE
    assert e.retryable
    assert e.details["status_code"] == 400
    assert e.details["body"] == body
    assert e.details["redirect_mismatch"] is True
    # raw body never reaches the browser-facing payload
    assert set(e.public()) == {"error", "stage"}


@pytest.mark.asyncio
async def test_error_in_2xx_body(monkeypatch):
    _patch(monkeypatch, DummyAsyncClient(DummyResponse(200, {"error": "invalid_grant"})))

    with pytest.raises(AuthError) as ei:
        await _client().exchange("code-1", _attempt())
    assert ei.value.message == "token exchange failed: invalid_grant"
    assert ei.value.details["redirect_mismatch"] is False


@pytest.mark.asyncio
async def test_non_json_body(monkeypatch):
    _patch(monkeypatch, DummyAsyncClient(DummyResponse(502, None, text="<html>bad gateway</html>")))

    with pytest.raises(AuthError) as ei:
        await _client().exchange("code-1", _attempt())
    assert ei.value.stage == STAGE_TOKEN_EXCHANGE
    assert ei.value.details["body"] == "<html>bad gateway</html>"


@pytest.mark.asyncio
async def test_missing_access_token(monkeypatch):
    _patch(monkeypatch, DummyAsyncClient(DummyResponse(200, {"expires_in": 10})))

    with pytest.raises(AuthError) as ei:
        await _client().exchange("code-1", _attempt())
    assert "access token" in ei.value.message


@pytest.mark.asyncio
async def test_timeout(monkeypatch):
    _patch(monkeypatch, DummyAsyncClient(raise_exc=httpx.ReadTimeout("timed out")))

    with pytest.raises(AuthError) as ei:
        await _client().exchange("code-1", _attempt())
    assert ei.value.stage == STAGE_TOKEN_EXCHANGE
    assert ei.value.details["reason"] == "timeout"


@pytest.mark.asyncio
async def test_network_error(monkeypatch):
    _patch(monkeypatch, DummyAsyncClient(raise_exc=httpx.ConnectError("refused")))

    with pytest.raises(AuthError) as ei:
        await _client().exchange("code-1", _attempt())
    assert ei.value.details["reason"] == "network"


@pytest.mark.asyncio
async def test_malformed_expires_in(monkeypatch):
    _patch(monkeypatch, DummyAsyncClient(DummyResponse(200, {"access_token": "at-1", "expires_in": "60 days"})))

    with pytest.raises(AuthError) as ei:
        await _client().exchange("code-1", _attempt())
    assert ei.value.stage == STAGE_TOKEN_EXCHANGE
    assert ei.value.message == "token exchange returned an invalid expires_in"
    assert ei.value.details["status_code"] == 200
