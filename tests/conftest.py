import json
import os

import pytest

os.environ.setdefault("ENV", "test")

from prepcoach.auth.identity import SqlUserRepository  # noqa: E402
from prepcoach.config import AuthSettings  # noqa: E402
from prepcoach.db.core import init_db, make_engine, make_session_factory  # noqa: E402
from prepcoach.session_store import MemorySessionBackend, SessionStore  # noqa: E402

TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
USERINFO_URL = "https://api.linkedin.com/v2/userinfo"
ME_URL = "https://api.linkedin.com/v2/me"

REDIRECT_MISMATCH_BODY = {
    "error": "invalid_redirect_uri",
    "error_description": "Unable to retrieve access token: appid/redirect uri/code verifier does not match authorization code.",
}


class DummyResponse:
    def __init__(self, status_code, json_data=None, text=None):
        self.status_code = status_code
        self._json = json_data
        self._text = text

    @property
    def text(self):
        if self._text is not None:
            return self._text
        return json.dumps(self._json)

    def json(self):
        if self._json is None:
            raise ValueError("not json")
        return self._json


class FakeLinkedIn:
    """Stand-in for the provider's token and profile endpoints.

    ``registered_redirect`` mimics the app registration: token exchanges with
    any other redirect_uri fail the way the real provider does.
    """

    def __init__(self):
        self.registered_redirect = None
        self.token_calls = []
        self.get_calls = []
        self.userinfo = {
            "sub": "li-123",
            "name": "Ada Lovelace",
            "email": "ada@example.com",
            "picture": "https://media.example.com/ada.jpg",
        }
        self.token_counter = 0
        self.userinfo_failures = 0
        self.token_body = None

    def client(self, *a, **kw):
        return _FakeClient(self)

    async def handle_post(self, url, data=None, headers=None):
        self.token_calls.append(dict(data or {}))
        if self.registered_redirect and data["redirect_uri"] != self.registered_redirect:
            return DummyResponse(400, REDIRECT_MISMATCH_BODY)
        if self.token_body is not None:
            return DummyResponse(200, dict(self.token_body))
        self.token_counter += 1
        return DummyResponse(
            200,
            {"access_token": f"at-{self.token_counter}", "expires_in": 5184000, "scope": "openid profile email"},
        )

    async def handle_get(self, url, headers=None):
        self.get_calls.append(url)
        if url == USERINFO_URL and self.userinfo_failures > 0:
            self.userinfo_failures -= 1
            return DummyResponse(500, None, text="upstream error")
        if url == USERINFO_URL:
            return DummyResponse(200, dict(self.userinfo))
        return DummyResponse(404, {"message": "not found"})


class _FakeClient:
    def __init__(self, provider):
        self._p = provider

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    async def post(self, url, data=None, headers=None):
        return await self._p.handle_post(url, data=data, headers=headers)

    async def get(self, url, headers=None):
        return await self._p.handle_get(url, headers=headers)


@pytest.fixture
def fake_linkedin(monkeypatch):
    provider = FakeLinkedIn()
    # token_exchange and profile share the httpx module object
    monkeypatch.setattr("prepcoach.auth.token_exchange.httpx.AsyncClient", provider.client)
    return provider


@pytest.fixture
def settings():
    return AuthSettings(
        client_id="client-abc",
        client_secret="secret-xyz",
        deploy_domains=("fallback.example.com",),
        session_backend="memory",
        database_url="sqlite://",
    )


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite://")
    init_db(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store():
    return SessionStore(MemorySessionBackend())


@pytest.fixture
def users(session_factory):
    return SqlUserRepository(session_factory)


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()
