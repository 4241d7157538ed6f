from __future__ import annotations

import os
from dataclasses import dataclass, field

LINKEDIN_AUTH_URL = "https://www.linkedin.com/oauth/v2/authorization"
LINKEDIN_TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
LINKEDIN_USERINFO_URL = "https://api.linkedin.com/v2/userinfo"
LINKEDIN_ME_URL = "https://api.linkedin.com/v2/me"
LINKEDIN_EMAIL_URL = (
    "https://api.linkedin.com/v2/emailAddress?q=members&projection=(elements*(handle~))"
)

PROFILE_MODE_USERINFO = "userinfo"
PROFILE_MODE_LEGACY = "legacy"

# space-separated
_SCOPE_USERINFO = "openid profile email"
_SCOPE_LEGACY = "r_liteprofile r_emailaddress"


def _is_truthy(v: str | None) -> bool:
    return (v or "").strip().lower() in {"1", "true", "yes", "on"}


def _csv(v: str | None) -> tuple[str, ...]:
    return tuple(p.strip() for p in (v or "").split(",") if p.strip())


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be an integer, got {raw!r}") from None


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"{name} must be a number, got {raw!r}") from None


def current_env() -> str:
    return (os.getenv("ENV") or "dev").strip().lower()


def is_production() -> bool:
    return current_env() in {"prod", "production"}


def is_dev_mode() -> bool:
    return _is_truthy(os.getenv("DEV_MODE"))


@dataclass(frozen=True)
class ProviderEndpoints:
    auth_url: str = LINKEDIN_AUTH_URL
    token_url: str = LINKEDIN_TOKEN_URL
    userinfo_url: str = LINKEDIN_USERINFO_URL
    me_url: str = LINKEDIN_ME_URL
    email_url: str = LINKEDIN_EMAIL_URL


@dataclass(frozen=True)
class AuthSettings:
    """Everything the sign-in flow reads from the environment."""

    client_id: str = ""
    client_secret: str = ""
    scope: str = _SCOPE_USERINFO
    profile_mode: str = PROFILE_MODE_USERINFO
    endpoints: ProviderEndpoints = field(default_factory=ProviderEndpoints)

    callback_path: str = "/auth/callback"
    deploy_domains: tuple[str, ...] = ()
    explicit_redirect_uri: str = ""
    repl_slug: str = ""
    repl_owner: str = ""
    loopback_hosts: tuple[str, ...] = ("localhost:5000",)
    host_cache_ttl_seconds: float = 300.0

    max_attempts: int = 3
    attempt_ttl_seconds: int = 600
    http_timeout: float = 10.0

    session_backend: str = "sql"
    redis_url: str = ""
    database_url: str = "sqlite:///./prepcoach.db"
    session_cookie_name: str = "prepcoach_sid"
    session_ttl_seconds: int = 14 * 24 * 3600
    cookies_secure: bool | None = None

    login_route: str = "/login"
    home_route: str = "/"

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)


def load_auth_settings() -> AuthSettings:
    """Build AuthSettings from the current process environment."""
    profile_mode = (os.getenv("LINKEDIN_PROFILE_MODE") or PROFILE_MODE_USERINFO).strip().lower()
    if profile_mode not in {PROFILE_MODE_USERINFO, PROFILE_MODE_LEGACY}:
        raise RuntimeError(
            f"LINKEDIN_PROFILE_MODE must be '{PROFILE_MODE_USERINFO}' or "
            f"'{PROFILE_MODE_LEGACY}', got {profile_mode!r}"
        )
    default_scope = _SCOPE_LEGACY if profile_mode == PROFILE_MODE_LEGACY else _SCOPE_USERINFO

    redis_url = os.getenv("REDIS_URL", "").strip()
    backend = (os.getenv("SESSION_BACKEND") or ("redis" if redis_url else "sql")).strip().lower()

    callback_path = os.getenv("OAUTH_CALLBACK_PATH", "/auth/callback").strip() or "/auth/callback"
    if not callback_path.startswith("/"):
        callback_path = "/" + callback_path

    loopback = os.getenv("OAUTH_LOOPBACK_HOSTS")
    cookies_secure_raw = os.getenv("COOKIES_SECURE")

    return AuthSettings(
        client_id=os.getenv("LINKEDIN_CLIENT_ID", "").strip(),
        client_secret=os.getenv("LINKEDIN_CLIENT_SECRET", "").strip(),
        scope=os.getenv("LINKEDIN_SCOPE", default_scope).strip() or default_scope,
        profile_mode=profile_mode,
        endpoints=ProviderEndpoints(
            auth_url=os.getenv("LINKEDIN_AUTH_URL", LINKEDIN_AUTH_URL),
            token_url=os.getenv("LINKEDIN_TOKEN_URL", LINKEDIN_TOKEN_URL),
            userinfo_url=os.getenv("LINKEDIN_USERINFO_URL", LINKEDIN_USERINFO_URL),
            me_url=os.getenv("LINKEDIN_ME_URL", LINKEDIN_ME_URL),
            email_url=os.getenv("LINKEDIN_EMAIL_URL", LINKEDIN_EMAIL_URL),
        ),
        callback_path=callback_path,
        deploy_domains=_csv(os.getenv("APP_DEPLOY_DOMAINS")),
        explicit_redirect_uri=os.getenv("LINKEDIN_REDIRECT_URI", "").strip(),
        repl_slug=os.getenv("REPL_SLUG", "").strip(),
        repl_owner=os.getenv("REPL_OWNER", "").strip(),
        loopback_hosts=_csv(loopback) if loopback is not None else ("localhost:5000",),
        host_cache_ttl_seconds=_float("HOST_CACHE_TTL_SECONDS", 300.0),
        max_attempts=max(1, _int("OAUTH_MAX_ATTEMPTS", 3)),
        attempt_ttl_seconds=max(1, _int("OAUTH_ATTEMPT_TTL_SECONDS", 600)),
        http_timeout=_float("OAUTH_HTTP_TIMEOUT", 10.0),
        session_backend=backend,
        redis_url=redis_url,
        database_url=os.getenv("DATABASE_URL", "sqlite:///./prepcoach.db"),
        session_cookie_name=os.getenv("SESSION_COOKIE_NAME", "prepcoach_sid"),
        session_ttl_seconds=_int("SESSION_TTL_SECONDS", 14 * 24 * 3600),
        cookies_secure=_is_truthy(cookies_secure_raw) if cookies_secure_raw is not None else None,
        login_route=os.getenv("LOGIN_ROUTE", "/login"),
        home_route=os.getenv("HOME_ROUTE", "/"),
    )


__all__ = [
    "AuthSettings",
    "ProviderEndpoints",
    "PROFILE_MODE_LEGACY",
    "PROFILE_MODE_USERINFO",
    "current_env",
    "is_dev_mode",
    "is_production",
    "load_auth_settings",
]
