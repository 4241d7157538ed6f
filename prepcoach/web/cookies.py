"""Session cookie helpers.

All ``Set-Cookie`` writes for the session id go through here so attributes
stay consistent between login, rotation and logout.
"""

from __future__ import annotations

import logging

from starlette.requests import Request
from starlette.responses import Response

from ..config import AuthSettings

log = logging.getLogger("cookie.ops")


def _secure(settings: AuthSettings, request: Request | None) -> bool:
    if settings.cookies_secure is not None:
        return settings.cookies_secure
    if request is None:
        return False
    proto = request.headers.get("x-forwarded-proto", "").split(",")[0].strip().lower()
    return (proto or request.url.scheme) == "https"


def read_session_id(request: Request, settings: AuthSettings) -> str | None:
    value = request.cookies.get(settings.session_cookie_name)
    return value or None


def set_session_cookie(resp: Response, session_id: str, settings: AuthSettings, request: Request | None = None) -> None:
    secure = _secure(settings, request)
    resp.set_cookie(
        settings.session_cookie_name,
        session_id,
        max_age=settings.session_ttl_seconds,
        path="/",
        httponly=True,
        samesite="lax",
        secure=secure,
    )
    log.info(
        "[COOKIE.OP] set %s path=/ samesite=lax secure=%s httponly=True",
        settings.session_cookie_name,
        secure,
    )


def clear_session_cookie(resp: Response, settings: AuthSettings, request: Request | None = None) -> None:
    resp.delete_cookie(
        settings.session_cookie_name,
        path="/",
        httponly=True,
        samesite="lax",
        secure=_secure(settings, request),
    )
    log.info("[COOKIE.OP] clear %s path=/", settings.session_cookie_name)


__all__ = ["clear_session_cookie", "read_session_id", "set_session_cookie"]
