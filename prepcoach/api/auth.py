"""
LinkedIn sign-in endpoints.

Every browser-facing failure ends in a 302 back to the login page with
``?error=<message>&stage=<stage>``; JSON endpoints use the standard error
envelope instead.
"""

import logging
from datetime import datetime
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from pydantic import BaseModel

from ..auth.errors import STAGE_CALLBACK, AuthError
from ..auth.flow import LoginFailed, LoginFlow, RetryRedirect
from ..auth.models import LocalUser
from ..config import AuthSettings, is_dev_mode, is_production
from ..deps import get_current_user, get_login_flow, get_settings, get_store
from ..http_errors import not_found, unauthorized
from ..session_store import SessionStore, SessionStoreUnavailable
from ..web.cookies import clear_session_cookie, read_session_id, set_session_cookie

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Auth"])


class UserOut(BaseModel):
    id: str
    external_subject_id: str
    display_name: str = ""
    email: str = ""
    picture_url: str = ""
    profile_url: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_user(cls, user: LocalUser) -> "UserOut":
        # access_token_ref stays server-side
        return cls(
            id=user.id,
            external_subject_id=user.external_subject_id,
            display_name=user.display_name,
            email=user.email,
            picture_url=user.picture_url,
            profile_url=user.profile_url,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class RedirectUrisOut(BaseModel):
    callback_path: str
    candidates: list[str]
    profile_mode: str
    has_credentials: bool
    max_attempts: int


def _redirect(url: str) -> RedirectResponse:
    resp = RedirectResponse(url=url, status_code=302)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _error_redirect(settings: AuthSettings, error: AuthError) -> RedirectResponse:
    sep = "&" if "?" in settings.login_route else "?"
    return _redirect(f"{settings.login_route}{sep}{urlencode(error.public())}")


@router.get("/auth/linkedin")
async def linkedin_login(
    request: Request,
    flow: LoginFlow = Depends(get_login_flow),
    settings: AuthSettings = Depends(get_settings),
    store: SessionStore = Depends(get_store),
):
    """Start a sign-in: remember the attempt server-side and send the browser to LinkedIn."""
    sid = read_session_id(request, settings)
    new_cookie = sid is None
    if new_cookie:
        sid = store.new_session_id()

    try:
        url = flow.begin_login(request.headers, sid, request.url.scheme)
    except AuthError as e:
        logger.warning(
            "Sign-in could not start",
            extra={"meta": {"stage": e.stage, "error": e.message, "details": e.details}},
        )
        return _error_redirect(settings, e)

    resp = _redirect(url)
    if new_cookie:
        set_session_cookie(resp, sid, settings, request)
    return resp


async def _handle_callback(
    request: Request,
    flow: LoginFlow,
    settings: AuthSettings,
    store: SessionStore,
):
    sid = read_session_id(request, settings)
    outcome = await flow.complete_login(dict(request.query_params), sid)

    if isinstance(outcome, RetryRedirect):
        logger.info(
            "Redirecting for another attempt",
            extra={"meta": {"attempt_count": outcome.attempt.attempt_count, "cause": outcome.cause.message}},
        )
        return _redirect(outcome.url)

    if isinstance(outcome, LoginFailed):
        return _error_redirect(settings, outcome.error)

    try:
        new_sid = store.establish(outcome.user.id, sid)
    except SessionStoreUnavailable as e:
        err = AuthError(STAGE_CALLBACK, "session store unavailable", {"error": str(e)})
        return _error_redirect(settings, err)

    resp = _redirect(settings.home_route)
    set_session_cookie(resp, new_sid, settings, request)
    return resp


@router.get("/auth/callback")
async def linkedin_callback(
    request: Request,
    flow: LoginFlow = Depends(get_login_flow),
    settings: AuthSettings = Depends(get_settings),
    store: SessionStore = Depends(get_store),
):
    return await _handle_callback(request, flow, settings, store)


@router.get("/auth/linkedin/callback", include_in_schema=False)
async def linkedin_callback_alias(
    request: Request,
    flow: LoginFlow = Depends(get_login_flow),
    settings: AuthSettings = Depends(get_settings),
    store: SessionStore = Depends(get_store),
):
    return await _handle_callback(request, flow, settings, store)


@router.get("/api/auth/user", response_model=UserOut)
async def current_user(user: LocalUser | None = Depends(get_current_user)):
    if user is None:
        return unauthorized()
    return UserOut.from_user(user)


@router.post("/api/auth/logout")
async def logout(
    request: Request,
    settings: AuthSettings = Depends(get_settings),
    store: SessionStore = Depends(get_store),
):
    sid = read_session_id(request, settings)
    store.destroy(sid)
    resp = JSONResponse({"status": "ok"})
    clear_session_cookie(resp, settings, request)
    logger.info("Signed out", extra={"meta": {"had_session": bool(sid)}})
    return resp


@router.get("/api/auth/linkedin/redirect-uris", response_model=RedirectUrisOut)
async def redirect_uris(
    request: Request,
    flow: LoginFlow = Depends(get_login_flow),
    settings: AuthSettings = Depends(get_settings),
):
    """List the callback URLs this request would try, in order. Dev only."""
    if is_production() and not is_dev_mode():
        return not_found()
    return RedirectUrisOut(
        callback_path=settings.callback_path,
        candidates=flow.resolver.resolve(request.headers, request.url.scheme),
        profile_mode=settings.profile_mode,
        has_credentials=settings.has_credentials,
        max_attempts=settings.max_attempts,
    )


__all__ = ["router"]
