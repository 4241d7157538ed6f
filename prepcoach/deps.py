"""FastAPI dependencies shared by the routers and the downstream application."""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request

from .auth.flow import LoginFlow
from .auth.identity import UserRepository
from .auth.models import LocalUser
from .config import AuthSettings
from .session_store import SessionStore
from .web.cookies import read_session_id

logger = logging.getLogger(__name__)


def get_settings(request: Request) -> AuthSettings:
    return request.app.state.auth_settings


def get_store(request: Request) -> SessionStore:
    return request.app.state.session_store


def get_users(request: Request) -> UserRepository:
    return request.app.state.users


def get_login_flow(request: Request) -> LoginFlow:
    return request.app.state.login_flow


def get_current_user(request: Request) -> LocalUser | None:
    """Return the signed-in user for this request, or None.

    Raises SessionStoreUnavailable when the store is down; the app maps that to 503.
    """
    settings = get_settings(request)
    sid = read_session_id(request, settings)
    user_id = get_store(request).user_id_for(sid)
    if not user_id:
        return None
    user = get_users(request).get(user_id)
    if user is None:
        logger.info("Session points at a missing user", extra={"meta": {"user_id": user_id}})
    return user


def require_user(request: Request) -> LocalUser:
    user = get_current_user(request)
    if user is None:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user


__all__ = [
    "get_current_user",
    "get_login_flow",
    "get_settings",
    "get_store",
    "get_users",
    "require_user",
]
