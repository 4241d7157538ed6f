"""FastAPI application entrypoint.

``create_app`` is the composition root. Tests pass their own settings, store
and user repository; ``uvicorn prepcoach.main:create_app --factory`` builds
everything from the environment.
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI

from .api.auth import linkedin_callback
from .api.auth import router as auth_router
from .api.health import router as health_router
from .auth.flow import LoginFlow
from .auth.identity import SqlUserRepository, UserRepository
from .config import AuthSettings, current_env, load_auth_settings
from .db.core import init_db, make_engine, make_session_factory
from .env_utils import load_env
from .error_handlers import register_error_handlers
from .logging_config import configure_logging
from .middleware import RequestIDMiddleware
from .session_store import SessionStore, build_session_store
from .startup.config_guard import assert_auth_config

logger = logging.getLogger(__name__)

_FIXED_CALLBACK_PATHS = {"/auth/callback", "/auth/linkedin/callback"}


def create_app(
    settings: AuthSettings | None = None,
    store: SessionStore | None = None,
    users: UserRepository | None = None,
) -> FastAPI:
    """Composition root for the FastAPI application."""
    if settings is None:
        load_env()
        configure_logging()
        settings = load_auth_settings()

    assert_auth_config(settings)

    session_factory = None
    needs_db = users is None or (store is None and settings.session_backend == "sql")
    if needs_db:
        engine = make_engine(settings.database_url)
        init_db(engine)
        session_factory = make_session_factory(engine)

    if store is None:
        store = build_session_store(settings, session_factory)
    if users is None:
        users = SqlUserRepository(session_factory)

    app = FastAPI(title="PrepCoach Auth")
    app.state.auth_settings = settings
    app.state.session_store = store
    app.state.users = users
    app.state.login_flow = LoginFlow(settings, store, users)

    app.add_middleware(RequestIDMiddleware)
    register_error_handlers(app)

    app.include_router(health_router)
    app.include_router(auth_router)
    # a non-default OAUTH_CALLBACK_PATH still needs a handler
    if settings.callback_path not in _FIXED_CALLBACK_PATHS:
        app.add_api_route(settings.callback_path, linkedin_callback, methods=["GET"], include_in_schema=False)

    logger.info(
        "Application created",
        extra={
            "meta": {
                "env": current_env(),
                "session_backend": settings.session_backend,
                "profile_mode": settings.profile_mode,
                "callback_path": settings.callback_path,
                "has_credentials": settings.has_credentials,
            }
        },
    )
    return app


if __name__ == "__main__":
    import uvicorn

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", 5000))
    uvicorn.run(create_app(), host=host, port=port)


__all__ = ["create_app"]
