"""Sign-in orchestration.

``LoginFlow`` wires the individual steps together and turns every failure
into a value the HTTP layer can redirect on. Nothing in here touches the
request or response objects directly.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from ..config import AuthSettings
from ..session_store import SessionStore, SessionStoreUnavailable
from .authorize import build_authorization_url
from .callback import CallbackValidator
from .errors import (
    MSG_NOT_CONFIGURED,
    STAGE_AUTHORIZATION,
    STAGE_CALLBACK,
    STAGE_PROFILE,
    STAGE_TOKEN_EXCHANGE,
    AuthError,
)
from .host_resolver import HostDomainResolver
from .identity import IdentityResolver, UserRepository
from .models import AttemptStatus, AuthAttempt, LocalUser
from .profile import ProfileFetcher
from .retry import RetryCoordinator
from .state import StateTokenManager
from .token_exchange import TokenExchangeClient

logger = logging.getLogger(__name__)


@dataclass
class LoginSucceeded:
    user: LocalUser
    attempt: AuthAttempt


@dataclass
class RetryRedirect:
    url: str
    attempt: AuthAttempt
    cause: AuthError


@dataclass
class LoginFailed:
    error: AuthError
    attempt: AuthAttempt | None = None


LoginOutcome = LoginSucceeded | RetryRedirect | LoginFailed


def _unexpected(stage: str, exc: Exception) -> AuthError:
    return AuthError(stage, "unexpected error during sign-in", {"error": type(exc).__name__})


class LoginFlow:
    def __init__(
        self,
        settings: AuthSettings,
        store: SessionStore,
        users: UserRepository,
        *,
        resolver: HostDomainResolver | None = None,
        exchanger: TokenExchangeClient | None = None,
        profiles: ProfileFetcher | None = None,
    ):
        self.settings = settings
        self.store = store
        self.resolver = resolver or HostDomainResolver.from_settings(settings)
        self.states = StateTokenManager(store, settings.attempt_ttl_seconds)
        self.validator = CallbackValidator(self.states)
        self.exchanger = exchanger or TokenExchangeClient.from_settings(settings)
        self.profiles = profiles or ProfileFetcher.from_settings(settings)
        self.identity = IdentityResolver(users)
        self.retries = RetryCoordinator(self.states, settings.max_attempts)

    def _authorization_url(self, attempt: AuthAttempt) -> str:
        return build_authorization_url(
            self.settings.endpoints.auth_url, self.settings.client_id, self.settings.scope, attempt
        )

    def begin_login(self, headers: Mapping[str, str], session_id: str, scheme: str | None = None) -> str:
        """Start an attempt for ``session_id`` and return the provider URL to redirect to."""
        if not self.settings.has_credentials:
            missing = [n for n, v in (("client_id", self.settings.client_id), ("client_secret", self.settings.client_secret)) if not v]
            raise AuthError(STAGE_AUTHORIZATION, MSG_NOT_CONFIGURED, {"missing": missing})
        candidates = self.resolver.resolve(headers, scheme)
        try:
            attempt = self.states.begin_attempt(session_id, candidates)
        except SessionStoreUnavailable as e:
            raise AuthError(
                STAGE_AUTHORIZATION, "session store unavailable", {"error": str(e)}
            ) from e
        return self._authorization_url(attempt)

    async def complete_login(self, params: Mapping[str, str], session_id: str | None) -> LoginOutcome:
        try:
            validated = self.validator.validate(params, session_id)
        except AuthError as e:
            logger.warning("Callback rejected", extra={"meta": {"stage": e.stage, "error": e.message}})
            return LoginFailed(e)
        except SessionStoreUnavailable as e:
            return LoginFailed(AuthError(STAGE_CALLBACK, "session store unavailable", {"error": str(e)}))

        attempt = validated.attempt
        stage = STAGE_TOKEN_EXCHANGE

        try:
            token = await self.exchanger.exchange(validated.code, attempt)
            stage = STAGE_PROFILE
            profile = await self.profiles.fetch(token.access_token)
        except AuthError as e:
            if self.retries.should_retry(attempt, e):
                try:
                    attempt = self.retries.retry(session_id, attempt)
                except SessionStoreUnavailable as store_err:
                    logger.warning("Could not persist retry", extra={"meta": {"error": str(store_err)}})
                else:
                    return RetryRedirect(self._authorization_url(attempt), attempt, e)
            return self._fail(session_id, attempt, e)
        except Exception as e:
            logger.exception("Unexpected error during sign-in", extra={"meta": {"stage": stage}})
            return self._fail(session_id, attempt, _unexpected(stage, e))

        try:
            user = self.identity.resolve(profile, token.access_token)
        except SQLAlchemyError as e:
            logger.exception("Failed to store user")
            err = AuthError(STAGE_PROFILE, "could not save user profile", {"error": type(e).__name__})
            return self._fail(session_id, attempt, err)
        except Exception as e:
            logger.exception("Unexpected error while saving user")
            return self._fail(session_id, attempt, _unexpected(STAGE_PROFILE, e))

        attempt.status = AttemptStatus.COMPLETED
        logger.info(
            "Sign-in completed",
            extra={"meta": {"user_id": user.id, "attempt_count": attempt.attempt_count}},
        )
        return LoginSucceeded(user=user, attempt=attempt)

    def _fail(self, session_id: str, attempt: AuthAttempt, error: AuthError) -> LoginFailed:
        attempt.status = AttemptStatus.FAILED
        try:
            self.states.discard(session_id)
        except SessionStoreUnavailable as e:
            logger.warning("Could not discard failed attempt", extra={"meta": {"error": str(e)}})
        logger.warning(
            "Sign-in failed",
            extra={
                "meta": {
                    "stage": error.stage,
                    "error": error.message,
                    "details": error.details,
                    "attempt_count": attempt.attempt_count,
                    "redirect_uri": attempt.active_redirect_uri,
                }
            },
        )
        return LoginFailed(error, attempt)


__all__ = ["LoginFailed", "LoginFlow", "LoginOutcome", "LoginSucceeded", "RetryRedirect"]
