from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass

from .errors import MSG_INVALID_STATE, MSG_MISSING_CODE, STAGE_CALLBACK, AuthError
from .models import AuthAttempt
from .state import StateTokenManager

logger = logging.getLogger(__name__)


@dataclass
class ValidatedCallback:
    attempt: AuthAttempt
    code: str


class CallbackValidator:
    """Checks the provider's redirect back to us before any network call is made."""

    def __init__(self, states: StateTokenManager):
        self.states = states

    def validate(self, params: Mapping[str, str], session_id: str | None) -> ValidatedCallback:
        error = params.get("error")
        if error:
            description = params.get("error_description") or ""
            logger.warning(
                "Provider returned an error on callback",
                extra={"meta": {"error": error, "error_description": description}},
            )
            # the pending attempt is dead either way
            if session_id:
                self.states.discard(session_id)
            raise AuthError(
                STAGE_CALLBACK,
                f"provider returned an error: {error} - {description}",
                {"error": error, "error_description": description},
            )

        code = params.get("code")
        if not code:
            raise AuthError(STAGE_CALLBACK, MSG_MISSING_CODE)

        attempt = self.states.consume_attempt(session_id, params.get("state")) if session_id else None
        if attempt is None:
            raise AuthError(STAGE_CALLBACK, MSG_INVALID_STATE)

        return ValidatedCallback(attempt=attempt, code=code)


__all__ = ["CallbackValidator", "ValidatedCallback"]
