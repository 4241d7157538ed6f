from __future__ import annotations

import logging
import time
from collections.abc import Callable

from .errors import AuthError
from .models import AttemptStatus, AuthAttempt
from .state import StateTokenManager, new_state_token

logger = logging.getLogger(__name__)


class RetryCoordinator:
    """Moves a failed attempt on to the next redirect candidate.

    ``max_attempts`` counts authorization round trips in total, the first one
    included.
    """

    def __init__(self, states: StateTokenManager, max_attempts: int = 3, clock: Callable[[], float] = time.time):
        self.states = states
        self.max_attempts = max(1, int(max_attempts))
        self._clock = clock

    def should_retry(self, attempt: AuthAttempt, error: AuthError) -> bool:
        if attempt.status.terminal:
            return False
        if not error.retryable:
            return False
        if not attempt.fallback_redirect_uris:
            return False
        return attempt.attempt_count + 1 < self.max_attempts

    def retry(self, session_id: str, attempt: AuthAttempt) -> AuthAttempt:
        if not attempt.fallback_redirect_uris:
            raise ValueError("no fallback redirect URI left")
        previous = attempt.active_redirect_uri
        attempt.active_redirect_uri = attempt.fallback_redirect_uris.pop(0)
        attempt.attempt_count += 1
        attempt.state_token = new_state_token()
        # lifetime restarts with the new round trip
        attempt.created_at = self._clock()
        attempt.status = AttemptStatus.PENDING
        self.states.save_attempt(session_id, attempt)
        logger.info(
            "Retrying sign-in with next redirect URI",
            extra={
                "meta": {
                    "previous_redirect_uri": previous,
                    "redirect_uri": attempt.active_redirect_uri,
                    "attempt_count": attempt.attempt_count,
                    "remaining": len(attempt.fallback_redirect_uris),
                }
            },
        )
        return attempt


__all__ = ["RetryCoordinator"]
