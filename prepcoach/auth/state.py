"""Per-session state tokens for the authorization round trip.

The token is the only thing tying a callback to the browser that started the
flow, so it is random, stored server-side under the session id, and taken out
of the store the first time any callback presents it.
"""

from __future__ import annotations

import hmac
import logging
import secrets
import time
from collections.abc import Callable, Sequence

from ..logging_config import mask
from ..session_store import SessionStore
from .models import AttemptStatus, AuthAttempt

logger = logging.getLogger(__name__)


def new_state_token() -> str:
    # 32 bytes -> 43 url-safe chars
    return secrets.token_urlsafe(32)


class StateTokenManager:
    def __init__(
        self,
        store: SessionStore,
        ttl_seconds: int = 600,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.ttl_seconds = int(ttl_seconds)
        self._clock = clock

    def begin_attempt(self, session_id: str, candidates: Sequence[str]) -> AuthAttempt:
        """Start a fresh attempt; any earlier pending attempt for the session is replaced."""
        if not candidates:
            raise ValueError("at least one redirect candidate is required")
        attempt = AuthAttempt(
            state_token=new_state_token(),
            active_redirect_uri=candidates[0],
            fallback_redirect_uris=list(candidates[1:]),
            attempt_count=0,
            created_at=self._clock(),
            status=AttemptStatus.PENDING,
        )
        self.store.put_attempt(session_id, attempt)
        logger.info(
            "Auth attempt started",
            extra={
                "meta": {
                    "state_prefix": mask(attempt.state_token),
                    "redirect_uri": attempt.active_redirect_uri,
                    "fallback_count": len(attempt.fallback_redirect_uris),
                }
            },
        )
        return attempt

    def consume_attempt(self, session_id: str, presented_state: str | None) -> AuthAttempt | None:
        """Take the session's attempt if ``presented_state`` matches and it has not expired.

        The attempt leaves the store whether or not the state matches, so a
        guessed or replayed state also burns the pending attempt.
        """
        attempt = self.store.take_attempt(session_id)
        if attempt is None:
            logger.warning("No pending auth attempt for session")
            return None
        if not presented_state or not hmac.compare_digest(
            attempt.state_token.encode(), presented_state.encode()
        ):
            logger.warning(
                "State token mismatch",
                extra={"meta": {"expected_prefix": mask(attempt.state_token), "presented_len": len(presented_state or "")}},
            )
            return None
        age = attempt.age(self._clock())
        if age > self.ttl_seconds:
            logger.warning("Auth attempt expired", extra={"meta": {"age_seconds": round(age, 1)}})
            return None
        attempt.status = AttemptStatus.CALLBACK_RECEIVED
        return attempt

    def save_attempt(self, session_id: str, attempt: AuthAttempt) -> None:
        self.store.put_attempt(session_id, attempt)

    def discard(self, session_id: str) -> None:
        self.store.delete_attempt(session_id)


__all__ = ["StateTokenManager", "new_state_token"]
