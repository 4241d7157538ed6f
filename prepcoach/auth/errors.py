"""Sign-in error type and stage constants.

The stage names mirror the position in the pipeline where a failure happened.
Keep them as constants so callers and tests can grep for every usage.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

STAGE_AUTHORIZATION = "authorization"
STAGE_CALLBACK = "callback"
STAGE_TOKEN_EXCHANGE = "token_exchange"
STAGE_PROFILE = "profile"

STAGES = (STAGE_AUTHORIZATION, STAGE_CALLBACK, STAGE_TOKEN_EXCHANGE, STAGE_PROFILE)

# Failures at these stages may be retried with the next redirect candidate
RETRYABLE_STAGES = frozenset({STAGE_TOKEN_EXCHANGE, STAGE_PROFILE})

MSG_MISSING_CODE = "missing authorization code"
MSG_INVALID_STATE = "invalid or expired state"
MSG_NOT_CONFIGURED = "LinkedIn sign-in is not configured"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z")


@dataclass(eq=False)
class AuthError(Exception):
    stage: str
    message: str
    details: dict[str, Any] | None = None
    timestamp: str = field(default_factory=_now_iso)

    def __post_init__(self) -> None:
        if self.stage not in STAGES:
            raise ValueError(f"unknown auth error stage: {self.stage!r}")

    @property
    def retryable(self) -> bool:
        return self.stage in RETRYABLE_STAGES

    def public(self) -> dict[str, str]:
        # Safe for the browser: raw provider bodies stay in ``details``
        return {"error": self.message, "stage": self.stage}

    def __str__(self) -> str:
        return f"{self.stage}: {self.message}"
