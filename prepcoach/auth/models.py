from __future__ import annotations

import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class AttemptStatus(str, Enum):
    """Lifecycle states for a sign-in attempt."""

    PENDING = "PENDING"
    CALLBACK_RECEIVED = "CALLBACK_RECEIVED"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def terminal(self) -> bool:
        return self in (AttemptStatus.COMPLETED, AttemptStatus.FAILED)


@dataclass
class AuthAttempt:
    """One browser session's in-flight sign-in.

    ``active_redirect_uri`` is sent verbatim to both the authorization and the
    token endpoint; it must never be normalised between the two.
    """

    state_token: str
    active_redirect_uri: str
    fallback_redirect_uris: list[str] = field(default_factory=list)
    attempt_count: int = 0
    created_at: float = field(default_factory=time.time)
    status: AttemptStatus = AttemptStatus.PENDING

    def age(self, now: float | None = None) -> float:
        return (now if now is not None else time.time()) - self.created_at

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthAttempt:
        return cls(
            state_token=str(data["state_token"]),
            active_redirect_uri=str(data["active_redirect_uri"]),
            fallback_redirect_uris=[str(u) for u in data.get("fallback_redirect_uris") or []],
            attempt_count=int(data.get("attempt_count", 0)),
            created_at=float(data.get("created_at", time.time())),
            status=AttemptStatus(data.get("status", AttemptStatus.PENDING.value)),
        )


@dataclass
class AccessToken:
    access_token: str
    token_type: str = "Bearer"
    expires_in: int | None = None
    scope: str | None = None
    id_token: str | None = None


@dataclass
class ExternalProfile:
    """Identity as reported by the provider; never persisted as-is."""

    subject_id: str
    display_name: str = ""
    email: str | None = None
    picture_url: str | None = None
    profile_url: str | None = None


@dataclass
class LocalUser:
    id: str
    external_subject_id: str
    display_name: str = ""
    email: str = ""
    picture_url: str = ""
    profile_url: str = ""
    access_token_ref: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
