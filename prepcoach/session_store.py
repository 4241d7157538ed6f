"""Server-side session storage.

Two kinds of records live here, both keyed by the opaque id in the session
cookie:

* ``oauth:attempt:<sid>`` holds the in-flight sign-in attempt. It is read with
  an atomic take so two callbacks racing on the same attempt cannot both win.
* ``session:<sid>`` maps a signed-in browser to a local user id.

Backends share a tiny put/get/take/delete surface so the store logic above
them is identical whether records sit in Redis, the SQL database or memory.
"""

from __future__ import annotations

import json
import logging
import random
import secrets
import threading
import time
from typing import Any, Protocol

from redis import Redis
from redis.exceptions import RedisError, ResponseError, WatchError
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .auth.models import AuthAttempt
from .config import AuthSettings, is_production
from .db.core import session_scope
from .db.models import HttpSession

logger = logging.getLogger(__name__)

ATTEMPT_PREFIX = "oauth:attempt:"
SESSION_PREFIX = "session:"


class SessionStoreUnavailable(Exception):
    """Raised when the configured session store backend is unavailable."""


class SessionBackend(Protocol):
    def put(self, key: str, value: str, ttl_seconds: int) -> None: ...

    def get(self, key: str) -> str | None: ...

    def take(self, key: str) -> str | None: ...

    def delete(self, key: str) -> None: ...


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class MemorySessionBackend:
    """Process-local backend for development and tests."""

    def __init__(self, clock=time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._data: dict[str, tuple[str, float]] = {}

    def _live(self, key: str) -> str | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self._clock():
            self._data.pop(key, None)
            return None
        return value

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        with self._lock:
            self._data[key] = (value, self._clock() + max(int(ttl_seconds), 1))

    def get(self, key: str) -> str | None:
        with self._lock:
            return self._live(key)

    def take(self, key: str) -> str | None:
        with self._lock:
            value = self._live(key)
            self._data.pop(key, None)
            return value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class RedisSessionBackend:
    def __init__(self, client: Redis):
        self._r = client

    @classmethod
    def from_url(cls, url: str) -> RedisSessionBackend:
        return cls(Redis.from_url(url, decode_responses=True))

    def ping(self) -> None:
        try:
            self._r.ping()
        except RedisError as e:
            raise SessionStoreUnavailable(str(e)) from e

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            self._r.setex(key, max(int(ttl_seconds), 1), value)
        except RedisError as e:
            logger.warning("Redis unavailable during put", extra={"meta": {"error": str(e)}})
            raise SessionStoreUnavailable(str(e)) from e

    def get(self, key: str) -> str | None:
        try:
            return self._r.get(key)
        except RedisError as e:
            logger.warning("Redis unavailable during get", extra={"meta": {"error": str(e)}})
            raise SessionStoreUnavailable(str(e)) from e

    def take(self, key: str) -> str | None:
        try:
            try:
                return self._r.getdel(key)
            except ResponseError:
                # Redis < 6.2: no GETDEL, fall back to WATCH/GET/DEL
                return self._take_watched(key)
        except RedisError as e:
            logger.warning("Redis unavailable during take", extra={"meta": {"error": str(e)}})
            raise SessionStoreUnavailable(str(e)) from e

    def _take_watched(self, key: str) -> str | None:
        with self._r.pipeline() as p:
            while True:
                try:
                    p.watch(key)
                    raw = p.get(key)
                    p.multi()
                    p.delete(key)
                    p.execute()
                    return raw
                except WatchError:
                    # someone touched the key; re-read
                    continue

    def delete(self, key: str) -> None:
        try:
            self._r.delete(key)
        except RedisError as e:
            logger.warning("Redis unavailable during delete", extra={"meta": {"error": str(e)}})
            raise SessionStoreUnavailable(str(e)) from e


class SqlSessionBackend:
    """Rows in ``http_sessions``; shared by every process on the same database."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        clock=time.time,
        *,
        purge_rate: float = 0.01,
        rng=random.random,
    ):
        self._factory = session_factory
        self._clock = clock
        # fraction of puts that also sweep expired rows
        self._purge_rate = purge_rate
        self._rng = rng

    def put(self, key: str, value: str, ttl_seconds: int) -> None:
        expires_at = self._clock() + max(int(ttl_seconds), 1)
        try:
            with session_scope(self._factory) as db:
                row = db.get(HttpSession, key)
                if row is None:
                    db.add(HttpSession(key=key, payload=value, expires_at=expires_at))
                else:
                    row.payload = value
                    row.expires_at = expires_at
                try:
                    db.commit()
                except IntegrityError:
                    # concurrent insert of the same key; last writer wins
                    db.rollback()
                    db.merge(HttpSession(key=key, payload=value, expires_at=expires_at))
                    db.commit()
                if self._purge_rate > 0 and self._rng() < self._purge_rate:
                    self._purge(db)
        except SQLAlchemyError as e:
            raise SessionStoreUnavailable(str(e)) from e

    def get(self, key: str) -> str | None:
        try:
            with session_scope(self._factory) as db:
                row = db.get(HttpSession, key)
                if row is None or row.expires_at <= self._clock():
                    return None
                return row.payload
        except SQLAlchemyError as e:
            raise SessionStoreUnavailable(str(e)) from e

    def take(self, key: str) -> str | None:
        try:
            with session_scope(self._factory) as db:
                row = db.execute(
                    select(HttpSession.payload, HttpSession.expires_at).where(HttpSession.key == key)
                ).first()
                if row is None:
                    return None
                payload, expires_at = row
                # only the caller whose DELETE removes the row owns the value
                result = db.execute(
                    delete(HttpSession).where(
                        HttpSession.key == key, HttpSession.payload == payload
                    )
                )
                db.commit()
                if result.rowcount != 1 or expires_at <= self._clock():
                    return None
                return payload
        except SQLAlchemyError as e:
            raise SessionStoreUnavailable(str(e)) from e

    def delete(self, key: str) -> None:
        try:
            with session_scope(self._factory) as db:
                db.execute(delete(HttpSession).where(HttpSession.key == key))
                db.commit()
        except SQLAlchemyError as e:
            raise SessionStoreUnavailable(str(e)) from e

    def _purge(self, db: Session) -> int:
        result = db.execute(delete(HttpSession).where(HttpSession.expires_at <= self._clock()))
        db.commit()
        purged = result.rowcount or 0
        if purged:
            logger.info("Purged expired session rows", extra={"meta": {"count": purged}})
        return purged

    def purge_expired(self) -> int:
        try:
            with session_scope(self._factory) as db:
                return self._purge(db)
        except SQLAlchemyError as e:
            raise SessionStoreUnavailable(str(e)) from e


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SessionStore:
    """Attempt and sign-in records on top of a backend."""

    def __init__(
        self,
        backend: SessionBackend,
        *,
        attempt_ttl_seconds: int = 600,
        session_ttl_seconds: int = 14 * 24 * 3600,
    ):
        self.backend = backend
        self.attempt_ttl_seconds = int(attempt_ttl_seconds)
        self.session_ttl_seconds = int(session_ttl_seconds)

    @staticmethod
    def new_session_id() -> str:
        return secrets.token_urlsafe(32)

    # -- attempts ---------------------------------------------------------

    def put_attempt(self, session_id: str, attempt: AuthAttempt) -> None:
        self.backend.put(
            ATTEMPT_PREFIX + session_id,
            json.dumps(attempt.to_dict(), separators=(",", ":")),
            self.attempt_ttl_seconds,
        )

    def get_attempt(self, session_id: str) -> AuthAttempt | None:
        return self._decode_attempt(self.backend.get(ATTEMPT_PREFIX + session_id))

    def take_attempt(self, session_id: str) -> AuthAttempt | None:
        """Atomically read and remove the attempt for ``session_id``."""
        return self._decode_attempt(self.backend.take(ATTEMPT_PREFIX + session_id))

    def delete_attempt(self, session_id: str) -> None:
        self.backend.delete(ATTEMPT_PREFIX + session_id)

    @staticmethod
    def _decode_attempt(raw: str | None) -> AuthAttempt | None:
        if not raw:
            return None
        try:
            return AuthAttempt.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning("Discarding unreadable auth attempt", extra={"meta": {"error": str(e)}})
            return None

    # -- signed-in sessions -------------------------------------------------

    def establish(self, user_id: str, previous_session_id: str | None = None) -> str:
        """Bind a fresh session id to ``user_id``; the pre-login id is dropped."""
        sid = self.new_session_id()
        payload: dict[str, Any] = {"user_id": user_id, "created_at": int(time.time())}
        self.backend.put(SESSION_PREFIX + sid, json.dumps(payload), self.session_ttl_seconds)
        if previous_session_id:
            self.backend.delete(SESSION_PREFIX + previous_session_id)
            self.backend.delete(ATTEMPT_PREFIX + previous_session_id)
        logger.info("Session established", extra={"meta": {"user_id": user_id}})
        return sid

    def user_id_for(self, session_id: str | None) -> str | None:
        if not session_id:
            return None
        raw = self.backend.get(SESSION_PREFIX + session_id)
        if not raw:
            return None
        try:
            return json.loads(raw).get("user_id")
        except ValueError:
            return None

    def destroy(self, session_id: str | None) -> None:
        if not session_id:
            return
        self.backend.delete(SESSION_PREFIX + session_id)
        self.backend.delete(ATTEMPT_PREFIX + session_id)


def build_session_store(settings: AuthSettings, session_factory: sessionmaker[Session] | None) -> SessionStore:
    """Pick a backend from settings. Production never gets the memory backend."""
    kind = settings.session_backend
    backend: SessionBackend
    if kind == "redis":
        if not settings.redis_url:
            raise SessionStoreUnavailable("SESSION_BACKEND=redis requires REDIS_URL")
        redis_backend = RedisSessionBackend.from_url(settings.redis_url)
        try:
            redis_backend.ping()
        except SessionStoreUnavailable as e:
            # keep the backend; requests surface the outage as 503 until redis returns
            logger.warning("Redis not reachable at startup", extra={"meta": {"error": str(e)}})
        backend = redis_backend
    elif kind == "sql":
        if session_factory is None:
            raise SessionStoreUnavailable("SESSION_BACKEND=sql requires a database")
        sql_backend = SqlSessionBackend(session_factory)
        try:
            sql_backend.purge_expired()
        except SessionStoreUnavailable as e:
            logger.warning("Could not purge expired sessions at startup", extra={"meta": {"error": str(e)}})
        backend = sql_backend
    elif kind == "memory":
        if is_production():
            raise SessionStoreUnavailable("memory session backend is not allowed in production")
        backend = MemorySessionBackend()
    else:
        raise SessionStoreUnavailable(f"unknown SESSION_BACKEND {kind!r}")
    logger.info("Session store backend selected", extra={"meta": {"backend": kind}})
    return SessionStore(
        backend,
        attempt_ttl_seconds=settings.attempt_ttl_seconds,
        session_ttl_seconds=settings.session_ttl_seconds,
    )


__all__ = [
    "MemorySessionBackend",
    "RedisSessionBackend",
    "SessionBackend",
    "SessionStore",
    "SessionStoreUnavailable",
    "SqlSessionBackend",
    "build_session_store",
]
