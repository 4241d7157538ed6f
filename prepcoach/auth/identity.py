"""Mapping provider identities onto local users."""

from __future__ import annotations

import datetime as dt
import hashlib
import logging
from dataclasses import dataclass
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from ..db.core import session_scope
from ..db.models import User
from .models import ExternalProfile, LocalUser

logger = logging.getLogger(__name__)


@dataclass
class UserFields:
    """Provider-derived columns written on every sign-in."""

    display_name: str = ""
    email: str = ""
    picture_url: str = ""
    profile_url: str = ""
    access_token_ref: str | None = None


class UserRepository(Protocol):
    def find_by_external_id(self, external_subject_id: str) -> LocalUser | None: ...

    def get(self, user_id: str) -> LocalUser | None: ...

    def upsert_external(self, external_subject_id: str, fields: UserFields) -> LocalUser: ...


def _aware(value: dt.datetime | None) -> dt.datetime | None:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=dt.UTC)
    return value


def _to_local(row: User) -> LocalUser:
    return LocalUser(
        id=row.id,
        external_subject_id=row.external_subject_id,
        display_name=row.display_name,
        email=row.email,
        picture_url=row.picture_url,
        profile_url=row.profile_url,
        access_token_ref=row.access_token_ref,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
    )


def _apply(row: User, fields: UserFields, now: dt.datetime) -> None:
    row.display_name = fields.display_name
    row.email = fields.email
    row.picture_url = fields.picture_url
    row.profile_url = fields.profile_url
    row.access_token_ref = fields.access_token_ref
    row.updated_at = now
    row.last_login_at = now


class SqlUserRepository:
    def __init__(self, session_factory: sessionmaker[Session]):
        self._factory = session_factory

    def find_by_external_id(self, external_subject_id: str) -> LocalUser | None:
        with session_scope(self._factory) as db:
            row = db.scalar(select(User).where(User.external_subject_id == external_subject_id))
            return _to_local(row) if row else None

    def get(self, user_id: str) -> LocalUser | None:
        with session_scope(self._factory) as db:
            row = db.get(User, user_id)
            return _to_local(row) if row else None

    def upsert_external(self, external_subject_id: str, fields: UserFields) -> LocalUser:
        now = dt.datetime.now(dt.UTC)
        with session_scope(self._factory) as db:
            row = db.scalar(select(User).where(User.external_subject_id == external_subject_id))
            if row is not None:
                _apply(row, fields, now)
                db.commit()
                return _to_local(row)

            row = User(external_subject_id=external_subject_id, created_at=now)
            _apply(row, fields, now)
            db.add(row)
            try:
                db.commit()
                logger.info("User created", extra={"meta": {"user_id": row.id}})
                return _to_local(row)
            except IntegrityError:
                # lost a race with a concurrent first login for the same subject
                db.rollback()
                logger.info("Concurrent user insert detected; updating existing row")

            row = db.scalar(select(User).where(User.external_subject_id == external_subject_id))
            if row is None:
                raise RuntimeError("user row vanished after unique-constraint conflict")
            _apply(row, fields, now)
            db.commit()
            return _to_local(row)


def token_ref(access_token: str | None) -> str | None:
    """Opaque, non-reversible handle for an access token."""
    if not access_token:
        return None
    return hashlib.sha256(access_token.encode()).hexdigest()[:32]


class IdentityResolver:
    def __init__(self, users: UserRepository):
        self.users = users

    def resolve(self, profile: ExternalProfile, access_token: str | None = None) -> LocalUser:
        """Find or create the local user for ``profile``. Idempotent per subject id."""
        fields = UserFields(
            display_name=profile.display_name or "",
            email=profile.email or "",
            picture_url=profile.picture_url or "",
            profile_url=profile.profile_url or "",
            access_token_ref=token_ref(access_token),
        )
        user = self.users.upsert_external(profile.subject_id, fields)
        logger.info(
            "Identity resolved",
            extra={"meta": {"user_id": user.id, "has_email": bool(user.email)}},
        )
        return user


__all__ = ["IdentityResolver", "SqlUserRepository", "UserFields", "UserRepository", "token_ref"]
