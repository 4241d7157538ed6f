# prepcoach/db/models.py
from __future__ import annotations

import datetime as dt
import uuid

import sqlalchemy as sa
from sqlalchemy import DateTime, Float, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# ---------- Base with naming convention ----------
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    __abstract__ = True
    metadata = sa.MetaData(naming_convention=NAMING_CONVENTION)


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.UTC)


def _new_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    """Local account keyed by the provider's stable subject id."""

    __tablename__ = "users"
    __table_args__ = (sa.UniqueConstraint("external_subject_id"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_id)
    external_subject_id: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    email: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    picture_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    profile_url: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # opaque handle for the provider token, never the token itself
    access_token_ref: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
    last_login_at: Mapped[dt.datetime | None] = mapped_column(DateTime(timezone=True))


class HttpSession(Base):
    """Key/value rows backing the SQL session store (attempts and sign-ins)."""

    __tablename__ = "http_sessions"
    __table_args__ = (sa.Index("ix_http_sessions_expires_at", "expires_at"),)

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    # epoch seconds
    expires_at: Mapped[float] = mapped_column(Float, nullable=False)


__all__ = ["Base", "HttpSession", "NAMING_CONVENTION", "User"]
