"""
Database package initialization
"""
from .core import init_db, make_engine, make_session_factory, session_scope
from .models import Base, HttpSession, User

__all__ = [
    "Base",
    "HttpSession",
    "User",
    "init_db",
    "make_engine",
    "make_session_factory",
    "session_scope",
]
