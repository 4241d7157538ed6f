"""
Startup configuration guardrails - refuses sign-in configs that cannot work in prod.
"""

import logging

from ..config import AuthSettings, is_dev_mode, is_production

log = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Configuration error that should prevent application startup."""

    pass


def _problems(settings: AuthSettings) -> list[str]:
    problems = []
    if not settings.client_id:
        problems.append("LINKEDIN_CLIENT_ID is not set")
    if not settings.client_secret:
        problems.append("LINKEDIN_CLIENT_SECRET is not set")
    if settings.session_backend == "memory":
        # attempts must be visible to whichever worker receives the callback
        problems.append("SESSION_BACKEND=memory is process-local")
    if settings.session_backend == "redis" and not settings.redis_url:
        problems.append("SESSION_BACKEND=redis but REDIS_URL is not set")
    return problems


def assert_auth_config(settings: AuthSettings) -> None:
    """
    Fail fast on broken sign-in configuration.

    Raises ConfigError in production (unless DEV_MODE is on); elsewhere the
    same problems are only logged.
    """
    problems = _problems(settings)
    if not problems:
        log.debug("Auth configuration OK")
        return

    if is_production() and not is_dev_mode():
        raise ConfigError("; ".join(problems))

    for problem in problems:
        log.warning("Auth configuration: %s", problem)


__all__ = ["ConfigError", "assert_auth_config"]
