import logging
import os
from pathlib import Path

from dotenv import dotenv_values

_ENV_PATH = Path(".env").resolve()  # absolute path = no cwd surprises
_ENV_EXAMPLE_PATH = Path(".env.example").resolve()

_last_mtimes: dict[str, float] | None = None

_logger = logging.getLogger(__name__)


def _mtime(path: Path) -> float:
    try:
        return path.stat().st_mtime
    except FileNotFoundError:
        return -1.0


def _fill_missing(path: Path, skip_empty: bool = False) -> int:
    """Copy keys from ``path`` into os.environ without clobbering existing values."""
    filled = 0
    for k, v in (dotenv_values(path) or {}).items():
        if not k or v is None:
            continue
        # blank placeholders must not mask defaults derived from other keys
        if skip_empty and not v.strip():
            continue
        # programmatic overrides (monkeypatch, process env) win
        if k in os.environ:
            continue
        os.environ[str(k)] = str(v)
        filled += 1
    return filled


def load_env(force: bool | int | str = False) -> None:
    """Load .env and .env.example into the process environment.

    Precedence (highest → lowest): existing process env, .env, .env.example.
    Files are re-read only when their mtime changes, unless ``force`` is set
    or the process runs under tests (ENV=test or PYTEST_RUNNING).

    Parsing: handled by python-dotenv; supports quoted values and comments.
    """
    global _last_mtimes

    _force = str(force).lower() in {"1", "true", "yes", "on"}
    test_mode = os.getenv("ENV", "").strip().lower() == "test" or bool(
        os.getenv("PYTEST_RUNNING")
    )

    current = {"env": _mtime(_ENV_PATH), "example": _mtime(_ENV_EXAMPLE_PATH)}
    if not (_force or test_mode) and _last_mtimes == current:
        return

    applied_env = _fill_missing(_ENV_PATH) if current["env"] >= 0 else 0
    filled_example = _fill_missing(_ENV_EXAMPLE_PATH, skip_empty=True) if current["example"] >= 0 else 0

    _last_mtimes = current
    if applied_env or filled_example:
        _logger.info(
            "env_loader: applied .env=%d, .env.example=%d",
            applied_env,
            filled_example,
        )
