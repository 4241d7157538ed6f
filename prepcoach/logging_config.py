import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import UTC, datetime

# Exposed so other modules can set/request ids
req_id_var: ContextVar[str] = ContextVar("req_id", default="-")

# query/body keys whose values must never reach a log line
_SECRET_KEYS = {"access_token", "client_secret", "code", "state", "id_token", "refresh_token"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.now(UTC).isoformat(timespec="seconds").replace("+00:00", "Z"),
            "req_id": getattr(record, "req_id", req_id_var.get()),
            "level": record.levelname,
            "component": record.name,
            "msg": record.getMessage(),
            "env": os.getenv("ENV", "").strip(),
        }
        if hasattr(record, "meta"):
            payload["meta"] = record.meta
            # Expose session_id present in structured meta for easy searching
            if isinstance(record.meta, dict) and record.meta.get("session_id"):
                payload["session_id"] = record.meta.get("session_id")
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        try:
            return json.dumps(payload, ensure_ascii=False, default=str)
        except (TypeError, ValueError):
            # Fallback to plain message if payload has unserialisable types
            return payload.get("msg", "")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        # Propagate request id from context‑var into every log line
        record.req_id = req_id_var.get()
        return True


class SecretMetaFilter(logging.Filter):
    """Mask secret-looking values that slipped into structured meta."""

    def filter(self, record: logging.LogRecord) -> bool:
        meta = getattr(record, "meta", None)
        if isinstance(meta, dict):
            record.meta = {
                k: (mask(v) if k in _SECRET_KEYS and isinstance(v, str) else v)
                for k, v in meta.items()
            }
        return True


def mask(value: str | None, keep: int = 6) -> str:
    """Return a log-safe rendition of a secret: short prefix plus length."""
    if not value:
        return ""
    return f"{value[:keep]}…[{len(value)}]"


def configure_logging() -> None:
    """
    Call once at app startup.
    LOG_LEVEL env var controls verbosity (default INFO).
    LOG_FORMAT=plain switches from JSON lines to a human-readable format.
    """
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    plain = os.getenv("LOG_FORMAT", "").strip().lower() == "plain"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level, logging.INFO))

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    if plain:
        formatter: logging.Formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - [%(req_id)s] %(message)s"
        )
        handler = logging.StreamHandler(sys.stdout)
    else:
        formatter = JsonFormatter()
        handler = logging.StreamHandler(sys.stderr)

    # Filters on the handler so records from every logger pass through them
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SecretMetaFilter())
    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Reduce third-party verbosity unless LOG_LEVEL is DEBUG
    if level != "DEBUG":
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(
        "Logging configured", extra={"meta": {"level": level, "plain": plain}}
    )
