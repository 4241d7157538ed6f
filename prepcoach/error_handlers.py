from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from starlette.exceptions import HTTPException as StarletteHTTPException

from .http_errors import error_response, not_found, service_unavailable, unauthorized
from .logging_config import req_id_var
from .session_store import SessionStoreUnavailable

log = logging.getLogger(__name__)

_CODES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    422: "validation_error",
    429: "too_many_requests",
    503: "service_unavailable",
}


async def handle_http_error(request: Request, exc: StarletteHTTPException):
    status = exc.status_code
    headers = dict(exc.headers or {})
    detail = exc.detail

    # pass through already-shaped envelopes
    if isinstance(detail, dict) and "code" in detail:
        return error_response(
            str(detail["code"]),
            str(detail.get("message") or ""),
            status=status,
            details=detail.get("details") or {},
            headers=headers,
        )
    if status == 401:
        return unauthorized(headers=headers)
    if status == 404:
        return not_found(headers=headers)

    code = _CODES.get(status, "error")
    message = detail if isinstance(detail, str) and detail else code.replace("_", " ")
    if 500 <= status < 600:
        headers.setdefault("Retry-After", "1")
    return error_response(
        code, message, status=status, details={"status_code": status, "path": request.url.path}, headers=headers
    )


async def handle_store_unavailable(request: Request, exc: SessionStoreUnavailable):
    log.warning(
        "Session store unavailable",
        extra={"meta": {"path": request.url.path, "error": str(exc)}},
    )
    return service_unavailable(message="Session store unavailable", headers={"Retry-After": "1"})


async def handle_unexpected_error(request: Request, exc: Exception):
    log.exception("unhandled.exception")
    return error_response(
        "internal",
        "internal error",
        status=500,
        details={"status_code": 500, "path": request.url.path, "req_id": req_id_var.get()},
    )


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(StarletteHTTPException, handle_http_error)
    app.add_exception_handler(SessionStoreUnavailable, handle_store_unavailable)
    app.add_exception_handler(Exception, handle_unexpected_error)


__all__ = ["register_error_handlers"]
