from __future__ import annotations

from collections.abc import Mapping

from fastapi.responses import JSONResponse

from .logging_config import req_id_var


def error_response(
    code: str,
    message: str,
    *,
    status: int,
    details: dict | None = None,
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    """Return a standardized JSONResponse with structured error details.

    Response format: {"code": code, "message": message, "details": details or {}}
    """
    hdrs = {"X-Error-Code": code}
    if headers:
        hdrs.update(dict(headers))
    payload = {"code": code, "message": message, "details": details or {}}
    return JSONResponse(payload, status_code=status, headers=hdrs)


def unauthorized(
    *,
    code: str = "unauthorized",
    message: str = "Unauthorized",
    hint: str = "sign in with LinkedIn to continue",
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    """Return a standardized 401 JSONResponse."""
    details = {"status_code": 401, "hint": hint}
    return error_response(code=code, message=message, status=401, details=details, headers=headers)


def not_found(
    *,
    code: str = "not_found",
    message: str = "Not Found",
    hint: str = "the requested resource does not exist",
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    """Return a standardized 404 JSONResponse with structured error details."""
    details = {"status_code": 404, "hint": hint}
    return error_response(code=code, message=message, status=404, details=details, headers=headers)


def service_unavailable(
    *,
    code: str = "service_unavailable",
    message: str = "Service Unavailable",
    hint: str = "try again shortly",
    headers: Mapping[str, str] | None = None,
) -> JSONResponse:
    """Return a standardized 503 JSONResponse; carries the request id for support."""
    details = {"status_code": 503, "hint": hint, "req_id": req_id_var.get()}
    return error_response(code=code, message=message, status=503, details=details, headers=headers)
