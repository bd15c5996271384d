from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from envrecon.apps.api.response import error_response
from envrecon.core.errors import (
    ConflictError,
    EnvReconError,
    ExternalDependencyError,
    NotFoundError,
)


logger = logging.getLogger(__name__)

_HTTP_CODES: dict[int, str] = {
    400: "BAD_REQUEST",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
    409: "CONFLICT",
    500: "INTERNAL_ERROR",
}

# Checked in order; a None message means the exception text is safe to return.
_DOMAIN_ERRORS: tuple[tuple[type[EnvReconError], int, str, str | None], ...] = (
    (ConflictError, 409, "CONFLICT", None),
    (NotFoundError, 404, "NOT_FOUND", None),
    (ExternalDependencyError, 500, "UPSTREAM_ERROR", "External dependency failed"),
)


def _json(request: Request, status_code: int, code: str, message: str, **kwargs: Any) -> JSONResponse:
    headers = kwargs.pop("headers", None)
    payload = error_response(request=request, code=code, message=message, **kwargs)
    return JSONResponse(content=payload, status_code=status_code, headers=headers)


async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    # Routes raise HTTPException with either a message string or a {"code", "message", ...} dict.
    code = _HTTP_CODES.get(exc.status_code, "UNKNOWN_ERROR")
    message = "Request failed"
    details: dict[str, Any] | None = None
    if isinstance(exc.detail, dict):
        extra = dict(exc.detail)
        code = str(extra.pop("code", None) or code)
        message = str(extra.pop("message", None) or message)
        details = extra or None
    elif isinstance(exc.detail, str):
        message = exc.detail
    return _json(request, exc.status_code, code, message, details=details, headers=exc.headers)


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _json(
        request,
        422,
        "REQUEST_VALIDATION_ERROR",
        "Validation error",
        details={"errors": jsonable_encoder(exc.errors())},
    )


async def domain_exception_handler(request: Request, exc: EnvReconError) -> JSONResponse:
    # Storage and upstream details are logged where they occur and never echoed back.
    for error_type, status_code, code, message in _DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            if status_code >= 500:
                logger.warning("request_failed path=%s error=%s", request.url.path, error_type.__name__)
            return _json(request, status_code, code, message or str(exc) or code.lower())
    logger.warning("request_failed path=%s error=%s", request.url.path, exc.__class__.__name__)
    return _json(request, 500, "INTERNAL_ERROR", "Internal server error")


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_request_error path=%s", request.url.path, exc_info=exc)
    return _json(request, 500, "INTERNAL_ERROR", "Internal server error")
