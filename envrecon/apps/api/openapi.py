from __future__ import annotations

from typing import Any

from envrecon.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str) -> dict[str, Any]:
    return {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }


def _response(description: str, code: str, message: str) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    404: _response("Not found", "NOT_FOUND", "environment not found"),
    409: _response("Conflict", "CONFLICT", "environment already exists"),
    422: _response("Validation error", "REQUEST_VALIDATION_ERROR", "Validation error"),
    500: _response("Internal error", "INTERNAL_ERROR", "Internal server error"),
}
