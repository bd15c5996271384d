from __future__ import annotations

from typing import Any, Generic, TypeVar
from uuid import uuid4

from fastapi import Request
from pydantic import BaseModel


API_VERSION = "v1"
REQUEST_ID_HEADER = "X-Request-Id"

DataT = TypeVar("DataT")


class ResponseMeta(BaseModel):
    request_id: str
    api_version: str = API_VERSION


class ErrorBody(BaseModel):
    code: str
    message: str
    details: dict[str, Any] | None = None


class SuccessEnvelope(BaseModel, Generic[DataT]):
    data: DataT
    meta: ResponseMeta


class ErrorEnvelope(BaseModel):
    error: ErrorBody
    meta: ResponseMeta


def request_id_for(request: Request) -> str:
    # The middleware normally sets this; handlers that run outside it still get a stable id.
    request_id = getattr(request.state, "request_id", None) or request.headers.get(REQUEST_ID_HEADER)
    if not request_id:
        request_id = str(uuid4())
    request.state.request_id = request_id
    return request_id


def _meta(request: Request) -> dict[str, Any]:
    return ResponseMeta(request_id=request_id_for(request)).model_dump()


def success_response(*, request: Request, data: Any) -> dict[str, Any]:
    return {"data": data, "meta": _meta(request)}


def error_response(
    *,
    request: Request,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    body = ErrorBody(code=code, message=message, details=details)
    return {"error": body.model_dump(exclude_none=True), "meta": _meta(request)}
