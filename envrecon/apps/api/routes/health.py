from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel

from envrecon.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from envrecon.apps.api.response import SuccessEnvelope, success_response
from envrecon.services.telemetry import (
    counters_snapshot,
    external_latency_by_integration,
    requests_by_status,
)

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str


class MetricsResponse(BaseModel):
    counters: dict[str, int]
    requests: dict[str, int]
    external_calls: dict[str, dict[str, float | int]]


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request) -> dict:
    payload = HealthResponse(status="ok")
    return success_response(request=request, data=payload.model_dump())


@router.get("/ops/metrics", response_model=SuccessEnvelope[MetricsResponse])
async def metrics(request: Request, window_s: int = Query(default=300, ge=1, le=86400)) -> dict[str, Any]:
    # In-process counters plus CD and object storage latency for the window.
    payload = MetricsResponse(
        counters=counters_snapshot(),
        requests=requests_by_status(window_s),
        external_calls=external_latency_by_integration(window_s),
    )
    return success_response(request=request, data=payload.model_dump())
