from __future__ import annotations

import asyncio
from datetime import datetime, timezone
import logging
from typing import Any, Awaitable, Callable
from uuid import uuid4

from arq import create_pool
from arq.connections import RedisSettings
from pydantic import BaseModel

from envrecon.core.config import get_settings
from envrecon.domain.events import EVENT_PAYLOAD_MODELS
from envrecon.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Awaitable[Any]]

# Name of the arq job the event worker exposes.
DISPATCH_JOB = "dispatch_event"
WORKER_HEARTBEAT_KEY = "envrecon:worker:heartbeat"

_handlers: dict[str, list[EventHandler]] = {}
_redis_pool = None
_redis_pool_loop = None
_redis_lock = asyncio.Lock()


class EventEnvelope(BaseModel):
    # Wire format shared by the API (publisher) and the worker (consumer).
    event_id: str
    event_type: str
    payload: dict[str, Any]
    published_at: str


def subscribe(event_type: str, handler: EventHandler) -> None:
    handlers = _handlers.setdefault(event_type, [])
    if handler not in handlers:
        handlers.append(handler)


def unsubscribe(event_type: str, handler: EventHandler) -> None:
    handlers = _handlers.get(event_type, [])
    if handler in handlers:
        handlers.remove(handler)


def subscribers(event_type: str) -> list[EventHandler]:
    return list(_handlers.get(event_type, []))


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


async def get_redis_pool():
    # Cache the Redis pool per event loop to avoid reconnecting on every publish.
    global _redis_pool, _redis_pool_loop
    current_loop = asyncio.get_running_loop()
    if _redis_pool is not None and _redis_pool_loop == current_loop:
        return _redis_pool
    if _redis_pool is not None and _redis_pool_loop != current_loop:
        _redis_pool = None
    async with _redis_lock:
        if _redis_pool is None:
            settings = get_settings()
            _redis_pool = await create_pool(
                RedisSettings.from_dsn(settings.redis_url),
                default_queue_name=settings.event_queue_name,
            )
            _redis_pool_loop = current_loop
    return _redis_pool


def _parse_payload(event_type: str, payload: dict[str, Any]) -> BaseModel | dict[str, Any]:
    model = EVENT_PAYLOAD_MODELS.get(event_type)
    return model.model_validate(payload) if model is not None else payload


async def dispatch(envelope: EventEnvelope) -> int:
    # Run every subscriber; a failing handler raises so the delivery can be retried.
    handlers = subscribers(envelope.event_type)
    if not handlers:
        logger.debug("event_without_subscribers event_type=%s", envelope.event_type)
        return 0
    payload = _parse_payload(envelope.event_type, envelope.payload)
    for handler in handlers:
        await handler(payload)
    increment_counter(f"events.handled.{envelope.event_type}")
    return len(handlers)


async def _dispatch_inline(envelope: EventEnvelope, *, max_retries: int) -> None:
    # Inline mode mimics worker redelivery without requiring Redis.
    attempt = 1
    while True:
        try:
            await dispatch(envelope)
            return
        except Exception:  # noqa: BLE001 - retried, then reported like a dead-lettered job
            if attempt >= max_retries:
                increment_counter("events.failed")
                logger.exception(
                    "event_delivery_failed event_type=%s event_id=%s attempts=%s",
                    envelope.event_type,
                    envelope.event_id,
                    attempt,
                )
                return
            attempt += 1


async def publish_event(event_type: str, payload: BaseModel | dict[str, Any]) -> str:
    data = payload.model_dump(mode="json") if isinstance(payload, BaseModel) else dict(payload)
    envelope = EventEnvelope(
        event_id=uuid4().hex,
        event_type=event_type,
        payload=data,
        published_at=_utc_now().isoformat(),
    )
    settings = get_settings()
    increment_counter(f"events.published.{event_type}")
    if settings.event_delivery_mode.lower() == "inline":
        await _dispatch_inline(envelope, max_retries=max(1, settings.event_max_retries))
        return envelope.event_id

    redis = await get_redis_pool()
    await redis.enqueue_job(
        DISPATCH_JOB,
        envelope.model_dump(),
        _job_id=envelope.event_id,
        _queue_name=settings.event_queue_name,
    )
    logger.debug("event_enqueued event_type=%s event_id=%s", event_type, envelope.event_id)
    return envelope.event_id


async def set_worker_heartbeat(*, timestamp: datetime | None = None) -> None:
    redis = await get_redis_pool()
    heartbeat_time = timestamp or _utc_now()
    await redis.set(WORKER_HEARTBEAT_KEY, heartbeat_time.isoformat())
