from __future__ import annotations

import asyncio
import logging

from arq import Retry
from arq.connections import RedisSettings
from arq.worker import func

from envrecon.core.config import get_settings
from envrecon.core.logging import configure_logging
from envrecon.services.events.bus import DISPATCH_JOB, EventEnvelope, dispatch, set_worker_heartbeat
from envrecon.services.events.handlers import register_default_handlers
from envrecon.services.telemetry import increment_counter


logger = logging.getLogger(__name__)


async def dispatch_event(ctx, payload: dict) -> int:
    # Validate the envelope in the worker so malformed jobs fail fast.
    envelope = EventEnvelope.model_validate(payload)
    settings = get_settings()
    attempt = ctx.get("job_try", 1)
    try:
        return await dispatch(envelope)
    except Exception as exc:
        if attempt >= settings.event_max_retries:
            increment_counter("events.failed")
            logger.exception(
                "event_delivery_failed event_type=%s event_id=%s attempts=%s",
                envelope.event_type,
                envelope.event_id,
                attempt,
            )
            raise
        logger.warning(
            "event_delivery_retry event_type=%s event_id=%s attempt=%s",
            envelope.event_type,
            envelope.event_id,
            attempt,
        )
        raise Retry(defer=attempt * 2) from exc


async def _heartbeat_loop() -> None:
    settings = get_settings()
    while True:
        await set_worker_heartbeat()
        await asyncio.sleep(settings.worker_heartbeat_interval_s)


async def _startup(ctx) -> None:
    configure_logging()
    register_default_handlers()
    ctx["heartbeat_task"] = asyncio.create_task(_heartbeat_loop())


async def _shutdown(ctx) -> None:
    task = ctx.get("heartbeat_task")
    if task:
        task.cancel()


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.event_queue_name
    max_tries = settings.event_max_retries
    functions = [func(dispatch_event, name=DISPATCH_JOB)]
    on_startup = _startup
    on_shutdown = _shutdown
