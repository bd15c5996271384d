from __future__ import annotations

import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from envrecon.apps.api.errors import (
    domain_exception_handler,
    http_exception_handler,
    unhandled_exception_handler,
    validation_exception_handler,
)
from envrecon.apps.api.response import API_VERSION, REQUEST_ID_HEADER, request_id_for
from envrecon.apps.api.routes.components import router as components_router
from envrecon.apps.api.routes.environments import router as environments_router
from envrecon.apps.api.routes.health import router as health_router
from envrecon.apps.api.routes.reconciliations import router as reconciliations_router
from envrecon.core.config import get_settings
from envrecon.core.errors import EnvReconError
from envrecon.core.logging import configure_logging
from envrecon.services.events.handlers import register_default_handlers
from envrecon.services.telemetry import record_request


def create_app() -> FastAPI:
    configure_logging()
    # Inline delivery runs handlers in this process, so they must be subscribed here too.
    register_default_handlers()
    app = FastAPI(title=get_settings().app_name)

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next):  # type: ignore[override]
        request_id = request_id_for(request)
        start = time.monotonic()
        response = await call_next(request)
        record_request(
            status_code=response.status_code,
            latency_ms=(time.monotonic() - start) * 1000.0,
        )
        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        return response

    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(EnvReconError, domain_exception_handler)
    app.add_exception_handler(Exception, unhandled_exception_handler)

    for router in (health_router, environments_router, components_router, reconciliations_router):
        app.include_router(router, prefix=f"/{API_VERSION}")

    return app


app = create_app()
