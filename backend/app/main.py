from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any
from uuid import uuid4

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.exceptions import RequestValidationError
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.api.events_routes import router as events_router
from backend.app.api.guards import Services
from backend.app.api.notes_routes import router as notes_router
from backend.app.api.responses import (
    handle_dashboard_error,
    handle_request_validation_error,
    handle_unexpected_error,
)
from backend.app.api.user_routes import router as user_router
from backend.app.api.youtube_routes import router as youtube_router
from backend.app.dependencies import (
    build_services,
    close_services,
    get_settings,
    get_telemetry,
)
from backend.app.errors import DashboardError
from backend.app.logging_config import configure_application_logging

logger = logging.getLogger("youtube_companion.api")


async def health_check(services: Services) -> dict[str, Any]:
    database: dict[str, Any] = {"healthy": True, "backend": services.database.backend}
    try:
        await services.database.ping()
    except Exception as exc:
        logger.warning("health check database probe failed error_type=%s", type(exc).__name__)
        database["healthy"] = False
        database["error"] = "Database connection failed"
    return {
        "status": "ok" if database["healthy"] else "degraded",
        "database": database,
    }


def _build_lifespan(
    http_transport: httpx.AsyncBaseTransport | None,
) -> Callable[[FastAPI], Any]:
    @asynccontextmanager
    async def app_lifespan(app: FastAPI) -> AsyncIterator[None]:
        settings = get_settings()
        configure_application_logging(settings)
        services = await build_services(
            settings,
            telemetry=get_telemetry(),
            http_transport=http_transport,
        )
        app.state.services = services
        try:
            yield
        finally:
            app.state.services = None
            await close_services(services)

    return app_lifespan


def create_app(*, http_transport: httpx.AsyncBaseTransport | None = None) -> FastAPI:
    app = FastAPI(
        title="YouTube Companion API",
        version="0.1.0",
        lifespan=_build_lifespan(http_transport),
    )

    async def request_context_middleware(
        request: Request,
        call_next: Callable[[Request], Awaitable[Response]],
    ) -> Response:
        telemetry = get_telemetry()
        incoming_request_id = request.headers.get("X-Request-ID")
        request_id = (
            incoming_request_id.strip()
            if isinstance(incoming_request_id, str) and incoming_request_id.strip()
            else str(uuid4())
        )
        context_tokens = bind_contextvars(
            http_request_id=request_id,
            http_method=request.method,
            http_path=request.url.path,
        )
        telemetry.emit(
            "http.request.start",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )
        try:
            with telemetry.span(
                "http.request",
                request_id=request_id,
                method=request.method,
                path=request.url.path,
            ) as span:
                response = await call_next(request)
                span.set(status_code=response.status_code)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            reset_contextvars(**context_tokens)

    app.middleware("http")(request_context_middleware)
    app.add_exception_handler(DashboardError, handle_dashboard_error)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
    app.include_router(youtube_router)
    app.include_router(notes_router)
    app.include_router(events_router)
    app.include_router(user_router)
    app.add_api_route(
        "/health",
        health_check,
        methods=["GET"],
        tags=["system"],
        operation_id="health_check",
    )

    return app


app = create_app()
