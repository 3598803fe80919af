from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

import httpx
from fastapi import Request

from backend.app.config import AppSettings, load_settings
from backend.app.repositories.database import Database, build_database
from backend.app.repositories.event_log_repository import EventLogRepository
from backend.app.repositories.note_repository import NoteRepository
from backend.app.repositories.user_repository import UserRepository
from backend.app.services.event_logger import AuditEventLogger
from backend.app.services.notes_service import NotesService
from backend.app.services.rate_limiter import FixedWindowRateLimiter
from backend.app.services.youtube_service import YouTubeService
from backend.app.telemetry import TelemetryClient, build_telemetry_client


@dataclass(frozen=True)
class AppServices:
    """Everything the request handlers need, built once per process by the app lifespan."""

    settings: AppSettings
    database: Database
    http_client: httpx.AsyncClient
    youtube: YouTubeService
    users: UserRepository
    notes: NotesService
    events: EventLogRepository
    audit: AuditEventLogger
    youtube_actions_limiter: FixedWindowRateLimiter
    notes_limiter: FixedWindowRateLimiter
    telemetry: TelemetryClient


@lru_cache(maxsize=1)
def get_settings() -> AppSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_telemetry() -> TelemetryClient:
    settings = get_settings()
    return build_telemetry_client(
        enabled=settings.telemetry_enabled,
        sink=settings.telemetry_sink,
    )


async def build_services(
    settings: AppSettings,
    *,
    telemetry: TelemetryClient,
    http_transport: httpx.AsyncBaseTransport | None = None,
    database: Database | None = None,
) -> AppServices:
    database = database or build_database(settings)
    await database.initialize()
    http_client = httpx.AsyncClient(
        timeout=httpx.Timeout(settings.youtube_http_timeout_seconds),
        transport=http_transport,
    )
    events = EventLogRepository(database)

    return AppServices(
        settings=settings,
        database=database,
        http_client=http_client,
        youtube=YouTubeService(
            settings.youtube_api_key or "",
            http_client=http_client,
            base_url=settings.youtube_api_base_url,
            telemetry=telemetry,
        ),
        users=UserRepository(database),
        notes=NotesService(NoteRepository(database)),
        events=events,
        audit=AuditEventLogger(events),
        youtube_actions_limiter=FixedWindowRateLimiter(
            max_requests=settings.youtube_actions_rate_limit_max_requests,
            window_seconds=settings.youtube_actions_rate_limit_window_seconds,
        ),
        notes_limiter=FixedWindowRateLimiter(
            max_requests=settings.notes_rate_limit_max_requests,
            window_seconds=settings.notes_rate_limit_window_seconds,
        ),
        telemetry=telemetry,
    )


async def close_services(services: AppServices) -> None:
    try:
        await services.http_client.aclose()
    finally:
        await services.database.close()


def get_services(request: Request) -> AppServices:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise RuntimeError("application services are not initialized")
    return services


def reset_cached_dependencies() -> None:
    get_telemetry.cache_clear()
    get_settings.cache_clear()
