from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from backend.app.errors import CorruptRecordError, DashboardError, RateLimitError
from backend.app.services.rate_limiter import RateLimitDecision

logger = logging.getLogger("youtube_companion.api")

RATE_LIMIT_ERROR = "Rate limit exceeded"
RATE_LIMIT_MESSAGE = "Too many requests. Please try again later."


def envelope(
    *,
    success: bool,
    data: Any = None,
    error: str | None = None,
    message: str | None = None,
) -> dict[str, Any]:
    body: dict[str, Any] = {"success": success}
    if data is not None:
        body["data"] = jsonable_encoder(data)
    if error is not None:
        body["error"] = error
    if message is not None:
        body["message"] = message
    return body


def ok(data: Any = None, *, message: str | None = None) -> dict[str, Any]:
    return envelope(success=True, data=data, message=message)


def rate_limit_headers(
    *, limit: int | None, remaining: int, reset_at: float | None, retry_after: int | None
) -> dict[str, str]:
    headers: dict[str, str] = {"X-RateLimit-Remaining": str(remaining)}
    if limit is not None:
        headers["X-RateLimit-Limit"] = str(limit)
    if reset_at is not None:
        headers["X-RateLimit-Reset"] = str(int(reset_at))
    if retry_after is not None and retry_after > 0:
        headers["Retry-After"] = str(retry_after)
    return headers


def decision_headers(decision: RateLimitDecision) -> dict[str, str]:
    return rate_limit_headers(
        limit=decision.limit,
        remaining=decision.remaining,
        reset_at=decision.reset_at,
        retry_after=decision.retry_after_seconds,
    )


async def handle_dashboard_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, DashboardError)
    if isinstance(exc, CorruptRecordError):
        logger.error(
            "corrupt stored record table=%s record_id=%s field=%s path=%s detail=%s",
            exc.table,
            exc.record_id,
            exc.field,
            request.url.path,
            exc.message,
        )
        return JSONResponse(
            status_code=500,
            content=envelope(
                success=False,
                error="Internal server error",
                message="A stored record could not be read.",
            ),
        )

    if isinstance(exc, RateLimitError):
        headers = rate_limit_headers(
            limit=exc.limit,
            remaining=0,
            reset_at=exc.reset_at,
            retry_after=exc.retry_after_seconds,
        )
        return JSONResponse(
            status_code=429,
            headers=headers,
            content=envelope(success=False, error=RATE_LIMIT_ERROR, message=exc.message),
        )

    if exc.status_code >= 500:
        logger.warning(
            "request failed path=%s error_type=%s status=%s message=%s",
            request.url.path,
            type(exc).__name__,
            exc.status_code,
            exc.message,
        )
    else:
        logger.info(
            "request rejected path=%s error_type=%s status=%s",
            request.url.path,
            type(exc).__name__,
            exc.status_code,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(success=False, error=exc.error, message=exc.message),
    )


async def handle_request_validation_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, RequestValidationError)
    details: list[str] = []
    for item in exc.errors():
        location = ".".join(str(part) for part in item.get("loc", ()) if part != "body")
        message = str(item.get("msg", "invalid value")).removeprefix("Value error, ")
        details.append(f"{location}: {message}" if location else message)
    logger.info("request validation failed path=%s errors=%s", request.url.path, len(details))
    return JSONResponse(
        status_code=400,
        content=envelope(
            success=False,
            error="Invalid input data",
            message="; ".join(details) or None,
        ),
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled error path=%s error_type=%s",
        request.url.path,
        type(exc).__name__,
    )
    return JSONResponse(
        status_code=500,
        content=envelope(success=False, error="Internal server error"),
    )
