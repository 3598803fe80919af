from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Request, Response

from backend.app.api.responses import decision_headers
from backend.app.dependencies import AppServices, get_services
from backend.app.errors import AuthenticationRequiredError, RateLimitError
from backend.app.repositories.user_repository import UserRecord
from backend.app.services.event_logger import AuditContext
from backend.app.services.rate_limiter import (
    FixedWindowRateLimiter,
    RateLimitDecision,
    get_client_identifier,
)
from backend.app.session import SessionContext, get_session

Services = Annotated[AppServices, Depends(get_services)]
Session = Annotated[SessionContext, Depends(get_session)]


@dataclass(frozen=True)
class CurrentUser:
    record: UserRecord
    session: SessionContext
    audit: AuditContext


@dataclass(frozen=True)
class YouTubeCaller:
    access_token: str
    user: UserRecord | None
    audit: AuditContext


async def require_user(request: Request, session: Session, services: Services) -> CurrentUser:
    if session.user is None or session.user.email is None:
        reason = "no session" if session.user is None else "session without email"
        await services.audit.log_auth_failure(
            AuditContext.from_headers(request.headers, user_id=None),
            reason=f"{reason} path={request.url.path}",
        )
        raise AuthenticationRequiredError("Authentication required")

    record = await services.users.get_or_create(
        email=session.user.email,
        name=session.user.name,
        external_id=session.user.id,
    )
    return CurrentUser(
        record=record,
        session=session,
        audit=AuditContext.from_headers(request.headers, user_id=record.id),
    )


async def require_youtube_token(
    request: Request, session: Session, services: Services
) -> YouTubeCaller:
    user: UserRecord | None = None
    if session.user is not None and session.user.email is not None:
        user = await services.users.get_or_create(
            email=session.user.email,
            name=session.user.name,
            external_id=session.user.id,
        )
    audit = AuditContext.from_headers(request.headers, user_id=user.id if user else None)

    if session.access_token is None:
        await services.audit.log_auth_failure(
            audit,
            reason=f"missing access token path={request.url.path}",
        )
        raise AuthenticationRequiredError("Authentication required. Please sign in with Google.")
    return YouTubeCaller(access_token=session.access_token, user=user, audit=audit)


def _enforce(
    *,
    scope: str,
    limiter: FixedWindowRateLimiter,
    request: Request,
    response: Response,
    session: SessionContext,
    services: AppServices,
) -> RateLimitDecision:
    client_id = get_client_identifier(
        request.headers,
        user_id=session.user.id if session.user is not None else None,
        fallback_address=request.client.host if request.client is not None else None,
    )
    decision = limiter.check(client_id)
    if not decision.allowed:
        services.telemetry.emit(
            "rate_limit.rejected",
            scope=scope,
            client_kind=client_id.split(":", 1)[0],
            retry_after_seconds=decision.retry_after_seconds,
        )
        raise RateLimitError(
            limit=decision.limit,
            reset_at=decision.reset_at,
            retry_after_seconds=decision.retry_after_seconds,
        )
    response.headers.update(decision_headers(decision))
    return decision


def enforce_youtube_action_limit(
    request: Request, response: Response, session: Session, services: Services
) -> RateLimitDecision:
    return _enforce(
        scope="youtube_actions",
        limiter=services.youtube_actions_limiter,
        request=request,
        response=response,
        session=session,
        services=services,
    )


def enforce_notes_limit(
    request: Request, response: Response, session: Session, services: Services
) -> RateLimitDecision:
    return _enforce(
        scope="notes",
        limiter=services.notes_limiter,
        request=request,
        response=response,
        session=session,
        services=services,
    )


AuthenticatedUser = Annotated[CurrentUser, Depends(require_user)]
AuthenticatedCaller = Annotated[YouTubeCaller, Depends(require_youtube_token)]
YouTubeActionQuota = Annotated[RateLimitDecision, Depends(enforce_youtube_action_limit)]
NotesQuota = Annotated[RateLimitDecision, Depends(enforce_notes_limit)]
