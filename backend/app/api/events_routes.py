from __future__ import annotations

from typing import Annotated, Any, Literal

from fastapi import APIRouter, Query

from backend.app.api.guards import AuthenticatedUser, Services
from backend.app.api.responses import ok
from backend.app.models.dashboard_contracts import EntityType, EventType, TrackEventRequest
from backend.app.repositories.common import Pagination
from backend.app.repositories.event_log_repository import EventOrderBy

router = APIRouter(prefix="/api/events", tags=["events"])

_ORDER_BY_ALIASES: dict[str, EventOrderBy] = {
    "timestamp": "timestamp",
    "eventType": "event_type",
    "event_type": "event_type",
    "entityType": "entity_type",
    "entity_type": "entity_type",
}


@router.get("", operation_id="events_list")
async def list_events(
    user: AuthenticatedUser,
    services: Services,
    event_type: Annotated[EventType | None, Query(alias="eventType")] = None,
    entity_type: Annotated[EntityType | None, Query(alias="entityType")] = None,
    entity_id: Annotated[str | None, Query(alias="entityId")] = None,
    start_date: Annotated[str | None, Query(alias="startDate")] = None,
    end_date: Annotated[str | None, Query(alias="endDate")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    order_by: Annotated[
        Literal["timestamp", "eventType", "event_type", "entityType", "entity_type"],
        Query(alias="orderBy"),
    ] = "timestamp",
    direction: Annotated[Literal["asc", "desc"], Query(alias="orderDirection")] = "desc",
) -> dict[str, Any]:
    result = await services.events.list_events(
        user_id=user.record.id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        start_date=start_date,
        end_date=end_date,
        page=page,
        limit=limit,
        order_by=_ORDER_BY_ALIASES[order_by],
        direction=direction,
    )
    return ok(
        {
            "events": result.events,
            "pagination": Pagination.build(
                page=page, limit=limit, total_count=result.total_count
            ),
        }
    )


@router.get("/stats", operation_id="events_stats")
async def event_stats(user: AuthenticatedUser, services: Services) -> dict[str, Any]:
    counts = await services.events.count_by_type(user_id=user.record.id)
    return ok({"total": sum(counts.values()), "by_event_type": counts})


@router.post("/track", status_code=201, operation_id="events_track")
async def track_event(
    body: TrackEventRequest,
    user: AuthenticatedUser,
    services: Services,
) -> dict[str, Any]:
    await services.audit.log_client_event(
        user.audit,
        event_type=body.event_type,
        entity_type=body.entity_type,
        entity_id=body.entity_id,
        metadata=body.metadata,
    )
    return ok({"tracked": True}, message="Event tracked successfully")
