from __future__ import annotations

from typing import Annotated, Any, Literal

from fastapi import APIRouter, Query

from backend.app.api.guards import AuthenticatedUser, NotesQuota, Services
from backend.app.api.responses import ok
from backend.app.errors import ValidationFailedError
from backend.app.models.dashboard_contracts import NoteCreateRequest, NoteUpdateRequest
from backend.app.repositories.note_repository import NoteOrderBy

router = APIRouter(prefix="/api/notes", tags=["notes"])

_ORDER_BY_ALIASES: dict[str, NoteOrderBy] = {
    "createdAt": "created_at",
    "created_at": "created_at",
    "updatedAt": "updated_at",
    "updated_at": "updated_at",
    "content": "content",
}


def _parse_tags(raw: str | None) -> list[str]:
    if not raw:
        return []
    return [tag.strip() for tag in raw.split(",") if tag.strip()]


@router.get("", operation_id="notes_search")
async def search_notes(
    user: AuthenticatedUser,
    _quota: NotesQuota,
    services: Services,
    query: Annotated[str | None, Query(max_length=500)] = None,
    tags: Annotated[str | None, Query()] = None,
    video_id: Annotated[str | None, Query(alias="videoId")] = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
    order_by: Annotated[str, Query(alias="orderBy")] = "createdAt",
    direction: Annotated[Literal["asc", "desc"], Query(alias="orderDirection")] = "desc",
) -> dict[str, Any]:
    resolved_order = _ORDER_BY_ALIASES.get(order_by)
    if resolved_order is None:
        raise ValidationFailedError("orderBy must be one of: createdAt, updatedAt, content")
    tag_filter = _parse_tags(tags)

    result = await services.notes.search_notes(
        user.record.id,
        query=query,
        tags=tag_filter,
        video_id=video_id,
        page=page,
        limit=limit,
        order_by=resolved_order,
        direction=direction,
    )
    if query or tag_filter or video_id:
        await services.audit.log_search_performed(
            user.audit,
            query=query,
            filters={"tags": tag_filter, "video_id": video_id},
            result_count=result.pagination.total_count,
        )
    return ok({"notes": result.notes, "pagination": result.pagination})


@router.post("", status_code=201, operation_id="notes_create")
async def create_note(
    body: NoteCreateRequest,
    user: AuthenticatedUser,
    _quota: NotesQuota,
    services: Services,
) -> dict[str, Any]:
    note = await services.notes.create_note(
        user.record.id,
        video_id=body.video_id,
        content=body.content,
        tags=body.tags,
    )
    await services.audit.log_note_created(user.audit, note_id=note.id, video_id=note.video_id)
    return ok(note, message="Note created successfully")


@router.get("/tags", operation_id="notes_tags")
async def list_tags(user: AuthenticatedUser, services: Services) -> dict[str, Any]:
    return ok({"tags": await services.notes.list_tags(user.record.id)})


@router.get("/suggestions", operation_id="notes_suggestions")
async def suggestions(
    user: AuthenticatedUser,
    services: Services,
    q: Annotated[str, Query(min_length=1, max_length=100)],
    limit: Annotated[int, Query(ge=1, le=50)] = 10,
) -> dict[str, Any]:
    items = await services.notes.suggestions(user.record.id, q, limit=limit)
    return ok({"suggestions": items})


@router.get("/stats", operation_id="notes_stats")
async def note_stats(user: AuthenticatedUser, services: Services) -> dict[str, Any]:
    return ok(await services.notes.stats(user.record.id))


@router.get("/video/{video_id}", operation_id="notes_for_video")
async def notes_for_video(
    video_id: str,
    user: AuthenticatedUser,
    services: Services,
) -> dict[str, Any]:
    notes = await services.notes.list_notes_for_video(user.record.id, video_id)
    return ok({"notes": notes})


@router.get("/{note_id}", operation_id="notes_get")
async def get_note(note_id: str, user: AuthenticatedUser, services: Services) -> dict[str, Any]:
    return ok(await services.notes.get_note(user.record.id, note_id))


@router.put("/{note_id}", operation_id="notes_update")
async def update_note(
    note_id: str,
    body: NoteUpdateRequest,
    user: AuthenticatedUser,
    _quota: NotesQuota,
    services: Services,
) -> dict[str, Any]:
    note = await services.notes.update_note(
        user.record.id,
        note_id,
        video_id=body.video_id,
        content=body.content,
        tags=body.tags,
    )
    await services.audit.log_note_updated(
        user.audit,
        note_id=note.id,
        changes=body.model_dump(exclude_none=True),
    )
    return ok(note, message="Note updated successfully")


@router.delete("/{note_id}", operation_id="notes_delete")
async def delete_note(
    note_id: str,
    user: AuthenticatedUser,
    _quota: NotesQuota,
    services: Services,
) -> dict[str, Any]:
    await services.notes.delete_note(user.record.id, note_id)
    await services.audit.log_note_deleted(user.audit, note_id=note_id)
    return ok({"deleted": True}, message="Note deleted successfully")
