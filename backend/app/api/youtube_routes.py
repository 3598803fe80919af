from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Query
from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.api.guards import AuthenticatedCaller, Services, YouTubeActionQuota
from backend.app.api.responses import envelope, ok
from backend.app.errors import ValidationFailedError
from backend.app.models.dashboard_contracts import CommentCreateRequest, VideoUpdateRequest
from backend.app.services.youtube_service import CommentsUnavailable

router = APIRouter(prefix="/api/youtube", tags=["youtube"])

MIN_PAGE_SIZE = 1
MAX_PAGE_SIZE = 50
DEFAULT_COMMENTS_PAGE_SIZE = 20
DEFAULT_VIDEOS_PAGE_SIZE = 25


def clamp_page_size(value: int | None, *, default: int) -> int:
    if value is None:
        return default
    return max(MIN_PAGE_SIZE, min(MAX_PAGE_SIZE, value))


@router.get("/video", operation_id="youtube_video_details")
async def get_video(
    services: Services,
    video_id: Annotated[str, Query(alias="id", min_length=1)],
) -> dict[str, Any]:
    video = await services.youtube.get_video_details(video_id)
    return ok(video)


@router.get("/video/{video_id}", operation_id="youtube_owned_video_details")
async def get_owned_video(
    video_id: str,
    caller: AuthenticatedCaller,
    services: Services,
) -> dict[str, Any]:
    owned = await services.youtube.get_video_details_with_ownership(
        video_id, caller.access_token
    )
    await services.audit.log_video_interaction(
        caller.audit,
        event_type="video_viewed",
        video_id=owned.video.id,
        metadata={"is_unlisted": owned.is_unlisted},
    )
    return ok(owned)


@router.put("/video/{video_id}", operation_id="youtube_update_video")
async def update_video(
    video_id: str,
    body: VideoUpdateRequest,
    caller: AuthenticatedCaller,
    services: Services,
) -> dict[str, Any]:
    if body.title is None and body.description is None:
        raise ValidationFailedError("At least one field (title or description) is required")

    context_tokens = bind_contextvars(youtube_video_id=video_id)
    try:
        video = await services.youtube.update_video_metadata(
            video_id,
            caller.access_token,
            title=body.title,
            description=body.description,
        )
    finally:
        reset_contextvars(**context_tokens)

    changes: dict[str, Any] = {}
    if body.title is not None:
        changes["title"] = body.title
    if body.description is not None:
        changes["description_length"] = len(body.description)
    await services.audit.log_video_interaction(
        caller.audit,
        event_type="video_updated",
        video_id=video.id,
        metadata={"changes": changes},
    )
    return ok(video, message="Video metadata updated successfully")


@router.get("/channel", operation_id="youtube_user_channel")
async def get_channel(caller: AuthenticatedCaller, services: Services) -> dict[str, Any]:
    channel = await services.youtube.get_user_channel(caller.access_token)
    return ok(channel)


@router.get("/videos", operation_id="youtube_user_videos")
async def list_user_videos(
    caller: AuthenticatedCaller,
    services: Services,
    max_results: Annotated[int | None, Query(alias="maxResults")] = None,
    page_token: Annotated[str | None, Query(alias="pageToken")] = None,
) -> dict[str, Any]:
    page = await services.youtube.get_user_videos(
        caller.access_token,
        max_results=clamp_page_size(max_results, default=DEFAULT_VIDEOS_PAGE_SIZE),
        page_token=page_token or None,
    )
    return ok(page)


@router.get("/comments", operation_id="youtube_list_comments")
async def list_comments(
    services: Services,
    video_id: Annotated[str, Query(alias="id", min_length=1)],
    max_results: Annotated[int | None, Query(alias="maxResults")] = None,
    page_token: Annotated[str | None, Query(alias="pageToken")] = None,
) -> dict[str, Any]:
    result = await services.youtube.get_comments(
        video_id,
        max_results=clamp_page_size(max_results, default=DEFAULT_COMMENTS_PAGE_SIZE),
        page_token=page_token or None,
    )
    if isinstance(result, CommentsUnavailable):
        # Always HTTP 200 with success=false.
        return envelope(success=False, error="Comments are disabled for this video")
    return ok(result)


@router.post("/comments", status_code=201, operation_id="youtube_post_comment")
async def post_comment(
    body: CommentCreateRequest,
    caller: AuthenticatedCaller,
    _quota: YouTubeActionQuota,
    services: Services,
) -> dict[str, Any]:
    if body.parent_id is not None:
        comment = await services.youtube.reply_to_comment(
            body.parent_id, body.text, caller.access_token
        )
        message = "Reply posted successfully"
    else:
        comment = await services.youtube.post_comment(
            body.video_id, body.text, caller.access_token
        )
        message = "Comment posted successfully"

    await services.audit.log_comment_added(
        caller.audit,
        comment_id=comment.id,
        video_id=body.video_id,
        parent_id=body.parent_id,
    )
    return ok(comment, message=message)


@router.delete("/comments/{comment_id}", operation_id="youtube_delete_comment")
async def delete_comment(
    comment_id: str,
    caller: AuthenticatedCaller,
    _quota: YouTubeActionQuota,
    services: Services,
) -> dict[str, Any]:
    await services.youtube.delete_comment(comment_id, caller.access_token)
    await services.audit.log_comment_deleted(caller.audit, comment_id=comment_id)
    return ok({"deleted": True}, message="Comment deleted successfully")
