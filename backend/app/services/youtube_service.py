from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Literal, cast

import httpx

from backend.app.errors import (
    AuthenticationRequiredError,
    CommentsDisabledError,
    InvalidIdentifierError,
    OwnershipError,
    RateLimitError,
    YouTubeAPIError,
    YouTubeAuthError,
    YouTubeNotFoundError,
)
from backend.app.telemetry import TelemetryClient

logger = logging.getLogger("youtube_companion.youtube")

YOUTUBE_API_BASE_URL = "https://www.googleapis.com/youtube/v3"
VIDEO_NOT_FOUND_MESSAGE = "Video not found. It may be private, deleted, or the ID is incorrect."
CHANNEL_NOT_FOUND_MESSAGE = (
    "No YouTube channel found for this account. Create a channel before using the dashboard."
)

_VIDEO_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{11}$")
_VIDEO_URL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?:youtube\.com/watch\?v=|youtu\.be/|youtube\.com/embed/)([A-Za-z0-9_-]{11})"),
    re.compile(r"youtube\.com/watch\?.*v=([A-Za-z0-9_-]{11})"),
    re.compile(r"youtube\.com/shorts/([A-Za-z0-9_-]{11})"),
)
_COMMENTS_DISABLED_REASONS: frozenset[str] = frozenset({"commentsdisabled"})
_COMMENTS_DISABLED_PHRASES: tuple[str, ...] = ("disabled comments", "comments are disabled")


@dataclass(frozen=True)
class Thumbnail:
    url: str
    width: int | None = None
    height: int | None = None


@dataclass(frozen=True)
class VideoStatistics:
    view_count: int = 0
    like_count: int = 0
    comment_count: int = 0


@dataclass(frozen=True)
class VideoDetails:
    id: str
    title: str
    description: str
    thumbnails: tuple[Thumbnail, ...]
    statistics: VideoStatistics
    published_at: str | None
    channel_id: str | None
    channel_title: str | None
    privacy_status: str | None = None


@dataclass(frozen=True)
class Comment:
    id: str
    text: str
    author_name: str
    author_avatar_url: str | None
    author_channel_id: str | None
    published_at: str | None
    like_count: int
    replies: tuple[Comment, ...] = ()


@dataclass(frozen=True)
class CommentPage:
    video_id: str
    comments: tuple[Comment, ...]
    next_page_token: str | None
    kind: Literal["page"] = "page"


@dataclass(frozen=True)
class CommentsUnavailable:
    video_id: str
    reason: Literal["comments_disabled"] = "comments_disabled"
    kind: Literal["unavailable"] = "unavailable"


CommentsResult = CommentPage | CommentsUnavailable


@dataclass(frozen=True)
class ChannelInfo:
    id: str
    title: str
    description: str
    thumbnails: tuple[Thumbnail, ...]
    uploads_playlist_id: str | None


@dataclass(frozen=True)
class UserVideosPage:
    videos: tuple[VideoDetails, ...]
    next_page_token: str | None
    total_results: int


@dataclass(frozen=True)
class OwnedVideo:
    video: VideoDetails
    is_owner: bool
    is_unlisted: bool


@dataclass(frozen=True)
class _OwnedVideoItem:
    channel: ChannelInfo
    item: dict[str, Any]


class YouTubeService:
    """
    Async adapter over the YouTube Data API v3.

    Public reads are signed with the API key; anything private or mutating needs the
    caller's bearer token. Every upstream fault surfaces as a member of the error
    taxonomy in `backend.app.errors`. No retries, no caching.
    """

    def __init__(
        self,
        api_key: str,
        *,
        http_client: httpx.AsyncClient,
        base_url: str = YOUTUBE_API_BASE_URL,
        telemetry: TelemetryClient | None = None,
    ) -> None:
        self._api_key = api_key
        self._client = http_client
        self._base_url = base_url.rstrip("/")
        self._telemetry = telemetry or TelemetryClient.disabled()

    async def get_video_details(self, id_or_url: str) -> VideoDetails:
        video_id = extract_video_id(id_or_url)
        payload = await self._request(
            "GET",
            "videos",
            params={"part": "snippet,statistics,status", "id": video_id},
        )
        items = _as_list(payload.get("items"))
        if not items:
            raise YouTubeNotFoundError(VIDEO_NOT_FOUND_MESSAGE)
        video = _parse_video(_as_dict(items[0]))
        if video.privacy_status == "private":
            raise YouTubeNotFoundError(VIDEO_NOT_FOUND_MESSAGE)
        return video

    async def get_user_channel(self, access_token: str | None) -> ChannelInfo:
        token = _require_token(access_token)
        payload = await self._request(
            "GET",
            "channels",
            params={"part": "snippet,contentDetails", "mine": "true"},
            access_token=token,
        )
        items = _as_list(payload.get("items"))
        if not items:
            raise YouTubeNotFoundError(CHANNEL_NOT_FOUND_MESSAGE)
        return _parse_channel(_as_dict(items[0]))

    async def get_user_videos(
        self,
        access_token: str | None,
        *,
        max_results: int = 25,
        page_token: str | None = None,
    ) -> UserVideosPage:
        token = _require_token(access_token)
        channel = await self.get_user_channel(token)
        if channel.uploads_playlist_id is None:
            raise YouTubeNotFoundError("No uploads playlist found for this channel")

        params = {
            "part": "snippet",
            "playlistId": channel.uploads_playlist_id,
            "maxResults": str(max_results),
        }
        if page_token:
            params["pageToken"] = page_token
        playlist = await self._request("GET", "playlistItems", params=params, access_token=token)

        video_ids: list[str] = []
        for raw_item in _as_list(playlist.get("items")):
            snippet = _as_dict(_as_dict(raw_item).get("snippet"))
            resource_id = _as_dict(snippet.get("resourceId"))
            video_id = resource_id.get("videoId")
            if isinstance(video_id, str) and video_id:
                video_ids.append(video_id)

        videos: tuple[VideoDetails, ...] = ()
        if video_ids:
            details = await self._request(
                "GET",
                "videos",
                params={"part": "snippet,statistics,status", "id": ",".join(video_ids)},
                access_token=token,
            )
            videos = tuple(
                _parse_video(_as_dict(item)) for item in _as_list(details.get("items"))
            )

        page_info = _as_dict(playlist.get("pageInfo"))
        return UserVideosPage(
            videos=videos,
            next_page_token=_optional_text(playlist.get("nextPageToken")),
            total_results=_coerce_int(page_info.get("totalResults")) or len(videos),
        )

    async def get_video_details_with_ownership(
        self, video_id: str, access_token: str | None
    ) -> OwnedVideo:
        owned = await self._fetch_owned_video(video_id, access_token)
        video = _parse_video(owned.item)
        return OwnedVideo(
            video=video,
            is_owner=True,
            is_unlisted=video.privacy_status == "unlisted",
        )

    async def update_video_metadata(
        self,
        video_id: str,
        access_token: str | None,
        *,
        title: str | None = None,
        description: str | None = None,
    ) -> VideoDetails:
        token = _require_token(access_token)
        owned = await self._fetch_owned_video(video_id, token)
        current = owned.item
        current_snippet = _as_dict(current.get("snippet"))
        current_status = _as_dict(current.get("status"))

        snippet: dict[str, Any] = {
            "title": title if title is not None else current_snippet.get("title", ""),
            "description": (
                description
                if description is not None
                else current_snippet.get("description", "")
            ),
            "categoryId": current_snippet.get("categoryId", "22"),
        }
        for optional_key in ("tags", "defaultLanguage", "defaultAudioLanguage"):
            if optional_key in current_snippet:
                snippet[optional_key] = current_snippet[optional_key]
        status: dict[str, Any] = {
            key: current_status[key]
            for key in ("privacyStatus", "embeddable", "license", "publicStatsViewable")
            if key in current_status
        }

        payload = await self._request(
            "PUT",
            "videos",
            params={"part": "snippet,status"},
            access_token=token,
            json_body={"id": current.get("id", video_id), "snippet": snippet, "status": status},
        )
        updated_item = _first_video_item(payload)
        if updated_item is None:
            raise YouTubeAPIError("YouTube API returned no video after update")
        if "statistics" not in updated_item and "statistics" in current:
            updated_item = {**updated_item, "statistics": current["statistics"]}
        logger.info(
            "youtube video metadata updated video_id=%s title_changed=%s description_changed=%s",
            video_id,
            title is not None,
            description is not None,
        )
        return _parse_video(updated_item)

    async def get_comments(
        self,
        id_or_url: str,
        *,
        max_results: int = 20,
        page_token: str | None = None,
    ) -> CommentsResult:
        video_id = extract_video_id(id_or_url)
        params = {
            "part": "snippet,replies",
            "videoId": video_id,
            "maxResults": str(max_results),
            "order": "time",
        }
        if page_token:
            params["pageToken"] = page_token
        try:
            payload = await self._request(
                "GET",
                "commentThreads",
                params=params,
                comments_endpoint=True,
            )
        except CommentsDisabledError:
            logger.info("youtube comments disabled video_id=%s", video_id)
            return CommentsUnavailable(video_id=video_id)

        return CommentPage(
            video_id=video_id,
            comments=tuple(
                _parse_comment_thread(_as_dict(item)) for item in _as_list(payload.get("items"))
            ),
            next_page_token=_optional_text(payload.get("nextPageToken")),
        )

    async def post_comment(self, video_id: str, text: str, access_token: str | None) -> Comment:
        token = _require_token(access_token)
        resolved_id = extract_video_id(video_id)
        payload = await self._request(
            "POST",
            "commentThreads",
            params={"part": "snippet"},
            access_token=token,
            json_body={
                "snippet": {
                    "videoId": resolved_id,
                    "topLevelComment": {"snippet": {"textOriginal": text}},
                }
            },
            comments_endpoint=True,
        )
        return _parse_comment_thread(payload)

    async def reply_to_comment(
        self, parent_id: str, text: str, access_token: str | None
    ) -> Comment:
        token = _require_token(access_token)
        if not parent_id.strip():
            raise InvalidIdentifierError("Parent comment id is required")
        payload = await self._request(
            "POST",
            "comments",
            params={"part": "snippet"},
            access_token=token,
            json_body={"snippet": {"parentId": parent_id, "textOriginal": text}},
            comments_endpoint=True,
        )
        return _parse_comment(payload)

    async def delete_comment(self, comment_id: str, access_token: str | None) -> None:
        token = _require_token(access_token)
        if not comment_id.strip():
            raise InvalidIdentifierError("Comment id is required")
        await self._request(
            "DELETE",
            "comments",
            params={"id": comment_id},
            access_token=token,
        )

    async def _fetch_owned_video(
        self, video_id: str, access_token: str | None
    ) -> _OwnedVideoItem:
        token = _require_token(access_token)
        resolved_id = extract_video_id(video_id)
        channel = await self.get_user_channel(token)
        payload = await self._request(
            "GET",
            "videos",
            params={"part": "snippet,statistics,status", "id": resolved_id},
            access_token=token,
        )
        items = _as_list(payload.get("items"))
        if not items:
            raise YouTubeNotFoundError(VIDEO_NOT_FOUND_MESSAGE)
        item = _as_dict(items[0])
        owner_channel_id = _as_dict(item.get("snippet")).get("channelId")
        if owner_channel_id != channel.id:
            logger.warning(
                "youtube ownership check failed video_id=%s caller_channel=%s owner_channel=%s",
                resolved_id,
                channel.id,
                owner_channel_id,
            )
            raise OwnershipError()
        return _OwnedVideoItem(channel=channel, item=item)

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, str] | None = None,
        access_token: str | None = None,
        json_body: dict[str, Any] | None = None,
        comments_endpoint: bool = False,
    ) -> dict[str, Any]:
        query = dict(params or {})
        headers = {"Accept": "application/json"}
        if access_token is None:
            query["key"] = self._api_key
        else:
            headers["Authorization"] = f"Bearer {access_token}"

        with self._telemetry.span(
            "youtube.request",
            method=method,
            endpoint=endpoint,
            authenticated=access_token is not None,
        ) as span:
            try:
                response = await self._client.request(
                    method,
                    f"{self._base_url}/{endpoint}",
                    params=query,
                    headers=headers,
                    json=json_body,
                )
            except httpx.RequestError as exc:
                logger.warning(
                    "youtube request failed method=%s endpoint=%s error_type=%s",
                    method,
                    endpoint,
                    type(exc).__name__,
                )
                raise YouTubeAPIError("Network error while contacting YouTube") from exc

            span.set(status_code=response.status_code)
            if response.is_error:
                raise _map_error_response(response, comments_endpoint=comments_endpoint)

        if response.status_code == 204 or not response.content:
            return {}
        try:
            parsed = response.json()
        except ValueError as exc:
            raise YouTubeAPIError("Invalid JSON response from YouTube API") from exc
        return _as_dict(parsed)


def extract_video_id(id_or_url: str) -> str:
    candidate = id_or_url.strip() if isinstance(id_or_url, str) else ""
    if _VIDEO_ID_PATTERN.fullmatch(candidate):
        return candidate
    for pattern in _VIDEO_URL_PATTERNS:
        match = pattern.search(candidate)
        if match:
            return match.group(1)
    raise InvalidIdentifierError("Invalid YouTube URL or video ID format")


def _require_token(access_token: str | None) -> str:
    if not access_token:
        raise AuthenticationRequiredError("Authentication required. Please sign in with Google.")
    return access_token


def _map_error_response(response: httpx.Response, *, comments_endpoint: bool) -> Exception:
    status = response.status_code
    try:
        body = _as_dict(response.json())
    except ValueError:
        body = {}
    error = _as_dict(body.get("error"))
    message = _optional_text(error.get("message")) or "YouTube API request failed"
    reasons = {
        str(_as_dict(item).get("reason", "")).lower() for item in _as_list(error.get("errors"))
    }
    lowered = message.lower()

    logger.warning(
        "youtube api error status=%s reasons=%s",
        status,
        ",".join(sorted(reason for reason in reasons if reason)) or "-",
    )

    if comments_endpoint and status == 403 and (
        reasons & _COMMENTS_DISABLED_REASONS
        or any(phrase in lowered for phrase in _COMMENTS_DISABLED_PHRASES)
    ):
        return CommentsDisabledError()
    if status == 400:
        return YouTubeAPIError(f"Bad request: {message}", upstream_status=400)
    if status == 401:
        return YouTubeAuthError(f"Authentication failed: {message}", upstream_status=401)
    if status == 403:
        if "quota" in lowered or any("quota" in reason for reason in reasons):
            return RateLimitError(f"YouTube API quota exceeded: {message}")
        return YouTubeAuthError(f"Access forbidden: {message}", upstream_status=403)
    if status == 404:
        return YouTubeNotFoundError(f"Resource not found: {message}")
    if status == 429:
        return RateLimitError(f"YouTube API rate limit exceeded: {message}")
    if status >= 500:
        return YouTubeAPIError(f"YouTube server error: {message}", upstream_status=status)
    return YouTubeAPIError(message, upstream_status=status)


def _parse_video(item: dict[str, Any]) -> VideoDetails:
    snippet = _as_dict(item.get("snippet"))
    statistics = _as_dict(item.get("statistics"))
    status = _as_dict(item.get("status"))
    return VideoDetails(
        id=str(item.get("id", "")),
        title=str(snippet.get("title", "")),
        description=str(snippet.get("description", "")),
        thumbnails=_parse_thumbnails(snippet.get("thumbnails")),
        statistics=VideoStatistics(
            view_count=_coerce_int(statistics.get("viewCount")) or 0,
            like_count=_coerce_int(statistics.get("likeCount")) or 0,
            comment_count=_coerce_int(statistics.get("commentCount")) or 0,
        ),
        published_at=_optional_text(snippet.get("publishedAt")),
        channel_id=_optional_text(snippet.get("channelId")),
        channel_title=_optional_text(snippet.get("channelTitle")),
        privacy_status=_optional_text(status.get("privacyStatus")),
    )


def _parse_channel(item: dict[str, Any]) -> ChannelInfo:
    snippet = _as_dict(item.get("snippet"))
    related = _as_dict(_as_dict(item.get("contentDetails")).get("relatedPlaylists"))
    return ChannelInfo(
        id=str(item.get("id", "")),
        title=str(snippet.get("title", "")),
        description=str(snippet.get("description", "")),
        thumbnails=_parse_thumbnails(snippet.get("thumbnails")),
        uploads_playlist_id=_optional_text(related.get("uploads")),
    )


def _parse_thumbnails(raw: Any) -> tuple[Thumbnail, ...]:
    thumbnails: list[Thumbnail] = []
    for value in _as_dict(raw).values():
        entry = _as_dict(value)
        url = _optional_text(entry.get("url"))
        if url is None:
            continue
        thumbnails.append(
            Thumbnail(
                url=url,
                width=_coerce_int(entry.get("width")),
                height=_coerce_int(entry.get("height")),
            )
        )
    return tuple(thumbnails)


def _parse_comment_thread(item: dict[str, Any]) -> Comment:
    snippet = _as_dict(item.get("snippet"))
    top_level = _as_dict(snippet.get("topLevelComment"))
    replies = tuple(
        _parse_comment(_as_dict(reply))
        for reply in _as_list(_as_dict(item.get("replies")).get("comments"))
    )
    parsed = _parse_comment(top_level)
    return Comment(
        id=str(item.get("id") or parsed.id),
        text=parsed.text,
        author_name=parsed.author_name,
        author_avatar_url=parsed.author_avatar_url,
        author_channel_id=parsed.author_channel_id,
        published_at=parsed.published_at,
        like_count=parsed.like_count,
        replies=replies,
    )


def _parse_comment(item: dict[str, Any]) -> Comment:
    snippet = _as_dict(item.get("snippet"))
    author_channel = _as_dict(snippet.get("authorChannelId"))
    return Comment(
        id=str(item.get("id", "")),
        text=str(snippet.get("textDisplay") or snippet.get("textOriginal") or ""),
        author_name=str(snippet.get("authorDisplayName", "")),
        author_avatar_url=_optional_text(snippet.get("authorProfileImageUrl")),
        author_channel_id=_optional_text(author_channel.get("value")),
        published_at=_optional_text(snippet.get("publishedAt")),
        like_count=_coerce_int(snippet.get("likeCount")) or 0,
    )


def _first_video_item(payload: dict[str, Any]) -> dict[str, Any] | None:
    items = _as_list(payload.get("items"))
    if items:
        return _as_dict(items[0])
    if payload.get("kind") == "youtube#video":
        return payload
    return None


def _optional_text(value: Any) -> str | None:
    if isinstance(value, str) and value:
        return value
    return None


def _coerce_int(raw_value: object) -> int | None:
    if isinstance(raw_value, bool):
        return int(raw_value)
    if isinstance(raw_value, int):
        return raw_value
    if isinstance(raw_value, float):
        return int(raw_value)
    if isinstance(raw_value, str):
        try:
            return int(raw_value.strip())
        except ValueError:
            return None
    return None


def _as_dict(value: Any) -> dict[str, Any]:
    if isinstance(value, dict):
        raw_dict = cast(dict[object, object], value)
        converted: dict[str, Any] = {}
        for key, item in raw_dict.items():
            if isinstance(key, str):
                converted[key] = item
        return converted
    return {}


def _as_list(value: Any) -> list[Any]:
    if isinstance(value, list):
        raw_list = cast(list[Any], value)
        return list(raw_list)
    return []
