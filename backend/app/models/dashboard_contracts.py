from __future__ import annotations

from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field, field_validator

EventType = Literal[
    "video_viewed",
    "video_updated",
    "comment_added",
    "comment_deleted",
    "note_created",
    "note_updated",
    "note_deleted",
    "search_performed",
    "user_login",
    "user_logout",
    "api_error",
    "auth_error",
    "page_viewed",
    "ui_interaction",
]

EntityType = Literal[
    "user",
    "video",
    "note",
    "comment",
    "page",
    "system",
]

EVENT_TYPES: frozenset[str] = frozenset(get_args(EventType))
ENTITY_TYPES: frozenset[str] = frozenset(get_args(EntityType))

MAX_COMMENT_LENGTH = 10_000
MAX_NOTE_LENGTH = 10_000
MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 5_000


def _default_tags() -> list[str]:
    return []


def _default_metadata() -> dict[str, Any]:
    return {}


class CommentCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    video_id: str = Field(alias="videoId", min_length=1)
    text: str
    parent_id: str | None = Field(default=None, alias="parentId")

    @field_validator("text")
    @classmethod
    def _validate_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Comment text is required")
        if len(value) > MAX_COMMENT_LENGTH:
            raise ValueError(f"Comment text must be at most {MAX_COMMENT_LENGTH} characters")
        return value

    @field_validator("parent_id", mode="before")
    @classmethod
    def _normalize_parent_id(cls, value: object) -> str | None:
        if not isinstance(value, str) or not value.strip():
            return None
        return value.strip()


class VideoUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    description: str | None = Field(default=None, max_length=MAX_DESCRIPTION_LENGTH)

    @field_validator("title")
    @classmethod
    def _validate_title(cls, value: str | None) -> str | None:
        if value is None:
            return None
        if not value.strip():
            raise ValueError("Title cannot be empty")
        if len(value) > MAX_TITLE_LENGTH:
            raise ValueError(f"Title must be at most {MAX_TITLE_LENGTH} characters")
        return value


class NoteCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    video_id: str = Field(alias="videoId", min_length=1)
    content: str = Field(max_length=MAX_NOTE_LENGTH)
    tags: list[str] = Field(default_factory=_default_tags)


class NoteUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    video_id: str | None = Field(default=None, alias="videoId")
    content: str | None = Field(default=None, max_length=MAX_NOTE_LENGTH)
    tags: list[str] | None = None


class TrackEventRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    event_type: EventType = Field(alias="eventType")
    entity_type: EntityType = Field(alias="entityType")
    entity_id: str = Field(alias="entityId", min_length=1, max_length=255)
    metadata: dict[str, Any] = Field(default_factory=_default_metadata)
