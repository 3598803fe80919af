from __future__ import annotations

import re
from collections import Counter
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from backend.app.errors import RecordNotFoundError, ValidationFailedError
from backend.app.models.dashboard_contracts import MAX_NOTE_LENGTH
from backend.app.repositories.common import Pagination
from backend.app.repositories.note_repository import (
    NoteOrderBy,
    NoteRecord,
    NoteRepository,
    NoteStats,
    SortDirection,
)
from backend.app.services.youtube_service import extract_video_id

MAX_SEARCH_LIMIT = 100
_WORD_PATTERN = re.compile(r"[\w'-]+", re.UNICODE)
_SUGGESTION_CONTEXT_CHARS = 30


@dataclass(frozen=True)
class NoteSearchResult:
    notes: list[NoteRecord]
    pagination: Pagination


@dataclass(frozen=True)
class NoteSuggestion:
    type: Literal["word", "tag"]
    value: str
    count: int
    context: str | None = None


class NotesService:
    def __init__(self, repository: NoteRepository) -> None:
        self._repository = repository

    async def create_note(
        self,
        user_id: str,
        *,
        video_id: str,
        content: str,
        tags: Sequence[str] = (),
    ) -> NoteRecord:
        return await self._repository.create(
            user_id=user_id,
            video_id=extract_video_id(video_id),
            content=_normalize_content(content),
            tags=normalize_tags(tags),
        )

    async def get_note(self, user_id: str, note_id: str) -> NoteRecord:
        note = await self._repository.get(note_id, user_id=user_id)
        if note is None:
            raise RecordNotFoundError("Note not found")
        return note

    async def update_note(
        self,
        user_id: str,
        note_id: str,
        *,
        video_id: str | None = None,
        content: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> NoteRecord:
        if video_id is None and content is None and tags is None:
            raise ValidationFailedError("At least one of content, tags or video id is required")
        updated = await self._repository.update(
            note_id,
            user_id=user_id,
            video_id=extract_video_id(video_id) if video_id is not None else None,
            content=_normalize_content(content) if content is not None else None,
            tags=normalize_tags(tags) if tags is not None else None,
        )
        if updated is None:
            raise RecordNotFoundError("Note not found")
        return updated

    async def delete_note(self, user_id: str, note_id: str) -> None:
        if not await self._repository.delete(note_id, user_id=user_id):
            raise RecordNotFoundError("Note not found")

    async def search_notes(
        self,
        user_id: str,
        *,
        query: str | None = None,
        tags: Sequence[str] = (),
        video_id: str | None = None,
        page: int = 1,
        limit: int = 20,
        order_by: NoteOrderBy = "created_at",
        direction: SortDirection = "desc",
    ) -> NoteSearchResult:
        if page < 1:
            raise ValidationFailedError("page must be at least 1")
        if limit < 1 or limit > MAX_SEARCH_LIMIT:
            raise ValidationFailedError(f"limit must be between 1 and {MAX_SEARCH_LIMIT}")

        normalized_query = query.strip() if query else None
        result = await self._repository.search(
            user_id=user_id,
            query=normalized_query or None,
            tags=normalize_tags(tags),
            video_id=extract_video_id(video_id) if video_id else None,
            page=page,
            limit=limit,
            order_by=order_by,
            direction=direction,
        )
        return NoteSearchResult(
            notes=result.notes,
            pagination=Pagination.build(page=page, limit=limit, total_count=result.total_count),
        )

    async def list_notes_for_video(self, user_id: str, video_id: str) -> list[NoteRecord]:
        return await self._repository.list_for_video(user_id, extract_video_id(video_id))

    async def list_tags(self, user_id: str) -> list[str]:
        notes = await self._repository.list_for_user(user_id)
        unique = set(normalize_tags(tag for note in notes for tag in note.tags))
        return sorted(unique, key=lambda tag: (tag.lower(), tag))

    async def suggestions(
        self, user_id: str, query: str, *, limit: int = 10
    ) -> list[NoteSuggestion]:
        needle = query.strip().lower()
        if len(needle) < 2:
            return []
        notes = await self._repository.list_for_user(user_id)

        word_counts: Counter[str] = Counter()
        word_context: dict[str, str] = {}
        tag_counts: Counter[str] = Counter()
        for note in notes:
            for match in _WORD_PATTERN.finditer(note.content):
                word = match.group(0).lower()
                if len(word) <= 2 or needle not in word or word == needle:
                    continue
                word_counts[word] += 1
                if word not in word_context:
                    word_context[word] = _context_snippet(
                        note.content, match.start(), match.end()
                    )
            for tag in note.tags:
                if needle in tag.lower():
                    tag_counts[tag] += 1

        suggestions = [
            NoteSuggestion(type="tag", value=tag, count=count)
            for tag, count in tag_counts.items()
        ] + [
            NoteSuggestion(type="word", value=word, count=count, context=word_context.get(word))
            for word, count in word_counts.items()
        ]
        suggestions.sort(key=lambda item: (-item.count, item.type != "tag", item.value))
        return suggestions[:limit]

    async def stats(self, user_id: str) -> NoteStats:
        now = datetime.now(UTC)
        month_start = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
        return await self._repository.stats(user_id, month_start=month_start.isoformat())


def normalize_tags(tags: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    normalized: list[str] = []
    for raw_tag in tags:
        tag = raw_tag.strip()
        if not tag or tag in seen:
            continue
        seen.add(tag)
        normalized.append(tag)
    return normalized


def _normalize_content(content: str) -> str:
    normalized = content.strip()
    if not normalized:
        raise ValidationFailedError("Note content is required")
    if len(normalized) > MAX_NOTE_LENGTH:
        raise ValidationFailedError(f"Note content must be at most {MAX_NOTE_LENGTH} characters")
    return normalized


def _context_snippet(content: str, start: int, end: int) -> str:
    left = max(0, start - _SUGGESTION_CONTEXT_CHARS)
    right = min(len(content), end + _SUGGESTION_CONTEXT_CHARS)
    snippet = " ".join(content[left:right].split())
    prefix = "..." if left > 0 else ""
    suffix = "..." if right < len(content) else ""
    return f"{prefix}{snippet}{suffix}"
