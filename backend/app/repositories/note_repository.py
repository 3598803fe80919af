from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Literal
from uuid import uuid4

from backend.app.repositories.common import QueryParams, escape_like, utc_now_iso
from backend.app.repositories.database import Database

logger = logging.getLogger("youtube_companion.storage")

NoteOrderBy = Literal["created_at", "updated_at", "content"]
SortDirection = Literal["asc", "desc"]

_ORDER_COLUMNS: dict[str, str] = {
    "created_at": "created_at",
    "updated_at": "updated_at",
    "content": "content",
}


@dataclass(frozen=True)
class NoteRecord:
    id: str
    user_id: str
    video_id: str
    content: str
    tags: list[str]
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class NoteSearchPage:
    notes: list[NoteRecord]
    total_count: int


@dataclass(frozen=True)
class NoteStats:
    total_notes: int
    notes_this_month: int
    unique_videos: int


class NoteRepository:
    def __init__(self, db: Database) -> None:
        self._db = db
        self._codec = db.codec

    async def create(
        self,
        *,
        user_id: str,
        video_id: str,
        content: str,
        tags: Sequence[str],
    ) -> NoteRecord:
        note_id = f"note_{uuid4().hex}"
        timestamp = utc_now_iso()
        await self._db.execute(
            """
            INSERT INTO notes (id, user_id, video_id, content, tags, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            """,
            note_id,
            user_id,
            video_id,
            content,
            self._codec.encode_tags(list(tags)),
            timestamp,
            timestamp,
        )
        return NoteRecord(
            id=note_id,
            user_id=user_id,
            video_id=video_id,
            content=content,
            tags=list(tags),
            created_at=timestamp,
            updated_at=timestamp,
        )

    async def get(self, note_id: str, *, user_id: str) -> NoteRecord | None:
        row = await self._db.fetch_one(
            "SELECT * FROM notes WHERE id = $1 AND user_id = $2",
            note_id,
            user_id,
        )
        return self._row_to_note(row) if row is not None else None

    async def update(
        self,
        note_id: str,
        *,
        user_id: str,
        video_id: str | None = None,
        content: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> NoteRecord | None:
        params = QueryParams()
        assignments: list[str] = []
        if video_id is not None:
            assignments.append(f"video_id = {params.add(video_id)}")
        if content is not None:
            assignments.append(f"content = {params.add(content)}")
        if tags is not None:
            assignments.append(f"tags = {params.add(self._codec.encode_tags(list(tags)))}")
        assignments.append(f"updated_at = {params.add(utc_now_iso())}")

        id_placeholder = params.add(note_id)
        user_placeholder = params.add(user_id)
        updated = await self._db.execute(
            f"UPDATE notes SET {', '.join(assignments)} "
            f"WHERE id = {id_placeholder} AND user_id = {user_placeholder}",
            *params.values,
        )
        if updated == 0:
            return None
        return await self.get(note_id, user_id=user_id)

    async def delete(self, note_id: str, *, user_id: str) -> bool:
        deleted = await self._db.execute(
            "DELETE FROM notes WHERE id = $1 AND user_id = $2",
            note_id,
            user_id,
        )
        return deleted > 0

    async def list_for_user(self, user_id: str) -> list[NoteRecord]:
        rows = await self._db.fetch_all(
            "SELECT * FROM notes WHERE user_id = $1 ORDER BY created_at DESC, id DESC",
            user_id,
        )
        return [self._row_to_note(row) for row in rows]

    async def list_for_video(self, user_id: str, video_id: str) -> list[NoteRecord]:
        rows = await self._db.fetch_all(
            """
            SELECT * FROM notes
            WHERE user_id = $1 AND video_id = $2
            ORDER BY created_at DESC, id DESC
            """,
            user_id,
            video_id,
        )
        return [self._row_to_note(row) for row in rows]

    async def search(
        self,
        *,
        user_id: str,
        query: str | None = None,
        tags: Sequence[str] = (),
        video_id: str | None = None,
        page: int = 1,
        limit: int = 20,
        order_by: NoteOrderBy = "created_at",
        direction: SortDirection = "desc",
    ) -> NoteSearchPage:
        params = QueryParams()
        conditions = [f"user_id = {params.add(user_id)}"]
        if video_id:
            conditions.append(f"video_id = {params.add(video_id)}")
        if query:
            pattern = f"%{escape_like(query.lower())}%"
            conditions.append(f"LOWER(content) LIKE {params.add(pattern)} ESCAPE '\\'")

        column = _ORDER_COLUMNS.get(order_by, "created_at")
        sort = "ASC" if direction == "asc" else "DESC"
        order_clause = f"ORDER BY {column} {sort}, id {sort}"
        offset = (page - 1) * limit

        if tags and not self._codec.supports_structured_containment:
            where = " AND ".join(conditions)
            rows = await self._db.fetch_all(
                f"SELECT * FROM notes WHERE {where} {order_clause}",
                *params.values,
            )
            wanted = set(tags)
            matching = [
                note
                for note in (self._row_to_note(row) for row in rows)
                if wanted.intersection(note.tags)
            ]
            logger.debug(
                "note tag search filtered in memory scanned=%s matched=%s",
                len(rows),
                len(matching),
            )
            return NoteSearchPage(
                notes=matching[offset : offset + limit],
                total_count=len(matching),
            )

        if tags:
            conditions.append(
                self._codec.tag_containment_clause("tags", params.add(list(tags)))
            )
        where = " AND ".join(conditions)
        total = await self._db.fetch_val(
            f"SELECT COUNT(*) AS total FROM notes WHERE {where}",
            *params.values,
        )
        limit_placeholder = params.add(limit)
        offset_placeholder = params.add(offset)
        rows = await self._db.fetch_all(
            f"SELECT * FROM notes WHERE {where} {order_clause} "
            f"LIMIT {limit_placeholder} OFFSET {offset_placeholder}",
            *params.values,
        )
        return NoteSearchPage(
            notes=[self._row_to_note(row) for row in rows],
            total_count=int(total or 0),
        )

    async def stats(self, user_id: str, *, month_start: str) -> NoteStats:
        row = await self._db.fetch_one(
            """
            SELECT
                COUNT(*) AS total_notes,
                COUNT(DISTINCT video_id) AS unique_videos,
                SUM(CASE WHEN created_at >= $2 THEN 1 ELSE 0 END) AS notes_this_month
            FROM notes
            WHERE user_id = $1
            """,
            user_id,
            month_start,
        )
        if row is None:
            return NoteStats(total_notes=0, notes_this_month=0, unique_videos=0)
        return NoteStats(
            total_notes=int(row["total_notes"] or 0),
            notes_this_month=int(row["notes_this_month"] or 0),
            unique_videos=int(row["unique_videos"] or 0),
        )

    def _row_to_note(self, row: dict[str, Any]) -> NoteRecord:
        note_id = str(row["id"])
        return NoteRecord(
            id=note_id,
            user_id=str(row["user_id"]),
            video_id=str(row["video_id"]),
            content=str(row["content"]),
            tags=self._codec.decode_tags(row["tags"], record_id=note_id),
            created_at=str(row["created_at"]),
            updated_at=str(row["updated_at"]),
        )
