from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Literal
from uuid import uuid4

from backend.app.repositories.common import QueryParams, utc_now_iso
from backend.app.repositories.database import Database

EventOrderBy = Literal["timestamp", "event_type", "entity_type"]

_ORDER_COLUMNS: dict[str, str] = {
    "timestamp": "timestamp",
    "event_type": "event_type",
    "entity_type": "entity_type",
}


@dataclass(frozen=True)
class EventLogEntry:
    event_type: str
    entity_type: str
    entity_id: str
    metadata: dict[str, Any] | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    user_id: str | None = None


@dataclass(frozen=True)
class EventLogRecord:
    id: str
    event_type: str
    entity_type: str
    entity_id: str
    metadata: dict[str, Any] | None
    ip_address: str | None
    user_agent: str | None
    user_id: str | None
    timestamp: str


@dataclass(frozen=True)
class EventLogPage:
    events: list[EventLogRecord]
    total_count: int


class EventLogRepository:
    """Append-only access to `event_logs`; rows are never updated or deleted here."""

    def __init__(self, db: Database) -> None:
        self._db = db
        self._codec = db.codec

    async def create(self, entry: EventLogEntry) -> str:
        event_id = f"evt_{uuid4().hex}"
        await self._db.execute(
            """
            INSERT INTO event_logs
            (id, event_type, entity_type, entity_id, metadata, ip_address, user_agent,
             user_id, timestamp)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            """,
            event_id,
            entry.event_type,
            entry.entity_type,
            entry.entity_id,
            self._codec.encode_metadata(entry.metadata),
            entry.ip_address,
            entry.user_agent,
            entry.user_id,
            utc_now_iso(),
        )
        return event_id

    async def list_events(
        self,
        *,
        user_id: str,
        event_type: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
        page: int = 1,
        limit: int = 20,
        order_by: EventOrderBy = "timestamp",
        direction: Literal["asc", "desc"] = "desc",
    ) -> EventLogPage:
        params = QueryParams()
        conditions = [f"user_id = {params.add(user_id)}"]
        if event_type:
            conditions.append(f"event_type = {params.add(event_type)}")
        if entity_type:
            conditions.append(f"entity_type = {params.add(entity_type)}")
        if entity_id:
            conditions.append(f"entity_id = {params.add(entity_id)}")
        if start_date:
            conditions.append(f"timestamp >= {params.add(start_date)}")
        if end_date:
            conditions.append(f"timestamp <= {params.add(end_date)}")
        where = " AND ".join(conditions)

        total = await self._db.fetch_val(
            f"SELECT COUNT(*) AS total FROM event_logs WHERE {where}",
            *params.values,
        )
        column = _ORDER_COLUMNS.get(order_by, "timestamp")
        sort = "ASC" if direction == "asc" else "DESC"
        limit_placeholder = params.add(limit)
        offset_placeholder = params.add((page - 1) * limit)
        rows = await self._db.fetch_all(
            f"SELECT * FROM event_logs WHERE {where} ORDER BY {column} {sort}, id {sort} "
            f"LIMIT {limit_placeholder} OFFSET {offset_placeholder}",
            *params.values,
        )
        return EventLogPage(
            events=[self._row_to_event(row) for row in rows],
            total_count=int(total or 0),
        )

    async def count_by_type(self, *, user_id: str) -> dict[str, int]:
        rows = await self._db.fetch_all(
            """
            SELECT event_type, COUNT(*) AS total
            FROM event_logs
            WHERE user_id = $1
            GROUP BY event_type
            ORDER BY event_type
            """,
            user_id,
        )
        return {str(row["event_type"]): int(row["total"]) for row in rows}

    def _row_to_event(self, row: dict[str, Any]) -> EventLogRecord:
        event_id = str(row["id"])
        return EventLogRecord(
            id=event_id,
            event_type=str(row["event_type"]),
            entity_type=str(row["entity_type"]),
            entity_id=str(row["entity_id"]),
            metadata=self._codec.decode_metadata(row["metadata"], record_id=event_id),
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
            user_id=row["user_id"],
            timestamp=str(row["timestamp"]),
        )
