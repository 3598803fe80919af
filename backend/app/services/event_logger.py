from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

from backend.app.models.dashboard_contracts import EntityType, EventType
from backend.app.repositories.event_log_repository import EventLogEntry, EventLogRepository

logger = logging.getLogger("youtube_companion.audit")

_CLIENT_IP_HEADERS: tuple[str, ...] = ("x-forwarded-for", "x-real-ip", "x-client-ip")


@dataclass(frozen=True)
class AuditContext:
    user_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], *, user_id: str | None) -> AuditContext:
        return cls(
            user_id=user_id,
            ip_address=get_client_ip(headers),
            user_agent=get_user_agent(headers),
        )


class AuditEventLogger:
    """
    Persists audit events for completed actions.

    `log_event` never raises. A failed write is followed by exactly one attempt to
    record the failure itself; if that also fails, only the operational log sees it.
    """

    def __init__(self, repository: EventLogRepository) -> None:
        self._repository = repository

    async def log_event(self, entry: EventLogEntry) -> None:
        try:
            await self._repository.create(entry)
        except Exception as exc:
            logger.warning(
                "audit event write failed event_type=%s entity_type=%s error=%s",
                entry.event_type,
                entry.entity_type,
                exc,
            )
            await self._record_failure(entry, exc)

    async def log_note_created(
        self, context: AuditContext, *, note_id: str, video_id: str
    ) -> None:
        await self._log(context, "note_created", "note", note_id, {"video_id": video_id})

    async def log_note_updated(
        self, context: AuditContext, *, note_id: str, changes: Mapping[str, Any]
    ) -> None:
        await self._log(context, "note_updated", "note", note_id, {"changes": dict(changes)})

    async def log_note_deleted(self, context: AuditContext, *, note_id: str) -> None:
        await self._log(context, "note_deleted", "note", note_id, {})

    async def log_auth_failure(self, context: AuditContext, *, reason: str) -> None:
        await self._log(context, "auth_error", "user", "auth_failure", {"reason": reason})

    async def log_search_performed(
        self,
        context: AuditContext,
        *,
        query: str | None,
        filters: Mapping[str, Any],
        result_count: int,
    ) -> None:
        await self._log(
            context,
            "search_performed",
            "note",
            "search",
            {"query": query, "filters": dict(filters), "result_count": result_count},
        )

    async def log_video_interaction(
        self,
        context: AuditContext,
        *,
        event_type: EventType,
        video_id: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        await self._log(context, event_type, "video", video_id, dict(metadata or {}))

    async def log_comment_added(
        self,
        context: AuditContext,
        *,
        comment_id: str,
        video_id: str,
        parent_id: str | None = None,
    ) -> None:
        metadata: dict[str, Any] = {"video_id": video_id}
        if parent_id is not None:
            metadata["parent_id"] = parent_id
        await self._log(context, "comment_added", "comment", comment_id, metadata)

    async def log_comment_deleted(self, context: AuditContext, *, comment_id: str) -> None:
        await self._log(context, "comment_deleted", "comment", comment_id, {})

    async def log_client_event(
        self,
        context: AuditContext,
        *,
        event_type: EventType,
        entity_type: EntityType,
        entity_id: str,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        await self._log(context, event_type, entity_type, entity_id, dict(metadata or {}))

    async def _log(
        self,
        context: AuditContext,
        event_type: EventType,
        entity_type: EntityType,
        entity_id: str,
        metadata: dict[str, Any],
    ) -> None:
        await self.log_event(
            EventLogEntry(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                metadata=metadata,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
                user_id=context.user_id,
            )
        )

    async def _record_failure(self, entry: EventLogEntry, error: Exception) -> None:
        try:
            failure_entry = EventLogEntry(
                event_type="api_error",
                entity_type="user" if entry.user_id is not None else "system",
                entity_id=entry.user_id or "system",
                metadata={
                    "original_event": _json_safe(asdict(entry)),
                    "error": str(error),
                },
                ip_address=entry.ip_address,
                user_agent=entry.user_agent,
                user_id=entry.user_id,
            )
            await self._repository.create(failure_entry)
        except Exception as secondary_exc:
            logger.error(
                "audit failure record write failed event_type=%s original_error=%s error=%s",
                entry.event_type,
                error,
                secondary_exc,
            )


def get_client_ip(headers: Mapping[str, str]) -> str | None:
    lowered = _lower_keys(headers)
    for header_name in _CLIENT_IP_HEADERS:
        raw_value = lowered.get(header_name)
        if not raw_value:
            continue
        # Forwarded chains list the originating client first.
        candidate = raw_value.split(",")[0].strip()
        if candidate:
            return candidate
    return None


def get_user_agent(headers: Mapping[str, str]) -> str | None:
    return _lower_keys(headers).get("user-agent") or None


def _lower_keys(headers: Mapping[str, str]) -> dict[str, str]:
    return {str(key).lower(): value for key, value in headers.items()}


def _json_safe(value: Any) -> Any:
    return json.loads(json.dumps(value, default=str))
