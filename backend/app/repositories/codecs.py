from __future__ import annotations

import json
from typing import Any, Protocol, cast

from backend.app.errors import CorruptRecordError


class StorageCodec(Protocol):
    """Maps note tags and event metadata to and from a backend's column representation."""

    name: str
    supports_structured_containment: bool

    def encode_tags(self, tags: list[str]) -> Any:
        ...

    def decode_tags(self, raw: Any, *, record_id: str | None = None) -> list[str]:
        ...

    def encode_metadata(self, metadata: dict[str, Any] | None) -> Any:
        ...

    def decode_metadata(
        self, raw: Any, *, record_id: str | None = None
    ) -> dict[str, Any] | None:
        ...

    def tag_containment_clause(self, column: str, placeholder: str) -> str:
        ...


class NativeStorageCodec:
    """PostgreSQL: `text[]` tags and `jsonb` metadata, stored as-is."""

    name = "postgres"
    supports_structured_containment = True

    def encode_tags(self, tags: list[str]) -> list[str]:
        return list(tags)

    def decode_tags(self, raw: Any, *, record_id: str | None = None) -> list[str]:
        return _require_str_list(raw, record_id=record_id)

    def encode_metadata(self, metadata: dict[str, Any] | None) -> dict[str, Any] | None:
        if metadata is None:
            return None
        return dict(metadata)

    def decode_metadata(
        self, raw: Any, *, record_id: str | None = None
    ) -> dict[str, Any] | None:
        if raw is None:
            return None
        # jsonb may come back as text when no type codec is registered on the connection.
        if isinstance(raw, str):
            raw = _load_json(raw, table="event_logs", field="metadata", record_id=record_id)
        return _require_dict(raw, record_id=record_id)

    def tag_containment_clause(self, column: str, placeholder: str) -> str:
        return f"{column} && {placeholder}::text[]"


class TextStorageCodec:
    """SQLite: both fields serialized as JSON text."""

    name = "sqlite"
    supports_structured_containment = False

    def encode_tags(self, tags: list[str]) -> str:
        return json.dumps(list(tags), ensure_ascii=False)

    def decode_tags(self, raw: Any, *, record_id: str | None = None) -> list[str]:
        if not isinstance(raw, str):
            raise CorruptRecordError(
                table="notes",
                record_id=record_id,
                field="tags",
                detail=f"expected JSON text, got {type(raw).__name__}",
            )
        parsed = _load_json(raw, table="notes", field="tags", record_id=record_id)
        return _require_str_list(parsed, record_id=record_id)

    def encode_metadata(self, metadata: dict[str, Any] | None) -> str | None:
        if metadata is None:
            return None
        return json.dumps(metadata, sort_keys=True, ensure_ascii=False)

    def decode_metadata(
        self, raw: Any, *, record_id: str | None = None
    ) -> dict[str, Any] | None:
        if raw is None:
            return None
        if not isinstance(raw, str):
            raise CorruptRecordError(
                table="event_logs",
                record_id=record_id,
                field="metadata",
                detail=f"expected JSON text, got {type(raw).__name__}",
            )
        parsed = _load_json(raw, table="event_logs", field="metadata", record_id=record_id)
        return _require_dict(parsed, record_id=record_id)

    def tag_containment_clause(self, column: str, placeholder: str) -> str:
        raise ValueError("SQLite text columns do not support tag containment queries")


def _load_json(raw: str, *, table: str, field: str, record_id: str | None) -> Any:
    try:
        return json.loads(raw)
    except json.JSONDecodeError as exc:
        raise CorruptRecordError(
            table=table,
            record_id=record_id,
            field=field,
            detail=f"malformed JSON ({exc.msg})",
        ) from exc


def _require_str_list(value: Any, *, record_id: str | None) -> list[str]:
    if not isinstance(value, list | tuple):
        raise CorruptRecordError(
            table="notes",
            record_id=record_id,
            field="tags",
            detail=f"expected a list, got {type(value).__name__}",
        )
    items = cast(list[object], list(value))
    if not all(isinstance(item, str) for item in items):
        raise CorruptRecordError(
            table="notes",
            record_id=record_id,
            field="tags",
            detail="expected every tag to be a string",
        )
    return cast(list[str], items)


def _require_dict(value: Any, *, record_id: str | None) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise CorruptRecordError(
            table="event_logs",
            record_id=record_id,
            field="metadata",
            detail=f"expected an object, got {type(value).__name__}",
        )
    raw_dict = cast(dict[object, object], value)
    return {str(key): item for key, item in raw_dict.items()}
