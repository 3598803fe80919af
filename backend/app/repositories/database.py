from __future__ import annotations

import asyncio
import json
import logging
import re
import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol

import asyncpg

from backend.app.config import AppSettings
from backend.app.repositories.codecs import NativeStorageCodec, StorageCodec, TextStorageCodec

logger = logging.getLogger("youtube_companion.storage")

_NUMBERED_PLACEHOLDER = re.compile(r"\$(\d+)")

SQLITE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    name TEXT NULL,
    image TEXT NULL,
    external_id TEXT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notes (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    video_id TEXT NOT NULL,
    content TEXT NOT NULL,
    tags TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_notes_user_video ON notes(user_id, video_id);
CREATE INDEX IF NOT EXISTS idx_notes_user_created ON notes(user_id, created_at DESC);

CREATE TABLE IF NOT EXISTS event_logs (
    id TEXT PRIMARY KEY,
    event_type TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    metadata TEXT NULL,
    ip_address TEXT NULL,
    user_agent TEXT NULL,
    user_id TEXT NULL,
    timestamp TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_event_logs_user_timestamp ON event_logs(user_id, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_event_logs_type ON event_logs(event_type);
"""

POSTGRES_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    name TEXT NULL,
    image TEXT NULL,
    external_id TEXT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notes (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    video_id TEXT NOT NULL,
    content TEXT NOT NULL,
    tags TEXT[] NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_notes_user_video ON notes(user_id, video_id);
CREATE INDEX IF NOT EXISTS idx_notes_user_created ON notes(user_id, created_at DESC);
CREATE INDEX IF NOT EXISTS idx_notes_tags ON notes USING GIN (tags);

CREATE TABLE IF NOT EXISTS event_logs (
    id TEXT PRIMARY KEY,
    event_type TEXT NOT NULL,
    entity_type TEXT NOT NULL,
    entity_id TEXT NOT NULL,
    metadata JSONB NULL,
    ip_address TEXT NULL,
    user_agent TEXT NULL,
    user_id TEXT NULL,
    timestamp TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_event_logs_user_timestamp ON event_logs(user_id, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_event_logs_type ON event_logs(event_type);
"""


class Database(Protocol):
    """
    Async driver contract shared by both backends.

    Queries use `$1`-style numbered placeholders; rows come back as plain dicts.
    """

    backend: str
    codec: StorageCodec

    async def initialize(self) -> None:
        ...

    async def close(self) -> None:
        ...

    async def execute(self, query: str, *args: Any) -> int:
        ...

    async def fetch_one(self, query: str, *args: Any) -> dict[str, Any] | None:
        ...

    async def fetch_all(self, query: str, *args: Any) -> list[dict[str, Any]]:
        ...

    async def fetch_val(self, query: str, *args: Any) -> Any:
        ...

    async def ping(self) -> None:
        ...


class SqliteDatabase:
    backend = "sqlite"

    def __init__(self, path: Path) -> None:
        self._path = path
        self.codec: StorageCodec = TextStorageCodec()

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._path)
        conn.row_factory = sqlite3.Row
        # Built-in LOWER only folds ASCII; match the Unicode folding Postgres does.
        conn.create_function("LOWER", 1, _unicode_lower, deterministic=True)
        conn.execute("PRAGMA foreign_keys = ON")
        try:
            yield conn
            conn.commit()
        finally:
            conn.close()

    async def initialize(self) -> None:
        await asyncio.to_thread(self._initialize_sync)

    async def close(self) -> None:
        return

    async def execute(self, query: str, *args: Any) -> int:
        return await asyncio.to_thread(self._execute_sync, _to_sqlite(query), args)

    async def fetch_one(self, query: str, *args: Any) -> dict[str, Any] | None:
        rows = await asyncio.to_thread(self._fetch_sync, _to_sqlite(query), args, 1)
        return rows[0] if rows else None

    async def fetch_all(self, query: str, *args: Any) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._fetch_sync, _to_sqlite(query), args, None)

    async def fetch_val(self, query: str, *args: Any) -> Any:
        row = await self.fetch_one(query, *args)
        if row is None:
            return None
        return next(iter(row.values()), None)

    async def ping(self) -> None:
        await self.fetch_val("SELECT 1")

    def _initialize_sync(self) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self.connection() as conn:
            conn.executescript(SQLITE_SCHEMA_SQL)

    def _execute_sync(self, query: str, args: Sequence[Any]) -> int:
        with self.connection() as conn:
            cursor = conn.execute(query, tuple(args))
            return max(cursor.rowcount, 0)

    def _fetch_sync(
        self, query: str, args: Sequence[Any], limit: int | None
    ) -> list[dict[str, Any]]:
        with self.connection() as conn:
            cursor = conn.execute(query, tuple(args))
            rows = cursor.fetchmany(limit) if limit is not None else cursor.fetchall()
        return [dict(row) for row in rows]


class PostgresDatabase:
    backend = "postgres"

    def __init__(self, dsn: str, *, min_pool_size: int = 1, max_pool_size: int = 10) -> None:
        self._dsn = dsn
        self._min_pool_size = min_pool_size
        self._max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None
        self.codec: StorageCodec = NativeStorageCodec()

    async def initialize(self) -> None:
        if self._pool is None:
            self._pool = await asyncpg.create_pool(
                self._dsn,
                min_size=self._min_pool_size,
                max_size=self._max_pool_size,
                init=_init_postgres_connection,
                server_settings={"application_name": "youtube_companion"},
            )
        async with self._pool.acquire() as conn:
            await conn.execute(POSTGRES_SCHEMA_SQL)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def execute(self, query: str, *args: Any) -> int:
        async with self._require_pool().acquire() as conn:
            status = await conn.execute(query, *args)
        return _affected_rows(status)

    async def fetch_one(self, query: str, *args: Any) -> dict[str, Any] | None:
        async with self._require_pool().acquire() as conn:
            row = await conn.fetchrow(query, *args)
        return dict(row) if row is not None else None

    async def fetch_all(self, query: str, *args: Any) -> list[dict[str, Any]]:
        async with self._require_pool().acquire() as conn:
            rows = await conn.fetch(query, *args)
        return [dict(row) for row in rows]

    async def fetch_val(self, query: str, *args: Any) -> Any:
        async with self._require_pool().acquire() as conn:
            return await conn.fetchval(query, *args)

    async def ping(self) -> None:
        await self.fetch_val("SELECT 1")

    def _require_pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise RuntimeError("Database not connected")
        return self._pool


async def _init_postgres_connection(conn: asyncpg.Connection) -> None:
    await conn.set_type_codec(
        "jsonb",
        encoder=json.dumps,
        decoder=json.loads,
        schema="pg_catalog",
    )


def build_database(settings: AppSettings) -> Database:
    if settings.database_backend == "postgres":
        if settings.database_url is None:
            raise ValueError("YOUTUBE_COMPANION_DATABASE_URL is required for the postgres backend.")
        logger.info("storage backend selected backend=postgres")
        return PostgresDatabase(settings.database_url)
    logger.info("storage backend selected backend=sqlite path=%s", settings.db_path)
    return SqliteDatabase(settings.db_path)


def _unicode_lower(value: Any) -> Any:
    return value.lower() if isinstance(value, str) else value


def _to_sqlite(query: str) -> str:
    return _NUMBERED_PLACEHOLDER.sub(r"?\1", query)


def _affected_rows(status: str) -> int:
    # asyncpg returns command tags such as "UPDATE 3" or "INSERT 0 1".
    last = status.rsplit(" ", 1)[-1]
    try:
        return int(last)
    except ValueError:
        return 0
