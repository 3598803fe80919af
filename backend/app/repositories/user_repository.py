from __future__ import annotations

from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from backend.app.repositories.common import utc_now_iso
from backend.app.repositories.database import Database


@dataclass(frozen=True)
class UserRecord:
    id: str
    email: str
    name: str | None
    image: str | None
    external_id: str | None
    created_at: str
    updated_at: str


class UserRepository:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def get(self, user_id: str) -> UserRecord | None:
        row = await self._db.fetch_one("SELECT * FROM users WHERE id = $1", user_id)
        return _row_to_user(row) if row is not None else None

    async def get_by_email(self, email: str) -> UserRecord | None:
        row = await self._db.fetch_one("SELECT * FROM users WHERE email = $1", email)
        return _row_to_user(row) if row is not None else None

    async def get_or_create(
        self,
        *,
        email: str,
        name: str | None = None,
        image: str | None = None,
        external_id: str | None = None,
    ) -> UserRecord:
        existing = await self.get_by_email(email)
        if existing is not None:
            if name is not None and name != existing.name:
                return await self._update_name(existing, name)
            return existing

        user_id = f"usr_{uuid4().hex}"
        timestamp = utc_now_iso()
        await self._db.execute(
            """
            INSERT INTO users (id, email, name, image, external_id, created_at, updated_at)
            VALUES ($1, $2, $3, $4, $5, $6, $7)
            ON CONFLICT (email) DO NOTHING
            """,
            user_id,
            email,
            name,
            image,
            external_id,
            timestamp,
            timestamp,
        )
        # A concurrent request may have won the insert; the stored row is authoritative.
        created = await self.get_by_email(email)
        if created is None:
            raise RuntimeError(f"user row missing after insert email={email}")
        return created

    async def count_notes(self, user_id: str) -> int:
        value = await self._db.fetch_val(
            "SELECT COUNT(*) AS total FROM notes WHERE user_id = $1", user_id
        )
        return int(value or 0)

    async def count_events(self, user_id: str) -> int:
        value = await self._db.fetch_val(
            "SELECT COUNT(*) AS total FROM event_logs WHERE user_id = $1", user_id
        )
        return int(value or 0)

    async def _update_name(self, user: UserRecord, name: str) -> UserRecord:
        timestamp = utc_now_iso()
        await self._db.execute(
            "UPDATE users SET name = $1, updated_at = $2 WHERE id = $3",
            name,
            timestamp,
            user.id,
        )
        return UserRecord(
            id=user.id,
            email=user.email,
            name=name,
            image=user.image,
            external_id=user.external_id,
            created_at=user.created_at,
            updated_at=timestamp,
        )


def _row_to_user(row: dict[str, Any]) -> UserRecord:
    return UserRecord(
        id=str(row["id"]),
        email=str(row["email"]),
        name=row["name"],
        image=row["image"],
        external_id=row["external_id"],
        created_at=str(row["created_at"]),
        updated_at=str(row["updated_at"]),
    )
