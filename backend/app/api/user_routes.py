from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from backend.app.api.guards import AuthenticatedUser, Services
from backend.app.api.responses import ok

router = APIRouter(prefix="/api/user", tags=["user"])


@router.get("/profile", operation_id="user_profile")
async def get_profile(user: AuthenticatedUser, services: Services) -> dict[str, Any]:
    return ok(
        {
            "user": user.record,
            "stats": {
                "notes": await services.users.count_notes(user.record.id),
                "events": await services.users.count_events(user.record.id),
            },
            "session": {
                "access_token": "present" if user.session.access_token else "missing",
            },
        }
    )
