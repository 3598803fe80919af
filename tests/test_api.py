from __future__ import annotations

from collections.abc import Callable
from contextlib import AbstractContextManager
from typing import TYPE_CHECKING, Any, cast

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from backend.app.session import SessionContext, SessionUser, get_session

if TYPE_CHECKING:
    from tests.conftest import FakeYouTubeApi

VIDEO_ID = "dQw4w9WgXcQ"
MakeClient = Callable[..., AbstractContextManager[TestClient]]


def _other_user(headers: dict[str, str]) -> dict[str, str]:
    return {
        **headers,
        "X-Auth-User-Id": "google-other",
        "X-Auth-User-Email": "other@example.com",
        "X-Auth-User-Name": "Other",
    }


def _app(client: TestClient) -> FastAPI:
    return cast(FastAPI, client.app)


def _events(client: TestClient, headers: dict[str, str], **params: str) -> list[dict[str, Any]]:
    response = client.get("/api/events", headers=headers, params=params)
    assert response.status_code == 200
    return response.json()["data"]["events"]


def test_health(client: TestClient) -> None:
    response = client.get("/health", headers={"X-Request-ID": "req-health-1"})

    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "database": {"healthy": True, "backend": "sqlite"},
    }
    assert response.headers["X-Request-ID"] == "req-health-1"


def test_public_video_read_returns_envelope(
    client: TestClient, youtube_api: FakeYouTubeApi
) -> None:
    youtube_api.add("GET", "videos", json_body={"items": [youtube_api.video_item()]})

    response = client.get("/api/youtube/video", params={"id": f"https://youtu.be/{VIDEO_ID}"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"]["id"] == VIDEO_ID
    assert body["data"]["statistics"]["view_count"] == 1500
    assert youtube_api.requests[0].url.params["key"] == "test-api-key"


def test_invalid_video_identifier_is_rejected_before_upstream(
    client: TestClient, youtube_api: FakeYouTubeApi
) -> None:
    response = client.get("/api/youtube/video", params={"id": "https://vimeo.com/1"})

    assert response.status_code == 400
    assert response.json() == {
        "success": False,
        "error": "Invalid identifier",
        "message": "Invalid YouTube URL or video ID format",
    }
    assert youtube_api.requests == []


def test_comments_disabled_returns_success_false_with_200(
    client: TestClient, youtube_api: FakeYouTubeApi
) -> None:
    youtube_api.add_error(
        "GET",
        "commentThreads",
        status=403,
        message="The video has disabled comments.",
        reason="commentsDisabled",
    )

    response = client.get("/api/youtube/comments", params={"id": VIDEO_ID})

    assert response.status_code == 200
    assert response.json() == {
        "success": False,
        "error": "Comments are disabled for this video",
    }


@pytest.mark.parametrize(("requested", "sent"), [("500", "50"), ("0", "1"), ("7", "7")])
def test_comment_page_size_is_clamped(
    client: TestClient, youtube_api: FakeYouTubeApi, requested: str, sent: str
) -> None:
    youtube_api.add("GET", "commentThreads", json_body={"items": []})

    response = client.get(
        "/api/youtube/comments", params={"id": VIDEO_ID, "maxResults": requested}
    )

    assert response.status_code == 200
    assert response.json()["data"]["comments"] == []
    assert youtube_api.requests[0].url.params["maxResults"] == sent


def test_oversized_comment_fails_validation_without_upstream_call(
    client: TestClient, youtube_api: FakeYouTubeApi, auth_headers: dict[str, str]
) -> None:
    response = client.post(
        "/api/youtube/comments",
        headers=auth_headers,
        json={"videoId": VIDEO_ID, "text": "x" * 10_001},
    )

    assert response.status_code == 400
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "Invalid input data"
    assert "at most 10000 characters" in body["message"]
    assert youtube_api.requests == []


def test_empty_comment_fails_validation(
    client: TestClient, youtube_api: FakeYouTubeApi, auth_headers: dict[str, str]
) -> None:
    response = client.post(
        "/api/youtube/comments", headers=auth_headers, json={"videoId": VIDEO_ID, "text": "  "}
    )

    assert response.status_code == 400
    assert youtube_api.requests == []


def test_comment_without_token_is_rejected_and_audited(
    client: TestClient, youtube_api: FakeYouTubeApi, auth_headers: dict[str, str]
) -> None:
    headers = {key: value for key, value in auth_headers.items() if key != "Authorization"}

    response = client.post(
        "/api/youtube/comments", headers=headers, json={"videoId": VIDEO_ID, "text": "hello"}
    )

    assert response.status_code == 401
    assert response.json()["message"] == "Authentication required. Please sign in with Google."
    assert youtube_api.requests == []
    auth_events = _events(client, headers, eventType="auth_error")
    assert len(auth_events) == 1
    assert auth_events[0]["entity_id"] == "auth_failure"
    assert auth_events[0]["ip_address"] == "203.0.113.7"


def test_post_comment_and_reply_are_audited(
    client: TestClient, youtube_api: FakeYouTubeApi, auth_headers: dict[str, str]
) -> None:
    youtube_api.add(
        "POST", "commentThreads", json_body=youtube_api.thread_item("thread-1", "Hello")
    )
    youtube_api.add("POST", "comments", json_body=youtube_api.comment_item("reply-1", "Thanks"))

    posted = client.post(
        "/api/youtube/comments", headers=auth_headers, json={"videoId": VIDEO_ID, "text": "Hello"}
    )
    replied = client.post(
        "/api/youtube/comments",
        headers=auth_headers,
        json={"videoId": VIDEO_ID, "text": "Thanks", "parentId": "thread-1"},
    )

    assert posted.status_code == 201
    assert posted.json()["data"]["id"] == "thread-1"
    assert posted.json()["message"] == "Comment posted successfully"
    assert replied.status_code == 201
    assert replied.json()["message"] == "Reply posted successfully"
    assert posted.headers["X-RateLimit-Limit"] == "30"
    assert replied.headers["X-RateLimit-Remaining"] == "28"
    assert youtube_api.calls("POST", "commentThreads")[0].headers["authorization"] == (
        "Bearer owner-access-token"
    )

    events = _events(client, auth_headers, eventType="comment_added")
    assert {event["entity_id"] for event in events} == {"thread-1", "reply-1"}
    reply_event = next(event for event in events if event["entity_id"] == "reply-1")
    assert reply_event["metadata"] == {"video_id": VIDEO_ID, "parent_id": "thread-1"}
    assert reply_event["user_agent"] == "pytest-dashboard/1.0"


def test_comment_actions_are_rate_limited_per_user(
    make_client: MakeClient, youtube_api: FakeYouTubeApi, auth_headers: dict[str, str]
) -> None:
    youtube_api.add("DELETE", "comments", status=204)

    with make_client(youtube_actions_rate_limit_max_requests="2") as client:
        first = client.delete("/api/youtube/comments/c-1", headers=auth_headers)
        second = client.delete("/api/youtube/comments/c-2", headers=auth_headers)
        rejected = client.delete("/api/youtube/comments/c-3", headers=auth_headers)
        other_user = client.delete("/api/youtube/comments/c-4", headers=_other_user(auth_headers))

    assert first.status_code == 200
    assert first.json()["data"] == {"deleted": True}
    assert second.status_code == 200
    assert rejected.status_code == 429
    assert rejected.json() == {
        "success": False,
        "error": "Rate limit exceeded",
        "message": "Too many requests. Please try again later.",
    }
    assert rejected.headers["X-RateLimit-Limit"] == "2"
    assert rejected.headers["X-RateLimit-Remaining"] == "0"
    assert int(rejected.headers["X-RateLimit-Reset"]) > 0
    assert int(rejected.headers["Retry-After"]) >= 1
    assert other_user.status_code == 200
    deleted_ids = [
        request.url.params["id"] for request in youtube_api.calls("DELETE", "comments")
    ]
    assert deleted_ids == ["c-1", "c-2", "c-4"]


def test_audit_failure_does_not_fail_the_action(
    client: TestClient,
    youtube_api: FakeYouTubeApi,
    auth_headers: dict[str, str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    youtube_api.add("DELETE", "comments", status=204)
    services = _app(client).state.services

    async def _broken_create(entry: object) -> str:
        raise RuntimeError("event_logs unavailable")

    monkeypatch.setattr(services.events, "create", _broken_create)

    response = client.delete("/api/youtube/comments/c-1", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["success"] is True


def test_owned_video_read_is_audited(
    client: TestClient, youtube_api: FakeYouTubeApi, auth_headers: dict[str, str]
) -> None:
    youtube_api.add("GET", "channels", json_body={"items": [youtube_api.channel_item()]})
    youtube_api.add("GET", "videos", json_body={"items": [youtube_api.video_item()]})

    response = client.get(f"/api/youtube/video/{VIDEO_ID}", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["data"]["is_owner"] is True
    assert response.json()["data"]["video"]["id"] == VIDEO_ID
    viewed = _events(client, auth_headers, eventType="video_viewed")
    assert viewed[0]["entity_type"] == "video"
    assert viewed[0]["metadata"] == {"is_unlisted": False}


def test_foreign_video_returns_forbidden(
    client: TestClient, youtube_api: FakeYouTubeApi, auth_headers: dict[str, str]
) -> None:
    youtube_api.add("GET", "channels", json_body={"items": [youtube_api.channel_item()]})
    youtube_api.add(
        "GET", "videos", json_body={"items": [youtube_api.video_item(channel_id="UC_someone")]}
    )

    response = client.put(
        f"/api/youtube/video/{VIDEO_ID}", headers=auth_headers, json={"title": "Mine now"}
    )

    assert response.status_code == 403
    assert response.json() == {
        "success": False,
        "error": "Access denied",
        "message": "Access denied. You can only access videos from your own YouTube channel.",
    }
    assert youtube_api.calls("PUT", "videos") == []


@pytest.mark.parametrize(
    "payload",
    [{}, {"title": ""}, {"title": "t" * 101}, {"description": "d" * 5_001}],
)
def test_video_update_validation(
    client: TestClient,
    youtube_api: FakeYouTubeApi,
    auth_headers: dict[str, str],
    payload: dict[str, str],
) -> None:
    response = client.put(f"/api/youtube/video/{VIDEO_ID}", headers=auth_headers, json=payload)

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid input data"
    assert youtube_api.requests == []


def test_video_update_success_is_audited(
    client: TestClient, youtube_api: FakeYouTubeApi, auth_headers: dict[str, str]
) -> None:
    youtube_api.add("GET", "channels", json_body={"items": [youtube_api.channel_item()]})
    youtube_api.add("GET", "videos", json_body={"items": [youtube_api.video_item()]})
    youtube_api.add("PUT", "videos", json_body=youtube_api.video_item(title="Fresh title"))

    response = client.put(
        f"/api/youtube/video/{VIDEO_ID}", headers=auth_headers, json={"title": "Fresh title"}
    )

    assert response.status_code == 200
    assert response.json()["message"] == "Video metadata updated successfully"
    assert response.json()["data"]["title"] == "Fresh title"
    updated = _events(client, auth_headers, eventType="video_updated")
    assert updated[0]["metadata"] == {"changes": {"title": "Fresh title"}}


def test_upstream_quota_exhaustion_maps_to_429(
    client: TestClient, youtube_api: FakeYouTubeApi, auth_headers: dict[str, str]
) -> None:
    youtube_api.add_error(
        "GET", "channels", status=403, message="quota exceeded", reason="quotaExceeded"
    )

    response = client.get("/api/youtube/channel", headers=auth_headers)

    assert response.status_code == 429
    assert response.json()["error"] == "Rate limit exceeded"


def test_notes_lifecycle(client: TestClient, auth_headers: dict[str, str]) -> None:
    created = client.post(
        "/api/notes",
        headers=auth_headers,
        json={
            "videoId": f"https://www.youtube.com/watch?v={VIDEO_ID}",
            "content": "Great intro",
            "tags": ["intro", "music"],
        },
    )
    assert created.status_code == 201
    note = created.json()["data"]
    assert note["video_id"] == VIDEO_ID
    assert note["tags"] == ["intro", "music"]
    assert created.headers["X-RateLimit-Limit"] == "100"

    search = client.get("/api/notes", headers=auth_headers, params={"tags": "music,other"})
    assert search.status_code == 200
    assert [item["id"] for item in search.json()["data"]["notes"]] == [note["id"]]
    assert search.json()["data"]["pagination"]["total_count"] == 1

    tags = client.get("/api/notes/tags", headers=auth_headers)
    assert tags.json()["data"] == {"tags": ["intro", "music"]}

    updated = client.put(
        f"/api/notes/{note['id']}", headers=auth_headers, json={"content": "Even better intro"}
    )
    assert updated.status_code == 200
    assert updated.json()["data"]["content"] == "Even better intro"

    by_video = client.get(f"/api/notes/video/{VIDEO_ID}", headers=auth_headers)
    assert len(by_video.json()["data"]["notes"]) == 1

    stats = client.get("/api/notes/stats", headers=auth_headers)
    assert stats.json()["data"]["total_notes"] == 1

    deleted = client.delete(f"/api/notes/{note['id']}", headers=auth_headers)
    assert deleted.status_code == 200
    missing = client.get(f"/api/notes/{note['id']}", headers=auth_headers)
    assert missing.status_code == 404
    assert missing.json()["message"] == "Note not found"

    event_stats = client.get("/api/events/stats", headers=auth_headers).json()["data"]
    assert event_stats["by_event_type"] == {
        "note_created": 1,
        "note_deleted": 1,
        "note_updated": 1,
        "search_performed": 1,
    }
    assert event_stats["total"] == 4


def test_notes_are_private_to_their_owner(
    client: TestClient, auth_headers: dict[str, str]
) -> None:
    created = client.post(
        "/api/notes",
        headers=auth_headers,
        json={"videoId": VIDEO_ID, "content": "Mine", "tags": []},
    )
    note_id = created.json()["data"]["id"]
    other = _other_user(auth_headers)

    assert client.get(f"/api/notes/{note_id}", headers=other).status_code == 404
    assert client.delete(f"/api/notes/{note_id}", headers=other).status_code == 404
    assert client.get("/api/notes", headers=other).json()["data"]["notes"] == []
    assert client.get(f"/api/notes/{note_id}", headers=auth_headers).status_code == 200


def test_notes_require_a_session(client: TestClient) -> None:
    response = client.get("/api/notes")

    assert response.status_code == 401
    assert response.json()["error"] == "Authentication required"


def test_notes_search_rejects_unknown_order(
    client: TestClient, auth_headers: dict[str, str]
) -> None:
    response = client.get("/api/notes", headers=auth_headers, params={"orderBy": "rating"})

    assert response.status_code == 400
    assert response.json()["error"] == "Invalid input data"


def test_corrupt_stored_note_returns_500(
    client: TestClient, auth_headers: dict[str, str]
) -> None:
    profile = client.get("/api/user/profile", headers=auth_headers).json()["data"]
    services = _app(client).state.services
    with services.database.connection() as conn:
        conn.execute(
            """
            INSERT INTO notes (id, user_id, video_id, content, tags, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                "note_corrupt",
                profile["user"]["id"],
                VIDEO_ID,
                "broken",
                "{not json",
                "2024-01-01T00:00:00+00:00",
                "2024-01-01T00:00:00+00:00",
            ),
        )

    response = client.get("/api/notes", headers=auth_headers)

    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "error": "Internal server error",
        "message": "A stored record could not be read.",
    }


def test_track_event_and_filtering(client: TestClient, auth_headers: dict[str, str]) -> None:
    tracked = client.post(
        "/api/events/track",
        headers=auth_headers,
        json={
            "eventType": "page_viewed",
            "entityType": "page",
            "entityId": "/dashboard",
            "metadata": {"tab": "notes"},
        },
    )
    invalid = client.post(
        "/api/events/track",
        headers=auth_headers,
        json={"eventType": "teleported", "entityType": "page", "entityId": "/x"},
    )

    assert tracked.status_code == 201
    assert tracked.json()["data"] == {"tracked": True}
    assert invalid.status_code == 400
    listed = client.get(
        "/api/events", headers=auth_headers, params={"entityType": "page", "limit": "5"}
    ).json()["data"]
    assert listed["pagination"]["total_count"] == 1
    assert listed["pagination"]["limit"] == 5
    assert listed["events"][0]["metadata"] == {"tab": "notes"}


def test_profile_uses_overridden_session(client: TestClient) -> None:
    app = _app(client)
    app.dependency_overrides[get_session] = lambda: SessionContext(
        user=SessionUser(id="google-9", email="override@example.com", name="Override")
    )
    try:
        response = client.get("/api/user/profile")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["user"]["email"] == "override@example.com"
    assert data["user"]["external_id"] == "google-9"
    assert data["stats"] == {"notes": 0, "events": 0}
    assert data["session"] == {"access_token": "missing"}
