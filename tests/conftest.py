from __future__ import annotations

import json
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import Any

import httpx
import pytest
from fastapi.testclient import TestClient

from backend.app.dependencies import reset_cached_dependencies
from backend.app.main import create_app


class FakeYouTubeApi:
    """Scripted stand-in for the YouTube Data API, served through `httpx.MockTransport`."""

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self._routes: dict[tuple[str, str], list[httpx.Response]] = {}
        self.network_error: httpx.RequestError | None = None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self._handle)

    def add(
        self,
        method: str,
        endpoint: str,
        *,
        status: int = 200,
        json_body: Any = None,
    ) -> None:
        content = b"" if json_body is None else json.dumps(json_body).encode("utf-8")
        headers = {} if json_body is None else {"content-type": "application/json"}
        self._routes.setdefault((method.upper(), endpoint), []).append(
            httpx.Response(status, content=content, headers=headers)
        )

    def add_error(
        self, method: str, endpoint: str, *, status: int, message: str, reason: str
    ) -> None:
        self.add(
            method,
            endpoint,
            status=status,
            json_body={
                "error": {
                    "code": status,
                    "message": message,
                    "errors": [{"reason": reason, "message": message}],
                }
            },
        )

    def calls(self, method: str, endpoint: str) -> list[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.method == method.upper() and _endpoint(request) == endpoint
        ]

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.network_error is not None:
            raise self.network_error
        queue = self._routes.get((request.method, _endpoint(request)))
        if not queue:
            return httpx.Response(
                500,
                json={"error": {"message": f"unscripted {request.method} {_endpoint(request)}"}},
            )
        # The last scripted response sticks so repeated calls keep working.
        return queue.pop(0) if len(queue) > 1 else queue[0]

    @staticmethod
    def video_item(
        video_id: str = "dQw4w9WgXcQ",
        *,
        channel_id: str = "UC_owner",
        title: str = "Never Gonna Give You Up",
        privacy_status: str = "public",
    ) -> dict[str, Any]:
        return {
            "kind": "youtube#video",
            "id": video_id,
            "snippet": {
                "publishedAt": "2009-10-25T06:57:33Z",
                "channelId": channel_id,
                "channelTitle": "Owner Channel",
                "title": title,
                "description": "Original description",
                "categoryId": "10",
                "tags": ["music"],
                "thumbnails": {
                    "default": {
                        "url": "https://i.ytimg.com/vi/x/default.jpg",
                        "width": 120,
                        "height": 90,
                    },
                    "high": {"url": "https://i.ytimg.com/vi/x/hq.jpg", "width": 480, "height": 360},
                },
            },
            "statistics": {"viewCount": "1500", "likeCount": "42", "commentCount": "7"},
            "status": {"privacyStatus": privacy_status, "embeddable": True},
        }

    @staticmethod
    def channel_item(
        channel_id: str = "UC_owner", *, uploads: str | None = "UU_owner"
    ) -> dict[str, Any]:
        related = {"uploads": uploads} if uploads is not None else {}
        return {
            "id": channel_id,
            "snippet": {"title": "Owner Channel", "description": "About", "thumbnails": {}},
            "contentDetails": {"relatedPlaylists": related},
        }

    @staticmethod
    def comment_item(comment_id: str, text: str, *, author: str = "Viewer") -> dict[str, Any]:
        return {
            "id": comment_id,
            "snippet": {
                "textDisplay": text,
                "authorDisplayName": author,
                "authorProfileImageUrl": "https://yt3.ggpht.com/a.jpg",
                "authorChannelId": {"value": "UC_viewer"},
                "publishedAt": "2024-01-01T00:00:00Z",
                "likeCount": 3,
            },
        }

    @classmethod
    def thread_item(
        cls, thread_id: str, text: str, *, replies: list[dict[str, Any]] | None = None
    ) -> dict[str, Any]:
        item: dict[str, Any] = {
            "id": thread_id,
            "snippet": {"topLevelComment": cls.comment_item(f"{thread_id}-top", text)},
        }
        if replies:
            item["replies"] = {"comments": replies}
        return item


def _endpoint(request: httpx.Request) -> str:
    return request.url.path.rsplit("/", 1)[-1]


@pytest.fixture
def youtube_api() -> FakeYouTubeApi:
    return FakeYouTubeApi()


@pytest.fixture
def app_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    data_dir = tmp_path / "runtime-data"
    data_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("YOUTUBE_COMPANION_DATA_DIR", str(data_dir))
    monkeypatch.setenv("YOUTUBE_COMPANION_YOUTUBE_API_KEY", "test-api-key")
    monkeypatch.setenv("YOUTUBE_COMPANION_DATABASE_BACKEND", "sqlite")
    monkeypatch.delenv("YOUTUBE_COMPANION_DATABASE_URL", raising=False)
    return data_dir


@pytest.fixture
def make_client(
    app_env: Path,
    youtube_api: FakeYouTubeApi,
    monkeypatch: pytest.MonkeyPatch,
) -> Callable[..., AbstractContextManager[TestClient]]:
    _ = app_env

    @contextmanager
    def _make(**env_overrides: str) -> Iterator[TestClient]:
        for name, value in env_overrides.items():
            monkeypatch.setenv(f"YOUTUBE_COMPANION_{name.upper()}", value)
        reset_cached_dependencies()
        app = create_app(http_transport=youtube_api.transport)
        with TestClient(app) as test_client:
            yield test_client
        reset_cached_dependencies()

    return _make


@pytest.fixture
def client(
    make_client: Callable[..., AbstractContextManager[TestClient]],
) -> Iterator[TestClient]:
    with make_client() as test_client:
        yield test_client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {
        "Authorization": "Bearer owner-access-token",
        "X-Auth-User-Id": "google-owner",
        "X-Auth-User-Email": "owner@example.com",
        "X-Auth-User-Name": "Channel Owner",
        "User-Agent": "pytest-dashboard/1.0",
        "X-Forwarded-For": "203.0.113.7, 10.0.0.1",
    }
