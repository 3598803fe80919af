from __future__ import annotations

import logging
import math
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from threading import Lock
from time import time

from backend.app.services.event_logger import get_client_ip

logger = logging.getLogger("youtube_companion.rate_limit")

_DEFAULT_PRUNE_THRESHOLD = 10_000


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after_seconds: int


@dataclass
class _WindowState:
    window_start: float
    count: int


class FixedWindowRateLimiter:
    """
    Per-client fixed-window counter.

    Windows are anchored at the first request of a client and advance in whole
    multiples of `window_seconds`; denied requests do not consume the budget.
    """

    def __init__(
        self,
        *,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time,
        prune_threshold: int = _DEFAULT_PRUNE_THRESHOLD,
    ) -> None:
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._prune_threshold = prune_threshold
        self._lock = Lock()
        self._windows: dict[str, _WindowState] = {}

    @property
    def max_requests(self) -> int:
        return self._max_requests

    def check(self, client_id: str) -> RateLimitDecision:
        now = self._clock()

        with self._lock:
            state = self._windows.get(client_id)
            if state is None:
                state = _WindowState(window_start=now, count=0)
                self._windows[client_id] = state
                if len(self._windows) > self._prune_threshold:
                    self._prune(now)
            elif now - state.window_start >= self._window_seconds:
                elapsed_windows = math.floor((now - state.window_start) / self._window_seconds)
                state.window_start += elapsed_windows * self._window_seconds
                state.count = 0

            reset_at = state.window_start + self._window_seconds
            if state.count >= self._max_requests:
                return RateLimitDecision(
                    allowed=False,
                    limit=self._max_requests,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after_seconds=max(1, math.ceil(reset_at - now)),
                )

            state.count += 1
            return RateLimitDecision(
                allowed=True,
                limit=self._max_requests,
                remaining=max(self._max_requests - state.count, 0),
                reset_at=reset_at,
                retry_after_seconds=0,
            )

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()

    def _prune(self, now: float) -> None:
        expired = [
            client_id
            for client_id, state in self._windows.items()
            if now - state.window_start >= self._window_seconds
        ]
        for client_id in expired:
            del self._windows[client_id]
        logger.debug(
            "rate limit windows pruned removed=%s remaining=%s",
            len(expired),
            len(self._windows),
        )


def get_client_identifier(
    headers: Mapping[str, str],
    *,
    user_id: str | None = None,
    fallback_address: str | None = None,
) -> str:
    if user_id:
        return f"user:{user_id}"
    address = get_client_ip(headers) or fallback_address or "unknown"
    return f"ip:{address}"
