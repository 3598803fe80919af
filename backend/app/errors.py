from __future__ import annotations


class DashboardError(Exception):
    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    error: str = "Internal server error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.error)
        self.message = message or self.error


class InvalidIdentifierError(DashboardError):
    status_code = 400
    code = "INVALID_IDENTIFIER"
    error = "Invalid identifier"


class ValidationFailedError(DashboardError):
    status_code = 400
    code = "VALIDATION_ERROR"
    error = "Invalid input data"


class AuthenticationRequiredError(DashboardError):
    status_code = 401
    code = "AUTHENTICATION_REQUIRED"
    error = "Authentication required"


class RecordNotFoundError(DashboardError):
    status_code = 404
    code = "NOT_FOUND"
    error = "Not found"


class RateLimitError(DashboardError):
    status_code = 429
    code = "RATE_LIMIT_EXCEEDED"
    error = "Rate limit exceeded"

    def __init__(
        self,
        message: str | None = None,
        *,
        limit: int | None = None,
        reset_at: float | None = None,
        retry_after_seconds: int | None = None,
    ) -> None:
        super().__init__(message or "Too many requests. Please try again later.")
        self.limit = limit
        self.reset_at = reset_at
        self.retry_after_seconds = retry_after_seconds


class CorruptRecordError(DashboardError):
    """A stored value could not be decoded back into its in-memory shape."""

    status_code = 500
    code = "CORRUPT_RECORD"
    error = "Internal server error"

    def __init__(self, *, table: str, record_id: str | None, field: str, detail: str) -> None:
        super().__init__(
            f"Corrupt {table}.{field} value for record {record_id or 'unknown'}: {detail}"
        )
        self.table = table
        self.record_id = record_id
        self.field = field


class YouTubeAPIError(DashboardError):
    code = "API_ERROR"
    error = "YouTube API error"

    def __init__(self, message: str, *, upstream_status: int | None = None) -> None:
        super().__init__(message)
        self.upstream_status = upstream_status
        if upstream_status is not None and 400 <= upstream_status < 600:
            self.status_code = upstream_status


class YouTubeAuthError(YouTubeAPIError):
    code = "AUTH_ERROR"
    error = "Authentication failed"

    def __init__(self, message: str, *, upstream_status: int | None = 401) -> None:
        super().__init__(message, upstream_status=upstream_status)


class OwnershipError(YouTubeAPIError):
    code = "FORBIDDEN"
    error = "Access denied"

    def __init__(
        self,
        message: str = "Access denied. You can only access videos from your own YouTube channel.",
    ) -> None:
        super().__init__(message, upstream_status=403)


class YouTubeNotFoundError(YouTubeAPIError):
    code = "NOT_FOUND"
    error = "Not found"

    def __init__(self, message: str) -> None:
        super().__init__(message, upstream_status=404)


class CommentsDisabledError(YouTubeAPIError):
    code = "COMMENTS_DISABLED"
    error = "Comments are disabled for this video"

    def __init__(self, message: str = "Comments are disabled for this video") -> None:
        super().__init__(message, upstream_status=403)
