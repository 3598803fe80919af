from __future__ import annotations

from dataclasses import dataclass

from fastapi import Request

USER_ID_HEADER = "X-Auth-User-Id"
USER_EMAIL_HEADER = "X-Auth-User-Email"
USER_NAME_HEADER = "X-Auth-User-Name"


@dataclass(frozen=True)
class SessionUser:
    id: str
    email: str | None = None
    name: str | None = None


@dataclass(frozen=True)
class SessionContext:
    """Per-request identity handed over by the sign-in layer in front of this service."""

    user: SessionUser | None = None
    access_token: str | None = None

    @classmethod
    def anonymous(cls) -> SessionContext:
        return cls()


def get_session(request: Request) -> SessionContext:
    """
    Default session provider: an authenticating reverse proxy forwards the signed-in
    user in `X-Auth-User-*` headers and the Google access token as a bearer token.
    """
    headers = request.headers
    user_id = _header_text(headers.get(USER_ID_HEADER))
    user = None
    if user_id is not None:
        user = SessionUser(
            id=user_id,
            email=_header_text(headers.get(USER_EMAIL_HEADER)),
            name=_header_text(headers.get(USER_NAME_HEADER)),
        )
    return SessionContext(user=user, access_token=_bearer_token(headers.get("Authorization")))


def _bearer_token(raw_header: str | None) -> str | None:
    if raw_header is None:
        return None
    scheme, _, credentials = raw_header.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    return _header_text(credentials)


def _header_text(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None
