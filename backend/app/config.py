from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

from pydantic import Field, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DATA_DIR = ".youtube-companion"
DATABASE_BACKENDS: frozenset[str] = frozenset({"sqlite", "postgres"})
_DATA_DIR_RELATIVE_DEFAULTS: tuple[tuple[str, Path], ...] = (
    ("db_path", Path("state.db")),
    ("log_dir", Path("logs")),
)
_PATH_FIELDS: tuple[str, ...] = (
    "data_dir",
    *(field_name for field_name, _ in _DATA_DIR_RELATIVE_DEFAULTS),
)
_BOOLEAN_COERCION_FIELDS: tuple[str, ...] = ("telemetry_enabled",)


def _default_in_data_dir(relative_path: Path) -> Path:
    return Path(DEFAULT_DATA_DIR) / relative_path


def _data_dir_default_note(relative_path: Path) -> str:
    return f"Defaults to `${{YOUTUBE_COMPANION_DATA_DIR}}/{relative_path}` when not explicitly set."


def _resolve_path(value: str | Path) -> Path:
    return Path(value).expanduser().resolve()


def _parse_bool_with_default(value: Any, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        if value == 1:
            return True
        if value == 0:
            return False
        return default
    if not isinstance(value, str):
        return default

    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


def _normalize_optional_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        return None
    normalized = value.strip()
    if normalized:
        return normalized
    return None


class AppSettings(BaseSettings):
    """
    Canonical runtime configuration.

    Every option is read from `YOUTUBE_COMPANION_*` (or `.env`) and documented here.
    """

    model_config = SettingsConfigDict(
        env_prefix="YOUTUBE_COMPANION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # Core paths and storage.
    data_dir: Path = Field(
        default=Path(DEFAULT_DATA_DIR),
        description="Root runtime directory for local state and logs.",
    )
    database_backend: Literal["sqlite", "postgres"] = Field(
        default="sqlite",
        description=(
            "Durable store backend. `postgres` keeps note tags and event metadata in native "
            "array/JSONB columns; `sqlite` stores them as JSON text."
        ),
    )
    db_path: Path = Field(
        default=_default_in_data_dir(Path("state.db")),
        description=f"SQLite database path. {_data_dir_default_note(Path('state.db'))}",
    )
    database_url: str | None = Field(
        default=None,
        description="PostgreSQL DSN. Required when the database backend is `postgres`.",
    )

    # Upstream YouTube Data API.
    youtube_api_key: str | None = Field(
        default=None,
        description="API key used for public, read-only YouTube Data API calls.",
    )
    youtube_api_base_url: str = Field(
        default="https://www.googleapis.com/youtube/v3",
        description="YouTube Data API base URL.",
    )
    youtube_http_timeout_seconds: float = Field(
        default=15.0,
        description="HTTP timeout for YouTube Data API requests.",
    )

    # Local abuse damping.
    youtube_actions_rate_limit_max_requests: int = Field(
        default=30,
        ge=1,
        le=10_000,
        description="Comment post/reply/delete actions allowed per client in each window.",
    )
    youtube_actions_rate_limit_window_seconds: int = Field(
        default=300,
        ge=1,
        le=86_400,
        description="Window size in seconds for comment write actions.",
    )
    notes_rate_limit_max_requests: int = Field(
        default=100,
        ge=1,
        le=100_000,
        description="Notes API requests allowed per client in each window.",
    )
    notes_rate_limit_window_seconds: int = Field(
        default=900,
        ge=1,
        le=86_400,
        description="Window size in seconds for notes API requests.",
    )

    # Logging.
    log_dir: Path = Field(
        default=_default_in_data_dir(Path("logs")),
        description=f"Directory for backend log files. {_data_dir_default_note(Path('logs'))}",
    )
    log_level: str = Field(
        default="INFO",
        description="Console log level (stdout).",
    )

    # Telemetry.
    telemetry_enabled: bool = Field(
        default=True,
        description="Enable lightweight internal telemetry events.",
    )
    telemetry_sink: Literal["none", "log"] = Field(
        default="log",
        description=(
            "Telemetry sink backend. `log` emits structured telemetry locally; "
            "`none` disables sink output."
        ),
    )

    @field_validator("database_backend", mode="before")
    @classmethod
    def _normalize_database_backend(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("YOUTUBE_COMPANION_DATABASE_BACKEND must be a string.")
        normalized = value.strip().lower()
        if normalized in {"postgresql", "pg"}:
            normalized = "postgres"
        if normalized in DATABASE_BACKENDS:
            return normalized
        raise ValueError("YOUTUBE_COMPANION_DATABASE_BACKEND must be set to: sqlite, postgres.")

    @field_validator("telemetry_sink", mode="before")
    @classmethod
    def _normalize_telemetry_sink(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("YOUTUBE_COMPANION_TELEMETRY_SINK must be a string.")
        normalized = value.strip().lower()
        if normalized in {"none", "log"}:
            return normalized
        raise ValueError("YOUTUBE_COMPANION_TELEMETRY_SINK must be set to: none, log.")

    @field_validator("youtube_api_base_url", mode="before")
    @classmethod
    def _normalize_youtube_api_base_url(cls, value: Any) -> str:
        if not isinstance(value, str):
            raise ValueError("YOUTUBE_COMPANION_YOUTUBE_API_BASE_URL must be a string.")
        normalized = value.strip().rstrip("/")
        if not normalized:
            raise ValueError("YOUTUBE_COMPANION_YOUTUBE_API_BASE_URL must not be empty.")
        return normalized

    @field_validator(*_PATH_FIELDS, mode="before")
    @classmethod
    def _normalize_paths(cls, value: Any) -> Any:
        if value is None:
            return None
        return _resolve_path(value)

    @field_validator(*_BOOLEAN_COERCION_FIELDS, mode="before")
    @classmethod
    def _normalize_booleans(cls, value: Any, info: ValidationInfo) -> bool:
        field_name = info.field_name
        assert field_name is not None
        default_value = cls.model_fields[field_name].default
        assert isinstance(default_value, bool)
        return _parse_bool_with_default(value, default=default_value)

    @field_validator("youtube_api_key", "database_url", mode="before")
    @classmethod
    def _normalize_optional_strings(cls, value: Any) -> str | None:
        return _normalize_optional_text(value)


def _validate_runtime_configuration(
    *,
    youtube_api_key: str | None,
    database_backend: str,
    database_url: str | None,
) -> None:
    errors: list[str] = []

    if youtube_api_key is None:
        errors.append("YOUTUBE_COMPANION_YOUTUBE_API_KEY is required for public YouTube reads.")
    if database_backend == "postgres" and database_url is None:
        errors.append(
            "YOUTUBE_COMPANION_DATABASE_URL is required when "
            "YOUTUBE_COMPANION_DATABASE_BACKEND=postgres."
        )

    if errors:
        bullets = "\n".join(f"- {message}" for message in errors)
        raise ValueError(f"Invalid production configuration:\n{bullets}")


def _apply_path_defaults(settings: AppSettings) -> AppSettings:
    updates: dict[str, Path] = {}
    for field_name, relative_default in _DATA_DIR_RELATIVE_DEFAULTS:
        if field_name in settings.model_fields_set:
            continue
        updates[field_name] = settings.data_dir / relative_default
    if not updates:
        return settings
    return settings.model_copy(update=updates)


def _resolve_path_fields(settings: AppSettings) -> AppSettings:
    resolved_updates = {
        field_name: _resolve_path(getattr(settings, field_name))
        for field_name in _PATH_FIELDS
    }
    return settings.model_copy(update=resolved_updates)


def load_settings(*, validate_secrets: bool = True) -> AppSettings:
    settings = AppSettings()
    settings = _apply_path_defaults(settings)
    settings = _resolve_path_fields(settings)

    if validate_secrets:
        _validate_runtime_configuration(
            youtube_api_key=settings.youtube_api_key,
            database_backend=settings.database_backend,
            database_url=settings.database_url,
        )

    return settings
