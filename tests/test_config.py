from __future__ import annotations

from pathlib import Path

import pytest

from backend.app.config import load_settings


@pytest.fixture(autouse=True)
def _isolated_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    for name in (
        "YOUTUBE_COMPANION_DATA_DIR",
        "YOUTUBE_COMPANION_DB_PATH",
        "YOUTUBE_COMPANION_LOG_DIR",
        "YOUTUBE_COMPANION_DATABASE_BACKEND",
        "YOUTUBE_COMPANION_DATABASE_URL",
        "YOUTUBE_COMPANION_YOUTUBE_API_KEY",
        "YOUTUBE_COMPANION_TELEMETRY_ENABLED",
        "YOUTUBE_COMPANION_TELEMETRY_SINK",
    ):
        monkeypatch.delenv(name, raising=False)


def test_load_settings_parses_paths_and_limits(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    data_dir = tmp_path / "data"
    monkeypatch.setenv("YOUTUBE_COMPANION_DATA_DIR", str(data_dir))
    monkeypatch.setenv("YOUTUBE_COMPANION_YOUTUBE_API_KEY", "  api-key  ")
    monkeypatch.setenv("YOUTUBE_COMPANION_YOUTUBE_API_BASE_URL", " https://yt.example/v3/ ")
    monkeypatch.setenv("YOUTUBE_COMPANION_YOUTUBE_ACTIONS_RATE_LIMIT_MAX_REQUESTS", "5")
    monkeypatch.setenv("YOUTUBE_COMPANION_NOTES_RATE_LIMIT_WINDOW_SECONDS", "60")
    monkeypatch.setenv("YOUTUBE_COMPANION_TELEMETRY_ENABLED", "off")
    monkeypatch.setenv("YOUTUBE_COMPANION_TELEMETRY_SINK", " NONE ")
    monkeypatch.setenv("YOUTUBE_COMPANION_LOG_LEVEL", "DEBUG")

    settings = load_settings()

    assert settings.data_dir == data_dir.resolve()
    assert settings.db_path == (data_dir / "state.db").resolve()
    assert settings.log_dir == (data_dir / "logs").resolve()
    assert settings.database_backend == "sqlite"
    assert settings.youtube_api_key == "api-key"
    assert settings.youtube_api_base_url == "https://yt.example/v3"
    assert settings.youtube_actions_rate_limit_max_requests == 5
    assert settings.youtube_actions_rate_limit_window_seconds == 300
    assert settings.notes_rate_limit_max_requests == 100
    assert settings.notes_rate_limit_window_seconds == 60
    assert settings.telemetry_enabled is False
    assert settings.telemetry_sink == "none"
    assert settings.log_level == "DEBUG"


def test_explicit_db_path_is_not_rebased(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("YOUTUBE_COMPANION_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("YOUTUBE_COMPANION_DB_PATH", str(tmp_path / "elsewhere" / "db.sqlite"))

    settings = load_settings(validate_secrets=False)

    assert settings.db_path == (tmp_path / "elsewhere" / "db.sqlite").resolve()
    assert settings.log_dir == (tmp_path / "data" / "logs").resolve()


@pytest.mark.parametrize("alias", ["postgres", "PostgreSQL", " pg "])
def test_database_backend_aliases(monkeypatch: pytest.MonkeyPatch, alias: str) -> None:
    monkeypatch.setenv("YOUTUBE_COMPANION_DATABASE_BACKEND", alias)

    assert load_settings(validate_secrets=False).database_backend == "postgres"


def test_load_settings_rejects_unknown_backend(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("YOUTUBE_COMPANION_DATABASE_BACKEND", "mysql")

    with pytest.raises(ValueError, match="YOUTUBE_COMPANION_DATABASE_BACKEND"):
        load_settings(validate_secrets=False)


def test_load_settings_rejects_invalid_telemetry_sink(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("YOUTUBE_COMPANION_TELEMETRY_SINK", "datadog")

    with pytest.raises(ValueError, match="YOUTUBE_COMPANION_TELEMETRY_SINK"):
        load_settings(validate_secrets=False)


def test_load_settings_requires_api_key() -> None:
    with pytest.raises(ValueError, match="Invalid production configuration") as exc_info:
        load_settings()

    assert "YOUTUBE_COMPANION_YOUTUBE_API_KEY" in str(exc_info.value)


def test_postgres_backend_requires_database_url(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("YOUTUBE_COMPANION_YOUTUBE_API_KEY", "api-key")
    monkeypatch.setenv("YOUTUBE_COMPANION_DATABASE_BACKEND", "postgres")
    monkeypatch.setenv("YOUTUBE_COMPANION_DATABASE_URL", "   ")

    with pytest.raises(ValueError, match="YOUTUBE_COMPANION_DATABASE_URL is required"):
        load_settings()

    monkeypatch.setenv("YOUTUBE_COMPANION_DATABASE_URL", "postgresql://app@localhost/app")
    assert load_settings().database_url == "postgresql://app@localhost/app"


def test_unparseable_boolean_falls_back_to_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("YOUTUBE_COMPANION_TELEMETRY_ENABLED", "maybe")

    assert load_settings(validate_secrets=False).telemetry_enabled is True
