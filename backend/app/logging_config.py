from __future__ import annotations

import logging
import re
import sys
from collections.abc import Callable
from pathlib import Path

import structlog
from structlog.typing import EventDict, Processor

from backend.app.config import AppSettings
from backend.app.telemetry import TELEMETRY_LOGGER_NAME

APP_LOGGER_NAME = "youtube_companion"
SERVICE_NAME = "youtube-companion"
LOG_FILE_NAME = "youtube-companion.log"
TELEMETRY_LOG_FILE_NAME = "youtube-companion-telemetry.log"
# httpx logs full request URLs, and public reads carry the API key as `key=`.
_NOISY_CLIENT_LOGGERS: tuple[str, ...] = ("httpx", "httpcore", "asyncpg")
_CREDENTIAL_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"([?&](?:key|access_token)=)[^&\s]+"),
    re.compile(r"(Bearer\s+)[A-Za-z0-9._~+/=-]+"),
)


def configure_application_logging(settings: AppSettings) -> Path:
    """
    Route `youtube_companion.*` to stdout and a JSON file under `settings.log_dir`.

    Telemetry events go to a separate file and never reach the console. Safe to call
    again; existing handlers are replaced.
    """
    log_dir = settings.log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / LOG_FILE_NAME
    telemetry_log_file = log_dir / TELEMETRY_LOG_FILE_NAME

    _configure_structlog()
    add_static_fields = _static_fields_processor(
        service=SERVICE_NAME,
        database_backend=settings.database_backend,
    )

    console_stream = sys.stdout
    console_handler = logging.StreamHandler(stream=console_stream)
    console_handler.setLevel(_resolve_log_level(settings.log_level))
    console_handler.setFormatter(
        _build_console_formatter(enable_colors=_stream_supports_color(console_stream))
    )
    _install_handlers(
        APP_LOGGER_NAME,
        level=logging.DEBUG,
        handlers=[
            console_handler,
            _json_file_handler(log_file, logging.DEBUG, extra=[add_static_fields]),
        ],
    )
    _install_handlers(
        TELEMETRY_LOGGER_NAME,
        level=logging.INFO,
        handlers=[
            _json_file_handler(telemetry_log_file, logging.INFO, extra=[add_static_fields]),
        ],
    )
    for logger_name in _NOISY_CLIENT_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)

    logging.getLogger(APP_LOGGER_NAME).info(
        "logging configured console_level=%s path=%s telemetry_path=%s database_backend=%s",
        settings.log_level.upper(),
        log_file,
        telemetry_log_file,
        settings.database_backend,
    )
    return log_file


def _resolve_log_level(raw_level: str) -> int:
    resolved = getattr(logging, raw_level.strip().upper(), None)
    return resolved if isinstance(resolved, int) else logging.INFO


def _configure_structlog() -> None:
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _install_handlers(
    logger_name: str,
    *,
    level: int,
    handlers: list[logging.Handler],
) -> None:
    logger = logging.getLogger(logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    for handler in handlers:
        logger.addHandler(handler)


def _json_file_handler(
    path: Path,
    level: int,
    *,
    extra: list[Processor],
) -> logging.FileHandler:
    handler = logging.FileHandler(path, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_shared_pre_chain(),
            processors=[
                *extra,
                _add_record_metadata,
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.StackInfoRenderer(),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(sort_keys=True),
            ],
        )
    )
    return handler


def _build_console_formatter(*, enable_colors: bool) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_pre_chain(),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.dev.ConsoleRenderer(colors=enable_colors),
        ],
    )


def _shared_pre_chain() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        _redact_credentials,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True, key="timestamp"),
    ]


def _static_fields_processor(**fields: str) -> Callable[..., EventDict]:
    def add_static_fields(
        _logger: logging.Logger,
        _method_name: str,
        event_dict: EventDict,
    ) -> EventDict:
        for key, value in fields.items():
            event_dict.setdefault(key, value)
        return event_dict

    return add_static_fields


def _add_record_metadata(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    record = event_dict.get("_record")
    if isinstance(record, logging.LogRecord):
        event_dict["pathname"] = record.pathname
        event_dict["lineno"] = record.lineno
        event_dict["func_name"] = record.funcName
        event_dict["thread_name"] = record.threadName
    return event_dict


def _stream_supports_color(stream: object) -> bool:
    isatty = getattr(stream, "isatty", None)
    if callable(isatty):
        try:
            return bool(isatty())
        except Exception:
            return False
    return False


def scrub_credentials(text: str) -> str:
    for pattern in _CREDENTIAL_PATTERNS:
        text = pattern.sub(r"\1[redacted]", text)
    return text


def _redact_credentials(
    _logger: logging.Logger,
    _method_name: str,
    event_dict: EventDict,
) -> EventDict:
    for key, value in event_dict.items():
        if key.startswith("_") or not isinstance(value, str):
            continue
        event_dict[key] = scrub_credentials(value)
    return event_dict
