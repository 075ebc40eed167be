"""Logging configuration for the stockledger domain.

Standard library handlers do the I/O; structlog renders the key-value events
that every engine module emits. Engine operations bind the ids they work on
with ``ledger_context`` so every event logged underneath carries them.
"""

import logging
import logging.handlers
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog

# Ids the engine binds while it works; ledger_context accepts only these
CONTEXT_KEYS = frozenset({"inventory_item_id", "transfer_id", "reference_id", "performed_by"})

_LEVELS = {
    "production": "INFO",
    "development": "DEBUG",
    "test": "WARNING",
}

_MAX_BYTES = 10 * 1024 * 1024


def _environment() -> str:
    return os.getenv("PROTEAN_ENV", "development").lower()


def get_log_level() -> str:
    """``LOG_LEVEL`` wins; otherwise the level follows ``PROTEAN_ENV``."""
    return os.getenv("LOG_LEVEL", _LEVELS.get(_environment(), "INFO")).upper()


def _rotating(path: Path, level: int | str) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(filename=path, maxBytes=_MAX_BYTES, backupCount=5, encoding="utf-8")
    handler.setLevel(level)
    return handler


def setup_stdlib_logging(log_dir: Path | None = None) -> None:
    log_level = get_log_level()
    log_dir = log_dir or Path(os.getenv("LOG_DIR", "logs"))
    log_dir.mkdir(parents=True, exist_ok=True)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = [
        console_handler,
        _rotating(log_dir / "stockledger.log", log_level),
        # Integrity alarms and failed compensations end up here
        _rotating(log_dir / "stockledger_error.log", logging.ERROR),
    ]

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def shared_processors() -> list:
    """Processors every event passes through before rendering."""
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]


def setup_structlog() -> None:
    processors = shared_processors()

    if _environment() == "production":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stdout.isatty(),
                exception_formatter=structlog.dev.RichTracebackFormatter(max_frames=2),
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_logging(log_dir: Path | None = None) -> None:
    """Configure all logging for the application."""
    setup_stdlib_logging(log_dir)
    setup_structlog()


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def ledger_context(**ids: Any) -> Iterator[dict[str, Any]]:
    """Bind engine ids to every event logged inside the block.

    Ids that are ``None`` are left out. Bindings made by an enclosing block
    are restored on exit, so nested operations (a transfer leg submitting a
    transaction) log both the transfer and the item.
    """
    unknown = set(ids) - CONTEXT_KEYS
    if unknown:
        raise ValueError(f"Unknown log context keys: {sorted(unknown)}")

    bound = {key: str(value) for key, value in ids.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield structlog.contextvars.get_contextvars()


def add_context(**kwargs: Any) -> None:
    """Add context variables that will be included in all subsequent log messages."""
    structlog.contextvars.bind_contextvars(**kwargs)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()
