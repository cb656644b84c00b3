"""
ContentBridge structured logging.

Key/value events through structlog on top of stdlib logging, plus a
per-session audit trail written as JSON lines so an interrupted
migration still leaves a readable record of every page it applied.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

if TYPE_CHECKING:
    from contentbridge.core.config import LoggingConfig


_configured = False

SECRET_KEYS = frozenset({"token", "password", "authorization", "api_key", "secret"})
REDACTED = "***"


def _mask(values: dict[str, Any]) -> dict[str, Any]:
    return {
        key: REDACTED if key.lower() in SECRET_KEYS and value else value
        for key, value in values.items()
    }


def add_timestamp(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict["timestamp"] = datetime.now().isoformat()
    return event_dict


def add_log_level(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict["level"] = method_name.upper()
    return event_dict


def redact_secrets(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Mask tokens and passwords before any renderer sees them."""
    return _mask(event_dict)


def _build_handlers(config: LoggingConfig) -> list[logging.Handler]:
    handlers: list[logging.Handler] = []

    if config.console_enabled:
        console = logging.StreamHandler(sys.stderr)
        console.setLevel(getattr(logging, config.level))
        handlers.append(console)

    if config.file_enabled:
        config.log_directory.mkdir(parents=True, exist_ok=True)
        day = datetime.now().strftime("%Y%m%d")
        log_file = config.log_directory / f"contentbridge_{day}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    return handlers


def setup_logging(config: LoggingConfig) -> None:
    """Configure logging once per process."""
    global _configured

    if _configured:
        return

    logging.basicConfig(
        level=logging.DEBUG,
        handlers=_build_handlers(config),
        format="%(message)s",
    )
    # Page fetches would otherwise log every connection
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    processors: list[Processor] = [
        structlog.stdlib.add_logger_name,
        add_timestamp,
        add_log_level,
        redact_secrets,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if config.json_format:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name or "contentbridge")


class OperationLogger:
    """
    Brackets a long-running operation with start and end events.

    Counters gathered during the operation are attached with `update()`
    and reported on the closing event, whether it succeeded or not.
    """

    def __init__(
        self,
        operation: str,
        logger: structlog.stdlib.BoundLogger | None = None,
        **context: Any,
    ):
        self.operation = operation
        self.logger = logger or get_logger()
        self.context = context
        self._started: float | None = None

    @property
    def elapsed_seconds(self) -> float:
        if self._started is None:
            return 0.0
        return round(time.monotonic() - self._started, 3)

    def __enter__(self) -> OperationLogger:
        self._started = time.monotonic()
        self.logger.info(f"Starting {self.operation}", operation=self.operation, **self.context)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        fields = {"operation": self.operation, "duration_seconds": self.elapsed_seconds, **self.context}
        if exc_type is None:
            self.logger.info(f"Completed {self.operation}", **fields)
        else:
            self.logger.error(
                f"Stopped {self.operation}",
                error_type=exc_type.__name__,
                error=str(exc_val),
                **fields,
            )

    def update(self, **counters: Any) -> None:
        self.context.update(counters)


class SessionLogger:
    """
    Audit trail for one session.

    Every entry is appended to `session_file` as one JSON line the moment
    it is logged, and mirrored to structlog.
    """

    def __init__(self, session_file: Path, logger: structlog.stdlib.BoundLogger | None = None):
        self.session_file = session_file
        self.logger = logger or get_logger()
        self.counts: dict[str, int] = {}
        self.session_file.parent.mkdir(parents=True, exist_ok=True)

    def log(self, level: str, message: str, **kwargs: Any) -> None:
        fields = _mask(kwargs)
        self._append(
            {"timestamp": datetime.now().isoformat(), "level": level, "message": message, **fields}
        )
        self.counts[level] = self.counts.get(level, 0) + 1
        getattr(self.logger, level.lower(), self.logger.info)(message, **fields)

    def info(self, message: str, **kwargs: Any) -> None:
        self.log("INFO", message, **kwargs)

    def warning(self, message: str, **kwargs: Any) -> None:
        self.log("WARNING", message, **kwargs)

    def error(self, message: str, **kwargs: Any) -> None:
        self.log("ERROR", message, **kwargs)

    def close(self) -> None:
        """Append the closing summary line."""
        self._append(
            {
                "timestamp": datetime.now().isoformat(),
                "level": "SUMMARY",
                "message": "Session log closed",
                "entries": sum(self.counts.values()),
                "errors": self.counts.get("ERROR", 0),
                "warnings": self.counts.get("WARNING", 0),
            }
        )

    def _append(self, entry: dict[str, Any]) -> None:
        with open(self.session_file, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(entry, default=str) + "\n")
