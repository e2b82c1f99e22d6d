"""Structured logging setup for HouseBot."""

import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import orjson
import structlog
from structlog.types import Processor

from .config import get_settings


def setup_logging(level: str | None = None, format_type: str | None = None) -> None:
    """
    Set up structured logging for the application.

    Log lines go to stderr so they never interleave with the console
    channel's chat output on stdout.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: Output format ('json' or 'text')
    """
    settings = get_settings()
    log_level = level or settings.logging.level
    log_format = format_type or settings.logging.format

    log_file = Path(settings.logging.file).expanduser()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    # Standard library logging (for third-party libs like httpx, uvicorn)
    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper()),
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=settings.logging.max_size_mb * 1024 * 1024,
                backupCount=settings.logging.backup_count,
            ),
        ],
    )

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=False),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a logger instance.

    Args:
        name: Logger name (usually __name__ of the calling module)

    Returns:
        Configured structured logger
    """
    return structlog.get_logger(name)


class AuditLogger:
    """
    Separate audit logger for tool activity.

    Writes one JSON object per line to its own file so tool side effects
    (which may not be idempotent) can be reconstructed after the fact.
    """

    def __init__(self, audit_file: str | Path | None = None) -> None:
        """Initialize the audit logger."""
        if audit_file is None:
            audit_file = get_settings().logging.audit_file
        path = Path(audit_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)

        self._logger = logging.getLogger("housebot.audit")
        self._logger.setLevel(logging.INFO)
        self._logger.propagate = False

        if not any(
            isinstance(h, logging.FileHandler) and Path(h.baseFilename) == path.resolve()
            for h in self._logger.handlers
        ):
            handler = logging.handlers.RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=3)
            handler.setFormatter(logging.Formatter("%(message)s"))
            self._logger.addHandler(handler)

    def log(
        self,
        event: str,
        action_type: str,
        user_id: str | None = None,
        channel: str | None = None,
        details: dict[str, Any] | None = None,
        status: str = "info",
        **kwargs: Any,
    ) -> None:
        """
        Log an audit event.

        Args:
            event: Event name (e.g., "tool_requested", "tool_failed")
            action_type: Tool or action name
            user_id: ID of the user who triggered the action
            channel: Channel where the action originated
            details: Additional event details
            status: Event status (info, warning, error)
            **kwargs: Additional fields to include
        """
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event": event,
            "action_type": action_type,
            "user_id": user_id,
            "channel": channel,
            "status": status,
            "details": details or {},
            **kwargs,
        }
        self._logger.info(orjson.dumps(log_entry, default=str).decode())

    def tool_requested(self, tool: str, arguments: dict[str, Any], **kwargs: Any) -> None:
        """Log a tool invocation request from the model."""
        self.log(event="tool_requested", action_type=tool, details={"arguments": arguments}, **kwargs)

    def tool_executed(self, tool: str, execution_time_ms: float, **kwargs: Any) -> None:
        """Log a successful tool invocation."""
        self.log(
            event="tool_executed",
            action_type=tool,
            details={"execution_time_ms": execution_time_ms},
            **kwargs,
        )

    def tool_failed(self, tool: str, error: str, **kwargs: Any) -> None:
        """Log a failed tool invocation."""
        self.log(event="tool_failed", action_type=tool, status="error", details={"error": error}, **kwargs)


_audit_logger: AuditLogger | None = None


def get_audit_logger() -> AuditLogger:
    """Get the global audit logger instance."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger
