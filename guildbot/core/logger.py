"""
Structured Logger - JSON logging shared by every bot component.

Each component owns a ComponentLogger and emits events as a stable event name
plus keyword fields. Secrets are always redacted and Discord/game identifiers
are redacted when PRODUCTION is enabled.
"""

import json
import logging
import logging.handlers
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Optional

correlation_id_context: ContextVar[Optional[str]] = ContextVar(
    "correlation_id", default=None
)

SECRET_MARKERS = ("password", "token", "secret", "api_key", "signature")
PRODUCTION_MASKED_FIELDS = (
    "guild_id",
    "user_id",
    "discord_id",
    "member_id",
    "channel_id",
    "ally_code",
)
NOISY_LOGGERS = ("aiohttp.access", "discord.gateway", "discord.http", "asyncmy")


def _is_production() -> bool:
    return os.environ.get("PRODUCTION", "False").lower() == "true"


def log_json(component: str, level: str, event: str, **fields) -> None:
    """
    Log structured JSON message with correlation ID and PII masking.

    Args:
        component: Component name (e.g., "cache", "ticket_monitor")
        level: Log level ("debug", "info", "warning", "error", "critical")
        event: Event identifier
        **fields: Additional fields to log
    """
    log_entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
        "level": level.upper(),
        "event": event,
        "component": component,
        "version": "1.0",
    }

    correlation_id = correlation_id_context.get(None)
    if correlation_id:
        log_entry["correlation_id"] = str(correlation_id)[:8]

    is_production = _is_production()
    exc_info = None
    for key, value in fields.items():
        lowered = key.lower()
        if any(marker in lowered for marker in SECRET_MARKERS):
            log_entry[key] = "REDACTED"
        elif key == "exc_info":
            exc_info = value
        elif is_production and key in PRODUCTION_MASKED_FIELDS:
            log_entry[key] = "REDACTED"
        else:
            log_entry[key] = value

    if exc_info:
        if exc_info is True:
            exc_info = sys.exc_info()
        elif isinstance(exc_info, BaseException):
            exc_info = (type(exc_info), exc_info, exc_info.__traceback__)
        if isinstance(exc_info, tuple) and exc_info[0] is not None:
            log_entry["exception_type"] = exc_info[0].__name__
            log_entry["exception_message"] = str(exc_info[1])
        if is_production:
            exc_info = None

    json_str = json.dumps(log_entry, separators=(",", ":"), default=str)
    logging.getLogger("guildbot").log(
        getattr(logging, level.upper()), json_str, exc_info=exc_info or None
    )


def configure_logging(log_file: Optional[str] = None, debug: bool = False) -> None:
    """
    Install console and daily-rotating file handlers on the bot logger.

    Args:
        log_file: Path of the log file, console only when empty
        debug: Whether DEBUG level entries are emitted
    """
    root = logging.getLogger("guildbot")
    root.setLevel(logging.DEBUG if debug else logging.INFO)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler()
    console.setFormatter(logging.Formatter("%(message)s"))
    root.addHandler(console)

    if log_file:
        file_handler = logging.handlers.TimedRotatingFileHandler(
            log_file, when="midnight", backupCount=7, encoding="utf-8"
        )
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(file_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    logging.captureWarnings(True)


class ComponentLogger:
    """
    Component-specific logger wrapper for consistent logging.

    Automatically includes component name in all log calls.
    """

    def __init__(self, component_name: str):
        self.component_name = component_name

    def debug(self, event: str, **fields) -> None:
        """Log debug message."""
        log_json(self.component_name, "debug", event, **fields)

    def info(self, event: str, **fields) -> None:
        """Log info message."""
        log_json(self.component_name, "info", event, **fields)

    def warning(self, event: str, **fields) -> None:
        """Log warning message."""
        log_json(self.component_name, "warning", event, **fields)

    def error(self, event: str, **fields) -> None:
        """Log error message."""
        log_json(self.component_name, "error", event, **fields)

    def critical(self, event: str, **fields) -> None:
        """Log critical message."""
        log_json(self.component_name, "critical", event, **fields)
