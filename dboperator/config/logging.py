"""
Structured logging for the controller.

Every record goes through structlog: JSON lines in production so log
shippers can index the bound fields, a colored console renderer otherwise.
Resource keys are bound per attempt through structlog.contextvars, so the
processors below only add what is true for the whole process.
"""
import logging
import sys
from typing import Any, Dict, List, Optional

import structlog
from structlog.types import EventDict, Processor

from dboperator.config.settings import Settings, settings as default_settings

# Field names whose values must never reach a log sink
REDACTED_KEYS = frozenset({"password", "token", "secret_value", "new_password", "values"})
REDACTED = "***"

# Chatty client libraries kept at WARNING regardless of our level
QUIET_LOGGERS = ("kubernetes_asyncio", "aiohttp", "httpx", "httpcore", "redis", "urllib3")


class ControllerContext:
    """Processor stamping process-wide identity onto every event."""

    def __init__(self, settings: Settings):
        self.fields: Dict[str, Any] = {
            "app": settings.app_name,
            "version": settings.app_version,
            "environment": settings.environment,
            "watch_namespace": settings.watch_namespace or "*",
        }

    def __call__(self, logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
        for key, value in self.fields.items():
            event_dict.setdefault(key, value)
        return event_dict


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: REDACTED if key in REDACTED_KEYS else _redact(item) for key, item in value.items()}
    return value


def redact_credentials(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Mask credential material passed as log fields, including nested dicts."""
    for key in list(event_dict):
        if key in REDACTED_KEYS:
            event_dict[key] = REDACTED
        elif isinstance(event_dict[key], dict):
            event_dict[key] = _redact(event_dict[key])
    return event_dict


def build_processors(settings: Settings, json_logs: bool) -> List[Processor]:
    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        ControllerContext(settings),
        redact_credentials,
        structlog.processors.format_exc_info,
    ]
    if json_logs:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))
    return processors


def configure_logging(
    settings: Optional[Settings] = None,
    level: Optional[str] = None,
    json_logs: Optional[bool] = None,
) -> None:
    """
    Configure structlog and the stdlib root logger.

    Args:
        settings: Settings to read defaults from
        level: Override for settings.log_level
        json_logs: Force JSON (True) or console (False) output; defaults
            to JSON in production
    """
    settings = settings or default_settings
    level = (level or settings.log_level).upper()
    if json_logs is None:
        json_logs = settings.is_production

    structlog.configure(
        processors=build_processors(settings, json_logs),  # type: ignore
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=getattr(logging, level), force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured structlog logger.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
