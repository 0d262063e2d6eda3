"""Structured Logging Configuration with structlog"""

import logging
import sys
from typing import Any, Dict, Optional
import structlog
from structlog.types import EventDict, Processor
from agent_scheduler.core.config import settings

# Substrings that mark a key as secret. Schedule context payloads are
# free-form and routinely carry connector credentials.
SENSITIVE_KEYS = (
    'password', 'token', 'api_key', 'apikey', 'secret', 'authorization',
    'jwt', 'bearer', 'credential', 'private_key'
)

# Keys that contain a sensitive substring but are not secrets
NON_SENSITIVE_KEYS = {'tokens_used', 'max_tokens'}

REDACTED = "***REDACTED***"

# Agent outputs can be arbitrarily large
MAX_LOGGED_VALUE_LENGTH = 2000


def add_app_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Stamp every entry with the service name, version and environment"""
    event_dict["app"] = "agent_scheduler"
    event_dict["version"] = settings.APP_VERSION
    event_dict["environment"] = settings.ENVIRONMENT
    return event_dict


def is_sensitive_key(key: Any) -> bool:
    key_lower = str(key).lower()
    if key_lower in NON_SENSITIVE_KEYS:
        return False
    return any(sensitive in key_lower for sensitive in SENSITIVE_KEYS)


def _redact(value: Any) -> Any:
    if isinstance(value, dict):
        return {
            key: REDACTED if is_sensitive_key(key) else _redact(item)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item) for item in value]
    return value


def censor_sensitive_data(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Redact secret-looking keys at any nesting depth, including inside
    schedule context payloads logged by the engine and the API.
    """
    return _redact(event_dict)


def truncate_long_values(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Cut oversized string values (agent output, error text) down to size"""
    for key, value in event_dict.items():
        if isinstance(value, str) and len(value) > MAX_LOGGED_VALUE_LENGTH:
            event_dict[key] = value[:MAX_LOGGED_VALUE_LENGTH] + f"...[{len(value)} chars]"
    return event_dict


def bind_execution_context(
    schedule_id: str,
    execution_id: Optional[str] = None,
    agent: Optional[str] = None
):
    """
    Bind schedule and execution IDs to every log line emitted in this task.

    Usage:
        with bind_execution_context(schedule_id, execution_id, agent="imported:my-plugin"):
            await adapter.run(...)
    """
    context: Dict[str, Any] = {"schedule_id": schedule_id}
    if execution_id is not None:
        context["execution_id"] = execution_id
    if agent is not None:
        context["agent"] = agent
    return structlog.contextvars.bound_contextvars(**context)


def configure_structlog() -> None:
    """Route structlog through stdlib logging at the configured level"""
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_app_context,
        censor_sensitive_data,
        truncate_long_values,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.DEBUG or settings.ENVIRONMENT == "development" or settings.LOG_FORMAT == "text":
        # Human-readable output for local runs
        processors.append(structlog.dev.ConsoleRenderer())
    else:
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


configure_structlog()


__all__ = [
    'bind_execution_context',
    'configure_structlog',
    'get_logger',
]
