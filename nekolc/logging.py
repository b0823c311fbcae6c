from __future__ import annotations

import logging
import os
import uuid
from typing import Any, MutableMapping, Optional

import structlog

_CORRELATION_KEY = "correlation_id"

# Any event key containing one of these is masked outright
_SENSITIVE_MARKERS = ("password", "secret", "token", "signature", "authorization")
_MASK = "[redacted]"


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Bind the request id for every log line in the current context."""
    cid = correlation_id or uuid.uuid4().hex
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(**{_CORRELATION_KEY: cid})
    return cid


def get_correlation_id() -> Optional[str]:
    return structlog.contextvars.get_contextvars().get(_CORRELATION_KEY)


def mask_sensitive(
    logger: Any, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Replace credential-like values; bearer tokens are never partially shown."""
    for key, value in event_dict.items():
        if value is None or key == "event":
            continue
        if any(marker in key.lower() for marker in _SENSITIVE_MARKERS):
            event_dict[key] = _MASK
    return event_dict


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def configure_logging(
    level: str = "INFO", *, json_output: bool = True, dev_mode: bool = False
) -> None:
    tail: list
    if dev_mode or not json_output:
        tail = [structlog.dev.ConsoleRenderer(colors=dev_mode)]
    else:
        tail = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            mask_sensitive,
            *tail,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(
    os.getenv("LOG_LEVEL", "INFO"),
    json_output=_env_flag("LOG_JSON", True),
    dev_mode=_env_flag("LOG_DEV_MODE", False),
)


def get_logger(name: str) -> structlog.typing.FilteringBoundLogger:
    return structlog.get_logger(name)
