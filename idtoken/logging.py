"""structlog setup shared by the token manager, the stores and the admin script.

Bearer tokens end up in log events both as field values (``token``,
``previous_token``) and embedded in reverse keys (``login-store:<token>``);
``_redact_tokens`` masks both shapes before anything is rendered.
"""

from __future__ import annotations

import logging
import os
import uuid
from typing import Any, Dict, Optional

import structlog

_TRUTHY = {"1", "true", "yes", "on"}

# Field names whose string values are credentials
_SECRET_FIELDS = ("token", "secret", "password", "api_key", "authorization")

# Separator between namespace and token in a reverse key
_REVERSE_KEY_MARKER = "-store:"


def mask_secret(value: str) -> str:
    """Keep the first/last two characters of a secret for debugging."""
    if len(value) <= 4:
        return "***"
    return value[:2] + "***" + value[-2:]


def mask_reverse_key(key: str) -> str:
    """Mask the token half of ``{namespace}-store:{token}``; other keys pass through."""
    prefix, marker, token = key.rpartition(_REVERSE_KEY_MARKER)
    if not marker or not token:
        return key
    return prefix + marker + mask_secret(token)


def bind_invocation(command: str, correlation_id: Optional[str] = None) -> str:
    """Start a fresh log context for one unit of work and return its correlation id.

    Everything logged afterwards in the same context (task or thread) carries
    ``correlation_id`` and ``command``.
    """
    cid = correlation_id or str(uuid.uuid4())
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(correlation_id=cid, command=command)
    return cid


def get_correlation_id() -> Optional[str]:
    return structlog.contextvars.get_contextvars().get("correlation_id")


def _redact_tokens(
    logger: Any, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    for field, value in list(event_dict.items()):
        if not isinstance(value, str):
            continue
        lower = field.lower()
        if any(secret in lower for secret in _SECRET_FIELDS):
            event_dict[field] = mask_secret(value)
        elif lower == "key" or lower.endswith("_key"):
            event_dict[field] = mask_reverse_key(value)
    return event_dict


def configure_logging(
    level: str = "INFO",
    *,
    json_output: bool = True,
    development_mode: bool = False,
) -> None:
    """(Re)configure structlog.

    Args:
        level: Minimum level name (DEBUG, INFO, WARNING, ERROR)
        json_output: Render JSON lines; otherwise use the console renderer
        development_mode: Force the coloured console renderer
    """
    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        _redact_tokens,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if development_mode or not json_output:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))
    else:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging(
    os.getenv("LOG_LEVEL", "INFO"),
    json_output=os.getenv("LOG_JSON", "true").lower() in _TRUTHY,
    development_mode=os.getenv("LOG_DEV_MODE", "false").lower() in _TRUTHY,
)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
