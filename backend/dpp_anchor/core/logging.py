"""
Structured logging built on structlog.

Records from structlog loggers and from plain ``logging`` loggers (uvicorn,
httpx, sqlalchemy) go through one ``ProcessorFormatter`` on the root handler,
rendered as JSON outside development and as coloured console lines while
developing. Disclosure keys and signing material are masked before rendering.
"""

import logging
import sys
from collections.abc import MutableMapping
from typing import Any, cast

import structlog
from structlog.types import Processor

from dpp_anchor.core.config import get_settings

_SECRET_KEYS: frozenset[str] = frozenset(
    {
        "verification_key",
        "verificationKey",
        "signing_key",
        "private_key",
        "restricted",
        "key",
    }
)
_REDACTED = "[redacted]"

# Libraries that log every request at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def redact_secrets(
    _logger: Any, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask disclosure keys and signing material in a log event."""
    for key in _SECRET_KEYS.intersection(event_dict):
        event_dict[key] = _REDACTED
    return event_dict


def _render_chain(use_json: bool) -> list[Processor]:
    if use_json:
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def configure_logging(*, json_logs: bool | None = None) -> None:
    """Install structlog and the root log handler.

    ``json_logs`` overrides the renderer chosen from ``environment``.
    """
    settings = get_settings()
    use_json = settings.environment != "development" if json_logs is None else json_logs

    pre_chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_secrets,
    ]

    structlog.configure(
        processors=[
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *_render_chain(use_json),
        ],
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)
    if not settings.debug:
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to ``name``."""
    return cast(structlog.stdlib.BoundLogger, structlog.get_logger(name))
