"""
Structured logging for the keeper.

Every record (structlog events and plain stdlib loggers alike) goes through
one structlog formatter on stdout: JSON lines for log shippers, or the
console renderer when debugging locally. Keeper-wide fields such as the
network and executor address are bound once with `bind_keeper_context`
and ride along on every line.
"""

import logging
import sys
from typing import Any, Optional

import structlog

SERVICE_NAME = "dca-keeper"

_NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx", "hpack")


def _add_service(_logger: Any, _method: str, event_dict: dict) -> dict:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def setup_logging(log_level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Route structlog and stdlib logging through a single stdout handler.

    Args:
        log_level: Level name such as "INFO" or "DEBUG" (default: INFO).
        json_logs: Force JSON (True) or console (False) output. When unset,
            DEBUG renders to the console and every other level to JSON.
    """
    level = getattr(logging, (log_level or "INFO").upper(), logging.INFO)
    if json_logs is None:
        json_logs = level != logging.DEBUG

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _add_service,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]

    renderer: structlog.types.Processor
    if json_logs:
        shared_processors.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer(default=str)
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[*shared_processors, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


def bind_keeper_context(**fields: Any) -> None:
    """Attach keeper-wide fields (network, executor, dry_run) to every log line."""
    structlog.contextvars.bind_contextvars(**{k: v for k, v in fields.items() if v is not None})
