"""Structured logging configuration using structlog.

JSON output outside development, colored console output in development.
Every entry carries the correlation request_id bound by the HTTP middleware
and, inside a verification run, the escrow_id and current pipeline stage.

Key material never reaches a log sink: the redaction processor masks any
event field whose name looks like a secret before rendering.

Usage:
    from aetherlock_oracle.logging_config import setup_logging, get_logger
    setup_logging(log_level="DEBUG", json_logs=False)
    logger = get_logger(__name__)
    logger.info("escrow.created", escrow_id="9f1c...", amount=1_000_000)
"""

from __future__ import annotations

import logging
import sys
from collections.abc import MutableMapping
from typing import Any

import structlog

_SECRET_MARKERS = ("private_key", "secret", "jwt", "api_key", "password")
_REDACTED = "***"


def redact_secrets(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """Mask values of fields that carry key material or credentials."""
    for key in list(event_dict):
        lowered = key.lower()
        if any(marker in lowered for marker in _SECRET_MARKERS):
            event_dict[key] = _REDACTED
    return event_dict


def setup_logging(log_level: str = "DEBUG", json_logs: bool = False) -> None:
    """Configure structlog with shared processors.

    Args:
        log_level: Standard Python log level string (DEBUG, INFO, WARNING, etc.)
        json_logs: If True, output JSON (for production). If False, colored console.
    """
    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        redact_secrets,
    ]

    if json_logs:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.DEBUG))

    # LiteLLM logs every completion at INFO
    for noisy_logger in ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore", "LiteLLM"):
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)


def bind_pipeline_context(escrow_id: str, stage: str | None = None) -> None:
    """Attach the escrow under verification (and its stage) to every log entry."""
    if stage is None:
        structlog.contextvars.bind_contextvars(escrow_id=escrow_id)
    else:
        structlog.contextvars.bind_contextvars(escrow_id=escrow_id, stage=stage)


def clear_pipeline_context() -> None:
    structlog.contextvars.unbind_contextvars("escrow_id", "stage")


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
