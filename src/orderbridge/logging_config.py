"""Structured logging configuration using structlog.

Webhook secrets travel in the inbound URL path, so every record passes
through ``redact_secrets`` before it is rendered.
"""

import logging
import re
import sys
from contextlib import contextmanager

import structlog

_INBOUND_PATH = re.compile(r"(/api/webhook/)[A-Za-z0-9_\-]+")
_SECRET_FIELDS = ("secret_key", "api_key", "authorization", "client_secret")


def _mask(value: str) -> str:
    return value[:4] + "***" if len(value) > 8 else "***"


def redact_secrets(logger, method_name, event_dict):
    """Mask webhook secrets in inbound paths and credential-bearing fields."""
    for key, value in event_dict.items():
        if not isinstance(value, str):
            continue
        if key in _SECRET_FIELDS:
            event_dict[key] = _mask(value)
        elif "/api/webhook/" in value:
            event_dict[key] = _INBOUND_PATH.sub(r"\1***", value)
    return event_dict


def configure_logging(log_level: str = "info", json_output: bool = False) -> None:
    """Configure structlog for structured logging.

    Args:
        log_level: Logging level string (debug/info/warning/error).
        json_output: If True, output JSON (production). If False, colored console (dev).
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        redact_secrets,
    ]

    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        foreign_pre_chain=shared_processors,
    )
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Provider and forwarder calls are logged by the services themselves.
    for noisy in ("uvicorn.access", "sqlalchemy.engine", "httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def bind_request_context(trace_id: str, owner_id: str | None = None, webhook_id: str | None = None) -> None:
    """Bind the trace id, plus the owner and webhook once they are known."""
    ctx = {"trace_id": trace_id}
    if owner_id:
        ctx["owner_id"] = owner_id
    if webhook_id:
        ctx["webhook_id"] = webhook_id
    structlog.contextvars.bind_contextvars(**ctx)


def clear_request_context() -> None:
    structlog.contextvars.clear_contextvars()


@contextmanager
def job_context(webhook_id: str, idempotency_key: str, attempt: int, retry_job_id: str | None = None):
    """Tag every record emitted by one dispatch or forward job.

    The idempotency key is shortened to the prefix operators search by.
    """
    ctx = {"webhook_id": webhook_id, "event_key": idempotency_key[:12], "attempt": attempt}
    if retry_job_id:
        ctx["retry_job_id"] = retry_job_id
    with structlog.contextvars.bound_contextvars(**ctx):
        yield
