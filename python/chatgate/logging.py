"""Structured logging for the gateway.

All modules log through structlog; stdlib records (httpx, asyncio) are rendered by
the same ProcessorFormatter so output is uniform. Request-scoped fields live in
context variables and are attached to every event:

- request_id: correlation id supplied by the caller
- room_id: chat room the request belongs to
- model: normalized model id the request was routed for

Usage:
    configure_logging(json_format=settings.log_json)
    logger = get_logger(__name__)
    logger.info("chat.request.started", **safe_kv(provider="openai"))
"""

import logging
import sys
from contextvars import ContextVar

import structlog

request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)
room_id_var: ContextVar[int | None] = ContextVar("room_id", default=None)
model_var: ContextVar[str | None] = ContextVar("model", default=None)

_CONTEXT_FIELDS: dict[str, ContextVar] = {
    "request_id": request_id_var,
    "room_id": room_id_var,
    "model": model_var,
}

# Third-party loggers that log every request at INFO
_QUIET_LOGGERS = ("httpx", "httpcore")


def add_request_context(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    """structlog processor: copy set request-scoped fields into the event."""
    for key, var in _CONTEXT_FIELDS.items():
        value = var.get()
        if value:
            event_dict[key] = value
    return event_dict


def configure_logging(json_format: bool = True, level: int = logging.INFO) -> None:
    """Install structlog and route the root logger through it.

    Call once at process start. JSON output is for deployed environments; the
    console renderer is easier to read locally.
    """
    pre_chain = [
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        add_request_context,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]
    renderer = (
        structlog.processors.JSONRenderer(ensure_ascii=False)
        if json_format
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def set_request_context(
    request_id: str | None,
    room_id: int | None = None,
    model: str | None = None,
) -> None:
    """Bind request-scoped fields for the current task.

    room_id and model are left untouched when not given, so they can be added
    once the request has been normalized.
    """
    request_id_var.set(request_id)
    if room_id is not None:
        room_id_var.set(room_id)
    if model is not None:
        model_var.set(model)


def clear_request_context() -> None:
    for var in _CONTEXT_FIELDS.values():
        var.set(None)


def get_request_id() -> str | None:
    return request_id_var.get()
