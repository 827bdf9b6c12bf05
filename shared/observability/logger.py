"""Process-wide logging: structlog events rendered as JSON through loguru.

Every event passes through :func:`redact_patient_fields` before rendering so
patient names never reach a sink, whichever module emitted the event.
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from types import FrameType
from typing import Any, Iterator, Mapping, MutableMapping

import structlog
from loguru import logger as loguru_logger

__all__ = [
    "REDACTED",
    "REDACTED_FIELDS",
    "configure_logging",
    "generate_request_id",
    "get_logger",
    "get_request_id",
    "redact_patient_fields",
    "request_context",
]

REDACTED = "[redacted]"
REDACTED_FIELDS: frozenset[str] = frozenset(
    {"patient_name", "patientName", "discharge_note", "note"}
)

_REQUEST_ID: ContextVar[str | None] = ContextVar("census_request_id", default=None)
_state: dict[str, bool] = {"configured": False}


def _loguru_format(record: Mapping[str, Any]) -> str:
    extra = record.get("extra") or {}
    service = extra.get("service", "-")
    request_id = extra.get("request_id", "-")
    # loguru treats the returned string as a format template
    message = str(record.get("message", "")).replace("{", "{{").replace("}", "}}")
    return (
        f"{record['time'].isoformat()} | {record['level'].name:<8} | "
        f"{service} | {request_id} | {message}\n"
    )


def _level_number(level: str | int) -> int:
    if isinstance(level, int):
        return level
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")
    return numeric


def redact_patient_fields(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor replacing identifying free-text fields."""

    for key in REDACTED_FIELDS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def get_request_id() -> str | None:
    return _REQUEST_ID.get()


def generate_request_id() -> str:
    return uuid.uuid4().hex


class LoguruInterceptHandler(logging.Handler):
    """Forward stdlib ``logging`` records (uvicorn, sqlalchemy) to loguru."""

    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - thin wrapper
        level: str | int
        try:
            level = loguru_logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame: FrameType | None = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        bound = loguru_logger.bind(logger=record.name)
        request_id = get_request_id()
        if request_id:
            bound = bound.bind(request_id=request_id)
        bound.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(*, service_name: str | None = None, level: str | int = "INFO") -> None:
    """Install the loguru sink and structlog pipeline once per process.

    Later calls only update the service name bound to every entry.
    """

    numeric = _level_number(level)
    if not _state["configured"]:
        loguru_logger.remove()
        loguru_logger.add(
            sys.stdout,
            level=logging.getLevelName(numeric),
            enqueue=True,
            backtrace=False,
            diagnose=False,
            format=_loguru_format,
        )
        logging.basicConfig(handlers=[LoguruInterceptHandler()], level=numeric, force=True)
        logging.captureWarnings(True)

        structlog.configure(
            processors=[
                structlog.contextvars.merge_contextvars,
                redact_patient_fields,
                structlog.processors.add_log_level,
                structlog.processors.TimeStamper(fmt="iso"),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ],
            context_class=dict,
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )
        _state["configured"] = True

    if service_name:
        loguru_logger.configure(extra={"service": service_name})
        structlog.contextvars.bind_contextvars(service=service_name)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name) if name else structlog.get_logger()


@contextmanager
def request_context(request_id: str | None = None, **extra: Any) -> Iterator[str]:
    """Bind a request id (generated if missing) to structlog and loguru."""

    rid = request_id or generate_request_id()
    token = _REQUEST_ID.set(rid)
    values = {key: value for key, value in extra.items() if key != "request_id"}
    with structlog.contextvars.bound_contextvars(request_id=rid, **values):
        with loguru_logger.contextualize(request_id=rid, **values):
            try:
                yield rid
            finally:
                _REQUEST_ID.reset(token)
