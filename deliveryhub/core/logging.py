"""
Structured logging for DeliveryHub.

structlog is configured once per process. Every event carries a UTC
timestamp and, inside an HTTP request, the request id and the id of the
authenticated user. ``log_performance`` times order mutations and request
handling and flags slow ones.
"""

import logging
import sys
import time
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

import structlog
from structlog.types import EventDict, Processor

from deliveryhub.core.config import get_settings

SLOW_OPERATION_MS = 500.0

NOISY_LOGGERS = {
    "uvicorn": logging.INFO,
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "aiosqlite": logging.WARNING,
    "asyncio": logging.WARNING,
}

_request_id: ContextVar[str] = ContextVar("request_id", default="")
_user_id: ContextVar[Optional[str]] = ContextVar("user_id", default=None)


def add_correlation_ids(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Attach the current request and user ids, when set."""
    request_id = _request_id.get()
    if request_id:
        event_dict.setdefault("request_id", request_id)
    user_id = _user_id.get()
    if user_id:
        event_dict.setdefault("user_id", user_id)
    return event_dict


def add_timestamp(
    logger: logging.Logger, method_name: str, event_dict: EventDict
) -> EventDict:
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def _renderer(development: bool) -> Processor:
    if development:
        return structlog.dev.ConsoleRenderer(
            colors=True,
            exception_formatter=structlog.dev.plain_traceback,
        )
    return structlog.processors.JSONRenderer()


def configure_logging() -> None:
    """
    Configure structlog and the standard library root logger.

    Development gets coloured console output; every other environment
    emits one JSON object per line on stdout.
    """
    settings = get_settings()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            add_timestamp,
            add_correlation_ids,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _renderer(settings.is_development),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )
    for name, level in NOISY_LOGGERS.items():
        logging.getLogger(name).setLevel(level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Module logger; call as ``logger = get_logger(__name__)``."""
    return structlog.get_logger(name)


def set_request_id(request_id: Optional[str] = None) -> str:
    """
    Bind a request id to the current context.

    Args:
        request_id: Id supplied by the client, a new UUID when missing

    Returns:
        The id now in effect
    """
    request_id = request_id or str(uuid4())
    _request_id.set(request_id)
    return request_id


def get_request_id() -> str:
    return _request_id.get()


def set_user_id(user_id: Optional[str]) -> None:
    _user_id.set(user_id)


def clear_context() -> None:
    """Forget the request and user ids once a request is finished."""
    _request_id.set("")
    _user_id.set(None)


class OperationTimer:
    """
    Times a block and logs its outcome.

    Success is logged at info level, or warning past ``slow_ms``. A block
    that raises is logged at error level with the exception type; the
    exception itself propagates.
    """

    def __init__(
        self,
        logger: structlog.stdlib.BoundLogger,
        operation: str,
        slow_ms: float = SLOW_OPERATION_MS,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.slow_ms = slow_ms
        self.context = context
        self._started: Optional[float] = None

    @property
    def elapsed_ms(self) -> float:
        if self._started is None:
            return 0.0
        return round((time.perf_counter() - self._started) * 1000, 2)

    def __enter__(self) -> "OperationTimer":
        self._started = time.perf_counter()
        self.logger.debug("Operation started", operation=self.operation, **self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type is not None:
            self.logger.error(
                "Operation failed",
                operation=self.operation,
                duration_ms=self.elapsed_ms,
                error_type=exc_type.__name__,
                **self.context,
            )
            return

        duration_ms = self.elapsed_ms
        log = self.logger.warning if duration_ms > self.slow_ms else self.logger.info
        log(
            "Operation completed",
            operation=self.operation,
            duration_ms=duration_ms,
            slow=duration_ms > self.slow_ms,
            **self.context,
        )


def log_performance(
    logger: structlog.stdlib.BoundLogger,
    operation: str,
    **context: Any,
) -> OperationTimer:
    """
    Time a block of work.

    Example:
        >>> with log_performance(logger, "assign_order", order_id=str(order_id)):
        ...     await service.assign_order(actor, order_id, courier_id)
    """
    return OperationTimer(logger, operation, **context)
