"""JSON logging for registry operations.

Records are rendered as one JSON object per line with the ``extra`` mapping
nested under ``context``. Keys that could carry key material are masked before
rendering. Handlers are attached behind a bounded queue so a slow stream never
blocks a coroutine waiting on the ledger.
"""

from __future__ import annotations

import copy
import json
import logging
import logging.handlers
from collections.abc import Iterable
from datetime import datetime, timezone
from queue import Full, Queue
from typing import IO, Final

from typing_extensions import override
from uuid import uuid4

LOGGER = logging.getLogger(__name__)

PACKAGE_LOGGER: Final[str] = "credential_registry"
REDACTED: Final[str] = "***"

# Attributes every LogRecord carries; anything else came from ``extra``.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}

_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset(
    {"private_key", "secret", "mnemonic", "password", "authorization"}
)

_TRACEBACK_FORMATTER: Final[logging.Formatter] = logging.Formatter()


class JsonFormatter(logging.Formatter):
    """Render records as JSON with a run-wide trace identifier."""

    def __init__(self, *, default_trace_id: str | None = None) -> None:
        super().__init__()
        self._default_trace_id = default_trace_id

    @override
    def format(self, record: logging.LogRecord) -> str:
        context: dict[str, object] = {}
        for key, value in record.__dict__.items():
            if key in _RECORD_ATTRIBUTES or key == "trace_id":
                continue
            context[key] = REDACTED if key.lower() in _SENSITIVE_KEYS else value

        payload: dict[str, object] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "trace_id": getattr(record, "trace_id", None) or self._default_trace_id,
            "context": context,
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["exception"] = record.exc_text

        return json.dumps(payload, default=str)


class BoundedQueueHandler(logging.handlers.QueueHandler):
    """Queue handler that drops records once the queue is full.

    Records are flattened before queueing as the stdlib handler does, except
    that the traceback is kept in ``exc_text`` rather than folded into the
    message.
    """

    @override
    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        prepared = copy.copy(record)
        exc_text = record.exc_text
        if record.exc_info:
            exc_text = _TRACEBACK_FORMATTER.formatException(record.exc_info)
        prepared.message = record.getMessage()
        prepared.msg = prepared.message
        prepared.args = None
        prepared.exc_info = None
        prepared.exc_text = exc_text
        return prepared

    @override
    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except Full:
            self.handleError(record)

    @override
    def handleError(self, record: logging.LogRecord) -> None:
        return


def configure_structured_logging(
    logger: logging.Logger | None = None,
    *,
    trace_id: str | None = None,
    level: int = logging.INFO,
    stream: IO[str] | None = None,
    queue_size: int = 1024,
) -> logging.handlers.QueueListener:
    """Route ``logger`` through a bounded queue to a JSON stream handler.

    Args:
        logger: Logger to configure; defaults to the package logger.
        trace_id: Identifier stamped on records that do not set their own.
            A random one is generated when omitted.
        level: Minimum level forwarded.
        stream: Destination stream; defaults to ``sys.stderr``.
        queue_size: Records buffered before new ones are dropped.

    Returns:
        The started listener. Stop it with :func:`shutdown_listeners`.
    """

    target = logger or logging.getLogger(PACKAGE_LOGGER)
    target.setLevel(level)
    for handler in list(target.handlers):
        if isinstance(handler, BoundedQueueHandler):
            target.removeHandler(handler)

    record_queue: Queue[logging.LogRecord] = Queue(maxsize=queue_size)
    target.addHandler(BoundedQueueHandler(record_queue))

    stream_handler = logging.StreamHandler(stream)
    stream_handler.setFormatter(JsonFormatter(default_trace_id=trace_id or str(uuid4())))

    listener = logging.handlers.QueueListener(record_queue, stream_handler)
    listener.start()
    return listener


def shutdown_listeners(listeners: Iterable[logging.handlers.QueueListener]) -> None:
    """Flush and stop queue listeners, logging rather than raising on failure."""

    for listener in listeners:
        try:
            listener.stop()
        except Exception as exc:  # pragma: no cover - listener thread already gone
            LOGGER.warning("Failed to stop logging listener", exc_info=exc)
