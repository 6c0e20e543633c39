"""Tests for structured logging pipeline utilities."""

from __future__ import annotations

import io
import json
import logging
from logging.handlers import QueueListener
from queue import Queue
from typing import Any, cast

from credential_registry import logging_pipeline


def _capture(listener: QueueListener) -> io.StringIO:
    stream_handler = cast(logging.StreamHandler[Any], listener.handlers[0])
    buffer = io.StringIO()
    stream_handler.setStream(buffer)
    return buffer


def test_configure_structured_logging_emits_json() -> None:
    """Records are rendered as JSON with the extra mapping under context."""

    logger = logging.getLogger("credential-registry-test")
    listener = logging_pipeline.configure_structured_logging(
        logger, trace_id="trace-123", level=logging.INFO
    )
    buffer = _capture(listener)

    logger.info("Transaction submitted", extra={"operation": "issue", "tx_hash": "0xabc"})
    logging_pipeline.shutdown_listeners([listener])

    payload = json.loads(buffer.getvalue().strip())
    assert payload["message"] == "Transaction submitted"
    assert payload["trace_id"] == "trace-123"
    assert payload["level"] == "INFO"
    assert payload["context"] == {"operation": "issue", "tx_hash": "0xabc"}


def test_sensitive_context_is_masked() -> None:
    logger = logging.getLogger("credential-registry-secrets")
    listener = logging_pipeline.configure_structured_logging(logger, trace_id="t")
    buffer = _capture(listener)

    logger.warning("Signer loaded", extra={"private_key": "0x" + "11" * 32, "account": "0xA"})
    logging_pipeline.shutdown_listeners([listener])

    payload = json.loads(buffer.getvalue().strip())
    assert payload["context"]["private_key"] == logging_pipeline.REDACTED
    assert payload["context"]["account"] == "0xA"


def test_exception_text_is_included() -> None:
    logger = logging.getLogger("credential-registry-errors")
    listener = logging_pipeline.configure_structured_logging(logger, trace_id="t")
    buffer = _capture(listener)

    try:
        raise RuntimeError("node down")
    except RuntimeError:
        logger.exception("Polling failed")
    logging_pipeline.shutdown_listeners([listener])

    payload = json.loads(buffer.getvalue().strip())
    assert "RuntimeError: node down" in payload["exception"]
    assert payload["message"] == "Polling failed"


def test_exc_info_keeps_message_and_context_apart() -> None:
    logger = logging.getLogger("credential-registry-exc-info")
    listener = logging_pipeline.configure_structured_logging(logger, trace_id="t")
    buffer = _capture(listener)

    error = ConnectionError("connection refused")
    logger.warning("JSON-RPC %s failed", "eth_call", extra={"url": "http://node"}, exc_info=error)
    logging_pipeline.shutdown_listeners([listener])

    payload = json.loads(buffer.getvalue().strip())
    assert payload["message"] == "JSON-RPC eth_call failed"
    assert "ConnectionError: connection refused" in payload["exception"]
    assert payload["context"] == {"url": "http://node"}


def test_reconfiguring_replaces_queue_handler() -> None:
    logger = logging.getLogger("credential-registry-reconfigure")
    first = logging_pipeline.configure_structured_logging(logger)
    second = logging_pipeline.configure_structured_logging(logger)
    logging_pipeline.shutdown_listeners([first, second])

    queue_handlers = [
        handler
        for handler in logger.handlers
        if isinstance(handler, logging_pipeline.BoundedQueueHandler)
    ]
    assert len(queue_handlers) == 1


def test_bounded_queue_handler_drops_when_full() -> None:
    record_queue: Queue[logging.LogRecord] = Queue(maxsize=1)
    handler = logging_pipeline.BoundedQueueHandler(record_queue)
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "msg", (), None)

    handler.enqueue(record)
    handler.enqueue(record)

    assert record_queue.qsize() == 1
