"""Streaming-pull runner for all pipeline subscriptions.

Usage:
    python -m convoflow.bus.subscriber

Creates missing topics/subscriptions, then consumes every topic until
SIGTERM/SIGINT. A message is acked after its handler returns and nacked if
the handler raises. Shutdown sets the shared cancellation token so a paced
delivery stops before its next chunk.
"""

from __future__ import annotations

import signal
import threading
from typing import Any

from google.cloud import pubsub_v1

from convoflow.events.contracts import ALL_TOPICS
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context
from convoflow.pipeline.runtime import PERMANENT_ERRORS, Pipeline

from .envelope import decode_event_data
from .pubsub_backend import ensure_subscription

logger = get_logger(__name__)

MAX_OUTSTANDING_MESSAGES = 10
ACK_DEADLINE_SECONDS = 120


def make_callback(pipeline: Pipeline, topic: str, cancel: threading.Event):
    """Build the Pub/Sub callback for one topic."""

    def callback(message: Any) -> None:
        log_ctx = dict(topic=topic, message_id=message.message_id)
        try:
            payload = decode_event_data(message.data)
        except ValueError as e:
            logger.warning(
                "malformed message acked",
                extra={"extra_fields": safe_log_context(**log_ctx, error=str(e))},
            )
            message.ack()
            return

        try:
            pipeline.handle(topic, payload, cancel)
        except PERMANENT_ERRORS as e:
            logger.warning(
                "message dropped",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx, error_type=type(e).__name__, error=str(e)
                    )
                },
            )
            message.ack()
        except Exception as e:
            logger.exception(
                "handler failed, message nacked",
                extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
            )
            message.nack()
        else:
            message.ack()

    return callback


def run(pipeline: Pipeline, stop: threading.Event, cancel: threading.Event) -> None:
    """Consume all topics until `stop` is set."""
    subscriber = pubsub_v1.SubscriberClient()
    flow_control = pubsub_v1.types.FlowControl(max_messages=MAX_OUTSTANDING_MESSAGES)

    futures = []
    with subscriber:
        for topic in ALL_TOPICS:
            path = ensure_subscription(subscriber, topic, ACK_DEADLINE_SECONDS)
            futures.append(
                subscriber.subscribe(
                    path,
                    callback=make_callback(pipeline, topic, cancel),
                    flow_control=flow_control,
                )
            )
            logger.info(
                "subscription started",
                extra={"extra_fields": safe_log_context(subscription=path)},
            )

        stop.wait()
        logger.info("shutdown signal received, stopping subscribers")
        cancel.set()
        for future in futures:
            future.cancel()
            future.result()


def main() -> None:
    from convoflow.api.dependencies import build_pipeline, get_bus
    from convoflow.infra.db import close_pool

    stop = threading.Event()
    cancel = threading.Event()

    def _on_signal(signum: int, _frame: Any) -> None:
        stop.set()

    signal.signal(signal.SIGTERM, _on_signal)
    signal.signal(signal.SIGINT, _on_signal)

    pipeline = build_pipeline(get_bus())
    try:
        run(pipeline, stop, cancel)
    finally:
        pipeline.ai.shutdown()
        close_pool()


if __name__ == "__main__":
    main()
