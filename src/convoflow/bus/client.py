"""Event bus client.

Provides multiple backends selectable via BUS_BACKEND env var:
- inline (default): records events in memory and hands them to in-process
  subscribers (for dev/tests)
- pubsub: publishes to Google Cloud Pub/Sub topics
"""

from __future__ import annotations

import json
import os
import threading
from typing import Any, Callable, Protocol

from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

logger = get_logger(__name__)


class PublishError(Exception):
    """Raised when an event could not be handed to the bus."""

    pass


class BusEvent(Protocol):
    """Anything with a topic, a wire dict and routing attributes."""

    TOPIC: str
    event_id: str

    def to_dict(self) -> dict[str, Any]:
        ...

    def attributes(self) -> dict[str, str]:
        ...


EventHandler = Callable[[dict[str, Any]], None]


class EventBus:
    """Publishes pipeline events.

    Backend selection via BUS_BACKEND env var:
    - "inline" (default): keeps published events in memory; subscribers
      registered with subscribe() are invoked synchronously
    - "pubsub": publishes to Google Cloud Pub/Sub

    Every publish is one message on the event's topic; the event_id is sent
    as an attribute so consumers can trace redeliveries.
    """

    def __init__(self, backend: str | None = None) -> None:
        self._backend = backend or os.environ.get("BUS_BACKEND", "inline")
        self._published: list[dict[str, Any]] = []
        self._subscribers: dict[str, list[EventHandler]] = {}
        self._lock = threading.Lock()

    @property
    def backend(self) -> str:
        return self._backend

    def publish(self, event: BusEvent) -> str:
        """Publish `event` on its topic.

        Returns:
            Bus message id (the event_id for the inline backend).

        Raises:
            PublishError: If the backend rejected the message.
            ValueError: If BUS_BACKEND is unknown.
        """
        topic = event.TOPIC
        payload = event.to_dict()
        attributes = {**event.attributes(), "event_id": event.event_id}

        if self._backend == "inline":
            with self._lock:
                self._published.append(
                    {"topic": topic, "payload": payload, "attributes": attributes}
                )
                handlers = list(self._subscribers.get(topic, ()))
            for handler in handlers:
                self._dispatch_inline(topic, handler, payload)
            return event.event_id

        if self._backend == "pubsub":
            from convoflow.bus.pubsub_backend import publish_message

            data = json.dumps(payload, default=str).encode("utf-8")
            try:
                message_id = publish_message(topic, data, attributes)
            except Exception as e:
                logger.error(
                    "event publish failed",
                    extra={
                        "extra_fields": safe_log_context(
                            topic=topic,
                            event_id=event.event_id,
                            error_type=type(e).__name__,
                        )
                    },
                )
                raise PublishError(f"failed to publish to {topic}") from e
            logger.info(
                "event published",
                extra={
                    "extra_fields": safe_log_context(
                        topic=topic, event_id=event.event_id, message_id=message_id
                    )
                },
            )
            return message_id

        raise ValueError(f"Unknown BUS_BACKEND: {self._backend}")

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        """Register an in-process handler (inline backend only)."""
        with self._lock:
            self._subscribers.setdefault(topic, []).append(handler)

    def _dispatch_inline(self, topic: str, handler: EventHandler, payload: dict[str, Any]) -> None:
        # A failing subscriber must not fail the publisher, as with a real bus
        try:
            handler(payload)
        except Exception:
            logger.exception(
                "inline subscriber failed",
                extra={"extra_fields": safe_log_context(topic=topic)},
            )

    def get_published(self, topic: str | None = None) -> list[dict[str, Any]]:
        """Published events, optionally filtered by topic (useful for testing)."""
        with self._lock:
            return [e for e in self._published if topic is None or e["topic"] == topic]

    def clear(self) -> None:
        """Forget published events and subscribers (useful for testing)."""
        with self._lock:
            self._published.clear()
            self._subscribers.clear()
