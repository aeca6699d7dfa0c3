"""Topic dispatch shared by push endpoints and pull subscribers."""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any

from convoflow.bus.client import EventBus
from convoflow.events.contracts import (
    ALL_TOPICS,
    EVENT_TYPES,
    TOPIC_AI_RESPONSE_RECEIVED,
    TOPIC_MESSAGE_CREATED,
    TOPIC_MESSAGE_DELIVERY,
    TOPIC_WEBHOOK_RECEIVED,
    InvalidEventError,
)
from convoflow.observability.correlation import correlation_scope
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

from .ai_responder import AIResponseWorker
from .delivery import (
    DeliveryNotImplementedError,
    EmptyMessageError,
    MessageDeliveryWorker,
    UnsupportedMediumError,
)
from .normalization import MessageNormalizationWorker

logger = get_logger(__name__)

# Failures that redelivery can never fix; consumers ack them
PERMANENT_ERRORS = (
    InvalidEventError,
    DeliveryNotImplementedError,
    UnsupportedMediumError,
    EmptyMessageError,
)


def decode_event(topic: str, payload: dict[str, Any]) -> Any:
    """Build the event record for `topic` from its wire dict.

    Raises:
        InvalidEventError: Unknown topic or undecodable payload.
    """
    event_cls = EVENT_TYPES.get(topic)
    if event_cls is None:
        raise InvalidEventError(f"unknown topic: {topic}")
    try:
        return event_cls.from_dict(payload)
    except InvalidEventError:
        raise
    except (TypeError, ValueError, AttributeError) as e:
        raise InvalidEventError(f"undecodable {topic} payload: {type(e).__name__}") from e


@dataclass
class Pipeline:
    """The three consuming workers, addressable by topic."""

    normalization: MessageNormalizationWorker
    ai: AIResponseWorker
    delivery: MessageDeliveryWorker

    def handle(
        self,
        topic: str,
        payload: dict[str, Any],
        cancel: threading.Event | None = None,
    ) -> None:
        """Decode `payload` for `topic` and run the matching handler.

        Raises:
            InvalidEventError: Unknown topic or undecodable payload (never retryable).
            Exception: Handler failures propagate so the bus redelivers.
        """
        event = decode_event(topic, payload)

        with correlation_scope(event.event_id):
            if topic == TOPIC_WEBHOOK_RECEIVED:
                self.normalization.handle(event)
            elif topic == TOPIC_MESSAGE_CREATED:
                self.ai.handle_message_created(event)
            elif topic == TOPIC_AI_RESPONSE_RECEIVED:
                self.ai.handle_ai_response(event)
            elif topic == TOPIC_MESSAGE_DELIVERY:
                self.delivery.handle(event, cancel)

            logger.debug("event handled", extra={"extra_fields": safe_log_context(topic=topic)})


def attach_inline(bus: EventBus, pipeline: Pipeline) -> None:
    """Subscribe the pipeline to every topic of an in-process bus."""
    for topic in ALL_TOPICS:
        bus.subscribe(topic, lambda payload, topic=topic: pipeline.handle(topic, payload))
