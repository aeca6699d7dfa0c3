"""Webhook ingestion: validate, normalize and publish WebhookReceived."""

from __future__ import annotations

from typing import Any

from convoflow.bus.client import EventBus
from convoflow.events.contracts import WebhookReceived
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context
from convoflow.platforms.base import InvalidPayloadError
from convoflow.platforms.registry import get_processor

logger = get_logger(__name__)


class WebhookIngestionHandler:
    """Turns one raw webhook call into at most one WebhookReceived event."""

    def __init__(self, bus: EventBus) -> None:
        self._bus = bus

    def handle(
        self,
        platform: str,
        payload: Any,
        organization_id: str,
    ) -> WebhookReceived | None:
        """Validate `payload`, extract messages and publish them.

        Args:
            platform: Platform name ("whatsapp", "instagram", ...).
            payload: Decoded JSON body.
            organization_id: Resolved tenant.

        Returns:
            The published event, or None when the payload carried no messages.

        Raises:
            InvalidPayloadError: Empty or malformed payload.
            UnsupportedPlatformError: Unknown platform.
            PublishError: The bus rejected the event (caller should let the
                platform retry).
        """
        if not isinstance(payload, dict) or not payload:
            raise InvalidPayloadError("Empty JSON payload")

        processor = get_processor(platform)
        processor.validate_payload(payload)

        try:
            messages = processor.extract_messages(payload)
        except InvalidPayloadError as e:
            logger.warning(
                "webhook extraction failed, nothing published",
                extra={
                    "extra_fields": safe_log_context(
                        platform=platform,
                        organization_id=organization_id,
                        error=str(e),
                    )
                },
            )
            return None

        if not messages:
            # Delivery receipts, read markers, echoes
            logger.info(
                "webhook carried no messages",
                extra={
                    "extra_fields": safe_log_context(
                        platform=platform, organization_id=organization_id
                    )
                },
            )
            return None

        event = WebhookReceived(
            platform=platform,
            organization_id=organization_id,
            channel_id=processor.get_channel_id(),
            messages=tuple(messages),
            raw_payload=payload,
        )
        self._bus.publish(event)

        logger.info(
            "webhook received",
            extra={
                "extra_fields": safe_log_context(
                    platform=platform,
                    organization_id=organization_id,
                    event_id=event.event_id,
                    message_count=len(messages),
                )
            },
        )
        return event
