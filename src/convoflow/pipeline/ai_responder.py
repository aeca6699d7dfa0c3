"""AI context & response worker.

MessageCreated -> context assembled -> model invoked -> AIResponseReceived.
AIResponseReceived -> outgoing message persisted -> MessageDelivery.
"""

from __future__ import annotations

import time

from convoflow.bus.client import EventBus
from convoflow.config import PipelineSettings
from convoflow.domain.models import (
    DIRECTION_INCOMING,
    DIRECTION_OUTGOING,
    MEDIA_KINDS,
    MessageKind,
    MessageStatus,
    NewMessage,
    SenderType,
    channel_name,
)
from convoflow.events.contracts import AIResponseReceived, MessageCreated, MessageDelivery
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

from .collaborators import (
    ChannelSender,
    ConversationStore,
    MessageStore,
    ModelInvocationError,
    Responder,
)
from .context import ContextAssembler
from .memory_update import BackgroundTasks, ContactMemoryUpdater

logger = get_logger(__name__)

CONFIDENCE_SCORE = 0.85


class ConversationNotFoundError(Exception):
    """Raised when a reply targets a conversation that does not exist."""

    pass


def _is_media(kind: int) -> bool:
    try:
        return MessageKind(kind) in MEDIA_KINDS
    except ValueError:
        return False


class AIResponseWorker:
    """Handles MessageCreated and AIResponseReceived events."""

    def __init__(
        self,
        assembler: ContextAssembler,
        responder: Responder,
        messages: MessageStore,
        conversations: ConversationStore,
        bus: EventBus,
        senders: dict[str, ChannelSender],
        memory_updater: ContactMemoryUpdater | None = None,
        background: BackgroundTasks | None = None,
        settings: PipelineSettings | None = None,
    ) -> None:
        self._assembler = assembler
        self._responder = responder
        self._messages = messages
        self._conversations = conversations
        self._bus = bus
        self._senders = senders
        self._memory_updater = memory_updater
        self._background = background
        self._settings = settings or PipelineSettings()

    def handle_message_created(self, event: MessageCreated) -> AIResponseReceived | None:
        """Generate and publish a reply for an inbound customer message.

        Returns None (no side effects) for any other message.

        Raises:
            ModelInvocationError: The model call failed; the event should be
                redelivered by the bus.
            PublishError: The reply could not be published.
        """
        if event.sender_type != SenderType.CUSTOMER or event.direction != DIRECTION_INCOMING:
            logger.debug(
                "message ignored by ai worker",
                extra={
                    "extra_fields": safe_log_context(
                        message_id=event.message_id, sender_type=event.sender_type
                    )
                },
            )
            return None

        self._signal_typing(event)

        context = self._assembler.assemble(
            event.organization_id,
            event.contact_id,
            event.conversation_id,
            event.message_id,
        )

        started = time.monotonic()
        if _is_media(event.message_kind) and event.media_url:
            response = self._responder.generate_with_media(
                context, event.content, event.message_kind, event.media_url
            )
        else:
            response = self._responder.generate(context, event.content)
        processing_ms = int((time.monotonic() - started) * 1000)

        if not response or not response.strip():
            raise ModelInvocationError("model returned an empty response")

        reply = AIResponseReceived(
            message_id=event.message_id,
            conversation_id=event.conversation_id,
            organization_id=event.organization_id,
            contact_id=event.contact_id,
            response=response,
            model=self._responder.model,
            confidence_score=CONFIDENCE_SCORE,
            processing_time_ms=processing_ms,
            channel_message_id=event.channel_message_id,
        )
        self._bus.publish(reply)

        logger.info(
            "ai response generated",
            extra={
                "extra_fields": safe_log_context(
                    message_id=event.message_id,
                    conversation_id=event.conversation_id,
                    model=self._responder.model,
                    processing_time_ms=processing_ms,
                    response_length=len(response),
                )
            },
        )

        self._schedule_memory_update(event)
        return reply

    def handle_ai_response(self, event: AIResponseReceived) -> MessageDelivery:
        """Persist the reply as an outgoing message and request delivery."""
        conversation = self._conversations.get(event.conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(event.conversation_id)

        message = self._messages.create(
            NewMessage(
                conversation_id=event.conversation_id,
                organization_id=event.organization_id,
                contact_id=event.contact_id,
                content=event.response,
                sender_type=SenderType.AI,
                direction=DIRECTION_OUTGOING,
                kind=MessageKind.TEXT,
                status=MessageStatus.PENDING,
                metadata={"reply_to": event.message_id, "model": event.model},
                ai_generated=True,
                confidence_score=event.confidence_score,
            )
        )
        self._conversations.update_last_message(event.conversation_id, event.response)

        delivery = MessageDelivery(
            message_id=message.id,
            conversation_id=event.conversation_id,
            organization_id=event.organization_id,
            contact_id=event.contact_id,
            medium=channel_name(conversation.medium_id),
            channel_message_id=event.channel_message_id,
        )
        self._bus.publish(delivery)

        logger.info(
            "ai reply persisted",
            extra={
                "extra_fields": safe_log_context(
                    message_id=message.id,
                    conversation_id=event.conversation_id,
                    medium=delivery.medium,
                )
            },
        )
        return delivery

    def invalidate_organization(self, organization_id: str) -> None:
        self._assembler.invalidate_organization(organization_id)

    def invalidate_contact(self, contact_id: str) -> None:
        self._assembler.invalidate_contact(contact_id)

    def shutdown(self) -> None:
        """Wait for in-flight memory updates and stop the background pool."""
        if self._background is not None:
            self._background.shutdown(wait=True)

    def _signal_typing(self, event: MessageCreated) -> None:
        if not self._settings.enable_typing_indicator or not event.channel_message_id:
            return
        sender = self._senders.get(event.platform)
        if sender is None:
            return
        try:
            sender.send_typing_indicator(event.channel_message_id)
        except Exception as e:
            logger.warning(
                "typing indicator failed",
                extra={
                    "extra_fields": safe_log_context(
                        message_id=event.message_id, error_type=type(e).__name__
                    )
                },
            )

    def _schedule_memory_update(self, event: MessageCreated) -> None:
        if self._memory_updater is None or self._background is None:
            return
        updater = self._memory_updater
        self._background.submit(
            "contact-memory-update",
            lambda deadline: updater.update(
                event.contact_id,
                event.conversation_id,
                event.content,
                event.sender_type,
                deadline,
            ),
        )
