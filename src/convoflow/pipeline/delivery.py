"""Message delivery worker: chunk, pace and send outgoing replies."""

from __future__ import annotations

import threading
import urllib.error

import requests

from convoflow.config import PipelineSettings
from convoflow.domain.chunking import chunk_message
from convoflow.domain.models import MessageStatus
from convoflow.events.contracts import MessageDelivery
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import hash_identifier, safe_log_context

from .collaborators import ChannelSender, ContactStore, MessageStore

logger = get_logger(__name__)

# Mediums known to the platform that have no outbound implementation yet
_NOT_IMPLEMENTED_MEDIUMS = ("email", "sms", "instagram", "facebook")


class DeliveryError(Exception):
    """Raised when an outgoing message cannot be delivered."""

    pass


class DeliveryNotImplementedError(DeliveryError):
    pass


class UnsupportedMediumError(DeliveryError):
    pass


class EmptyMessageError(DeliveryError):
    """The message has no sendable text (blank or separators only)."""

    pass


class DeliveryCancelledError(DeliveryError):
    """Cancellation was requested between chunks."""

    pass


def sanitize_error(exc: Exception) -> str:
    """Operator-facing failure reason without customer data."""
    if isinstance(exc, urllib.error.HTTPError):
        return f"HTTPError {exc.code}"
    if isinstance(exc, urllib.error.URLError):
        return f"URLError: {type(exc.reason).__name__}"
    if isinstance(exc, requests.HTTPError) and exc.response is not None:
        return f"HTTPError {exc.response.status_code}"
    if isinstance(exc, DeliveryError):
        return f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__
    if isinstance(exc, TimeoutError):
        return "TimeoutError"
    return type(exc).__name__


class MessageDeliveryWorker:
    """Handles MessageDelivery events."""

    def __init__(
        self,
        messages: MessageStore,
        contacts: ContactStore,
        senders: dict[str, ChannelSender],
        settings: PipelineSettings | None = None,
    ) -> None:
        self._messages = messages
        self._contacts = contacts
        self._senders = senders
        self._settings = settings or PipelineSettings()

    def handle(self, event: MessageDelivery, cancel: threading.Event | None = None) -> None:
        """Deliver the message and record Sent or Failed.

        Args:
            event: Delivery request.
            cancel: Optional cancellation token, checked before each paced chunk.

        Raises:
            DeliveryError: Delivery failed; the message is already marked Failed.
            LookupError: Message or contact does not exist.
        """
        cancel = cancel or threading.Event()

        message = self._messages.get(event.message_id)
        if message is None:
            raise LookupError(f"message not found: {event.message_id}")
        if message.status == MessageStatus.SENT:
            # Redelivery of an event that was already handled
            logger.info(
                "message already sent, skipping",
                extra={"extra_fields": safe_log_context(message_id=message.id)},
            )
            return

        contact = self._contacts.get(event.contact_id)
        if contact is None:
            raise LookupError(f"contact not found: {event.contact_id}")

        log_ctx = dict(
            message_id=message.id,
            conversation_id=event.conversation_id,
            medium=event.medium,
            to_hash=hash_identifier(contact.identifier),
        )

        try:
            sender = self._resolve_sender(event.medium)
            sent_parts = self._send(sender, contact.identifier, message.content, cancel, log_ctx)
        except Exception as e:
            reason = sanitize_error(e)
            self._messages.update_status(message.id, MessageStatus.FAILED, reason)
            logger.error(
                "message delivery failed",
                extra={"extra_fields": safe_log_context(**log_ctx, reason=reason)},
            )
            if isinstance(e, DeliveryError):
                raise
            raise DeliveryError(reason) from e

        self._messages.update_status(message.id, MessageStatus.SENT)
        logger.info(
            "message delivered",
            extra={"extra_fields": safe_log_context(**log_ctx, parts=sent_parts)},
        )

    def _resolve_sender(self, medium: str) -> ChannelSender:
        sender = self._senders.get(medium)
        if sender is not None:
            return sender
        if medium in _NOT_IMPLEMENTED_MEDIUMS:
            raise DeliveryNotImplementedError(f"{medium} delivery not implemented")
        raise UnsupportedMediumError(f"unsupported delivery medium: {medium}")

    def _send(
        self,
        sender: ChannelSender,
        to: str,
        text: str,
        cancel: threading.Event,
        log_ctx: dict,
    ) -> int:
        settings = self._settings
        chunks = chunk_message(
            text, settings.max_chunk_length, settings.max_chunks_per_response
        )
        if not chunks:
            raise EmptyMessageError("nothing to send after chunking")

        if not settings.enable_multi_message:
            sender.send_text(to, text)
            return 1
        if len(chunks) == 1:
            sender.send_text(to, chunks[0])
            return 1

        for index, chunk in enumerate(chunks):
            # wait() returns True as soon as cancellation is requested
            if cancel.wait(settings.chunk_delay_seconds):
                raise DeliveryCancelledError(f"cancelled before chunk {index + 1}/{len(chunks)}")
            sender.send_text(to, chunk)
            logger.debug(
                "chunk sent",
                extra={
                    "extra_fields": safe_log_context(
                        **log_ctx, chunk=index + 1, total=len(chunks), length=len(chunk)
                    )
                },
            )
        return len(chunks)
