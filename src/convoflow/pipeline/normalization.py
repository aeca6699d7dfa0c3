"""Message normalization worker.

Consumes WebhookReceived. For each message, in order:
1. abuse guard (word count ceiling, canned reply, skip)
2. get-or-create contact
3. get-or-create the active conversation
4. persist the inbound message, then re-host its media (best effort)
5. publish MessageCreated
"""

from __future__ import annotations

from convoflow.bus.client import EventBus
from convoflow.config import PipelineSettings
from convoflow.domain.chunking import count_words
from convoflow.domain.models import (
    DIRECTION_INCOMING,
    MEDIA_KINDS,
    Attachment,
    Contact,
    Conversation,
    Message,
    MessageKind,
    MessageStatus,
    NewMessage,
    SenderType,
)
from convoflow.events.contracts import MessageCreated, WebhookMessage, WebhookReceived
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import hash_identifier, safe_log_context

from .collaborators import (
    BlobStorage,
    ChannelSender,
    ContactStore,
    ConversationStore,
    MediaFetcher,
    MessageStore,
)

logger = get_logger(__name__)

ABUSE_REPLY = (
    "We can't process your message as it's too long. "
    "Our team will review and get back to you."
)

_MEDIA_PREFIXES = {
    MessageKind.IMAGE: "img",
    MessageKind.VIDEO: "vid",
    MessageKind.AUDIO: "aud",
    MessageKind.DOCUMENT: "doc",
    MessageKind.STICKER: "stk",
}

_MIME_EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "video/3gpp": ".3gp",
    "audio/aac": ".aac",
    "audio/mp4": ".m4a",
    "audio/mpeg": ".mp3",
    "audio/ogg": ".ogg",
    "application/pdf": ".pdf",
    "application/msword": ".doc",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document": ".docx",
    "application/vnd.ms-excel": ".xls",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": ".xlsx",
}

# Provider metadata keys holding the platform message id
_CHANNEL_MESSAGE_ID_KEYS = (
    "whatsapp_message_id",
    "instagram_message_id",
    "facebook_message_id",
    "email_message_id",
)


class MediaProcessingError(Exception):
    """Raised when media could not be downloaded or re-hosted."""

    pass


def media_extension(mime_type: str) -> str:
    """File extension for a MIME type (parameters such as codecs are ignored)."""
    base = mime_type.split(";", 1)[0].strip().lower()
    return _MIME_EXTENSIONS.get(base, ".bin")


def media_filename(kind: MessageKind, media_id: str, mime_type: str) -> str:
    prefix = _MEDIA_PREFIXES.get(kind, "media")
    return f"{prefix}_{media_id}{media_extension(mime_type)}"


def channel_message_id(message: WebhookMessage) -> str:
    for key in _CHANNEL_MESSAGE_ID_KEYS:
        value = message.metadata.get(key)
        if value:
            return str(value)
    return message.origin_message_id


class MediaRehoster:
    """Downloads provider media and stores it in durable blob storage."""

    def __init__(
        self,
        fetchers: dict[str, MediaFetcher],
        storage: BlobStorage,
        messages: MessageStore,
    ) -> None:
        self._fetchers = fetchers
        self._storage = storage
        self._messages = messages

    def rehost(self, platform: str, message: Message, reference: str) -> Attachment:
        """Fetch `reference`, upload it and patch the message.

        Raises:
            MediaProcessingError: On any fetch, upload or update failure.
        """
        fetcher = self._fetchers.get(platform)
        if fetcher is None:
            raise MediaProcessingError(f"no media fetcher for platform: {platform}")

        # Instagram/Facebook hand out URLs; use a stable short id for naming
        media_id = hash_identifier(reference) if reference.startswith("http") else reference

        try:
            media = fetcher.fetch(reference)
            filename = media_filename(message.kind, media_id, media.mime_type)
            url = self._storage.upload(
                f"{message.organization_id}/{filename}", media.content, media.mime_type
            )
            attachment = Attachment(
                id=media_id,
                type=_MEDIA_PREFIXES.get(message.kind, "media"),
                url=url,
                filename=filename,
                size=len(media.content),
                mime_type=media.mime_type,
            )
            self._messages.update_media(message.id, url, [attachment])
        except MediaProcessingError:
            raise
        except Exception as e:
            raise MediaProcessingError(f"media re-host failed: {type(e).__name__}") from e

        return attachment


class MessageNormalizationWorker:
    """Handles WebhookReceived events."""

    def __init__(
        self,
        contacts: ContactStore,
        conversations: ConversationStore,
        messages: MessageStore,
        bus: EventBus,
        senders: dict[str, ChannelSender],
        rehoster: MediaRehoster | None = None,
        settings: PipelineSettings | None = None,
    ) -> None:
        self._contacts = contacts
        self._conversations = conversations
        self._messages = messages
        self._bus = bus
        self._senders = senders
        self._rehoster = rehoster
        self._settings = settings or PipelineSettings()

    def handle(self, event: WebhookReceived) -> None:
        """Process the event's messages sequentially.

        Any failure aborts the remaining messages and propagates, so the bus
        redelivers the whole batch. Contact, conversation and message
        creation are idempotent, and messages already stored by an earlier
        attempt are not published again, which makes the replay safe.
        """
        for message in event.messages:
            self.process_message(event, message)

    def process_message(self, event: WebhookReceived, incoming: WebhookMessage) -> MessageCreated | None:
        org_id = event.organization_id
        log_ctx = dict(
            organization_id=org_id,
            platform=event.platform,
            sender_hash=hash_identifier(incoming.sender_identifier),
        )
        platform_message_id = channel_message_id(incoming)

        if platform_message_id and self._messages.get_inbound(org_id, platform_message_id):
            # Stored by an earlier delivery of this batch
            logger.info(
                "duplicate inbound message skipped",
                extra={"extra_fields": safe_log_context(**log_ctx)},
            )
            return None

        if count_words(incoming.content) > self._settings.max_inbound_word_count:
            self._send_abuse_reply(event.platform, incoming.sender_identifier, log_ctx)
            return None

        contact = self.get_or_create_contact(org_id, incoming.sender_identifier)
        conversation = self.get_or_create_conversation(
            org_id, contact.id, event.channel_id, incoming.content
        )

        message = self._messages.create(
            NewMessage(
                conversation_id=conversation.id,
                organization_id=org_id,
                contact_id=contact.id,
                content=incoming.content,
                sender_type=SenderType.CUSTOMER,
                direction=DIRECTION_INCOMING,
                kind=incoming.kind,
                status=MessageStatus.DELIVERED,
                metadata=incoming.metadata,
                channel_message_id=platform_message_id,
            )
        )

        media_url = message.media_url
        if incoming.media_reference and incoming.kind in MEDIA_KINDS:
            media_url = self._rehost_media(event.platform, message, incoming.media_reference)

        created = MessageCreated(
            message_id=message.id,
            conversation_id=conversation.id,
            organization_id=org_id,
            contact_id=contact.id,
            content=incoming.content,
            sender_type=int(SenderType.CUSTOMER),
            direction=DIRECTION_INCOMING,
            message_kind=int(incoming.kind),
            media_url=media_url,
            channel_message_id=platform_message_id,
            platform=event.platform,
        )
        self._bus.publish(created)

        logger.info(
            "inbound message normalized",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx,
                    conversation_id=conversation.id,
                    message_id=message.id,
                    kind=incoming.kind.name.lower(),
                )
            },
        )
        return created

    def get_or_create_contact(self, organization_id: str, identifier: str) -> Contact:
        contact = self._contacts.get_by_identifier(organization_id, identifier)
        if contact is not None:
            return contact
        # Named after the identifier until an agent edits it
        contact = self._contacts.create(organization_id, identifier, identifier)
        logger.info(
            "contact created",
            extra={
                "extra_fields": safe_log_context(
                    organization_id=organization_id, contact_id=contact.id
                )
            },
        )
        return contact

    def get_or_create_conversation(
        self,
        organization_id: str,
        contact_id: str,
        medium_id: int,
        last_message: str,
    ) -> Conversation:
        conversation = self._conversations.get_active(organization_id, contact_id, medium_id)
        if conversation is not None:
            return conversation
        conversation = self._conversations.create(
            organization_id, contact_id, medium_id, last_message
        )
        logger.info(
            "conversation created",
            extra={
                "extra_fields": safe_log_context(
                    organization_id=organization_id,
                    contact_id=contact_id,
                    conversation_id=conversation.id,
                    medium_id=medium_id,
                )
            },
        )
        return conversation

    def _rehost_media(self, platform: str, message: Message, reference: str) -> str:
        if self._rehoster is None:
            return ""
        try:
            attachment = self._rehoster.rehost(platform, message, reference)
        except MediaProcessingError as e:
            # Message stays persisted without durable media
            logger.error(
                "media processing failed",
                extra={
                    "extra_fields": safe_log_context(
                        message_id=message.id, platform=platform, error=str(e)
                    )
                },
            )
            return ""
        return attachment.url

    def _send_abuse_reply(self, platform: str, identifier: str, log_ctx: dict) -> None:
        logger.warning(
            "inbound message over word limit, sending canned reply",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx, limit=self._settings.max_inbound_word_count
                )
            },
        )
        sender = self._senders.get(platform)
        if sender is None:
            logger.error(
                "no channel sender for abuse reply",
                extra={"extra_fields": safe_log_context(**log_ctx)},
            )
            return
        try:
            sender.send_text(identifier, ABUSE_REPLY)
        except Exception as e:
            logger.error(
                "abuse reply send failed",
                extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
            )
