"""Messenger-style payloads shared by Instagram and Facebook.

Payload structure:
{
  "object": "instagram" | "page",
  "entry": [{
    "id": "PAGE_ID",
    "messaging": [{
      "sender": {"id": "PSID"},
      "recipient": {"id": "PAGE_ID"},
      "timestamp": 1704067200000,
      "message": {"mid": "...", "text": "...",
                  "attachments": [{"type": "image", "payload": {"url": "..."}}]}
    }]
  }]
}
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from convoflow.domain.models import MessageKind
from convoflow.events.contracts import WebhookMessage

from .base import Fragment, InvalidPayloadError, MessageProcessor, decode_fragments, iter_dicts


class _Sender(Fragment):
    id: str = Field(min_length=1)


class _AttachmentPayload(Fragment):
    url: str = ""


class _Attachment(Fragment):
    type: str = ""
    payload: _AttachmentPayload = Field(default_factory=_AttachmentPayload)


class _Message(Fragment):
    mid: str = ""
    text: str | None = None
    is_echo: bool = False
    attachments: list[_Attachment] = Field(default_factory=list)


class MessagingEvent(Fragment):
    sender: _Sender
    message: _Message
    timestamp: int | float | None = None


class MessengerProcessor(MessageProcessor):
    """Base for platforms delivering `entry[].messaging[]` events."""

    channel_id: int = 0
    attachment_kinds: dict[str, MessageKind] = {}

    def get_channel_id(self) -> int:
        return self.channel_id

    def validate_payload(self, payload: dict[str, Any]) -> None:
        entry = payload.get("entry")
        if not isinstance(entry, list) or not entry:
            raise InvalidPayloadError(f"invalid {self.platform} payload: missing entry")

    def extract_messages(self, payload: dict[str, Any]) -> list[WebhookMessage]:
        messages: list[WebhookMessage] = []
        for entry in iter_dicts(payload.get("entry")):
            for event in decode_fragments(entry.get("messaging"), MessagingEvent, self.platform):
                message = self._to_webhook_message(event)
                if message is not None:
                    messages.append(message)
        return messages

    def _to_webhook_message(self, event: MessagingEvent) -> WebhookMessage | None:
        # Echoes of messages the page itself sent
        if event.message.is_echo:
            return None

        kind = MessageKind.TEXT
        content = ""
        media_reference = ""

        if event.message.text is not None:
            content = event.message.text
        elif event.message.attachments:
            attachment = event.message.attachments[0]
            kind = self.attachment_kinds.get(attachment.type, MessageKind.TEXT)
            media_reference = attachment.payload.url

        if not content and not media_reference:
            return None

        metadata: dict[str, Any] = {f"{self.platform}_sender_id": event.sender.id}
        if event.message.mid:
            metadata[f"{self.platform}_message_id"] = event.message.mid
        if event.timestamp is not None:
            metadata["timestamp"] = event.timestamp

        return WebhookMessage(
            sender_identifier=event.sender.id,
            content=content,
            media_reference=media_reference,
            kind=kind,
            origin_message_id=event.message.mid,
            metadata=metadata,
        )
