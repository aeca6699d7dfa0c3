"""WhatsApp Cloud API webhook processor.

Payload structure:
{
  "object": "whatsapp_business_account",
  "entry": [{
    "changes": [{
      "value": {
        "metadata": {"phone_number_id": "..."},
        "messages": [{"from": "PHONE", "id": "wamid...", "type": "text",
                      "text": {"body": "..."}}],
        "statuses": [...]
      },
      "field": "messages"
    }]
  }]
}

Status-only payloads (delivery receipts) carry no "messages" and yield
an empty list.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from convoflow.domain.models import CHANNEL_WHATSAPP, MessageKind
from convoflow.events.contracts import WebhookMessage

from .base import Fragment, InvalidPayloadError, MessageProcessor, decode_fragments, iter_dicts

_KINDS = {
    "text": MessageKind.TEXT,
    "image": MessageKind.IMAGE,
    "video": MessageKind.VIDEO,
    "audio": MessageKind.AUDIO,
    "document": MessageKind.DOCUMENT,
    "location": MessageKind.LOCATION,
    "contacts": MessageKind.CONTACT,
    "sticker": MessageKind.STICKER,
}


class _Text(Fragment):
    body: str = ""


class _Media(Fragment):
    id: str = ""
    caption: str = ""
    filename: str = ""
    mime_type: str = ""
    sha256: str = ""
    voice: bool | None = None
    animated: bool | None = None


class _Location(Fragment):
    latitude: float = 0.0
    longitude: float = 0.0
    name: str = ""
    address: str = ""


class _ContactName(Fragment):
    formatted_name: str = ""


class _ContactPhone(Fragment):
    phone: str = ""


class _SharedContact(Fragment):
    name: _ContactName = Field(default_factory=_ContactName)
    phones: list[_ContactPhone] = Field(default_factory=list)


class WhatsAppInboundMessage(Fragment):
    sender: str = Field(alias="from", min_length=1)
    id: str = Field(min_length=1)
    timestamp: str | int = ""
    type: str = "text"
    text: _Text | None = None
    image: _Media | None = None
    video: _Media | None = None
    audio: _Media | None = None
    document: _Media | None = None
    sticker: _Media | None = None
    location: _Location | None = None
    contacts: list[_SharedContact] = Field(default_factory=list)


def _media_metadata(media: _Media) -> dict[str, Any]:
    metadata: dict[str, Any] = {}
    if media.mime_type:
        metadata["mime_type"] = media.mime_type
    if media.sha256:
        metadata["sha256"] = media.sha256
    if media.voice is not None:
        metadata["voice"] = media.voice
    if media.animated is not None:
        metadata["animated"] = media.animated
    if media.filename:
        metadata["filename"] = media.filename
    return metadata


def _describe_location(location: _Location) -> tuple[str, dict[str, Any]]:
    coords = f"{location.latitude:f}, {location.longitude:f}"
    content = f"Location: {location.name} ({coords})" if location.name else f"Location: {coords}"
    if location.address:
        content += f" - {location.address}"
    metadata: dict[str, Any] = {"latitude": location.latitude, "longitude": location.longitude}
    if location.name:
        metadata["name"] = location.name
    if location.address:
        metadata["address"] = location.address
    return content, metadata


def _describe_contact(contact: _SharedContact) -> tuple[str, dict[str, Any]]:
    name = contact.name.formatted_name
    phones = [p.phone for p in contact.phones if p.phone]
    content = f"Contact: {name}"
    if phones:
        content += f" ({', '.join(phones)})"
    return content, {"contact_name": name, "phones": phones}


class WhatsAppProcessor(MessageProcessor):
    platform = "whatsapp"

    def get_channel_id(self) -> int:
        return CHANNEL_WHATSAPP

    def validate_payload(self, payload: dict[str, Any]) -> None:
        if not payload:
            raise InvalidPayloadError("empty payload")
        entry = payload.get("entry")
        if not isinstance(entry, list) or not entry:
            raise InvalidPayloadError("missing or empty entry array")

    def extract_messages(self, payload: dict[str, Any]) -> list[WebhookMessage]:
        messages: list[WebhookMessage] = []
        for entry in iter_dicts(payload.get("entry")):
            for change in iter_dicts(entry.get("changes")):
                value = change.get("value")
                if not isinstance(value, dict):
                    continue
                for raw in decode_fragments(
                    value.get("messages"), WhatsAppInboundMessage, self.platform
                ):
                    message = self._to_webhook_message(raw)
                    if message is not None:
                        messages.append(message)
        return messages

    def _to_webhook_message(self, raw: WhatsAppInboundMessage) -> WebhookMessage | None:
        kind = _KINDS.get(raw.type.lower(), MessageKind.TEXT)
        content = ""
        media_reference = ""
        metadata: dict[str, Any] = {}

        if kind == MessageKind.TEXT:
            content = raw.text.body if raw.text else ""
        elif kind == MessageKind.LOCATION:
            if raw.location is None:
                return None
            content, metadata = _describe_location(raw.location)
        elif kind == MessageKind.CONTACT:
            if not raw.contacts:
                return None
            content, metadata = _describe_contact(raw.contacts[0])
        else:
            media = getattr(raw, raw.type.lower(), None)
            if media is None:
                return None
            media_reference = media.id
            metadata = _media_metadata(media)
            if kind == MessageKind.AUDIO:
                content = "Voice message"
            elif kind == MessageKind.STICKER:
                content = "Sticker"
            elif kind == MessageKind.DOCUMENT:
                content = f"Document: {media.filename}" if media.filename else ""
                if media.caption:
                    content = f"{content} - {media.caption}" if content else media.caption
            else:
                content = media.caption

        # Reactions, unsupported interactive types, ...
        if not content and not media_reference:
            return None

        metadata["whatsapp_message_id"] = raw.id
        metadata["message_type"] = raw.type
        if raw.timestamp:
            metadata["timestamp"] = str(raw.timestamp)

        return WebhookMessage(
            sender_identifier=raw.sender,
            content=content,
            media_reference=media_reference,
            kind=kind,
            origin_message_id=raw.id,
            metadata=metadata,
        )
