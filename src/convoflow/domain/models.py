"""Conversation entities and the numeric codes they are stored with."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any


class MessageKind(IntEnum):
    TEXT = 1
    IMAGE = 2
    VIDEO = 3
    AUDIO = 4
    DOCUMENT = 5
    LOCATION = 6
    CONTACT = 7
    STICKER = 8


MEDIA_KINDS = frozenset(
    {
        MessageKind.IMAGE,
        MessageKind.VIDEO,
        MessageKind.AUDIO,
        MessageKind.DOCUMENT,
        MessageKind.STICKER,
    }
)


class MessageStatus(IntEnum):
    """Delivery lifecycle: Pending -> Sent -> Delivered/Read, or Failed."""

    PENDING = 0
    SENT = 1
    DELIVERED = 2
    READ = 3
    FAILED = 4


class SenderType(IntEnum):
    CUSTOMER = 1
    AGENT = 2
    AI = 3
    SYSTEM = 4


class ConversationStatus(IntEnum):
    OPEN = 0
    PENDING = 1
    CLOSED = 2


class ConversationPriority(IntEnum):
    LOW = 0
    MEDIUM = 1
    HIGH = 2


DIRECTION_INCOMING = "i"
DIRECTION_OUTGOING = "o"

# Channel ids stored on conversations (medium_id)
CHANNEL_WHATSAPP = 1
CHANNEL_INSTAGRAM = 2
CHANNEL_FACEBOOK = 3
CHANNEL_EMAIL = 4

CHANNEL_NAMES = {
    CHANNEL_WHATSAPP: "whatsapp",
    CHANNEL_INSTAGRAM: "instagram",
    CHANNEL_FACEBOOK: "facebook",
    CHANNEL_EMAIL: "email",
}


def channel_name(channel_id: int) -> str:
    """Medium name for a channel id ("unknown" for unmapped ids)."""
    return CHANNEL_NAMES.get(channel_id, "unknown")


@dataclass(frozen=True)
class Contact:
    """External party scoped to one organization.

    `identifier` is the channel address (phone number, PSID, e-mail).
    `memory` is the raw JSON memory document; see domain.memory for its shape.
    """

    id: str
    organization_id: str
    identifier: str
    name: str
    salutation: str = ""
    memory: dict[str, Any] | None = None


@dataclass(frozen=True)
class Conversation:
    id: str
    organization_id: str
    contact_id: str
    medium_id: int
    status: ConversationStatus = ConversationStatus.OPEN
    priority: ConversationPriority = ConversationPriority.LOW
    ai_enabled: bool = True
    last_message: str = ""


@dataclass(frozen=True)
class Attachment:
    """Re-hosted media metadata stored alongside a message."""

    id: str
    type: str
    url: str
    filename: str
    size: int
    mime_type: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "url": self.url,
            "filename": self.filename,
            "size": self.size,
            "mime_type": self.mime_type,
        }


@dataclass(frozen=True)
class Message:
    id: str
    conversation_id: str
    organization_id: str
    contact_id: str
    content: str
    sender_type: SenderType
    direction: str
    kind: MessageKind = MessageKind.TEXT
    status: MessageStatus = MessageStatus.PENDING
    media_url: str = ""
    attachments: list[Attachment] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    ai_generated: bool = False
    confidence_score: float | None = None
    failure_reason: str | None = None
    created_at: datetime | None = None
    channel_message_id: str = ""


@dataclass(frozen=True)
class NewMessage:
    """Fields required to append a message to a conversation."""

    conversation_id: str
    organization_id: str
    contact_id: str
    content: str
    sender_type: SenderType
    direction: str
    kind: MessageKind = MessageKind.TEXT
    status: MessageStatus = MessageStatus.PENDING
    media_url: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    ai_generated: bool = False
    confidence_score: float | None = None
    # Platform message id; inbound messages are unique on it per organization
    channel_message_id: str = ""


@dataclass(frozen=True)
class KnowledgeEntry:
    title: str
    content: str
    source_url: str = ""
    description: str = ""
    active: bool = True


@dataclass(frozen=True)
class OrganizationSettings:
    """Per-organization AI settings. Empty system_prompt means "use the default"."""

    organization_id: str
    system_prompt: str = ""
    verify_token: str = ""
