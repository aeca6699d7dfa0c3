"""Event contracts v1 - records published between pipeline stages.

Every event is an immutable dataclass with a unique event_id and a
creation timestamp. to_dict()/from_dict() define the wire format (JSON
object, snake_case keys, ISO-8601 timestamps, "version": "v1").
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar

from convoflow.domain.models import MessageKind
from convoflow.infra.time import parse_iso, utc_now

EVENT_VERSION = "v1"

TOPIC_WEBHOOK_RECEIVED = "webhook-received"
TOPIC_MESSAGE_CREATED = "message-created"
TOPIC_AI_RESPONSE_RECEIVED = "ai-response-received"
TOPIC_MESSAGE_DELIVERY = "message-delivery"

ALL_TOPICS = (
    TOPIC_WEBHOOK_RECEIVED,
    TOPIC_MESSAGE_CREATED,
    TOPIC_AI_RESPONSE_RECEIVED,
    TOPIC_MESSAGE_DELIVERY,
)


class InvalidEventError(ValueError):
    """Raised when an event payload cannot be decoded."""

    pass


def new_event_id() -> str:
    return str(uuid.uuid4())


def _require(data: dict[str, Any], key: str) -> Any:
    value = data.get(key)
    if value is None or value == "":
        raise InvalidEventError(f"missing field: {key}")
    return value


def _check_version(data: Any) -> None:
    if not isinstance(data, dict):
        raise InvalidEventError("event payload must be an object")
    if data.get("version") != EVENT_VERSION:
        raise InvalidEventError(f"Unsupported version: {data.get('version')}")


def _timestamp(data: dict[str, Any], key: str) -> datetime:
    try:
        return parse_iso(data.get(key)) or utc_now()
    except ValueError as e:
        raise InvalidEventError(f"invalid timestamp: {key}") from e


@dataclass(frozen=True)
class WebhookMessage:
    """Platform-agnostic inbound message descriptor.

    Attributes:
        sender_identifier: Channel address of the sender (phone, PSID, e-mail).
        content: Text content ("" for media without caption).
        media_reference: Provider media id or URL, resolved after persistence.
        kind: Message kind code.
        origin_message_id: Provider message id, when the platform has one.
        metadata: Platform-specific extras (timestamps, subject, ...).
    """

    sender_identifier: str
    content: str = ""
    media_reference: str = ""
    kind: MessageKind = MessageKind.TEXT
    origin_message_id: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sender_identifier": self.sender_identifier,
            "content": self.content,
            "media_reference": self.media_reference,
            "kind": int(self.kind),
            "origin_message_id": self.origin_message_id,
            "metadata": self.metadata,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WebhookMessage":
        try:
            kind = MessageKind(int(data.get("kind", MessageKind.TEXT)))
        except (TypeError, ValueError) as e:
            raise InvalidEventError("invalid message kind") from e
        return cls(
            sender_identifier=_require(data, "sender_identifier"),
            content=data.get("content") or "",
            media_reference=data.get("media_reference") or "",
            kind=kind,
            origin_message_id=data.get("origin_message_id") or "",
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class WebhookReceived:
    """A validated webhook with its normalized messages."""

    TOPIC: ClassVar[str] = TOPIC_WEBHOOK_RECEIVED

    platform: str
    organization_id: str
    channel_id: int
    messages: tuple[WebhookMessage, ...]
    raw_payload: dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=new_event_id)
    received_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": EVENT_VERSION,
            "event_id": self.event_id,
            "platform": self.platform,
            "organization_id": self.organization_id,
            "channel_id": self.channel_id,
            "messages": [m.to_dict() for m in self.messages],
            "raw_payload": self.raw_payload,
            "received_at": self.received_at.isoformat(),
        }

    def attributes(self) -> dict[str, str]:
        return {
            "event_type": self.TOPIC,
            "platform": self.platform,
            "organization_id": self.organization_id,
            "channel_id": str(self.channel_id),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "WebhookReceived":
        _check_version(data)
        messages = data.get("messages") or []
        if not isinstance(messages, list):
            raise InvalidEventError("messages must be a list")
        return cls(
            event_id=_require(data, "event_id"),
            platform=_require(data, "platform"),
            organization_id=_require(data, "organization_id"),
            channel_id=int(_require(data, "channel_id")),
            messages=tuple(WebhookMessage.from_dict(m) for m in messages),
            raw_payload=dict(data.get("raw_payload") or {}),
            received_at=_timestamp(data, "received_at"),
        )


@dataclass(frozen=True)
class MessageCreated:
    """A message was persisted (inbound customer message or otherwise)."""

    TOPIC: ClassVar[str] = TOPIC_MESSAGE_CREATED

    message_id: str
    conversation_id: str
    organization_id: str
    contact_id: str
    content: str
    sender_type: int
    direction: str
    message_kind: int = int(MessageKind.TEXT)
    media_url: str = ""
    channel_message_id: str = ""
    platform: str = ""
    event_id: str = field(default_factory=new_event_id)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": EVENT_VERSION,
            "event_id": self.event_id,
            "message_id": self.message_id,
            "conversation_id": self.conversation_id,
            "organization_id": self.organization_id,
            "contact_id": self.contact_id,
            "content": self.content,
            "sender_type": self.sender_type,
            "direction": self.direction,
            "message_kind": self.message_kind,
            "media_url": self.media_url,
            "channel_message_id": self.channel_message_id,
            "platform": self.platform,
            "created_at": self.created_at.isoformat(),
        }

    def attributes(self) -> dict[str, str]:
        return {"event_type": self.TOPIC, "organization_id": self.organization_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MessageCreated":
        _check_version(data)
        return cls(
            event_id=_require(data, "event_id"),
            message_id=_require(data, "message_id"),
            conversation_id=_require(data, "conversation_id"),
            organization_id=_require(data, "organization_id"),
            contact_id=_require(data, "contact_id"),
            content=data.get("content") or "",
            sender_type=int(_require(data, "sender_type")),
            direction=_require(data, "direction"),
            message_kind=int(data.get("message_kind") or MessageKind.TEXT),
            media_url=data.get("media_url") or "",
            channel_message_id=data.get("channel_message_id") or "",
            platform=data.get("platform") or "",
            created_at=_timestamp(data, "created_at"),
        )


@dataclass(frozen=True)
class AIResponseReceived:
    """The model produced a reply to `message_id`."""

    TOPIC: ClassVar[str] = TOPIC_AI_RESPONSE_RECEIVED

    message_id: str
    conversation_id: str
    organization_id: str
    contact_id: str
    response: str
    model: str
    confidence_score: float
    processing_time_ms: int
    channel_message_id: str = ""
    event_id: str = field(default_factory=new_event_id)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": EVENT_VERSION,
            "event_id": self.event_id,
            "message_id": self.message_id,
            "conversation_id": self.conversation_id,
            "organization_id": self.organization_id,
            "contact_id": self.contact_id,
            "response": self.response,
            "model": self.model,
            "confidence_score": self.confidence_score,
            "processing_time_ms": self.processing_time_ms,
            "channel_message_id": self.channel_message_id,
            "created_at": self.created_at.isoformat(),
        }

    def attributes(self) -> dict[str, str]:
        return {"event_type": self.TOPIC, "organization_id": self.organization_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AIResponseReceived":
        _check_version(data)
        return cls(
            event_id=_require(data, "event_id"),
            message_id=_require(data, "message_id"),
            conversation_id=_require(data, "conversation_id"),
            organization_id=_require(data, "organization_id"),
            contact_id=_require(data, "contact_id"),
            response=_require(data, "response"),
            model=data.get("model") or "",
            confidence_score=float(data.get("confidence_score") or 0.0),
            processing_time_ms=int(data.get("processing_time_ms") or 0),
            channel_message_id=data.get("channel_message_id") or "",
            created_at=_timestamp(data, "created_at"),
        )


@dataclass(frozen=True)
class MessageDelivery:
    """An outgoing message is ready to be sent through `medium`."""

    TOPIC: ClassVar[str] = TOPIC_MESSAGE_DELIVERY

    message_id: str
    conversation_id: str
    organization_id: str
    contact_id: str
    medium: str
    channel_message_id: str = ""
    event_id: str = field(default_factory=new_event_id)
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": EVENT_VERSION,
            "event_id": self.event_id,
            "message_id": self.message_id,
            "conversation_id": self.conversation_id,
            "organization_id": self.organization_id,
            "contact_id": self.contact_id,
            "medium": self.medium,
            "channel_message_id": self.channel_message_id,
            "created_at": self.created_at.isoformat(),
        }

    def attributes(self) -> dict[str, str]:
        return {"event_type": self.TOPIC, "organization_id": self.organization_id}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MessageDelivery":
        _check_version(data)
        return cls(
            event_id=_require(data, "event_id"),
            message_id=_require(data, "message_id"),
            conversation_id=_require(data, "conversation_id"),
            organization_id=_require(data, "organization_id"),
            contact_id=_require(data, "contact_id"),
            medium=_require(data, "medium"),
            channel_message_id=data.get("channel_message_id") or "",
            created_at=_timestamp(data, "created_at"),
        )


EVENT_TYPES: dict[str, type] = {
    TOPIC_WEBHOOK_RECEIVED: WebhookReceived,
    TOPIC_MESSAGE_CREATED: MessageCreated,
    TOPIC_AI_RESPONSE_RECEIVED: AIResponseReceived,
    TOPIC_MESSAGE_DELIVERY: MessageDelivery,
}
