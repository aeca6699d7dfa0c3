"""In-memory collaborators for pipeline tests.

These are NOT fixtures - they are plain classes implementing the store,
sender and responder protocols, shared by several test modules.
"""

from __future__ import annotations

import dataclasses
import itertools
import threading
from datetime import datetime, timedelta, timezone
from typing import Any

from convoflow.domain.models import (
    Attachment,
    Contact,
    Conversation,
    ConversationStatus,
    KnowledgeEntry,
    Message,
    MessageStatus,
    NewMessage,
    OrganizationSettings,
)
from convoflow.pipeline.collaborators import MediaFile, ModelInvocationError

ORG_ID = "11111111-1111-1111-1111-111111111111"

_BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeContactStore:
    def __init__(self) -> None:
        self.contacts: dict[str, Contact] = {}
        self.create_calls = 0
        self.memory_writes: list[tuple[str, dict]] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def add(self, contact: Contact) -> Contact:
        self.contacts[contact.id] = contact
        return contact

    def get(self, contact_id: str) -> Contact | None:
        return self.contacts.get(contact_id)

    def get_by_identifier(self, organization_id: str, identifier: str) -> Contact | None:
        for contact in self.contacts.values():
            if contact.organization_id == organization_id and contact.identifier == identifier:
                return contact
        return None

    def create(self, organization_id: str, identifier: str, name: str) -> Contact:
        with self._lock:
            self.create_calls += 1
            existing = self.get_by_identifier(organization_id, identifier)
            if existing is not None:
                return existing
            contact = Contact(
                id=f"contact-{next(self._ids)}",
                organization_id=organization_id,
                identifier=identifier,
                name=name,
            )
            self.contacts[contact.id] = contact
            return contact

    def update_memory(self, contact_id: str, memory: dict) -> None:
        self.memory_writes.append((contact_id, memory))
        self.contacts[contact_id] = dataclasses.replace(self.contacts[contact_id], memory=memory)


class FakeConversationStore:
    def __init__(self) -> None:
        self.conversations: dict[str, Conversation] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def add(self, conversation: Conversation) -> Conversation:
        self.conversations[conversation.id] = conversation
        return conversation

    def get(self, conversation_id: str) -> Conversation | None:
        return self.conversations.get(conversation_id)

    def get_active(
        self, organization_id: str, contact_id: str, medium_id: int
    ) -> Conversation | None:
        for conversation in self.conversations.values():
            if (
                conversation.organization_id == organization_id
                and conversation.contact_id == contact_id
                and conversation.medium_id == medium_id
                and conversation.status != ConversationStatus.CLOSED
            ):
                return conversation
        return None

    def create(
        self,
        organization_id: str,
        contact_id: str,
        medium_id: int,
        last_message: str,
    ) -> Conversation:
        with self._lock:
            existing = self.get_active(organization_id, contact_id, medium_id)
            if existing is not None:
                return existing
            conversation = Conversation(
                id=f"conversation-{next(self._ids)}",
                organization_id=organization_id,
                contact_id=contact_id,
                medium_id=medium_id,
                last_message=last_message,
            )
            self.conversations[conversation.id] = conversation
            return conversation

    def update_last_message(self, conversation_id: str, content: str) -> None:
        self.conversations[conversation_id] = dataclasses.replace(
            self.conversations[conversation_id], last_message=content
        )


class FakeMessageStore:
    def __init__(self) -> None:
        self.messages: dict[str, Message] = {}
        self.status_updates: list[tuple[str, MessageStatus, str | None]] = []
        self.count_calls = 0
        self.list_calls = 0
        self._ids = itertools.count(1)

    def add(self, message: Message) -> Message:
        self.messages[message.id] = message
        return message

    def get(self, message_id: str) -> Message | None:
        return self.messages.get(message_id)

    def get_inbound(self, organization_id: str, channel_message_id: str) -> Message | None:
        for stored in self.messages.values():
            if (
                stored.direction == "i"
                and stored.organization_id == organization_id
                and stored.channel_message_id == channel_message_id
            ):
                return stored
        return None

    def create(self, message: NewMessage) -> Message:
        if message.direction == "i" and message.channel_message_id:
            existing = self.get_inbound(message.organization_id, message.channel_message_id)
            if existing is not None:
                return existing
        n = next(self._ids)
        created = Message(
            id=f"message-{n}",
            conversation_id=message.conversation_id,
            organization_id=message.organization_id,
            contact_id=message.contact_id,
            content=message.content,
            sender_type=message.sender_type,
            direction=message.direction,
            kind=message.kind,
            status=message.status,
            media_url=message.media_url,
            metadata=dict(message.metadata),
            ai_generated=message.ai_generated,
            confidence_score=message.confidence_score,
            created_at=_BASE_TIME + timedelta(minutes=n),
            channel_message_id=message.channel_message_id,
        )
        self.messages[created.id] = created
        return created

    def update_media(
        self, message_id: str, media_url: str, attachments: list[Attachment]
    ) -> None:
        self.messages[message_id] = dataclasses.replace(
            self.messages[message_id], media_url=media_url, attachments=list(attachments)
        )

    def update_status(
        self, message_id: str, status: MessageStatus, failure_reason: str | None = None
    ) -> None:
        self.status_updates.append((message_id, status, failure_reason))
        self.messages[message_id] = dataclasses.replace(
            self.messages[message_id], status=status, failure_reason=failure_reason
        )

    def list_recent(self, conversation_id: str, limit: int) -> list[Message]:
        self.list_calls += 1
        rows = [m for m in self.messages.values() if m.conversation_id == conversation_id]
        rows.sort(key=lambda m: m.created_at or _BASE_TIME, reverse=True)
        return rows[:limit]

    def count(self, conversation_id: str) -> int:
        self.count_calls += 1
        return sum(1 for m in self.messages.values() if m.conversation_id == conversation_id)


class FakeOrganizationStore:
    def __init__(self) -> None:
        self.settings: dict[str, OrganizationSettings] = {}
        self.keys: dict[str, str] = {}
        self.knowledge: dict[str, list[KnowledgeEntry]] = {}
        self.settings_calls = 0

    def add(
        self,
        organization_id: str,
        system_prompt: str = "",
        verify_token: str = "",
        integration_key: str | None = None,
    ) -> OrganizationSettings:
        settings = OrganizationSettings(organization_id, system_prompt, verify_token)
        self.settings[organization_id] = settings
        if integration_key:
            self.keys[integration_key] = organization_id
        return settings

    def get_settings(self, organization_id: str) -> OrganizationSettings | None:
        self.settings_calls += 1
        return self.settings.get(organization_id)

    def find_by_integration_key(self, key: str) -> OrganizationSettings | None:
        organization_id = self.keys.get(key)
        return self.settings.get(organization_id) if organization_id else None

    def list_active_knowledge(self, organization_id: str) -> list[KnowledgeEntry]:
        return [e for e in self.knowledge.get(organization_id, []) if e.active]


class RecordingSender:
    """ChannelSender that records calls; optionally fails on the Nth send."""

    def __init__(self, fail_on: int | None = None, error: Exception | None = None) -> None:
        self.sent: list[tuple[str, str]] = []
        self.typing: list[str] = []
        self._fail_on = fail_on
        self._error = error or RuntimeError("send failed")

    def send_text(self, to: str, text: str) -> None:
        if self._fail_on is not None and len(self.sent) + 1 == self._fail_on:
            raise self._error
        self.sent.append((to, text))

    def send_typing_indicator(self, message_id: str) -> None:
        self.typing.append(message_id)


class StubResponder:
    model = "stub-model"

    def __init__(self, response: str = "Happy to help!", error: Exception | None = None) -> None:
        self.response = response
        self.error = error
        self.calls: list[dict[str, Any]] = []

    def generate(self, context: str, message: str) -> str:
        self.calls.append({"context": context, "message": message})
        if self.error is not None:
            raise self.error
        return self.response

    def generate_with_media(
        self, context: str, message: str, media_kind: int, media_url: str
    ) -> str:
        self.calls.append(
            {
                "context": context,
                "message": message,
                "media_kind": media_kind,
                "media_url": media_url,
            }
        )
        if self.error is not None:
            raise self.error
        return self.response


class FailingResponder(StubResponder):
    def __init__(self) -> None:
        super().__init__(error=ModelInvocationError("upstream 503"))


class StubMediaFetcher:
    def __init__(self, content: bytes = b"\xff\xd8jpeg", mime_type: str = "image/jpeg") -> None:
        self.content = content
        self.mime_type = mime_type
        self.references: list[str] = []

    def fetch(self, reference: str) -> MediaFile:
        self.references.append(reference)
        return MediaFile(content=self.content, mime_type=self.mime_type)


class MemoryBlobStorage:
    def __init__(self, fail: bool = False) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self._fail = fail

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        if self._fail:
            raise OSError("bucket unavailable")
        self.objects[path] = (data, content_type)
        return f"https://storage.example.com/media/{path}"


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def whatsapp_payload(*messages: dict[str, Any]) -> dict[str, Any]:
    """Wrap WhatsApp message objects in a Cloud API webhook envelope."""
    return {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "id": "WABA_ID",
                "changes": [
                    {
                        "value": {
                            "messaging_product": "whatsapp",
                            "metadata": {"phone_number_id": "123456789"},
                            "messages": list(messages),
                        },
                        "field": "messages",
                    }
                ],
            }
        ],
    }


def whatsapp_text(body: str, sender: str = "15550001111", message_id: str = "wamid.A1") -> dict[str, Any]:
    return {
        "from": sender,
        "id": message_id,
        "timestamp": "1767268800",
        "type": "text",
        "text": {"body": body},
    }


class LogRecorder:
    """Simple recorder to capture log calls deterministically."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, tuple, dict]] = []

    def _record(self, level: str, *args, **kwargs) -> None:
        self.calls.append((level, args, kwargs))

    def info(self, *args, **kwargs) -> None:
        self._record("info", *args, **kwargs)

    def warning(self, *args, **kwargs) -> None:
        self._record("warning", *args, **kwargs)

    def error(self, *args, **kwargs) -> None:
        self._record("error", *args, **kwargs)

    def exception(self, *args, **kwargs) -> None:
        self._record("exception", *args, **kwargs)

    def debug(self, *args, **kwargs) -> None:
        self._record("debug", *args, **kwargs)

    def get_all_logged_content(self) -> str:
        """Concatenate all args and kwargs from all calls into one string."""
        parts = []
        for _, args, kwargs in self.calls:
            parts.append(str(args))
            parts.append(str(kwargs))
        return " ".join(parts)

    def has_extra_field(self, key: str) -> bool:
        """Check if any call has the given key in extra_fields."""
        for _, _, kwargs in self.calls:
            extra = kwargs.get("extra", {})
            if key in extra.get("extra_fields", {}):
                return True
        return False
