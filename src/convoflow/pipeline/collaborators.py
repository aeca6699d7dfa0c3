"""Interfaces of the services the pipeline depends on.

The workers only talk to these protocols. Production implementations live in
convoflow.infra (Postgres stores, Meta senders, GCS, OpenAI); tests pass
in-memory fakes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from convoflow.domain.models import (
    Attachment,
    Contact,
    Conversation,
    KnowledgeEntry,
    Message,
    MessageStatus,
    NewMessage,
    OrganizationSettings,
)


class ContactStore(Protocol):
    def get(self, contact_id: str) -> Contact | None:
        ...

    def get_by_identifier(self, organization_id: str, identifier: str) -> Contact | None:
        ...

    def create(self, organization_id: str, identifier: str, name: str) -> Contact:
        """Create a contact; if one already exists for the identifier, return it."""
        ...

    def update_memory(self, contact_id: str, memory: dict) -> None:
        ...


class ConversationStore(Protocol):
    def get(self, conversation_id: str) -> Conversation | None:
        ...

    def get_active(
        self, organization_id: str, contact_id: str, medium_id: int
    ) -> Conversation | None:
        ...

    def create(
        self,
        organization_id: str,
        contact_id: str,
        medium_id: int,
        last_message: str,
    ) -> Conversation:
        """Create an open conversation; return the active one if it already exists."""
        ...

    def update_last_message(self, conversation_id: str, content: str) -> None:
        ...


class MessageStore(Protocol):
    def get(self, message_id: str) -> Message | None:
        ...

    def get_inbound(self, organization_id: str, channel_message_id: str) -> Message | None:
        """Inbound message previously stored for a platform message id."""
        ...

    def create(self, message: NewMessage) -> Message:
        """Create a message.

        An inbound duplicate (same organization and channel_message_id)
        returns the stored row instead of inserting.
        """
        ...

    def update_media(
        self, message_id: str, media_url: str, attachments: list[Attachment]
    ) -> None:
        ...

    def update_status(
        self, message_id: str, status: MessageStatus, failure_reason: str | None = None
    ) -> None:
        ...

    def list_recent(self, conversation_id: str, limit: int) -> list[Message]:
        """Most recent messages of a conversation, newest first."""
        ...

    def count(self, conversation_id: str) -> int:
        ...


class OrganizationStore(Protocol):
    def get_settings(self, organization_id: str) -> OrganizationSettings | None:
        ...

    def find_by_integration_key(self, key: str) -> OrganizationSettings | None:
        ...

    def list_active_knowledge(self, organization_id: str) -> list[KnowledgeEntry]:
        ...


class ChannelSender(Protocol):
    """Outbound text and typing signal for one chat channel."""

    def send_text(self, to: str, text: str) -> None:
        ...

    def send_typing_indicator(self, message_id: str) -> None:
        ...


@dataclass(frozen=True)
class MediaFile:
    content: bytes
    mime_type: str


class MediaFetcher(Protocol):
    def fetch(self, reference: str) -> MediaFile:
        """Download media by provider reference (media id or URL)."""
        ...


class BlobStorage(Protocol):
    def upload(self, path: str, data: bytes, content_type: str) -> str:
        """Store `data` at `path`; return its durable URL."""
        ...


class ModelInvocationError(Exception):
    """Raised when the language model call fails or returns nothing."""

    pass


class Responder(Protocol):
    """Language model used to generate replies.

    Implementations raise ModelInvocationError on failure.
    """

    model: str

    def generate(self, context: str, message: str) -> str:
        ...

    def generate_with_media(
        self, context: str, message: str, media_kind: int, media_url: str
    ) -> str:
        ...
