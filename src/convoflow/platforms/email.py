"""Inbound e-mail webhook processor (SendGrid / Mailgun style parse hooks).

Accepts either a single e-mail object or {"emails": [...]}.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field, field_validator

from convoflow.domain.models import CHANNEL_EMAIL, MessageKind
from convoflow.events.contracts import WebhookMessage

from .base import Fragment, InvalidPayloadError, MessageProcessor, decode_fragments


class InboundEmail(Fragment):
    email: str | None = None
    sender_from: str | None = Field(default=None, alias="from")
    sender: str | None = None
    subject: str | None = None
    text: str | None = None
    body: str | None = None
    message: str | None = None
    html: str | None = None
    message_id: str | None = None
    timestamp: str | None = None
    to: str | None = None

    @field_validator("*", mode="before")
    @classmethod
    def _ignore_non_strings(cls, value: Any) -> Any:
        # A wrongly typed field is dropped; the rest of the e-mail is kept
        return value if value is None or isinstance(value, str) else None

    def sender_address(self) -> str:
        return self.email or self.sender_from or self.sender or ""


class EmailProcessor(MessageProcessor):
    platform = "email"

    def get_channel_id(self) -> int:
        return CHANNEL_EMAIL

    def validate_payload(self, payload: dict[str, Any]) -> None:
        if isinstance(payload.get("emails"), list):
            return
        if "email" not in payload and "from" not in payload:
            raise InvalidPayloadError("invalid email payload: missing email or from field")

    def extract_messages(self, payload: dict[str, Any]) -> list[WebhookMessage]:
        emails = payload.get("emails")
        items = emails if isinstance(emails, list) else [payload]

        messages: list[WebhookMessage] = []
        for email in decode_fragments(items, InboundEmail, self.platform):
            message = self._to_webhook_message(email)
            if message is not None:
                messages.append(message)
        return messages

    def _to_webhook_message(self, email: InboundEmail) -> WebhookMessage | None:
        sender = email.sender_address()
        if not sender:
            return None

        metadata: dict[str, Any] = {}
        content = email.text or email.body or email.message or ""
        if not content and email.html:
            content = email.html
            metadata["content_type"] = "html"

        if email.subject:
            metadata["subject"] = email.subject
            content = f"Subject: {email.subject}\n\n{content}" if content else email.subject

        if not content:
            return None

        if email.message_id:
            metadata["email_message_id"] = email.message_id
        if email.timestamp:
            metadata["timestamp"] = email.timestamp
        if email.to:
            metadata["to"] = email.to

        return WebhookMessage(
            sender_identifier=sender,
            content=content,
            kind=MessageKind.TEXT,
            origin_message_id=email.message_id or "",
            metadata=metadata,
        )
