"""Contact memory document.

The memory lives on the contact as free-form JSON. Known sections are parsed
into pydantic models; anything else (and any known section whose shape is
wrong) is carried through untouched in `extensions` so a write never drops
data written by other tools.

Document shape:
{
  "customer_info": {"type", "orders_count", "response_style", "favorite_product", "tags"},
  "memory": {"important_facts": [...], "previous_issues": [...]},
  "active_context": {"current_topic", "description"},
  "session_summary": {"summary", "sentiment", "needs_human", "last_question",
                      "messages_count", "last_message_at"},
  "system_fields": {"updated_at", "last_message_at", "version", "context_health",
                    "token_count"}
}
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

from .models import Contact

logger = get_logger(__name__)

CONTACT_CONTEXT_HEADER = "=== CONTACT CONTEXT ==="
CONTACT_CONTEXT_FOOTER = "=== END CONTACT CONTEXT ==="


class _Section(BaseModel):
    model_config = ConfigDict(extra="allow")


class CustomerInfo(_Section):
    type: str | None = None
    orders_count: float | None = None
    response_style: str | None = None
    favorite_product: list[Any] = Field(default_factory=list)
    tags: list[Any] = Field(default_factory=list)


class MemoryFacts(_Section):
    important_facts: list[Any] = Field(default_factory=list)
    previous_issues: list[Any] = Field(default_factory=list)


class ActiveContext(_Section):
    current_topic: str | None = None
    description: str | None = None


class SessionSummary(_Section):
    summary: str | None = None
    sentiment: str | None = None
    needs_human: bool | None = None
    last_question: str | None = None
    messages_count: int | None = None
    last_message_at: str | None = None


class SystemFields(_Section):
    updated_at: str | None = None
    last_message_at: str | None = None
    version: str | None = None
    context_health: str | None = None
    token_count: int | None = None


_SECTIONS: dict[str, type[_Section]] = {
    "customer_info": CustomerInfo,
    "memory": MemoryFacts,
    "active_context": ActiveContext,
    "session_summary": SessionSummary,
    "system_fields": SystemFields,
}


@dataclass
class ContactMemory:
    """Typed view over a contact memory document."""

    customer_info: CustomerInfo | None = None
    memory: MemoryFacts | None = None
    active_context: ActiveContext | None = None
    session_summary: SessionSummary | None = None
    system_fields: SystemFields | None = None
    extensions: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_document(cls, document: Any) -> "ContactMemory":
        """Parse a stored memory document.

        Accepts a dict or a JSON string. Anything unparseable yields an empty
        memory; a malformed section is kept raw in `extensions`.
        """
        if isinstance(document, (str, bytes)):
            try:
                document = json.loads(document)
            except ValueError:
                logger.warning("contact memory is not valid json")
                return cls()
        if not isinstance(document, dict):
            return cls()

        parsed = cls()
        for key, value in document.items():
            section_cls = _SECTIONS.get(key)
            if section_cls is None:
                parsed.extensions[key] = value
                continue
            try:
                setattr(parsed, key, section_cls.model_validate(value))
            except ValidationError:
                logger.warning(
                    "contact memory section malformed, keeping raw value",
                    extra={"extra_fields": safe_log_context(section=key)},
                )
                parsed.extensions[key] = value
        return parsed

    def to_document(self) -> dict[str, Any]:
        """Serialize back to a JSON-compatible dict, extensions included."""
        document = dict(self.extensions)
        for key in _SECTIONS:
            section = getattr(self, key)
            if section is not None:
                document[key] = section.model_dump(exclude_none=True)
        return document

    def ensure_session_summary(self) -> SessionSummary:
        if self.session_summary is None:
            self.extensions.pop("session_summary", None)
            self.session_summary = SessionSummary()
        return self.session_summary

    def ensure_system_fields(self) -> SystemFields:
        if self.system_fields is None:
            self.extensions.pop("system_fields", None)
            self.system_fields = SystemFields()
        return self.system_fields


def _join(values: list[Any]) -> str:
    return ", ".join(str(v) for v in values)


def render_contact_context(contact: Contact | None) -> str:
    """Render the labeled contact block for the model context.

    Returns an empty string when the contact has no memory document.
    """
    if contact is None or not contact.memory:
        return ""

    memory = ContactMemory.from_document(contact.memory)
    lines = [CONTACT_CONTEXT_HEADER]

    if contact.name:
        lines.append(f"Name: {contact.name}")
    if contact.salutation:
        lines.append(f"Salutation: {contact.salutation}")

    info = memory.customer_info
    if info is not None:
        if info.type:
            lines.append(f"Customer Type: {info.type}")
        if info.orders_count is not None:
            lines.append(f"Orders Count: {info.orders_count:.0f}")
        if info.response_style:
            lines.append(f"Preferred Style: {info.response_style}")
        if info.favorite_product:
            lines.append(f"Favorite Products: {_join(info.favorite_product)}")
        if info.tags:
            lines.append(f"Customer Tags: {_join(info.tags)}")

    facts = memory.memory
    if facts is not None:
        if facts.important_facts:
            lines.append("Important Facts:")
            lines.extend(f"- {fact}" for fact in facts.important_facts)
        if facts.previous_issues:
            lines.append("Previous Issues:")
            lines.extend(f"- {issue}" for issue in facts.previous_issues)

    active = memory.active_context
    if active is not None:
        if active.current_topic:
            lines.append(f"Current Topic: {active.current_topic}")
        if active.description:
            lines.append(f"Context Description: {active.description}")

    summary = memory.session_summary
    if summary is not None:
        if summary.summary:
            lines.append(f"Session Summary: {summary.summary}")
        if summary.sentiment:
            lines.append(f"Current Sentiment: {summary.sentiment}")
        if summary.needs_human:
            lines.append("ATTENTION: Customer needs human agent intervention")
        if summary.last_question:
            lines.append(f"Last Question: {summary.last_question}")

    lines.append(CONTACT_CONTEXT_FOOTER)
    return "\n".join(lines) + "\n"
