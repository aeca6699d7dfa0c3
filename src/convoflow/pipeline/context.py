"""Context assembly for AI replies, with two process-local TTL caches.

Prompt priority is the order of the parts:
1. organization prompt (system prompt + knowledge digest), cached per organization
2. contact context block (from the contact memory document)
3. conversation history (most recent messages, excluding the trigger)
4. current-message marker

The assembled context is cached per (contact, conversation) together with the
conversation's message count. A cached context is served only while its TTL
has not elapsed and the message count is unchanged.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Generic, TypeVar

from convoflow.config import PipelineSettings
from convoflow.domain.memory import render_contact_context
from convoflow.domain.models import KnowledgeEntry, Message, SenderType
from convoflow.infra.rwlock import ReadWriteLock
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

from .collaborators import ContactStore, MessageStore, OrganizationStore

logger = get_logger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful customer service assistant for this organization. "
    "Answer politely and concisely, using only the organization knowledge and "
    "the conversation context you are given. If you do not know the answer, "
    "say so and offer to connect the customer with a human agent. When a reply "
    "is long, separate natural message breaks with a line containing -----."
)

KNOWLEDGE_HEADER = "# Organization Knowledge Base\n\n"
HISTORY_HEADER = "=== CONVERSATION HISTORY ==="
HISTORY_FOOTER = "=== END HISTORY ==="
CURRENT_MESSAGE_MARKER = (
    "=== CURRENT MESSAGE ===\n"
    "Please respond to the customer's message below, taking into account all "
    "the context provided above.\n\n"
)

HISTORY_CONTENT_LIMIT = 200

_SENDER_LABELS = {
    SenderType.CUSTOMER: "Customer",
    SenderType.AI: "AI",
    SenderType.AGENT: "Agent",
}

V = TypeVar("V")


@dataclass(frozen=True)
class CachedPrompt:
    system_prompt: str
    knowledge_digest: str
    full_prompt: str
    cached_at: float


@dataclass(frozen=True)
class CachedContext:
    organization_prompt: str
    contact_context: str
    conversation_history: str
    full_context: str
    message_count: int
    cached_at: float


class TTLCache(Generic[V]):
    """Dict cache with a TTL, guarded by a reader/writer lock.

    Values must expose `cached_at` (a reading of `clock`).
    """

    def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, V] = {}
        self._lock = ReadWriteLock()

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> V | None:
        """Return the entry for `key` unless it is missing or expired."""
        with self._lock.read_locked():
            entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.cached_at >= self._ttl:  # type: ignore[attr-defined]
            return None
        return entry

    def put(self, key: str, value: V) -> None:
        with self._lock.write_locked():
            self._entries[key] = value

    def invalidate(self, key: str) -> bool:
        with self._lock.write_locked():
            return self._entries.pop(key, None) is not None

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock.write_locked():
            keys = [k for k in self._entries if k.startswith(prefix)]
            for key in keys:
                del self._entries[key]
        return len(keys)

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._entries)


class ContextCache(TTLCache[CachedContext]):
    """Context cache keyed by "contact_id:conversation_id"."""

    @staticmethod
    def key(contact_id: str, conversation_id: str) -> str:
        return f"{contact_id}:{conversation_id}"

    def get_valid(self, key: str, current_message_count: int) -> CachedContext | None:
        entry = self.get(key)
        if entry is None or entry.message_count != current_message_count:
            return None
        return entry


def format_knowledge(entries: list[KnowledgeEntry]) -> str:
    """Render active knowledge entries as a markdown digest."""
    parts = [KNOWLEDGE_HEADER]
    for entry in entries:
        if not entry.active:
            continue
        parts.append(f"## {entry.title}\n\n{entry.content}\n\n")
        if entry.source_url:
            parts.append(f"Source: {entry.source_url}\n")
        if entry.description:
            parts.append(f"Description: {entry.description}\n")
        parts.append("---\n\n")
    return "".join(parts)


def format_history(messages: list[Message], exclude_message_id: str, limit: int) -> str:
    """Render up to `limit` recent messages, oldest first.

    Args:
        messages: Recent messages, newest first.
        exclude_message_id: The message being answered.
        limit: Maximum number of lines.
    """
    selected = [m for m in messages if m.id != exclude_message_id][:limit]
    if not selected:
        return ""

    lines = [HISTORY_HEADER]
    for message in reversed(selected):
        timestamp = message.created_at.strftime("%Y-%m-%d %H:%M") if message.created_at else ""
        label = _SENDER_LABELS.get(message.sender_type, "System")
        content = message.content
        if len(content) > HISTORY_CONTENT_LIMIT:
            content = content[:HISTORY_CONTENT_LIMIT] + "..."
        lines.append(f'[{timestamp}] {label}: "{content}"')
    lines.append(HISTORY_FOOTER)
    return "\n".join(lines) + "\n"


class ContextAssembler:
    """Builds (and caches) the grounding context handed to the model."""

    def __init__(
        self,
        organizations: OrganizationStore,
        contacts: ContactStore,
        messages: MessageStore,
        settings: PipelineSettings | None = None,
        prompt_cache: TTLCache[CachedPrompt] | None = None,
        context_cache: ContextCache | None = None,
        default_prompt: str = DEFAULT_SYSTEM_PROMPT,
    ) -> None:
        self._organizations = organizations
        self._contacts = contacts
        self._messages = messages
        self._settings = settings or PipelineSettings()
        ttl = self._settings.cache_ttl_seconds
        self.prompt_cache: TTLCache[CachedPrompt] = prompt_cache or TTLCache(ttl)
        self.context_cache = context_cache or ContextCache(ttl)
        self._default_prompt = default_prompt

    def organization_prompt(self, organization_id: str) -> str:
        """System prompt plus knowledge digest (read-through cache)."""
        cached = self.prompt_cache.get(organization_id)
        if cached is not None:
            return cached.full_prompt

        settings = self._organizations.get_settings(organization_id)
        system_prompt = (settings.system_prompt if settings else "") or self._default_prompt
        knowledge = format_knowledge(self._organizations.list_active_knowledge(organization_id))
        full_prompt = f"{system_prompt}\n\n{knowledge}"

        self.prompt_cache.put(
            organization_id,
            CachedPrompt(
                system_prompt=system_prompt,
                knowledge_digest=knowledge,
                full_prompt=full_prompt,
                cached_at=self.prompt_cache.now(),
            ),
        )
        return full_prompt

    def assemble(
        self,
        organization_id: str,
        contact_id: str,
        conversation_id: str,
        exclude_message_id: str,
    ) -> str:
        """Full context for answering `exclude_message_id`.

        Raises:
            Exception: Store failures on the organization prompt or message
                count propagate. Contact and history failures degrade to
                empty sections.
        """
        key = ContextCache.key(contact_id, conversation_id)
        message_count = self._messages.count(conversation_id)

        cached = self.context_cache.get_valid(key, message_count)
        if cached is not None:
            logger.debug(
                "context cache hit",
                extra={"extra_fields": safe_log_context(conversation_id=conversation_id)},
            )
            return cached.full_context

        org_prompt = self.organization_prompt(organization_id)
        contact_context = self._contact_context(contact_id)
        history = self._history(conversation_id, exclude_message_id)

        parts = [org_prompt, "\n\n"]
        if contact_context:
            parts.extend([contact_context, "\n"])
        if history:
            parts.extend([history, "\n"])
        parts.append(CURRENT_MESSAGE_MARKER)
        full_context = "".join(parts)

        self.context_cache.put(
            key,
            CachedContext(
                organization_prompt=org_prompt,
                contact_context=contact_context,
                conversation_history=history,
                full_context=full_context,
                message_count=message_count,
                cached_at=self.context_cache.now(),
            ),
        )
        logger.debug(
            "context assembled",
            extra={
                "extra_fields": safe_log_context(
                    conversation_id=conversation_id,
                    context_length=len(full_context),
                    message_count=message_count,
                )
            },
        )
        return full_context

    def invalidate_organization(self, organization_id: str) -> None:
        self.prompt_cache.invalidate(organization_id)
        logger.info(
            "organization prompt cache invalidated",
            extra={"extra_fields": safe_log_context(organization_id=organization_id)},
        )

    def invalidate_contact(self, contact_id: str) -> None:
        removed = self.context_cache.invalidate_prefix(f"{contact_id}:")
        logger.info(
            "contact context cache invalidated",
            extra={"extra_fields": safe_log_context(contact_id=contact_id, removed=removed)},
        )

    def invalidate_conversation(self, contact_id: str, conversation_id: str) -> None:
        self.context_cache.invalidate(ContextCache.key(contact_id, conversation_id))

    def _contact_context(self, contact_id: str) -> str:
        try:
            contact = self._contacts.get(contact_id)
        except Exception as e:
            logger.warning(
                "contact lookup failed, continuing without contact context",
                extra={
                    "extra_fields": safe_log_context(
                        contact_id=contact_id, error_type=type(e).__name__
                    )
                },
            )
            return ""
        return render_contact_context(contact)

    def _history(self, conversation_id: str, exclude_message_id: str) -> str:
        limit = self._settings.history_limit
        try:
            recent = self._messages.list_recent(conversation_id, limit * 2)
        except Exception as e:
            logger.warning(
                "history fetch failed, continuing without history",
                extra={
                    "extra_fields": safe_log_context(
                        conversation_id=conversation_id, error_type=type(e).__name__
                    )
                },
            )
            return ""
        return format_history(recent, exclude_message_id, limit)
