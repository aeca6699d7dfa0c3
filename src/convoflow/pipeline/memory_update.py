"""Contact memory refresh, run off the reply path.

The update is a best-effort side effect: it runs on a background thread with
its own deadline, never blocks or fails the reply, and only logs failures.
"""

from __future__ import annotations

import json
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Callable

from convoflow.domain.memory import ContactMemory
from convoflow.domain.models import Message, SenderType
from convoflow.domain.signals import KeywordSignalDetector, SignalDetector
from convoflow.infra.time import utc_now
from convoflow.observability.correlation import correlation_scope, get_correlation_id
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

from .collaborators import ContactStore, MessageStore
from .context import ContextAssembler

logger = get_logger(__name__)

MEMORY_VERSION = "1.0"
SUMMARY_WINDOW = 10


class DeadlineExceeded(Exception):
    """Raised when a background task runs past its own deadline."""

    pass


class Deadline:
    def __init__(self, seconds: float, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._expires_at = clock() + seconds

    def remaining(self) -> float:
        return max(0.0, self._expires_at - self._clock())

    def check(self, step: str) -> None:
        if self._clock() >= self._expires_at:
            raise DeadlineExceeded(f"deadline exceeded before {step}")


def should_update_memory(message_count: int, threshold: int) -> bool:
    """True when the count reached the threshold and is an exact multiple of it."""
    if threshold <= 0:
        return False
    return message_count >= threshold and message_count % threshold == 0


def summarize_session(
    memory: ContactMemory,
    recent: list[Message],
    total_messages: int,
    current_message: str,
    detector: SignalDetector,
    now: datetime,
) -> None:
    """Refresh session_summary and system_fields in place."""
    summary = memory.ensure_session_summary()
    summary.messages_count = total_messages
    summary.last_message_at = now.isoformat()

    window = recent[:SUMMARY_WINDOW]
    customer_count = sum(1 for m in window if m.sender_type == SenderType.CUSTOMER)
    ai_count = sum(1 for m in window if m.sender_type == SenderType.AI)

    narrative = ""
    if customer_count:
        narrative = f"Customer has sent {customer_count} messages"
        if ai_count:
            narrative += f" and received {ai_count} replies from AI"
        summary.sentiment = detector.sentiment(current_message)
        if detector.is_question(current_message):
            summary.last_question = current_message
    summary.summary = narrative
    summary.needs_human = detector.needs_human(current_message)

    system = memory.ensure_system_fields()
    system.updated_at = now.isoformat()
    system.last_message_at = now.isoformat()
    system.version = MEMORY_VERSION
    system.context_health = "active"
    system.token_count = len(json.dumps(memory.to_document(), default=str)) // 4


class ContactMemoryUpdater:
    """Recomputes a contact's session summary every N messages."""

    def __init__(
        self,
        contacts: ContactStore,
        messages: MessageStore,
        assembler: ContextAssembler,
        threshold: int = 5,
        detector: SignalDetector | None = None,
    ) -> None:
        self._contacts = contacts
        self._messages = messages
        self._assembler = assembler
        self._threshold = threshold
        self._detector = detector or KeywordSignalDetector()

    def update(
        self,
        contact_id: str,
        conversation_id: str,
        current_message: str,
        sender_type: int,
        deadline: Deadline,
    ) -> bool:
        """Run one update. Returns True if the memory was written."""
        if sender_type != SenderType.CUSTOMER:
            return False

        total = self._messages.count(conversation_id)
        if not should_update_memory(total, self._threshold):
            logger.debug(
                "memory update skipped",
                extra={"extra_fields": safe_log_context(message_count=total)},
            )
            return False

        deadline.check("contact fetch")
        contact = self._contacts.get(contact_id)
        if contact is None:
            logger.warning(
                "memory update skipped, contact not found",
                extra={"extra_fields": safe_log_context(contact_id=contact_id)},
            )
            return False

        memory = ContactMemory.from_document(contact.memory)
        recent = self._messages.list_recent(conversation_id, SUMMARY_WINDOW)
        summarize_session(memory, recent, total, current_message, self._detector, utc_now())

        deadline.check("memory write")
        self._contacts.update_memory(contact_id, memory.to_document())
        self._assembler.invalidate_conversation(contact_id, conversation_id)

        logger.info(
            "contact memory updated",
            extra={
                "extra_fields": safe_log_context(
                    contact_id=contact_id,
                    conversation_id=conversation_id,
                    message_count=total,
                )
            },
        )
        return True


class BackgroundTasks:
    """Detached best-effort tasks with their own deadline.

    Tasks are never awaited by the caller. Failures, including deadline
    overruns, are logged and dropped.
    """

    def __init__(self, max_workers: int = 4, timeout_seconds: float = 30.0) -> None:
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="convoflow-bg"
        )
        self._timeout = timeout_seconds
        self._pending: set[Future] = set()
        self._lock = threading.Lock()

    def submit(self, name: str, fn: Callable[[Deadline], object]) -> Future:
        """Run `fn(deadline)` in the background."""
        correlation_id = get_correlation_id()
        timeout = self._timeout

        def _run() -> object:
            with correlation_scope(correlation_id):
                deadline = Deadline(timeout)
                try:
                    return fn(deadline)
                except Exception:
                    logger.exception(
                        "background task failed",
                        extra={"extra_fields": safe_log_context(task=name)},
                    )
                    return None

        future = self._executor.submit(_run)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._forget)
        return future

    def _forget(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)

    def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight tasks (shutdown and tests)."""
        with self._lock:
            pending = list(self._pending)
        for future in pending:
            future.result(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
