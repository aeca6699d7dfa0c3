"""Tests for the contact memory refresh and its background runner."""

import threading
from datetime import datetime, timezone

import pytest

from convoflow.domain.memory import ContactMemory
from convoflow.domain.models import DIRECTION_INCOMING, Contact, Message, SenderType
from convoflow.domain.signals import KeywordSignalDetector
from convoflow.pipeline.context import ContextAssembler, ContextCache
from convoflow.pipeline.memory_update import (
    BackgroundTasks,
    ContactMemoryUpdater,
    Deadline,
    DeadlineExceeded,
    should_update_memory,
    summarize_session,
)

from helpers import ORG_ID, FakeClock, FakeContactStore, FakeMessageStore, FakeOrganizationStore

CONTACT_ID = "contact-1"
CONVERSATION_ID = "conversation-1"


def _fill(messages: FakeMessageStore, count: int) -> None:
    for n in range(count):
        sender = SenderType.CUSTOMER if n % 2 == 0 else SenderType.AI
        messages.add(
            Message(
                id=f"m{n}",
                conversation_id=CONVERSATION_ID,
                organization_id=ORG_ID,
                contact_id=CONTACT_ID,
                content=f"message {n}",
                sender_type=sender,
                direction=DIRECTION_INCOMING,
                created_at=datetime(2026, 3, 1, 9, n, tzinfo=timezone.utc),
            )
        )


@pytest.fixture
def contacts():
    store = FakeContactStore()
    store.add(Contact(id=CONTACT_ID, organization_id=ORG_ID, identifier="1555", name="Jane"))
    return store


@pytest.fixture
def messages():
    return FakeMessageStore()


@pytest.fixture
def assembler(contacts, messages):
    return ContextAssembler(FakeOrganizationStore(), contacts, messages)


@pytest.fixture
def updater(contacts, messages, assembler):
    return ContactMemoryUpdater(contacts, messages, assembler, threshold=5)


class TestThreshold:
    @pytest.mark.parametrize("count", [5, 10, 15, 50])
    def test_fires_on_multiples(self, count):
        """Counts that are multiples of the threshold trigger an update."""
        assert should_update_memory(count, 5) is True

    @pytest.mark.parametrize("count", [0, 1, 4, 6, 7, 11, 14])
    def test_skips_other_counts(self, count):
        """Any other count does not."""
        assert should_update_memory(count, 5) is False

    def test_non_positive_threshold_disables(self):
        """A zero threshold never fires."""
        assert should_update_memory(10, 0) is False


class TestUpdater:
    def test_updates_at_threshold(self, updater, contacts, messages):
        """At five messages the session summary is written."""
        _fill(messages, 5)

        written = updater.update(CONTACT_ID, CONVERSATION_ID, "Can I talk to a manager?",
                                 SenderType.CUSTOMER, Deadline(30))

        assert written is True
        memory = ContactMemory.from_document(contacts.get(CONTACT_ID).memory)
        assert memory.session_summary.messages_count == 5
        assert memory.session_summary.needs_human is True
        assert memory.session_summary.last_question == "Can I talk to a manager?"
        assert memory.session_summary.summary == "Customer has sent 3 messages and received 2 replies from AI"
        assert memory.system_fields.version == "1.0"
        assert memory.system_fields.context_health == "active"
        assert memory.system_fields.token_count > 0

    @pytest.mark.parametrize("count", [6, 7, 11])
    def test_skips_between_thresholds(self, updater, contacts, messages, count):
        """Counts that are not multiples write nothing."""
        _fill(messages, count)

        assert updater.update(CONTACT_ID, CONVERSATION_ID, "hi", SenderType.CUSTOMER, Deadline(30)) is False
        assert contacts.memory_writes == []

    def test_ignores_non_customer(self, updater, contacts, messages):
        """Only customer messages drive the update."""
        _fill(messages, 5)
        assert updater.update(CONTACT_ID, CONVERSATION_ID, "x", SenderType.AI, Deadline(30)) is False

    def test_invalidates_cached_context(self, updater, assembler, messages):
        """Writing memory drops the cached context for the conversation."""
        _fill(messages, 5)
        assembler.assemble(ORG_ID, CONTACT_ID, CONVERSATION_ID, "m4")
        key = ContextCache.key(CONTACT_ID, CONVERSATION_ID)
        assert assembler.context_cache.get(key) is not None

        updater.update(CONTACT_ID, CONVERSATION_ID, "thanks", SenderType.CUSTOMER, Deadline(30))

        assert assembler.context_cache.get(key) is None

    def test_preserves_unknown_sections(self, updater, contacts, messages):
        """Sections written by other tools survive an update."""
        contacts.update_memory(CONTACT_ID, {"crm": {"id": 42}, "customer_info": {"type": "vip"}})
        contacts.memory_writes.clear()
        _fill(messages, 5)

        updater.update(CONTACT_ID, CONVERSATION_ID, "ok", SenderType.CUSTOMER, Deadline(30))

        document = contacts.get(CONTACT_ID).memory
        assert document["crm"] == {"id": 42}
        assert document["customer_info"]["type"] == "vip"

    def test_deadline_exceeded(self, updater, contacts, messages):
        """An expired deadline stops the update before any write."""
        _fill(messages, 5)
        clock = FakeClock()
        deadline = Deadline(1, clock=clock)
        clock.advance(2)

        with pytest.raises(DeadlineExceeded):
            updater.update(CONTACT_ID, CONVERSATION_ID, "x", SenderType.CUSTOMER, deadline)
        assert contacts.memory_writes == []


class TestSummarize:
    def test_sentiment(self):
        """Keyword sentiment is recorded for customer messages."""
        memory = ContactMemory()
        summarize_session(memory, [], 5, "This is terrible and slow", KeywordSignalDetector(),
                          datetime(2026, 1, 1, tzinfo=timezone.utc))
        # No customer messages in the window: no narrative, no sentiment
        assert memory.session_summary.summary == ""
        assert memory.session_summary.sentiment is None


class TestBackgroundTasks:
    def test_failure_is_logged_not_raised(self):
        """A failing task never propagates to the submitter."""
        tasks = BackgroundTasks(max_workers=1)

        def boom(deadline):
            raise RuntimeError("db down")

        future = tasks.submit("boom", boom)
        assert future.result(timeout=5) is None
        tasks.shutdown()

    def test_task_receives_deadline(self):
        """Each task gets its own deadline object."""
        tasks = BackgroundTasks(max_workers=1, timeout_seconds=30)
        seen = []
        tasks.submit("deadline-check", lambda deadline: seen.append(deadline.remaining()))
        tasks.drain(timeout=5)

        assert 0 < seen[0] <= 30
        tasks.shutdown()

    def test_submit_does_not_block(self):
        """submit returns while the task is still running."""
        tasks = BackgroundTasks(max_workers=1)
        release = threading.Event()
        future = tasks.submit("slow", lambda deadline: release.wait(5))

        assert not future.done()
        release.set()
        tasks.drain(timeout=5)
        tasks.shutdown()
