"""Tests for the message normalization worker."""

from unittest.mock import MagicMock

import pytest

from convoflow.bus.client import EventBus
from convoflow.config import PipelineSettings
from convoflow.domain.models import (
    CHANNEL_WHATSAPP,
    Conversation,
    ConversationStatus,
    MessageKind,
    MessageStatus,
    SenderType,
)
from convoflow.events.contracts import TOPIC_MESSAGE_CREATED, WebhookMessage, WebhookReceived
from convoflow.pipeline.normalization import (
    ABUSE_REPLY,
    MediaRehoster,
    MessageNormalizationWorker,
    media_extension,
    media_filename,
)

from helpers import (
    ORG_ID,
    FakeContactStore,
    FakeConversationStore,
    FakeMessageStore,
    MemoryBlobStorage,
    RecordingSender,
    StubMediaFetcher,
)


def _event(*messages: WebhookMessage, platform: str = "whatsapp") -> WebhookReceived:
    return WebhookReceived(
        platform=platform,
        organization_id=ORG_ID,
        channel_id=CHANNEL_WHATSAPP,
        messages=tuple(messages),
    )


def _text(content: str, sender: str = "15550001111", mid: str = "wamid.1") -> WebhookMessage:
    return WebhookMessage(
        sender_identifier=sender,
        content=content,
        origin_message_id=mid,
        metadata={"whatsapp_message_id": mid},
    )


@pytest.fixture
def stores():
    return FakeContactStore(), FakeConversationStore(), FakeMessageStore()


@pytest.fixture
def bus():
    return EventBus(backend="inline")


@pytest.fixture
def sender():
    return RecordingSender()


def _worker(stores, bus, sender, rehoster=None, settings=None):
    contacts, conversations, messages = stores
    return MessageNormalizationWorker(
        contacts, conversations, messages, bus, {"whatsapp": sender}, rehoster, settings
    )


class TestNormalize:
    def test_creates_contact_conversation_message(self, stores, bus, sender):
        """A first message creates everything and publishes MessageCreated."""
        contacts, conversations, messages = stores
        _worker(stores, bus, sender).handle(_event(_text("Hello")))

        assert len(contacts.contacts) == 1
        contact = next(iter(contacts.contacts.values()))
        assert contact.identifier == "15550001111"
        conversation = next(iter(conversations.conversations.values()))
        assert conversation.medium_id == CHANNEL_WHATSAPP
        assert conversation.last_message == "Hello"
        message = next(iter(messages.messages.values()))
        assert message.sender_type == SenderType.CUSTOMER
        assert message.direction == "i"
        assert message.status == MessageStatus.DELIVERED

        published = bus.get_published(TOPIC_MESSAGE_CREATED)
        assert len(published) == 1
        payload = published[0]["payload"]
        assert payload["message_id"] == message.id
        assert payload["channel_message_id"] == "wamid.1"
        assert payload["platform"] == "whatsapp"

    def test_reuses_existing_contact_and_conversation(self, stores, bus, sender):
        """Replaying the same sender reuses the contact and open conversation."""
        contacts, conversations, messages = stores
        worker = _worker(stores, bus, sender)

        worker.handle(_event(_text("one", mid="wamid.1")))
        worker.handle(_event(_text("two", mid="wamid.2")))

        assert len(contacts.contacts) == 1
        assert len(conversations.conversations) == 1
        assert len(messages.messages) == 2

    def test_closed_conversation_starts_new(self, stores, bus, sender):
        """A closed conversation is not reused."""
        contacts, conversations, _ = stores
        worker = _worker(stores, bus, sender)
        contact = worker.get_or_create_contact(ORG_ID, "15550001111")
        conversations.add(
            Conversation(
                id="closed",
                organization_id=ORG_ID,
                contact_id=contact.id,
                medium_id=CHANNEL_WHATSAPP,
                status=ConversationStatus.CLOSED,
            )
        )

        worker.handle(_event(_text("back again")))

        assert len(conversations.conversations) == 2

    def test_messages_processed_in_order(self, stores, bus, sender):
        """Messages of one webhook are persisted in payload order."""
        _, _, messages = stores
        _worker(stores, bus, sender).handle(
            _event(_text("first", mid="a"), _text("second", mid="b"))
        )

        assert [m.content for m in messages.messages.values()] == ["first", "second"]

    def test_redelivered_event_not_duplicated(self, stores, bus, sender):
        """Handling the same webhook twice stores and publishes each message once."""
        _, _, messages = stores
        worker = _worker(stores, bus, sender)
        event = _event(_text("Hello", mid="wamid.1"))

        worker.handle(event)
        worker.handle(event)

        assert len(messages.messages) == 1
        assert len(bus.get_published(TOPIC_MESSAGE_CREATED)) == 1

    def test_replay_after_partial_failure(self, stores, bus, sender):
        """A batch replayed after failing midway only publishes the unfinished messages."""
        _, _, messages = stores
        worker = _worker(stores, bus, sender)
        event = _event(_text("first", mid="a"), _text("second", mid="b"))
        real_create = messages.create
        calls = []

        def create_failing_second(message):
            calls.append(message.channel_message_id)
            if len(calls) == 2:
                raise RuntimeError("db down")
            return real_create(message)

        messages.create = create_failing_second
        with pytest.raises(RuntimeError):
            worker.handle(event)
        messages.create = real_create
        worker.handle(event)

        assert [m.content for m in messages.messages.values()] == ["first", "second"]
        published = bus.get_published(TOPIC_MESSAGE_CREATED)
        assert [p["payload"]["channel_message_id"] for p in published] == ["a", "b"]

    def test_same_id_in_other_organization_is_stored(self, stores, bus, sender):
        """Platform ids are unique per organization only."""
        _, _, messages = stores
        worker = _worker(stores, bus, sender)

        worker.handle(_event(_text("Hello", mid="wamid.1")))
        worker.handle(
            WebhookReceived(
                platform="whatsapp",
                organization_id="00000000-0000-0000-0000-00000000beef",
                channel_id=CHANNEL_WHATSAPP,
                messages=(_text("Hello", mid="wamid.1"),),
            )
        )

        assert len(messages.messages) == 2

    def test_failure_propagates(self, stores, bus, sender):
        """A store failure aborts the batch so the bus redelivers."""
        contacts, _, _ = stores
        contacts.get_by_identifier = MagicMock(side_effect=RuntimeError("db down"))

        with pytest.raises(RuntimeError):
            _worker(stores, bus, sender).handle(_event(_text("hi")))
        assert bus.get_published() == []


class TestAbuseGuard:
    def test_over_limit_gets_canned_reply(self, stores, bus, sender):
        """Messages over the word limit are answered and skipped."""
        contacts, _, messages = stores
        settings = PipelineSettings(max_inbound_word_count=5)

        _worker(stores, bus, sender, settings=settings).handle(
            _event(_text("one two three four five six"))
        )

        assert sender.sent == [("15550001111", ABUSE_REPLY)]
        assert contacts.contacts == {}
        assert messages.messages == {}
        assert bus.get_published() == []

    def test_at_limit_is_processed(self, stores, bus, sender):
        """Exactly the limit is still accepted."""
        settings = PipelineSettings(max_inbound_word_count=5)
        _worker(stores, bus, sender, settings=settings).handle(
            _event(_text("one two three four five"))
        )

        assert sender.sent == []
        assert len(bus.get_published(TOPIC_MESSAGE_CREATED)) == 1

    def test_reply_failure_still_skips(self, stores, bus):
        """A failed canned reply is logged; the message is still skipped."""
        failing = RecordingSender(fail_on=1)
        settings = PipelineSettings(max_inbound_word_count=1)

        _worker(stores, bus, failing, settings=settings).handle(_event(_text("too many words")))

        assert bus.get_published() == []

    def test_abuse_skip_continues_batch(self, stores, bus, sender):
        """Only the offending message is skipped."""
        settings = PipelineSettings(max_inbound_word_count=2)
        _worker(stores, bus, sender, settings=settings).handle(
            _event(_text("way too many words", mid="a"), _text("short", mid="b"))
        )

        assert len(bus.get_published(TOPIC_MESSAGE_CREATED)) == 1


class TestMedia:
    def _image(self) -> WebhookMessage:
        return WebhookMessage(
            sender_identifier="15550001111",
            content="look",
            media_reference="MEDIA1",
            kind=MessageKind.IMAGE,
            origin_message_id="wamid.img",
            metadata={"whatsapp_message_id": "wamid.img"},
        )

    def test_rehosted_url_in_event(self, stores, bus, sender):
        """The durable URL is stored and carried on MessageCreated."""
        _, _, messages = stores
        storage = MemoryBlobStorage()
        fetcher = StubMediaFetcher()
        rehoster = MediaRehoster({"whatsapp": fetcher}, storage, messages)

        _worker(stores, bus, sender, rehoster=rehoster).handle(_event(self._image()))

        assert fetcher.references == ["MEDIA1"]
        assert list(storage.objects) == [f"{ORG_ID}/img_MEDIA1.jpg"]
        message = next(iter(messages.messages.values()))
        assert message.media_url.endswith("img_MEDIA1.jpg")
        assert message.attachments[0].mime_type == "image/jpeg"
        assert message.attachments[0].size == len(fetcher.content)
        payload = bus.get_published(TOPIC_MESSAGE_CREATED)[0]["payload"]
        assert payload["media_url"] == message.media_url
        assert payload["message_kind"] == int(MessageKind.IMAGE)

    def test_media_failure_keeps_message(self, stores, bus, sender):
        """Upload failure is logged; the message and event still go out."""
        _, _, messages = stores
        rehoster = MediaRehoster({"whatsapp": StubMediaFetcher()}, MemoryBlobStorage(fail=True), messages)

        _worker(stores, bus, sender, rehoster=rehoster).handle(_event(self._image()))

        assert len(messages.messages) == 1
        payload = bus.get_published(TOPIC_MESSAGE_CREATED)[0]["payload"]
        assert payload["media_url"] == ""

    def test_extension_map(self):
        """MIME parameters are ignored; unknown types map to .bin."""
        assert media_extension("audio/ogg; codecs=opus") == ".ogg"
        assert media_extension("application/x-unknown") == ".bin"

    def test_filename_prefixes(self):
        """Prefix follows the message kind."""
        assert media_filename(MessageKind.DOCUMENT, "D1", "application/pdf") == "doc_D1.pdf"
        assert media_filename(MessageKind.STICKER, "S1", "image/webp") == "stk_S1.webp"
