"""Lazy wiring of production collaborators.

Each getter builds its object on first use and caches it at module level.
Tests replace the getters with FastAPI dependency_overrides.
"""

from __future__ import annotations

import os
import threading

from convoflow.bus.client import EventBus
from convoflow.config import PipelineSettings
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context
from convoflow.pipeline.ai_responder import AIResponseWorker
from convoflow.pipeline.collaborators import ChannelSender, OrganizationStore
from convoflow.pipeline.context import ContextAssembler
from convoflow.pipeline.delivery import MessageDeliveryWorker
from convoflow.pipeline.ingestion import WebhookIngestionHandler
from convoflow.pipeline.memory_update import BackgroundTasks, ContactMemoryUpdater
from convoflow.pipeline.normalization import MediaRehoster, MessageNormalizationWorker
from convoflow.pipeline.runtime import Pipeline, attach_inline

logger = get_logger(__name__)

_lock = threading.RLock()
_bus: EventBus | None = None
_organizations: OrganizationStore | None = None
_pipeline: Pipeline | None = None


def get_bus() -> EventBus:
    global _bus
    with _lock:
        if _bus is None:
            _bus = EventBus()
        return _bus


def get_organization_store() -> OrganizationStore:
    global _organizations
    with _lock:
        if _organizations is None:
            from convoflow.infra.repositories.organizations_repository import (
                PostgresOrganizationStore,
            )

            _organizations = PostgresOrganizationStore()
        return _organizations


def get_ingestion_handler() -> WebhookIngestionHandler:
    return WebhookIngestionHandler(get_bus())


def _build_senders() -> dict[str, ChannelSender]:
    from convoflow.channels.whatsapp import WhatsAppConfig, WhatsAppSender

    try:
        return {"whatsapp": WhatsAppSender(WhatsAppConfig.from_env())}
    except RuntimeError as e:
        logger.warning(
            "whatsapp sender not configured",
            extra={"extra_fields": safe_log_context(error=str(e))},
        )
        return {}


def _build_rehoster(messages) -> MediaRehoster | None:
    from convoflow.channels.media import UrlMediaFetcher, WhatsAppMediaFetcher
    from convoflow.channels.whatsapp import WhatsAppConfig
    from convoflow.infra.storage import GCSBlobStorage

    if not os.environ.get("MEDIA_BUCKET"):
        logger.warning(
            "MEDIA_BUCKET not set, media will not be re-hosted",
            extra={"extra_fields": safe_log_context(setting="MEDIA_BUCKET")},
        )
        return None

    url_fetcher = UrlMediaFetcher()
    fetchers = {"instagram": url_fetcher, "facebook": url_fetcher}
    try:
        fetchers["whatsapp"] = WhatsAppMediaFetcher(WhatsAppConfig.from_env())
    except RuntimeError:
        pass
    return MediaRehoster(fetchers, GCSBlobStorage.from_env(), messages)


def build_pipeline(bus: EventBus, settings: PipelineSettings | None = None) -> Pipeline:
    """Assemble the three workers over the Postgres stores.

    With the inline bus backend, the workers are subscribed to the bus so a
    webhook flows through the whole pipeline in-process.
    """
    from convoflow.infra.llm import OpenAIResponder
    from convoflow.infra.repositories.contacts_repository import PostgresContactStore
    from convoflow.infra.repositories.conversations_repository import (
        PostgresConversationStore,
    )
    from convoflow.infra.repositories.messages_repository import PostgresMessageStore

    settings = settings or PipelineSettings.from_env()
    contacts = PostgresContactStore()
    conversations = PostgresConversationStore()
    messages = PostgresMessageStore()
    senders = _build_senders()

    assembler = ContextAssembler(get_organization_store(), contacts, messages, settings)
    pipeline = Pipeline(
        normalization=MessageNormalizationWorker(
            contacts,
            conversations,
            messages,
            bus,
            senders,
            rehoster=_build_rehoster(messages),
            settings=settings,
        ),
        ai=AIResponseWorker(
            assembler,
            OpenAIResponder.from_env(),
            messages,
            conversations,
            bus,
            senders,
            memory_updater=ContactMemoryUpdater(
                contacts, messages, assembler, settings.memory_update_threshold
            ),
            background=BackgroundTasks(
                timeout_seconds=settings.memory_update_timeout_seconds
            ),
            settings=settings,
        ),
        delivery=MessageDeliveryWorker(messages, contacts, senders, settings),
    )

    if bus.backend == "inline":
        attach_inline(bus, pipeline)
    return pipeline


def get_pipeline() -> Pipeline:
    global _pipeline
    bus = get_bus()
    with _lock:
        if _pipeline is None:
            _pipeline = build_pipeline(bus)
        return _pipeline


def reset() -> None:
    """Drop cached singletons (tests)."""
    global _bus, _organizations, _pipeline
    with _lock:
        _bus = None
        _organizations = None
        _pipeline = None


def shutdown() -> None:
    """Let in-flight memory updates finish, then release database connections."""
    from convoflow.infra.db import close_pool

    with _lock:
        pipeline = _pipeline
    if pipeline is not None:
        pipeline.ai.shutdown()
    close_pool()
    reset()
