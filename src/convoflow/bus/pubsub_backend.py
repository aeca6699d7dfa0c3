"""Google Cloud Pub/Sub backend for GCP deployment."""

from __future__ import annotations

import os
import threading

from google.api_core import exceptions as gcp_exceptions
from google.cloud import pubsub_v1

from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

logger = get_logger(__name__)

PUBLISH_TIMEOUT = 30

_publisher: pubsub_v1.PublisherClient | None = None
_publisher_lock = threading.Lock()


def _project_id() -> str:
    project = os.environ.get("GOOGLE_CLOUD_PROJECT") or os.environ.get("GCP_PROJECT_ID")
    if not project:
        raise RuntimeError("GOOGLE_CLOUD_PROJECT or GCP_PROJECT_ID required")
    return project


def topic_name(topic: str) -> str:
    """Deployment topic name (PUBSUB_TOPIC_PREFIX + logical name)."""
    return f"{os.environ.get('PUBSUB_TOPIC_PREFIX', '')}{topic}"


def subscription_name(topic: str) -> str:
    return f"{topic_name(topic)}-sub"


def _get_publisher() -> pubsub_v1.PublisherClient:
    global _publisher
    with _publisher_lock:
        if _publisher is None:
            _publisher = pubsub_v1.PublisherClient()
        return _publisher


def publish_message(topic: str, data: bytes, attributes: dict[str, str]) -> str:
    """Publish one message and wait for the server-assigned id.

    Args:
        topic: Logical topic name (e.g. "message-created").
        data: Encoded event payload.
        attributes: String attributes for filtering/routing.

    Returns:
        Pub/Sub message id.

    Raises:
        RuntimeError: If the project is not configured.
        google.api_core.exceptions.GoogleAPICallError: On publish failure.
    """
    publisher = _get_publisher()
    path = publisher.topic_path(_project_id(), topic_name(topic))
    future = publisher.publish(path, data, **attributes)
    return future.result(timeout=PUBLISH_TIMEOUT)


def ensure_topic(topic: str) -> str:
    """Create the topic if it does not exist. Returns its full path."""
    publisher = _get_publisher()
    path = publisher.topic_path(_project_id(), topic_name(topic))
    try:
        publisher.create_topic(request={"name": path})
        logger.info("pubsub topic created", extra={"extra_fields": safe_log_context(topic=path)})
    except gcp_exceptions.AlreadyExists:
        pass
    return path


def ensure_subscription(
    subscriber: pubsub_v1.SubscriberClient,
    topic: str,
    ack_deadline_seconds: int = 60,
) -> str:
    """Create the pull subscription for `topic` if missing. Returns its path."""
    topic_path = ensure_topic(topic)
    path = subscriber.subscription_path(_project_id(), subscription_name(topic))
    try:
        subscriber.create_subscription(
            request={
                "name": path,
                "topic": topic_path,
                "ack_deadline_seconds": ack_deadline_seconds,
            }
        )
        logger.info(
            "pubsub subscription created",
            extra={"extra_fields": safe_log_context(subscription=path)},
        )
    except gcp_exceptions.AlreadyExists:
        pass
    return path
