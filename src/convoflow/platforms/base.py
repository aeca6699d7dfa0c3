"""Processor contract shared by every platform."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Iterator, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError

from convoflow.events.contracts import WebhookMessage
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

logger = get_logger(__name__)

FragmentT = TypeVar("FragmentT", bound=BaseModel)


class InvalidPayloadError(Exception):
    """Raised when a webhook payload has an invalid shape."""

    pass


class UnsupportedPlatformError(Exception):
    """Raised when no processor is registered for a platform name."""

    pass


class Fragment(BaseModel):
    """Base for tolerant payload fragments: unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


def iter_dicts(value: Any) -> Iterator[dict[str, Any]]:
    """Yield the dict items of `value` if it is a list; skip anything else."""
    if not isinstance(value, list):
        return
    for item in value:
        if isinstance(item, dict):
            yield item


def decode_fragments(
    items: Any,
    model: type[FragmentT],
    platform: str,
) -> Iterator[FragmentT]:
    """Validate each dict in `items` against `model`, skipping bad fragments."""
    for raw in iter_dicts(items):
        try:
            yield model.model_validate(raw)
        except ValidationError as e:
            logger.debug(
                "skipping malformed message fragment",
                extra={
                    "extra_fields": safe_log_context(
                        platform=platform,
                        fragment=model.__name__,
                        error_count=e.error_count(),
                    )
                },
            )


class MessageProcessor(ABC):
    """Converts one platform's webhook payload into WebhookMessage descriptors."""

    platform: str = ""

    @abstractmethod
    def get_channel_id(self) -> int:
        """Channel (medium) id used for conversations on this platform."""

    @abstractmethod
    def validate_payload(self, payload: dict[str, Any]) -> None:
        """Raise InvalidPayloadError if the payload is not processable."""

    @abstractmethod
    def extract_messages(self, payload: dict[str, Any]) -> list[WebhookMessage]:
        """Extract every valid message; malformed fragments are skipped."""


ProcessorFactory = Callable[[], MessageProcessor]
