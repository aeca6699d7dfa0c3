"""Processor lookup by platform name."""

from __future__ import annotations

from .base import MessageProcessor, ProcessorFactory, UnsupportedPlatformError
from .email import EmailProcessor
from .facebook import FacebookProcessor
from .instagram import InstagramProcessor
from .whatsapp import WhatsAppProcessor

_PROCESSORS: dict[str, ProcessorFactory] = {
    "whatsapp": WhatsAppProcessor,
    "instagram": InstagramProcessor,
    "facebook": FacebookProcessor,
    "email": EmailProcessor,
}

SUPPORTED_PLATFORMS = tuple(_PROCESSORS)


def get_processor(platform: str) -> MessageProcessor:
    """Return the processor for `platform`.

    Raises:
        UnsupportedPlatformError: If no processor is registered for the name.
    """
    factory = _PROCESSORS.get(platform)
    if factory is None:
        raise UnsupportedPlatformError(f"unsupported platform: {platform}")
    return factory()
