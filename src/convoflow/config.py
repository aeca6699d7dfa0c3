"""Pipeline tuning knobs loaded from the environment.

Connection settings (DATABASE_URL, WHATSAPP_ACCESS_TOKEN, ...) are read at the
point of use. This module only covers the knobs that shape pipeline behavior.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

logger = get_logger(__name__)

_TRUE_VALUES = ("1", "true", "yes", "on")


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(
            "invalid integer setting, using default",
            extra={"extra_fields": safe_log_context(setting=name, default=default)},
        )
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(
            "invalid number setting, using default",
            extra={"extra_fields": safe_log_context(setting=name, default=default)},
        )
        return default


@dataclass(frozen=True)
class PipelineSettings:
    """Behavior knobs shared by the pipeline workers.

    Attributes:
        enable_multi_message: Split long replies into several outbound messages.
        max_chunk_length: Upper bound (characters) for one outbound chunk.
        max_chunks_per_response: Chunks beyond this count are dropped.
        chunk_delay_seconds: Pause before each chunk of a multi-part reply.
        max_inbound_word_count: Inbound messages above this get the canned reply.
        enable_typing_indicator: Send a typing signal before generating.
        cache_ttl_seconds: TTL shared by the prompt and context caches.
        history_limit: Number of past messages rendered into the context.
        memory_update_threshold: Contact memory is refreshed every N messages.
        memory_update_timeout_seconds: Deadline for one background memory update.
    """

    enable_multi_message: bool = True
    max_chunk_length: int = 1000
    max_chunks_per_response: int = 5
    chunk_delay_seconds: float = 1.0
    max_inbound_word_count: int = 500
    enable_typing_indicator: bool = True
    cache_ttl_seconds: float = 900.0
    history_limit: int = 10
    memory_update_threshold: int = 5
    memory_update_timeout_seconds: float = 30.0

    @classmethod
    def from_env(cls) -> "PipelineSettings":
        """Build settings from environment variables, falling back to defaults."""
        defaults = cls()
        return cls(
            enable_multi_message=_env_bool(
                "ENABLE_MULTI_MESSAGE", defaults.enable_multi_message
            ),
            max_chunk_length=_env_int("MESSAGE_CHUNK_LENGTH", defaults.max_chunk_length),
            max_chunks_per_response=_env_int(
                "MAX_MESSAGES_PER_RESPONSE", defaults.max_chunks_per_response
            ),
            chunk_delay_seconds=_env_float(
                "MESSAGE_DELAY_SECONDS", defaults.chunk_delay_seconds
            ),
            max_inbound_word_count=_env_int(
                "MAX_MESSAGE_WORD_COUNT", defaults.max_inbound_word_count
            ),
            enable_typing_indicator=_env_bool(
                "ENABLE_TYPING_INDICATORS", defaults.enable_typing_indicator
            ),
            cache_ttl_seconds=_env_float("CACHE_TTL_SECONDS", defaults.cache_ttl_seconds),
            history_limit=_env_int("HISTORY_LIMIT", defaults.history_limit),
            memory_update_threshold=_env_int(
                "MEMORY_UPDATE_THRESHOLD", defaults.memory_update_threshold
            ),
            memory_update_timeout_seconds=_env_float(
                "MEMORY_UPDATE_TIMEOUT_SECONDS", defaults.memory_update_timeout_seconds
            ),
        )
