"""Reply generation with the OpenAI chat completions API."""

from __future__ import annotations

import os

from openai import OpenAI, OpenAIError

from convoflow.domain.models import MessageKind
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context
from convoflow.pipeline.collaborators import ModelInvocationError

logger = get_logger(__name__)

DEFAULT_MODEL = "gpt-4.1-nano"
REQUEST_TIMEOUT = 30.0
MAX_TOKENS = 1000
TEMPERATURE = 0.7

_MEDIA_DESCRIPTIONS = {
    MessageKind.VIDEO: "a video",
    MessageKind.AUDIO: "an audio message",
    MessageKind.DOCUMENT: "a document",
    MessageKind.STICKER: "a sticker",
}


class OpenAIResponder:
    """Responder backed by an OpenAI chat model.

    The assembled context is sent as the system message and the customer's
    text as the user message. Images are attached as image_url parts; other
    media kinds are described in text with their URL.
    """

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL, client: OpenAI | None = None) -> None:
        self.model = model
        self._client = client or OpenAI(api_key=api_key, timeout=REQUEST_TIMEOUT)

    @classmethod
    def from_env(cls) -> "OpenAIResponder":
        """Build from OPENAI_API_KEY / OPENAI_MODEL.

        Raises:
            RuntimeError: If OPENAI_API_KEY is not set.
        """
        api_key = os.environ.get("OPENAI_API_KEY", "")
        if not api_key:
            raise RuntimeError("OPENAI_API_KEY environment variable not set")
        return cls(api_key, os.environ.get("OPENAI_MODEL") or DEFAULT_MODEL)

    def generate(self, context: str, message: str) -> str:
        return self._complete(context, message)

    def generate_with_media(
        self, context: str, message: str, media_kind: int, media_url: str
    ) -> str:
        if media_kind == MessageKind.IMAGE:
            content: object = [
                {"type": "text", "text": message or "The customer sent an image."},
                {"type": "image_url", "image_url": {"url": media_url}},
            ]
        else:
            try:
                description = _MEDIA_DESCRIPTIONS.get(MessageKind(media_kind), "a file")
            except ValueError:
                description = "a file"
            content = f"{message}\n\n[The customer sent {description}: {media_url}]".strip()
        return self._complete(context, content)

    def _complete(self, context: str, user_content: object) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": context},
                    {"role": "user", "content": user_content},
                ],
                max_tokens=MAX_TOKENS,
                temperature=TEMPERATURE,
            )
        except OpenAIError as e:
            logger.error(
                "model invocation failed",
                extra={
                    "extra_fields": safe_log_context(
                        model=self.model, error_type=type(e).__name__
                    )
                },
            )
            raise ModelInvocationError(f"{type(e).__name__}") from e

        if not response.choices:
            raise ModelInvocationError("model returned no choices")
        return (response.choices[0].message.content or "").strip()
