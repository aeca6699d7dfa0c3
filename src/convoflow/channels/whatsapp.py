"""Outbound WhatsApp messaging via the Meta Cloud API.

Security: NEVER log recipient numbers or message text. Only hashes and lengths.
"""

from __future__ import annotations

import json
import os
import time
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import Any

from convoflow.observability.correlation import get_correlation_id
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import hash_identifier, safe_log_context

logger = get_logger(__name__)

HTTP_TIMEOUT = 10

MAX_RETRIES = 1
RETRY_DELAY = 0.2

DEFAULT_GRAPH_API_VERSION = "v22.0"
GRAPH_BASE_URL = "https://graph.facebook.com"


@dataclass(frozen=True)
class WhatsAppConfig:
    phone_number_id: str
    access_token: str
    api_version: str = DEFAULT_GRAPH_API_VERSION

    @classmethod
    def from_env(cls) -> "WhatsAppConfig":
        """Load config from WHATSAPP_PHONE_NUMBER_ID / WHATSAPP_ACCESS_TOKEN.

        Raises:
            RuntimeError: If either variable is missing.
        """
        phone_number_id = os.environ.get("WHATSAPP_PHONE_NUMBER_ID", "")
        access_token = os.environ.get("WHATSAPP_ACCESS_TOKEN", "")
        if not phone_number_id or not access_token:
            raise RuntimeError(
                "Missing WhatsApp config: WHATSAPP_PHONE_NUMBER_ID and "
                "WHATSAPP_ACCESS_TOKEN required"
            )
        return cls(
            phone_number_id=phone_number_id,
            access_token=access_token,
            api_version=os.environ.get("META_GRAPH_API_VERSION", DEFAULT_GRAPH_API_VERSION),
        )


def _do_request(url: str, data: bytes, headers: dict[str, str]) -> dict[str, Any]:
    """Execute HTTP POST request. Raises on error."""
    req = urllib.request.Request(url, data=data, headers=headers, method="POST")
    with urllib.request.urlopen(req, timeout=HTTP_TIMEOUT) as resp:
        return json.loads(resp.read().decode())


class WhatsAppSender:
    """ChannelSender for WhatsApp (text messages and typing indicator)."""

    def __init__(self, config: WhatsAppConfig) -> None:
        self._config = config

    @property
    def messages_url(self) -> str:
        return (
            f"{GRAPH_BASE_URL}/{self._config.api_version}/"
            f"{self._config.phone_number_id}/messages"
        )

    def send_text(self, to: str, text: str) -> None:
        """Send a text message.

        Raises:
            urllib.error.URLError: On network/HTTP errors after retry.
        """
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": to,
            "type": "text",
            "text": {"preview_url": True, "body": text},
        }
        log_ctx = safe_log_context(
            correlationId=get_correlation_id(),
            to_hash=hash_identifier(to),
            text_len=len(text),
        )
        self._post(payload, log_ctx)

    def send_typing_indicator(self, message_id: str) -> None:
        """Mark the inbound message read and show the typing indicator."""
        if not message_id:
            return
        payload = {
            "messaging_product": "whatsapp",
            "status": "read",
            "message_id": message_id,
            "typing_indicator": {"type": "text"},
        }
        self._post(payload, safe_log_context(correlationId=get_correlation_id(), kind="typing"))

    def _post(self, payload: dict[str, Any], log_ctx: dict[str, str]) -> None:
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._config.access_token}",
        }
        data = json.dumps(payload).encode("utf-8")

        for attempt in range(MAX_RETRIES + 1):
            try:
                _do_request(self.messages_url, data, headers)
                logger.info(
                    "whatsapp request sent",
                    extra={"extra_fields": {**log_ctx, "attempt": str(attempt)}},
                )
                return
            except (urllib.error.URLError, TimeoutError) as e:
                # HTTPError is a URLError; only 5xx and network errors are retried
                is_5xx = isinstance(e, urllib.error.HTTPError) and 500 <= e.code < 600
                is_network = not isinstance(e, urllib.error.HTTPError)

                if attempt < MAX_RETRIES and (is_5xx or is_network):
                    logger.warning(
                        "whatsapp request failed, retrying",
                        extra={
                            "extra_fields": {
                                **log_ctx,
                                "attempt": str(attempt),
                                "error_type": type(e).__name__,
                            }
                        },
                    )
                    time.sleep(RETRY_DELAY)
                    continue

                logger.error(
                    "whatsapp request failed",
                    extra={
                        "extra_fields": {
                            **log_ctx,
                            "attempt": str(attempt),
                            "error_type": type(e).__name__,
                        }
                    },
                )
                raise
