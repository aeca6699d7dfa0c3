"""Pub/Sub message decoding shared by push endpoints and pull subscribers."""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class PushMessage(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    data: str = ""
    attributes: dict[str, str] = Field(default_factory=dict)
    message_id: str = Field(default="", alias="messageId")


class PushEnvelope(BaseModel):
    """Body of a Pub/Sub push request."""

    model_config = ConfigDict(extra="ignore")

    message: PushMessage
    subscription: str = ""


def decode_event_data(data: bytes) -> dict[str, Any]:
    """Decode a message body into an event dict.

    Raises:
        ValueError: If the body is not a JSON object.
    """
    try:
        decoded = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError("message data is not valid json") from e
    if not isinstance(decoded, dict):
        raise ValueError("message data must be a json object")
    return decoded


def decode_push_data(message: PushMessage) -> dict[str, Any]:
    """Decode the base64 `data` field of a push message."""
    try:
        raw = base64.b64decode(message.data, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError("message data is not valid base64") from e
    return decode_event_data(raw)
