"""Pub/Sub push endpoints (APP_ROLE=worker).

One endpoint per topic. 204 acknowledges the message; any 5xx makes Pub/Sub
redeliver it.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from convoflow.api.dependencies import get_pipeline
from convoflow.api.push_auth import verify_push_auth
from convoflow.bus.envelope import PushEnvelope, decode_push_data
from convoflow.events.contracts import ALL_TOPICS
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context
from convoflow.pipeline.runtime import PERMANENT_ERRORS, Pipeline

router = APIRouter(prefix="/pubsub", tags=["worker"])

logger = get_logger(__name__)


@router.post("/{topic}")
async def handle_push(
    topic: str,
    request: Request,
    pipeline: Pipeline = Depends(get_pipeline),
) -> Response:
    if not verify_push_auth(request):
        return Response(status_code=401, content="unauthorized")

    if topic not in ALL_TOPICS:
        return Response(status_code=404, content="unknown topic")

    try:
        envelope = PushEnvelope.model_validate(await request.json())
        payload = decode_push_data(envelope.message)
    except (ValidationError, ValueError) as e:
        logger.warning(
            "malformed push message acked",
            extra={"extra_fields": safe_log_context(topic=topic, error=str(e))},
        )
        return Response(status_code=204)

    log_ctx = dict(topic=topic, message_id=envelope.message.message_id)
    try:
        await run_in_threadpool(pipeline.handle, topic, payload)
    except PERMANENT_ERRORS as e:
        logger.warning(
            "push message dropped",
            extra={
                "extra_fields": safe_log_context(
                    **log_ctx, error_type=type(e).__name__, error=str(e)
                )
            },
        )
        return Response(status_code=204)
    except Exception as e:
        logger.exception(
            "push handler failed",
            extra={"extra_fields": safe_log_context(**log_ctx, error_type=type(e).__name__)},
        )
        return Response(status_code=500, content="handler failed")

    return Response(status_code=204)
