"""Public webhook endpoints for all chat platforms.

POST /webhooks/{platform} turns one provider call into at most one
WebhookReceived event. Nothing is persisted here.

Tenant resolution:
- whatsapp: ?key=<integration key>, looked up in organization settings
- other platforms: ?organization_id=<uuid>
"""

from __future__ import annotations

import json
import uuid
from typing import Any

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, PlainTextResponse

from convoflow.api.dependencies import get_ingestion_handler, get_organization_store
from convoflow.bus.client import PublishError
from convoflow.domain.models import OrganizationSettings
from convoflow.observability.correlation import get_correlation_id
from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context
from convoflow.pipeline.collaborators import OrganizationStore
from convoflow.pipeline.ingestion import WebhookIngestionHandler
from convoflow.platforms.base import InvalidPayloadError, UnsupportedPlatformError
from convoflow.platforms.registry import SUPPORTED_PLATFORMS
from convoflow.platforms.signature import MetaSignatureVerifier, SignatureVerificationError

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

logger = get_logger(__name__)


def _error(status_code: int, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": detail})


def _resolve_organization(
    platform: str,
    key: str | None,
    organization_id: str | None,
    organizations: OrganizationStore,
) -> OrganizationSettings | JSONResponse:
    if platform == "whatsapp":
        if not key:
            return _error(400, "missing integration key")
        settings = organizations.find_by_integration_key(key)
    else:
        if not organization_id:
            return _error(400, "missing organization_id")
        try:
            org_uuid = uuid.UUID(organization_id)
        except ValueError:
            return _error(400, "invalid organization_id")
        settings = organizations.get_settings(str(org_uuid))

    if settings is None:
        return _error(404, "organization not found")
    return settings


@router.get("/whatsapp")
def whatsapp_webhook_verify(
    key: str | None = Query(None),
    hub_mode: str | None = Query(None, alias="hub.mode"),
    hub_verify_token: str | None = Query(None, alias="hub.verify_token"),
    hub_challenge: str | None = Query(None, alias="hub.challenge"),
    organizations: OrganizationStore = Depends(get_organization_store),
) -> Response:
    """Meta webhook verification.

    Returns hub.challenge (200) when hub.mode is "subscribe" and the token
    matches the organization's verify token; 403 otherwise.
    """
    settings = organizations.find_by_integration_key(key) if key else None
    expected = settings.verify_token if settings else ""

    if hub_mode == "subscribe" and expected and hub_verify_token == expected:
        logger.info(
            "whatsapp webhook verification successful",
            extra={"extra_fields": safe_log_context(organization_id=settings.organization_id)},
        )
        return PlainTextResponse(hub_challenge or "")

    logger.warning(
        "whatsapp webhook verification failed",
        extra={
            "extra_fields": safe_log_context(
                hub_mode=hub_mode or "missing",
                organization_found=settings is not None,
            )
        },
    )
    return PlainTextResponse("verification failed", status_code=403)


@router.post("/{platform}")
async def receive_webhook(
    platform: str,
    request: Request,
    key: str | None = Query(None),
    organization_id: str | None = Query(None),
    x_hub_signature_256: str | None = Header(None, alias="X-Hub-Signature-256"),
    handler: WebhookIngestionHandler = Depends(get_ingestion_handler),
    organizations: OrganizationStore = Depends(get_organization_store),
) -> Response:
    """Receive a platform webhook and publish WebhookReceived.

    Returns:
        200 {"status": "received"} on success (also when no messages).
        400 unsupported platform, empty/invalid body or bad organization_id.
        401 Meta signature mismatch.
        404 unknown organization.
        500 publish failure, so the provider retries.
    """
    correlation_id = get_correlation_id()
    log_ctx = dict(correlationId=correlation_id, platform=platform)

    if platform not in SUPPORTED_PLATFORMS:
        return _error(400, f"unsupported platform: {platform}")

    body_bytes = await request.body()
    if not body_bytes:
        return _error(400, "empty request body")

    verifier = MetaSignatureVerifier.from_env()
    if verifier.applies_to(platform):
        try:
            verifier.verify(body_bytes, x_hub_signature_256)
        except SignatureVerificationError as e:
            logger.warning(
                "webhook signature verification failed",
                extra={"extra_fields": safe_log_context(**log_ctx, error=str(e))},
            )
            return _error(401, "invalid signature")

    try:
        payload: Any = json.loads(body_bytes)
    except (UnicodeDecodeError, json.JSONDecodeError):
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(**log_ctx)},
        )
        return _error(400, "invalid JSON")

    resolved = await run_in_threadpool(
        _resolve_organization, platform, key, organization_id, organizations
    )
    if isinstance(resolved, JSONResponse):
        return resolved

    try:
        await run_in_threadpool(handler.handle, platform, payload, resolved.organization_id)
    except (InvalidPayloadError, UnsupportedPlatformError) as e:
        logger.warning(
            "webhook rejected",
            extra={"extra_fields": safe_log_context(**log_ctx, error=str(e))},
        )
        return _error(400, str(e))
    except PublishError:
        # Non-2xx makes the provider retry the webhook
        return _error(500, "failed to publish webhook")

    return JSONResponse(status_code=200, content={"status": "received"})
