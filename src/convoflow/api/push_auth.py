"""Authentication of Pub/Sub push deliveries to the worker service.

Push subscriptions are created with an OIDC service account. Google signs a
token per delivery whose audience must equal PUSH_OIDC_AUDIENCE and, when
PUSH_OIDC_SERVICE_ACCOUNT is set, whose verified e-mail must be that account.
"""

from __future__ import annotations

import hmac
import os

from fastapi import Request
from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from convoflow.observability.logging import get_logger
from convoflow.observability.redaction import safe_log_context

logger = get_logger(__name__)

# Audience used by docker-compose; enables the X-Internal-Push-Secret header
LOCAL_PUSH_AUDIENCE = "convoflow-push-local"
INTERNAL_SECRET_HEADER = "X-Internal-Push-Secret"


def extract_bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    if scheme != "Bearer" or not token:
        return None
    return token


def _service_account_matches(claims: dict, expected: str) -> bool:
    return claims.get("email") == expected and claims.get("email_verified", True) is True


def verify_push_oidc(token: str) -> bool:
    """True if `token` is a Google-signed push token for this service.

    Fails closed when PUSH_OIDC_AUDIENCE is not configured.
    """
    if not token:
        return False

    audience = os.environ.get("PUSH_OIDC_AUDIENCE")
    if not audience:
        logger.error(
            "push auth misconfigured, rejecting",
            extra={"extra_fields": safe_log_context(missing="PUSH_OIDC_AUDIENCE")},
        )
        return False

    try:
        claims = id_token.verify_oauth2_token(token, google_requests.Request(), audience=audience)
    except ValueError as e:
        logger.warning(
            "push token rejected",
            extra={"extra_fields": safe_log_context(reason=str(e), audience=audience)},
        )
        return False

    service_account = os.environ.get("PUSH_OIDC_SERVICE_ACCOUNT")
    if service_account and not _service_account_matches(claims, service_account):
        logger.warning(
            "push token from unexpected service account",
            extra={"extra_fields": safe_log_context(expected=service_account)},
        )
        return False
    return True


def _local_secret_ok(request: Request) -> bool:
    if os.environ.get("PUSH_OIDC_AUDIENCE", "") != LOCAL_PUSH_AUDIENCE:
        return False
    secret = os.environ.get("INTERNAL_PUSH_SECRET", "")
    provided = request.headers.get(INTERNAL_SECRET_HEADER, "")
    return bool(secret) and hmac.compare_digest(provided, secret)


def verify_push_auth(request: Request) -> bool:
    """Authenticate one push request (OIDC, or the local-only shared secret)."""
    if _local_secret_ok(request):
        return True

    token = extract_bearer_token(request)
    if token is None:
        logger.warning(
            "push request without bearer token",
            extra={"extra_fields": safe_log_context(path=request.url.path)},
        )
        return False
    return verify_push_oidc(token)
