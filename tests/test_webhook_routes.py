"""Tests for the public webhook endpoints."""

import hashlib
import hmac
import json
from unittest.mock import MagicMock

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from convoflow.api.dependencies import get_ingestion_handler, get_organization_store
from convoflow.api.routes.webhooks import router
from convoflow.bus.client import EventBus, PublishError
from convoflow.pipeline.ingestion import WebhookIngestionHandler

from helpers import ORG_ID, FakeOrganizationStore, whatsapp_payload, whatsapp_text

INTEGRATION_KEY = "int-key-123"
VERIFY_TOKEN = "verify-me"


@pytest.fixture
def organizations():
    store = FakeOrganizationStore()
    store.add(ORG_ID, verify_token=VERIFY_TOKEN, integration_key=INTEGRATION_KEY)
    return store


@pytest.fixture
def bus():
    return EventBus(backend="inline")


def create_test_app(organizations, handler) -> FastAPI:
    """Create test app with only the webhook router."""
    app = FastAPI()
    app.include_router(router)
    app.dependency_overrides[get_organization_store] = lambda: organizations
    app.dependency_overrides[get_ingestion_handler] = lambda: handler
    return app


@pytest.fixture
def client(organizations, bus):
    return TestClient(create_test_app(organizations, WebhookIngestionHandler(bus)))


def _post_json(client, path, payload, headers=None):
    return client.post(
        path,
        content=json.dumps(payload),
        headers={"Content-Type": "application/json", **(headers or {})},
    )


class TestWebhookPost:
    def test_whatsapp_received(self, client, bus):
        """A valid WhatsApp webhook is accepted and published once."""
        response = _post_json(
            client, f"/webhooks/whatsapp?key={INTEGRATION_KEY}", whatsapp_payload(whatsapp_text("hi"))
        )

        assert response.status_code == 200
        assert response.json() == {"status": "received"}
        assert len(bus.get_published()) == 1

    def test_email_with_organization_id(self, client, bus):
        """Non-WhatsApp platforms resolve the tenant by organization_id."""
        response = _post_json(
            client,
            f"/webhooks/email?organization_id={ORG_ID}",
            {"from": "a@example.com", "text": "hello"},
        )

        assert response.status_code == 200
        assert bus.get_published()[0]["payload"]["organization_id"] == ORG_ID

    def test_empty_body(self, client):
        """Empty body is a 400."""
        response = client.post(f"/webhooks/whatsapp?key={INTEGRATION_KEY}", content=b"")
        assert response.status_code == 400

    def test_invalid_json(self, client):
        """Malformed JSON is a 400."""
        response = client.post(
            f"/webhooks/whatsapp?key={INTEGRATION_KEY}",
            content=b"{not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_empty_object(self, client, bus):
        """{} is rejected and nothing is published."""
        response = _post_json(client, f"/webhooks/whatsapp?key={INTEGRATION_KEY}", {})

        assert response.status_code == 400
        assert bus.get_published() == []

    def test_unsupported_platform(self, client):
        """Unknown platforms are a 400."""
        response = _post_json(client, f"/webhooks/telegram?organization_id={ORG_ID}", {"a": 1})
        assert response.status_code == 400

    def test_invalid_organization_uuid(self, client):
        """organization_id must be a UUID."""
        response = _post_json(
            client, "/webhooks/email?organization_id=not-a-uuid", {"from": "a@example.com"}
        )
        assert response.status_code == 400

    def test_unknown_integration_key(self, client):
        """An unknown key is a 404."""
        response = _post_json(
            client, "/webhooks/whatsapp?key=nope", whatsapp_payload(whatsapp_text("hi"))
        )
        assert response.status_code == 404

    def test_unknown_organization(self, client):
        """A well-formed but unknown organization_id is a 404."""
        response = _post_json(
            client,
            "/webhooks/email?organization_id=22222222-2222-2222-2222-222222222222",
            {"from": "a@example.com", "text": "x"},
        )
        assert response.status_code == 404

    def test_status_only_webhook_ok(self, client, bus):
        """Webhooks without messages are acknowledged without publishing."""
        payload = {"entry": [{"changes": [{"value": {"statuses": [{"id": "s"}]}}]}]}
        response = _post_json(client, f"/webhooks/whatsapp?key={INTEGRATION_KEY}", payload)

        assert response.status_code == 200
        assert bus.get_published() == []

    def test_publish_failure_is_500(self, organizations):
        """Bus failures answer 500 so the provider retries."""
        handler = MagicMock()
        handler.handle.side_effect = PublishError("down")
        client = TestClient(create_test_app(organizations, handler))

        response = _post_json(
            client, f"/webhooks/whatsapp?key={INTEGRATION_KEY}", whatsapp_payload(whatsapp_text("hi"))
        )
        assert response.status_code == 500


class TestSignature:
    SECRET = "app-secret"

    def _sign(self, body: bytes) -> str:
        return "sha256=" + hmac.new(self.SECRET.encode(), body, hashlib.sha256).hexdigest()

    def test_valid_signature(self, client, monkeypatch):
        """Correctly signed bodies are accepted."""
        monkeypatch.setenv("META_APP_SECRET", self.SECRET)
        body = json.dumps(whatsapp_payload(whatsapp_text("hi"))).encode()

        response = client.post(
            f"/webhooks/whatsapp?key={INTEGRATION_KEY}",
            content=body,
            headers={"X-Hub-Signature-256": self._sign(body)},
        )
        assert response.status_code == 200

    def test_bad_signature(self, client, monkeypatch, bus):
        """Signature mismatch is a 401 and nothing is published."""
        monkeypatch.setenv("META_APP_SECRET", self.SECRET)
        body = json.dumps(whatsapp_payload(whatsapp_text("hi"))).encode()

        response = client.post(
            f"/webhooks/whatsapp?key={INTEGRATION_KEY}",
            content=body,
            headers={"X-Hub-Signature-256": "sha256=" + "0" * 64},
        )
        assert response.status_code == 401
        assert bus.get_published() == []

    def test_rotated_secret_accepted(self, client, monkeypatch):
        """Either secret of a rotation pair verifies."""
        monkeypatch.setenv("META_APP_SECRET", f"new-secret,{self.SECRET}")
        body = json.dumps(whatsapp_payload(whatsapp_text("hi"))).encode()

        response = client.post(
            f"/webhooks/whatsapp?key={INTEGRATION_KEY}",
            content=body,
            headers={"X-Hub-Signature-256": self._sign(body)},
        )
        assert response.status_code == 200

    def test_email_not_signature_checked(self, client, monkeypatch):
        """E-mail webhooks are not Meta-signed."""
        monkeypatch.setenv("META_APP_SECRET", self.SECRET)
        response = _post_json(
            client, f"/webhooks/email?organization_id={ORG_ID}", {"from": "a@example.com", "text": "x"}
        )
        assert response.status_code == 200


class TestVerification:
    def test_valid_challenge(self, client):
        """Matching verify token echoes the challenge."""
        response = client.get(
            "/webhooks/whatsapp",
            params={
                "key": INTEGRATION_KEY,
                "hub.mode": "subscribe",
                "hub.verify_token": VERIFY_TOKEN,
                "hub.challenge": "12345",
            },
        )
        assert response.status_code == 200
        assert response.text == "12345"

    def test_wrong_token(self, client):
        """Wrong token is a 403."""
        response = client.get(
            "/webhooks/whatsapp",
            params={
                "key": INTEGRATION_KEY,
                "hub.mode": "subscribe",
                "hub.verify_token": "wrong",
                "hub.challenge": "12345",
            },
        )
        assert response.status_code == 403

    def test_unknown_key(self, client):
        """Unknown organization is a 403."""
        response = client.get(
            "/webhooks/whatsapp",
            params={"key": "nope", "hub.mode": "subscribe", "hub.verify_token": VERIFY_TOKEN},
        )
        assert response.status_code == 403
