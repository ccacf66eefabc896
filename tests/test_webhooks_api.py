import hashlib
import hmac
import importlib
import json
from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient

from concierge.agents.schemas import ProviderResponse
from conftest import StubProvider


@pytest.fixture
def client(monkeypatch, tmp_path, make_handler):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    provider = StubProvider(always=ProviderResponse(text="¡Hola! Soy el asistente del taller."))
    handler = make_handler(provider)

    import concierge.routers.webhooks as webhooks

    @contextmanager
    def fake_context(tenant_id):
        yield handler

    monkeypatch.setattr(webhooks, "_service_context", fake_context)

    import concierge.main as main

    importlib.reload(main)
    return TestClient(main.app)


def _meta_body(text="hola"):
    payload = {
        "object": "whatsapp_business_account",
        "entry": [
            {
                "changes": [
                    {
                        "value": {
                            "metadata": {"display_phone_number": "15550001111", "phone_number_id": "1234567890"},
                            "contacts": [{"profile": {"name": "Ana"}, "wa_id": "5215512345678"}],
                            "messages": [
                                {"from": "5215512345678", "id": "wamid.1", "type": "text", "text": {"body": text}}
                            ],
                        }
                    }
                ]
            }
        ],
    }
    return json.dumps(payload).encode()


def _signed(body, secret="meta-secret"):
    digest = hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()
    return {"X-Hub-Signature-256": f"sha256={digest}", "Content-Type": "application/json"}


def test_health_and_version(client):
    assert client.get("/api/health").json() == {"status": "ok"}
    assert client.get("/api/version").json()["version"]


def test_meta_webhook_runs_the_pipeline(client, tenant_id, transport):
    body = _meta_body()

    response = client.post(f"/api/webhooks/whatsapp/{tenant_id}/meta", content=body, headers=_signed(body))

    assert response.status_code == 200
    data = response.json()
    assert data["processed"] == 1
    assert data["results"][0]["status"] == "replied"
    assert transport.sent[0]["text"] == "¡Hola! Soy el asistente del taller."


def test_meta_redelivery_is_acknowledged_once(client, tenant_id, transport):
    body = _meta_body()
    url = f"/api/webhooks/whatsapp/{tenant_id}/meta"

    first = client.post(url, content=body, headers=_signed(body))
    again = client.post(url, content=body, headers=_signed(body))

    assert again.status_code == 200
    assert again.json()["results"][0]["status"] == "duplicate"
    assert again.json()["results"][0]["conversation_id"] == first.json()["results"][0]["conversation_id"]
    assert len(transport.sent) == 1


def test_bad_signature_is_rejected(client, tenant_id, transport):
    body = _meta_body()

    response = client.post(
        f"/api/webhooks/whatsapp/{tenant_id}/meta", content=body, headers=_signed(body, "wrong")
    )

    assert response.status_code == 401
    assert transport.sent == []


def test_unknown_channel_and_invalid_json(client, tenant_id):
    assert client.post(f"/api/webhooks/whatsapp/{tenant_id}/telegram", content=b"{}").status_code == 404
    assert client.post(f"/api/webhooks/whatsapp/{tenant_id}/meta", content=b"{not json").status_code == 400


def test_status_only_payload_is_acknowledged(client, tenant_id, transport):
    body = json.dumps({"entry": [{"changes": [{"value": {"statuses": [{"status": "read"}]}}]}]}).encode()

    response = client.post(f"/api/webhooks/whatsapp/{tenant_id}/meta", content=body, headers=_signed(body))

    assert response.status_code == 200
    assert response.json() == {"processed": 0, "results": []}
    assert transport.sent == []


def test_twilio_form_webhook(client, tenant_id, agent_repo, transport):
    agent_repo.channels[tenant_id] = agent_repo.channels[tenant_id].model_copy(update={"webhook_secret": None})

    response = client.post(
        f"/api/webhooks/whatsapp/{tenant_id}/twilio",
        data={"From": "whatsapp:+5215512345678", "To": "whatsapp:+14155238886", "Body": "hola", "MessageSid": "SM1"},
    )

    assert response.status_code == 200
    assert response.json()["results"][0]["status"] == "replied"
    assert transport.sent[0]["to"] == "+5215512345678"


def test_meta_verification_handshake(client, tenant_id):
    ok = client.get(
        f"/api/webhooks/whatsapp/{tenant_id}/meta",
        params={"hub.mode": "subscribe", "hub.verify_token": "verify-me", "hub.challenge": "12345"},
    )
    denied = client.get(
        f"/api/webhooks/whatsapp/{tenant_id}/meta",
        params={"hub.mode": "subscribe", "hub.verify_token": "nope", "hub.challenge": "12345"},
    )

    assert ok.status_code == 200
    assert ok.text == "12345"
    assert denied.status_code == 403
