"""
API tests through the FastAPI app.

Tests:
- Health and service info
- Missing / invalid tokens rejected
- Permission checks (agent cannot create campaigns, users are admin only)
- Window errors surface as {error, code, details}
- Twilio errors map to user-facing status codes
- Campaign send endpoint
- Webhooks answer plain "OK" and honour signature validation
- Cron auto-close, guarded by the cron secret when one is set
- Profile endpoint lists permissions
- Media proxy refuses non-Twilio URLs
"""

from datetime import datetime, timedelta
from types import SimpleNamespace

import jwt
import pytest
from fastapi.testclient import TestClient

from database.models import CampaignMessage, Conversation, Message
from engage_service.clients.twilio_messaging import compute_twilio_signature
from engage_service.config import get_engage_settings
from engage_service.main import app
from engage_service.webhooks.twilio_webhook import get_webhook_handler
from conftest import FakeTwilioClient


@pytest.fixture
def client():
    return TestClient(app)


def auth_headers(profile):
    token = jwt.encode(
        {"sub": profile.id, "email": profile.email, "aud": "authenticated"},
        "test-jwt-secret",
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
    assert response.json()["twilio_configured"] is True


def test_health_reports_supabase_admin(client, monkeypatch):
    settings = get_engage_settings().model_copy(
        update={"supabase_url": "https://project.example.co", "supabase_service_role_key": "service-role"}
    )
    monkeypatch.setattr("engage_service.config.get_engage_settings", lambda: settings)

    assert client.get("/health").json()["supabase_admin_configured"] is True


def test_missing_token(client, db):
    response = client.get("/api/conversations")

    assert response.status_code == 401, f"Expected 401, got {response.status_code}"


def test_invalid_token(client, db):
    response = client.get("/api/conversations", headers={"Authorization": "Bearer not-a-jwt"})

    assert response.status_code == 401


def test_unknown_profile(client, db):
    ghost = SimpleNamespace(id="ghost", email="ghost@example.com")

    response = client.get("/api/conversations", headers=auth_headers(ghost))

    assert response.status_code == 401
    assert response.json()["detail"] == "Profile not found"


def test_disabled_account(client, db, make_profile):
    disabled = make_profile(is_active=False)

    response = client.get("/api/conversations", headers=auth_headers(disabled))

    assert response.status_code == 403


def test_agent_cannot_create_campaign(client, db, make_profile, make_group, make_template):
    agent = make_profile(role="agent")

    response = client.post(
        "/api/campaigns",
        json={"name": "Promo", "template_id": make_template().id, "target_segments": [make_group().id]},
        headers=auth_headers(agent),
    )

    assert response.status_code == 403, f"Expected 403, got {response.status_code}"


def test_leader_creates_campaign(client, db, make_profile, make_group, make_template):
    leader = make_profile(role="leader")

    response = client.post(
        "/api/campaigns",
        json={"name": "Promo", "template_id": make_template().id, "target_segments": [make_group().id]},
        headers=auth_headers(leader),
    )

    assert response.status_code == 201, response.text
    assert response.json()["status"] == "draft"


def test_users_admin_only(client, db, make_profile):
    manager = make_profile(role="general_manager")
    admin = make_profile(role="admin")

    assert client.get("/api/dashboard/users", headers=auth_headers(manager)).status_code == 403
    response = client.get("/api/dashboard/users", headers=auth_headers(admin))
    assert response.status_code == 200
    assert response.json()["total"] == 2


def test_profile_lists_permissions(client, db, make_profile):
    agent = make_profile(role="agent", full_name="Sinta")

    response = client.get("/api/dashboard/profile", headers=auth_headers(agent))

    assert response.status_code == 200
    body = response.json()
    assert body["full_name"] == "Sinta"
    assert "manage_conversations" in body["permissions"]
    assert "manage_campaigns" not in body["permissions"]


def test_send_outside_window(client, db, make_profile, make_contact, make_conversation):
    agent = make_profile(role="agent")
    conversation = make_conversation(
        make_contact("+6281234567890"), expires_at=datetime.utcnow() - timedelta(hours=1)
    )

    response = client.post(
        f"/api/conversations/{conversation.id}/messages",
        json={"message": "Hello"},
        headers=auth_headers(agent),
    )

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "WINDOW_EXPIRED"
    assert body["details"] == conversation.id


def test_twilio_media_permission_error(client, db, monkeypatch, make_profile, make_contact, make_conversation):
    agent = make_profile(role="agent")
    conversation = make_conversation(
        make_contact("+6281234567890"), expires_at=datetime.utcnow() + timedelta(hours=1)
    )
    monkeypatch.setattr(
        "engage_service.services.conversation_service.TwilioMessagingClient",
        lambda: FakeTwilioClient(fail_numbers=["+6281234567890"], error_code=21408),
    )

    response = client.post(
        f"/api/conversations/{conversation.id}/messages",
        json={"message": "Photo", "message_type": "image", "media_url": "https://cdn.example.com/a.jpg"},
        headers=auth_headers(agent),
    )

    assert response.status_code == 403
    assert response.json()["error"] == "Permission to send media is not enabled for this number"
    assert response.json()["code"] == 21408


def test_send_reply(client, db, monkeypatch, make_profile, make_contact, make_conversation):
    agent = make_profile(role="agent")
    conversation = make_conversation(
        make_contact("+6281234567890"), expires_at=datetime.utcnow() + timedelta(hours=1)
    )
    fake = FakeTwilioClient()
    monkeypatch.setattr("engage_service.services.conversation_service.TwilioMessagingClient", lambda: fake)

    response = client.post(
        f"/api/conversations/{conversation.id}/messages",
        json={"message": "Terima kasih!"},
        headers=auth_headers(agent),
    )

    assert response.status_code == 200, response.text
    assert response.json()["content"] == "Terima kasih!"
    assert fake.closed is True, "Route-created clients are closed after the send"


def test_send_campaign_endpoint(client, db, monkeypatch, make_profile, make_group, make_contact, make_template, make_campaign):
    leader = make_profile(role="leader")
    group = make_group()
    make_contact("+6281000000001", "Ani", group=group)
    make_contact("+6281000000002", "Budi", group=group)
    campaign = make_campaign(make_template(), [group])
    fake = FakeTwilioClient()
    monkeypatch.setattr("engage_service.services.campaign_sender.TwilioMessagingClient", lambda: fake)

    response = client.post(
        f"/api/campaigns/{campaign.id}/send",
        json={"batchSize": 10, "delayBetweenBatches": 100},
        headers=auth_headers(leader),
    )

    assert response.status_code == 200, response.text
    assert response.json()["total_sent"] == 2
    assert len(fake.templates) == 2

    again = client.post(f"/api/campaigns/{campaign.id}/send", headers=auth_headers(leader))
    assert again.status_code == 400, "A running campaign cannot be sent twice"

    missing = client.post("/api/campaigns/nope/send", headers=auth_headers(leader))
    assert missing.status_code == 404


def test_incoming_webhook(client, db):
    response = client.post(
        "/api/webhooks/twilio/incoming",
        data={
            "MessageSid": "SMroute01",
            "From": "whatsapp:+6281234567890",
            "To": "whatsapp:+10000000000",
            "Body": "Halo",
            "NumMedia": "0",
        },
    )

    assert response.status_code == 200
    assert response.text == "OK"
    db.expire_all()
    assert db.query(Message).filter(Message.message_sid == "SMroute01").count() == 1


def test_status_webhook(client, db, make_group, make_contact, make_template, make_campaign):
    group = make_group()
    contact = make_contact("+6281234567890", group=group)
    campaign = make_campaign(make_template(), [group], status="running")
    db.add(CampaignMessage(campaign_id=campaign.id, contact_id=contact.id, message_sid="SMroute02", status="sent"))
    db.commit()

    response = client.post("/api/webhooks/twilio", data={"MessageSid": "SMroute02", "MessageStatus": "read"})

    assert response.text == "OK"
    db.expire_all()
    assert db.query(CampaignMessage).filter(CampaignMessage.message_sid == "SMroute02").one().status == "read"


def test_webhook_signature_enforced(client, db, monkeypatch):
    handler = get_webhook_handler()
    monkeypatch.setattr(handler, "settings", handler.settings.model_copy(update={"validate_twilio_signature": True}))
    params = {"MessageSid": "SMsigned", "MessageStatus": "sent"}

    rejected = client.post("/api/webhooks/twilio", data=params, headers={"X-Twilio-Signature": "bogus"})
    assert rejected.status_code == 403

    signature = compute_twilio_signature(
        "http://localhost:8000/api/webhooks/twilio", params, handler.settings.twilio_auth_token
    )
    accepted = client.post("/api/webhooks/twilio", data=params, headers={"X-Twilio-Signature": signature})
    assert accepted.status_code == 200


def test_webhook_connectivity(client):
    response = client.get("/api/webhooks/twilio?test=connectivity")

    assert response.status_code == 200
    assert response.json()["status"] == "success"


def test_auto_close(client, db, make_contact, make_conversation):
    lapsed = make_conversation(make_contact("+6281000000001"), expires_at=datetime.utcnow() - timedelta(hours=1))
    make_conversation(make_contact("+6281000000002"), expires_at=datetime.utcnow() + timedelta(hours=1))

    response = client.post("/api/conversations/auto-close")

    assert response.status_code == 200
    assert response.json()["closed_count"] == 1
    db.expire_all()
    assert db.query(Conversation).filter(Conversation.id == lapsed.id).one().status == "closed"


def test_media_proxy_refuses_foreign_hosts(client, db, make_profile, make_contact, make_conversation):
    agent = make_profile(role="agent")
    conversation = make_conversation(make_contact("+6281234567890"))
    message = Message(
        conversation_id=conversation.id,
        direction="inbound",
        message_type="image",
        media_url="https://evil.example/steal.jpg",
    )
    db.add(message)
    db.commit()

    response = client.get(f"/api/media/{message.id}", headers=auth_headers(agent))

    assert response.status_code == 400, f"Expected 400, got {response.status_code}"
    assert "not hosted by Twilio" in response.json()["detail"]


def test_auto_close_requires_cron_secret(client, db, monkeypatch):
    settings = get_engage_settings().model_copy(update={"cron_secret": "s3cret"})
    monkeypatch.setattr("engage_service.auth.get_engage_settings", lambda: settings)

    assert client.post("/api/conversations/auto-close").status_code == 401
    wrong = client.post("/api/conversations/auto-close", headers={"Authorization": "Bearer nope"})
    assert wrong.status_code == 401
    right = client.post("/api/conversations/auto-close", headers={"Authorization": "Bearer s3cret"})
    assert right.status_code == 200, right.text
