"""
Unit tests for the Twilio webhook handler.

Tests:
- First message from an unknown number creates contact and conversation
- Redelivered message SIDs are ignored
- Replies reuse the open conversation and activate dormant threads
- Messages after a close start a new conversation
- Inbound media type detection
- Empty payloads are ignored
- Status callbacks reach the delivery tracker
- X-Twilio-Signature verification
"""

from datetime import datetime, timedelta

from database.models import CampaignMessage, Contact, Conversation, Message
from engage_service.clients.twilio_messaging import compute_twilio_signature, verify_twilio_signature
from engage_service.webhooks.twilio_webhook import TwilioWebhookHandler, media_type_for

NOW = datetime(2026, 10, 18, 8, 30, 0)


def _incoming(sid="SMin0001", sender="whatsapp:+6281234567890", body="Halo, ada promo?", **extra):
    payload = {
        "MessageSid": sid,
        "From": sender,
        "To": "whatsapp:+10000000000",
        "Body": body,
        "ProfileName": "Rina",
        "NumMedia": "0",
    }
    payload.update(extra)
    return payload


def test_new_contact_creates_conversation(db):
    result = TwilioWebhookHandler().handle_incoming_message(_incoming(), NOW)

    assert result.success is True
    assert result.event == "incoming"
    assert result.is_new_contact is True

    db.expire_all()
    contact = db.query(Contact).filter(Contact.phone_number == "+6281234567890").one()
    assert contact.name == "Rina", "Profile name becomes the contact name"

    conversation = db.query(Conversation).filter(Conversation.id == result.conversation_id).one()
    assert conversation.contact_id == contact.id
    assert conversation.status == "open"
    assert conversation.conversation_window_expires_at == NOW + timedelta(hours=24)
    assert conversation.is_within_window is True

    message = db.query(Message).filter(Message.id == result.message_id).one()
    assert message.direction == "inbound"
    assert message.message_type == "text"
    assert message.content == "Halo, ada promo?"


def test_duplicate_sid_ignored(db):
    handler = TwilioWebhookHandler()
    first = handler.handle_incoming_message(_incoming(), NOW)
    second = handler.handle_incoming_message(_incoming(), NOW + timedelta(minutes=1))

    assert second.event == "duplicate"
    assert second.message_id == first.message_id
    db.expire_all()
    assert db.query(Message).count() == 1, "Redelivery must not store a second message"


def test_reply_activates_dormant_campaign_thread(db, make_contact, make_conversation):
    contact = make_contact("+6281234567890", "Rina")
    dormant = make_conversation(contact, visibility="dormant")

    result = TwilioWebhookHandler().handle_incoming_message(_incoming(), NOW)

    assert result.conversation_id == dormant.id
    assert result.is_new_contact is False
    db.expire_all()
    conversation = db.query(Conversation).filter(Conversation.id == dormant.id).one()
    assert conversation.visibility_status == "active"
    assert conversation.last_customer_message_at == NOW


def test_closed_conversation_starts_new_thread(db, make_contact, make_conversation):
    contact = make_contact("+6281234567890", "Rina")
    closed = make_conversation(contact, status="closed", expires_at=NOW - timedelta(days=2))

    result = TwilioWebhookHandler().handle_incoming_message(_incoming(), NOW)

    assert result.conversation_id != closed.id, "Closed threads are never reopened"
    db.expire_all()
    assert db.query(Conversation).filter(Conversation.contact_id == contact.id).count() == 2


def test_inbound_media(db):
    payload = _incoming(
        body="",
        NumMedia="1",
        MediaUrl0="https://api.twilio.com/media/ME123",
        MediaContentType0="image/jpeg",
    )

    result = TwilioWebhookHandler().handle_incoming_message(payload, NOW)

    db.expire_all()
    message = db.query(Message).filter(Message.id == result.message_id).one()
    assert message.message_type == "image"
    assert message.media_url == "https://api.twilio.com/media/ME123"
    assert message.media_content_type == "image/jpeg"


def test_media_type_for():
    assert media_type_for("video/mp4").value == "video"
    assert media_type_for("audio/ogg").value == "audio"
    assert media_type_for("application/pdf").value == "document"
    assert media_type_for(None).value == "media"


def test_empty_payloads_ignored(db):
    handler = TwilioWebhookHandler()

    assert handler.handle_incoming_message(_incoming(sender=""), NOW).event == "ignored"
    assert handler.handle_incoming_message(_incoming(body=""), NOW).event == "ignored"
    db.expire_all()
    assert db.query(Contact).count() == 0


def test_status_callback_updates_campaign_message(db, make_group, make_contact, make_template, make_campaign):
    group = make_group()
    contact = make_contact("+6281234567890", "Rina", group=group)
    campaign = make_campaign(make_template(), [group], status="running")
    db.add(CampaignMessage(
        campaign_id=campaign.id,
        contact_id=contact.id,
        message_sid="SMcampaign",
        phone_number=contact.phone_number,
        status="sent",
    ))
    db.commit()

    result = TwilioWebhookHandler().handle_status_callback(
        {"MessageSid": "SMcampaign", "MessageStatus": "delivered"}
    )

    assert result.event == "status"
    assert result.status == "delivered"
    assert result.campaign_id == campaign.id
    db.expire_all()
    assert db.query(CampaignMessage).one().status == "delivered"


def test_status_callback_without_status_ignored(db):
    result = TwilioWebhookHandler().handle_status_callback({"MessageSid": "SMx"})

    assert result.event == "ignored"


def test_signature_verification():
    url = "https://example.com/api/webhooks/twilio"
    params = {"MessageSid": "SM1", "MessageStatus": "sent"}
    signature = compute_twilio_signature(url, params, "secret-token")

    assert verify_twilio_signature(url, params, signature, "secret-token") is True
    assert verify_twilio_signature(url, params, signature, "other-token") is False
    assert verify_twilio_signature(url, params, None, "secret-token") is False


def test_handler_signature_check_toggle():
    handler = TwilioWebhookHandler()
    assert handler.verify_signature("https://x", {}, None) is True, "Validation disabled accepts anything"

    handler.settings = handler.settings.model_copy(update={"validate_twilio_signature": True})
    url = "https://example.com/api/webhooks/twilio/incoming"
    params = {"Body": "hi"}
    good = compute_twilio_signature(url, params, handler.settings.twilio_auth_token)

    assert handler.verify_signature(url, params, good) is True
    assert handler.verify_signature(url, params, "bogus") is False
