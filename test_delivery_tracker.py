"""
Unit tests for delivery status tracking.

Tests:
- Twilio status mapping and read-receipt resolution
- Forward-only status transitions
- Timestamps set on delivered / read
- Failure codes recorded
- Analytics recomputed with rounded rates
- Campaign completes once nothing is in flight
- Conversation messages share the same updates
- Duplicate callbacks leave timestamps and analytics unchanged
- Completion waits until the sender has attempted every recipient
- Logged callbacks that arrived early are replayed
"""

from datetime import datetime, timedelta

from database.models import Campaign, CampaignAnalytics, CampaignMessage, Message, TwilioWebhookLog
from engage_service.services.delivery_tracker import (
    DeliveryTracker,
    map_status,
    resolve_status,
    round_rate,
    should_apply,
)

NOW = datetime(2026, 10, 18, 9, 0, 0)


def _campaign_with_messages(db, make_group, make_contact, make_template, make_campaign, statuses):
    group = make_group()
    campaign = make_campaign(make_template(), [group], status="running")
    campaign.sent_at = NOW
    rows = []
    for i, status in enumerate(statuses):
        contact = make_contact(f"+6281200000{i:02d}", f"Contact {i}", group=group)
        row = CampaignMessage(
            campaign_id=campaign.id,
            contact_id=contact.id,
            message_sid=f"SM{i:032d}",
            phone_number=contact.phone_number,
            status=status,
        )
        db.add(row)
        rows.append(row)
    db.commit()
    return campaign, rows


def test_map_status():
    assert map_status("queued") == "pending"
    assert map_status("delivered") == "delivered"
    assert map_status("undelivered") == "failed", "undelivered counts as failed"
    assert map_status("accepted") == "pending", "unknown statuses map to pending"


def test_resolve_status_prefers_read_event():
    assert resolve_status("delivered", "READ") == "read"
    assert resolve_status("Sent", None) == "sent"
    assert resolve_status(None, None) is None


def test_should_apply_is_forward_only():
    assert should_apply("sent", "delivered") is True
    assert should_apply("read", "delivered") is False, "read must not regress to delivered"
    assert should_apply("read", "failed") is True, "failed always applies"
    assert should_apply("failed", "delivered") is False
    assert should_apply(None, "sent") is True


def test_round_rate():
    assert round_rate(1, 3) == 33.33
    assert round_rate(2, 3) == 66.67
    assert round_rate(5, 0) == 0.0


def test_delivered_then_read(db, make_group, make_contact, make_template, make_campaign):
    campaign, rows = _campaign_with_messages(db, make_group, make_contact, make_template, make_campaign, ["sent"])
    sid = rows[0].message_sid
    tracker = DeliveryTracker(db)

    result = tracker.apply_status(sid, "delivered", now=NOW)
    assert result == {"status": "delivered", "campaign_id": campaign.id, "conversation_id": None}

    tracker.apply_status(sid, "read", now=NOW.replace(hour=10))

    db.expire_all()
    row = db.query(CampaignMessage).filter(CampaignMessage.message_sid == sid).one()
    assert row.status == "read"
    assert row.delivered_at == NOW, "delivered_at keeps the first delivery time"
    assert row.read_at == NOW.replace(hour=10)


def test_read_backfills_delivered_at(db, make_group, make_contact, make_template, make_campaign):
    _, rows = _campaign_with_messages(db, make_group, make_contact, make_template, make_campaign, ["sent"])

    DeliveryTracker(db).apply_status(rows[0].message_sid, "read", now=NOW)

    db.expire_all()
    row = db.query(CampaignMessage).one()
    assert row.delivered_at == NOW, "read implies delivered"


def test_late_delivered_does_not_regress(db, make_group, make_contact, make_template, make_campaign):
    _, rows = _campaign_with_messages(db, make_group, make_contact, make_template, make_campaign, ["read"])

    DeliveryTracker(db).apply_status(rows[0].message_sid, "delivered", now=NOW)

    db.expire_all()
    assert db.query(CampaignMessage).one().status == "read"


def test_undelivered_records_error(db, make_group, make_contact, make_template, make_campaign):
    _, rows = _campaign_with_messages(db, make_group, make_contact, make_template, make_campaign, ["sent"])

    result = DeliveryTracker(db).apply_status(
        rows[0].message_sid, "undelivered", error_code="63016", error_message="Outside window", now=NOW
    )

    assert result["status"] == "failed"
    db.expire_all()
    row = db.query(CampaignMessage).one()
    assert row.status == "failed"
    assert row.error_code == "63016"
    assert row.error_message == "Outside window"


def test_analytics_and_completion(db, make_group, make_contact, make_template, make_campaign):
    """Campaign completes when the last in-flight message resolves"""
    campaign, rows = _campaign_with_messages(
        db, make_group, make_contact, make_template, make_campaign, ["read", "failed", "sent"]
    )
    tracker = DeliveryTracker(db)

    tracker.apply_status(rows[0].message_sid, "read", now=NOW)
    db.expire_all()
    assert db.query(Campaign).filter(Campaign.id == campaign.id).one().status == "running", \
        "A sent message is still in flight"

    tracker.apply_status(rows[2].message_sid, "delivered", now=NOW)

    db.expire_all()
    analytics = db.query(CampaignAnalytics).filter(CampaignAnalytics.campaign_id == campaign.id).one()
    assert analytics.total_sent == 3
    assert analytics.total_delivered == 2, "delivered counts read messages too"
    assert analytics.total_read == 1
    assert analytics.total_failed == 1
    assert analytics.delivery_rate == 66.67, f"Unexpected delivery rate {analytics.delivery_rate}"
    assert analytics.read_rate == 50.0, f"Unexpected read rate {analytics.read_rate}"

    assert db.query(Campaign).filter(Campaign.id == campaign.id).one().status == "completed"


def test_sent_status_does_not_recompute(db, make_group, make_contact, make_template, make_campaign):
    campaign, rows = _campaign_with_messages(db, make_group, make_contact, make_template, make_campaign, ["pending"])

    DeliveryTracker(db).apply_status(rows[0].message_sid, "sent", now=NOW)

    db.expire_all()
    assert db.query(CampaignAnalytics).count() == 0, "sent callbacks leave analytics alone"


def test_conversation_message_updated(db, make_contact, make_conversation):
    contact = make_contact("+6281234567890", "Ani")
    conversation = make_conversation(contact)
    db.add(Message(
        conversation_id=conversation.id,
        message_sid="SMconversation",
        direction="outbound",
        content="Hello",
        status="sent",
    ))
    db.commit()

    result = DeliveryTracker(db).apply_status("SMconversation", "delivered", now=NOW)

    assert result["conversation_id"] == conversation.id
    assert result["campaign_id"] is None
    db.expire_all()
    message = db.query(Message).filter(Message.message_sid == "SMconversation").one()
    assert message.status == "delivered"
    assert message.delivered_at == NOW


def test_unknown_sid_is_ignored(db):
    result = DeliveryTracker(db).apply_status("SMunknown", "delivered", now=NOW)

    assert result == {"status": "delivered", "campaign_id": None, "conversation_id": None}


def test_duplicate_callbacks_are_idempotent(db, make_group, make_contact, make_template, make_campaign):
    campaign, rows = _campaign_with_messages(
        db, make_group, make_contact, make_template, make_campaign, ["sent", "sent"]
    )
    sid = rows[0].message_sid
    tracker = DeliveryTracker(db)

    tracker.apply_status(sid, "delivered", now=NOW)
    tracker.apply_status(sid, "read", now=NOW + timedelta(hours=1))
    db.expire_all()
    analytics = db.query(CampaignAnalytics).filter(CampaignAnalytics.campaign_id == campaign.id).one()
    before = (analytics.total_sent, analytics.total_delivered, analytics.total_read, analytics.delivery_rate, analytics.read_rate)

    tracker.apply_status(sid, "delivered", now=NOW + timedelta(hours=2))
    tracker.apply_status(sid, "read", now=NOW + timedelta(hours=3))

    db.expire_all()
    row = db.query(CampaignMessage).filter(CampaignMessage.message_sid == sid).one()
    assert row.status == "read"
    assert row.delivered_at == NOW, "Repeated delivered callback must not move delivered_at"
    assert row.read_at == NOW + timedelta(hours=1), "Repeated read callback must not move read_at"
    analytics = db.query(CampaignAnalytics).filter(CampaignAnalytics.campaign_id == campaign.id).one()
    after = (analytics.total_sent, analytics.total_delivered, analytics.total_read, analytics.delivery_rate, analytics.read_rate)
    assert after == before, f"Analytics changed on duplicates: {before} -> {after}"
    assert db.query(CampaignAnalytics).count() == 1


def test_completion_waits_for_send_pass(db, make_group, make_contact, make_template, make_campaign):
    """A callback mid-send must not complete the campaign early"""
    campaign, rows = _campaign_with_messages(db, make_group, make_contact, make_template, make_campaign, ["sent"])
    campaign.sent_at = None
    db.commit()

    DeliveryTracker(db).apply_status(rows[0].message_sid, "delivered", now=NOW)

    db.expire_all()
    assert db.query(Campaign).filter(Campaign.id == campaign.id).one().status == "running"


def test_replay_logged_callbacks(db, make_group, make_contact, make_template, make_campaign):
    campaign, rows = _campaign_with_messages(
        db, make_group, make_contact, make_template, make_campaign, ["sent", "sent"]
    )
    db.add(TwilioWebhookLog(
        webhook_type="status",
        message_sid=rows[0].message_sid,
        payload={"MessageSid": rows[0].message_sid, "MessageStatus": "delivered"},
        received_at=NOW,
    ))
    db.add(TwilioWebhookLog(
        webhook_type="status",
        message_sid=rows[1].message_sid,
        payload={"MessageSid": rows[1].message_sid, "MessageStatus": "undelivered", "ErrorCode": "63016"},
        received_at=NOW,
    ))
    db.add(TwilioWebhookLog(webhook_type="status", message_sid="SMother", payload={"MessageStatus": "read"}))
    db.commit()
    tracker = DeliveryTracker(db)

    assert tracker.replay_logged_callbacks(campaign.id) == 2
    assert tracker.replay_logged_callbacks(campaign.id) == 0, "Second replay changes nothing"

    db.expire_all()
    delivered = db.query(CampaignMessage).filter(CampaignMessage.message_sid == rows[0].message_sid).one()
    assert delivered.status == "delivered"
    assert delivered.delivered_at == NOW
    failed = db.query(CampaignMessage).filter(CampaignMessage.message_sid == rows[1].message_sid).one()
    assert failed.status == "failed"
    assert failed.error_code == "63016"
