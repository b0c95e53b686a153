"""
Unit tests for the shared inbox.

Tests:
- Role scoping (agent, leader, general manager)
- Dormant campaign threads hidden by default
- Replies inside the window are sent and stored
- Unassigned threads are claimed by the replying agent
- Replies outside the window or on closed threads are blocked
- Assignment updates
"""

from datetime import datetime, timedelta

import pytest

from database.models import Conversation, Message
from engage_service.errors import ConversationClosedError, WindowExpiredError
from engage_service.models import ConversationUpdateRequest, SendMessageRequest
from engage_service.services.conversation_service import ConversationService
from conftest import FakeTwilioClient, as_user

NOW = datetime(2026, 10, 18, 10, 0, 0)


def _ids(response):
    return {c.id for c in response.conversations}


def test_agent_sees_own_and_unassigned(db, make_profile, make_contact, make_conversation):
    me = make_profile(role="agent")
    other = make_profile(role="agent")
    mine = make_conversation(make_contact("+6281000000001"), assigned_to=me.id)
    unassigned = make_conversation(make_contact("+6281000000002"))
    make_conversation(make_contact("+6281000000003"), assigned_to=other.id)

    inbox = ConversationService(db).get_inbox(as_user(me))

    assert _ids(inbox) == {mine.id, unassigned.id}, "Agents must not see colleagues' threads"


def test_leader_sees_team(db, make_profile, make_team, make_contact, make_conversation):
    team = make_team()
    leader = make_profile(role="leader", team_id=team.id)
    member = make_profile(role="agent", team_id=team.id)
    outsider = make_profile(role="agent")
    by_member = make_conversation(make_contact("+6281000000001"), assigned_to=member.id)
    by_team = make_conversation(make_contact("+6281000000002"), team_id=team.id, assigned_to=outsider.id)
    make_conversation(make_contact("+6281000000003"), assigned_to=outsider.id)

    inbox = ConversationService(db).get_inbox(as_user(leader))

    assert _ids(inbox) == {by_member.id, by_team.id}


def test_general_manager_sees_everything(db, make_profile, make_contact, make_conversation):
    manager = make_profile(role="general_manager")
    agent = make_profile(role="agent")
    make_conversation(make_contact("+6281000000001"), assigned_to=agent.id)
    make_conversation(make_contact("+6281000000002"))

    assert ConversationService(db).get_inbox(as_user(manager)).total == 2


def test_dormant_hidden_by_default(db, make_profile, make_contact, make_conversation):
    admin = make_profile(role="admin")
    make_conversation(make_contact("+6281000000001"), visibility="dormant")
    active = make_conversation(make_contact("+6281000000002"))
    service = ConversationService(db)

    assert _ids(service.get_inbox(as_user(admin))) == {active.id}
    assert service.get_inbox(as_user(admin), include_dormant=True).total == 2


@pytest.mark.asyncio
async def test_reply_inside_window(db, make_profile, make_contact, make_conversation):
    agent = make_profile(role="agent", full_name="Sinta")
    conversation = make_conversation(make_contact("+6281234567890", "Ani"), expires_at=NOW + timedelta(hours=3))
    client = FakeTwilioClient()

    message = await ConversationService(db, client).send_message(
        as_user(agent), conversation.id, SendMessageRequest(message="Halo Ani!"), now=NOW
    )

    assert client.messages[0]["to"] == "+6281234567890"
    assert client.messages[0]["body"] == "Halo Ani!"
    assert message.direction.value == "outbound"
    assert message.sent_by_name == "Sinta"
    assert message.status.value == "sent"

    db.expire_all()
    stored = db.query(Message).filter(Message.id == message.id).one()
    assert stored.from_number == client.from_number
    assert stored.to_number == "whatsapp:+6281234567890"
    claimed = db.query(Conversation).filter(Conversation.id == conversation.id).one()
    assert claimed.assigned_to == agent.id, "Unassigned thread is claimed by the sender"


@pytest.mark.asyncio
async def test_reply_with_media(db, make_profile, make_contact, make_conversation):
    agent = make_profile(role="agent")
    conversation = make_conversation(make_contact("+6281234567890"), expires_at=NOW + timedelta(hours=3))
    client = FakeTwilioClient()

    message = await ConversationService(db, client).send_message(
        as_user(agent),
        conversation.id,
        SendMessageRequest(message="Brochure", message_type="document", media_url="https://cdn.example.com/b.pdf"),
        now=NOW,
    )

    assert client.messages[0]["media_url"] == "https://cdn.example.com/b.pdf"
    assert message.media_content_type == "application/pdf"


@pytest.mark.asyncio
async def test_reply_outside_window_blocked(db, make_profile, make_contact, make_conversation):
    agent = make_profile(role="agent")
    conversation = make_conversation(make_contact("+6281234567890"), expires_at=NOW - timedelta(minutes=1))
    client = FakeTwilioClient()

    with pytest.raises(WindowExpiredError):
        await ConversationService(db, client).send_message(
            as_user(agent), conversation.id, SendMessageRequest(message="Hi"), now=NOW
        )

    assert client.messages == [], "Nothing reaches the gateway outside the window"


@pytest.mark.asyncio
async def test_reply_on_closed_thread_blocked(db, make_profile, make_contact, make_conversation):
    agent = make_profile(role="agent")
    conversation = make_conversation(
        make_contact("+6281234567890"), status="closed", expires_at=NOW + timedelta(hours=1)
    )

    with pytest.raises(ConversationClosedError):
        await ConversationService(db, FakeTwilioClient()).send_message(
            as_user(agent), conversation.id, SendMessageRequest(message="Hi"), now=NOW
        )


@pytest.mark.asyncio
async def test_reply_to_foreign_thread_not_found(db, make_profile, make_contact, make_conversation):
    agent = make_profile(role="agent")
    other = make_profile(role="agent")
    conversation = make_conversation(
        make_contact("+6281234567890"), assigned_to=other.id, expires_at=NOW + timedelta(hours=1)
    )

    result = await ConversationService(db, FakeTwilioClient()).send_message(
        as_user(agent), conversation.id, SendMessageRequest(message="Hi"), now=NOW
    )

    assert result is None


def test_assign_conversation(db, make_profile, make_team, make_contact, make_conversation):
    team = make_team()
    admin = make_profile(role="admin")
    agent = make_profile(role="agent", team_id=team.id)
    conversation = make_conversation(make_contact("+6281234567890"))
    service = ConversationService(db)

    updated = service.update_conversation(
        as_user(admin), conversation.id, ConversationUpdateRequest(assigned_to=agent.id, priority="high")
    )

    assert updated.assigned_to == agent.id
    assert updated.priority.value == "high"
    db.expire_all()
    assert db.query(Conversation).filter(Conversation.id == conversation.id).one().team_id == team.id

    with pytest.raises(ValueError, match="Assignee not found"):
        service.update_conversation(as_user(admin), conversation.id, ConversationUpdateRequest(assigned_to="ghost"))
