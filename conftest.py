"""
Shared pytest fixtures.

The test run uses an in-memory SQLite database and fixed settings; the
environment is set before any project module reads it.
"""

import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SUPABASE_JWT_SECRET"] = "test-jwt-secret"
os.environ["TWILIO_ACCOUNT_SID"] = "ACtest00000000000000000000000000"
os.environ["TWILIO_AUTH_TOKEN"] = "test-auth-token"
os.environ["TWILIO_WHATSAPP_FROM"] = "whatsapp:+10000000000"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["WINDOW_SWEEP_ENABLED"] = "false"
os.environ["VALIDATE_TWILIO_SIGNATURE"] = "false"
os.environ.pop("CRON_SECRET", None)
os.environ.pop("SENTRY_DSN", None)

from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest

from database.database import Base, SessionLocal, engine
from database.models import (
    Campaign,
    Contact,
    ContactGroup,
    Conversation,
    MessageTemplate,
    Profile,
    Team,
)
from engage_service.auth import CurrentUser
from engage_service.errors import TwilioAPIError


class FakeTwilioClient:
    """
    Stand-in for TwilioMessagingClient that records sends.

    Numbers listed in `fail_numbers` raise TwilioAPIError with `error_code`.
    """

    def __init__(self, fail_numbers: Optional[List[str]] = None, error_code: int = 30008):
        self.from_number = "whatsapp:+10000000000"
        self.fail_numbers = set(fail_numbers or [])
        self.error_code = error_code
        self.templates: List[Dict[str, Any]] = []
        self.messages: List[Dict[str, Any]] = []
        self.closed = False
        self._counter = 0

    def _next_sid(self) -> str:
        self._counter += 1
        return f"SM{self._counter:032d}"

    def _maybe_fail(self, to: str):
        if to in self.fail_numbers:
            raise TwilioAPIError("Twilio rejected the message", code=self.error_code, status=400)

    async def send_template(self, to, content_sid, content_variables, status_callback=None):
        self._maybe_fail(to)
        sid = self._next_sid()
        self.templates.append({
            "to": to,
            "content_sid": content_sid,
            "content_variables": content_variables,
            "sid": sid,
        })
        return {"sid": sid, "status": "queued"}

    async def send_message(self, to, body, media_url=None):
        self._maybe_fail(to)
        sid = self._next_sid()
        self.messages.append({"to": to, "body": body, "media_url": media_url, "sid": sid})
        return {"sid": sid, "status": "queued"}

    async def close(self):
        self.closed = True


@pytest.fixture
def db():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def fake_twilio():
    return FakeTwilioClient()


@pytest.fixture
def make_profile(db):
    def _make(role="agent", team_id=None, email=None, full_name="Staff Member", is_active=True):
        profile = Profile(
            id=f"user-{len(db.query(Profile).all()) + 1}",
            email=email or f"staff{len(db.query(Profile).all()) + 1}@example.com",
            full_name=full_name,
            role=role,
            team_id=team_id,
            is_active=is_active,
        )
        db.add(profile)
        db.commit()
        return profile

    return _make


@pytest.fixture
def make_team(db):
    def _make(name="Sales", leader_id=None):
        team = Team(name=name, leader_id=leader_id)
        db.add(team)
        db.commit()
        return team

    return _make


@pytest.fixture
def make_group(db):
    def _make(name="VIP"):
        group = ContactGroup(name=name)
        db.add(group)
        db.commit()
        return group

    return _make


@pytest.fixture
def make_contact(db):
    def _make(phone_number, name=None, group=None, email=None, custom_fields=None, created_at=None):
        contact = Contact(
            phone_number=phone_number,
            name=name,
            email=email,
            group_id=group.id if group else None,
            custom_fields=custom_fields or {},
            created_at=created_at or datetime.utcnow(),
        )
        db.add(contact)
        db.commit()
        return contact

    return _make


@pytest.fixture
def make_template(db):
    def _make(body="Hi {{1}}, your code is {{2}}", samples=None, variables=None, sid="HX0001", status="approved"):
        template = MessageTemplate(
            name="promo_code",
            template_id=sid,
            body=body,
            variables=variables if variables is not None else [],
            status=status,
            twilio_metadata={
                "original_body_text": body,
                "variables": samples if samples is not None else {"1": "Customer", "2": "CODE"},
            },
        )
        db.add(template)
        db.commit()
        return template

    return _make


@pytest.fixture
def make_campaign(db):
    def _make(template, groups, status="draft", variables=None, variable_source="manual"):
        campaign = Campaign(
            name="October promo",
            template_id=template.id,
            status=status,
            target_segments=[g.id for g in groups],
            template_variables=variables or {},
            variable_source=variable_source,
        )
        db.add(campaign)
        db.commit()
        return campaign

    return _make


@pytest.fixture
def make_conversation(db):
    def _make(contact, status="open", expires_at=None, assigned_to=None, team_id=None, visibility="active", campaign_id=None):
        conversation = Conversation(
            contact_id=contact.id,
            status=status,
            visibility_status=visibility,
            created_by_campaign=campaign_id,
            assigned_to=assigned_to,
            team_id=team_id,
            conversation_window_expires_at=expires_at,
            is_within_window=bool(expires_at and expires_at > datetime.utcnow()),
        )
        db.add(conversation)
        db.commit()
        return conversation

    return _make


def as_user(profile) -> CurrentUser:
    """CurrentUser for a stored profile."""
    return CurrentUser.model_validate(profile)


@pytest.fixture
def user_for():
    return as_user
