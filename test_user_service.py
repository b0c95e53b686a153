"""
Unit tests for staff accounts and media uploads.

Tests:
- Creating a user creates the auth user and an agent/leader profile
- Duplicate emails rejected before calling the auth API
- Auth user removed again when the profile insert fails
- Self-delete and self password reset refused
- First-login profile setup
- Upload validation and storage path
"""

import json
from datetime import datetime

import httpx
import pytest

from database.models import Profile
from engage_service.clients.supabase_admin import SupabaseAdminClient, SupabaseAdminError
from engage_service.models import ProfileSetupRequest, UserCreate
from engage_service.services.media_service import MediaService, build_upload_path, validate_upload
from engage_service.services.user_service import UserService
from conftest import as_user


class AuthApi:
    """Records calls to the hosted auth admin API."""

    def __init__(self, create_status=200):
        self.calls = []
        self.create_status = create_status

    def __call__(self, request: httpx.Request):
        self.calls.append((request.method, request.url.path))
        if request.method == "POST" and request.url.path == "/auth/v1/admin/users":
            if self.create_status != 200:
                return httpx.Response(self.create_status, json={"msg": "Email rate limit exceeded"})
            body = json.loads(request.content)
            return httpx.Response(200, json={"id": "auth-user-1", "email": body["email"]})
        if request.url.path.startswith("/storage/v1/object/"):
            return httpx.Response(200, json={"Key": request.url.path})
        return httpx.Response(200, json={})


def _admin(api):
    return SupabaseAdminClient(
        url="https://project.example.co",
        service_role_key="service-role",
        transport=httpx.MockTransport(api),
    )


@pytest.mark.asyncio
async def test_create_user(db, make_team):
    team = make_team()
    api = AuthApi()

    profile = await UserService(db, _admin(api)).create_user(UserCreate(
        email="new.agent@example.com", password="secret1", full_name="New Agent", team_id=team.id,
    ))

    assert profile.id == "auth-user-1"
    assert profile.role.value == "agent"
    assert profile.team_name == "Sales"
    assert "view_conversations" in profile.permissions
    assert api.calls == [("POST", "/auth/v1/admin/users")]


@pytest.mark.asyncio
async def test_create_user_duplicate_email(db, make_profile):
    make_profile(email="taken@example.com")
    api = AuthApi()

    with pytest.raises(ValueError, match="already exists"):
        await UserService(db, _admin(api)).create_user(UserCreate(
            email="Taken@example.com", password="secret1", full_name="Someone",
        ))

    assert api.calls == [], "Auth API must not be called for a taken email"


@pytest.mark.asyncio
async def test_create_user_auth_error(db):
    with pytest.raises(SupabaseAdminError, match="rate limit"):
        await UserService(db, _admin(AuthApi(create_status=429))).create_user(UserCreate(
            email="x@example.com", password="secret1", full_name="Someone",
        ))


@pytest.mark.asyncio
async def test_profile_failure_removes_auth_user(db, make_profile):
    # The auth user id collides with an existing profile, so the insert fails
    make_profile()
    existing = db.query(Profile).one()

    class CollidingApi(AuthApi):
        def __call__(self, request):
            if request.method == "POST":
                self.calls.append((request.method, request.url.path))
                return httpx.Response(200, json={"id": existing.id, "email": "other@example.com"})
            return super().__call__(request)

    api = CollidingApi()
    with pytest.raises(Exception):
        await UserService(db, _admin(api)).create_user(UserCreate(
            email="other@example.com", password="secret1", full_name="Other Person",
        ))

    assert ("DELETE", f"/auth/v1/admin/users/{existing.id}") in api.calls, "Orphaned auth user should be deleted"


@pytest.mark.asyncio
async def test_cannot_delete_or_reset_self(db, make_profile):
    admin = make_profile(role="admin")
    service = UserService(db, _admin(AuthApi()))

    with pytest.raises(ValueError, match="own account"):
        await service.delete_user(admin.id, admin.id)
    with pytest.raises(ValueError, match="own password"):
        await service.reset_password(admin.id, admin.id, "newpass1")


@pytest.mark.asyncio
async def test_delete_user(db, make_profile):
    admin = make_profile(role="admin")
    agent = make_profile(role="agent")
    api = AuthApi()

    assert await UserService(db, _admin(api)).delete_user(admin.id, agent.id) is True

    assert ("DELETE", f"/auth/v1/admin/users/{agent.id}") in api.calls
    db.expire_all()
    assert db.query(Profile).filter(Profile.id == agent.id).first() is None


def test_setup_profile_creates_agent(db):
    profile = UserService(db).setup_profile("auth-9", "first@example.com", ProfileSetupRequest(full_name="First Login"))

    assert profile.role.value == "agent"
    assert profile.full_name == "First Login"
    assert profile.email == "first@example.com"


def test_validate_upload():
    validate_upload("photo.jpg", "image/jpeg", 1024)

    with pytest.raises(ValueError, match="empty"):
        validate_upload("photo.jpg", "image/jpeg", 0)
    with pytest.raises(ValueError, match="20MB"):
        validate_upload("movie.mp4", "video/mp4", 21 * 1024 * 1024)
    with pytest.raises(ValueError, match="not supported"):
        validate_upload("tool.exe", "application/x-msdownload", 10)


def test_build_upload_path():
    path = build_upload_path("conv-1", "Brochure.PDF", now=datetime(2026, 10, 18, 0, 0, 0))

    assert path.startswith("conversations/conv-1/media/")
    assert path.endswith(".pdf")


@pytest.mark.asyncio
async def test_upload_media(db, make_profile, make_contact, make_conversation):
    agent = make_profile(role="agent")
    conversation = make_conversation(make_contact("+6281234567890"))
    closed = make_conversation(make_contact("+6281234567891"), status="closed")
    storage = _admin(AuthApi())
    service = MediaService(db, storage=storage)

    result = await service.upload_media(as_user(agent), conversation.id, "a.png", "image/png", b"\x89PNG")

    assert result.url.startswith("https://project.example.co/storage/v1/object/public/chat-media/conversations/")
    assert result.size == 4

    with pytest.raises(ValueError, match="closed conversation"):
        await service.upload_media(as_user(agent), closed.id, "a.png", "image/png", b"\x89PNG")
