"""
User Service - Staff accounts and self-service profiles

Accounts live in two places: the hosted auth user (credentials) and the
local `profiles` row (role, team, display name) sharing the same id.
"""

import logging
from typing import Optional
from datetime import datetime
from sqlalchemy import asc
from sqlalchemy.orm import Session

from database.database import SessionLocal
from database.models import Profile, Team
from ..models import (
    Role,
    ProfileResponse,
    ProfileUpdate,
    ProfileSetupRequest,
    UserCreate,
    UserUpdate,
    UserListResponse,
)
from ..rbac import get_user_permissions
from ..clients.supabase_admin import SupabaseAdminClient

logger = logging.getLogger(__name__)


class UserService:
    """
    Service for staff account management.
    """

    def __init__(self, db: Optional[Session] = None, admin: Optional[SupabaseAdminClient] = None):
        """
        Initialize user service.

        Args:
            db: Optional database session.
            admin: Hosted backend admin client for credential changes
        """
        self._db = db
        self._admin = admin

    def _get_db(self) -> Session:
        """Get or create database session."""
        if self._db:
            return self._db
        return SessionLocal()

    def _close_db(self, db: Session):
        """Close database session if we created it."""
        if not self._db:
            db.close()

    # =========================================================================
    # User management (admin)
    # =========================================================================

    def list_users(self, role: Optional[Role] = None, team_id: Optional[str] = None) -> UserListResponse:
        db = self._get_db()
        try:
            query = db.query(Profile)
            if role:
                query = query.filter(Profile.role == role.value)
            if team_id:
                query = query.filter(Profile.team_id == team_id)

            profiles = query.order_by(asc(Profile.full_name)).all()
            return UserListResponse(
                users=[self._to_response(p) for p in profiles],
                total=len(profiles),
            )

        finally:
            self._close_db(db)

    def get_user(self, user_id: str) -> Optional[ProfileResponse]:
        db = self._get_db()
        try:
            profile = db.query(Profile).filter(Profile.id == user_id).first()
            if not profile:
                return None
            return self._to_response(profile)

        finally:
            self._close_db(db)

    async def create_user(self, data: UserCreate) -> ProfileResponse:
        """
        Create the auth user, then its profile.

        The auth user is removed again if the profile cannot be stored.

        Raises:
            ValueError: email taken or unknown team
            SupabaseAdminError: auth admin API rejected the user
        """
        owns_admin = self._admin is None
        admin = self._admin or SupabaseAdminClient()
        db = self._get_db()
        try:
            if db.query(Profile).filter(Profile.email.ilike(data.email)).first():
                raise ValueError("A user with this email already exists")
            if data.team_id and not db.query(Team.id).filter(Team.id == data.team_id).first():
                raise ValueError("Team not found")

            auth_user = await admin.create_user(data.email, data.password, data.full_name)
            user_id = auth_user["id"]

            try:
                profile = Profile(
                    id=user_id,
                    email=data.email,
                    full_name=data.full_name,
                    role=data.role.value,
                    team_id=data.team_id,
                    is_active=True,
                )
                db.add(profile)
                db.commit()
                db.refresh(profile)
            except Exception:
                db.rollback()
                logger.error(f"Profile insert failed for {data.email}, removing auth user {user_id}")
                await admin.delete_user(user_id)
                raise

            logger.info(f"Created user {user_id} ({data.role.value})")
            return self._to_response(profile)

        finally:
            if owns_admin:
                await admin.close()
            self._close_db(db)

    def update_user(self, user_id: str, data: UserUpdate) -> Optional[ProfileResponse]:
        """Change name, role, team or active flag."""
        db = self._get_db()
        try:
            profile = db.query(Profile).filter(Profile.id == user_id).first()
            if not profile:
                return None

            if data.team_id is not None:
                if data.team_id == "":
                    profile.team_id = None
                elif not db.query(Team.id).filter(Team.id == data.team_id).first():
                    raise ValueError("Team not found")
                else:
                    profile.team_id = data.team_id
            if data.full_name is not None:
                profile.full_name = data.full_name
            if data.role is not None:
                profile.role = data.role.value
            if data.is_active is not None:
                profile.is_active = data.is_active

            profile.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(profile)
            return self._to_response(profile)

        finally:
            self._close_db(db)

    async def delete_user(self, actor_id: str, user_id: str) -> bool:
        """
        Delete the auth user and its profile.

        Raises:
            ValueError: attempting to delete yourself
        """
        if actor_id == user_id:
            raise ValueError("Cannot delete your own account")

        owns_admin = self._admin is None
        admin = self._admin or SupabaseAdminClient()
        db = self._get_db()
        try:
            profile = db.query(Profile).filter(Profile.id == user_id).first()
            if not profile:
                return False

            await admin.delete_user(user_id)

            db.query(Team).filter(Team.leader_id == user_id).update(
                {Team.leader_id: None}, synchronize_session=False
            )
            db.delete(profile)
            db.commit()

            logger.info(f"Deleted user {user_id} by {actor_id}")
            return True

        finally:
            if owns_admin:
                await admin.close()
            self._close_db(db)

    async def reset_password(self, actor_id: str, user_id: str, password: str) -> bool:
        """
        Set another user's password.

        Raises:
            ValueError: attempting to reset your own password here
        """
        if actor_id == user_id:
            raise ValueError("Cannot update your own password through this endpoint")

        owns_admin = self._admin is None
        admin = self._admin or SupabaseAdminClient()
        db = self._get_db()
        try:
            if not db.query(Profile.id).filter(Profile.id == user_id).first():
                return False

            await admin.update_user_password(user_id, password)
            logger.info(f"Password reset for {user_id} by {actor_id}")
            return True

        finally:
            if owns_admin:
                await admin.close()
            self._close_db(db)

    # =========================================================================
    # Own profile
    # =========================================================================

    def update_profile(self, user_id: str, data: ProfileUpdate) -> Optional[ProfileResponse]:
        db = self._get_db()
        try:
            profile = db.query(Profile).filter(Profile.id == user_id).first()
            if not profile:
                return None

            if data.full_name is not None:
                profile.full_name = data.full_name
            if data.avatar_url is not None:
                profile.avatar_url = data.avatar_url

            profile.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(profile)
            return self._to_response(profile)

        finally:
            self._close_db(db)

    def setup_profile(self, user_id: str, email: str, data: ProfileSetupRequest) -> ProfileResponse:
        """
        First-login setup. Creates the profile as an agent when the auth user
        has none yet, otherwise fills in the name.
        """
        db = self._get_db()
        try:
            profile = db.query(Profile).filter(Profile.id == user_id).first()
            if not profile:
                profile = Profile(id=user_id, email=email, role=Role.AGENT.value, is_active=True)
                db.add(profile)

            profile.full_name = data.full_name
            if data.avatar_url is not None:
                profile.avatar_url = data.avatar_url
            profile.updated_at = datetime.utcnow()

            db.commit()
            db.refresh(profile)
            return self._to_response(profile)

        finally:
            self._close_db(db)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _to_response(self, profile: Profile) -> ProfileResponse:
        """Convert database profile to response model."""
        role = Role(profile.role)
        return ProfileResponse(
            id=profile.id,
            email=profile.email,
            full_name=profile.full_name,
            avatar_url=profile.avatar_url,
            role=role,
            team_id=profile.team_id,
            team_name=profile.team.name if profile.team else None,
            is_active=profile.is_active is not False,
            permissions=[p.value for p in get_user_permissions(role)],
            created_at=profile.created_at,
        )


def get_user_service(
    db: Optional[Session] = None, admin: Optional[SupabaseAdminClient] = None
) -> UserService:
    """Get a user service instance."""
    return UserService(db, admin)
