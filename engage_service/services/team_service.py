"""
Team Service - Teams, leaders and membership
"""

import logging
from typing import Optional, List
from datetime import datetime
from sqlalchemy import or_, asc
from sqlalchemy.orm import Session

from database.database import SessionLocal
from database.models import Team, Profile, Conversation
from ..auth import CurrentUser
from ..models import (
    Role,
    TeamCreate,
    TeamUpdate,
    TeamResponse,
    TeamListResponse,
    TeamMemberResponse,
    BulkAddMembersResponse,
)

logger = logging.getLogger(__name__)


class TeamService:
    """
    Service for team management.
    """

    def __init__(self, db: Optional[Session] = None):
        self._db = db

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
    # Teams
    # =========================================================================

    def list_teams(self, user: CurrentUser) -> TeamListResponse:
        """
        List teams visible to the caller.

        Admins and general managers see every team; leaders and agents only
        the team they lead or belong to.
        """
        db = self._get_db()
        try:
            query = db.query(Team)
            if not user.sees_everything:
                query = query.filter(or_(Team.id == user.team_id, Team.leader_id == user.id))

            teams = query.order_by(asc(Team.name)).all()
            return TeamListResponse(
                teams=[self._to_response(db, t) for t in teams],
                total=len(teams),
            )

        finally:
            self._close_db(db)

    def get_team(self, team_id: str) -> Optional[TeamResponse]:
        """Get a team with its members."""
        db = self._get_db()
        try:
            team = db.query(Team).filter(Team.id == team_id).first()
            if not team:
                return None
            return self._to_response(db, team)

        finally:
            self._close_db(db)

    def create_team(self, user_id: str, data: TeamCreate) -> TeamResponse:
        """
        Create a team, optionally with its leader.

        Raises:
            ValueError: duplicate name or unknown leader
        """
        db = self._get_db()
        try:
            if db.query(Team).filter(Team.name.ilike(data.name)).first():
                raise ValueError("Team name already exists")

            team = Team(name=data.name, description=data.description, created_by=user_id)
            db.add(team)
            db.flush()

            if data.leader_id:
                self._assign_leader(db, team, data.leader_id)

            db.commit()
            db.refresh(team)

            logger.info(f"Created team {team.id} ({team.name})")
            return self._to_response(db, team)

        finally:
            self._close_db(db)

    def update_team(self, team_id: str, data: TeamUpdate) -> Optional[TeamResponse]:
        """Rename or describe a team."""
        db = self._get_db()
        try:
            team = db.query(Team).filter(Team.id == team_id).first()
            if not team:
                return None

            if data.name is not None and data.name != team.name:
                clash = db.query(Team).filter(Team.name.ilike(data.name), Team.id != team_id).first()
                if clash:
                    raise ValueError("Team name already exists")
                team.name = data.name
            if data.description is not None:
                team.description = data.description

            team.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(team)
            return self._to_response(db, team)

        finally:
            self._close_db(db)

    def delete_team(self, team_id: str) -> bool:
        """Delete a team. Members and conversations keep existing without a team."""
        db = self._get_db()
        try:
            team = db.query(Team).filter(Team.id == team_id).first()
            if not team:
                return False

            db.query(Profile).filter(Profile.team_id == team_id).update(
                {Profile.team_id: None}, synchronize_session=False
            )
            db.query(Conversation).filter(Conversation.team_id == team_id).update(
                {Conversation.team_id: None}, synchronize_session=False
            )
            db.delete(team)
            db.commit()

            logger.info(f"Deleted team {team_id}")
            return True

        finally:
            self._close_db(db)

    def set_leader(self, team_id: str, leader_id: str) -> Optional[TeamResponse]:
        """
        Make a profile the team's leader.

        The leader joins the team; an agent is promoted to leader.

        Raises:
            ValueError: unknown profile
        """
        db = self._get_db()
        try:
            team = db.query(Team).filter(Team.id == team_id).first()
            if not team:
                return None

            self._assign_leader(db, team, leader_id)
            team.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(team)
            return self._to_response(db, team)

        finally:
            self._close_db(db)

    # =========================================================================
    # Members
    # =========================================================================

    def list_members(self, team_id: str) -> Optional[List[TeamMemberResponse]]:
        db = self._get_db()
        try:
            if not db.query(Team.id).filter(Team.id == team_id).first():
                return None
            members = (
                db.query(Profile)
                .filter(Profile.team_id == team_id)
                .order_by(asc(Profile.full_name))
                .all()
            )
            return [TeamMemberResponse.model_validate(m) for m in members]

        finally:
            self._close_db(db)

    def add_member(self, team_id: str, user_id: str) -> Optional[TeamMemberResponse]:
        """
        Move a profile into a team.

        Raises:
            ValueError: unknown profile
        """
        db = self._get_db()
        try:
            team = db.query(Team).filter(Team.id == team_id).first()
            if not team:
                return None

            profile = db.query(Profile).filter(Profile.id == user_id).first()
            if not profile:
                raise ValueError("User not found")

            profile.team_id = team.id
            profile.updated_at = datetime.utcnow()
            db.commit()
            return TeamMemberResponse.model_validate(profile)

        finally:
            self._close_db(db)

    def bulk_add_members(self, team_id: str, user_ids: List[str]) -> Optional[BulkAddMembersResponse]:
        """Add several profiles; unknown ids and existing members are skipped."""
        db = self._get_db()
        try:
            if not db.query(Team.id).filter(Team.id == team_id).first():
                return None

            profiles = {p.id: p for p in db.query(Profile).filter(Profile.id.in_(user_ids)).all()}
            added: List[str] = []
            skipped: List[str] = []
            for user_id in dict.fromkeys(user_ids):
                profile = profiles.get(user_id)
                if not profile or profile.team_id == team_id:
                    skipped.append(user_id)
                    continue
                profile.team_id = team_id
                profile.updated_at = datetime.utcnow()
                added.append(user_id)

            db.commit()
            return BulkAddMembersResponse(added=added, skipped=skipped)

        finally:
            self._close_db(db)

    def remove_member(self, team_id: str, user_id: str) -> bool:
        """Take a profile out of a team. A removed leader leaves the team leaderless."""
        db = self._get_db()
        try:
            profile = (
                db.query(Profile)
                .filter(Profile.id == user_id, Profile.team_id == team_id)
                .first()
            )
            if not profile:
                return False

            profile.team_id = None
            profile.updated_at = datetime.utcnow()

            team = db.query(Team).filter(Team.id == team_id).first()
            if team and team.leader_id == user_id:
                team.leader_id = None

            db.commit()
            return True

        finally:
            self._close_db(db)

    def available_users(self) -> List[TeamMemberResponse]:
        """Active profiles that belong to no team."""
        db = self._get_db()
        try:
            profiles = (
                db.query(Profile)
                .filter(Profile.team_id.is_(None))
                .filter(or_(Profile.is_active.is_(True), Profile.is_active.is_(None)))
                .order_by(asc(Profile.full_name))
                .all()
            )
            return [TeamMemberResponse.model_validate(p) for p in profiles]

        finally:
            self._close_db(db)

    # =========================================================================
    # Helpers
    # =========================================================================

    def _assign_leader(self, db: Session, team: Team, leader_id: str):
        leader = db.query(Profile).filter(Profile.id == leader_id).first()
        if not leader:
            raise ValueError("Leader not found")

        team.leader_id = leader.id
        leader.team_id = team.id
        if leader.role == Role.AGENT.value:
            leader.role = Role.LEADER.value
        leader.updated_at = datetime.utcnow()

    def _to_response(self, db: Session, team: Team) -> TeamResponse:
        """Convert database team to response model."""
        members = db.query(Profile).filter(Profile.team_id == team.id).all()

        leader_name = None
        if team.leader_id:
            leader = db.query(Profile.full_name).filter(Profile.id == team.leader_id).first()
            leader_name = leader[0] if leader else None

        return TeamResponse(
            id=team.id,
            name=team.name,
            description=team.description,
            leader_id=team.leader_id,
            leader_name=leader_name,
            member_count=len(members),
            members=[TeamMemberResponse.model_validate(m) for m in members],
            created_at=team.created_at,
        )


def get_team_service(db: Optional[Session] = None) -> TeamService:
    """Get a team service instance."""
    return TeamService(db)
