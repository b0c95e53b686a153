"""
Unit tests for team management.

Tests:
- Team list scoping per role
- Creating a team with a leader promotes an agent
- Duplicate team names
- Bulk member add reports skipped ids
- Removing the leader clears the team's leader
- Deleting a team detaches members
- Available users exclude team members and inactive accounts
"""

import pytest

from database.models import Profile, Team
from engage_service.models import TeamCreate
from engage_service.services.team_service import TeamService
from conftest import as_user


def test_list_teams_scoping(db, make_profile, make_team):
    sales = make_team("Sales")
    make_team("Support")
    admin = make_profile(role="admin")
    agent = make_profile(role="agent", team_id=sales.id)
    service = TeamService(db)

    assert service.list_teams(as_user(admin)).total == 2, "Admins see every team"

    visible = service.list_teams(as_user(agent))
    assert [t.name for t in visible.teams] == ["Sales"], "Agents only see their own team"


def test_create_team_with_leader(db, make_profile):
    agent = make_profile(role="agent", full_name="Rudi")

    team = TeamService(db).create_team("admin-1", TeamCreate(name="Sales", leader_id=agent.id))

    assert team.leader_id == agent.id
    assert team.leader_name == "Rudi"
    assert team.member_count == 1
    db.expire_all()
    promoted = db.query(Profile).filter(Profile.id == agent.id).one()
    assert promoted.role == "leader", "Agents become leaders when put in charge"
    assert promoted.team_id == team.id


def test_duplicate_team_name(db, make_team):
    make_team("Sales")

    with pytest.raises(ValueError, match="already exists"):
        TeamService(db).create_team("admin-1", TeamCreate(name="sales"))


def test_unknown_leader(db):
    with pytest.raises(ValueError, match="Leader not found"):
        TeamService(db).create_team("admin-1", TeamCreate(name="Sales", leader_id="ghost"))


def test_bulk_add_members(db, make_profile, make_team):
    team = make_team()
    a = make_profile()
    b = make_profile(team_id=team.id)

    result = TeamService(db).bulk_add_members(team.id, [a.id, b.id, "ghost", a.id])

    assert result.added == [a.id]
    assert result.skipped == [b.id, "ghost"], f"Unexpected skipped list {result.skipped}"
    assert TeamService(db).bulk_add_members("missing", [a.id]) is None


def test_remove_leader_clears_leader(db, make_profile, make_team):
    leader = make_profile(role="leader")
    team = make_team(leader_id=leader.id)
    leader.team_id = team.id
    db.commit()

    assert TeamService(db).remove_member(team.id, leader.id) is True

    db.expire_all()
    assert db.query(Team).filter(Team.id == team.id).one().leader_id is None
    assert TeamService(db).remove_member(team.id, leader.id) is False, "Already removed"


def test_delete_team_detaches_members(db, make_profile, make_team):
    team = make_team()
    member = make_profile(team_id=team.id)

    assert TeamService(db).delete_team(team.id) is True

    db.expire_all()
    assert db.query(Profile).filter(Profile.id == member.id).one().team_id is None
    assert TeamService(db).delete_team(team.id) is False


def test_available_users(db, make_profile, make_team):
    team = make_team()
    free = make_profile(full_name="Free Agent")
    make_profile(team_id=team.id)
    make_profile(is_active=False)

    available = TeamService(db).available_users()

    assert [u.id for u in available] == [free.id]
