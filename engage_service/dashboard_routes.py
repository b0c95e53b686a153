"""
Dashboard API Routes

FastAPI routes for:
- Dashboard summary
- Teams (CRUD, leader, members)
- Users (admin account management)
- Profile (own profile, first-login setup)
"""

import logging
from typing import Optional, List
from fastapi import APIRouter, HTTPException, Depends

from .auth import CurrentUser, get_current_user, require_permission, verify_access_token
from .rbac import Permission
from .models import (
    Role,
    DashboardSummaryResponse,
    # Teams
    TeamCreate,
    TeamUpdate,
    TeamResponse,
    TeamListResponse,
    TeamMemberResponse,
    SetTeamLeaderRequest,
    AddTeamMemberRequest,
    BulkAddMembersRequest,
    BulkAddMembersResponse,
    # Users
    UserCreate,
    UserUpdate,
    UserListResponse,
    PasswordResetRequest,
    ProfileResponse,
    ProfileUpdate,
    ProfileSetupRequest,
)

logger = logging.getLogger(__name__)

# Create router
dashboard_router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])


def _ensure_team_access(user: CurrentUser, team_id: str):
    """Leaders only manage the team they belong to."""
    if not user.sees_everything and user.team_id != team_id:
        raise HTTPException(status_code=403, detail="Insufficient permissions")


# =============================================================================
# Summary
# =============================================================================


@dashboard_router.get("/summary", response_model=DashboardSummaryResponse)
async def get_dashboard_summary(
    user: CurrentUser = Depends(require_permission(Permission.VIEW_DASHBOARD)),
):
    """Headline counts for the dashboard home."""
    from .services.dashboard_service import get_dashboard_service

    return get_dashboard_service().get_summary(user)


# =============================================================================
# Team Routes
# =============================================================================


@dashboard_router.get("/teams", response_model=TeamListResponse)
async def list_teams(user: CurrentUser = Depends(get_current_user)):
    """Teams visible to the caller."""
    from .services.team_service import get_team_service

    return get_team_service().list_teams(user)


@dashboard_router.post("/teams", response_model=TeamResponse, status_code=201)
async def create_team(
    data: TeamCreate,
    user: CurrentUser = Depends(require_permission(Permission.VIEW_TEAMS)),
):
    """Create a team."""
    from .services.team_service import get_team_service

    try:
        return get_team_service().create_team(user.id, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@dashboard_router.get("/teams/available-users", response_model=List[TeamMemberResponse])
async def list_available_users(
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_TEAM)),
):
    """Active staff without a team."""
    from .services.team_service import get_team_service

    return get_team_service().available_users()


@dashboard_router.get("/teams/{team_id}", response_model=TeamResponse)
async def get_team(team_id: str, user: CurrentUser = Depends(get_current_user)):
    """Get a team with members."""
    from .services.team_service import get_team_service

    if not user.sees_everything and user.team_id != team_id:
        raise HTTPException(status_code=404, detail="Team not found")

    result = get_team_service().get_team(team_id)
    if not result:
        raise HTTPException(status_code=404, detail="Team not found")
    return result


@dashboard_router.put("/teams/{team_id}", response_model=TeamResponse)
async def update_team(
    team_id: str,
    data: TeamUpdate,
    user: CurrentUser = Depends(require_permission(Permission.VIEW_TEAMS)),
):
    """Update a team."""
    from .services.team_service import get_team_service

    try:
        result = get_team_service().update_team(team_id, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result:
        raise HTTPException(status_code=404, detail="Team not found")
    return result


@dashboard_router.delete("/teams/{team_id}")
async def delete_team(
    team_id: str,
    user: CurrentUser = Depends(require_permission(Permission.VIEW_TEAMS)),
):
    """Delete a team."""
    from .services.team_service import get_team_service

    if not get_team_service().delete_team(team_id):
        raise HTTPException(status_code=404, detail="Team not found")
    return {"success": True}


@dashboard_router.put("/teams/{team_id}/leader", response_model=TeamResponse)
async def set_team_leader(
    team_id: str,
    data: SetTeamLeaderRequest,
    user: CurrentUser = Depends(require_permission(Permission.VIEW_TEAMS)),
):
    """Assign the team leader."""
    from .services.team_service import get_team_service

    try:
        result = get_team_service().set_leader(team_id, data.leader_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result:
        raise HTTPException(status_code=404, detail="Team not found")
    return result


@dashboard_router.get("/teams/{team_id}/members", response_model=List[TeamMemberResponse])
async def list_team_members(
    team_id: str,
    user: CurrentUser = Depends(get_current_user),
):
    """Members of a team."""
    from .services.team_service import get_team_service

    _ensure_team_access(user, team_id)

    result = get_team_service().list_members(team_id)
    if result is None:
        raise HTTPException(status_code=404, detail="Team not found")
    return result


@dashboard_router.post("/teams/{team_id}/members", response_model=TeamMemberResponse)
async def add_team_member(
    team_id: str,
    data: AddTeamMemberRequest,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_TEAM)),
):
    """Add a member to a team."""
    from .services.team_service import get_team_service

    _ensure_team_access(user, team_id)

    try:
        result = get_team_service().add_member(team_id, data.user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result:
        raise HTTPException(status_code=404, detail="Team not found")
    return result


@dashboard_router.post("/teams/{team_id}/members/bulk", response_model=BulkAddMembersResponse)
async def bulk_add_team_members(
    team_id: str,
    data: BulkAddMembersRequest,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_TEAM)),
):
    """Add several members at once."""
    from .services.team_service import get_team_service

    _ensure_team_access(user, team_id)

    result = get_team_service().bulk_add_members(team_id, data.user_ids)
    if not result:
        raise HTTPException(status_code=404, detail="Team not found")
    return result


@dashboard_router.delete("/teams/{team_id}/members/{member_id}")
async def remove_team_member(
    team_id: str,
    member_id: str,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_TEAM)),
):
    """Remove a member from a team."""
    from .services.team_service import get_team_service

    _ensure_team_access(user, team_id)

    if not get_team_service().remove_member(team_id, member_id):
        raise HTTPException(status_code=404, detail="Member not found")
    return {"success": True}


# =============================================================================
# User Routes
# =============================================================================


@dashboard_router.get("/users", response_model=UserListResponse)
async def list_users(
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_USERS)),
    role: Optional[Role] = None,
    team_id: Optional[str] = None,
):
    """List staff accounts."""
    from .services.user_service import get_user_service

    return get_user_service().list_users(role, team_id)


@dashboard_router.post("/users", response_model=ProfileResponse, status_code=201)
async def create_user(
    data: UserCreate,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_USERS)),
):
    """Create a staff account."""
    from .services.user_service import get_user_service
    from .clients.supabase_admin import SupabaseAdminError

    try:
        return await get_user_service().create_user(data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SupabaseAdminError as e:
        raise HTTPException(status_code=400, detail=e.message)


@dashboard_router.get("/users/{user_id}", response_model=ProfileResponse)
async def get_user(
    user_id: str,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_USERS)),
):
    """Get a staff account."""
    from .services.user_service import get_user_service

    result = get_user_service().get_user(user_id)
    if not result:
        raise HTTPException(status_code=404, detail="User not found")
    return result


@dashboard_router.put("/users/{user_id}", response_model=ProfileResponse)
async def update_user(
    user_id: str,
    data: UserUpdate,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_USERS)),
):
    """Update role, team, name or active flag."""
    from .services.user_service import get_user_service

    try:
        result = get_user_service().update_user(user_id, data)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if not result:
        raise HTTPException(status_code=404, detail="User not found")
    return result


@dashboard_router.delete("/users/{user_id}")
async def delete_user(
    user_id: str,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_USERS)),
):
    """Delete a staff account."""
    from .services.user_service import get_user_service
    from .clients.supabase_admin import SupabaseAdminError

    try:
        deleted = await get_user_service().delete_user(user.id, user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SupabaseAdminError as e:
        raise HTTPException(status_code=400, detail=e.message)

    if not deleted:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True}


@dashboard_router.put("/users/{user_id}/password")
async def reset_user_password(
    user_id: str,
    data: PasswordResetRequest,
    user: CurrentUser = Depends(require_permission(Permission.MANAGE_USERS)),
):
    """Set another user's password."""
    from .services.user_service import get_user_service
    from .clients.supabase_admin import SupabaseAdminError

    try:
        updated = await get_user_service().reset_password(user.id, user_id, data.password)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SupabaseAdminError as e:
        raise HTTPException(status_code=400, detail=e.message)

    if not updated:
        raise HTTPException(status_code=404, detail="User not found")
    return {"success": True, "message": "Password updated successfully"}


# =============================================================================
# Profile Routes
# =============================================================================


@dashboard_router.get("/profile", response_model=ProfileResponse)
async def get_profile(user: CurrentUser = Depends(get_current_user)):
    """The caller's own profile with permissions."""
    from .services.user_service import get_user_service

    result = get_user_service().get_user(user.id)
    if not result:
        raise HTTPException(status_code=404, detail="Profile not found")
    return result


@dashboard_router.put("/profile", response_model=ProfileResponse)
async def update_profile(
    data: ProfileUpdate,
    user: CurrentUser = Depends(get_current_user),
):
    """Update the caller's own name or avatar."""
    from .services.user_service import get_user_service

    result = get_user_service().update_profile(user.id, data)
    if not result:
        raise HTTPException(status_code=404, detail="Profile not found")
    return result


@dashboard_router.post("/profile/setup", response_model=ProfileResponse)
async def setup_profile(
    data: ProfileSetupRequest,
    payload: dict = Depends(verify_access_token),
):
    """First-login profile setup; works before a profile row exists."""
    from .services.user_service import get_user_service

    email = payload.get("email")
    if not email:
        raise HTTPException(status_code=400, detail="Token carries no email")

    return get_user_service().setup_profile(payload["sub"], email, data)
