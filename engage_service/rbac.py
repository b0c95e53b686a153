"""
Role-based access control for dashboard staff.

Each role maps to a fixed permission list. Routes without a mapped
permission are open to every authenticated profile.
"""

from typing import Dict, List, Union
from enum import Enum

from .models import Role


class Permission(str, Enum):
    """Dashboard permissions."""
    VIEW_DASHBOARD = "view_dashboard"
    VIEW_CONVERSATIONS = "view_conversations"
    MANAGE_CONVERSATIONS = "manage_conversations"
    VIEW_CONTACTS = "view_contacts"
    MANAGE_CONTACTS = "manage_contacts"
    VIEW_CAMPAIGNS = "view_campaigns"
    MANAGE_CAMPAIGNS = "manage_campaigns"
    VIEW_ANALYTICS = "view_analytics"
    VIEW_TEAM_ANALYTICS = "view_team_analytics"
    VIEW_GLOBAL_ANALYTICS = "view_global_analytics"
    MANAGE_TEAM = "manage_team"
    VIEW_TEAMS = "view_teams"
    MANAGE_USERS = "manage_users"
    MANAGE_SETTINGS = "manage_settings"
    MANAGE_INTEGRATIONS = "manage_integrations"


_AGENT = [
    Permission.VIEW_DASHBOARD,
    Permission.VIEW_CONVERSATIONS,
    Permission.MANAGE_CONVERSATIONS,
    Permission.VIEW_CONTACTS,
    Permission.VIEW_CAMPAIGNS,  # Only assigned campaigns
    Permission.VIEW_ANALYTICS,  # Personal metrics only
]

_LEADER = [
    Permission.VIEW_DASHBOARD,
    Permission.VIEW_CONVERSATIONS,
    Permission.MANAGE_CONVERSATIONS,
    Permission.VIEW_CONTACTS,
    Permission.MANAGE_CONTACTS,
    Permission.VIEW_CAMPAIGNS,
    Permission.MANAGE_CAMPAIGNS,
    Permission.VIEW_ANALYTICS,
    Permission.VIEW_TEAM_ANALYTICS,
    Permission.MANAGE_TEAM,
]

_GENERAL_MANAGER = _LEADER + [
    Permission.VIEW_GLOBAL_ANALYTICS,
    Permission.VIEW_TEAMS,
]

_ADMIN = _GENERAL_MANAGER + [
    Permission.MANAGE_USERS,
    Permission.MANAGE_SETTINGS,
    Permission.MANAGE_INTEGRATIONS,
]

ROLE_PERMISSIONS: Dict[Role, List[Permission]] = {
    Role.AGENT: _AGENT,
    Role.LEADER: _LEADER,
    Role.GENERAL_MANAGER: _GENERAL_MANAGER,
    Role.ADMIN: _ADMIN,
}

# Dashboard route -> permission needed to open it
ROUTE_PERMISSIONS: Dict[str, Permission] = {
    "/dashboard": Permission.VIEW_DASHBOARD,
    "/dashboard/conversations": Permission.VIEW_CONVERSATIONS,
    "/dashboard/contacts": Permission.VIEW_CONTACTS,
    "/dashboard/campaigns": Permission.VIEW_CAMPAIGNS,
    "/dashboard/analytics": Permission.VIEW_ANALYTICS,
    "/dashboard/teams": Permission.VIEW_TEAMS,
    "/dashboard/users": Permission.MANAGE_USERS,
    "/dashboard/settings": Permission.MANAGE_SETTINGS,
}


def _as_role(role: Union[Role, str]) -> Role:
    return role if isinstance(role, Role) else Role(role)


def has_permission(role: Union[Role, str], permission: Union[Permission, str]) -> bool:
    """Check whether a role carries a permission. Unknown roles carry none."""
    try:
        role = _as_role(role)
    except ValueError:
        return False
    return Permission(permission) in ROLE_PERMISSIONS[role]


def get_user_permissions(role: Union[Role, str]) -> List[Permission]:
    """All permissions for a role."""
    try:
        return list(ROLE_PERMISSIONS[_as_role(role)])
    except ValueError:
        return []


def can_access_route(role: Union[Role, str], route: str) -> bool:
    """Check whether a role may open a dashboard route."""
    required = ROUTE_PERMISSIONS.get(route)
    if required is None:
        return True
    return has_permission(role, required)
