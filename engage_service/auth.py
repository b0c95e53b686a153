"""
Hosted-auth JWT verification and permission dependencies.

Access tokens are HS256 JWTs signed with the project's JWT secret
(audience "authenticated"). The `sub` claim is the profile id.
"""

import hmac
import logging
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException
from pydantic import BaseModel

from .config import get_engage_settings
from .models import Role
from .rbac import Permission, has_permission

logger = logging.getLogger(__name__)


class CurrentUser(BaseModel):
    """Authenticated staff member resolved from the token's profile."""
    id: str
    email: str
    full_name: Optional[str] = None
    role: Role
    team_id: Optional[str] = None

    class Config:
        from_attributes = True

    @property
    def sees_everything(self) -> bool:
        return self.role in (Role.ADMIN, Role.GENERAL_MANAGER)


def decode_access_token(token: str) -> dict:
    """
    Verify a hosted-auth access token.

    Raises:
        jwt.InvalidTokenError: bad signature, audience or expiry
    """
    settings = get_engage_settings()
    return jwt.decode(
        token,
        settings.supabase_jwt_secret,
        algorithms=["HS256"],
        audience=settings.supabase_jwt_audience,
    )


def verify_access_token(authorization: str = Header(None)) -> dict:
    """
    Verify the Bearer token from the Authorization header.

    Returns:
        dict: Verified token claims
    """
    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization header")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    if scheme.lower() != "bearer":
        raise HTTPException(status_code=401, detail="Invalid authentication scheme")

    try:
        payload = decode_access_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired")
    except jwt.InvalidTokenError as e:
        raise HTTPException(status_code=401, detail=f"Invalid token: {str(e)}")

    if not payload.get("sub"):
        raise HTTPException(status_code=401, detail="Invalid token payload")

    return payload


def get_current_user(payload: dict = Depends(verify_access_token)) -> CurrentUser:
    """
    Dependency resolving the caller's profile.

    Usage in endpoints:
        @router.get("/contacts")
        async def list_contacts(user: CurrentUser = Depends(get_current_user)):
            ...
    """
    from database.database import SessionLocal
    from database.models import Profile

    db = SessionLocal()
    try:
        profile = db.query(Profile).filter(Profile.id == payload["sub"]).first()
        if not profile:
            raise HTTPException(status_code=401, detail="Profile not found")
        if profile.is_active is False:
            raise HTTPException(status_code=403, detail="Account is disabled")
        return CurrentUser.model_validate(profile)
    finally:
        db.close()


def require_permission(permission: Permission):
    """
    Build a dependency that rejects callers whose role lacks `permission`.

    Usage:
        user: CurrentUser = Depends(require_permission(Permission.MANAGE_CAMPAIGNS))
    """

    def dependency(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if not has_permission(user.role, permission):
            logger.warning(f"Permission {permission.value} denied for {user.id} ({user.role.value})")
            raise HTTPException(status_code=403, detail="Insufficient permissions")
        return user

    return dependency


def verify_cron_secret(authorization: str = Header(None)) -> None:
    """Guard for the external auto-close cron call. Open when no secret is set."""
    secret = get_engage_settings().cron_secret
    if not secret:
        return
    if not hmac.compare_digest((authorization or "").encode(), f"Bearer {secret}".encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")
