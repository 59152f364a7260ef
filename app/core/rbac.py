"""
Role-Based Access Control (RBAC) dependencies.

The token only proves identity. Role, contractor binding and status are read
from the caller's profile on every request so that admin changes (role
switch, deactivation) take effect immediately.
"""
from enum import Enum
from typing import Optional
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from app.core.security import decode_token, require_credentials, security
from app.db.session import get_db


class Role(str, Enum):
    GUEST = "guest"
    CONTRACTOR = "contractor"
    ADMIN = "admin"


# Role hierarchy: higher index = more permissions
ROLE_HIERARCHY = {
    Role.GUEST: 0,
    Role.CONTRACTOR: 1,
    Role.ADMIN: 2,
}


def has_permission(user_role: Role, required_role: Role) -> bool:
    """Check if user role has sufficient permissions."""
    return ROLE_HIERARCHY.get(user_role, 0) >= ROLE_HIERARCHY.get(required_role, 0)


def resolve_user_context(db: Session, payload: dict) -> dict:
    """Build the request user context from a decoded token and the profile row."""
    from app.db.models import Profile, ProfileStatus

    user_id_raw = payload.get("sub")
    if user_id_raw is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: missing user identifier (sub)",
        )
    user_id = int(user_id_raw)

    profile = db.query(Profile).filter(Profile.user_id == user_id).first()

    # Missing or non-active profile: treated as an unprivileged guest
    role = Role.GUEST
    contractor_id: Optional[int] = None
    if profile and profile.status == ProfileStatus.ACTIVE.value:
        role = Role(profile.role)
        contractor_id = profile.contractor_id

    return {
        "sub": str(user_id),
        "user_id": user_id,
        "email": payload.get("email") or (profile.email if profile else None),
        "role": role,
        "contractor_id": contractor_id,
        "profile_id": profile.id if profile else None,
        "profile_status": profile.status if profile else None,
    }


class RBACChecker:
    """Dependency for checking role-based access."""

    def __init__(self, required_role: Role):
        self.required_role = required_role

    async def __call__(
        self,
        credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
        db: Session = Depends(get_db),
    ) -> dict:
        payload = decode_token(require_credentials(credentials))
        context = resolve_user_context(db, payload)

        if not has_permission(context["role"], self.required_role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient permissions. Required: {self.required_role.value}",
            )

        return context


# Convenience dependencies for common role checks
require_contractor = RBACChecker(Role.CONTRACTOR)
require_admin = RBACChecker(Role.ADMIN)


async def get_current_user_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db),
) -> dict:
    """Get current user context for any authenticated caller, guests included."""
    payload = decode_token(require_credentials(credentials))
    return resolve_user_context(db, payload)


def ensure_contractor_scope(user_context: dict, contractor_id: int) -> None:
    """Contractors may only act on their own contractor's data."""
    if user_context["role"] == Role.ADMIN:
        return
    if user_context.get("contractor_id") != contractor_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied to this contractor",
        )
