"""
Admin API routes - profile management.
Requires ADMIN role for all endpoints.

Creating, resetting and deleting accounts goes through the
/functions/v1/manage-invite and /functions/v1/manage-users endpoints.
"""
from typing import List, Optional
from datetime import datetime
from fastapi import APIRouter, Depends, HTTPException, status, Request, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import Profile, Contractor, AuditLog, UserRole, ProfileStatus
from app.core.rbac import require_admin
from app.core.logging import audit_logger
from app.services.accounts import is_super_admin

router = APIRouter(prefix="/api/admin", tags=["Admin"])


# ============= SCHEMAS =============

class ProfileResponse(BaseModel):
    id: int
    user_id: Optional[int]
    email: str
    role: str
    contractor_id: Optional[int]
    contractor_name: Optional[str]
    status: str
    note: Optional[str]
    invited_at: Optional[datetime]
    activated_at: Optional[datetime]
    last_login: Optional[datetime]


class ProfileUpdate(BaseModel):
    role: Optional[UserRole] = None
    contractor_id: Optional[int] = None
    status: Optional[ProfileStatus] = None
    note: Optional[str] = None


def _to_response(profile: Profile) -> ProfileResponse:
    return ProfileResponse(
        id=profile.id,
        user_id=profile.user_id,
        email=profile.email,
        role=profile.role,
        contractor_id=profile.contractor_id,
        contractor_name=profile.contractor.name if profile.contractor else None,
        status=profile.status,
        note=profile.note,
        invited_at=profile.invited_at,
        activated_at=profile.activated_at,
        last_login=profile.user.last_login if profile.user else None,
    )


# ============= ROUTES =============

@router.get("/users", response_model=List[ProfileResponse])
async def list_users(
    role: Optional[UserRole] = Query(None),
    profile_status: Optional[ProfileStatus] = Query(None, alias="status"),
    contractor_id: Optional[int] = Query(None),
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """List all profiles. Admin-only endpoint."""
    query = db.query(Profile)
    if role:
        query = query.filter(Profile.role == role.value)
    if profile_status:
        query = query.filter(Profile.status == profile_status.value)
    if contractor_id:
        query = query.filter(Profile.contractor_id == contractor_id)

    return [_to_response(p) for p in query.order_by(Profile.email).all()]


@router.patch("/users/{profile_id}", response_model=ProfileResponse)
async def update_user(
    profile_id: int,
    request: Request,
    update_data: ProfileUpdate,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Change a profile's role, contractor binding, status or note. Admin-only."""
    profile = db.get(Profile, profile_id)
    if not profile:
        raise HTTPException(status_code=404, detail="User profile not found")

    if is_super_admin(profile.email) and not is_super_admin(user_context["email"]):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot modify super admin")

    changes = update_data.model_dump(exclude_unset=True)
    # A null role or status leaves the current value in place
    for field in ("role", "status"):
        if field in changes and changes[field] is None:
            changes.pop(field)

    if (
        profile.user_id == user_context["user_id"]
        and changes.get("status") == ProfileStatus.DEACTIVATED
    ):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot deactivate your own account",
        )

    role = changes.get("role", profile.role)
    role = role.value if isinstance(role, UserRole) else role
    contractor_id = changes.get("contractor_id", profile.contractor_id)

    if role == UserRole.CONTRACTOR.value:
        if not contractor_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="contractor_id is required for contractor role",
            )
        if db.get(Contractor, contractor_id) is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Contractor not found")
    else:
        contractor_id = None

    profile.role = role
    profile.contractor_id = contractor_id
    if "status" in changes:
        profile.status = changes["status"].value
    if "note" in changes:
        profile.note = changes["note"]

    details = {k: (v.value if hasattr(v, "value") else v) for k, v in changes.items()}
    db.add(AuditLog(
        user_id=user_context["user_id"],
        action="update_profile",
        entity_type="profile",
        entity_id=profile.id,
        details={"email": profile.email, **details},
        ip_address=request.client.host if request.client else None,
    ))
    db.commit()
    db.refresh(profile)
    audit_logger.log(
        "update_profile",
        user_id=user_context["user_id"],
        entity_type="profile",
        entity_id=profile.id,
        details=details,
    )

    return _to_response(profile)
