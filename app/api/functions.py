"""
Function endpoints - account administration and AI recommendations.

All endpoints are POST with a JSON body and a bearer token. Error bodies are
`{"detail": "..."}` with the status codes listed on each route.
"""
import secrets
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import AliasChoices, BaseModel, Field, ValidationError
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import AuditLog
from app.core.config import settings
from app.core.logging import get_logger, audit_logger
from app.core.rbac import Role, get_current_user_context, require_contractor
from app.core.security import security
from app.services import accounts
from app.services.ai_recommendations import (
    CriticalIssue, ProjectContext, generate_recommendations
)

logger = get_logger(__name__)

router = APIRouter(prefix="/functions/v1", tags=["Functions"])


# ============= SCHEMAS =============

class ManageInviteRequest(BaseModel):
    action: str = "invite"
    email: Optional[str] = None
    role: Optional[str] = None
    contractor_id: Optional[int] = Field(None, validation_alias=AliasChoices("contractor_id", "contractorId"))
    note: Optional[str] = None
    target_user_id: Optional[int] = Field(None, validation_alias=AliasChoices("target_user_id", "targetUserId"))


class ManageUsersRequest(BaseModel):
    action: str
    target_user_id: Optional[int] = Field(None, validation_alias=AliasChoices("target_user_id", "targetUserId"))
    email: Optional[str] = None


async def require_admin_caller(user_context: dict = Depends(get_current_user_context)) -> dict:
    if user_context["role"] != Role.ADMIN:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden: Admin role required")
    return user_context


def _audit(db: Session, request: Request, user_id: Optional[int], action: str,
           entity_id: Optional[int], details: dict) -> None:
    db.add(AuditLog(
        user_id=user_id,
        action=action,
        entity_type="user",
        entity_id=entity_id,
        details=details,
        ip_address=request.client.host if request.client else None,
    ))


# ============= ROUTES =============

@router.post("/activate-profile")
async def activate_profile(
    request: Request,
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    """
    Activate the caller's profile after first sign-in.

    401 for a missing/invalid token, 403 for a deactivated account.
    """
    result = accounts.activate_profile(db, user_context["user_id"])
    _audit(db, request, user_context["user_id"], "activate_profile", user_context["user_id"],
           {"role": result["role"], "status": result["status"]})
    db.commit()
    audit_logger.log("activate_profile", user_id=user_context["user_id"], entity_type="user",
                     entity_id=user_context["user_id"])
    return {"success": True}


@router.post("/manage-invite")
async def manage_invite(
    request: Request,
    data: ManageInviteRequest,
    user_context: dict = Depends(require_admin_caller),
    db: Session = Depends(get_db)
):
    """
    Invite a user or reset a user's password (admin only).

    Actions: `invite` (default) and `reset_password`. The temporary password
    is returned once in the response body.
    """
    if data.action == "invite":
        result = accounts.invite_user(
            db,
            email=data.email,
            role=data.role,
            invited_by=user_context["user_id"],
            contractor_id=data.contractor_id,
            note=data.note,
        )
        _audit(db, request, user_context["user_id"], "invite_user", result["user_id"],
               {"email": result["email"], "role": result["role"], "contractor_id": result["contractor_id"]})
    elif data.action == "reset_password":
        result = accounts.reset_password(
            db,
            actor_email=user_context["email"],
            target_user_id=data.target_user_id,
            email=data.email,
        )
        _audit(db, request, user_context["user_id"], "reset_password", result["user_id"],
               {"email": result["email"]})
    else:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported action")

    db.commit()
    audit_logger.log(data.action, user_id=user_context["user_id"], entity_type="user",
                     entity_id=result["user_id"], details={"email": result["email"]})
    return result


@router.post("/manage-users")
async def manage_users(
    request: Request,
    data: ManageUsersRequest,
    user_context: dict = Depends(require_admin_caller),
    db: Session = Depends(get_db)
):
    """Delete a user's profile, allow-list entry and login (admin only)."""
    if data.action != "delete_user":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unsupported action")

    result = accounts.delete_user(
        db,
        actor_user_id=user_context["user_id"],
        target_user_id=data.target_user_id,
        email=data.email,
    )
    _audit(db, request, user_context["user_id"], "delete_user", None,
           {"email": result["email"], "deleted_user_id": result["user_id"]})
    db.commit()
    audit_logger.log("delete_user", user_id=user_context["user_id"], entity_type="user",
                     details={"email": result["email"]})
    return {"success": True}


@router.post("/ai-recommendations")
async def ai_recommendations(
    payload: dict = Body(...),
    user_context: dict = Depends(require_contractor),
):
    """
    Recommended actions for a contractor's critical issues.

    Falls back to rule-based recommendations when the AI provider is not
    configured, unreachable, or returns something unparseable.
    """
    # An empty issue list is valid; only absent or null collections are missing
    missing = any(not payload.get(field) for field in ("contractorId", "contractorName")) or any(
        payload.get(field) is None for field in ("criticalIssues", "context")
    )
    if missing:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required fields in request")

    try:
        issues = [CriticalIssue.model_validate(item) for item in payload["criticalIssues"]]
        context = ProjectContext.model_validate(payload["context"])
    except (ValidationError, TypeError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing required fields in request")

    recommendations = await generate_recommendations(payload["contractorName"], issues, context)
    return {"recommendations": [r.model_dump(by_alias=True) for r in recommendations]}


@router.post("/seed-first-admin")
async def seed_first_admin(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
):
    """
    One-shot admin provisioning guarded by RUN_TOKEN.

    Uses ADMIN_EMAIL / ADMIN_PASSWORD from the environment. Disable it
    (unset RUN_TOKEN) once the first admin exists.
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized - missing token")

    if not settings.RUN_TOKEN or not settings.ADMIN_EMAIL or not settings.ADMIN_PASSWORD:
        logger.error("seed-first-admin called but RUN_TOKEN/ADMIN_EMAIL/ADMIN_PASSWORD are not configured")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Server configuration error")

    if not secrets.compare_digest(credentials.credentials, settings.RUN_TOKEN):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized - invalid token")

    user = accounts.provision_admin(db, settings.ADMIN_EMAIL, settings.ADMIN_PASSWORD)
    _audit(db, request, user.id, "seed_first_admin", user.id, {"email": user.email})
    db.commit()

    logger.warning(f"First admin provisioned via seed-first-admin: {user.email}")
    return {
        "ok": True,
        "user_id": user.id,
        "email": user.email,
        "message": "Admin user provisioned successfully. IMPORTANT: Delete this function immediately!",
    }
