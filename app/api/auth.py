"""
Authentication API routes.
"""
import re
from datetime import datetime, timezone
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request
from pydantic import BaseModel, EmailStr, field_validator, Field
from sqlalchemy.orm import Session
from sqlalchemy import func

from app.db.session import get_db
from app.db.models import User, Profile, ProfileStatus, AuditLog
from app.core.security import (
    verify_password, get_password_hash, create_access_token, get_token_payload
)
from app.core.rbac import get_current_user_context
from app.core.config import settings
from app.core.logging import audit_logger

router = APIRouter(prefix="/api/auth", tags=["Authentication"])


# ============= SCHEMAS =============

class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., max_length=128)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: dict


class MeResponse(BaseModel):
    id: int
    email: str
    role: str
    contractor_id: Optional[int]
    contractor_name: Optional[str]
    status: Optional[str]


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., max_length=128)
    new_password: str = Field(..., min_length=10, max_length=128)

    @field_validator('new_password')
    @classmethod
    def validate_password(cls, v: str) -> str:
        if not re.search(r'[A-Za-z]', v):
            raise ValueError('Password must contain at least one letter')
        if not re.search(r'[0-9]', v):
            raise ValueError('Password must contain at least one number')
        return v


# ============= ROUTES =============

@router.post("/login", response_model=TokenResponse)
async def login(
    request: Request,
    login_data: LoginRequest,
    db: Session = Depends(get_db)
):
    """Authenticate user and return JWT token."""
    user = db.query(User).filter(func.lower(User.email) == login_data.email.lower()).first()

    if not user or not verify_password(login_data.password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )

    profile = db.query(Profile).filter(Profile.user_id == user.id).first()
    if profile and profile.status == ProfileStatus.DEACTIVATED.value:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Account is disabled",
        )

    user.last_login = datetime.now(timezone.utc)

    # Role is not embedded; it is read from the profile on every request
    access_token = create_access_token({"sub": str(user.id), "email": user.email})

    db.add(AuditLog(
        user_id=user.id,
        action="login",
        entity_type="user",
        entity_id=user.id,
        ip_address=request.client.host if request.client else None,
        details={"email": user.email}
    ))
    db.commit()
    audit_logger.log("login", user_id=user.id, entity_type="user", entity_id=user.id)

    return TokenResponse(
        access_token=access_token,
        expires_in=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user={
            "id": user.id,
            "email": user.email,
            "role": profile.role if profile else None,
            "contractor_id": profile.contractor_id if profile else None,
            "status": profile.status if profile else None,
        }
    )


@router.get("/me", response_model=MeResponse)
async def get_current_user(
    user_context: dict = Depends(get_current_user_context),
    db: Session = Depends(get_db)
):
    """Get current authenticated user with the role resolved from the profile."""
    user = db.get(User, user_context["user_id"])
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    profile = user.profile
    return MeResponse(
        id=user.id,
        email=user.email,
        role=user_context["role"].value,
        contractor_id=user_context["contractor_id"],
        contractor_name=profile.contractor.name if profile and profile.contractor else None,
        status=user_context["profile_status"],
    )


@router.post("/change-password")
async def change_password(
    request: Request,
    data: ChangePasswordRequest,
    token_payload: dict = Depends(get_token_payload),
    db: Session = Depends(get_db)
):
    """Change current user's password."""
    user = db.get(User, int(token_payload["sub"]))
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    if not verify_password(data.current_password, user.hashed_password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Current password is incorrect",
        )

    user.hashed_password = get_password_hash(data.new_password)

    db.add(AuditLog(
        user_id=user.id,
        action="change_password",
        entity_type="user",
        entity_id=user.id,
        ip_address=request.client.host if request.client else None,
    ))
    db.commit()

    return {"message": "Password changed successfully"}


@router.post("/logout")
async def logout(
    request: Request,
    token_payload: dict = Depends(get_token_payload),
    db: Session = Depends(get_db)
):
    """Log out user (for audit purposes)."""
    user_id = int(token_payload.get("sub"))

    db.add(AuditLog(
        user_id=user_id,
        action="logout",
        entity_type="user",
        entity_id=user_id,
        ip_address=request.client.host if request.client else None,
    ))
    db.commit()

    return {"message": "Logged out successfully"}
