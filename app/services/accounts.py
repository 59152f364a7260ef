"""
Account provisioning: invites, password resets, deletion and activation.

Functions flush but do not commit; the calling route owns the transaction.
Temporary passwords are returned to the caller once and never logged.
"""
import secrets
import string
from datetime import datetime, timezone
from typing import Optional

from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.logging import get_logger
from app.core.security import get_password_hash
from app.db.models import (
    AllowedUserEmail, Contractor, Profile, ProfileStatus, User, UserRole
)

logger = get_logger(__name__)

UPPERCASE = string.ascii_uppercase
LOWERCASE = string.ascii_lowercase
DIGITS = string.digits
SPECIAL = "!@#$%^&*()-_=+[]{}|;:,.<>?"


def generate_secure_password(length: int = 16) -> str:
    """Random password with at least one upper, lower, digit and special character."""
    if length < 4:
        raise ValueError("length must be at least 4")
    alphabet = UPPERCASE + LOWERCASE + DIGITS + SPECIAL
    chars = [
        secrets.choice(UPPERCASE),
        secrets.choice(LOWERCASE),
        secrets.choice(DIGITS),
        secrets.choice(SPECIAL),
    ]
    chars += [secrets.choice(alphabet) for _ in range(length - 4)]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def is_super_admin(email: Optional[str]) -> bool:
    return normalize_email(email) == normalize_email(settings.SUPER_ADMIN_EMAIL)


def ensure_allowed_email(db: Session, email: str) -> None:
    """Add an email to the allow-list if it is not there yet."""
    email = normalize_email(email)
    if db.get(AllowedUserEmail, email) is None:
        db.add(AllowedUserEmail(email=email))
        db.flush()


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ============= INVITE =============

def invite_user(
    db: Session,
    email: str,
    role: str,
    invited_by: int,
    contractor_id: Optional[int] = None,
    note: Optional[str] = None,
) -> dict:
    """Create a login with a temporary password and an `invited` profile."""
    email = normalize_email(email)
    if not email or "@" not in email:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid email address")

    if role not in (UserRole.ADMIN.value, UserRole.CONTRACTOR.value):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid role: must be admin or contractor",
        )

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

    if db.query(User).filter(User.email == email).first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User already exists with this email",
        )

    temporary_password = generate_secure_password(16)
    user = User(
        email=email,
        hashed_password=get_password_hash(temporary_password),
        role_hint=role,
        invited_by=invited_by,
    )
    db.add(user)
    db.flush()
    logger.info(f"User created: {email} (ID: {user.id})")

    ensure_allowed_email(db, email)

    try:
        profile = db.query(Profile).filter(Profile.email == email).first()
        if profile is None:
            profile = Profile(email=email)
            db.add(profile)
        profile.user_id = user.id
        profile.role = role
        profile.contractor_id = contractor_id
        profile.status = ProfileStatus.INVITED.value
        profile.invited_by = invited_by
        profile.invited_at = _now()
        if note:
            profile.note = note
        db.flush()
    except SQLAlchemyError as e:
        # Drops the login created above as well
        db.rollback()
        logger.error(f"Failed to create profile for {email}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create user profile",
        )

    return {
        "success": True,
        "email": email,
        "password": temporary_password,
        "role": role,
        "contractor_id": contractor_id,
        "user_id": user.id,
    }


# ============= PASSWORD RESET =============

def find_target_profile(
    db: Session,
    target_user_id: Optional[int] = None,
    email: Optional[str] = None,
) -> Profile:
    """Look a profile up by user id first, then by email."""
    email = normalize_email(email)
    if not target_user_id and not email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing target user identifier",
        )

    profile = None
    if target_user_id:
        profile = db.query(Profile).filter(Profile.user_id == target_user_id).first()
    if profile is None and email:
        profile = db.query(Profile).filter(Profile.email == email).first()

    if profile is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User profile not found")
    return profile


def reset_password(
    db: Session,
    actor_email: Optional[str],
    target_user_id: Optional[int] = None,
    email: Optional[str] = None,
) -> dict:
    """Replace a user's password with a fresh temporary one."""
    profile = find_target_profile(db, target_user_id, email)

    if is_super_admin(profile.email) and not is_super_admin(actor_email):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot modify super admin")

    user = db.get(User, profile.user_id) if profile.user_id else None
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="User has no login account",
        )

    temporary_password = generate_secure_password(16)
    user.hashed_password = get_password_hash(temporary_password)
    db.flush()

    return {
        "success": True,
        "email": profile.email,
        "password": temporary_password,
        "role": profile.role,
        "user_id": user.id,
    }


# ============= DELETE =============

def delete_user(
    db: Session,
    actor_user_id: int,
    target_user_id: Optional[int] = None,
    email: Optional[str] = None,
) -> dict:
    """Remove a user's profile, allow-list entry and login."""
    profile = find_target_profile(db, target_user_id, email)
    target_email = normalize_email(profile.email or email)

    if is_super_admin(target_email):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Cannot modify super admin")

    if profile.user_id is not None and profile.user_id == actor_user_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot delete your own account")

    user_id = profile.user_id
    db.delete(profile)
    db.flush()

    allowed = db.get(AllowedUserEmail, target_email)
    if allowed is not None:
        db.delete(allowed)

    user = db.get(User, user_id) if user_id else None
    if user is None:
        user = db.query(User).filter(User.email == target_email).first()
    if user is not None:
        db.delete(user)
    else:
        logger.info(f"No login account left to delete for {target_email}")

    db.flush()
    return {"success": True, "email": target_email, "user_id": user_id}


# ============= ACTIVATE =============

def activate_profile(db: Session, user_id: int) -> dict:
    """
    Called by a signed-in user on first login.

    Creates an active profile when none exists (role from the invite,
    contractor by default) or flips an `invited` profile to `active`.
    """
    user = db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")

    ensure_allowed_email(db, user.email)

    profile = db.query(Profile).filter(Profile.user_id == user.id).first()
    if profile is None:
        # An invite may have been recorded against the email only
        profile = db.query(Profile).filter(Profile.email == user.email, Profile.user_id.is_(None)).first()
        if profile is not None:
            profile.user_id = user.id

    if profile is None:
        role = user.role_hint if user.role_hint in (UserRole.ADMIN.value, UserRole.CONTRACTOR.value) \
            else UserRole.CONTRACTOR.value
        profile = Profile(
            user_id=user.id,
            email=user.email,
            role=role,
            status=ProfileStatus.ACTIVE.value,
            activated_at=_now(),
        )
        db.add(profile)
    elif profile.status == ProfileStatus.DEACTIVATED.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is deactivated")
    elif profile.status != ProfileStatus.ACTIVE.value:
        profile.status = ProfileStatus.ACTIVE.value
        profile.activated_at = _now()

    db.flush()
    return {"success": True, "role": profile.role, "status": profile.status}


# ============= FIRST ADMIN =============

def provision_admin(db: Session, email: str, password: str, note: Optional[str] = None) -> User:
    """Create or update an admin login and give it an active admin profile."""
    email = normalize_email(email)

    user = db.query(User).filter(User.email == email).first()
    if user is None:
        user = User(email=email, hashed_password=get_password_hash(password), role_hint=UserRole.ADMIN.value)
        db.add(user)
    else:
        user.hashed_password = get_password_hash(password)
        user.role_hint = UserRole.ADMIN.value
    db.flush()

    ensure_allowed_email(db, email)

    profile = db.query(Profile).filter(
        (Profile.user_id == user.id) | (Profile.email == email)
    ).first()
    if profile is None:
        profile = Profile(email=email)
        db.add(profile)
    profile.user_id = user.id
    profile.email = email
    profile.role = UserRole.ADMIN.value
    profile.contractor_id = None
    profile.status = ProfileStatus.ACTIVE.value
    profile.activated_at = _now()
    profile.note = note or "Admin user created by seed-first-admin function"
    db.flush()

    return user
