"""
SQLAlchemy ORM models for the HSE compliance tracker.

Document progress (per contractor and document type) and contractor KPIs are
derived from these tables in app.services.progress; nothing derived is stored.
"""
from sqlalchemy import (
    Column, Integer, String, Text, Boolean, Date, DateTime,
    ForeignKey, Enum, JSON, UniqueConstraint, Index, CheckConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from app.db.session import Base


# ============= ENUMS =============
# Stored as VARCHAR (native_enum=False) so the same schema works on
# Postgres and on the SQLite database used by the test-suite.

class UserRole(str, enum.Enum):
    ADMIN = "admin"
    CONTRACTOR = "contractor"


class ProfileStatus(str, enum.Enum):
    INVITED = "invited"
    ACTIVE = "active"
    DEACTIVATED = "deactivated"


class SubmissionStatus(str, enum.Enum):
    PREPARED = "prepared"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REVISION = "revision"
    REJECTED = "rejected"


def enum_values(enum_cls):
    return [e.value for e in enum_cls]

UserRoleType = Enum(
    *enum_values(UserRole),
    name='userrole',
    native_enum=False,
    length=20,
)
ProfileStatusType = Enum(
    *enum_values(ProfileStatus),
    name='profilestatus',
    native_enum=False,
    length=20,
)
SubmissionStatusType = Enum(
    *enum_values(SubmissionStatus),
    name='submissionstatus',
    native_enum=False,
    length=20,
)


# ============= ACCOUNTS =============

class User(Base):
    """Authentication account (credentials only; authorization lives on Profile)."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    hashed_password = Column(String(255), nullable=False)
    # Role requested when the account was created (invite metadata)
    role_hint = Column(String(20))
    invited_by = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    last_login = Column(DateTime(timezone=True))

    profile = relationship("Profile", back_populates="user", uselist=False)


class Profile(Base):
    """Per-user role, contractor binding and lifecycle status."""
    __tablename__ = "profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), unique=True, nullable=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    role = Column(UserRoleType, nullable=False, default=UserRole.CONTRACTOR.value)
    contractor_id = Column(Integer, ForeignKey("contractors.id"), nullable=True)
    status = Column(ProfileStatusType, nullable=False, default=ProfileStatus.INVITED.value)
    note = Column(Text)
    invited_by = Column(Integer, nullable=True)
    invited_at = Column(DateTime(timezone=True))
    activated_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="profile")
    contractor = relationship("Contractor", back_populates="profiles")


class AllowedUserEmail(Base):
    """Allow-list of emails permitted to hold an account."""
    __tablename__ = "allowed_users_email"

    email = Column(String(255), primary_key=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


# ============= CATALOG =============

class Contractor(Base):
    """Subcontracting company."""
    __tablename__ = "contractors"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    requirements = relationship("ContractorRequirement", back_populates="contractor", cascade="all, delete-orphan")
    submissions = relationship("Submission", back_populates="contractor")
    profiles = relationship("Profile", back_populates="contractor")


class DocType(Base):
    """HSE document category/type."""
    __tablename__ = "doc_types"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), unique=True, nullable=True, index=True)
    name = Column(String(255), nullable=False)
    category = Column(String(255), nullable=False, index=True)
    is_critical = Column(Boolean, nullable=False, default=False)
    weight = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    requirements = relationship("ContractorRequirement", back_populates="doc_type")
    submissions = relationship("Submission", back_populates="doc_type")


class ContractorRequirement(Base):
    """How many approved items of a doc type a contractor owes, and by when."""
    __tablename__ = "contractor_requirements"

    id = Column(Integer, primary_key=True, index=True)
    contractor_id = Column(Integer, ForeignKey("contractors.id", ondelete="CASCADE"), nullable=False)
    doc_type_id = Column(Integer, ForeignKey("doc_types.id"), nullable=False)
    required_count = Column(Integer, nullable=False, default=1)
    planned_due_date = Column(Date, nullable=True)

    contractor = relationship("Contractor", back_populates="requirements")
    doc_type = relationship("DocType", back_populates="requirements")

    __table_args__ = (
        UniqueConstraint('contractor_id', 'doc_type_id', name='uq_requirement_contractor_doc_type'),
        CheckConstraint('required_count >= 0', name='ck_requirement_required_count'),
    )


# ============= SUBMISSIONS =============

class Submission(Base):
    """A contractor's submission of one or more items of a doc type."""
    __tablename__ = "submissions"

    id = Column(Integer, primary_key=True, index=True)
    contractor_id = Column(Integer, ForeignKey("contractors.id"), nullable=False, index=True)
    doc_type_id = Column(Integer, ForeignKey("doc_types.id"), nullable=False, index=True)
    status = Column(SubmissionStatusType, nullable=False, default=SubmissionStatus.SUBMITTED.value)
    cnt = Column(Integer, nullable=False, default=1)
    note = Column(Text)
    filename = Column(String(500))
    content_type = Column(String(100))
    storage_path = Column(String(1000))
    sha256 = Column(String(64))
    created_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    reviewed_by = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    submitted_at = Column(DateTime(timezone=True))
    approved_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    contractor = relationship("Contractor", back_populates="submissions")
    doc_type = relationship("DocType", back_populates="submissions")

    __table_args__ = (
        CheckConstraint('cnt >= 1', name='ck_submission_cnt'),
        Index('ix_submissions_contractor_doc_type', 'contractor_id', 'doc_type_id'),
    )


# ============= AUDIT =============

class AuditLog(Base):
    """Audit trail of account and review actions."""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    action = Column(String(100), nullable=False, index=True)
    entity_type = Column(String(100), index=True)
    entity_id = Column(Integer)
    details = Column(JSON)
    ip_address = Column(String(50))
    user_agent = Column(Text)

    user = relationship("User")

    __table_args__ = (
        Index('ix_audit_logs_entity', 'entity_type', 'entity_id'),
    )
