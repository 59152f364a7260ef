"""
Shared fixtures: in-memory SQLite database, API client and signed-in users.
"""
import os
import tempfile

# Must be set before any app module reads settings
os.environ.setdefault("DEBUG", "true")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-the-hse-tracker-suite-0123456789")
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="hse-uploads-")
os.environ["SUPER_ADMIN_EMAIL"] = "admin@osh.vn"
os.environ["AI_API_KEY"] = ""
os.environ["RUN_TOKEN"] = "run-token-for-tests"
os.environ["ADMIN_EMAIL"] = "admin@osh.vn"
os.environ["ADMIN_PASSWORD"] = "Admin@123456"

from datetime import date, datetime, timezone

import pytest
from fastapi.testclient import TestClient

from app.db.session import Base, SessionLocal, engine
from app.db import models  # noqa - register tables
from app.db.models import (
    Contractor, ContractorRequirement, DocType, Profile, ProfileStatus,
    Submission, SubmissionStatus, User, UserRole
)
from app.core.security import create_access_token, get_password_hash
from app.main import app


# ============= DATABASE =============

@pytest.fixture
def db_session():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db_session):
    # Not used as a context manager, so startup (init_db) does not run
    return TestClient(app)


# ============= USERS =============

def make_user(db, email, role, contractor_id=None, status=ProfileStatus.ACTIVE.value, password="Password123"):
    user = User(email=email, hashed_password=get_password_hash(password), role_hint=role)
    db.add(user)
    db.flush()
    db.add(Profile(
        user_id=user.id,
        email=email,
        role=role,
        contractor_id=contractor_id,
        status=status,
    ))
    db.commit()
    db.refresh(user)
    return user


def auth_headers(user):
    token = create_access_token({"sub": str(user.id), "email": user.email})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def contractor(db_session):
    c = Contractor(name="Công ty Xây dựng An Phát")
    db_session.add(c)
    db_session.commit()
    db_session.refresh(c)
    return c


@pytest.fixture
def other_contractor(db_session):
    c = Contractor(name="Công ty Cơ điện Hòa Bình")
    db_session.add(c)
    db_session.commit()
    db_session.refresh(c)
    return c


@pytest.fixture
def admin_user(db_session):
    return make_user(db_session, "admin@osh.vn", UserRole.ADMIN.value)


@pytest.fixture
def second_admin(db_session):
    return make_user(db_session, "hse.lead@osh.vn", UserRole.ADMIN.value)


@pytest.fixture
def contractor_user(db_session, contractor):
    return make_user(db_session, "anphat@osh.vn", UserRole.CONTRACTOR.value, contractor_id=contractor.id)


@pytest.fixture
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture
def contractor_headers(contractor_user):
    return auth_headers(contractor_user)


# ============= CATALOG =============

@pytest.fixture
def doc_types(db_session):
    """One critical and one non-critical document type."""
    jsa = DocType(code="1.2.2", name="Đánh giá rủi ro (JSA)", category="1.2 Kế hoạch an toàn", is_critical=True)
    waste = DocType(code="1.5.2", name="Kế hoạch quản lý chất thải", category="1.5 PCCC & môi trường")
    db_session.add_all([jsa, waste])
    db_session.commit()
    db_session.refresh(jsa)
    db_session.refresh(waste)
    return jsa, waste


def add_requirement(db, contractor_id, doc_type_id, required_count=1, planned_due_date=None):
    req = ContractorRequirement(
        contractor_id=contractor_id,
        doc_type_id=doc_type_id,
        required_count=required_count,
        planned_due_date=planned_due_date,
    )
    db.add(req)
    db.commit()
    return req


def add_submission(db, contractor_id, doc_type_id, status=SubmissionStatus.SUBMITTED.value, cnt=1,
                   created_at=None, submitted_at=None, approved_at=None):
    sub = Submission(
        contractor_id=contractor_id,
        doc_type_id=doc_type_id,
        status=status,
        cnt=cnt,
        created_at=created_at or datetime(2024, 1, 2, 2, 0, tzinfo=timezone.utc),
        submitted_at=submitted_at,
        approved_at=approved_at,
    )
    db.add(sub)
    db.commit()
    db.refresh(sub)
    return sub


TODAY = date(2024, 1, 10)
