"""
Demo data: an HSE document checklist, three contractors, requirements,
submissions at various stages and one login per role.

Only run when SEED_DEMO=true. Idempotent: nothing is written when
contractors already exist.
"""
import random
from datetime import datetime, time, timedelta, timezone

from app.core.logging import get_logger
from app.core.security import get_password_hash
from app.db.session import get_db_context
from app.db.models import (
    Contractor, DocType, ContractorRequirement, Submission, SubmissionStatus,
    User, Profile, ProfileStatus, UserRole
)
from app.services.accounts import ensure_allowed_email, provision_admin
from app.services.status import project_tz, today_local

logger = get_logger(__name__)

DEMO_ADMIN_EMAIL = "admin@osh.vn"
DEMO_ADMIN_PASSWORD = "Admin@123456"
DEMO_CONTRACTOR_PASSWORD = "Contractor@123"

# (code, name, category, is_critical, required_count)
DOC_TYPES = [
    ("1.1.1", "Giấy phép đăng ký kinh doanh", "1.1 Hồ sơ pháp lý", True, 1),
    ("1.1.2", "Hợp đồng bảo hiểm công trình", "1.1 Hồ sơ pháp lý", True, 1),
    ("1.2.1", "Kế hoạch HSE tổng thể", "1.2 Kế hoạch an toàn", True, 1),
    ("1.2.2", "Đánh giá rủi ro công việc (JSA)", "1.2 Kế hoạch an toàn", True, 3),
    ("1.2.3", "Kế hoạch ứng phó khẩn cấp", "1.2 Kế hoạch an toàn", False, 1),
    ("1.3.1", "Danh sách nhân sự tham gia", "1.3 Nhân sự & đào tạo", False, 1),
    ("1.3.2", "Chứng chỉ huấn luyện ATVSLĐ", "1.3 Nhân sự & đào tạo", True, 5),
    ("1.3.3", "Giấy khám sức khỏe định kỳ", "1.3 Nhân sự & đào tạo", False, 5),
    ("1.4.1", "Kiểm định thiết bị nâng", "1.4 Máy móc thiết bị", True, 2),
    ("1.4.2", "Danh mục máy móc thiết bị", "1.4 Máy móc thiết bị", False, 1),
    ("1.5.1", "Phương án PCCC", "1.5 PCCC & môi trường", False, 1),
    ("1.5.2", "Kế hoạch quản lý chất thải", "1.5 PCCC & môi trường", False, 0),
]

CONTRACTORS = [
    ("Công ty Xây dựng An Phát", "anphat@osh.vn"),
    ("Công ty Cơ điện Hòa Bình", "hoabinh@osh.vn"),
    ("Công ty Giàn giáo Minh Long", "minhlong@osh.vn"),
]


def _at(day, hour=9):
    """Local working-hour timestamp for a date, stored in UTC."""
    return datetime.combine(day, time(hour), tzinfo=project_tz()).astimezone(timezone.utc)


def _seed_submissions(db, rng, contractor, doc_type, requirement, created_by, today):
    """A mix of approved, pending and draft submissions for one requirement."""
    if requirement.required_count == 0:
        return 0

    created = 0
    for _ in range(rng.randint(0, requirement.required_count)):
        started = today - timedelta(days=rng.randint(5, 25))
        submitted = started + timedelta(days=rng.randint(1, 7))
        roll = rng.random()

        submission = Submission(
            contractor_id=contractor.id,
            doc_type_id=doc_type.id,
            cnt=1,
            created_by=created_by,
            created_at=_at(started),
        )
        if roll < 0.55:
            submission.status = SubmissionStatus.APPROVED.value
            submission.submitted_at = _at(submitted)
            submission.approved_at = _at(min(today, submitted + timedelta(days=rng.randint(0, 5))), 15)
        elif roll < 0.8:
            submission.status = SubmissionStatus.SUBMITTED.value
            submission.submitted_at = _at(submitted)
        elif roll < 0.9:
            submission.status = SubmissionStatus.REVISION.value
            submission.submitted_at = _at(submitted)
            submission.note = "Bổ sung chữ ký và đóng dấu"
        else:
            submission.status = SubmissionStatus.PREPARED.value
        db.add(submission)
        created += 1
    return created


def seed_demo_data(seed: int = 42) -> dict:
    """Create the demo data set. Returns counts of what was created."""
    rng = random.Random(seed)
    today = today_local()

    with get_db_context() as db:
        if db.query(Contractor).first():
            logger.info("Demo data already present. Skipping.")
            return {"skipped": True}

        admin = provision_admin(db, DEMO_ADMIN_EMAIL, DEMO_ADMIN_PASSWORD, note="Demo admin")

        doc_types = []
        for code, name, category, is_critical, _ in DOC_TYPES:
            doc_type = DocType(code=code, name=name, category=category, is_critical=is_critical)
            db.add(doc_type)
            doc_types.append(doc_type)
        db.flush()

        counts = {"contractors": 0, "requirements": 0, "submissions": 0, "users": 1}
        for name, email in CONTRACTORS:
            contractor = Contractor(name=name)
            db.add(contractor)
            db.flush()
            counts["contractors"] += 1

            user = User(
                email=email,
                hashed_password=get_password_hash(DEMO_CONTRACTOR_PASSWORD),
                role_hint=UserRole.CONTRACTOR.value,
                invited_by=admin.id,
            )
            db.add(user)
            db.flush()
            ensure_allowed_email(db, email)
            db.add(Profile(
                user_id=user.id,
                email=email,
                role=UserRole.CONTRACTOR.value,
                contractor_id=contractor.id,
                status=ProfileStatus.ACTIVE.value,
                invited_by=admin.id,
                activated_at=datetime.now(timezone.utc),
            ))
            counts["users"] += 1

            for doc_type, (_, _, _, _, required) in zip(doc_types, DOC_TYPES):
                requirement = ContractorRequirement(
                    contractor_id=contractor.id,
                    doc_type_id=doc_type.id,
                    required_count=required,
                    planned_due_date=today + timedelta(days=rng.randint(-12, 21)),
                )
                db.add(requirement)
                counts["requirements"] += 1
                counts["submissions"] += _seed_submissions(
                    db, rng, contractor, doc_type, requirement, user.id, today
                )

        db.flush()

    logger.info(f"Demo data seeded: {counts}")
    return counts
