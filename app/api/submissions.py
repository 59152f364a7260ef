"""
Submissions API - contractor document submissions and admin review.

Submission lifecycle:
1. Contractor creates it as PREPARED (draft) or SUBMITTED (default)
2. Admin reviews a submitted item:
   - APPROVED: approved_at and reviewer set, counts toward approved_count
   - REJECTED / REVISION: a note is required, approved_at is cleared
3. Contractor re-submits a PREPARED or REVISION item
Rows are never deleted.
"""
import hashlib
import os
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form, Request, Query, status
from pydantic import BaseModel, Field
from sqlalchemy import desc
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.db.models import (
    Submission, SubmissionStatus, DocType, Contractor, ContractorRequirement, AuditLog
)
from app.core.rbac import require_admin, require_contractor, ensure_contractor_scope, Role
from app.core.config import settings
from app.core.logging import get_logger, audit_logger
from app.services.status import overdue_days, today_local

logger = get_logger(__name__)

router = APIRouter(prefix="/api/submissions", tags=["Submissions"])

ALLOWED_EXTENSIONS = {".pdf", ".doc", ".docx", ".xls", ".xlsx", ".jpg", ".jpeg", ".png", ".zip"}
CREATE_STATUSES = (SubmissionStatus.PREPARED.value, SubmissionStatus.SUBMITTED.value)
RESUBMITTABLE = (SubmissionStatus.PREPARED.value, SubmissionStatus.REVISION.value)
QUEUE_STATUSES = (SubmissionStatus.SUBMITTED.value, SubmissionStatus.REVISION.value)
UPLOAD_CHUNK_SIZE = 1024 * 1024


# ============= SCHEMAS =============

class SubmissionCreate(BaseModel):
    doc_type_id: int
    contractor_id: Optional[int] = None
    cnt: int = Field(1, ge=1)
    status: str = SubmissionStatus.SUBMITTED.value
    note: Optional[str] = None


class SubmissionResponse(BaseModel):
    id: int
    contractor_id: int
    contractor_name: Optional[str]
    doc_type_id: int
    doc_type_name: Optional[str]
    category: Optional[str]
    status: str
    cnt: int
    note: Optional[str]
    filename: Optional[str]
    sha256: Optional[str]
    created_at: Optional[datetime]
    submitted_at: Optional[datetime]
    approved_at: Optional[datetime]
    reviewed_by: Optional[int]


class QueueItem(SubmissionResponse):
    planned_due_date: Optional[str]
    overdue_days: int


class ReviewRequest(BaseModel):
    note: Optional[str] = None


class BulkReviewRequest(BaseModel):
    ids: List[int] = Field(..., min_length=1)
    note: Optional[str] = None


def _to_response(submission: Submission) -> SubmissionResponse:
    return SubmissionResponse(
        id=submission.id,
        contractor_id=submission.contractor_id,
        contractor_name=submission.contractor.name if submission.contractor else None,
        doc_type_id=submission.doc_type_id,
        doc_type_name=submission.doc_type.name if submission.doc_type else None,
        category=submission.doc_type.category if submission.doc_type else None,
        status=submission.status,
        cnt=submission.cnt,
        note=submission.note,
        filename=submission.filename,
        sha256=submission.sha256,
        created_at=submission.created_at,
        submitted_at=submission.submitted_at,
        approved_at=submission.approved_at,
        reviewed_by=submission.reviewed_by,
    )


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _resolve_contractor(db: Session, user_context: dict, contractor_id: Optional[int]) -> int:
    """Contractors submit for themselves; admins must name the contractor."""
    if user_context["role"] != Role.ADMIN:
        if contractor_id is not None:
            ensure_contractor_scope(user_context, contractor_id)
        contractor_id = user_context["contractor_id"]

    if not contractor_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="contractor_id is required")
    if db.get(Contractor, contractor_id) is None:
        raise HTTPException(status_code=404, detail="Contractor not found")
    return contractor_id


def _validate_new_submission(db: Session, user_context: dict, data: SubmissionCreate) -> int:
    """Check status, contractor and doc type; return the contractor the submission belongs to."""
    if data.status not in CREATE_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Status must be prepared or submitted",
        )

    contractor_id = _resolve_contractor(db, user_context, data.contractor_id)
    if db.get(DocType, data.doc_type_id) is None:
        raise HTTPException(status_code=404, detail="Document type not found")
    return contractor_id


def _create_submission(
    db: Session,
    request: Request,
    user_context: dict,
    data: SubmissionCreate,
    **file_fields,
) -> Submission:
    contractor_id = _validate_new_submission(db, user_context, data)

    submission = Submission(
        contractor_id=contractor_id,
        doc_type_id=data.doc_type_id,
        status=data.status,
        cnt=data.cnt,
        note=data.note,
        created_by=user_context["user_id"],
        submitted_at=_now() if data.status == SubmissionStatus.SUBMITTED.value else None,
        **file_fields,
    )
    db.add(submission)
    db.flush()

    db.add(AuditLog(
        user_id=user_context["user_id"],
        action="create_submission",
        entity_type="submission",
        entity_id=submission.id,
        details={
            "contractor_id": contractor_id,
            "doc_type_id": data.doc_type_id,
            "status": data.status,
            "cnt": data.cnt,
            "filename": file_fields.get("filename"),
        },
        ip_address=request.client.host if request.client else None,
    ))
    db.commit()
    db.refresh(submission)

    audit_logger.log(
        "create_submission",
        user_id=user_context["user_id"],
        contractor_id=contractor_id,
        entity_type="submission",
        entity_id=submission.id,
    )
    return submission


def _require_note(note: Optional[str]) -> str:
    if not note or not note.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="A note is required",
        )
    return note.strip()


def _apply_review(submission: Submission, new_status: str, reviewer_id: int, note: Optional[str]) -> None:
    submission.status = new_status
    submission.reviewed_by = reviewer_id
    # An approval without a note clears the earlier review note
    submission.note = note
    if new_status == SubmissionStatus.APPROVED.value:
        submission.approved_at = _now()
    else:
        submission.approved_at = None


def _review(
    db: Session,
    request: Request,
    user_context: dict,
    submission_ids: List[int],
    new_status: str,
    note: Optional[str],
) -> List[Submission]:
    submissions = db.query(Submission).filter(Submission.id.in_(submission_ids)).all()
    found = {s.id for s in submissions}
    missing = [i for i in submission_ids if i not in found]
    if missing:
        raise HTTPException(status_code=404, detail=f"Submission not found: {missing}")

    for submission in submissions:
        _apply_review(submission, new_status, user_context["user_id"], note)
        db.add(AuditLog(
            user_id=user_context["user_id"],
            action=f"review_{new_status}",
            entity_type="submission",
            entity_id=submission.id,
            details={"status": new_status, "note": note},
            ip_address=request.client.host if request.client else None,
        ))

    db.commit()
    for submission in submissions:
        db.refresh(submission)

    logger.info(f"{len(submissions)} submission(s) set to {new_status} by user {user_context['user_id']}")
    return submissions


def _get_submission(db: Session, submission_id: int) -> Submission:
    submission = db.get(Submission, submission_id)
    if not submission:
        raise HTTPException(status_code=404, detail="Submission not found")
    return submission


# ============= ROUTES =============

@router.get("", response_model=List[SubmissionResponse])
async def list_submissions(
    contractor_id: Optional[int] = Query(None),
    doc_type_id: Optional[int] = Query(None),
    category: Optional[str] = Query(None),
    submission_status: Optional[str] = Query(None, alias="status"),
    limit: int = Query(200, le=1000),
    offset: int = Query(0),
    user_context: dict = Depends(require_contractor),
    db: Session = Depends(get_db)
):
    """Contractors see their own submissions; admins can filter freely."""
    query = db.query(Submission)
    if user_context["role"] != Role.ADMIN:
        contractor_id = user_context["contractor_id"]
    if contractor_id:
        query = query.filter(Submission.contractor_id == contractor_id)
    if doc_type_id:
        query = query.filter(Submission.doc_type_id == doc_type_id)
    if category:
        query = query.join(DocType, DocType.id == Submission.doc_type_id).filter(DocType.category == category)
    if submission_status:
        query = query.filter(Submission.status == submission_status)

    submissions = query.order_by(desc(Submission.created_at), desc(Submission.id)).offset(offset).limit(limit).all()
    return [_to_response(s) for s in submissions]


@router.post("", response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
async def create_submission(
    request: Request,
    data: SubmissionCreate,
    user_context: dict = Depends(require_contractor),
    db: Session = Depends(get_db)
):
    """Record a submission without a file."""
    return _to_response(_create_submission(db, request, user_context, data))


@router.post("/upload", response_model=SubmissionResponse, status_code=status.HTTP_201_CREATED)
async def upload_submission(
    request: Request,
    doc_type_id: int = Form(...),
    contractor_id: Optional[int] = Form(None),
    cnt: int = Form(1),
    submission_status: str = Form(SubmissionStatus.SUBMITTED.value, alias="status"),
    note: Optional[str] = Form(None),
    file: UploadFile = File(...),
    user_context: dict = Depends(require_contractor),
    db: Session = Depends(get_db)
):
    """
    Upload a document file and record it as a submission.

    The file is hashed (SHA256) and stored under
    UPLOAD_DIR/submissions/<contractor_id>/<sha256><ext>.
    """
    ext = os.path.splitext(file.filename or "")[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        raise HTTPException(
            status_code=400,
            detail=f"File type not allowed. Allowed: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
        )
    if cnt < 1:
        raise HTTPException(status_code=400, detail="cnt must be at least 1")

    data = SubmissionCreate(
        doc_type_id=doc_type_id,
        contractor_id=contractor_id,
        cnt=cnt,
        status=submission_status,
        note=note,
    )
    # Nothing is written to disk until the submission itself is known to be valid
    data.contractor_id = _validate_new_submission(db, user_context, data)

    content = bytearray()
    while True:
        chunk = await file.read(UPLOAD_CHUNK_SIZE)
        if not chunk:
            break
        content.extend(chunk)
        if len(content) > settings.MAX_UPLOAD_SIZE:
            raise HTTPException(status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, detail="File too large")

    sha256 = hashlib.sha256(content).hexdigest()
    storage_dir = os.path.join(settings.UPLOAD_DIR, "submissions", str(data.contractor_id))
    os.makedirs(storage_dir, exist_ok=True)
    storage_path = os.path.join(storage_dir, f"{sha256}{ext}")

    # Identical content may already back an earlier submission
    already_stored = os.path.exists(storage_path)
    if not already_stored:
        with open(storage_path, "wb") as f:
            f.write(content)

    try:
        submission = _create_submission(
            db, request, user_context, data,
            filename=file.filename or "unnamed",
            content_type=file.content_type,
            storage_path=storage_path,
            sha256=sha256,
        )
    except Exception:
        if not already_stored and os.path.exists(storage_path):
            os.remove(storage_path)
        raise

    logger.info(f"Submission file stored: {file.filename} ({len(content)} bytes)")
    return _to_response(submission)


@router.get("/queue", response_model=List[QueueItem])
async def approval_queue(
    contractor_id: Optional[int] = Query(None),
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    """Submissions awaiting review, newest first, with how late each item is."""
    query = db.query(Submission, ContractorRequirement.planned_due_date).outerjoin(
        ContractorRequirement,
        (ContractorRequirement.contractor_id == Submission.contractor_id)
        & (ContractorRequirement.doc_type_id == Submission.doc_type_id),
    ).filter(Submission.status.in_(QUEUE_STATUSES))
    if contractor_id:
        query = query.filter(Submission.contractor_id == contractor_id)

    today = today_local()
    items = []
    for submission, planned_due_date in query.order_by(
        desc(Submission.submitted_at), desc(Submission.created_at), desc(Submission.id)
    ).all():
        base = _to_response(submission).model_dump()
        items.append(QueueItem(
            **base,
            planned_due_date=planned_due_date.isoformat() if planned_due_date else None,
            overdue_days=overdue_days(planned_due_date, today),
        ))
    return items


@router.post("/{submission_id}/submit", response_model=SubmissionResponse)
async def submit_submission(
    submission_id: int,
    request: Request,
    user_context: dict = Depends(require_contractor),
    db: Session = Depends(get_db)
):
    """Move a prepared or revision submission to submitted."""
    submission = _get_submission(db, submission_id)
    ensure_contractor_scope(user_context, submission.contractor_id)

    if submission.status not in RESUBMITTABLE:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Cannot submit a submission with status {submission.status}",
        )

    submission.status = SubmissionStatus.SUBMITTED.value
    submission.submitted_at = _now()
    db.add(AuditLog(
        user_id=user_context["user_id"],
        action="submit_submission",
        entity_type="submission",
        entity_id=submission.id,
        ip_address=request.client.host if request.client else None,
    ))
    db.commit()
    db.refresh(submission)
    return _to_response(submission)


@router.post("/bulk-approve", response_model=List[SubmissionResponse])
async def bulk_approve(
    request: Request,
    data: BulkReviewRequest,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    note = data.note.strip() if data.note and data.note.strip() else None
    submissions = _review(db, request, user_context, data.ids, SubmissionStatus.APPROVED.value, note)
    return [_to_response(s) for s in submissions]


@router.post("/bulk-reject", response_model=List[SubmissionResponse])
async def bulk_reject(
    request: Request,
    data: BulkReviewRequest,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    note = _require_note(data.note)
    submissions = _review(db, request, user_context, data.ids, SubmissionStatus.REJECTED.value, note)
    return [_to_response(s) for s in submissions]


@router.post("/{submission_id}/approve", response_model=SubmissionResponse)
async def approve_submission(
    submission_id: int,
    request: Request,
    data: Optional[ReviewRequest] = None,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    note = data.note.strip() if data and data.note and data.note.strip() else None
    submission = _review(db, request, user_context, [submission_id], SubmissionStatus.APPROVED.value, note)[0]
    return _to_response(submission)


@router.post("/{submission_id}/reject", response_model=SubmissionResponse)
async def reject_submission(
    submission_id: int,
    request: Request,
    data: ReviewRequest,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    note = _require_note(data.note)
    submission = _review(db, request, user_context, [submission_id], SubmissionStatus.REJECTED.value, note)[0]
    return _to_response(submission)


@router.post("/{submission_id}/revision", response_model=SubmissionResponse)
async def request_revision(
    submission_id: int,
    request: Request,
    data: ReviewRequest,
    user_context: dict = Depends(require_admin),
    db: Session = Depends(get_db)
):
    note = _require_note(data.note)
    submission = _review(db, request, user_context, [submission_id], SubmissionStatus.REVISION.value, note)[0]
    return _to_response(submission)
