"""
Document progress and contractor KPI queries.

One DocProgress row exists per contractor requirement. Submission counts and
first-event timestamps are aggregated in SQL; the status colour is derived in
Python by app.services.status so the rules live in one place.
"""
from dataclasses import dataclass, asdict
from datetime import date, datetime
from typing import Dict, List, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.db.models import (
    Contractor, ContractorRequirement, DocType, Submission, SubmissionStatus
)
from app.services.status import (
    StatusColor, days_between, derive_status_color, due_in_days,
    is_complete, overdue_days, round_half_up, today_local
)


@dataclass
class DocProgress:
    """Progress of one (contractor, doc type) requirement."""
    contractor_id: int
    contractor_name: str
    doc_type_id: int
    doc_type_name: str
    category: str
    is_critical: bool
    required_count: int
    approved_count: int
    planned_due_date: Optional[date] = None
    doc_type_code: Optional[str] = None
    weight: int = 1
    first_started_at: Optional[datetime] = None
    first_submitted_at: Optional[datetime] = None
    first_approved_at: Optional[datetime] = None
    status_color: StatusColor = StatusColor.GRAY
    overdue_days: int = 0
    due_in_days: Optional[int] = None

    @classmethod
    def build(cls, today: date, **fields) -> "DocProgress":
        """Create a row and derive its status and day counts for `today`."""
        row = cls(**fields)
        row.refresh(today)
        return row

    def refresh(self, today: date) -> None:
        self.status_color = derive_status_color(
            self.required_count,
            self.approved_count,
            self.planned_due_date,
            self.is_critical,
            today=today,
        )
        self.overdue_days = overdue_days(self.planned_due_date, today)
        self.due_in_days = due_in_days(self.planned_due_date, today)

    @property
    def is_complete(self) -> bool:
        return is_complete(self.required_count, self.approved_count)

    @property
    def prep_days(self) -> Optional[float]:
        return days_between(self.first_started_at, self.first_submitted_at)

    @property
    def approval_days(self) -> Optional[float]:
        return days_between(self.first_submitted_at, self.first_approved_at)

    @property
    def total_days(self) -> Optional[float]:
        return days_between(self.first_started_at, self.first_approved_at)

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class ContractorKpi:
    """Per-contractor headline figures."""
    contractor_id: int
    contractor_name: str
    completion_ratio: float = 0.0
    must_have_ready_ratio: float = 0.0
    avg_prep_days: float = 0.0
    avg_approval_days: float = 0.0
    red_items: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


def _submission_aggregates(db: Session):
    approved = SubmissionStatus.APPROVED.value
    return (
        db.query(
            Submission.contractor_id.label("contractor_id"),
            Submission.doc_type_id.label("doc_type_id"),
            func.coalesce(
                func.sum(case((Submission.status == approved, Submission.cnt), else_=0)), 0
            ).label("approved_count"),
            func.min(Submission.created_at).label("first_started_at"),
            func.min(Submission.submitted_at).label("first_submitted_at"),
            func.min(
                case((Submission.status == approved, Submission.approved_at), else_=None)
            ).label("first_approved_at"),
        )
        .group_by(Submission.contractor_id, Submission.doc_type_id)
        .subquery()
    )


def _as_datetime(value) -> Optional[datetime]:
    # SQLite hands back aggregated timestamps as text
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def load_doc_progress(
    db: Session,
    today: Optional[date] = None,
    contractor_id: Optional[int] = None,
) -> List[DocProgress]:
    """Load one progress row per contractor requirement."""
    today = today or today_local()
    agg = _submission_aggregates(db)

    query = (
        db.query(
            ContractorRequirement,
            Contractor.name,
            DocType,
            agg.c.approved_count,
            agg.c.first_started_at,
            agg.c.first_submitted_at,
            agg.c.first_approved_at,
        )
        .join(Contractor, Contractor.id == ContractorRequirement.contractor_id)
        .join(DocType, DocType.id == ContractorRequirement.doc_type_id)
        .outerjoin(
            agg,
            (agg.c.contractor_id == ContractorRequirement.contractor_id)
            & (agg.c.doc_type_id == ContractorRequirement.doc_type_id),
        )
    )
    if contractor_id is not None:
        query = query.filter(ContractorRequirement.contractor_id == contractor_id)

    query = query.order_by(Contractor.name, DocType.category, DocType.code, DocType.name)

    rows = []
    for req, contractor_name, doc_type, approved, started, submitted, approved_at in query.all():
        rows.append(DocProgress.build(
            today,
            contractor_id=req.contractor_id,
            contractor_name=contractor_name,
            doc_type_id=doc_type.id,
            doc_type_name=doc_type.name,
            doc_type_code=doc_type.code,
            category=doc_type.category,
            is_critical=bool(doc_type.is_critical),
            weight=doc_type.weight or 1,
            required_count=req.required_count or 0,
            approved_count=int(approved or 0),
            planned_due_date=req.planned_due_date,
            first_started_at=_as_datetime(started),
            first_submitted_at=_as_datetime(submitted),
            first_approved_at=_as_datetime(approved_at),
        ))
    return rows


def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def compute_contractor_kpis(
    rows: List[DocProgress],
    contractors: Optional[Dict[int, str]] = None,
) -> List[ContractorKpi]:
    """
    Aggregate progress rows into one KPI row per contractor.

    `contractors` (id -> name) adds zero rows for contractors that have no
    requirements yet.
    """
    grouped: Dict[int, List[DocProgress]] = {}
    names: Dict[int, str] = dict(contractors or {})
    for row in rows:
        grouped.setdefault(row.contractor_id, []).append(row)
        names.setdefault(row.contractor_id, row.contractor_name)

    kpis = []
    for cid, name in names.items():
        items = grouped.get(cid, [])
        required = sum(r.required_count for r in items if r.required_count > 0)
        approved = sum(r.approved_count for r in items if r.required_count > 0)

        critical = [r for r in items if r.is_critical and r.required_count > 0]
        ready = [r for r in critical if r.is_complete]

        prep = [max(0.0, r.prep_days) for r in items if r.prep_days is not None]
        approval = [max(0.0, r.approval_days) for r in items if r.approval_days is not None]

        kpis.append(ContractorKpi(
            contractor_id=cid,
            contractor_name=name,
            completion_ratio=approved / required if required > 0 else 0.0,
            must_have_ready_ratio=len(ready) / len(critical) if critical else 0.0,
            avg_prep_days=round_half_up(_mean(prep), 1),
            avg_approval_days=round_half_up(_mean(approval), 1),
            red_items=sum(1 for r in items if r.status_color == StatusColor.RED),
        ))

    return sorted(kpis, key=lambda k: k.contractor_name)


def load_contractor_kpis(db: Session, today: Optional[date] = None) -> List[ContractorKpi]:
    """KPI rows for every contractor, including ones with no requirements."""
    rows = load_doc_progress(db, today=today)
    contractors = {c.id: c.name for c in db.query(Contractor).all()}
    return compute_contractor_kpis(rows, contractors)
