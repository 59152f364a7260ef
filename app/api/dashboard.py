"""
Dashboard API - progress, alerts, suggestions and processing-time views.

Every endpoint accepts the same filters (contractor, category, search) and an
optional `as_of` date that replaces "today". Contractor callers are always
limited to their own contractor.
"""
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.db.session import get_db
from app.core.rbac import require_contractor, Role
from app.services import dashboard as dash
from app.services.progress import (
    ContractorKpi, DocProgress, compute_contractor_kpis, load_doc_progress
)
from app.services.status import today_local
from app.services.suggestions import generate_action_suggestions, suggest_actions

router = APIRouter(prefix="/api/dashboard", tags=["Dashboard"])


@dataclass
class DashboardView:
    rows: List[DocProgress]
    filters: dash.DashboardFilter
    today: date

    @property
    def filtered(self) -> List[DocProgress]:
        return dash.filter_rows(self.rows, self.filters)

    @property
    def kpis(self) -> List[ContractorKpi]:
        return compute_contractor_kpis(self.rows)


async def dashboard_view(
    contractor: str = Query(dash.ALL, description="'all' or a contractor id"),
    category: str = Query(dash.ALL),
    search: Optional[str] = Query(None),
    as_of: Optional[date] = Query(None, description="Evaluate as of this date instead of today"),
    user_context: dict = Depends(require_contractor),
    db: Session = Depends(get_db),
) -> DashboardView:
    today = as_of or today_local()

    if user_context["role"] != Role.ADMIN:
        if user_context["contractor_id"] is None:
            raise HTTPException(status_code=403, detail="Access denied to this contractor")
        contractor = str(user_context["contractor_id"])
    elif contractor != dash.ALL and not contractor.isdigit():
        contractor = dash.ALL

    scope = None if contractor == dash.ALL else int(contractor)
    rows = load_doc_progress(db, today=today, contractor_id=scope)
    return DashboardView(
        rows=rows,
        filters=dash.DashboardFilter(contractor=contractor, category=category, search=search),
        today=today,
    )


# ============= PROGRESS =============

@router.get("/progress")
async def progress(view: DashboardView = Depends(dashboard_view)):
    """One row per contractor requirement with its status colour."""
    return [r.to_dict() for r in view.filtered]


@router.get("/kpis")
async def kpis(view: DashboardView = Depends(dashboard_view)):
    return [k.to_dict() for k in view.kpis]


@router.get("/summary")
async def summary(view: DashboardView = Depends(dashboard_view)):
    return dash.summary(view.rows, view.filters, view.kpis, view.today)


@router.get("/categories")
async def categories(view: DashboardView = Depends(dashboard_view)):
    return dash.category_progress(view.rows, view.filters)


@router.get("/categories/by-contractor")
async def categories_by_contractor(view: DashboardView = Depends(dashboard_view)):
    return dash.progress_by_contractor_category(view.filtered)


@router.get("/milestones")
async def milestones(view: DashboardView = Depends(dashboard_view)):
    return dash.milestone_progress(view.filtered)


# ============= ALERTS =============

@router.get("/critical-alerts")
async def critical_alerts(
    critical_doc_type_ids: List[int] = Query([]),
    view: DashboardView = Depends(dashboard_view),
):
    return dash.extract_critical_alerts(view.filtered, critical_doc_type_ids)


@router.get("/red-cards")
async def red_cards(
    critical_doc_type_ids: List[int] = Query([]),
    view: DashboardView = Depends(dashboard_view),
):
    """Overdue must-haves plus every critical alert grouped by warning level."""
    by_level = dash.red_cards_by_level(view.filtered, critical_doc_type_ids)
    return {
        "overdue": dash.red_cards(view.rows, view.filters),
        "levels": by_level,
        "statistics": dash.red_cards_statistics(by_level),
        "level_configs": dash.RED_CARD_LEVELS,
    }


@router.get("/amber-alerts")
async def amber_alerts(
    threshold: Optional[int] = Query(None, ge=0),
    view: DashboardView = Depends(dashboard_view),
):
    return dash.amber_alerts(view.rows, view.filters, threshold)


@router.get("/snapshot")
async def snapshot(
    limit: int = Query(5, ge=0, le=100),
    view: DashboardView = Depends(dashboard_view),
):
    return dash.process_snapshot(view.rows, view.filters, limit)


# ============= SUGGESTIONS =============

@router.get("/suggestions")
async def suggestions(view: DashboardView = Depends(dashboard_view)):
    """Contractor-level follow-ups derived from critical alerts."""
    return generate_action_suggestions(dash.extract_critical_alerts(view.filtered))


@router.get("/row-actions")
async def row_actions(view: DashboardView = Depends(dashboard_view)):
    """Suggested follow-ups for every row that needs one."""
    items = []
    for row in view.filtered:
        actions = suggest_actions(row, view.today)
        if actions:
            items.append({
                "contractor_id": row.contractor_id,
                "contractor_name": row.contractor_name,
                "doc_type_id": row.doc_type_id,
                "doc_type_name": row.doc_type_name,
                "status_color": row.status_color,
                "overdue_days": row.overdue_days,
                "due_in_days": row.due_in_days,
                "actions": actions,
            })
    return items


# ============= PROCESSING TIMES =============

@router.get("/processing-times")
async def processing_times(view: DashboardView = Depends(dashboard_view)):
    return dash.processing_times_by_contractor(view.filtered)


@router.get("/processing-times/metrics")
async def processing_time_metrics(view: DashboardView = Depends(dashboard_view)):
    return dash.processing_time_metrics(view.rows, view.filters, view.today)


@router.get("/processing-times/by-doc-type")
async def processing_time_by_doc_type(view: DashboardView = Depends(dashboard_view)):
    return dash.processing_time_by_doc_type(view.rows, view.filters)


@router.get("/processing-times/comparison")
async def processing_time_comparison(view: DashboardView = Depends(dashboard_view)):
    return dash.contractor_processing_comparison(view.rows, view.filters, view.today)


@router.get("/timeline")
async def timeline(
    limit: int = Query(20, ge=1, le=500),
    view: DashboardView = Depends(dashboard_view),
):
    return dash.timeline(view.rows, view.filters, limit)


@router.get("/bottlenecks")
async def bottlenecks(view: DashboardView = Depends(dashboard_view)):
    return dash.analyze_bottlenecks(view.rows, view.filters)


# ============= COMPARISON =============

@router.get("/performance")
async def performance(view: DashboardView = Depends(dashboard_view)):
    return dash.contractor_performance_scores(view.kpis, view.rows)


@router.get("/heatmap")
async def heatmap(
    contractor_ids: List[int] = Query([]),
    view: DashboardView = Depends(dashboard_view),
):
    return dash.contractor_heatmap(view.filtered, contractor_ids or None)
