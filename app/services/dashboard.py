"""
Dashboard aggregations over document progress rows.

Every function here is pure: it takes DocProgress rows (and KPI rows or
`today` where needed) and returns plain dicts/lists ready for JSON.
"""
import math
import re
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Dict, Iterable, List, Optional, Union

from app.core.config import settings
from app.services.progress import ContractorKpi, DocProgress
from app.services.status import (
    StatusColor, completion_percentage, round_half_up, to_local_date, today_local
)

ALL = "all"

# Processing-time targets in days
TARGET_PREP_DAYS = 3
TARGET_APPROVAL_DAYS = 2
TARGET_TOTAL_DAYS = 5

# Stage durations beyond which an item counts as a bottleneck
PREP_BOTTLENECK_DAYS = 5
APPROVAL_BOTTLENECK_DAYS = 3
OVERALL_BOTTLENECK_DAYS = 8

SEVERITY_RANK = {"high": 3, "medium": 2, "low": 1}
STATUS_SEVERITY_RANK = {StatusColor.RED: 3, StatusColor.AMBER: 2, StatusColor.GREEN: 1}


@dataclass
class DashboardFilter:
    contractor: Union[int, str] = ALL
    category: str = ALL
    search: Optional[str] = None

    @property
    def single_contractor(self) -> Optional[int]:
        if self.contractor in (None, ALL):
            return None
        return int(self.contractor)


def filter_rows(rows: Iterable[DocProgress], filters: Optional[DashboardFilter] = None) -> List[DocProgress]:
    """Apply contractor, category and free-text filters."""
    filters = filters or DashboardFilter()
    result = list(rows)

    contractor_id = filters.single_contractor
    if contractor_id is not None:
        result = [r for r in result if r.contractor_id == contractor_id]

    if filters.category and filters.category != ALL:
        result = [r for r in result if r.category == filters.category]

    term = (filters.search or "").strip().lower()
    if term:
        result = [
            r for r in result
            if term in (r.doc_type_name or "").lower()
            or term in (r.doc_type_code or "").lower()
            or term in (r.contractor_name or "").lower()
        ]

    return result


def _kpi_for(kpis: List[ContractorKpi], contractor_id: int) -> Optional[ContractorKpi]:
    return next((k for k in kpis if k.contractor_id == contractor_id), None)


def _average(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0.0


def _is_critical_alert(row: DocProgress) -> bool:
    return row.is_critical and row.required_count > 0 and row.approved_count < row.required_count


def _upcoming_days(row: DocProgress) -> Optional[int]:
    """Days until due, None once the date has passed or when there is none."""
    if row.due_in_days is None or row.due_in_days < 0:
        return None
    return row.due_in_days


# ============= HEADLINE KPIs =============

def overall_completion(rows, filters: DashboardFilter, kpis: List[ContractorKpi]) -> int:
    contractor_id = filters.single_contractor
    if contractor_id is not None:
        kpi = _kpi_for(kpis, contractor_id)
        return round_half_up(kpi.completion_ratio * 100) if kpi else 0

    filtered = filter_rows(rows, filters)
    required = sum(r.required_count for r in filtered)
    approved = sum(r.approved_count for r in filtered)
    return round_half_up(approved / required * 100) if required > 0 else 0


def must_have_ready(rows, filters: DashboardFilter, kpis: List[ContractorKpi]) -> int:
    contractor_id = filters.single_contractor
    if contractor_id is not None:
        kpi = _kpi_for(kpis, contractor_id)
        return round_half_up(kpi.must_have_ready_ratio * 100) if kpi else 0

    eligible = [r for r in filter_rows(rows, filters) if r.is_critical and r.required_count > 0]
    ready = [r for r in eligible if r.approved_count >= r.required_count]
    return round_half_up(len(ready) / len(eligible) * 100) if eligible else 0


def overdue_must_haves(rows, filters: DashboardFilter) -> int:
    return sum(
        1 for r in filter_rows(rows, filters)
        if r.is_critical and r.status_color == StatusColor.RED
    )


def avg_prep_time(rows, filters: DashboardFilter, kpis: List[ContractorKpi]) -> int:
    contractor_id = filters.single_contractor
    if contractor_id is not None:
        kpi = _kpi_for(kpis, contractor_id)
        return round_half_up(kpi.avg_prep_days) if kpi else 0

    durations = [r.prep_days for r in filter_rows(rows, filters) if r.prep_days is not None]
    return round_half_up(_average(durations)) if durations else 0


def avg_approval_time(rows, filters: DashboardFilter, kpis: List[ContractorKpi]) -> int:
    contractor_id = filters.single_contractor
    if contractor_id is not None:
        kpi = _kpi_for(kpis, contractor_id)
        return round_half_up(kpi.avg_approval_days) if kpi else 0

    durations = [r.approval_days for r in filter_rows(rows, filters) if r.approval_days is not None]
    return round_half_up(_average(durations)) if durations else 0


def total_documents(rows, filters: DashboardFilter) -> dict:
    filtered = filter_rows(rows, filters)
    return {
        "approved": sum(r.approved_count for r in filtered),
        "required": sum(r.required_count for r in filtered),
    }


def estimate_completion_date(rows, filters: DashboardFilter, today: Optional[date] = None) -> Optional[date]:
    """
    Project a completion date from last week's approval rate.

    Returns None when nothing has been approved yet, everything is done,
    or nothing was approved in the last 7 days.
    """
    today = today or today_local()
    filtered = filter_rows(rows, filters)
    required = sum(r.required_count for r in filtered)
    approved = sum(r.approved_count for r in filtered)

    if approved == 0 or required == approved:
        return None

    one_week_ago = today - timedelta(days=7)
    recent = sum(
        1 for r in filtered
        if r.first_approved_at and to_local_date(r.first_approved_at) >= one_week_ago
    )
    if recent == 0:
        return None

    remaining = required - approved
    if remaining <= 0:
        return None
    weeks = math.ceil(remaining / recent)
    return today + timedelta(days=weeks * 7)


def red_cards_summary(rows, filters: DashboardFilter) -> dict:
    critical = [r for r in filter_rows(rows, filters) if r.is_critical]

    missing = sum(1 for r in critical if r.required_count > 0 and r.approved_count == 0)
    overdue = sum(
        1 for r in critical
        if r.planned_due_date and r.overdue_days > 0 and r.approved_count < r.required_count
    )
    cant_start = {
        r.contractor_id for r in critical
        if r.required_count > 0 and r.approved_count < r.required_count
    }

    return {
        "total": missing + overdue,
        "missing": missing,
        "overdue": overdue,
        "contractors_cant_start": len(cant_start),
    }


def approval_time_comparison(rows, filters: DashboardFilter, today: Optional[date] = None) -> dict:
    """Average approval days for items approved this week vs the week before."""
    today = today or today_local()
    one_week_ago = today - timedelta(days=7)
    two_weeks_ago = today - timedelta(days=14)

    current, last_week = [], []
    for r in filter_rows(rows, filters):
        if r.approval_days is None:
            continue
        approved_on = to_local_date(r.first_approved_at)
        if approved_on >= one_week_ago:
            current.append(max(0.0, r.approval_days))
        elif approved_on >= two_weeks_ago:
            last_week.append(max(0.0, r.approval_days))

    return {
        "current": round_half_up(_average(current)) if current else 0,
        "last_week": round_half_up(_average(last_week)) if last_week else 0,
    }


def summary(rows, filters: DashboardFilter, kpis: List[ContractorKpi], today: Optional[date] = None) -> dict:
    """Headline figures for the dashboard header."""
    today = today or today_local()
    return {
        "overall_completion": overall_completion(rows, filters, kpis),
        "must_have_ready": must_have_ready(rows, filters, kpis),
        "overdue_must_haves": overdue_must_haves(rows, filters),
        "avg_prep_days": avg_prep_time(rows, filters, kpis),
        "avg_approval_days": avg_approval_time(rows, filters, kpis),
        "documents": total_documents(rows, filters),
        "red_cards": red_cards_summary(rows, filters),
        "approval_time": approval_time_comparison(rows, filters, today),
        "estimated_completion_date": estimate_completion_date(rows, filters, today),
    }


# ============= PROGRESS BREAKDOWNS =============

def category_progress(rows, filters: DashboardFilter) -> List[dict]:
    """Completion per category, least complete first."""
    totals: Dict[str, Dict[str, int]] = OrderedDict()
    for r in filter_rows(rows, filters):
        entry = totals.setdefault(r.category, {"approved": 0, "required": 0})
        entry["approved"] += r.approved_count
        entry["required"] += r.required_count

    result = [
        {
            "category": category,
            "approved": t["approved"],
            "required": t["required"],
            "completion": completion_percentage(t["required"], t["approved"]),
        }
        for category, t in totals.items()
    ]
    return sorted(result, key=lambda item: item["completion"])


def progress_by_contractor_category(rows) -> List[dict]:
    aggregates: Dict[tuple, dict] = OrderedDict()
    for r in rows:
        key = (r.contractor_id, r.category)
        entry = aggregates.get(key)
        if entry is None:
            entry = aggregates[key] = {
                "contractor_id": r.contractor_id,
                "contractor_name": r.contractor_name,
                "category": r.category,
                "approved": 0,
                "required": 0,
            }
        entry["approved"] += r.approved_count
        entry["required"] += r.required_count

    result = []
    for entry in aggregates.values():
        entry["completion_percentage"] = completion_percentage(entry["required"], entry["approved"])
        result.append(entry)
    return sorted(result, key=lambda e: (e["contractor_name"], e["category"]))


def milestone_progress(rows) -> List[dict]:
    """Planned vs actual window for every requirement that has a due date."""
    items = []
    for r in rows:
        if r.planned_due_date is None:
            continue
        planned = r.planned_due_date
        items.append({
            "id": f"{r.contractor_id}-{r.doc_type_id}",
            "contractor_id": r.contractor_id,
            "contractor_name": r.contractor_name,
            "doc_type_id": r.doc_type_id,
            "doc_type_name": r.doc_type_name,
            "planned_date": planned,
            "start_date": r.first_started_at or r.first_submitted_at or planned,
            "end_date": r.first_approved_at or planned,
            "completion_percentage": completion_percentage(r.required_count, r.approved_count, capped=True),
            "status_color": r.status_color,
            "approved_count": r.approved_count,
            "required_count": r.required_count,
        })
    return sorted(items, key=lambda item: item["planned_date"])


# ============= ALERTS =============

def extract_critical_alerts(rows, critical_doc_type_ids: Iterable[int] = ()) -> List[dict]:
    """
    Incomplete must-have requirements, most overdue first.

    `critical_doc_type_ids` overrides the per-doc-type flag when given.
    """
    critical_ids = set(critical_doc_type_ids)

    alerts = []
    for r in rows:
        is_critical = r.doc_type_id in critical_ids if critical_ids else r.is_critical
        if not is_critical:
            continue
        if not (r.required_count > 0 and r.approved_count < r.required_count):
            continue
        alerts.append({
            "contractor_id": r.contractor_id,
            "contractor_name": r.contractor_name,
            "doc_type_id": r.doc_type_id,
            "doc_type_name": r.doc_type_name,
            "planned_due_date": r.planned_due_date,
            "approved_count": r.approved_count,
            "required_count": r.required_count,
            "overdue_days": r.overdue_days,
            "due_in_days": _upcoming_days(r),
        })

    def sort_key(alert):
        due = alert["due_in_days"]
        return (-alert["overdue_days"], due is None, due if due is not None else 0)

    return sorted(alerts, key=sort_key)


def red_cards(rows, filters: DashboardFilter) -> List[dict]:
    """Overdue must-haves, most overdue first."""
    cards = [
        r.to_dict() for r in filter_rows(rows, filters)
        if r.is_critical and r.status_color == StatusColor.RED and r.overdue_days > 0
    ]
    return sorted(cards, key=lambda c: -c["overdue_days"])


def amber_alerts(rows, filters: DashboardFilter, threshold: Optional[int] = None) -> List[dict]:
    """Must-haves in amber that fall due within `threshold` days."""
    threshold = settings.URGENT_WINDOW_DAYS if threshold is None else threshold
    alerts = []
    for r in filter_rows(rows, filters):
        if not (r.is_critical and r.status_color == StatusColor.AMBER and r.planned_due_date):
            continue
        due = max(0, r.due_in_days)
        if due <= threshold:
            item = r.to_dict()
            item["due_in_days"] = due
            alerts.append(item)
    return sorted(alerts, key=lambda a: a["due_in_days"])


def process_snapshot(rows, filters: DashboardFilter, limit: int = 5) -> List[dict]:
    """The `limit` rows most in need of attention."""
    snapshot = []
    for r in filter_rows(rows, filters):
        item = r.to_dict()
        item["due_in_days"] = _upcoming_days(r)
        item["progress_percent"] = (
            completion_percentage(r.required_count, r.approved_count) if r.required_count > 0 else 100
        )
        item["severity_rank"] = STATUS_SEVERITY_RANK.get(r.status_color, 0)
        snapshot.append(item)

    def sort_key(item):
        rank = item["severity_rank"]
        overdue = -item["overdue_days"] if rank == 3 else 0
        due_soon = item["due_in_days"] if item["due_in_days"] is not None else math.inf
        due_soon = due_soon if rank == 2 else 0
        planned = item["planned_due_date"] or date.max
        return (-rank, overdue, due_soon, item["progress_percent"], planned)

    snapshot.sort(key=sort_key)
    return snapshot[:max(limit, 0)]


# ============= RED CARD LEVELS =============

RED_CARD_LEVELS = {
    1: {
        "level": 1,
        "name": "Cảnh báo sớm",
        "description": f"Tài liệu sẽ đến hạn trong {settings.AMBER_WINDOW_DAYS} ngày",
        "color_code": "amber",
        "progress_threshold": 20,
        "time_threshold": settings.AMBER_WINDOW_DAYS,
        "actions": [
            "Gửi email nhắc nhở",
            "Lên lịch họp review",
            "Cung cấp hỗ trợ kỹ thuật",
        ],
    },
    2: {
        "level": 2,
        "name": "Cảnh báo khẩn",
        "description": f"Tài liệu sẽ đến hạn trong {settings.URGENT_WINDOW_DAYS} ngày",
        "color_code": "orange",
        "progress_threshold": 50,
        "time_threshold": settings.URGENT_WINDOW_DAYS,
        "actions": [
            "Họp hàng ngày",
            "Escalation cho quản lý",
            "Gán mentor hỗ trợ",
        ],
    },
    3: {
        "level": 3,
        "name": "Quá hạn",
        "description": "Tài liệu đã quá hạn",
        "color_code": "red",
        "progress_threshold": 80,
        "time_threshold": 0,
        "actions": [
            "NGƯNG thi công",
            "Họp với ban lãnh đạo",
            "Xem xét thay thế nhà thầu",
        ],
    },
}

_BUTTON_SEVERITY = {3: "destructive", 2: "secondary", 1: "primary"}


def warning_level(progress_percentage: int, due_in: Optional[int], overdue: int) -> int:
    """1 = early warning, 2 = urgent, 3 = overdue."""
    if overdue > 0:
        return 3
    if due_in is not None and due_in <= settings.URGENT_WINDOW_DAYS:
        return 2
    return 1


def risk_score(progress_percentage: int, due_in: Optional[int], overdue: int, is_critical: bool) -> int:
    """0-100; low progress, lateness, proximity and criticality all add risk."""
    score = (100 - progress_percentage) * 0.4
    if overdue > 0:
        score += min(overdue * 5, 40)
    if due_in is not None and due_in <= settings.AMBER_WINDOW_DAYS:
        score += (settings.AMBER_WINDOW_DAYS - due_in) * 4
    if is_critical:
        score += 20
    return min(100, round_half_up(score))


def _action_slug(label: str) -> str:
    return "execute-" + re.sub(r"\s+", "-", label.lower())


def to_red_card(alert: dict, is_critical: bool = True) -> dict:
    """Enrich a critical alert with its warning level, risk and actions."""
    progress = completion_percentage(alert["required_count"], alert["approved_count"])
    level = warning_level(progress, alert["due_in_days"], alert["overdue_days"])
    config = RED_CARD_LEVELS[level]

    card = dict(alert)
    card.update({
        "warning_level": level,
        "progress_percentage": progress,
        "recommended_actions": list(config["actions"]),
        "color_code": config["color_code"],
        "risk_score": risk_score(progress, alert["due_in_days"], alert["overdue_days"], is_critical),
        "action_buttons": [
            {"label": label, "action": _action_slug(label), "severity": _BUTTON_SEVERITY[level]}
            for label in config["actions"]
        ],
    })
    return card


def red_cards_by_level(rows, critical_doc_type_ids: Iterable[int] = ()) -> dict:
    critical_ids = set(critical_doc_type_ids)
    critical_flags = {r.doc_type_id: r.is_critical for r in rows}

    cards = []
    for alert in extract_critical_alerts(rows, critical_ids):
        if critical_ids:
            is_critical = alert["doc_type_id"] in critical_ids
        else:
            is_critical = critical_flags.get(alert["doc_type_id"], False)
        cards.append(to_red_card(alert, is_critical))

    levels = {}
    for level in (1, 2, 3):
        levels[f"level{level}"] = sorted(
            (c for c in cards if c["warning_level"] == level),
            key=lambda c: -c["risk_score"],
        )
    levels["all"] = cards
    return levels


def red_cards_statistics(by_level: dict) -> dict:
    cards = by_level["all"]
    return {
        "total": len(cards),
        "level1_count": len(by_level["level1"]),
        "level2_count": len(by_level["level2"]),
        "level3_count": len(by_level["level3"]),
        "high_risk_count": sum(1 for c in cards if c["risk_score"] > 70),
        "contractors_affected": len({c["contractor_id"] for c in cards}),
        "average_risk_score": (
            round_half_up(sum(c["risk_score"] for c in cards) / len(cards)) if cards else 0
        ),
    }


# ============= PROCESSING TIMES =============

def processing_times_by_contractor(rows) -> List[dict]:
    """Average and longest prep/approval durations per contractor."""
    groups: Dict[int, dict] = OrderedDict()
    for r in rows:
        bucket = groups.setdefault(r.contractor_id, {
            "contractor_name": r.contractor_name, "prep": [], "approval": [],
        })
        if r.prep_days is not None:
            bucket["prep"].append(max(0.0, r.prep_days))
        if r.approval_days is not None:
            bucket["approval"].append(max(0.0, r.approval_days))

    def avg(values):
        return round_half_up(_average(values), 1) if values else None

    return [
        {
            "contractor_id": cid,
            "contractor_name": g["contractor_name"],
            "average_prep_days": avg(g["prep"]),
            "longest_prep_days": max(g["prep"]) if g["prep"] else None,
            "average_approval_days": avg(g["approval"]),
            "longest_approval_days": max(g["approval"]) if g["approval"] else None,
        }
        for cid, g in groups.items()
    ]


def _trend(current: float, previous: float) -> str:
    if abs(current - previous) < 0.5:
        return "stable"
    return "up" if current > previous else "down"


def _stage_averages(items: List[DocProgress]) -> tuple:
    prep = [r.prep_days for r in items if r.prep_days is not None and r.prep_days >= 0]
    approval = [r.approval_days for r in items if r.approval_days is not None and r.approval_days >= 0]
    total = [r.total_days for r in items if r.total_days is not None and r.total_days >= 0]
    return (
        round_half_up(_average(prep), 1),
        round_half_up(_average(approval), 1),
        round_half_up(_average(total), 1),
    )


def _vs_target(value: float, target: float) -> int:
    return round_half_up((value - target) / target * 100) if target > 0 else 0


def processing_time_metrics(rows, filters: DashboardFilter, today: Optional[date] = None) -> dict:
    """Stage averages against targets, with the trend versus the previous week."""
    today = today or today_local()
    filtered = filter_rows(rows, filters)

    finished = [
        r for r in filtered
        if r.first_started_at and r.first_submitted_at and r.first_approved_at
    ]
    prep, approval, total = _stage_averages(finished)

    one_week_ago = today - timedelta(days=7)
    two_weeks_ago = today - timedelta(days=14)
    last_week_items = [
        r for r in filtered
        if r.first_approved_at and two_weeks_ago <= to_local_date(r.first_approved_at) < one_week_ago
    ]
    lw_prep, lw_approval, lw_total = _stage_averages(last_week_items)

    return {
        "average_prep_days": prep,
        "average_approval_days": approval,
        "average_total_days": total,
        "target_prep_days": TARGET_PREP_DAYS,
        "target_approval_days": TARGET_APPROVAL_DAYS,
        "target_total_days": TARGET_TOTAL_DAYS,
        "prep_time_vs_target": _vs_target(prep, TARGET_PREP_DAYS),
        "approval_time_vs_target": _vs_target(approval, TARGET_APPROVAL_DAYS),
        "total_time_vs_target": _vs_target(total, TARGET_TOTAL_DAYS),
        "last_week_prep_days": lw_prep,
        "last_week_approval_days": lw_approval,
        "last_week_total_days": lw_total,
        "prep_time_trend": _trend(prep, lw_prep),
        "approval_time_trend": _trend(approval, lw_approval),
        "total_time_trend": _trend(total, lw_total),
    }


def timeline(rows, filters: DashboardFilter, limit: int = 20) -> List[dict]:
    """Per-requirement lifecycle with the stage that held it up, worst first."""
    events = []
    for r in filter_rows(rows, filters):
        prep, approval = r.prep_days, r.approval_days

        if r.first_approved_at:
            status = "approved"
        elif r.first_submitted_at:
            status = "submitted"
        elif r.first_started_at:
            status = "in_progress"
        else:
            status = "not_started"
        if r.planned_due_date and r.overdue_days > 0:
            status = "overdue"

        stage, stage_days = "none", 0.0
        if prep is not None and prep > PREP_BOTTLENECK_DAYS:
            stage, stage_days = "preparation", prep - PREP_BOTTLENECK_DAYS
        elif approval is not None and approval > APPROVAL_BOTTLENECK_DAYS:
            stage, stage_days = "approval", approval - APPROVAL_BOTTLENECK_DAYS

        events.append({
            "id": f"{r.contractor_id}-{r.doc_type_id}",
            "contractor_id": r.contractor_id,
            "contractor_name": r.contractor_name,
            "doc_type_id": r.doc_type_id,
            "doc_type_name": r.doc_type_name,
            "doc_type_code": r.doc_type_code,
            "category": r.category,
            "start_date": r.first_started_at,
            "submit_date": r.first_submitted_at,
            "approval_date": r.first_approved_at,
            "planned_due_date": r.planned_due_date,
            "prep_days": prep,
            "approval_days": approval,
            "total_days": r.total_days,
            "status": status,
            "is_critical": r.is_critical,
            "bottleneck_stage": stage,
            "bottleneck_days": stage_days,
        })

    # Stable sorts: newest start first, then biggest bottleneck first
    with_start = [e for e in events if e["start_date"] is not None]
    without_start = [e for e in events if e["start_date"] is None]
    with_start.sort(key=lambda e: e["start_date"], reverse=True)
    ordered = with_start + without_start
    ordered.sort(key=lambda e: -e["bottleneck_days"])
    return ordered[:limit]


def _week_trend(items: List[DocProgress], today: date) -> List[dict]:
    """Seven daily points, each averaging the Sunday-to-Saturday week it falls in."""
    points = []
    for offset in range(6, -1, -1):
        day = today - timedelta(days=offset)
        week_start = day - timedelta(days=(day.weekday() + 1) % 7)
        week_end = week_start + timedelta(days=6)
        week_items = [
            r for r in items
            if r.first_approved_at and week_start <= to_local_date(r.first_approved_at) <= week_end
        ]
        prep, approval, total = _stage_averages(week_items)
        points.append({"date": day, "prep_days": prep, "approval_days": approval, "total_days": total})
    return points


def contractor_processing_comparison(rows, filters: DashboardFilter, today: Optional[date] = None) -> List[dict]:
    """Stage averages, ranks and a weekly trend per contractor."""
    today = today or today_local()
    groups: Dict[int, List[DocProgress]] = OrderedDict()
    for r in filter_rows(rows, filters):
        groups.setdefault(r.contractor_id, []).append(r)

    results = []
    for cid, items in groups.items():
        prep, approval, total = _stage_averages(items)
        score = max(0.0, 100 - (prep * 5 + approval * 8 + total * 3))
        results.append({
            "contractor_id": cid,
            "contractor_name": items[0].contractor_name,
            "average_prep_days": prep,
            "average_approval_days": approval,
            "average_total_days": total,
            "performance_score": round_half_up(score),
            "trend_data": _week_trend(items, today),
        })

    for field, rank_field in (
        ("average_prep_days", "prep_time_rank"),
        ("average_approval_days", "approval_time_rank"),
        ("average_total_days", "total_time_rank"),
    ):
        for index, item in enumerate(sorted(results, key=lambda i: i[field]), start=1):
            item[rank_field] = index

    results.sort(key=lambda i: -i["performance_score"])
    for index, item in enumerate(results, start=1):
        item["overall_rank"] = index
    return results


def processing_time_by_doc_type(rows, filters: DashboardFilter) -> List[dict]:
    """Stage averages per doc type with complexity and improvement hints."""
    groups: Dict[int, List[DocProgress]] = OrderedDict()
    for r in filter_rows(rows, filters):
        groups.setdefault(r.doc_type_id, []).append(r)

    results = []
    for doc_type_id, items in groups.items():
        prep, approval, total = _stage_averages(items)

        if total > 10:
            complexity = "high"
        elif total > 5:
            complexity = "medium"
        else:
            complexity = "low"

        target = {"low": 3, "medium": 5, "high": 8}[complexity]
        potential = round_half_up(max(0.0, (total - target) / target * 100))

        recommendations = []
        if prep > 4:
            recommendations += [
                "Cung cấp template và hướng dẫn chi tiết hơn",
                "Tổ chức training cho nhà thầu",
            ]
        if approval > 3:
            recommendations += [
                "Tối ưu hóa quy trình phê duyệt",
                "Gán thêm reviewer để giảm tải",
            ]
        if total > 8:
            recommendations += [
                "Xem xét chia nhỏ quy trình thành các bước đơn giản hơn",
                "Áp dụng parallel processing cho các bước độc lập",
            ]

        first = items[0]
        results.append({
            "doc_type_id": doc_type_id,
            "doc_type_name": first.doc_type_name,
            "doc_type_code": first.doc_type_code,
            "category": first.category,
            "average_prep_days": prep,
            "average_approval_days": approval,
            "average_total_days": total,
            "complexity": complexity,
            "sample_size": len(items),
            "optimization_potential": potential,
            "recommendations": recommendations,
        })

    return sorted(results, key=lambda i: -i["average_total_days"])


_BOTTLENECK_STAGES = (
    {
        "stage": "preparation",
        "duration": "prep_days",
        "limit": PREP_BOTTLENECK_DAYS,
        "severity": (10, 5, 2),
        "root_causes": [
            "Thiếu template và hướng dẫn",
            "Nhà thầu chưa quen với quy trình",
            "Yêu cầu phức tạp cần thời gian chuẩn bị",
            "Thiếu nguồn lực từ nhà thầu",
        ],
        "recommendations": [
            "Cung cấp template chuẩn hóa",
            "Tổ chức workshop training",
            "Gán support staff cho nhà thầu mới",
            "Phân chia yêu cầu phức tạp thành các phần nhỏ hơn",
        ],
    },
    {
        "stage": "approval",
        "duration": "approval_days",
        "limit": APPROVAL_BOTTLENECK_DAYS,
        "severity": (7, 4, 2),
        "root_causes": [
            "Reviewer quá tải",
            "Quy trình phê duyệt phức tạp",
            "Thiếu clear escalation path",
            "Thiếu automated notifications",
        ],
        "recommendations": [
            "Tăng số lượng reviewer",
            "Đơn giản hóa quy trình phê duyệt",
            "Thiết lập clear SLA cho từng bước",
            "Implement automated reminder system",
        ],
    },
    {
        "stage": "overall",
        "duration": "total_days",
        "limit": OVERALL_BOTTLENECK_DAYS,
        "severity": (15, 8, 4),
        "root_causes": [
            "Thiếu coordination giữa các bộ phận",
            "Quy trình không được tối ưu",
            "Thiếu visibility vào trạng thái hồ sơ",
            "Thiếu proactive management",
        ],
        "recommendations": [
            "Implement centralized tracking system",
            "Tối ưu hóa end-to-end workflow",
            "Thiết lập regular review meetings",
            "Áp dụng agile methodology cho document processing",
        ],
    },
)


def _delay_severity(delay: float, thresholds: tuple) -> str:
    critical, high, medium = thresholds
    if delay > critical:
        return "critical"
    if delay > high:
        return "high"
    if delay > medium:
        return "medium"
    return "low"


def analyze_bottlenecks(rows, filters: DashboardFilter) -> List[dict]:
    """One analysis per workflow stage: how many items overran and by how much."""
    filtered = filter_rows(rows, filters)
    analyses = []
    for spec in _BOTTLENECK_STAGES:
        durations = [getattr(r, spec["duration"]) for r in filtered]
        late = [d for d in durations if d is not None and d > spec["limit"]]
        delay = _average([max(0.0, d - spec["limit"]) for d in late]) if late else 0.0

        analyses.append({
            "stage": spec["stage"],
            "severity": _delay_severity(delay, spec["severity"]),
            "average_delay": round_half_up(delay, 1),
            "affected_items": len(late),
            "total_items": len(filtered),
            "impact_percentage": round_half_up(len(late) / len(filtered) * 100) if filtered else 0,
            "root_causes": list(spec["root_causes"]),
            "recommendations": list(spec["recommendations"]),
            "estimated_savings": round_half_up(delay * len(late)),
        })
    return analyses


# ============= CONTRACTOR COMPARISON =============

PERFORMANCE_WEIGHTS = {"completion": 0.3, "quality": 0.25, "speed": 0.2, "compliance": 0.25}


def contractor_performance_scores(kpis: List[ContractorKpi], rows: Optional[List[DocProgress]] = None) -> List[dict]:
    """Weighted completion/quality/speed/compliance score, ranked best first."""
    scores = []
    for kpi in kpis:
        completion = round_half_up(kpi.completion_ratio * 100)

        compliance = 100.0
        if kpi.red_items > 0 and rows:
            critical_required = sum(
                r.required_count for r in rows
                if r.contractor_id == kpi.contractor_id and r.is_critical
            )
            if critical_required > 0:
                compliance = max(0.0, 100 - kpi.red_items / critical_required * 100)

        # No separate quality signal is tracked; completion stands in for it
        quality = completion
        if kpi.avg_approval_days > 0:
            speed = min(100, round_half_up(100 / (kpi.avg_approval_days + 1)))
        else:
            speed = 100

        weighted = round_half_up(
            completion * PERFORMANCE_WEIGHTS["completion"]
            + quality * PERFORMANCE_WEIGHTS["quality"]
            + speed * PERFORMANCE_WEIGHTS["speed"]
            + compliance * PERFORMANCE_WEIGHTS["compliance"]
        )
        scores.append({
            "contractor_id": kpi.contractor_id,
            "contractor_name": kpi.contractor_name,
            "completion": completion,
            "quality": quality,
            "speed": speed,
            "compliance": round_half_up(compliance),
            "weighted_score": weighted,
        })

    scores.sort(key=lambda s: -s["weighted_score"])
    for index, score in enumerate(scores, start=1):
        score["rank"] = index
    return scores


def contractor_heatmap(rows, contractor_ids: Optional[List[int]] = None) -> List[dict]:
    """Completion per (contractor, doc type) bucketed as good/average/poor."""
    if contractor_ids:
        rows = [r for r in rows if r.contractor_id in contractor_ids]

    grouped: Dict[tuple, dict] = OrderedDict()
    for r in rows:
        key = (r.contractor_id, r.doc_type_id)
        entry = grouped.setdefault(key, {
            "contractor_id": r.contractor_id,
            "contractor_name": r.contractor_name,
            "doc_type": r.doc_type_name,
            "doc_type_id": r.doc_type_id,
            "approved": 0,
            "required": 0,
        })
        entry["approved"] += r.approved_count
        entry["required"] += r.required_count

    cells = []
    for entry in grouped.values():
        value = completion_percentage(entry["required"], entry["approved"])
        entry["value"] = value
        entry["status"] = "good" if value >= 80 else "average" if value >= 60 else "poor"
        cells.append(entry)
    return cells
