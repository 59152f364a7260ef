"""
Rule-based follow-up suggestions for late or at-risk documents.
"""
from datetime import date
from typing import Dict, List, Optional

from app.core.config import settings
from app.services.progress import DocProgress
from app.services.status import StatusColor, due_in_days, overdue_days, today_local


def suggest_actions(row: DocProgress, today: Optional[date] = None) -> List[str]:
    """
    Ordered follow-up actions for a single progress row.

    Red and past due: meeting, escalation email, mentor.
    Amber and due within the urgent window: daily reminders, check-in.
    Anything else: nothing.
    """
    today = today or today_local()
    due = row.planned_due_date
    if due is None:
        return []

    if row.status_color == StatusColor.RED and today > due:
        days_over = overdue_days(due, today)
        return [
            f"Tổ chức họp khẩn với {row.contractor_name} về {row.doc_type_name} "
            f"(quá hạn {days_over} ngày).",
            f"Gửi email cảnh báo kèm biểu mẫu mới nhất cho {row.doc_type_name}.",
            "Phân công mentor hỗ trợ khắc phục thiếu sót và chia sẻ checklist chuẩn.",
        ]

    if row.status_color == StatusColor.AMBER:
        days_left = due_in_days(due, today)
        if 0 <= days_left <= settings.URGENT_WINDOW_DAYS:
            return [
                "Nhắc nhở hằng ngày và đặt lịch review nội bộ trước hạn.",
                f"Liên hệ {row.contractor_name} để xác nhận tiến độ {row.doc_type_name}.",
            ]

    return []


SEVERITY_RANK = {"high": 3, "medium": 2, "low": 1}


def generate_action_suggestions(alerts: List[dict]) -> List[dict]:
    """
    Contractor-level suggestions from critical alerts
    (see app.services.dashboard.extract_critical_alerts).
    """
    if not alerts:
        return []

    groups: Dict[int, dict] = {}
    for alert in alerts:
        group = groups.setdefault(alert["contractor_id"], {
            "contractor_name": alert["contractor_name"], "alerts": [],
        })
        group["alerts"].append(alert)

    suggestions = []
    for contractor_id, group in groups.items():
        name = group["contractor_name"]
        items = group["alerts"]
        heavy = [a for a in items if a["overdue_days"] >= 7]
        due_soon = [
            a for a in items
            if a["overdue_days"] == 0 and a["due_in_days"] is not None and a["due_in_days"] <= 2
        ]

        if len(items) >= 3:
            suggestions.append({
                "id": f"{contractor_id}-war-room",
                "contractor_id": contractor_id,
                "contractor_name": name,
                "severity": "high",
                "message": (
                    f"Tổ chức họp escalation với {name} để xử lý ngay "
                    f"{len(items)} hồ sơ bắt buộc còn tồn đọng."
                ),
                "related_documents": [a["doc_type_name"] for a in items],
            })

        if heavy:
            names = ", ".join(a["doc_type_name"] for a in heavy)
            suggestions.append({
                "id": f"{contractor_id}-escalate",
                "contractor_id": contractor_id,
                "contractor_name": name,
                "severity": "high",
                "message": f"Báo cáo lên ban lãnh đạo về {names}; các hồ sơ này đã trễ hơn 7 ngày.",
                "related_documents": [a["doc_type_name"] for a in heavy],
            })

        if due_soon:
            names = ", ".join(a["doc_type_name"] for a in due_soon)
            suggestions.append({
                "id": f"{contractor_id}-daily-followup",
                "contractor_id": contractor_id,
                "contractor_name": name,
                "severity": "medium",
                "message": f"Thiết lập kiểm tra tiến độ hằng ngày với {name} cho {names} trước hạn chót.",
                "related_documents": [a["doc_type_name"] for a in due_soon],
            })

        remaining = len(items) - len(heavy) - len(due_soon)
        if remaining > 0:
            suggestions.append({
                "id": f"{contractor_id}-support",
                "contractor_id": contractor_id,
                "contractor_name": name,
                "severity": "low",
                "message": (
                    f"Hướng dẫn checklist cho {name} với {remaining} hồ sơ bắt buộc còn đang thực hiện."
                ),
                "related_documents": [a["doc_type_name"] for a in items],
            })

    return sorted(suggestions, key=lambda s: -SEVERITY_RANK[s["severity"]])
