"""
Tests for rule-based follow-up suggestions.
"""
from datetime import date

from app.services.progress import DocProgress
from app.services.suggestions import generate_action_suggestions, suggest_actions

TODAY = date(2024, 1, 10)


def progress_row(required=1, approved=0, due=None, critical=True):
    return DocProgress.build(
        TODAY,
        contractor_id=1,
        contractor_name="Công ty Xây dựng An Phát",
        doc_type_id=4,
        doc_type_name="Chứng chỉ huấn luyện ATVSLĐ",
        category="1.3 Nhân sự & đào tạo",
        is_critical=critical,
        required_count=required,
        approved_count=approved,
        planned_due_date=due,
    )


def alert(contractor_id, doc_type_name, overdue, due_in=None, name="Công ty Cơ điện Hòa Bình"):
    return {
        "contractor_id": contractor_id,
        "contractor_name": name,
        "doc_type_id": 1,
        "doc_type_name": doc_type_name,
        "overdue_days": overdue,
        "due_in_days": due_in,
    }


class TestSuggestActions:

    def test_red_overdue_gets_three_actions(self):
        actions = suggest_actions(progress_row(required=3, approved=1, due=date(2024, 1, 1)), TODAY)
        assert len(actions) == 3
        assert "quá hạn 9 ngày" in actions[0]
        assert "Công ty Xây dựng An Phát" in actions[0]

    def test_amber_due_soon_gets_two_actions(self):
        actions = suggest_actions(progress_row(due=date(2024, 1, 12)), TODAY)
        assert len(actions) == 2

    def test_amber_outside_urgent_window_gets_nothing(self):
        # Amber (within 7 days) but more than 3 days away
        assert suggest_actions(progress_row(due=date(2024, 1, 16)), TODAY) == []

    def test_green_gets_nothing(self):
        assert suggest_actions(progress_row(required=2, approved=2, due=date(2024, 1, 1)), TODAY) == []

    def test_nothing_required_gets_nothing(self):
        assert suggest_actions(progress_row(required=0, due=date(2023, 12, 1)), TODAY) == []

    def test_overdue_non_critical_is_not_escalated(self):
        # Non-critical overdue rows are amber and already past due
        assert suggest_actions(progress_row(critical=False, due=date(2024, 1, 5)), TODAY) == []

    def test_output_is_deterministic(self):
        r = progress_row(required=3, approved=1, due=date(2024, 1, 1))
        assert suggest_actions(r, TODAY) == suggest_actions(r, TODAY)


class TestGenerateActionSuggestions:

    def test_empty(self):
        assert generate_action_suggestions([]) == []

    def test_war_room_for_three_alerts(self):
        alerts = [alert(2, f"Hồ sơ {i}", overdue=1) for i in range(3)]
        ids = [s["id"] for s in generate_action_suggestions(alerts)]
        assert "2-war-room" in ids

    def test_escalate_for_week_overdue(self):
        suggestions = generate_action_suggestions([alert(2, "Kế hoạch HSE", overdue=8)])
        assert suggestions[0]["id"] == "2-escalate"
        assert suggestions[0]["severity"] == "high"

    def test_daily_followup_for_due_soon(self):
        suggestions = generate_action_suggestions([alert(2, "Kế hoạch HSE", overdue=0, due_in=1)])
        assert [s["id"] for s in suggestions] == ["2-daily-followup"]

    def test_sorted_by_severity(self):
        alerts = [
            alert(1, "Phương án PCCC", overdue=2, name="Công ty Xây dựng An Phát"),
            alert(2, "Kế hoạch HSE", overdue=10),
        ]
        severities = [s["severity"] for s in generate_action_suggestions(alerts)]
        assert severities == sorted(severities, key=lambda s: {"high": 0, "medium": 1, "low": 2}[s])
