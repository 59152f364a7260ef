"""
Tests for the dashboard API against a seeded in-memory database.
"""
from datetime import date, datetime, timezone

import pytest

from app.db.models import SubmissionStatus

from conftest import add_requirement, add_submission

AS_OF = "2024-01-10"


@pytest.fixture
def progress_data(db_session, contractor, other_contractor, doc_types):
    """An Phat: JSA 1/3 approved and overdue, waste plan complete. Hoa Binh: JSA due soon."""
    jsa, waste = doc_types
    add_requirement(db_session, contractor.id, jsa.id, required_count=3, planned_due_date=date(2024, 1, 1))
    add_requirement(db_session, contractor.id, waste.id, required_count=1, planned_due_date=date(2024, 1, 5))
    add_requirement(db_session, other_contractor.id, jsa.id, required_count=1, planned_due_date=date(2024, 1, 12))

    add_submission(
        db_session, contractor.id, jsa.id, status=SubmissionStatus.APPROVED.value,
        submitted_at=datetime(2024, 1, 3, 2, 0, tzinfo=timezone.utc),
        approved_at=datetime(2024, 1, 5, 2, 0, tzinfo=timezone.utc),
    )
    add_submission(db_session, contractor.id, jsa.id, status=SubmissionStatus.REJECTED.value, cnt=2)
    add_submission(
        db_session, contractor.id, waste.id, status=SubmissionStatus.APPROVED.value,
        submitted_at=datetime(2024, 1, 3, 2, 0, tzinfo=timezone.utc),
        approved_at=datetime(2024, 1, 4, 2, 0, tzinfo=timezone.utc),
    )
    return contractor, other_contractor


class TestProgressEndpoint:

    def test_admin_sees_all_rows(self, client, admin_headers, progress_data):
        response = client.get(f"/api/dashboard/progress?as_of={AS_OF}", headers=admin_headers)
        assert response.status_code == 200
        rows = response.json()
        assert len(rows) == 3

        an_phat, _ = progress_data
        jsa_row = next(r for r in rows if r["contractor_id"] == an_phat.id and r["is_critical"])
        assert jsa_row["approved_count"] == 1
        assert jsa_row["status_color"] == "red"
        assert jsa_row["overdue_days"] == 9

    def test_contractor_limited_to_own_rows(self, client, contractor_headers, progress_data):
        an_phat, hoa_binh = progress_data
        response = client.get(
            f"/api/dashboard/progress?as_of={AS_OF}&contractor={hoa_binh.id}",
            headers=contractor_headers,
        )
        assert response.status_code == 200
        assert {r["contractor_id"] for r in response.json()} == {an_phat.id}

    def test_category_filter(self, client, admin_headers, progress_data):
        response = client.get(
            "/api/dashboard/progress",
            params={"as_of": AS_OF, "category": "1.5 PCCC & môi trường"},
            headers=admin_headers,
        )
        rows = response.json()
        assert len(rows) == 1
        assert rows[0]["status_color"] == "green"

    def test_requires_authentication(self, client, progress_data):
        assert client.get("/api/dashboard/progress").status_code == 401


class TestSummaryEndpoint:

    def test_summary_for_all_contractors(self, client, admin_headers, progress_data):
        response = client.get(f"/api/dashboard/summary?as_of={AS_OF}", headers=admin_headers)
        assert response.status_code == 200
        body = response.json()
        # 2 approved of 5 required
        assert body["overall_completion"] == 40
        assert body["documents"] == {"approved": 2, "required": 5}
        assert body["overdue_must_haves"] == 1
        assert body["red_cards"]["contractors_cant_start"] == 2

    def test_summary_for_one_contractor(self, client, admin_headers, progress_data):
        an_phat, _ = progress_data
        response = client.get(
            f"/api/dashboard/summary?as_of={AS_OF}&contractor={an_phat.id}",
            headers=admin_headers,
        )
        # 2 approved of 4 required
        assert response.json()["overall_completion"] == 50


class TestAlertEndpoints:

    def test_critical_alerts(self, client, admin_headers, progress_data):
        response = client.get(f"/api/dashboard/critical-alerts?as_of={AS_OF}", headers=admin_headers)
        alerts = response.json()
        assert len(alerts) == 2
        assert alerts[0]["overdue_days"] == 9
        assert alerts[1]["due_in_days"] == 2

    def test_red_cards_shape(self, client, admin_headers, progress_data):
        response = client.get(f"/api/dashboard/red-cards?as_of={AS_OF}", headers=admin_headers)
        body = response.json()
        assert set(body) == {"overdue", "levels", "statistics", "level_configs"}
        assert len(body["overdue"]) == 1
        assert body["statistics"]["total"] == 2

    def test_suggestions(self, client, admin_headers, progress_data):
        an_phat, hoa_binh = progress_data
        response = client.get(f"/api/dashboard/suggestions?as_of={AS_OF}", headers=admin_headers)
        ids = {s["id"] for s in response.json()}
        assert f"{an_phat.id}-escalate" in ids
        assert f"{hoa_binh.id}-daily-followup" in ids

    def test_row_actions(self, client, admin_headers, progress_data):
        response = client.get(f"/api/dashboard/row-actions?as_of={AS_OF}", headers=admin_headers)
        items = response.json()
        assert sorted(len(i["actions"]) for i in items) == [2, 3]


class TestProcessingEndpoints:

    @pytest.mark.parametrize("path", [
        "/api/dashboard/kpis",
        "/api/dashboard/categories",
        "/api/dashboard/categories/by-contractor",
        "/api/dashboard/milestones",
        "/api/dashboard/amber-alerts",
        "/api/dashboard/snapshot",
        "/api/dashboard/processing-times",
        "/api/dashboard/processing-times/metrics",
        "/api/dashboard/processing-times/by-doc-type",
        "/api/dashboard/processing-times/comparison",
        "/api/dashboard/timeline",
        "/api/dashboard/bottlenecks",
        "/api/dashboard/performance",
        "/api/dashboard/heatmap",
    ])
    def test_endpoint_responds(self, client, admin_headers, progress_data, path):
        response = client.get(f"{path}?as_of={AS_OF}", headers=admin_headers)
        assert response.status_code == 200

    def test_metrics_averages(self, client, admin_headers, progress_data):
        response = client.get(f"/api/dashboard/processing-times/metrics?as_of={AS_OF}", headers=admin_headers)
        metrics = response.json()
        # Approval took 2 days and 1 day
        assert metrics["average_approval_days"] == 1.5
