"""
Tests for dashboard aggregations over progress rows.
"""
from datetime import date, datetime, timezone

import pytest

from app.services import dashboard as dash
from app.services.progress import DocProgress, compute_contractor_kpis
from app.services.status import StatusColor

TODAY = date(2024, 1, 10)


def utc(day, hour=3):
    return datetime(2024, 1, day, hour, 0, tzinfo=timezone.utc)


def row(contractor_id=1, doc_type_id=1, required=1, approved=0, due=None, critical=False,
        category="1.2 Kế hoạch an toàn", contractor_name=None, doc_type_name=None,
        started=None, submitted=None, approved_at=None, code=None):
    return DocProgress.build(
        TODAY,
        contractor_id=contractor_id,
        contractor_name=contractor_name or f"Nhà thầu {contractor_id}",
        doc_type_id=doc_type_id,
        doc_type_name=doc_type_name or f"Hồ sơ {doc_type_id}",
        doc_type_code=code,
        category=category,
        is_critical=critical,
        required_count=required,
        approved_count=approved,
        planned_due_date=due,
        first_started_at=started,
        first_submitted_at=submitted,
        first_approved_at=approved_at,
    )


@pytest.fixture
def rows():
    return [
        # Critical, 9 days overdue, 1/3 approved -> red
        row(1, 1, required=3, approved=1, due=date(2024, 1, 1), critical=True,
            started=utc(1), submitted=utc(3), approved_at=utc(5)),
        # Complete -> green
        row(1, 2, required=2, approved=2, due=date(2024, 1, 5), category="1.1 Hồ sơ pháp lý",
            started=utc(1), submitted=utc(2), approved_at=utc(4)),
        # Critical, due in 2 days -> amber
        row(2, 1, required=1, approved=0, due=date(2024, 1, 12), critical=True),
        # Nothing required -> gray
        row(2, 3, required=0, approved=0, due=date(2023, 12, 1), critical=True),
    ]


class TestFilters:

    def test_filter_by_contractor(self, rows):
        result = dash.filter_rows(rows, dash.DashboardFilter(contractor=2))
        assert {r.contractor_id for r in result} == {2}

    def test_filter_by_contractor_string_id(self, rows):
        assert len(dash.filter_rows(rows, dash.DashboardFilter(contractor="1"))) == 2

    def test_filter_by_category(self, rows):
        result = dash.filter_rows(rows, dash.DashboardFilter(category="1.1 Hồ sơ pháp lý"))
        assert [r.doc_type_id for r in result] == [2]

    def test_search_is_case_insensitive(self, rows):
        result = dash.filter_rows(rows, dash.DashboardFilter(search="NHÀ THẦU 2"))
        assert len(result) == 2


class TestHeadlineKpis:

    def test_overall_completion_all(self, rows):
        # 3 approved of 6 required
        assert dash.overall_completion(rows, dash.DashboardFilter(), []) == 50

    def test_overall_completion_single_contractor_uses_kpi(self, rows):
        kpis = compute_contractor_kpis(rows)
        # Contractor 1: 3 approved of 5 required
        assert dash.overall_completion(rows, dash.DashboardFilter(contractor=1), kpis) == 60

    def test_must_have_ready(self, rows):
        # Critical with required > 0: rows (1,1) and (2,1), none complete
        assert dash.must_have_ready(rows, dash.DashboardFilter(), []) == 0

    def test_overdue_must_haves(self, rows):
        assert dash.overdue_must_haves(rows, dash.DashboardFilter()) == 1

    def test_avg_prep_time(self, rows):
        # Prep durations 2 and 1 days
        assert dash.avg_prep_time(rows, dash.DashboardFilter(), []) == 2

    def test_total_documents(self, rows):
        assert dash.total_documents(rows, dash.DashboardFilter()) == {"approved": 3, "required": 6}

    def test_red_cards_summary(self, rows):
        summary = dash.red_cards_summary(rows, dash.DashboardFilter())
        assert summary["missing"] == 1
        assert summary["overdue"] == 1
        assert summary["total"] == 2
        assert summary["contractors_cant_start"] == 2

    def test_estimate_completion_date(self, rows):
        # 3 remaining, 2 approvals in the last week -> 2 weeks
        assert dash.estimate_completion_date(rows, dash.DashboardFilter(), TODAY) == date(2024, 1, 24)

    def test_estimate_completion_date_nothing_approved(self):
        rows = [row(required=2, approved=0)]
        assert dash.estimate_completion_date(rows, dash.DashboardFilter(), TODAY) is None


class TestKpis:

    def test_contractor_kpi_rows(self, rows):
        kpis = {k.contractor_id: k for k in compute_contractor_kpis(rows)}
        assert kpis[1].completion_ratio == pytest.approx(0.6)
        assert kpis[1].red_items == 1
        assert kpis[1].avg_prep_days == 1.5
        assert kpis[2].completion_ratio == 0.0
        assert kpis[2].must_have_ready_ratio == 0.0

    def test_contractor_without_requirements(self):
        kpis = compute_contractor_kpis([], {7: "Công ty Giàn giáo Minh Long"})
        assert len(kpis) == 1
        assert kpis[0].completion_ratio == 0.0


class TestAlerts:

    def test_critical_alerts_sorted_by_overdue(self, rows):
        alerts = dash.extract_critical_alerts(rows)
        assert [(a["contractor_id"], a["doc_type_id"]) for a in alerts] == [(1, 1), (2, 1)]
        assert alerts[0]["overdue_days"] == 9
        assert alerts[0]["due_in_days"] is None
        assert alerts[1]["due_in_days"] == 2

    def test_critical_alerts_override_ids(self, rows):
        alerts = dash.extract_critical_alerts(rows, critical_doc_type_ids=[2])
        # Doc type 2 is complete, so nothing is flagged
        assert alerts == []

    def test_red_cards(self, rows):
        cards = dash.red_cards(rows, dash.DashboardFilter())
        assert len(cards) == 1
        assert cards[0]["status_color"] == StatusColor.RED

    def test_amber_alerts(self, rows):
        alerts = dash.amber_alerts(rows, dash.DashboardFilter())
        assert [(a["contractor_id"], a["due_in_days"]) for a in alerts] == [(2, 2)]

    def test_amber_alerts_threshold(self, rows):
        assert dash.amber_alerts(rows, dash.DashboardFilter(), threshold=1) == []

    def test_process_snapshot_red_first(self, rows):
        snapshot = dash.process_snapshot(rows, dash.DashboardFilter(), limit=2)
        assert len(snapshot) == 2
        assert snapshot[0]["status_color"] == StatusColor.RED
        assert snapshot[1]["status_color"] == StatusColor.AMBER


class TestRedCardLevels:

    def test_warning_levels(self):
        assert dash.warning_level(10, None, 4) == 3
        assert dash.warning_level(10, 2, 0) == 2
        assert dash.warning_level(10, 6, 0) == 1

    def test_risk_score_is_capped(self):
        assert dash.risk_score(0, None, 30, True) == 100
        assert 0 <= dash.risk_score(100, None, 0, False) <= 100

    def test_by_level_and_statistics(self, rows):
        by_level = dash.red_cards_by_level(rows)
        assert len(by_level["level3"]) == 1
        assert len(by_level["level2"]) == 1
        assert by_level["level3"][0]["action_buttons"][0]["severity"] == "destructive"

        stats = dash.red_cards_statistics(by_level)
        assert stats["total"] == 2
        assert stats["contractors_affected"] == 2


class TestProgressBreakdowns:

    def test_category_progress_least_complete_first(self, rows):
        categories = dash.category_progress(rows, dash.DashboardFilter())
        assert categories[0]["category"] == "1.2 Kế hoạch an toàn"
        assert categories[-1]["completion"] == 100

    def test_milestones_skip_rows_without_due_date(self):
        rows = [row(due=None), row(doc_type_id=2, due=date(2024, 1, 20), required=2, approved=3)]
        milestones = dash.milestone_progress(rows)
        assert len(milestones) == 1
        assert milestones[0]["completion_percentage"] == 100


class TestProcessingTimes:

    def test_metrics_against_targets(self, rows):
        metrics = dash.processing_time_metrics(rows, dash.DashboardFilter(), TODAY)
        assert metrics["target_prep_days"] == 3
        assert metrics["target_approval_days"] == 2
        assert metrics["target_total_days"] == 5
        assert metrics["average_prep_days"] == 1.5
        assert metrics["average_approval_days"] == 2.0

    def test_bottlenecks_cover_three_stages(self, rows):
        stages = [a["stage"] for a in dash.analyze_bottlenecks(rows, dash.DashboardFilter())]
        assert stages == ["preparation", "approval", "overall"]

    def test_slow_approval_is_a_bottleneck(self):
        slow = row(started=utc(1), submitted=utc(2), approved_at=utc(9), required=1, approved=1)
        analysis = {a["stage"]: a for a in dash.analyze_bottlenecks([slow], dash.DashboardFilter())}
        assert analysis["approval"]["affected_items"] == 1
        assert analysis["approval"]["average_delay"] == 4.0

    def test_timeline_statuses(self, rows):
        events = {e["id"]: e for e in dash.timeline(rows, dash.DashboardFilter())}
        assert events["1-1"]["status"] == "overdue"
        assert events["2-1"]["status"] == "not_started"

    def test_timeline_approved_before_due(self):
        done = row(started=utc(1), submitted=utc(2), approved_at=utc(4), due=date(2024, 2, 1),
                   required=1, approved=1)
        assert dash.timeline([done], dash.DashboardFilter())[0]["status"] == "approved"

    def test_comparison_has_weekly_trend(self, rows):
        comparison = dash.contractor_processing_comparison(rows, dash.DashboardFilter(), TODAY)
        assert len(comparison[0]["trend_data"]) == 7
        assert comparison[0]["overall_rank"] == 1


class TestComparisons:

    def test_performance_scores_ranked(self, rows):
        scores = dash.contractor_performance_scores(compute_contractor_kpis(rows), rows)
        assert [s["rank"] for s in scores] == [1, 2]
        assert scores[0]["weighted_score"] >= scores[1]["weighted_score"]

    def test_heatmap_buckets(self, rows):
        cells = {(c["contractor_id"], c["doc_type_id"]): c for c in dash.contractor_heatmap(rows)}
        assert cells[(1, 2)]["status"] == "good"
        assert cells[(1, 1)]["status"] == "poor"
