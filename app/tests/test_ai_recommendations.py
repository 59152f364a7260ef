"""
Tests for AI recommendations: prompt, response parsing and fallback.
"""
import json

import httpx
import pytest
from unittest.mock import AsyncMock, patch

from app.services.ai_recommendations import (
    CriticalIssue, ProjectContext, build_prompt, fallback_recommendations,
    generate_recommendations, parse_ai_response
)


def issue(name, overdue, approved=0, required=2):
    return CriticalIssue(
        docTypeName=name,
        overdueDays=overdue,
        approvedCount=approved,
        requiredCount=required,
        contractorName="Công ty Xây dựng An Phát",
    )


ISSUES = [issue("Kế hoạch HSE", 10), issue("Đánh giá rủi ro (JSA)", 5, 1, 3), issue("Phương án PCCC", 1)]
CONTEXT = ProjectContext(projectPhase="execution", deadlinePressure="high", stakeholderVisibility="client")


class TestPrompt:

    def test_prompt_lists_issues_and_context(self):
        prompt = build_prompt(ISSUES, CONTEXT, "Công ty Xây dựng An Phát")
        assert "NHÀ THẦU: Công ty Xây dựng An Phát" in prompt
        assert "1. Kế hoạch HSE" in prompt
        assert "Trạng thái: 1/3 đã được phê duyệt" in prompt
        assert "Quá hạn: 10 ngày" in prompt
        assert "Giai đoạn dự án: execution" in prompt
        assert '"recommendations"' in prompt


class TestParseResponse:

    def test_valid_response(self):
        content = json.dumps({"recommendations": [{
            "severity": "high",
            "actionType": "meeting",
            "message": "Họp khẩn với nhà thầu",
            "estimatedImpact": "high",
            "timeToImplement": "1 ngày",
            "aiConfidence": 90,
        }]})
        recs = parse_ai_response(content, ISSUES)
        assert len(recs) == 1
        assert recs[0].severity == "high"
        assert recs[0].action_type == "meeting"
        assert recs[0].ai_confidence == 90
        assert recs[0].id.startswith("ai-")
        assert recs[0].related_documents == [i.doc_type_name for i in ISSUES]

    def test_invalid_values_get_defaults(self):
        content = json.dumps({"recommendations": [{"severity": "urgent", "actionType": "call"}]})
        rec = parse_ai_response(content, ISSUES)[0]
        assert rec.severity == "medium"
        assert rec.estimated_impact == "medium"
        assert rec.action_type == "support"
        assert rec.message == "Hành động được đề xuất"
        assert rec.time_to_implement == "1-3 ngày"
        assert rec.ai_confidence == 75

    def test_fenced_json(self):
        content = '```json\n{"recommendations": [{"severity": "low"}]}\n```'
        assert parse_ai_response(content, ISSUES)[0].severity == "low"

    def test_not_json_returns_none(self):
        assert parse_ai_response("Xin lỗi, tôi không thể trả lời", ISSUES) is None

    def test_missing_array_returns_none(self):
        assert parse_ai_response('{"items": []}', ISSUES) is None


class TestFallback:

    def test_at_most_three(self):
        recs = fallback_recommendations(ISSUES + [issue("Danh sách nhân sự", 0)])
        assert len(recs) == 3

    def test_severity_by_overdue_days(self):
        recs = fallback_recommendations(ISSUES)
        assert [(r.severity, r.action_type) for r in recs] == [
            ("high", "escalation"), ("medium", "meeting"), ("low", "email"),
        ]
        assert recs[0].time_to_implement == "1 ngày"
        assert recs[1].time_to_implement == "2-3 ngày"
        assert all(r.ai_confidence == 60 for r in recs)
        assert all(r.estimated_impact == r.severity for r in recs)

    def test_message(self):
        rec = fallback_recommendations([issue("Đánh giá rủi ro (JSA)", 5, 1, 3)])[0]
        assert rec.message == "Lên lịch họp với Công ty Xây dựng An Phát về Đánh giá rủi ro (JSA) (1/3 đã hoàn thành)"
        assert rec.id.startswith("fallback-")

    def test_camel_case_output(self):
        data = fallback_recommendations(ISSUES)[0].model_dump(by_alias=True)
        assert {"actionType", "estimatedImpact", "timeToImplement", "relatedDocuments", "aiConfidence"} <= set(data)


class TestGenerateRecommendations:

    @pytest.mark.asyncio
    async def test_no_api_key_uses_fallback(self):
        with patch("app.services.ai_recommendations.settings.AI_API_KEY", None):
            with patch("app.services.ai_recommendations.call_chat_completion", new=AsyncMock()) as mock_call:
                recs = await generate_recommendations("Công ty Xây dựng An Phát", ISSUES, CONTEXT)
        mock_call.assert_not_called()
        assert all(r.source == "fallback" for r in recs)

    @pytest.mark.asyncio
    async def test_provider_response_is_parsed(self):
        content = json.dumps({"recommendations": [{"severity": "high", "actionType": "escalation"}]})
        with patch("app.services.ai_recommendations.settings.AI_API_KEY", "test-key"):
            with patch("app.services.ai_recommendations.call_chat_completion",
                       new=AsyncMock(return_value=content)):
                recs = await generate_recommendations("Công ty Xây dựng An Phát", ISSUES, CONTEXT)
        assert len(recs) == 1
        assert recs[0].source == "ai"
        assert recs[0].action_type == "escalation"

    @pytest.mark.asyncio
    async def test_transport_error_uses_fallback(self):
        with patch("app.services.ai_recommendations.settings.AI_API_KEY", "test-key"):
            with patch("app.services.ai_recommendations.call_chat_completion",
                       new=AsyncMock(side_effect=httpx.ConnectError("connection refused"))):
                recs = await generate_recommendations("Công ty Xây dựng An Phát", ISSUES, CONTEXT)
        assert len(recs) == 3
        assert recs[0].source == "fallback"

    @pytest.mark.asyncio
    async def test_unparseable_output_uses_fallback(self):
        with patch("app.services.ai_recommendations.settings.AI_API_KEY", "test-key"):
            with patch("app.services.ai_recommendations.call_chat_completion",
                       new=AsyncMock(return_value="không phải JSON")):
                recs = await generate_recommendations("Công ty Xây dựng An Phát", ISSUES, CONTEXT)
        assert recs[0].source == "fallback"
