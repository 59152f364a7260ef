"""
AI action recommendations for contractors with critical issues.

Calls an OpenAI-compatible chat-completions endpoint. When no API key is
configured, the call fails, or the reply cannot be parsed, deterministic
rule-based recommendations are returned instead.
"""
import json
import re
import time
from typing import Any, Dict, List, Literal, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.core.config import settings
from app.core.logging import get_logger

logger = get_logger(__name__)

SEVERITIES = ("high", "medium", "low")
ACTION_TYPES = ("meeting", "email", "escalation", "support", "training")

SYSTEM_PROMPT = (
    "Bạn là một chuyên gia quản lý dự án xây dựng. "
    "Luôn trả lời với JSON hợp lệ và chính xác."
)


# ============= SCHEMAS =============

class CriticalIssue(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    doc_type_name: str = Field(alias="docTypeName")
    overdue_days: int = Field(0, alias="overdueDays")
    approved_count: int = Field(0, alias="approvedCount")
    required_count: int = Field(0, alias="requiredCount")
    contractor_name: str = Field(alias="contractorName")


class ProjectContext(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_phase: Literal["planning", "execution", "closeout"] = Field(alias="projectPhase")
    deadline_pressure: Literal["low", "medium", "high"] = Field(alias="deadlinePressure")
    stakeholder_visibility: Literal["internal", "client", "regulatory"] = Field(alias="stakeholderVisibility")


class AIRecommendation(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    severity: str
    message: str
    action_type: str
    estimated_impact: str
    time_to_implement: str
    related_documents: List[str]
    ai_confidence: float
    source: str = "ai"


# ============= PROMPT =============

def build_prompt(issues: List[CriticalIssue], context: ProjectContext, contractor_name: str) -> str:
    issue_lines = "".join(
        f"\n{index}. {issue.doc_type_name}\n"
        f"   - Trạng thái: {issue.approved_count}/{issue.required_count} đã được phê duyệt\n"
        f"   - Quá hạn: {issue.overdue_days} ngày\n"
        for index, issue in enumerate(issues, start=1)
    )
    return f"""Bạn là một chuyên gia quản lý dự án xây dựng với 20 năm kinh nghiệm. Hãy phân tích các vấn đề sau và đề xuất hành động cụ thể.

NHÀ THẦU: {contractor_name}

CÁC VẤN ĐỀ QUAN TRỌNG:
{issue_lines}
BỐI CẢNH DỰ ÁN:
- Giai đoạn dự án: {context.project_phase}
- Mức độ áp lực deadline: {context.deadline_pressure}
- Mức độ hiển thị cho bên ngoài: {context.stakeholder_visibility}

YÊU CẦU:
Hãy đề xuất 3-5 hành động cụ thể, sắp xếp theo mức độ ưu tiên. Mỗi hành động bao gồm:
1. Mức độ ưu tiên (high/medium/low)
2. Loại hành động (meeting/email/escalation/support/training)
3. Mô tả chi tiết hành động
4. Tác động ước tính (high/medium/low)
5. Thời gian thực hiện
6. Mức độ tin cậy (0-100%)

TRẢ LỜI THEO ĐỊNH DẠNG JSON NHƯ SAU:
{{
  "recommendations": [
    {{
      "severity": "high",
      "actionType": "meeting",
      "message": "Mô tả chi tiết hành động",
      "estimatedImpact": "high",
      "timeToImplement": "1-2 ngày",
      "aiConfidence": 90
    }}
  ]
}}"""


# ============= PROVIDER CALL =============

async def call_chat_completion(prompt: str) -> str:
    """Send the prompt and return the assistant message content."""
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(settings.AI_TIMEOUT_SECONDS, connect=5.0)
    ) as client:
        response = await client.post(
            settings.AI_API_URL,
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {settings.AI_API_KEY}",
            },
            json={
                "model": settings.AI_MODEL,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                "temperature": 0.3,
                "max_tokens": 1000,
            },
        )
        response.raise_for_status()
        data = response.json()

    try:
        return data["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError):
        raise ValueError("Invalid response structure from AI provider")


# ============= PARSING =============

_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _load_json(text: str) -> Optional[Dict[str, Any]]:
    try:
        parsed = json.loads(_FENCE.sub("", text.strip()))
    except (json.JSONDecodeError, TypeError):
        return None
    return parsed if isinstance(parsed, dict) else None


def parse_ai_response(text: str, issues: List[CriticalIssue]) -> Optional[List[AIRecommendation]]:
    """Recommendations from the model reply, or None when it is unusable."""
    parsed = _load_json(text)
    if parsed is None or not isinstance(parsed.get("recommendations"), list):
        logger.warning("AI response does not contain a recommendations array")
        return None

    stamp = int(time.time() * 1000)
    related = [issue.doc_type_name for issue in issues]
    recommendations = []
    for index, rec in enumerate(parsed["recommendations"]):
        if not isinstance(rec, dict):
            continue
        severity = rec.get("severity")
        impact = rec.get("estimatedImpact")
        action_type = rec.get("actionType")
        confidence = rec.get("aiConfidence")
        recommendations.append(AIRecommendation(
            id=f"ai-{stamp}-{index}",
            severity=severity if severity in SEVERITIES else "medium",
            message=rec.get("message") or "Hành động được đề xuất",
            action_type=action_type if action_type in ACTION_TYPES else "support",
            estimated_impact=impact if impact in SEVERITIES else "medium",
            time_to_implement=rec.get("timeToImplement") or "1-3 ngày",
            related_documents=related,
            ai_confidence=confidence if isinstance(confidence, (int, float)) and not isinstance(confidence, bool) else 75,
        ))
    return recommendations


def fallback_recommendations(issues: List[CriticalIssue]) -> List[AIRecommendation]:
    """Rule-based recommendations for at most the first three issues."""
    stamp = int(time.time() * 1000)
    recommendations = []
    for index, issue in enumerate(issues[:3]):
        if issue.overdue_days > 7:
            severity, action_type, verb = "high", "escalation", "Tổ chức họp khẩn cấp"
        elif issue.overdue_days > 3:
            severity, action_type, verb = "medium", "meeting", "Lên lịch họp"
        else:
            severity, action_type, verb = "low", "email", "Gửi email nhắc nhở"

        recommendations.append(AIRecommendation(
            id=f"fallback-{stamp}-{index}",
            severity=severity,
            action_type=action_type,
            message=(
                f"{verb} với {issue.contractor_name} về {issue.doc_type_name} "
                f"({issue.approved_count}/{issue.required_count} đã hoàn thành)"
            ),
            estimated_impact=severity,
            time_to_implement="1 ngày" if issue.overdue_days > 7 else "2-3 ngày",
            related_documents=[issue.doc_type_name],
            ai_confidence=60,
            source="fallback",
        ))
    return recommendations


async def generate_recommendations(
    contractor_name: str,
    issues: List[CriticalIssue],
    context: ProjectContext,
) -> List[AIRecommendation]:
    """AI recommendations with a rule-based fallback."""
    if not settings.AI_API_KEY:
        logger.info("AI_API_KEY not configured; using fallback recommendations")
        return fallback_recommendations(issues)

    prompt = build_prompt(issues, context, contractor_name)
    logger.info(f"Requesting AI recommendations (prompt length: {len(prompt)})")

    try:
        content = await call_chat_completion(prompt)
    except httpx.HTTPStatusError as e:
        logger.error(f"AI provider error: {e.response.status_code}")
        return fallback_recommendations(issues)
    except (httpx.RequestError, ValueError) as e:
        logger.error(f"AI provider request failed: {e}")
        return fallback_recommendations(issues)

    recommendations = parse_ai_response(content, issues)
    if recommendations is None:
        logger.info("Using fallback recommendations due to parsing failure")
        return fallback_recommendations(issues)
    return recommendations
