"""
Document progress status derivation.

This is the single place where a requirement's traffic-light colour is
decided. Dashboard, suggestions and API code all call derive_status_color();
nothing else re-implements the rules.
"""
import math
from datetime import date, datetime, timezone
from enum import Enum
from typing import Optional, Union
from zoneinfo import ZoneInfo

from app.core.config import settings


class StatusColor(str, Enum):
    GREEN = "green"
    AMBER = "amber"
    RED = "red"
    GRAY = "gray"  # N/A (nothing required) or still being monitored


def project_tz() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def today_local(now: Optional[datetime] = None) -> date:
    """Current calendar date in the project timezone."""
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return now.astimezone(project_tz()).date()


def to_local_date(value: Union[date, datetime, None]) -> Optional[date]:
    """Calendar date of a timestamp in the project timezone (naive = UTC)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(project_tz()).date()
    return value


def days_between(start: Optional[datetime], end: Optional[datetime]) -> Optional[float]:
    """Whole days elapsed from start to end (truncated), None if either is missing."""
    if start is None or end is None:
        return None
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    if end.tzinfo is None:
        end = end.replace(tzinfo=timezone.utc)
    # Truncate toward zero so a negative sub-day span counts as 0
    return float(math.trunc((end - start).total_seconds() / 86400))


def round_half_up(value: float, digits: int = 0):
    """Round halves upwards (2.5 -> 3), unlike the banker's rounding of round()."""
    factor = 10 ** digits
    result = math.floor(value * factor + 0.5) / factor
    return int(result) if digits == 0 else result


def completion_ratio(required_count: int, approved_count: int) -> float:
    """Approved / required. May exceed 1; 0 when nothing is required."""
    if not required_count or required_count <= 0:
        return 0.0
    return approved_count / required_count


def completion_percentage(required_count: int, approved_count: int, capped: bool = False) -> int:
    pct = round_half_up(completion_ratio(required_count, approved_count) * 100)
    return min(100, pct) if capped else pct


def is_complete(required_count: int, approved_count: int) -> bool:
    return required_count > 0 and approved_count >= required_count


def overdue_days(planned_due_date: Optional[date], today: Optional[date] = None) -> int:
    """Days past the due date; 0 when not yet due or no due date is set."""
    if planned_due_date is None:
        return 0
    today = today or today_local()
    return max(0, (today - planned_due_date).days)


def due_in_days(planned_due_date: Optional[date], today: Optional[date] = None) -> Optional[int]:
    """Signed days until the due date (negative once overdue), None without one."""
    if planned_due_date is None:
        return None
    today = today or today_local()
    return (planned_due_date - today).days


def derive_status_color(
    required_count: int,
    approved_count: int,
    planned_due_date: Optional[date],
    is_critical: bool,
    today: Optional[date] = None,
    amber_window_days: Optional[int] = None,
) -> StatusColor:
    """
    Traffic-light status of one (contractor, doc type) requirement.

    - nothing required: GRAY, never RED
    - approved >= required: GREEN
    - past due and incomplete: RED when critical, AMBER otherwise
    - due within the amber window and incomplete: AMBER
    - anything else: GRAY
    """
    if required_count is None or required_count <= 0:
        return StatusColor.GRAY

    if approved_count >= required_count:
        return StatusColor.GREEN

    today = today or today_local()
    window = settings.AMBER_WINDOW_DAYS if amber_window_days is None else amber_window_days

    if overdue_days(planned_due_date, today) > 0:
        return StatusColor.RED if is_critical else StatusColor.AMBER

    remaining = due_in_days(planned_due_date, today)
    if remaining is not None and 0 <= remaining <= window:
        return StatusColor.AMBER

    return StatusColor.GRAY
