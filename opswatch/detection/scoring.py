"""Urgency score (0-100) and severity bucket for an alert."""
import math
from datetime import datetime
from typing import Optional

from opswatch.database import utcnow

CATEGORY_BASE = {
    "critical": 300,
    "high": 220,
    "medium": 140,
}

# Raw sums run roughly 140..560; divide down to the 0-100 display scale
RAW_SCALE = 4

SEVERITY_THRESHOLDS = (
    (80, "critical"),
    (60, "high"),
    (40, "medium"),
)

RECENCY_WINDOW_HOURS = 72


def confidence_points(confidence: Optional[str], confidence_float: Optional[float] = None) -> int:
    if confidence == "high":
        return 30
    if confidence == "medium":
        return 15
    if confidence == "low":
        return 0
    if confidence_float is None:
        return 0
    if confidence_float >= 0.8:
        return 25
    if confidence_float >= 0.5:
        return 12
    return 0


def impact_points(amount_at_risk_cents: Optional[int]) -> int:
    if not amount_at_risk_cents:
        return 0
    dollars = max(0, amount_at_risk_cents) / 100
    return round(math.log10(dollars + 1) * 20)


def time_points(overdue_days: Optional[float]) -> int:
    if overdue_days is None:
        return 0
    return int(min(80, max(0, overdue_days) * 6))


def recency_points(created_at: Optional[datetime], now: datetime) -> int:
    if created_at is None:
        return 0
    age_hours = (now - created_at).total_seconds() / 3600
    return max(0, round(30 - age_hours * 30 / RECENCY_WINDOW_HOURS))


def overdue_days_for(alert, now: datetime) -> Optional[int]:
    """Whole days past expected_at, falling back to context["overdue_days"]."""
    if alert.expected_at is not None:
        return max(0, math.floor((now - alert.expected_at).total_seconds() / 86400))
    value = (alert.context or {}).get("overdue_days")
    if isinstance(value, (int, float)):
        return int(value)
    return None


def score(
    alert,
    overdue_days: Optional[float] = None,
    confidence_float: Optional[float] = None,
    category: str = "medium",
    now: Optional[datetime] = None,
) -> int:
    now = now or utcnow()
    if confidence_float is None:
        value = (alert.context or {}).get("expectation_confidence")
        if isinstance(value, (int, float)):
            confidence_float = float(value)

    raw = (
        CATEGORY_BASE.get(category, CATEGORY_BASE["medium"])
        + confidence_points(alert.confidence, confidence_float)
        + impact_points(alert.amount_at_risk_cents)
        + time_points(overdue_days)
        + recency_points(alert.created_at, now)
    )
    return max(0, min(100, round(raw / RAW_SCALE)))


def to_severity(value: int) -> str:
    for threshold, label in SEVERITY_THRESHOLDS:
        if value >= threshold:
            return label
    return "low"
