"""Urgency score and severity buckets."""
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from opswatch.detection.scoring import (
    confidence_points,
    impact_points,
    overdue_days_for,
    recency_points,
    score,
    time_points,
    to_severity,
)

NOW = datetime(2025, 6, 1, 12, 0, 0)


def alert(confidence=None, amount=None, age_hours=100, expected_at=None, context=None):
    return SimpleNamespace(
        confidence=confidence,
        amount_at_risk_cents=amount,
        created_at=NOW - timedelta(hours=age_hours),
        expected_at=expected_at,
        context=context or {},
    )


class TestComponents:
    def test_confidence_labels(self):
        assert confidence_points("high") == 30
        assert confidence_points("medium") == 15
        assert confidence_points("low") == 0

    def test_confidence_float_fallback(self):
        assert confidence_points(None, 0.9) == 25
        assert confidence_points(None, 0.8) == 25
        assert confidence_points(None, 0.5) == 12
        assert confidence_points(None, 0.49) == 0
        assert confidence_points(None, None) == 0

    def test_explicit_label_wins_over_float(self):
        assert confidence_points("low", 0.95) == 0

    def test_impact_is_log_compressed(self):
        assert impact_points(None) == 0
        assert impact_points(0) == 0
        assert impact_points(-500) == 0
        assert impact_points(10000) == 40  # $100
        assert impact_points(100000000) == 120  # $1M

    def test_time_ramp_saturates(self):
        assert time_points(None) == 0
        assert time_points(-3) == 0
        assert time_points(1) == 6
        assert time_points(13) == 78
        assert time_points(14) == 80
        assert time_points(200) == 80

    def test_recency_decays_over_72_hours(self):
        assert recency_points(NOW, NOW) == 30
        assert recency_points(NOW - timedelta(hours=36), NOW) == 15
        assert recency_points(NOW - timedelta(hours=72), NOW) == 0
        assert recency_points(NOW - timedelta(days=30), NOW) == 0
        assert recency_points(None, NOW) == 0


class TestScore:
    def test_fresh_critical_high_confidence(self):
        # (300 + 30 + 0 + 0 + 30) / 4
        assert score(alert("high", age_hours=0), 0, category="critical", now=NOW) == 90

    def test_overdue_days_monotonic(self):
        a = alert("medium", amount=250000)
        scores = [score(a, days, category="high", now=NOW) for days in range(0, 21)]
        assert scores == sorted(scores)

    def test_clamped_to_100(self):
        a = alert("high", amount=10 ** 12, age_hours=0)
        assert score(a, 365, category="critical", now=NOW) == 100

    def test_never_negative(self):
        a = alert(amount=-10 ** 9)
        assert score(a, -50, category="medium", now=NOW) >= 0

    def test_category_ordering(self):
        a = alert("medium", amount=50000)
        critical = score(a, 5, category="critical", now=NOW)
        high = score(a, 5, category="high", now=NOW)
        medium = score(a, 5, category="medium", now=NOW)
        assert critical > high > medium

    def test_confidence_float_from_context(self):
        a = alert(None, context={"expectation_confidence": 0.9})
        b = alert(None)
        assert score(a, 0, category="high", now=NOW) > score(b, 0, category="high", now=NOW)


class TestOverdueDays:
    def test_from_expected_at(self):
        a = alert(expected_at=NOW - timedelta(days=10, hours=5))
        assert overdue_days_for(a, NOW) == 10

    def test_future_expected_at_is_zero(self):
        a = alert(expected_at=NOW + timedelta(days=3))
        assert overdue_days_for(a, NOW) == 0

    def test_context_fallback(self):
        assert overdue_days_for(alert(context={"overdue_days": 4}), NOW) == 4
        assert overdue_days_for(alert(), NOW) is None


@pytest.mark.parametrize(
    "value,expected",
    [(100, "critical"), (80, "critical"), (79, "high"), (60, "high"), (59, "medium"), (40, "medium"), (39, "low"), (0, "low")],
)
def test_to_severity(value, expected):
    assert to_severity(value) == expected
