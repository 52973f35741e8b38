from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from backend.app.fraud.anomaly import analyze_spending_patterns, months_before
from backend.app.fraud.engine import FraudDetectionEngine
from backend.app.fraud.memory import (
    InMemoryAlertRepository,
    InMemoryFingerprintRepository,
    InMemorySettingsRepository,
)
from backend.app.fraud.types import ExpenseSample
from backend.tests.fraud_factories import NOW, make_samples


def _load(engine, user_id, samples):
    for sample in samples:
        engine.history.add(user_id, sample)


def test_single_large_expense_is_flagged(memory_engine):
    _load(memory_engine, "user-1", make_samples([100] * 10 + [10000]))

    alerts = memory_engine.analyze_user("user-1")

    assert len(alerts) == 1
    alert = alerts[0]
    assert alert.kind == "amount_manipulation"
    assert alert.subject_record_id == "exp-10"
    assert alert.related_record_id == "exp-10"
    assert alert.risk_level == "critical"
    assert alert.confidence_score == pytest.approx(18.18)
    assert alert.details.amount_difference == pytest.approx(9000.0)
    assert alert.details.similarity_factors[0].startswith("unusual amount (10000.00 vs average 1000.00")


def test_pattern_statistics():
    pattern = analyze_spending_patterns(make_samples([100] * 10 + [10000]))

    assert pattern.sample_count == 11
    assert pattern.average_amount == pytest.approx(1000.0)
    assert pattern.standard_deviation == pytest.approx(2846.05, abs=0.01)
    assert pattern.threshold == pytest.approx(1000.0 + 2 * 2846.05, abs=0.05)
    assert [sample.record_id for sample in pattern.outliers] == ["exp-10"]


def test_moderate_outlier_is_high_not_critical(memory_engine):
    _load(memory_engine, "user-1", make_samples([100] * 20 + [250]))
    alerts = memory_engine.analyze_user("user-1")
    assert [alert.risk_level for alert in alerts] == ["high"]


def test_fewer_than_two_expenses_yields_nothing(memory_engine):
    _load(memory_engine, "user-1", make_samples([5000]))
    assert memory_engine.analyze_user("user-1") == []
    assert analyze_spending_patterns([]) is None


def test_uniform_spending_has_no_outliers(memory_engine):
    _load(memory_engine, "user-1", make_samples([80] * 12))
    assert memory_engine.analyze_user("user-1") == []
    assert memory_engine.get_statistics().total == 0


def test_expenses_outside_lookback_are_ignored(memory_engine):
    _load(memory_engine, "user-1", make_samples([100] * 10))
    memory_engine.history.add(
        "user-1",
        ExpenseSample(record_id="old-big", amount=Decimal("10000"), occurred_at=NOW - timedelta(days=120)),
    )

    assert memory_engine.analyze_user("user-1") == []
    assert [a.subject_record_id for a in memory_engine.analyze_user("user-1", lookback_months=6)] == ["old-big"]


def test_other_users_history_is_separate(memory_engine):
    _load(memory_engine, "user-1", make_samples([100] * 10 + [10000]))
    assert memory_engine.analyze_user("user-2") == []


def test_engine_without_history_source_skips_analysis():
    engine = FraudDetectionEngine(
        fingerprints=InMemoryFingerprintRepository(),
        alerts=InMemoryAlertRepository(),
        settings=InMemorySettingsRepository(),
        clock=lambda: NOW,
    )
    assert engine.analyze_user("user-1") == []


@pytest.mark.parametrize(
    "moment, months, expected",
    [
        (datetime(2026, 3, 15, tzinfo=timezone.utc), 3, datetime(2025, 12, 15, tzinfo=timezone.utc)),
        (datetime(2026, 5, 31, tzinfo=timezone.utc), 3, datetime(2026, 2, 28, tzinfo=timezone.utc)),
        (datetime(2024, 5, 31, tzinfo=timezone.utc), 3, datetime(2024, 2, 29, tzinfo=timezone.utc)),
        (datetime(2026, 1, 10, tzinfo=timezone.utc), 13, datetime(2024, 12, 10, tzinfo=timezone.utc)),
    ],
)
def test_months_before(moment, months, expected):
    assert months_before(moment, months) == expected
