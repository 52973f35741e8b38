from __future__ import annotations

import calendar
import logging
import statistics
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence

from backend.app.fraud.repositories import AlertRepository, ExpenseHistorySource
from backend.app.fraud.types import Alert, AlertDetails, ExpenseSample

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_MONTHS = 3
OUTLIER_STDDEVS = 2.0
CRITICAL_MULTIPLE_OF_MEAN = 3.0


@dataclass(frozen=True)
class SpendingPattern:
    sample_count: int
    average_amount: float
    standard_deviation: float
    threshold: float
    outliers: List[ExpenseSample]
    anomaly_score: float


def months_before(moment: datetime, months: int) -> datetime:
    month_index = moment.year * 12 + (moment.month - 1) - months
    year, month0 = divmod(month_index, 12)
    day = min(moment.day, calendar.monthrange(year, month0 + 1)[1])
    return moment.replace(year=year, month=month0 + 1, day=day)


def analyze_spending_patterns(samples: Sequence[ExpenseSample]) -> Optional[SpendingPattern]:
    """
    Mean / population standard deviation of the amounts; anything above
    mean + 2 stddev is an outlier. None when there are fewer than two samples.
    """
    if len(samples) < 2:
        return None

    amounts = [float(sample.amount) for sample in samples]
    mean = statistics.mean(amounts)
    stddev = statistics.pstdev(amounts, mu=mean)
    threshold = mean + OUTLIER_STDDEVS * stddev

    outliers = [sample for sample in samples if float(sample.amount) > threshold]
    anomaly_score = min(100.0, (len(outliers) / len(samples)) * 200.0)

    return SpendingPattern(
        sample_count=len(samples),
        average_amount=mean,
        standard_deviation=stddev,
        threshold=threshold,
        outliers=outliers,
        anomaly_score=anomaly_score,
    )


def build_outlier_alert(sample: ExpenseSample, pattern: SpendingPattern) -> Alert:
    amount = float(sample.amount)
    risk_level = "critical" if amount > pattern.average_amount * CRITICAL_MULTIPLE_OF_MEAN else "high"
    return Alert(
        subject_record_id=sample.record_id,
        related_record_id=sample.record_id,
        confidence_score=round(pattern.anomaly_score, 2),
        kind="amount_manipulation",
        status="pending",
        details=AlertDetails(
            risk_level=risk_level,
            similarity_factors=[
                f"unusual amount ({amount:.2f} vs average {pattern.average_amount:.2f}, "
                f"threshold {pattern.threshold:.2f})"
            ],
            amount_difference=round(amount - pattern.average_amount, 2),
        ),
    )


def analyze_user(
    user_id: str,
    history: ExpenseHistorySource,
    alerts: AlertRepository,
    *,
    now: datetime,
    lookback_months: int = DEFAULT_LOOKBACK_MONTHS,
) -> List[Alert]:
    since = months_before(now, lookback_months)
    samples = history.expenses_for_user(user_id, since)
    pattern = analyze_spending_patterns(samples)
    if pattern is None:
        logger.info("[fraud] anomaly sweep skipped user=%s samples=%s", user_id, len(samples))
        return []
    if not pattern.outliers:
        return []

    saved = alerts.add_many([build_outlier_alert(sample, pattern) for sample in pattern.outliers])
    logger.info(
        "[fraud] anomaly alerts user=%s samples=%s outliers=%s mean=%.2f stddev=%.2f",
        user_id,
        pattern.sample_count,
        len(pattern.outliers),
        pattern.average_amount,
        pattern.standard_deviation,
    )
    return saved
