from __future__ import annotations

from collections import Counter
from decimal import Decimal
from typing import Dict, List, Optional

from backend.app.fraud.geo import distance_km, hours_between
from backend.app.fraud.types import Fingerprint, SimilarityResult

FACTOR_WEIGHTS: Dict[str, float] = {
    "content": 40.0,
    "amount": 25.0,
    "time": 20.0,
    "location": 15.0,
}

# Sub-score lost per hour apart / per km apart.
TIME_DECAY_PER_HOUR = 4.0
LOCATION_DECAY_PER_KM = 20.0

RISK_THRESHOLDS = (
    (95.0, "critical"),
    (85.0, "high"),
    (70.0, "medium"),
)


def risk_level_for(confidence: float) -> str:
    for threshold, level in RISK_THRESHOLDS:
        if confidence >= threshold:
            return level
    return "low"


def text_similarity(text_a: str, text_b: str) -> float:
    if not text_a or not text_b:
        return 0.0
    if text_a == text_b:
        return 100.0
    tokens_a = text_a.lower().split()
    tokens_b = text_b.lower().split()
    longest = max(len(tokens_a), len(tokens_b))
    if not longest:
        return 0.0
    common = sum((Counter(tokens_a) & Counter(tokens_b)).values())
    return common / longest * 100.0


def amount_similarity(a: Decimal, b: Decimal) -> float:
    if a == b:
        return 100.0
    largest = max(abs(a), abs(b))
    if largest == 0:
        return 100.0
    return max(0.0, 100.0 - float(abs(a - b) / largest) * 100.0)


def time_similarity(hours_apart: float) -> float:
    return max(0.0, 100.0 - hours_apart * TIME_DECAY_PER_HOUR)


def location_similarity(km: float) -> float:
    return max(0.0, 100.0 - km * LOCATION_DECAY_PER_KM)


def score(
    a: Fingerprint,
    b: Fingerprint,
    *,
    amount_tolerance_pct: Optional[float] = None,
    location_radius_km: Optional[float] = None,
) -> SimilarityResult:
    """Confidence (0-100) that two fingerprints describe the same transaction.

    Weighted mean of the content, amount, time and location sub-scores. The
    location weight only counts when both sides carry a location. Tolerance
    and radius only decide which explanatory factors are attached.
    """
    factors: List[str] = []
    sub_scores: Dict[str, float] = {}

    if a.content_hash == b.content_hash:
        sub_scores["content"] = 100.0
        factors.append("content identical")
    else:
        content = text_similarity(a.extracted_text, b.extracted_text)
        sub_scores["content"] = content
        if content > 70:
            factors.append(f"content similar ({content:.1f}%)")

    amount = amount_similarity(a.amount, b.amount)
    sub_scores["amount"] = amount
    if amount == 100.0:
        factors.append("amount identical")
    elif amount_tolerance_pct is not None and amount >= 100.0 - amount_tolerance_pct:
        factors.append("amount within tolerance")
    elif amount > 80:
        factors.append("amount close")

    hours = hours_between(a.timestamp, b.timestamp)
    sub_scores["time"] = time_similarity(hours)
    if hours < 1:
        factors.append("time gap < 1h")
    elif hours < 6:
        factors.append("time gap < 6h")

    km = distance_km(a.location, b.location)
    if km is not None:
        sub_scores["location"] = location_similarity(km)
        if km < 0.1:
            factors.append("location within 100 m")
        elif location_radius_km is not None and km <= location_radius_km:
            factors.append("location within geofence")
        elif km < 1:
            factors.append("location within 1 km")

    weighted = sum(sub_scores[name] * FACTOR_WEIGHTS[name] for name in FACTOR_WEIGHTS if name in sub_scores)
    total_weight = sum(FACTOR_WEIGHTS[name] for name in sub_scores)
    confidence = min(100.0, weighted / total_weight)
    return SimilarityResult(confidence=confidence, factors=factors, sub_scores=sub_scores)
