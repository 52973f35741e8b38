from __future__ import annotations

import logging
from datetime import timedelta
from typing import List, Optional

from backend.app.fraud.geo import distance_km, hours_between
from backend.app.fraud.repositories import AlertRepository, FingerprintRepository
from backend.app.fraud.scoring import risk_level_for, score
from backend.app.fraud.types import Alert, AlertDetails, DetectionSettings, Fingerprint, SimilarityResult

logger = logging.getLogger(__name__)


def _round(value: Optional[float], digits: int = 4) -> Optional[float]:
    return None if value is None else round(value, digits)


def build_duplicate_alert(subject: Fingerprint, candidate: Fingerprint, similarity: SimilarityResult) -> Alert:
    confidence = round(similarity.confidence, 2)
    return Alert(
        subject_record_id=subject.source_record_id,
        related_record_id=candidate.source_record_id,
        confidence_score=confidence,
        kind="duplicate_receipt",
        status="pending",
        details=AlertDetails(
            risk_level=risk_level_for(similarity.confidence),
            similarity_factors=list(similarity.factors),
            amount_difference=_round(float(abs(subject.amount - candidate.amount)), 2),
            time_difference_hours=_round(hours_between(subject.timestamp, candidate.timestamp)),
            distance_km=_round(distance_km(subject.location, candidate.location)),
        ),
    )


def find_duplicates(
    fingerprint: Optional[Fingerprint],
    settings: DetectionSettings,
    fingerprints: FingerprintRepository,
    alerts: AlertRepository,
) -> List[Alert]:
    """Score every fingerprint ingested within +/- the time window of the
    subject's timestamp and persist one pending alert per candidate at or
    above the duplicate threshold."""
    if fingerprint is None:
        return []

    window = timedelta(hours=settings.time_window_hours)
    candidates = fingerprints.find_in_window(
        fingerprint.timestamp - window,
        fingerprint.timestamp + window,
        exclude_source_record_id=fingerprint.source_record_id,
    )

    findings: List[Alert] = []
    for candidate in candidates:
        similarity = score(
            fingerprint,
            candidate,
            amount_tolerance_pct=settings.amount_tolerance_pct,
            location_radius_km=settings.location_radius_km,
        )
        if similarity.confidence >= settings.duplicate_threshold:
            findings.append(build_duplicate_alert(fingerprint, candidate, similarity))

    if not findings:
        return []

    saved = alerts.add_many(findings)
    logger.info(
        "[fraud] duplicate alerts record=%s candidates=%s alerts=%s",
        fingerprint.source_record_id,
        len(candidates),
        len(saved),
    )
    return saved
