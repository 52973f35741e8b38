from __future__ import annotations

import logging
import threading
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError, as_completed
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from backend.app.fraud import anomaly, duplicates
from backend.app.fraud.errors import (
    BulkCheckCancelled,
    FraudDetectionError,
    InvalidStatusUpdate,
    SettingsUnavailable,
)
from backend.app.fraud.fingerprint import extract_fingerprint
from backend.app.fraud.repositories import (
    AlertRepository,
    ExpenseHistorySource,
    FingerprintRepository,
    SettingsRepository,
)
from backend.app.fraud.settings import validate_settings_changes
from backend.app.fraud.types import (
    ALERT_STATUSES,
    Alert,
    AlertStats,
    BulkCheckResult,
    DetectionSettings,
    ExpenseRecord,
    Fingerprint,
    RecordFailure,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_WORKERS = 4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FraudDetectionEngine:
    """
    Duplicate-receipt and spending-anomaly detection over injected stores.

    Detection is advisory: it never blocks expense submission by itself.
    `approval_blocked` exposes the one condition an approval workflow may
    enforce when `require_approval` is on.
    """

    def __init__(
        self,
        fingerprints: FingerprintRepository,
        alerts: AlertRepository,
        settings: SettingsRepository,
        history: Optional[ExpenseHistorySource] = None,
        *,
        max_workers: int = DEFAULT_MAX_WORKERS,
        bulk_timeout_seconds: Optional[float] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.fingerprints = fingerprints
        self.alerts = alerts
        self.settings = settings
        self.history = history
        self.max_workers = max(1, int(max_workers))
        self.bulk_timeout_seconds = bulk_timeout_seconds
        self._clock = clock

    # -------------------------
    # Settings
    # -------------------------

    def get_settings(self) -> DetectionSettings:
        return self.settings.get_or_create(DetectionSettings())

    def update_settings(self, changes: Mapping[str, Any]) -> DetectionSettings:
        cleaned = validate_settings_changes(changes)
        updated = self.settings.update(cleaned)
        logger.info("[fraud] settings updated fields=%s", sorted(cleaned))
        return updated

    def _effective_settings(self) -> DetectionSettings:
        try:
            return self.get_settings()
        except SettingsUnavailable as exc:
            logger.warning("[fraud] settings unavailable, using defaults: %s", exc)
            return DetectionSettings()

    # -------------------------
    # Duplicate detection
    # -------------------------

    def extract(self, record: ExpenseRecord) -> Fingerprint:
        """Fingerprint the record and store it (first write wins)."""
        return self.fingerprints.upsert(extract_fingerprint(record, now=self._clock()))

    def find_duplicates(self, fingerprint: Optional[Fingerprint], settings: Optional[DetectionSettings] = None) -> List[Alert]:
        if fingerprint is None:
            return []
        return duplicates.find_duplicates(
            fingerprint,
            settings or self._effective_settings(),
            self.fingerprints,
            self.alerts,
        )

    def check_record(self, record: ExpenseRecord) -> List[Alert]:
        return self._check(record, self._effective_settings())

    def _check(self, record: ExpenseRecord, settings: DetectionSettings) -> List[Alert]:
        if not settings.enabled:
            return []
        fingerprint = self.extract(record)
        return self.find_duplicates(fingerprint, settings)

    @staticmethod
    def _collect(future, record: ExpenseRecord, result: BulkCheckResult) -> None:
        try:
            result.alerts.extend(future.result())
            result.checked += 1
        except FraudDetectionError as exc:
            result.failures.append(RecordFailure(record.id, exc.__class__.__name__, str(exc)))
        except Exception as exc:  # unexpected errors stay inside the batch too
            logger.exception("[fraud] bulk check failed record=%s", record.id)
            result.failures.append(RecordFailure(record.id, exc.__class__.__name__, str(exc)))

    def bulk_check(
        self,
        records: Iterable[ExpenseRecord],
        *,
        timeout: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> BulkCheckResult:
        """
        Check many records on a bounded thread pool.

        A record that fails (bad data, storage error, cancellation, timeout)
        becomes a RecordFailure; the rest of the batch carries on. Work that
        already finished stays stored, so re-running a batch is safe.
        """
        records = list(records)
        result = BulkCheckResult()
        if not records:
            return result

        settings = self._effective_settings()
        if not settings.enabled:
            result.checked = len(records)
            return result

        timeout = timeout if timeout is not None else self.bulk_timeout_seconds
        cancel_event = cancel_event or threading.Event()

        def _run(record: ExpenseRecord) -> List[Alert]:
            if cancel_event.is_set():
                raise BulkCheckCancelled("bulk check cancelled")
            return self._check(record, settings)

        pool = ThreadPoolExecutor(max_workers=min(self.max_workers, len(records)), thread_name_prefix="fraud-bulk")
        futures = {pool.submit(_run, record): record for record in records}
        collected = set()
        try:
            for future in as_completed(futures, timeout=timeout):
                collected.add(future)
                self._collect(future, futures[future], result)
        except FuturesTimeoutError:
            cancel_event.set()
            for future, record in futures.items():
                if future in collected:
                    continue
                if future.done() and not future.cancelled():
                    self._collect(future, record, result)
                    continue
                future.cancel()
                result.failures.append(
                    RecordFailure(record.id, "BulkCheckTimeout", f"not finished within {timeout}s")
                )
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        if result.failures:
            logger.warning(
                "[fraud] bulk check records=%s checked=%s failures=%s",
                len(records),
                result.checked,
                len(result.failures),
            )
        return result

    # -------------------------
    # Spending anomalies
    # -------------------------

    def analyze_user(self, user_id: str, lookback_months: int = anomaly.DEFAULT_LOOKBACK_MONTHS) -> List[Alert]:
        if self.history is None:
            logger.warning("[fraud] no expense history source configured; skipping user=%s", user_id)
            return []
        return anomaly.analyze_user(
            user_id,
            self.history,
            self.alerts,
            now=self._clock(),
            lookback_months=lookback_months,
        )

    # -------------------------
    # Alert lifecycle
    # -------------------------

    def list_alerts(
        self,
        *,
        status: Optional[str] = None,
        kind: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Alert]:
        return self.alerts.list(status=status, kind=kind, limit=max(1, limit), offset=max(0, offset))

    def get_alert(self, alert_id: str) -> Alert:
        return self.alerts.get(alert_id)

    def update_alert_status(
        self,
        alert_id: str,
        status: str,
        reviewer: str,
        notes: Optional[str] = None,
        *,
        expected_status: str,
    ) -> bool:
        """
        Record a review decision as a compare-and-swap against
        `expected_status`, the status the caller validated the change on.
        Returns False when the alert no longer has that status; nothing is
        written in that case.
        """
        if status not in ALERT_STATUSES or status == "pending":
            raise InvalidStatusUpdate(f"invalid status {status!r}")
        if not reviewer or not reviewer.strip():
            raise InvalidStatusUpdate("reviewer is required")

        applied = self.alerts.compare_and_set_status(
            alert_id,
            expected_status=expected_status,
            status=status,
            reviewed_by=reviewer.strip(),
            reviewed_at=self._clock(),
            notes=notes,
        )
        if not applied:
            logger.warning(
                "[fraud] alert status update lost race alert=%s expected=%s", alert_id, expected_status
            )
            return False
        logger.info(
            "[fraud] alert status alert=%s %s->%s reviewer=%s",
            alert_id,
            expected_status,
            status,
            reviewer,
        )
        return True

    def get_statistics(self) -> AlertStats:
        return self.alerts.statistics()

    def approval_blocked(self, record_id: str) -> Dict[str, Any]:
        """Pending critical alerts on the record, when approval is required."""
        settings = self._effective_settings()
        if not settings.require_approval:
            return {"blocked": False, "alert_ids": []}
        blocking = [
            alert.id
            for alert in self.alerts.list_for_subject(record_id)
            if alert.status == "pending" and alert.risk_level == "critical"
        ]
        return {"blocked": bool(blocking), "alert_ids": blocking}
