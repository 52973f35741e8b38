"""In-process repositories for tests and single-process tooling."""

from __future__ import annotations

import threading
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Sequence

from backend.app.fraud.errors import NotFound
from backend.app.fraud.lifecycle import compute_statistics
from backend.app.fraud.settings import SETTINGS_FIELDS
from backend.app.fraud.types import (
    Alert,
    AlertStats,
    DetectionSettings,
    ExpenseSample,
    Fingerprint,
    as_utc,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class InMemoryFingerprintRepository:
    def __init__(self):
        self._lock = threading.Lock()
        self._by_record: Dict[str, Fingerprint] = {}

    def upsert(self, fingerprint: Fingerprint) -> Fingerprint:
        with self._lock:
            existing = self._by_record.get(fingerprint.source_record_id)
            if existing is not None:
                return existing
            stored = replace(
                fingerprint,
                id=_new_id(),
                timestamp=as_utc(fingerprint.timestamp),
                created_at=as_utc(fingerprint.created_at) if fingerprint.created_at else _now(),
            )
            self._by_record[stored.source_record_id] = stored
            return stored

    def find_in_window(
        self,
        start: datetime,
        end: datetime,
        *,
        exclude_source_record_id: Optional[str] = None,
    ) -> List[Fingerprint]:
        start, end = as_utc(start), as_utc(end)
        with self._lock:
            rows = [
                fp
                for fp in self._by_record.values()
                if start <= fp.created_at <= end and fp.source_record_id != exclude_source_record_id
            ]
        return sorted(rows, key=lambda fp: fp.created_at)

    def count(self) -> int:
        with self._lock:
            return len(self._by_record)


class InMemoryAlertRepository:
    def __init__(self):
        self._lock = threading.Lock()
        self._alerts: Dict[str, Alert] = {}
        self._order: List[str] = []

    def add_many(self, alerts: Sequence[Alert]) -> List[Alert]:
        saved = [replace(alert, id=_new_id(), created_at=_now()) for alert in alerts]
        with self._lock:
            for alert in saved:
                self._alerts[alert.id] = alert
                self._order.append(alert.id)
        return saved

    def get(self, alert_id: str) -> Alert:
        with self._lock:
            alert = self._alerts.get(alert_id)
        if alert is None:
            raise NotFound(f"alert {alert_id} not found")
        return alert

    def _newest_first(self) -> List[Alert]:
        with self._lock:
            return [self._alerts[alert_id] for alert_id in reversed(self._order)]

    def list(
        self,
        *,
        status: Optional[str] = None,
        kind: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Alert]:
        rows = [
            alert
            for alert in self._newest_first()
            if (not status or alert.status == status) and (not kind or alert.kind == kind)
        ]
        return rows[offset : offset + limit]

    def list_for_subject(self, subject_record_id: str) -> List[Alert]:
        return [alert for alert in self._newest_first() if alert.subject_record_id == subject_record_id]

    def compare_and_set_status(
        self,
        alert_id: str,
        *,
        expected_status: str,
        status: str,
        reviewed_by: str,
        reviewed_at: datetime,
        notes: Optional[str],
    ) -> bool:
        with self._lock:
            current = self._alerts.get(alert_id)
            if current is None or current.status != expected_status:
                return False
            self._alerts[alert_id] = replace(
                current,
                status=status,
                reviewed_by=reviewed_by,
                reviewed_at=as_utc(reviewed_at),
                notes=notes,
            )
            return True

    def statistics(self) -> AlertStats:
        return compute_statistics(self._newest_first())


class InMemorySettingsRepository:
    def __init__(self, initial: Optional[DetectionSettings] = None):
        self._lock = threading.Lock()
        self._settings = initial

    def get_or_create(self, defaults: DetectionSettings) -> DetectionSettings:
        with self._lock:
            if self._settings is None:
                self._settings = replace(defaults, updated_at=_now())
            return self._settings

    def update(self, changes: Mapping[str, Any]) -> DetectionSettings:
        values = {name: changes[name] for name in SETTINGS_FIELDS if name in changes}
        with self._lock:
            current = self._settings or DetectionSettings()
            self._settings = replace(current, **values, updated_at=_now())
            return self._settings


class InMemoryExpenseHistory:
    def __init__(self, samples_by_user: Optional[Dict[str, List[ExpenseSample]]] = None):
        self._samples: Dict[str, List[ExpenseSample]] = dict(samples_by_user or {})

    def add(self, user_id: str, sample: ExpenseSample) -> None:
        self._samples.setdefault(user_id, []).append(sample)

    def expenses_for_user(self, user_id: str, since: datetime) -> List[ExpenseSample]:
        since = as_utc(since)
        return [sample for sample in self._samples.get(user_id, []) if as_utc(sample.occurred_at) >= since]
