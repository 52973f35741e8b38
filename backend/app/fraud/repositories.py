from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional, Protocol, Sequence

from backend.app.fraud.types import Alert, AlertStats, DetectionSettings, ExpenseSample, Fingerprint


class FingerprintRepository(Protocol):
    def upsert(self, fingerprint: Fingerprint) -> Fingerprint:
        """Store the fingerprint unless one exists for its source record.
        Returns the stored row either way. Must be atomic."""
        ...

    def find_in_window(
        self,
        start: datetime,
        end: datetime,
        *,
        exclude_source_record_id: Optional[str] = None,
    ) -> List[Fingerprint]:
        """Fingerprints ingested (created_at) within [start, end], both inclusive."""
        ...

    def count(self) -> int:
        ...


class AlertRepository(Protocol):
    def add_many(self, alerts: Sequence[Alert]) -> List[Alert]:
        """Insert all alerts in one transaction; returns them with id/created_at."""
        ...

    def get(self, alert_id: str) -> Alert:
        """Raises NotFound."""
        ...

    def list(
        self,
        *,
        status: Optional[str] = None,
        kind: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Alert]:
        """Newest first."""
        ...

    def list_for_subject(self, subject_record_id: str) -> List[Alert]:
        ...

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
        """Apply the review only if the stored status is still expected_status."""
        ...

    def statistics(self) -> AlertStats:
        ...


class SettingsRepository(Protocol):
    def get_or_create(self, defaults: DetectionSettings) -> DetectionSettings:
        """Raises SettingsUnavailable when the store cannot be read."""
        ...

    def update(self, changes: Mapping[str, Any]) -> DetectionSettings:
        ...


class ExpenseHistorySource(Protocol):
    def expenses_for_user(self, user_id: str, since: datetime) -> List[ExpenseSample]:
        ...
