"""SQLAlchemy-backed repositories.

Every call opens its own short-lived session from the injected factory, so
the repositories can be shared by bulk-check worker threads.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Type

from sqlalchemy import func, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from backend.app.fraud.errors import NotFound, SettingsUnavailable, StorageUnavailable
from backend.app.fraud.settings import SETTINGS_FIELDS
from backend.app.fraud.types import (
    Alert,
    AlertDetails,
    AlertStats,
    DetectionSettings,
    ExpenseSample,
    Fingerprint,
    Location,
    MerchantInfo,
    as_utc,
)
from backend.app.models import (
    SETTINGS_ROW_ID,
    ExpenseItem,
    FraudAlert,
    FraudDetectionSettings,
    ReceiptFingerprint,
    utcnow,
    uuid_str,
)

logger = logging.getLogger(__name__)


@contextmanager
def _storage_errors(action: str, error_cls: Type[StorageUnavailable] = StorageUnavailable) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as exc:
        logger.warning("[fraud] storage failure action=%s error=%s", action, exc)
        raise error_cls(f"{action} failed: {exc.__class__.__name__}") from exc


def _insert_ignoring_conflict(db: Session, model, values: Dict[str, Any], index_elements: List[str]) -> None:
    dialect = db.get_bind().dialect.name
    if dialect == "sqlite":
        stmt = sqlite_insert(model).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    elif dialect == "postgresql":
        stmt = pg_insert(model).values(**values).on_conflict_do_nothing(index_elements=index_elements)
    else:
        try:
            with db.begin_nested():
                db.add(model(**values))
                db.flush()
        except IntegrityError:
            pass
        return
    db.execute(stmt)


def _as_utc_or_none(value: Optional[datetime]) -> Optional[datetime]:
    return as_utc(value) if value is not None else None


# -------------------------
# Fingerprints
# -------------------------

def _fingerprint_from_row(row: ReceiptFingerprint) -> Fingerprint:
    return Fingerprint(
        id=row.id,
        source_record_id=row.source_record_id,
        user_id=row.user_id,
        content_hash=row.content_hash,
        amount=row.amount,
        timestamp=as_utc(row.timestamp),
        extracted_text=row.extracted_text or "",
        location=Location.from_mapping(row.location),
        merchant=MerchantInfo.from_mapping(row.merchant),
        created_at=_as_utc_or_none(row.created_at),
    )


class SqlFingerprintRepository:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def upsert(self, fingerprint: Fingerprint) -> Fingerprint:
        values = {
            "id": uuid_str(),
            "source_record_id": fingerprint.source_record_id,
            "user_id": fingerprint.user_id,
            "content_hash": fingerprint.content_hash,
            "amount": fingerprint.amount,
            "timestamp": as_utc(fingerprint.timestamp),
            "location": fingerprint.location.as_dict() if fingerprint.location else None,
            "merchant": fingerprint.merchant.as_dict() if fingerprint.merchant else None,
            "extracted_text": fingerprint.extracted_text,
            "created_at": as_utc(fingerprint.created_at) if fingerprint.created_at else utcnow(),
        }
        with _storage_errors("fingerprint upsert"):
            with self._session_factory() as db:
                _insert_ignoring_conflict(db, ReceiptFingerprint, values, ["source_record_id"])
                db.commit()
                row = db.execute(
                    select(ReceiptFingerprint).where(
                        ReceiptFingerprint.source_record_id == fingerprint.source_record_id
                    )
                ).scalar_one()
                return _fingerprint_from_row(row)

    def find_in_window(
        self,
        start: datetime,
        end: datetime,
        *,
        exclude_source_record_id: Optional[str] = None,
    ) -> List[Fingerprint]:
        query = select(ReceiptFingerprint).where(
            ReceiptFingerprint.created_at >= as_utc(start),
            ReceiptFingerprint.created_at <= as_utc(end),
        )
        if exclude_source_record_id is not None:
            query = query.where(ReceiptFingerprint.source_record_id != exclude_source_record_id)
        with _storage_errors("fingerprint window lookup"):
            with self._session_factory() as db:
                rows = db.execute(query.order_by(ReceiptFingerprint.created_at.asc())).scalars().all()
                return [_fingerprint_from_row(row) for row in rows]

    def count(self) -> int:
        with _storage_errors("fingerprint count"):
            with self._session_factory() as db:
                return int(db.execute(select(func.count()).select_from(ReceiptFingerprint)).scalar_one())


# -------------------------
# Alerts
# -------------------------

def _alert_from_row(row: FraudAlert) -> Alert:
    details = dict(row.details or {})
    details.setdefault("risk_level", row.risk_level)
    return Alert(
        id=row.id,
        subject_record_id=row.subject_record_id,
        related_record_id=row.related_record_id,
        confidence_score=row.confidence_score,
        kind=row.kind,
        details=AlertDetails.from_mapping(details),
        status=row.status,
        reviewed_by=row.reviewed_by,
        reviewed_at=_as_utc_or_none(row.reviewed_at),
        notes=row.notes,
        created_at=_as_utc_or_none(row.created_at),
    )


class SqlAlertRepository:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def add_many(self, alerts: Sequence[Alert]) -> List[Alert]:
        saved: List[Alert] = []
        rows: List[FraudAlert] = []
        for alert in alerts:
            stored = replace(alert, id=uuid_str(), created_at=utcnow())
            rows.append(
                FraudAlert(
                    id=stored.id,
                    subject_record_id=stored.subject_record_id,
                    related_record_id=stored.related_record_id,
                    confidence_score=stored.confidence_score,
                    kind=stored.kind,
                    risk_level=stored.details.risk_level,
                    details=stored.details.as_dict(),
                    status=stored.status,
                    created_at=stored.created_at,
                )
            )
            saved.append(stored)
        if not rows:
            return saved
        with _storage_errors("alert insert"):
            with self._session_factory() as db:
                db.add_all(rows)
                db.commit()
        return saved

    def get(self, alert_id: str) -> Alert:
        with _storage_errors("alert lookup"):
            with self._session_factory() as db:
                row = db.get(FraudAlert, alert_id)
                if row is None:
                    raise NotFound(f"alert {alert_id} not found")
                return _alert_from_row(row)

    def list(
        self,
        *,
        status: Optional[str] = None,
        kind: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[Alert]:
        query = select(FraudAlert)
        if status:
            query = query.where(FraudAlert.status == status)
        if kind:
            query = query.where(FraudAlert.kind == kind)
        query = query.order_by(FraudAlert.created_at.desc(), FraudAlert.id.desc()).limit(limit).offset(offset)
        with _storage_errors("alert list"):
            with self._session_factory() as db:
                return [_alert_from_row(row) for row in db.execute(query).scalars().all()]

    def list_for_subject(self, subject_record_id: str) -> List[Alert]:
        query = (
            select(FraudAlert)
            .where(FraudAlert.subject_record_id == subject_record_id)
            .order_by(FraudAlert.created_at.desc(), FraudAlert.id.desc())
        )
        with _storage_errors("alert list"):
            with self._session_factory() as db:
                return [_alert_from_row(row) for row in db.execute(query).scalars().all()]

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
        stmt = (
            update(FraudAlert)
            .where(FraudAlert.id == alert_id, FraudAlert.status == expected_status)
            .values(status=status, reviewed_by=reviewed_by, reviewed_at=as_utc(reviewed_at), notes=notes)
        )
        with _storage_errors("alert status update"):
            with self._session_factory() as db:
                res = db.execute(stmt)
                db.commit()
                return int(getattr(res, "rowcount", 0) or 0) == 1

    def statistics(self) -> AlertStats:
        with _storage_errors("alert statistics"):
            with self._session_factory() as db:
                by_status = dict(db.execute(select(FraudAlert.status, func.count()).group_by(FraudAlert.status)).all())
                by_risk = dict(
                    db.execute(select(FraudAlert.risk_level, func.count()).group_by(FraudAlert.risk_level)).all()
                )
                by_kind = dict(db.execute(select(FraudAlert.kind, func.count()).group_by(FraudAlert.kind)).all())
        return AlertStats(
            total=sum(by_status.values()),
            pending=by_status.get("pending", 0),
            reviewed=by_status.get("reviewed", 0),
            confirmed=by_status.get("confirmed", 0),
            dismissed=by_status.get("dismissed", 0),
            by_risk_level=by_risk,
            by_kind=by_kind,
        )


# -------------------------
# Settings
# -------------------------

def _settings_from_row(row: FraudDetectionSettings) -> DetectionSettings:
    return DetectionSettings(
        enabled=row.enabled,
        duplicate_threshold=row.duplicate_threshold,
        amount_tolerance_pct=row.amount_tolerance_pct,
        time_window_hours=row.time_window_hours,
        location_radius_km=row.location_radius_km,
        auto_flag_suspicious=row.auto_flag_suspicious,
        require_approval=row.require_approval,
        updated_at=_as_utc_or_none(row.updated_at),
    )


class SqlSettingsRepository:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def _ensure_row(self, db: Session, defaults: DetectionSettings) -> FraudDetectionSettings:
        row = db.get(FraudDetectionSettings, SETTINGS_ROW_ID)
        if row is not None:
            return row
        now = utcnow()
        values: Dict[str, Any] = {name: getattr(defaults, name) for name in SETTINGS_FIELDS}
        values.update(id=SETTINGS_ROW_ID, created_at=now, updated_at=now)
        _insert_ignoring_conflict(db, FraudDetectionSettings, values, ["id"])
        db.commit()
        return db.get(FraudDetectionSettings, SETTINGS_ROW_ID, populate_existing=True)

    def get_or_create(self, defaults: DetectionSettings) -> DetectionSettings:
        with _storage_errors("settings read", SettingsUnavailable):
            with self._session_factory() as db:
                return _settings_from_row(self._ensure_row(db, defaults))

    def update(self, changes: Mapping[str, Any]) -> DetectionSettings:
        values = {name: changes[name] for name in SETTINGS_FIELDS if name in changes}
        with _storage_errors("settings update", SettingsUnavailable):
            with self._session_factory() as db:
                self._ensure_row(db, DetectionSettings())
                if values:
                    db.execute(
                        update(FraudDetectionSettings)
                        .where(FraudDetectionSettings.id == SETTINGS_ROW_ID)
                        .values(**values, updated_at=utcnow())
                    )
                    db.commit()
                row = db.get(FraudDetectionSettings, SETTINGS_ROW_ID, populate_existing=True)
                return _settings_from_row(row)


# -------------------------
# Expense history (collaborator table)
# -------------------------

class SqlExpenseHistory:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    def expenses_for_user(self, user_id: str, since: datetime) -> List[ExpenseSample]:
        occurred_at = func.coalesce(ExpenseItem.expense_date, ExpenseItem.created_at)
        query = (
            select(ExpenseItem.id, ExpenseItem.amount, ExpenseItem.expense_date, ExpenseItem.created_at)
            .where(ExpenseItem.user_id == user_id, occurred_at >= as_utc(since))
            .order_by(occurred_at.desc())
        )
        with _storage_errors("expense history read"):
            with self._session_factory() as db:
                rows = db.execute(query).all()
        return [
            ExpenseSample(
                record_id=row.id,
                amount=row.amount,
                occurred_at=as_utc(row.expense_date or row.created_at),
            )
            for row in rows
        ]
