from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Literal, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel, Field

from backend.app.api.config import anomaly_lookback_months
from backend.app.api.deps import get_fraud_engine, get_reviewer
from backend.app.fraud.engine import FraudDetectionEngine
from backend.app.fraud.errors import (
    FraudDetectionError,
    InvalidRecord,
    InvalidSettings,
    InvalidStatusUpdate,
    InvalidTransition,
    NotFound,
    StorageUnavailable,
)
from backend.app.fraud.lifecycle import ensure_transition_allowed
from backend.app.fraud.types import Alert, DetectionSettings, ExpenseRecord, Location, as_utc

router = APIRouter(prefix="/api/fraud", tags=["fraud"])

AlertKind = Literal[
    "duplicate_receipt",
    "amount_manipulation",
    "location_mismatch",
    "time_anomaly",
    "pattern_anomaly",
]
AlertStatus = Literal["pending", "reviewed", "confirmed", "dismissed"]
RiskLevel = Literal["low", "medium", "high", "critical"]


class LocationIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    address: Optional[str] = Field(default=None, max_length=500)


class ExpenseRecordIn(BaseModel):
    id: str = Field(..., min_length=1, max_length=120)
    amount: Optional[Decimal] = None
    expense_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    description: Optional[str] = None
    receipt_number: Optional[str] = Field(default=None, max_length=120)
    merchant_name: Optional[str] = Field(default=None, max_length=200)
    notes: Optional[str] = None
    location: Optional[LocationIn] = None
    tax_number: Optional[str] = Field(default=None, max_length=60)
    merchant_phone: Optional[str] = Field(default=None, max_length=60)
    user_id: Optional[str] = Field(default=None, max_length=120)

    def to_record(self) -> ExpenseRecord:
        return ExpenseRecord(
            id=self.id,
            amount=self.amount,
            expense_date=as_utc(self.expense_date) if self.expense_date else None,
            created_at=as_utc(self.created_at) if self.created_at else None,
            description=self.description,
            receipt_number=self.receipt_number,
            merchant_name=self.merchant_name,
            notes=self.notes,
            location=Location(**self.location.model_dump()) if self.location else None,
            tax_number=self.tax_number,
            merchant_phone=self.merchant_phone,
            user_id=self.user_id,
        )


class AlertDetailsOut(BaseModel):
    risk_level: RiskLevel
    similarity_factors: List[str]
    amount_difference: Optional[float] = None
    time_difference_hours: Optional[float] = None
    distance_km: Optional[float] = None


class AlertOut(BaseModel):
    id: str
    subject_record_id: str
    related_record_id: str
    confidence_score: float
    kind: AlertKind
    details: AlertDetailsOut
    status: AlertStatus
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class BulkCheckIn(BaseModel):
    records: List[ExpenseRecordIn] = Field(..., min_length=1, max_length=1000)
    timeout_seconds: Optional[float] = Field(default=None, gt=0, le=600)


class RecordFailureOut(BaseModel):
    record_id: Optional[str]
    error: str
    message: str


class BulkCheckOut(BaseModel):
    alerts: List[AlertOut]
    failures: List[RecordFailureOut]
    checked: int


class AlertStatusUpdateIn(BaseModel):
    status: Literal["reviewed", "confirmed", "dismissed"]
    reviewed_by: Optional[str] = Field(default=None, max_length=120)
    notes: Optional[str] = Field(default=None, max_length=2000)


class AlertStatsOut(BaseModel):
    total: int
    pending: int
    reviewed: int
    confirmed: int
    dismissed: int
    by_risk_level: Dict[str, int]
    by_kind: Dict[str, int]


class SettingsOut(BaseModel):
    enabled: bool
    duplicate_threshold: float
    amount_tolerance_pct: float
    time_window_hours: float
    location_radius_km: float
    auto_flag_suspicious: bool
    require_approval: bool
    updated_at: Optional[datetime] = None


class SettingsPatchIn(BaseModel):
    enabled: Optional[bool] = None
    duplicate_threshold: Optional[float] = Field(default=None, ge=0, le=100)
    amount_tolerance_pct: Optional[float] = Field(default=None, ge=0, le=100)
    time_window_hours: Optional[float] = Field(default=None, gt=0)
    location_radius_km: Optional[float] = Field(default=None, gt=0)
    auto_flag_suspicious: Optional[bool] = None
    require_approval: Optional[bool] = None


class ApprovalStatusOut(BaseModel):
    record_id: str
    blocked: bool
    alert_ids: List[str]


def _alert_out(alert: Alert) -> AlertOut:
    return AlertOut(
        id=alert.id,
        subject_record_id=alert.subject_record_id,
        related_record_id=alert.related_record_id,
        confidence_score=alert.confidence_score,
        kind=alert.kind,
        details=AlertDetailsOut(**alert.details.as_dict()),
        status=alert.status,
        reviewed_by=alert.reviewed_by,
        reviewed_at=alert.reviewed_at,
        notes=alert.notes,
        created_at=alert.created_at,
    )


def _settings_out(settings: DetectionSettings) -> SettingsOut:
    return SettingsOut(
        enabled=settings.enabled,
        duplicate_threshold=settings.duplicate_threshold,
        amount_tolerance_pct=settings.amount_tolerance_pct,
        time_window_hours=settings.time_window_hours,
        location_radius_km=settings.location_radius_km,
        auto_flag_suspicious=settings.auto_flag_suspicious,
        require_approval=settings.require_approval,
        updated_at=settings.updated_at,
    )


def _raise_http(exc: FraudDetectionError) -> NoReturn:
    if isinstance(exc, NotFound):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, InvalidTransition):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, (InvalidRecord, InvalidSettings, InvalidStatusUpdate)):
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    if isinstance(exc, StorageUnavailable):
        raise HTTPException(status_code=503, detail="detection storage unavailable") from exc
    raise HTTPException(status_code=500, detail=str(exc)) from exc


@router.post("/check", response_model=List[AlertOut])
def check_record(req: ExpenseRecordIn, engine: FraudDetectionEngine = Depends(get_fraud_engine)):
    try:
        alerts = engine.check_record(req.to_record())
    except FraudDetectionError as exc:
        _raise_http(exc)
    return [_alert_out(alert) for alert in alerts]


@router.post("/bulk-check", response_model=BulkCheckOut)
def bulk_check(req: BulkCheckIn, engine: FraudDetectionEngine = Depends(get_fraud_engine)):
    result = engine.bulk_check([record.to_record() for record in req.records], timeout=req.timeout_seconds)
    return BulkCheckOut(
        alerts=[_alert_out(alert) for alert in result.alerts],
        failures=[
            RecordFailureOut(record_id=f.record_id, error=f.error, message=f.message) for f in result.failures
        ],
        checked=result.checked,
    )


@router.post("/users/{user_id}/analyze", response_model=List[AlertOut])
def analyze_user(
    user_id: str,
    lookback_months: Optional[int] = Query(None, ge=1, le=24),
    engine: FraudDetectionEngine = Depends(get_fraud_engine),
):
    try:
        alerts = engine.analyze_user(user_id, lookback_months or anomaly_lookback_months())
    except FraudDetectionError as exc:
        _raise_http(exc)
    return [_alert_out(alert) for alert in alerts]


@router.get("/alerts", response_model=List[AlertOut])
def list_alerts(
    status: Optional[AlertStatus] = Query(None),
    kind: Optional[AlertKind] = Query(None),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    engine: FraudDetectionEngine = Depends(get_fraud_engine),
):
    try:
        alerts = engine.list_alerts(status=status, kind=kind, limit=limit, offset=offset)
    except FraudDetectionError as exc:
        _raise_http(exc)
    return [_alert_out(alert) for alert in alerts]


@router.get("/alerts/{alert_id}", response_model=AlertOut)
def get_alert(alert_id: str, engine: FraudDetectionEngine = Depends(get_fraud_engine)):
    try:
        return _alert_out(engine.get_alert(alert_id))
    except FraudDetectionError as exc:
        _raise_http(exc)


@router.patch("/alerts/{alert_id}", response_model=AlertOut)
def update_alert_status(
    alert_id: str,
    req: AlertStatusUpdateIn,
    request: Request,
    engine: FraudDetectionEngine = Depends(get_fraud_engine),
):
    reviewer = get_reviewer(request, req.reviewed_by)
    try:
        current = engine.get_alert(alert_id)
        ensure_transition_allowed(current.status, req.status)
        applied = engine.update_alert_status(
            alert_id, req.status, reviewer, req.notes, expected_status=current.status
        )
        if not applied:
            raise HTTPException(status_code=409, detail="alert changed concurrently; reload and retry")
        return _alert_out(engine.get_alert(alert_id))
    except FraudDetectionError as exc:
        _raise_http(exc)


@router.get("/stats", response_model=AlertStatsOut)
def get_statistics(engine: FraudDetectionEngine = Depends(get_fraud_engine)):
    try:
        stats = engine.get_statistics()
    except FraudDetectionError as exc:
        _raise_http(exc)
    return AlertStatsOut(
        total=stats.total,
        pending=stats.pending,
        reviewed=stats.reviewed,
        confirmed=stats.confirmed,
        dismissed=stats.dismissed,
        by_risk_level=stats.by_risk_level,
        by_kind=stats.by_kind,
    )


@router.get("/settings", response_model=SettingsOut)
def get_settings(engine: FraudDetectionEngine = Depends(get_fraud_engine)):
    try:
        return _settings_out(engine.get_settings())
    except FraudDetectionError as exc:
        _raise_http(exc)


@router.patch("/settings", response_model=SettingsOut)
def update_settings(req: SettingsPatchIn, engine: FraudDetectionEngine = Depends(get_fraud_engine)):
    changes = {name: value for name, value in req.model_dump(exclude_unset=True).items() if value is not None}
    try:
        return _settings_out(engine.update_settings(changes))
    except FraudDetectionError as exc:
        _raise_http(exc)


@router.get("/records/{record_id}/approval", response_model=ApprovalStatusOut)
def approval_status(record_id: str, engine: FraudDetectionEngine = Depends(get_fraud_engine)):
    try:
        status = engine.approval_blocked(record_id)
    except FraudDetectionError as exc:
        _raise_http(exc)
    return ApprovalStatusOut(record_id=record_id, **status)
