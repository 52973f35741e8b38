from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional

ALERT_KINDS = (
    "duplicate_receipt",
    "amount_manipulation",
    "location_mismatch",
    "time_anomaly",
    "pattern_anomaly",
)
ALERT_STATUSES = ("pending", "reviewed", "confirmed", "dismissed")
RISK_LEVELS = ("low", "medium", "high", "critical")


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValueError(f"invalid amount: {value!r}") from exc


def _to_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    return as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


@dataclass(frozen=True)
class Location:
    lat: float
    lng: float
    address: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> Optional["Location"]:
        if not data or data.get("lat") is None or data.get("lng") is None:
            return None
        return cls(lat=float(data["lat"]), lng=float(data["lng"]), address=data.get("address"))

    def as_dict(self) -> Dict[str, Any]:
        return {"lat": self.lat, "lng": self.lng, "address": self.address}


@dataclass(frozen=True)
class MerchantInfo:
    name: Optional[str] = None
    tax_number: Optional[str] = None
    phone: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]]) -> Optional["MerchantInfo"]:
        if not data:
            return None
        info = cls(name=data.get("name"), tax_number=data.get("tax_number"), phone=data.get("phone"))
        return info if (info.name or info.tax_number or info.phone) else None

    def as_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "tax_number": self.tax_number, "phone": self.phone}


@dataclass(frozen=True)
class ExpenseRecord:
    """An expense item as supplied by the expense-management side."""

    id: str
    amount: Optional[Decimal] = None
    expense_date: Optional[datetime] = None
    created_at: Optional[datetime] = None
    description: Optional[str] = None
    receipt_number: Optional[str] = None
    merchant_name: Optional[str] = None
    notes: Optional[str] = None
    location: Optional[Location] = None
    tax_number: Optional[str] = None
    merchant_phone: Optional[str] = None
    user_id: Optional[str] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "ExpenseRecord":
        return cls(
            id=str(data["id"]),
            amount=to_decimal(data.get("amount")),
            expense_date=_to_datetime(data.get("expense_date")),
            created_at=_to_datetime(data.get("created_at")),
            description=data.get("description"),
            receipt_number=data.get("receipt_number"),
            merchant_name=data.get("merchant_name"),
            notes=data.get("notes"),
            location=Location.from_mapping(data.get("location")),
            tax_number=data.get("tax_number"),
            merchant_phone=data.get("merchant_phone"),
            user_id=data.get("user_id"),
        )

    @property
    def occurred_at(self) -> Optional[datetime]:
        return self.expense_date or self.created_at


@dataclass(frozen=True)
class Fingerprint:
    source_record_id: str
    content_hash: str
    amount: Decimal
    timestamp: datetime
    extracted_text: str
    location: Optional[Location] = None
    merchant: Optional[MerchantInfo] = None
    user_id: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ExpenseSample:
    record_id: str
    amount: Decimal
    occurred_at: datetime


@dataclass(frozen=True)
class AlertDetails:
    risk_level: str
    similarity_factors: List[str] = field(default_factory=list)
    amount_difference: Optional[float] = None
    time_difference_hours: Optional[float] = None
    distance_km: Optional[float] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "risk_level": self.risk_level,
            "similarity_factors": list(self.similarity_factors),
            "amount_difference": self.amount_difference,
            "time_difference_hours": self.time_difference_hours,
            "distance_km": self.distance_km,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AlertDetails":
        return cls(
            risk_level=data.get("risk_level") or "low",
            similarity_factors=list(data.get("similarity_factors") or []),
            amount_difference=data.get("amount_difference"),
            time_difference_hours=data.get("time_difference_hours"),
            distance_km=data.get("distance_km"),
        )


@dataclass(frozen=True)
class Alert:
    subject_record_id: str
    related_record_id: str
    confidence_score: float
    kind: str
    details: AlertDetails
    status: str = "pending"
    reviewed_by: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    notes: Optional[str] = None
    id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def risk_level(self) -> str:
        return self.details.risk_level


@dataclass(frozen=True)
class DetectionSettings:
    enabled: bool = True
    duplicate_threshold: float = 85.0
    amount_tolerance_pct: float = 5.0
    time_window_hours: float = 24.0
    location_radius_km: float = 0.5
    auto_flag_suspicious: bool = True
    require_approval: bool = True
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class SimilarityResult:
    confidence: float
    factors: List[str]
    sub_scores: Dict[str, float]


@dataclass
class AlertStats:
    total: int = 0
    pending: int = 0
    reviewed: int = 0
    confirmed: int = 0
    dismissed: int = 0
    by_risk_level: Dict[str, int] = field(default_factory=dict)
    by_kind: Dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class RecordFailure:
    record_id: Optional[str]
    error: str
    message: str


@dataclass
class BulkCheckResult:
    alerts: List[Alert] = field(default_factory=list)
    failures: List[RecordFailure] = field(default_factory=list)
    checked: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures
