from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Index,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.db import Base


# -------------------------
# Helpers
# -------------------------

def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def uuid_str() -> str:
    return str(uuid.uuid4())


SETTINGS_ROW_ID = 1


# -------------------------
# Detection models
# -------------------------

class FraudDetectionSettings(Base):
    """
    Singleton row of detection thresholds. Always id=SETTINGS_ROW_ID.
    """
    __tablename__ = "fraud_detection_settings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, default=SETTINGS_ROW_ID)

    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    duplicate_threshold: Mapped[float] = mapped_column(Float, nullable=False, default=85.0)
    amount_tolerance_pct: Mapped[float] = mapped_column(Float, nullable=False, default=5.0)
    time_window_hours: Mapped[float] = mapped_column(Float, nullable=False, default=24.0)
    location_radius_km: Mapped[float] = mapped_column(Float, nullable=False, default=0.5)
    auto_flag_suspicious: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    require_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class ReceiptFingerprint(Base):
    """
    Historical index of every checked expense record. One row per source record,
    written once and never updated.
    """
    __tablename__ = "receipt_fingerprints"
    __table_args__ = (
        UniqueConstraint("source_record_id", name="uq_receipt_fingerprints_source_record"),
        Index("ix_receipt_fingerprints_timestamp", "timestamp"),
        Index("ix_receipt_fingerprints_content_hash", "content_hash"),
        Index("ix_receipt_fingerprints_created_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)
    source_record_id: Mapped[str] = mapped_column(String(120), nullable=False)
    user_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True, index=True)

    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    location: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)  # {lat, lng, address}
    merchant: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)  # {name, tax_number, phone}
    extracted_text: Mapped[str] = mapped_column(Text, nullable=False, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


class FraudAlert(Base):
    """
    Append-only findings. Only the review fields change after insert.
    """
    __tablename__ = "fraud_alerts"
    __table_args__ = (
        Index("ix_fraud_alerts_status", "status"),
        Index("ix_fraud_alerts_kind", "kind"),
        Index("ix_fraud_alerts_created_at", "created_at"),
        Index("ix_fraud_alerts_subject_record_id", "subject_record_id"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=uuid_str)

    subject_record_id: Mapped[str] = mapped_column(String(120), nullable=False)
    related_record_id: Mapped[str] = mapped_column(String(120), nullable=False)

    confidence_score: Mapped[float] = mapped_column(Float, nullable=False)
    kind: Mapped[str] = mapped_column(String(40), nullable=False)
    risk_level: Mapped[str] = mapped_column(String(20), nullable=False)
    details: Mapped[dict] = mapped_column(JSON, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


# -------------------------
# Collaborator tables (read-only here)
# -------------------------

class ExpenseItem(Base):
    """
    Expense items owned by the expense-management CRUD side.
    Detection only reads them to build per-user spending history.
    """
    __tablename__ = "expense_items"
    __table_args__ = (
        Index("ix_expense_items_user_id", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(120), primary_key=True, default=uuid_str)
    user_id: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    expense_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    receipt_number: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    merchant_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tax_number: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    merchant_phone: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    location: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
