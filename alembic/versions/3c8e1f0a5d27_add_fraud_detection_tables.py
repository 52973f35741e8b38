"""add fraud detection tables

Revision ID: 3c8e1f0a5d27
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


revision: str = "3c8e1f0a5d27"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "fraud_detection_settings",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("enabled", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column("duplicate_threshold", sa.Float(), nullable=False),
        sa.Column("amount_tolerance_pct", sa.Float(), nullable=False),
        sa.Column("time_window_hours", sa.Float(), nullable=False),
        sa.Column("location_radius_km", sa.Float(), nullable=False),
        sa.Column("auto_flag_suspicious", sa.Boolean(), nullable=False),
        sa.Column("require_approval", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_table(
        "receipt_fingerprints",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("source_record_id", sa.String(length=120), nullable=False),
        sa.Column("user_id", sa.String(length=120), nullable=True),
        sa.Column("content_hash", sa.String(length=64), nullable=False),
        sa.Column("amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("location", sa.JSON(), nullable=True),
        sa.Column("merchant", sa.JSON(), nullable=True),
        sa.Column("extracted_text", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("source_record_id", name="uq_receipt_fingerprints_source_record"),
    )
    op.create_index("ix_receipt_fingerprints_timestamp", "receipt_fingerprints", ["timestamp"], unique=False)
    op.create_index("ix_receipt_fingerprints_content_hash", "receipt_fingerprints", ["content_hash"], unique=False)
    op.create_index("ix_receipt_fingerprints_created_at", "receipt_fingerprints", ["created_at"], unique=False)
    op.create_index("ix_receipt_fingerprints_user_id", "receipt_fingerprints", ["user_id"], unique=False)

    op.create_table(
        "fraud_alerts",
        sa.Column("id", sa.String(length=36), nullable=False),
        sa.Column("subject_record_id", sa.String(length=120), nullable=False),
        sa.Column("related_record_id", sa.String(length=120), nullable=False),
        sa.Column("confidence_score", sa.Float(), nullable=False),
        sa.Column("kind", sa.String(length=40), nullable=False),
        sa.Column("risk_level", sa.String(length=20), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("reviewed_by", sa.String(length=120), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_fraud_alerts_status", "fraud_alerts", ["status"], unique=False)
    op.create_index("ix_fraud_alerts_kind", "fraud_alerts", ["kind"], unique=False)
    op.create_index("ix_fraud_alerts_created_at", "fraud_alerts", ["created_at"], unique=False)
    op.create_index("ix_fraud_alerts_subject_record_id", "fraud_alerts", ["subject_record_id"], unique=False)

    op.create_table(
        "expense_items",
        sa.Column("id", sa.String(length=120), nullable=False),
        sa.Column("user_id", sa.String(length=120), nullable=True),
        sa.Column("amount", sa.Numeric(18, 4), nullable=False),
        sa.Column("expense_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("receipt_number", sa.String(length=120), nullable=True),
        sa.Column("merchant_name", sa.String(length=200), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("tax_number", sa.String(length=60), nullable=True),
        sa.Column("merchant_phone", sa.String(length=60), nullable=True),
        sa.Column("location", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_expense_items_user_id", "expense_items", ["user_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_expense_items_user_id", table_name="expense_items")
    op.drop_table("expense_items")

    op.drop_index("ix_fraud_alerts_subject_record_id", table_name="fraud_alerts")
    op.drop_index("ix_fraud_alerts_created_at", table_name="fraud_alerts")
    op.drop_index("ix_fraud_alerts_kind", table_name="fraud_alerts")
    op.drop_index("ix_fraud_alerts_status", table_name="fraud_alerts")
    op.drop_table("fraud_alerts")

    op.drop_index("ix_receipt_fingerprints_user_id", table_name="receipt_fingerprints")
    op.drop_index("ix_receipt_fingerprints_created_at", table_name="receipt_fingerprints")
    op.drop_index("ix_receipt_fingerprints_content_hash", table_name="receipt_fingerprints")
    op.drop_index("ix_receipt_fingerprints_timestamp", table_name="receipt_fingerprints")
    op.drop_table("receipt_fingerprints")

    op.drop_table("fraud_detection_settings")
