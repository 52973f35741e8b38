"""Receipt fingerprinting.

The extracted text is built from a fixed sequence of fields and hashed with
SHA-256 (hex digest of the UTF-8 text). Both the field order and the hash are
part of the comparison contract: changing either makes new fingerprints
incomparable with the stored history.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from backend.app.fraud.errors import InvalidRecord
from backend.app.fraud.types import ExpenseRecord, Fingerprint, MerchantInfo, as_utc


def amount_text(amount: Decimal) -> str:
    # 12.50, 12.5 and 12.500 all render as "12.5"
    normalized = amount.normalize()
    if normalized == normalized.to_integral_value():
        normalized = normalized.quantize(Decimal(1))
    return format(normalized, "f")


def build_extracted_text(record: ExpenseRecord, amount: Decimal) -> str:
    parts: List[str] = []
    for value in (record.description, record.receipt_number, record.merchant_name, record.notes):
        if value and str(value).strip():
            parts.append(str(value).strip())
    parts.append(amount_text(amount))
    return " ".join(parts).lower().strip()


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def extract_merchant(record: ExpenseRecord) -> Optional[MerchantInfo]:
    if not (record.merchant_name or record.tax_number or record.merchant_phone):
        return None
    return MerchantInfo(
        name=record.merchant_name,
        tax_number=record.tax_number,
        phone=record.merchant_phone,
    )


def extract_fingerprint(record: ExpenseRecord, *, now: datetime) -> Fingerprint:
    """Build the (unsaved) fingerprint for an expense record.

    A record needs an amount or a timestamp. A missing amount is treated as 0,
    a missing timestamp as the ingestion instant ``now``, which is also
    stamped as the fingerprint's ``created_at``.
    """
    if not record.id:
        raise InvalidRecord(record.id, "missing record id")
    occurred_at = record.occurred_at
    if record.amount is None and occurred_at is None:
        raise InvalidRecord(record.id, "missing both amount and timestamp")

    amount = record.amount if record.amount is not None else Decimal(0)
    text = build_extracted_text(record, amount)
    return Fingerprint(
        source_record_id=str(record.id),
        content_hash=content_hash(text),
        amount=amount,
        timestamp=as_utc(occurred_at or now),
        extracted_text=text,
        location=record.location,
        merchant=extract_merchant(record),
        user_id=record.user_id,
        created_at=as_utc(now),
    )
