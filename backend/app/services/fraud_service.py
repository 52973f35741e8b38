from __future__ import annotations

from functools import lru_cache
from typing import Optional

from sqlalchemy.orm import sessionmaker

from backend.app.api.config import bulk_max_workers, bulk_timeout_seconds
from backend.app.fraud.engine import FraudDetectionEngine
from backend.app.fraud.sql_store import (
    SqlAlertRepository,
    SqlExpenseHistory,
    SqlFingerprintRepository,
    SqlSettingsRepository,
)


def build_engine(session_factory: Optional[sessionmaker] = None) -> FraudDetectionEngine:
    if session_factory is None:
        from backend.app.db import SessionLocal

        session_factory = SessionLocal
    return FraudDetectionEngine(
        fingerprints=SqlFingerprintRepository(session_factory),
        alerts=SqlAlertRepository(session_factory),
        settings=SqlSettingsRepository(session_factory),
        history=SqlExpenseHistory(session_factory),
        max_workers=bulk_max_workers(),
        bulk_timeout_seconds=bulk_timeout_seconds(),
    )


@lru_cache(maxsize=1)
def default_engine() -> FraudDetectionEngine:
    return build_engine()
