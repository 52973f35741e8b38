from __future__ import annotations

import logging
import os
from typing import Optional

logger = logging.getLogger(__name__)


def _env_number(name: str, default: Optional[float]) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def bulk_max_workers() -> int:
    value = _env_number("FRAUD_BULK_MAX_WORKERS", 4)
    return max(1, int(value))


def bulk_timeout_seconds() -> Optional[float]:
    value = _env_number("FRAUD_BULK_TIMEOUT_SECONDS", None)
    if value is not None and value <= 0:
        return None
    return value


def anomaly_lookback_months() -> int:
    value = _env_number("FRAUD_ANOMALY_LOOKBACK_MONTHS", 3)
    return max(1, int(value))
