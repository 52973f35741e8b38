"""Duplicate-receipt and spending-anomaly detection."""

from backend.app.fraud.engine import FraudDetectionEngine  # noqa: F401
from backend.app.fraud.errors import (  # noqa: F401
    FraudDetectionError,
    InvalidRecord,
    InvalidSettings,
    InvalidStatusUpdate,
    InvalidTransition,
    NotFound,
    SettingsUnavailable,
    StorageUnavailable,
)
from backend.app.fraud.types import (  # noqa: F401
    Alert,
    AlertDetails,
    AlertStats,
    BulkCheckResult,
    DetectionSettings,
    ExpenseRecord,
    ExpenseSample,
    Fingerprint,
    Location,
)
