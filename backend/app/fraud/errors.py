from __future__ import annotations


class FraudDetectionError(Exception):
    """Base class for detection engine failures."""


class InvalidRecord(FraudDetectionError, ValueError):
    """The expense record cannot be fingerprinted (no amount and no timestamp)."""

    def __init__(self, record_id: object, reason: str):
        super().__init__(f"record {record_id!r}: {reason}")
        self.record_id = record_id
        self.reason = reason


class StorageUnavailable(FraudDetectionError):
    """Persistence or lookup failed; nothing was written for the failed call."""


class SettingsUnavailable(StorageUnavailable):
    """Settings could not be read. Detection falls back to built-in defaults."""


class NotFound(FraudDetectionError, LookupError):
    pass


class InvalidSettings(FraudDetectionError, ValueError):
    pass


class InvalidStatusUpdate(FraudDetectionError, ValueError):
    pass


class InvalidTransition(InvalidStatusUpdate):
    def __init__(self, from_status: str, to_status: str):
        super().__init__(f"invalid status transition {from_status}->{to_status}")
        self.from_status = from_status
        self.to_status = to_status


class BulkCheckCancelled(FraudDetectionError):
    pass
