from __future__ import annotations

from typing import Any, Dict, Mapping

from backend.app.fraud.errors import InvalidSettings

BOOL_FIELDS = ("enabled", "auto_flag_suspicious", "require_approval")
PERCENT_FIELDS = ("duplicate_threshold", "amount_tolerance_pct")
POSITIVE_FIELDS = ("time_window_hours", "location_radius_km")
SETTINGS_FIELDS = BOOL_FIELDS + PERCENT_FIELDS + POSITIVE_FIELDS


def validate_settings_changes(changes: Mapping[str, Any]) -> Dict[str, Any]:
    """Check a partial settings update and return the normalized values."""
    unknown = sorted(set(changes) - set(SETTINGS_FIELDS))
    if unknown:
        raise InvalidSettings(f"unknown settings: {', '.join(unknown)}")

    cleaned: Dict[str, Any] = {}
    for name, value in changes.items():
        if value is None:
            raise InvalidSettings(f"{name} must not be null")
        if name in BOOL_FIELDS:
            if not isinstance(value, bool):
                raise InvalidSettings(f"{name} must be a boolean")
            cleaned[name] = value
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidSettings(f"{name} must be a number")
        number = float(value)
        if name in PERCENT_FIELDS and not 0 <= number <= 100:
            raise InvalidSettings(f"{name} must be between 0 and 100")
        if name in POSITIVE_FIELDS and number <= 0:
            raise InvalidSettings(f"{name} must be greater than 0")
        cleaned[name] = number
    return cleaned
