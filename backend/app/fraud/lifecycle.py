from __future__ import annotations

from typing import Iterable

from backend.app.fraud.errors import InvalidTransition
from backend.app.fraud.types import Alert, AlertStats

TERMINAL_STATUSES = {"confirmed", "dismissed"}
TRANSITIONS = {
    "pending": {"reviewed", "confirmed", "dismissed"},
    "reviewed": {"confirmed", "dismissed"},
    "confirmed": set(),
    "dismissed": set(),
}


def is_allowed_transition(from_status: str, to_status: str) -> bool:
    return to_status in TRANSITIONS.get(from_status, set())


def ensure_transition_allowed(from_status: str, to_status: str) -> None:
    """Review-workflow policy check. The engine itself records whatever
    status change it is asked to make; callers enforce this first."""
    if not is_allowed_transition(from_status, to_status):
        raise InvalidTransition(from_status, to_status)


def compute_statistics(alerts: Iterable[Alert]) -> AlertStats:
    stats = AlertStats()
    for alert in alerts:
        stats.total += 1
        if alert.status == "pending":
            stats.pending += 1
        elif alert.status == "reviewed":
            stats.reviewed += 1
        elif alert.status == "confirmed":
            stats.confirmed += 1
        elif alert.status == "dismissed":
            stats.dismissed += 1
        risk_level = alert.details.risk_level or "unknown"
        stats.by_risk_level[risk_level] = stats.by_risk_level.get(risk_level, 0) + 1
        stats.by_kind[alert.kind] = stats.by_kind.get(alert.kind, 0) + 1
    return stats
