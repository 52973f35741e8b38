import pytest

from backend.app.fraud.errors import InvalidStatusUpdate, InvalidTransition, NotFound
from backend.app.fraud.lifecycle import compute_statistics, ensure_transition_allowed, is_allowed_transition
from backend.app.fraud.memory import InMemoryAlertRepository
from backend.tests.fraud_factories import NOW, make_record, make_samples


def _duplicate_alert(engine):
    engine.check_record(make_record("r1"))
    (alert,) = engine.check_record(make_record("r2", minutes=10))
    return alert


@pytest.mark.parametrize(
    "from_status, to_status, allowed",
    [
        ("pending", "reviewed", True),
        ("pending", "confirmed", True),
        ("pending", "dismissed", True),
        ("reviewed", "confirmed", True),
        ("reviewed", "dismissed", True),
        ("reviewed", "pending", False),
        ("confirmed", "dismissed", False),
        ("dismissed", "confirmed", False),
        ("pending", "pending", False),
    ],
)
def test_transition_policy(from_status, to_status, allowed):
    assert is_allowed_transition(from_status, to_status) is allowed


def test_ensure_transition_allowed_raises():
    with pytest.raises(InvalidTransition) as excinfo:
        ensure_transition_allowed("confirmed", "dismissed")
    assert excinfo.value.from_status == "confirmed"
    assert excinfo.value.to_status == "dismissed"


def test_review_decision_is_recorded(memory_engine):
    alert = _duplicate_alert(memory_engine)

    assert memory_engine.update_alert_status(
        alert.id, "confirmed", "alice@example.com", "same receipt twice", expected_status="pending"
    )

    stored = memory_engine.get_alert(alert.id)
    assert stored.status == "confirmed"
    assert stored.reviewed_by == "alice@example.com"
    assert stored.reviewed_at == NOW
    assert stored.notes == "same receipt twice"
    assert stored.confidence_score == alert.confidence_score


def test_engine_records_status_change_without_policy_check(memory_engine):
    alert = _duplicate_alert(memory_engine)
    memory_engine.update_alert_status(alert.id, "confirmed", "alice", expected_status="pending")
    assert memory_engine.update_alert_status(alert.id, "dismissed", "bob", expected_status="confirmed")
    assert memory_engine.get_alert(alert.id).status == "dismissed"


def test_status_update_rejects_pending_and_unknown(memory_engine):
    alert = _duplicate_alert(memory_engine)
    with pytest.raises(InvalidStatusUpdate):
        memory_engine.update_alert_status(alert.id, "pending", "alice", expected_status="pending")
    with pytest.raises(InvalidStatusUpdate):
        memory_engine.update_alert_status(alert.id, "escalated", "alice", expected_status="pending")
    with pytest.raises(InvalidStatusUpdate):
        memory_engine.update_alert_status(alert.id, "dismissed", "  ", expected_status="pending")


def test_status_update_for_missing_alert(memory_engine):
    with pytest.raises(NotFound):
        memory_engine.get_alert("does-not-exist")
    assert memory_engine.update_alert_status("does-not-exist", "dismissed", "alice", expected_status="pending") is False


def test_stale_review_does_not_overwrite_concurrent_decision(memory_engine):
    alert = _duplicate_alert(memory_engine)

    # alice loads the alert and validates her change against what she saw
    seen_by_alice = memory_engine.get_alert(alert.id).status
    ensure_transition_allowed(seen_by_alice, "confirmed")

    assert memory_engine.update_alert_status(alert.id, "dismissed", "bob", expected_status="pending") is True
    assert memory_engine.update_alert_status(alert.id, "confirmed", "alice", expected_status=seen_by_alice) is False

    stored = memory_engine.get_alert(alert.id)
    assert stored.status == "dismissed"
    assert stored.reviewed_by == "bob"


def test_compare_and_set_requires_expected_status():
    repo = InMemoryAlertRepository()
    alert = repo.add_many([_duplicate_alert_template()])[0]

    kwargs = dict(status="reviewed", reviewed_by="alice", reviewed_at=NOW, notes=None)
    assert repo.compare_and_set_status(alert.id, expected_status="pending", **kwargs) is True
    assert repo.compare_and_set_status(alert.id, expected_status="pending", **kwargs) is False


def _duplicate_alert_template():
    from backend.app.fraud.types import Alert, AlertDetails

    return Alert(
        subject_record_id="r2",
        related_record_id="r1",
        confidence_score=97.5,
        kind="duplicate_receipt",
        details=AlertDetails(risk_level="critical"),
    )


def test_statistics_count_statuses_risk_and_kind(memory_engine):
    first = _duplicate_alert(memory_engine)
    second = memory_engine.check_record(make_record("r3", minutes=20))
    for sample in make_samples([100] * 10 + [10000]):
        memory_engine.history.add("user-1", sample)
    memory_engine.analyze_user("user-1")

    memory_engine.update_alert_status(first.id, "confirmed", "alice", expected_status="pending")
    memory_engine.update_alert_status(second[0].id, "reviewed", "alice", expected_status="pending")

    stats = memory_engine.get_statistics()
    assert stats.total == 4
    assert stats.pending == 2
    assert stats.reviewed == 1
    assert stats.confirmed == 1
    assert stats.dismissed == 0
    assert stats.by_kind == {"duplicate_receipt": 3, "amount_manipulation": 1}
    assert stats.by_risk_level == {"critical": 4}


def test_statistics_of_nothing():
    stats = compute_statistics([])
    assert stats.total == 0
    assert stats.by_risk_level == {}
    assert stats.by_kind == {}


def test_list_alerts_filters_and_pages(memory_engine):
    _duplicate_alert(memory_engine)
    memory_engine.check_record(make_record("r3", minutes=20))
    for sample in make_samples([100] * 10 + [10000]):
        memory_engine.history.add("user-1", sample)
    memory_engine.analyze_user("user-1")

    assert len(memory_engine.list_alerts()) == 4
    assert [a.kind for a in memory_engine.list_alerts(kind="amount_manipulation")] == ["amount_manipulation"]
    assert len(memory_engine.list_alerts(status="pending", limit=2)) == 2
    assert len(memory_engine.list_alerts(offset=3)) == 1
    assert memory_engine.list_alerts(status="dismissed") == []


def test_pending_critical_alert_blocks_approval(memory_engine):
    alert = _duplicate_alert(memory_engine)

    assert memory_engine.approval_blocked("r2") == {"blocked": True, "alert_ids": [alert.id]}
    assert memory_engine.approval_blocked("r1") == {"blocked": False, "alert_ids": []}

    memory_engine.update_alert_status(alert.id, "dismissed", "alice", expected_status="pending")
    assert memory_engine.approval_blocked("r2")["blocked"] is False


def test_approval_not_required(memory_engine):
    _duplicate_alert(memory_engine)
    memory_engine.update_settings({"require_approval": False})
    assert memory_engine.approval_blocked("r2") == {"blocked": False, "alert_ids": []}
