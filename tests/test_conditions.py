"""Tests for status conditions."""

from datetime import datetime, timedelta, timezone

from config_sync.conditions import (
    DEGRADED,
    ConditionStatus,
    Conditions,
    format_time,
)
from config_sync.manifest import ConfigSyncStatus

NOW = datetime(2024, 5, 1, 12, 30, 15, 123456, tzinfo=timezone.utc)
LATER = NOW + timedelta(minutes=5)


def test_format_time() -> None:
    """Test timestamps are formatted like Kubernetes does."""
    assert format_time(NOW) == "2024-05-01T12:30:15Z"
    assert (
        format_time(datetime(2024, 5, 1, 14, 30, tzinfo=timezone(timedelta(hours=2))))
        == "2024-05-01T12:30:00Z"
    )


def test_set_new_condition() -> None:
    """Test adding a condition."""
    conditions = Conditions()
    conditions.set(DEGRADED, ConditionStatus.TRUE, "SourceFetchFailed", "boom", NOW)

    assert len(conditions) == 1
    assert DEGRADED in conditions
    assert conditions.is_true(DEGRADED)
    condition = conditions.get(DEGRADED)
    assert condition
    assert condition.reason == "SourceFetchFailed"
    assert condition.message == "boom"
    assert condition.last_transition_time == "2024-05-01T12:30:15Z"


def test_same_status_keeps_transition_time() -> None:
    """Test that only a status change moves the transition time."""
    conditions = Conditions()
    conditions.set(DEGRADED, ConditionStatus.TRUE, "SourceFetchFailed", "a", NOW)
    conditions.set(DEGRADED, ConditionStatus.TRUE, "ApplyFailed", "b", LATER)

    condition = conditions.get(DEGRADED)
    assert condition
    assert condition.reason == "ApplyFailed"
    assert condition.message == "b"
    assert condition.last_transition_time == format_time(NOW)

    conditions.set(DEGRADED, ConditionStatus.FALSE, "ApplySucceeded", "", LATER)
    condition = conditions.get(DEGRADED)
    assert condition
    assert not conditions.is_true(DEGRADED)
    assert condition.last_transition_time == format_time(LATER)
    assert len(conditions) == 1


def test_order_preserved() -> None:
    """Test that an update keeps the position of the condition."""
    conditions = Conditions()
    conditions.set("Ready", ConditionStatus.FALSE, "Progressing", "", NOW)
    conditions.set(DEGRADED, ConditionStatus.TRUE, "ApplyFailed", "", NOW)
    conditions.set("Ready", ConditionStatus.TRUE, "Done", "", LATER)

    assert [condition.type for condition in conditions] == ["Ready", DEGRADED]


def test_serialize_status() -> None:
    """Test conditions are serialized as a list on the status."""
    status = ConfigSyncStatus(source_revision="abc", applied_target_count=2)
    status.conditions.set(DEGRADED, ConditionStatus.FALSE, "ApplySucceeded", "ok", NOW)

    doc = status.to_dict()
    assert doc == {
        "sourceRevision": "abc",
        "appliedTargetCount": 2,
        "conditions": [
            {
                "type": "Degraded",
                "status": "False",
                "reason": "ApplySucceeded",
                "message": "ok",
                "lastTransitionTime": "2024-05-01T12:30:15Z",
            }
        ],
    }
    assert ConfigSyncStatus.from_dict(doc) == status


def test_is_true_missing() -> None:
    """Test a missing condition is not true."""
    assert not Conditions().is_true(DEGRADED)
    assert Conditions().get(DEGRADED) is None
