from unittest.mock import Mock

import pytest

from app.services.usage_tracker import (
    ANONYMOUS_SESSION,
    InMemoryUsageRepository,
    JsonUsageRepository,
    UsageRecord,
    UsageTracker,
)


def test_record_increments_every_counter():
    tracker = UsageTracker(InMemoryUsageRepository())

    tracker.record("S", tokens=120, success=True)
    tracker.record("S", tokens=30, success=False, fallback=True)

    assert tracker.get("S") == UsageRecord(calls=2, tokens=150, failures=1, fallbacks=1)


def test_empty_session_is_stored_as_anonymous():
    tracker = UsageTracker(InMemoryUsageRepository())

    tracker.record("", tokens=5)

    assert tracker.all() == {ANONYMOUS_SESSION: {"calls": 1, "tokens": 5, "failures": 0, "fallbacks": 0}}
    assert tracker.get("unknown") == UsageRecord()


def test_soft_call_limit_of_one_trips_after_one_call():
    tracker = UsageTracker(InMemoryUsageRepository(), soft_call_limit=1)

    assert tracker.is_over_limit("S") is False
    tracker.record("S")
    assert tracker.is_over_limit("S") is True
    assert tracker.is_over_limit("other") is False


def test_token_limit_disabled_when_zero():
    tracker = UsageTracker(InMemoryUsageRepository(), soft_call_limit=100, soft_token_limit=0)
    tracker.record("S", tokens=10_000_000)
    assert tracker.is_over_limit("S") is False

    capped = UsageTracker(InMemoryUsageRepository(), soft_call_limit=100, soft_token_limit=50)
    capped.record("S", tokens=50)
    assert capped.is_over_limit("S") is True


def test_json_repository_is_the_single_source_of_truth(tmp_path):
    path = tmp_path / "usage.json"
    first = UsageTracker(JsonUsageRepository(path))
    second = UsageTracker(JsonUsageRepository(path))

    first.record("S", tokens=10)
    second.record("S", tokens=5, success=False)

    assert first.get("S") == UsageRecord(calls=2, tokens=15, failures=1, fallbacks=0)


def test_repository_rejects_unknown_counters():
    repo = InMemoryUsageRepository()
    with pytest.raises(ValueError):
        repo.increment("S", retries=1)


def test_write_errors_are_swallowed():
    repo = Mock()
    repo.increment.side_effect = OSError("disk full")
    tracker = UsageTracker(repo)

    tracker.record("S", tokens=1)  # ne lève pas

    repo.increment.assert_called_once()


def test_corrupt_usage_file_does_not_break_recording(tmp_path):
    path = tmp_path / "usage.json"
    path.write_text("{not json")
    tracker = UsageTracker(JsonUsageRepository(path))

    tracker.record("S", tokens=12)  # ne lève pas

    assert tracker.get("S") == UsageRecord()
    assert tracker.is_over_limit("S") is False
