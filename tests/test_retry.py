"""Tests for RetryTracker."""

import pytest
from hypothesis import given
from hypothesis import strategies as st

from eventrelay.core.retry import RetryDecision, RetryTracker


def test_success_clears_record():
    tracker = RetryTracker(retry_limit=3)
    tracker.on_outcome("1,2", False)
    assert tracker.attempts("1,2") == 1
    assert tracker.on_outcome("1,2", True) is RetryDecision.CLEARED
    assert "1,2" not in tracker
    assert len(tracker) == 0


def test_success_without_record_is_a_no_op():
    tracker = RetryTracker()
    assert tracker.on_outcome("1", True) is RetryDecision.CLEARED
    assert tracker.snapshot() == {}


def test_failures_count_up_to_limit():
    tracker = RetryTracker(retry_limit=3)
    assert tracker.on_outcome("1,2,3", False) is RetryDecision.RETRY
    assert tracker.on_outcome("1,2,3", False) is RetryDecision.RETRY
    assert tracker.attempts("1,2,3") == 2
    assert tracker.on_outcome("1,2,3", False) is RetryDecision.PERMANENTLY_FAILED
    assert "1,2,3" not in tracker
    assert tracker.permanent_failures == 1


def test_count_restarts_after_permanent_failure():
    tracker = RetryTracker(retry_limit=2)
    tracker.on_outcome("5", False)
    tracker.on_outcome("5", False)
    assert tracker.on_outcome("5", False) is RetryDecision.RETRY
    assert tracker.attempts("5") == 1


def test_fingerprints_are_independent():
    tracker = RetryTracker(retry_limit=3)
    tracker.on_outcome("1,2", False)
    tracker.on_outcome("1,2,3", False)
    tracker.on_outcome("1,2,3", False)
    assert tracker.snapshot() == {"1,2": 1, "1,2,3": 2}


def test_snapshot_is_a_copy():
    tracker = RetryTracker()
    tracker.on_outcome("1", False)
    snap = tracker.snapshot()
    snap["1"] = 99
    assert tracker.attempts("1") == 1


def test_limit_of_one_drops_on_first_failure():
    tracker = RetryTracker(retry_limit=1)
    assert tracker.on_outcome("1", False) is RetryDecision.PERMANENTLY_FAILED
    assert len(tracker) == 0


@pytest.mark.parametrize("limit", [0, -1])
def test_invalid_limit(limit):
    with pytest.raises(ValueError, match="retry_limit"):
        RetryTracker(retry_limit=limit)


@given(
    limit=st.integers(min_value=1, max_value=5),
    outcomes=st.lists(
        st.tuples(st.sampled_from(["1", "1,2", "3,4,5"]), st.booleans()), max_size=40
    ),
)
def test_counts_stay_below_limit(limit, outcomes):
    tracker = RetryTracker(retry_limit=limit)
    for fingerprint, success in outcomes:
        tracker.on_outcome(fingerprint, success)
        assert all(1 <= count < limit for count in tracker.snapshot().values())
