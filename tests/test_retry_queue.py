import logging
import random
import threading
from datetime import datetime, timedelta

import pytest

from app.services.retry_queue import WalletRetryQueue, compute_backoff_delay
from app.services.wallet_errors import PassValidationError, TransientProviderError


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)


class ScriptedDispatch:
    """Raises the queued errors in order, then succeeds."""

    def __init__(self, *errors):
        self.errors = list(errors)
        self.calls = []

    def __call__(self, record_id, delta):
        self.calls.append((record_id, delta))
        if self.errors:
            raise self.errors.pop(0)


def _queue(dispatch, clock, **kwargs):
    kwargs.setdefault("max_attempts", 3)
    return WalletRetryQueue(
        dispatch,
        base_delay_seconds=1.0,
        max_delay_seconds=30.0,
        autostart=False,
        clock=clock,
        rng=lambda: 0.5,
        **kwargs,
    )


# ============================================================
# backoff
# ============================================================

def test_backoff_for_fourth_attempt_stays_in_jitter_range():
    rng = random.Random(7)
    for _ in range(200):
        delay = compute_backoff_delay(4, base_seconds=1.0, cap_seconds=30.0, rng=rng.random)
        assert 12.0 <= delay <= 20.0


def test_backoff_is_capped():
    assert compute_backoff_delay(10, base_seconds=1.0, cap_seconds=30.0, rng=lambda: 0.5) == 30.0
    assert compute_backoff_delay(10, base_seconds=1.0, cap_seconds=30.0, rng=lambda: 1.0) == 37.5
    assert compute_backoff_delay(10, base_seconds=1.0, cap_seconds=30.0, rng=lambda: 0.0) == 22.5


@pytest.mark.parametrize("attempts", [0, 1, 2, 3, 5, 8])
def test_backoff_bounds(attempts):
    raw = min(1.0 * 2 ** attempts, 30.0)
    rng = random.Random(attempts)
    for _ in range(50):
        delay = compute_backoff_delay(attempts, base_seconds=1.0, cap_seconds=30.0, rng=rng.random)
        assert raw * 0.75 <= delay <= raw * 1.25


# ============================================================
# sweep
# ============================================================

def test_enqueue_schedules_first_retry_after_base_delay():
    clock = FakeClock()
    queue = _queue(ScriptedDispatch(), clock)

    item_id = queue.enqueue("record-1", 2)
    item = queue.get(item_id)

    assert item_id.startswith("record-1-")
    assert item.attempts == 0
    assert item.stamps_delta == 2
    assert item.next_retry_at == clock.now + timedelta(seconds=1)
    assert not queue.is_running


def test_items_not_due_are_left_alone():
    clock = FakeClock()
    dispatch = ScriptedDispatch()
    queue = _queue(dispatch, clock)
    queue.enqueue("record-1", 1)

    summary = queue.sweep()

    assert summary.processed == 0
    assert dispatch.calls == []
    assert len(queue) == 1


def test_successful_retry_removes_item():
    clock = FakeClock()
    dispatch = ScriptedDispatch()
    queue = _queue(dispatch, clock)
    queue.enqueue("record-1", 3)

    clock.advance(2)
    summary = queue.sweep()

    assert summary.succeeded == 1
    assert dispatch.calls == [("record-1", 3)]
    assert len(queue) == 0


def test_three_transient_failures_remove_item_permanently(caplog):
    clock = FakeClock()
    failure = TransientProviderError("provider unavailable")
    dispatch = ScriptedDispatch(failure, failure, failure, failure)
    queue = _queue(dispatch, clock)
    item_id = queue.enqueue("record-1", 1)

    with caplog.at_level(logging.ERROR, logger="app.services.retry_queue"):
        for _ in range(3):
            clock.advance(60)
            queue.sweep()

    assert len(dispatch.calls) == 3
    assert queue.get(item_id) is None
    assert any(r.getMessage() == "wallet sync failed permanently" for r in caplog.records)

    stats = queue.stats()
    assert stats.total_items == 0
    assert stats.permanently_failed == 1
    assert stats.recent_failures[0]["queue_item_id"] == item_id
    assert stats.recent_failures[0]["reason"] == "max_attempts"
    assert set(stats.recent_failures[0]) == {
        "queue_item_id", "target_record_id", "attempts", "last_error", "reason", "failed_at",
    }

    clock.advance(600)
    queue.sweep()
    assert len(dispatch.calls) == 3


def test_failed_attempt_is_rescheduled_with_backoff():
    clock = FakeClock()
    dispatch = ScriptedDispatch(TransientProviderError("down"))
    queue = _queue(dispatch, clock)
    item_id = queue.enqueue("record-1", 1)

    clock.advance(5)
    summary = queue.sweep()
    item = queue.get(item_id)

    assert summary.rescheduled == 1
    assert item.attempts == 1
    assert item.last_error == "down"
    assert item.last_attempt_at == clock.now
    assert item.next_retry_at == clock.now + timedelta(seconds=2)
    assert item.claimed_at is None


def test_validation_error_drops_item_without_further_attempts():
    clock = FakeClock()
    dispatch = ScriptedDispatch(PassValidationError("bad payload"))
    queue = _queue(dispatch, clock, max_attempts=5)
    item_id = queue.enqueue("record-1", 1)

    clock.advance(5)
    summary = queue.sweep()

    assert summary.permanently_failed == 1
    assert queue.get(item_id) is None
    assert queue.stats().recent_failures[0]["reason"] == "validation"


def test_unexpected_error_is_retried():
    clock = FakeClock()
    dispatch = ScriptedDispatch(RuntimeError("boom"))
    queue = _queue(dispatch, clock)
    item_id = queue.enqueue("record-1", 1)

    clock.advance(5)
    queue.sweep()

    assert queue.get(item_id).attempts == 1


def test_claimed_item_is_not_dispatched_twice():
    clock = FakeClock()
    queue = _queue(ScriptedDispatch(), clock)
    item_id = queue.enqueue("record-1", 1)
    clock.advance(5)

    first = queue._claim_next_due(clock.now)
    second = queue._claim_next_due(clock.now)

    assert first[0].id == item_id
    assert second is None
    assert queue.stats().in_flight_items == 1


def test_abandoned_claim_can_be_reclaimed_after_ttl():
    clock = FakeClock()
    queue = _queue(ScriptedDispatch(), clock, claim_ttl_seconds=60)
    queue.enqueue("record-1", 1)
    clock.advance(5)
    queue._claim_next_due(clock.now)

    clock.advance(61)
    summary = queue.sweep()

    assert summary.succeeded == 1
    assert len(queue) == 0


def test_hung_dispatch_does_not_hold_back_other_due_items():
    clock = FakeClock()
    started = threading.Event()
    release = threading.Event()
    calls = []

    def dispatch(record_id, delta):
        calls.append(record_id)
        if record_id == "record-a":
            started.set()
            release.wait(timeout=10)

    queue = _queue(dispatch, clock)
    queue.enqueue("record-a", 1)
    clock.advance(1)
    queue.enqueue("record-b", 1)
    clock.advance(10)

    hung_sweep = threading.Thread(target=queue.sweep, daemon=True)
    hung_sweep.start()
    try:
        assert started.wait(timeout=10)

        summary = queue.sweep()

        assert summary.processed == 1
        assert summary.succeeded == 1
        assert calls == ["record-a", "record-b"]
        stats = queue.stats()
        assert stats.total_items == 1
        assert stats.in_flight_items == 1
    finally:
        release.set()
        hung_sweep.join(timeout=10)

    assert len(queue) == 0


def test_item_rescheduled_in_a_sweep_is_not_retried_in_the_same_sweep():
    clock = FakeClock()
    failure = TransientProviderError("down")
    dispatch = ScriptedDispatch(failure, failure)
    queue = _queue(dispatch, clock, max_attempts=5)
    queue.enqueue("record-1", 1)

    # far enough ahead that the rescheduled time is still in the past
    summary = queue.sweep(clock.now + timedelta(hours=1))

    assert summary.processed == 1
    assert len(dispatch.calls) == 1


def test_timer_stops_once_queue_is_drained():
    clock = FakeClock()
    queue = WalletRetryQueue(ScriptedDispatch(), sweep_interval_seconds=3600, clock=clock, rng=lambda: 0.5)
    try:
        queue.enqueue("record-1", 1)
        assert queue.is_running

        clock.advance(5)
        queue._on_timer_tick()

        assert len(queue) == 0
        assert not queue.is_running
    finally:
        queue.shutdown()


def test_timer_keeps_running_while_items_remain():
    clock = FakeClock()
    queue = WalletRetryQueue(
        ScriptedDispatch(TransientProviderError("down")),
        sweep_interval_seconds=3600,
        clock=clock,
        rng=lambda: 0.5,
    )
    try:
        queue.enqueue("record-1", 1)
        clock.advance(5)
        queue._on_timer_tick()

        assert len(queue) == 1
        assert queue.is_running
    finally:
        queue.shutdown()


def test_cleared_item_result_is_discarded():
    clock = FakeClock()
    queue_ref = {}

    def dispatch(record_id, delta):
        queue_ref["queue"].clear()
        raise TransientProviderError("down")

    queue = _queue(dispatch, clock)
    queue_ref["queue"] = queue
    queue.enqueue("record-1", 1)
    clock.advance(5)

    summary = queue.sweep()

    assert summary.rescheduled == 0
    assert len(queue) == 0


# ============================================================
# manual retry / admin
# ============================================================

def test_manual_retry_success_removes_item():
    clock = FakeClock()
    dispatch = ScriptedDispatch()
    queue = _queue(dispatch, clock)
    item_id = queue.enqueue("record-1", 1)

    assert queue.manual_retry(item_id) is True
    assert len(queue) == 0
    assert dispatch.calls == [("record-1", 1)]


def test_manual_retry_failure_keeps_schedule():
    clock = FakeClock()
    dispatch = ScriptedDispatch(TransientProviderError("down"))
    queue = _queue(dispatch, clock)
    item_id = queue.enqueue("record-1", 1)
    before = queue.get(item_id).next_retry_at

    assert queue.manual_retry(item_id) is False

    item = queue.get(item_id)
    assert item.next_retry_at == before
    assert item.attempts == 0
    assert item.claimed_at is None


def test_manual_retry_unknown_item():
    queue = _queue(ScriptedDispatch(), FakeClock())
    assert queue.manual_retry("missing") is False


def test_clear_returns_removed_count():
    queue = _queue(ScriptedDispatch(), FakeClock())
    queue.enqueue("record-1", 1)
    queue.enqueue("record-2", 1)

    assert queue.clear() == 2
    assert queue.items() == []


def test_stats_counts_due_and_pending():
    clock = FakeClock()
    queue = _queue(ScriptedDispatch(), clock)
    queue.enqueue("record-1", 1)
    clock.advance(10)
    queue.enqueue("record-2", 1)

    stats = queue.stats()

    assert stats.total_items == 2
    assert stats.due_items == 1
    assert stats.pending_items == 1
    assert stats.oldest_item_age_seconds == 10
    assert stats.as_dict()["totalItems"] == 2


def test_enqueue_starts_timer_and_shutdown_stops_it():
    queue = WalletRetryQueue(ScriptedDispatch(), sweep_interval_seconds=3600)
    try:
        queue.enqueue("record-1", 1)
        assert queue.is_running
    finally:
        queue.shutdown()
    assert not queue.is_running
