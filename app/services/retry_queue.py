from __future__ import annotations

import logging
import random
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Set

from app.services.wallet_errors import PassValidationError, PermanentFailure


logger = logging.getLogger(__name__)

JITTER_RATIO = 0.25

# (target_record_id, stamps_delta) -> None, raises on failure
DispatchFn = Callable[[str, int], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def compute_backoff_delay(
    attempts: int,
    *,
    base_seconds: float,
    cap_seconds: float,
    rng: Callable[[], float] = random.random,
) -> float:
    """min(base * 2^attempts, cap), spread by +/-25% jitter."""

    raw = min(base_seconds * (2 ** attempts), cap_seconds)
    jitter = raw * JITTER_RATIO * (rng() * 2 - 1)
    return max(0.0, raw + jitter)


@dataclass
class RetryQueueItem:
    id: str
    target_record_id: str
    stamps_delta: int
    max_attempts: int
    next_retry_at: datetime
    created_at: datetime
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None

    # In-progress marker: set while a sweep is dispatching this item.
    claimed_at: Optional[datetime] = None
    claim_token: Optional[str] = None

    def as_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "targetRecordId": self.target_record_id,
            "stampsDelta": self.stamps_delta,
            "attempts": self.attempts,
            "maxAttempts": self.max_attempts,
            "lastAttemptAt": self.last_attempt_at.isoformat() if self.last_attempt_at else None,
            "nextRetryAt": self.next_retry_at.isoformat(),
            "inFlight": self.claimed_at is not None,
            "lastError": self.last_error,
        }


@dataclass
class SweepSummary:
    processed: int = 0
    succeeded: int = 0
    rescheduled: int = 0
    permanently_failed: int = 0


@dataclass
class RetryQueueStats:
    total_items: int
    pending_items: int
    due_items: int
    in_flight_items: int
    permanently_failed: int
    oldest_item_age_seconds: Optional[float] = None
    recent_failures: List[Dict[str, object]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        return {
            "totalItems": self.total_items,
            "pendingItems": self.pending_items,
            "dueItems": self.due_items,
            "inFlightItems": self.in_flight_items,
            "failedItems": self.permanently_failed,
            "oldestItemAgeSeconds": self.oldest_item_age_seconds,
            "recentFailures": list(self.recent_failures),
        }


class _SweepTimer:
    """Fires ``tick`` every ``interval_seconds`` on a fresh thread until stopped."""

    def __init__(self, interval_seconds: float, tick: Callable[[], None]) -> None:
        self._interval = interval_seconds
        self._tick = tick
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name="wallet-retry-timer", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def _run(self) -> None:
        while not self._stop_event.wait(self._interval):
            # A hung dispatch only holds up its own sweep thread.
            threading.Thread(target=self._tick, name="wallet-retry-sweep", daemon=True).start()


class WalletRetryQueue:
    """In-memory, at-least-once retry of wallet pass syncs.

    Items are lost on process restart.
    """

    def __init__(
        self,
        dispatch: DispatchFn,
        *,
        max_attempts: int = 3,
        base_delay_seconds: float = 1.0,
        max_delay_seconds: float = 30.0,
        sweep_interval_seconds: float = 30.0,
        claim_ttl_seconds: float = 300.0,
        autostart: bool = True,
        clock: Callable[[], datetime] = _utcnow,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self._dispatch = dispatch
        self.max_attempts = max_attempts
        self.base_delay_seconds = base_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self.claim_ttl_seconds = claim_ttl_seconds
        self._autostart = autostart
        self._clock = clock
        self._rng = rng

        self._lock = threading.RLock()
        self._items: Dict[str, RetryQueueItem] = {}
        self._timer: _SweepTimer | None = None
        self._permanently_failed = 0
        self._recent_failures: List[PermanentFailure] = []

    # ------------------------------------------------------------
    # scheduling
    # ------------------------------------------------------------

    def backoff(self, attempts: int) -> float:
        return compute_backoff_delay(
            attempts,
            base_seconds=self.base_delay_seconds,
            cap_seconds=self.max_delay_seconds,
            rng=self._rng,
        )

    def enqueue(self, record_id, delta: int) -> str:
        now = self._clock()
        item = RetryQueueItem(
            id=f"{record_id}-{uuid.uuid4().hex[:8]}",
            target_record_id=str(record_id),
            stamps_delta=int(delta),
            max_attempts=self.max_attempts,
            created_at=now,
            last_attempt_at=now,
            next_retry_at=now + timedelta(seconds=self.backoff(0)),
        )
        with self._lock:
            self._items[item.id] = item
            if self._autostart:
                self.start()

        logger.info(
            "wallet sync added to retry queue",
            extra={
                "queue_item_id": item.id,
                "target_record_id": item.target_record_id,
                "stamps_delta": item.stamps_delta,
                "next_retry_at": item.next_retry_at.isoformat(),
            },
        )
        return item.id

    def start(self) -> None:
        with self._lock:
            if self._timer is not None and not self._timer.stopped:
                return
            self._timer = _SweepTimer(self.sweep_interval_seconds, self._on_timer_tick)
            self._timer.start()
        logger.info("wallet retry processor started", extra={"interval_seconds": self.sweep_interval_seconds})

    def shutdown(self) -> None:
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is not None:
            timer.stop()
            logger.info("wallet retry processor stopped")

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self._timer is not None and not self._timer.stopped

    def _on_timer_tick(self) -> None:
        try:
            self.sweep()
        except Exception:
            logger.exception("wallet retry sweep failed")

        self._stop_if_idle()

    def _stop_if_idle(self) -> None:
        with self._lock:
            if self._items or self._timer is None:
                return
            timer, self._timer = self._timer, None
            timer.stop()
        logger.info("wallet retry processor stopped", extra={"reason": "queue empty"})

    # ------------------------------------------------------------
    # processing
    # ------------------------------------------------------------

    def _claim_next_due(self, now: datetime, *, skip: Set[str] = frozenset()) -> Optional[tuple[RetryQueueItem, str]]:
        claim_expired_before = now - timedelta(seconds=self.claim_ttl_seconds)
        with self._lock:
            due = [
                item
                for item in self._items.values()
                if item.id not in skip
                and item.next_retry_at <= now
                and (item.claimed_at is None or item.claimed_at < claim_expired_before)
            ]
            if not due:
                return None
            item = min(due, key=lambda i: i.next_retry_at)
            token = uuid.uuid4().hex
            item.claimed_at = now
            item.claim_token = token
            return item, token

    def _owns_claim(self, item: RetryQueueItem, token: str) -> bool:
        return self._items.get(item.id) is item and item.claim_token == token

    def _record_permanent_failure(self, item: RetryQueueItem, *, reason: str, now: datetime) -> PermanentFailure:
        failure = PermanentFailure(
            queue_item_id=item.id,
            target_record_id=item.target_record_id,
            attempts=item.attempts,
            last_error=item.last_error,
            failed_at=now,
            reason=reason,
        )
        self._permanently_failed += 1
        self._recent_failures = (self._recent_failures + [failure])[-20:]
        logger.error("wallet sync failed permanently", extra=failure.as_log_extra())
        return failure

    def sweep(self, now: datetime | None = None) -> SweepSummary:
        now = now or self._clock()
        summary = SweepSummary()

        # One claim at a time: a hung dispatch only holds its own item.
        seen: Set[str] = set()
        while True:
            claimed = self._claim_next_due(now, skip=seen)
            if claimed is None:
                break
            item, token = claimed
            seen.add(item.id)
            summary.processed += 1
            attempted_at = self._clock()
            try:
                self._dispatch(item.target_record_id, item.stamps_delta)
            except Exception as exc:
                validation = isinstance(exc, PassValidationError)
                with self._lock:
                    if not self._owns_claim(item, token):
                        continue
                    item.last_attempt_at = attempted_at
                    item.last_error = str(exc)
                    item.claimed_at = None
                    item.claim_token = None

                    if validation or item.attempts + 1 >= item.max_attempts:
                        item.attempts += 1
                        del self._items[item.id]
                        self._record_permanent_failure(
                            item,
                            reason="validation" if validation else "max_attempts",
                            now=attempted_at,
                        )
                        summary.permanently_failed += 1
                        continue

                    item.attempts += 1
                    item.next_retry_at = attempted_at + timedelta(seconds=self.backoff(item.attempts))
                    summary.rescheduled += 1

                logger.warning(
                    "wallet retry failed, will retry",
                    extra={
                        "queue_item_id": item.id,
                        "target_record_id": item.target_record_id,
                        "attempts": item.attempts,
                        "max_attempts": item.max_attempts,
                        "next_retry_at": item.next_retry_at.isoformat(),
                        "error": str(exc),
                    },
                )
                continue

            with self._lock:
                if self._owns_claim(item, token):
                    del self._items[item.id]
            summary.succeeded += 1
            logger.info(
                "wallet retry successful",
                extra={
                    "queue_item_id": item.id,
                    "target_record_id": item.target_record_id,
                    "attempts": item.attempts + 1,
                },
            )

        if summary.processed:
            logger.info(
                "wallet retry sweep finished",
                extra={
                    "processed": summary.processed,
                    "succeeded": summary.succeeded,
                    "rescheduled": summary.rescheduled,
                    "permanently_failed": summary.permanently_failed,
                },
            )
        return summary

    def manual_retry(self, item_id: str) -> bool:
        with self._lock:
            item = self._items.get(item_id)
            if item is None or item.claimed_at is not None:
                logger.warning("manual retry skipped", extra={"queue_item_id": item_id, "found": item is not None})
                return False
            token = uuid.uuid4().hex
            item.claimed_at = self._clock()
            item.claim_token = token

        try:
            self._dispatch(item.target_record_id, item.stamps_delta)
        except Exception as exc:
            with self._lock:
                if self._owns_claim(item, token):
                    item.claimed_at = None
                    item.claim_token = None
                    item.last_error = str(exc)
            logger.error("manual wallet retry failed", extra={"queue_item_id": item_id, "error": str(exc)})
            return False

        with self._lock:
            if self._owns_claim(item, token):
                del self._items[item.id]
        logger.info("manual wallet retry successful", extra={"queue_item_id": item_id})
        return True

    # ------------------------------------------------------------
    # admin / introspection
    # ------------------------------------------------------------

    def clear(self) -> int:
        with self._lock:
            removed = len(self._items)
            self._items.clear()
        self.shutdown()
        logger.info("wallet retry queue cleared", extra={"removed": removed})
        return removed

    def get(self, item_id: str) -> RetryQueueItem | None:
        with self._lock:
            return self._items.get(item_id)

    def items(self) -> List[RetryQueueItem]:
        with self._lock:
            return list(self._items.values())

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def stats(self, now: datetime | None = None) -> RetryQueueStats:
        now = now or self._clock()
        with self._lock:
            items = list(self._items.values())
            in_flight = [i for i in items if i.claimed_at is not None]
            idle = [i for i in items if i.claimed_at is None]
            oldest = min((i.created_at for i in items), default=None)
            return RetryQueueStats(
                total_items=len(items),
                pending_items=sum(1 for i in idle if i.next_retry_at > now),
                due_items=sum(1 for i in idle if i.next_retry_at <= now),
                in_flight_items=len(in_flight),
                permanently_failed=self._permanently_failed,
                oldest_item_age_seconds=(now - oldest).total_seconds() if oldest else None,
                recent_failures=[f.as_log_extra() for f in self._recent_failures],
            )
