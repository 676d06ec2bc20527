"""
Bounded admission queue with a drop-oldest overload policy.

Entries move through two stages:

    pending (FIFO deque)  ->  assigned to a worker slot (in flight)

An entry is assigned the moment a worker slot is free, so the order in which
entries reach workers depends only on admission order, never on thread
scheduling. Capacity bounds everything admitted but not yet resolved
(pending + in flight). When a new admission finds the queue at capacity, the
oldest *pending* entry is evicted; in-flight entries are never evicted.

Capacity must exceed concurrency. With every slot busy there is then always
at least one pending entry to evict once the queue is full, so occupancy never
exceeds capacity and N admissions without progress drop exactly N - capacity.
"""

import threading
import time
from collections import deque
from typing import Callable

from inbox_triage.core.logging import get_logger
from inbox_triage.core.models import Email, QueueEntry

log = get_logger(__name__)


class AdmissionQueue:
    """Condition-guarded FIFO feeding a fixed number of worker slots."""

    def __init__(
        self,
        capacity: int,
        concurrency: int,
        on_drop: Callable[[QueueEntry], None] | None = None,
    ):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        if concurrency < 1:
            raise ValueError("concurrency must be >= 1")
        if capacity <= concurrency:
            raise ValueError(
                f"capacity ({capacity}) must be greater than concurrency ({concurrency})"
            )

        self.capacity = capacity
        self.concurrency = concurrency
        self._on_drop = on_drop

        self._cond = threading.Condition()
        self._pending: deque[QueueEntry] = deque()
        self._assigned: deque[QueueEntry] = deque()
        self._in_flight = 0
        self._closed = False

        self._admitted_total = 0
        self._dropped_total = 0
        self._last_dropped_id: str | None = None

    @property
    def depth(self) -> int:
        """Entries admitted but not yet assigned to a worker."""
        with self._cond:
            return len(self._pending)

    @property
    def in_flight(self) -> int:
        with self._cond:
            return self._in_flight

    @property
    def dropped_total(self) -> int:
        with self._cond:
            return self._dropped_total

    @property
    def last_dropped_id(self) -> str | None:
        with self._cond:
            return self._last_dropped_id

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def put(self, item: Email) -> list[QueueEntry]:
        """
        Admit an item, evicting the oldest pending entries if at capacity.

        Args:
            item: Email to admit

        Returns:
            The entries evicted to make room (empty when nothing was dropped)
        """
        entry = QueueEntry(item=item, admitted_at=time.monotonic())
        evicted: list[QueueEntry] = []

        with self._cond:
            if self._closed:
                raise RuntimeError("Admission queue is closed")

            while self._pending and self._occupancy() >= self.capacity:
                dropped = self._pending.popleft()
                self._dropped_total += 1
                self._last_dropped_id = dropped.item_id
                evicted.append(dropped)

            self._admitted_total += 1
            if self._in_flight < self.concurrency:
                self._assign(entry)
            else:
                self._pending.append(entry)

        for dropped in evicted:
            log.warning(
                "queue_item_dropped",
                item_id=dropped.item_id,
                waited_seconds=round(time.monotonic() - dropped.admitted_at, 3),
            )
            if self._on_drop:
                self._on_drop(dropped)

        return evicted

    def get(self, timeout: float | None = None) -> QueueEntry | None:
        """
        Take the next entry assigned to a worker slot.

        Blocks until an entry is available. Returns None once the queue is
        closed, or when the timeout expires.
        """
        with self._cond:
            ready = self._cond.wait_for(
                lambda: self._assigned or self._closed,
                timeout=timeout,
            )
            if not ready or not self._assigned:
                return None
            return self._assigned.popleft()

    def task_done(self) -> None:
        """Release a worker slot and hand the oldest pending entry to it."""
        with self._cond:
            if self._in_flight <= 0:
                raise ValueError("task_done() called more times than entries assigned")
            self._in_flight -= 1
            if self._pending and not self._closed:
                self._assign(self._pending.popleft())
            self._cond.notify_all()

    def join(self, timeout: float | None = None) -> bool:
        """
        Wait until nothing is pending or in flight.

        Returns:
            True if the queue drained, False on timeout
        """
        with self._cond:
            return self._cond.wait_for(
                lambda: not self._pending and self._in_flight == 0,
                timeout=timeout,
            )

    def close(self) -> list[QueueEntry]:
        """
        Stop admitting and wake idle workers so they can exit.

        Pending entries are returned unresolved; they were never committed to
        the ledger and will be fetched again on the next run.
        """
        with self._cond:
            self._closed = True
            abandoned = list(self._pending)
            self._pending.clear()
            self._cond.notify_all()
        if abandoned:
            log.info("queue_closed_with_pending", count=len(abandoned))
        return abandoned

    def snapshot(self) -> dict:
        """Counters for the status view."""
        with self._cond:
            return {
                "depth": len(self._pending),
                "in_flight": self._in_flight,
                "capacity": self.capacity,
                "concurrency": self.concurrency,
                "admitted_total": self._admitted_total,
                "dropped_total": self._dropped_total,
                "last_dropped_id": self._last_dropped_id,
            }

    def _occupancy(self) -> int:
        return len(self._pending) + self._in_flight

    def _assign(self, entry: QueueEntry) -> None:
        # Caller holds self._cond.
        self._in_flight += 1
        self._assigned.append(entry)
        self._cond.notify_all()
