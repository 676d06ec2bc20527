"""
Single-flight poll orchestrator.

One cycle: list new items, skip ids the ledger already knows, fetch and admit
the rest, wait for the queue to drain, persist. A cycle requested while
another one is running is a no-op.
"""

import threading
from datetime import datetime

from inbox_triage.core.context import AppContext
from inbox_triage.core.logging import get_logger
from inbox_triage.core.models import Dependency, Email, OutcomeStatus
from inbox_triage.processors.base import BaseProcessor, ItemSource

log = get_logger(__name__)


class PollOrchestrator(BaseProcessor):
    """Runs ingestion-and-drain cycles, at most one at a time."""

    def __init__(
        self,
        ctx: AppContext,
        source: ItemSource,
        drain_timeout: float | None = None,
    ):
        self.ctx = ctx
        self.source = source
        self.drain_timeout = drain_timeout

        self._lock = threading.Lock()
        self.cycles = 0
        self.last_started: datetime | None = None
        self.last_completed: datetime | None = None
        self.last_result: dict | None = None

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    def process(self) -> dict | None:
        """Run one poll cycle."""
        return self.poll_now()

    def poll_now(self) -> dict | None:
        """
        Run a cycle unless one is already in flight.

        Returns:
            Cycle statistics, or None if the request was suppressed
        """
        if not self._lock.acquire(blocking=False):
            log.debug("poll_skipped_in_flight")
            return None

        try:
            self.last_started = self.ctx.ledger.clock()
            stats = self._run_cycle()
            self.cycles += 1
            self.last_completed = self.ctx.ledger.clock()
            self.last_result = stats
            return stats
        finally:
            self._lock.release()

    def state(self) -> dict:
        """Orchestrator state for the status view."""
        return {
            "in_progress": self.in_progress,
            "cycles": self.cycles,
            "last_started": self.last_started.isoformat() if self.last_started else None,
            "last_completed": self.last_completed.isoformat() if self.last_completed else None,
            "last_result": self.last_result,
        }

    def _run_cycle(self) -> dict:
        settings = self.ctx.settings
        stats = {
            "listed": 0,
            "new": 0,
            "admitted": 0,
            "dropped": 0,
            "processed": 0,
            "errors": 0,
            "skipped": 0,
        }
        log.info("poll_cycle_starting", query=settings.poll_query, max_results=settings.poll_max_results)

        try:
            self._ingest(stats)
        finally:
            # Outcomes written by workers reach disk even if a step above raised.
            self.ctx.stats.refresh()
            self.ctx.ledger.persist()

        log.info("poll_cycle_complete", **stats)
        return stats

    def _ingest(self, stats: dict) -> None:
        settings = self.ctx.settings
        ledger = self.ctx.ledger
        queue = self.ctx.queue

        try:
            item_ids = self.source.list_new_items(settings.poll_max_results, settings.poll_query)
        except Exception as e:
            ledger.record_interaction(Dependency.MAILBOX, ok=False, error=str(e))
            log.error("poll_list_failed", error=str(e))
            return

        stats["listed"] = len(item_ids)

        new_ids = []
        seen = set()
        for item_id in item_ids:
            if item_id in seen or ledger.is_processed(item_id):
                continue
            seen.add(item_id)
            new_ids.append(item_id)
        stats["new"] = len(new_ids)

        emails: list[Email] = []
        fetch_failed = False
        for item_id in new_ids:
            try:
                emails.append(self.source.fetch_full(item_id))
            except Exception as e:
                # Not admitted and not recorded, so the next cycle retries it.
                fetch_failed = True
                stats["skipped"] += 1
                log.error("poll_fetch_failed", item_id=item_id, error=str(e))

        if fetch_failed and not emails and new_ids:
            ledger.record_interaction(Dependency.MAILBOX, ok=False, error="all fetches failed")
        else:
            ledger.record_interaction(Dependency.MAILBOX, ok=True)

        for email in emails:
            evicted = queue.put(email)
            stats["admitted"] += 1
            stats["dropped"] += len(evicted)

        if emails:
            drained = queue.join(timeout=self.drain_timeout)
            if not drained:
                log.warning("poll_drain_timeout", depth=queue.depth, in_flight=queue.in_flight)

        for email in emails:
            record = ledger.get(email.id)
            if record is None:
                continue
            if record.status == OutcomeStatus.OK:
                stats["processed"] += 1
            elif record.status == OutcomeStatus.ERROR:
                stats["errors"] += 1

