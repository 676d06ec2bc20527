"""
Explicit application context shared by the orchestrator, workers and readers.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from inbox_triage.config import Settings
from inbox_triage.core.exceptions import DuplicateOutcome
from inbox_triage.core.ledger import OutcomeLedger, utc_now
from inbox_triage.core.logging import get_logger
from inbox_triage.core.models import Dependency, OutcomeStatus, QueueEntry
from inbox_triage.core.queue import AdmissionQueue
from inbox_triage.core.stats import StatsAggregator

log = get_logger(__name__)


@dataclass
class AppContext:
    """Owns the queue, the ledger and the stats aggregator for one process."""

    settings: Settings
    ledger: OutcomeLedger
    queue: AdmissionQueue
    stats: StatsAggregator

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ) -> "AppContext":
        """Build a context with queue drops wired into the ledger."""
        ledger = OutcomeLedger(
            settings.state_path,
            max_processed=settings.max_processed_ids,
            max_recent_decisions=settings.max_recent_decisions,
            max_recent_sends=settings.max_recent_sends,
            max_token_events=settings.max_token_events,
            clock=clock,
        )
        queue = AdmissionQueue(
            capacity=settings.llm_queue_capacity,
            concurrency=settings.llm_concurrency,
            on_drop=lambda entry: record_drop(ledger, entry),
        )
        stats = StatsAggregator(
            ledger,
            queue,
            health_windows={dep: settings.health_window(dep) for dep in Dependency},
            tps_window=settings.tps_window,
            clock=clock,
        )
        return cls(settings=settings, ledger=ledger, queue=queue, stats=stats)


def record_drop(ledger: OutcomeLedger, entry: QueueEntry) -> None:
    """Mark an evicted entry as dropped and count it."""
    try:
        ledger.record(entry.item_id, OutcomeStatus.DROPPED)
    except DuplicateOutcome as e:
        log.warning("duplicate_outcome_ignored", item_id=entry.item_id, error=str(e))
        return
    ledger.note_drop(entry.item_id)
