"""
APScheduler job runner for periodic polling, state flushes and health probes.
"""

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from inbox_triage.classifiers.base import BaseClassifier
from inbox_triage.core.context import AppContext
from inbox_triage.core.logging import get_logger
from inbox_triage.core.models import Dependency
from inbox_triage.processors.poll import PollOrchestrator

log = get_logger(__name__)


class TriageScheduler:
    """Owns one BackgroundScheduler and the jobs the service needs."""

    def __init__(
        self,
        ctx: AppContext,
        orchestrator: PollOrchestrator,
        classifier: BaseClassifier | None = None,
    ):
        self.ctx = ctx
        self.orchestrator = orchestrator
        self.classifier = classifier
        self._scheduler: BackgroundScheduler | None = None

    @property
    def running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def poll_job(self):
        """Scheduled job: run one poll cycle (no-op if one is in flight)."""
        try:
            stats = self.orchestrator.poll_now()
            if stats is not None:
                log.info("scheduled_job_complete", job="poll", **stats)
        except Exception as e:
            log.error("scheduled_job_error", job="poll", error=str(e))

    def flush_job(self):
        """Scheduled job: coalesce ledger writes made since the last flush."""
        try:
            self.ctx.ledger.flush_if_dirty()
        except Exception as e:
            log.error("scheduled_job_error", job="flush", error=str(e))

    def health_probe_job(self):
        """Scheduled job: ping the classifier endpoint and record the result."""
        if self.classifier is None:
            return
        try:
            ok = self.classifier.health_check()
        except Exception as e:
            ok = False
            log.error("scheduled_job_error", job="health_probe", error=str(e))
        self.ctx.ledger.record_interaction(
            Dependency.LLM,
            ok=ok,
            error=None if ok else "health check failed",
        )

    def start(self, start_polling: bool = True) -> BackgroundScheduler:
        """
        Start the background scheduler.

        Args:
            start_polling: Add the poll job (flush and probe jobs always run)

        Returns:
            The scheduler instance
        """
        if self._scheduler is not None:
            log.warning("scheduler_already_running")
            return self._scheduler

        settings = self.ctx.settings
        self._scheduler = BackgroundScheduler()

        if start_polling:
            self._scheduler.add_job(
                self.poll_job,
                trigger=IntervalTrigger(seconds=settings.poll_interval_seconds),
                id="poll",
                name="Poll mailbox and drain queue",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )

        self._scheduler.add_job(
            self.flush_job,
            trigger=IntervalTrigger(seconds=settings.persist_debounce_seconds),
            id="flush",
            name="Flush ledger state",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )

        if self.classifier is not None:
            self._scheduler.add_job(
                self.health_probe_job,
                trigger=IntervalTrigger(seconds=settings.health_probe_interval_seconds),
                id="health_probe",
                name="Probe classifier health",
                max_instances=1,
                coalesce=True,
                replace_existing=True,
            )

        self._scheduler.start()
        log.info(
            "scheduler_started",
            polling=start_polling,
            interval_seconds=settings.poll_interval_seconds,
        )
        return self._scheduler

    def stop(self):
        """Stop the background scheduler."""
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None
            log.info("scheduler_stopped")

    def run_now(self):
        """Manually trigger the poll job."""
        self.poll_job()
