"""
Application assembly: builds the context and collaborators and runs them.

Collaborators can be injected (tests, scripts); anything not passed is built
from settings.
"""

from datetime import datetime
from typing import Callable

from inbox_triage.classifiers import BaseClassifier, get_classifier
from inbox_triage.config import Settings
from inbox_triage.core.context import AppContext
from inbox_triage.core.ledger import utc_now
from inbox_triage.core.logging import get_logger
from inbox_triage.processors.base import ItemSource, Notifier
from inbox_triage.processors.poll import PollOrchestrator
from inbox_triage.processors.worker_pool import WorkerPool
from inbox_triage.scheduler import TriageScheduler
from inbox_triage.services.imap import IMAPItemSource
from inbox_triage.services.notifier import TwilioNotifier

log = get_logger(__name__)


class TriageApp:
    """One running triage pipeline."""

    def __init__(
        self,
        ctx: AppContext,
        source: ItemSource,
        classifier: BaseClassifier,
        notifier: Notifier | None = None,
    ):
        self.ctx = ctx
        self.source = source
        self.classifier = classifier
        self.notifier = notifier
        self.pool = WorkerPool(ctx, classifier, notifier)
        self.orchestrator = PollOrchestrator(ctx, source)
        self.scheduler = TriageScheduler(ctx, self.orchestrator, classifier)
        self._started = False
        self._stopped = False

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        source: ItemSource | None = None,
        classifier: BaseClassifier | None = None,
        notifier: Notifier | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "TriageApp":
        """
        Build an app from settings, filling in default collaborators.

        Args:
            settings: Settings (read from the environment if None)
            source: Item source (IMAP mailbox if None)
            classifier: Classifier (LLM endpoint if None)
            notifier: Notifier (Twilio SMS if None)
            clock: Time source for ledger timestamps and health checks
        """
        settings = settings or Settings()
        ctx = AppContext.from_settings(settings, clock=clock)

        if source is None:
            source = IMAPItemSource(
                host=settings.imap_host,
                user=settings.imap_user,
                password=settings.imap_password,
                folder=settings.imap_folder,
                link_base=settings.mail_link_base,
            )
        if classifier is None:
            classifier = get_classifier(settings)
        if notifier is None:
            notifier = TwilioNotifier(
                account_sid=settings.twilio_account_sid,
                auth_token=settings.twilio_auth_token,
                from_number=settings.twilio_from_number,
                to_number=settings.twilio_to_number,
            )

        return cls(ctx, source, classifier, notifier)

    def start(self, start_polling: bool | None = None, check_notifier: bool = True) -> None:
        """
        Load state and start the workers and (optionally) the scheduler.

        Args:
            start_polling: Run the scheduler's poll job; defaults to settings.scheduler_enabled
            check_notifier: Validate SMS credentials when not in dry-run mode

        Raises:
            RuntimeError: if the app was already stopped
        """
        if self._stopped:
            raise RuntimeError("TriageApp cannot be restarted after stop(); build a new one with create()")
        if self._started:
            log.warning("app_already_started")
            return

        settings = self.ctx.settings
        self.ctx.ledger.load()
        self.pool.start()

        if check_notifier and not settings.dry_run:
            checker = getattr(self.notifier, "check_credentials", None)
            if checker is not None and not checker():
                log.warning("notifier_credentials_invalid", dry_run=settings.dry_run)

        if start_polling is None:
            start_polling = settings.scheduler_enabled
        self.scheduler.start(start_polling=start_polling)

        self._started = True
        log.info(
            "app_started",
            capacity=settings.llm_queue_capacity,
            concurrency=settings.llm_concurrency,
            dry_run=settings.dry_run,
            state_path=settings.state_path,
        )

    def poll_now(self) -> dict | None:
        """Run one cycle now; None if a cycle is already running."""
        if not self.pool.running:
            raise RuntimeError("Worker pool is not running; call start() first")
        return self.orchestrator.poll_now()

    def get_status(self) -> dict:
        """Read-only status snapshot for the presentation layer."""
        return self.ctx.stats.snapshot(
            recent_limit=self.ctx.settings.status_recent_limit,
            poll=self.orchestrator.state(),
        )

    def stop(self) -> None:
        """
        Stop scheduling, let workers finish their current entry, persist.

        Stopping is terminal: the queue is closed and the scheduler shut down,
        so a stopped app refuses start(). Build a new one to run again.
        """
        if self._stopped:
            return
        self.scheduler.stop()
        self.pool.stop()
        self.ctx.stats.refresh()
        self.ctx.ledger.persist()

        for collaborator in (self.source, self.classifier, self.notifier):
            closer = getattr(collaborator, "disconnect", None) or getattr(collaborator, "close", None)
            if closer is not None:
                try:
                    closer()
                except Exception as e:
                    log.warning("collaborator_close_failed", error=str(e))

        self._started = False
        self._stopped = True
        log.info("app_stopped")
