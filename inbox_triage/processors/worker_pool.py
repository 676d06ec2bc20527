"""
Fixed-size worker pool draining the admission queue.

Each worker takes one entry at a time, calls the classifier synchronously,
writes the terminal outcome and, when the decision asks for it, notifies.
A failing classifier call becomes an `error` outcome; it is never retried
and never stops the worker.
"""

import threading

from inbox_triage.classifiers.base import BaseClassifier
from inbox_triage.core.context import AppContext
from inbox_triage.core.exceptions import DuplicateOutcome
from inbox_triage.core.logging import get_logger, bind_context, clear_context
from inbox_triage.core.models import (
    Decision,
    Dependency,
    Email,
    OutcomeStatus,
    QueueEntry,
    SendRecord,
)
from inbox_triage.processors.base import Notifier

log = get_logger(__name__)


class WorkerPool:
    """N threads, each bounded to one in-flight classifier call."""

    def __init__(
        self,
        ctx: AppContext,
        classifier: BaseClassifier,
        notifier: Notifier | None = None,
    ):
        self.ctx = ctx
        self.classifier = classifier
        self.notifier = notifier
        self.size = ctx.queue.concurrency
        self._threads: list[threading.Thread] = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        """Start the worker threads."""
        if self.running:
            log.warning("worker_pool_already_running")
            return

        self._threads = [
            threading.Thread(
                target=self._run,
                args=(index,),
                name=f"triage-worker-{index}",
                daemon=True,
            )
            for index in range(self.size)
        ]
        for thread in self._threads:
            thread.start()
        log.info("worker_pool_started", workers=self.size)

    def stop(self, timeout: float = 30.0) -> None:
        """
        Close the queue and wait for workers to finish their current entry.

        Pending entries are abandoned unresolved; they get re-fetched on the
        next run because nothing was committed for them.
        """
        self.ctx.queue.close()
        for thread in self._threads:
            thread.join(timeout=timeout)
            if thread.is_alive():
                log.warning("worker_did_not_stop", worker=thread.name)
        self._threads = []
        log.info("worker_pool_stopped")

    def _run(self, index: int) -> None:
        queue = self.ctx.queue
        while True:
            entry = queue.get()
            if entry is None:
                break
            try:
                self.process_entry(entry)
            except Exception as e:
                log.exception("worker_unexpected_error", worker=index, item_id=entry.item_id, error=str(e))
            finally:
                queue.task_done()
        log.debug("worker_exited", worker=index)

    def process_entry(self, entry: QueueEntry) -> OutcomeStatus:
        """
        Classify one entry and record its terminal outcome.

        Returns:
            The status that was recorded
        """
        settings = self.ctx.settings
        ledger = self.ctx.ledger
        email = entry.item

        bind_context(item_id=email.id)
        try:
            ledger.increment_requests()
            try:
                result = self.classifier.classify(
                    email,
                    prompt_path=settings.prompt_path,
                    timeout=settings.llm_timeout_seconds,
                )
            except Exception as e:
                ledger.record_interaction(Dependency.LLM, ok=False, error=str(e))
                log.error("classification_failed", error=str(e), error_type=type(e).__name__)
                self._record(email.id, OutcomeStatus.ERROR, error=str(e))
                return OutcomeStatus.ERROR

            ledger.record_interaction(Dependency.LLM, ok=True)
            self._record(
                email.id,
                OutcomeStatus.OK,
                decision=result.decision,
                tokens=result.tokens,
                latency_ms=result.latency_ms,
            )
            ledger.add_token_event(result.tokens, result.latency_ms)
            ledger.add_decision(email, result.decision, result.tokens, result.latency_ms)

            if result.decision.notify:
                self._notify(email, result.decision)

            return OutcomeStatus.OK
        finally:
            clear_context()

    def _record(self, item_id: str, status: OutcomeStatus, **fields) -> None:
        try:
            self.ctx.ledger.record(item_id, status, **fields)
        except DuplicateOutcome as e:
            log.warning("duplicate_outcome_ignored", item_id=item_id, error=str(e))

    def _notify(self, email: Email, decision: Decision) -> None:
        """Send the notification; failures only mark the SendRecord."""
        ledger = self.ctx.ledger
        dry_run = self.ctx.settings.dry_run

        if self.notifier is None:
            log.warning("notifier_not_configured", urgency=decision.urgency.value)
            return

        try:
            send = self.notifier.send(decision, email, dry_run=dry_run)
        except Exception as e:
            log.error("notification_failed", error=str(e))
            ledger.record_interaction(Dependency.NOTIFIER, ok=False, error=str(e))
            send = SendRecord(
                id=email.id,
                destination=getattr(self.notifier, "to_number", ""),
                success=False,
                sent_at=ledger.timestamp(),
                dry_run=dry_run,
                error=str(e),
                subject=email.subject,
                sender=email.sender,
                urgency=decision.urgency.value,
                reason=decision.reason,
                link=email.link,
            )
        else:
            # Dry runs never touch the transport, so they say nothing about its health.
            if not send.dry_run:
                ledger.record_interaction(Dependency.NOTIFIER, ok=send.success)

        ledger.add_send(send)
