"""Unit tests for the poll orchestrator, end to end through the worker pool."""

import threading

import pytest

from inbox_triage.core.context import AppContext
from inbox_triage.core.ledger import OutcomeLedger
from inbox_triage.core.models import Dependency, HealthStatus, OutcomeStatus
from inbox_triage.processors.poll import PollOrchestrator
from inbox_triage.processors.worker_pool import WorkerPool


@pytest.fixture
def running():
    """Start a pool for a context and stop it after the test."""
    pools = []

    def start(ctx, classifier, notifier=None):
        pool = WorkerPool(ctx, classifier, notifier)
        pool.start()
        pools.append(pool)
        return pool

    yield start
    for pool in pools:
        pool.stop(timeout=5)


def make_ctx(settings, clock, **overrides) -> AppContext:
    return AppContext.from_settings(settings.model_copy(update=overrides), clock=clock)


class TestOverload:
    """Tests for a burst larger than the queue."""

    def test_drop_oldest_under_burst(self, settings, clock, running, make_source, make_classifier, make_notifier):
        """Test a slow first call causes the two middle items to be dropped."""
        ctx = make_ctx(settings, clock, llm_queue_capacity=2, llm_concurrency=1, dry_run=False)
        classifier = make_classifier({
            "m1": {"delay": 0.2, "notify": False},
            "bad1": {"fail": True},
            "twiliofail1": {"notify": True, "urgency": "high"},
        })
        running(ctx, classifier, make_notifier("fail"))
        orchestrator = PollOrchestrator(ctx, make_source(["m1", "m2", "bad1", "twiliofail1"]))

        stats = orchestrator.poll_now()

        ledger = ctx.ledger
        assert ledger.get("m1").status == OutcomeStatus.OK
        assert ledger.get("m2").status == OutcomeStatus.DROPPED
        assert ledger.get("bad1").status == OutcomeStatus.DROPPED
        assert ledger.get("twiliofail1").status == OutcomeStatus.OK

        queue_stats = ledger.stats()["llm_queue"]
        assert queue_stats["dropped_total"] == 2
        assert queue_stats["last_dropped_id"] == "bad1"
        assert queue_stats["depth"] == 0
        assert ledger.stats()["llm_requests"] == 2
        assert classifier.calls == ["m1", "twiliofail1"]

        assert stats == {
            "listed": 4,
            "new": 4,
            "admitted": 4,
            "dropped": 2,
            "processed": 2,
            "errors": 0,
            "skipped": 0,
        }

        sends = ledger.snapshot()["recent_sends"]
        assert [s["id"] for s in sends] == ["twiliofail1"]
        assert sends[0]["success"] is False
        assert ctx.stats.health(Dependency.NOTIFIER) == HealthStatus.DEGRADED

    def test_every_item_resolves_exactly_once(self, settings, clock, running, make_source, make_classifier):
        """Test admitted items end up ok, dropped or error, never missing."""
        ctx = make_ctx(settings, clock, llm_queue_capacity=3, llm_concurrency=2, poll_max_results=20)
        ids = [f"id{i}" for i in range(12)]
        classifier = make_classifier({"default": {"delay": 0.02}, "id4": {"fail": True}})
        running(ctx, classifier)

        stats = PollOrchestrator(ctx, make_source(ids)).poll_now()

        statuses = [ctx.ledger.get(i).status for i in ids]
        assert len(statuses) == len(ids)
        dropped = statuses.count(OutcomeStatus.DROPPED)
        assert dropped == ctx.ledger.stats()["llm_queue"]["dropped_total"] == stats["dropped"]
        assert stats["processed"] + stats["errors"] + dropped == len(ids)
        assert ctx.ledger.stats()["llm_requests"] == len(ids) - dropped


class TestThroughput:
    """Tests for tokens/sec after a cycle."""

    def test_tps_after_cycle(self, ctx, running, make_source, make_classifier):
        """Test three calls at 1000 tok/s each report an average of 1000."""
        classifier = make_classifier({
            "a": {"tokens": 3000, "latency_ms": 3000},
            "b": {"tokens": 2000, "latency_ms": 2000},
            "c": {"tokens": 1000, "latency_ms": 1000},
        })
        running(ctx, classifier)

        PollOrchestrator(ctx, make_source(["a", "b", "c"])).poll_now()

        assert ctx.ledger.stats()["llm_tps"] == {"samples": 3, "avg_tps": 1000.0}
        assert ctx.stats.snapshot()["stats"]["llm_tps"]["avg_tps"] == 1000.0


class TestSingleFlight:
    """Tests for overlapping poll requests."""

    def test_second_poll_is_noop_while_running(self, ctx, running, make_source, make_classifier):
        """Test a poll requested mid-cycle returns None and fetches nothing."""
        gate = threading.Event()
        classifier = make_classifier({"slow1": {"gate": gate}})
        running(ctx, classifier)
        source = make_source(["slow1"])
        orchestrator = PollOrchestrator(ctx, source)

        results = []
        worker = threading.Thread(target=lambda: results.append(orchestrator.poll_now()))
        worker.start()
        assert classifier.entered.wait(timeout=5)

        assert orchestrator.in_progress
        assert orchestrator.poll_now() is None
        assert source.list_calls == 1

        gate.set()
        worker.join(timeout=5)

        assert results[0]["processed"] == 1
        assert not orchestrator.in_progress
        assert orchestrator.cycles == 1
        assert classifier.calls == ["slow1"]

    def test_state_reports_last_result(self, ctx, running, make_source, make_classifier):
        """Test the orchestrator state used by the status view."""
        running(ctx, make_classifier())
        orchestrator = PollOrchestrator(ctx, make_source(["m1"]))

        orchestrator.poll_now()
        state = orchestrator.state()

        assert state["cycles"] == 1
        assert state["in_progress"] is False
        assert state["last_result"]["processed"] == 1
        assert state["last_completed"] is not None


class TestIngestion:
    """Tests for listing, dedupe and fetch failures."""

    def test_already_processed_ids_skipped(self, ctx, running, make_source, make_classifier):
        """Test a second cycle over the same ids does no work."""
        classifier = make_classifier()
        running(ctx, classifier)
        orchestrator = PollOrchestrator(ctx, make_source(["m1", "m2"]))

        orchestrator.poll_now()
        stats = orchestrator.poll_now()

        assert stats["listed"] == 2
        assert stats["new"] == 0
        assert stats["admitted"] == 0
        assert sorted(classifier.calls) == ["m1", "m2"]

    def test_duplicate_ids_in_one_listing(self, ctx, running, make_source, make_classifier):
        """Test a listing with repeated ids admits each id once."""
        classifier = make_classifier()
        running(ctx, classifier)

        stats = PollOrchestrator(ctx, make_source(["m1", "m1", "m2"])).poll_now()

        assert stats["new"] == 2
        assert sorted(classifier.calls) == ["m1", "m2"]

    def test_list_failure_marks_mailbox_degraded(self, ctx, running, make_source, make_classifier, state_path):
        """Test an unreachable mailbox ends the cycle early and persists health."""
        running(ctx, make_classifier())

        stats = PollOrchestrator(ctx, make_source(["m1"], fail_list=True)).poll_now()

        assert stats["listed"] == 0
        assert ctx.stats.health(Dependency.MAILBOX) == HealthStatus.DEGRADED
        assert ctx.ledger.dependency_events(Dependency.MAILBOX)["last_error"] == "mailbox unreachable"
        assert state_path.exists()

    def test_state_persisted_when_cycle_raises(self, ctx, clock, running, make_source, make_classifier, state_path):
        """Test a cycle that fails part way still writes what it recorded."""
        running(ctx, make_classifier())
        orchestrator = PollOrchestrator(ctx, make_source(["m1", "m2"]))
        ctx.queue.close()
        clock.advance(60)

        with pytest.raises(RuntimeError):
            orchestrator.poll_now()

        on_disk = OutcomeLedger(state_path)
        assert on_disk.load() is True
        assert on_disk.dependency_events(Dependency.MAILBOX)["last_success"] == ctx.ledger.timestamp()
        assert ctx.ledger.dirty is False
        assert not orchestrator.in_progress

    def test_fetch_failure_retried_next_cycle(self, ctx, running, make_source, make_classifier):
        """Test an item that failed to fetch is not recorded and is picked up later."""
        classifier = make_classifier()
        running(ctx, classifier)
        source = make_source(["m1", "m2"], fail_fetch={"m2"})
        orchestrator = PollOrchestrator(ctx, source)

        first = orchestrator.poll_now()
        assert first["skipped"] == 1
        assert ctx.ledger.get("m2") is None
        assert ctx.stats.health(Dependency.MAILBOX) == HealthStatus.HEALTHY

        source.fail_fetch = set()
        second = orchestrator.poll_now()

        assert second["new"] == 1
        assert ctx.ledger.get("m2").status == OutcomeStatus.OK

    def test_all_fetches_failing_marks_mailbox_degraded(self, ctx, running, make_source, make_classifier):
        """Test a mailbox that lists but cannot serve any message."""
        running(ctx, make_classifier())

        PollOrchestrator(ctx, make_source(["m1", "m2"], fail_fetch={"m1", "m2"})).poll_now()

        assert ctx.stats.health(Dependency.MAILBOX) == HealthStatus.DEGRADED

    def test_outcomes_survive_restart(self, settings, clock, ctx, running, make_source, make_classifier):
        """Test a fresh context loaded from disk skips what was already done."""
        running(ctx, make_classifier())
        PollOrchestrator(ctx, make_source(["m1", "m2"])).poll_now()

        restarted = AppContext.from_settings(settings, clock=clock)
        assert restarted.ledger.load() is True
        classifier = make_classifier()
        running(restarted, classifier)

        stats = PollOrchestrator(restarted, make_source(["m1", "m2", "m3"])).poll_now()

        assert stats["new"] == 1
        assert classifier.calls == ["m3"]
        assert restarted.ledger.get("m1").status == OutcomeStatus.OK
