"""
Derived statistics and per-dependency health verdicts.

Nothing here is stored separately: throughput and health are recomputed on
read from the ledger's token events and interaction timestamps, plus the
live queue counters.
"""

from datetime import datetime
from typing import Any, Callable

from inbox_triage.core.ledger import OutcomeLedger, utc_now
from inbox_triage.core.models import Dependency, HealthStatus
from inbox_triage.core.queue import AdmissionQueue


def evaluate_health(
    last_attempt: str | None,
    last_success: str | None,
    window_seconds: float,
    now: datetime,
) -> HealthStatus:
    """
    Three-way health verdict for a dependency.

    Args:
        last_attempt: ISO timestamp of the latest interaction of any kind
        last_success: ISO timestamp of the latest successful interaction
        window_seconds: Freshness window for this dependency
        now: Current time (timezone-aware)

    Returns:
        UNKNOWN if nothing was ever attempted, HEALTHY if the last success is
        within the window, DEGRADED otherwise
    """
    if not last_attempt and not last_success:
        return HealthStatus.UNKNOWN
    if not last_success:
        return HealthStatus.DEGRADED

    elapsed = (now - datetime.fromisoformat(last_success)).total_seconds()
    if elapsed <= window_seconds:
        return HealthStatus.HEALTHY
    return HealthStatus.DEGRADED


class StatsAggregator:
    """Builds the read-only status view from the ledger and the queue."""

    def __init__(
        self,
        ledger: OutcomeLedger,
        queue: AdmissionQueue,
        health_windows: dict[Dependency, float],
        tps_window: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.ledger = ledger
        self.queue = queue
        self.health_windows = health_windows
        self.tps_window = tps_window
        self.clock = clock

    def throughput(self) -> dict[str, Any]:
        """
        Windowed tokens/sec average over the most recent completed calls.

        Each sample contributes tokens / (latency_ms / 1000); samples without
        a positive latency are skipped.
        """
        rates = [
            rate
            for rate in (e.tokens_per_second for e in self.ledger.token_events(last=self.tps_window))
            if rate is not None
        ]
        if not rates:
            return {"samples": 0, "avg_tps": 0.0}
        return {"samples": len(rates), "avg_tps": round(sum(rates) / len(rates), 2)}

    def refresh(self) -> dict[str, Any]:
        """
        Write the derived numbers back into the persisted stats block.

        Called by the poll cycle and on shutdown right before the ledger is
        persisted. Readers use snapshot(), which never writes.
        """
        tps = self.throughput()
        self.ledger.update_throughput(tps["samples"], tps["avg_tps"])
        self.ledger.update_queue_depth(self.queue.depth)
        return tps

    def health(self, dependency: Dependency) -> HealthStatus:
        events = self.ledger.dependency_events(dependency)
        return evaluate_health(
            events.get("last_attempt"),
            events.get("last_success"),
            self.health_windows[dependency],
            self.clock(),
        )

    def health_report(self) -> dict[str, dict[str, Any]]:
        now = self.clock()
        report = {}
        for dependency in Dependency:
            events = self.ledger.dependency_events(dependency)
            window = self.health_windows[dependency]
            report[dependency.value] = {
                "status": evaluate_health(
                    events.get("last_attempt"),
                    events.get("last_success"),
                    window,
                    now,
                ).value,
                "window_seconds": window,
                **events,
            }
        return report

    def snapshot(self, recent_limit: int = 20, poll: dict[str, Any] | None = None) -> dict[str, Any]:
        """
        Status view consumed by the dashboard and the /status endpoint.

        Args:
            recent_limit: How many recent decisions/sends to include (newest first)
            poll: Orchestrator state to embed, if any
        """
        tps = self.throughput()
        state = self.ledger.snapshot()
        stats = state["stats"]
        queue = self.queue.snapshot()

        return {
            "stats": {
                "llm_requests": stats["llm_requests"],
                "llm_queue": {
                    "depth": queue["depth"],
                    "in_flight": queue["in_flight"],
                    "capacity": queue["capacity"],
                    "concurrency": queue["concurrency"],
                    "dropped_total": stats["llm_queue"]["dropped_total"],
                    "last_dropped_id": stats["llm_queue"]["last_dropped_id"],
                },
                "llm_tps": tps,
                "health": self.health_report(),
            },
            "processed_count": len(state["processed"]),
            "recent_decisions": list(reversed(state["recent_decisions"]))[:recent_limit],
            "recent_sends": list(reversed(state["recent_sends"]))[:recent_limit],
            "poll": poll or {},
            "generated_at": self.clock().isoformat(timespec="milliseconds"),
        }
