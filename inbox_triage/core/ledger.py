"""
Outcome ledger: the single writer of the persisted triage state.

Holds, in memory, the processed-id map, bounded recent lists, token events
and the raw stats block. All mutations go through this class; the state file
is written only by persist(), using write-to-temp then rename so a reader
never sees a partial file and a crash mid-write keeps the previous version.
"""

import copy
import json
import os
import tempfile
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from inbox_triage.core.exceptions import DuplicateOutcome, PersistenceError
from inbox_triage.core.logging import get_logger
from inbox_triage.core.models import (
    Decision,
    Dependency,
    Email,
    OutcomeRecord,
    OutcomeStatus,
    SendRecord,
    TokenEvent,
)

log = get_logger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def empty_stats() -> dict[str, Any]:
    """Stats block of a fresh state file."""
    return {
        "llm_requests": 0,
        "llm_queue": {
            "depth": 0,
            "dropped_total": 0,
            "last_dropped_id": None,
        },
        "llm_tps": {"samples": 0, "avg_tps": 0.0},
        "dependencies": {
            dep.value: {
                "last_attempt": None,
                "last_success": None,
                "last_failure": None,
                "last_error": None,
            }
            for dep in Dependency
        },
    }


def _require_list(data: dict[str, Any], key: str) -> list:
    value = data.get(key, [])
    if not isinstance(value, list):
        raise TypeError(f"{key} must be a list")
    return value


def _require_entry(entry: Any, field: str, key: str) -> dict[str, Any]:
    if not isinstance(entry, dict) or not isinstance(entry.get(field), str):
        raise ValueError(f"{key} entry without a string {field!r}")
    return entry


def empty_state() -> dict[str, Any]:
    return {
        "processed": {},
        "recent_decisions": [],
        "recent_sends": [],
        "token_events": [],
        "stats": empty_stats(),
    }


class OutcomeLedger:
    """Thread-safe record of per-item outcomes with atomic JSON persistence."""

    def __init__(
        self,
        path: str | Path,
        max_processed: int = 5000,
        max_recent_decisions: int = 200,
        max_recent_sends: int = 100,
        max_token_events: int = 100,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.path = Path(path)
        self.max_processed = max_processed
        self.max_recent_decisions = max_recent_decisions
        self.max_recent_sends = max_recent_sends
        self.max_token_events = max_token_events
        self.clock = clock

        self._lock = threading.RLock()
        self._persist_lock = threading.Lock()
        self._state = empty_state()
        self._dirty = False

    # Loading / persistence

    def load(self) -> bool:
        """
        Load the last persisted state from disk.

        A missing or unreadable file starts from an empty state instead of
        failing startup.

        Returns:
            True if a state file was loaded
        """
        if not self.path.exists():
            log.info("state_file_missing", path=str(self.path))
            with self._lock:
                self._state = empty_state()
            return False

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            state = self._normalize(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            log.warning("state_file_corrupt", path=str(self.path), error=str(e))
            with self._lock:
                self._state = empty_state()
            return False

        with self._lock:
            self._state = state
            self._dirty = False

        log.info(
            "state_loaded",
            path=str(self.path),
            processed=len(state["processed"]),
            recent_decisions=len(state["recent_decisions"]),
        )
        return True

    def persist(self) -> bool:
        """
        Write the full state atomically.

        Safe to call from any thread; concurrent calls are serialized.

        Returns:
            True on success, False if the write failed (old file left intact)
        """
        with self._persist_lock:
            with self._lock:
                payload = json.dumps(self._state, indent=2, sort_keys=False)
                self._dirty = False

            try:
                self._write_atomic(payload)
            except PersistenceError as e:
                with self._lock:
                    self._dirty = True
                log.error("state_persist_failed", path=str(self.path), error=str(e))
                return False

        log.debug("state_persisted", path=str(self.path), bytes=len(payload))
        return True

    def mark_dirty(self) -> None:
        with self._lock:
            self._dirty = True

    @property
    def dirty(self) -> bool:
        with self._lock:
            return self._dirty

    def flush_if_dirty(self) -> bool:
        """Persist only if something changed since the last write."""
        if not self.dirty:
            return False
        return self.persist()

    def _write_atomic(self, payload: str) -> None:
        tmp_path = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                dir=self.path.parent,
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as e:
            if tmp_path and os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise PersistenceError(f"Failed to write {self.path}: {e}") from e

    def _normalize(self, data: Any) -> dict[str, Any]:
        """
        Validate a loaded document and fill in anything missing.

        Every entry is rebuilt through its model, so a malformed record raises
        here (and load() falls back to an empty state) instead of failing later
        inside a worker or the status view.
        """
        if not isinstance(data, dict):
            raise TypeError("state root must be an object")

        state = empty_state()
        processed = data.get("processed", {})
        if not isinstance(processed, dict):
            raise TypeError("processed must be an object")
        for item_id, record in processed.items():
            state["processed"][item_id] = OutcomeRecord.from_dict(record).to_dict()

        state["token_events"] = [
            TokenEvent.from_dict(_require_entry(e, "timestamp", "token_events")).to_dict()
            for e in _require_list(data, "token_events")
        ][-self.max_token_events:]
        state["recent_sends"] = [
            SendRecord.from_dict(_require_entry(s, "id", "recent_sends")).to_dict()
            for s in _require_list(data, "recent_sends")
        ][-self.max_recent_sends:]
        state["recent_decisions"] = [
            dict(_require_entry(d, "id", "recent_decisions"))
            for d in _require_list(data, "recent_decisions")
        ][-self.max_recent_decisions:]

        stats = data.get("stats") or {}
        if not isinstance(stats, dict):
            raise TypeError("stats must be an object")
        state["stats"]["llm_requests"] = int(stats.get("llm_requests", 0))

        queue_stats = stats.get("llm_queue") or {}
        if not isinstance(queue_stats, dict):
            raise TypeError("llm_queue must be an object")
        last_dropped = queue_stats.get("last_dropped_id")
        if last_dropped is not None and not isinstance(last_dropped, str):
            raise TypeError("llm_queue.last_dropped_id must be a string")
        state["stats"]["llm_queue"] = {
            "depth": int(queue_stats.get("depth", 0)),
            "dropped_total": int(queue_stats.get("dropped_total", 0)),
            "last_dropped_id": last_dropped,
        }

        tps = stats.get("llm_tps") or {}
        if not isinstance(tps, dict):
            raise TypeError("llm_tps must be an object")
        state["stats"]["llm_tps"] = {
            "samples": int(tps.get("samples", 0)),
            "avg_tps": float(tps.get("avg_tps", 0.0)),
        }

        for dep, values in (stats.get("dependencies") or {}).items():
            if dep not in state["stats"]["dependencies"]:
                continue
            if not isinstance(values, dict):
                raise TypeError(f"dependencies.{dep} must be an object")
            entry = state["stats"]["dependencies"][dep]
            for field in entry:
                value = values.get(field)
                if value is not None and not isinstance(value, str):
                    raise TypeError(f"dependencies.{dep}.{field} must be a string")
                entry[field] = value
        return state

    # Outcomes

    def record(
        self,
        item_id: str,
        status: OutcomeStatus,
        decision: Decision | None = None,
        tokens: int | None = None,
        latency_ms: int | None = None,
        error: str | None = None,
    ) -> OutcomeRecord:
        """
        Write the terminal outcome of an item.

        Raises:
            DuplicateOutcome: if the item already has a terminal outcome
        """
        record = OutcomeRecord(
            status=status,
            timestamp=self.timestamp(),
            decision=decision.to_dict() if decision else None,
            tokens=tokens,
            latency_ms=latency_ms,
            error=error,
        )

        with self._lock:
            existing = self._state["processed"].get(item_id)
            if existing is not None:
                raise DuplicateOutcome(item_id, existing["status"])
            self._state["processed"][item_id] = record.to_dict()
            self._prune_processed()
            self._dirty = True

        return record

    def is_processed(self, item_id: str) -> bool:
        with self._lock:
            return item_id in self._state["processed"]

    def get(self, item_id: str) -> OutcomeRecord | None:
        with self._lock:
            data = self._state["processed"].get(item_id)
            return OutcomeRecord.from_dict(data) if data else None

    def processed_count(self) -> int:
        with self._lock:
            return len(self._state["processed"])

    def _prune_processed(self) -> None:
        # Caller holds self._lock. The dict keeps record order, oldest first.
        processed = self._state["processed"]
        pruned = 0
        while len(processed) > self.max_processed:
            del processed[next(iter(processed))]
            pruned += 1
        if pruned:
            log.debug("processed_ids_pruned", count=pruned)

    # Recent history

    def add_decision(self, email: Email, result_decision: Decision, tokens: int, latency_ms: int) -> None:
        entry = {
            "id": email.id,
            "thread_id": email.thread_id,
            "from": email.sender,
            "subject": email.subject,
            "link": email.link,
            "decided_at": self.timestamp(),
            "tokens": tokens,
            "latency_ms": latency_ms,
            **result_decision.to_dict(),
        }
        with self._lock:
            self._append_bounded("recent_decisions", entry, self.max_recent_decisions)

    def add_send(self, send: SendRecord) -> None:
        with self._lock:
            self._append_bounded("recent_sends", send.to_dict(), self.max_recent_sends)

    def add_token_event(self, tokens: int, latency_ms: int) -> TokenEvent:
        event = TokenEvent(timestamp=self.timestamp(), tokens=tokens, latency_ms=latency_ms)
        with self._lock:
            self._append_bounded("token_events", event.to_dict(), self.max_token_events)
        return event

    def token_events(self, last: int | None = None) -> list[TokenEvent]:
        with self._lock:
            events = self._state["token_events"]
            if last is not None:
                events = events[-last:] if last > 0 else []
            return [TokenEvent.from_dict(e) for e in events]

    def _append_bounded(self, key: str, value: dict[str, Any], cap: int) -> None:
        # Caller holds self._lock.
        items = self._state[key]
        items.append(value)
        if len(items) > cap:
            del items[: len(items) - cap]
        self._dirty = True

    # Stats

    def increment_requests(self) -> int:
        with self._lock:
            self._state["stats"]["llm_requests"] += 1
            self._dirty = True
            return self._state["stats"]["llm_requests"]

    def note_drop(self, item_id: str) -> None:
        """Count a queue eviction in the persisted stats."""
        with self._lock:
            queue_stats = self._state["stats"]["llm_queue"]
            queue_stats["dropped_total"] += 1
            queue_stats["last_dropped_id"] = item_id
            self._dirty = True

    def update_queue_depth(self, depth: int) -> None:
        with self._lock:
            self._state["stats"]["llm_queue"]["depth"] = depth

    def update_throughput(self, samples: int, avg_tps: float) -> None:
        with self._lock:
            self._state["stats"]["llm_tps"] = {"samples": samples, "avg_tps": avg_tps}

    def record_interaction(self, dependency: Dependency, ok: bool, error: str | None = None) -> None:
        """Remember the latest attempt/success/failure against a dependency."""
        now = self.timestamp()
        with self._lock:
            entry = self._state["stats"]["dependencies"][dependency.value]
            entry["last_attempt"] = now
            if ok:
                entry["last_success"] = now
            else:
                entry["last_failure"] = now
                entry["last_error"] = error
            self._dirty = True

    def dependency_events(self, dependency: Dependency) -> dict[str, Any]:
        with self._lock:
            return dict(self._state["stats"]["dependencies"][dependency.value])

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return copy.deepcopy(self._state["stats"])

    def snapshot(self) -> dict[str, Any]:
        """Deep copy of the full state for read-only consumers."""
        with self._lock:
            return copy.deepcopy(self._state)

    def timestamp(self) -> str:
        """Current time as an ISO-8601 string from the ledger clock."""
        return self.clock().isoformat(timespec="milliseconds")
