"""
Shared pytest fixtures for inbox_triage tests.
"""

import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from inbox_triage.config import Settings
from inbox_triage.core.context import AppContext
from inbox_triage.core.exceptions import ClassifierError, NotifierError
from inbox_triage.core.models import (
    ClassifierResult,
    Decision,
    Email,
    SendRecord,
    Urgency,
)

FIXTURE_EMAILS = {
    "m1": ("Alice <alice@example.com>", "Lunch tomorrow?", "Are you free for lunch tomorrow at noon?"),
    "m2": ("Weekly Digest <news@example.com>", "Your weekly digest", "Top stories this week..."),
    "bad1": ("Unknown <x@example.net>", "RE: invoice", "Please see attached."),
    "twiliofail1": ("Bank <alerts@bank.example>", "Unusual charge", "We detected a $4,320.00 charge."),
    "slow1": ("Ops <ops@example.com>", "Build report", "Nightly build passed."),
}


def build_email(item_id: str) -> Email:
    sender, subject, body = FIXTURE_EMAILS.get(
        item_id,
        ("Someone <someone@example.com>", f"Subject {item_id}", f"Body of {item_id}"),
    )
    return Email(
        id=item_id,
        thread_id=f"t-{item_id}",
        sender=sender,
        recipient="me@example.com",
        subject=subject,
        body_plain=body,
        email_date=datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc),
    )


class FakeSource:
    """In-memory item source."""

    def __init__(self, ids: list[str], fail_list: bool = False, fail_fetch: set[str] | None = None):
        self.emails = {item_id: build_email(item_id) for item_id in ids}
        self.order = list(ids)
        self.fail_list = fail_list
        self.fail_fetch = fail_fetch or set()
        self.list_calls = 0

    def list_new_items(self, max_results: int, filter_query: str = "ALL") -> list[str]:
        self.list_calls += 1
        if self.fail_list:
            raise ConnectionError("mailbox unreachable")
        return self.order[-max_results:]

    def fetch_full(self, item_id: str) -> Email:
        if item_id in self.fail_fetch or item_id not in self.emails:
            raise LookupError(f"Message {item_id} not found")
        return self.emails[item_id]


class StubClassifier:
    """
    Scripted classifier.

    Each id maps to a scenario dict: notify, tokens, latency_ms, fail (raise
    ClassifierError), delay (seconds to sleep first), gate (Event to wait on).
    """

    def __init__(self, scenarios: dict[str, dict] | None = None):
        self.scenarios = scenarios or {}
        self.calls: list[str] = []
        self.entered = threading.Event()
        self._lock = threading.Lock()
        self.healthy = True

    def classify(self, email: Email, prompt_path=None, timeout=None) -> ClassifierResult:
        with self._lock:
            self.calls.append(email.id)
        self.entered.set()

        scenario = self.scenarios.get(email.id) or self.scenarios.get("default") or {}
        if scenario.get("gate") is not None:
            scenario["gate"].wait(timeout=5)
        if scenario.get("delay"):
            time.sleep(scenario["delay"])
        if scenario.get("fail"):
            raise ClassifierError("Invalid JSON from LLM: bad content")

        decision = Decision(
            notify=scenario.get("notify", False),
            title=scenario.get("title", "Default title"),
            body=scenario.get("body", "Default body"),
            urgency=Urgency(scenario.get("urgency", "normal")),
            confidence=0.9,
            reason="auto-decision",
        )
        return ClassifierResult(
            decision=decision,
            tokens=scenario.get("tokens", 42),
            latency_ms=scenario.get("latency_ms", 50),
            content="ok",
        )

    def health_check(self) -> bool:
        return self.healthy


class FakeNotifier:
    """Notifier that succeeds or fails on demand."""

    to_number = "+15550001111"

    def __init__(self, behavior: str = "success"):
        self.behavior = behavior
        self.sent: list[str] = []

    def send(self, decision: Decision, email: Email, dry_run: bool = True) -> SendRecord:
        if self.behavior == "fail" and not dry_run:
            raise NotifierError("twilio send failed")
        self.sent.append(email.id)
        return SendRecord(
            id=email.id,
            destination=self.to_number,
            success=True,
            sent_at="2026-03-01T10:00:00.000+00:00",
            dry_run=dry_run,
            sid="DRY_RUN" if dry_run else "SM123456789",
            subject=email.subject,
            sender=email.sender,
            urgency=decision.urgency.value,
            reason=decision.reason,
        )


class MutableClock:
    """Deterministic clock for health and timestamp tests."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def state_path(tmp_path):
    """Path for a throwaway state file."""
    return tmp_path / "data" / "state.json"


@pytest.fixture
def settings(state_path, tmp_path) -> Settings:
    """Settings isolated from the environment and the real state file."""
    return Settings(
        _env_file=None,
        state_path=str(state_path),
        prompt_path=str(tmp_path / "no-prompt.txt"),
        llm_queue_capacity=10,
        llm_concurrency=2,
        dry_run=True,
        scheduler_enabled=False,
        poll_max_results=10,
        log_json=False,
    )


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def ctx(settings, clock) -> AppContext:
    """Fresh application context."""
    return AppContext.from_settings(settings, clock=clock)


@pytest.fixture
def emails():
    """Factory: list of fixture emails by id."""
    return lambda ids: [build_email(item_id) for item_id in ids]


@pytest.fixture
def make_source():
    return FakeSource


@pytest.fixture
def make_classifier():
    return StubClassifier


@pytest.fixture
def make_notifier():
    return FakeNotifier
