"""Core modules for email triage."""

from .logging import configure_logging, get_logger
from .models import (
    Email,
    Attachment,
    Decision,
    ClassifierResult,
    OutcomeRecord,
    OutcomeStatus,
    SendRecord,
    TokenEvent,
    Dependency,
    HealthStatus,
)
from .queue import AdmissionQueue
from .ledger import OutcomeLedger
from .stats import StatsAggregator

__all__ = [
    "configure_logging",
    "get_logger",
    "Email",
    "Attachment",
    "Decision",
    "ClassifierResult",
    "OutcomeRecord",
    "OutcomeStatus",
    "SendRecord",
    "TokenEvent",
    "Dependency",
    "HealthStatus",
    "AdmissionQueue",
    "OutcomeLedger",
    "StatsAggregator",
]
