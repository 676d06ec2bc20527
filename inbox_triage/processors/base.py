"""
Abstract base classes and collaborator interfaces for processors.
"""

from abc import ABC, abstractmethod
from typing import Protocol

from inbox_triage.core.models import Decision, Email, SendRecord


class ItemSource(Protocol):
    """Anything that can list new item ids and fetch them by id."""

    def list_new_items(self, max_results: int, filter_query: str) -> list[str]:
        ...

    def fetch_full(self, item_id: str) -> Email:
        ...


class Notifier(Protocol):
    """Anything that turns a decision into an outbound message."""

    def send(self, decision: Decision, email: Email, dry_run: bool = True) -> SendRecord:
        ...


class BaseProcessor(ABC):
    """Abstract processor interface for the triage pipeline."""

    @abstractmethod
    def process(self) -> dict | None:
        """
        Run one unit of processing.

        Returns:
            Processing statistics dict, or None if nothing ran
        """
        pass
