"""
Abstract base class for email classifiers.
"""

from abc import ABC, abstractmethod

from inbox_triage.core.models import Email, ClassifierResult


class BaseClassifier(ABC):
    """Abstract classifier interface."""

    @abstractmethod
    def classify(
        self,
        email: Email,
        prompt_path: str | None = None,
        timeout: float | None = None,
    ) -> ClassifierResult:
        """
        Classify an email and decide whether the operator should be notified.

        Args:
            email: Email object to classify
            prompt_path: Prompt file to use (implementation default if None)
            timeout: Per-call timeout in seconds

        Returns:
            ClassifierResult with decision, token count and latency

        Raises:
            ClassifierError: on timeout, transport error or malformed response
        """
        pass

    @abstractmethod
    def health_check(self) -> bool:
        """Check if the classifier endpoint is reachable."""
        pass
