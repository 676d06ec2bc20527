"""
Email classifiers module.

Classification runs against an OpenAI-compatible chat completions endpoint.
"""

from inbox_triage.config import Settings
from inbox_triage.classifiers.base import BaseClassifier
from inbox_triage.classifiers.llm import LLMClassifier


def get_classifier(settings: Settings) -> LLMClassifier:
    """
    Get the classifier for inbox triage.

    Returns an LLMClassifier configured from settings.
    """
    return LLMClassifier(
        base_url=settings.llm_base_url,
        model=settings.llm_model,
        api_key=settings.llm_api_key,
        timeout=settings.llm_timeout_seconds,
        max_body_chars=settings.max_body_chars,
        prompt_path=settings.prompt_path,
    )


__all__ = [
    "BaseClassifier",
    "LLMClassifier",
    "get_classifier",
]
