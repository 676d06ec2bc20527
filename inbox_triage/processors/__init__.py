"""Triage processors."""

from .base import BaseProcessor, ItemSource, Notifier
from .worker_pool import WorkerPool
from .poll import PollOrchestrator

__all__ = ["BaseProcessor", "ItemSource", "Notifier", "WorkerPool", "PollOrchestrator"]
