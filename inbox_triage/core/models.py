"""
Data models for email triage.

Uses dataclasses for clean, typed data structures. Everything that ends up
in the state file has a to_dict()/from_dict() pair.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from html import unescape
from typing import Any


class OutcomeStatus(str, Enum):
    """Terminal status of an admitted item."""

    OK = "ok"
    DROPPED = "dropped"
    ERROR = "error"


class Dependency(str, Enum):
    """External dependencies whose health is tracked."""

    MAILBOX = "mailbox"
    LLM = "llm"
    NOTIFIER = "notifier"


class HealthStatus(str, Enum):
    """Three-way health verdict."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNKNOWN = "unknown"


class Urgency(str, Enum):
    """Urgency attached to a notification."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


@dataclass
class Attachment:
    """Email attachment metadata."""

    filename: str
    content_type: str
    size_bytes: int


@dataclass
class Email:
    """Email data structure. The unit of work flowing through the queue."""

    id: str = ""
    thread_id: str = ""
    message_id: str = ""
    link: str = ""
    mailbox: str = ""
    folder: str = ""
    subject: str = ""
    sender: str = ""
    recipient: str = ""
    cc: str = ""
    email_date: datetime | None = None
    body_plain: str = ""
    body_html: str = ""
    has_attachments: bool = False
    attachments: list[Attachment] = field(default_factory=list)

    @property
    def body(self) -> str:
        """Get email body, preferring plain text."""
        return self.body_plain or self._strip_html(self.body_html)

    @property
    def sender_email(self) -> str:
        """Extract email address from sender header."""
        return self._extract_email(self.sender)

    @staticmethod
    def _extract_email(header: str) -> str:
        """Extract email address from header like 'Name <email@example.com>'."""
        if not header:
            return ""
        from email.utils import parseaddr
        _, email = parseaddr(header)
        return email.lower() if email else ""

    @staticmethod
    def _strip_html(html: str) -> str:
        """Strip HTML tags from text, keeping a line break per block element."""
        if not html:
            return ""
        text = re.sub(r"<(script|style)[^>]*>.*?</\1>", " ", html, flags=re.S | re.I)
        text = re.sub(r"<br\s*/?>|</(?:p|div|tr|li|h[1-6]|table)>", "\n", text, flags=re.I)
        text = unescape(re.sub(r"<[^>]+>", " ", text))
        lines = (re.sub(r"[ \t\r\f\v\u00a0]+", " ", line).strip() for line in text.split("\n"))
        return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


@dataclass
class QueueEntry:
    """An admitted email waiting for (or assigned to) a worker."""

    item: Email
    admitted_at: float

    @property
    def item_id(self) -> str:
        return self.item.id


@dataclass
class Decision:
    """Structured triage decision returned by the classifier."""

    notify: bool = False
    title: str = ""
    body: str = ""
    urgency: Urgency = Urgency.NORMAL
    confidence: float = 0.0
    reason: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Decision":
        """Create a Decision from the classifier's JSON payload."""
        packet = data.get("message_packet") or {}
        try:
            urgency = Urgency(str(packet.get("urgency", "normal")).lower())
        except ValueError:
            urgency = Urgency.NORMAL

        try:
            confidence = float(data.get("confidence", 0.0))
        except (TypeError, ValueError):
            confidence = 0.0

        return cls(
            notify=bool(data.get("notify", False)),
            title=str(packet.get("title") or ""),
            body=str(packet.get("body") or ""),
            urgency=urgency,
            confidence=min(max(confidence, 0.0), 1.0),
            reason=str(data.get("reason") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dict for JSON storage (same shape the classifier returns)."""
        return {
            "notify": self.notify,
            "message_packet": {
                "title": self.title,
                "body": self.body,
                "urgency": self.urgency.value,
            },
            "confidence": self.confidence,
            "reason": self.reason,
        }


@dataclass
class ClassifierResult:
    """Result of one classifier call."""

    decision: Decision
    tokens: int = 0
    latency_ms: int = 0
    content: str = ""


@dataclass
class OutcomeRecord:
    """Terminal outcome for one item id."""

    status: OutcomeStatus
    timestamp: str
    decision: dict[str, Any] | None = None
    tokens: int | None = None
    latency_ms: int | None = None
    error: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "OutcomeRecord":
        return cls(
            status=OutcomeStatus(data["status"]),
            timestamp=data["timestamp"],
            decision=data.get("decision"),
            tokens=data.get("tokens"),
            latency_ms=data.get("latency_ms"),
            error=data.get("error"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp,
            "decision": self.decision,
            "tokens": self.tokens,
            "latency_ms": self.latency_ms,
            "error": self.error,
        }


@dataclass
class SendRecord:
    """An attempted outbound notification."""

    id: str
    destination: str
    success: bool
    sent_at: str
    dry_run: bool = False
    sid: str | None = None
    error: str | None = None
    subject: str = ""
    sender: str = ""
    urgency: str = Urgency.NORMAL.value
    reason: str = ""
    link: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SendRecord":
        return cls(
            id=data["id"],
            destination=data.get("destination", ""),
            success=bool(data.get("success", False)),
            sent_at=data.get("sent_at", ""),
            dry_run=bool(data.get("dry_run", False)),
            sid=data.get("sid"),
            error=data.get("error"),
            subject=data.get("subject", ""),
            sender=data.get("from", ""),
            urgency=data.get("urgency", Urgency.NORMAL.value),
            reason=data.get("reason", ""),
            link=data.get("link", ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "destination": self.destination,
            "success": self.success,
            "sent_at": self.sent_at,
            "dry_run": self.dry_run,
            "sid": self.sid,
            "error": self.error,
            "subject": self.subject,
            "from": self.sender,
            "urgency": self.urgency,
            "reason": self.reason,
            "link": self.link,
        }


@dataclass
class TokenEvent:
    """Token cost sample of one completed classification."""

    timestamp: str
    tokens: int
    latency_ms: int

    @property
    def tokens_per_second(self) -> float | None:
        if self.latency_ms <= 0:
            return None
        return self.tokens / (self.latency_ms / 1000)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TokenEvent":
        return cls(
            timestamp=data["timestamp"],
            tokens=int(data.get("tokens") or 0),
            latency_ms=int(data.get("latency_ms") or 0),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "tokens": self.tokens,
            "latency_ms": self.latency_ms,
        }
