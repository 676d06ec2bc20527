"""
Rule-based trimming of an email before it is sent to the classifier.

Removes what the model never needs:
- the quoted thread below "On <date>, <person> wrote:", "-----Original Message-----"
  or an Outlook "From: / Sent: / To:" block, plus any "> " quoted lines
- forwarded copies below "Begin forwarded message" or "---------- Forwarded message ----------"
- newsletter footers (unsubscribe links, "view in browser", "manage preferences")

Whitespace is then normalized and a length cap keeps the head and the tail of
whatever is left. Every rule that fired is listed in stats.removed_sections.
"""

import re
from dataclasses import dataclass, field
from typing import Any

from inbox_triage.core.models import Email

TRIM_MARKER = "\n[... trimmed ...]\n"
HEAD_SHARE = 0.7

REPLY_HEADER = "reply_header"
FORWARDED_MESSAGE = "forwarded_message"
UNSUBSCRIBE_FOOTER = "unsubscribe_footer"
VIEW_IN_BROWSER_FOOTER = "view_in_browser_footer"
LENGTH_CAP = "length_cap"

# Everything from the first match to the end of the body is dropped.
CUT_RULES = [
    (FORWARDED_MESSAGE, re.compile(
        r"^[ \t]*(?:-{2,}[ \t]*Forwarded message[ \t]*-{2,}|Begin forwarded message:?)[ \t]*$",
        re.I | re.M,
    )),
    (REPLY_HEADER, re.compile(
        r"^[ \t]*On\b[^\n]{0,200}(?:\n[^\n]{0,200})?\bwrote:[ \t]*$",
        re.I | re.M,
    )),
    (REPLY_HEADER, re.compile(r"^[ \t]*-{2,}[ \t]*Original Message[ \t]*-{2,}[ \t]*$", re.I | re.M)),
    (REPLY_HEADER, re.compile(r"^[ \t]*From:[^\n]*\n[ \t]*(?:Sent|Date):[^\n]*\n[ \t]*To:", re.I | re.M)),
]

QUOTED_LINE = re.compile(r"^[ \t]*>.*$\n?", re.M)

# Footer phrases are removed per sentence or "|"-separated segment so the rest
# of a shared line survives.
FOOTER_RULES = [
    (UNSUBSCRIBE_FOOTER, re.compile(r"unsubscribe|opt[ -]out of these emails", re.I)),
    (VIEW_IN_BROWSER_FOOTER, re.compile(
        r"\bview\b[^\n|.]{0,40}\bbrowser\b"
        r"|\bview (?:this|it) (?:email |message )?online\b"
        r"|\bmanage\b[^\n|.]{0,30}\bpreferences\b",
        re.I,
    )),
]
SEGMENT_SPLIT = re.compile(r"(?<=[.!?])[ \t]+|[ \t]*\|[ \t]*")


@dataclass
class TrimmedEmail:
    """Classifier-ready view of an email."""

    body_text: str
    body_excerpt: str
    body_tail: str
    headers: dict[str, str]
    stats: dict[str, Any] = field(default_factory=dict)

    @property
    def removed_sections(self) -> list[str]:
        return self.stats.get("removed_sections", [])


def trim_email(email: Email, max_body_chars: int = 4000) -> TrimmedEmail:
    """
    Trim an email body for the classifier prompt.

    Args:
        email: Email to trim
        max_body_chars: Upper bound on the returned body_text length

    Returns:
        TrimmedEmail with the trimmed body, head/tail excerpts, headers and stats
    """
    original = email.body or ""
    removed: list[str] = []

    text = _cut_thread(original, removed)
    text = _drop_quoted_lines(text, removed)
    text = _drop_footers(text, removed)
    text = normalize_whitespace(text)
    body_text, excerpt, tail = _cap_length(text, max_body_chars, removed)

    return TrimmedEmail(
        body_text=body_text,
        body_excerpt=excerpt,
        body_tail=tail,
        headers={
            "from": email.sender,
            "to": email.recipient,
            "cc": email.cc,
            "subject": email.subject,
            "date": email.email_date.isoformat() if email.email_date else "",
        },
        stats={
            "original_char_count": len(original),
            "trimmed_char_count": len(body_text),
            "removed_sections": removed,
        },
    )


def normalize_whitespace(text: str) -> str:
    """Collapse runs of spaces, strip line ends, allow at most one blank line."""
    lines = [re.sub(r"[ \t\f\v\u00a0]+", " ", line).strip() for line in text.replace("\r\n", "\n").split("\n")]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


def _note(removed: list[str], section: str) -> None:
    if section not in removed:
        removed.append(section)


def _cut_thread(text: str, removed: list[str]) -> str:
    # A marker with nothing above it is the message itself (a bare forward), not a quote.
    cut_at, section = None, None
    for name, pattern in CUT_RULES:
        for match in pattern.finditer(text):
            if not text[: match.start()].strip():
                continue
            if cut_at is None or match.start() < cut_at:
                cut_at, section = match.start(), name
            break
    if cut_at is None:
        return text
    _note(removed, section)
    return text[:cut_at]


def _drop_quoted_lines(text: str, removed: list[str]) -> str:
    stripped = QUOTED_LINE.sub("", text)
    if stripped != text and stripped.strip():
        _note(removed, REPLY_HEADER)
        return stripped
    return text


def _drop_footers(text: str, removed: list[str]) -> str:
    kept_lines = []
    for line in text.split("\n"):
        segments = SEGMENT_SPLIT.split(line)
        kept = []
        for segment in segments:
            hit = next((name for name, pattern in FOOTER_RULES if pattern.search(segment)), None)
            if hit:
                _note(removed, hit)
            else:
                kept.append(segment)
        if len(kept) == len(segments):
            kept_lines.append(line)
        elif any(s.strip() for s in kept):
            kept_lines.append(" ".join(s for s in kept if s.strip()))
    return "\n".join(kept_lines)


def _cap_length(text: str, max_chars: int, removed: list[str]) -> tuple[str, str, str]:
    if len(text) <= max_chars:
        return text, text, ""
    _note(removed, LENGTH_CAP)
    budget = max_chars - len(TRIM_MARKER)
    if budget < 2:
        return text[:max_chars], text[:max_chars], ""
    head = int(budget * HEAD_SHARE)
    excerpt = text[:head].rstrip()
    tail = text[-(budget - head):].lstrip()
    return excerpt + TRIM_MARKER + tail, excerpt, tail
