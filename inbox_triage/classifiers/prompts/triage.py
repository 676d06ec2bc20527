"""
Triage prompt for inbox emails.

The prompt text normally lives in a file (PROMPT_PATH) so it can be tuned
without a deploy; DEFAULT_PROMPT is used when that file is missing.
"""

from pathlib import Path

from inbox_triage.core.logging import get_logger

log = get_logger(__name__)

DEFAULT_PROMPT = """You triage incoming email for a busy person who only wants an SMS
when something genuinely needs their attention soon.

Decide whether to NOTIFY. Notify for: security alerts, fraud or unexpected
charges, messages from real people that need a reply today, deadlines within
48 hours, travel changes. Do NOT notify for: newsletters, marketing,
receipts for expected purchases, social media, automated reports.

Respond with JSON only, no prose:
{
  "notify": true | false,
  "message_packet": {
    "title": "short SMS title (max 60 chars)",
    "body": "one or two sentence summary (max 240 chars)",
    "urgency": "low" | "normal" | "high"
  },
  "confidence": 0.0-1.0,
  "reason": "why you decided this"
}
"""

USER_TEMPLATE = """From: {sender}
To: {recipient}
Cc: {cc}
Date: {date}
Subject: {subject}
Attachments: {attachments}

{body}
"""


def load_prompt(path: str | None) -> str:
    """Read the system prompt from disk, falling back to DEFAULT_PROMPT."""
    if not path:
        return DEFAULT_PROMPT
    prompt_file = Path(path)
    try:
        text = prompt_file.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        log.debug("prompt_file_missing", path=str(prompt_file))
        return DEFAULT_PROMPT
    return text or DEFAULT_PROMPT
