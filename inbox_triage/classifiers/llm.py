"""
LLM classifier backed by an OpenAI-compatible chat completions endpoint.

Works against a local runtime (Ollama, LM Studio, llama.cpp server) or a
hosted API. Every failure mode surfaces as ClassifierError so the worker can
record an error outcome and move on.
"""

import json
import time

import httpx

from inbox_triage.classifiers.base import BaseClassifier
from inbox_triage.classifiers.prompts.triage import USER_TEMPLATE, load_prompt
from inbox_triage.classifiers.trim import trim_email
from inbox_triage.core.exceptions import ClassifierError
from inbox_triage.core.logging import get_logger
from inbox_triage.core.models import ClassifierResult, Decision, Email

log = get_logger(__name__)


class LLMClassifier(BaseClassifier):
    """HTTP client for a chat completions endpoint."""

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: str = "",
        timeout: float = 60.0,
        max_body_chars: int = 4000,
        prompt_path: str | None = None,
        client: httpx.Client | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.timeout = timeout
        self.max_body_chars = max_body_chars
        self.prompt_path = prompt_path

        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = client or httpx.Client(timeout=timeout, headers=headers)

    def classify(
        self,
        email: Email,
        prompt_path: str | None = None,
        timeout: float | None = None,
    ) -> ClassifierResult:
        """
        Classify an email.

        Args:
            email: Email to classify
            prompt_path: Prompt file overriding the configured one
            timeout: Per-call timeout in seconds overriding the configured one

        Returns:
            ClassifierResult with decision, tokens and latency

        Raises:
            ClassifierError: on timeout, HTTP/transport error or malformed response
        """
        timeout = timeout or self.timeout
        payload = {
            "model": self.model,
            "temperature": 0,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": load_prompt(prompt_path or self.prompt_path)},
                {"role": "user", "content": self._format_email(email)},
            ],
        }

        start = time.monotonic()
        try:
            response = self._client.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                timeout=timeout,
            )
            response.raise_for_status()
            data = response.json()

        except httpx.TimeoutException as e:
            log.error("classifier_timeout", item_id=email.id, timeout_seconds=timeout)
            raise ClassifierError(f"Classifier timed out after {timeout}s") from e

        except httpx.HTTPStatusError as e:
            log.error(
                "classifier_http_error",
                item_id=email.id,
                status=e.response.status_code,
                error=str(e),
            )
            raise ClassifierError(f"Classifier service error: {e}") from e

        except httpx.RequestError as e:
            log.error("classifier_request_error", item_id=email.id, error=str(e))
            raise ClassifierError(f"Failed to reach classifier service: {e}") from e

        except ValueError as e:
            raise ClassifierError(f"Classifier returned a non-JSON body: {e}") from e

        latency_ms = int((time.monotonic() - start) * 1000)

        try:
            content = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ClassifierError(f"Unexpected classifier response shape: {e}") from e

        parsed = self._parse_response(content)
        decision = Decision.from_dict(parsed)
        tokens = self._token_count(data.get("usage") or {})

        log.info(
            "email_classified",
            item_id=email.id,
            notify=decision.notify,
            urgency=decision.urgency.value,
            tokens=tokens,
            latency_ms=latency_ms,
        )
        return ClassifierResult(
            decision=decision,
            tokens=tokens,
            latency_ms=latency_ms,
            content=content,
        )

    def health_check(self) -> bool:
        """Check if the endpoint answers its model listing."""
        try:
            response = self._client.get(f"{self.base_url}/models", timeout=10.0)
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            log.warning("classifier_health_check_failed", error=str(e))
            return False

    def _format_email(self, email: Email) -> str:
        trimmed = trim_email(email, self.max_body_chars)
        if trimmed.removed_sections:
            log.debug("email_trimmed", item_id=email.id, **trimmed.stats)

        headers = trimmed.headers
        attachments = ", ".join(a.filename for a in email.attachments) or "none"
        return USER_TEMPLATE.format(
            sender=headers["from"],
            recipient=headers["to"],
            cc=headers["cc"] or "-",
            date=headers["date"] or "-",
            subject=headers["subject"],
            attachments=attachments,
            body=trimmed.body_text,
        )

    @staticmethod
    def _parse_response(response_text: str) -> dict:
        """Parse the JSON object out of a (possibly fenced) completion."""
        text = response_text.strip()

        # Remove markdown code blocks if present
        if text.startswith("```"):
            lines = text.split("\n")
            lines = lines[1:]
            if lines and lines[-1].strip() == "```":
                lines = lines[:-1]
            text = "\n".join(lines)

        try:
            parsed = json.loads(text)
        except json.JSONDecodeError as e:
            log.error("classifier_parse_error", error=str(e), response=text[:500])
            raise ClassifierError(f"Invalid JSON from LLM: {e}") from e

        if not isinstance(parsed, dict):
            raise ClassifierError("Invalid JSON from LLM: expected an object")
        return parsed

    @staticmethod
    def _token_count(usage: dict) -> int:
        total = usage.get("total_tokens")
        if total is None:
            total = (usage.get("prompt_tokens") or 0) + (usage.get("completion_tokens") or 0)
        return max(int(total), 0)

    def close(self):
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
