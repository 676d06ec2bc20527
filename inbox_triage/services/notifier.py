"""
SMS notifier using the Twilio Messages REST API.
"""

from datetime import datetime, timezone

import httpx

from inbox_triage.core.exceptions import NotifierError
from inbox_triage.core.logging import get_logger
from inbox_triage.core.models import Decision, Email, SendRecord, Urgency

log = get_logger(__name__)

TWILIO_API_URL = "https://api.twilio.com/2010-04-01"
DRY_RUN_SID = "DRY_RUN"
SMS_MAX_CHARS = 320


class TwilioNotifier:
    """Sends one SMS per decision that asks for a notification."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        to_number: str,
        timeout: float = 15.0,
        base_url: str = TWILIO_API_URL,
        client: httpx.Client | None = None,
    ):
        self.account_sid = account_sid
        self.from_number = from_number
        self.to_number = to_number
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(
            timeout=timeout,
            auth=(account_sid, auth_token),
        )

    @property
    def configured(self) -> bool:
        return bool(self.account_sid and self.from_number and self.to_number)

    def send(self, decision: Decision, email: Email, dry_run: bool = True) -> SendRecord:
        """
        Send an SMS for a decision.

        Args:
            decision: Decision whose message packet becomes the SMS
            email: Email the decision was made for
            dry_run: If True, build the record without calling Twilio

        Returns:
            SendRecord describing the attempt

        Raises:
            NotifierError: if Twilio is not configured or rejects the message
        """
        body = self.format_message(decision)
        record = SendRecord(
            id=email.id,
            destination=self.to_number,
            success=False,
            sent_at=datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            dry_run=dry_run,
            subject=email.subject,
            sender=email.sender,
            urgency=decision.urgency.value,
            reason=decision.reason,
            link=email.link,
        )

        if dry_run:
            record.success = True
            record.sid = DRY_RUN_SID
            log.info("sms_dry_run", item_id=email.id, chars=len(body))
            return record

        if not self.configured:
            raise NotifierError("Twilio client not configured")

        try:
            response = self._client.post(
                f"{self.base_url}/Accounts/{self.account_sid}/Messages.json",
                data={"To": self.to_number, "From": self.from_number, "Body": body},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            log.error("sms_http_error", item_id=email.id, status=e.response.status_code)
            raise NotifierError(f"Twilio rejected message: {e.response.status_code}") from e
        except (httpx.RequestError, ValueError) as e:
            log.error("sms_request_error", item_id=email.id, error=str(e))
            raise NotifierError(f"Failed to reach Twilio: {e}") from e

        record.success = True
        record.sid = data.get("sid")
        log.info("sms_sent", item_id=email.id, sid=record.sid)
        return record

    def check_credentials(self) -> bool:
        """Fetch the account resource to validate the credentials."""
        if not self.configured:
            log.warning("twilio_credentials_missing")
            return False
        try:
            response = self._client.get(f"{self.base_url}/Accounts/{self.account_sid}.json")
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            log.warning("twilio_credentials_check_failed", error=str(e))
            return False

    @staticmethod
    def format_message(decision: Decision) -> str:
        """Render the SMS text, capped to two segments."""
        prefix = "[URGENT] " if decision.urgency == Urgency.HIGH else ""
        text = f"{prefix}{decision.title}\n{decision.body}".strip()
        if len(text) > SMS_MAX_CHARS:
            text = text[: SMS_MAX_CHARS - 3].rstrip() + "..."
        return text

    def close(self):
        """Close the HTTP client."""
        self._client.close()
