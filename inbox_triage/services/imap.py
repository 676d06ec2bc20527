"""
IMAP item source: lists new message UIDs and fetches full messages.
"""

import imaplib
from email import message_from_bytes
from email.header import decode_header as email_decode_header
from email.message import Message
from email.utils import parsedate_to_datetime
from urllib.parse import quote

from inbox_triage.core.logging import get_logger
from inbox_triage.core.models import Email, Attachment

log = get_logger(__name__)


class IMAPItemSource:
    """IMAP mailbox exposed as an item source (UIDs are the item ids)."""

    def __init__(
        self,
        host: str,
        user: str,
        password: str,
        folder: str = "INBOX",
        link_base: str = "",
        imap_factory=imaplib.IMAP4_SSL,
    ):
        self.host = host
        self.user = user
        self.password = password
        self.folder = folder
        self.link_base = link_base
        self._imap_factory = imap_factory
        self._conn: imaplib.IMAP4 | None = None

    def connect(self) -> None:
        """Connect, authenticate and select the folder."""
        log.info("imap_connecting", host=self.host, user=self.user)
        conn = None
        try:
            conn = self._imap_factory(self.host)
            conn.login(self.user, self.password)
            conn.select(self.folder, readonly=True)
            self._conn = conn
            log.info("imap_connected", folder=self.folder)
        except Exception:
            if conn:
                try:
                    conn.logout()
                except Exception as e:
                    log.debug("imap_logout_failed", error=str(e))
            raise

    def disconnect(self) -> None:
        """Close IMAP connection."""
        if self._conn:
            try:
                self._conn.logout()
            except Exception as e:
                log.debug("imap_logout_failed", error=str(e))
            self._conn = None
            log.info("imap_disconnected")

    def __enter__(self):
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.disconnect()

    def list_new_items(self, max_results: int, filter_query: str = "ALL") -> list[str]:
        """
        List message UIDs matching a search query.

        Args:
            max_results: Maximum number of ids to return (most recent kept)
            filter_query: IMAP SEARCH criteria, e.g. "UNSEEN" or "(SINCE 01-Mar-2026)"

        Returns:
            UIDs in arrival order (oldest first)
        """
        conn = self._ensure_connected()
        try:
            status, data = conn.uid("SEARCH", None, filter_query or "ALL")
        except (imaplib.IMAP4.error, OSError):
            self.disconnect()
            raise

        if status != "OK":
            raise RuntimeError(f"IMAP search failed: {status}")

        uids = [uid.decode() for uid in (data[0] or b"").split()]
        if max_results and len(uids) > max_results:
            uids = uids[-max_results:]

        log.info("imap_listed", folder=self.folder, count=len(uids), query=filter_query)
        return uids

    def fetch_full(self, item_id: str) -> Email:
        """
        Fetch and parse one message by UID.

        Args:
            item_id: Message UID

        Returns:
            Parsed Email
        """
        conn = self._ensure_connected()
        try:
            status, msg_data = conn.uid("FETCH", item_id, "(BODY.PEEK[])")
        except (imaplib.IMAP4.error, OSError):
            self.disconnect()
            raise

        if status != "OK" or not msg_data or not isinstance(msg_data[0], tuple):
            raise LookupError(f"Message {item_id} not found")

        msg = message_from_bytes(msg_data[0][1])
        return self.parse_message(item_id, msg)

    def _ensure_connected(self) -> imaplib.IMAP4:
        if self._conn is None:
            self.connect()
        return self._conn

    def parse_message(self, item_id: str, msg: Message) -> Email:
        """Parse an email.message.Message into an Email."""
        email_date = None
        date_str = msg.get("Date")
        if date_str:
            try:
                email_date = parsedate_to_datetime(date_str)
            except (TypeError, ValueError):
                log.debug("imap_date_unparseable", item_id=item_id, date=date_str)

        body_plain, body_html = self._get_body(msg)

        attachments = []
        if msg.is_multipart():
            for part in msg.walk():
                disposition = part.get("Content-Disposition", "")
                if "attachment" in disposition:
                    attachments.append(Attachment(
                        filename=self._decode_header(part.get_filename() or "unnamed"),
                        content_type=part.get_content_type(),
                        size_bytes=len(part.get_payload(decode=True) or b""),
                    ))

        message_id = msg.get("Message-ID", "")
        references = (msg.get("References") or "").split()
        thread_id = references[0] if references else message_id

        return Email(
            id=item_id,
            thread_id=thread_id,
            message_id=message_id,
            link=self.message_link(message_id),
            mailbox=self.user,
            folder=self.folder,
            subject=self._decode_header(msg.get("Subject", "")),
            sender=self._decode_header(msg.get("From", "")),
            recipient=self._decode_header(msg.get("To", "")),
            cc=self._decode_header(msg.get("Cc", "")),
            email_date=email_date,
            body_plain=body_plain,
            body_html=body_html,
            has_attachments=bool(attachments),
            attachments=attachments,
        )

    def message_link(self, message_id: str) -> str:
        """Web-mail URL that opens a message, or "" without a link base."""
        message_id = message_id.strip().strip("<>")
        if not self.link_base or not message_id:
            return ""
        return self.link_base + quote(message_id, safe="@.")

    @staticmethod
    def _decode_header(header: str) -> str:
        """Decode MIME-encoded email header like '=?UTF-8?B?...?='."""
        if not header:
            return ""
        decoded_parts = []
        for part, charset in email_decode_header(header):
            if isinstance(part, bytes):
                decoded_parts.append(part.decode(charset or "utf-8", errors="replace"))
            else:
                decoded_parts.append(part)
        return "".join(decoded_parts).replace("\r\n", "").replace("\n", "")

    @staticmethod
    def _get_body(msg: Message) -> tuple[str, str]:
        """Extract plain text and HTML body from message."""
        text_plain = ""
        text_html = ""

        parts = msg.walk() if msg.is_multipart() else [msg]
        for part in parts:
            if part.is_multipart():
                continue
            if "attachment" in part.get("Content-Disposition", ""):
                continue

            payload = part.get_payload(decode=True)
            if not payload:
                continue

            charset = part.get_content_charset() or "utf-8"
            try:
                text = payload.decode(charset, errors="ignore")
            except LookupError:
                text = payload.decode("utf-8", errors="ignore")

            content_type = part.get_content_type()
            if content_type == "text/plain":
                text_plain += text
            elif content_type == "text/html":
                text_html += text

        return text_plain, text_html
