"""Unit tests for the IMAP item source."""

from email.message import EmailMessage

import pytest

from inbox_triage.services.imap import IMAPItemSource


def raw_message(subject: str = "Hello", html: bool = False, attachment: bool = False) -> bytes:
    msg = EmailMessage()
    msg["From"] = "=?UTF-8?B?SsO2cmc=?= <jorg@example.com>"
    msg["To"] = "me@example.com"
    msg["Subject"] = subject
    msg["Date"] = "Sun, 01 Mar 2026 10:00:00 +0000"
    msg["Message-ID"] = "<reply@example.com>"
    msg["References"] = "<root@example.com> <middle@example.com>"
    msg.set_content("Plain body")
    if html:
        msg.add_alternative("<p>Html body</p>", subtype="html")
    if attachment:
        msg.add_attachment(b"%PDF-1.4", maintype="application", subtype="pdf", filename="invoice.pdf")
    return msg.as_bytes()


class FakeIMAP:
    """Records calls and answers uid SEARCH/FETCH from a dict."""

    def __init__(self, messages: dict[str, bytes]):
        self.messages = messages
        self.calls = []
        self.logged_out = False

    def __call__(self, host):
        self.calls.append(("connect", host))
        return self

    def login(self, user, password):
        self.calls.append(("login", user))

    def select(self, folder, readonly=False):
        self.calls.append(("select", folder, readonly))
        return "OK", [b"1"]

    def uid(self, command, *args):
        if command == "SEARCH":
            self.calls.append(("search", args[-1]))
            return "OK", [" ".join(self.messages).encode()]
        if command == "FETCH":
            raw = self.messages.get(args[0])
            if raw is None:
                return "OK", [None]
            return "OK", [(b"1 (UID %s BODY[] {%d}" % (args[0].encode(), len(raw)), raw), b")"]
        raise AssertionError(command)

    def logout(self):
        self.logged_out = True


@pytest.fixture
def fake_imap():
    return FakeIMAP({"101": raw_message("First"), "102": raw_message("Second"), "103": raw_message("Third")})


@pytest.fixture
def source(fake_imap):
    return IMAPItemSource("imap.test", "me@example.com", "pw", folder="INBOX", imap_factory=fake_imap)


class TestListing:
    """Tests for list_new_items()."""

    def test_lists_uids_and_connects_read_only(self, source, fake_imap):
        """Test the first call connects lazily and selects read-only."""
        assert source.list_new_items(10, "UNSEEN") == ["101", "102", "103"]
        assert ("select", "INBOX", True) in fake_imap.calls
        assert ("search", "UNSEEN") in fake_imap.calls

    def test_keeps_most_recent(self, source):
        """Test max_results keeps the newest ids."""
        assert source.list_new_items(2, "ALL") == ["102", "103"]

    def test_disconnect_logs_out(self, source, fake_imap):
        source.list_new_items(1)
        source.disconnect()
        assert fake_imap.logged_out


class TestFetch:
    """Tests for fetch_full() and parsing."""

    def test_fetch_parses_headers(self, source):
        """Test subject, sender decoding, thread id and date."""
        email = source.fetch_full("102")

        assert email.id == "102"
        assert email.subject == "Second"
        assert "Jörg" in email.sender
        assert email.sender_email == "jorg@example.com"
        assert email.thread_id == "<root@example.com>"
        assert email.message_id == "<reply@example.com>"
        assert email.email_date.year == 2026
        assert email.body_plain.strip() == "Plain body"
        assert email.folder == "INBOX"

    def test_missing_message_raises_lookup_error(self, source):
        with pytest.raises(LookupError):
            source.fetch_full("999")

    def test_multipart_with_attachment(self, fake_imap, source):
        """Test HTML alternatives and attachments are separated from the body."""
        fake_imap.messages["200"] = raw_message("Invoice", html=True, attachment=True)

        email = source.fetch_full("200")

        assert email.body_plain.strip() == "Plain body"
        assert "Html body" in email.body_html
        assert email.has_attachments
        assert email.attachments[0].filename == "invoice.pdf"
        assert email.attachments[0].content_type == "application/pdf"

    def test_message_link(self, fake_imap):
        """Test a configured link base turns the Message-ID into a web-mail URL."""
        source = IMAPItemSource(
            "imap.test",
            "me@example.com",
            "pw",
            link_base="https://mail.google.com/mail/u/0/#search/rfc822msgid:",
            imap_factory=fake_imap,
        )

        email = source.fetch_full("101")

        assert email.link == "https://mail.google.com/mail/u/0/#search/rfc822msgid:reply@example.com"
        assert source.message_link("<a+b@example.com>").endswith("rfc822msgid:a%2Bb@example.com")

    def test_no_link_without_base(self, source):
        assert source.fetch_full("101").link == ""
