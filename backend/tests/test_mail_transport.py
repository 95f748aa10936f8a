"""
Unit tests for the IMAP transport.
imaplib is mocked; no network access is made.
"""

import datetime
import imaplib
from unittest.mock import MagicMock, patch

import pytest

from conftest import build_raw_message, make_message
from intake.errors import AttachmentNotFoundError, ConnectivityError
from intake.models.mail import ConnectionConfig
from intake.services.mail_transport import (
    ImapMailTransport,
    build_message,
    to_imap_date,
)

CONFIG = ConnectionConfig(host="imap.gmail.com", port=993, username="hr@brightlabs.io", password="secret")
SINCE = datetime.datetime(2025, 10, 12, tzinfo=datetime.timezone.utc)


def _header(subject: str, sender: str = "Jane Smith <jane.smith@fastmail.net>") -> bytes:
    return (
        f"From: {sender}\r\n"
        f"Subject: {subject}\r\n"
        "Date: Mon, 13 Oct 2025 09:15:00 +0000\r\n"
        "Message-ID: <m1@fastmail.net>\r\n\r\n"
    ).encode()


def _fetch_item(uid: int, subject: str, with_pdf: bool = True) -> list:
    if with_pdf:
        structure = (
            b'(("text" "plain" ("charset" "utf-8") NIL NIL "7bit" 10 1 NIL NIL NIL NIL)'
            b'("application" "pdf" ("name" "resume.pdf") NIL NIL "base64" 2048 NIL '
            b'("attachment" ("filename" "resume.pdf")) NIL NIL) "mixed")'
        )
    else:
        structure = b'("text" "plain" ("charset" "utf-8") NIL NIL "7bit" 10 1 NIL NIL NIL NIL)'
    header = _header(subject)
    prefix = (
        b"%d (UID %d BODYSTRUCTURE " % (uid, uid) + structure
        + b" BODY[HEADER.FIELDS (FROM SUBJECT DATE MESSAGE-ID)] {%d}" % len(header)
    )
    return [(prefix, header), b")"]


def _mock_connection(search_uids: bytes, fetch_items: list) -> MagicMock:
    conn = MagicMock()
    conn.select.return_value = ("OK", [b"3"])

    def uid(command, *args):
        if command == "SEARCH":
            return "OK", [search_uids]
        return "OK", fetch_items

    conn.uid.side_effect = uid
    return conn


class TestToImapDate:
    def test_format(self):
        assert to_imap_date(datetime.datetime(2025, 3, 7)) == "07-Mar-2025"


class TestBuildMessage:
    """Test EmailMessage construction from parsed FETCH fields."""

    def test_sender_is_lower_cased(self):
        fields = {
            "UID": "5",
            "BODY[HEADER.FIELDS (FROM SUBJECT DATE MESSAGE-ID)]": _header(
                "CV", sender="Jane Smith <Jane.Smith@Fastmail.NET>"
            ).decode(),
        }
        message = build_message(fields)

        assert message.uid == "5"
        assert message.sender_email == "jane.smith@fastmail.net"
        assert message.sender_name == "Jane Smith"
        assert message.received_at == datetime.datetime(2025, 10, 13, 9, 15, tzinfo=datetime.timezone.utc)
        assert message.message_id == "<m1@fastmail.net>"

    def test_missing_uid_returns_none(self):
        assert build_message({"BODYSTRUCTURE": []}) is None


class TestListMessages:
    """Test message listing and filtering."""

    @pytest.mark.asyncio
    async def test_filters_subject_and_attachments(self):
        conn = _mock_connection(
            b"101 102 103",
            _fetch_item(101, "Application for Web Developer")
            + _fetch_item(102, "Lunch on Friday?")
            + _fetch_item(103, "Resume - Graphic Designer", with_pdf=False),
        )

        with patch("intake.services.mail_transport.imaplib.IMAP4_SSL", return_value=conn):
            messages = await ImapMailTransport().list_messages(CONFIG, SINCE)

        assert [m.uid for m in messages] == ["101"]
        assert messages[0].attachments[0].filename == "resume.pdf"
        conn.login.assert_called_once_with("hr@brightlabs.io", "secret")
        conn.select.assert_called_once_with("INBOX", readonly=True)
        conn.logout.assert_called_once()

    @pytest.mark.asyncio
    async def test_newest_first_and_max_results(self):
        conn = _mock_connection(
            b"201 202 203",
            _fetch_item(201, "Job application")
            + _fetch_item(202, "Job application")
            + _fetch_item(203, "Job application"),
        )

        with patch("intake.services.mail_transport.imaplib.IMAP4_SSL", return_value=conn):
            messages = await ImapMailTransport().list_messages(CONFIG, SINCE, max_results=2)

        assert [m.uid for m in messages] == ["203", "202"]

    @pytest.mark.asyncio
    async def test_search_uses_since_date(self):
        conn = _mock_connection(b"", [])

        with patch("intake.services.mail_transport.imaplib.IMAP4_SSL", return_value=conn):
            messages = await ImapMailTransport().list_messages(CONFIG, SINCE)

        assert messages == []
        conn.uid.assert_called_once_with("SEARCH", None, "SINCE 12-Oct-2025")

    @pytest.mark.asyncio
    async def test_filters_can_be_disabled(self):
        conn = _mock_connection(b"301", _fetch_item(301, "Lunch on Friday?", with_pdf=False))

        with patch("intake.services.mail_transport.imaplib.IMAP4_SSL", return_value=conn):
            messages = await ImapMailTransport().list_messages(
                CONFIG, SINCE, job_related=False, with_attachments=False
            )

        assert [m.uid for m in messages] == ["301"]


class TestConnectivity:
    """Test connection failures surface as ConnectivityError."""

    @pytest.mark.asyncio
    async def test_unreachable_host(self):
        with patch(
            "intake.services.mail_transport.imaplib.IMAP4_SSL",
            side_effect=OSError("Connection refused"),
        ):
            with pytest.raises(ConnectivityError) as exc_info:
                await ImapMailTransport().validate_connection(CONFIG)

        assert exc_info.value.host == "imap.gmail.com"
        assert "Connection refused" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_login_rejected_logs_out(self):
        conn = MagicMock()
        conn.login.side_effect = imaplib.IMAP4.error("AUTHENTICATIONFAILED")

        with patch("intake.services.mail_transport.imaplib.IMAP4_SSL", return_value=conn):
            with pytest.raises(ConnectivityError, match="Login failed"):
                await ImapMailTransport().validate_connection(CONFIG)

        conn.logout.assert_called_once()

    @pytest.mark.asyncio
    async def test_validate_connection_success(self):
        conn = _mock_connection(b"", [])

        with patch("intake.services.mail_transport.imaplib.IMAP4_SSL", return_value=conn):
            assert await ImapMailTransport().validate_connection(CONFIG) is True


class TestFetchRawMessage:
    """Test raw message download."""

    @pytest.mark.asyncio
    async def test_returns_literal_bytes(self):
        conn = MagicMock()
        conn.select.return_value = ("OK", [b"1"])
        conn.uid.return_value = ("OK", [(b"1 (UID 42 BODY[] {5}", b"hello"), b")"])

        with patch("intake.services.mail_transport.imaplib.IMAP4_SSL", return_value=conn):
            raw = await ImapMailTransport().fetch_raw_message(CONFIG, "42")

        assert raw == b"hello"
        conn.uid.assert_called_once_with("FETCH", "42", "(BODY.PEEK[])")

    @pytest.mark.asyncio
    async def test_missing_message_raises(self):
        conn = MagicMock()
        conn.select.return_value = ("OK", [b"1"])
        conn.uid.return_value = ("OK", [None])

        with patch("intake.services.mail_transport.imaplib.IMAP4_SSL", return_value=conn):
            with pytest.raises(AttachmentNotFoundError):
                await ImapMailTransport().fetch_raw_message(CONFIG, "42")


class TestFetchAttachment:
    """Test lazy attachment download and decoding."""

    @pytest.mark.asyncio
    async def test_decodes_requested_attachment(self):
        pdf = b"%PDF-1.4 fake resume"
        raw = build_raw_message([("Jane_Smith_Resume.pdf", "application/pdf", pdf)])
        conn = MagicMock()
        conn.select.return_value = ("OK", [b"1"])
        conn.uid.return_value = ("OK", [(b"1 (UID 42 BODY[] {%d}" % len(raw), raw), b")"])
        message = make_message()

        with patch("intake.services.mail_transport.imaplib.IMAP4_SSL", return_value=conn):
            attachment = await ImapMailTransport().fetch_attachment(CONFIG, message, message.attachments[0])

        assert attachment.content == pdf
        assert attachment.descriptor.filename == "Jane_Smith_Resume.pdf"
