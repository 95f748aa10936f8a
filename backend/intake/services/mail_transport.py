"""
IMAP mail transport.

Opens a TLS session per operation, lists messages since a date with their
header fields and attachment descriptors (from BODYSTRUCTURE, no content), and
downloads a single attachment on demand by fetching the raw message and
handing it to the MIME decoder.

imaplib is blocking, so every public method runs its IMAP work in a worker
thread via ``asyncio.to_thread``.
"""

import asyncio
import datetime
import email.utils
import imaplib
import logging
import socket
from contextlib import contextmanager
from email.parser import HeaderParser
from typing import Iterator, List, Optional

from intake.errors import AttachmentNotFoundError, ConnectivityError
from intake.models.mail import (
    AttachmentDescriptor,
    ConnectionConfig,
    DownloadedAttachment,
    EmailMessage,
)
from intake.services.bodystructure import (
    attachments_from_bodystructure,
    decode_mime_words,
    parse_fetch_response,
)
from intake.services.job_filters import is_job_related_subject
from intake.services.mime_decoder import extract_attachment

logger = logging.getLogger(__name__)

MAILBOX = "INBOX"
CONNECT_TIMEOUT_SECONDS = 30

# Metadata is fetched in chunks; scanning stops after MAX_SCANNED messages
FETCH_CHUNK_SIZE = 25
MAX_SCANNED = 500

HEADER_FIELDS = "FROM SUBJECT DATE MESSAGE-ID"
METADATA_ITEMS = f"(UID BODYSTRUCTURE BODY.PEEK[HEADER.FIELDS ({HEADER_FIELDS})])"


def to_imap_date(value: datetime.datetime) -> str:
    """Format a datetime as DD-Mon-YYYY for IMAP SEARCH."""
    return value.strftime("%d-%b-%Y")


# ---------------------------------------------------------------------------
# Header helpers
# ---------------------------------------------------------------------------

def _parse_received_at(raw: str) -> Optional[datetime.datetime]:
    if not raw:
        return None
    try:
        parsed = email.utils.parsedate_to_datetime(raw)
    except (TypeError, ValueError, IndexError):
        logger.debug("Unparseable Date header: %r", raw)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


def _header_block(fields: dict) -> str:
    for key, value in fields.items():
        if key.startswith("BODY[HEADER") and isinstance(value, str):
            return value
    return ""


def build_message(fields: dict) -> Optional[EmailMessage]:
    """Turn one parsed FETCH result into an EmailMessage."""
    uid = fields.get("UID")
    if not uid:
        return None

    headers = HeaderParser().parsestr(_header_block(fields))
    sender_name, sender_email = email.utils.parseaddr(decode_mime_words(headers.get("From", "")))

    return EmailMessage(
        uid=str(uid),
        message_id=(headers.get("Message-ID") or "").strip() or None,
        sender_email=sender_email.strip().lower(),
        sender_name=sender_name.strip(),
        subject=decode_mime_words(headers.get("Subject", "")).strip(),
        received_at=_parse_received_at(headers.get("Date", "")),
        attachments=attachments_from_bodystructure(fields.get("BODYSTRUCTURE"), str(uid)),
    )


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------

class ImapMailTransport:
    """Mail client used by the pipeline and the automation controller."""

    def __init__(self, timeout: float = CONNECT_TIMEOUT_SECONDS):
        self.timeout = timeout

    # -- session handling -------------------------------------------------

    def _connect(self, config: ConnectionConfig) -> imaplib.IMAP4:
        try:
            if config.use_tls:
                conn = imaplib.IMAP4_SSL(config.host, config.port, timeout=self.timeout)
            else:
                conn = imaplib.IMAP4(config.host, config.port, timeout=self.timeout)
        except (OSError, socket.timeout, imaplib.IMAP4.error) as exc:
            raise ConnectivityError(
                f"Could not connect to {config.host}:{config.port}: {exc}", host=config.host
            ) from exc

        try:
            conn.login(config.username, config.password)
        except (OSError, imaplib.IMAP4.error) as exc:
            self._logout(conn)
            raise ConnectivityError(
                f"Login failed for {config.username} on {config.host}: {exc}", host=config.host
            ) from exc

        return conn

    @staticmethod
    def _logout(conn: imaplib.IMAP4) -> None:
        try:
            conn.logout()
        except (OSError, imaplib.IMAP4.error) as exc:
            logger.debug("IMAP logout failed: %s", exc)

    @contextmanager
    def _session(self, config: ConnectionConfig) -> Iterator[imaplib.IMAP4]:
        conn = self._connect(config)
        try:
            status, _ = conn.select(MAILBOX, readonly=True)
            if status != "OK":
                raise ConnectivityError(f"Could not open {MAILBOX} on {config.host}", host=config.host)
            yield conn
        except (OSError, imaplib.IMAP4.abort) as exc:
            raise ConnectivityError(f"IMAP session to {config.host} dropped: {exc}", host=config.host) from exc
        finally:
            self._logout(conn)

    # -- blocking implementations ----------------------------------------

    def _validate_impl(self, config: ConnectionConfig) -> bool:
        with self._session(config):
            return True

    @staticmethod
    def _search_since(conn: imaplib.IMAP4, since: datetime.datetime) -> List[bytes]:
        status, data = conn.uid("SEARCH", None, f"SINCE {to_imap_date(since)}")
        if status != "OK":
            raise ConnectivityError(f"IMAP SEARCH failed: {data!r}")
        if not data or not data[0]:
            return []
        uids = data[0].split()
        uids.reverse()  # newest first
        return uids

    @staticmethod
    def _fetch_metadata(conn: imaplib.IMAP4, uids: List[bytes]) -> List[EmailMessage]:
        status, data = conn.uid("FETCH", b",".join(uids).decode(), METADATA_ITEMS)
        if status != "OK":
            raise ConnectivityError(f"IMAP FETCH failed: {data!r}")

        messages = []
        for fields in parse_fetch_response(data):
            message = build_message(fields)
            if message is not None:
                messages.append(message)
        # Servers may answer out of order
        order = {uid.decode(): i for i, uid in enumerate(uids)}
        messages.sort(key=lambda m: order.get(m.uid, len(order)))
        return messages

    def _list_messages_impl(
        self,
        config: ConnectionConfig,
        since: datetime.datetime,
        job_related: bool,
        with_attachments: bool,
        max_results: int,
    ) -> List[EmailMessage]:
        with self._session(config) as conn:
            uids = self._search_since(conn, since)[:MAX_SCANNED]
            logger.info("Found %d messages since %s on %s", len(uids), to_imap_date(since), config.host)

            results: List[EmailMessage] = []
            for start in range(0, len(uids), FETCH_CHUNK_SIZE):
                for message in self._fetch_metadata(conn, uids[start:start + FETCH_CHUNK_SIZE]):
                    if with_attachments and not message.has_attachments:
                        continue
                    if job_related and not is_job_related_subject(message.subject):
                        continue
                    results.append(message)
                    if len(results) >= max_results:
                        return results
            return results

    def _fetch_raw_impl(self, config: ConnectionConfig, uid: str) -> bytes:
        with self._session(config) as conn:
            status, data = conn.uid("FETCH", uid, "(BODY.PEEK[])")
            if status != "OK":
                raise ConnectivityError(f"IMAP FETCH of message {uid} failed: {data!r}")
            for item in data or []:
                if isinstance(item, tuple) and len(item) > 1 and isinstance(item[1], bytes):
                    return item[1]
        raise AttachmentNotFoundError(f"Message {uid} has no body on the server")

    # -- async API ----------------------------------------------------------

    async def validate_connection(self, config: ConnectionConfig) -> bool:
        """Log in and open the inbox; raises ConnectivityError on failure."""
        return await asyncio.to_thread(self._validate_impl, config)

    async def list_messages(
        self,
        config: ConnectionConfig,
        since: datetime.datetime,
        *,
        job_related: bool = True,
        with_attachments: bool = True,
        max_results: int = 20,
    ) -> List[EmailMessage]:
        """List messages received since ``since``, newest first."""
        return await asyncio.to_thread(
            self._list_messages_impl, config, since, job_related, with_attachments, max_results
        )

    async def fetch_raw_message(self, config: ConnectionConfig, uid: str) -> bytes:
        return await asyncio.to_thread(self._fetch_raw_impl, config, uid)

    async def fetch_attachment(
        self,
        config: ConnectionConfig,
        message: EmailMessage,
        descriptor: AttachmentDescriptor,
    ) -> DownloadedAttachment:
        """
        Download and decode one attachment.

        Raises:
            ConnectivityError: If the server cannot be reached.
            AttachmentNotFoundError: If the attachment cannot be decoded.
        """
        raw = await self.fetch_raw_message(config, message.uid)
        return extract_attachment(raw, descriptor)
