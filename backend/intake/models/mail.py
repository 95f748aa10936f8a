"""
Mailbox-side models: stored accounts, connection parameters and the
transient message/attachment representation used during a check cycle.

EmailMessage and its descriptors only live for the duration of a cycle;
nothing here is persisted except MailAccount, which mirrors a row of the
``email_accounts`` table.
"""

import base64
import datetime
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel

# Well-known IMAP endpoints per provider
PROVIDER_HOSTS = {
    "gmail": ("imap.gmail.com", 993),
    "outlook": ("outlook.office365.com", 993),
}

DEFAULT_IMAP_PORT = 993


class ConnectionConfig(BaseModel):
    """Everything needed to open an IMAP session."""

    host: str
    port: int = DEFAULT_IMAP_PORT
    username: str
    password: str
    use_tls: bool = True
    account_id: Optional[str] = None


class MailAccount(BaseModel):
    """A configured mailbox (row of ``email_accounts``)."""

    id: str
    email: str = ""
    provider: str = "other"
    imap_server: Optional[str] = None
    imap_port: Optional[int] = None
    username: Optional[str] = None
    # Either an encrypted payload {encrypted, iv, authTag} or a plain string
    password: Union[dict, str, None] = None
    automation_enabled: bool = False
    is_active: bool = True
    last_checked: Optional[datetime.datetime] = None
    total_processed: int = 0
    total_imported: int = 0
    last_error: Optional[str] = None
    last_error_at: Optional[datetime.datetime] = None

    @property
    def is_eligible(self) -> bool:
        """Automation-enabled and active."""
        return self.automation_enabled and self.is_active

    def connection_config(self, decrypt: Callable[[Any], str]) -> ConnectionConfig:
        """
        Build the IMAP connection parameters for this account.

        ``decrypt`` turns the stored password payload into plain text.
        Gmail and Outlook accounts always use the provider's endpoint; other
        providers use the stored server/port.
        """
        provider = (self.provider or "other").lower()
        if provider in PROVIDER_HOSTS:
            host, port = PROVIDER_HOSTS[provider]
        else:
            host = self.imap_server or ""
            port = self.imap_port or DEFAULT_IMAP_PORT

        if not host:
            raise ValueError(f"Account {self.id} has no IMAP server configured")

        return ConnectionConfig(
            host=host,
            port=port,
            username=self.username or self.email,
            password=decrypt(self.password),
            account_id=self.id,
        )


class AttachmentDescriptor(BaseModel):
    """Attachment metadata taken from the message's BODYSTRUCTURE."""

    attachment_id: str
    filename: str
    content_type: str = "application/octet-stream"
    size: int = 0
    part_path: str = "1"
    encoding: str = "7bit"
    disposition: Optional[str] = None

    @property
    def extension(self) -> str:
        name = self.filename.lower()
        if "." not in name:
            return ""
        return "." + name.rsplit(".", 1)[1]


class EmailMessage(BaseModel):
    """A listed message: headers plus attachment descriptors, no content."""

    uid: str
    message_id: Optional[str] = None
    sender_email: str = ""
    sender_name: str = ""
    subject: str = ""
    received_at: Optional[datetime.datetime] = None
    attachments: list[AttachmentDescriptor] = []

    @property
    def has_attachments(self) -> bool:
        return len(self.attachments) > 0


class DownloadedAttachment(BaseModel):
    """Decoded attachment content."""

    descriptor: AttachmentDescriptor
    content: bytes
    decoded_by: str = "mime"   # "mime" or "heuristic"

    def as_base64(self) -> str:
        return base64.b64encode(self.content).decode("ascii")
