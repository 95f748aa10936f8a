"""
Shared fixtures for the intake test suite.

InMemoryDatastore stands in for Supabase; FakeLanguageModel returns canned
replies; build_raw_message() produces RFC 822 bytes with attachments.
"""

import json
import os
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

# Mock environment variables before importing app modules
os.environ.setdefault('SUPABASE_URL', 'https://test.supabase.co')
os.environ.setdefault('SUPABASE_SERVICE_KEY', 'test-service-key')
os.environ.setdefault('ANTHROPIC_API_KEY', 'test-anthropic-key')
os.environ.setdefault('EMAIL_ACCOUNT_ENCRYPTION_KEY', 'test-encryption-secret')

import pytest

from intake.models.mail import AttachmentDescriptor, EmailMessage, MailAccount
from intake.services.datastore import Datastore


JANE_SMITH_REPLY = {
    "name": "Jane Smith",
    "email": "jane.smith@fastmail.net",
    "skills": ["Python", "React", "PostgreSQL", "Docker"],
    "experience": "5 years of experience building web applications",
}

RESUME_TEXT = (
    "Jane Smith\n"
    "jane.smith@fastmail.net\n"
    "Software engineer with 5 years of experience building web applications.\n"
    "Skills: Python, React, PostgreSQL, Docker\n"
)


class InMemoryDatastore(Datastore):
    """Dict-backed Datastore that records every write."""

    def __init__(self, accounts=None):
        self.accounts = {account.id: account for account in accounts or []}
        self.applications = {}
        self.create_calls = 0
        self.last_checked = {}
        self.stats_updates = []
        self.activity = []

    async def find_application_by_email(self, email):
        for record in self.applications.values():
            if record.get("email") == email:
                return record
        return None

    async def create_application(self, record):
        self.create_calls += 1
        application_id = f"app-{len(self.applications) + 1}"
        stored = dict(record)
        stored["id"] = application_id
        self.applications[application_id] = stored
        return application_id

    async def list_email_accounts(self, automation_enabled=None):
        accounts = list(self.accounts.values())
        if automation_enabled is not None:
            accounts = [a for a in accounts if a.automation_enabled == automation_enabled]
        return accounts

    async def get_email_account(self, account_id):
        return self.accounts.get(account_id)

    async def update_account_last_checked(self, account_id, timestamp):
        self.last_checked[account_id] = timestamp

    async def increment_account_stats(self, account_id, processed=0, imported=0, last_error=None):
        self.stats_updates.append({
            "account_id": account_id,
            "processed": processed,
            "imported": imported,
            "last_error": last_error,
        })

    async def log_automation_activity(self, entry):
        self.activity.append(entry)


class FakeLanguageModel:
    """Returns ``reply`` (a dict is JSON-encoded) and records each call."""

    def __init__(self, reply=None):
        self.reply = reply if reply is not None else JANE_SMITH_REPLY
        self.calls = []

    async def complete(self, system_prompt, user_prompt, **kwargs):
        self.calls.append({"system": system_prompt, "user": user_prompt, **kwargs})
        if isinstance(self.reply, str):
            return self.reply
        return json.dumps(self.reply)


def build_raw_message(attachments, sender="jane.smith@fastmail.net", subject="Application for Web Developer"):
    """
    Build a multipart/mixed message.

    ``attachments`` is a list of (filename, content_type, bytes) tuples.
    """
    message = MIMEMultipart("mixed")
    message["From"] = f"Jane Smith <{sender}>"
    message["To"] = "careers@brightlabs.io"
    message["Subject"] = subject
    message.attach(MIMEText("Please find my resume attached.", "plain"))
    for filename, content_type, content in attachments:
        maintype, subtype = content_type.split("/", 1)
        part = MIMEApplication(content, _subtype=subtype)
        if maintype != "application":
            part.replace_header("Content-Type", f"{content_type}; name=\"{filename}\"")
        part.add_header("Content-Disposition", "attachment", filename=filename)
        message.attach(part)
    return message.as_bytes()


def make_pdf(text: str) -> bytes:
    """Single-page PDF with ``text`` drawn as real text."""
    import fitz

    document = fitz.open()
    page = document.new_page()
    y = 72
    for line in text.splitlines():
        page.insert_text((72, y), line, fontsize=11)
        y += 16
    content = document.tobytes()
    document.close()
    return content


def make_message(uid="42", sender="jane.smith@fastmail.net", subject="Application for Web Developer", attachments=None):
    if attachments is None:
        attachments = [
            AttachmentDescriptor(
                attachment_id=f"att-{uid}-0",
                filename="Jane_Smith_Resume.pdf",
                content_type="application/pdf",
                size=2048,
                part_path="2",
                encoding="base64",
                disposition="attachment",
            )
        ]
    return EmailMessage(
        uid=uid,
        sender_email=sender,
        sender_name="Jane Smith",
        subject=subject,
        attachments=attachments,
    )


def make_account(account_id="acct-1", automation_enabled=True, is_active=True, **kwargs):
    fields = {
        "email": f"{account_id}@brightlabs.io",
        "provider": "gmail",
        "username": f"{account_id}@brightlabs.io",
        "password": "app-password",
    }
    fields.update(kwargs)
    return MailAccount(
        id=account_id,
        automation_enabled=automation_enabled,
        is_active=is_active,
        **fields,
    )


@pytest.fixture
def datastore():
    return InMemoryDatastore()


@pytest.fixture
def fake_llm():
    return FakeLanguageModel()
