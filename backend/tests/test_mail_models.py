"""
Unit tests for mailbox models.
"""

import pytest

from conftest import make_account
from intake.models.mail import AttachmentDescriptor, EmailMessage


def _decrypt(payload):
    return f"plain:{payload}"


class TestConnectionConfig:
    def test_gmail_uses_provider_endpoint(self):
        account = make_account(imap_server="mail.ignored.io", imap_port=143)

        config = account.connection_config(_decrypt)

        assert (config.host, config.port) == ("imap.gmail.com", 993)
        assert config.username == "acct-1@brightlabs.io"
        assert config.password == "plain:app-password"
        assert config.account_id == "acct-1"

    def test_outlook_endpoint(self):
        config = make_account(provider="Outlook").connection_config(_decrypt)
        assert config.host == "outlook.office365.com"

    def test_custom_server_and_port(self):
        account = make_account(provider="other", imap_server="mail.brightlabs.io", imap_port=1993)
        config = account.connection_config(_decrypt)
        assert (config.host, config.port) == ("mail.brightlabs.io", 1993)

    def test_custom_server_default_port(self):
        config = make_account(provider="other", imap_server="mail.brightlabs.io").connection_config(_decrypt)
        assert config.port == 993

    def test_missing_server_raises(self):
        with pytest.raises(ValueError, match="no IMAP server"):
            make_account(provider="other").connection_config(_decrypt)

    def test_username_falls_back_to_email(self):
        account = make_account(username=None, email="jobs@brightlabs.io")
        assert account.connection_config(_decrypt).username == "jobs@brightlabs.io"


class TestEligibility:
    @pytest.mark.parametrize("enabled,active,expected", [
        (True, True, True),
        (True, False, False),
        (False, True, False),
    ])
    def test_is_eligible(self, enabled, active, expected):
        assert make_account(automation_enabled=enabled, is_active=active).is_eligible is expected


class TestDescriptors:
    def test_extension(self):
        assert AttachmentDescriptor(attachment_id="a", filename="Jane.Smith.CV.PDF").extension == ".pdf"
        assert AttachmentDescriptor(attachment_id="a", filename="README").extension == ""

    def test_has_attachments(self):
        assert EmailMessage(uid="1").has_attachments is False
