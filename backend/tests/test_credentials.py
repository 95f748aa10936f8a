"""
Unit tests for mail account credential encryption.
"""

import hashlib
import os
from unittest.mock import patch

import pytest
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from intake.errors import CredentialError
from intake.services.credentials import decrypt_password, encrypt_password

HEX_KEY = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"


class TestEncryptDecrypt:
    """Test the AES-256-GCM payload format."""

    def test_payload_fields_are_hex(self):
        payload = encrypt_password("app-password", key_string="passphrase")

        assert set(payload) == {"encrypted", "iv", "authTag", "algorithm"}
        assert payload["algorithm"] == "aes-256-gcm"
        assert len(bytes.fromhex(payload["iv"])) == 16
        assert len(bytes.fromhex(payload["authTag"])) == 16

    def test_decrypts_with_same_key(self):
        payload = encrypt_password("app-password", key_string=HEX_KEY)
        assert decrypt_password(payload, key_string=HEX_KEY) == "app-password"

    def test_hex_key_used_directly(self):
        """A 64-char hex key is the raw AES key, not a passphrase."""
        iv = os.urandom(16)
        sealed = AESGCM(bytes.fromhex(HEX_KEY)).encrypt(iv, b"secret", None)
        payload = {"encrypted": sealed[:-16].hex(), "iv": iv.hex(), "authTag": sealed[-16:].hex()}

        assert decrypt_password(payload, key_string=HEX_KEY) == "secret"

    def test_passphrase_key_is_sha256_hashed(self):
        iv = os.urandom(16)
        key = hashlib.sha256(b"passphrase").digest()
        sealed = AESGCM(key).encrypt(iv, b"secret", None)
        payload = {"encrypted": sealed[:-16].hex(), "iv": iv.hex(), "authTag": sealed[-16:].hex()}

        assert decrypt_password(payload, key_string="passphrase") == "secret"

    def test_wrong_key_fails(self):
        payload = encrypt_password("app-password", key_string="key-one")
        with pytest.raises(CredentialError, match="Failed to decrypt"):
            decrypt_password(payload, key_string="key-two")

    def test_tampered_tag_fails(self):
        payload = encrypt_password("app-password", key_string="key-one")
        payload["authTag"] = "00" * 16
        with pytest.raises(CredentialError):
            decrypt_password(payload, key_string="key-one")

    def test_key_read_from_environment(self):
        with patch.dict(os.environ, {"EMAIL_ACCOUNT_ENCRYPTION_KEY": "env-secret"}):
            payload = encrypt_password("app-password")
            assert decrypt_password(payload) == "app-password"

    def test_missing_key_raises(self):
        with patch.dict(os.environ, {"EMAIL_ACCOUNT_ENCRYPTION_KEY": ""}):
            with pytest.raises(CredentialError, match="not set"):
                encrypt_password("app-password")


class TestStoredFormats:
    """Test legacy and malformed stored values."""

    def test_plain_string_passes_through(self):
        assert decrypt_password("legacy-plain-password") == "legacy-plain-password"

    @pytest.mark.parametrize("payload", ["", None, 42, {"encrypted": "ab"}])
    def test_invalid_payloads_raise(self, payload):
        with pytest.raises(CredentialError):
            decrypt_password(payload, key_string="k")

    def test_empty_plain_text_rejected(self):
        with pytest.raises(CredentialError):
            encrypt_password("", key_string="k")
