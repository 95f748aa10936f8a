"""
Mail account credential encryption.

Passwords are stored as AES-256-GCM payloads of hex strings:

    {"encrypted": "...", "iv": "...", "authTag": "...", "algorithm": "aes-256-gcm"}

The key comes from ``EMAIL_ACCOUNT_ENCRYPTION_KEY``: a 64-character hex string
is used as-is, anything else is hashed with SHA-256 to 32 bytes.
"""

import hashlib
import logging
import os
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from intake.errors import CredentialError

logger = logging.getLogger(__name__)

ALGORITHM = "aes-256-gcm"
IV_LENGTH = 16
AUTH_TAG_LENGTH = 16


def _encryption_key(key_string: Optional[str] = None) -> bytes:
    if key_string is None:
        key_string = os.getenv("EMAIL_ACCOUNT_ENCRYPTION_KEY", "")
    if not key_string:
        raise CredentialError("EMAIL_ACCOUNT_ENCRYPTION_KEY is not set in environment variables")

    if len(key_string) == 64:
        try:
            return bytes.fromhex(key_string)
        except ValueError:
            pass
    return hashlib.sha256(key_string.encode("utf-8")).digest()


def encrypt_password(plain_text: str, key_string: Optional[str] = None) -> dict:
    """Encrypt a password into the stored payload format."""
    if not plain_text or not isinstance(plain_text, str):
        raise CredentialError("Plain text must be a non-empty string")

    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(_encryption_key(key_string)).encrypt(iv, plain_text.encode("utf-8"), None)
    ciphertext, tag = sealed[:-AUTH_TAG_LENGTH], sealed[-AUTH_TAG_LENGTH:]

    return {
        "encrypted": ciphertext.hex(),
        "iv": iv.hex(),
        "authTag": tag.hex(),
        "algorithm": ALGORITHM,
    }


def decrypt_password(payload: Any, key_string: Optional[str] = None) -> str:
    """
    Return the plain-text password for a stored credential.

    Plain strings are returned unchanged (accounts created before encryption
    was introduced).  Raises CredentialError for anything undecryptable.
    """
    if isinstance(payload, str):
        if not payload:
            raise CredentialError("Stored password is empty")
        return payload

    if not isinstance(payload, dict):
        raise CredentialError("Encrypted data must be an object")

    encrypted = payload.get("encrypted")
    iv = payload.get("iv")
    auth_tag = payload.get("authTag")
    if not encrypted or not iv or not auth_tag:
        raise CredentialError("Invalid encrypted data structure")

    try:
        sealed = bytes.fromhex(encrypted) + bytes.fromhex(auth_tag)
        plain = AESGCM(_encryption_key(key_string)).decrypt(bytes.fromhex(iv), sealed, None)
    except (InvalidTag, ValueError) as exc:
        logger.error("Failed to decrypt stored mail password: %s", type(exc).__name__)
        raise CredentialError("Failed to decrypt data") from exc

    return plain.decode("utf-8")
