"""
Error taxonomy for the email ingestion pipeline.

Every failure a message can hit on its way from the mailbox to the
applications table is one of these classes.  The controller catches them at
the message level (and ConnectivityError at the account level) so that one
bad message or mailbox never aborts the rest of a cycle.

    ConnectivityError        mail server unreachable / login rejected
    AttachmentNotFoundError  attachment missing or undecodable in the raw MIME
    ExtractionError          every text-extraction strategy failed
    MalformedResponseError   model returned non-JSON or lacks mandatory fields
    QualityGateError         parsed, but below the data-quality bar
    DuplicateError           an application already exists for this email
    ProcessingTimeoutError   a single message exceeded its time limit
"""

from typing import List, Optional, Tuple


class IngestionError(Exception):
    """Base class for all pipeline errors."""


class ConnectivityError(IngestionError):
    """The mail server could not be reached or rejected the credentials."""

    def __init__(self, message: str, host: Optional[str] = None):
        super().__init__(message)
        self.host = host


class CredentialError(IngestionError):
    """Stored account credentials could not be decrypted."""


class AttachmentNotFoundError(IngestionError):
    """The requested attachment could not be located or decoded."""

    def __init__(self, message: str, filename: Optional[str] = None):
        super().__init__(message)
        self.filename = filename


class ExtractionError(IngestionError):
    """
    Raised when no extraction strategy produced text.

    ``failures`` holds one ``(strategy, reason)`` pair per attempted strategy,
    in the order they were tried.
    """

    def __init__(self, message: str, failures: Optional[List[Tuple[str, str]]] = None):
        self.failures = list(failures or [])
        if self.failures:
            detail = "; ".join(f"{name}: {reason}" for name, reason in self.failures)
            message = f"{message} ({detail})"
        super().__init__(message)


class ValidationGateError(IngestionError):
    """Base class for rejections raised by the resume parsing gate."""


class MalformedResponseError(ValidationGateError):
    """The model response was not JSON or is missing a mandatory field."""


class QualityGateError(ValidationGateError):
    """The parsed resume failed a content or quality-score check."""

    def __init__(self, message: str, quality_score: Optional[int] = None):
        super().__init__(message)
        self.quality_score = quality_score


class DuplicateError(IngestionError):
    """An application already exists for this candidate email."""

    def __init__(self, email: str, existing_id: Optional[str] = None):
        super().__init__(f"Application already exists for {email}")
        self.email = email
        self.existing_id = existing_id


class ProcessingTimeoutError(IngestionError, TimeoutError):
    """A single message took longer than the configured processing timeout."""


class SettingsError(IngestionError, ValueError):
    """An automation setting is outside its allowed range."""
