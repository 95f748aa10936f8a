"""
Deduplicated application import.

An application is created at most once per normalized candidate email.  The
duplicate check runs immediately before the write, so re-processing a message
(a redelivery, or a cycle that overlapped a forced stop) never produces a
second record.  Candidates with the same email are rejected, never merged.
"""

import datetime
import logging
from typing import Iterable, Optional

from pydantic import BaseModel

from intake.errors import DuplicateError, IngestionError
from intake.models.application import StoredFile
from intake.models.candidate import ParsedCandidate
from intake.services.datastore import Datastore
from intake.services.normalizer import build_application, normalize_email

logger = logging.getLogger(__name__)


class ImportOutcome(BaseModel):
    application_id: str
    email: str
    candidate_name: str


class ApplicationService:
    def __init__(self, datastore: Datastore):
        self.datastore = datastore

    async def ensure_not_duplicate(self, email: str) -> None:
        """Raise DuplicateError if an application exists for ``email``."""
        normalized = normalize_email(email)
        if not normalized:
            return
        existing = await self.datastore.find_application_by_email(normalized)
        if existing is not None:
            raise DuplicateError(normalized, existing_id=existing.get("id"))

    async def import_candidate(
        self,
        candidate: ParsedCandidate,
        *,
        email: str,
        resume_text: str,
        primary_file: StoredFile,
        extra_files: Iterable[StoredFile] = (),
        email_received_at: Optional[datetime.datetime] = None,
        notes: Optional[str] = None,
    ) -> ImportOutcome:
        """
        Build and persist the application for a validated candidate.

        Raises:
            DuplicateError: An application already exists for the email.
            IngestionError: No email is available to deduplicate on.
        """
        normalized = normalize_email(email)
        if not normalized:
            raise IngestionError(f"No email address for candidate {candidate.name!r}")

        await self.ensure_not_duplicate(normalized)

        application = build_application(
            candidate,
            email=normalized,
            resume_text=resume_text,
            primary_file=primary_file,
            extra_files=extra_files,
            email_received_at=email_received_at,
            notes=notes,
        )
        application_id = await self.datastore.create_application(application.to_record())
        application.id = application_id

        logger.info("Imported application %s: %s <%s>", application_id, candidate.name, normalized)
        return ImportOutcome(
            application_id=application_id,
            email=normalized,
            candidate_name=candidate.name,
        )
