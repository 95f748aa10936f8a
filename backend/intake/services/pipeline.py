"""
Per-message ingestion pipeline.

process_message() takes one listed email from sender check to stored
application:

    1. Skip senders that already have an application
    2. Pick the resume attachment
    3. Download the raw message and decode the attachment(s)
    4. Extract text
    5. Parse and validate with the language model
    6. Upload the resume (and any video) to storage
    7. Deduplicate on the candidate email and write the record

Every failure surfaces as an IngestionError subclass; the caller decides
whether to log and continue.
"""

import logging
from typing import List, Optional

from intake.errors import AttachmentNotFoundError, ExtractionError
from intake.models.application import StoredFile
from intake.models.mail import ConnectionConfig, DownloadedAttachment, EmailMessage
from intake.services.applications import ApplicationService, ImportOutcome
from intake.services.datastore import Datastore
from intake.services.job_filters import resume_attachments
from intake.services.mime_decoder import extract_attachment
from intake.services.normalizer import is_video_file
from intake.services.resume_parser import parse_resume
from intake.services.text_extraction import extract_text, file_extension

logger = logging.getLogger(__name__)

RESUME_FOLDER = "resumes"
VIDEO_FOLDER = "videos"


class EmailIngestionPipeline:
    """Turns one job-application email into at most one stored application."""

    def __init__(self, transport, llm, datastore: Datastore, storage=None):
        self.transport = transport
        self.llm = llm
        self.storage = storage
        self.applications = ApplicationService(datastore)

    async def _store(self, attachment: DownloadedAttachment, folder: str) -> StoredFile:
        descriptor = attachment.descriptor
        url = ""
        if self.storage is not None:
            try:
                url = await self.storage.upload(
                    attachment.content, descriptor.filename, descriptor.content_type, folder
                )
            except Exception as exc:
                # The record is still created; the file can be re-attached later
                logger.error("Failed to upload %s: %s", descriptor.filename, exc)
        return StoredFile(
            filename=descriptor.filename,
            content_type=descriptor.content_type,
            size=len(attachment.content),
            url=url,
        )

    async def _store_videos(self, raw: bytes, message: EmailMessage) -> List[StoredFile]:
        stored = []
        for descriptor in message.attachments:
            if not is_video_file(descriptor.filename):
                continue
            try:
                video = extract_attachment(raw, descriptor)
            except AttachmentNotFoundError as exc:
                logger.warning("Skipping video attachment: %s", exc)
                continue
            stored.append(await self._store(video, VIDEO_FOLDER))
        return stored

    async def process_message(
        self,
        config: ConnectionConfig,
        message: EmailMessage,
        account_id: Optional[str] = None,
    ) -> ImportOutcome:
        """
        Process one message end to end.

        Raises:
            DuplicateError: Sender or candidate already has an application.
            ExtractionError: No usable resume attachment or no text extracted.
            AttachmentNotFoundError: The attachment could not be decoded.
            MalformedResponseError / QualityGateError: Rejected by the gate.
            ConnectivityError: The mail server could not be reached.
        """
        logger.info(
            "[account %s] Processing message %s from %s: %r",
            account_id, message.uid, message.sender_email, message.subject,
        )

        # Step 1: sender already known
        await self.applications.ensure_not_duplicate(message.sender_email)

        # Step 2: resume attachment
        candidates = resume_attachments(message.attachments)
        if not candidates:
            raise ExtractionError(f"Message {message.uid} has no resume attachment")
        descriptor = candidates[0]

        # Step 3: download and decode
        raw = await self.transport.fetch_raw_message(config, message.uid)
        resume_file = extract_attachment(raw, descriptor)

        # Step 4: text
        extracted = extract_text(resume_file.content, file_extension(descriptor.filename))

        # Step 5: language model + validation gate
        candidate = await parse_resume(extracted.text, descriptor.filename, self.llm)

        # Step 6: storage
        email = candidate.email or message.sender_email
        await self.applications.ensure_not_duplicate(email)
        primary = await self._store(resume_file, RESUME_FOLDER)
        videos = await self._store_videos(raw, message)

        # Step 7: write
        return await self.applications.import_candidate(
            candidate,
            email=email,
            resume_text=extracted.text,
            primary_file=primary,
            extra_files=videos,
            email_received_at=message.received_at,
            notes=f"Imported automatically from email: {message.subject}" if message.subject else None,
        )
