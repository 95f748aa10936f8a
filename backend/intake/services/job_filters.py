"""
Heuristics for spotting job-application emails.

A message is a likely application when its subject looks job related and it
carries at least one resume-type attachment.
"""

import re
from typing import Iterable

from intake.models.mail import AttachmentDescriptor, EmailMessage

RESUME_EXTENSIONS = (".pdf", ".doc", ".docx", ".txt")

_JOB_CODE_RE = re.compile(r"job\s*\[\w+\]", re.IGNORECASE)

# "Maria Lopez - Virtual Assistant", "Resume – Graphic Designer"
_NAME_WITH_TITLE_RE = re.compile(
    r"\w+\s*[-–]\s*(virtual|medical|graphic|admin|data|customer|social|content|web|healthcare)",
    re.IGNORECASE,
)

JOB_KEYWORDS = (
    "job",
    "candidate",
    "resume",
    "cv",
    "application",
    "apply",
    "position",
    "role",
    "hire",
    "opportunity",
    "employment",
    "career",
    "vacancy",
    "opening",
    "work",
    "interested",
    "applicant",
)

JOB_TITLES = (
    "virtual assistant",
    "graphic designer",
    "graphics designer",
    "virtual receptionist",
    "medical receptionist",
    "virtual coordinator",
    "administrative assistant",
    "admin assistant",
    "data entry",
    "customer service",
    "social media",
    "content writer",
    "web developer",
    "developer",
    "programmer",
    "engineer",
    "designer",
    "marketer",
    "healthcare",
    "medical",
    "nurse",
    "secretary",
    "receptionist",
    "coordinator",
    "specialist",
    "manager",
    "analyst",
    "consultant",
    "freelancer",
    "intern",
    "remote work",
    "telecommute",
    "part time",
    "full time",
)


def is_job_related_subject(subject: str) -> bool:
    """Return True if the subject line suggests a job application."""
    if not subject:
        return False

    lower = subject.lower()

    if _JOB_CODE_RE.search(lower):
        return True
    if any(keyword in lower for keyword in JOB_KEYWORDS):
        return True
    if any(title in lower for title in JOB_TITLES):
        return True
    return bool(_NAME_WITH_TITLE_RE.search(subject))


def is_resume_attachment(attachment: AttachmentDescriptor) -> bool:
    return attachment.filename.lower().endswith(RESUME_EXTENSIONS)


def resume_attachments(attachments: Iterable[AttachmentDescriptor]) -> list:
    return [att for att in attachments if is_resume_attachment(att)]


def is_likely_job_application(message: EmailMessage) -> bool:
    """Job-related subject plus at least one resume attachment."""
    if not is_job_related_subject(message.subject):
        return False
    if not message.has_attachments:
        return False
    return any(is_resume_attachment(att) for att in message.attachments)
