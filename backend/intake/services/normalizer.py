"""
Normalization of validated candidates into application records.

build_application() starts from a NormalizedApplication with every field at
its documented default and overwrites what the email and the parsed resume
provide.  Several values are mirrored under a legacy name
(name/candidateName, email/parsedResume.email,
resumeFileName/resume.fileName, ...).

Video attachments are recognised by extension and classified as an
"introduction" or a "resume" video by filename keywords; they populate the
video fields instead of the document-resume fields.
"""

import datetime
import json
import logging
from typing import Any, Iterable, Optional

from intake.models.application import (
    HistoryEntry,
    Location,
    NormalizedApplication,
    ResumeDocument,
    StoredFile,
    VideoFile,
)
from intake.models.candidate import ParsedCandidate

logger = logging.getLogger(__name__)

SOURCE = "email"
DEFAULT_IMPORT_METHOD = "automated_parser"
SUMMARY_CHARS = 500

VIDEO_MIME_TYPES = {
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".wmv": "video/x-ms-wmv",
    ".flv": "video/x-flv",
    ".webm": "video/webm",
    ".mkv": "video/x-matroska",
    ".m4v": "video/x-m4v",
    ".3gp": "video/3gpp",
    ".ogv": "video/ogg",
}

VIDEO_EXTENSIONS = tuple(VIDEO_MIME_TYPES)

# Filename keywords marking a video introduction (including recording tools)
INTRODUCTION_KEYWORDS = ("intro", "introduction", "hello", "greet", "loom", "zoom", "recording")


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def normalize_email(value: Optional[str]) -> str:
    """
    Canonical form used for duplicate detection: trimmed and lower-cased.

    Examples:
        "  Jane.Smith@Fastmail.NET " -> "jane.smith@fastmail.net"
        None                         -> ""
    """
    if not value or not isinstance(value, str):
        return ""
    return value.strip().lower()


def is_video_file(filename: Optional[str]) -> bool:
    if not filename:
        return False
    return filename.lower().endswith(VIDEO_EXTENSIONS)


def categorize_video_file(filename: Optional[str]) -> str:
    """
    Return "introduction" or "resume" for a video filename.

    Examples:
        "Loom_recording_intro.mp4" -> "introduction"
        "hello_from_maria.mov"     -> "introduction"
        "video_cv.mp4"             -> "resume"
    """
    if not filename:
        return "resume"
    name = filename.lower()
    if any(keyword in name for keyword in INTRODUCTION_KEYWORDS):
        return "introduction"
    return "resume"


def video_mime_type(filename: Optional[str]) -> str:
    if not filename or "." not in filename:
        return ""
    ext = filename[filename.rfind("."):].lower()
    return VIDEO_MIME_TYPES.get(ext, "video/mp4")


def _education_entry(edu: dict) -> str:
    degree = edu.get("degree") or edu.get("qualification") or ""
    school = edu.get("institution") or edu.get("school") or edu.get("university") or ""
    year = edu.get("year") or edu.get("graduationYear") or edu.get("endYear") or ""
    field = edu.get("field") or edu.get("major") or edu.get("fieldOfStudy") or ""

    text = ""
    if degree:
        text = f"{degree} in {field}" if field else str(degree)
    elif field:
        text = str(field)
    if school:
        text = f"{text} - {school}" if text else str(school)
    if year:
        text += f" ({year})"
    return text or json.dumps(edu)


def format_education(education: Any) -> str:
    """
    Render education as text.

    Examples:
        {"degree": "BS", "field": "Computer Science", "institution": "UT Austin", "year": 2016}
            -> "BS in Computer Science - UT Austin (2016)"
        [{"degree": "MBA", "school": "Wharton"}, "AWS bootcamp"]
            -> "MBA - Wharton\\nAWS bootcamp"
        None -> ""
    """
    if not education:
        return ""
    if isinstance(education, str):
        return education.strip()
    if isinstance(education, dict):
        return _education_entry(education)
    if isinstance(education, list):
        parts = []
        for edu in education:
            if isinstance(edu, dict):
                parts.append(_education_entry(edu))
            elif edu:
                parts.append(str(edu))
        return "\n".join(p for p in parts if p)
    return str(education)


def parse_location(value: Optional[str]) -> Location:
    """
    Split "City, State, Country" into a Location.

    Examples:
        "Austin, TX, USA" -> city="Austin", state="TX", country="USA"
        "Berlin, Germany" -> city="Berlin", state="Germany"
        "Remote"          -> city="Remote"
    """
    if not value or not isinstance(value, str):
        return Location()
    parts = [p.strip() for p in value.split(",") if p.strip()]
    if not parts:
        return Location()
    if len(parts) == 1:
        return Location(city=parts[0])
    if len(parts) == 2:
        return Location(city=parts[0], state=parts[1])
    return Location(city=parts[0], state=parts[1], country=parts[-1])


def _iso(value: Optional[datetime.datetime]) -> str:
    if value is None:
        return ""
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value.isoformat()


# ---------------------------------------------------------------------------
# Video handling
# ---------------------------------------------------------------------------

def _apply_video(app: NormalizedApplication, file: StoredFile, now: str, primary: bool) -> None:
    video = VideoFile(
        file_name=file.filename,
        file_url=file.url,
        file_size=file.size,
        file_type=video_mime_type(file.filename),
        uploaded_at=now,
    )

    if categorize_video_file(file.filename) == "introduction":
        app.has_video_introduction = True
        app.video_introduction = video
    else:
        app.has_video_resume = True
        app.video_resume = video
        app.video_resume_file_name = file.filename
        app.video_resume_url = file.url
        app.video_resume_file_size = file.size
        app.video_resume_file_type = video.file_type

    app.has_resume_attachment = True
    if primary:
        # The video replaces the document resume
        app.has_resume = False
        app.resume_file_name = ""


# ---------------------------------------------------------------------------
# Record builder
# ---------------------------------------------------------------------------

def build_application(
    candidate: ParsedCandidate,
    *,
    email: str,
    resume_text: str,
    primary_file: StoredFile,
    extra_files: Iterable[StoredFile] = (),
    email_received_at: Optional[datetime.datetime] = None,
    import_method: str = DEFAULT_IMPORT_METHOD,
    notes: Optional[str] = None,
    now: Optional[datetime.datetime] = None,
) -> NormalizedApplication:
    """
    Build the complete application record for a validated candidate.

    Args:
        candidate: Output of the parsing gate.
        email: Candidate email (parsed, or the sender address when the resume
            has none).  Stored normalized.
        resume_text: Full extracted resume text.
        primary_file: The attachment the candidate was parsed from.
        extra_files: Further uploaded attachments (video introductions etc.).

    Returns:
        NormalizedApplication with ``id`` still empty; the datastore assigns it.
    """
    timestamp = _iso(now or datetime.datetime.now(datetime.timezone.utc))
    normalized_email = normalize_email(email)
    education_text = format_education(candidate.education)
    education = [education_text] if education_text else []
    experience = [candidate.experience] if candidate.experience else []
    first_name, _, last_name = candidate.name.partition(" ")

    app = NormalizedApplication()

    # Candidate details (mirrored into parsedResume)
    app.name = candidate.name
    app.candidate_name = candidate.name
    app.first_name = first_name
    app.last_name = last_name.strip()
    app.email = normalized_email
    app.phone = candidate.phone or ""
    app.skills = list(candidate.skills)
    app.experience = experience
    app.education = education
    app.certifications = list(candidate.certifications)
    app.languages = list(candidate.languages)
    app.job_title = candidate.job_title or ""
    app.linked_in = candidate.linkedin
    app.location = parse_location(candidate.location)
    app.resume_text = resume_text

    app.parsed_resume.name = candidate.name
    app.parsed_resume.email = normalized_email
    app.parsed_resume.phone = candidate.phone or ""
    app.parsed_resume.skills = list(candidate.skills)
    app.parsed_resume.experience = "; ".join(experience)
    app.parsed_resume.education = list(education)
    app.parsed_resume.languages = list(candidate.languages)
    app.parsed_resume.certifications = list(candidate.certifications)
    app.parsed_resume.location = candidate.location or ""
    app.parsed_resume.summary = resume_text[:SUMMARY_CHARS]
    app.parsed_resume_data = candidate.model_dump(mode="json")

    # Workflow
    app.source = SOURCE
    app.import_method = import_method or DEFAULT_IMPORT_METHOD
    app.status = "pending"
    app.review_status = "unreviewed"
    app.stage = "new"
    app.category = "General"

    # Document resume
    if is_video_file(primary_file.filename):
        _apply_video(app, primary_file, timestamp, primary=True)
    else:
        app.has_resume = True
        app.has_resume_attachment = True
        app.original_filename = primary_file.filename
        app.resume_file_name = primary_file.filename
        app.file_size = primary_file.size
        app.file_type = primary_file.content_type
        app.resume_file_url = primary_file.url
        app.resume_url = primary_file.url
        app.resume = ResumeDocument(
            file_type=primary_file.content_type,
            text_extract=resume_text,
            file_name=primary_file.filename,
            file_size=primary_file.size,
            file_url=primary_file.url,
        )

    for extra in extra_files:
        if is_video_file(extra.filename):
            _apply_video(app, extra, timestamp, primary=False)
        else:
            logger.debug("build_application: ignoring non-video extra file %r", extra.filename)

    # Audit
    app.created_at = timestamp
    app.updated_at = timestamp
    app.import_date = timestamp
    app.email_received_at = _iso(email_received_at) or timestamp
    note = notes or "Imported automatically from email"
    app.history = [HistoryEntry(date=timestamp, note=note)]
    if notes:
        app.notes = notes

    return app
