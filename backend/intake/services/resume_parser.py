"""
Resume parsing and validation gate.

Sends extracted resume text to the language model, parses the JSON reply and
enforces the data-quality contract.  A reply is accepted only when:

  - it is a JSON object (no repair of malformed JSON),
  - the mandatory fields name, skills and experience are present and pass
    their content rules,
  - every optional field that is present is well-formed,
  - at least MIN_POPULATED_FIELDS fields are populated, no placeholder text
    appears and years of experience agree with the description,
  - the weighted quality score reaches QUALITY_THRESHOLD.

Any failure raises MalformedResponseError or QualityGateError.  Nothing is
defaulted or corrected, so a rejected resume never reaches the datastore.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from intake.errors import MalformedResponseError, QualityGateError
from intake.models.candidate import ParsedCandidate, SkillCategories, WorkHistoryEntry

logger = logging.getLogger(__name__)

# Model call configuration
TEMPERATURE = 0.1
MAX_TOKENS = 4096
MAX_RESUME_CHARS = 15000

QUALITY_THRESHOLD = 60
MIN_POPULATED_FIELDS = 4

SYSTEM_PROMPT = """\
You are a resume parsing system. Extract complete, structured information from \
the resume text you are given. Extract only what the resume states; never invent \
values and never use placeholders.

Extract these fields:
- name: full candidate name (first and last)
- email: primary email address
- phone: phone number including country code when present
- linkedIn: full LinkedIn profile URL
- location: "City, State, Country"
- jobTitle: current or most recent job title
- professionalSummary: key professional highlights
- experience: a sentence describing total experience, e.g. "6 years of experience in backend development"
- experienceYears: total years of experience as a number, calculated from employment dates
- skills: every technical and soft skill mentioned anywhere in the resume, without duplicates
- education: "Degree in Field - Institution (Year)"; separate multiple entries with "; "
- certifications: list of professional certifications
- languages: list of spoken languages
- workHistory: list of {"company", "position", "duration", "technologies"}
- projects: list of notable projects
- achievements: list of awards and accomplishments

Rules:
- If a field is not present in the resume, set it to null (lists: []).
- Do not write "not specified", "N/A", "unknown" or similar; use null instead.
- Return ONLY a valid JSON object with the fields above, no explanatory text.
"""

USER_PROMPT = """\
Parse this resume and return the JSON object.

FILENAME: {filename}

RESUME TEXT:
{resume_text}
"""

# ---------------------------------------------------------------------------
# Rule tables
# ---------------------------------------------------------------------------

PLACEHOLDER_NAMES = (
    "unknown",
    "candidate",
    "applicant",
    "not provided",
    "n/a",
    "name",
    "resume",
    "cv",
    "john doe",
    "jane doe",
    "not specified",
)

GENERIC_SKILLS = frozenset({
    "skill",
    "skills",
    "technology",
    "tool",
    "software",
    "programming",
    "coding",
    "development",
    "experience",
    "knowledge",
    "familiar",
    "not specified",
    "various",
    "multiple",
})

EXPERIENCE_PLACEHOLDERS = frozenset({
    "not specified",
    "unknown",
    "n/a",
    "experience",
    "work experience",
    "professional experience",
    "years",
    "not provided",
    "not available",
    "not mentioned",
})

JOB_TITLE_PLACEHOLDERS = frozenset({
    "unknown",
    "n/a",
    "not specified",
    "not provided",
    "job title",
    "title",
    "position",
})

PLACEHOLDER_PATTERNS = (
    re.compile(r"not\s+(available|provided|specified|mentioned)", re.IGNORECASE),
    re.compile(r"unable\s+to\s+(determine|extract|find)", re.IGNORECASE),
    re.compile(r"no\s+(information|data|details)\s+provided", re.IGNORECASE),
    re.compile(r"\[.*\]"),
    re.compile(r"example\.(com|org)", re.IGNORECASE),
    re.compile(r"sample.*data", re.IGNORECASE),
    re.compile(r"placeholder", re.IGNORECASE),
)

# String fields scanned for placeholder text
PLACEHOLDER_SCAN_FIELDS = ("name", "email", "experience", "jobTitle", "professionalSummary")

FIELD_WEIGHTS = {
    "name": 20,
    "email": 15,
    "skills": 20,
    "experience": 15,
    "phone": 10,
    "jobTitle": 10,
    "education": 8,
    "location": 5,
    "linkedIn": 3,
    "workHistory": 8,
    "certifications": 5,
    "languages": 3,
}

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_YEARS_RE = re.compile(r"(\d+(?:\.\d+)?)\s*(?:years?|yrs?)", re.IGNORECASE)

_SKILL_CATEGORY_PATTERNS = (
    ("languages", re.compile(r"javascript|python|java|c\+\+|c#|ruby|php|\bgo\b|rust|typescript|kotlin|swift", re.IGNORECASE)),
    ("frameworks", re.compile(r"react|angular|vue|django|flask|fastapi|spring|express|laravel|rails", re.IGNORECASE)),
    ("tools", re.compile(r"adobe|microsoft|google|aws|azure|docker|kubernetes|jenkins|git\b|jira|figma", re.IGNORECASE)),
    ("technical", re.compile(r"programming|development|software|code|algorithm|database|api|sql", re.IGNORECASE)),
    ("soft", re.compile(r"communication|leadership|teamwork|management|problem.solving|creativity", re.IGNORECASE)),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _is_populated(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    if isinstance(value, (list, dict)):
        return len(value) > 0
    return True


def _is_placeholder_name(name: str) -> bool:
    lower = name.lower()
    for placeholder in PLACEHOLDER_NAMES:
        if " " in placeholder or "/" in placeholder:
            if placeholder in lower:
                return True
        elif re.search(rf"\b{re.escape(placeholder)}\b", lower):
            return True
    return False


def load_response(raw_text: str) -> Dict[str, Any]:
    """Strict JSON parse of the model reply."""
    try:
        data = json.loads(raw_text)
    except (json.JSONDecodeError, TypeError) as exc:
        logger.error("Model returned invalid JSON: %s (content: %.200s)", exc, raw_text)
        raise MalformedResponseError(f"Model returned malformed JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedResponseError(f"Model returned JSON {type(data).__name__}, expected an object")
    return data


# ---------------------------------------------------------------------------
# Mandatory fields
# ---------------------------------------------------------------------------

def check_mandatory_fields_present(data: Dict[str, Any]) -> None:
    """name, skills and experience must exist with the right JSON type."""
    expected = {"name": str, "skills": list, "experience": str}
    for field, expected_type in expected.items():
        value = data.get(field)
        if value is None:
            raise MalformedResponseError(f"Mandatory field missing: {field}")
        if not isinstance(value, expected_type):
            raise MalformedResponseError(
                f"Mandatory field {field} has type {type(value).__name__}, "
                f"expected {expected_type.__name__}"
            )


def validate_name(name: str) -> str:
    trimmed = name.strip()
    if len(trimmed) < 3 or len(trimmed) > 100:
        raise QualityGateError(f"Invalid name {trimmed!r}: must be 3-100 characters")
    if len(trimmed.split()) < 2:
        raise QualityGateError(f"Invalid name {trimmed!r}: first and last name required")
    if _is_placeholder_name(trimmed):
        raise QualityGateError(f"Invalid name {trimmed!r}: placeholder value")
    return trimmed


def validate_skills(skills: List[Any]) -> None:
    """
    Reject the skill list unless every entry is usable as returned.

    Each entry must be text of 2-50 characters and not a generic term.  The
    list needs at least 3 unique skills and a uniqueness ratio of at least 70%.
    Nothing is dropped or corrected here; see unique_skills().
    """
    if any(not isinstance(skill, str) for skill in skills):
        raise QualityGateError("insufficient skills: skills must all be text")

    generic = [s.strip() for s in skills if s.strip().lower() in GENERIC_SKILLS]
    if generic:
        raise QualityGateError(f"insufficient skills: generic entries {', '.join(generic)}")

    bad_length = [s for s in skills if not 2 <= len(s.strip()) <= 50]
    if bad_length:
        raise QualityGateError(
            f"insufficient skills: entries must be 2-50 characters, got {bad_length!r}"
        )

    unique = {s.strip().lower() for s in skills}
    required = max(3, len(skills) * 0.7)
    if len(unique) < required:
        raise QualityGateError(
            f"insufficient skills: {len(unique)} unique of {len(skills)} listed "
            f"(at least {required:g} unique skills required)"
        )


def validate_experience(experience: str) -> str:
    trimmed = experience.strip()
    if len(trimmed) < 5:
        raise QualityGateError(f"Invalid experience {trimmed!r}: description too short")
    if trimmed.lower() in EXPERIENCE_PLACEHOLDERS:
        raise QualityGateError(f"Invalid experience {trimmed!r}: placeholder value")
    return trimmed


# ---------------------------------------------------------------------------
# Optional fields
# ---------------------------------------------------------------------------

def _validate_email(value: Any) -> bool:
    return isinstance(value, str) and bool(_EMAIL_RE.match(value.strip()))


def _validate_phone(value: Any) -> bool:
    if not isinstance(value, str):
        return False
    digits = re.sub(r"\D", "", value)
    return 7 <= len(digits) <= 15


def _validate_experience_years(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return 0 <= value <= 50


def _validate_job_title(value: Any) -> bool:
    return isinstance(value, str) and len(value.strip()) >= 2 and value.strip().lower() not in JOB_TITLE_PLACEHOLDERS


def _validate_work_history(value: Any) -> bool:
    if not isinstance(value, list):
        return False
    for entry in value:
        if not isinstance(entry, dict):
            return False
        if not _is_populated(entry.get("company")) or not _is_populated(entry.get("position")):
            return False
    return True


def _validate_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, str) for item in value)


OPTIONAL_VALIDATORS = {
    "email": _validate_email,
    "phone": _validate_phone,
    "experienceYears": _validate_experience_years,
    "jobTitle": _validate_job_title,
    "workHistory": _validate_work_history,
    "certifications": _validate_string_list,
    "languages": _validate_string_list,
}


def validate_optional_fields(data: Dict[str, Any]) -> None:
    for field, validator in OPTIONAL_VALIDATORS.items():
        value = data.get(field)
        if not _is_populated(value):
            continue
        if not validator(value):
            raise QualityGateError(f"Field {field} contains invalid data: {value!r}")


# ---------------------------------------------------------------------------
# Quality checks and score
# ---------------------------------------------------------------------------

def check_completeness(data: Dict[str, Any]) -> None:
    populated = [key for key, value in data.items() if _is_populated(value)]
    if len(populated) < MIN_POPULATED_FIELDS:
        raise QualityGateError(
            f"Insufficient data: {len(populated)} fields extracted, "
            f"at least {MIN_POPULATED_FIELDS} required"
        )


def check_placeholders(data: Dict[str, Any]) -> None:
    for field in PLACEHOLDER_SCAN_FIELDS:
        value = data.get(field)
        if not isinstance(value, str):
            continue
        for pattern in PLACEHOLDER_PATTERNS:
            if pattern.search(value):
                raise QualityGateError(f"Placeholder text detected in {field}: {value!r}")


def check_consistency(data: Dict[str, Any]) -> None:
    years = data.get("experienceYears")
    experience = data.get("experience")
    if not _validate_experience_years(years) or not isinstance(experience, str):
        return
    text = experience.lower()
    if years > 10 and "junior" in text:
        raise QualityGateError(f"Inconsistent experience: {years} years described as junior")
    if years < 2 and "senior" in text:
        raise QualityGateError(f"Inconsistent experience: {years} years described as senior")


def calculate_quality_score(data: Dict[str, Any]) -> int:
    """Weighted field presence, plus bonuses for skill breadth and work history."""
    score = 0
    for field, weight in FIELD_WEIGHTS.items():
        value = data.get(field)
        if isinstance(value, str):
            if len(value.strip()) > 2:
                score += weight
        elif _is_populated(value):
            score += weight

    skills = data.get("skills")
    if isinstance(skills, list) and len(skills) >= 5:
        score += min(10, len(skills) - 4)

    work_history = data.get("workHistory")
    if isinstance(work_history, list) and work_history:
        score += 5

    return min(100, score)


# ---------------------------------------------------------------------------
# Enhancement (after the gate)
# ---------------------------------------------------------------------------

def unique_skills(skills: List[str]) -> List[str]:
    """Trim and de-duplicate case-insensitively, keeping first occurrences."""
    seen = set()
    unique = []
    for skill in skills:
        cleaned = skill.strip()
        if cleaned.lower() not in seen:
            seen.add(cleaned.lower())
            unique.append(cleaned)
    return unique


def categorize_skills(skills: List[str]) -> SkillCategories:
    categories: Dict[str, List[str]] = {
        "technical": [], "soft": [], "tools": [], "languages": [], "frameworks": [],
    }
    for skill in skills:
        for category, pattern in _SKILL_CATEGORY_PATTERNS:
            if pattern.search(skill):
                categories[category].append(skill)
                break
        else:
            categories["technical"].append(skill)
    return SkillCategories(**categories)


def years_from_text(experience: str) -> float:
    match = _YEARS_RE.search(experience or "")
    return float(match.group(1)) if match else 0.0


def seniority_level(years: float) -> str:
    if years < 2:
        return "Junior"
    if years < 5:
        return "Mid-level"
    if years < 8:
        return "Senior"
    return "Lead/Principal"


def education_level(education: Any) -> str:
    text = json.dumps(education) if not isinstance(education, str) else education
    lower = text.lower()
    if re.search(r"ph\.?d|doctor", lower):
        return "Doctorate"
    if re.search(r"master|\bmba\b|\bm\.?s\.?c?\b|\bm\.?a\.?\b|\bm\.?eng\b", lower):
        return "Masters"
    if re.search(r"bachelor|\bb\.?s\.?c?\b|\bb\.?a\.?\b|\bb\.?eng\b|\bb\.?tech\b", lower):
        return "Bachelors"
    if "associate" in lower:
        return "Associate"
    return "Other"


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item.strip() for item in value if isinstance(item, str) and item.strip()]


def _optional_string(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

def validate_response(data: Dict[str, Any]) -> ParsedCandidate:
    """
    Run the full gate over a decoded model reply.

    Raises:
        MalformedResponseError: Mandatory field absent or of the wrong type.
        QualityGateError: Any content, consistency or score check failed.
    """
    check_mandatory_fields_present(data)
    name = validate_name(data["name"])
    validate_skills(data["skills"])
    experience = validate_experience(data["experience"])

    validate_optional_fields(data)
    check_completeness(data)
    check_placeholders(data)
    check_consistency(data)

    quality_score = calculate_quality_score(data)
    if quality_score < QUALITY_THRESHOLD:
        raise QualityGateError(
            f"Data quality too low: score {quality_score}/100 "
            f"(minimum {QUALITY_THRESHOLD})",
            quality_score=quality_score,
        )

    skills = unique_skills(data["skills"])
    years = data.get("experienceYears")
    if not _validate_experience_years(years):
        years = years_from_text(experience)

    education = data.get("education")

    return ParsedCandidate(
        name=name,
        email=_optional_string(data.get("email")),
        phone=_optional_string(data.get("phone")),
        skills=skills,
        experience=experience,
        education=education if _is_populated(education) else None,
        certifications=_string_list(data.get("certifications")),
        languages=_string_list(data.get("languages")),
        location=_optional_string(data.get("location")),
        job_title=_optional_string(data.get("jobTitle")),
        linkedin=_optional_string(data.get("linkedIn")),
        professional_summary=_optional_string(data.get("professionalSummary")),
        work_history=[
            WorkHistoryEntry(
                company=str(entry["company"]).strip(),
                position=str(entry["position"]).strip(),
                duration=_optional_string(entry.get("duration")),
                technologies=_string_list(entry.get("technologies")),
            )
            for entry in data.get("workHistory") or []
        ],
        projects=_string_list(data.get("projects")),
        achievements=_string_list(data.get("achievements")),
        experience_years=float(years),
        seniority=seniority_level(float(years)),
        education_level=education_level(education) if _is_populated(education) else "Other",
        skill_categories=categorize_skills(skills),
        quality_score=quality_score,
    )


async def parse_resume(resume_text: str, filename: str, llm) -> ParsedCandidate:
    """
    Extract a validated candidate from resume text.

    Args:
        resume_text: Plain text from the extraction chain.
        filename: Original attachment filename (context for the model).
        llm: Object with an async ``complete(system_prompt, user_prompt, ...)``.

    Raises:
        MalformedResponseError / QualityGateError on any gate failure.
    """
    prompt = USER_PROMPT.format(filename=filename, resume_text=resume_text[:MAX_RESUME_CHARS])

    raw_text = await llm.complete(
        SYSTEM_PROMPT,
        prompt,
        temperature=TEMPERATURE,
        max_tokens=MAX_TOKENS,
        json_mode=True,
    )

    candidate = validate_response(load_response(raw_text))
    logger.info(
        "Parsed %s: %d skills, quality score %d",
        filename, len(candidate.skills), candidate.quality_score,
    )
    return candidate
