"""
The durable application record.

NormalizedApplication carries the complete field set shared with the rest of
the applicant-tracking product.  Every field has an explicit default so a
freshly built record is always complete; absence of a field never carries
meaning.  Records are serialized with camelCase keys (``to_record``), the
naming the frontend and existing stored applications use.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Location(_CamelModel):
    state: str = ""
    city: str = ""
    address: Optional[str] = None
    country: str = ""


class AIInsights(_CamelModel):
    ai_version: Optional[str] = None
    reprocess_reason: Optional[str] = None
    ai_score: Optional[float] = None
    ai_processed_at: Optional[str] = None


class VideoFile(_CamelModel):
    file_name: str = ""
    file_url: str = Field(default="", alias="fileURL")
    file_size: int = 0
    file_type: str = ""
    duration: int = 0
    thumbnail_url: str = Field(default="", alias="thumbnailURL")
    uploaded_at: Optional[str] = None
    processed_at: Optional[str] = None


class ParsedResumeSection(_CamelModel):
    experience: str = ""
    phone: str = ""
    skills: list[str] = []
    email: str = ""
    languages: list[str] = []
    summary: str = ""
    education: list[Any] = []
    location: str = ""
    certifications: list[str] = []
    name: str = ""


class ResumeScore(_CamelModel):
    feedback: str = ""
    skill_match: list[str] = []
    final_score: float = 0


class ResumeDocument(_CamelModel):
    file_type: str = ""
    ai_feedback: Optional[str] = None
    text_extract: str = ""
    file_name: str = ""
    file_size: int = 0
    file_url: str = Field(default="", alias="fileURL")
    score: ResumeScore = Field(default_factory=ResumeScore)


class ResetInfo(_CamelModel):
    reason: str = ""
    reset_version: str = ""
    reset_at: Optional[str] = None


class MigrationInfo(_CamelModel):
    migrated_from: str = ""
    original_id: str = ""
    migration_version: str = ""
    migrated_at: Optional[str] = None


class HistoryEntry(_CamelModel):
    date: str
    note: str


class StoredFile(BaseModel):
    """An attachment that has been uploaded to storage."""

    filename: str
    content_type: str = ""
    size: int = 0
    url: str = ""


class NormalizedApplication(_CamelModel):
    """Fixed-shape application record with documented defaults."""

    # ------------------------------------------------------------------
    # Identity & assignment
    # ------------------------------------------------------------------
    id: str = ""
    assigned_by: str = ""
    assigned_to: str = ""
    assignment_date: Optional[str] = None
    assigned_at: Optional[str] = None
    categories: list[str] = []
    company_name: str = ""
    job_id: str = ""
    job_title: str = ""
    applied_position: str = ""
    candidate_id: str = ""

    # ------------------------------------------------------------------
    # Candidate details
    # ------------------------------------------------------------------
    name: str = ""
    candidate_name: str = ""
    first_name: str = ""
    last_name: str = ""
    email: str = ""
    email_verified: bool = False
    phone: str = ""
    phone_verified: bool = False
    location: Location = Field(default_factory=Location)
    skills: list[str] = []
    experience: list[str] = []
    education: list[Any] = []
    certifications: list[str] = []
    languages: list[str] = []
    linked_in: Optional[str] = None
    portfolio_url: Optional[str] = Field(default=None, alias="portfolioURL")
    date_of_birth: str = ""
    gender: str = ""
    nationality: str = ""
    expected_salary: str = ""
    available_start_date: str = ""

    # ------------------------------------------------------------------
    # Workflow & status
    # ------------------------------------------------------------------
    source: str = "email"
    source_details: str = ""
    application_source: str = ""
    status: str = "pending"
    stage: str = "new"
    stage_id: str = ""
    stage_name: str = ""
    stage_color: str = ""
    category: str = "General"
    workflow_stage: str = ""
    workflow_history: list[Any] = []
    review_status: str = ""
    review_notes: Optional[str] = None
    reviewed_at: Optional[str] = None
    reviewed_by: Optional[str] = None
    reviewed_by_id: str = ""
    rejection_reason: str = ""
    referred_by: str = ""
    is_active: bool = True
    is_archived: bool = False
    is_flagged: bool = False
    tags: list[str] = []
    notes: str = ""
    internal_notes: str = ""
    feedback: str = ""
    custom_fields: dict = {}

    # ------------------------------------------------------------------
    # Communication, interviews, offers
    # ------------------------------------------------------------------
    communications: list[Any] = []
    last_communication: Optional[str] = None
    interviews: list[Any] = []
    interview_history: list[Any] = []
    offers: list[Any] = []
    current_offer: Optional[dict] = None

    # ------------------------------------------------------------------
    # Scoring placeholders
    # ------------------------------------------------------------------
    ai_insights: AIInsights = Field(default_factory=AIInsights)
    ai_score: float = 0
    overall_score: float = 0
    technical_score: float = 0
    communication_score: float = 0
    cultural_score: float = 0
    interview_score: float = 0
    rating: float = 0
    scores: dict = {}
    resume_score: ResumeScore = Field(default_factory=ResumeScore)

    # ------------------------------------------------------------------
    # Document resume
    # ------------------------------------------------------------------
    has_resume: bool = False
    has_resume_attachment: bool = False
    resume_file_name: str = ""
    resume_file_url: str = Field(default="", alias="resumeFileURL")
    resume_url: str = ""
    original_filename: str = ""
    file_size: int = 0
    file_type: str = ""
    resume_text: str = ""
    resume: ResumeDocument = Field(default_factory=ResumeDocument)
    parsed_resume: ParsedResumeSection = Field(default_factory=ParsedResumeSection)
    parsed_resume_data: dict = {}

    # ------------------------------------------------------------------
    # Video resume / introduction
    # ------------------------------------------------------------------
    has_video_resume: bool = False
    has_video_introduction: bool = False
    video_resume: VideoFile = Field(default_factory=VideoFile)
    video_introduction: VideoFile = Field(default_factory=VideoFile)
    video_resume_file_name: str = ""
    video_resume_url: str = Field(default="", alias="videoResumeURL")
    video_resume_file_size: int = 0
    video_resume_file_type: str = ""

    # ------------------------------------------------------------------
    # Import & audit metadata
    # ------------------------------------------------------------------
    import_method: str = ""
    import_date: str = ""
    email_received_at: str = ""
    submitted_at: str = ""
    converted_at: str = ""
    created_at: str = ""
    updated_at: Optional[str] = None
    history: list[HistoryEntry] = []
    marketing_consent: bool = False
    privacy_consent: bool = False

    # Reprocessing / maintenance bookkeeping
    last_reprocessed: Optional[str] = None
    reprocessed_with: str = ""
    reprocessed_reason: str = ""
    ai_reprocess_reason: str = ""
    last_ai_reprocess: Optional[str] = Field(default=None, alias="lastAIReprocess")
    last_name_fix: str = ""
    name_fix_reason: str = ""
    name_fixed_by: str = ""
    last_quick_fix: Optional[str] = None
    quick_fix_reason: str = ""
    reset_info: ResetInfo = Field(default_factory=ResetInfo)
    migration_info: MigrationInfo = Field(default_factory=MigrationInfo)

    def to_record(self) -> dict:
        """Serialize with camelCase keys for storage."""
        return self.model_dump(by_alias=True, mode="json")
