"""
Models for extracted resume text and the validated candidate produced by the
parsing gate.
"""

from typing import Optional, Union

from pydantic import BaseModel, Field


class ExtractedText(BaseModel):
    """Plain text plus the name of the strategy that produced it."""

    text: str
    strategy: str


class WorkHistoryEntry(BaseModel):
    company: str
    position: str
    duration: Optional[str] = None
    technologies: list[str] = []


class SkillCategories(BaseModel):
    technical: list[str] = []
    soft: list[str] = []
    tools: list[str] = []
    languages: list[str] = []
    frameworks: list[str] = []


class ParsedCandidate(BaseModel):
    """
    Language-model output that has passed the validation gate.

    Instances are only constructed by ``resume_parser.parse_resume``; anything
    that fails the gate raises before a ParsedCandidate exists.
    """

    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    skills: list[str]
    experience: str
    # Free text or a structured education entry/list
    education: Union[str, dict, list, None] = None
    certifications: list[str] = []
    languages: list[str] = []
    location: Optional[str] = None
    job_title: Optional[str] = None
    linkedin: Optional[str] = None
    professional_summary: Optional[str] = None
    work_history: list[WorkHistoryEntry] = []
    projects: list[str] = []
    achievements: list[str] = []

    # Derived fields
    experience_years: float = 0
    seniority: str = "Junior"
    education_level: str = "Other"
    skill_categories: SkillCategories = Field(default_factory=SkillCategories)
    quality_score: int = 0
