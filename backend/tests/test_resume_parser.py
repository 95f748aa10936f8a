"""
Unit tests for resume parsing and the validation gate.
The language model is replaced by FakeLanguageModel; no API calls are made.
"""

import pytest

from conftest import JANE_SMITH_REPLY, RESUME_TEXT, FakeLanguageModel
from intake.errors import MalformedResponseError, QualityGateError
from intake.services.resume_parser import (
    MAX_RESUME_CHARS,
    calculate_quality_score,
    categorize_skills,
    education_level,
    load_response,
    parse_resume,
    seniority_level,
    validate_response,
    unique_skills,
    validate_skills,
)


def _reply(**overrides):
    data = dict(JANE_SMITH_REPLY)
    data.update(overrides)
    return data


class TestParseResume:
    """Test the end-to-end parse with a fake model."""

    @pytest.mark.asyncio
    async def test_valid_reply_produces_candidate(self):
        llm = FakeLanguageModel()

        candidate = await parse_resume(RESUME_TEXT, "Jane_Smith_Resume.pdf", llm)

        assert candidate.name == "Jane Smith"
        assert candidate.email == "jane.smith@fastmail.net"
        assert candidate.skills == ["Python", "React", "PostgreSQL", "Docker"]
        assert candidate.quality_score >= 60
        assert candidate.experience_years == 5.0
        assert candidate.seniority == "Senior"

    @pytest.mark.asyncio
    async def test_prompt_carries_filename_and_requests_json(self):
        llm = FakeLanguageModel()

        await parse_resume(RESUME_TEXT, "Jane_Smith_Resume.pdf", llm)

        call = llm.calls[0]
        assert "FILENAME: Jane_Smith_Resume.pdf" in call["user"]
        assert RESUME_TEXT in call["user"]
        assert call["json_mode"] is True
        assert call["temperature"] == 0.1

    @pytest.mark.asyncio
    async def test_long_resume_is_truncated(self):
        llm = FakeLanguageModel()
        long_text = "x" * (MAX_RESUME_CHARS + 5000)

        await parse_resume(long_text, "cv.txt", llm)

        assert "x" * MAX_RESUME_CHARS in llm.calls[0]["user"]
        assert "x" * (MAX_RESUME_CHARS + 1) not in llm.calls[0]["user"]

    @pytest.mark.asyncio
    async def test_malformed_json_is_rejected_not_repaired(self):
        llm = FakeLanguageModel(reply='{"name": "Jane Smith", "skills": ["Python",]')

        with pytest.raises(MalformedResponseError):
            await parse_resume(RESUME_TEXT, "cv.pdf", llm)

    @pytest.mark.asyncio
    async def test_generic_skills_fail_with_insufficient_skills(self):
        llm = FakeLanguageModel(reply=_reply(skills=["skills", "experience", "Python"]))

        with pytest.raises(QualityGateError, match="insufficient skills"):
            await parse_resume(RESUME_TEXT, "cv.pdf", llm)


class TestLoadResponse:
    def test_non_object_json(self):
        with pytest.raises(MalformedResponseError, match="expected an object"):
            load_response('["Jane Smith"]')

    def test_object(self):
        assert load_response('{"name": "Jane Smith"}') == {"name": "Jane Smith"}


class TestMandatoryFields:
    """Test name, skills and experience rules."""

    @pytest.mark.parametrize("field", ["name", "skills", "experience"])
    def test_missing_field_is_malformed(self, field):
        data = _reply()
        del data[field]
        with pytest.raises(MalformedResponseError, match=field):
            validate_response(data)

    def test_wrong_type_is_malformed(self):
        with pytest.raises(MalformedResponseError):
            validate_response(_reply(skills="Python, React"))

    @pytest.mark.parametrize("name", ["Unknown Candidate", "John Doe", "Applicant Name", "N/A Person", "Jane"])
    def test_placeholder_or_single_names_rejected(self, name):
        with pytest.raises(QualityGateError):
            validate_response(_reply(name=name))

    def test_name_containing_placeholder_substring_is_accepted(self):
        """Whole-word matching: "Cvetkova" contains "cv" but is a real surname."""
        candidate = validate_response(_reply(name="Ana Cvetkova"))
        assert candidate.name == "Ana Cvetkova"

    @pytest.mark.parametrize("experience", ["N/A", "years", "abc"])
    def test_placeholder_experience_rejected(self, experience):
        with pytest.raises(QualityGateError):
            validate_response(_reply(experience=experience))


class TestValidateSkills:
    def test_valid_list_passes(self):
        assert validate_skills(["Python", "python", "React", "Docker", "SQL"]) is None

    def test_generic_entry_rejects_whole_list(self):
        """Three real skills do not excuse a generic one."""
        with pytest.raises(QualityGateError, match="insufficient skills: generic entries skill"):
            validate_skills(["Python", "React", "Django", "skill"])

    @pytest.mark.parametrize("skill", ["C", " R ", "x" * 51])
    def test_entry_outside_length_bounds_rejected(self, skill):
        with pytest.raises(QualityGateError, match="2-50 characters"):
            validate_skills(["Python", "React", "Django", skill])

    def test_generic_entry_rejected_through_full_gate(self):
        with pytest.raises(QualityGateError, match="insufficient skills"):
            validate_response(_reply(skills=["Python", "React", "Django", "tool"]))

    def test_uniqueness_ratio_enforced(self):
        """Four unique of ten listed is below 70%."""
        with pytest.raises(QualityGateError, match="insufficient skills"):
            validate_skills(["Python"] * 7 + ["React", "Docker", "SQL"])

    def test_fewer_than_three_rejected(self):
        with pytest.raises(QualityGateError, match="insufficient skills"):
            validate_skills(["Python", "React"])

    def test_non_string_entries_rejected(self):
        with pytest.raises(QualityGateError):
            validate_skills(["Python", {"name": "React"}, "Docker"])


class TestOptionalAndQualityChecks:
    """Test optional fields, placeholders, consistency and the score."""

    def test_invalid_optional_email(self):
        with pytest.raises(QualityGateError, match="email"):
            validate_response(_reply(email="jane at fastmail"))

    def test_placeholder_domain_in_email(self):
        with pytest.raises(QualityGateError, match="Placeholder"):
            validate_response(_reply(email="jane@example.com"))

    def test_bracketed_placeholder_in_summary(self):
        with pytest.raises(QualityGateError, match="Placeholder"):
            validate_response(_reply(professionalSummary="[Insert summary here]"))

    def test_senior_with_one_year_is_inconsistent(self):
        with pytest.raises(QualityGateError, match="Inconsistent"):
            validate_response(_reply(experienceYears=1, experience="Senior engineer building APIs"))

    def test_low_score_rejected_with_score(self):
        """Name, skills and experience alone score 55."""
        data = _reply(email=None, projects=["Open-source scheduling library"])
        with pytest.raises(QualityGateError, match="quality") as exc_info:
            validate_response(data)
        assert exc_info.value.quality_score == 55

    def test_score_bonuses(self):
        data = _reply(
            skills=["Python", "React", "PostgreSQL", "Docker", "AWS", "Kubernetes"],
            workHistory=[{"company": "Bright Labs", "position": "Engineer"}],
        )
        # 70 base + 8 work history + 2 skill breadth + 5 work history bonus
        assert calculate_quality_score(data) == 85

    def test_model_years_preferred_over_text(self):
        candidate = validate_response(_reply(experienceYears=6))
        assert candidate.experience_years == 6.0


class TestEnhancement:
    def test_categorize_skills(self):
        categories = categorize_skills(["Python", "React", "Docker", "Leadership", "Figma", "Excel"])
        assert categories.languages == ["Python"]
        assert categories.frameworks == ["React"]
        assert categories.tools == ["Docker", "Figma"]
        assert categories.soft == ["Leadership"]
        assert categories.technical == ["Excel"]

    @pytest.mark.parametrize("years,level", [(0, "Junior"), (3, "Mid-level"), (5, "Senior"), (12, "Lead/Principal")])
    def test_seniority(self, years, level):
        assert seniority_level(years) == level

    @pytest.mark.parametrize("education,level", [
        ("PhD in Physics - MIT", "Doctorate"),
        ("MBA - Wharton (2019)", "Masters"),
        ([{"degree": "Bachelor of Science", "field": "CS"}], "Bachelors"),
        ("Coding bootcamp", "Other"),
    ])
    def test_education_level(self, education, level):
        assert education_level(education) == level


class TestUniqueSkills:
    def test_duplicates_removed_case_insensitively_after_gate(self):
        assert unique_skills([" Python", "python", "React", "Docker", "SQL"]) == ["Python", "React", "Docker", "SQL"]

    def test_candidate_keeps_every_distinct_skill(self):
        candidate = validate_response(_reply(skills=["Python", "React", "Django", "Go", "python"]))
        assert candidate.skills == ["Python", "React", "Django", "Go"]
