"""
Cover Letter API Models
=======================

Pydantic models for the cover-letter routes. The wire format is camelCase
(`jobDescription`); Python code uses snake_case via field aliases, and
`populate_by_name` lets tests build models with either spelling.

This module defines:
- CoverLetterType: the four supported letter styles
- GenerateCoverLetterRequest: body of POST /api/cover-letters/generate/validate
- SaveCoverLetterRequest: body of POST /api/cover-letters
- ListCoverLettersQuery: pagination for GET /api/cover-letters
"""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CoverLetterType(str, Enum):
    """Letter style requested from the generator."""

    PROFESSIONAL = "professional"
    CREATIVE = "creative"
    TECHNICAL = "technical"
    EXECUTIVE = "executive"


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True, extra="ignore")


# ============================================================================
# REQUEST MODELS
# ============================================================================


class GenerateCoverLetterRequest(_CamelModel):
    """
    Generation request.

    Length bounds keep prompts meaningful (a job description under 50
    characters produces generic letters) and cap token spend.
    """

    job_description: str = Field(..., alias="jobDescription", min_length=50, max_length=10000)
    user_profile: str = Field(..., alias="userProfile", min_length=100, max_length=5000)
    cover_letter_type: CoverLetterType = Field(
        default=CoverLetterType.PROFESSIONAL, alias="coverLetterType"
    )


class SaveCoverLetterRequest(_CamelModel):
    """A generated letter the user wants to keep."""

    title: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=100, max_length=10000)
    job_description: str = Field(..., alias="jobDescription", min_length=1, max_length=10000)
    user_profile: str = Field(..., alias="userProfile", min_length=1, max_length=5000)
    cover_letter_type: CoverLetterType = Field(..., alias="coverLetterType")
    model_used: str = Field(..., alias="modelUsed", min_length=1, max_length=100)
    tokens_used: int = Field(..., alias="tokensUsed", ge=0)
    generation_time: float = Field(..., alias="generationTime", ge=0, description="Seconds the model took")

    model_config = ConfigDict(
        populate_by_name=True,
        str_strip_whitespace=True,
        extra="ignore",
        protected_namespaces=(),
    )


class ListCoverLettersQuery(_CamelModel):
    """Pagination parameters (query string values arrive as strings)."""

    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=100)
