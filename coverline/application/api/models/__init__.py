"""
API Models Package
==================

Pydantic models for request validation.

ORGANIZATION:
-------------
- cover_letters.py: Cover-letter route bodies and pagination
- admin.py: Admin route bodies and queries
"""

from coverline.application.api.models.admin import AdminAction, AdminActionRequest, MetricsQuery
from coverline.application.api.models.cover_letters import (
    CoverLetterType,
    GenerateCoverLetterRequest,
    ListCoverLettersQuery,
    SaveCoverLetterRequest,
)

__all__ = [
    "AdminAction",
    "AdminActionRequest",
    "MetricsQuery",
    "CoverLetterType",
    "GenerateCoverLetterRequest",
    "ListCoverLettersQuery",
    "SaveCoverLetterRequest",
]
