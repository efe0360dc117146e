"""
Repositories - the database and session-store boundary.
"""

from coverline.application.repositories.cover_letters import (
    CoverLetter,
    CoverLetterRepository,
    InMemoryCoverLetterRepository,
)
from coverline.application.repositories.sessions import InMemorySessionStore

__all__ = [
    "CoverLetter",
    "CoverLetterRepository",
    "InMemoryCoverLetterRepository",
    "InMemorySessionStore",
]
