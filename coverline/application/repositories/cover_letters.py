"""
Cover Letter Repository

The database boundary for cover letters. Route handlers depend on the
CoverLetterRepository protocol only; the in-memory implementation backs
local runs and tests. Every method is async because a real database call
suspends the event loop.
"""

import asyncio
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Protocol

from coverline.application.api.models.cover_letters import SaveCoverLetterRequest
from coverline.core.clock import Clock, get_clock


@dataclass(frozen=True)
class CoverLetter:
    """A saved cover letter, owned by exactly one user."""

    id: str
    user_id: str
    title: str
    content: str
    job_description: str
    user_profile: str
    cover_letter_type: str
    model_used: str
    tokens_used: int
    generation_time: float
    created_at: float

    def to_dict(self) -> dict[str, Any]:
        """camelCase wire representation."""
        return {
            "id": self.id,
            "userId": self.user_id,
            "title": self.title,
            "content": self.content,
            "jobDescription": self.job_description,
            "userProfile": self.user_profile,
            "coverLetterType": self.cover_letter_type,
            "modelUsed": self.model_used,
            "tokensUsed": self.tokens_used,
            "generationTime": self.generation_time,
            "createdAt": datetime.fromtimestamp(self.created_at, tz=timezone.utc).isoformat(),
        }

    def to_record(self) -> dict[str, Any]:
        """Flat snake_case form, as stored in the cache."""
        return asdict(self)

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "CoverLetter":
        return cls(**record)


class CoverLetterRepository(Protocol):
    async def fetch_resource(self, letter_id: str) -> CoverLetter | None: ...

    async def list_for_user(self, user_id: str) -> list[CoverLetter]: ...

    async def create(self, user_id: str, data: SaveCoverLetterRequest) -> CoverLetter: ...

    async def delete(self, letter_id: str) -> bool: ...


class InMemoryCoverLetterRepository:
    """
    Dict-backed repository.

    `latency` (seconds) simulates a database round trip so cache hits are
    measurably faster than misses; `queries` counts calls for tests.
    """

    def __init__(self, clock: Clock | None = None, latency: float = 0.0):
        self._clock = clock or get_clock()
        self._letters: dict[str, CoverLetter] = {}
        self.latency = latency
        self.queries = 0

    async def _round_trip(self) -> None:
        self.queries += 1
        if self.latency > 0:
            await asyncio.sleep(self.latency)

    async def fetch_resource(self, letter_id: str) -> CoverLetter | None:
        await self._round_trip()
        return self._letters.get(letter_id)

    async def list_for_user(self, user_id: str) -> list[CoverLetter]:
        """Newest first."""
        await self._round_trip()
        letters = [letter for letter in self._letters.values() if letter.user_id == user_id]
        return sorted(letters, key=lambda letter: letter.created_at, reverse=True)

    async def create(self, user_id: str, data: SaveCoverLetterRequest) -> CoverLetter:
        await self._round_trip()
        letter = CoverLetter(
            id=uuid.uuid4().hex,
            user_id=user_id,
            title=data.title,
            content=data.content,
            job_description=data.job_description,
            user_profile=data.user_profile,
            cover_letter_type=data.cover_letter_type.value,
            model_used=data.model_used,
            tokens_used=data.tokens_used,
            generation_time=data.generation_time,
            created_at=self._clock.now(),
        )
        self._letters[letter.id] = letter
        return letter

    async def delete(self, letter_id: str) -> bool:
        await self._round_trip()
        return self._letters.pop(letter_id, None) is not None

    def __len__(self) -> int:
        return len(self._letters)
