"""
Cover Letter Routes
===================

CRUD for saved cover letters plus generation-request validation. Every
route goes through ApiPipeline, so validation, authentication, rate
limiting and metrics happen before and after the handlers below.

CACHING STRATEGY:
-----------------
- A user's FULL list is cached under `cover_letters:<user_id>` and paginated
  after the read, so one invalidation covers every page.
- Single letters are cached under `cover_letter:<id>`; ownership is checked
  after the read, never baked into the key.
- Writes (save, delete) invalidate the affected keys in both tiers.

ROUTE CLASSES:
--------------
- general: list, get
- save: create, delete
- generate: generation validation
"""

import math
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from coverline.application.api.dependencies import CacheDep, PipelineDep, RecorderDep, RepositoryDep
from coverline.application.api.middleware.outcomes import Success
from coverline.application.api.middleware.pipeline import MiddlewareContext, RoutePolicy
from coverline.application.api.models.cover_letters import (
    GenerateCoverLetterRequest,
    ListCoverLettersQuery,
    SaveCoverLetterRequest,
)
from coverline.application.repositories.cover_letters import CoverLetter, CoverLetterRepository
from coverline.core.config.constants import RouteClass
from coverline.core.exceptions import AuthorizationError, ResourceNotFoundError
from coverline.core.logging.logger import get_logger
from coverline.infrastructure.cache.cache_manager import MultiLevelCache
from coverline.infrastructure.monitoring.metrics_recorder import (
    AiGenerationEvent,
    MetricsRecorder,
    UserActivityEvent,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/api/cover-letters", tags=["Cover Letters"])

# ============================================================================
# ROUTE POLICIES
# ============================================================================

LIST_POLICY = RoutePolicy(
    route="/api/cover-letters",
    route_class=RouteClass.GENERAL,
    query_schema=ListCoverLettersQuery,
)
SAVE_POLICY = RoutePolicy(
    route="/api/cover-letters",
    route_class=RouteClass.SAVE,
    body_schema=SaveCoverLetterRequest,
)
GET_POLICY = RoutePolicy(route="/api/cover-letters/{id}", route_class=RouteClass.GENERAL)
DELETE_POLICY = RoutePolicy(route="/api/cover-letters/{id}", route_class=RouteClass.SAVE)
GENERATE_POLICY = RoutePolicy(
    route="/api/cover-letters/generate/validate",
    route_class=RouteClass.GENERATE,
    body_schema=GenerateCoverLetterRequest,
)


# ============================================================================
# SHARED HELPERS
# ============================================================================


async def _load_letter(
    letter_id: str,
    context: MiddlewareContext,
    cache: MultiLevelCache,
    repository: CoverLetterRepository,
) -> CoverLetter:
    """
    Cached single-letter read with the ownership check.

    Raises:
        ResourceNotFoundError: No such letter
        AuthorizationError: Letter belongs to someone else
    """
    user = context.require_user()

    async def fetch():
        started = time.perf_counter()
        letter = await repository.fetch_resource(letter_id)
        context.add_db_time((time.perf_counter() - started) * 1000)
        return letter.to_record() if letter else None

    record, hit = await cache.get_or_compute(MultiLevelCache.cover_letter_key(letter_id), fetch)
    context.mark_cache(hit)

    if record is None:
        raise ResourceNotFoundError("Cover letter not found", details={"id": letter_id})

    letter = CoverLetter.from_record(record)
    if letter.user_id != user.id:
        raise AuthorizationError("You do not have access to this cover letter")
    return letter


def _record_activity(
    recorder: MetricsRecorder,
    context: MiddlewareContext,
    action: str,
    started: float,
    **metadata,
) -> None:
    recorder.record_user_activity(
        UserActivityEvent(
            user_id=context.require_user().id,
            action=action,
            timestamp=context.start_time,
            success=True,
            duration_ms=(time.perf_counter() - started) * 1000,
            metadata=metadata,
        )
    )


# ============================================================================
# ROUTES
# ============================================================================


@router.get("")
async def list_cover_letters(
    request: Request,
    pipeline: PipelineDep,
    cache: CacheDep,
    repository: RepositoryDep,
) -> JSONResponse:
    """
    Paginated list of the caller's cover letters, newest first.

    Query: page (>=1), limit (1-100). Sets X-Cache: HIT|MISS.
    """

    async def handler(request: Request, context: MiddlewareContext) -> Success:
        user = context.require_user()
        query: ListCoverLettersQuery = context.query

        async def fetch():
            started = time.perf_counter()
            letters = await repository.list_for_user(user.id)
            context.add_db_time((time.perf_counter() - started) * 1000)
            return [letter.to_record() for letter in letters]

        records, hit = await cache.get_or_compute(MultiLevelCache.cover_letters_key(user.id), fetch)
        context.mark_cache(hit)

        total = len(records)
        offset = (query.page - 1) * query.limit
        page_records = records[offset : offset + query.limit]

        return Success(
            body={
                "coverLetters": [CoverLetter.from_record(record).to_dict() for record in page_records],
                "pagination": {
                    "page": query.page,
                    "limit": query.limit,
                    "total": total,
                    "totalPages": math.ceil(total / query.limit) if total else 0,
                },
            }
        )

    return await pipeline.handle(request, LIST_POLICY, handler)


@router.post("")
async def save_cover_letter(
    request: Request,
    pipeline: PipelineDep,
    cache: CacheDep,
    repository: RepositoryDep,
    recorder: RecorderDep,
) -> JSONResponse:
    """Save a generated cover letter (201) and invalidate the caller's list."""

    async def handler(request: Request, context: MiddlewareContext) -> Success:
        user = context.require_user()
        body: SaveCoverLetterRequest = context.body
        started = time.perf_counter()

        letter = await repository.create(user.id, body)
        context.add_db_time((time.perf_counter() - started) * 1000)

        await cache.delete(MultiLevelCache.cover_letters_key(user.id))

        _record_activity(
            recorder,
            context,
            "saved_cover_letter",
            started,
            cover_letter_id=letter.id,
            cover_letter_type=letter.cover_letter_type,
            tokens_used=letter.tokens_used,
        )
        recorder.record_ai_generation(
            AiGenerationEvent(
                model=body.model_used,
                tokens_used=body.tokens_used,
                generation_time_ms=body.generation_time * 1000,
                success=True,
                timestamp=context.start_time,
                user_id=user.id,
                user_tier=context.effective_tier.value if context.effective_tier else None,
            )
        )
        logger.info("Cover letter saved", user_id=user.id, cover_letter_id=letter.id)

        return Success(body={"coverLetter": letter.to_dict()}, status_code=201)

    return await pipeline.handle(request, SAVE_POLICY, handler)


@router.post("/generate/validate")
async def validate_generation(
    request: Request,
    pipeline: PipelineDep,
    recorder: RecorderDep,
) -> JSONResponse:
    """
    Validate and rate-limit a generation request.

    Echoes the normalised payload; the text generation call itself lives in
    a separate service.
    """

    async def handler(request: Request, context: MiddlewareContext) -> Success:
        body: GenerateCoverLetterRequest = context.body
        started = time.perf_counter()

        _record_activity(
            recorder,
            context,
            "validated_generation_request",
            started,
            cover_letter_type=body.cover_letter_type.value,
        )

        return Success(
            body={
                "valid": True,
                "request": body.model_dump(mode="json", by_alias=True),
            }
        )

    return await pipeline.handle(request, GENERATE_POLICY, handler)


@router.get("/{letter_id}")
async def get_cover_letter(
    letter_id: str,
    request: Request,
    pipeline: PipelineDep,
    cache: CacheDep,
    repository: RepositoryDep,
) -> JSONResponse:
    """One cover letter. 404 if missing, 403 if owned by another user."""

    async def handler(request: Request, context: MiddlewareContext) -> Success:
        letter = await _load_letter(letter_id, context, cache, repository)
        return Success(body={"coverLetter": letter.to_dict()})

    return await pipeline.handle(request, GET_POLICY, handler)


@router.delete("/{letter_id}")
async def delete_cover_letter(
    letter_id: str,
    request: Request,
    pipeline: PipelineDep,
    cache: CacheDep,
    repository: RepositoryDep,
    recorder: RecorderDep,
) -> JSONResponse:
    """Delete one of the caller's letters and invalidate item and list keys."""

    async def handler(request: Request, context: MiddlewareContext) -> Success:
        user = context.require_user()
        started = time.perf_counter()

        await _load_letter(letter_id, context, cache, repository)

        db_started = time.perf_counter()
        await repository.delete(letter_id)
        context.add_db_time((time.perf_counter() - db_started) * 1000)

        await cache.delete_many(
            [MultiLevelCache.cover_letter_key(letter_id), MultiLevelCache.cover_letters_key(user.id)]
        )

        _record_activity(recorder, context, "deleted_cover_letter", started, cover_letter_id=letter_id)
        logger.info("Cover letter deleted", user_id=user.id, cover_letter_id=letter_id)

        return Success(body={"message": "Cover letter deleted successfully"})

    return await pipeline.handle(request, DELETE_POLICY, handler)
