"""
Unit Tests for ApiPipeline

Drives the pipeline directly with Starlette requests and plain handler
functions. Every test checks the response AND the single metrics sample
the request produced.
"""

from datetime import datetime, timezone

import orjson
import pytest

from coverline.application.api.middleware.authentication import AuthenticatedUser
from coverline.application.api.middleware.outcomes import Success
from coverline.application.api.middleware.pipeline import ApiPipeline, MiddlewareContext, RoutePolicy
from coverline.application.api.models import GenerateCoverLetterRequest
from coverline.core.config.constants import RejectedStage, RouteClass, UserTier
from coverline.core.exceptions import AuthorizationError, ResourceNotFoundError
from coverline.core.logging.logger import get_request_id
from tests.test_fixtures import RequestFactory, make_request

GENERATE = RoutePolicy(
    route="/api/test/generate",
    route_class=RouteClass.GENERATE,
    body_schema=GenerateCoverLetterRequest,
)
SAVE = RoutePolicy(route="/api/test/save", route_class=RouteClass.SAVE)
PUBLIC = RoutePolicy(route="/api/test/public", require_auth=False)


class SpyHandler:
    """Records whether it ran; returns a fixed Success."""

    def __init__(self, result=None):
        self.calls: list[MiddlewareContext] = []
        self.result = result if result is not None else Success(body={"ok": True})

    async def __call__(self, request, context):
        self.calls.append(context)
        return self.result


class StaticAuthenticator:
    def __init__(self, user):
        self.user = user

    async def resolve_identity(self, request):
        return self.user


class BrokenAuthenticator:
    async def resolve_identity(self, request):
        raise ConnectionError("session store unreachable")


def body_of(response) -> dict:
    return orjson.loads(response.body)


def user_request(user_id="u1", tier="free", **kwargs):
    headers = {**RequestFactory.user_headers(user_id, tier), **kwargs.pop("headers", {})}
    return make_request(headers=headers, **kwargs)


@pytest.mark.unit
class TestHappyPath:
    """Requests that reach the handler."""

    @pytest.mark.asyncio
    async def test_handler_runs_with_context(self, pipeline, recorder):
        handler = SpyHandler()
        request = user_request(body=RequestFactory.generate_payload())

        response = await pipeline.handle(request, GENERATE, handler)

        assert response.status_code == 200
        assert body_of(response) == {"ok": True}

        context = handler.calls[0]
        assert context.user.id == "u1"
        assert context.effective_tier is UserTier.FREE
        assert isinstance(context.body, GenerateCoverLetterRequest)

        (sample,) = recorder.snapshot()
        assert sample.success is True
        assert sample.route == "/api/test/generate"
        assert sample.rejected_stage is None
        assert sample.user_id == "u1"
        assert sample.user_tier == "free"

    @pytest.mark.asyncio
    async def test_response_headers(self, pipeline):
        async def handler(request, context):
            context.mark_cache(True)
            return Success(body={})

        response = await pipeline.handle(user_request(tier="pro"), SAVE, handler)

        assert response.headers["X-Request-ID"]
        assert response.headers["X-Response-Time"].endswith("ms")
        assert response.headers["X-Handler-Time"].endswith("ms")
        assert response.headers["X-RateLimit-Limit"] == "1000"
        assert response.headers["X-RateLimit-Remaining"] == "999"
        assert response.headers["X-User-Tier"] == "pro"
        assert response.headers["X-Cache"] == "HIT"

    @pytest.mark.asyncio
    async def test_cache_and_db_time_reach_sample(self, pipeline, recorder):
        async def handler(request, context):
            context.mark_cache(False)
            context.add_db_time(3.0)
            context.add_db_time(2.0)
            return Success(body={})

        response = await pipeline.handle(user_request(), SAVE, handler)

        assert response.headers["X-Cache"] == "MISS"
        (sample,) = recorder.snapshot()
        assert sample.cache_hit is False
        assert sample.db_query_time_ms == 5.0

    @pytest.mark.asyncio
    async def test_incoming_request_id_is_honoured(self, pipeline, recorder):
        request = user_request(headers={"X-Request-ID": "trace-abc"})

        response = await pipeline.handle(request, SAVE, SpyHandler())

        assert response.headers["X-Request-ID"] == "trace-abc"
        assert recorder.snapshot()[0].request_id == "trace-abc"

    @pytest.mark.asyncio
    async def test_oversized_request_id_is_replaced(self, pipeline):
        request = user_request(headers={"X-Request-ID": "x" * 500})

        response = await pipeline.handle(request, SAVE, SpyHandler())

        assert response.headers["X-Request-ID"] != "x" * 500

    @pytest.mark.asyncio
    async def test_request_id_context_is_cleared(self, pipeline):
        await pipeline.handle(user_request(), SAVE, SpyHandler())

        assert get_request_id() is None

    @pytest.mark.asyncio
    async def test_in_flight_counts_running_requests(self, pipeline):
        seen = []

        async def handler(request, context):
            seen.append(pipeline.in_flight)
            return Success(body={})

        await pipeline.handle(user_request(), SAVE, handler)

        assert seen == [1]
        assert pipeline.in_flight == 0

    @pytest.mark.asyncio
    async def test_in_flight_released_on_handler_failure(self, pipeline):
        async def handler(request, context):
            raise RuntimeError("boom")

        await pipeline.handle(user_request(), SAVE, handler)

        assert pipeline.in_flight == 0

    @pytest.mark.asyncio
    async def test_anonymous_caller_on_public_route(self, pipeline, recorder):
        handler = SpyHandler()

        response = await pipeline.handle(make_request(), PUBLIC, handler)

        assert response.status_code == 200
        assert handler.calls[0].user is None
        assert "X-User-Tier" not in response.headers
        assert recorder.snapshot()[0].user_tier == "free"

    @pytest.mark.asyncio
    async def test_each_request_gets_a_fresh_context(self, pipeline):
        handler = SpyHandler()

        await pipeline.handle(user_request("u1"), SAVE, handler)
        await pipeline.handle(user_request("u2"), SAVE, handler)

        first, second = handler.calls
        assert first is not second
        assert first.request_id != second.request_id
        assert second.user.id == "u2"


@pytest.mark.unit
class TestShortCircuits:
    """Rejections before the handler still produce one sample."""

    @pytest.mark.asyncio
    async def test_validation_failure(self, pipeline, recorder):
        handler = SpyHandler()
        request = user_request(body=RequestFactory.generate_payload(jobDescription="short"))

        response = await pipeline.handle(request, GENERATE, handler)

        assert response.status_code == 400
        body = body_of(response)
        assert body["error"]["code"] == "VALIDATION_ERROR"
        assert body["error"]["details"]["errors"][0]["field"] == "jobDescription"
        assert body["requestId"] == response.headers["X-Request-ID"]
        assert handler.calls == []

        (sample,) = recorder.snapshot()
        assert sample.rejected_stage is RejectedStage.VALIDATION
        assert sample.success is False
        assert sample.error_code == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_missing_credentials(self, pipeline, recorder):
        handler = SpyHandler()

        response = await pipeline.handle(make_request(), SAVE, handler)

        assert response.status_code == 401
        assert body_of(response)["error"]["code"] == "UNAUTHORIZED"
        assert handler.calls == []
        assert "X-RateLimit-Limit" not in response.headers
        assert recorder.snapshot()[0].rejected_stage is RejectedStage.AUTHENTICATION

    @pytest.mark.asyncio
    async def test_authenticator_failure_is_unauthorized(self, rate_limiter, recorder, fake_clock):
        pipeline = ApiPipeline(BrokenAuthenticator(), rate_limiter, recorder, fake_clock)

        response = await pipeline.handle(make_request(), SAVE, SpyHandler())

        assert response.status_code == 401
        assert body_of(response)["error"]["message"] == "Authentication failed"

    @pytest.mark.asyncio
    async def test_rate_limited(self, pipeline, recorder):
        handler = SpyHandler()
        for _ in range(3):
            assert (await pipeline.handle(user_request(), SAVE, handler)).status_code == 200

        response = await pipeline.handle(user_request(), SAVE, handler)

        assert response.status_code == 429
        assert response.headers["Retry-After"] == "60"
        assert response.headers["X-RateLimit-Remaining"] == "0"
        body = body_of(response)
        assert body["error"]["code"] == "RATE_LIMITED"
        assert body["error"]["details"]["limit"] == 3
        assert len(handler.calls) == 3

        samples = recorder.snapshot()
        assert len(samples) == 4
        assert samples[-1].rejected_stage is RejectedStage.RATE_LIMIT

    @pytest.mark.asyncio
    async def test_rate_limit_window_recovers(self, pipeline, fake_clock):
        for _ in range(3):
            await pipeline.handle(user_request(), SAVE, SpyHandler())

        fake_clock.advance(60)

        assert (await pipeline.handle(user_request(), SAVE, SpyHandler())).status_code == 200

    @pytest.mark.asyncio
    async def test_lapsed_subscription_is_limited_as_free(self, rate_limiter, recorder, fake_clock):
        user = AuthenticatedUser(
            id="u9",
            tier=UserTier.ENTERPRISE,
            subscription_expires_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
        )
        pipeline = ApiPipeline(StaticAuthenticator(user), rate_limiter, recorder, fake_clock)

        response = await pipeline.handle(make_request(), SAVE, SpyHandler())

        assert response.headers["X-User-Tier"] == "free"
        assert response.headers["X-RateLimit-Limit"] == "3"
        assert recorder.snapshot()[0].user_tier == "free"


@pytest.mark.unit
class TestHandlerFailures:
    """Errors raised or returned by the handler."""

    @pytest.mark.asyncio
    async def test_unexpected_exception(self, pipeline, recorder):
        async def handler(request, context):
            raise KeyError("secret-internal-detail")

        response = await pipeline.handle(user_request(), SAVE, handler)

        assert response.status_code == 500
        body = body_of(response)
        assert body["error"]["code"] == "INTERNAL_ERROR"
        assert "secret-internal-detail" not in response.body.decode()

        (sample,) = recorder.snapshot()
        assert sample.success is False
        assert sample.error_code == "INTERNAL_ERROR"
        assert sample.rejected_stage is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error,status,code",
        [
            (ResourceNotFoundError("Cover letter not found"), 404, "NOT_FOUND"),
            (AuthorizationError("Not yours"), 403, "FORBIDDEN"),
        ],
    )
    async def test_api_errors_keep_their_code(self, pipeline, error, status, code):
        async def handler(request, context):
            raise error

        response = await pipeline.handle(user_request(), SAVE, handler)

        assert response.status_code == status
        assert body_of(response)["error"]["code"] == code
        assert body_of(response)["error"]["message"] == error.message

    @pytest.mark.asyncio
    async def test_non_success_return_value(self, pipeline):
        async def handler(request, context):
            return {"ok": True}

        response = await pipeline.handle(user_request(), SAVE, handler)

        assert response.status_code == 500

    @pytest.mark.asyncio
    async def test_unserializable_body(self, pipeline, recorder):
        async def handler(request, context):
            return Success(body={"value": object()})

        response = await pipeline.handle(user_request(), SAVE, handler)

        assert response.status_code == 500
        assert recorder.snapshot()[0].status_code == 500

    @pytest.mark.asyncio
    async def test_created_status_is_kept(self, pipeline, recorder):
        response = await pipeline.handle(user_request(), SAVE, SpyHandler(Success(body={}, status_code=201)))

        assert response.status_code == 201
        assert recorder.snapshot()[0].success is True
