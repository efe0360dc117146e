"""
API Pipeline - Educational Documentation
========================================

WHAT IS THIS?
-------------
ApiPipeline.handle(request, policy, handler) is the single entry point every
cover-letter route goes through. It composes, in a FIXED order:

    1. Validation      - parse the body / query against the route's schema
    2. Authentication  - resolve user identity and tier
    3. Rate limiting   - count the request against tier × route-class quota
    4. Handler         - run the route's business logic with a fresh context
    5. Metrics         - record exactly ONE sample, whatever happened above

Each stage short-circuits: a failure skips every later stage and the handler,
but a metrics sample is still recorded (tagged with the rejecting stage) so
dashboards see the full request volume, not just handled requests.

WHY NOT STARLETTE MIDDLEWARE?
-----------------------------
Schema, auth requirement and route class differ per route. Passing a
RoutePolicy explicitly keeps that per-route configuration next to the route,
and lets tests drive the pipeline with a plain handler function.

ERROR MAPPING
-------------
- RequestValidationError (stage 1 or handler)  → VALIDATION_ERROR 400
- no valid credentials on a protected route   → UNAUTHORIZED 401
- AuthorizationError from the handler         → FORBIDDEN 403
- ResourceNotFoundError from the handler      → NOT_FOUND 404
- rate limit decision not allowed             → RATE_LIMITED 429
- anything else raised                        → INTERNAL_ERROR 500

Response headers: X-Request-ID, X-Response-Time, X-Handler-Time (when the
handler ran), X-RateLimit-Limit/Remaining/Reset, X-User-Tier, X-Cache.
"""

import time
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from coverline.application.api.middleware.authentication import (
    AuthenticatedUser,
    Authenticator,
    log_security_event,
)
from coverline.application.api.middleware.outcomes import (
    InternalFailure,
    Outcome,
    RateLimited,
    Success,
    Unauthorized,
    ValidationFailure,
    error_code_for,
    outcome_from_api_error,
    render,
)
from coverline.application.api.middleware.request_validator import validate_body, validate_query
from coverline.core.clock import Clock, get_clock
from coverline.core.config.constants import (
    HEADER_CACHE,
    HEADER_HANDLER_TIME,
    HEADER_REQUEST_ID,
    HEADER_RESPONSE_TIME,
    HEADER_USER_TIER,
    RejectedStage,
    RouteClass,
    Stage,
    StatusCategory,
    UserTier,
)
from coverline.core.exceptions import ApiError, RequestValidationError
from coverline.core.logging.logger import clear_request_id, get_logger, log_stage, set_request_id
from coverline.infrastructure.monitoring.metrics_recorder import MetricsRecorder, RequestMetricsSample
from coverline.rate_limiting.rate_limiter import (
    RateLimitDecision,
    RateLimiter,
    effective_tier,
    identity_for,
)

logger = get_logger(__name__)

_MAX_INCOMING_REQUEST_ID = 128


# ============================================================================
# PER-ROUTE CONFIGURATION AND PER-REQUEST CONTEXT
# ============================================================================


@dataclass(frozen=True)
class RoutePolicy:
    """
    How the pipeline treats one route.

    Attributes:
        route: Route template used as the metrics label ("/api/cover-letters/{id}")
        route_class: Rate-limit bucket (general, save, generate)
        body_schema: Pydantic model the JSON body must match, if any
        query_schema: Pydantic model for query parameters, if any
        require_auth: Reject anonymous callers with UNAUTHORIZED
    """

    route: str
    route_class: RouteClass = RouteClass.GENERAL
    body_schema: type[BaseModel] | None = None
    query_schema: type[BaseModel] | None = None
    require_auth: bool = True


@dataclass
class MiddlewareContext:
    """
    Per-request state, created fresh for every request and never shared.

    Handlers read `user`, `body` and `query`, and report what they did via
    mark_cache() and add_db_time(); those end up in the metrics sample.
    """

    request_id: str
    start_time: float
    user: AuthenticatedUser | None = None
    effective_tier: UserTier | None = None
    body: BaseModel | None = None
    query: BaseModel | None = None
    rate_limit: RateLimitDecision | None = None
    cache_hit: bool | None = None
    db_query_time_ms: float | None = None

    def mark_cache(self, hit: bool) -> None:
        """Record whether the handler's data came from the cache."""
        self.cache_hit = hit if self.cache_hit is None else (self.cache_hit and hit)

    def add_db_time(self, milliseconds: float) -> None:
        self.db_query_time_ms = (self.db_query_time_ms or 0.0) + milliseconds

    def require_user(self) -> AuthenticatedUser:
        """The authenticated user; only valid on routes with require_auth."""
        if self.user is None:
            raise RuntimeError("Route handler requires an authenticated user")
        return self.user


Handler = Callable[[Request, MiddlewareContext], Awaitable[Success]]


# ============================================================================
# PIPELINE
# ============================================================================


class ApiPipeline:
    """
    validate → authenticate → rate-limit → handler, with one metrics sample.

    Usage:
        pipeline = ApiPipeline(HeaderAuthenticator(), limiter, recorder)

        @router.post("/api/cover-letters")
        async def save(request: Request):
            async def handler(request, context):
                return Success(body={...}, status_code=201)
            return await pipeline.handle(request, SAVE_POLICY, handler)
    """

    def __init__(
        self,
        authenticator: Authenticator,
        rate_limiter: RateLimiter,
        recorder: MetricsRecorder,
        clock: Clock | None = None,
    ):
        self._authenticator = authenticator
        self._rate_limiter = rate_limiter
        self._recorder = recorder
        self._clock = clock or get_clock()
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        """Requests currently between entry and response."""
        return self._in_flight

    @property
    def clock(self) -> Clock:
        return self._clock

    async def handle(self, request: Request, policy: RoutePolicy, handler: Handler) -> JSONResponse:
        """
        Run one request through every stage.

        Never raises: every failure becomes a structured error response.
        """
        started = time.perf_counter()
        request_id = self._request_id_for(request)
        set_request_id(request_id)
        context = MiddlewareContext(request_id=request_id, start_time=self._clock.now())
        self._in_flight += 1

        try:
            rejected_stage: RejectedStage | None = None
            handler_ms: float | None = None

            try:
                outcome, rejected_stage = await self._run_stages(request, policy, context)
                if outcome is None:
                    handler_started = time.perf_counter()
                    outcome = await self._invoke_handler(request, context, handler)
                    handler_ms = (time.perf_counter() - handler_started) * 1000
            except Exception as e:
                # Stage infrastructure itself failed (not a handler error)
                logger.error(
                    "Pipeline stage failed",
                    stage=Stage.RESPONSE.value,
                    error_type=type(e).__name__,
                    error=str(e),
                    exc_info=True,
                )
                outcome = InternalFailure(error_type=type(e).__name__)

            response = self._render(outcome, request_id)
            duration_ms = (time.perf_counter() - started) * 1000
            self._apply_headers(response, context, duration_ms, handler_ms)
            self._finalize(request, policy, context, outcome, response.status_code, duration_ms, rejected_stage)
            return response
        finally:
            self._in_flight -= 1
            clear_request_id()

    # ------------------------------------------------------------------------
    # Stages 1-3
    # ------------------------------------------------------------------------

    async def _run_stages(
        self,
        request: Request,
        policy: RoutePolicy,
        context: MiddlewareContext,
    ) -> tuple[Outcome | None, RejectedStage | None]:
        """Returns (None, None) when the handler may run."""

        # STAGE-1: validation
        try:
            if policy.query_schema is not None:
                context.query = validate_query(request.query_params, policy.query_schema)
            if policy.body_schema is not None:
                context.body = validate_body(await request.body(), policy.body_schema)
        except RequestValidationError as e:
            log_stage(
                logger,
                Stage.REQUEST_VALIDATION,
                "Request validation failed",
                level="warning",
                route=policy.route,
                errors=e.errors,
            )
            return ValidationFailure(message=e.message, errors=e.errors), RejectedStage.VALIDATION

        # STAGE-2: authentication
        try:
            user = await self._authenticator.resolve_identity(request)
        except Exception as e:
            logger.error(
                "Authentication error",
                stage=Stage.AUTHENTICATION.value,
                error_type=type(e).__name__,
                error=str(e),
                exc_info=True,
            )
            log_security_event(request, "auth_failure", "high", reason="auth_error")
            if policy.require_auth:
                return Unauthorized(message="Authentication failed"), RejectedStage.AUTHENTICATION
            user = None

        if user is None and policy.require_auth:
            log_security_event(request, "auth_failure", "medium", reason="no_valid_credentials")
            return Unauthorized(), RejectedStage.AUTHENTICATION

        context.user = user
        if user is not None:
            log_stage(logger, Stage.AUTHENTICATION, "User authenticated", level="debug", user_id=user.id, tier=user.tier.value)

        # STAGE-3: rate limiting
        now = self._clock.now()
        tier = effective_tier(user.tier, user.subscription_expires_at, now) if user else UserTier.FREE
        context.effective_tier = tier
        identity = identity_for(request, user.id if user else None)

        decision = self._rate_limiter.check(identity, tier, policy.route_class)
        context.rate_limit = decision
        if not decision.allowed:
            log_security_event(
                request,
                "rate_limit_exceeded",
                "low",
                identity=identity,
                tier=tier.value,
                route_class=policy.route_class.value,
            )
            return RateLimited(decision=decision), RejectedStage.RATE_LIMIT

        return None, None

    # ------------------------------------------------------------------------
    # Stage 4
    # ------------------------------------------------------------------------

    async def _invoke_handler(
        self,
        request: Request,
        context: MiddlewareContext,
        handler: Handler,
    ) -> Outcome:
        """
        STAGE-4: Run the route handler.

        ApiError subclasses map to their own codes; anything else is
        INTERNAL_ERROR with the traceback logged server-side only.
        """
        try:
            result = await handler(request, context)
        except ApiError as e:
            log_stage(
                logger,
                Stage.HANDLER,
                "Handler rejected request",
                level="info",
                error_type=type(e).__name__,
                error=e.message,
            )
            return outcome_from_api_error(e)
        except Exception as e:
            logger.error(
                f"Unhandled exception in handler: {request.method} {request.url.path}",
                stage=Stage.HANDLER.value,
                error_type=type(e).__name__,
                error=str(e),
                exc_info=True,
            )
            return InternalFailure(error_type=type(e).__name__)

        if not isinstance(result, Success):
            logger.error(
                "Handler returned an unexpected value",
                stage=Stage.HANDLER.value,
                result_type=type(result).__name__,
            )
            return InternalFailure(error_type="InvalidHandlerResult")
        return result

    # ------------------------------------------------------------------------
    # Stage 5
    # ------------------------------------------------------------------------

    def _render(self, outcome: Outcome, request_id: str) -> JSONResponse:
        try:
            return render(outcome, request_id)
        except (TypeError, ValueError) as e:
            # Success body that cannot be serialized
            logger.error(
                "Response serialization failed",
                stage=Stage.RESPONSE.value,
                error=str(e),
                exc_info=True,
            )
            return render(InternalFailure(error_type=type(e).__name__), request_id)

    def _apply_headers(
        self,
        response: JSONResponse,
        context: MiddlewareContext,
        duration_ms: float,
        handler_ms: float | None,
    ) -> None:
        response.headers[HEADER_REQUEST_ID] = context.request_id
        response.headers[HEADER_RESPONSE_TIME] = f"{duration_ms:.2f}ms"
        if handler_ms is not None:
            response.headers[HEADER_HANDLER_TIME] = f"{handler_ms:.2f}ms"
        if context.rate_limit is not None:
            for name, value in context.rate_limit.headers().items():
                response.headers[name] = value
        if context.effective_tier is not None and context.user is not None:
            response.headers[HEADER_USER_TIER] = context.effective_tier.value
        if context.cache_hit is not None:
            response.headers[HEADER_CACHE] = "HIT" if context.cache_hit else "MISS"

    def _finalize(
        self,
        request: Request,
        policy: RoutePolicy,
        context: MiddlewareContext,
        outcome: Outcome,
        status_code: int,
        duration_ms: float,
        rejected_stage: RejectedStage | None,
    ) -> None:
        """Record the request's single metrics sample and log the response."""
        category = StatusCategory.from_status_code(status_code)
        error_code = error_code_for(outcome)

        self._recorder.record(
            RequestMetricsSample(
                request_id=context.request_id,
                route=policy.route,
                method=request.method,
                start_time=context.start_time,
                duration_ms=duration_ms,
                status_code=status_code,
                status_category=category,
                success=category is StatusCategory.SUCCESS,
                cache_hit=context.cache_hit,
                db_query_time_ms=context.db_query_time_ms,
                rejected_stage=rejected_stage,
                error_code=error_code.value if error_code else None,
                user_id=context.user.id if context.user else None,
                user_tier=context.effective_tier.value if context.effective_tier else None,
            )
        )

        log_stage(
            logger,
            Stage.RESPONSE,
            "Request completed",
            level="warning" if status_code >= 500 else "info",
            method=request.method,
            route=policy.route,
            status_code=status_code,
            duration_ms=round(duration_ms, 2),
            rejected_stage=rejected_stage.value if rejected_stage else None,
            user_id=context.user.id if context.user else None,
        )

    @staticmethod
    def _request_id_for(request: Request) -> str:
        incoming = request.headers.get(HEADER_REQUEST_ID, "").strip()
        if incoming and len(incoming) <= _MAX_INCOMING_REQUEST_ID:
            return incoming
        return uuid.uuid4().hex
