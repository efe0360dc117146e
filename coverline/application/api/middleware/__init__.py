"""
Middleware Package
==================

The request pipeline every cover-letter route runs through.

STAGES (fixed order):
---------------------
1. request_validator: Parse the JSON body and query against pydantic schemas
2. authentication: Resolve the caller and tier (session token or gateway headers)
3. rate limiting: Tier × route-class quota (coverline.rate_limiting)
4. handler: Route business logic with a per-request MiddlewareContext
5. metrics: One RequestMetricsSample per request, handled or rejected

outcomes.py turns every result into the uniform JSON error body.

USAGE EXAMPLE:
--------------
    from coverline.application.api.middleware import ApiPipeline, RoutePolicy, Success

    POLICY = RoutePolicy(route="/api/cover-letters", route_class=RouteClass.SAVE,
                         body_schema=SaveCoverLetterRequest)

    async def handler(request, context):
        return Success(body={"ok": True}, status_code=201)

    response = await pipeline.handle(request, POLICY, handler)
"""

from .authentication import (
    AuthenticatedUser,
    Authenticator,
    HeaderAuthenticator,
    SessionStore,
    SessionTokenAuthenticator,
    log_security_event,
)
from .outcomes import (
    Forbidden,
    InternalFailure,
    NotFound,
    Outcome,
    RateLimited,
    Success,
    Unauthorized,
    ValidationFailure,
    render,
)
from .pipeline import ApiPipeline, MiddlewareContext, RoutePolicy
from .request_validator import validate_body, validate_query

__all__ = [
    "ApiPipeline",
    "MiddlewareContext",
    "RoutePolicy",
    "AuthenticatedUser",
    "Authenticator",
    "HeaderAuthenticator",
    "SessionStore",
    "SessionTokenAuthenticator",
    "log_security_event",
    "Outcome",
    "Success",
    "ValidationFailure",
    "Unauthorized",
    "Forbidden",
    "NotFound",
    "RateLimited",
    "InternalFailure",
    "render",
    "validate_body",
    "validate_query",
]
