"""
Pipeline Outcomes

Every request through ApiPipeline ends in exactly one outcome variant.
Handlers return Success; every other variant is produced by a pipeline stage
or by mapping an exception. render() is the only place an outcome becomes an
HTTP response, and it matches every variant exhaustively.

Error body (all non-success variants):

    {
        "error": {"id": "...", "message": "...", "code": "RATE_LIMITED", "details": {...}},
        "timestamp": "2025-12-14T10:00:00Z",
        "requestId": "..."
    }
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, assert_never

from fastapi.responses import JSONResponse

from coverline.core.config.constants import ErrorCode
from coverline.core.exceptions import (
    ApiError,
    AuthenticationError,
    AuthorizationError,
    RequestValidationError,
    ResourceNotFoundError,
)
from coverline.rate_limiting.rate_limiter import RateLimitDecision


@dataclass(frozen=True)
class Success:
    """Handler result. `body` must be JSON-serializable."""

    body: Any
    status_code: int = 200
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ValidationFailure:
    message: str
    errors: list[dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class Unauthorized:
    message: str = "Authentication required"


@dataclass(frozen=True)
class Forbidden:
    message: str = "Access denied"


@dataclass(frozen=True)
class NotFound:
    message: str = "Resource not found"


@dataclass(frozen=True)
class RateLimited:
    decision: RateLimitDecision
    message: str = "Too many requests. Please try again later."


@dataclass(frozen=True)
class InternalFailure:
    """Unexpected handler failure. The client only ever sees `message`."""

    message: str = "An unexpected error occurred while processing your request"
    error_type: str | None = None


Outcome = Success | ValidationFailure | Unauthorized | Forbidden | NotFound | RateLimited | InternalFailure


def status_code_for(outcome: Outcome) -> int:
    match outcome:
        case Success(status_code=status_code):
            return status_code
        case ValidationFailure():
            return 400
        case Unauthorized():
            return 401
        case Forbidden():
            return 403
        case NotFound():
            return 404
        case RateLimited():
            return 429
        case InternalFailure():
            return 500
        case _:
            assert_never(outcome)


def outcome_from_api_error(error: ApiError) -> Outcome:
    """Map a client-facing exception raised by a stage or handler."""
    match error:
        case RequestValidationError():
            return ValidationFailure(message=error.message, errors=error.errors)
        case AuthenticationError():
            return Unauthorized(message=error.message)
        case AuthorizationError():
            return Forbidden(message=error.message)
        case ResourceNotFoundError():
            return NotFound(message=error.message)
        case _:
            return InternalFailure(error_type=type(error).__name__)


def error_code_for(outcome: Outcome) -> ErrorCode | None:
    match outcome:
        case Success():
            return None
        case ValidationFailure():
            return ErrorCode.VALIDATION_ERROR
        case Unauthorized():
            return ErrorCode.UNAUTHORIZED
        case Forbidden():
            return ErrorCode.FORBIDDEN
        case NotFound():
            return ErrorCode.NOT_FOUND
        case RateLimited():
            return ErrorCode.RATE_LIMITED
        case InternalFailure():
            return ErrorCode.INTERNAL_ERROR
        case _:
            assert_never(outcome)


def _error_body(code: ErrorCode, message: str, details: dict[str, Any], request_id: str) -> dict[str, Any]:
    return {
        "error": {
            "id": uuid.uuid4().hex,
            "message": message,
            "code": code.value,
            "details": details,
        },
        "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        "requestId": request_id,
    }


def render(outcome: Outcome, request_id: str) -> JSONResponse:
    """Serialize an outcome into its HTTP response."""
    status_code = status_code_for(outcome)

    match outcome:
        case Success(body=body, headers=headers):
            return JSONResponse(status_code=status_code, content=body, headers=headers)
        case ValidationFailure(message=message, errors=errors):
            body = _error_body(ErrorCode.VALIDATION_ERROR, message, {"errors": errors}, request_id)
            return JSONResponse(status_code=status_code, content=body)
        case Unauthorized(message=message):
            body = _error_body(ErrorCode.UNAUTHORIZED, message, {}, request_id)
            return JSONResponse(status_code=status_code, content=body)
        case Forbidden(message=message):
            body = _error_body(ErrorCode.FORBIDDEN, message, {}, request_id)
            return JSONResponse(status_code=status_code, content=body)
        case NotFound(message=message):
            body = _error_body(ErrorCode.NOT_FOUND, message, {}, request_id)
            return JSONResponse(status_code=status_code, content=body)
        case RateLimited(decision=decision, message=message):
            details = {
                "limit": decision.limit,
                "resetAt": datetime.fromtimestamp(decision.reset_at, tz=timezone.utc)
                .isoformat()
                .replace("+00:00", "Z"),
                "retryAfter": decision.retry_after,
                "tier": decision.tier.value,
                "routeClass": decision.route_class.value,
            }
            body = _error_body(ErrorCode.RATE_LIMITED, message, details, request_id)
            return JSONResponse(status_code=status_code, content=body, headers=decision.headers())
        case InternalFailure(message=message):
            body = _error_body(ErrorCode.INTERNAL_ERROR, message, {}, request_id)
            return JSONResponse(status_code=status_code, content=body)
        case _:
            assert_never(outcome)
