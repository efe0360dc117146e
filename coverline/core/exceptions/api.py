"""
API Exceptions

Client-facing errors raised by the request pipeline or by route handlers.
Each carries the stable error code and HTTP status it maps to, so the
pipeline can turn it into a structured response without a lookup table.

Author: Platform Team
Date: 2025-12-08
"""

from typing import Any

from coverline.core.config.constants import ErrorCode
from coverline.core.exceptions.base import CoverlineError


class ApiError(CoverlineError):
    """
    Base class for errors that become a JSON error response.

    Subclasses set `code` and `status_code`. Anything raised by a handler
    that is NOT an ApiError becomes INTERNAL_ERROR.
    """

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500


class RequestValidationError(ApiError):
    """
    Raised when a request body is not JSON or does not match its schema.

    `details["errors"]` holds one entry per failing field:
        {"field": "jobDescription", "message": "String should have at least 50 characters"}
    """

    code = ErrorCode.VALIDATION_ERROR
    status_code = 400

    @property
    def errors(self) -> list[dict[str, Any]]:
        return self.details.get("errors", [])


class AuthenticationError(ApiError):
    """Raised when a protected route is called without valid credentials."""

    code = ErrorCode.UNAUTHORIZED
    status_code = 401


class AuthorizationError(ApiError):
    """
    Raised when an authenticated user may not perform the operation.

    Common causes:
    - Accessing another user's cover letter
    - Calling an admin endpoint without the admin tier
    """

    code = ErrorCode.FORBIDDEN
    status_code = 403


class ResourceNotFoundError(ApiError):
    """Raised when a requested resource does not exist."""

    code = ErrorCode.NOT_FOUND
    status_code = 404
