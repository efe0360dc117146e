"""
Unit Tests for the Exception Hierarchy

Tests base error behaviour, context helpers and the code/status mapping of
client-facing API errors.
"""

import pytest

from coverline.core.config.constants import ErrorCode
from coverline.core.exceptions import (
    ApiError,
    AuthenticationError,
    AuthorizationError,
    CacheConnectionError,
    CacheError,
    CacheTimeoutError,
    ConfigurationError,
    CoverlineError,
    QuotaConfigurationError,
    RateLimitExceededError,
    RequestValidationError,
    ResourceNotFoundError,
)


@pytest.mark.unit
class TestCoverlineError:
    """Test the base exception."""

    def test_message_and_details_are_stored(self):
        error = CoverlineError("boom", request_id="req-1", details={"key": "value"})

        assert str(error) == "boom"
        assert error.request_id == "req-1"
        assert error.details == {"key": "value"}

    def test_details_are_copied(self):
        details = {"key": "value"}
        error = CoverlineError("boom", details=details)

        error.with_context(extra=1)

        assert "extra" not in details

    def test_to_dict_includes_error_type(self):
        data = CacheConnectionError("redis down", details={"host": "localhost"}).to_dict()

        assert data["error_type"] == "CacheConnectionError"
        assert data["message"] == "redis down"
        assert data["details"] == {"host": "localhost"}

    def test_with_suggestion_and_context_chain(self):
        error = CoverlineError("boom").with_suggestion("retry later").with_context(attempt=3)

        assert error.details == {"suggestion": "retry later", "attempt": 3}

    def test_from_exception_wraps_original(self):
        original = ConnectionRefusedError("refused")

        error = CacheConnectionError.from_exception(original, host="localhost")

        assert isinstance(error, CacheConnectionError)
        assert error.message == "refused"
        assert error.details["original_error"] == "ConnectionRefusedError"
        assert error.details["host"] == "localhost"

    def test_repr_mentions_request_id(self):
        assert "request_id='req-9'" in repr(CoverlineError("boom", request_id="req-9"))


@pytest.mark.unit
class TestHierarchy:
    """Test that themed exceptions inherit from the right bases."""

    @pytest.mark.parametrize("exc_class", [CacheConnectionError, CacheTimeoutError])
    def test_cache_errors_are_cache_errors(self, exc_class):
        assert issubclass(exc_class, CacheError)
        assert issubclass(exc_class, CoverlineError)

    def test_quota_configuration_error_is_configuration_error(self):
        assert issubclass(QuotaConfigurationError, ConfigurationError)

    def test_rate_limit_exceeded_is_not_api_error(self):
        assert not issubclass(RateLimitExceededError, ApiError)


@pytest.mark.unit
class TestApiErrors:
    """Test code and HTTP status of client-facing errors."""

    @pytest.mark.parametrize(
        "exc_class,code,status",
        [
            (RequestValidationError, ErrorCode.VALIDATION_ERROR, 400),
            (AuthenticationError, ErrorCode.UNAUTHORIZED, 401),
            (AuthorizationError, ErrorCode.FORBIDDEN, 403),
            (ResourceNotFoundError, ErrorCode.NOT_FOUND, 404),
            (ApiError, ErrorCode.INTERNAL_ERROR, 500),
        ],
    )
    def test_code_and_status(self, exc_class, code, status):
        error = exc_class("message")

        assert error.code is code
        assert error.status_code == status

    def test_validation_error_exposes_field_errors(self):
        errors = [{"field": "title", "message": "too short", "type": "string_too_short"}]

        error = RequestValidationError("Invalid request data", details={"errors": errors})

        assert error.errors == errors

    def test_validation_error_without_errors_is_empty_list(self):
        assert RequestValidationError("bad").errors == []
