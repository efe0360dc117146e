"""
Unit Tests for Request Validator

Tests body and query validation against the cover-letter and admin models.
"""

import orjson
import pytest

from coverline.application.api.models import (
    AdminActionRequest,
    CoverLetterType,
    GenerateCoverLetterRequest,
    ListCoverLettersQuery,
    MetricsQuery,
    SaveCoverLetterRequest,
)
from coverline.application.api.middleware.request_validator import validate_body, validate_query
from coverline.core.exceptions import RequestValidationError
from tests.test_fixtures import RequestFactory


def as_bytes(payload: dict) -> bytes:
    return orjson.dumps(payload)


@pytest.mark.unit
class TestValidateBody:
    """Test suite for validate_body."""

    def test_valid_generate_request(self):
        model = validate_body(as_bytes(RequestFactory.generate_payload()), GenerateCoverLetterRequest)

        assert model.cover_letter_type is CoverLetterType.TECHNICAL
        assert model.job_description == RequestFactory.JOB_DESCRIPTION

    def test_cover_letter_type_defaults_to_professional(self):
        payload = RequestFactory.generate_payload()
        del payload["coverLetterType"]

        model = validate_body(as_bytes(payload), GenerateCoverLetterRequest)

        assert model.cover_letter_type is CoverLetterType.PROFESSIONAL

    def test_short_job_description_is_rejected(self):
        payload = RequestFactory.generate_payload(jobDescription="too short")

        with pytest.raises(RequestValidationError) as exc_info:
            validate_body(as_bytes(payload), GenerateCoverLetterRequest)

        fields = [error["field"] for error in exc_info.value.errors]
        assert fields == ["jobDescription"]
        assert exc_info.value.errors[0]["type"] == "string_too_short"

    def test_every_failing_field_is_reported(self):
        payload = RequestFactory.save_payload(title="", tokensUsed=-1, coverLetterType="poetic")

        with pytest.raises(RequestValidationError) as exc_info:
            validate_body(as_bytes(payload), SaveCoverLetterRequest)

        fields = {error["field"] for error in exc_info.value.errors}
        assert fields == {"title", "tokensUsed", "coverLetterType"}

    def test_whitespace_only_title_is_rejected(self):
        payload = RequestFactory.save_payload(title="   ")

        with pytest.raises(RequestValidationError):
            validate_body(as_bytes(payload), SaveCoverLetterRequest)

    def test_unknown_fields_are_ignored(self):
        payload = RequestFactory.save_payload(isFavorite=True)

        model = validate_body(as_bytes(payload), SaveCoverLetterRequest)

        assert model.model_used == "gpt-4o-mini"

    @pytest.mark.parametrize("raw", [b"", b"   "])
    def test_missing_body(self, raw):
        with pytest.raises(RequestValidationError) as exc_info:
            validate_body(raw, GenerateCoverLetterRequest)

        assert exc_info.value.errors[0]["type"] == "missing"

    def test_malformed_json(self):
        with pytest.raises(RequestValidationError) as exc_info:
            validate_body(b"{not json", GenerateCoverLetterRequest)

        assert exc_info.value.errors[0]["type"] == "json_invalid"

    def test_non_object_json(self):
        with pytest.raises(RequestValidationError):
            validate_body(b"[1, 2, 3]", GenerateCoverLetterRequest)

    def test_unknown_admin_action(self):
        with pytest.raises(RequestValidationError):
            validate_body(b'{"action": "drop_database"}', AdminActionRequest)


@pytest.mark.unit
class TestValidateQuery:
    """Test suite for validate_query."""

    def test_defaults(self):
        query = validate_query({}, ListCoverLettersQuery)

        assert (query.page, query.limit) == (1, 10)

    def test_strings_are_coerced(self):
        query = validate_query({"page": "3", "limit": "25"}, ListCoverLettersQuery)

        assert (query.page, query.limit) == (3, 25)

    @pytest.mark.parametrize("params", [{"page": "0"}, {"limit": "101"}, {"page": "abc"}])
    def test_out_of_range(self, params):
        with pytest.raises(RequestValidationError):
            validate_query(params, ListCoverLettersQuery)

    @pytest.mark.parametrize("value,expected", [("15m", 900.0), ("3600", 3600.0), ("", None)])
    def test_metrics_range(self, value, expected):
        assert validate_query({"range": value}, MetricsQuery).range == expected

    def test_invalid_metrics_range(self):
        with pytest.raises(RequestValidationError) as exc_info:
            validate_query({"range": "forever"}, MetricsQuery)

        assert exc_info.value.errors[0]["field"] == "range"
