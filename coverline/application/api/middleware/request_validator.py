"""
Request Validation - Stage 1 of the API pipeline

WHAT IS VALIDATED?
------------------
1. The body is JSON (parsed with orjson)
2. The parsed body matches the route's pydantic schema
3. Query parameters match the route's query schema, if it declares one

On failure a RequestValidationError is raised with one entry per failing
field, for example:

    {"field": "jobDescription", "message": "String should have at least 50 characters", "type": "string_too_short"}

The pipeline turns that error into a VALIDATION_ERROR response; the route
handler is never called.

WHY PYDANTIC?
-------------
- One declaration gives parsing, coercion and error messages
- Field aliases let the wire format stay camelCase (jobDescription) while
  Python code uses snake_case (job_description)
"""

from collections.abc import Mapping
from typing import Any, TypeVar

import orjson
from pydantic import BaseModel, ValidationError

from coverline.core.exceptions import RequestValidationError

ModelT = TypeVar("ModelT", bound=BaseModel)


def format_errors(error: ValidationError) -> list[dict[str, Any]]:
    """Flatten pydantic errors into {field, message, type} entries."""
    return [
        {
            "field": ".".join(str(part) for part in item["loc"]) or "body",
            "message": item["msg"],
            "type": item["type"],
        }
        for item in error.errors()
    ]


def validate_body(raw_body: bytes, schema: type[ModelT]) -> ModelT:
    """
    Parse and validate a JSON request body.

    Raises:
        RequestValidationError: Body missing, not JSON, or not matching schema
    """
    if not raw_body or not raw_body.strip():
        raise RequestValidationError(
            "Request body is required",
            details={"errors": [{"field": "body", "message": "Request body is required", "type": "missing"}]},
        )

    try:
        payload = orjson.loads(raw_body)
    except orjson.JSONDecodeError as e:
        raise RequestValidationError(
            "Request body is not valid JSON",
            details={"errors": [{"field": "body", "message": str(e), "type": "json_invalid"}]},
        ) from e

    try:
        return schema.model_validate(payload)
    except ValidationError as e:
        raise RequestValidationError(
            "Invalid request data", details={"errors": format_errors(e)}
        ) from e


def validate_query(params: Mapping[str, str], schema: type[ModelT]) -> ModelT:
    """
    Validate query parameters.

    Raises:
        RequestValidationError: A parameter is missing or malformed
    """
    try:
        return schema.model_validate(dict(params))
    except ValidationError as e:
        raise RequestValidationError(
            "Invalid query parameters", details={"errors": format_errors(e)}
        ) from e
