"""Shared request validation helpers for the engine routers."""

from __future__ import annotations

import json
from typing import Any

from job_escrow_service.core.exceptions import ValidationError


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ValidationError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("INVALID_JSON", "Request body is not valid JSON") from exc

    if not isinstance(data, dict):
        raise ValidationError("INVALID_JSON", "Request body must be a JSON object")

    return data


def extract_actor(data: dict[str, Any], field_name: str = "actor_id") -> str:
    """Extract the acting party's id from a parsed JSON body."""
    if field_name not in data or data[field_name] is None:
        raise ValidationError("INVALID_ACTOR", f"Missing required field: {field_name}")

    value = data[field_name]
    if not isinstance(value, str):
        raise ValidationError("INVALID_ACTOR", f"Field '{field_name}' must be a string")
    if not value.strip():
        raise ValidationError("INVALID_ACTOR", f"Field '{field_name}' must not be empty")

    return value


def require_field(data: dict[str, Any], field_name: str) -> Any:
    """Return a required body field, raising ValidationError when it is missing."""
    if field_name not in data or data[field_name] is None:
        raise ValidationError("MISSING_FIELD", f"Missing required field: {field_name}")
    return data[field_name]


def parse_int_param(value: str | None, name: str, *, minimum: int) -> int | None:
    """Parse an optional integer query parameter."""
    if value is None:
        return None
    try:
        parsed = int(value)
    except ValueError:
        raise ValidationError("INVALID_PARAMETER", f"{name} must be an integer") from None
    if parsed < minimum:
        raise ValidationError("INVALID_PARAMETER", f"{name} must be >= {minimum}")
    return parsed
