"""
Validation utilities for query/body values not covered by pydantic models.
"""
import re
from typing import Any

from fastapi import HTTPException

INVITATION_STATUSES = {"pending", "accepted", "declined"}


def validate_string_field(
    value: Any,
    field_name: str,
    min_length: int = 1,
    max_length: int = 1000,
    required: bool = True,
    pattern: str | None = None,
) -> str | None:
    """Validate a string field with common rules."""
    if value is None:
        if required:
            raise HTTPException(status_code=400, detail=f"{field_name} is required")
        return None

    if not isinstance(value, str):
        raise HTTPException(status_code=400, detail=f"{field_name} must be a string")

    value = value.strip()

    if required and not value:
        raise HTTPException(status_code=400, detail=f"{field_name} cannot be empty")

    if len(value) < min_length:
        if not required and not value:
            return None
        raise HTTPException(
            status_code=400,
            detail=f"{field_name} must be at least {min_length} characters"
        )

    if len(value) > max_length:
        raise HTTPException(
            status_code=400,
            detail=f"{field_name} must not exceed {max_length} characters"
        )

    if pattern and not re.match(pattern, value):
        raise HTTPException(status_code=400, detail=f"{field_name} format is invalid")

    return value


def validate_invitation_status(status: Any, required: bool = True) -> str | None:
    """Validate an invitation status filter."""
    status = validate_string_field(status, "Status", max_length=20, required=required)
    if status is None:
        return None

    status = status.lower()
    if status not in INVITATION_STATUSES:
        raise HTTPException(
            status_code=400,
            detail=f"Status must be one of: {', '.join(sorted(INVITATION_STATUSES))}"
        )
    return status
