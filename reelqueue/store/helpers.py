from __future__ import annotations

import re
import uuid
from typing import Any

_IDENTIFIER_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


def validate_identifier(name: str, identifier_type: str = "identifier") -> str:
    """
    Validate that a table or collection name is safe for SQL interpolation.

    Collection names travel inside queued messages, so they are checked again
    at apply time rather than trusted.

    Raises:
        TypeError: If the identifier is not a string
        ValueError: If it is empty, too long or contains unsafe characters
    """
    if not isinstance(name, str):
        raise TypeError(f"{identifier_type} must be a string, got {type(name).__name__}")

    if not name:
        raise ValueError(f"{identifier_type} cannot be empty")

    if not _IDENTIFIER_RE.match(name):
        raise ValueError(
            f"Invalid {identifier_type} {name!r}: "
            "must start with letter/underscore and contain only alphanumeric characters and underscores"
        )

    if len(name) > 64:
        raise ValueError(f"{identifier_type} {name!r} exceeds the 64-character limit")

    return name


def new_document_id() -> str:
    return uuid.uuid4().hex


def normalize_id(value: Any) -> str:
    """
    Accept a native identifier (uuid.UUID) or its string form.

    Raises:
        ValueError: If the value is missing or blank
    """
    if isinstance(value, uuid.UUID):
        return value.hex
    if value is None:
        raise ValueError("document id is required")
    normalized = str(value).strip()
    if not normalized:
        raise ValueError("document id is required")
    return normalized


def is_valid_identifier(name: Any) -> bool:
    try:
        validate_identifier(name)
    except (TypeError, ValueError):
        return False
    return True
