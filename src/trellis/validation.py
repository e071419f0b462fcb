"""Shared validation functions for all entry points.

Pure functions -- no FastAPI or Click dependencies. Each returns
``(cleaned_value, None)`` on success or ``(default, error_message)`` on failure.
"""

from __future__ import annotations

import math
import unicodedata
from typing import Any

_MAX_IDENTIFIER_LENGTH = 128


def sanitize_identifier(value: Any, name: str = "id") -> tuple[str, str | None]:
    """Validate and clean an identifier (work item id, connection id, phase).

    Strips whitespace, then checks: non-empty, max length, no control/format chars.
    """
    if not isinstance(value, str):
        return ("", f"{name} must be a string")
    # Check for control/format chars before stripping -- reject "\nbad" rather
    # than silently absorbing the newline via strip().
    for ch in value:
        if unicodedata.category(ch).startswith("C"):
            return ("", f"{name} must not contain control characters (found U+{ord(ch):04X})")
    cleaned = value.strip()
    if not cleaned:
        return ("", f"{name} must not be empty")
    if len(cleaned) > _MAX_IDENTIFIER_LENGTH:
        return ("", f"{name} must be at most {_MAX_IDENTIFIER_LENGTH} characters")
    return (cleaned, None)


def is_finite_number(value: Any) -> bool:
    """True for real ints and finite floats; bools, NaN and infinities are not numbers here."""
    if isinstance(value, bool):
        return False
    return isinstance(value, int) or (isinstance(value, float) and math.isfinite(value))


def parse_unit_interval(value: Any, name: str, *, default: float = 1.0) -> tuple[float, str | None]:
    """Validate a number in [0, 1] (connection strength/confidence).

    ``None`` means "not supplied" and yields ``default``.
    """
    if value is None:
        return (default, None)
    if not is_finite_number(value):
        return (default, f"{name} must be a number between 0 and 1")
    if not (0.0 <= value <= 1.0):
        return (default, f"{name} must be between 0 and 1, got {value}")
    return (float(value), None)


def parse_non_negative_int(value: Any, name: str, *, default: int = 0) -> tuple[int, str | None]:
    """Validate a count such as ``timelineItemsCount``."""
    if value is None:
        return (default, None)
    if isinstance(value, bool) or not isinstance(value, int):
        return (default, f"{name} must be a non-negative integer")
    if value < 0:
        return (default, f"{name} must be >= 0, got {value}")
    return (value, None)


def parse_optional_hours(value: Any, name: str = "estimated_hours") -> tuple[float | None, str | None]:
    """Validate an optional duration in hours (finite, non-negative number or None)."""
    if value is None:
        return (None, None)
    if not is_finite_number(value):
        return (None, f"{name} must be a finite number")
    try:
        hours = float(value)
    except OverflowError:
        return (None, f"{name} is out of range")
    if hours < 0:
        return (None, f"{name} must be >= 0, got {value}")
    return (hours, None)


def parse_flag(value: Any, name: str, *, default: bool = False) -> tuple[bool, str | None]:
    """Validate a JSON boolean; strings such as ``"false"`` are rejected, not guessed."""
    if value is None:
        return (default, None)
    if not isinstance(value, bool):
        return (default, f"{name} must be true or false, got {type(value).__name__}")
    return (value, None)
