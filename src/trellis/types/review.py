"""TypedDicts for review.py results."""

from __future__ import annotations

from typing import TypedDict


class ReviewValidationDict(TypedDict):
    valid: bool
    code: str | None
    message: str


class ReviewActionResultDict(TypedDict):
    """Serialized ``ReviewActionResult``."""

    success: bool
    workItemId: str
    targetPhase: str
    action: str
    previousStatus: str | None
    newStatus: str | None
    message: str
    timestamp: str
