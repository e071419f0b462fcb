"""TypedDicts for readiness.py and transitions.py results."""

from __future__ import annotations

from typing import TypedDict


class MissingFieldDict(TypedDict):
    """A required field blocking a phase upgrade, with UI-ready text."""

    field: str
    label: str
    required: bool
    hint: str


class BreakdownDict(TypedDict):
    requiredPercent: float
    optionalPercent: float


class ReadinessDict(TypedDict):
    """Serialized ``ReadinessResult``."""

    workItemType: str
    currentPhase: str
    nextPhase: str | None
    readinessPercent: int
    canUpgrade: bool
    isTerminal: bool
    missingFields: list[MissingFieldDict]
    completedFields: list[str]
    breakdown: BreakdownDict
    suggestions: list[str]
    warnings: list[str]


class TransitionDecisionDict(TypedDict):
    """Serialized ``TransitionDecision``."""

    allowed: bool
    reason: str
    message: str
    fromPhase: str
    toPhase: str
    readiness: ReadinessDict | None
    reviewBlockers: list[str]
