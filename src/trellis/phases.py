# src/trellis/phases.py
"""Phase model -- per-type phase sets, ordering, terminals, and legacy migration.

Each work item type owns a closed, ordered list of lifecycle phases. This
module answers membership, ordering and transition questions for a
``(type, phase)`` pair and maps pre-migration phase labels onto the current
phase set. Everything here is static data plus pure functions.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Literal, assert_never

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Work item types
# ---------------------------------------------------------------------------


class WorkItemType(StrEnum):
    """The closed set of work item types. Enhancement is a flag on Feature."""

    CONCEPT = "concept"
    FEATURE = "feature"
    BUG = "bug"


# ---------------------------------------------------------------------------
# Custom exceptions
# ---------------------------------------------------------------------------


class UnknownWorkItemTypeError(ValueError):
    """Raised when a type string is not one of the known work item types."""

    def __init__(self, type_name: Any) -> None:
        self.type_name = type_name
        allowed = ", ".join(t.value for t in WorkItemType)
        super().__init__(f"Unknown work item type '{type_name}' (must be one of: {allowed})")


class UnknownPhaseError(ValueError):
    """Raised when a phase is not defined for a work item type.

    This is a configuration error: callers must not guess a starting phase.
    """

    def __init__(self, type_name: str, phase: Any) -> None:
        self.type_name = type_name
        self.phase = phase
        super().__init__(
            f"Phase '{phase}' is not defined for type '{type_name}'. "
            f"Valid phases: {', '.join(phases_for(type_name))}"
        )


def parse_work_item_type(value: Any) -> WorkItemType:
    """Coerce a raw value into a :class:`WorkItemType`.

    Raises:
        UnknownWorkItemTypeError: if the value is not a known type name.
    """
    if isinstance(value, WorkItemType):
        return value
    if isinstance(value, str):
        try:
            return WorkItemType(value.strip().lower())
        except ValueError:
            pass
    raise UnknownWorkItemTypeError(value)


# ---------------------------------------------------------------------------
# Phase sets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PhaseSet:
    """Phase definition for one work item type.

    ``order`` is the forward progression. ``side_exits`` are valid phases that
    sit outside the progression (Concept's ``rejected``).
    """

    type: WorkItemType
    order: tuple[str, ...]
    terminals: frozenset[str]
    side_exits: tuple[str, ...] = ()

    @property
    def phases(self) -> tuple[str, ...]:
        return self.order + self.side_exits

    @property
    def initial(self) -> str:
        return self.order[0]


_FEATURE_PHASES = PhaseSet(
    type=WorkItemType.FEATURE,
    order=("design", "build", "refine", "launch"),
    terminals=frozenset({"launch"}),
)
_CONCEPT_PHASES = PhaseSet(
    type=WorkItemType.CONCEPT,
    order=("ideation", "research", "validated"),
    terminals=frozenset({"validated", "rejected"}),
    side_exits=("rejected",),
)
_BUG_PHASES = PhaseSet(
    type=WorkItemType.BUG,
    order=("triage", "investigating", "fixing", "verified"),
    terminals=frozenset({"verified"}),
)

CONCEPT_REJECTED = "rejected"

# Pre-migration (5-phase) labels, only meaningful for Feature items.
LEGACY_FEATURE_PHASES: dict[str, str] = {
    "research": "design",
    "planning": "design",
    "execution": "build",
    "review": "refine",
    "complete": "launch",
}


def get_phase_set(item_type: WorkItemType | str) -> PhaseSet:
    """Return the :class:`PhaseSet` for a type (exhaustive over WorkItemType)."""
    wt = parse_work_item_type(item_type)
    match wt:
        case WorkItemType.FEATURE:
            return _FEATURE_PHASES
        case WorkItemType.CONCEPT:
            return _CONCEPT_PHASES
        case WorkItemType.BUG:
            return _BUG_PHASES
        case _:
            assert_never(wt)


def _legacy_map(item_type: WorkItemType) -> dict[str, str]:
    match item_type:
        case WorkItemType.FEATURE:
            return LEGACY_FEATURE_PHASES
        case WorkItemType.CONCEPT | WorkItemType.BUG:
            return {}
        case _:
            assert_never(item_type)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def phases_for(item_type: WorkItemType | str) -> tuple[str, ...]:
    """All valid phases for a type, progression first."""
    return get_phase_set(item_type).phases


def phase_order(item_type: WorkItemType | str) -> tuple[str, ...]:
    """The forward progression for a type (excludes side exits)."""
    return get_phase_set(item_type).order


def terminal_phases(item_type: WorkItemType | str) -> frozenset[str]:
    return get_phase_set(item_type).terminals


def initial_phase(item_type: WorkItemType | str) -> str:
    return get_phase_set(item_type).initial


def is_valid_phase(item_type: WorkItemType | str, phase: Any) -> bool:
    return isinstance(phase, str) and phase in get_phase_set(item_type).phases


def validate_phase(item_type: WorkItemType | str, phase: Any) -> str:
    """Return ``phase`` if it belongs to the type, else raise UnknownPhaseError."""
    wt = parse_work_item_type(item_type)
    if not is_valid_phase(wt, phase):
        raise UnknownPhaseError(wt.value, phase)
    return str(phase)


def is_terminal_phase(item_type: WorkItemType | str, phase: str) -> bool:
    validate_phase(item_type, phase)
    return phase in get_phase_set(item_type).terminals


def phase_index(item_type: WorkItemType | str, phase: str) -> int:
    """Position of ``phase`` in the progression, or -1 for side exits."""
    ps = get_phase_set(item_type)
    validate_phase(ps.type, phase)
    return ps.order.index(phase) if phase in ps.order else -1


def next_phase(item_type: WorkItemType | str, phase: str) -> str | None:
    """The next phase in the progression, or None from a terminal phase."""
    ps = get_phase_set(item_type)
    if is_terminal_phase(ps.type, phase):
        return None
    idx = ps.order.index(phase)
    return ps.order[idx + 1] if idx + 1 < len(ps.order) else None


def previous_phase(item_type: WorkItemType | str, phase: str) -> str | None:
    ps = get_phase_set(item_type)
    idx = phase_index(ps.type, phase)
    return ps.order[idx - 1] if idx > 0 else None


def phase_progress(item_type: WorkItemType | str, phase: str) -> int:
    """Position of a phase as a 0-100 percentage of the progression."""
    ps = get_phase_set(item_type)
    idx = phase_index(ps.type, phase)
    if idx < 0:
        return 100  # side exits end the lifecycle
    return round((idx + 1) / len(ps.order) * 100)


# ---------------------------------------------------------------------------
# Transitions
# ---------------------------------------------------------------------------

PhaseTransitionReason = Literal["ok", "unknown_phase", "backward", "terminal"]


@dataclass(frozen=True)
class PhaseTransitionCheck:
    """Result of checking a phase move against the type's phase order."""

    allowed: bool
    reason: PhaseTransitionReason
    message: str


def check_transition(item_type: WorkItemType | str, from_phase: Any, to_phase: Any) -> PhaseTransitionCheck:
    """Check ``from_phase -> to_phase`` against the ordering rule.

    Valid iff ``index(to) >= index(from)``, or the type is Concept and the
    target is ``rejected`` from a non-terminal phase. Terminal phases only
    allow staying put.
    """
    ps = get_phase_set(item_type)
    type_name = ps.type.value
    for label, phase in (("from", from_phase), ("to", to_phase)):
        if not is_valid_phase(ps.type, phase):
            return PhaseTransitionCheck(
                False, "unknown_phase", f"Unknown {label} phase '{phase}' for type '{type_name}'"
            )

    if from_phase == to_phase:
        return PhaseTransitionCheck(True, "ok", f"'{from_phase}' is unchanged")

    if from_phase in ps.terminals:
        return PhaseTransitionCheck(
            False, "terminal", f"'{from_phase}' is a terminal phase for type '{type_name}'"
        )

    if ps.type is WorkItemType.CONCEPT and to_phase == CONCEPT_REJECTED:
        return PhaseTransitionCheck(True, "ok", f"Concept may be rejected from '{from_phase}'")

    if to_phase not in ps.order or ps.order.index(to_phase) < ps.order.index(from_phase):
        return PhaseTransitionCheck(
            False,
            "backward",
            f"Cannot move '{type_name}' backward from '{from_phase}' to '{to_phase}'",
        )
    return PhaseTransitionCheck(True, "ok", f"'{from_phase}' -> '{to_phase}'")


def is_valid_transition(item_type: WorkItemType | str, from_phase: Any, to_phase: Any) -> bool:
    return check_transition(item_type, from_phase, to_phase).allowed


# ---------------------------------------------------------------------------
# Legacy migration
# ---------------------------------------------------------------------------


def migrate_legacy_phase(item_type: WorkItemType | str, phase: Any) -> str:
    """Map a pre-migration phase label onto the current phase set for a type.

    Labels that are already valid are returned unchanged, so the mapping is
    idempotent. Unknown labels are a configuration error.

    Raises:
        UnknownPhaseError: if the label is neither current nor legacy.
    """
    wt = parse_work_item_type(item_type)
    if is_valid_phase(wt, phase):
        return str(phase)
    migrated = _legacy_map(wt).get(phase) if isinstance(phase, str) else None
    if migrated is None:
        raise UnknownPhaseError(wt.value, phase)
    logger.debug("Migrated legacy phase %s/%s -> %s", wt.value, phase, migrated)
    return migrated


# ---------------------------------------------------------------------------
# Distribution
# ---------------------------------------------------------------------------


def phase_distribution(items: Iterable[tuple[WorkItemType | str, str]]) -> dict[str, dict[str, dict[str, int]]]:
    """Count and percentage of items per phase, grouped by type.

    Every valid phase of every type is present in the result (zero counts
    included). Items with an unknown type or phase raise.
    """
    counts: dict[WorkItemType, dict[str, int]] = {wt: dict.fromkeys(phases_for(wt), 0) for wt in WorkItemType}
    for raw_type, phase in items:
        wt = parse_work_item_type(raw_type)
        counts[wt][validate_phase(wt, phase)] += 1

    result: dict[str, dict[str, dict[str, int]]] = {}
    for wt, by_phase in counts.items():
        total = sum(by_phase.values())
        result[wt.value] = {
            phase: {"count": n, "percentage": round(n / total * 100) if total else 0} for phase, n in by_phase.items()
        }
    return result
