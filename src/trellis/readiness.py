# src/trellis/readiness.py
"""Readiness scoring -- how close a work item is to leaving its phase.

The calculator is a pure function of a field bag, a ``(type, phase)`` pair and
caller-supplied computed fields. It never fetches timeline or feedback data;
:func:`derive_computed_fields` is the helper callers use to turn the counts
they already hold into :class:`ComputedFields`.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

from trellis.config import ReadinessSettings
from trellis.models import FeedbackStats, WorkItem
from trellis.phase_fields import (
    COMPUTED_FIELDS,
    FieldRule,
    field_hint,
    field_kind_mismatch,
    field_label,
    get_phase_field_config,
)
from trellis.phases import WorkItemType, is_terminal_phase, next_phase, parse_work_item_type, validate_phase
from trellis.types.readiness import MissingFieldDict, ReadinessDict

logger = logging.getLogger(__name__)

DEFAULT_READINESS = ReadinessSettings()

TERMINAL_SUGGESTION = "This is a terminal phase - no further upgrades available"

# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ComputedFields:
    """Derived booleans the caller supplies; None means "not known" (unfilled)."""

    has_scope: bool | None = None
    feedback_addressed: bool | None = None
    blockers_documented: bool | None = None
    fix_verified: bool | None = None

    def get(self, name: str) -> bool | None:
        if name not in COMPUTED_FIELDS:
            msg = f"'{name}' is not a computed field"
            raise KeyError(msg)
        value: bool | None = getattr(self, name)
        return value


@dataclass(frozen=True)
class MissingField:
    field: str
    label: str
    required: bool
    hint: str

    def to_dict(self) -> MissingFieldDict:
        return MissingFieldDict(field=self.field, label=self.label, required=self.required, hint=self.hint)


@dataclass(frozen=True)
class ReadinessResult:
    """Readiness of one work item to advance to ``next_phase``."""

    work_item_type: WorkItemType
    current_phase: str
    next_phase: str | None
    readiness_percent: int
    can_upgrade: bool
    is_terminal: bool
    required_percent: float
    optional_percent: float
    missing_fields: tuple[MissingField, ...] = ()
    completed_fields: tuple[str, ...] = ()
    suggestions: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    def to_dict(self) -> ReadinessDict:
        return ReadinessDict(
            workItemType=self.work_item_type.value,
            currentPhase=self.current_phase,
            nextPhase=self.next_phase,
            readinessPercent=self.readiness_percent,
            canUpgrade=self.can_upgrade,
            isTerminal=self.is_terminal,
            missingFields=[m.to_dict() for m in self.missing_fields],
            completedFields=list(self.completed_fields),
            breakdown={"requiredPercent": self.required_percent, "optionalPercent": self.optional_percent},
            suggestions=list(self.suggestions),
            warnings=list(self.warnings),
        )


@dataclass
class BatchReadinessResult:
    """Per-item results plus per-item errors; one bad item never aborts the batch."""

    results: dict[str, ReadinessResult] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": {item_id: r.to_dict() for item_id, r in self.results.items()},
            "errors": dict(self.errors),
        }


# ---------------------------------------------------------------------------
# Computed fields
# ---------------------------------------------------------------------------


def derive_computed_fields(
    fields: Mapping[str, Any],
    timeline_items_count: int = 0,
    feedback_stats: FeedbackStats | None = None,
    *,
    settings: ReadinessSettings = DEFAULT_READINESS,
) -> ComputedFields:
    """Derive :class:`ComputedFields` from data the caller already holds.

    - has_scope: enough timeline items, or non-empty acceptance criteria
    - feedback_addressed: no pending critical feedback (True without stats)
    - blockers_documented: True unless the bag explicitly says False
    - fix_verified: ``quality_approved`` is exactly True
    """
    criteria = fields.get("acceptance_criteria")
    has_criteria = isinstance(criteria, str) and criteria.strip() != ""
    return ComputedFields(
        has_scope=timeline_items_count >= max(settings.min_scope_items, 1) or has_criteria,
        feedback_addressed=feedback_stats is None or feedback_stats.pending_critical == 0,
        blockers_documented=fields.get("blockers_documented") is not False,
        fix_verified=fields.get("quality_approved") is True,
    )


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def _round_half_up(value: float) -> int:
    # Trim float noise first so 72.49999999 from 0.7/0.3 products rounds like 72.5.
    return math.floor(round(value, 9) + 0.5)


def _pool_percent(filled: int, total: int) -> float:
    """Percent of a weight pool, reported as exactly 100.0 only when complete."""
    if total == 0 or filled == total:
        return 100.0
    return min(round(filled / total * 100, 1), 99.9)


def _terminal_result(item_type: WorkItemType, phase: str) -> ReadinessResult:
    return ReadinessResult(
        work_item_type=item_type,
        current_phase=phase,
        next_phase=None,
        readiness_percent=100,
        can_upgrade=False,
        is_terminal=True,
        required_percent=100.0,
        optional_percent=100.0,
        suggestions=(TERMINAL_SUGGESTION,),
    )


def calculate_readiness(
    fields: Mapping[str, Any],
    item_type: WorkItemType | str,
    current_phase: str,
    computed: ComputedFields | None = None,
    *,
    settings: ReadinessSettings = DEFAULT_READINESS,
) -> ReadinessResult:
    """Score how ready a work item is to leave ``current_phase``.

    Raises:
        UnknownWorkItemTypeError: if the type is unknown.
        UnknownPhaseError: if the phase is not defined for the type.
    """
    wt = parse_work_item_type(item_type)
    validate_phase(wt, current_phase)
    if is_terminal_phase(wt, current_phase):
        return _terminal_result(wt, current_phase)

    computed = computed or ComputedFields()
    config = get_phase_field_config(wt, current_phase)
    rules: tuple[FieldRule, ...] = config.fields if config else ()
    target = next_phase(wt, current_phase)

    required_total = required_filled = optional_total = optional_filled = 0
    missing: list[MissingField] = []
    completed: list[str] = []
    warnings: list[str] = []

    for rule in rules:
        if rule.field in COMPUTED_FIELDS:
            value = computed.get(rule.field)
        else:
            value = fields.get(rule.field)
        mismatch = field_kind_mismatch(rule.field, value)
        if mismatch:
            warnings.append(mismatch)
        filled = mismatch is None and rule.is_filled(value)

        if rule.required:
            required_total += rule.weight
            if filled:
                required_filled += rule.weight
        else:
            optional_total += rule.weight
            if filled:
                optional_filled += rule.weight

        if filled:
            completed.append(rule.field)
        elif rule.required:
            missing.append(
                MissingField(
                    field=rule.field,
                    label=field_label(rule.field),
                    required=True,
                    hint=field_hint(rule.field, current_phase, target or ""),
                )
            )

    required_exact = required_filled / required_total * 100 if required_total else 100.0
    optional_exact = optional_filled / optional_total * 100 if optional_total else 100.0
    readiness = _round_half_up(required_exact * settings.required_weight + optional_exact * settings.optional_weight)
    readiness = max(0, min(100, readiness))
    all_required = required_filled == required_total
    can_upgrade = all_required and readiness >= settings.upgrade_threshold

    suggestions: list[str] = []
    if missing:
        noun = "field" if len(missing) == 1 else "fields"
        suggestions.append(f"Complete {len(missing)} required {noun} to unlock phase upgrade")
    if all_required and readiness < settings.upgrade_threshold:
        suggestions.append(f"Fill in optional fields to reach {settings.upgrade_threshold}% readiness")

    if warnings:
        logger.debug("Readiness %s/%s: %d malformed field value(s)", wt.value, current_phase, len(warnings))

    return ReadinessResult(
        work_item_type=wt,
        current_phase=current_phase,
        next_phase=target,
        readiness_percent=readiness,
        can_upgrade=can_upgrade,
        is_terminal=False,
        required_percent=_pool_percent(required_filled, required_total),
        optional_percent=_pool_percent(optional_filled, optional_total),
        missing_fields=tuple(missing),
        completed_fields=tuple(completed),
        suggestions=tuple(suggestions),
        warnings=tuple(warnings),
    )


def readiness_for_item(
    item: WorkItem,
    computed: ComputedFields | None = None,
    *,
    settings: ReadinessSettings = DEFAULT_READINESS,
) -> ReadinessResult:
    """Readiness of a :class:`WorkItem`, deriving computed fields when not given."""
    values = item.field_values()
    if computed is None:
        computed = derive_computed_fields(
            values, item.timeline_items_count, item.feedback_stats, settings=settings
        )
    return calculate_readiness(values, item.type, item.phase, computed, settings=settings)


# ---------------------------------------------------------------------------
# Batch
# ---------------------------------------------------------------------------


def calculate_readiness_batch(
    items: Iterable[WorkItem | Mapping[str, Any]],
    computed_by_id: Mapping[str, ComputedFields] | None = None,
    *,
    max_workers: int | None = None,
    settings: ReadinessSettings = DEFAULT_READINESS,
) -> BatchReadinessResult:
    """Score many items on a thread pool.

    Items may be :class:`WorkItem` instances or raw snapshot records. A record
    that fails to parse, or names an unknown type or phase, lands in
    ``errors`` under its id (or ``#<index>`` when it has none). An id that
    appears more than once is reported in ``errors`` and scored for none of
    its records.
    """
    computed_by_id = computed_by_id or {}
    batch = BatchReadinessResult()

    def _score(entry: tuple[int, WorkItem | Mapping[str, Any]]) -> tuple[str, ReadinessResult | None, str | None]:
        index, raw = entry
        key = f"#{index}"
        try:
            item = raw if isinstance(raw, WorkItem) else WorkItem.from_dict(raw)
            key = item.id
            return (key, readiness_for_item(item, computed_by_id.get(item.id), settings=settings), None)
        except ValueError as exc:
            if isinstance(raw, Mapping) and isinstance(raw.get("id"), str) and raw["id"].strip():
                key = raw["id"].strip()
            return (key, None, str(exc))

    seen: set[str] = set()
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        for key, result, error in pool.map(_score, enumerate(items)):
            if key in seen:
                # An ambiguous id yields no result, only the error.
                error = f"duplicate work item id {key!r}"
                batch.results.pop(key, None)
            seen.add(key)
            if error is not None:
                logger.warning("Readiness failed for %s: %s", key, error)
                batch.errors[key] = error
            elif result is not None:
                batch.results[key] = result

    logger.info(
        "Batch readiness: %d scored, %d failed",
        len(batch.results),
        len(batch.errors),
        extra={
            "operation": "readiness_batch",
            "counts": {"scored": len(batch.results), "failed": len(batch.errors)},
        },
    )
    return batch
