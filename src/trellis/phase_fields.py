# src/trellis/phase_fields.py
"""Built-in readiness rules: which fields gate leaving each phase.

One :class:`PhaseFieldConfig` per non-terminal ``(type, phase)`` pair. Each
rule carries a weight, a required flag and an ``is_filled`` predicate.
Required and optional weights are scored as separate pools, so they need not
sum to 100.
"""

from __future__ import annotations

import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from typing import Any, Literal, assert_never

from trellis.phases import WorkItemType, parse_work_item_type
from trellis.validation import is_finite_number

FieldKind = Literal["text", "number", "boolean", "date"]

# ---------------------------------------------------------------------------
# Frozen rule dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FieldRule:
    """One weighted field contributing to the readiness score."""

    field: str
    weight: int
    required: bool
    is_filled: Callable[[Any], bool]

    def __post_init__(self) -> None:
        if self.weight < 0:
            msg = f"Field '{self.field}' has negative weight {self.weight}"
            raise ValueError(msg)


@dataclass(frozen=True)
class PhaseFieldConfig:
    """Readiness rules for leaving ``phase`` towards ``target_phase``."""

    type: WorkItemType
    phase: str
    target_phase: str
    fields: tuple[FieldRule, ...]

    @property
    def required(self) -> tuple[FieldRule, ...]:
        return tuple(f for f in self.fields if f.required)

    @property
    def optional(self) -> tuple[FieldRule, ...]:
        return tuple(f for f in self.fields if not f.required)


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def text_longer_than(n: int) -> Callable[[Any], bool]:
    """Filled when the stripped text is longer than ``n`` characters."""

    def _check(value: Any) -> bool:
        return isinstance(value, str) and len(value.strip()) > n

    return _check


def non_empty_text(value: Any) -> bool:
    return isinstance(value, str) and value.strip() != ""


def non_empty_value(value: Any) -> bool:
    """A set enum/date value: any non-empty string (or a date object)."""
    if isinstance(value, date):
        return True
    return isinstance(value, str) and len(value) > 0


def positive_number(value: Any) -> bool:
    return is_finite_number(value) and value > 0


def at_least(threshold: float) -> Callable[[Any], bool]:
    """Boolean threshold check; there is no partial credit below it."""

    def _check(value: Any) -> bool:
        return is_finite_number(value) and value >= threshold

    return _check


def is_true(value: Any) -> bool:
    return value is True


# ---------------------------------------------------------------------------
# Field catalogue
# ---------------------------------------------------------------------------

# Fields the caller computes and passes in; never read from the item.
COMPUTED_FIELDS: frozenset[str] = frozenset({"has_scope", "feedback_addressed", "blockers_documented", "fix_verified"})

FIELD_KINDS: dict[str, FieldKind] = {
    "purpose": "text",
    "acceptance_criteria": "text",
    "target_release": "text",
    "business_value": "text",
    "customer_impact": "text",
    "strategic_alignment": "text",
    "priority": "text",
    "estimated_hours": "number",
    "actual_hours": "number",
    "progress_percent": "number",
    "actual_start_date": "date",
    "actual_end_date": "date",
    "quality_approved": "boolean",
    "hypothesis": "text",
    "target_users": "text",
    "success_criteria": "text",
    "validation_results": "text",
    "reproduction_steps": "text",
    "severity": "text",
    "affected_users": "text",
    "root_cause": "text",
}

FIELD_LABELS: dict[str, str] = {
    "purpose": "Purpose",
    "acceptance_criteria": "Acceptance Criteria",
    "has_scope": "Scope Definition",
    "target_release": "Target Release",
    "estimated_hours": "Estimated Hours",
    "priority": "Priority",
    "business_value": "Business Value",
    "customer_impact": "Customer Impact",
    "progress_percent": "Progress",
    "actual_start_date": "Start Date",
    "actual_hours": "Actual Hours",
    "blockers_documented": "Blockers Review",
    "feedback_addressed": "Feedback Addressed",
    "quality_approved": "Quality Approved",
    "actual_end_date": "End Date",
    "hypothesis": "Hypothesis",
    "target_users": "Target Users",
    "success_criteria": "Success Criteria",
    "validation_results": "Validation Results",
    "reproduction_steps": "Reproduction Steps",
    "severity": "Severity",
    "affected_users": "Affected Users",
    "root_cause": "Root Cause",
    "fix_verified": "Fix Verified",
}

FIELD_HINTS: dict[str, str] = {
    "purpose": "Explain why this work item matters in 2-3 sentences",
    "acceptance_criteria": 'Define what "done" looks like for this item',
    "has_scope": "Add timeline items or define acceptance criteria",
    "target_release": "Set a target release date or version",
    "estimated_hours": "Estimate the effort required",
    "priority": "Set priority to help with planning",
    "business_value": "Describe the business impact",
    "customer_impact": "Describe how customers will be affected",
    "actual_start_date": "Set the date work began",
    "actual_hours": "Track actual time spent",
    "blockers_documented": "Review and document any blockers",
    "feedback_addressed": "Address all pending critical feedback",
    "quality_approved": "Mark as quality approved after review",
    "actual_end_date": "Set the completion date",
    "hypothesis": "State the core assumption you need to validate",
    "target_users": "Define who will benefit from this concept",
    "success_criteria": "Define measurable criteria for validation",
    "validation_results": "Document research findings and evidence",
    "reproduction_steps": "Provide clear steps to reproduce the bug",
    "severity": "Set severity level: critical, high, medium, or low",
    "affected_users": "Estimate how many users are impacted",
    "root_cause": "Document the identified root cause of the bug",
    "fix_verified": "QA must verify the fix before marking complete",
}

# Progress hints depend on the threshold of the phase being left.
_PROGRESS_HINTS: dict[str, str] = {
    "build": "Update progress to 80%+ to move to refine",
    "refine": "Update progress to 95%+ to move to launch",
    "fixing": "Update progress to 100% to mark the fix complete",
}


def field_label(field: str) -> str:
    return FIELD_LABELS.get(field, field)


def field_hint(field: str, phase: str, target_phase: str) -> str:
    if field == "progress_percent" and phase in _PROGRESS_HINTS:
        return _PROGRESS_HINTS[phase]
    return FIELD_HINTS.get(field, f"Complete {field_label(field)} to progress to {target_phase}")


def field_kind_mismatch(field: str, value: Any) -> str | None:
    """Describe a value whose type does not match the field's kind, else None.

    ``None`` values are simply unfilled, never a mismatch.
    """
    kind = FIELD_KINDS.get(field)
    if kind is None or value is None:
        return None
    ok: bool
    match kind:
        case "text":
            ok = isinstance(value, str)
        case "number":
            ok = is_finite_number(value)
        case "boolean":
            ok = isinstance(value, bool)
        case "date":
            ok = isinstance(value, (str, date))
        case _:
            assert_never(kind)
    if ok:
        return None
    if kind == "number" and isinstance(value, float) and not math.isfinite(value):
        return f"Field '{field}' expects a finite number, got {value}"
    return f"Field '{field}' expects {kind}, got {type(value).__name__}"


# ---------------------------------------------------------------------------
# Feature / Enhancement
# ---------------------------------------------------------------------------

DESIGN_TO_BUILD = PhaseFieldConfig(
    type=WorkItemType.FEATURE,
    phase="design",
    target_phase="build",
    fields=(
        FieldRule("purpose", 25, True, text_longer_than(10)),
        FieldRule("acceptance_criteria", 20, True, non_empty_text),
        FieldRule("has_scope", 25, True, is_true),
        FieldRule("target_release", 8, False, non_empty_text),
        FieldRule("estimated_hours", 7, False, positive_number),
        FieldRule("priority", 7, False, non_empty_value),
        FieldRule("business_value", 8, False, non_empty_text),
    ),
)

BUILD_TO_REFINE = PhaseFieldConfig(
    type=WorkItemType.FEATURE,
    phase="build",
    target_phase="refine",
    fields=(
        FieldRule("progress_percent", 40, True, at_least(80)),
        FieldRule("actual_start_date", 30, True, non_empty_value),
        FieldRule("actual_hours", 15, False, positive_number),
        FieldRule("blockers_documented", 15, False, is_true),
    ),
)

REFINE_TO_LAUNCH = PhaseFieldConfig(
    type=WorkItemType.FEATURE,
    phase="refine",
    target_phase="launch",
    fields=(
        FieldRule("feedback_addressed", 40, True, is_true),
        FieldRule("progress_percent", 30, True, at_least(95)),
        FieldRule("quality_approved", 15, False, is_true),
        FieldRule("actual_end_date", 15, False, non_empty_value),
    ),
)

# ---------------------------------------------------------------------------
# Concept
# ---------------------------------------------------------------------------

IDEATION_TO_RESEARCH = PhaseFieldConfig(
    type=WorkItemType.CONCEPT,
    phase="ideation",
    target_phase="research",
    fields=(
        FieldRule("hypothesis", 35, True, text_longer_than(10)),
        FieldRule("target_users", 35, True, text_longer_than(5)),
        FieldRule("purpose", 15, False, non_empty_text),
        FieldRule("success_criteria", 15, False, non_empty_text),
    ),
)

RESEARCH_TO_VALIDATED = PhaseFieldConfig(
    type=WorkItemType.CONCEPT,
    phase="research",
    target_phase="validated",
    fields=(
        FieldRule("validation_results", 40, True, text_longer_than(20)),
        FieldRule("success_criteria", 30, True, text_longer_than(10)),
        FieldRule("business_value", 15, False, non_empty_text),
        FieldRule("customer_impact", 15, False, non_empty_text),
    ),
)

# ---------------------------------------------------------------------------
# Bug
# ---------------------------------------------------------------------------

TRIAGE_TO_INVESTIGATING = PhaseFieldConfig(
    type=WorkItemType.BUG,
    phase="triage",
    target_phase="investigating",
    fields=(
        FieldRule("reproduction_steps", 40, True, text_longer_than(10)),
        FieldRule("severity", 30, True, non_empty_value),
        FieldRule("affected_users", 15, False, non_empty_text),
        FieldRule("purpose", 15, False, non_empty_text),
    ),
)

INVESTIGATING_TO_FIXING = PhaseFieldConfig(
    type=WorkItemType.BUG,
    phase="investigating",
    target_phase="fixing",
    fields=(
        FieldRule("root_cause", 50, True, text_longer_than(10)),
        FieldRule("actual_start_date", 20, True, non_empty_value),
        FieldRule("estimated_hours", 15, False, positive_number),
        FieldRule("priority", 15, False, non_empty_value),
    ),
)

FIXING_TO_VERIFIED = PhaseFieldConfig(
    type=WorkItemType.BUG,
    phase="fixing",
    target_phase="verified",
    fields=(
        FieldRule("progress_percent", 40, True, at_least(100)),
        FieldRule("fix_verified", 30, True, is_true),
        FieldRule("actual_hours", 15, False, positive_number),
        FieldRule("actual_end_date", 15, False, non_empty_value),
    ),
)

FEATURE_RULES: dict[str, PhaseFieldConfig] = {c.phase: c for c in (DESIGN_TO_BUILD, BUILD_TO_REFINE, REFINE_TO_LAUNCH)}
CONCEPT_RULES: dict[str, PhaseFieldConfig] = {c.phase: c for c in (IDEATION_TO_RESEARCH, RESEARCH_TO_VALIDATED)}
BUG_RULES: dict[str, PhaseFieldConfig] = {
    c.phase: c for c in (TRIAGE_TO_INVESTIGATING, INVESTIGATING_TO_FIXING, FIXING_TO_VERIFIED)
}


def get_phase_field_config(item_type: WorkItemType | str, phase: str) -> PhaseFieldConfig | None:
    """Rules for leaving ``phase``; None for terminal phases."""
    wt = parse_work_item_type(item_type)
    match wt:
        case WorkItemType.FEATURE:
            return FEATURE_RULES.get(phase)
        case WorkItemType.CONCEPT:
            return CONCEPT_RULES.get(phase)
        case WorkItemType.BUG:
            return BUG_RULES.get(phase)
        case _:
            assert_never(wt)
