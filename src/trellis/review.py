# src/trellis/review.py
"""Review gate -- optional stakeholder approval before gated phase moves.

A gate is keyed by ``(work_item_id, target_phase)`` and moves through
``None -> pending -> approved | rejected``; ``rejected`` may be re-requested,
``approved`` is final, and cancelling a pending review clears it. Everything
here is pure: actions are validated against the subject's current state and
return the status the caller should persist.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal, Protocol

from trellis.models import ReviewStatus
from trellis.phases import WorkItemType
from trellis.types.review import ReviewActionResultDict, ReviewValidationDict

logger = logging.getLogger(__name__)

ReviewAction = Literal["request", "approve", "reject", "cancel"]
ReviewerRole = Literal["owner", "admin", "member", "viewer"]

REVIEW_ACTIONS: tuple[str, ...] = ("request", "approve", "reject", "cancel")
REVIEWER_ROLES: tuple[str, ...] = ("owner", "admin", "member", "viewer")

ReviewErrorCode = Literal[
    "unknown_action",
    "unknown_role",
    "insufficient_role",
    "review_not_enabled",
    "unsupported_type",
    "phase_not_gated",
    "phase_not_reviewable",
    "review_already_pending",
    "review_already_approved",
    "no_pending_review",
]


class ReviewSubject(Protocol):
    """What the gate needs to know about a work item (WorkItem satisfies it)."""

    id: str
    type: WorkItemType
    phase: str
    review_enabled: bool
    review_status: ReviewStatus | None


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ReviewConfig:
    transitions: Mapping[str, tuple[str, ...]]
    permissions: Mapping[str, frozenset[str]]
    supported_types: frozenset[WorkItemType]
    reviewable_phases: Mapping[WorkItemType, frozenset[str]]
    blocked_phases: Mapping[WorkItemType, frozenset[str]]


REVIEW_CONFIG = ReviewConfig(
    transitions={
        "pending": ("approved", "rejected"),
        "approved": (),
        "rejected": ("pending",),
    },
    permissions={
        "request": frozenset({"owner", "admin", "member"}),
        "approve": frozenset({"owner", "admin"}),
        "reject": frozenset({"owner", "admin"}),
        "cancel": frozenset({"owner", "admin", "member"}),
        "toggle": frozenset({"owner", "admin"}),
    },
    supported_types=frozenset({WorkItemType.FEATURE, WorkItemType.BUG}),
    reviewable_phases={
        WorkItemType.FEATURE: frozenset({"build", "refine"}),
        WorkItemType.BUG: frozenset({"fixing"}),
        WorkItemType.CONCEPT: frozenset(),
    },
    blocked_phases={
        WorkItemType.FEATURE: frozenset({"launch"}),
        WorkItemType.BUG: frozenset({"verified"}),
        WorkItemType.CONCEPT: frozenset(),
    },
)

_STATUS_LABELS: dict[str | None, str] = {
    None: "Not Requested",
    "pending": "Pending Review",
    "approved": "Approved",
    "rejected": "Rejected",
}

# Status each action moves the gate to.
_ACTION_RESULT: dict[str, ReviewStatus | None] = {
    "request": "pending",
    "approve": "approved",
    "reject": "rejected",
    "cancel": None,
}

_ACTION_MESSAGES: dict[str, str] = {
    "request": "Review requested",
    "approve": "Review approved",
    "reject": "Review rejected",
    "cancel": "Review cancelled",
}


# ---------------------------------------------------------------------------
# Exceptions and results
# ---------------------------------------------------------------------------


class ReviewActionError(ValueError):
    """Raised by :func:`apply_review_action` when the action is not allowed."""

    def __init__(self, code: str, message: str, *, work_item_id: str = "", action: str = "") -> None:
        self.code = code
        self.work_item_id = work_item_id
        self.action = action
        super().__init__(message)


@dataclass(frozen=True)
class ReviewValidation:
    valid: bool
    code: str | None = None
    message: str = ""

    def to_dict(self) -> ReviewValidationDict:
        return ReviewValidationDict(valid=self.valid, code=self.code, message=self.message)


@dataclass(frozen=True)
class ReviewActionResult:
    success: bool
    work_item_id: str
    target_phase: str
    action: str
    previous_status: ReviewStatus | None
    new_status: ReviewStatus | None
    message: str
    timestamp: str

    def to_dict(self) -> ReviewActionResultDict:
        return ReviewActionResultDict(
            success=self.success,
            workItemId=self.work_item_id,
            targetPhase=self.target_phase,
            action=self.action,
            previousStatus=self.previous_status,
            newStatus=self.new_status,
            message=self.message,
            timestamp=self.timestamp,
        )


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def can_perform(action: str, role: str) -> bool:
    """True if ``role`` may perform ``action`` (including ``toggle``)."""
    allowed = REVIEW_CONFIG.permissions.get(action)
    return allowed is not None and role in allowed


def can_toggle_review(role: str) -> bool:
    return can_perform("toggle", role)


def supports_review(item_type: WorkItemType) -> bool:
    return item_type in REVIEW_CONFIG.supported_types


def is_reviewable_phase(item_type: WorkItemType, phase: str) -> bool:
    return phase in REVIEW_CONFIG.reviewable_phases.get(item_type, frozenset())


def is_gated_phase(item_type: WorkItemType, phase: str) -> bool:
    return phase in REVIEW_CONFIG.blocked_phases.get(item_type, frozenset())


def is_phase_blocked_by_review(subject: ReviewSubject, target_phase: str) -> bool:
    """Blocked iff review is enabled, the target is gated, and not yet approved."""
    if not subject.review_enabled:
        return False
    if not is_gated_phase(subject.type, target_phase):
        return False
    return subject.review_status != "approved"


def get_review_blockers(subject: ReviewSubject, target_phase: str) -> list[str]:
    """Human-readable reasons the review gate blocks ``target_phase``."""
    if not is_phase_blocked_by_review(subject, target_phase):
        return []
    if subject.review_status is None:
        return ["Review has not been requested yet"]
    if subject.review_status == "pending":
        return ["Review is pending approval"]
    return ["Review was rejected - please request a new review"]


def is_review_complete(subject: ReviewSubject) -> bool:
    return not subject.review_enabled or subject.review_status == "approved"


def allowed_next_statuses(status: ReviewStatus | None) -> tuple[str, ...]:
    if status is None:
        return ("pending",)
    return REVIEW_CONFIG.transitions.get(status, ())


def review_status_label(status: ReviewStatus | None) -> str:
    return _STATUS_LABELS.get(status, "Unknown")


# ---------------------------------------------------------------------------
# Validation and application
# ---------------------------------------------------------------------------


def validate_review_action(subject: ReviewSubject, target_phase: str, action: str, role: str) -> ReviewValidation:
    """Check whether ``role`` may perform ``action`` on the gate right now.

    Role is checked before state, so a viewer always gets ``insufficient_role``.
    """
    if action not in REVIEW_ACTIONS:
        return ReviewValidation(False, "unknown_action", f"unknown review action '{action}'")
    if role not in REVIEWER_ROLES:
        return ReviewValidation(False, "unknown_role", f"unknown role '{role}'")
    if not can_perform(action, role):
        return ReviewValidation(False, "insufficient_role", "insufficient role")

    status = subject.review_status
    if action == "request":
        if not subject.review_enabled:
            return ReviewValidation(False, "review_not_enabled", "review is not enabled for this work item")
        if not supports_review(subject.type):
            return ReviewValidation(False, "unsupported_type", f"type '{subject.type.value}' does not support review")
        if not is_gated_phase(subject.type, target_phase):
            return ReviewValidation(False, "phase_not_gated", f"phase '{target_phase}' is not gated by review")
        if not is_reviewable_phase(subject.type, subject.phase):
            return ReviewValidation(
                False, "phase_not_reviewable", f"review cannot be requested from phase '{subject.phase}'"
            )
        if status == "pending":
            return ReviewValidation(False, "review_already_pending", "review already pending")
        if status == "approved":
            return ReviewValidation(False, "review_already_approved", "review already approved")
    elif status != "pending":
        return ReviewValidation(False, "no_pending_review", "no pending review")

    return ReviewValidation(True, None, "ok")


def apply_review_action(
    subject: ReviewSubject,
    target_phase: str,
    action: str,
    role: str,
    *,
    now: Callable[[], datetime] | None = None,
) -> ReviewActionResult:
    """Validate and perform a review action, returning the new gate status.

    The subject is not mutated; the caller persists ``new_status``.

    Raises:
        ReviewActionError: with the precise code when the action is not allowed.
    """
    check = validate_review_action(subject, target_phase, action, role)
    if not check.valid:
        logger.info(
            "Review %s rejected for %s -> %s: %s", action, subject.id, target_phase, check.code
        )
        raise ReviewActionError(check.code or "invalid", check.message, work_item_id=subject.id, action=action)

    stamp = (now or (lambda: datetime.now(UTC)))()
    result = ReviewActionResult(
        success=True,
        work_item_id=subject.id,
        target_phase=target_phase,
        action=action,
        previous_status=subject.review_status,
        new_status=_ACTION_RESULT[action],
        message=_ACTION_MESSAGES[action],
        timestamp=stamp.isoformat(),
    )
    logger.info(
        "Review %s: %s -> %s",
        action,
        result.previous_status,
        result.new_status,
        extra={"operation": "review_action", "work_item": subject.id, "phase": target_phase},
    )
    return result
