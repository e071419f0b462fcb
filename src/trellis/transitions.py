# src/trellis/transitions.py
"""Combined phase-transition decision: ordering, readiness, then review gate."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Literal

from trellis.config import ReadinessSettings
from trellis.models import WorkItem
from trellis.phases import CONCEPT_REJECTED, WorkItemType, check_transition
from trellis.readiness import DEFAULT_READINESS, ComputedFields, ReadinessResult, readiness_for_item
from trellis.review import ReviewSubject, get_review_blockers, is_phase_blocked_by_review
from trellis.types.readiness import TransitionDecisionDict

logger = logging.getLogger(__name__)

TransitionReason = Literal[
    "ok",
    "no_change",
    "unknown_phase",
    "backward",
    "terminal",
    "not_ready",
    "blocked_by_review",
]


@dataclass(frozen=True)
class TransitionDecision:
    allowed: bool
    reason: TransitionReason
    message: str
    from_phase: str
    to_phase: str
    readiness: ReadinessResult | None = None
    review_blockers: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> TransitionDecisionDict:
        return TransitionDecisionDict(
            allowed=self.allowed,
            reason=self.reason,
            message=self.message,
            fromPhase=self.from_phase,
            toPhase=self.to_phase,
            readiness=self.readiness.to_dict() if self.readiness else None,
            reviewBlockers=list(self.review_blockers),
        )


def decide_transition(
    item: WorkItem,
    to_phase: str,
    computed: ComputedFields | None = None,
    review: ReviewSubject | None = None,
    *,
    settings: ReadinessSettings = DEFAULT_READINESS,
) -> TransitionDecision:
    """Decide whether ``item`` may move to ``to_phase``.

    Checks run in order: phase ordering, no-op, readiness (skipped for a
    Concept being rejected), then the review gate. ``review`` defaults to the
    item itself.
    """
    order = check_transition(item.type, item.phase, to_phase)
    if not order.allowed:
        return TransitionDecision(False, order.reason, order.message, item.phase, str(to_phase))
    if item.phase == to_phase:
        return TransitionDecision(True, "no_change", f"'{to_phase}' is the current phase", item.phase, to_phase)

    if item.type is WorkItemType.CONCEPT and to_phase == CONCEPT_REJECTED:
        logger.debug("Concept %s rejected from %s", item.id, item.phase)
        return TransitionDecision(True, "ok", f"Concept rejected from '{item.phase}'", item.phase, to_phase)

    readiness = readiness_for_item(item, computed, settings=settings)
    if not readiness.can_upgrade:
        missing = ", ".join(m.label for m in readiness.missing_fields) or "optional fields"
        return TransitionDecision(
            False,
            "not_ready",
            f"Work item is {readiness.readiness_percent}% ready (missing: {missing})",
            item.phase,
            to_phase,
            readiness=readiness,
        )
    subject = review if review is not None else item
    if is_phase_blocked_by_review(subject, to_phase):
        blockers = tuple(get_review_blockers(subject, to_phase))
        return TransitionDecision(
            False,
            "blocked_by_review",
            "; ".join(blockers),
            item.phase,
            to_phase,
            readiness=readiness,
            review_blockers=blockers,
        )

    return TransitionDecision(True, "ok", f"'{item.phase}' -> '{to_phase}'", item.phase, to_phase, readiness=readiness)
