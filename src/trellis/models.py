# src/trellis/models.py
"""Work item snapshot records.

``WorkItem`` is the mutable domain entity handed to the engine by a caller.
Records arrive as JSON objects with camelCase or snake_case keys;
:meth:`WorkItem.from_dict` normalizes the keys, migrates legacy phase labels
once, and rejects phases that do not belong to the item's type.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from trellis.phases import WorkItemType, migrate_legacy_phase, parse_work_item_type
from trellis.validation import (
    is_finite_number,
    parse_flag,
    parse_non_negative_int,
    parse_optional_hours,
    sanitize_identifier,
)

logger = logging.getLogger(__name__)

ReviewStatus = Literal["pending", "approved", "rejected"]
REVIEW_STATUSES: tuple[str, ...] = ("pending", "approved", "rejected")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])([A-Z])")


def to_snake(key: str) -> str:
    """``acceptanceCriteria`` -> ``acceptance_criteria``; snake_case passes through."""
    return _CAMEL_BOUNDARY.sub(r"_\1", key).lower()


def to_camel(key: str) -> str:
    head, *rest = key.split("_")
    return head + "".join(part.capitalize() for part in rest)


class InvalidWorkItemError(ValueError):
    """Raised when a snapshot record cannot be turned into a WorkItem."""

    def __init__(self, message: str, item_id: str | None = None) -> None:
        self.item_id = item_id
        prefix = f"Work item '{item_id}': " if item_id else "Work item: "
        super().__init__(prefix + message)


@dataclass
class FeedbackStats:
    """Counts of feedback attached to a work item."""

    pending_critical: int = 0
    total: int = 0

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> FeedbackStats:
        norm = {to_snake(k): v for k, v in raw.items()}
        pending, err = parse_non_negative_int(norm.get("pending_critical"), "pendingCritical")
        if err:
            raise InvalidWorkItemError(err)
        total, err = parse_non_negative_int(norm.get("total"), "total")
        if err:
            raise InvalidWorkItemError(err)
        return cls(pending_critical=pending, total=total)

    def to_dict(self) -> dict[str, Any]:
        return {"pendingCritical": self.pending_critical, "total": self.total}


# Record keys that map onto WorkItem attributes rather than the field bag.
_ATTRIBUTE_KEYS: frozenset[str] = frozenset(
    {
        "id",
        "type",
        "phase",
        "name",
        "fields",
        "is_enhancement",
        "review_enabled",
        "review_status",
        "timeline_items_count",
        "feedback_stats",
    }
)

# Keys that are both attributes and readiness fields.
_PROMOTED_FIELDS: tuple[str, ...] = ("progress_percent", "estimated_hours", "priority")


@dataclass
class WorkItem:
    id: str
    type: WorkItemType
    phase: str
    name: str = ""
    fields: dict[str, Any] = field(default_factory=dict)
    progress_percent: float | None = None
    estimated_hours: float | None = None
    priority: str | None = None
    is_enhancement: bool = False
    review_enabled: bool = False
    review_status: ReviewStatus | None = None
    # Supplied by the caller's data layer (timeline items, feedback).
    timeline_items_count: int = 0
    feedback_stats: FeedbackStats | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> WorkItem:
        """Build a WorkItem from a snapshot record.

        Top-level keys that are not WorkItem attributes are merged into the
        field bag, so ``{"purpose": ...}`` and ``{"fields": {"purpose": ...}}``
        are equivalent.

        Raises:
            InvalidWorkItemError: on a missing id/phase or malformed attribute.
            UnknownWorkItemTypeError: on an unknown type.
            UnknownPhaseError: on a phase that is neither current nor legacy.
        """
        if not isinstance(raw, Mapping):
            msg = f"record must be an object, got {type(raw).__name__}"
            raise InvalidWorkItemError(msg)
        norm = {to_snake(k): v for k, v in raw.items()}

        item_id, err = sanitize_identifier(norm.get("id"), "id")
        if err:
            raise InvalidWorkItemError(err)
        item_type = parse_work_item_type(norm.get("type"))

        raw_phase = norm.get("phase")
        if raw_phase is None:
            raise InvalidWorkItemError("phase is required", item_id)
        phase = migrate_legacy_phase(item_type, raw_phase)
        if phase != raw_phase:
            logger.info("Work item %s: migrated legacy phase %r -> %r", item_id, raw_phase, phase)

        bag: dict[str, Any] = {}
        nested = norm.get("fields")
        if nested is not None:
            if not isinstance(nested, Mapping):
                raise InvalidWorkItemError("fields must be an object", item_id)
            bag.update({to_snake(k): v for k, v in nested.items()})
        bag.update({k: v for k, v in norm.items() if k not in _ATTRIBUTE_KEYS})

        estimated, err = parse_optional_hours(bag.get("estimated_hours"), "estimatedHours")
        if err:
            # Left in the bag as-is; readiness reports it as a malformed value.
            logger.warning("Work item %s: %s", item_id, err)
            estimated = None

        review_status = norm.get("review_status")
        if review_status is not None and review_status not in REVIEW_STATUSES:
            msg = f"review_status must be one of {list(REVIEW_STATUSES)} or null, got {review_status!r}"
            raise InvalidWorkItemError(msg, item_id)

        timeline, err = parse_non_negative_int(norm.get("timeline_items_count"), "timelineItemsCount")
        if err:
            raise InvalidWorkItemError(err, item_id)

        stats_raw = norm.get("feedback_stats")
        if stats_raw is not None and not isinstance(stats_raw, Mapping):
            raise InvalidWorkItemError("feedbackStats must be an object", item_id)

        flags: dict[str, bool] = {}
        for key, label in (("is_enhancement", "isEnhancement"), ("review_enabled", "reviewEnabled")):
            flags[key], err = parse_flag(norm.get(key), label)
            if err:
                raise InvalidWorkItemError(err, item_id)

        progress = bag.get("progress_percent")
        priority = bag.get("priority")
        return cls(
            id=item_id,
            type=item_type,
            phase=phase,
            name=str(norm.get("name") or ""),
            fields=bag,
            progress_percent=progress if is_finite_number(progress) else None,
            estimated_hours=estimated,
            priority=priority if isinstance(priority, str) else None,
            is_enhancement=flags["is_enhancement"],
            review_enabled=flags["review_enabled"],
            review_status=review_status,
            timeline_items_count=timeline,
            feedback_stats=FeedbackStats.from_dict(stats_raw) if stats_raw is not None else None,
        )

    @property
    def display_name(self) -> str:
        return self.name or self.id

    def field_values(self) -> dict[str, Any]:
        """Field bag used for readiness scoring, promoted attributes included."""
        values = dict(self.fields)
        for key in _PROMOTED_FIELDS:
            if key not in values and getattr(self, key) is not None:
                values[key] = getattr(self, key)
        return values

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "phase": self.phase,
            "name": self.name,
            "fields": {to_camel(k): v for k, v in self.fields.items()},
            "progressPercent": self.progress_percent,
            "estimatedHours": self.estimated_hours,
            "priority": self.priority,
            "isEnhancement": self.is_enhancement,
            "reviewEnabled": self.review_enabled,
            "reviewStatus": self.review_status,
            "timelineItemsCount": self.timeline_items_count,
            "feedbackStats": self.feedback_stats.to_dict() if self.feedback_stats else None,
        }
