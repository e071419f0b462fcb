"""Tests for the review gate: permissions, state machine, blockers."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from trellis.models import WorkItem
from trellis.phases import WorkItemType
from trellis.review import (
    REVIEW_ACTIONS,
    ReviewActionError,
    allowed_next_statuses,
    apply_review_action,
    can_perform,
    can_toggle_review,
    get_review_blockers,
    is_phase_blocked_by_review,
    is_review_complete,
    review_status_label,
    validate_review_action,
)


def _item(
    phase: str = "refine",
    *,
    item_type: WorkItemType = WorkItemType.FEATURE,
    enabled: bool = True,
    status: str | None = None,
) -> WorkItem:
    return WorkItem(
        id="feat-9",
        type=item_type,
        phase=phase,
        review_enabled=enabled,
        review_status=status,  # type: ignore[arg-type]
    )


def _fixed_now() -> datetime:
    return datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


class TestPermissions:
    def test_permission_matrix(self) -> None:
        assert can_perform("request", "member") is True
        assert can_perform("approve", "member") is False
        assert can_perform("approve", "admin") is True
        assert can_perform("reject", "owner") is True
        assert can_perform("cancel", "viewer") is False

    def test_viewer_can_do_nothing(self) -> None:
        for action in REVIEW_ACTIONS:
            assert can_perform(action, "viewer") is False

    def test_toggle(self) -> None:
        assert can_toggle_review("owner") is True
        assert can_toggle_review("member") is False


class TestValidation:
    def test_role_checked_before_state(self) -> None:
        # Nothing is pending, but the viewer hears about their role first.
        check = validate_review_action(_item(), "launch", "approve", "viewer")
        assert check.valid is False
        assert check.code == "insufficient_role"
        assert check.message == "insufficient role"

    def test_member_cannot_approve_pending(self) -> None:
        check = validate_review_action(_item(status="pending"), "launch", "approve", "member")
        assert check.code == "insufficient_role"

    def test_request_twice(self) -> None:
        check = validate_review_action(_item(status="pending"), "launch", "request", "member")
        assert check.code == "review_already_pending"
        assert check.message == "review already pending"

    def test_request_after_approval(self) -> None:
        check = validate_review_action(_item(status="approved"), "launch", "request", "owner")
        assert check.code == "review_already_approved"

    def test_request_after_rejection_is_allowed(self) -> None:
        assert validate_review_action(_item(status="rejected"), "launch", "request", "member").valid is True

    def test_approve_without_pending(self) -> None:
        check = validate_review_action(_item(), "launch", "approve", "admin")
        assert check.code == "no_pending_review"
        assert check.message == "no pending review"

    def test_request_requires_enabled_review(self) -> None:
        check = validate_review_action(_item(enabled=False), "launch", "request", "member")
        assert check.code == "review_not_enabled"

    def test_concept_does_not_support_review(self) -> None:
        concept = _item("research", item_type=WorkItemType.CONCEPT)
        check = validate_review_action(concept, "validated", "request", "owner")
        assert check.code == "unsupported_type"

    def test_target_must_be_gated(self) -> None:
        check = validate_review_action(_item("build"), "refine", "request", "member")
        assert check.code == "phase_not_gated"

    def test_current_phase_must_be_reviewable(self) -> None:
        check = validate_review_action(_item("design"), "launch", "request", "member")
        assert check.code == "phase_not_reviewable"

    def test_bug_fixing_to_verified(self) -> None:
        bug = _item("fixing", item_type=WorkItemType.BUG)
        assert validate_review_action(bug, "verified", "request", "member").valid is True

    def test_unknown_action_and_role(self) -> None:
        assert validate_review_action(_item(), "launch", "escalate", "owner").code == "unknown_action"
        assert validate_review_action(_item(), "launch", "request", "guest").code == "unknown_role"


class TestApply:
    def test_request(self) -> None:
        result = apply_review_action(_item(), "launch", "request", "member", now=_fixed_now)
        assert result.success is True
        assert result.previous_status is None
        assert result.new_status == "pending"
        assert result.message == "Review requested"
        assert result.timestamp == "2024-05-01T12:00:00+00:00"

    @pytest.mark.parametrize(
        ("action", "new_status", "message"),
        [
            ("approve", "approved", "Review approved"),
            ("reject", "rejected", "Review rejected"),
            ("cancel", None, "Review cancelled"),
        ],
    )
    def test_resolving_a_pending_review(self, action: str, new_status: str | None, message: str) -> None:
        result = apply_review_action(_item(status="pending"), "launch", action, "owner")
        assert result.previous_status == "pending"
        assert result.new_status == new_status
        assert result.message == message

    def test_subject_is_not_mutated(self) -> None:
        item = _item(status="pending")
        apply_review_action(item, "launch", "approve", "admin")
        assert item.review_status == "pending"

    def test_invalid_action_raises_with_code(self) -> None:
        with pytest.raises(ReviewActionError) as exc_info:
            apply_review_action(_item(status="pending"), "launch", "approve", "member")
        assert exc_info.value.code == "insufficient_role"
        assert exc_info.value.work_item_id == "feat-9"
        assert exc_info.value.action == "approve"

    def test_to_dict(self) -> None:
        data = apply_review_action(_item(), "launch", "request", "owner", now=_fixed_now).to_dict()
        assert data["workItemId"] == "feat-9"
        assert data["targetPhase"] == "launch"
        assert data["previousStatus"] is None
        assert data["newStatus"] == "pending"


class TestBlockers:
    def test_blocked_until_approved(self) -> None:
        assert is_phase_blocked_by_review(_item(), "launch") is True
        assert is_phase_blocked_by_review(_item(status="pending"), "launch") is True
        assert is_phase_blocked_by_review(_item(status="approved"), "launch") is False

    def test_disabled_review_never_blocks(self) -> None:
        assert is_phase_blocked_by_review(_item(enabled=False), "launch") is False

    def test_ungated_phase_never_blocked(self) -> None:
        assert is_phase_blocked_by_review(_item("build"), "refine") is False

    def test_blocker_messages(self) -> None:
        assert get_review_blockers(_item(), "launch") == ["Review has not been requested yet"]
        assert get_review_blockers(_item(status="pending"), "launch") == ["Review is pending approval"]
        assert get_review_blockers(_item(status="rejected"), "launch") == [
            "Review was rejected - please request a new review"
        ]
        assert get_review_blockers(_item(status="approved"), "launch") == []

    def test_review_complete(self) -> None:
        assert is_review_complete(_item(enabled=False)) is True
        assert is_review_complete(_item(status="approved")) is True
        assert is_review_complete(_item(status="rejected")) is False


class TestStateMachine:
    def test_allowed_next_statuses(self) -> None:
        assert allowed_next_statuses(None) == ("pending",)
        assert allowed_next_statuses("pending") == ("approved", "rejected")
        assert allowed_next_statuses("approved") == ()
        assert allowed_next_statuses("rejected") == ("pending",)

    def test_labels(self) -> None:
        assert review_status_label(None) == "Not Requested"
        assert review_status_label("pending") == "Pending Review"
