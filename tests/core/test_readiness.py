"""Tests for readiness scoring, computed fields, and batch fan-out."""

from __future__ import annotations

from typing import Any

import pytest

import trellis.readiness as readiness_module
from trellis.config import ReadinessSettings
from trellis.models import FeedbackStats, WorkItem
from trellis.phase_fields import FieldRule, PhaseFieldConfig, non_empty_text
from trellis.phases import UnknownPhaseError, UnknownWorkItemTypeError, WorkItemType
from trellis.readiness import (
    TERMINAL_SUGGESTION,
    ComputedFields,
    calculate_readiness,
    calculate_readiness_batch,
    derive_computed_fields,
    readiness_for_item,
)


class TestTerminalPhases:
    @pytest.mark.parametrize(
        ("item_type", "phase"),
        [("feature", "launch"), ("concept", "validated"), ("concept", "rejected"), ("bug", "verified")],
    )
    def test_terminal_is_complete_but_cannot_upgrade(self, item_type: str, phase: str) -> None:
        result = calculate_readiness({}, item_type, phase)
        assert result.readiness_percent == 100
        assert result.can_upgrade is False
        assert result.is_terminal is True
        assert result.next_phase is None
        assert result.required_percent == 100.0
        assert result.optional_percent == 100.0
        assert result.suggestions == (TERMINAL_SUGGESTION,)


class TestScoring:
    def test_empty_design_item(self) -> None:
        result = calculate_readiness({}, "feature", "design", ComputedFields())
        assert result.readiness_percent == 0
        assert result.can_upgrade is False
        assert [m.field for m in result.missing_fields] == ["purpose", "acceptance_criteria", "has_scope"]
        assert result.suggestions[0] == "Complete 3 required fields to unlock phase upgrade"

    def test_required_only_is_seventy_percent(self) -> None:
        fields = {"purpose": "A clear reason to build this", "acceptance_criteria": "It works"}
        result = calculate_readiness(fields, "feature", "design", ComputedFields(has_scope=True))
        assert result.required_percent == 100.0
        assert result.optional_percent == 0.0
        assert result.readiness_percent == 70
        assert result.can_upgrade is False
        assert result.suggestions == ("Fill in optional fields to reach 80% readiness",)

    def test_all_fields_filled_can_upgrade(self) -> None:
        fields = {
            "purpose": "A clear reason to build this",
            "acceptance_criteria": "It works",
            "target_release": "v1",
            "estimated_hours": 12,
            "priority": "medium",
            "business_value": "Revenue",
        }
        result = calculate_readiness(fields, "feature", "design", ComputedFields(has_scope=True))
        assert result.readiness_percent == 100
        assert result.can_upgrade is True
        assert result.missing_fields == ()
        assert result.next_phase == "build"
        assert result.suggestions == ()

    def test_short_purpose_is_not_filled(self) -> None:
        result = calculate_readiness({"purpose": "too short"}, "feature", "design", ComputedFields())
        assert "purpose" in [m.field for m in result.missing_fields]

    def test_progress_threshold_has_no_partial_credit(self) -> None:
        below = calculate_readiness(
            {"progress_percent": 79, "actual_start_date": "2024-01-02"}, "feature", "build", ComputedFields()
        )
        at = calculate_readiness(
            {"progress_percent": 80, "actual_start_date": "2024-01-02"}, "feature", "build", ComputedFields()
        )
        assert [m.field for m in below.missing_fields] == ["progress_percent"]
        assert at.missing_fields == ()
        assert at.required_percent == 100.0

    def test_missing_field_carries_label_and_hint(self) -> None:
        result = calculate_readiness({"actual_start_date": "2024-01-02"}, "feature", "build", ComputedFields())
        missing = result.missing_fields[0]
        assert missing.label == "Progress"
        assert missing.hint == "Update progress to 80%+ to move to refine"
        assert missing.required is True

    def test_completed_fields_include_optional(self) -> None:
        result = calculate_readiness({"target_release": "v3"}, "feature", "design", ComputedFields())
        assert result.completed_fields == ("target_release",)

    def test_computed_fields_come_from_caller_only(self) -> None:
        # A has_scope key in the bag is ignored; only ComputedFields counts.
        result = calculate_readiness({"has_scope": True}, "feature", "design", ComputedFields(has_scope=False))
        assert "has_scope" in [m.field for m in result.missing_fields]

    def test_partial_required_never_reports_100(self) -> None:
        fields = {"root_cause": "Race in the cache layer", "estimated_hours": 3, "priority": "high"}
        result = calculate_readiness(fields, "bug", "investigating", ComputedFields())
        assert result.required_percent == 71.4
        assert result.can_upgrade is False

    def test_can_upgrade_matches_breakdown(self) -> None:
        samples: list[tuple[dict[str, Any], str, str, ComputedFields]] = [
            ({}, "feature", "design", ComputedFields()),
            ({"purpose": "Long enough purpose", "acceptance_criteria": "x"}, "feature", "design", ComputedFields(has_scope=True)),
            ({"feedback_addressed": True, "progress_percent": 95}, "feature", "refine", ComputedFields(feedback_addressed=True)),
            ({"hypothesis": "Users want dark mode", "target_users": "Night owls"}, "concept", "ideation", ComputedFields()),
            ({"progress_percent": 100, "actual_hours": 2}, "bug", "fixing", ComputedFields(fix_verified=True)),
        ]
        for fields, item_type, phase, computed in samples:
            result = calculate_readiness(fields, item_type, phase, computed)
            expected = result.required_percent == 100 and result.readiness_percent >= 80
            assert result.can_upgrade is expected

    def test_rounds_half_up(self) -> None:
        settings = ReadinessSettings(required_weight=0.73, optional_weight=0.27)
        result = calculate_readiness(
            {"hypothesis": "Users want offline mode"}, "concept", "ideation", ComputedFields(), settings=settings
        )
        # 50% required * 0.73 = 36.5
        assert result.readiness_percent == 37

    def test_custom_threshold(self) -> None:
        settings = ReadinessSettings(upgrade_threshold=70)
        fields = {"purpose": "A clear reason to build this", "acceptance_criteria": "It works"}
        result = calculate_readiness(fields, "feature", "design", ComputedFields(has_scope=True), settings=settings)
        assert result.can_upgrade is True

    def test_zero_required_weight_counts_as_complete(self, monkeypatch: pytest.MonkeyPatch) -> None:
        config = PhaseFieldConfig(
            type=WorkItemType.FEATURE,
            phase="design",
            target_phase="build",
            fields=(FieldRule("target_release", 10, False, non_empty_text),),
        )
        monkeypatch.setattr(readiness_module, "get_phase_field_config", lambda _t, _p: config)
        result = calculate_readiness({"target_release": "v1"}, "feature", "design")
        assert result.required_percent == 100.0
        assert result.readiness_percent == 100
        assert result.can_upgrade is True


class TestMalformedValues:
    def test_text_for_number_is_a_warning_not_an_error(self) -> None:
        result = calculate_readiness(
            {"progress_percent": "eighty", "actual_start_date": "2024-01-02"}, "feature", "build", ComputedFields()
        )
        assert result.can_upgrade is False
        assert any("progress_percent" in w for w in result.warnings)
        assert "progress_percent" in [m.field for m in result.missing_fields]

    def test_boolean_is_not_a_number(self) -> None:
        result = calculate_readiness(
            {"progress_percent": True, "actual_start_date": "2024-01-02"}, "feature", "build", ComputedFields()
        )
        assert result.warnings == ("Field 'progress_percent' expects number, got bool",)

    def test_infinite_progress_is_not_filled(self) -> None:
        result = calculate_readiness(
            {"progress_percent": float("inf"), "actual_start_date": "2024-01-02"}, "feature", "build", ComputedFields()
        )
        assert result.warnings == ("Field 'progress_percent' expects a finite number, got inf",)
        assert [m.field for m in result.missing_fields] == ["progress_percent"]
        assert result.can_upgrade is False


class TestErrors:
    def test_unknown_phase_raises(self) -> None:
        with pytest.raises(UnknownPhaseError):
            calculate_readiness({}, "feature", "triage")

    def test_unknown_type_raises(self) -> None:
        with pytest.raises(UnknownWorkItemTypeError):
            calculate_readiness({}, "epic", "design")


class TestDeriveComputedFields:
    def test_scope_from_timeline(self) -> None:
        assert derive_computed_fields({}, timeline_items_count=1).has_scope is True
        assert derive_computed_fields({}, timeline_items_count=0).has_scope is False

    def test_scope_from_acceptance_criteria(self) -> None:
        assert derive_computed_fields({"acceptance_criteria": "done when shipped"}).has_scope is True
        assert derive_computed_fields({"acceptance_criteria": "   "}).has_scope is False

    def test_feedback_addressed(self) -> None:
        assert derive_computed_fields({}).feedback_addressed is True
        assert derive_computed_fields({}, feedback_stats=FeedbackStats(pending_critical=0, total=4)).feedback_addressed
        pending = derive_computed_fields({}, feedback_stats=FeedbackStats(pending_critical=1, total=4))
        assert pending.feedback_addressed is False

    def test_blockers_documented_unless_explicitly_false(self) -> None:
        assert derive_computed_fields({}).blockers_documented is True
        assert derive_computed_fields({"blockers_documented": False}).blockers_documented is False

    def test_fix_verified_follows_quality_approved(self) -> None:
        assert derive_computed_fields({"quality_approved": True}).fix_verified is True
        assert derive_computed_fields({"quality_approved": "yes"}).fix_verified is False

    def test_min_scope_items_setting(self) -> None:
        settings = ReadinessSettings(min_scope_items=3)
        assert derive_computed_fields({}, timeline_items_count=2, settings=settings).has_scope is False
        assert derive_computed_fields({}, timeline_items_count=3, settings=settings).has_scope is True


class TestFeatureDesignScenario:
    def test_missing_only_acceptance_criteria(self, feature_design_item: WorkItem) -> None:
        result = readiness_for_item(feature_design_item)
        assert [m.field for m in result.missing_fields] == ["acceptance_criteria"]
        assert result.missing_fields[0].label == "Acceptance Criteria"
        assert result.can_upgrade is False
        assert result.readiness_percent == 80
        assert result.required_percent == 71.4
        assert result.suggestions == ("Complete 1 required field to unlock phase upgrade",)

    def test_adding_criteria_unlocks_upgrade(self, feature_design_record: dict[str, Any]) -> None:
        feature_design_record["acceptanceCriteria"] = "Checkout completes in under 3 taps"
        result = readiness_for_item(WorkItem.from_dict(feature_design_record))
        assert result.can_upgrade is True
        assert result.readiness_percent == 100

    def test_to_dict_is_camel_case(self, feature_design_item: WorkItem) -> None:
        data = readiness_for_item(feature_design_item).to_dict()
        assert data["workItemType"] == "feature"
        assert data["currentPhase"] == "design"
        assert data["nextPhase"] == "build"
        assert data["canUpgrade"] is False
        assert data["breakdown"] == {"requiredPercent": 71.4, "optionalPercent": 100.0}
        assert data["missingFields"][0]["field"] == "acceptance_criteria"


class TestBatch:
    def test_bad_item_does_not_abort_batch(self, feature_design_record: dict[str, Any]) -> None:
        records = [
            feature_design_record,
            {"id": "bug-1", "type": "bug", "phase": "verified"},
            {"id": "broken", "type": "bug", "phase": "design"},
            {"type": "feature", "phase": "design"},
        ]
        batch = calculate_readiness_batch(records, max_workers=2)
        assert set(batch.results) == {"feat-1", "bug-1"}
        assert batch.results["bug-1"].is_terminal is True
        assert "broken" in batch.errors
        assert "#3" in batch.errors

    def test_duplicate_ids_are_reported(self, feature_design_record: dict[str, Any]) -> None:
        records = [
            feature_design_record,
            {"id": "bug-1", "type": "bug", "phase": "verified"},
            {**feature_design_record, "phase": "build"},
        ]
        batch = calculate_readiness_batch(records, max_workers=2)
        assert set(batch.results) == {"bug-1"}
        assert batch.errors == {"feat-1": "duplicate work item id 'feat-1'"}

    def test_computed_overrides_by_id(self, feature_design_item: WorkItem) -> None:
        batch = calculate_readiness_batch(
            [feature_design_item], {"feat-1": ComputedFields(has_scope=False)}
        )
        fields = [m.field for m in batch.results["feat-1"].missing_fields]
        assert fields == ["acceptance_criteria", "has_scope"]

    def test_to_dict(self, feature_design_item: WorkItem) -> None:
        data = calculate_readiness_batch([feature_design_item]).to_dict()
        assert data["errors"] == {}
        assert data["results"]["feat-1"]["readinessPercent"] == 80
