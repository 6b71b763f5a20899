"""
Unit tests for procedure definitions.

Tests duration computation for atomic and composite procedures, composition
cycle detection, requirement bound validation and requirement expansion.
"""

import pytest

from hypothesis import given, strategies as st

from core.exceptions import InactiveResourceError, NotFoundError, ValidationError
from models import Procedure, ProcedureComposition
from services.procedure_service import ProcedureService, validate_requirement_bounds

from conftest import CLINIC_ID, OTHER_CLINIC_ID


def build_assessment(catalog):
    """prep (15m) + 5m gap + scan (30m), wrapped in 5m buffers on both sides."""
    prep = catalog.procedure("prep", 15)
    scan = catalog.procedure("scan", 30)
    assessment = catalog.procedure(
        "assessment", procedure_type="composite", buffer_before_minutes=5, buffer_after_minutes=5
    )
    ProcedureService.add_child(catalog.db, CLINIC_ID, assessment.id, prep.id, gap_after_minutes=5)
    ProcedureService.add_child(catalog.db, CLINIC_ID, assessment.id, scan.id)
    return assessment, prep, scan


class TestTotalDuration:
    """Test total_duration for atomic and composite procedures."""

    def test_atomic_includes_buffers(self, catalog):
        procedure = catalog.procedure("cleaning", 30, buffer_before_minutes=10, buffer_after_minutes=5)

        assert ProcedureService.total_duration(catalog.db, procedure) == 45

    def test_composite_sums_children_gaps_and_buffers(self, catalog):
        """Test the 5 + 15 + 5 + 30 + 5 = 60 minute assessment."""
        assessment, _, _ = build_assessment(catalog)

        assert ProcedureService.total_duration(catalog.db, assessment) == 60

    def test_nested_composites(self, catalog):
        assessment, _, _ = build_assessment(catalog)
        review = catalog.procedure("review", 20)
        visit = catalog.procedure("full_visit", procedure_type="composite")
        ProcedureService.add_child(catalog.db, CLINIC_ID, visit.id, assessment.id, gap_after_minutes=10)
        ProcedureService.add_child(catalog.db, CLINIC_ID, visit.id, review.id)

        assert ProcedureService.total_duration(catalog.db, visit) == 90

    @given(
        children=st.lists(
            st.tuples(
                st.integers(min_value=1, max_value=240),
                st.integers(min_value=0, max_value=30),
                st.integers(min_value=0, max_value=30),
                st.integers(min_value=0, max_value=60),
            ),
            min_size=1,
            max_size=6,
        ),
        buffer_before=st.integers(min_value=0, max_value=60),
        buffer_after=st.integers(min_value=0, max_value=60),
    )
    def test_composite_duration_formula(self, children, buffer_before, buffer_after):
        """Test the composite formula on unsaved procedures."""
        composite = Procedure(
            id=1000, procedure_type="composite",
            buffer_before_minutes=buffer_before, buffer_after_minutes=buffer_after,
        )
        expected = buffer_before + buffer_after
        links = []
        for index, (duration, before, after, gap) in enumerate(children, start=1):
            child = Procedure(
                id=index, procedure_type="atomic", duration_minutes=duration,
                buffer_before_minutes=before, buffer_after_minutes=after,
            )
            links.append(ProcedureComposition(child=child, sequence_order=index, gap_after_minutes=gap))
            expected += duration + before + after + gap
        composite.children = links

        assert ProcedureService.total_duration(None, composite) == expected


class TestProcedureValidation:
    """Test creation and update validation."""

    @pytest.mark.parametrize("kwargs", [
        {"duration_minutes": None},
        {"duration_minutes": 0},
        {"duration_minutes": 30, "buffer_before_minutes": -5},
        {"duration_minutes": 30, "procedure_type": "bundle"},
    ])
    def test_invalid_durations(self, db_session, kwargs):
        with pytest.raises(ValidationError):
            ProcedureService.create_procedure(db_session, CLINIC_ID, "bad", "Bad", **kwargs)

    def test_composite_cannot_set_duration(self, db_session):
        with pytest.raises(ValidationError):
            ProcedureService.create_procedure(
                db_session, CLINIC_ID, "bundle", "Bundle", procedure_type="composite", duration_minutes=30
            )

    def test_duplicate_code(self, catalog):
        catalog.procedure("consultation", 30)

        with pytest.raises(ValidationError):
            catalog.procedure("consultation", 45)

    def test_other_clinic_cannot_see_procedure(self, catalog):
        procedure = catalog.procedure("consultation", 30)

        with pytest.raises(NotFoundError):
            ProcedureService.get_procedure(catalog.db, OTHER_CLINIC_ID, procedure.id)

    def test_inactive_procedure(self, catalog):
        procedure = catalog.procedure("consultation", 30)
        ProcedureService.deactivate_procedure(catalog.db, CLINIC_ID, procedure.id)

        with pytest.raises(InactiveResourceError):
            ProcedureService.get_active_procedure(catalog.db, CLINIC_ID, procedure.id)
        assert procedure not in ProcedureService.list_procedures(catalog.db, CLINIC_ID)
        assert procedure in ProcedureService.list_procedures(catalog.db, CLINIC_ID, active_only=False)


class TestComposition:
    """Test composite procedure trees."""

    def test_children_are_kept_in_sequence(self, catalog):
        assessment, prep, scan = build_assessment(catalog)

        details = ProcedureService.get_procedure_details(catalog.db, CLINIC_ID, assessment.id)

        assert [child["child_procedure_id"] for child in details["children"]] == [prep.id, scan.id]
        assert [child["sequence_order"] for child in details["children"]] == [1, 2]
        assert details["total_duration_minutes"] == 60

    def test_atomic_parent_rejected(self, catalog):
        prep = catalog.procedure("prep", 15)
        scan = catalog.procedure("scan", 30)

        with pytest.raises(ValidationError):
            ProcedureService.add_child(catalog.db, CLINIC_ID, prep.id, scan.id)

    def test_cycle_rejected(self, catalog):
        outer = catalog.procedure("outer", procedure_type="composite")
        inner = catalog.procedure("inner", procedure_type="composite")
        ProcedureService.add_child(catalog.db, CLINIC_ID, outer.id, inner.id)

        with pytest.raises(ValidationError):
            ProcedureService.add_child(catalog.db, CLINIC_ID, inner.id, outer.id)
        with pytest.raises(ValidationError):
            ProcedureService.add_child(catalog.db, CLINIC_ID, outer.id, outer.id)

    def test_duplicate_sequence_order_rejected(self, catalog):
        assessment, prep, _ = build_assessment(catalog)

        with pytest.raises(ValidationError):
            ProcedureService.add_child(catalog.db, CLINIC_ID, assessment.id, prep.id, sequence_order=1)

    def test_remove_child(self, catalog):
        assessment, prep, _ = build_assessment(catalog)
        link = assessment.children[1]

        ProcedureService.remove_child(catalog.db, CLINIC_ID, assessment.id, link.id)

        assert [c.child_procedure_id for c in assessment.children] == [prep.id]
        assert ProcedureService.total_duration(catalog.db, assessment) == 30

    def test_reorder_children_moves_gaps_with_their_child(self, catalog):
        assessment, prep, scan = build_assessment(catalog)
        prep_link, scan_link = assessment.children

        links = ProcedureService.reorder_children(
            catalog.db, CLINIC_ID, assessment.id, {prep_link.id: 2, scan_link.id: 1}
        )

        assert [(link.child_procedure_id, link.sequence_order, link.gap_after_minutes) for link in links] == [
            (scan.id, 1, 0),
            (prep.id, 2, 5),
        ]
        assert ProcedureService.total_duration(catalog.db, assessment) == 60

    def test_reorder_children_rejects_shared_positions(self, catalog):
        assessment, _, _ = build_assessment(catalog)
        prep_link, scan_link = assessment.children

        with pytest.raises(ValidationError):
            ProcedureService.reorder_children(catalog.db, CLINIC_ID, assessment.id, {prep_link.id: 2})
        with pytest.raises(ValidationError):
            ProcedureService.reorder_children(catalog.db, CLINIC_ID, assessment.id, {scan_link.id: 0})

        assert [link.sequence_order for link in assessment.children] == [1, 2]

    def test_reorder_children_rejects_foreign_links(self, catalog):
        assessment, prep, scan = build_assessment(catalog)
        other = catalog.procedure("other", procedure_type="composite")
        foreign = ProcedureService.add_child(catalog.db, CLINIC_ID, other.id, prep.id)

        with pytest.raises(NotFoundError):
            ProcedureService.reorder_children(catalog.db, CLINIC_ID, assessment.id, {foreign.id: 3})
        with pytest.raises(NotFoundError):
            ProcedureService.reorder_children(catalog.db, OTHER_CLINIC_ID, assessment.id, {})


class TestRequirementBounds:
    """Test requirement quantity and offset validation."""

    @pytest.mark.parametrize("args", [
        (-1, None, 0, None, 30),
        (2, 1, 0, None, 30),
        (1, None, -5, None, 30),
        (1, None, 20, 10, 30),
        (1, None, 10, 10, 30),
        (1, None, 0, 45, 30),
        (1, None, 30, None, 30),
    ])
    def test_invalid_bounds(self, args):
        with pytest.raises(ValidationError):
            validate_requirement_bounds(*args)

    def test_valid_bounds(self):
        validate_requirement_bounds(0, None, 0, None, 30)
        validate_requirement_bounds(1, 2, 10, 30, 30)
        validate_requirement_bounds(1, None, 10, 20)

    def test_requirement_past_procedure_end_rejected(self, catalog):
        nurse = catalog.role("nurse", "people")
        procedure = catalog.procedure("consultation", 30)

        with pytest.raises(ValidationError):
            catalog.requirement(procedure, nurse, offset_start_minutes=20, offset_end_minutes=40)
        assert procedure.requirements == []

    def test_shrinking_procedure_under_a_requirement_rejected(self, catalog):
        nurse = catalog.role("nurse", "people")
        procedure = catalog.procedure("consultation", 30)
        catalog.requirement(procedure, nurse, offset_start_minutes=10, offset_end_minutes=30)

        with pytest.raises(ValidationError):
            ProcedureService.update_procedure(catalog.db, CLINIC_ID, procedure.id, duration_minutes=20)

        catalog.db.refresh(procedure)
        assert procedure.duration_minutes == 30

    def test_shrinking_child_under_parent_requirement_rejected(self, catalog):
        assessment, _, scan = build_assessment(catalog)
        room = catalog.role("exam_room", "place")
        catalog.requirement(assessment, room, offset_start_minutes=0, offset_end_minutes=60)

        with pytest.raises(ValidationError):
            ProcedureService.update_procedure(catalog.db, CLINIC_ID, scan.id, duration_minutes=20)

    def test_update_requirement_keeps_omitted_fields(self, catalog):
        nurse = catalog.role("nurse", "people")
        procedure = catalog.procedure("consultation", 30)
        requirement = catalog.requirement(procedure, nurse, quantity_min=1, quantity_max=2, notes="triage")

        updated = ProcedureService.update_requirement(catalog.db, CLINIC_ID, requirement.id, quantity_min=2)

        assert updated.quantity_min == 2
        assert updated.quantity_max == 2
        assert updated.notes == "triage"


class TestExpandRequirements:
    """Test flattening of requirements over a composite's span."""

    def test_offsets_follow_children_layout(self, catalog):
        assessment, prep, scan = build_assessment(catalog)
        nurse = catalog.role("nurse", "people")
        scanner = catalog.role("scanner", "equipment")
        room = catalog.role("exam_room", "place")
        catalog.requirement(prep, nurse)
        catalog.requirement(scan, scanner)
        catalog.requirement(assessment, room)

        expanded = ProcedureService.expand_requirements(catalog.db, assessment)

        windows = {(r.role_id, r.procedure_id): (r.offset_start_minutes, r.offset_end_minutes) for r in expanded}
        assert windows == {
            (room.id, assessment.id): (0, 60),
            (nurse.id, prep.id): (5, 20),
            (scanner.id, scan.id): (25, 55),
        }

    def test_offsets_follow_reordered_children(self, catalog):
        assessment, prep, scan = build_assessment(catalog)
        nurse = catalog.role("nurse", "people")
        scanner = catalog.role("scanner", "equipment")
        catalog.requirement(prep, nurse)
        catalog.requirement(scan, scanner)
        prep_link, scan_link = assessment.children

        ProcedureService.reorder_children(catalog.db, CLINIC_ID, assessment.id, {prep_link.id: 2, scan_link.id: 1})
        expanded = ProcedureService.expand_requirements(catalog.db, assessment)

        windows = {r.role_id: (r.offset_start_minutes, r.offset_end_minutes) for r in expanded}
        # scan now runs first; prep keeps its 5 minute gap after it
        assert windows == {scanner.id: (5, 35), nurse.id: (35, 50)}

    def test_quantity_max_defaults_to_min(self, catalog):
        nurse = catalog.role("nurse", "people")
        procedure = catalog.procedure("consultation", 30)
        catalog.requirement(procedure, nurse, quantity_min=2)

        [requirement] = ProcedureService.expand_requirements(catalog.db, procedure)

        assert requirement.quantity_min == requirement.quantity_max == 2

    def test_inactive_child_rejected(self, catalog):
        assessment, prep, _ = build_assessment(catalog)
        ProcedureService.deactivate_procedure(catalog.db, CLINIC_ID, prep.id)

        with pytest.raises(InactiveResourceError):
            ProcedureService.expand_requirements(catalog.db, assessment)

    def test_empty_composite_rejected(self, catalog):
        bundle = catalog.procedure("bundle", procedure_type="composite")

        with pytest.raises(ValidationError):
            ProcedureService.expand_requirements(catalog.db, bundle)
