"""
Unit tests for the slot generator and persisted slots.

Tests candidate generation on the granularity grid, the resource selector's
ranking (preferences, load, role priority), location filtering, and the
lifecycle of persisted slots.
"""

import pytest
from datetime import datetime, timedelta

from core.exceptions import ConflictError, InactiveResourceError, NotFoundError, ValidationError
from models import ProcedureSlot
from services.procedure_service import ProcedureService
from services.resource_service import ResourceService
from services.slot_service import SlotService, normalize_preferences
from shared_types.scheduling import ReservationInterval, ResourcePreference

from conftest import CLINIC_ID, MONDAY


def at(hour: int, minute: int = 0) -> datetime:
    return MONDAY.replace(hour=hour, minute=minute)


def generate(db, procedure, start=None, end=None, **kwargs):
    kwargs.setdefault("granularity_minutes", 30)
    return SlotService.generate_slots(db, CLINIC_ID, procedure.id, start or at(9), end or at(11), **kwargs)


def picked(candidate, role):
    return [a.resource_id for a in candidate.assignments if a.role_id == role.id]


class TestGenerateSlots:
    """Test candidate generation."""

    def test_candidates_on_grid(self, db_session, surgery_setup):
        candidates = generate(db_session, surgery_setup["surgery"])

        assert [c.start for c in candidates] == [at(9), at(9, 30), at(10)]
        assert all(c.end - c.start == timedelta(minutes=60) for c in candidates)
        first = candidates[0]
        roles = surgery_setup["roles"]
        assert picked(first, roles["surgeon"]) == [surgery_setup["dr_chen"].id]
        assert picked(first, roles["room"]) == [surgery_setup["room_1"].id]
        [vial] = [a for a in first.assignments if a.role_id == roles["vial"].id]
        assert (vial.resource_id, vial.quantity) == (surgery_setup["botox"].id, 1)

    def test_start_is_rounded_up(self, db_session, surgery_setup):
        candidates = generate(db_session, surgery_setup["surgery"], start=at(9, 5))

        assert [c.start for c in candidates] == [at(9, 30), at(10)]

    def test_max_slots(self, db_session, surgery_setup):
        candidates = generate(db_session, surgery_setup["surgery"], max_slots=2)

        assert len(candidates) == 2

    def test_empty_range_rejected(self, db_session, surgery_setup):
        with pytest.raises(ValidationError):
            generate(db_session, surgery_setup["surgery"], start=at(11), end=at(9))

    def test_unavailable_resources_are_skipped(self, catalog, surgery_setup):
        catalog.availability(surgery_setup["dr_chen"], at(9), at(10), availability_type="blocked")

        candidates = generate(catalog.db, surgery_setup["surgery"])

        assert [c.start for c in candidates] == [at(9), at(9, 30), at(10)]
        assert picked(candidates[0], surgery_setup["roles"]["surgeon"]) == [surgery_setup["dr_lin"].id]
        assert picked(candidates[2], surgery_setup["roles"]["surgeon"]) == [surgery_setup["dr_chen"].id]

    def test_no_candidates_without_stock(self, catalog, surgery_setup):
        ResourceService.adjust_inventory(catalog.db, CLINIC_ID, surgery_setup["botox"].id, -5)

        assert generate(catalog.db, surgery_setup["surgery"]) == []

    def test_optional_requirement_left_unfilled(self, catalog, surgery_setup):
        assistant = catalog.role("assistant", "people")
        catalog.requirement(surgery_setup["surgery"], assistant, is_required=False)

        candidates = generate(catalog.db, surgery_setup["surgery"])

        assert len(candidates) == 3
        assert candidates[0].unfilled_optional_role_ids == [assistant.id]

    def test_inactive_procedure(self, catalog, surgery_setup):
        ProcedureService.deactivate_procedure(catalog.db, CLINIC_ID, surgery_setup["surgery"].id)

        with pytest.raises(InactiveResourceError):
            generate(catalog.db, surgery_setup["surgery"])


class TestPreferences:
    """Test preferred and required resources."""

    def test_preferred_resource_ranks_first(self, db_session, surgery_setup):
        preference = {
            "role_id": surgery_setup["roles"]["surgeon"].id,
            "resource_id": surgery_setup["dr_lin"].id,
            "preference_type": "preferred",
        }

        [candidate, *_] = generate(db_session, surgery_setup["surgery"], preferences=[preference])

        assert picked(candidate, surgery_setup["roles"]["surgeon"]) == [surgery_setup["dr_lin"].id]

    def test_preferred_resource_falls_back(self, catalog, surgery_setup):
        catalog.availability(surgery_setup["dr_lin"], at(9), at(11), availability_type="blocked")
        preference = {
            "role_id": surgery_setup["roles"]["surgeon"].id,
            "resource_id": surgery_setup["dr_lin"].id,
        }

        candidates = generate(catalog.db, surgery_setup["surgery"], preferences=[preference])

        assert len(candidates) == 3
        assert picked(candidates[0], surgery_setup["roles"]["surgeon"]) == [surgery_setup["dr_chen"].id]

    def test_required_resource_restricts_candidates(self, catalog, surgery_setup):
        catalog.availability(surgery_setup["dr_lin"], at(9), at(10), availability_type="blocked")
        preference = {
            "role_id": surgery_setup["roles"]["surgeon"].id,
            "resource_id": surgery_setup["dr_lin"].id,
            "preference_type": "required",
        }

        candidates = generate(catalog.db, surgery_setup["surgery"], preferences=[preference])

        assert [c.start for c in candidates] == [at(10)]
        assert picked(candidates[0], surgery_setup["roles"]["surgeon"]) == [surgery_setup["dr_lin"].id]

    def test_role_priority_breaks_ties(self, catalog, surgery_setup):
        ResourceService.assign_role(
            catalog.db, CLINIC_ID, surgery_setup["dr_lin"].id, surgery_setup["roles"]["surgeon"].id, priority=-1
        )

        [candidate, *_] = generate(catalog.db, surgery_setup["surgery"])

        assert picked(candidate, surgery_setup["roles"]["surgeon"]) == [surgery_setup["dr_lin"].id]

    def test_resource_outside_role_rejected(self, db_session, surgery_setup):
        preference = {
            "role_id": surgery_setup["roles"]["surgeon"].id,
            "resource_id": surgery_setup["room_1"].id,
        }

        with pytest.raises(ValidationError):
            generate(db_session, surgery_setup["surgery"], preferences=[preference])

    def test_unknown_resource_rejected(self, db_session, surgery_setup):
        preference = {"role_id": surgery_setup["roles"]["surgeon"].id, "resource_id": 999999}

        with pytest.raises(NotFoundError):
            generate(db_session, surgery_setup["surgery"], preferences=[preference])

    @pytest.mark.parametrize("preference", [
        {"role_id": "1", "resource_id": 1},
        {"role_id": 1},
        {"role_id": 1, "resource_id": 1, "preference_type": "mandatory"},
    ])
    def test_malformed_preferences(self, preference):
        with pytest.raises(ValidationError):
            normalize_preferences([preference])

    def test_normalize_keeps_dataclasses(self):
        preference = ResourcePreference(role_id=1, resource_id=2, preference_type="required")

        assert normalize_preferences([preference]) == [preference]


class TestSelection:
    """Test the selector directly on a loaded context."""

    def test_least_loaded_shared_resource_wins(self, catalog):
        bed = catalog.role("recovery_bed", "place")
        bay_a = catalog.resource("Bay A", "place", [bed], reservation_mode="shared", max_concurrent_bookings=4)
        bay_b = catalog.resource("Bay B", "place", [bed], reservation_mode="shared", max_concurrent_bookings=4)
        recovery = catalog.procedure("recovery", 60)
        catalog.requirement(recovery, bed)

        context = SlotService.build_context(catalog.db, CLINIC_ID, recovery, at(9), at(10))
        context.reservations[bay_a.id] = [
            ReservationInterval(resource_id=bay_a.id, start=at(9), end=at(10), reservation_mode="shared")
        ]
        result = SlotService.select_resources(context, at(9))

        assert result.ok
        assert [a.resource_id for a in result.assignments] == [bay_b.id]
        assert result.load == 0

    def test_quantity_min_picks_distinct_resources(self, catalog):
        nurse = catalog.role("nurse", "people")
        nurses = [catalog.resource(f"Nurse {n}", "people", [nurse]) for n in ("A", "B", "C")]
        triage = catalog.procedure("triage", 30)
        catalog.requirement(triage, nurse, quantity_min=2)

        context = SlotService.build_context(catalog.db, CLINIC_ID, triage, at(9), at(10))
        result = SlotService.select_resources(context, at(9))

        assert [a.resource_id for a in result.assignments] == [nurses[0].id, nurses[1].id]

    def test_same_resource_not_double_booked_within_candidate(self, catalog):
        """Test that two requirements of one role cannot share one exclusive resource."""
        nurse = catalog.role("nurse", "people")
        catalog.resource("Nurse A", "people", [nurse])
        triage = catalog.procedure("triage", 30)
        catalog.requirement(triage, nurse)
        catalog.requirement(triage, nurse)

        context = SlotService.build_context(catalog.db, CLINIC_ID, triage, at(9), at(10))
        result = SlotService.select_resources(context, at(9), stop_on_failure=False)

        assert not result.ok
        [failure] = result.failures
        assert failure["reason"] == "unavailable"
        assert failure["rejections"][0]["reason"] == "capacity"

    def test_failure_reasons(self, catalog, surgery_setup):
        required = {
            "role_id": surgery_setup["roles"]["surgeon"].id,
            "resource_id": surgery_setup["dr_chen"].id,
            "preference_type": "required",
        }
        catalog.availability(surgery_setup["dr_chen"], at(9), at(10), availability_type="blocked")
        ResourceService.adjust_inventory(catalog.db, CLINIC_ID, surgery_setup["botox"].id, -5)

        context = SlotService.build_context(
            catalog.db, CLINIC_ID, surgery_setup["surgery"], at(9), at(10), normalize_preferences([required])
        )
        result = SlotService.select_resources(context, at(9), stop_on_failure=False)

        reasons = {f["role_id"]: f for f in result.failures}
        assert reasons[surgery_setup["roles"]["surgeon"].id]["reason"] == "required_preference_unavailable"
        stock = reasons[surgery_setup["roles"]["vial"].id]
        assert stock["reason"] == "unavailable"
        assert stock["rejections"] == [{
            "resource_id": surgery_setup["botox"].id,
            "reason": "insufficient_stock",
            "available": 0,
            "requested": 1,
        }]


class TestLocationFilter:
    """Test restricting candidates to a location subtree."""

    @pytest.fixture
    def two_sites(self, catalog):
        room = catalog.role("exam_room", "place")
        north = catalog.resource("North Site", "place")
        south = catalog.resource("South Site", "place")
        north_room = catalog.resource("North Room", "place", [room], parent_resource_id=north.id)
        south_room = catalog.resource("South Room", "place", [room], parent_resource_id=south.id)
        exam = catalog.procedure("exam", 30)
        catalog.requirement(exam, room)
        return {"room": room, "north": north, "south": south,
                "north_room": north_room, "south_room": south_room, "exam": exam}

    def test_location_restricts_resources(self, catalog, two_sites):
        [candidate, *_] = generate(catalog.db, two_sites["exam"], location_resource_id=two_sites["south"].id)

        assert picked(candidate, two_sites["room"]) == [two_sites["south_room"].id]

    def test_without_location_lowest_id_wins(self, catalog, two_sites):
        [candidate, *_] = generate(catalog.db, two_sites["exam"])

        assert picked(candidate, two_sites["room"]) == [two_sites["north_room"].id]

    def test_consumables_ignore_location(self, catalog, two_sites):
        swab = catalog.role("swab", "consumable")
        catalog.resource("Swabs", "consumable", [swab], quantity_on_hand=10)
        catalog.requirement(two_sites["exam"], swab)

        candidates = generate(catalog.db, two_sites["exam"], location_resource_id=two_sites["north"].id)

        assert candidates
        assert picked(candidates[0], swab)

    def test_people_outside_location_are_excluded(self, catalog, two_sites):
        doctor = catalog.role("doctor", "people")
        catalog.resource("Dr. South", "people", [doctor], parent_resource_id=two_sites["south"].id)
        catalog.requirement(two_sites["exam"], doctor)

        assert generate(catalog.db, two_sites["exam"], location_resource_id=two_sites["north"].id) == []


class TestPersistedSlots:
    """Test manual slot creation, blocking and cleanup."""

    def test_candidate_carries_persisted_slot_id(self, db_session, surgery_setup):
        slot = SlotService.create_slot(db_session, CLINIC_ID, surgery_setup["surgery"].id, at(9, 30))

        candidates = generate(db_session, surgery_setup["surgery"])

        assert slot.end_time == at(10, 30)
        assert (slot.status, slot.generation_type) == ("available", "manual")
        assert [c.slot_id for c in candidates] == [None, slot.id, None]

    def test_blocked_slot_start_is_skipped(self, db_session, surgery_setup):
        slot = SlotService.create_slot(db_session, CLINIC_ID, surgery_setup["surgery"].id, at(9, 30))
        SlotService.block_slot(db_session, CLINIC_ID, slot.id, reason="equipment check")

        candidates = generate(db_session, surgery_setup["surgery"])

        assert [c.start for c in candidates] == [at(9), at(10)]
        assert slot.notes == "equipment check"

    def test_duplicate_slot_rejected(self, db_session, surgery_setup):
        SlotService.create_slot(db_session, CLINIC_ID, surgery_setup["surgery"].id, at(9))

        with pytest.raises(ConflictError):
            SlotService.create_slot(db_session, CLINIC_ID, surgery_setup["surgery"].id, at(9))

    def test_block_and_unblock(self, db_session, surgery_setup):
        slot = SlotService.create_slot(db_session, CLINIC_ID, surgery_setup["surgery"].id, at(9))

        with pytest.raises(ConflictError):
            SlotService.unblock_slot(db_session, CLINIC_ID, slot.id)
        SlotService.block_slot(db_session, CLINIC_ID, slot.id)
        assert SlotService.unblock_slot(db_session, CLINIC_ID, slot.id).status == "available"

    def test_create_slots_persists_candidates(self, db_session, surgery_setup):
        existing = SlotService.create_slot(db_session, CLINIC_ID, surgery_setup["surgery"].id, at(9))

        created = SlotService.create_slots(
            db_session, CLINIC_ID, surgery_setup["surgery"].id, at(9), at(11), granularity_minutes=30
        )

        assert [s.start_time for s in created] == [at(9, 30), at(10)]
        assert [s.id for s in SlotService.list_slots(db_session, CLINIC_ID, surgery_setup["surgery"].id)] == [
            existing.id, created[0].id, created[1].id
        ]

    def test_list_slots_filters(self, db_session, surgery_setup):
        first = SlotService.create_slot(db_session, CLINIC_ID, surgery_setup["surgery"].id, at(9))
        second = SlotService.create_slot(db_session, CLINIC_ID, surgery_setup["surgery"].id, at(13))
        SlotService.block_slot(db_session, CLINIC_ID, second.id)

        assert SlotService.list_slots(db_session, CLINIC_ID, status="available") == [first]
        assert SlotService.list_slots(db_session, CLINIC_ID, range_start=at(12), range_end=at(18)) == [second]

    def test_delete_stale_slots(self, db_session, surgery_setup):
        procedure_id = surgery_setup["surgery"].id
        stale = ProcedureSlot(
            clinic_id=CLINIC_ID, procedure_id=procedure_id, start_time=at(9), end_time=at(10),
            status="available", generation_type="auto",
        )
        booked = ProcedureSlot(
            clinic_id=CLINIC_ID, procedure_id=procedure_id, start_time=at(10), end_time=at(11),
            status="booked", generation_type="auto",
        )
        db_session.add_all([stale, booked])
        db_session.commit()
        manual = SlotService.create_slot(db_session, CLINIC_ID, procedure_id, at(11))

        deleted = SlotService.delete_stale_slots(db_session, CLINIC_ID, before=at(18))

        assert deleted == 1
        remaining = {s.id for s in SlotService.list_slots(db_session, CLINIC_ID)}
        assert remaining == {booked.id, manual.id}


class TestAlternatives:
    """Test the search for alternative starts."""

    def test_closest_starts_in_order(self, db_session, surgery_setup):
        alternatives = SlotService.find_alternatives(
            db_session, CLINIC_ID, surgery_setup["surgery"].id, at(9), search_days=1, max_results=5
        )

        assert [c.start for c in alternatives] == [at(8, 15), at(8, 30), at(8, 45), at(9, 15), at(9, 30)]


class TestValidateSlot:
    """Test re-validation of a persisted slot."""

    def test_valid_slot(self, db_session, surgery_setup):
        slot = SlotService.create_slot(db_session, CLINIC_ID, surgery_setup["surgery"].id, at(9))

        result = SlotService.validate_slot(db_session, CLINIC_ID, slot.id)

        assert result["is_valid"]
        assert result["issues"] == []
        assert len(result["assignments"]) == 3
        assert result["alternatives"] == []

    def test_blocked_slot_is_invalid(self, db_session, surgery_setup):
        slot = SlotService.create_slot(db_session, CLINIC_ID, surgery_setup["surgery"].id, at(9))
        SlotService.block_slot(db_session, CLINIC_ID, slot.id)

        result = SlotService.validate_slot(db_session, CLINIC_ID, slot.id)

        assert not result["is_valid"]
        assert result["issues"][0] == {"reason": "slot_not_available", "status": "blocked"}
        assert result["alternatives"]
        assert all(a["start_time"] != slot.start_time.isoformat() for a in result["alternatives"])

    def test_missing_resources_are_reported(self, catalog, surgery_setup):
        slot = SlotService.create_slot(catalog.db, CLINIC_ID, surgery_setup["surgery"].id, at(9))
        ResourceService.deactivate_resource(catalog.db, CLINIC_ID, surgery_setup["dr_chen"].id)
        ResourceService.deactivate_resource(catalog.db, CLINIC_ID, surgery_setup["dr_lin"].id)

        result = SlotService.validate_slot(catalog.db, CLINIC_ID, slot.id)

        assert not result["is_valid"]
        assert [issue["reason"] for issue in result["issues"]] == ["no_candidates"]
        assert len(result["assignments"]) == 2
        assert result["alternatives"] == []
