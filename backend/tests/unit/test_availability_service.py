"""
Unit tests for the availability engine.

Tests window expansion, blocked-window subtraction, capacity overrides and
the per-resource capacity check used by slot generation and booking.
"""

import pytest
from datetime import datetime, timedelta, timezone

from core.exceptions import NotFoundError, ValidationError
from models import Resource
from services.availability_service import AvailabilityService
from services.resource_service import ResourceService
from shared_types.scheduling import AvailabilityWindow, ReservationInterval
from utils.datetime_utils import CLINIC_TZ

from conftest import CLINIC_ID, MONDAY, OTHER_CLINIC_ID

WEEKLY_MON_WED = {"type": "weekly", "interval": 1, "days_of_week": ["monday", "wednesday"]}


def at(day_offset: int, hour: int, minute: int = 0) -> datetime:
    return MONDAY + timedelta(days=day_offset, hours=hour, minutes=minute)


def windows_for(db, resource, start, end):
    return AvailabilityService.get_effective_windows(db, CLINIC_ID, [resource.id], start, end)[resource.id]


def spans(windows):
    return [(w.start, w.end) for w in windows]


class TestAvailabilityRecords:
    """Test creating and validating availability records."""

    def test_create_and_list(self, catalog):
        dr_chen = catalog.resource("Dr. Chen")

        record = catalog.availability(dr_chen, at(0, 9), at(0, 17), recurrence_pattern=WEEKLY_MON_WED)

        assert record.recurrence_pattern["days_of_week"] == ["monday", "wednesday"]
        assert record.recurrence_pattern["range"] == {"range_type": "no_end"}
        assert AvailabilityService.list_availability(catalog.db, CLINIC_ID, dr_chen.id) == [record]

    def test_aware_times_are_stored_in_clinic_time(self, catalog):
        dr_chen = catalog.resource("Dr. Chen")
        local = at(0, 9)
        utc_start = (local - CLINIC_TZ.utcoffset(None)).replace(tzinfo=timezone.utc)

        record = catalog.availability(dr_chen, utc_start, utc_start + timedelta(hours=8))

        assert record.start_time == local
        assert record.start_time.tzinfo is None

    @pytest.mark.parametrize("kwargs", [
        {"availability_type": "holiday"},
        {"reservation_mode_override": "pooled"},
        {"max_concurrent_override": 0},
        {"recurrence_pattern": {"type": "weekly", "days_of_week": []}},
        {"recurrence_pattern": {"type": "daily", "range": {"range_type": "end_date", "end_date": "2029-12-31"}}},
    ])
    def test_invalid_records(self, catalog, kwargs):
        dr_chen = catalog.resource("Dr. Chen")

        with pytest.raises(ValidationError):
            catalog.availability(dr_chen, at(0, 9), at(0, 17), **kwargs)

    def test_end_before_start(self, catalog):
        dr_chen = catalog.resource("Dr. Chen")

        with pytest.raises(ValidationError):
            catalog.availability(dr_chen, at(0, 17), at(0, 9))

    def test_update_and_delete(self, catalog):
        dr_chen = catalog.resource("Dr. Chen")
        record = catalog.availability(dr_chen, at(0, 9), at(0, 17), reason="clinic hours")

        updated = AvailabilityService.update_availability(catalog.db, CLINIC_ID, record.id, end_time=at(0, 12))

        assert updated.end_time == at(0, 12)
        assert updated.reason == "clinic hours"

        AvailabilityService.delete_availability(catalog.db, CLINIC_ID, record.id)
        with pytest.raises(NotFoundError):
            AvailabilityService.get_availability(catalog.db, CLINIC_ID, record.id)

    def test_other_clinic_cannot_add_windows(self, catalog):
        dr_chen = catalog.resource("Dr. Chen")

        with pytest.raises(NotFoundError):
            AvailabilityService.create_availability(catalog.db, OTHER_CLINIC_ID, dr_chen.id, at(0, 9), at(0, 17))


class TestEffectiveWindows:
    """Test the windows computed from a resource's records."""

    def test_no_records_means_always_available(self, catalog):
        bay = catalog.resource("Recovery Bay", "place", reservation_mode="shared", max_concurrent_bookings=3)

        [window] = windows_for(catalog.db, bay, at(0, 0), at(1, 0))

        assert (window.start, window.end) == (at(0, 0), at(1, 0))
        assert window.reservation_mode == "shared"
        assert window.max_concurrent == 3
        assert window.source_availability_id is None

    def test_recurring_schedule(self, catalog):
        dr_chen = catalog.resource("Dr. Chen")
        catalog.availability(dr_chen, at(0, 9), at(0, 17), recurrence_pattern=WEEKLY_MON_WED)

        windows = windows_for(catalog.db, dr_chen, at(0, 0), at(7, 0))

        assert spans(windows) == [(at(0, 9), at(0, 17)), (at(2, 9), at(2, 17))]

    def test_schedule_outside_query_means_unavailable(self, catalog):
        dr_chen = catalog.resource("Dr. Chen")
        catalog.availability(dr_chen, at(14, 9), at(14, 17))

        assert windows_for(catalog.db, dr_chen, at(0, 0), at(1, 0)) == []

    def test_off_day_of_a_recurring_schedule_is_unavailable(self, catalog):
        dr_chen = catalog.resource("Dr. Chen")
        catalog.availability(dr_chen, at(0, 9), at(0, 17), recurrence_pattern=WEEKLY_MON_WED)

        # Tuesday: no occurrence in the query window, but the resource has a schedule
        assert windows_for(catalog.db, dr_chen, at(1, 0), at(2, 0)) == []

    def test_blocked_window_wins(self, catalog):
        dr_chen = catalog.resource("Dr. Chen")
        catalog.availability(dr_chen, at(0, 9), at(0, 17), recurrence_pattern=WEEKLY_MON_WED)
        catalog.availability(dr_chen, at(0, 12), at(0, 13), availability_type="blocked", reason="lunch")

        windows = windows_for(catalog.db, dr_chen, at(0, 0), at(1, 0))

        assert spans(windows) == [(at(0, 9), at(0, 12)), (at(0, 13), at(0, 17))]
        blocked = AvailabilityService.get_blocked_windows(catalog.db, CLINIC_ID, [dr_chen.id], at(0, 0), at(1, 0))
        assert spans(blocked[dr_chen.id]) == [(at(0, 12), at(0, 13))]
        assert blocked[dr_chen.id][0].availability_type == "blocked"

    def test_block_without_schedule(self, catalog):
        laser = catalog.resource("Laser", "equipment")
        catalog.availability(laser, at(0, 10), at(0, 11), availability_type="blocked", reason="service")

        windows = windows_for(catalog.db, laser, at(0, 9), at(0, 12))

        assert spans(windows) == [(at(0, 9), at(0, 10)), (at(0, 11), at(0, 12))]

    def test_overrides_apply_inside_window(self, catalog):
        room = catalog.resource("Group Room", "place")
        catalog.availability(
            room, at(0, 18), at(0, 21), reservation_mode_override="shared", max_concurrent_override=6
        )

        [window] = windows_for(catalog.db, room, at(0, 0), at(1, 0))

        assert window.reservation_mode == "shared"
        assert window.max_concurrent == 6

    def test_exclusive_override_forces_capacity_one(self, catalog):
        bay = catalog.resource("Recovery Bay", "place", reservation_mode="shared", max_concurrent_bookings=3)
        catalog.availability(bay, at(0, 9), at(0, 12), reservation_mode_override="exclusive")

        [window] = windows_for(catalog.db, bay, at(0, 0), at(1, 0))

        assert (window.reservation_mode, window.max_concurrent) == ("exclusive", 1)

    def test_inactive_resource_has_no_windows(self, catalog):
        laser = catalog.resource("Laser", "equipment")
        ResourceService.deactivate_resource(catalog.db, CLINIC_ID, laser.id)

        assert windows_for(catalog.db, laser, at(0, 0), at(1, 0)) == []

    def test_other_clinic_resources_are_ignored(self, catalog, other_catalog):
        foreign = other_catalog.resource("Laser", "equipment")

        windows = AvailabilityService.get_effective_windows(catalog.db, CLINIC_ID, [foreign.id], at(0, 0), at(1, 0))

        assert windows == {}


def window(start, end, mode="shared", capacity=2):
    return AvailabilityWindow(resource_id=1, start=start, end=end, reservation_mode=mode, max_concurrent=capacity)


class TestEffectiveCapacity:
    """Test mode and capacity resolution across windows."""

    def test_uncovered_range(self):
        assert AvailabilityService.effective_capacity([window(at(0, 9), at(0, 10))], at(0, 9), at(0, 11)) is None

    def test_covered_by_adjacent_windows(self):
        windows = [window(at(0, 9), at(0, 10), capacity=4), window(at(0, 10), at(0, 12), capacity=2)]

        assert AvailabilityService.effective_capacity(windows, at(0, 9, 30), at(0, 10, 30)) == ("shared", 2)

    def test_exclusive_wins(self):
        windows = [window(at(0, 9), at(0, 10)), window(at(0, 10), at(0, 12), mode="exclusive", capacity=1)]

        assert AvailabilityService.effective_capacity(windows, at(0, 9), at(0, 11)) == ("exclusive", 1)


def shared_bay(capacity=2):
    return Resource(
        id=1, name="Recovery Bay", is_active=True, is_consumable=False,
        reservation_mode="shared", max_concurrent_bookings=capacity,
    )


def reservation(start, end, mode="shared", appointment_id=None):
    return ReservationInterval(resource_id=1, start=start, end=end, reservation_mode=mode, appointment_id=appointment_id)


class TestCheckResourceWindow:
    """Test the capacity decision for one more reservation."""

    def test_shared_capacity(self):
        bay = shared_bay()
        windows = [window(at(0, 0), at(1, 0))]
        one = [reservation(at(0, 9), at(0, 10), appointment_id=1)]
        two = one + [reservation(at(0, 9), at(0, 10), appointment_id=2)]

        assert AvailabilityService.check_resource_window(bay, windows, one, at(0, 9), at(0, 10)).is_available
        check = AvailabilityService.check_resource_window(bay, windows, two, at(0, 9), at(0, 10))

        assert not check.is_available
        assert check.reason == "capacity"
        assert check.current_overlap == 2
        assert [c["appointment_id"] for c in check.conflicts] == [1, 2]

    def test_shared_capacity_is_per_instant(self):
        """Test that two reservations that never overlap each other use one unit."""
        bay = shared_bay()
        windows = [window(at(0, 0), at(1, 0))]
        reservations = [reservation(at(0, 9), at(0, 10)), reservation(at(0, 10), at(0, 11))]

        check = AvailabilityService.check_resource_window(bay, windows, reservations, at(0, 9), at(0, 11))

        assert check.is_available
        assert check.current_overlap == 1

    def test_exclusive_reservation_blocks_shared_resource(self):
        bay = shared_bay(capacity=5)
        windows = [window(at(0, 0), at(1, 0), capacity=5)]
        reservations = [reservation(at(0, 9), at(0, 10), mode="exclusive")]

        assert not AvailabilityService.check_resource_window(bay, windows, reservations, at(0, 9), at(0, 10)).is_available

    def test_touching_reservation_does_not_conflict(self):
        laser = Resource(
            id=1, name="Laser", is_active=True, is_consumable=False,
            reservation_mode="exclusive", max_concurrent_bookings=1,
        )
        windows = [window(at(0, 0), at(1, 0), mode="exclusive", capacity=1)]
        reservations = [reservation(at(0, 9), at(0, 10), mode="exclusive")]

        assert AvailabilityService.check_resource_window(laser, windows, reservations, at(0, 10), at(0, 11)).is_available
        assert not AvailabilityService.check_resource_window(laser, windows, reservations, at(0, 9, 30), at(0, 10, 30)).is_available

    def test_outside_windows(self):
        check = AvailabilityService.check_resource_window(
            shared_bay(), [window(at(0, 9), at(0, 10))], [], at(0, 9, 30), at(0, 10, 30)
        )

        assert (check.is_available, check.reason) == (False, "not_available")

    def test_inactive(self):
        bay = shared_bay()
        bay.is_active = False

        check = AvailabilityService.check_resource_window(bay, [window(at(0, 0), at(1, 0))], [], at(0, 9), at(0, 10))

        assert (check.is_available, check.reason) == (False, "inactive")


class TestCheckResourceAvailability:
    """Test the stored-data variant of the capacity check."""

    def test_blocked_time_is_not_available(self, catalog):
        laser = catalog.resource("Laser", "equipment")
        catalog.availability(laser, at(0, 10), at(0, 11), availability_type="blocked")

        check = AvailabilityService.check_resource_availability(catalog.db, CLINIC_ID, laser.id, at(0, 10), at(0, 10, 30))

        assert not check.is_available
        assert check.reason == "not_available"

    def test_empty_range_rejected(self, catalog):
        laser = catalog.resource("Laser", "equipment")

        with pytest.raises(ValidationError):
            AvailabilityService.check_resource_availability(catalog.db, CLINIC_ID, laser.id, at(0, 10), at(0, 10))
