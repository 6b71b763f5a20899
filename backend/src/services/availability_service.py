"""
Availability engine.

Expands each resource's availability records (one-off or recurring) into
concrete windows for a query range, subtracts blocked windows from
available ones, and evaluates capacity of a resource for a reserved window
against the reservations already stored.

Rules:
- A resource with no 'available' record at all is available for the
  whole query window with its own defaults. The fallback is decided per
  resource, not per query window: once a resource has any 'available'
  record, a query window in which none of its occurrences fall finds it
  unavailable there (e.g. a Monday-to-Friday schedule queried on a
  Sunday), rather than fully available.
- A resource with a schedule is available only inside its occurrences.
- Blocked occurrences always win over overlapping available ones.
- Each window carries the reservation mode and capacity in effect there:
  the record's overrides, or the resource defaults.
"""

import logging
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from core.constants import (
    AVAILABILITY_TYPES,
    INACTIVE_RESERVATION_STATUSES,
    RELEASED_APPOINTMENT_STATUSES,
    RESERVATION_MODES,
)
from core.exceptions import NotFoundError, ValidationError
from core.sentinels import MISSING, is_provided
from models import Appointment, AppointmentResource, Resource, ResourceAvailability
from services.resource_service import ResourceService
from shared_types.recurrence import EndDateRange, dump_recurrence_pattern, parse_recurrence_pattern
from shared_types.scheduling import AvailabilityWindow, ReservationInterval, ResourceCheck
from utils.datetime_utils import format_window, intervals_overlap, to_clinic_local
from utils.interval_utils import is_covered, max_concurrent_overlap, subtract_intervals
from utils.recurrence import expand_occurrences
from utils.storage_errors import storage_guard

logger = logging.getLogger(__name__)


class AvailabilityService:
    """
    Service class for resource availability calculations.

    Availability is always computed from the database; nothing is cached
    between requests.
    """

    # ===== Availability records =====

    @staticmethod
    def _parse_pattern(data: Optional[Dict[str, Any]]):
        if data is None:
            return None
        try:
            return parse_recurrence_pattern(data)
        except PydanticValidationError as e:
            raise ValidationError(
                "Invalid recurrence pattern",
                {"errors": e.errors(include_url=False, include_context=False)},
            )

    @staticmethod
    def _validate_record(
        start_time: datetime,
        end_time: datetime,
        availability_type: str,
        recurrence_pattern: Optional[Dict[str, Any]],
        reservation_mode_override: Optional[str],
        max_concurrent_override: Optional[int],
    ) -> Optional[Dict[str, Any]]:
        """Validate a record and return its normalized recurrence pattern."""
        if end_time <= start_time:
            raise ValidationError("end_time must be after start_time")
        if availability_type not in AVAILABILITY_TYPES:
            raise ValidationError(f"Invalid availability type '{availability_type}'")
        if reservation_mode_override is not None and reservation_mode_override not in RESERVATION_MODES:
            raise ValidationError(f"Invalid reservation mode '{reservation_mode_override}'")
        if max_concurrent_override is not None and max_concurrent_override < 1:
            raise ValidationError("max_concurrent_override must be at least 1")

        pattern = AvailabilityService._parse_pattern(recurrence_pattern)
        if pattern is None:
            return None
        if isinstance(pattern.range, EndDateRange) and pattern.range.end_date < start_time.date():
            raise ValidationError("Recurrence end_date is before the first occurrence")
        return dump_recurrence_pattern(pattern)

    @staticmethod
    @storage_guard
    def create_availability(
        db: Session,
        clinic_id: int,
        resource_id: int,
        start_time: datetime,
        end_time: datetime,
        availability_type: str = "available",
        recurrence_pattern: Optional[Dict[str, Any]] = None,
        reservation_mode_override: Optional[str] = None,
        max_concurrent_override: Optional[int] = None,
        reason: Optional[str] = None,
        created_by: Optional[int] = None,
    ) -> ResourceAvailability:
        """
        Create an availability or blocked window for a resource.

        Args:
            db: Database session
            clinic_id: Owning clinic
            resource_id: Resource the window applies to
            start_time: Start of the first window (aware datetimes are converted to clinic time)
            end_time: Exclusive end of the first window
            availability_type: 'available' or 'blocked'
            recurrence_pattern: Optional recurrence rule (see shared_types.recurrence)
            reservation_mode_override: Mode used inside the window
            max_concurrent_override: Capacity used inside the window
            reason: Free-text reason
            created_by: Staff user id

        Raises:
            NotFoundError: Unknown resource
            ValidationError: Bad window, override or recurrence pattern
        """
        ResourceService.get_resource(db, clinic_id, resource_id)
        start_time = to_clinic_local(start_time)
        end_time = to_clinic_local(end_time)
        pattern = AvailabilityService._validate_record(
            start_time, end_time, availability_type, recurrence_pattern,
            reservation_mode_override, max_concurrent_override,
        )

        record = ResourceAvailability(
            resource_id=resource_id,
            clinic_id=clinic_id,
            start_time=start_time,
            end_time=end_time,
            availability_type=availability_type,
            recurrence_pattern=pattern,
            reservation_mode_override=reservation_mode_override,
            max_concurrent_override=max_concurrent_override,
            reason=reason,
            created_by=created_by,
        )
        db.add(record)
        db.commit()
        logger.info(
            f"Created {availability_type} window {record.id} for resource {resource_id}: "
            f"{format_window(start_time, end_time)}{' (recurring)' if pattern else ''}"
        )
        return record

    @staticmethod
    def get_availability(db: Session, clinic_id: int, availability_id: int) -> ResourceAvailability:
        record = db.query(ResourceAvailability).filter(
            ResourceAvailability.id == availability_id,
            ResourceAvailability.clinic_id == clinic_id
        ).first()
        if not record:
            raise NotFoundError("ResourceAvailability", availability_id)
        return record

    @staticmethod
    @storage_guard
    def update_availability(
        db: Session,
        clinic_id: int,
        availability_id: int,
        start_time: Any = MISSING,
        end_time: Any = MISSING,
        availability_type: Any = MISSING,
        recurrence_pattern: Any = MISSING,
        reservation_mode_override: Any = MISSING,
        max_concurrent_override: Any = MISSING,
        reason: Any = MISSING,
    ) -> ResourceAvailability:
        """Update an availability record. Omitted fields are left untouched."""
        record = AvailabilityService.get_availability(db, clinic_id, availability_id)

        new_start = to_clinic_local(start_time) if is_provided(start_time) else record.start_time
        new_end = to_clinic_local(end_time) if is_provided(end_time) else record.end_time
        new_type = availability_type if is_provided(availability_type) else record.availability_type
        new_pattern = recurrence_pattern if is_provided(recurrence_pattern) else record.recurrence_pattern
        new_mode = reservation_mode_override if is_provided(reservation_mode_override) else record.reservation_mode_override
        new_capacity = max_concurrent_override if is_provided(max_concurrent_override) else record.max_concurrent_override

        record.recurrence_pattern = AvailabilityService._validate_record(
            new_start, new_end, new_type, new_pattern, new_mode, new_capacity
        )
        record.start_time = new_start
        record.end_time = new_end
        record.availability_type = new_type
        record.reservation_mode_override = new_mode
        record.max_concurrent_override = new_capacity
        if is_provided(reason):
            record.reason = reason
        db.commit()
        return record

    @staticmethod
    @storage_guard
    def delete_availability(db: Session, clinic_id: int, availability_id: int) -> None:
        record = AvailabilityService.get_availability(db, clinic_id, availability_id)
        db.delete(record)
        db.commit()
        logger.info(f"Deleted availability window {availability_id} for clinic {clinic_id}")

    @staticmethod
    def list_availability(
        db: Session,
        clinic_id: int,
        resource_id: int,
        availability_type: Optional[str] = None,
    ) -> List[ResourceAvailability]:
        """List a resource's availability records ordered by start time."""
        ResourceService.get_resource(db, clinic_id, resource_id)
        query = db.query(ResourceAvailability).filter(
            ResourceAvailability.clinic_id == clinic_id,
            ResourceAvailability.resource_id == resource_id
        )
        if availability_type is not None:
            query = query.filter(ResourceAvailability.availability_type == availability_type)
        return query.order_by(ResourceAvailability.start_time, ResourceAvailability.id).all()

    # ===== Expansion =====

    @staticmethod
    def expand_availability(
        record: ResourceAvailability, window_start: datetime, window_end: datetime
    ) -> List[Tuple[datetime, datetime]]:
        """
        Expand one record into occurrence windows clipped to [window_start, window_end).

        Raises:
            ValidationError: If the stored recurrence pattern is malformed
        """
        pattern = AvailabilityService._parse_pattern(record.recurrence_pattern)
        return expand_occurrences(record.start_time, record.end_time, pattern, window_start, window_end)

    @staticmethod
    def _load_records(
        db: Session, resource_ids: Sequence[int], window_start: datetime, window_end: datetime
    ) -> List[ResourceAvailability]:
        """Records that may produce an occurrence before window_end."""
        if not resource_ids:
            return []
        records = db.query(ResourceAvailability).filter(
            ResourceAvailability.resource_id.in_(resource_ids),
            ResourceAvailability.start_time < window_end
        ).order_by(ResourceAvailability.start_time, ResourceAvailability.id).all()
        # One-off windows that ended before the query window cannot matter
        return [r for r in records if r.recurrence_pattern is not None or r.end_time > window_start]

    @staticmethod
    def _resources_with_schedule(db: Session, resource_ids: Sequence[int]) -> set[int]:
        if not resource_ids:
            return set()
        rows = db.query(ResourceAvailability.resource_id).filter(
            ResourceAvailability.resource_id.in_(resource_ids),
            ResourceAvailability.availability_type == "available"
        ).distinct().all()
        return {row.resource_id for row in rows}

    @staticmethod
    def compute_windows(
        resource: Resource,
        records: Iterable[ResourceAvailability],
        has_schedule: bool,
        window_start: datetime,
        window_end: datetime,
    ) -> List[AvailabilityWindow]:
        """
        Effective available windows of one resource from already-loaded records.

        Args:
            resource: The resource
            records: Its availability records overlapping the query
            has_schedule: Whether the resource has any 'available' record at all
            window_start: Query window start
            window_end: Query window end (exclusive)
        """
        if not resource.is_active or window_end <= window_start:
            return []

        base: List[AvailabilityWindow] = []
        blocked: List[Tuple[datetime, datetime]] = []
        for record in records:
            occurrences = AvailabilityService.expand_availability(record, window_start, window_end)
            if record.availability_type == "blocked":
                blocked.extend(occurrences)
                continue
            mode = record.reservation_mode_override or resource.reservation_mode
            capacity = record.max_concurrent_override or resource.max_concurrent_bookings
            if mode == "exclusive":
                capacity = 1
            for start, end in occurrences:
                base.append(AvailabilityWindow(
                    resource_id=resource.id,
                    start=start,
                    end=end,
                    reservation_mode=mode,
                    max_concurrent=capacity,
                    source_availability_id=record.id,
                ))

        if not has_schedule:
            base = [AvailabilityWindow(
                resource_id=resource.id,
                start=window_start,
                end=window_end,
                reservation_mode=resource.reservation_mode,
                max_concurrent=resource.max_concurrent_bookings if resource.reservation_mode == "shared" else 1,
            )]

        windows: List[AvailabilityWindow] = []
        for window in base:
            for start, end in subtract_intervals((window.start, window.end), blocked):
                windows.append(AvailabilityWindow(
                    resource_id=window.resource_id,
                    start=start,
                    end=end,
                    reservation_mode=window.reservation_mode,
                    max_concurrent=window.max_concurrent,
                    source_availability_id=window.source_availability_id,
                ))
        windows.sort(key=lambda w: (w.start, w.end))
        return windows

    @staticmethod
    def get_effective_windows(
        db: Session,
        clinic_id: int,
        resource_ids: Sequence[int],
        window_start: datetime,
        window_end: datetime,
    ) -> Dict[int, List[AvailabilityWindow]]:
        """
        Concrete available windows per resource for a query range.

        Args:
            db: Database session
            clinic_id: Clinic owning the resources (others are ignored)
            resource_ids: Resources to evaluate
            window_start: Query window start
            window_end: Query window end (exclusive)

        Returns:
            Dict mapping resource_id to its windows sorted by start. Inactive
            resources map to an empty list.
        """
        window_start = to_clinic_local(window_start)
        window_end = to_clinic_local(window_end)
        resources = db.query(Resource).filter(
            Resource.id.in_(list(resource_ids)),
            Resource.clinic_id == clinic_id
        ).all() if resource_ids else []

        ids = [r.id for r in resources]
        records_by_resource: Dict[int, List[ResourceAvailability]] = defaultdict(list)
        for record in AvailabilityService._load_records(db, ids, window_start, window_end):
            records_by_resource[record.resource_id].append(record)
        scheduled = AvailabilityService._resources_with_schedule(db, ids)

        return {
            resource.id: AvailabilityService.compute_windows(
                resource, records_by_resource[resource.id], resource.id in scheduled, window_start, window_end
            )
            for resource in resources
        }

    @staticmethod
    def get_blocked_windows(
        db: Session,
        clinic_id: int,
        resource_ids: Sequence[int],
        window_start: datetime,
        window_end: datetime,
    ) -> Dict[int, List[AvailabilityWindow]]:
        """Blocked occurrences per resource, for display."""
        window_start = to_clinic_local(window_start)
        window_end = to_clinic_local(window_end)
        resources = {
            r.id: r for r in db.query(Resource).filter(
                Resource.id.in_(list(resource_ids)),
                Resource.clinic_id == clinic_id
            ).all()
        } if resource_ids else {}

        blocked: Dict[int, List[AvailabilityWindow]] = {resource_id: [] for resource_id in resources}
        for record in AvailabilityService._load_records(db, list(resources), window_start, window_end):
            if record.availability_type != "blocked":
                continue
            resource = resources[record.resource_id]
            for start, end in AvailabilityService.expand_availability(record, window_start, window_end):
                blocked[record.resource_id].append(AvailabilityWindow(
                    resource_id=record.resource_id,
                    start=start,
                    end=end,
                    reservation_mode=resource.reservation_mode,
                    max_concurrent=resource.max_concurrent_bookings,
                    availability_type="blocked",
                    source_availability_id=record.id,
                ))
        for windows in blocked.values():
            windows.sort(key=lambda w: (w.start, w.end))
        return blocked

    @staticmethod
    def effective_capacity(
        windows: Sequence[AvailabilityWindow], start: datetime, end: datetime
    ) -> Optional[Tuple[str, int]]:
        """
        Reservation mode and capacity for [start, end).

        Returns:
            (mode, capacity), or None when the windows do not cover the range.
            When several windows cover the range, exclusive wins and the
            smallest capacity applies.
        """
        covering = [w for w in windows if intervals_overlap(w.start, w.end, start, end)]
        if not covering or not is_covered(start, end, [(w.start, w.end) for w in covering]):
            return None
        mode = "exclusive" if any(w.reservation_mode == "exclusive" for w in covering) else "shared"
        capacity = 1 if mode == "exclusive" else min(w.max_concurrent for w in covering)
        return mode, capacity

    # ===== Occupancy =====

    @staticmethod
    def get_active_reservations(
        db: Session,
        resource_ids: Sequence[int],
        window_start: datetime,
        window_end: datetime,
    ) -> Dict[int, List[ReservationInterval]]:
        """
        Reservations that currently occupy the given resources in a range.

        A reservation occupies its resource unless the row is released or
        declined, or its appointment is cancelled or a no-show.
        """
        occupied: Dict[int, List[ReservationInterval]] = {resource_id: [] for resource_id in resource_ids}
        if not resource_ids:
            return occupied
        rows = db.query(AppointmentResource).join(
            Appointment, AppointmentResource.appointment_id == Appointment.id
        ).filter(
            AppointmentResource.resource_id.in_(list(resource_ids)),
            AppointmentResource.status.notin_(INACTIVE_RESERVATION_STATUSES),
            Appointment.status.notin_(RELEASED_APPOINTMENT_STATUSES),
            AppointmentResource.reserved_start < window_end,
            AppointmentResource.reserved_end > window_start
        ).order_by(AppointmentResource.reserved_start, AppointmentResource.id).all()
        for row in rows:
            occupied.setdefault(row.resource_id, []).append(ReservationInterval(
                resource_id=row.resource_id,
                start=row.reserved_start,
                end=row.reserved_end,
                reservation_mode=row.reservation_mode,
                appointment_id=row.appointment_id,
            ))
        return occupied

    @staticmethod
    def check_resource_window(
        resource: Resource,
        windows: Sequence[AvailabilityWindow],
        reservations: Sequence[ReservationInterval],
        start: datetime,
        end: datetime,
    ) -> ResourceCheck:
        """
        Decide whether one more reservation of resource fits in [start, end).

        Consumables are not time-checked here; their stock is checked by the
        caller.

        Args:
            resource: Resource to check
            windows: Its effective availability windows (see get_effective_windows)
            reservations: Reservations occupying it, stored and tentative
            start: Reserved window start
            end: Reserved window end (exclusive)
        """
        default_mode = resource.reservation_mode
        if not resource.is_active:
            return ResourceCheck(resource.id, False, default_mode, 0, 0, reason="inactive")
        if resource.is_consumable:
            return ResourceCheck(resource.id, True, default_mode, resource.max_concurrent_bookings, 0)

        capacity_info = AvailabilityService.effective_capacity(windows, start, end)
        if capacity_info is None:
            return ResourceCheck(resource.id, False, default_mode, 0, 0, reason="not_available")
        mode, capacity = capacity_info

        overlapping = [r for r in reservations if intervals_overlap(r.start, r.end, start, end)]
        conflicts = [r.to_dict() for r in overlapping]
        peak = max_concurrent_overlap(start, end, [(r.start, r.end) for r in overlapping])

        if mode == "exclusive":
            is_available = not overlapping
        else:
            holds_exclusive = any(r.reservation_mode == "exclusive" for r in overlapping)
            is_available = not holds_exclusive and peak + 1 <= capacity

        return ResourceCheck(
            resource_id=resource.id,
            is_available=is_available,
            reservation_mode=mode,
            capacity=capacity,
            current_overlap=peak,
            conflicts=[] if is_available else conflicts,
            reason=None if is_available else "capacity",
        )

    @staticmethod
    def check_resource_availability(
        db: Session, clinic_id: int, resource_id: int, start: datetime, end: datetime
    ) -> ResourceCheck:
        """Check a single resource for [start, end) against stored reservations."""
        start = to_clinic_local(start)
        end = to_clinic_local(end)
        if end <= start:
            raise ValidationError("end must be after start")
        resource = ResourceService.get_resource(db, clinic_id, resource_id)
        windows = AvailabilityService.get_effective_windows(db, clinic_id, [resource_id], start, end)
        reservations = AvailabilityService.get_active_reservations(db, [resource_id], start, end)
        return AvailabilityService.check_resource_window(
            resource, windows.get(resource_id, []), reservations.get(resource_id, []), start, end
        )
