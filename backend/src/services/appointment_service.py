"""
Booking engine.

Creates, cancels, completes and reschedules appointments, and is the only
writer of reservation state (AppointmentResource rows, slot booking status
and consumable stock drawn by bookings).

Booking runs as one transaction:
1. the slot is claimed (compare-and-set available -> booked) or created;
2. every candidate resource row is locked in id order and its
   reservation_version bumped, so concurrent bookings touching the same
   resources serialize here on every backend (row locks on PostgreSQL,
   the database write lock on SQLite);
3. reservations are read, the selector picks resources, rows are inserted
   and stock is decremented;
4. the transaction commits once. Any failure rolls back everything.

Status changes compare-and-set the appointment status before touching
reservations, so of two concurrent cancellations only one returns stock.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from core.constants import (
    APPOINTMENT_STATUSES,
    INACTIVE_RESERVATION_STATUSES,
    RELEASED_APPOINTMENT_STATUSES,
    TERMINAL_APPOINTMENT_STATUSES,
)
from core.exceptions import (
    ConflictError,
    InactiveResourceError,
    InsufficientInventoryError,
    NotFoundError,
    SchedulingError,
    ValidationError,
)
from models import (
    Appointment,
    AppointmentPreference,
    AppointmentResource,
    Procedure,
    ProcedureSlot,
    Resource,
    ResourceRoleAssignment,
)
from services import scheduling_events
from services.availability_service import AvailabilityService
from services.procedure_service import ProcedureService
from services.resource_service import ResourceService, crossed_low_stock_threshold
from services.slot_service import PreferenceInput, SlotService, normalize_preferences
from shared_types.scheduling import ResourcePreference
from utils.datetime_utils import clinic_now, format_window, to_clinic_local
from utils.storage_errors import storage_guard

logger = logging.getLogger(__name__)


# Allowed forward transitions; cancelled and no_show are reachable from any non-terminal state
STATUS_TRANSITIONS: Dict[str, Tuple[str, ...]] = {
    "scheduled": ("confirmed",),
    "confirmed": ("checked_in",),
    "checked_in": ("in_progress",),
    "in_progress": ("completed",),
}


def can_transition(current: str, new: str) -> bool:
    """Whether an appointment may move from current to new status."""
    if current in TERMINAL_APPOINTMENT_STATUSES:
        return False
    if new in RELEASED_APPOINTMENT_STATUSES:
        return True
    return new in STATUS_TRANSITIONS.get(current, ())


class AppointmentService:
    """
    Service class for appointment booking and lifecycle.
    """

    # ===== Booking =====

    @staticmethod
    def _claim_slot(db: Session, clinic_id: int, slot: ProcedureSlot) -> None:
        """Compare-and-set a slot from available to booked."""
        result = db.execute(
            update(ProcedureSlot)
            .where(
                ProcedureSlot.id == slot.id,
                ProcedureSlot.clinic_id == clinic_id,
                ProcedureSlot.status == "available"
            )
            .values(status="booked")
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.refresh(slot)
            raise ConflictError(
                f"Slot {slot.id} is not available",
                conflicts=[{"slot_id": slot.id, "status": slot.status}],
            )
        db.refresh(slot)

    @staticmethod
    def _resolve_slot(
        db: Session,
        clinic_id: int,
        procedure_id: Optional[int],
        start_time: Optional[datetime],
        slot_id: Optional[int],
    ) -> Tuple[ProcedureSlot, Procedure]:
        """
        Claim the requested slot, or create an auto slot for a new window.

        An available persisted slot of the procedure at exactly start_time
        is claimed instead of creating a second one.
        """
        if slot_id is not None:
            slot = SlotService.get_slot(db, clinic_id, slot_id)
            procedure = ProcedureService.get_active_procedure(db, clinic_id, slot.procedure_id)
            AppointmentService._claim_slot(db, clinic_id, slot)
            return slot, procedure

        if procedure_id is None or start_time is None:
            raise ValidationError("Either slot_id or procedure_id and start_time are required")
        procedure = ProcedureService.get_active_procedure(db, clinic_id, procedure_id)
        start_time = to_clinic_local(start_time)
        total = ProcedureService.total_duration(db, procedure)
        if total <= 0:
            raise ValidationError(f"Procedure {procedure.id} has no duration")

        existing = db.query(ProcedureSlot).filter(
            ProcedureSlot.clinic_id == clinic_id,
            ProcedureSlot.procedure_id == procedure.id,
            ProcedureSlot.start_time == start_time,
            ProcedureSlot.status == "available"
        ).order_by(ProcedureSlot.id).first()
        if existing:
            AppointmentService._claim_slot(db, clinic_id, existing)
            return existing, procedure

        slot = ProcedureSlot(
            clinic_id=clinic_id,
            procedure_id=procedure.id,
            start_time=start_time,
            end_time=start_time + timedelta(minutes=total),
            status="booked",
            generation_type="auto",
        )
        db.add(slot)
        db.flush()
        return slot, procedure

    @staticmethod
    def _raise_for_failures(failures: List[Dict[str, Any]]) -> None:
        """Turn selector failures into the matching typed error."""
        for failure in failures:
            rejections = failure.get("rejections", [])
            if rejections and all(r["reason"] == "insufficient_stock" for r in rejections):
                best = max(rejections, key=lambda r: r["available"])
                raise InsufficientInventoryError(best["resource_id"], best["available"], best["requested"])
        raise ConflictError(
            "Required resources are not available for the requested window",
            conflicts=failures,
        )

    @staticmethod
    def _reserve(
        db: Session,
        clinic_id: int,
        procedure_id: Optional[int],
        start_time: Optional[datetime],
        slot_id: Optional[int],
        contact_id: Optional[int],
        preferences: List[ResourcePreference],
        notes: Optional[str],
        created_by: Optional[int],
        location_resource_id: Optional[int],
        rescheduled_from_id: Optional[int] = None,
    ) -> Tuple[Appointment, List[Resource]]:
        """
        Book inside the current transaction without committing.

        Returns:
            (appointment, consumables whose stock crossed the low-stock threshold)
        """
        slot, procedure = AppointmentService._resolve_slot(db, clinic_id, procedure_id, start_time, slot_id)
        slot_start = slot.start_time

        requirements = ProcedureService.expand_requirements(db, procedure)
        pools, _ = SlotService.load_role_pools(db, clinic_id, requirements, preferences)
        candidate_ids = {r.id for pool in pools.values() for r in pool}
        ResourceService.lock_resources(db, sorted(candidate_ids))

        context = SlotService.build_context(
            db, clinic_id, procedure, slot_start, slot.end_time, preferences, location_resource_id
        )
        selection = SlotService.select_resources(context, slot_start)
        if not selection.ok:
            AppointmentService._raise_for_failures(selection.failures)

        appointment = Appointment(
            clinic_id=clinic_id,
            slot_id=slot.id,
            contact_id=contact_id,
            status="scheduled",
            notes=notes,
            created_by=created_by,
            rescheduled_from_id=rescheduled_from_id,
        )
        db.add(appointment)
        db.flush()

        for preference in preferences:
            db.add(AppointmentPreference(
                appointment_id=appointment.id,
                role_id=preference.role_id,
                resource_id=preference.resource_id,
                preference_type=preference.preference_type,
                priority=preference.priority,
            ))

        low_stock: List[Resource] = []
        resources = {r.id: r for pool in context.pools.values() for r in pool}
        for assignment in selection.assignments:
            db.add(AppointmentResource(
                appointment_id=appointment.id,
                resource_id=assignment.resource_id,
                role_id=assignment.role_id,
                reserved_start=assignment.reserved_start,
                reserved_end=assignment.reserved_end,
                reservation_mode=assignment.reservation_mode,
                status="assigned",
                quantity_consumed=assignment.quantity,
            ))
            if assignment.quantity is None:
                continue
            resource = resources[assignment.resource_id]
            before = resource.quantity_on_hand or 0
            after = before - assignment.quantity
            if after < 0:
                raise InsufficientInventoryError(resource.id, before, assignment.quantity)
            resource.quantity_on_hand = after
            if crossed_low_stock_threshold(before, after, resource.quantity_threshold):
                low_stock.append(resource)

        db.flush()
        db.refresh(appointment)
        return appointment, low_stock

    @staticmethod
    def _report_conflict(
        db: Session,
        clinic_id: int,
        error: ConflictError,
        procedure_id: Optional[int],
        start_time: Optional[datetime],
        slot_id: Optional[int],
        contact_id: Optional[int],
        preferences: List[ResourcePreference],
        location_resource_id: Optional[int],
        actor_id: Optional[int],
    ) -> None:
        """Attach alternatives to a booking conflict and emit booking.conflict."""
        if slot_id is not None and (procedure_id is None or start_time is None):
            slot = db.query(ProcedureSlot).filter(
                ProcedureSlot.id == slot_id,
                ProcedureSlot.clinic_id == clinic_id
            ).first()
            if slot is not None:
                procedure_id, start_time = slot.procedure_id, slot.start_time

        if procedure_id is not None and start_time is not None:
            try:
                error.alternatives = [
                    candidate.to_dict() for candidate in SlotService.find_alternatives(
                        db, clinic_id, procedure_id, start_time, preferences, location_resource_id
                    )
                ]
            except SchedulingError as e:
                logger.warning(f"Could not compute alternatives for booking conflict: {e.message}")

        logger.warning(
            f"Booking conflict in clinic {clinic_id} for procedure {procedure_id} at {start_time}: {error.message}"
        )
        scheduling_events.publish_event(
            scheduling_events.BOOKING_CONFLICT,
            clinic_id,
            {
                "procedure_id": procedure_id,
                "slot_id": slot_id,
                "start_time": to_clinic_local(start_time).isoformat() if start_time else None,
                "contact_id": contact_id,
                "conflicts": error.conflicts,
                "alternatives": error.alternatives,
            },
            actor_id=actor_id,
        )

    @staticmethod
    def _publish_created(appointment: Appointment, low_stock: Iterable[Resource], actor_id: Optional[int]) -> None:
        scheduling_events.publish_event(
            scheduling_events.APPOINTMENT_CREATED,
            appointment.clinic_id,
            AppointmentService._event_payload(appointment),
            actor_id=actor_id,
        )
        for resource in low_stock:
            ResourceService.publish_low_stock(resource)

    @staticmethod
    @storage_guard
    def create_appointment(
        db: Session,
        clinic_id: int,
        procedure_id: Optional[int] = None,
        start_time: Optional[datetime] = None,
        slot_id: Optional[int] = None,
        contact_id: Optional[int] = None,
        preferences: Optional[Iterable[PreferenceInput]] = None,
        notes: Optional[str] = None,
        created_by: Optional[int] = None,
        location_resource_id: Optional[int] = None,
    ) -> Appointment:
        """
        Book an appointment, reserving every required resource atomically.

        Args:
            db: Database session
            clinic_id: Clinic the booking belongs to
            procedure_id: Procedure to book (with start_time, for a new window)
            start_time: Procedure start for a new window
            slot_id: Existing slot to book instead of a new window
            contact_id: External contact identity
            preferences: Role -> resource preferences ('preferred' or 'required')
            notes: Booking notes
            created_by: Staff user booking the appointment
            location_resource_id: Restrict resources to a location subtree

        Returns:
            The scheduled appointment with its reservations

        Raises:
            NotFoundError: Unknown procedure, slot or preferred resource
            ValidationError: Missing or malformed input
            ConflictError: Slot taken or resources unavailable (with alternatives)
            InsufficientInventoryError: A consumable would go negative
            InactiveResourceError: Procedure or required resource deactivated
        """
        normalized = normalize_preferences(preferences)
        try:
            appointment, low_stock = AppointmentService._reserve(
                db, clinic_id, procedure_id, start_time, slot_id, contact_id,
                normalized, notes, created_by, location_resource_id,
            )
            db.commit()
        except ConflictError as e:
            db.rollback()
            AppointmentService._report_conflict(
                db, clinic_id, e, procedure_id, start_time, slot_id, contact_id,
                normalized, location_resource_id, created_by,
            )
            raise

        slot = appointment.slot
        logger.info(
            f"Created appointment {appointment.id} in clinic {clinic_id} for procedure {slot.procedure_id}: "
            f"{format_window(slot.start_time, slot.end_time)} with {len(appointment.resources)} reservations"
        )
        AppointmentService._publish_created(appointment, low_stock, created_by)
        return appointment

    # ===== Lookup =====

    @staticmethod
    def get_appointment(db: Session, clinic_id: int, appointment_id: int, for_update: bool = False) -> Appointment:
        query = db.query(Appointment).filter(
            Appointment.id == appointment_id,
            Appointment.clinic_id == clinic_id
        )
        if for_update:
            query = query.with_for_update().populate_existing()
        appointment = query.first()
        if not appointment:
            raise NotFoundError("Appointment", appointment_id)
        return appointment

    @staticmethod
    def get_appointment_details(db: Session, clinic_id: int, appointment_id: int) -> Dict[str, Any]:
        """Appointment with its slot, procedure, reservations and preferences."""
        appointment = AppointmentService.get_appointment(db, clinic_id, appointment_id)
        slot = appointment.slot
        return {
            "appointment": appointment,
            "slot": slot,
            "procedure": slot.procedure,
            "resources": list(appointment.resources),
            "preferences": list(appointment.preferences),
        }

    @staticmethod
    def list_appointments(
        db: Session,
        clinic_id: int,
        status: Optional[str] = None,
        contact_id: Optional[int] = None,
        procedure_id: Optional[int] = None,
        resource_id: Optional[int] = None,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Appointment]:
        """
        List appointments ordered by slot start, then id.

        Args:
            resource_id: Only appointments holding an active reservation on this resource
            range_start, range_end: Only appointments whose slot overlaps the range
        """
        if status is not None and status not in APPOINTMENT_STATUSES:
            raise ValidationError(f"Invalid appointment status '{status}'")

        query = db.query(Appointment).join(
            ProcedureSlot, Appointment.slot_id == ProcedureSlot.id
        ).filter(Appointment.clinic_id == clinic_id)
        if status is not None:
            query = query.filter(Appointment.status == status)
        if contact_id is not None:
            query = query.filter(Appointment.contact_id == contact_id)
        if procedure_id is not None:
            query = query.filter(ProcedureSlot.procedure_id == procedure_id)
        if range_start is not None:
            query = query.filter(ProcedureSlot.end_time > to_clinic_local(range_start))
        if range_end is not None:
            query = query.filter(ProcedureSlot.start_time < to_clinic_local(range_end))
        if resource_id is not None:
            query = query.filter(Appointment.resources.any(
                (AppointmentResource.resource_id == resource_id)
                & AppointmentResource.status.notin_(INACTIVE_RESERVATION_STATUSES)
            ))
        query = query.order_by(ProcedureSlot.start_time, Appointment.id).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        return query.all()

    # ===== Lifecycle =====

    @staticmethod
    def _event_payload(appointment: Appointment, **extra: Any) -> Dict[str, Any]:
        slot = appointment.slot
        payload = {
            "appointment_id": appointment.id,
            "slot_id": appointment.slot_id,
            "procedure_id": slot.procedure_id,
            "contact_id": appointment.contact_id,
            "status": appointment.status,
            "start_time": slot.start_time.isoformat(),
            "end_time": slot.end_time.isoformat(),
            "resource_ids": [r.resource_id for r in appointment.resources],
        }
        payload.update(extra)
        return payload

    @staticmethod
    def _release(db: Session, appointment: Appointment, restore_stock: bool) -> None:
        """Mark held reservations released, optionally returning consumed stock."""
        held = [r for r in appointment.resources if r.status not in INACTIVE_RESERVATION_STATUSES]
        if restore_stock:
            consumed: Dict[int, int] = {}
            for reservation in held:
                if reservation.quantity_consumed:
                    consumed[reservation.resource_id] = (
                        consumed.get(reservation.resource_id, 0) + reservation.quantity_consumed
                    )
            # Stock is read only after the rows are locked
            for resource in ResourceService.lock_resources(db, list(consumed)):
                if resource.is_consumable:
                    resource.quantity_on_hand = (resource.quantity_on_hand or 0) + consumed[resource.id]
        for reservation in held:
            reservation.status = "released"
        db.flush()

    @staticmethod
    def _claim_transition(db: Session, appointment: Appointment, old_status: str, new_status: str) -> None:
        """Compare-and-set the appointment status so concurrent transitions cannot both apply."""
        result = db.execute(
            update(Appointment)
            .where(Appointment.id == appointment.id, Appointment.status == old_status)
            .values(status=new_status)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            db.refresh(appointment)
            raise ConflictError(
                f"Appointment {appointment.id} changed from {old_status} to {appointment.status} concurrently",
                conflicts=[{"appointment_id": appointment.id, "status": appointment.status}],
            )
        db.refresh(appointment)

    @staticmethod
    def _apply_transition(
        db: Session,
        appointment: Appointment,
        new_status: str,
        reason: Optional[str] = None,
    ) -> str:
        """Validate and apply a status change in the current transaction. Returns the old status."""
        if new_status not in APPOINTMENT_STATUSES:
            raise ValidationError(f"Invalid appointment status '{new_status}'")
        old_status = appointment.status
        if not can_transition(old_status, new_status):
            raise ValidationError(f"Cannot move appointment {appointment.id} from {old_status} to {new_status}")

        AppointmentService._claim_transition(db, appointment, old_status, new_status)
        slot = appointment.slot
        if new_status == "cancelled":
            appointment.cancelled_at = clinic_now()
            appointment.cancellation_reason = reason
            AppointmentService._release(db, appointment, restore_stock=True)
            slot.status = "available"
        elif new_status == "no_show":
            AppointmentService._release(db, appointment, restore_stock=False)
        elif new_status == "completed":
            now = clinic_now()
            appointment.completed_at = now
            slot.completed_at = now
        return old_status

    @staticmethod
    def _publish_transition(appointment: Appointment, old_status: str, actor_id: Optional[int]) -> None:
        payload = AppointmentService._event_payload(appointment, previous_status=old_status)
        scheduling_events.publish_event(
            scheduling_events.APPOINTMENT_STATUS_CHANGED, appointment.clinic_id, payload, actor_id=actor_id
        )
        if appointment.status == "cancelled":
            payload = AppointmentService._event_payload(
                appointment, cancellation_reason=appointment.cancellation_reason
            )
            scheduling_events.publish_event(
                scheduling_events.APPOINTMENT_CANCELLED, appointment.clinic_id, payload, actor_id=actor_id
            )
        elif appointment.status == "completed":
            scheduling_events.publish_event(
                scheduling_events.APPOINTMENT_COMPLETED, appointment.clinic_id,
                AppointmentService._event_payload(appointment), actor_id=actor_id
            )

    @staticmethod
    @storage_guard
    def transition_appointment(
        db: Session,
        clinic_id: int,
        appointment_id: int,
        new_status: str,
        reason: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> Appointment:
        """
        Move an appointment to a new status.

        Raises:
            NotFoundError: Unknown appointment
            ValidationError: Unknown status or transition not allowed
        """
        appointment = AppointmentService.get_appointment(db, clinic_id, appointment_id, for_update=True)
        old_status = AppointmentService._apply_transition(db, appointment, new_status, reason)
        db.commit()
        logger.info(f"Appointment {appointment_id} moved from {old_status} to {new_status}")
        AppointmentService._publish_transition(appointment, old_status, actor_id)
        return appointment

    @staticmethod
    def confirm_appointment(db: Session, clinic_id: int, appointment_id: int, actor_id: Optional[int] = None) -> Appointment:
        return AppointmentService.transition_appointment(db, clinic_id, appointment_id, "confirmed", actor_id=actor_id)

    @staticmethod
    def check_in_appointment(db: Session, clinic_id: int, appointment_id: int, actor_id: Optional[int] = None) -> Appointment:
        return AppointmentService.transition_appointment(db, clinic_id, appointment_id, "checked_in", actor_id=actor_id)

    @staticmethod
    def start_appointment(db: Session, clinic_id: int, appointment_id: int, actor_id: Optional[int] = None) -> Appointment:
        return AppointmentService.transition_appointment(db, clinic_id, appointment_id, "in_progress", actor_id=actor_id)

    @staticmethod
    def complete_appointment(db: Session, clinic_id: int, appointment_id: int, actor_id: Optional[int] = None) -> Appointment:
        """Complete an in-progress appointment; sets completed_at on it and its slot."""
        return AppointmentService.transition_appointment(db, clinic_id, appointment_id, "completed", actor_id=actor_id)

    @staticmethod
    def cancel_appointment(
        db: Session,
        clinic_id: int,
        appointment_id: int,
        reason: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> Appointment:
        """
        Cancel an appointment.

        The slot becomes available again, reservations are kept but marked
        released, and consumed stock is returned.
        """
        return AppointmentService.transition_appointment(
            db, clinic_id, appointment_id, "cancelled", reason=reason, actor_id=actor_id
        )

    @staticmethod
    def mark_no_show(db: Session, clinic_id: int, appointment_id: int, actor_id: Optional[int] = None) -> Appointment:
        """Mark an appointment as a no-show. Reservations are released; stock is not returned."""
        return AppointmentService.transition_appointment(db, clinic_id, appointment_id, "no_show", actor_id=actor_id)

    # ===== Changes to booked appointments =====

    @staticmethod
    @storage_guard
    def reschedule_appointment(
        db: Session,
        clinic_id: int,
        appointment_id: int,
        new_start_time: Optional[datetime] = None,
        new_slot_id: Optional[int] = None,
        preferences: Optional[Iterable[PreferenceInput]] = None,
        notes: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> Appointment:
        """
        Move an appointment to another start or slot in one transaction.

        The old appointment is cancelled and a new one booked with the same
        contact and, unless given, the same preferences. If the new booking
        fails nothing changes.

        Returns:
            The new appointment (rescheduled_from_id points at the old one)
        """
        old = AppointmentService.get_appointment(db, clinic_id, appointment_id, for_update=True)
        if new_slot_id is None and new_start_time is None:
            raise ValidationError("new_start_time or new_slot_id is required")
        if preferences is None:
            normalized = [
                ResourcePreference(p.role_id, p.resource_id, p.preference_type, p.priority)
                for p in old.preferences
            ]
        else:
            normalized = normalize_preferences(preferences)
        procedure_id = old.slot.procedure_id if new_slot_id is None else None
        contact_id = old.contact_id

        try:
            old_status = AppointmentService._apply_transition(db, old, "cancelled", "rescheduled")
            db.flush()
            new, low_stock = AppointmentService._reserve(
                db, clinic_id, procedure_id, new_start_time, new_slot_id, contact_id,
                normalized, notes if notes is not None else old.notes, actor_id, None,
                rescheduled_from_id=old.id,
            )
            db.commit()
        except ConflictError as e:
            db.rollback()
            AppointmentService._report_conflict(
                db, clinic_id, e, procedure_id, new_start_time, new_slot_id, contact_id,
                normalized, None, actor_id,
            )
            raise

        logger.info(f"Rescheduled appointment {appointment_id} to appointment {new.id}")
        AppointmentService._publish_transition(old, old_status, actor_id)
        AppointmentService._publish_created(new, low_stock, actor_id)
        return new

    @staticmethod
    @storage_guard
    def reassign_resource(
        db: Session,
        clinic_id: int,
        appointment_id: int,
        old_resource_id: int,
        new_resource_id: int,
        actor_id: Optional[int] = None,
    ) -> AppointmentResource:
        """
        Hand an appointment's reservation over to another resource.

        The new resource must fill the same role and be free for the same
        window. Consumable reservations cannot be reassigned.

        Returns:
            The new reservation row; the old one is marked released
        """
        appointment = AppointmentService.get_appointment(db, clinic_id, appointment_id, for_update=True)
        if appointment.status in TERMINAL_APPOINTMENT_STATUSES:
            raise ValidationError(f"Appointment {appointment_id} is {appointment.status}")
        held = next(
            (r for r in appointment.resources
             if r.resource_id == old_resource_id and r.status not in INACTIVE_RESERVATION_STATUSES),
            None,
        )
        if held is None:
            raise NotFoundError("AppointmentResource", old_resource_id)
        if held.quantity_consumed is not None:
            raise ValidationError("Consumable reservations cannot be reassigned")

        new_resource = ResourceService.get_resource(db, clinic_id, new_resource_id)
        if not new_resource.is_active:
            raise InactiveResourceError(f"Resource {new_resource_id} is inactive")
        if new_resource.is_consumable:
            raise ValidationError("Consumable reservations cannot be reassigned")
        fills_role = db.query(ResourceRoleAssignment).filter(
            ResourceRoleAssignment.resource_id == new_resource_id,
            ResourceRoleAssignment.role_id == held.role_id
        ).first()
        if not fills_role:
            raise ValidationError(f"Resource {new_resource_id} does not fill role {held.role_id}")

        new_resource = ResourceService.lock_resources(db, [new_resource_id])[0]
        windows = AvailabilityService.get_effective_windows(
            db, clinic_id, [new_resource_id], held.reserved_start, held.reserved_end
        )
        reservations = AvailabilityService.get_active_reservations(
            db, [new_resource_id], held.reserved_start, held.reserved_end
        )
        check = AvailabilityService.check_resource_window(
            new_resource,
            windows.get(new_resource_id, []),
            reservations.get(new_resource_id, []),
            held.reserved_start,
            held.reserved_end,
        )
        if not check.is_available:
            raise ConflictError(
                f"Resource {new_resource_id} is not available for "
                f"{format_window(held.reserved_start, held.reserved_end)}",
                conflicts=[check.to_dict()],
            )

        held.status = "released"
        replacement = AppointmentResource(
            appointment_id=appointment.id,
            resource_id=new_resource_id,
            role_id=held.role_id,
            reserved_start=held.reserved_start,
            reserved_end=held.reserved_end,
            reservation_mode=check.reservation_mode,
            status="assigned",
            notes=f"Reassigned from resource {old_resource_id}",
        )
        db.add(replacement)
        db.commit()
        logger.info(
            f"Reassigned appointment {appointment_id} role {held.role_id} "
            f"from resource {old_resource_id} to {new_resource_id}"
        )
        return replacement

    @staticmethod
    @storage_guard
    def find_appointments_needing_coverage(
        db: Session,
        clinic_id: int,
        resource_id: int,
        range_start: datetime,
        range_end: datetime,
        flag_reservations: bool = False,
    ) -> List[Dict[str, Any]]:
        """
        Active appointments holding a resource in a range, with replacements.

        Used when a resource becomes unavailable (e.g. a staff member calls
        in sick). For each affected reservation, lists other resources that
        fill the same role and are free for the reserved window.

        Args:
            flag_reservations: Mark the affected reservations needs_coverage

        Returns:
            One dict per affected reservation: appointment, reservation and
            alternative resources
        """
        range_start = to_clinic_local(range_start)
        range_end = to_clinic_local(range_end)
        ResourceService.get_resource(db, clinic_id, resource_id)

        affected = db.query(AppointmentResource).join(
            Appointment, AppointmentResource.appointment_id == Appointment.id
        ).filter(
            Appointment.clinic_id == clinic_id,
            Appointment.status.notin_(TERMINAL_APPOINTMENT_STATUSES),
            AppointmentResource.resource_id == resource_id,
            AppointmentResource.status.notin_(INACTIVE_RESERVATION_STATUSES),
            AppointmentResource.reserved_start < range_end,
            AppointmentResource.reserved_end > range_start
        ).order_by(AppointmentResource.reserved_start, AppointmentResource.id).all()

        results: List[Dict[str, Any]] = []
        for reservation in affected:
            candidates = [
                r for r in ResourceService.list_resources_for_role(db, clinic_id, reservation.role_id)
                if r.id != resource_id and not r.is_consumable
            ]
            ids = [r.id for r in candidates]
            windows = AvailabilityService.get_effective_windows(
                db, clinic_id, ids, reservation.reserved_start, reservation.reserved_end
            )
            held = AvailabilityService.get_active_reservations(
                db, ids, reservation.reserved_start, reservation.reserved_end
            )
            alternatives = [
                {"resource_id": r.id, "resource_name": r.name}
                for r in candidates
                if AvailabilityService.check_resource_window(
                    r, windows.get(r.id, []), held.get(r.id, []),
                    reservation.reserved_start, reservation.reserved_end,
                ).is_available
            ]
            if flag_reservations:
                reservation.status = "needs_coverage"
            results.append({
                "appointment": reservation.appointment,
                "reservation": reservation,
                "alternative_resources": alternatives,
            })

        if flag_reservations and affected:
            db.commit()
        logger.info(f"Found {len(results)} reservations on resource {resource_id} needing coverage")
        return results
