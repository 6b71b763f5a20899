"""
Slot generator.

Proposes bookable start times for a procedure by combining its expanded
requirements with resource availability and existing reservations, and
manages persisted (manual) slots.

The resource selector in this module is shared with the booking engine:
generation evaluates it for every candidate start, booking evaluates it
once for the requested window after locking the candidate resources.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple, Union

from sqlalchemy.orm import Session

from core.config import (
    ALTERNATIVE_SEARCH_DAYS,
    MAX_ALTERNATIVE_SLOTS,
    MAX_GENERATED_SLOTS,
    SLOT_GRANULARITY_MINUTES,
)
from core.constants import NO_PREFERENCE_RANK, PREFERENCE_RANK, PREFERENCE_TYPES
from core.exceptions import (
    ConflictError,
    InactiveResourceError,
    NotFoundError,
    SchedulingError,
    ValidationError,
)
from models import Procedure, ProcedureSlot, Resource
from services.availability_service import AvailabilityService
from services.procedure_service import ProcedureService
from services.resource_service import ResourceService
from shared_types.scheduling import (
    AvailabilityWindow,
    ExpandedRequirement,
    ReservationInterval,
    ResourceAssignment,
    ResourcePreference,
    SlotCandidate,
)
from utils.datetime_utils import format_window, intervals_overlap, round_up_to_interval, to_clinic_local
from utils.storage_errors import storage_guard

logger = logging.getLogger(__name__)

PreferenceInput = Union[ResourcePreference, Dict[str, Any]]


def normalize_preferences(preferences: Optional[Iterable[PreferenceInput]]) -> List[ResourcePreference]:
    """
    Convert preference dicts to ResourcePreference and validate them.

    Raises:
        ValidationError: On a malformed preference
    """
    normalized: List[ResourcePreference] = []
    for preference in preferences or []:
        if not isinstance(preference, ResourcePreference):
            try:
                preference = ResourcePreference.from_dict(preference)
            except (TypeError, ValueError) as e:
                raise ValidationError(f"Invalid resource preference: {e}")
        if preference.preference_type not in PREFERENCE_TYPES:
            raise ValidationError(f"Invalid preference type '{preference.preference_type}'")
        normalized.append(preference)
    return normalized


@dataclass
class SelectionContext:
    """
    Everything the selector needs for one procedure over one query range.

    Loaded once per request; never shared between requests.
    """
    clinic_id: int
    procedure: Procedure
    total_minutes: int
    requirements: List[ExpandedRequirement]
    pools: Dict[int, List[Resource]]  # role_id -> candidate resources
    priorities: Dict[int, Dict[int, int]]  # role_id -> {resource_id: priority}
    preferences: Dict[int, List[ResourcePreference]]  # role_id -> preferences
    windows: Dict[int, List[AvailabilityWindow]] = field(default_factory=dict)
    reservations: Dict[int, List[ReservationInterval]] = field(default_factory=dict)
    allowed_resource_ids: Optional[Set[int]] = None  # Location subtree, None for no restriction

    @property
    def resource_ids(self) -> List[int]:
        ids: Set[int] = set()
        for pool in self.pools.values():
            ids.update(r.id for r in pool)
        return sorted(ids)


@dataclass
class SelectionResult:
    """Resources picked for one candidate start, or why none could be."""
    start: datetime
    end: datetime
    assignments: List[ResourceAssignment] = field(default_factory=list)
    unfilled_optional_role_ids: List[int] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)
    load: int = 0

    @property
    def ok(self) -> bool:
        return not self.failures

    def to_candidate(self, procedure_id: int, slot_id: Optional[int] = None) -> SlotCandidate:
        return SlotCandidate(
            procedure_id=procedure_id,
            start=self.start,
            end=self.end,
            assignments=self.assignments,
            unfilled_optional_role_ids=self.unfilled_optional_role_ids,
            load=self.load,
            slot_id=slot_id,
        )


class SlotService:
    """
    Service class for slot generation and persisted slots.
    """

    # ===== Selection =====

    @staticmethod
    def load_role_pools(
        db: Session,
        clinic_id: int,
        requirements: Sequence[ExpandedRequirement],
        preferences: Sequence[ResourcePreference],
    ) -> Tuple[Dict[int, List[Resource]], Dict[int, List[ResourcePreference]]]:
        """
        Candidate resources per role, and preferences grouped by role.

        Raises:
            NotFoundError: A preference names an unknown resource
            ValidationError: A preference names a resource that does not fill the role
            InactiveResourceError: A required preference names an inactive resource
        """
        role_ids = sorted({r.role_id for r in requirements})
        pools = {
            role_id: ResourceService.list_resources_for_role(db, clinic_id, role_id)
            for role_id in role_ids
        }

        by_role: Dict[int, List[ResourcePreference]] = {}
        for preference in preferences:
            resource = ResourceService.get_resource(db, clinic_id, preference.resource_id)
            if preference.role_id not in pools:
                # Preferences for roles the procedure does not need are ignored
                continue
            if not resource.is_active:
                if preference.preference_type == "required":
                    raise InactiveResourceError(f"Required resource {resource.id} is inactive")
                continue
            if resource.id not in {r.id for r in pools[preference.role_id]}:
                raise ValidationError(
                    f"Resource {resource.id} does not fill role {preference.role_id}"
                )
            by_role.setdefault(preference.role_id, []).append(preference)

        for role_preferences in by_role.values():
            role_preferences.sort(key=lambda p: (PREFERENCE_RANK[p.preference_type], p.priority))
        return pools, by_role

    @staticmethod
    def build_context(
        db: Session,
        clinic_id: int,
        procedure: Procedure,
        range_start: datetime,
        range_end: datetime,
        preferences: Optional[Sequence[ResourcePreference]] = None,
        location_resource_id: Optional[int] = None,
    ) -> SelectionContext:
        """
        Load requirements, candidate pools, availability and reservations.

        Args:
            db: Database session
            clinic_id: Clinic owning the procedure
            procedure: Procedure to schedule
            range_start: Earliest slot start
            range_end: Latest slot end (exclusive)
            preferences: Role -> resource preferences
            location_resource_id: Restrict non-consumable resources to this
                resource and everything it contains
        """
        requirements = ProcedureService.expand_requirements(db, procedure)
        total_minutes = ProcedureService.total_duration(db, procedure)
        pools, by_role = SlotService.load_role_pools(db, clinic_id, requirements, preferences or [])

        allowed: Optional[Set[int]] = None
        if location_resource_id is not None:
            allowed = {location_resource_id}
            allowed.update(ResourceService.get_descendant_ids(db, clinic_id, location_resource_id))

        context = SelectionContext(
            clinic_id=clinic_id,
            procedure=procedure,
            total_minutes=total_minutes,
            requirements=requirements,
            pools=pools,
            priorities=ResourceService.get_role_priorities(db, list(pools)),
            preferences=by_role,
            allowed_resource_ids=allowed,
        )
        resource_ids = context.resource_ids
        context.windows = AvailabilityService.get_effective_windows(
            db, clinic_id, resource_ids, range_start, range_end
        )
        context.reservations = AvailabilityService.get_active_reservations(
            db, resource_ids, range_start, range_end
        )
        return context

    @staticmethod
    def _rank_pool(
        context: SelectionContext,
        requirement: ExpandedRequirement,
        window_start: datetime,
        window_end: datetime,
        tentative: Dict[int, List[ReservationInterval]],
    ) -> Tuple[List[Resource], bool]:
        """
        Order a role's candidates for one sub-window.

        Returns:
            (ranked resources, True when a required preference restricts the pool)
        """
        preferences = context.preferences.get(requirement.role_id, [])
        required_ids = {p.resource_id for p in preferences if p.preference_type == "required"}
        preference_key = {p.resource_id: (PREFERENCE_RANK[p.preference_type], p.priority) for p in preferences}
        priorities = context.priorities.get(requirement.role_id, {})

        pool = context.pools.get(requirement.role_id, [])
        if required_ids:
            pool = [r for r in pool if r.id in required_ids]
        elif context.allowed_resource_ids is not None:
            pool = [r for r in pool if r.is_consumable or r.id in context.allowed_resource_ids]

        def load(resource: Resource) -> int:
            if resource.is_consumable:
                return 0
            held = context.reservations.get(resource.id, []) + tentative.get(resource.id, [])
            return sum(1 for r in held if intervals_overlap(r.start, r.end, window_start, window_end))

        ranked = sorted(
            pool,
            key=lambda r: (
                preference_key.get(r.id, (NO_PREFERENCE_RANK, 0)),
                load(r),
                priorities.get(r.id, 0),
                r.id,
            ),
        )
        return ranked, bool(required_ids)

    @staticmethod
    def select_resources(
        context: SelectionContext,
        slot_start: datetime,
        stop_on_failure: bool = True,
    ) -> SelectionResult:
        """
        Pick resources for every requirement of a candidate start.

        A resource is picked when its sub-window is covered by availability
        and it has capacity left after stored reservations and the picks
        already made for this candidate. Consumables are checked by stock
        only, drawing quantity_min units from one resource.

        Args:
            context: Loaded selection context
            slot_start: Candidate procedure start
            stop_on_failure: Stop at the first unmet required requirement

        Returns:
            SelectionResult; failures lists unmet required requirements
        """
        slot_end = slot_start + timedelta(minutes=context.total_minutes)
        result = SelectionResult(start=slot_start, end=slot_end)
        tentative: Dict[int, List[ReservationInterval]] = {}
        stock_drawn: Dict[int, int] = {}

        for requirement in context.requirements:
            window_start, window_end = requirement.window(slot_start)
            ranked, restricted = SlotService._rank_pool(context, requirement, window_start, window_end, tentative)

            needed = requirement.quantity_min
            picks: List[Tuple[ResourceAssignment, int]] = []
            rejections: List[Dict[str, Any]] = []
            for resource in ranked:
                if needed <= 0:
                    break
                if resource.is_consumable:
                    on_hand = (resource.quantity_on_hand or 0) - stock_drawn.get(resource.id, 0)
                    if picks or on_hand < needed:
                        rejections.append({
                            "resource_id": resource.id,
                            "reason": "insufficient_stock",
                            "available": on_hand,
                            "requested": needed,
                        })
                        continue
                    picks.append((ResourceAssignment(
                        resource_id=resource.id,
                        resource_name=resource.name,
                        role_id=requirement.role_id,
                        requirement_id=requirement.requirement_id,
                        reserved_start=window_start,
                        reserved_end=window_end,
                        reservation_mode=resource.reservation_mode,
                        quantity=needed,
                    ), 0))
                    needed = 0
                    continue

                check = AvailabilityService.check_resource_window(
                    resource,
                    context.windows.get(resource.id, []),
                    context.reservations.get(resource.id, []) + tentative.get(resource.id, []),
                    window_start,
                    window_end,
                )
                if not check.is_available:
                    rejections.append({
                        "resource_id": resource.id,
                        "reason": check.reason,
                        "conflicts": check.conflicts,
                    })
                    continue
                picks.append((ResourceAssignment(
                    resource_id=resource.id,
                    resource_name=resource.name,
                    role_id=requirement.role_id,
                    requirement_id=requirement.requirement_id,
                    reserved_start=window_start,
                    reserved_end=window_end,
                    reservation_mode=check.reservation_mode,
                ), check.current_overlap))
                needed -= 1

            if needed > 0:
                if requirement.is_required:
                    result.failures.append({
                        "requirement_id": requirement.requirement_id,
                        "role_id": requirement.role_id,
                        "reserved_start": window_start.isoformat(),
                        "reserved_end": window_end.isoformat(),
                        "needed": needed,
                        "reason": "required_preference_unavailable" if restricted else (
                            "no_candidates" if not ranked else "unavailable"
                        ),
                        "rejections": rejections,
                    })
                    if stop_on_failure:
                        return result
                elif requirement.role_id not in result.unfilled_optional_role_ids:
                    result.unfilled_optional_role_ids.append(requirement.role_id)
                continue

            for assignment, overlap in picks:
                result.assignments.append(assignment)
                result.load += overlap
                if assignment.quantity is not None:
                    stock_drawn[assignment.resource_id] = stock_drawn.get(assignment.resource_id, 0) + assignment.quantity
                else:
                    tentative.setdefault(assignment.resource_id, []).append(ReservationInterval(
                        resource_id=assignment.resource_id,
                        start=assignment.reserved_start,
                        end=assignment.reserved_end,
                        reservation_mode=assignment.reservation_mode,
                    ))
        return result

    # ===== Generation =====

    @staticmethod
    def _validate_range(range_start: datetime, range_end: datetime) -> Tuple[datetime, datetime]:
        range_start = to_clinic_local(range_start)
        range_end = to_clinic_local(range_end)
        if range_end <= range_start:
            raise ValidationError("range_end must be after range_start")
        return range_start, range_end

    @staticmethod
    def _slots_by_start(
        db: Session, clinic_id: int, procedure_id: int, range_start: datetime, range_end: datetime
    ) -> Dict[datetime, ProcedureSlot]:
        """Persisted, non-cancelled slots of a procedure keyed by start time."""
        slots = db.query(ProcedureSlot).filter(
            ProcedureSlot.clinic_id == clinic_id,
            ProcedureSlot.procedure_id == procedure_id,
            ProcedureSlot.status != "cancelled",
            ProcedureSlot.start_time >= range_start,
            ProcedureSlot.start_time < range_end
        ).order_by(ProcedureSlot.id).all()
        by_start: Dict[datetime, ProcedureSlot] = {}
        for slot in slots:
            by_start.setdefault(slot.start_time, slot)
        return by_start

    @staticmethod
    def generate_slots(
        db: Session,
        clinic_id: int,
        procedure_id: int,
        range_start: datetime,
        range_end: datetime,
        granularity_minutes: Optional[int] = None,
        max_slots: Optional[int] = None,
        location_resource_id: Optional[int] = None,
        preferences: Optional[Iterable[PreferenceInput]] = None,
    ) -> List[SlotCandidate]:
        """
        Generate ephemeral slot candidates for a procedure.

        Candidate starts are aligned to the granularity grid, and the whole
        procedure span must end by range_end. Starts held by a booked or
        blocked persisted slot are skipped; starts matching an available
        persisted slot carry its slot_id.

        Args:
            db: Database session
            clinic_id: Clinic owning the procedure
            procedure_id: Procedure to schedule
            range_start: Earliest start
            range_end: Latest end (exclusive)
            granularity_minutes: Grid size (default SLOT_GRANULARITY_MINUTES)
            max_slots: Maximum candidates returned (default MAX_GENERATED_SLOTS)
            location_resource_id: Restrict resources to a location subtree
            preferences: Role -> resource preferences

        Returns:
            Candidates ordered by start time
        """
        range_start, range_end = SlotService._validate_range(range_start, range_end)
        granularity = granularity_minutes or SLOT_GRANULARITY_MINUTES
        limit = max_slots or MAX_GENERATED_SLOTS
        if granularity <= 0 or limit <= 0:
            raise ValidationError("granularity_minutes and max_slots must be positive")

        procedure = ProcedureService.get_active_procedure(db, clinic_id, procedure_id)
        context = SlotService.build_context(
            db, clinic_id, procedure, range_start, range_end,
            normalize_preferences(preferences), location_resource_id,
        )
        persisted = SlotService._slots_by_start(db, clinic_id, procedure.id, range_start, range_end)
        span = timedelta(minutes=context.total_minutes)
        if span <= timedelta(0):
            raise ValidationError(f"Procedure {procedure.id} has no duration")

        candidates: List[SlotCandidate] = []
        start = round_up_to_interval(range_start, granularity)
        while start + span <= range_end and len(candidates) < limit:
            slot = persisted.get(start)
            if slot is None or slot.status == "available":
                selection = SlotService.select_resources(context, start)
                if selection.ok:
                    candidates.append(selection.to_candidate(procedure.id, slot.id if slot else None))
            start += timedelta(minutes=granularity)

        logger.info(
            f"Generated {len(candidates)} candidate slots for procedure {procedure.id} "
            f"in clinic {clinic_id} ({format_window(range_start, range_end)})"
        )
        return candidates

    @staticmethod
    def find_alternatives(
        db: Session,
        clinic_id: int,
        procedure_id: int,
        requested_start: datetime,
        preferences: Optional[Iterable[PreferenceInput]] = None,
        location_resource_id: Optional[int] = None,
        search_days: Optional[int] = None,
        max_results: Optional[int] = None,
    ) -> List[SlotCandidate]:
        """
        Bookable candidates closest to a requested start.

        Searches from the start of the requested day for search_days days,
        excludes the requested start itself, keeps the max_results closest
        candidates and returns them in start order.
        """
        requested_start = to_clinic_local(requested_start)
        days = search_days or ALTERNATIVE_SEARCH_DAYS
        limit = max_results or MAX_ALTERNATIVE_SLOTS
        search_start = requested_start.replace(hour=0, minute=0, second=0, microsecond=0)
        candidates = SlotService.generate_slots(
            db, clinic_id, procedure_id,
            search_start, search_start + timedelta(days=days),
            max_slots=MAX_GENERATED_SLOTS,
            location_resource_id=location_resource_id,
            preferences=preferences,
        )
        candidates = [c for c in candidates if c.start != requested_start]
        candidates.sort(key=lambda c: (abs((c.start - requested_start).total_seconds()), c.start))
        return sorted(candidates[:limit], key=lambda c: c.start)

    # ===== Persisted slots =====

    @staticmethod
    def get_slot(db: Session, clinic_id: int, slot_id: int) -> ProcedureSlot:
        slot = db.query(ProcedureSlot).filter(
            ProcedureSlot.id == slot_id,
            ProcedureSlot.clinic_id == clinic_id
        ).first()
        if not slot:
            raise NotFoundError("ProcedureSlot", slot_id)
        return slot

    @staticmethod
    @storage_guard
    def create_slot(
        db: Session,
        clinic_id: int,
        procedure_id: int,
        start_time: datetime,
        notes: Optional[str] = None,
        created_by: Optional[int] = None,
    ) -> ProcedureSlot:
        """
        Persist a single manual slot for a procedure.

        Resources are not checked here; use validate_slot or book it.

        Raises:
            ConflictError: A non-cancelled slot already starts at start_time
        """
        procedure = ProcedureService.get_active_procedure(db, clinic_id, procedure_id)
        start_time = to_clinic_local(start_time)
        end_time = start_time + timedelta(minutes=ProcedureService.total_duration(db, procedure))
        if end_time <= start_time:
            raise ValidationError(f"Procedure {procedure.id} has no duration")

        existing = SlotService._slots_by_start(
            db, clinic_id, procedure.id, start_time, start_time + timedelta(microseconds=1)
        )
        if existing:
            raise ConflictError(
                f"Procedure {procedure.id} already has a slot at {start_time.isoformat()}",
                conflicts=[{"slot_id": slot.id, "status": slot.status} for slot in existing.values()],
            )

        slot = ProcedureSlot(
            clinic_id=clinic_id,
            procedure_id=procedure.id,
            start_time=start_time,
            end_time=end_time,
            status="available",
            generation_type="manual",
            notes=notes,
            created_by=created_by,
        )
        db.add(slot)
        db.commit()
        logger.info(f"Created slot {slot.id} for procedure {procedure.id}: {format_window(start_time, end_time)}")
        return slot

    @staticmethod
    @storage_guard
    def create_slots(
        db: Session,
        clinic_id: int,
        procedure_id: int,
        range_start: datetime,
        range_end: datetime,
        granularity_minutes: Optional[int] = None,
        max_slots: Optional[int] = None,
        location_resource_id: Optional[int] = None,
        created_by: Optional[int] = None,
    ) -> List[ProcedureSlot]:
        """
        Generate candidates and persist them as manual slots.

        Starts that already have a persisted slot are skipped.

        Returns:
            The newly created slots
        """
        candidates = SlotService.generate_slots(
            db, clinic_id, procedure_id, range_start, range_end,
            granularity_minutes=granularity_minutes,
            max_slots=max_slots,
            location_resource_id=location_resource_id,
        )
        created: List[ProcedureSlot] = []
        for candidate in candidates:
            if candidate.slot_id is not None:
                continue
            slot = ProcedureSlot(
                clinic_id=clinic_id,
                procedure_id=procedure_id,
                start_time=candidate.start,
                end_time=candidate.end,
                status="available",
                generation_type="manual",
                created_by=created_by,
            )
            db.add(slot)
            created.append(slot)
        db.commit()
        logger.info(f"Persisted {len(created)} slots for procedure {procedure_id} in clinic {clinic_id}")
        return created

    @staticmethod
    def _set_status(db: Session, clinic_id: int, slot_id: int, from_statuses: Tuple[str, ...], status: str) -> ProcedureSlot:
        slot = db.query(ProcedureSlot).filter(
            ProcedureSlot.id == slot_id,
            ProcedureSlot.clinic_id == clinic_id
        ).with_for_update().first()
        if not slot:
            raise NotFoundError("ProcedureSlot", slot_id)
        if slot.status not in from_statuses:
            raise ConflictError(
                f"Slot {slot_id} is {slot.status}",
                conflicts=[{"slot_id": slot_id, "status": slot.status}],
            )
        slot.status = status
        db.commit()
        logger.info(f"Slot {slot_id} is now {status}")
        return slot

    @staticmethod
    @storage_guard
    def block_slot(db: Session, clinic_id: int, slot_id: int, reason: Optional[str] = None) -> ProcedureSlot:
        """
        Make an available slot unbookable.

        Raises:
            ConflictError: If the slot is booked or cancelled
        """
        slot = SlotService._set_status(db, clinic_id, slot_id, ("available", "blocked"), "blocked")
        if reason:
            slot.notes = reason
            db.commit()
        return slot

    @staticmethod
    @storage_guard
    def unblock_slot(db: Session, clinic_id: int, slot_id: int) -> ProcedureSlot:
        """Make a blocked slot bookable again."""
        return SlotService._set_status(db, clinic_id, slot_id, ("blocked",), "available")

    @staticmethod
    def list_slots(
        db: Session,
        clinic_id: int,
        procedure_id: Optional[int] = None,
        status: Optional[str] = None,
        range_start: Optional[datetime] = None,
        range_end: Optional[datetime] = None,
    ) -> List[ProcedureSlot]:
        """List persisted slots ordered by start time."""
        query = db.query(ProcedureSlot).filter(ProcedureSlot.clinic_id == clinic_id)
        if procedure_id is not None:
            query = query.filter(ProcedureSlot.procedure_id == procedure_id)
        if status is not None:
            query = query.filter(ProcedureSlot.status == status)
        if range_start is not None:
            query = query.filter(ProcedureSlot.end_time > to_clinic_local(range_start))
        if range_end is not None:
            query = query.filter(ProcedureSlot.start_time < to_clinic_local(range_end))
        return query.order_by(ProcedureSlot.start_time, ProcedureSlot.id).all()

    @staticmethod
    def validate_slot(
        db: Session,
        clinic_id: int,
        slot_id: int,
        preferences: Optional[Iterable[PreferenceInput]] = None,
        include_alternatives: bool = True,
    ) -> Dict[str, Any]:
        """
        Check whether a persisted slot can still be booked.

        Returns:
            Dict with is_valid, issues, the proposed assignments, and
            alternatives when the slot is not bookable
        """
        slot = SlotService.get_slot(db, clinic_id, slot_id)
        issues: List[Dict[str, Any]] = []
        assignments: List[Dict[str, Any]] = []
        normalized = normalize_preferences(preferences)

        if slot.status != "available":
            issues.append({"reason": "slot_not_available", "status": slot.status})

        try:
            procedure = ProcedureService.get_active_procedure(db, clinic_id, slot.procedure_id)
            context = SlotService.build_context(
                db, clinic_id, procedure, slot.start_time, slot.end_time, normalized
            )
            selection = SlotService.select_resources(context, slot.start_time, stop_on_failure=False)
            issues.extend(selection.failures)
            assignments = [a.to_dict() for a in selection.assignments]
        except SchedulingError as e:
            issues.append({"reason": e.code, "message": e.message})

        alternatives: List[Dict[str, Any]] = []
        if issues and include_alternatives:
            try:
                alternatives = [
                    c.to_dict() for c in SlotService.find_alternatives(
                        db, clinic_id, slot.procedure_id, slot.start_time, normalized
                    )
                ]
            except SchedulingError as e:
                logger.warning(f"Could not compute alternatives for slot {slot_id}: {e.message}")

        return {
            "slot_id": slot.id,
            "is_valid": not issues,
            "issues": issues,
            "assignments": assignments,
            "alternatives": alternatives,
        }

    @staticmethod
    @storage_guard
    def delete_stale_slots(db: Session, clinic_id: int, before: datetime) -> int:
        """
        Delete auto-generated slots that ended before a cutoff and hold no appointment.

        Returns:
            Number of slots deleted
        """
        before = to_clinic_local(before)
        stale = db.query(ProcedureSlot).filter(
            ProcedureSlot.clinic_id == clinic_id,
            ProcedureSlot.generation_type == "auto",
            ProcedureSlot.status != "booked",
            ProcedureSlot.end_time < before,
            ~ProcedureSlot.appointments.any()
        ).all()
        for slot in stale:
            db.delete(slot)
        db.commit()
        if stale:
            logger.info(f"Deleted {len(stale)} stale auto slots for clinic {clinic_id}")
        return len(stale)
