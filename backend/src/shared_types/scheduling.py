"""
Shared types for the scheduling engine.

Plain data classes passed between the availability engine, the slot
generator and the booking engine. None of them are persisted directly.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple


def _iso(dt: datetime) -> str:
    return dt.isoformat()


@dataclass
class AvailabilityWindow:
    """
    A concrete window during which a resource can be reserved.

    Carries the reservation mode and capacity in effect inside the window:
    the source record's overrides, or the resource defaults.
    """
    resource_id: int
    start: datetime
    end: datetime
    reservation_mode: str
    max_concurrent: int
    availability_type: str = "available"
    source_availability_id: Optional[int] = None  # None when no schedule is defined

    def covers(self, start: datetime, end: datetime) -> bool:
        return self.start <= start and end <= self.end

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "resource_id": self.resource_id,
            "start_time": _iso(self.start),
            "end_time": _iso(self.end),
            "availability_type": self.availability_type,
            "reservation_mode": self.reservation_mode,
            "max_concurrent": self.max_concurrent,
            "source_availability_id": self.source_availability_id,
        }


@dataclass
class ReservationInterval:
    """A reservation occupying a resource, either stored or tentatively picked."""
    resource_id: int
    start: datetime
    end: datetime
    reservation_mode: str
    appointment_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "appointment_id": self.appointment_id,
            "reserved_start": _iso(self.start),
            "reserved_end": _iso(self.end),
            "reservation_mode": self.reservation_mode,
        }


@dataclass
class ExpandedRequirement:
    """
    A procedure requirement flattened out of a (possibly composite) procedure.

    Offsets are absolute minutes from the slot start.
    """
    requirement_id: int
    procedure_id: int
    role_id: int
    quantity_min: int
    quantity_max: int
    is_required: bool
    offset_start_minutes: int
    offset_end_minutes: int

    def window(self, slot_start: datetime) -> Tuple[datetime, datetime]:
        """Reserved sub-window for a slot starting at slot_start."""
        return (
            slot_start + timedelta(minutes=self.offset_start_minutes),
            slot_start + timedelta(minutes=self.offset_end_minutes),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "requirement_id": self.requirement_id,
            "procedure_id": self.procedure_id,
            "role_id": self.role_id,
            "quantity_min": self.quantity_min,
            "quantity_max": self.quantity_max,
            "is_required": self.is_required,
            "offset_start_minutes": self.offset_start_minutes,
            "offset_end_minutes": self.offset_end_minutes,
        }


@dataclass
class ResourcePreference:
    """A role -> resource preference supplied with a booking or slot search."""
    role_id: int
    resource_id: int
    preference_type: str = "preferred"  # 'preferred' or 'required'
    priority: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourcePreference":
        """Create ResourcePreference from dictionary."""
        role_id = data.get("role_id")
        resource_id = data.get("resource_id")
        if not isinstance(role_id, int):
            raise ValueError(f"role_id must be int, got {type(role_id)}")
        if not isinstance(resource_id, int):
            raise ValueError(f"resource_id must be int, got {type(resource_id)}")
        return cls(
            role_id=role_id,
            resource_id=resource_id,
            preference_type=str(data.get("preference_type", "preferred")),
            priority=int(data.get("priority", 0)),
        )


@dataclass
class ResourceAssignment:
    """A resource picked to fill one requirement of a slot."""
    resource_id: int
    resource_name: str
    role_id: int
    requirement_id: int
    reserved_start: datetime
    reserved_end: datetime
    reservation_mode: str
    quantity: Optional[int] = None  # Units drawn, consumables only

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "resource_name": self.resource_name,
            "role_id": self.role_id,
            "requirement_id": self.requirement_id,
            "reserved_start": _iso(self.reserved_start),
            "reserved_end": _iso(self.reserved_end),
            "reservation_mode": self.reservation_mode,
            "quantity": self.quantity,
        }


@dataclass
class SlotCandidate:
    """
    A bookable start time for a procedure with a full resource assignment.

    slot_id is set only for candidates backed by a persisted slot.
    """
    procedure_id: int
    start: datetime
    end: datetime
    assignments: List[ResourceAssignment] = field(default_factory=list)
    unfilled_optional_role_ids: List[int] = field(default_factory=list)
    load: int = 0  # Overlapping reservations on the chosen resources
    slot_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "procedure_id": self.procedure_id,
            "slot_id": self.slot_id,
            "start_time": _iso(self.start),
            "end_time": _iso(self.end),
            "assignments": [a.to_dict() for a in self.assignments],
            "unfilled_optional_role_ids": list(self.unfilled_optional_role_ids),
            "load": self.load,
        }


@dataclass
class ResourceCheck:
    """Outcome of checking one resource for one reserved window."""
    resource_id: int
    is_available: bool
    reservation_mode: str
    capacity: int
    current_overlap: int
    conflicts: List[Dict[str, Any]] = field(default_factory=list)
    reason: Optional[str] = None  # 'not_available', 'blocked', 'inactive', 'capacity'

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "is_available": self.is_available,
            "reservation_mode": self.reservation_mode,
            "capacity": self.capacity,
            "current_overlap": self.current_overlap,
            "conflicts": self.conflicts,
            "reason": self.reason,
        }
