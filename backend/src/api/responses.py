"""
Shared response models for API endpoints.

This module contains Pydantic response models that are shared across
multiple API endpoints to ensure consistency and reduce duplication, plus
small builders turning ORM rows into them.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel

from models import (
    Appointment,
    AppointmentResource,
    Procedure,
    ProcedureSlot,
    Resource,
    ResourceAvailability,
    ResourceRole,
)
from shared_types.scheduling import SlotCandidate


class ResourceResponse(BaseModel):
    """Response model for resource."""
    id: int
    clinic_id: int
    resource_type_id: int
    resource_subtype_id: Optional[int] = None
    name: str
    description: Optional[str] = None
    reservation_mode: str
    max_concurrent_bookings: int
    parent_resource_id: Optional[int] = None
    is_consumable: bool
    quantity_on_hand: Optional[int] = None
    quantity_threshold: Optional[int] = None
    is_low_stock: bool = False
    staff_user_id: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ResourceRoleResponse(BaseModel):
    """Response model for resource role."""
    id: int
    clinic_id: int
    code: str
    name: str
    description: Optional[str] = None
    resource_type_id: Optional[int] = None
    is_active: bool


class ProcedureResponse(BaseModel):
    """Response model for procedure."""
    id: int
    clinic_id: int
    code: str
    name: str
    description: Optional[str] = None
    procedure_type: str
    duration_minutes: Optional[int] = None
    buffer_before_minutes: int
    buffer_after_minutes: int
    color: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    is_active: bool


class AvailabilityResponse(BaseModel):
    """Response model for an availability record."""
    id: int
    resource_id: int
    start_time: datetime
    end_time: datetime
    availability_type: str
    recurrence_pattern: Optional[Dict[str, Any]] = None
    reservation_mode_override: Optional[str] = None
    max_concurrent_override: Optional[int] = None
    reason: Optional[str] = None


class SlotResponse(BaseModel):
    """Response model for a persisted slot."""
    id: int
    procedure_id: int
    start_time: datetime
    end_time: datetime
    status: str
    generation_type: str
    notes: Optional[str] = None
    completed_at: Optional[datetime] = None


class AssignmentResponse(BaseModel):
    """Response model for a proposed resource assignment."""
    resource_id: int
    resource_name: str
    role_id: int
    requirement_id: int
    reserved_start: datetime
    reserved_end: datetime
    reservation_mode: str
    quantity: Optional[int] = None


class SlotCandidateResponse(BaseModel):
    """Response model for a generated slot candidate."""
    procedure_id: int
    slot_id: Optional[int] = None
    start_time: datetime
    end_time: datetime
    assignments: List[AssignmentResponse]
    unfilled_optional_role_ids: List[int] = []


class ReservationResponse(BaseModel):
    """Response model for an appointment's resource reservation."""
    id: int
    resource_id: int
    role_id: int
    reserved_start: datetime
    reserved_end: datetime
    reservation_mode: str
    status: str
    quantity_consumed: Optional[int] = None


class AppointmentResponse(BaseModel):
    """Response model for appointment."""
    id: int
    clinic_id: int
    slot_id: int
    procedure_id: int
    contact_id: Optional[int] = None
    status: str
    start_time: datetime
    end_time: datetime
    notes: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    rescheduled_from_id: Optional[int] = None
    resources: List[ReservationResponse] = []


def resource_response(resource: Resource) -> ResourceResponse:
    return ResourceResponse(
        id=resource.id,
        clinic_id=resource.clinic_id,
        resource_type_id=resource.resource_type_id,
        resource_subtype_id=resource.resource_subtype_id,
        name=resource.name,
        description=resource.description,
        reservation_mode=resource.reservation_mode,
        max_concurrent_bookings=resource.max_concurrent_bookings,
        parent_resource_id=resource.parent_resource_id,
        is_consumable=resource.is_consumable,
        quantity_on_hand=resource.quantity_on_hand,
        quantity_threshold=resource.quantity_threshold,
        is_low_stock=resource.is_low_stock,
        staff_user_id=resource.staff_user_id,
        metadata=resource.resource_metadata,
        is_active=resource.is_active,
        created_at=resource.created_at,
        updated_at=resource.updated_at,
    )


def role_response(role: ResourceRole) -> ResourceRoleResponse:
    return ResourceRoleResponse(
        id=role.id,
        clinic_id=role.clinic_id,
        code=role.code,
        name=role.name,
        description=role.description,
        resource_type_id=role.resource_type_id,
        is_active=role.is_active,
    )


def procedure_response(procedure: Procedure) -> ProcedureResponse:
    return ProcedureResponse(
        id=procedure.id,
        clinic_id=procedure.clinic_id,
        code=procedure.code,
        name=procedure.name,
        description=procedure.description,
        procedure_type=procedure.procedure_type,
        duration_minutes=procedure.duration_minutes,
        buffer_before_minutes=procedure.buffer_before_minutes,
        buffer_after_minutes=procedure.buffer_after_minutes,
        color=procedure.color,
        metadata=procedure.procedure_metadata,
        is_active=procedure.is_active,
    )


def availability_response(record: ResourceAvailability) -> AvailabilityResponse:
    return AvailabilityResponse(
        id=record.id,
        resource_id=record.resource_id,
        start_time=record.start_time,
        end_time=record.end_time,
        availability_type=record.availability_type,
        recurrence_pattern=record.recurrence_pattern,
        reservation_mode_override=record.reservation_mode_override,
        max_concurrent_override=record.max_concurrent_override,
        reason=record.reason,
    )


def slot_response(slot: ProcedureSlot) -> SlotResponse:
    return SlotResponse(
        id=slot.id,
        procedure_id=slot.procedure_id,
        start_time=slot.start_time,
        end_time=slot.end_time,
        status=slot.status,
        generation_type=slot.generation_type,
        notes=slot.notes,
        completed_at=slot.completed_at,
    )


def candidate_response(candidate: SlotCandidate) -> SlotCandidateResponse:
    return SlotCandidateResponse(
        procedure_id=candidate.procedure_id,
        slot_id=candidate.slot_id,
        start_time=candidate.start,
        end_time=candidate.end,
        assignments=[
            AssignmentResponse(
                resource_id=a.resource_id,
                resource_name=a.resource_name,
                role_id=a.role_id,
                requirement_id=a.requirement_id,
                reserved_start=a.reserved_start,
                reserved_end=a.reserved_end,
                reservation_mode=a.reservation_mode,
                quantity=a.quantity,
            )
            for a in candidate.assignments
        ],
        unfilled_optional_role_ids=list(candidate.unfilled_optional_role_ids),
    )


def reservation_response(reservation: AppointmentResource) -> ReservationResponse:
    return ReservationResponse(
        id=reservation.id,
        resource_id=reservation.resource_id,
        role_id=reservation.role_id,
        reserved_start=reservation.reserved_start,
        reserved_end=reservation.reserved_end,
        reservation_mode=reservation.reservation_mode,
        status=reservation.status,
        quantity_consumed=reservation.quantity_consumed,
    )


def appointment_response(appointment: Appointment) -> AppointmentResponse:
    slot = appointment.slot
    return AppointmentResponse(
        id=appointment.id,
        clinic_id=appointment.clinic_id,
        slot_id=appointment.slot_id,
        procedure_id=slot.procedure_id,
        contact_id=appointment.contact_id,
        status=appointment.status,
        start_time=slot.start_time,
        end_time=slot.end_time,
        notes=appointment.notes,
        cancelled_at=appointment.cancelled_at,
        cancellation_reason=appointment.cancellation_reason,
        completed_at=appointment.completed_at,
        rescheduled_from_id=appointment.rescheduled_from_id,
        resources=[reservation_response(r) for r in appointment.resources],
    )
