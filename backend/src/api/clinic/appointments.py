"""
Appointment API endpoints.

Booking, lifecycle transitions, rescheduling and resource reassignment.
Booking conflicts are answered with HTTP 409 carrying the conflicting
reservations and alternative slot candidates (see main.py).
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from pydantic import BaseModel, model_validator
from sqlalchemy.orm import Session

from api.clinic.slots import PreferenceRequest
from api.responses import (
    AppointmentResponse,
    ReservationResponse,
    SlotResponse,
    appointment_response,
    reservation_response,
    slot_response,
)
from core.database import get_db
from core.exceptions import SchedulingError
from services.appointment_service import AppointmentService

logger = logging.getLogger(__name__)

router = APIRouter()


# ===== Request/Response Models =====

class AppointmentCreateRequest(BaseModel):
    """Request model for booking an appointment."""
    procedure_id: Optional[int] = None
    start_time: Optional[datetime] = None
    slot_id: Optional[int] = None
    contact_id: Optional[int] = None
    preferences: List[PreferenceRequest] = []
    notes: Optional[str] = None
    created_by: Optional[int] = None
    location_resource_id: Optional[int] = None

    @model_validator(mode='after')
    def validate_target(self) -> 'AppointmentCreateRequest':
        if self.slot_id is None and (self.procedure_id is None or self.start_time is None):
            raise ValueError("Either slot_id or procedure_id and start_time are required")
        return self


class StatusChangeRequest(BaseModel):
    """Request model for a status transition."""
    status: str
    reason: Optional[str] = None
    actor_id: Optional[int] = None


class CancelRequest(BaseModel):
    """Request model for cancelling an appointment."""
    reason: Optional[str] = None
    actor_id: Optional[int] = None


class RescheduleRequest(BaseModel):
    """Request model for rescheduling an appointment."""
    new_start_time: Optional[datetime] = None
    new_slot_id: Optional[int] = None
    preferences: Optional[List[PreferenceRequest]] = None
    notes: Optional[str] = None
    actor_id: Optional[int] = None


class ReassignRequest(BaseModel):
    """Request model for handing a reservation to another resource."""
    old_resource_id: int
    new_resource_id: int
    actor_id: Optional[int] = None


class PreferenceResponse(BaseModel):
    """Response model for a stored preference."""
    role_id: int
    resource_id: int
    preference_type: str
    priority: int


class AppointmentDetailResponse(BaseModel):
    """Response model for appointment details."""
    appointment: AppointmentResponse
    slot: SlotResponse
    procedure_name: str
    preferences: List[PreferenceResponse]


class AppointmentListResponse(BaseModel):
    """Response model for appointment list."""
    appointments: List[AppointmentResponse]


class CoverageItemResponse(BaseModel):
    """Response model for one reservation needing coverage."""
    appointment: AppointmentResponse
    reservation: ReservationResponse
    alternative_resources: List[Dict[str, Any]]


class CoverageResponse(BaseModel):
    """Response model for reservations needing coverage."""
    items: List[CoverageItemResponse]


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.exception(f"Failed to {action}: {e}")
    return HTTPException(
        status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}"
    )


# ===== Booking =====

@router.post("/appointments", summary="Book an appointment", status_code=http_status.HTTP_201_CREATED)
async def create_appointment(
    clinic_id: int,
    request: AppointmentCreateRequest,
    db: Session = Depends(get_db)
) -> AppointmentResponse:
    try:
        appointment = AppointmentService.create_appointment(
            db, clinic_id,
            procedure_id=request.procedure_id,
            start_time=request.start_time,
            slot_id=request.slot_id,
            contact_id=request.contact_id,
            preferences=[p.model_dump() for p in request.preferences],
            notes=request.notes,
            created_by=request.created_by,
            location_resource_id=request.location_resource_id,
        )
        return appointment_response(appointment)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("create appointment", e)


@router.get("/appointments", summary="List appointments")
async def list_appointments(
    clinic_id: int,
    status: Optional[str] = None,
    contact_id: Optional[int] = None,
    procedure_id: Optional[int] = None,
    resource_id: Optional[int] = None,
    range_start: Optional[datetime] = None,
    range_end: Optional[datetime] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    db: Session = Depends(get_db)
) -> AppointmentListResponse:
    try:
        appointments = AppointmentService.list_appointments(
            db, clinic_id,
            status=status,
            contact_id=contact_id,
            procedure_id=procedure_id,
            resource_id=resource_id,
            range_start=range_start,
            range_end=range_end,
            limit=limit,
            offset=offset,
        )
        return AppointmentListResponse(appointments=[appointment_response(a) for a in appointments])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("list appointments", e)


@router.get("/appointments/{appointment_id}", summary="Get appointment details")
async def get_appointment(
    clinic_id: int,
    appointment_id: int,
    db: Session = Depends(get_db)
) -> AppointmentDetailResponse:
    try:
        details = AppointmentService.get_appointment_details(db, clinic_id, appointment_id)
        return AppointmentDetailResponse(
            appointment=appointment_response(details["appointment"]),
            slot=slot_response(details["slot"]),
            procedure_name=details["procedure"].name,
            preferences=[
                PreferenceResponse(
                    role_id=p.role_id,
                    resource_id=p.resource_id,
                    preference_type=p.preference_type,
                    priority=p.priority,
                )
                for p in details["preferences"]
            ],
        )
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("get appointment", e)


# ===== Lifecycle =====

@router.post("/appointments/{appointment_id}/status", summary="Change appointment status")
async def change_status(
    clinic_id: int,
    appointment_id: int,
    request: StatusChangeRequest,
    db: Session = Depends(get_db)
) -> AppointmentResponse:
    try:
        appointment = AppointmentService.transition_appointment(
            db, clinic_id, appointment_id, request.status, reason=request.reason, actor_id=request.actor_id
        )
        return appointment_response(appointment)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("change appointment status", e)


@router.post("/appointments/{appointment_id}/confirm", summary="Confirm an appointment")
async def confirm_appointment(
    clinic_id: int,
    appointment_id: int,
    actor_id: Optional[int] = None,
    db: Session = Depends(get_db)
) -> AppointmentResponse:
    try:
        return appointment_response(AppointmentService.confirm_appointment(db, clinic_id, appointment_id, actor_id))
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("confirm appointment", e)


@router.post("/appointments/{appointment_id}/check-in", summary="Check in an appointment")
async def check_in_appointment(
    clinic_id: int,
    appointment_id: int,
    actor_id: Optional[int] = None,
    db: Session = Depends(get_db)
) -> AppointmentResponse:
    try:
        return appointment_response(AppointmentService.check_in_appointment(db, clinic_id, appointment_id, actor_id))
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("check in appointment", e)


@router.post("/appointments/{appointment_id}/start", summary="Start an appointment")
async def start_appointment(
    clinic_id: int,
    appointment_id: int,
    actor_id: Optional[int] = None,
    db: Session = Depends(get_db)
) -> AppointmentResponse:
    try:
        return appointment_response(AppointmentService.start_appointment(db, clinic_id, appointment_id, actor_id))
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("start appointment", e)


@router.post("/appointments/{appointment_id}/complete", summary="Complete an appointment")
async def complete_appointment(
    clinic_id: int,
    appointment_id: int,
    actor_id: Optional[int] = None,
    db: Session = Depends(get_db)
) -> AppointmentResponse:
    try:
        return appointment_response(AppointmentService.complete_appointment(db, clinic_id, appointment_id, actor_id))
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("complete appointment", e)


@router.post("/appointments/{appointment_id}/cancel", summary="Cancel an appointment")
async def cancel_appointment(
    clinic_id: int,
    appointment_id: int,
    request: CancelRequest,
    db: Session = Depends(get_db)
) -> AppointmentResponse:
    try:
        appointment = AppointmentService.cancel_appointment(
            db, clinic_id, appointment_id, reason=request.reason, actor_id=request.actor_id
        )
        return appointment_response(appointment)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("cancel appointment", e)


@router.post("/appointments/{appointment_id}/no-show", summary="Mark an appointment as a no-show")
async def mark_no_show(
    clinic_id: int,
    appointment_id: int,
    actor_id: Optional[int] = None,
    db: Session = Depends(get_db)
) -> AppointmentResponse:
    try:
        return appointment_response(AppointmentService.mark_no_show(db, clinic_id, appointment_id, actor_id))
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("mark no-show", e)


# ===== Changes =====

@router.post("/appointments/{appointment_id}/reschedule", summary="Reschedule an appointment")
async def reschedule_appointment(
    clinic_id: int,
    appointment_id: int,
    request: RescheduleRequest,
    db: Session = Depends(get_db)
) -> AppointmentResponse:
    try:
        appointment = AppointmentService.reschedule_appointment(
            db, clinic_id, appointment_id,
            new_start_time=request.new_start_time,
            new_slot_id=request.new_slot_id,
            preferences=None if request.preferences is None else [p.model_dump() for p in request.preferences],
            notes=request.notes,
            actor_id=request.actor_id,
        )
        return appointment_response(appointment)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("reschedule appointment", e)


@router.post("/appointments/{appointment_id}/reassign", summary="Reassign a reserved resource")
async def reassign_resource(
    clinic_id: int,
    appointment_id: int,
    request: ReassignRequest,
    db: Session = Depends(get_db)
) -> ReservationResponse:
    try:
        reservation = AppointmentService.reassign_resource(
            db, clinic_id, appointment_id, request.old_resource_id, request.new_resource_id,
            actor_id=request.actor_id,
        )
        return reservation_response(reservation)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("reassign resource", e)


@router.post("/resources/{resource_id}/coverage", summary="Appointments holding a resource in a range")
async def find_appointments_needing_coverage(
    clinic_id: int,
    resource_id: int,
    start: datetime,
    end: datetime,
    flag_reservations: bool = False,
    db: Session = Depends(get_db)
) -> CoverageResponse:
    try:
        items = AppointmentService.find_appointments_needing_coverage(
            db, clinic_id, resource_id, start, end, flag_reservations=flag_reservations
        )
        return CoverageResponse(items=[
            CoverageItemResponse(
                appointment=appointment_response(item["appointment"]),
                reservation=reservation_response(item["reservation"]),
                alternative_resources=item["alternative_resources"],
            )
            for item in items
        ])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("find appointments needing coverage", e)
