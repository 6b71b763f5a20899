"""
Slot API endpoints.

Slot search (ephemeral candidates), alternatives, and persisted slot
management.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.responses import SlotCandidateResponse, SlotResponse, candidate_response, slot_response
from core.database import get_db
from core.exceptions import SchedulingError
from services.slot_service import SlotService

logger = logging.getLogger(__name__)

router = APIRouter()


# ===== Request/Response Models =====

class PreferenceRequest(BaseModel):
    """A role -> resource preference."""
    role_id: int
    resource_id: int
    preference_type: str = "preferred"
    priority: int = 0


class SlotSearchRequest(BaseModel):
    """Request model for generating slot candidates."""
    procedure_id: int
    range_start: datetime
    range_end: datetime
    granularity_minutes: Optional[int] = Field(None, ge=1)
    max_slots: Optional[int] = Field(None, ge=1)
    location_resource_id: Optional[int] = None
    preferences: List[PreferenceRequest] = []


class AlternativesRequest(BaseModel):
    """Request model for alternatives around a requested start."""
    procedure_id: int
    requested_start: datetime
    location_resource_id: Optional[int] = None
    preferences: List[PreferenceRequest] = []
    search_days: Optional[int] = Field(None, ge=1)
    max_results: Optional[int] = Field(None, ge=1)


class SlotCandidateListResponse(BaseModel):
    """Response model for slot candidates."""
    candidates: List[SlotCandidateResponse]


class SlotCreateRequest(BaseModel):
    """Request model for persisting a single slot."""
    procedure_id: int
    start_time: datetime
    notes: Optional[str] = None
    created_by: Optional[int] = None


class SlotBulkCreateRequest(BaseModel):
    """Request model for persisting generated slots."""
    procedure_id: int
    range_start: datetime
    range_end: datetime
    granularity_minutes: Optional[int] = Field(None, ge=1)
    max_slots: Optional[int] = Field(None, ge=1)
    location_resource_id: Optional[int] = None
    created_by: Optional[int] = None


class SlotBlockRequest(BaseModel):
    """Request model for blocking a slot."""
    reason: Optional[str] = None


class SlotListResponse(BaseModel):
    """Response model for persisted slot list."""
    slots: List[SlotResponse]


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.exception(f"Failed to {action}: {e}")
    return HTTPException(
        status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}"
    )


# ===== Candidates =====

@router.post("/slots/search", summary="Generate bookable slot candidates")
async def search_slots(
    clinic_id: int,
    request: SlotSearchRequest,
    db: Session = Depends(get_db)
) -> SlotCandidateListResponse:
    try:
        candidates = SlotService.generate_slots(
            db, clinic_id, request.procedure_id, request.range_start, request.range_end,
            granularity_minutes=request.granularity_minutes,
            max_slots=request.max_slots,
            location_resource_id=request.location_resource_id,
            preferences=[p.model_dump() for p in request.preferences],
        )
        return SlotCandidateListResponse(candidates=[candidate_response(c) for c in candidates])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("search slots", e)


@router.post("/slots/alternatives", summary="Candidates closest to a requested start")
async def find_alternatives(
    clinic_id: int,
    request: AlternativesRequest,
    db: Session = Depends(get_db)
) -> SlotCandidateListResponse:
    try:
        candidates = SlotService.find_alternatives(
            db, clinic_id, request.procedure_id, request.requested_start,
            preferences=[p.model_dump() for p in request.preferences],
            location_resource_id=request.location_resource_id,
            search_days=request.search_days,
            max_results=request.max_results,
        )
        return SlotCandidateListResponse(candidates=[candidate_response(c) for c in candidates])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("find alternatives", e)


# ===== Persisted slots =====

@router.get("/slots", summary="List persisted slots")
async def list_slots(
    clinic_id: int,
    procedure_id: Optional[int] = None,
    status: Optional[str] = None,
    range_start: Optional[datetime] = None,
    range_end: Optional[datetime] = None,
    db: Session = Depends(get_db)
) -> SlotListResponse:
    try:
        slots = SlotService.list_slots(
            db, clinic_id, procedure_id=procedure_id, status=status,
            range_start=range_start, range_end=range_end,
        )
        return SlotListResponse(slots=[slot_response(s) for s in slots])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("list slots", e)


@router.post("/slots", summary="Create a slot", status_code=http_status.HTTP_201_CREATED)
async def create_slot(
    clinic_id: int,
    request: SlotCreateRequest,
    db: Session = Depends(get_db)
) -> SlotResponse:
    try:
        return slot_response(SlotService.create_slot(db, clinic_id, **request.model_dump()))
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("create slot", e)


@router.post("/slots/bulk", summary="Generate and persist slots", status_code=http_status.HTTP_201_CREATED)
async def create_slots(
    clinic_id: int,
    request: SlotBulkCreateRequest,
    db: Session = Depends(get_db)
) -> SlotListResponse:
    try:
        slots = SlotService.create_slots(db, clinic_id, **request.model_dump())
        return SlotListResponse(slots=[slot_response(s) for s in slots])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("create slots", e)


@router.delete("/slots/stale", summary="Delete unused auto slots that ended before a cutoff")
async def delete_stale_slots(
    clinic_id: int,
    before: datetime,
    db: Session = Depends(get_db)
) -> Dict[str, int]:
    try:
        return {"deleted": SlotService.delete_stale_slots(db, clinic_id, before)}
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("delete stale slots", e)


@router.get("/slots/{slot_id}", summary="Get a slot")
async def get_slot(
    clinic_id: int,
    slot_id: int,
    db: Session = Depends(get_db)
) -> SlotResponse:
    try:
        return slot_response(SlotService.get_slot(db, clinic_id, slot_id))
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("get slot", e)


@router.get("/slots/{slot_id}/validation", summary="Check whether a slot can still be booked")
async def validate_slot(
    clinic_id: int,
    slot_id: int,
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        return SlotService.validate_slot(db, clinic_id, slot_id)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("validate slot", e)


@router.post("/slots/{slot_id}/block", summary="Block a slot")
async def block_slot(
    clinic_id: int,
    slot_id: int,
    request: SlotBlockRequest,
    db: Session = Depends(get_db)
) -> SlotResponse:
    try:
        return slot_response(SlotService.block_slot(db, clinic_id, slot_id, reason=request.reason))
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("block slot", e)


@router.post("/slots/{slot_id}/unblock", summary="Unblock a slot")
async def unblock_slot(
    clinic_id: int,
    slot_id: int,
    db: Session = Depends(get_db)
) -> SlotResponse:
    try:
        return slot_response(SlotService.unblock_slot(db, clinic_id, slot_id))
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("unblock slot", e)
