"""
Resource availability API endpoints.

Availability and blocked windows (one-off or recurring), effective windows
for a query range, and single-resource capacity checks.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi import status as http_status
from pydantic import BaseModel, model_validator
from sqlalchemy.orm import Session

from api.responses import AvailabilityResponse, availability_response
from core.database import get_db
from core.exceptions import SchedulingError
from services.availability_service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter()


# ===== Request/Response Models =====

class AvailabilityCreateRequest(BaseModel):
    """Request model for creating an availability or blocked window."""
    start_time: datetime
    end_time: datetime
    availability_type: str = "available"
    recurrence_pattern: Optional[Dict[str, Any]] = None
    reservation_mode_override: Optional[str] = None
    max_concurrent_override: Optional[int] = None
    reason: Optional[str] = None
    created_by: Optional[int] = None

    @model_validator(mode='after')
    def validate_window(self) -> 'AvailabilityCreateRequest':
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self


class AvailabilityUpdateRequest(BaseModel):
    """Request model for updating an availability window. Only fields sent are changed."""
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    availability_type: Optional[str] = None
    recurrence_pattern: Optional[Dict[str, Any]] = None
    reservation_mode_override: Optional[str] = None
    max_concurrent_override: Optional[int] = None
    reason: Optional[str] = None


class AvailabilityListResponse(BaseModel):
    """Response model for availability record list."""
    availability: List[AvailabilityResponse]


class WindowResponse(BaseModel):
    """Response model for a concrete window."""
    start_time: datetime
    end_time: datetime
    availability_type: str
    reservation_mode: str
    max_concurrent: int
    source_availability_id: Optional[int] = None


class ResourceWindowsResponse(BaseModel):
    """Response model for effective windows of one resource."""
    resource_id: int
    available: List[WindowResponse]
    blocked: List[WindowResponse]


class EffectiveWindowsResponse(BaseModel):
    """Response model for effective windows of several resources."""
    resources: List[ResourceWindowsResponse]


def _window_response(window: Any) -> WindowResponse:
    return WindowResponse(
        start_time=window.start,
        end_time=window.end,
        availability_type=window.availability_type,
        reservation_mode=window.reservation_mode,
        max_concurrent=window.max_concurrent,
        source_availability_id=window.source_availability_id,
    )


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.exception(f"Failed to {action}: {e}")
    return HTTPException(
        status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}"
    )


# ===== Endpoints =====

@router.get("/resources/{resource_id}/availability", summary="List availability records of a resource")
async def list_availability(
    clinic_id: int,
    resource_id: int,
    availability_type: Optional[str] = None,
    db: Session = Depends(get_db)
) -> AvailabilityListResponse:
    try:
        records = AvailabilityService.list_availability(
            db, clinic_id, resource_id, availability_type=availability_type
        )
        return AvailabilityListResponse(availability=[availability_response(r) for r in records])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("list availability", e)


@router.post("/resources/{resource_id}/availability", summary="Create an availability window", status_code=http_status.HTTP_201_CREATED)
async def create_availability(
    clinic_id: int,
    resource_id: int,
    request: AvailabilityCreateRequest,
    db: Session = Depends(get_db)
) -> AvailabilityResponse:
    try:
        record = AvailabilityService.create_availability(db, clinic_id, resource_id, **request.model_dump())
        return availability_response(record)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("create availability", e)


@router.put("/availability/{availability_id}", summary="Update an availability window")
async def update_availability(
    clinic_id: int,
    availability_id: int,
    request: AvailabilityUpdateRequest,
    db: Session = Depends(get_db)
) -> AvailabilityResponse:
    try:
        record = AvailabilityService.update_availability(
            db, clinic_id, availability_id, **request.model_dump(exclude_unset=True)
        )
        return availability_response(record)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("update availability", e)


@router.delete("/availability/{availability_id}", summary="Delete an availability window")
async def delete_availability(
    clinic_id: int,
    availability_id: int,
    db: Session = Depends(get_db)
) -> Dict[str, bool]:
    try:
        AvailabilityService.delete_availability(db, clinic_id, availability_id)
        return {"success": True}
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("delete availability", e)


@router.get("/availability/windows", summary="Effective windows for resources in a range")
async def get_effective_windows(
    clinic_id: int,
    start: datetime,
    end: datetime,
    resource_ids: List[int] = Query(...),
    db: Session = Depends(get_db)
) -> EffectiveWindowsResponse:
    try:
        if end <= start:
            raise HTTPException(status_code=http_status.HTTP_422_UNPROCESSABLE_ENTITY, detail="end must be after start")
        available = AvailabilityService.get_effective_windows(db, clinic_id, resource_ids, start, end)
        blocked = AvailabilityService.get_blocked_windows(db, clinic_id, resource_ids, start, end)
        return EffectiveWindowsResponse(resources=[
            ResourceWindowsResponse(
                resource_id=resource_id,
                available=[_window_response(w) for w in windows],
                blocked=[_window_response(w) for w in blocked.get(resource_id, [])],
            )
            for resource_id, windows in sorted(available.items())
        ])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("get effective windows", e)


@router.get("/resources/{resource_id}/availability/check", summary="Check whether a resource can take one more reservation")
async def check_resource_availability(
    clinic_id: int,
    resource_id: int,
    start: datetime,
    end: datetime,
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        return AvailabilityService.check_resource_availability(db, clinic_id, resource_id, start, end).to_dict()
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("check resource availability", e)
