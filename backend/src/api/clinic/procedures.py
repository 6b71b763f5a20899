"""
Procedure definition API endpoints.
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi import status as http_status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.responses import ProcedureResponse, procedure_response
from core.database import get_db
from core.exceptions import SchedulingError, ValidationError
from models import ProcedureRequirement
from services.procedure_service import ProcedureService

logger = logging.getLogger(__name__)

router = APIRouter()


# ===== Request/Response Models =====

class ProcedureCreateRequest(BaseModel):
    """Request model for creating a procedure."""
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    procedure_type: str = "atomic"
    duration_minutes: Optional[int] = None
    buffer_before_minutes: int = 0
    buffer_after_minutes: int = 0
    description: Optional[str] = None
    color: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None


class ProcedureUpdateRequest(BaseModel):
    """Request model for updating a procedure. Only fields sent are changed."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    duration_minutes: Optional[int] = None
    buffer_before_minutes: Optional[int] = None
    buffer_after_minutes: Optional[int] = None
    color: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class ProcedureListResponse(BaseModel):
    """Response model for procedure list."""
    procedures: List[ProcedureResponse]


class ChildAddRequest(BaseModel):
    """Request model for adding a child procedure to a composite."""
    child_procedure_id: int
    sequence_order: Optional[int] = None
    gap_after_minutes: int = 0


class ChildOrderItem(BaseModel):
    """New position for one child link."""
    composition_id: int
    sequence_order: int


class ChildReorderRequest(BaseModel):
    """Request model for reordering the children of a composite procedure."""
    children: List[ChildOrderItem] = Field(..., min_length=1)


class RequirementCreateRequest(BaseModel):
    """Request model for attaching a role requirement to a procedure."""
    role_id: int
    quantity_min: int = 1
    quantity_max: Optional[int] = None
    is_required: bool = True
    offset_start_minutes: int = 0
    offset_end_minutes: Optional[int] = None
    notes: Optional[str] = None


class RequirementUpdateRequest(BaseModel):
    """Request model for updating a requirement. Only fields sent are changed."""
    quantity_min: Optional[int] = None
    quantity_max: Optional[int] = None
    is_required: Optional[bool] = None
    offset_start_minutes: Optional[int] = None
    offset_end_minutes: Optional[int] = None
    notes: Optional[str] = None


class RequirementResponse(BaseModel):
    """Response model for a procedure requirement."""
    id: int
    procedure_id: int
    role_id: int
    quantity_min: int
    quantity_max: Optional[int] = None
    is_required: bool
    offset_start_minutes: int
    offset_end_minutes: Optional[int] = None
    notes: Optional[str] = None


class ChildResponse(BaseModel):
    """Response model for a child procedure link."""
    composition_id: int
    child_procedure_id: int
    child_name: str
    sequence_order: int
    gap_after_minutes: int
    child_total_duration_minutes: int


class ProcedureDetailResponse(BaseModel):
    """Response model for a procedure with its tree and requirements."""
    procedure: ProcedureResponse
    total_duration_minutes: int
    children: List[ChildResponse]
    requirements: List[RequirementResponse]


def _requirement_response(requirement: ProcedureRequirement) -> RequirementResponse:
    return RequirementResponse(
        id=requirement.id,
        procedure_id=requirement.procedure_id,
        role_id=requirement.role_id,
        quantity_min=requirement.quantity_min,
        quantity_max=requirement.quantity_max,
        is_required=requirement.is_required,
        offset_start_minutes=requirement.offset_start_minutes,
        offset_end_minutes=requirement.offset_end_minutes,
        notes=requirement.notes,
    )


def _detail_response(db: Session, clinic_id: int, procedure_id: int) -> ProcedureDetailResponse:
    details = ProcedureService.get_procedure_details(db, clinic_id, procedure_id)
    return ProcedureDetailResponse(
        procedure=procedure_response(details["procedure"]),
        total_duration_minutes=details["total_duration_minutes"],
        children=[ChildResponse(**child) for child in details["children"]],
        requirements=[_requirement_response(r) for r in details["requirements"]],
    )


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.exception(f"Failed to {action}: {e}")
    return HTTPException(
        status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}"
    )


# ===== Procedures =====

@router.get("/procedures", summary="List procedures")
async def list_procedures(
    clinic_id: int,
    active_only: bool = True,
    procedure_type: Optional[str] = None,
    db: Session = Depends(get_db)
) -> ProcedureListResponse:
    try:
        procedures = ProcedureService.list_procedures(
            db, clinic_id, active_only=active_only, procedure_type=procedure_type
        )
        return ProcedureListResponse(procedures=[procedure_response(p) for p in procedures])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("list procedures", e)


@router.post("/procedures", summary="Create a procedure", status_code=http_status.HTTP_201_CREATED)
async def create_procedure(
    clinic_id: int,
    request: ProcedureCreateRequest,
    db: Session = Depends(get_db)
) -> ProcedureResponse:
    try:
        return procedure_response(ProcedureService.create_procedure(db, clinic_id, **request.model_dump()))
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("create procedure", e)


@router.get("/procedures/{procedure_id}", summary="Get a procedure with children, requirements and duration")
async def get_procedure(
    clinic_id: int,
    procedure_id: int,
    db: Session = Depends(get_db)
) -> ProcedureDetailResponse:
    try:
        return _detail_response(db, clinic_id, procedure_id)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("get procedure", e)


@router.put("/procedures/{procedure_id}", summary="Update a procedure")
async def update_procedure(
    clinic_id: int,
    procedure_id: int,
    request: ProcedureUpdateRequest,
    db: Session = Depends(get_db)
) -> ProcedureResponse:
    try:
        procedure = ProcedureService.update_procedure(
            db, clinic_id, procedure_id, **request.model_dump(exclude_unset=True)
        )
        return procedure_response(procedure)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("update procedure", e)


@router.delete("/procedures/{procedure_id}", summary="Deactivate a procedure")
async def deactivate_procedure(
    clinic_id: int,
    procedure_id: int,
    db: Session = Depends(get_db)
) -> ProcedureResponse:
    try:
        return procedure_response(ProcedureService.deactivate_procedure(db, clinic_id, procedure_id))
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("deactivate procedure", e)


# ===== Composition =====

@router.post("/procedures/{procedure_id}/children", summary="Add a child procedure", status_code=http_status.HTTP_201_CREATED)
async def add_child_procedure(
    clinic_id: int,
    procedure_id: int,
    request: ChildAddRequest,
    db: Session = Depends(get_db)
) -> ProcedureDetailResponse:
    try:
        ProcedureService.add_child(
            db, clinic_id, procedure_id, request.child_procedure_id,
            sequence_order=request.sequence_order,
            gap_after_minutes=request.gap_after_minutes,
        )
        return _detail_response(db, clinic_id, procedure_id)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("add child procedure", e)


@router.delete("/procedures/{procedure_id}/children/{composition_id}", summary="Remove a child procedure")
async def remove_child_procedure(
    clinic_id: int,
    procedure_id: int,
    composition_id: int,
    db: Session = Depends(get_db)
) -> ProcedureDetailResponse:
    try:
        ProcedureService.remove_child(db, clinic_id, procedure_id, composition_id)
        return _detail_response(db, clinic_id, procedure_id)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("remove child procedure", e)


@router.put("/procedures/{procedure_id}/children/order", summary="Reorder child procedures")
async def reorder_child_procedures(
    clinic_id: int,
    procedure_id: int,
    request: ChildReorderRequest,
    db: Session = Depends(get_db)
) -> ProcedureDetailResponse:
    try:
        order = {item.composition_id: item.sequence_order for item in request.children}
        if len(order) != len(request.children):
            raise ValidationError("Each child may be listed only once")
        ProcedureService.reorder_children(db, clinic_id, procedure_id, order)
        return _detail_response(db, clinic_id, procedure_id)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("reorder child procedures", e)


# ===== Requirements =====

@router.post("/procedures/{procedure_id}/requirements", summary="Add a role requirement", status_code=http_status.HTTP_201_CREATED)
async def add_requirement(
    clinic_id: int,
    procedure_id: int,
    request: RequirementCreateRequest,
    db: Session = Depends(get_db)
) -> RequirementResponse:
    try:
        requirement = ProcedureService.add_requirement(db, clinic_id, procedure_id, **request.model_dump())
        return _requirement_response(requirement)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("add requirement", e)


@router.put("/requirements/{requirement_id}", summary="Update a role requirement")
async def update_requirement(
    clinic_id: int,
    requirement_id: int,
    request: RequirementUpdateRequest,
    db: Session = Depends(get_db)
) -> RequirementResponse:
    try:
        requirement = ProcedureService.update_requirement(
            db, clinic_id, requirement_id, **request.model_dump(exclude_unset=True)
        )
        return _requirement_response(requirement)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("update requirement", e)


@router.delete("/requirements/{requirement_id}", summary="Remove a role requirement")
async def remove_requirement(
    clinic_id: int,
    requirement_id: int,
    db: Session = Depends(get_db)
) -> Dict[str, bool]:
    try:
        ProcedureService.remove_requirement(db, clinic_id, requirement_id)
        return {"success": True}
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("remove requirement", e)


@router.get("/procedures/{procedure_id}/expanded-requirements", summary="Requirements flattened with absolute offsets")
async def get_expanded_requirements(
    clinic_id: int,
    procedure_id: int,
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        procedure = ProcedureService.get_procedure(db, clinic_id, procedure_id)
        return {
            "procedure_id": procedure.id,
            "total_duration_minutes": ProcedureService.total_duration(db, procedure),
            "requirements": [r.to_dict() for r in ProcedureService.expand_requirements(db, procedure)],
        }
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("expand requirements", e)
