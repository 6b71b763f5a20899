"""
Resource catalog API endpoints.

Resource types and subtypes, resources, roles and role assignments,
consumable inventory and the resource hierarchy.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi import status as http_status
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from api.responses import (
    ResourceResponse,
    ResourceRoleResponse,
    resource_response,
    role_response,
)
from core.database import get_db
from core.exceptions import SchedulingError
from services.resource_service import ResourceService

logger = logging.getLogger(__name__)

router = APIRouter()


# ===== Request/Response Models =====

class ResourceTypeCreateRequest(BaseModel):
    """Request model for creating a resource type."""
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    sort_order: int = 0


class ResourceTypeResponse(BaseModel):
    """Response model for resource type."""
    id: int
    clinic_id: int
    code: str
    name: str
    sort_order: int
    is_system: bool
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ResourceTypeListResponse(BaseModel):
    """Response model for resource type list."""
    resource_types: List[ResourceTypeResponse]


class ResourceSubtypeCreateRequest(BaseModel):
    """Request model for creating a resource subtype."""
    resource_type_id: int
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    metadata_schema: Optional[str] = None
    sort_order: int = 0


class ResourceSubtypeResponse(BaseModel):
    """Response model for resource subtype."""
    id: int
    resource_type_id: int
    code: str
    name: str
    description: Optional[str] = None
    metadata_schema: Optional[str] = None
    sort_order: int
    is_active: bool


class ResourceSubtypeListResponse(BaseModel):
    """Response model for resource subtype list."""
    subtypes: List[ResourceSubtypeResponse]


class ResourceCreateRequest(BaseModel):
    """Request model for creating a resource."""
    resource_type_id: int
    name: str = Field(..., min_length=1, max_length=255)
    resource_subtype_id: Optional[int] = None
    description: Optional[str] = None
    reservation_mode: str = "exclusive"
    max_concurrent_bookings: int = Field(1, ge=1)
    parent_resource_id: Optional[int] = None
    is_consumable: Optional[bool] = None
    quantity_on_hand: Optional[int] = Field(None, ge=0)
    quantity_threshold: Optional[int] = Field(None, ge=0)
    staff_user_id: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    role_ids: Optional[List[int]] = None


class ResourceUpdateRequest(BaseModel):
    """Request model for updating a resource. Only fields sent are changed."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    resource_subtype_id: Optional[int] = None
    reservation_mode: Optional[str] = None
    max_concurrent_bookings: Optional[int] = Field(None, ge=1)
    parent_resource_id: Optional[int] = None
    quantity_threshold: Optional[int] = Field(None, ge=0)
    staff_user_id: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = None
    is_active: Optional[bool] = None


class ResourceListResponse(BaseModel):
    """Response model for resource list."""
    resources: List[ResourceResponse]


class InventoryAdjustmentRequest(BaseModel):
    """Request model for a signed stock adjustment."""
    delta: int
    reason: Optional[str] = None
    actor_id: Optional[int] = None


class RoleCreateRequest(BaseModel):
    """Request model for creating a role."""
    code: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=255)
    resource_type_id: Optional[int] = None
    description: Optional[str] = None


class RoleListResponse(BaseModel):
    """Response model for role list."""
    roles: List[ResourceRoleResponse]


class RoleAssignmentRequest(BaseModel):
    """Request model for assigning a role to a resource."""
    role_id: int
    priority: int = 0
    actor_id: Optional[int] = None


class RoleAssignmentResponse(BaseModel):
    """Response model for a role assignment."""
    id: int
    resource_id: int
    role_id: int
    priority: int


def _type_response(resource_type: Any) -> ResourceTypeResponse:
    return ResourceTypeResponse(
        id=resource_type.id,
        clinic_id=resource_type.clinic_id,
        code=resource_type.code,
        name=resource_type.name,
        sort_order=resource_type.sort_order,
        is_system=resource_type.is_system,
        is_active=resource_type.is_active,
        created_at=resource_type.created_at,
        updated_at=resource_type.updated_at,
    )


def _subtype_response(subtype: Any) -> ResourceSubtypeResponse:
    return ResourceSubtypeResponse(
        id=subtype.id,
        resource_type_id=subtype.resource_type_id,
        code=subtype.code,
        name=subtype.name,
        description=subtype.description,
        metadata_schema=subtype.metadata_schema,
        sort_order=subtype.sort_order,
        is_active=subtype.is_active,
    )


def _internal_error(action: str, e: Exception) -> HTTPException:
    logger.exception(f"Failed to {action}: {e}")
    return HTTPException(
        status_code=http_status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {action}"
    )


# ===== Resource types =====

@router.get("/resource-types", summary="List resource types for clinic")
async def list_resource_types(
    clinic_id: int,
    include_inactive: bool = False,
    db: Session = Depends(get_db)
) -> ResourceTypeListResponse:
    try:
        resource_types = ResourceService.list_resource_types(db, clinic_id, include_inactive=include_inactive)
        return ResourceTypeListResponse(resource_types=[_type_response(rt) for rt in resource_types])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("list resource types", e)


@router.post("/resource-types", summary="Create a resource type", status_code=http_status.HTTP_201_CREATED)
async def create_resource_type(
    clinic_id: int,
    request: ResourceTypeCreateRequest,
    db: Session = Depends(get_db)
) -> ResourceTypeResponse:
    try:
        resource_type = ResourceService.create_resource_type(
            db, clinic_id, request.code, request.name, sort_order=request.sort_order
        )
        return _type_response(resource_type)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("create resource type", e)


@router.post("/resource-types/system", summary="Create the built-in resource types")
async def ensure_system_resource_types(
    clinic_id: int,
    db: Session = Depends(get_db)
) -> ResourceTypeListResponse:
    try:
        resource_types = ResourceService.ensure_system_resource_types(db, clinic_id)
        return ResourceTypeListResponse(resource_types=[_type_response(rt) for rt in resource_types])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("create system resource types", e)


@router.get("/resource-subtypes", summary="List resource subtypes")
async def list_resource_subtypes(
    clinic_id: int,
    resource_type_id: Optional[int] = None,
    db: Session = Depends(get_db)
) -> ResourceSubtypeListResponse:
    try:
        subtypes = ResourceService.list_resource_subtypes(db, clinic_id, resource_type_id=resource_type_id)
        return ResourceSubtypeListResponse(subtypes=[_subtype_response(s) for s in subtypes])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("list resource subtypes", e)


@router.post("/resource-subtypes", summary="Create a resource subtype", status_code=http_status.HTTP_201_CREATED)
async def create_resource_subtype(
    clinic_id: int,
    request: ResourceSubtypeCreateRequest,
    db: Session = Depends(get_db)
) -> ResourceSubtypeResponse:
    try:
        subtype = ResourceService.create_resource_subtype(db, clinic_id, **request.model_dump())
        return _subtype_response(subtype)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("create resource subtype", e)


# ===== Resources =====

@router.get("/resources", summary="List resources")
async def list_resources(
    clinic_id: int,
    resource_type_id: Optional[int] = None,
    resource_subtype_id: Optional[int] = None,
    active_only: bool = True,
    db: Session = Depends(get_db)
) -> ResourceListResponse:
    try:
        resources = ResourceService.list_resources(
            db, clinic_id,
            resource_type_id=resource_type_id,
            resource_subtype_id=resource_subtype_id,
            active_only=active_only,
        )
        return ResourceListResponse(resources=[resource_response(r) for r in resources])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("list resources", e)


@router.post("/resources", summary="Create a resource", status_code=http_status.HTTP_201_CREATED)
async def create_resource(
    clinic_id: int,
    request: ResourceCreateRequest,
    db: Session = Depends(get_db)
) -> ResourceResponse:
    try:
        resource = ResourceService.create_resource(db, clinic_id, **request.model_dump())
        return resource_response(resource)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("create resource", e)


@router.get("/resources/low-stock", summary="List consumables at or below their threshold")
async def list_low_stock_resources(
    clinic_id: int,
    db: Session = Depends(get_db)
) -> ResourceListResponse:
    try:
        resources = ResourceService.list_low_stock_resources(db, clinic_id)
        return ResourceListResponse(resources=[resource_response(r) for r in resources])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("list low-stock resources", e)


@router.get("/resources/hierarchy", summary="Get the resource tree")
async def get_resource_hierarchy(
    clinic_id: int,
    active_only: bool = True,
    db: Session = Depends(get_db)
) -> Dict[str, Any]:
    try:
        return {"roots": ResourceService.get_resource_hierarchy(db, clinic_id, active_only=active_only)}
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("get resource hierarchy", e)


@router.get("/resources/{resource_id}", summary="Get a resource")
async def get_resource(
    clinic_id: int,
    resource_id: int,
    db: Session = Depends(get_db)
) -> ResourceResponse:
    try:
        return resource_response(ResourceService.get_resource(db, clinic_id, resource_id))
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("get resource", e)


@router.put("/resources/{resource_id}", summary="Update a resource")
async def update_resource(
    clinic_id: int,
    resource_id: int,
    request: ResourceUpdateRequest,
    db: Session = Depends(get_db)
) -> ResourceResponse:
    try:
        resource = ResourceService.update_resource(
            db, clinic_id, resource_id, **request.model_dump(exclude_unset=True)
        )
        return resource_response(resource)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("update resource", e)


@router.delete("/resources/{resource_id}", summary="Deactivate a resource")
async def deactivate_resource(
    clinic_id: int,
    resource_id: int,
    db: Session = Depends(get_db)
) -> ResourceResponse:
    try:
        return resource_response(ResourceService.deactivate_resource(db, clinic_id, resource_id))
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("deactivate resource", e)


@router.get("/resources/{resource_id}/children", summary="List direct children of a resource")
async def list_resource_children(
    clinic_id: int,
    resource_id: int,
    active_only: bool = True,
    db: Session = Depends(get_db)
) -> ResourceListResponse:
    try:
        children = ResourceService.get_children(db, clinic_id, resource_id, active_only=active_only)
        return ResourceListResponse(resources=[resource_response(r) for r in children])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("list resource children", e)


@router.post("/resources/{resource_id}/inventory-adjustments", summary="Adjust consumable stock")
async def adjust_inventory(
    clinic_id: int,
    resource_id: int,
    request: InventoryAdjustmentRequest,
    db: Session = Depends(get_db)
) -> ResourceResponse:
    try:
        resource = ResourceService.adjust_inventory(
            db, clinic_id, resource_id, request.delta, reason=request.reason, actor_id=request.actor_id
        )
        return resource_response(resource)
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("adjust inventory", e)


# ===== Roles =====

@router.get("/roles", summary="List roles")
async def list_roles(
    clinic_id: int,
    active_only: bool = True,
    db: Session = Depends(get_db)
) -> RoleListResponse:
    try:
        return RoleListResponse(roles=[role_response(r) for r in ResourceService.list_roles(db, clinic_id, active_only)])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("list roles", e)


@router.post("/roles", summary="Create a role", status_code=http_status.HTTP_201_CREATED)
async def create_role(
    clinic_id: int,
    request: RoleCreateRequest,
    db: Session = Depends(get_db)
) -> ResourceRoleResponse:
    try:
        return role_response(ResourceService.create_role(db, clinic_id, **request.model_dump()))
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("create role", e)


@router.get("/roles/{role_id}/resources", summary="List resources filling a role")
async def list_resources_for_role(
    clinic_id: int,
    role_id: int,
    active_only: bool = Query(True),
    db: Session = Depends(get_db)
) -> ResourceListResponse:
    try:
        ResourceService.get_role(db, clinic_id, role_id)
        resources = ResourceService.list_resources_for_role(db, clinic_id, role_id, active_only=active_only)
        return ResourceListResponse(resources=[resource_response(r) for r in resources])
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("list resources for role", e)


@router.post("/resources/{resource_id}/roles", summary="Assign a role to a resource", status_code=http_status.HTTP_201_CREATED)
async def assign_role(
    clinic_id: int,
    resource_id: int,
    request: RoleAssignmentRequest,
    db: Session = Depends(get_db)
) -> RoleAssignmentResponse:
    try:
        assignment = ResourceService.assign_role(
            db, clinic_id, resource_id, request.role_id, priority=request.priority, actor_id=request.actor_id
        )
        return RoleAssignmentResponse(
            id=assignment.id,
            resource_id=assignment.resource_id,
            role_id=assignment.role_id,
            priority=assignment.priority,
        )
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("assign role", e)


@router.delete("/resources/{resource_id}/roles/{role_id}", summary="Remove a role from a resource")
async def unassign_role(
    clinic_id: int,
    resource_id: int,
    role_id: int,
    actor_id: Optional[int] = None,
    db: Session = Depends(get_db)
) -> Dict[str, bool]:
    try:
        ResourceService.unassign_role(db, clinic_id, resource_id, role_id, actor_id=actor_id)
        return {"success": True}
    except (HTTPException, SchedulingError):
        raise
    except Exception as e:
        raise _internal_error("unassign role", e)
