"""
Resource catalog service.

Handles the resource taxonomy (types and subtypes), resources, roles and
role assignments, the resource hierarchy, and consumable inventory.
Inventory and role assignment changes are reported through scheduling
events for the external audit log; nothing is audited here.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import update
from sqlalchemy.orm import Session

from core.constants import RESERVATION_MODES, RESOURCE_TYPE_CODES
from core.exceptions import (
    InactiveResourceError,
    InsufficientInventoryError,
    NotFoundError,
    ValidationError,
)
from core.sentinels import MISSING, is_provided
from models import (
    Resource,
    ResourceRole,
    ResourceRoleAssignment,
    ResourceSubtype,
    ResourceType,
)
from services import scheduling_events
from shared_types.resource_metadata import validate_resource_metadata
from utils.storage_errors import storage_guard

logger = logging.getLogger(__name__)

# Built-in resource types created for every clinic
SYSTEM_RESOURCE_TYPES = [
    ("people", "People", 1),
    ("place", "Place", 2),
    ("equipment", "Equipment", 3),
    ("consumable", "Consumable", 4),
]


def crossed_low_stock_threshold(before: Optional[int], after: Optional[int], threshold: Optional[int]) -> bool:
    """True when stock moved from above the threshold to at-or-below it."""
    if before is None or after is None or threshold is None:
        return False
    return before > threshold and after <= threshold


class ResourceService:
    """
    Service class for resource catalog operations.

    Every method takes the clinic id explicitly; lookups of another clinic's
    rows raise NotFoundError.
    """

    # ===== Resource types =====

    @staticmethod
    @storage_guard
    def ensure_system_resource_types(db: Session, clinic_id: int) -> List[ResourceType]:
        """
        Create the built-in people/place/equipment/consumable types if missing.

        Returns:
            The clinic's system resource types ordered by sort_order
        """
        existing = {
            rt.code: rt
            for rt in db.query(ResourceType).filter(ResourceType.clinic_id == clinic_id).all()
        }
        created = False
        for code, name, sort_order in SYSTEM_RESOURCE_TYPES:
            if code not in existing:
                resource_type = ResourceType(
                    clinic_id=clinic_id, code=code, name=name, sort_order=sort_order, is_system=True
                )
                db.add(resource_type)
                existing[code] = resource_type
                created = True
        if created:
            db.commit()
            logger.info(f"Created system resource types for clinic {clinic_id}")
        return sorted(
            (existing[code] for code, _, _ in SYSTEM_RESOURCE_TYPES),
            key=lambda rt: rt.sort_order,
        )

    @staticmethod
    @storage_guard
    def create_resource_type(
        db: Session, clinic_id: int, code: str, name: str, sort_order: int = 0
    ) -> ResourceType:
        """Create a clinic-defined resource type."""
        duplicate = db.query(ResourceType).filter(
            ResourceType.clinic_id == clinic_id,
            ResourceType.code == code
        ).first()
        if duplicate:
            raise ValidationError(f"Resource type code '{code}' already exists")

        resource_type = ResourceType(clinic_id=clinic_id, code=code, name=name, sort_order=sort_order)
        db.add(resource_type)
        db.commit()
        return resource_type

    @staticmethod
    def list_resource_types(db: Session, clinic_id: int, include_inactive: bool = False) -> List[ResourceType]:
        query = db.query(ResourceType).filter(ResourceType.clinic_id == clinic_id)
        if not include_inactive:
            query = query.filter(ResourceType.is_active == True)  # noqa: E712
        return query.order_by(ResourceType.sort_order, ResourceType.id).all()

    @staticmethod
    def get_resource_type(db: Session, clinic_id: int, resource_type_id: int) -> ResourceType:
        resource_type = db.query(ResourceType).filter(
            ResourceType.id == resource_type_id,
            ResourceType.clinic_id == clinic_id
        ).first()
        if not resource_type:
            raise NotFoundError("ResourceType", resource_type_id)
        return resource_type

    @staticmethod
    @storage_guard
    def create_resource_subtype(
        db: Session,
        clinic_id: int,
        resource_type_id: int,
        code: str,
        name: str,
        description: Optional[str] = None,
        metadata_schema: Optional[str] = None,
        sort_order: int = 0,
    ) -> ResourceSubtype:
        """
        Create a subtype under a resource type.

        Raises:
            NotFoundError: If the resource type does not belong to the clinic
            ValidationError: If the code is taken or the metadata schema is unknown
        """
        from shared_types.resource_metadata import METADATA_SCHEMAS

        ResourceService.get_resource_type(db, clinic_id, resource_type_id)
        if metadata_schema is not None and metadata_schema not in METADATA_SCHEMAS:
            raise ValidationError(f"Unknown metadata schema '{metadata_schema}'")
        duplicate = db.query(ResourceSubtype).filter(
            ResourceSubtype.resource_type_id == resource_type_id,
            ResourceSubtype.code == code
        ).first()
        if duplicate:
            raise ValidationError(f"Resource subtype code '{code}' already exists")

        subtype = ResourceSubtype(
            resource_type_id=resource_type_id,
            code=code,
            name=name,
            description=description,
            metadata_schema=metadata_schema,
            sort_order=sort_order,
        )
        db.add(subtype)
        db.commit()
        return subtype

    @staticmethod
    def list_resource_subtypes(
        db: Session, clinic_id: int, resource_type_id: Optional[int] = None
    ) -> List[ResourceSubtype]:
        query = db.query(ResourceSubtype).join(
            ResourceType, ResourceSubtype.resource_type_id == ResourceType.id
        ).filter(ResourceType.clinic_id == clinic_id)
        if resource_type_id is not None:
            query = query.filter(ResourceSubtype.resource_type_id == resource_type_id)
        return query.order_by(ResourceSubtype.sort_order, ResourceSubtype.id).all()

    @staticmethod
    def _get_subtype(db: Session, clinic_id: int, resource_subtype_id: int) -> ResourceSubtype:
        subtype = db.query(ResourceSubtype).join(
            ResourceType, ResourceSubtype.resource_type_id == ResourceType.id
        ).filter(
            ResourceSubtype.id == resource_subtype_id,
            ResourceType.clinic_id == clinic_id
        ).first()
        if not subtype:
            raise NotFoundError("ResourceSubtype", resource_subtype_id)
        return subtype

    # ===== Resources =====

    @staticmethod
    def get_resource(db: Session, clinic_id: int, resource_id: int) -> Resource:
        """
        Get a resource by id.

        Raises:
            NotFoundError: If the resource does not exist in the clinic
        """
        resource = db.query(Resource).filter(
            Resource.id == resource_id,
            Resource.clinic_id == clinic_id
        ).first()
        if not resource:
            raise NotFoundError("Resource", resource_id)
        return resource

    @staticmethod
    def get_active_resource(db: Session, clinic_id: int, resource_id: int) -> Resource:
        """Get a resource, raising InactiveResourceError if it is deactivated."""
        resource = ResourceService.get_resource(db, clinic_id, resource_id)
        if not resource.is_active:
            raise InactiveResourceError(f"Resource {resource_id} is inactive")
        return resource

    @staticmethod
    def _validate_metadata(subtype: Optional[ResourceSubtype], metadata: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        schema_key = subtype.metadata_schema if subtype is not None else None
        try:
            return validate_resource_metadata(schema_key, metadata)
        except PydanticValidationError as e:
            raise ValidationError(
                "Resource metadata does not match the subtype schema",
                {"errors": e.errors(include_url=False, include_context=False)},
            )
        except (KeyError, ValueError) as e:
            raise ValidationError(f"Invalid resource metadata: {e}")

    @staticmethod
    def _validate_capacity(reservation_mode: str, max_concurrent_bookings: int) -> None:
        if reservation_mode not in RESERVATION_MODES:
            raise ValidationError(f"Invalid reservation mode '{reservation_mode}'")
        if max_concurrent_bookings < 1:
            raise ValidationError("max_concurrent_bookings must be at least 1")

    @staticmethod
    def _validate_stock(quantity_on_hand: Optional[int], quantity_threshold: Optional[int]) -> None:
        if quantity_on_hand is not None and quantity_on_hand < 0:
            raise ValidationError("quantity_on_hand cannot be negative")
        if quantity_threshold is not None and quantity_threshold < 0:
            raise ValidationError("quantity_threshold cannot be negative")

    @staticmethod
    @storage_guard
    def create_resource(
        db: Session,
        clinic_id: int,
        resource_type_id: int,
        name: str,
        resource_subtype_id: Optional[int] = None,
        description: Optional[str] = None,
        reservation_mode: str = "exclusive",
        max_concurrent_bookings: int = 1,
        parent_resource_id: Optional[int] = None,
        is_consumable: Optional[bool] = None,
        quantity_on_hand: Optional[int] = None,
        quantity_threshold: Optional[int] = None,
        staff_user_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        role_ids: Optional[List[int]] = None,
    ) -> Resource:
        """
        Create a resource.

        Args:
            db: Database session
            clinic_id: Owning clinic
            resource_type_id: Resource type
            name: Resource name, unique within the clinic
            resource_subtype_id: Optional subtype; must belong to resource_type_id
            reservation_mode: 'exclusive' or 'shared'
            max_concurrent_bookings: Shared capacity (forced to 1 for exclusive)
            parent_resource_id: Containing resource
            is_consumable: Defaults to True for the 'consumable' type
            quantity_on_hand: Initial stock (consumables; defaults to 0)
            quantity_threshold: Low-stock threshold
            staff_user_id: Linked staff identity
            metadata: Subtype-specific configuration
            role_ids: Roles to assign immediately (priority 0)

        Returns:
            The created Resource

        Raises:
            NotFoundError: Unknown type, subtype, parent or role
            ValidationError: Invalid capacity, stock, metadata or duplicate name
        """
        resource_type = ResourceService.get_resource_type(db, clinic_id, resource_type_id)
        subtype = None
        if resource_subtype_id is not None:
            subtype = ResourceService._get_subtype(db, clinic_id, resource_subtype_id)
            if subtype.resource_type_id != resource_type_id:
                raise ValidationError("Resource subtype does not belong to the resource type")

        ResourceService._validate_capacity(reservation_mode, max_concurrent_bookings)
        if reservation_mode == "exclusive":
            max_concurrent_bookings = 1

        if is_consumable is None:
            is_consumable = resource_type.code == "consumable"
        if is_consumable and quantity_on_hand is None:
            quantity_on_hand = 0
        ResourceService._validate_stock(quantity_on_hand, quantity_threshold)

        duplicate = db.query(Resource).filter(
            Resource.clinic_id == clinic_id,
            Resource.name == name
        ).first()
        if duplicate:
            raise ValidationError(f"Resource name '{name}' already exists")

        if parent_resource_id is not None:
            ResourceService._validate_parent(db, clinic_id, None, parent_resource_id)

        resource = Resource(
            clinic_id=clinic_id,
            resource_type_id=resource_type_id,
            resource_subtype_id=resource_subtype_id,
            name=name,
            description=description,
            reservation_mode=reservation_mode,
            max_concurrent_bookings=max_concurrent_bookings,
            parent_resource_id=parent_resource_id,
            is_consumable=is_consumable,
            quantity_on_hand=quantity_on_hand,
            quantity_threshold=quantity_threshold,
            staff_user_id=staff_user_id,
            resource_metadata=ResourceService._validate_metadata(subtype, metadata),
        )
        db.add(resource)
        db.flush()

        for role_id in role_ids or []:
            role = ResourceService.get_role(db, clinic_id, role_id)
            ResourceService._check_role_fits(role, resource)
            db.add(ResourceRoleAssignment(resource_id=resource.id, role_id=role_id, priority=0))

        db.commit()
        logger.info(f"Created resource {resource.id} ({name}) for clinic {clinic_id}")
        return resource

    @staticmethod
    @storage_guard
    def update_resource(
        db: Session,
        clinic_id: int,
        resource_id: int,
        name: Any = MISSING,
        description: Any = MISSING,
        resource_subtype_id: Any = MISSING,
        reservation_mode: Any = MISSING,
        max_concurrent_bookings: Any = MISSING,
        parent_resource_id: Any = MISSING,
        quantity_threshold: Any = MISSING,
        staff_user_id: Any = MISSING,
        metadata: Any = MISSING,
        is_active: Any = MISSING,
    ) -> Resource:
        """
        Update a resource. Omitted (MISSING) fields are left untouched.

        Stock levels are changed only through adjust_inventory().

        Raises:
            NotFoundError: Unknown resource, subtype or parent
            ValidationError: Invalid values or a hierarchy cycle
        """
        resource = ResourceService.get_resource(db, clinic_id, resource_id)

        if is_provided(name) and name != resource.name:
            duplicate = db.query(Resource).filter(
                Resource.clinic_id == clinic_id,
                Resource.name == name,
                Resource.id != resource_id
            ).first()
            if duplicate:
                raise ValidationError(f"Resource name '{name}' already exists")
            resource.name = name
        if is_provided(description):
            resource.description = description

        subtype = resource.resource_subtype
        if is_provided(resource_subtype_id):
            if resource_subtype_id is None:
                subtype = None
            else:
                subtype = ResourceService._get_subtype(db, clinic_id, resource_subtype_id)
                if subtype.resource_type_id != resource.resource_type_id:
                    raise ValidationError("Resource subtype does not belong to the resource type")
            resource.resource_subtype_id = resource_subtype_id
            # Existing metadata must satisfy the new subtype's schema
            if not is_provided(metadata):
                metadata = resource.resource_metadata

        mode = reservation_mode if is_provided(reservation_mode) else resource.reservation_mode
        capacity = max_concurrent_bookings if is_provided(max_concurrent_bookings) else resource.max_concurrent_bookings
        ResourceService._validate_capacity(mode, capacity)
        resource.reservation_mode = mode
        resource.max_concurrent_bookings = 1 if mode == "exclusive" else capacity

        if is_provided(parent_resource_id):
            if parent_resource_id is not None:
                ResourceService._validate_parent(db, clinic_id, resource_id, parent_resource_id)
            resource.parent_resource_id = parent_resource_id
        if is_provided(quantity_threshold):
            ResourceService._validate_stock(None, quantity_threshold)
            resource.quantity_threshold = quantity_threshold
        if is_provided(staff_user_id):
            resource.staff_user_id = staff_user_id
        if is_provided(metadata):
            resource.resource_metadata = ResourceService._validate_metadata(subtype, metadata)
        if is_provided(is_active):
            resource.is_active = bool(is_active)

        db.commit()
        logger.info(f"Updated resource {resource_id} for clinic {clinic_id}")
        return resource

    @staticmethod
    @storage_guard
    def deactivate_resource(db: Session, clinic_id: int, resource_id: int) -> Resource:
        """
        Deactivate a resource so it is never selected for new reservations.

        Existing reservations are kept; use
        AppointmentService.find_appointments_needing_coverage() to find them.
        """
        resource = ResourceService.get_resource(db, clinic_id, resource_id)
        resource.is_active = False
        db.commit()
        logger.info(f"Deactivated resource {resource_id} for clinic {clinic_id}")
        return resource

    @staticmethod
    def list_resources(
        db: Session,
        clinic_id: int,
        resource_type_id: Optional[int] = None,
        resource_subtype_id: Optional[int] = None,
        parent_resource_id: Any = MISSING,
        active_only: bool = True,
    ) -> List[Resource]:
        """List resources with optional filters. parent_resource_id=None lists top-level resources."""
        query = db.query(Resource).filter(Resource.clinic_id == clinic_id)
        if resource_type_id is not None:
            query = query.filter(Resource.resource_type_id == resource_type_id)
        if resource_subtype_id is not None:
            query = query.filter(Resource.resource_subtype_id == resource_subtype_id)
        if is_provided(parent_resource_id):
            query = query.filter(Resource.parent_resource_id == parent_resource_id)
        if active_only:
            query = query.filter(Resource.is_active == True)  # noqa: E712
        return query.order_by(Resource.name, Resource.id).all()

    # ===== Roles =====

    @staticmethod
    @storage_guard
    def create_role(
        db: Session,
        clinic_id: int,
        code: str,
        name: str,
        resource_type_id: Optional[int] = None,
        description: Optional[str] = None,
    ) -> ResourceRole:
        """Create a role, optionally restricted to one resource type."""
        if resource_type_id is not None:
            ResourceService.get_resource_type(db, clinic_id, resource_type_id)
        duplicate = db.query(ResourceRole).filter(
            ResourceRole.clinic_id == clinic_id,
            ResourceRole.code == code
        ).first()
        if duplicate:
            raise ValidationError(f"Role code '{code}' already exists")

        role = ResourceRole(
            clinic_id=clinic_id,
            code=code,
            name=name,
            resource_type_id=resource_type_id,
            description=description,
        )
        db.add(role)
        db.commit()
        return role

    @staticmethod
    def get_role(db: Session, clinic_id: int, role_id: int) -> ResourceRole:
        role = db.query(ResourceRole).filter(
            ResourceRole.id == role_id,
            ResourceRole.clinic_id == clinic_id
        ).first()
        if not role:
            raise NotFoundError("ResourceRole", role_id)
        return role

    @staticmethod
    def list_roles(db: Session, clinic_id: int, active_only: bool = True) -> List[ResourceRole]:
        query = db.query(ResourceRole).filter(ResourceRole.clinic_id == clinic_id)
        if active_only:
            query = query.filter(ResourceRole.is_active == True)  # noqa: E712
        return query.order_by(ResourceRole.name, ResourceRole.id).all()

    @staticmethod
    def _check_role_fits(role: ResourceRole, resource: Resource) -> None:
        if not role.is_active:
            raise InactiveResourceError(f"Role {role.id} is inactive")
        if role.resource_type_id is not None and role.resource_type_id != resource.resource_type_id:
            raise ValidationError(
                f"Role '{role.code}' cannot be filled by resources of type {resource.resource_type_id}"
            )

    @staticmethod
    @storage_guard
    def assign_role(
        db: Session,
        clinic_id: int,
        resource_id: int,
        role_id: int,
        priority: int = 0,
        actor_id: Optional[int] = None,
    ) -> ResourceRoleAssignment:
        """
        Let a resource fill a role. Re-assigning updates the priority.

        Emits:
            role.assigned
        """
        resource = ResourceService.get_resource(db, clinic_id, resource_id)
        role = ResourceService.get_role(db, clinic_id, role_id)
        ResourceService._check_role_fits(role, resource)

        assignment = db.query(ResourceRoleAssignment).filter(
            ResourceRoleAssignment.resource_id == resource_id,
            ResourceRoleAssignment.role_id == role_id
        ).first()
        if assignment:
            assignment.priority = priority
        else:
            assignment = ResourceRoleAssignment(resource_id=resource_id, role_id=role_id, priority=priority)
            db.add(assignment)
        db.commit()

        scheduling_events.publish_event(
            scheduling_events.ROLE_ASSIGNED,
            clinic_id,
            {"resource_id": resource_id, "role_id": role_id, "priority": priority},
            actor_id=actor_id,
        )
        return assignment

    @staticmethod
    @storage_guard
    def unassign_role(
        db: Session,
        clinic_id: int,
        resource_id: int,
        role_id: int,
        actor_id: Optional[int] = None,
    ) -> None:
        """
        Stop a resource from filling a role. Existing reservations are kept.

        Emits:
            role.unassigned
        """
        ResourceService.get_resource(db, clinic_id, resource_id)
        assignment = db.query(ResourceRoleAssignment).filter(
            ResourceRoleAssignment.resource_id == resource_id,
            ResourceRoleAssignment.role_id == role_id
        ).first()
        if not assignment:
            raise NotFoundError("ResourceRoleAssignment", f"{resource_id}/{role_id}")
        db.delete(assignment)
        db.commit()

        scheduling_events.publish_event(
            scheduling_events.ROLE_UNASSIGNED,
            clinic_id,
            {"resource_id": resource_id, "role_id": role_id},
            actor_id=actor_id,
        )

    @staticmethod
    def list_resources_for_role(
        db: Session,
        clinic_id: int,
        role_id: int,
        active_only: bool = True,
    ) -> List[Resource]:
        """
        List resources able to fill a role, best candidates first.

        Ordered by assignment priority, then id (creation order).
        """
        query = db.query(Resource).join(
            ResourceRoleAssignment, ResourceRoleAssignment.resource_id == Resource.id
        ).filter(
            ResourceRoleAssignment.role_id == role_id,
            Resource.clinic_id == clinic_id
        )
        if active_only:
            query = query.filter(Resource.is_active == True)  # noqa: E712
        return query.order_by(ResourceRoleAssignment.priority, Resource.id).all()

    @staticmethod
    def get_role_priorities(db: Session, role_ids: List[int]) -> Dict[int, Dict[int, int]]:
        """Map role_id -> {resource_id: priority} for the given roles."""
        priorities: Dict[int, Dict[int, int]] = {role_id: {} for role_id in role_ids}
        if not role_ids:
            return priorities
        rows = db.query(ResourceRoleAssignment).filter(ResourceRoleAssignment.role_id.in_(role_ids)).all()
        for row in rows:
            priorities[row.role_id][row.resource_id] = row.priority
        return priorities

    # ===== Inventory =====

    @staticmethod
    def lock_resources(db: Session, resource_ids: Sequence[int]) -> List[Resource]:
        """
        Lock resource rows in id order and bump their reservation_version.

        The version bump is a write, so it also serializes callers on
        backends without row-level locks. Rows are re-read after the bump,
        so stock read from the result is the latest committed value.
        """
        if not resource_ids:
            return []
        ids = sorted(set(resource_ids))
        db.query(Resource).filter(
            Resource.id.in_(ids)
        ).order_by(Resource.id).with_for_update().all()
        db.execute(
            update(Resource)
            .where(Resource.id.in_(ids))
            .values(reservation_version=Resource.reservation_version + 1)
            .execution_options(synchronize_session=False)
        )
        return db.query(Resource).filter(Resource.id.in_(ids)).order_by(Resource.id).populate_existing().all()

    @staticmethod
    @storage_guard
    def adjust_inventory(
        db: Session,
        clinic_id: int,
        resource_id: int,
        delta: int,
        reason: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> Resource:
        """
        Adjust a consumable's stock by a signed delta.

        Stock is read only after the row is locked, so concurrent
        adjustments, bookings and cancellations never lose an update.

        Raises:
            ValidationError: If the resource is not a consumable
            InsufficientInventoryError: If the result would be negative

        Emits:
            inventory.adjusted, and resource.low_stock when the threshold is crossed
        """
        resource = ResourceService.get_resource(db, clinic_id, resource_id)
        if not resource.is_consumable:
            raise ValidationError(f"Resource {resource_id} is not a consumable")

        resource = ResourceService.lock_resources(db, [resource_id])[0]
        before = resource.quantity_on_hand or 0
        after = before + delta
        if after < 0:
            raise InsufficientInventoryError(resource_id, before, -delta)

        resource.quantity_on_hand = after
        db.commit()
        db.refresh(resource)
        logger.info(f"Adjusted inventory of resource {resource_id} by {delta}: {before} -> {after}")

        scheduling_events.publish_event(
            scheduling_events.INVENTORY_ADJUSTED,
            clinic_id,
            {"resource_id": resource_id, "delta": delta, "before": before, "after": after, "reason": reason},
            actor_id=actor_id,
        )
        if crossed_low_stock_threshold(before, after, resource.quantity_threshold):
            ResourceService.publish_low_stock(resource)
        return resource

    @staticmethod
    def publish_low_stock(resource: Resource) -> None:
        """Emit resource.low_stock for a consumable."""
        logger.warning(
            f"Resource {resource.id} ({resource.name}) is low on stock: "
            f"{resource.quantity_on_hand} <= {resource.quantity_threshold}"
        )
        scheduling_events.publish_event(
            scheduling_events.RESOURCE_LOW_STOCK,
            resource.clinic_id,
            {
                "resource_id": resource.id,
                "resource_name": resource.name,
                "quantity_on_hand": resource.quantity_on_hand,
                "quantity_threshold": resource.quantity_threshold,
            },
        )

    @staticmethod
    def list_low_stock_resources(db: Session, clinic_id: int) -> List[Resource]:
        """List active consumables at or below their threshold, most depleted first."""
        return db.query(Resource).filter(
            Resource.clinic_id == clinic_id,
            Resource.is_active == True,  # noqa: E712
            Resource.is_consumable == True,  # noqa: E712
            Resource.quantity_threshold.isnot(None),
            Resource.quantity_on_hand <= Resource.quantity_threshold
        ).order_by(
            (Resource.quantity_on_hand - Resource.quantity_threshold),
            Resource.id
        ).all()

    # ===== Hierarchy =====

    @staticmethod
    def _load_parent_index(db: Session, clinic_id: int) -> Dict[int, Optional[int]]:
        """Flat resource_id -> parent_resource_id index for one clinic."""
        rows = db.query(Resource.id, Resource.parent_resource_id).filter(
            Resource.clinic_id == clinic_id
        ).all()
        return {row.id: row.parent_resource_id for row in rows}

    @staticmethod
    def _validate_parent(
        db: Session, clinic_id: int, resource_id: Optional[int], parent_resource_id: int
    ) -> None:
        """Reject unknown or consumable parents and parent links that would form a cycle."""
        parent = ResourceService.get_resource(db, clinic_id, parent_resource_id)
        if parent.is_consumable:
            raise ValidationError("A consumable cannot contain other resources")
        if resource_id is None:
            return
        if parent_resource_id == resource_id:
            raise ValidationError("A resource cannot be its own parent")
        parent_index = ResourceService._load_parent_index(db, clinic_id)
        if resource_id in ResourceService._ancestors(parent_index, parent_resource_id):
            raise ValidationError("Resource hierarchy cannot contain cycles")

    @staticmethod
    def _ancestors(parent_index: Dict[int, Optional[int]], resource_id: int) -> List[int]:
        ancestors: List[int] = []
        seen = {resource_id}
        current = parent_index.get(resource_id)
        while current is not None and current not in seen:
            ancestors.append(current)
            seen.add(current)
            current = parent_index.get(current)
        return ancestors

    @staticmethod
    def get_ancestor_ids(db: Session, clinic_id: int, resource_id: int) -> List[int]:
        """Ids from the direct parent up to the root."""
        ResourceService.get_resource(db, clinic_id, resource_id)
        return ResourceService._ancestors(ResourceService._load_parent_index(db, clinic_id), resource_id)

    @staticmethod
    def get_descendant_ids(db: Session, clinic_id: int, resource_id: int) -> List[int]:
        """Ids of every resource contained (directly or transitively) in resource_id."""
        ResourceService.get_resource(db, clinic_id, resource_id)
        children_index: Dict[int, List[int]] = {}
        for child_id, parent_id in ResourceService._load_parent_index(db, clinic_id).items():
            if parent_id is not None:
                children_index.setdefault(parent_id, []).append(child_id)

        descendants: List[int] = []
        seen = {resource_id}
        stack = list(children_index.get(resource_id, []))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            descendants.append(current)
            stack.extend(children_index.get(current, []))
        return sorted(descendants)

    @staticmethod
    def get_children(db: Session, clinic_id: int, resource_id: int, active_only: bool = True) -> List[Resource]:
        """Direct children of a resource."""
        ResourceService.get_resource(db, clinic_id, resource_id)
        return ResourceService.list_resources(
            db, clinic_id, parent_resource_id=resource_id, active_only=active_only
        )

    @staticmethod
    def get_resource_hierarchy(db: Session, clinic_id: int, active_only: bool = True) -> List[Dict[str, Any]]:
        """
        Build the clinic's resource tree.

        Returns:
            List of root nodes, each {"id", "name", "resource_type_id", "children": [...]},
            children sorted by name
        """
        resources = ResourceService.list_resources(db, clinic_id, active_only=active_only)
        nodes: Dict[int, Dict[str, Any]] = {
            r.id: {"id": r.id, "name": r.name, "resource_type_id": r.resource_type_id, "children": []}
            for r in resources
        }
        roots: List[Dict[str, Any]] = []
        # list_resources is sorted by name, so children end up sorted too
        for resource in resources:
            parent_id = resource.parent_resource_id
            if parent_id is not None and parent_id in nodes:
                nodes[parent_id]["children"].append(nodes[resource.id])
            else:
                roots.append(nodes[resource.id])
        return roots
