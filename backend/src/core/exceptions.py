"""
Domain exceptions raised by the scheduling services.

Services raise these instead of HTTPException so they can be used from
scripts and tests without FastAPI. The API layer maps each one to an HTTP
status code in main.py.
"""

from typing import Any, Dict, List, Optional


class SchedulingError(Exception):
    """Base class for all scheduling engine errors."""

    code = "scheduling_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the error for API responses and event payloads."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class NotFoundError(SchedulingError):
    """Unknown resource, procedure, slot, availability or appointment id."""

    code = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", {"entity": entity, "id": entity_id})
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(SchedulingError):
    """Malformed input: requirement bounds, recurrence ranges, negative durations."""

    code = "validation_error"


class ConflictError(SchedulingError):
    """
    A resource is double-booked, over shared capacity, or a slot is taken.

    Attributes:
        conflicts: Per-resource conflict descriptions
        alternatives: Alternative slot candidates, filled in by the booking
            engine before the error reaches the caller
    """

    code = "conflict"

    def __init__(
        self,
        message: str,
        conflicts: Optional[List[Dict[str, Any]]] = None,
        alternatives: Optional[List[Dict[str, Any]]] = None,
    ):
        super().__init__(message)
        self.conflicts = conflicts or []
        self.alternatives = alternatives or []

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["conflicts"] = self.conflicts
        data["alternatives"] = self.alternatives
        return data


class InsufficientInventoryError(SchedulingError):
    """A consumable's quantity_on_hand would go negative."""

    code = "insufficient_inventory"

    def __init__(self, resource_id: int, available: int, requested: int):
        super().__init__(
            f"Resource {resource_id} has {available} units on hand, {requested} requested",
            {"resource_id": resource_id, "available": available, "requested": requested},
        )
        self.resource_id = resource_id
        self.available = available
        self.requested = requested


class InactiveResourceError(SchedulingError):
    """Operation against a deactivated resource or procedure."""

    code = "inactive"


class StorageError(SchedulingError):
    """
    Storage-layer failure (connectivity, unexpected constraint violation).

    Never retried by the services; retry policy belongs to the caller.
    """

    code = "storage_error"
