"""
Services package for scheduling business logic.

This package contains service classes that encapsulate the scheduling
engine's business logic, shared by the API endpoints and by embedding
applications.
"""

from . import scheduling_events
from .resource_service import ResourceService
from .procedure_service import ProcedureService
from .availability_service import AvailabilityService
from .slot_service import SlotService
from .appointment_service import AppointmentService

__all__ = [
    "scheduling_events",
    "ResourceService",
    "ProcedureService",
    "AvailabilityService",
    "SlotService",
    "AppointmentService",
]
