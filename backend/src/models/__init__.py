# Package initialization
# Import all models to ensure relationships are properly established
from .resource_type import ResourceType
from .resource_subtype import ResourceSubtype
from .resource import Resource
from .resource_role import ResourceRole
from .resource_role_assignment import ResourceRoleAssignment
from .resource_availability import ResourceAvailability
from .procedure import Procedure
from .procedure_composition import ProcedureComposition
from .procedure_requirement import ProcedureRequirement
from .procedure_slot import ProcedureSlot
from .appointment import Appointment
from .appointment_preference import AppointmentPreference
from .appointment_resource import AppointmentResource

__all__ = [
    "ResourceType",
    "ResourceSubtype",
    "Resource",
    "ResourceRole",
    "ResourceRoleAssignment",
    "ResourceAvailability",
    "Procedure",
    "ProcedureComposition",
    "ProcedureRequirement",
    "ProcedureSlot",
    "Appointment",
    "AppointmentPreference",
    "AppointmentResource",
]
