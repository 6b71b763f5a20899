"""
Clinic-scoped scheduling API modules.

Every router here is mounted under /api/clinics/{clinic_id}; the clinic id
is an explicit path parameter on every endpoint.
"""

from api.clinic.resources import router as resources_router
from api.clinic.procedures import router as procedures_router
from api.clinic.availability import router as availability_router
from api.clinic.slots import router as slots_router
from api.clinic.appointments import router as appointments_router

__all__ = [
    'resources_router',
    'procedures_router',
    'availability_router',
    'slots_router',
    'appointments_router',
]
