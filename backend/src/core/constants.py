"""Application constants and configuration values."""

from core.config import FRONTEND_URL

# Database field lengths
MAX_STRING_LENGTH = 255
MAX_CODE_LENGTH = 50

# Database connection settings
DB_POOL_RECYCLE_SECONDS = 300  # 5 minutes

# CORS origins for the admin frontend
_CORS_ORIGINS_RAW = [
    "http://localhost:5173",      # React dev server (Vite)
    FRONTEND_URL,
]

# Filter out None values and empty strings to avoid CORS errors
CORS_ORIGINS = [origin for origin in _CORS_ORIGINS_RAW if origin and origin.strip()]

# Resource classification
RESOURCE_TYPE_CODES = ("people", "place", "equipment", "consumable")
RESERVATION_MODES = ("exclusive", "shared")

# Availability
AVAILABILITY_TYPES = ("available", "blocked")

# Procedures
PROCEDURE_TYPES = ("atomic", "composite")

# Slots
SLOT_STATUSES = ("available", "booked", "cancelled", "blocked")
SLOT_GENERATION_TYPES = ("auto", "manual")

# Appointments
APPOINTMENT_STATUSES = (
    "scheduled", "confirmed", "checked_in", "in_progress",
    "completed", "cancelled", "no_show",
)
TERMINAL_APPOINTMENT_STATUSES = ("completed", "cancelled", "no_show")

# Appointment statuses whose reservations no longer occupy a resource.
# Completed appointments still hold their window for historical capacity checks.
RELEASED_APPOINTMENT_STATUSES = ("cancelled", "no_show")

# Appointment resource reservations
RESERVATION_STATUSES = ("assigned", "confirmed", "declined", "needs_coverage", "released")
INACTIVE_RESERVATION_STATUSES = ("released", "declined")

# Preferences
PREFERENCE_TYPES = ("preferred", "required")

# Ranking used by the resource selector: lower sorts first
PREFERENCE_RANK = {"required": 0, "preferred": 1}
NO_PREFERENCE_RANK = 2

# Upper bound on recurrence periods walked for one expansion
MAX_RECURRENCE_PERIODS = 5000
