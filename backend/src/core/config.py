"""
Application configuration using python-dotenv.

This module loads environment variables from .env file into os.environ
for use throughout the scheduling engine.
"""

import os
import pathlib
from dotenv import load_dotenv


# Determine if we're running in a test environment
# Don't load .env file during testing to ensure predictable test behavior
is_testing = os.getenv("PYTEST_VERSION") is not None or any("pytest" in str(frame) for frame in __import__('inspect').stack(0))

# Load .env file into os.environ (only outside of testing)
if not is_testing:
    possible_paths = [
        pathlib.Path(__file__).parent.parent.parent / ".env",  # backend/.env (when run from backend/src)
        pathlib.Path(__file__).parent.parent.parent.parent / ".env",  # .env at repository root
        pathlib.Path.cwd() / ".env",
    ]

    for env_path in possible_paths:
        if env_path.exists():
            load_dotenv(env_path)
            break


def _get_bool(name: str, default: bool) -> bool:
    """Read a boolean flag from the environment ("1", "true", "yes" are truthy)."""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def get_database_url():
    """Get the database URL from environment."""
    return os.getenv(
        "DATABASE_URL",
        "postgresql://localhost/clinic_scheduling_dev"
    )

DATABASE_URL = get_database_url()
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Clinic wall-clock offset used for created_at/updated_at timestamps.
# Scheduling instants are stored naive and already in clinic local time.
CLINIC_UTC_OFFSET_HOURS = int(os.getenv("CLINIC_UTC_OFFSET_HOURS", "8"))

# Slot generation
SLOT_GRANULARITY_MINUTES = int(os.getenv("SLOT_GRANULARITY_MINUTES", "15"))
MAX_GENERATED_SLOTS = int(os.getenv("MAX_GENERATED_SLOTS", "100"))

# Alternatives offered alongside a booking conflict
ALTERNATIVE_SEARCH_DAYS = int(os.getenv("ALTERNATIVE_SEARCH_DAYS", "14"))
MAX_ALTERNATIVE_SLOTS = int(os.getenv("MAX_ALTERNATIVE_SLOTS", "5"))

# SQLite only: seconds a writer waits for the database lock
SQLITE_BUSY_TIMEOUT_SECONDS = int(os.getenv("SQLITE_BUSY_TIMEOUT_SECONDS", "30"))

# Create tables on startup (local development without migrations)
AUTO_CREATE_TABLES = _get_bool("AUTO_CREATE_TABLES", False)
