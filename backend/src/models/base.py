"""
Database base models and utilities.

This module re-exports the declarative Base and provides column types
shared by the scheduling models.
"""

from sqlalchemy import JSON
from sqlalchemy.dialects.postgresql import JSONB

# Re-export Base from core.database so models can import everything from one place
from core.database import Base  # type: ignore[reportUnusedImport]

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
# none_as_null stores Python None as SQL NULL rather than the JSON literal null.
JSONType = JSON(none_as_null=True).with_variant(JSONB(none_as_null=True), "postgresql")
