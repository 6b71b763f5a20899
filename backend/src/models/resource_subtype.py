"""
Resource subtype model refining a resource type.

A subtype may declare a metadata schema key; resources of that subtype have
their metadata validated against the schema at write time.
"""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, ForeignKey, TIMESTAMP, Boolean, Integer, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class ResourceSubtype(Base):
    """Resource subtype entity (e.g. "surgeon" under people, "laser" under equipment)."""

    __tablename__ = "resource_subtypes"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the subtype."""

    resource_type_id: Mapped[int] = mapped_column(ForeignKey("resource_types.id", ondelete="CASCADE"), index=True)
    """Parent resource type."""

    code: Mapped[str] = mapped_column(String(50))
    """Machine-readable code, unique within the parent type."""

    name: Mapped[str] = mapped_column(String(255))
    """Display name of the subtype."""

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    """Optional description."""

    metadata_schema: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    """
    Key of the metadata schema resources of this subtype must satisfy.

    See shared_types.resource_metadata.METADATA_SCHEMAS. NULL means resources
    of this subtype carry no metadata.
    """

    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """Display ordering within the parent type."""

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    """Inactive subtypes cannot receive new resources."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the subtype was created."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the subtype was last updated."""

    # Relationships
    resource_type = relationship("ResourceType", back_populates="subtypes")
    """Parent ResourceType."""

    resources = relationship("Resource", back_populates="resource_subtype")
    """Resources of this subtype."""

    __table_args__ = (
        UniqueConstraint('resource_type_id', 'code', name='uq_resource_subtype_type_code'),
    )
