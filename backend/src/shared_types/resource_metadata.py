"""
Schema-validated resource metadata.

Each ResourceSubtype may name one of the schemas below in its
``metadata_schema`` column. Resource metadata is validated against that
schema whenever a resource is created or updated, so downstream code can
rely on the fields being present and well-typed.
"""

from datetime import date
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field


class _MetadataBase(BaseModel):
    model_config = ConfigDict(extra="forbid")


class StaffMetadata(_MetadataBase):
    """Metadata for people resources."""
    license_number: Optional[str] = Field(None, max_length=100)
    specialties: List[str] = Field(default_factory=list)
    languages: List[str] = Field(default_factory=list)
    can_supervise: bool = False


class RoomMetadata(_MetadataBase):
    """Metadata for rooms and other places."""
    floor: Optional[str] = Field(None, max_length=20)
    area_sqm: Optional[float] = Field(None, gt=0)
    wheelchair_accessible: bool = True


class EquipmentMetadata(_MetadataBase):
    """Metadata for devices."""
    manufacturer: Optional[str] = Field(None, max_length=255)
    model: Optional[str] = Field(None, max_length=255)
    serial_number: Optional[str] = Field(None, max_length=100)
    last_service_date: Optional[date] = None
    requires_certification: bool = False


class ConsumableMetadata(_MetadataBase):
    """Metadata for stock items."""
    unit: str = Field("unit", max_length=50)
    sku: Optional[str] = Field(None, max_length=100)
    lot_number: Optional[str] = Field(None, max_length=100)
    expiry_date: Optional[date] = None
    reorder_quantity: Optional[int] = Field(None, ge=1)


METADATA_SCHEMAS: Dict[str, Type[BaseModel]] = {
    "staff": StaffMetadata,
    "room": RoomMetadata,
    "equipment": EquipmentMetadata,
    "consumable": ConsumableMetadata,
}


def validate_resource_metadata(schema_key: Optional[str], data: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Validate resource metadata against a subtype schema.

    Args:
        schema_key: Subtype's metadata_schema value (None means no metadata allowed)
        data: Submitted metadata

    Returns:
        Normalized metadata (defaults filled in, dates as ISO strings),
        or None when no metadata was submitted and no schema applies

    Raises:
        KeyError: If schema_key names an unknown schema
        ValueError: If metadata is given for a subtype without a schema
        pydantic.ValidationError: If the metadata does not match the schema
    """
    if schema_key is None:
        if data:
            raise ValueError("this resource subtype does not accept metadata")
        return None

    schema = METADATA_SCHEMAS[schema_key]
    return schema.model_validate(data or {}).model_dump(mode="json")
