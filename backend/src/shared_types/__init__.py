"""
Shared types used across scheduling services.

This package contains data classes and validated configuration models
shared between services and API endpoints.
"""

from .scheduling import (
    AvailabilityWindow,
    ExpandedRequirement,
    ReservationInterval,
    ResourceAssignment,
    ResourceCheck,
    ResourcePreference,
    SlotCandidate,
)

__all__ = [
    "AvailabilityWindow",
    "ExpandedRequirement",
    "ReservationInterval",
    "ResourceAssignment",
    "ResourceCheck",
    "ResourcePreference",
    "SlotCandidate",
]
