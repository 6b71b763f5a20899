"""
Appointment preference model recording a role -> resource preference.

Preferences are considered only while booking; they are stored so that a
reschedule can re-apply them.
"""

from datetime import datetime
from sqlalchemy import String, ForeignKey, TIMESTAMP, Integer, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.database import Base


class AppointmentPreference(Base):
    """
    Preference for a specific resource to fill a role.

    preference_type 'required' is a hard constraint (booking fails if the
    resource is unavailable); 'preferred' only ranks the resource first.
    """

    __tablename__ = "appointment_preferences"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    """Unique identifier for the preference."""

    appointment_id: Mapped[int] = mapped_column(ForeignKey("appointments.id", ondelete="CASCADE"), index=True)
    """Appointment the preference belongs to."""

    role_id: Mapped[int] = mapped_column(ForeignKey("resource_roles.id", ondelete="CASCADE"))
    """Role the preference applies to."""

    resource_id: Mapped[int] = mapped_column(ForeignKey("resources.id", ondelete="CASCADE"))
    """Preferred resource."""

    preference_type: Mapped[str] = mapped_column(String(20), default="preferred", nullable=False)
    """'preferred' or 'required'."""

    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    """Ordering among preferences for the same role (lower first)."""

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the preference was recorded."""

    updated_at: Mapped[datetime] = mapped_column(TIMESTAMP(timezone=True), nullable=False)
    """Timestamp when the preference was last updated."""

    # Relationships
    appointment = relationship("Appointment", back_populates="preferences")
    """Appointment the preference belongs to."""

    role = relationship("ResourceRole")
    """Role the preference applies to."""

    resource = relationship("Resource")
    """Preferred resource."""

    __table_args__ = (
        CheckConstraint("preference_type IN ('preferred', 'required')", name='ck_appointment_preference_type'),
    )
