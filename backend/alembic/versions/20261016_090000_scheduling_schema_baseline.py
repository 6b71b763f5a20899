"""scheduling_schema_baseline

Revision ID: 3f6c2a9d8b14
Revises:
Create Date: 2026-10-16 09:00:00.000000

Baseline for the resource and procedure scheduling schema: the resource
catalog (types, subtypes, resources, roles, role assignments, availability),
procedures (composition, requirements, slots) and appointments (preferences,
resource reservations). Check constraints carry the invariants the services
rely on: non-negative stock, valid windows and closed status vocabularies.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '3f6c2a9d8b14'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


# JSONB on PostgreSQL, plain JSON elsewhere
JSON_TYPE = sa.JSON(none_as_null=True).with_variant(postgresql.JSONB(none_as_null=True), "postgresql")


def _timestamps() -> list:
    return [
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create all scheduling tables, constraints and indexes."""
    # ===== Resource catalog =====
    op.create_table(
        'resource_types',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False),
        sa.Column('is_system', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('clinic_id', 'code', name='uq_resource_type_clinic_code'),
    )
    op.create_index('ix_resource_types_id', 'resource_types', ['id'])
    op.create_index('ix_resource_types_clinic_id', 'resource_types', ['clinic_id'])

    op.create_table(
        'resource_subtypes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('resource_type_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('metadata_schema', sa.String(length=50), nullable=True),
        sa.Column('sort_order', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['resource_type_id'], ['resource_types.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('resource_type_id', 'code', name='uq_resource_subtype_type_code'),
    )
    op.create_index('ix_resource_subtypes_id', 'resource_subtypes', ['id'])
    op.create_index('ix_resource_subtypes_resource_type_id', 'resource_subtypes', ['resource_type_id'])

    op.create_table(
        'resources',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('resource_type_id', sa.Integer(), nullable=False),
        sa.Column('resource_subtype_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('reservation_mode', sa.String(length=20), nullable=False),
        sa.Column('max_concurrent_bookings', sa.Integer(), nullable=False),
        sa.Column('parent_resource_id', sa.Integer(), nullable=True),
        sa.Column('is_consumable', sa.Boolean(), nullable=False),
        sa.Column('quantity_on_hand', sa.Integer(), nullable=True),
        sa.Column('quantity_threshold', sa.Integer(), nullable=True),
        sa.Column('staff_user_id', sa.Integer(), nullable=True),
        sa.Column('metadata', JSON_TYPE, nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('reservation_version', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['resource_type_id'], ['resource_types.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['resource_subtype_id'], ['resource_subtypes.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['parent_resource_id'], ['resources.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('clinic_id', 'name', name='uq_resource_clinic_name'),
        sa.CheckConstraint('quantity_on_hand IS NULL OR quantity_on_hand >= 0', name='ck_resource_quantity_non_negative'),
        sa.CheckConstraint('max_concurrent_bookings >= 1', name='ck_resource_max_concurrent_positive'),
        sa.CheckConstraint("reservation_mode IN ('exclusive', 'shared')", name='ck_resource_reservation_mode'),
    )
    op.create_index('ix_resources_id', 'resources', ['id'])
    op.create_index('ix_resources_clinic_id', 'resources', ['clinic_id'])
    op.create_index('ix_resources_resource_type_id', 'resources', ['resource_type_id'])
    op.create_index('ix_resources_resource_subtype_id', 'resources', ['resource_subtype_id'])
    op.create_index('ix_resources_parent_resource_id', 'resources', ['parent_resource_id'])
    op.create_index('ix_resources_staff_user_id', 'resources', ['staff_user_id'])

    op.create_table(
        'resource_roles',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('resource_type_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['resource_type_id'], ['resource_types.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('clinic_id', 'code', name='uq_resource_role_clinic_code'),
    )
    op.create_index('ix_resource_roles_id', 'resource_roles', ['id'])
    op.create_index('ix_resource_roles_clinic_id', 'resource_roles', ['clinic_id'])

    op.create_table(
        'resource_role_assignments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('resource_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['role_id'], ['resource_roles.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('resource_id', 'role_id', name='uq_resource_role_assignment'),
    )
    op.create_index('ix_resource_role_assignments_id', 'resource_role_assignments', ['id'])
    op.create_index('ix_resource_role_assignments_resource_id', 'resource_role_assignments', ['resource_id'])
    op.create_index('ix_resource_role_assignments_role_id', 'resource_role_assignments', ['role_id'])

    op.create_table(
        'resource_availability',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('resource_id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('availability_type', sa.String(length=20), nullable=False),
        sa.Column('recurrence_pattern', JSON_TYPE, nullable=True),
        sa.Column('reservation_mode_override', sa.String(length=20), nullable=True),
        sa.Column('max_concurrent_override', sa.Integer(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('end_time > start_time', name='ck_resource_availability_window'),
        sa.CheckConstraint("availability_type IN ('available', 'blocked')", name='ck_resource_availability_type'),
    )
    op.create_index('ix_resource_availability_id', 'resource_availability', ['id'])
    op.create_index('ix_resource_availability_resource_id', 'resource_availability', ['resource_id'])
    op.create_index('ix_resource_availability_clinic_id', 'resource_availability', ['clinic_id'])
    op.create_index(
        'idx_resource_availability_resource_start',
        'resource_availability',
        ['resource_id', 'start_time']
    )

    # ===== Procedures =====
    op.create_table(
        'procedures',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=50), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('procedure_type', sa.String(length=20), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=True),
        sa.Column('buffer_before_minutes', sa.Integer(), nullable=False),
        sa.Column('buffer_after_minutes', sa.Integer(), nullable=False),
        sa.Column('color', sa.String(length=20), nullable=True),
        sa.Column('metadata', JSON_TYPE, nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('clinic_id', 'code', name='uq_procedure_clinic_code'),
        sa.CheckConstraint("procedure_type IN ('atomic', 'composite')", name='ck_procedure_type'),
        sa.CheckConstraint('duration_minutes IS NULL OR duration_minutes > 0', name='ck_procedure_duration_positive'),
        sa.CheckConstraint('buffer_before_minutes >= 0 AND buffer_after_minutes >= 0', name='ck_procedure_buffers'),
    )
    op.create_index('ix_procedures_id', 'procedures', ['id'])
    op.create_index('ix_procedures_clinic_id', 'procedures', ['clinic_id'])

    op.create_table(
        'procedure_compositions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('parent_procedure_id', sa.Integer(), nullable=False),
        sa.Column('child_procedure_id', sa.Integer(), nullable=False),
        sa.Column('sequence_order', sa.Integer(), nullable=False),
        sa.Column('gap_after_minutes', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['parent_procedure_id'], ['procedures.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['child_procedure_id'], ['procedures.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('parent_procedure_id', 'sequence_order', name='uq_procedure_composition_order'),
        sa.CheckConstraint('parent_procedure_id <> child_procedure_id', name='ck_procedure_composition_not_self'),
        sa.CheckConstraint('gap_after_minutes >= 0', name='ck_procedure_composition_gap'),
    )
    op.create_index('ix_procedure_compositions_id', 'procedure_compositions', ['id'])
    op.create_index('ix_procedure_compositions_parent_procedure_id', 'procedure_compositions', ['parent_procedure_id'])
    op.create_index('ix_procedure_compositions_child_procedure_id', 'procedure_compositions', ['child_procedure_id'])

    op.create_table(
        'procedure_requirements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('procedure_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('quantity_min', sa.Integer(), nullable=False),
        sa.Column('quantity_max', sa.Integer(), nullable=True),
        sa.Column('is_required', sa.Boolean(), nullable=False),
        sa.Column('offset_start_minutes', sa.Integer(), nullable=False),
        sa.Column('offset_end_minutes', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['procedure_id'], ['procedures.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['role_id'], ['resource_roles.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity_min >= 0', name='ck_procedure_requirement_quantity_min'),
        sa.CheckConstraint('offset_start_minutes >= 0', name='ck_procedure_requirement_offset_start'),
    )
    op.create_index('ix_procedure_requirements_id', 'procedure_requirements', ['id'])
    op.create_index('ix_procedure_requirements_procedure_id', 'procedure_requirements', ['procedure_id'])
    op.create_index('ix_procedure_requirements_role_id', 'procedure_requirements', ['role_id'])

    op.create_table(
        'procedure_slots',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('procedure_id', sa.Integer(), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('generation_type', sa.String(length=20), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['procedure_id'], ['procedures.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('end_time > start_time', name='ck_procedure_slot_window'),
        sa.CheckConstraint("status IN ('available', 'booked', 'cancelled', 'blocked')", name='ck_procedure_slot_status'),
    )
    op.create_index('ix_procedure_slots_id', 'procedure_slots', ['id'])
    op.create_index('ix_procedure_slots_clinic_id', 'procedure_slots', ['clinic_id'])
    op.create_index('ix_procedure_slots_procedure_id', 'procedure_slots', ['procedure_id'])
    op.create_index('idx_procedure_slots_procedure_start', 'procedure_slots', ['procedure_id', 'start_time'])
    op.create_index(
        'idx_procedure_slots_clinic_status_start',
        'procedure_slots',
        ['clinic_id', 'status', 'start_time']
    )

    # ===== Appointments =====
    op.create_table(
        'appointments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('clinic_id', sa.Integer(), nullable=False),
        sa.Column('slot_id', sa.Integer(), nullable=False),
        sa.Column('contact_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by', sa.Integer(), nullable=True),
        sa.Column('cancelled_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('rescheduled_from_id', sa.Integer(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['slot_id'], ['procedure_slots.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['rescheduled_from_id'], ['appointments.id'], ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "status IN ('scheduled', 'confirmed', 'checked_in', 'in_progress', 'completed', 'cancelled', 'no_show')",
            name='ck_appointment_status'
        ),
    )
    op.create_index('ix_appointments_id', 'appointments', ['id'])
    op.create_index('ix_appointments_clinic_id', 'appointments', ['clinic_id'])
    op.create_index('ix_appointments_slot_id', 'appointments', ['slot_id'])
    op.create_index('ix_appointments_contact_id', 'appointments', ['contact_id'])
    op.create_index('idx_appointments_clinic_status', 'appointments', ['clinic_id', 'status'])

    op.create_table(
        'appointment_preferences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('appointment_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('resource_id', sa.Integer(), nullable=False),
        sa.Column('preference_type', sa.String(length=20), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['role_id'], ['resource_roles.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("preference_type IN ('preferred', 'required')", name='ck_appointment_preference_type'),
    )
    op.create_index('ix_appointment_preferences_id', 'appointment_preferences', ['id'])
    op.create_index('ix_appointment_preferences_appointment_id', 'appointment_preferences', ['appointment_id'])

    op.create_table(
        'appointment_resources',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('appointment_id', sa.Integer(), nullable=False),
        sa.Column('resource_id', sa.Integer(), nullable=False),
        sa.Column('role_id', sa.Integer(), nullable=False),
        sa.Column('reserved_start', sa.DateTime(), nullable=False),
        sa.Column('reserved_end', sa.DateTime(), nullable=False),
        sa.Column('reservation_mode', sa.String(length=20), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('quantity_consumed', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['appointment_id'], ['appointments.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['resource_id'], ['resources.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['role_id'], ['resource_roles.id'], ondelete='RESTRICT'),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('reserved_end > reserved_start', name='ck_appointment_resource_window'),
        sa.CheckConstraint(
            'quantity_consumed IS NULL OR quantity_consumed >= 0',
            name='ck_appointment_resource_quantity'
        ),
        sa.CheckConstraint(
            "status IN ('assigned', 'confirmed', 'declined', 'needs_coverage', 'released')",
            name='ck_appointment_resource_status'
        ),
    )
    op.create_index('ix_appointment_resources_id', 'appointment_resources', ['id'])
    op.create_index('ix_appointment_resources_appointment_id', 'appointment_resources', ['appointment_id'])
    op.create_index('ix_appointment_resources_resource_id', 'appointment_resources', ['resource_id'])
    op.create_index(
        'idx_appointment_resources_resource_window',
        'appointment_resources',
        ['resource_id', 'reserved_start', 'reserved_end']
    )


def downgrade() -> None:
    """
    Drop all scheduling tables.

    Indexes and constraints go with their tables.
    """
    op.drop_table('appointment_resources')
    op.drop_table('appointment_preferences')
    op.drop_table('appointments')
    op.drop_table('procedure_slots')
    op.drop_table('procedure_requirements')
    op.drop_table('procedure_compositions')
    op.drop_table('procedures')
    op.drop_table('resource_availability')
    op.drop_table('resource_role_assignments')
    op.drop_table('resource_roles')
    op.drop_table('resources')
    op.drop_table('resource_subtypes')
    op.drop_table('resource_types')
