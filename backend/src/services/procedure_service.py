"""
Procedure definition service.

Manages atomic and composite procedures, their composition tree and their
role requirements, and computes durations and flattened requirement lists
used by the slot generator and the booking engine.

Duration rules:
- atomic: duration_minutes + buffer_before + buffer_after
- composite: buffer_before + buffer_after + sum(total_duration(child) + gap_after)
"""

import logging
from typing import Any, Dict, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.constants import PROCEDURE_TYPES
from core.exceptions import InactiveResourceError, NotFoundError, ValidationError
from core.sentinels import MISSING, is_provided
from models import Procedure, ProcedureComposition, ProcedureRequirement
from services.resource_service import ResourceService
from shared_types.scheduling import ExpandedRequirement
from utils.storage_errors import storage_guard

logger = logging.getLogger(__name__)


def validate_requirement_bounds(
    quantity_min: int,
    quantity_max: Optional[int],
    offset_start_minutes: int,
    offset_end_minutes: Optional[int],
    total_duration_minutes: Optional[int] = None,
) -> None:
    """
    Validate requirement quantities and offsets.

    Raises:
        ValidationError: On negative values, quantity_min > quantity_max,
            offset_start >= offset_end, or an offset beyond the procedure end
    """
    if quantity_min < 0:
        raise ValidationError("quantity_min cannot be negative")
    if quantity_max is not None and quantity_min > quantity_max:
        raise ValidationError("quantity_min cannot exceed quantity_max")
    if offset_start_minutes < 0:
        raise ValidationError("offset_start_minutes cannot be negative")
    if offset_end_minutes is not None and offset_start_minutes >= offset_end_minutes:
        raise ValidationError("offset_start_minutes must be before offset_end_minutes")
    if total_duration_minutes is not None:
        end = offset_end_minutes if offset_end_minutes is not None else total_duration_minutes
        if offset_start_minutes >= total_duration_minutes or end > total_duration_minutes:
            raise ValidationError(
                f"Requirement window {offset_start_minutes}-{end} exceeds the procedure duration "
                f"of {total_duration_minutes} minutes"
            )


def _validate_durations(
    procedure_type: str,
    duration_minutes: Optional[int],
    buffer_before_minutes: int,
    buffer_after_minutes: int,
) -> None:
    if procedure_type not in PROCEDURE_TYPES:
        raise ValidationError(f"Invalid procedure type '{procedure_type}'")
    if buffer_before_minutes < 0 or buffer_after_minutes < 0:
        raise ValidationError("Buffers cannot be negative")
    if procedure_type == "atomic":
        if duration_minutes is None or duration_minutes <= 0:
            raise ValidationError("Atomic procedures need a positive duration_minutes")
    elif duration_minutes is not None:
        raise ValidationError("Composite procedures derive their duration from their children")


class ProcedureService:
    """Service class for procedure definitions."""

    # ===== Procedures =====

    @staticmethod
    def get_procedure(db: Session, clinic_id: int, procedure_id: int) -> Procedure:
        """
        Get a procedure by id.

        Raises:
            NotFoundError: If the procedure does not exist in the clinic
        """
        procedure = db.query(Procedure).filter(
            Procedure.id == procedure_id,
            Procedure.clinic_id == clinic_id
        ).first()
        if not procedure:
            raise NotFoundError("Procedure", procedure_id)
        return procedure

    @staticmethod
    def get_active_procedure(db: Session, clinic_id: int, procedure_id: int) -> Procedure:
        """Get a procedure, raising InactiveResourceError if it is deactivated."""
        procedure = ProcedureService.get_procedure(db, clinic_id, procedure_id)
        if not procedure.is_active:
            raise InactiveResourceError(f"Procedure {procedure_id} is inactive")
        return procedure

    @staticmethod
    def list_procedures(
        db: Session,
        clinic_id: int,
        active_only: bool = True,
        procedure_type: Optional[str] = None,
    ) -> List[Procedure]:
        query = db.query(Procedure).filter(Procedure.clinic_id == clinic_id)
        if active_only:
            query = query.filter(Procedure.is_active == True)  # noqa: E712
        if procedure_type is not None:
            query = query.filter(Procedure.procedure_type == procedure_type)
        return query.order_by(Procedure.name, Procedure.id).all()

    @staticmethod
    @storage_guard
    def create_procedure(
        db: Session,
        clinic_id: int,
        code: str,
        name: str,
        procedure_type: str = "atomic",
        duration_minutes: Optional[int] = None,
        buffer_before_minutes: int = 0,
        buffer_after_minutes: int = 0,
        description: Optional[str] = None,
        color: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Procedure:
        """
        Create a procedure.

        Raises:
            ValidationError: Missing/negative durations or duplicate code
        """
        _validate_durations(procedure_type, duration_minutes, buffer_before_minutes, buffer_after_minutes)
        duplicate = db.query(Procedure).filter(
            Procedure.clinic_id == clinic_id,
            Procedure.code == code
        ).first()
        if duplicate:
            raise ValidationError(f"Procedure code '{code}' already exists")

        procedure = Procedure(
            clinic_id=clinic_id,
            code=code,
            name=name,
            description=description,
            procedure_type=procedure_type,
            duration_minutes=duration_minutes,
            buffer_before_minutes=buffer_before_minutes,
            buffer_after_minutes=buffer_after_minutes,
            color=color,
            procedure_metadata=metadata,
        )
        db.add(procedure)
        db.commit()
        logger.info(f"Created {procedure_type} procedure {procedure.id} ({code}) for clinic {clinic_id}")
        return procedure

    @staticmethod
    @storage_guard
    def update_procedure(
        db: Session,
        clinic_id: int,
        procedure_id: int,
        name: Any = MISSING,
        description: Any = MISSING,
        duration_minutes: Any = MISSING,
        buffer_before_minutes: Any = MISSING,
        buffer_after_minutes: Any = MISSING,
        color: Any = MISSING,
        metadata: Any = MISSING,
        is_active: Any = MISSING,
    ) -> Procedure:
        """
        Update a procedure. The procedure type cannot change.

        Shortening a procedure is rejected when a requirement of this
        procedure or of a composite containing it would end past the new
        duration.
        """
        procedure = ProcedureService.get_procedure(db, clinic_id, procedure_id)

        new_duration = duration_minutes if is_provided(duration_minutes) else procedure.duration_minutes
        new_before = buffer_before_minutes if is_provided(buffer_before_minutes) else procedure.buffer_before_minutes
        new_after = buffer_after_minutes if is_provided(buffer_after_minutes) else procedure.buffer_after_minutes
        _validate_durations(procedure.procedure_type, new_duration, new_before, new_after)

        if is_provided(name):
            procedure.name = name
        if is_provided(description):
            procedure.description = description
        if is_provided(color):
            procedure.color = color
        if is_provided(metadata):
            procedure.procedure_metadata = metadata
        if is_provided(is_active):
            procedure.is_active = bool(is_active)
        procedure.duration_minutes = new_duration
        procedure.buffer_before_minutes = new_before
        procedure.buffer_after_minutes = new_after
        db.flush()

        ProcedureService._revalidate_requirements(db, procedure)
        db.commit()
        return procedure

    @staticmethod
    @storage_guard
    def deactivate_procedure(db: Session, clinic_id: int, procedure_id: int) -> Procedure:
        """Deactivate a procedure. Booked appointments are not affected."""
        procedure = ProcedureService.get_procedure(db, clinic_id, procedure_id)
        procedure.is_active = False
        db.commit()
        logger.info(f"Deactivated procedure {procedure_id} for clinic {clinic_id}")
        return procedure

    # ===== Composition =====

    @staticmethod
    def _descendant_ids(db: Session, procedure_id: int) -> Set[int]:
        """All procedures reachable below procedure_id through compositions."""
        seen: Set[int] = set()
        stack = [procedure_id]
        while stack:
            current = stack.pop()
            child_ids = [
                row.child_procedure_id
                for row in db.query(ProcedureComposition.child_procedure_id).filter(
                    ProcedureComposition.parent_procedure_id == current
                ).all()
            ]
            for child_id in child_ids:
                if child_id not in seen:
                    seen.add(child_id)
                    stack.append(child_id)
        return seen

    @staticmethod
    def _ancestor_ids(db: Session, procedure_id: int) -> Set[int]:
        """All composites containing procedure_id, directly or transitively."""
        seen: Set[int] = set()
        stack = [procedure_id]
        while stack:
            current = stack.pop()
            parent_ids = [
                row.parent_procedure_id
                for row in db.query(ProcedureComposition.parent_procedure_id).filter(
                    ProcedureComposition.child_procedure_id == current
                ).all()
            ]
            for parent_id in parent_ids:
                if parent_id not in seen:
                    seen.add(parent_id)
                    stack.append(parent_id)
        return seen

    @staticmethod
    @storage_guard
    def add_child(
        db: Session,
        clinic_id: int,
        parent_procedure_id: int,
        child_procedure_id: int,
        sequence_order: Optional[int] = None,
        gap_after_minutes: int = 0,
    ) -> ProcedureComposition:
        """
        Append (or insert at sequence_order) a child to a composite procedure.

        Raises:
            ValidationError: Parent not composite, negative gap, duplicate
                sequence_order, or a cycle in the composition tree
        """
        parent = ProcedureService.get_procedure(db, clinic_id, parent_procedure_id)
        ProcedureService.get_procedure(db, clinic_id, child_procedure_id)
        if not parent.is_composite:
            raise ValidationError("Children can only be added to composite procedures")
        if gap_after_minutes < 0:
            raise ValidationError("gap_after_minutes cannot be negative")
        if child_procedure_id == parent_procedure_id or parent_procedure_id in ProcedureService._descendant_ids(db, child_procedure_id):
            raise ValidationError("Procedure composition cannot contain cycles")

        if sequence_order is None:
            current_max = db.query(func.max(ProcedureComposition.sequence_order)).filter(
                ProcedureComposition.parent_procedure_id == parent_procedure_id
            ).scalar()
            sequence_order = (current_max or 0) + 1
        else:
            taken = db.query(ProcedureComposition).filter(
                ProcedureComposition.parent_procedure_id == parent_procedure_id,
                ProcedureComposition.sequence_order == sequence_order
            ).first()
            if taken:
                raise ValidationError(f"sequence_order {sequence_order} is already used")

        link = ProcedureComposition(
            parent_procedure_id=parent_procedure_id,
            child_procedure_id=child_procedure_id,
            sequence_order=sequence_order,
            gap_after_minutes=gap_after_minutes,
        )
        db.add(link)
        db.commit()
        db.refresh(parent)
        return link

    @staticmethod
    @storage_guard
    def remove_child(db: Session, clinic_id: int, parent_procedure_id: int, composition_id: int) -> None:
        """Remove a child link, rejecting removals that strand requirement offsets."""
        parent = ProcedureService.get_procedure(db, clinic_id, parent_procedure_id)
        link = db.query(ProcedureComposition).filter(
            ProcedureComposition.id == composition_id,
            ProcedureComposition.parent_procedure_id == parent_procedure_id
        ).first()
        if not link:
            raise NotFoundError("ProcedureComposition", composition_id)
        db.delete(link)
        db.flush()
        db.expire(parent, ["children"])
        ProcedureService._revalidate_requirements(db, parent)
        db.commit()
        db.expire(parent, ["children"])

    @staticmethod
    @storage_guard
    def reorder_children(
        db: Session,
        clinic_id: int,
        parent_procedure_id: int,
        order: Dict[int, int],
    ) -> List[ProcedureComposition]:
        """
        Move children of a composite procedure to new sequence positions.

        Args:
            order: Composition id -> new sequence_order. Children not listed
                keep their position. Gaps travel with their child.

        Returns:
            The parent's composition links in their new order

        Raises:
            NotFoundError: If a composition id is not a child of the parent
            ValidationError: If two children would share a sequence_order
        """
        parent = ProcedureService.get_procedure(db, clinic_id, parent_procedure_id)
        links = {link.id: link for link in parent.children}
        for composition_id in order:
            if composition_id not in links:
                raise NotFoundError("ProcedureComposition", composition_id)
        if any(value < 1 for value in order.values()):
            raise ValidationError("sequence_order must be positive")

        final = {link_id: order.get(link_id, link.sequence_order) for link_id, link in links.items()}
        if len(set(final.values())) != len(final):
            raise ValidationError("Each child must have a distinct sequence_order")

        # Park moved links on unused negative positions first so the
        # (parent, sequence_order) unique constraint holds after every flush
        moved = sorted(order)
        for index, composition_id in enumerate(moved):
            links[composition_id].sequence_order = -(index + 1)
        db.flush()
        for composition_id in moved:
            links[composition_id].sequence_order = order[composition_id]
        db.commit()
        db.expire(parent, ["children"])

        logger.info(f"Reordered {len(moved)} children of procedure {parent_procedure_id}")
        return list(parent.children)

    # ===== Requirements =====

    @staticmethod
    @storage_guard
    def add_requirement(
        db: Session,
        clinic_id: int,
        procedure_id: int,
        role_id: int,
        quantity_min: int = 1,
        quantity_max: Optional[int] = None,
        is_required: bool = True,
        offset_start_minutes: int = 0,
        offset_end_minutes: Optional[int] = None,
        notes: Optional[str] = None,
    ) -> ProcedureRequirement:
        """
        Attach a role requirement to a procedure.

        Offsets are minutes from the start of the procedure's span (buffers
        included); offset_end_minutes=None holds the role until the end.

        Raises:
            ValidationError: Invalid bounds (see validate_requirement_bounds)
        """
        procedure = ProcedureService.get_procedure(db, clinic_id, procedure_id)
        ResourceService.get_role(db, clinic_id, role_id)
        validate_requirement_bounds(
            quantity_min, quantity_max, offset_start_minutes, offset_end_minutes,
            ProcedureService.total_duration(db, procedure),
        )

        requirement = ProcedureRequirement(
            procedure_id=procedure_id,
            role_id=role_id,
            quantity_min=quantity_min,
            quantity_max=quantity_max,
            is_required=is_required,
            offset_start_minutes=offset_start_minutes,
            offset_end_minutes=offset_end_minutes,
            notes=notes,
        )
        db.add(requirement)
        db.commit()
        db.refresh(procedure)
        return requirement

    @staticmethod
    def _get_requirement(db: Session, clinic_id: int, requirement_id: int) -> ProcedureRequirement:
        requirement = db.query(ProcedureRequirement).join(
            Procedure, ProcedureRequirement.procedure_id == Procedure.id
        ).filter(
            ProcedureRequirement.id == requirement_id,
            Procedure.clinic_id == clinic_id
        ).first()
        if not requirement:
            raise NotFoundError("ProcedureRequirement", requirement_id)
        return requirement

    @staticmethod
    @storage_guard
    def update_requirement(
        db: Session,
        clinic_id: int,
        requirement_id: int,
        quantity_min: Any = MISSING,
        quantity_max: Any = MISSING,
        is_required: Any = MISSING,
        offset_start_minutes: Any = MISSING,
        offset_end_minutes: Any = MISSING,
        notes: Any = MISSING,
    ) -> ProcedureRequirement:
        """Update a requirement. Omitted fields are left untouched."""
        requirement = ProcedureService._get_requirement(db, clinic_id, requirement_id)
        new_min = quantity_min if is_provided(quantity_min) else requirement.quantity_min
        new_max = quantity_max if is_provided(quantity_max) else requirement.quantity_max
        new_start = offset_start_minutes if is_provided(offset_start_minutes) else requirement.offset_start_minutes
        new_end = offset_end_minutes if is_provided(offset_end_minutes) else requirement.offset_end_minutes
        validate_requirement_bounds(
            new_min, new_max, new_start, new_end,
            ProcedureService.total_duration(db, requirement.procedure),
        )

        requirement.quantity_min = new_min
        requirement.quantity_max = new_max
        requirement.offset_start_minutes = new_start
        requirement.offset_end_minutes = new_end
        if is_provided(is_required):
            requirement.is_required = bool(is_required)
        if is_provided(notes):
            requirement.notes = notes
        db.commit()
        return requirement

    @staticmethod
    @storage_guard
    def remove_requirement(db: Session, clinic_id: int, requirement_id: int) -> None:
        requirement = ProcedureService._get_requirement(db, clinic_id, requirement_id)
        procedure = requirement.procedure
        db.delete(requirement)
        db.commit()
        db.expire(procedure, ["requirements"])

    @staticmethod
    def _revalidate_requirements(db: Session, procedure: Procedure) -> None:
        """Re-check requirement offsets of a procedure and every composite containing it."""
        affected = [procedure]
        ancestor_ids = ProcedureService._ancestor_ids(db, procedure.id)
        if ancestor_ids:
            affected.extend(db.query(Procedure).filter(Procedure.id.in_(ancestor_ids)).all())
        for item in affected:
            db.expire(item, ["children"])
            total = ProcedureService.total_duration(db, item)
            for requirement in item.requirements:
                validate_requirement_bounds(
                    requirement.quantity_min,
                    requirement.quantity_max,
                    requirement.offset_start_minutes,
                    requirement.offset_end_minutes,
                    total,
                )

    # ===== Duration and expansion =====

    @staticmethod
    def total_duration(
        db: Session,
        procedure: Procedure,
        _cache: Optional[Dict[int, int]] = None,
        _visiting: Optional[Set[int]] = None,
    ) -> int:
        """
        Total minutes a procedure occupies, buffers included.

        Args:
            db: Database session
            procedure: Procedure to measure

        Returns:
            Duration in minutes

        Raises:
            ValidationError: If the composition tree contains a cycle
        """
        cache = _cache if _cache is not None else {}
        visiting = _visiting if _visiting is not None else set()
        if procedure.id in cache:
            return cache[procedure.id]
        if procedure.id in visiting:
            raise ValidationError(f"Procedure {procedure.id} is part of a composition cycle")

        if procedure.procedure_type == "atomic":
            total = (procedure.duration_minutes or 0) + procedure.buffer_before_minutes + procedure.buffer_after_minutes
        else:
            visiting.add(procedure.id)
            total = procedure.buffer_before_minutes + procedure.buffer_after_minutes
            for link in procedure.children:
                total += ProcedureService.total_duration(db, link.child, cache, visiting) + link.gap_after_minutes
            visiting.discard(procedure.id)

        cache[procedure.id] = total
        return total

    @staticmethod
    def expand_requirements(db: Session, procedure: Procedure) -> List[ExpandedRequirement]:
        """
        Flatten a procedure's requirements, including those of its children.

        The procedure's own requirements are offset from its span start. The
        children of a composite are laid out in sequence after its
        buffer_before, each followed by its gap; each child's requirements
        are offset from that child's start.

        Raises:
            InactiveResourceError: If a child procedure is inactive
            ValidationError: If a composite has no children, or on a cycle
        """
        expanded: List[ExpandedRequirement] = []
        cache: Dict[int, int] = {}
        ProcedureService._expand_into(db, procedure, 0, expanded, cache, set())
        return expanded

    @staticmethod
    def _expand_into(
        db: Session,
        procedure: Procedure,
        base_offset: int,
        out: List[ExpandedRequirement],
        cache: Dict[int, int],
        visiting: Set[int],
    ) -> None:
        if procedure.id in visiting:
            raise ValidationError(f"Procedure {procedure.id} is part of a composition cycle")
        if not procedure.is_active:
            raise InactiveResourceError(f"Procedure {procedure.id} is inactive")
        if procedure.is_composite and not procedure.children:
            raise ValidationError(f"Composite procedure {procedure.id} has no children")

        total = ProcedureService.total_duration(db, procedure, cache)
        for requirement in procedure.requirements:
            offset_end = requirement.offset_end_minutes if requirement.offset_end_minutes is not None else total
            out.append(ExpandedRequirement(
                requirement_id=requirement.id,
                procedure_id=procedure.id,
                role_id=requirement.role_id,
                quantity_min=requirement.quantity_min,
                quantity_max=requirement.quantity_max if requirement.quantity_max is not None else requirement.quantity_min,
                is_required=requirement.is_required,
                offset_start_minutes=base_offset + requirement.offset_start_minutes,
                offset_end_minutes=base_offset + offset_end,
            ))

        if procedure.is_composite:
            visiting.add(procedure.id)
            cursor = base_offset + procedure.buffer_before_minutes
            for link in procedure.children:
                ProcedureService._expand_into(db, link.child, cursor, out, cache, visiting)
                cursor += ProcedureService.total_duration(db, link.child, cache) + link.gap_after_minutes
            visiting.discard(procedure.id)

    @staticmethod
    def get_procedure_details(db: Session, clinic_id: int, procedure_id: int) -> Dict[str, Any]:
        """Procedure with its children, requirements and total duration."""
        procedure = ProcedureService.get_procedure(db, clinic_id, procedure_id)
        return {
            "procedure": procedure,
            "total_duration_minutes": ProcedureService.total_duration(db, procedure),
            "children": [
                {
                    "composition_id": link.id,
                    "child_procedure_id": link.child_procedure_id,
                    "child_name": link.child.name,
                    "sequence_order": link.sequence_order,
                    "gap_after_minutes": link.gap_after_minutes,
                    "child_total_duration_minutes": ProcedureService.total_duration(db, link.child),
                }
                for link in procedure.children
            ],
            "requirements": list(procedure.requirements),
        }
