"""
Module: fulfillment_kernel.services.part_lifecycle_service
Responsibility: Persist part lifecycle transitions planned by the
    LifecycleEngine, plus the descriptive CRUD around parts (create, batch
    create, detail edits, note appends, owner assignment, deletion).
Architecture position: Kernel > Services.  Imports domain/ (engine, DTOs),
    models/, and exceptions.  MUST NOT import fulfillment_services or
    fulfillment_config.

Invariants enforced:
    P1 -- quantity >= 1, costs >= 0 (validated before any write).
    P2 -- status only ever takes a PartStatus value.
    P4 -- lifecycle dates are never rewritten (the engine only sets them
          while unset; db/immutability.py blocks anything else).
    P5 -- the part row is locked (FOR UPDATE / version counter) for the
          whole read-plan-write cycle of one transition.

Failure modes:
    - PartNotFoundError: unknown part id.
    - InvalidTransitionError / ValidationError: from the engine.
    - OptimisticLockError: concurrent writer on the same part.

Audit relevance:
    Every applied transition is logged as ``part_transition_applied`` with
    from/to status and the fields written.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Iterable, Mapping

from sqlalchemy.orm import Session

from fulfillment_kernel.db.base import new_id
from fulfillment_kernel.domain.bulk import AssignmentRole
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import PartRecord
from fulfillment_kernel.domain.lifecycle import (
    AssignInstaller,
    LifecycleEngine,
    MarkInstalled,
    Order,
    PartCommand,
    Receive,
    ReceiveAndAssignInstaller,
    SetStatusOverride,
    TransitionPlan,
    append_note,
)
from fulfillment_kernel.domain.validation import (
    require_money,
    require_text,
    require_whole_number,
)
from fulfillment_kernel.domain.values import PartStatus
from fulfillment_kernel.exceptions import PartNotFoundError, ValidationError
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.part import Part
from fulfillment_kernel.services.base import BaseService

logger = get_logger("services.part_lifecycle")

# Fields a caller may edit directly.  Status, lifecycle dates, assignees and
# notes each have their own operation.
EDITABLE_PART_FIELDS = frozenset({
    "name",
    "part_number",
    "supplier",
    "quantity",
    "unit_cost",
    "sell_price",
    "est_delivery_date",
    "order_proof",
})


@dataclass(frozen=True)
class AppliedTransition:
    """A plan together with the part state after it was flushed."""

    plan: TransitionPlan
    part: PartRecord


class PartLifecycleService(BaseService[Part]):
    """
    Writes part state inside the caller's transaction.

    Contract:
        Every lifecycle method locks the part, asks the engine for a plan,
        applies the plan's patch and flushes.  Nothing is committed here.

    Guarantees:
        - An ``already_applied`` plan writes nothing.
        - Returned PartRecords reflect the flushed row.

    Non-goals:
        - Does NOT call collaborators (task creation, notification); the
          Fulfillment Service does that after commit.
    """

    def __init__(
        self,
        session: Session,
        engine: LifecycleEngine,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._engine = engine
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Lookup
    # -------------------------------------------------------------------------

    def _lock(self, part_id: str) -> Part:
        part = self._locked_get(Part, part_id)
        if part is None:
            raise PartNotFoundError(part_id)
        return part

    def get(self, part_id: str) -> PartRecord:
        part = self.session.get(Part, part_id)
        if part is None:
            raise PartNotFoundError(part_id)
        return PartRecord.from_model(part)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def apply(self, part_id: str, command: PartCommand) -> AppliedTransition:
        """Plan and persist one command on one part."""
        part = self._lock(part_id)
        plan = self._engine.plan(
            PartRecord.from_model(part), command, self._clock.today()
        )

        if plan.already_applied:
            logger.info(
                "part_transition_already_applied",
                extra={
                    "part_id": part_id,
                    "action": plan.action,
                    "status": plan.to_status,
                },
            )
            return AppliedTransition(plan=plan, part=PartRecord.from_model(part))

        for field_name, value in plan.patch.items():
            setattr(part, field_name, value)
        self._flush("Part", part_id)

        logger.info(
            "part_transition_applied",
            extra={
                "part_id": part_id,
                "project_id": part.project_id,
                "action": plan.action,
                "from_status": plan.from_status,
                "to_status": plan.to_status,
                "override": plan.is_override,
                "fields": sorted(plan.patch),
            },
        )
        return AppliedTransition(plan=plan, part=PartRecord.from_model(part))

    def order(
        self,
        part_id: str,
        proof: str | None = None,
        eta: date | None = None,
        notes: str | None = None,
    ) -> AppliedTransition:
        return self.apply(part_id, Order(proof=proof, eta=eta, notes=notes))

    def receive(self, part_id: str, location_note: str | None = None) -> AppliedTransition:
        return self.apply(part_id, Receive(location_note=location_note))

    def receive_and_assign_installer(
        self,
        part_id: str,
        installer_email: str,
        location_note: str | None = None,
        create_task: bool = False,
    ) -> AppliedTransition:
        return self.apply(
            part_id,
            ReceiveAndAssignInstaller(
                installer_email=installer_email,
                location_note=location_note,
                create_task=create_task,
            ),
        )

    def assign_installer(
        self,
        part_id: str,
        installer_email: str,
        location_note: str | None = None,
        create_task: bool = False,
    ) -> AppliedTransition:
        return self.apply(
            part_id,
            AssignInstaller(
                installer_email=installer_email,
                location_note=location_note,
                create_task=create_task,
            ),
        )

    def mark_installed(self, part_id: str) -> AppliedTransition:
        return self.apply(part_id, MarkInstalled())

    def set_status(self, part_id: str, target: PartStatus | str) -> AppliedTransition:
        """Unconditional override.  Validates enum membership only."""
        return self.apply(part_id, SetStatusOverride(target=target))

    # -------------------------------------------------------------------------
    # Descriptive CRUD
    # -------------------------------------------------------------------------

    def create_part(
        self,
        project_id: str,
        name: str,
        quantity: int = 1,
        unit_cost: Decimal | int | str = Decimal("0"),
        sell_price: Decimal | int | str | None = None,
        part_number: str | None = None,
        supplier: str | None = None,
        notes: str | None = None,
        est_delivery_date: date | None = None,
        part_id: str | None = None,
    ) -> PartRecord:
        """Create a part in ``needed`` status."""
        part = self._build_part(
            project_id=project_id,
            name=name,
            quantity=quantity,
            unit_cost=unit_cost,
            sell_price=sell_price,
            part_number=part_number,
            supplier=supplier,
            notes=notes,
            est_delivery_date=est_delivery_date,
            part_id=part_id,
        )
        self.session.add(part)
        self._flush("Part", part.id)
        logger.info(
            "part_created",
            extra={"part_id": part.id, "project_id": project_id, "part_name": part.name},
        )
        return PartRecord.from_model(part)

    def add_parts(
        self, project_id: str, rows: Iterable[Mapping[str, Any]]
    ) -> list[PartRecord]:
        """
        Create several parts at once (e.g. rows extracted from a document).

        Every row is validated before anything is added, so one bad row
        rejects the whole batch.  Rows never carry a status; all parts start
        in ``needed``.
        """
        allowed = {
            "name", "quantity", "unit_cost", "sell_price", "part_number",
            "supplier", "notes", "est_delivery_date",
        }
        parts: list[Part] = []
        for index, row in enumerate(rows):
            unknown = set(row) - allowed
            if unknown:
                raise ValidationError(
                    f"rows[{index}]", f"unknown field(s): {', '.join(sorted(unknown))}"
                )
            parts.append(self._build_part(project_id=project_id, **row))

        if not parts:
            return []

        self.session.add_all(parts)
        self._flush("Part", parts[0].id)
        logger.info(
            "parts_added",
            extra={"project_id": project_id, "count": len(parts)},
        )
        return [PartRecord.from_model(p) for p in parts]

    def _build_part(
        self,
        project_id: str,
        name: str,
        quantity: int = 1,
        unit_cost: Any = Decimal("0"),
        sell_price: Any = None,
        part_number: str | None = None,
        supplier: str | None = None,
        notes: str | None = None,
        est_delivery_date: date | None = None,
        part_id: str | None = None,
    ) -> Part:
        if not project_id:
            raise ValidationError("project_id", "is required")
        return Part(
            id=part_id or new_id(),
            project_id=project_id,
            name=require_text(name, "name"),
            quantity=require_whole_number(quantity, "quantity", minimum=1),
            unit_cost=require_money(unit_cost, "unit_cost"),
            sell_price=require_money(sell_price, "sell_price", optional=True),
            part_number=part_number,
            supplier=supplier,
            notes=notes,
            est_delivery_date=est_delivery_date,
            status=PartStatus.NEEDED.value,
        )

    def update_details(self, part_id: str, **changes: Any) -> PartRecord:
        """Edit descriptive and commercial fields (see EDITABLE_PART_FIELDS)."""
        unknown = set(changes) - EDITABLE_PART_FIELDS
        if unknown:
            raise ValidationError(
                ", ".join(sorted(unknown)),
                "cannot be edited directly; use the lifecycle operations",
            )

        values = dict(changes)
        if "name" in values:
            values["name"] = require_text(values["name"], "name")
        if "quantity" in values:
            values["quantity"] = require_whole_number(
                values["quantity"], "quantity", minimum=1
            )
        if "unit_cost" in values:
            values["unit_cost"] = require_money(values["unit_cost"], "unit_cost")
        if "sell_price" in values:
            values["sell_price"] = require_money(
                values["sell_price"], "sell_price", optional=True
            )

        part = self._lock(part_id)
        for field_name, value in values.items():
            setattr(part, field_name, value)
        self._flush("Part", part_id)
        logger.info(
            "part_details_updated",
            extra={"part_id": part_id, "fields": sorted(values)},
        )
        return PartRecord.from_model(part)

    def append_note(self, part_id: str, note: str) -> PartRecord:
        if not note or not note.strip():
            raise ValidationError("note", "is empty")
        part = self._lock(part_id)
        part.notes = append_note(part.notes, note.strip())
        self._flush("Part", part_id)
        return PartRecord.from_model(part)

    def assign_owner(
        self,
        part_id: str,
        email: str | None,
        role: AssignmentRole | str = AssignmentRole.PROCUREMENT,
    ) -> PartRecord:
        """
        Set (or clear, with ``email=None``) the procurement owner or the
        installer.  Allowed at any lifecycle stage; status is untouched.
        """
        try:
            role = AssignmentRole(role)
        except ValueError:
            raise ValidationError("role", f"{role!r} is not a known assignment role")

        email = email.strip() if email else None
        name = self._engine.resolve_name(email) if email else None

        part = self._lock(part_id)
        if role == AssignmentRole.PROCUREMENT:
            part.assigned_to = email
            part.assigned_name = name
        else:
            part.installer_email = email
            part.installer_name = name
        self._flush("Part", part_id)

        logger.info(
            "part_owner_assigned",
            extra={"part_id": part_id, "role": role.value, "assignee": email},
        )
        return PartRecord.from_model(part)

    def delete(self, part_id: str) -> PartRecord:
        """Delete a part.  Raises PartNotFoundError when it is already gone."""
        part = self._lock(part_id)
        record = PartRecord.from_model(part)
        self.session.delete(part)
        self._flush("Part", part_id)
        logger.info(
            "part_deleted",
            extra={"part_id": part_id, "project_id": record.project_id},
        )
        return record
