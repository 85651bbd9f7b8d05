"""
Part Lifecycle Engine (``fulfillment_kernel.domain.lifecycle``).

Responsibility
--------------
Computes the legal next status and the metadata patch for a requested part
transition.  Two command families exist and are never merged:

* Guided commands (Order, Receive, ReceiveAndAssignInstaller,
  AssignInstaller, MarkInstalled) check the source status against
  PART_LIFECYCLE and synthesize dates, assignees and notes.
* SetStatusOverride moves a part to any status unconditionally and
  synthesizes nothing.  It exists for manual correction.

Architecture position
---------------------
**Kernel domain layer** -- pure.  Reads a PartRecord snapshot and returns a
TransitionPlan; persisting the plan is PartLifecycleService's job.  The only
collaborator is the injected Directory used for installer name resolution.

Invariants enforced
-------------------
* Status is always one of the five PartStatus values.
* Lifecycle dates are set only while unset (write-once).
* A guided command on a part already in its target status only fills
  fields that are still empty (dates, order proof, ETA, installer).  When
  nothing is left to fill the plan is ``already_applied`` with an empty
  patch.  Re-entry never appends notes or requests a task.
* Notes are appended, never replaced.

Failure modes
-------------
* InvalidTransitionError -- guided command from a source status it does
  not accept; carries the current status and the allowed source statuses.
* ValidationError -- missing installer identity, unknown override target.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, ClassVar, Union

from fulfillment_kernel.domain.collaborators import Directory
from fulfillment_kernel.domain.dtos import PartRecord, TaskRequest
from fulfillment_kernel.domain.values import PART_STATUS_VALUES, PartStatus
from fulfillment_kernel.domain.workflow import Guard, Transition, Workflow
from fulfillment_kernel.exceptions import InvalidTransitionError, ValidationError

# =============================================================================
# Workflow definition
# =============================================================================

INSTALLER_ASSIGNED = Guard(
    name="installer_assigned",
    description="An installer identity is supplied with the command",
)

_NEEDED = PartStatus.NEEDED.value
_ORDERED = PartStatus.ORDERED.value
_RECEIVED = PartStatus.RECEIVED.value
_READY = PartStatus.READY_TO_INSTALL.value
_INSTALLED = PartStatus.INSTALLED.value

PART_LIFECYCLE = Workflow(
    name="part_lifecycle",
    description="Physical part fulfillment from procurement to installation",
    initial_state=_NEEDED,
    states=PART_STATUS_VALUES,
    transitions=(
        Transition(_NEEDED, _ORDERED, action="order"),
        Transition(_ORDERED, _RECEIVED, action="receive"),
        # receive and assign in one step; received_date is still back-filled
        Transition(
            _ORDERED, _READY,
            action="receive_and_assign_installer",
            guard=INSTALLER_ASSIGNED,
        ),
        Transition(
            _RECEIVED, _READY,
            action="assign_installer",
            guard=INSTALLER_ASSIGNED,
        ),
        Transition(_RECEIVED, _INSTALLED, action="mark_installed"),
        Transition(_READY, _INSTALLED, action="mark_installed"),
    ),
)


# =============================================================================
# Commands
# =============================================================================


@dataclass(frozen=True)
class Order:
    """needed -> ordered.  Optional order proof URL, ETA and notes."""
    action: ClassVar[str] = "order"
    proof: str | None = None
    eta: date | None = None
    notes: str | None = None


@dataclass(frozen=True)
class Receive:
    """ordered -> received."""
    action: ClassVar[str] = "receive"
    location_note: str | None = None


@dataclass(frozen=True)
class ReceiveAndAssignInstaller:
    """ordered -> ready_to_install, skipping the received resting state."""
    action: ClassVar[str] = "receive_and_assign_installer"
    installer_email: str
    location_note: str | None = None
    create_task: bool = False


@dataclass(frozen=True)
class AssignInstaller:
    """received -> ready_to_install."""
    action: ClassVar[str] = "assign_installer"
    installer_email: str
    location_note: str | None = None
    create_task: bool = False


@dataclass(frozen=True)
class MarkInstalled:
    """received | ready_to_install -> installed."""
    action: ClassVar[str] = "mark_installed"


@dataclass(frozen=True)
class SetStatusOverride:
    """Unconditional status correction.  No guards, no metadata."""
    action: ClassVar[str] = "set_status"
    target: str


GuidedCommand = Union[
    Order, Receive, ReceiveAndAssignInstaller, AssignInstaller, MarkInstalled
]
PartCommand = Union[GuidedCommand, SetStatusOverride]

GUIDED_COMMAND_TYPES: tuple[type, ...] = (
    Order,
    Receive,
    ReceiveAndAssignInstaller,
    AssignInstaller,
    MarkInstalled,
)


def is_guided(command: PartCommand) -> bool:
    return isinstance(command, GUIDED_COMMAND_TYPES)


# =============================================================================
# Plan
# =============================================================================


@dataclass(frozen=True)
class LifecycleTexts:
    """Wording used when synthesizing notes and install tasks."""
    order_note_prefix: str = "Order notes: "
    location_note_prefix: str = "Location: "
    task_title_template: str = "Install: {name}"
    task_description_template: str = "Install part{part_number_suffix}"
    task_status: str = "todo"
    task_priority: str = "medium"


@dataclass(frozen=True)
class TransitionPlan:
    """
    The engine's decision for one command on one part.

    Contract:
        ``patch`` maps Part attribute names to new values; applying it is
        the only write the transition needs.  ``task_request`` is set only
        when the command asked for an install task and the transition is
        not already applied.
    """

    part_id: str
    action: str
    from_status: str
    to_status: str
    patch: dict[str, Any] = field(default_factory=dict)
    already_applied: bool = False
    is_override: bool = False
    task_request: TaskRequest | None = None

    @property
    def status_changed(self) -> bool:
        return self.from_status != self.to_status


def append_note(existing: str | None, addition: str) -> str:
    """Append a line to free-text notes, never replacing prior content."""
    return f"{existing or ''}\n{addition}".strip()


# =============================================================================
# Engine
# =============================================================================


class LifecycleEngine:
    """
    Pure transition planner for parts.

    Contract:
        ``plan(part, command, today)`` never mutates its inputs and never
        performs I/O apart from Directory.resolve for installer names.

    Guarantees:
        - Guided plans only contain fields relevant to the transition.
        - Override plans contain ``status`` only.
    """

    def __init__(
        self,
        directory: Directory,
        texts: LifecycleTexts | None = None,
        workflow: Workflow = PART_LIFECYCLE,
    ):
        self._directory = directory
        self._texts = texts or LifecycleTexts()
        self._workflow = workflow

    @property
    def workflow(self) -> Workflow:
        return self._workflow

    def plan(self, part: PartRecord, command: PartCommand, today: date) -> TransitionPlan:
        if isinstance(command, SetStatusOverride):
            return self.plan_override(part, command.target)
        if not is_guided(command):
            raise ValidationError(
                "command", f"unsupported command type {type(command).__name__}"
            )
        return self._plan_guided(part, command, today)

    def plan_override(self, part: PartRecord, target: str) -> TransitionPlan:
        target_value = _coerce_status(target)
        return TransitionPlan(
            part_id=part.id,
            action=SetStatusOverride.action,
            from_status=part.status,
            to_status=target_value,
            patch={"status": target_value} if target_value != part.status else {},
            already_applied=target_value == part.status,
            is_override=True,
        )

    # -------------------------------------------------------------------------
    # Guided transitions
    # -------------------------------------------------------------------------

    def _plan_guided(
        self, part: PartRecord, command: GuidedCommand, today: date
    ) -> TransitionPlan:
        installer_email = None
        if isinstance(command, (ReceiveAndAssignInstaller, AssignInstaller)):
            installer_email = (command.installer_email or "").strip()
            if not installer_email:
                raise ValidationError(
                    "installer_email",
                    f"{command.action} requires an installer identity",
                )

        action = command.action
        target = self._workflow.target_of(action)

        if part.status == target:
            patch = self._fill_unset(part, command, today, installer_email)
            return TransitionPlan(
                part_id=part.id,
                action=action,
                from_status=part.status,
                to_status=target,
                patch=patch,
                already_applied=not patch,
            )

        if self._workflow.find(part.status, action) is None:
            raise InvalidTransitionError(
                part_id=part.id,
                action=action,
                current_status=part.status,
                allowed_from=self._workflow.allowed_from(action),
            )

        patch: dict[str, Any] = {"status": target}
        task_request = None

        if isinstance(command, Order):
            if part.order_date is None:
                patch["order_date"] = today
            if command.proof:
                patch["order_proof"] = command.proof
            if command.eta is not None:
                patch["est_delivery_date"] = command.eta
            if command.notes and command.notes.strip():
                patch["notes"] = append_note(
                    part.notes, f"{self._texts.order_note_prefix}{command.notes.strip()}"
                )

        elif isinstance(command, Receive):
            if part.received_date is None:
                patch["received_date"] = today
            self._add_location_note(patch, part, command.location_note)

        elif isinstance(command, (ReceiveAndAssignInstaller, AssignInstaller)):
            if part.received_date is None:
                patch["received_date"] = today
            patch["installer_email"] = installer_email
            patch["installer_name"] = self.resolve_name(installer_email)
            self._add_location_note(patch, part, command.location_note)
            if command.create_task:
                task_request = self.build_task_request(
                    part, installer_email, command.location_note
                )

        elif isinstance(command, MarkInstalled):
            if part.installed_date is None:
                patch["installed_date"] = today

        return TransitionPlan(
            part_id=part.id,
            action=action,
            from_status=part.status,
            to_status=target,
            patch=patch,
            task_request=task_request,
        )

    def _fill_unset(
        self,
        part: PartRecord,
        command: GuidedCommand,
        today: date,
        installer_email: str | None,
    ) -> dict[str, Any]:
        """
        Re-entry patch for a part already in the command's target status.

        Only fields that are still empty are written; notes are not appended
        again and no install task is requested.
        """
        candidates: dict[str, Any] = {}
        if isinstance(command, Order):
            candidates = {
                "order_date": today,
                "order_proof": command.proof or None,
                "est_delivery_date": command.eta,
            }
        elif isinstance(command, Receive):
            candidates = {"received_date": today}
        elif isinstance(command, (ReceiveAndAssignInstaller, AssignInstaller)):
            candidates = {"received_date": today}
            if not part.installer_email:
                candidates["installer_email"] = installer_email
                candidates["installer_name"] = self.resolve_name(installer_email)
        elif isinstance(command, MarkInstalled):
            candidates = {"installed_date": today}

        return {
            name: value
            for name, value in candidates.items()
            if value is not None and getattr(part, name) is None
        }

    def _add_location_note(
        self, patch: dict[str, Any], part: PartRecord, location_note: str | None
    ) -> None:
        if location_note and location_note.strip():
            patch["notes"] = append_note(
                part.notes,
                f"{self._texts.location_note_prefix}{location_note.strip()}",
            )

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def resolve_name(self, email: str) -> str:
        """Directory name for ``email``, falling back to the e-mail itself."""
        return self._directory.resolve(email) or email

    def build_task_request(
        self, part: PartRecord, assignee: str, location_note: str | None
    ) -> TaskRequest:
        texts = self._texts
        suffix = f" #{part.part_number}" if part.part_number else ""
        description = texts.task_description_template.format(
            name=part.name,
            part_number=part.part_number or "",
            part_number_suffix=suffix,
        )
        if location_note and location_note.strip():
            description += f"\n{texts.location_note_prefix}{location_note.strip()}"
        return TaskRequest(
            title=texts.task_title_template.format(name=part.name),
            description=description,
            project_id=part.project_id,
            assignee=assignee,
            status=texts.task_status,
            priority=texts.task_priority,
        )


def _coerce_status(target: Any) -> str:
    value = target.value if isinstance(target, PartStatus) else target
    if value not in PART_STATUS_VALUES:
        raise ValidationError(
            "status",
            f"{value!r} is not one of {', '.join(PART_STATUS_VALUES)}",
        )
    return value


def coerce_status(target: Any) -> str:
    """Validate a status value (str or PartStatus) and return its string form."""
    return _coerce_status(target)
