"""
fulfillment_services.fulfillment_service -- Composition root for the
fulfillment use cases.

Responsibility:
    Exposes every use-case operation (part lifecycle, part CRUD, stock
    movements, reconcile, bulk) as one call that owns its unit of work:
    open a session, run the kernel service, commit, then call the external
    collaborators.  Read helpers return frozen DTOs from the selectors.

Architecture position:
    Services -- the only layer that commits.  Composes the kernel engine,
    services and selectors with injected collaborators (directory, task
    creator, notifier) and the BulkCoordinator.

Invariants enforced:
    - One use case == one transaction.  Kernel services only flush.
    - Collaborators run after commit and never undo it: a failing task
      creator or notifier is logged and reported in the outcome.
    - Optimistic-lock conflicts are retried ``conflict_retries`` times with
      a fresh session; caller-input errors are never retried.

Failure modes:
    - Typed kernel errors propagate unchanged (InvalidTransitionError,
      InsufficientStockError, NotFoundError subclasses, ValidationError).
    - OptimisticLockError once retries are exhausted.

Usage:
    from fulfillment_services import FulfillmentService

    service = FulfillmentService(session_factory, directory=StaticDirectory())
    part = service.create_part("proj-1", "Breaker panel", quantity=3, unit_cost=10)
    service.order_part(part.id, actor="buyer@example.com")
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable, Mapping
from datetime import date
from decimal import Decimal
from typing import Any, TypeVar

from sqlalchemy.orm import Session, sessionmaker

from fulfillment_kernel.db.engine import session_scope
from fulfillment_kernel.domain.bulk import (
    AssignmentRole,
    BulkItemStatus,
    BulkOperation,
    BulkResult,
    SetStatusOperation,
)
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.collaborators import Directory, Notifier, TaskCreator
from fulfillment_kernel.domain.dtos import (
    CollaboratorFailure,
    InventoryItemRecord,
    PartRecord,
    ReconcileResult,
    StatusChangeNotice,
    StockMovement,
    StockSummary,
    TaskRequest,
    TransactionRecord,
    TransitionOutcome,
)
from fulfillment_kernel.domain.lifecycle import (
    AssignInstaller,
    LifecycleEngine,
    LifecycleTexts,
    MarkInstalled,
    Order,
    PartCommand,
    Receive,
    ReceiveAndAssignInstaller,
    SetStatusOverride,
)
from fulfillment_kernel.domain.values import PartStatus
from fulfillment_kernel.exceptions import CollaboratorError, OptimisticLockError
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.selectors.inventory_selector import InventorySelector
from fulfillment_kernel.selectors.part_selector import PartSelector
from fulfillment_kernel.services.part_lifecycle_service import PartLifecycleService
from fulfillment_kernel.services.stock_ledger_service import StockLedgerService
from fulfillment_services.bulk_coordinator import BulkCoordinator

logger = get_logger("services.fulfillment")

T = TypeVar("T")


class FulfillmentService:
    """
    Use-case facade over the fulfillment kernel.

    Contract:
        Every write method commits before returning.  Lifecycle methods
        return a TransitionOutcome; an already-applied command is a no-op
        with ``already_applied=True`` and triggers no side effects.

    Guarantees:
        - Returned DTOs reflect committed state.
        - Collaborator failures appear in ``side_effect_errors``.

    Non-goals:
        - Does NOT authenticate callers; ``actor`` is recorded as given.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        directory: Directory,
        task_creator: TaskCreator | None = None,
        notifier: Notifier | None = None,
        clock: Clock | None = None,
        texts: LifecycleTexts | None = None,
        conflict_retries: int = 1,
        bulk_max_workers: int = 4,
        delete_pacing_seconds: float = 0.2,
        bulk_transient_retries: int = 1,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        if conflict_retries < 0:
            raise ValueError(f"conflict_retries must be >= 0, got {conflict_retries}")
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._task_creator = task_creator
        self._notifier = notifier
        self._conflict_retries = conflict_retries

        self.engine = LifecycleEngine(directory, texts)
        self.bulk = BulkCoordinator(
            session_factory,
            self.engine,
            clock=self._clock,
            max_workers=bulk_max_workers,
            delete_pacing_seconds=delete_pacing_seconds,
            transient_retries=bulk_transient_retries,
            sleep=sleep,
            monotonic=monotonic,
        )

    # -------------------------------------------------------------------------
    # Unit of work
    # -------------------------------------------------------------------------

    def _run(self, use_case: str, work: Callable[[Session], T]) -> T:
        """Run ``work`` in a committed transaction, retrying lock conflicts."""
        attempt = 0
        while True:
            try:
                with session_scope(self._session_factory) as session:
                    return work(session)
            except OptimisticLockError as exc:
                if attempt >= self._conflict_retries:
                    logger.warning(
                        "conflict_retries_exhausted",
                        extra={
                            "use_case": use_case,
                            "entity_type": exc.entity_type,
                            "entity_id": exc.entity_id,
                            "attempts": attempt + 1,
                        },
                    )
                    raise
                attempt += 1
                logger.info(
                    "conflict_retry",
                    extra={
                        "use_case": use_case,
                        "entity_type": exc.entity_type,
                        "entity_id": exc.entity_id,
                        "attempt": attempt,
                    },
                )

    def _read(self, work: Callable[[Session], T]) -> T:
        session = self._session_factory()
        try:
            return work(session)
        finally:
            session.close()

    def _parts(self, session: Session) -> PartLifecycleService:
        return PartLifecycleService(session, self.engine, self._clock)

    def _stock(self, session: Session) -> StockLedgerService:
        return StockLedgerService(session, self._clock)

    # -------------------------------------------------------------------------
    # Part lifecycle
    # -------------------------------------------------------------------------

    def execute(
        self, part_id: str, command: PartCommand, actor: str | None = None
    ) -> TransitionOutcome:
        """Apply one lifecycle command, commit, then run side effects."""
        with LogContext.bind(part_id=part_id, actor=actor):
            applied = self._run(
                command.action, lambda s: self._parts(s).apply(part_id, command)
            )
            plan = applied.plan

            if plan.already_applied:
                return TransitionOutcome(
                    part=applied.part,
                    action=plan.action,
                    from_status=plan.from_status,
                    already_applied=True,
                )

            errors: list[CollaboratorFailure] = []
            task_id = None
            if plan.task_request is not None:
                task_id = self._create_task(plan.task_request, errors)
            if plan.status_changed:
                self._notify(applied.part, plan.from_status, actor, errors)

            return TransitionOutcome(
                part=applied.part,
                action=plan.action,
                from_status=plan.from_status,
                task_id=task_id,
                side_effect_errors=tuple(errors),
            )

    def order_part(
        self,
        part_id: str,
        proof: str | None = None,
        eta: date | None = None,
        notes: str | None = None,
        actor: str | None = None,
    ) -> TransitionOutcome:
        return self.execute(part_id, Order(proof=proof, eta=eta, notes=notes), actor)

    def receive_part(
        self,
        part_id: str,
        location_note: str | None = None,
        actor: str | None = None,
    ) -> TransitionOutcome:
        return self.execute(part_id, Receive(location_note=location_note), actor)

    def receive_and_assign_installer(
        self,
        part_id: str,
        installer_email: str,
        location_note: str | None = None,
        create_task: bool = False,
        actor: str | None = None,
    ) -> TransitionOutcome:
        command = ReceiveAndAssignInstaller(
            installer_email=installer_email,
            location_note=location_note,
            create_task=create_task,
        )
        return self.execute(part_id, command, actor)

    def assign_installer(
        self,
        part_id: str,
        installer_email: str,
        location_note: str | None = None,
        create_task: bool = False,
        actor: str | None = None,
    ) -> TransitionOutcome:
        command = AssignInstaller(
            installer_email=installer_email,
            location_note=location_note,
            create_task=create_task,
        )
        return self.execute(part_id, command, actor)

    def mark_installed(self, part_id: str, actor: str | None = None) -> TransitionOutcome:
        return self.execute(part_id, MarkInstalled(), actor)

    def set_part_status(
        self, part_id: str, target: PartStatus | str, actor: str | None = None
    ) -> TransitionOutcome:
        """Override API: any status to any status, enum membership only."""
        return self.execute(part_id, SetStatusOverride(target=target), actor)

    # -------------------------------------------------------------------------
    # Collaborators
    # -------------------------------------------------------------------------

    def _create_task(
        self, request: TaskRequest, errors: list[CollaboratorFailure]
    ) -> str | None:
        if self._task_creator is None:
            logger.debug("task_creator_not_configured")
            return None
        try:
            task_id = self._task_creator.create_task(request)
        except Exception as exc:
            errors.append(self._collaborator_failed("task_creator", exc))
            return None
        logger.info(
            "install_task_created",
            extra={"task_id": task_id, "assignee": request.assignee},
        )
        return task_id

    def _notify(
        self,
        part: PartRecord,
        from_status: str,
        actor: str | None,
        errors: list[CollaboratorFailure],
    ) -> None:
        if self._notifier is None:
            return
        notice = build_status_notice(part, from_status, actor)
        try:
            self._notifier.notify_status_change(notice)
        except Exception as exc:
            errors.append(self._collaborator_failed("notifier", exc))

    @staticmethod
    def _collaborator_failed(collaborator: str, exc: Exception) -> CollaboratorFailure:
        error = CollaboratorError(collaborator, str(exc) or type(exc).__name__)
        logger.warning(
            "collaborator_failed",
            extra={
                "collaborator": collaborator,
                "error_code": error.code,
                "error_type": type(exc).__name__,
                "error_message": str(exc),
            },
        )
        return CollaboratorFailure(
            collaborator=collaborator, code=error.code, message=str(error)
        )

    # -------------------------------------------------------------------------
    # Part CRUD
    # -------------------------------------------------------------------------

    def create_part(self, project_id: str, name: str, **fields: Any) -> PartRecord:
        with LogContext.bind(project_id=project_id):
            return self._run(
                "create_part",
                lambda s: self._parts(s).create_part(project_id, name, **fields),
            )

    def add_parts(
        self, project_id: str, rows: Iterable[Mapping[str, Any]]
    ) -> list[PartRecord]:
        rows = list(rows)
        with LogContext.bind(project_id=project_id):
            return self._run(
                "add_parts", lambda s: self._parts(s).add_parts(project_id, rows)
            )

    def update_part_details(self, part_id: str, **changes: Any) -> PartRecord:
        return self._run(
            "update_part_details",
            lambda s: self._parts(s).update_details(part_id, **changes),
        )

    def append_part_note(self, part_id: str, note: str) -> PartRecord:
        return self._run(
            "append_part_note", lambda s: self._parts(s).append_note(part_id, note)
        )

    def assign_part_owner(
        self,
        part_id: str,
        email: str | None,
        role: AssignmentRole | str = AssignmentRole.PROCUREMENT,
    ) -> PartRecord:
        return self._run(
            "assign_part_owner",
            lambda s: self._parts(s).assign_owner(part_id, email, role),
        )

    def delete_part(self, part_id: str) -> PartRecord:
        return self._run("delete_part", lambda s: self._parts(s).delete(part_id))

    # -------------------------------------------------------------------------
    # Bulk
    # -------------------------------------------------------------------------

    def apply_bulk(
        self,
        ids: Iterable[str],
        operation: BulkOperation,
        actor: str | None = None,
        cancel_token: threading.Event | None = None,
    ) -> BulkResult:
        """
        Run a bulk operation.  Successful status changes are notified after
        the run, one notice per part whose status actually moved.
        """
        result = self.bulk.apply_bulk(ids, operation, actor=actor, cancel_token=cancel_token)

        if isinstance(operation, SetStatusOperation) and self._notifier is not None:
            changed = {
                r.part_id: r.from_status
                for r in result.item_results
                if r.status == BulkItemStatus.SUCCEEDED and r.from_status != r.to_status
            }
            if changed:
                parts = self._read(
                    lambda s: [
                        p for p in (PartSelector(s).find(pid) for pid in changed)
                        if p is not None
                    ]
                )
                errors: list[CollaboratorFailure] = []
                for part in parts:
                    self._notify(part, changed[part.id], actor, errors)
                if errors:
                    logger.warning(
                        "bulk_notifications_failed",
                        extra={"bulk_id": result.bulk_id, "failures": len(errors)},
                    )
        return result

    # -------------------------------------------------------------------------
    # Stock
    # -------------------------------------------------------------------------

    def create_inventory_item(self, name: str, user: str, **fields: Any) -> InventoryItemRecord:
        return self._run(
            "create_inventory_item",
            lambda s: self._stock(s).create_item(name, user, **fields),
        )

    def update_inventory_item(self, item_id: str, **changes: Any) -> InventoryItemRecord:
        return self._run(
            "update_inventory_item",
            lambda s: self._stock(s).update_item_details(item_id, **changes),
        )

    def checkout(
        self,
        item_id: str,
        quantity: int,
        user: str,
        project_id: str | None = None,
        notes: str | None = None,
    ) -> StockMovement:
        with LogContext.bind(inventory_item_id=item_id, actor=user, project_id=project_id):
            return self._run(
                "checkout",
                lambda s: self._stock(s).checkout(
                    item_id, quantity, user, project_id=project_id, notes=notes
                ),
            )

    def restock(
        self,
        item_id: str,
        quantity: int,
        user: str,
        notes: str | None = None,
    ) -> StockMovement:
        with LogContext.bind(inventory_item_id=item_id, actor=user):
            return self._run(
                "restock",
                lambda s: self._stock(s).restock(item_id, quantity, user, notes=notes),
            )

    def reconcile_stock(self, item_id: str, repair: bool = True) -> ReconcileResult:
        with LogContext.bind(inventory_item_id=item_id):
            return self._run(
                "reconcile_stock",
                lambda s: self._stock(s).reconcile(item_id, repair=repair),
            )

    def reconcile_all_stock(self, repair: bool = True) -> list[ReconcileResult]:
        """Reconcile every item, each in its own transaction."""
        item_ids = self._read(lambda s: InventorySelector(s).item_ids())
        results = [self.reconcile_stock(item_id, repair=repair) for item_id in item_ids]
        drifted = [r for r in results if not r.in_sync]
        logger.info(
            "stock_reconcile_completed",
            extra={
                "items": len(results),
                "drifted": len(drifted),
                "repaired": sum(1 for r in drifted if r.repaired),
            },
        )
        return results

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def get_part(self, part_id: str) -> PartRecord:
        return self._read(lambda s: PartSelector(s).get(part_id))

    def list_parts(
        self,
        project_id: str,
        status: PartStatus | str | None = None,
        search: str | None = None,
    ) -> list[PartRecord]:
        return self._read(
            lambda s: PartSelector(s).list_for_project(project_id, status, search)
        )

    def status_counts(self, project_id: str | None = None) -> dict[str, int]:
        return self._read(lambda s: PartSelector(s).status_counts(project_id))

    def project_valuation(self, project_id: str) -> Decimal:
        return self._read(lambda s: PartSelector(s).project_valuation(project_id))

    def get_inventory_item(self, item_id: str) -> InventoryItemRecord:
        return self._read(lambda s: InventorySelector(s).get_item(item_id))

    def list_inventory_items(self, category: str | None = None) -> list[InventoryItemRecord]:
        return self._read(lambda s: InventorySelector(s).list_items(category))

    def transactions_for_item(self, item_id: str) -> list[TransactionRecord]:
        return self._read(lambda s: InventorySelector(s).transactions_for_item(item_id))

    def stock_summary(self) -> StockSummary:
        return self._read(lambda s: InventorySelector(s).stock_summary())


def build_status_notice(
    part: PartRecord, from_status: str, actor: str | None
) -> StatusChangeNotice:
    """
    Describe a status change for the notifier.

    A part entering ``ready_to_install`` names its installer as recipient,
    unless the installer made the change.
    """
    recipient = None
    if (
        part.status == PartStatus.READY_TO_INSTALL.value
        and part.installer_email
        and part.installer_email.strip().lower() != (actor or "").strip().lower()
    ):
        recipient = part.installer_email

    return StatusChangeNotice(
        part_id=part.id,
        project_id=part.project_id,
        part_name=part.name,
        from_status=from_status,
        to_status=part.status,
        actor=actor,
        installer_email=part.installer_email,
        recipient=recipient,
    )
