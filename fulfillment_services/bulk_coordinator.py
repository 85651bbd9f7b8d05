"""
fulfillment_services.bulk_coordinator -- Apply one operation to many parts.

Responsibility:
    Runs an assign, status-override or delete operation over a list of part
    ids with per-item isolation: every item runs in its own session and
    transaction, so one failure never rolls back another item.

Architecture position:
    Services -- owns transaction boundaries (commit/rollback per item).
    Composes PartLifecycleService from the kernel.

Invariants enforced:
    - Every de-duplicated id appears in exactly one result bucket.
    - Results are reported in input order, whatever order workers finish in.
    - Delete starts are spaced at least ``delete_pacing_seconds`` apart
      across all workers of a run, not per worker.
    - Cancellation is checked before each item; an item already writing is
      never interrupted.
    - Transient persistence failures (optimistic-lock conflicts, operational
      database errors) are retried ``transient_retries`` times per item.

Failure modes:
    - ValidationError raised up front for an invalid operation (unknown
      status, missing e-mail); no item is attempted.
    - Per-item failures are data (BulkItemStatus.FAILED), never raised.

Audit relevance:
    ``bulk_started`` / ``bulk_completed`` bracket every run; each failed item
    is logged as ``bulk_item_failed`` with its error code.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker

from fulfillment_kernel.db.base import new_id
from fulfillment_kernel.db.engine import session_scope
from fulfillment_kernel.domain.bulk import (
    AssignmentRole,
    AssignOperation,
    BulkItemResult,
    BulkItemStatus,
    BulkOperation,
    BulkResult,
    DeleteOperation,
    SetStatusOperation,
)
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.lifecycle import LifecycleEngine, coerce_status
from fulfillment_kernel.exceptions import (
    FulfillmentError,
    OptimisticLockError,
    PartNotFoundError,
    ValidationError,
)
from fulfillment_kernel.logging_config import LogContext, get_logger
from fulfillment_kernel.services.part_lifecycle_service import PartLifecycleService

logger = get_logger("services.bulk")

TRANSIENT_ERRORS = (OptimisticLockError, OperationalError)


class _StartPacer:
    """
    Spaces item starts at least ``interval`` seconds apart across all
    workers of one run.  The lock is held while waiting, so starts are
    serialized even when several workers are free.
    """

    def __init__(
        self,
        interval: float,
        sleep: Callable[[float], None],
        monotonic: Callable[[], float],
    ):
        self._interval = interval
        self._sleep = sleep
        self._monotonic = monotonic
        self._lock = threading.Lock()
        self._next_start: float | None = None

    def wait_turn(self) -> None:
        with self._lock:
            now = self._monotonic()
            if self._next_start is not None and now < self._next_start:
                self._sleep(self._next_start - now)
                now = self._monotonic()
            self._next_start = now + self._interval


class BulkCoordinator:
    """
    Bounded-parallel executor for bulk part operations.

    Contract:
        ``apply_bulk(ids, operation)`` returns a BulkResult; it raises only
        for an invalid operation.  Callers wanting an exception on partial
        failure call ``result.raise_for_failures()``.

    Non-goals:
        - Does NOT call collaborators; the Fulfillment Service notifies for
          successful status changes after the run.
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        engine: LifecycleEngine,
        clock: Clock | None = None,
        max_workers: int = 4,
        delete_pacing_seconds: float = 0.2,
        transient_retries: int = 1,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._session_factory = session_factory
        self._engine = engine
        self._clock = clock or SystemClock()
        self._max_workers = max_workers
        self._delete_pacing_seconds = delete_pacing_seconds
        self._transient_retries = transient_retries
        self._sleep = sleep
        self._monotonic = monotonic

    # -------------------------------------------------------------------------
    # Run
    # -------------------------------------------------------------------------

    def apply_bulk(
        self,
        ids: Iterable[str],
        operation: BulkOperation,
        actor: str | None = None,
        cancel_token: threading.Event | None = None,
    ) -> BulkResult:
        """Apply ``operation`` to every id and report per-item outcomes."""
        operation = self._validate(operation)
        part_ids = list(dict.fromkeys(pid for pid in ids if pid))
        bulk_id = new_id()
        pacer = (
            _StartPacer(self._delete_pacing_seconds, self._sleep, self._monotonic)
            if isinstance(operation, DeleteOperation) and self._delete_pacing_seconds
            else None
        )
        start_time = self._monotonic()

        logger.info(
            "bulk_started",
            extra={
                "bulk_id": bulk_id,
                "operation": operation.kind,
                "total_items": len(part_ids),
                "actor": actor,
            },
        )

        if not part_ids:
            results: list[BulkItemResult] = []
        elif self._max_workers == 1 or len(part_ids) == 1:
            results = [
                self._run_item(index, part_id, operation, bulk_id, actor, cancel_token, pacer)
                for index, part_id in enumerate(part_ids)
            ]
        else:
            workers = min(self._max_workers, len(part_ids))
            with ThreadPoolExecutor(
                max_workers=workers, thread_name_prefix="bulk"
            ) as pool:
                futures = [
                    pool.submit(
                        self._run_item,
                        index, part_id, operation, bulk_id, actor, cancel_token, pacer,
                    )
                    for index, part_id in enumerate(part_ids)
                ]
                results = [future.result() for future in futures]

        result = BulkResult(
            operation=operation.kind,
            item_results=tuple(results),
            bulk_id=bulk_id,
            duration_ms=int((self._monotonic() - start_time) * 1000),
        )

        logger.info(
            "bulk_completed",
            extra={
                "bulk_id": bulk_id,
                "operation": operation.kind,
                "total_items": result.total,
                "succeeded": len(result.succeeded),
                "failed": len(result.failed),
                "already_absent": len(result.already_absent),
                "cancelled": len(result.cancelled),
                "duration_ms": result.duration_ms,
            },
        )
        return result

    def _validate(self, operation: BulkOperation) -> BulkOperation:
        if isinstance(operation, SetStatusOperation):
            return SetStatusOperation(target=coerce_status(operation.target))
        if isinstance(operation, AssignOperation):
            email = (operation.email or "").strip()
            if not email:
                raise ValidationError("email", "bulk assign requires an e-mail")
            try:
                role = AssignmentRole(operation.role)
            except ValueError:
                raise ValidationError(
                    "role", f"{operation.role!r} is not a known assignment role"
                )
            return AssignOperation(email=email, role=role)
        if isinstance(operation, DeleteOperation):
            return operation
        raise ValidationError(
            "operation", f"unsupported bulk operation {type(operation).__name__}"
        )

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    def _run_item(
        self,
        index: int,
        part_id: str,
        operation: BulkOperation,
        bulk_id: str,
        actor: str | None,
        cancel_token: threading.Event | None,
        pacer: _StartPacer | None = None,
    ) -> BulkItemResult:
        def _cancelled() -> bool:
            return cancel_token is not None and cancel_token.is_set()

        if _cancelled():
            return BulkItemResult(
                item_index=index, part_id=part_id, status=BulkItemStatus.CANCELLED
            )
        if pacer is not None:
            pacer.wait_turn()
            # cancellation may have arrived while waiting for a start slot
            if _cancelled():
                return BulkItemResult(
                    item_index=index, part_id=part_id, status=BulkItemStatus.CANCELLED
                )

        with LogContext.bind(bulk_id=bulk_id, part_id=part_id, actor=actor):
            return self._attempt(index, part_id, operation)

    def _attempt(
        self, index: int, part_id: str, operation: BulkOperation
    ) -> BulkItemResult:
        item_start = self._monotonic()
        retry_count = 0

        def _elapsed() -> int:
            return int((self._monotonic() - item_start) * 1000)

        while True:
            try:
                from_status, to_status = self._execute(part_id, operation)
                return BulkItemResult(
                    item_index=index,
                    part_id=part_id,
                    status=BulkItemStatus.SUCCEEDED,
                    from_status=from_status,
                    to_status=to_status,
                    retry_count=retry_count,
                    duration_ms=_elapsed(),
                )

            except PartNotFoundError as exc:
                if isinstance(operation, DeleteOperation):
                    logger.info("bulk_item_already_absent", extra={"part_id": part_id})
                    return BulkItemResult(
                        item_index=index,
                        part_id=part_id,
                        status=BulkItemStatus.ALREADY_ABSENT,
                        retry_count=retry_count,
                        duration_ms=_elapsed(),
                    )
                return self._failed(index, part_id, exc.code, str(exc), retry_count, _elapsed())

            except TRANSIENT_ERRORS as exc:
                if retry_count < self._transient_retries:
                    retry_count += 1
                    logger.warning(
                        "bulk_item_retrying",
                        extra={
                            "part_id": part_id,
                            "error_type": type(exc).__name__,
                            "retry_count": retry_count,
                        },
                    )
                    continue
                code = exc.code if isinstance(exc, FulfillmentError) else "DATABASE_ERROR"
                return self._failed(index, part_id, code, str(exc), retry_count, _elapsed())

            except FulfillmentError as exc:
                return self._failed(index, part_id, exc.code, str(exc), retry_count, _elapsed())

            except Exception as exc:
                logger.exception(
                    "bulk_item_unhandled_exception", extra={"part_id": part_id}
                )
                return self._failed(
                    index, part_id, "UNHANDLED_EXCEPTION", str(exc), retry_count, _elapsed()
                )

    def _execute(
        self, part_id: str, operation: BulkOperation
    ) -> tuple[str | None, str | None]:
        """Run one item in its own transaction; returns (from, to) status."""
        with session_scope(self._session_factory) as session:
            service = PartLifecycleService(session, self._engine, self._clock)

            if isinstance(operation, DeleteOperation):
                record = service.delete(part_id)
                return record.status, None

            if isinstance(operation, AssignOperation):
                record = service.assign_owner(part_id, operation.email, operation.role)
                return record.status, record.status

            applied = service.set_status(part_id, operation.target)
            return applied.plan.from_status, applied.plan.to_status

    @staticmethod
    def _failed(
        index: int,
        part_id: str,
        code: str,
        message: str,
        retry_count: int,
        duration_ms: int,
    ) -> BulkItemResult:
        logger.warning(
            "bulk_item_failed",
            extra={"part_id": part_id, "error_code": code, "error_message": message},
        )
        return BulkItemResult(
            item_index=index,
            part_id=part_id,
            status=BulkItemStatus.FAILED,
            error_code=code,
            error_message=message,
            retry_count=retry_count,
            duration_ms=duration_ms,
        )
