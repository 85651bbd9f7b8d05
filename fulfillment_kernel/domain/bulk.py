"""
fulfillment_kernel.domain.bulk -- Pure frozen dataclasses for bulk operations.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Operations are tagged variants: exactly one of AssignOperation,
SetStatusOperation or DeleteOperation is applied to every id of a request.

Invariants enforced:
    - Every requested id appears in exactly one of succeeded, failed,
      already_absent or cancelled.
    - Result lists follow the order of the (de-duplicated) request.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Union

from fulfillment_kernel.domain.values import PartStatus
from fulfillment_kernel.exceptions import PartialBulkFailureError


# =============================================================================
# Operations
# =============================================================================


class AssignmentRole(str, Enum):
    """Which owner an assign operation sets."""

    PROCUREMENT = "procurement"  # assigned_to / assigned_name
    INSTALLER = "installer"      # installer_email / installer_name


@dataclass(frozen=True)
class AssignOperation:
    """Set the procurement owner or the installer.  Never changes status."""

    kind: ClassVar[str] = "assign"
    email: str
    role: AssignmentRole = AssignmentRole.PROCUREMENT


@dataclass(frozen=True)
class SetStatusOperation:
    """Unconditional status override on every part."""

    kind: ClassVar[str] = "set_status"
    target: PartStatus | str


@dataclass(frozen=True)
class DeleteOperation:
    """Remove every part.  Paced by the coordinator."""

    kind: ClassVar[str] = "delete"


BulkOperation = Union[AssignOperation, SetStatusOperation, DeleteOperation]


# =============================================================================
# Results
# =============================================================================


class BulkItemStatus(str, Enum):
    """Per-item outcome within a bulk operation."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ALREADY_ABSENT = "already_absent"  # delete of an id that no longer exists
    CANCELLED = "cancelled"            # never started; cancellation requested


@dataclass(frozen=True)
class BulkItemFailure:
    """A hard per-item failure: the id, the error code and its message."""

    part_id: str
    code: str
    message: str


@dataclass(frozen=True)
class BulkItemResult:
    """Immutable result of one item."""

    item_index: int  # 0-indexed position in the de-duplicated request
    part_id: str
    status: BulkItemStatus
    error_code: str | None = None
    error_message: str | None = None
    from_status: str | None = None
    to_status: str | None = None
    retry_count: int = 0
    duration_ms: int = 0


@dataclass(frozen=True)
class BulkResult:
    """
    Immutable result of a bulk operation.

    Contract:
        Never raised; partial failure is data.  Callers that prefer an
        exception call ``raise_for_failures()``.
    """

    operation: str
    item_results: tuple[BulkItemResult, ...] = ()
    bulk_id: str | None = None
    duration_ms: int = 0

    @property
    def total(self) -> int:
        return len(self.item_results)

    def _ids(self, status: BulkItemStatus) -> tuple[str, ...]:
        return tuple(r.part_id for r in self.item_results if r.status == status)

    @property
    def succeeded(self) -> tuple[str, ...]:
        return self._ids(BulkItemStatus.SUCCEEDED)

    @property
    def already_absent(self) -> tuple[str, ...]:
        return self._ids(BulkItemStatus.ALREADY_ABSENT)

    @property
    def cancelled(self) -> tuple[str, ...]:
        return self._ids(BulkItemStatus.CANCELLED)

    @property
    def failed(self) -> tuple[BulkItemFailure, ...]:
        return tuple(
            BulkItemFailure(
                part_id=r.part_id,
                code=r.error_code or "UNHANDLED_EXCEPTION",
                message=r.error_message or "",
            )
            for r in self.item_results
            if r.status == BulkItemStatus.FAILED
        )

    @property
    def ok(self) -> bool:
        """True when nothing failed and nothing was cancelled."""
        return not self.failed and not self.cancelled

    def raise_for_failures(self) -> None:
        if self.failed:
            raise PartialBulkFailureError(self)
