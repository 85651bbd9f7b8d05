"""
Collaborator ports for the fulfillment kernel.

Responsibility:
    Declares the interfaces the kernel requires from the outside world:
    member name lookup (Directory), install task creation (TaskCreator),
    and status change alerts (Notifier).  Implementations live outside the
    kernel; tests substitute fakes.

Architecture position:
    Kernel > Domain -- interfaces only, zero I/O.

Failure modes:
    - TaskCreator and Notifier implementations may raise anything.  The
      Fulfillment Service calls them after commit and turns failures into
      CollaboratorFailure records instead of propagating them.
"""

from __future__ import annotations

from typing import Mapping, Protocol, runtime_checkable

from fulfillment_kernel.domain.dtos import StatusChangeNotice, TaskRequest


# =========================================================================
# Directory
# =========================================================================


@runtime_checkable
class Directory(Protocol):
    """Resolves a member e-mail to a display name."""

    def resolve(self, email: str) -> str | None:
        """Return the member's display name, or None when unknown."""
        ...


class StaticDirectory:
    """Directory backed by a fixed e-mail -> name mapping."""

    def __init__(self, members: Mapping[str, str] | None = None):
        self._members = {k.lower(): v for k, v in (members or {}).items()}

    def resolve(self, email: str) -> str | None:
        return self._members.get(email.lower())


# =========================================================================
# Side-effect collaborators
# =========================================================================


@runtime_checkable
class TaskCreator(Protocol):
    """Creates an install task and returns its identifier."""

    def create_task(self, request: TaskRequest) -> str: ...


@runtime_checkable
class Notifier(Protocol):
    """Receives part status changes for downstream alerting."""

    def notify_status_change(self, notice: StatusChangeNotice) -> None: ...
