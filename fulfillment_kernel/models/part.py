"""
Module: fulfillment_kernel.models.part
Responsibility: ORM persistence for project parts: the physical components
    tracked from procurement ("needed") through installation ("installed").
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py only.
    MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    P1 -- quantity >= 1 (CHECK constraint plus service-level validation).
    P2 -- status is one of the five PartStatus values (CHECK constraint).
    P3 -- project_id is immutable after creation (db/immutability.py).
    P4 -- order_date, received_date and installed_date are write-once
          (db/immutability.py).
    P5 -- Per-part atomic read-modify-write: ``version`` is the optimistic
          lock counter; a stale UPDATE raises StaleDataError at flush.

Failure modes:
    - IntegrityError on CHECK violation (quantity < 1, unknown status,
      negative cost) if the service layer is bypassed.
    - StaleDataError when two writers race on the same part.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import TrackedBase
from fulfillment_kernel.domain.values import PART_STATUS_VALUES, PartStatus

__all__ = ["PART_STATUS_VALUES", "Part", "PartStatus"]


class Part(TrackedBase):
    """
    A physical part tracked against a project.

    Contract:
        Rows are created when a project is set up and removed only by
        explicit deletion.  Status changes go through PartLifecycleService,
        never through direct attribute assignment by callers.

    Guarantees:
        - status is always one of PART_STATUS_VALUES (P2).
        - Lifecycle dates, once set, are never cleared or overwritten (P4).
        - notes grow by appending; PartLifecycleService never replaces them.

    Non-goals:
        - Does NOT store the order proof image, only its URL reference.
    """

    __tablename__ = "parts"

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_part_quantity_positive"),
        CheckConstraint("unit_cost >= 0", name="ck_part_unit_cost_non_negative"),
        CheckConstraint(
            "sell_price IS NULL OR sell_price >= 0",
            name="ck_part_sell_price_non_negative",
        ),
        CheckConstraint(
            "status IN ('needed', 'ordered', 'received', "
            "'ready_to_install', 'installed')",
            name="ck_part_status_valid",
        ),
        Index("idx_part_project", "project_id"),
        Index("idx_part_project_status", "project_id", "status"),
        Index("idx_part_installer", "installer_email"),
    )

    # INVARIANT P3: immutable after creation
    project_id: Mapped[str] = mapped_column(String(255), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    part_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    supplier: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # INVARIANT P1
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    sell_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    # INVARIANT P2
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PartStatus.NEEDED.value,
    )

    # INVARIANT P4: write-once lifecycle dates
    order_date: Mapped[date | None] = mapped_column(nullable=True)
    received_date: Mapped[date | None] = mapped_column(nullable=True)
    installed_date: Mapped[date | None] = mapped_column(nullable=True)
    est_delivery_date: Mapped[date | None] = mapped_column(nullable=True)

    order_proof: Mapped[str | None] = mapped_column(String(2048), nullable=True)

    # Procurement owner
    assigned_to: Mapped[str | None] = mapped_column(String(255), nullable=True)
    assigned_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Install owner
    installer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    installer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # INVARIANT P5: optimistic lock counter
    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Part {self.id}: {self.name!r} [{self.status}] x{self.quantity}>"
