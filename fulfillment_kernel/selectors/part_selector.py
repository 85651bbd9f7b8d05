"""
Module: fulfillment_kernel.selectors.part_selector
Responsibility: Read-only part queries: lookup, project part lists with
    status filter and text search, status counts, and project valuation.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/base.py.  MUST NOT import from services/ or outer
    layers.

Invariants enforced:
    - Valuation uses sell_price, falling back to unit_cost, per part;
      cost always uses unit_cost.  Both are computed in Decimal.

Failure modes:
    - PartNotFoundError from ``get``.
    - ValidationError for an unknown status filter.
"""

from decimal import Decimal

from sqlalchemy import func, or_, select

from fulfillment_kernel.domain.dtos import PartRecord
from fulfillment_kernel.domain.lifecycle import coerce_status
from fulfillment_kernel.domain.values import PART_STATUS_VALUES, PartStatus
from fulfillment_kernel.exceptions import PartNotFoundError
from fulfillment_kernel.models.part import Part
from fulfillment_kernel.selectors.base import BaseSelector


class PartSelector(BaseSelector[Part]):
    """
    Selector for parts.

    Guarantees:
        - Every method returns PartRecord DTOs or plain values.
        - Lists are ordered by name, then id, for stable output.
    """

    def get(self, part_id: str) -> PartRecord:
        part = self.session.get(Part, part_id)
        if part is None:
            raise PartNotFoundError(part_id)
        return PartRecord.from_model(part)

    def find(self, part_id: str) -> PartRecord | None:
        part = self.session.get(Part, part_id)
        return PartRecord.from_model(part) if part is not None else None

    def list_for_project(
        self,
        project_id: str,
        status: PartStatus | str | None = None,
        search: str | None = None,
    ) -> list[PartRecord]:
        """
        Parts of one project.

        Args:
            status: Only parts in this status.
            search: Case-insensitive substring of name or part number.
        """
        stmt = select(Part).where(Part.project_id == project_id)
        if status is not None:
            stmt = stmt.where(Part.status == coerce_status(status))
        if search and search.strip():
            pattern = f"%{search.strip().lower()}%"
            stmt = stmt.where(
                or_(
                    func.lower(Part.name).like(pattern),
                    func.lower(func.coalesce(Part.part_number, "")).like(pattern),
                )
            )
        stmt = stmt.order_by(Part.name, Part.id)
        return [PartRecord.from_model(p) for p in self.session.execute(stmt).scalars()]

    def list_active(self, project_id: str | None = None) -> list[PartRecord]:
        """Parts not yet installed."""
        stmt = select(Part).where(Part.status != PartStatus.INSTALLED.value)
        if project_id is not None:
            stmt = stmt.where(Part.project_id == project_id)
        stmt = stmt.order_by(Part.name, Part.id)
        return [PartRecord.from_model(p) for p in self.session.execute(stmt).scalars()]

    def list_for_installer(self, installer_email: str) -> list[PartRecord]:
        stmt = (
            select(Part)
            .where(func.lower(Part.installer_email) == installer_email.lower())
            .order_by(Part.name, Part.id)
        )
        return [PartRecord.from_model(p) for p in self.session.execute(stmt).scalars()]

    def status_counts(self, project_id: str | None = None) -> dict[str, int]:
        """Count of parts per status; every status is present, zero if unused."""
        stmt = select(Part.status, func.count(Part.id)).group_by(Part.status)
        if project_id is not None:
            stmt = stmt.where(Part.project_id == project_id)
        counts = {status: 0 for status in PART_STATUS_VALUES}
        for status, count in self.session.execute(stmt):
            counts[status] = count
        return counts

    def project_valuation(self, project_id: str) -> Decimal:
        """Sum of quantity x (sell_price or unit_cost) over the project's parts."""
        return sum(
            (p.valuation for p in self.list_for_project(project_id)),
            Decimal("0"),
        )

    def project_cost(self, project_id: str) -> Decimal:
        """Sum of quantity x unit_cost over the project's parts."""
        return sum(
            (p.cost for p in self.list_for_project(project_id)),
            Decimal("0"),
        )
