"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Defines the immutable data structures that cross the kernel boundary:
    PartRecord and InventoryItemRecord / TransactionRecord (persistence
    boundary), TaskRequest and StatusChangeNotice (collaborator requests),
    and the outcomes returned by use-case operations (TransitionOutcome,
    StockMovement, ReconcileResult).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    Free of ORM dependencies, database access, and external services.
    from_model() class methods exist as boundary converters but are only
    invoked from the service and selector layers (never from domain logic).

Invariants enforced:
    - Domain logic accepts/returns DTOs, never ORM entities.
    - Monetary values are Decimal, never float.

Failure modes:
    (none -- DTOs perform no validation beyond construction)

Data flow:
    Part (ORM) -> PartRecord -> lifecycle engine -> TransitionPlan -> Part
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from fulfillment_kernel.domain.ledger import is_low_stock, is_out_of_stock

if TYPE_CHECKING:
    from fulfillment_kernel.models.inventory import (
        InventoryItem as InventoryItemModel,
    )
    from fulfillment_kernel.models.inventory import (
        InventoryTransaction as InventoryTransactionModel,
    )
    from fulfillment_kernel.models.part import Part as PartModel


# =============================================================================
# Parts
# =============================================================================


@dataclass(frozen=True)
class PartRecord:
    """
    Immutable snapshot of a part.

    Contract:
        Built from the ORM row at the persistence boundary.  The lifecycle
        engine reads only this snapshot.

    Guarantees:
        - ``valuation`` uses sell_price, falling back to unit_cost.
        - ``cost`` always uses unit_cost.
    """

    id: str
    project_id: str
    name: str
    status: str
    quantity: int
    unit_cost: Decimal
    sell_price: Decimal | None = None
    part_number: str | None = None
    supplier: str | None = None
    notes: str | None = None
    order_date: date | None = None
    est_delivery_date: date | None = None
    received_date: date | None = None
    installed_date: date | None = None
    order_proof: str | None = None
    assigned_to: str | None = None
    assigned_name: str | None = None
    installer_email: str | None = None
    installer_name: str | None = None
    version: int = 0

    @property
    def valuation_price(self) -> Decimal:
        return self.sell_price if self.sell_price is not None else self.unit_cost

    @property
    def valuation(self) -> Decimal:
        """quantity x (sell_price, or unit_cost when no sell price is set)."""
        return Decimal(self.quantity) * self.valuation_price

    @property
    def cost(self) -> Decimal:
        return Decimal(self.quantity) * self.unit_cost

    @classmethod
    def from_model(cls, model: PartModel) -> PartRecord:
        return cls(
            id=model.id,
            project_id=model.project_id,
            name=model.name,
            status=model.status,
            quantity=model.quantity,
            unit_cost=Decimal(model.unit_cost),
            sell_price=Decimal(model.sell_price) if model.sell_price is not None else None,
            part_number=model.part_number,
            supplier=model.supplier,
            notes=model.notes,
            order_date=model.order_date,
            est_delivery_date=model.est_delivery_date,
            received_date=model.received_date,
            installed_date=model.installed_date,
            order_proof=model.order_proof,
            assigned_to=model.assigned_to,
            assigned_name=model.assigned_name,
            installer_email=model.installer_email,
            installer_name=model.installer_name,
            version=model.version or 0,
        )


# =============================================================================
# Inventory
# =============================================================================


@dataclass(frozen=True)
class InventoryItemRecord:
    """Immutable snapshot of an inventory item and its derived stock flags."""

    id: str
    name: str
    quantity_in_stock: int
    minimum_stock: int
    unit_cost: Decimal
    sell_price: Decimal | None = None
    sku: str | None = None
    barcode: str | None = None
    category: str | None = None
    location: str | None = None
    description: str | None = None
    last_ledger_seq: int = 0

    @property
    def out_of_stock(self) -> bool:
        return is_out_of_stock(self.quantity_in_stock)

    @property
    def low_stock(self) -> bool:
        return is_low_stock(self.quantity_in_stock, self.minimum_stock)

    @property
    def stock_value(self) -> Decimal:
        return Decimal(self.quantity_in_stock) * self.unit_cost

    @classmethod
    def from_model(cls, model: InventoryItemModel) -> InventoryItemRecord:
        return cls(
            id=model.id,
            name=model.name,
            quantity_in_stock=model.quantity_in_stock,
            minimum_stock=model.minimum_stock,
            unit_cost=Decimal(model.unit_cost),
            sell_price=Decimal(model.sell_price) if model.sell_price is not None else None,
            sku=model.sku,
            barcode=model.barcode,
            category=model.category,
            location=model.location,
            description=model.description,
            last_ledger_seq=model.last_ledger_seq or 0,
        )


@dataclass(frozen=True)
class TransactionRecord:
    """Immutable snapshot of one ledger entry."""

    id: str
    inventory_item_id: str
    seq: int
    type: str
    quantity: int
    user: str
    created_at: datetime
    project_id: str | None = None
    notes: str | None = None

    @property
    def signed_quantity(self) -> int:
        return -self.quantity if self.type == "checkout" else self.quantity

    @classmethod
    def from_model(cls, model: InventoryTransactionModel) -> TransactionRecord:
        return cls(
            id=model.id,
            inventory_item_id=model.inventory_item_id,
            seq=model.seq,
            type=model.type,
            quantity=model.quantity,
            user=model.user,
            created_at=model.created_at,
            project_id=model.project_id,
            notes=model.notes,
        )


@dataclass(frozen=True)
class StockMovement:
    """Result of a checkout or restock: the item after the write and its entry."""

    item: InventoryItemRecord
    transaction: TransactionRecord


@dataclass(frozen=True)
class ReconcileResult:
    """
    Outcome of folding an item's ledger and comparing it with the cache.

    ``drift`` is ledger_quantity - cached_before; zero means in sync.
    """

    item_id: str
    cached_before: int
    ledger_quantity: int
    repaired: bool

    @property
    def drift(self) -> int:
        return self.ledger_quantity - self.cached_before

    @property
    def in_sync(self) -> bool:
        return self.drift == 0


@dataclass(frozen=True)
class StockSummary:
    """Aggregate figures over all inventory items."""

    total_items: int
    total_units: int
    low_stock_count: int
    out_of_stock_count: int
    inventory_value: Decimal


# =============================================================================
# Collaborator requests and outcomes
# =============================================================================


@dataclass(frozen=True)
class TaskRequest:
    """An install task to be created by the task-creation collaborator."""

    title: str
    description: str
    project_id: str
    assignee: str
    status: str = "todo"
    priority: str = "medium"


@dataclass(frozen=True)
class StatusChangeNotice:
    """
    A part status change, handed to the notification collaborator.

    ``recipient`` is set when a specific person should be alerted (the
    installer of a part that became ready to install, unless they made the
    change themselves).
    """

    part_id: str
    project_id: str
    part_name: str
    from_status: str
    to_status: str
    actor: str | None = None
    installer_email: str | None = None
    recipient: str | None = None


@dataclass(frozen=True)
class CollaboratorFailure:
    """A side effect that failed after the transition committed."""

    collaborator: str
    code: str
    message: str


@dataclass(frozen=True)
class TransitionOutcome:
    """
    Result of a lifecycle use-case operation.

    Guarantees:
        - ``part`` reflects the committed state.
        - ``side_effect_errors`` lists collaborator failures; they never
          undo the transition.
    """

    part: PartRecord
    action: str
    from_status: str
    already_applied: bool = False
    task_id: str | None = None
    side_effect_errors: tuple[CollaboratorFailure, ...] = field(default_factory=tuple)

    @property
    def changed(self) -> bool:
        return not self.already_applied
