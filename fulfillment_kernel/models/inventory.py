"""
Module: fulfillment_kernel.models.inventory
Responsibility: ORM persistence for inventory items and the append-only stock
    ledger (inventory transactions).
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/values.py only.
    MUST NOT import from services/, selectors/, or outer layers.

Invariants enforced:
    S1 -- quantity_in_stock >= 0 (CHECK constraint).  Never negative.
    S2 -- Ledger is append-only.  InventoryTransaction rows are never updated
          or deleted (db/immutability.py).
    S3 -- Cache consistency.  quantity_in_stock is a materialized view of the
          ledger fold and changes only in the same flush as a new ledger row
          (db/immutability.py, before_flush check).
    S4 -- Ledger ordering.  (inventory_item_id, seq) is UNIQUE; seq is taken
          from InventoryItem.last_ledger_seq under the item's row lock, so
          two concurrent appends for the same item cannot both succeed.
    S5 -- Per-item atomic read-modify-write: ``version`` is the optimistic
          lock counter on InventoryItem.
    S6 -- sku and barcode are unique when present.

Failure modes:
    - IntegrityError on duplicate (inventory_item_id, seq), duplicate sku or
      barcode, or a CHECK violation.
    - StaleDataError when two writers race on the same item.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment_kernel.db.base import Base, TrackedBase
from fulfillment_kernel.domain.values import TransactionType

__all__ = ["InventoryItem", "InventoryTransaction", "TransactionType"]


class InventoryItem(TrackedBase):
    """
    A stocked inventory item with a cached on-hand quantity.

    Contract:
        quantity_in_stock is changed only by StockLedgerService together with
        a new InventoryTransaction (S3), or by an explicit reconcile.

    Guarantees:
        - quantity_in_stock >= 0 (S1).
        - last_ledger_seq equals the highest seq of this item's ledger rows.
    """

    __tablename__ = "inventory_items"

    __table_args__ = (
        CheckConstraint(
            "quantity_in_stock >= 0", name="ck_inventory_quantity_non_negative"
        ),
        CheckConstraint(
            "minimum_stock >= 0", name="ck_inventory_minimum_non_negative"
        ),
        UniqueConstraint("sku", name="uq_inventory_item_sku"),
        UniqueConstraint("barcode", name="uq_inventory_item_barcode"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str | None] = mapped_column(String(100), nullable=True)
    barcode: Mapped[str | None] = mapped_column(String(100), nullable=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    location: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # INVARIANT S1, S3
    quantity_in_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    minimum_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    unit_cost: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    sell_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    # INVARIANT S4
    last_ledger_seq: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # INVARIANT S5
    version: Mapped[int] = mapped_column(BigInteger, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def out_of_stock(self) -> bool:
        return self.quantity_in_stock == 0

    @property
    def low_stock(self) -> bool:
        return 0 < self.quantity_in_stock <= self.minimum_stock

    def __repr__(self) -> str:
        return (
            f"<InventoryItem {self.id}: {self.sku or self.name!r} "
            f"on_hand={self.quantity_in_stock}>"
        )


class InventoryTransaction(Base):
    """
    One immutable stock movement.

    Contract:
        Created by StockLedgerService only.  Never updated or deleted (S2).

    Guarantees:
        - quantity > 0.
        - seq is 1-based and gap-free per inventory item (S4).
        - project_id is set only for checkouts tied to a project.
    """

    __tablename__ = "inventory_transactions"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_inventory_txn_quantity_positive"),
        CheckConstraint(
            "type IN ('checkout', 'restock')", name="ck_inventory_txn_type_valid"
        ),
        # INVARIANT S4
        UniqueConstraint("inventory_item_id", "seq", name="uq_inventory_txn_item_seq"),
        Index("idx_inventory_txn_project", "project_id"),
        Index("idx_inventory_txn_created", "created_at"),
    )

    inventory_item_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("inventory_items.id"),
        nullable=False,
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)

    project_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    type: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    user: Mapped[str] = mapped_column(String(255), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return (
            f"<InventoryTransaction {self.id}: item={self.inventory_item_id} "
            f"#{self.seq} {self.type} {self.quantity}>"
        )
