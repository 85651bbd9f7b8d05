"""
Module: fulfillment_kernel.selectors.inventory_selector
Responsibility: Read-only inventory queries: item lookup by id, SKU or
    barcode; low / out-of-stock lists; ledger history per item and per
    project; the authoritative ledger fold; and a stock summary.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/base.py.  MUST NOT import from services/ or outer
    layers.

Invariants enforced:
    - ``ledger_quantity`` folds entries in seq order with the same clamp the
      write path uses (domain/ledger.py), so it can be compared with the
      cached quantity directly.

Failure modes:
    - InventoryItemNotFoundError from ``get_item``.
"""

from decimal import Decimal

from sqlalchemy import select

from fulfillment_kernel.domain.dtos import (
    InventoryItemRecord,
    StockSummary,
    TransactionRecord,
)
from fulfillment_kernel.domain.ledger import fold_on_hand
from fulfillment_kernel.exceptions import InventoryItemNotFoundError
from fulfillment_kernel.models.inventory import InventoryItem, InventoryTransaction
from fulfillment_kernel.selectors.base import BaseSelector


class InventorySelector(BaseSelector[InventoryItem]):
    """Selector for inventory items and their stock ledger."""

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    def get_item(self, item_id: str) -> InventoryItemRecord:
        item = self.session.get(InventoryItem, item_id)
        if item is None:
            raise InventoryItemNotFoundError(item_id)
        return InventoryItemRecord.from_model(item)

    def get_item_by_sku(self, sku: str) -> InventoryItemRecord | None:
        item = self.session.execute(
            select(InventoryItem).where(InventoryItem.sku == sku)
        ).scalar_one_or_none()
        return InventoryItemRecord.from_model(item) if item is not None else None

    def get_item_by_barcode(self, barcode: str) -> InventoryItemRecord | None:
        """Scanner lookup."""
        item = self.session.execute(
            select(InventoryItem).where(InventoryItem.barcode == barcode)
        ).scalar_one_or_none()
        return InventoryItemRecord.from_model(item) if item is not None else None

    def list_items(self, category: str | None = None) -> list[InventoryItemRecord]:
        stmt = select(InventoryItem)
        if category is not None:
            stmt = stmt.where(InventoryItem.category == category)
        stmt = stmt.order_by(InventoryItem.name, InventoryItem.id)
        return [
            InventoryItemRecord.from_model(i)
            for i in self.session.execute(stmt).scalars()
        ]

    def low_stock_items(self) -> list[InventoryItemRecord]:
        """Items with 0 < on-hand <= minimum_stock."""
        stmt = (
            select(InventoryItem)
            .where(InventoryItem.quantity_in_stock > 0)
            .where(InventoryItem.quantity_in_stock <= InventoryItem.minimum_stock)
            .order_by(InventoryItem.name, InventoryItem.id)
        )
        return [
            InventoryItemRecord.from_model(i)
            for i in self.session.execute(stmt).scalars()
        ]

    def out_of_stock_items(self) -> list[InventoryItemRecord]:
        stmt = (
            select(InventoryItem)
            .where(InventoryItem.quantity_in_stock == 0)
            .order_by(InventoryItem.name, InventoryItem.id)
        )
        return [
            InventoryItemRecord.from_model(i)
            for i in self.session.execute(stmt).scalars()
        ]

    def item_ids(self) -> list[str]:
        return list(
            self.session.execute(
                select(InventoryItem.id).order_by(InventoryItem.id)
            ).scalars()
        )

    # -------------------------------------------------------------------------
    # Ledger
    # -------------------------------------------------------------------------

    def transactions_for_item(self, item_id: str) -> list[TransactionRecord]:
        """Full ledger of one item, oldest first."""
        stmt = (
            select(InventoryTransaction)
            .where(InventoryTransaction.inventory_item_id == item_id)
            .order_by(InventoryTransaction.seq)
        )
        return [
            TransactionRecord.from_model(t)
            for t in self.session.execute(stmt).scalars()
        ]

    def recent_transactions(self, limit: int = 50) -> list[TransactionRecord]:
        """Latest entries across all items, newest first."""
        stmt = (
            select(InventoryTransaction)
            .order_by(
                InventoryTransaction.created_at.desc(),
                InventoryTransaction.seq.desc(),
            )
            .limit(limit)
        )
        return [
            TransactionRecord.from_model(t)
            for t in self.session.execute(stmt).scalars()
        ]

    def transactions_for_project(self, project_id: str) -> list[TransactionRecord]:
        """Checkouts charged to one project."""
        stmt = (
            select(InventoryTransaction)
            .where(InventoryTransaction.project_id == project_id)
            .order_by(
                InventoryTransaction.created_at,
                InventoryTransaction.inventory_item_id,
                InventoryTransaction.seq,
            )
        )
        return [
            TransactionRecord.from_model(t)
            for t in self.session.execute(stmt).scalars()
        ]

    def ledger_quantity(self, item_id: str) -> int:
        """Authoritative on-hand: the fold of the item's ledger."""
        stmt = (
            select(InventoryTransaction)
            .where(InventoryTransaction.inventory_item_id == item_id)
            .order_by(InventoryTransaction.seq)
        )
        return fold_on_hand(self.session.execute(stmt).scalars())

    def stock_summary(self) -> StockSummary:
        items = self.list_items()
        return StockSummary(
            total_items=len(items),
            total_units=sum(i.quantity_in_stock for i in items),
            low_stock_count=sum(1 for i in items if i.low_stock),
            out_of_stock_count=sum(1 for i in items if i.out_of_stock),
            inventory_value=sum((i.stock_value for i in items), Decimal("0")),
        )
