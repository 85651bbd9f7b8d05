"""
Module: fulfillment_kernel.services.stock_ledger_service
Responsibility: Record stock movements (checkout, restock) as append-only
    ledger entries and keep each item's cached ``quantity_in_stock`` equal to
    the ledger fold.  Also owns inventory item creation/editing and the
    reconcile (drift detection and repair) operation.
Architecture position: Kernel > Services.  Imports domain/ledger.py, models/,
    db/immutability.py (reconcile permission) and exceptions.

Invariants enforced:
    S1 -- quantity_in_stock never goes negative (checked before write,
          floored at zero on write, CHECK constraint underneath).
    S3 -- the ledger append and the cached update are flushed together; the
          before_flush listener rejects a cache change without an entry.
    S4 -- each entry takes seq = last_ledger_seq + 1 under the item lock.

Failure modes:
    - ValidationError: quantity not an integer >= 1, missing user.
    - InsufficientStockError: checkout above on-hand (stock unchanged).
    - InventoryItemNotFoundError: unknown item id.
    - DuplicateInventoryItemError: SKU or barcode already in use.
    - OptimisticLockError: concurrent writer on the same item.

Audit relevance:
    ``stock_checkout_recorded`` / ``stock_restock_recorded`` carry the entry
    seq and the before/after quantities; ``stock_drift_detected`` is logged
    at WARNING whenever reconcile finds a mismatch.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from fulfillment_kernel.db.base import new_id
from fulfillment_kernel.db.immutability import allow_stock_repair
from fulfillment_kernel.domain.clock import Clock, SystemClock
from fulfillment_kernel.domain.dtos import (
    InventoryItemRecord,
    ReconcileResult,
    StockMovement,
    TransactionRecord,
)
from fulfillment_kernel.domain.ledger import fold_on_hand, validate_movement_quantity
from fulfillment_kernel.domain.validation import (
    require_money,
    require_text,
    require_whole_number,
)
from fulfillment_kernel.domain.values import TransactionType
from fulfillment_kernel.exceptions import (
    DuplicateInventoryItemError,
    InsufficientStockError,
    InventoryItemNotFoundError,
    ValidationError,
)
from fulfillment_kernel.logging_config import get_logger
from fulfillment_kernel.models.inventory import InventoryItem, InventoryTransaction
from fulfillment_kernel.services.base import BaseService

logger = get_logger("services.stock_ledger")

# Stock itself is never editable here; it moves through the ledger.
EDITABLE_ITEM_FIELDS = frozenset({
    "name",
    "sku",
    "barcode",
    "category",
    "location",
    "description",
    "minimum_stock",
    "unit_cost",
    "sell_price",
})


class StockLedgerService(BaseService[InventoryItem]):
    """
    Append-only stock ledger with a cached on-hand quantity.

    Contract:
        checkout/restock lock the item, append one InventoryTransaction and
        update the cached quantity in the same flush.  Nothing is committed.

    Guarantees:
        - After any successful call, quantity_in_stock equals the fold of
          the item's entries.
        - A rejected call writes nothing.

    Non-goals:
        - Does NOT edit or delete ledger entries; corrections are new
          entries.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session)
        self._clock = clock or SystemClock()

    def _lock(self, item_id: str) -> InventoryItem:
        item = self._locked_get(InventoryItem, item_id)
        if item is None:
            raise InventoryItemNotFoundError(item_id)
        return item

    # -------------------------------------------------------------------------
    # Movements
    # -------------------------------------------------------------------------

    def checkout(
        self,
        item_id: str,
        quantity: int,
        user: str,
        project_id: str | None = None,
        notes: str | None = None,
    ) -> StockMovement:
        """Take ``quantity`` units out of stock, optionally for a project."""
        quantity = validate_movement_quantity(quantity)
        user = require_text(user, "user")

        item = self._lock(item_id)
        available = item.quantity_in_stock
        if quantity > available:
            logger.info(
                "stock_checkout_rejected",
                extra={
                    "inventory_item_id": item_id,
                    "requested": quantity,
                    "available": available,
                },
            )
            raise InsufficientStockError(item_id, quantity, available)

        txn = self._append(
            item,
            TransactionType.CHECKOUT,
            quantity,
            user,
            project_id=project_id,
            notes=notes,
        )
        item.quantity_in_stock = max(0, available - quantity)
        self._flush("InventoryItem", item_id)

        logger.info(
            "stock_checkout_recorded",
            extra={
                "inventory_item_id": item_id,
                "seq": txn.seq,
                "quantity": quantity,
                "before": available,
                "after": item.quantity_in_stock,
                "project_id": project_id,
            },
        )
        return StockMovement(
            item=InventoryItemRecord.from_model(item),
            transaction=TransactionRecord.from_model(txn),
        )

    def restock(
        self,
        item_id: str,
        quantity: int,
        user: str,
        notes: str | None = None,
    ) -> StockMovement:
        """Add ``quantity`` units to stock.  No upper bound."""
        quantity = validate_movement_quantity(quantity)
        user = require_text(user, "user")

        item = self._lock(item_id)
        before = item.quantity_in_stock
        txn = self._append(item, TransactionType.RESTOCK, quantity, user, notes=notes)
        item.quantity_in_stock = before + quantity
        self._flush("InventoryItem", item_id)

        logger.info(
            "stock_restock_recorded",
            extra={
                "inventory_item_id": item_id,
                "seq": txn.seq,
                "quantity": quantity,
                "before": before,
                "after": item.quantity_in_stock,
            },
        )
        return StockMovement(
            item=InventoryItemRecord.from_model(item),
            transaction=TransactionRecord.from_model(txn),
        )

    def _append(
        self,
        item: InventoryItem,
        txn_type: TransactionType,
        quantity: int,
        user: str,
        project_id: str | None = None,
        notes: str | None = None,
    ) -> InventoryTransaction:
        seq = (item.last_ledger_seq or 0) + 1
        txn = InventoryTransaction(
            id=new_id(),
            inventory_item_id=item.id,
            seq=seq,
            project_id=project_id if txn_type == TransactionType.CHECKOUT else None,
            type=txn_type.value,
            quantity=quantity,
            user=user,
            created_at=self._clock.now_utc(),
            notes=notes,
        )
        item.last_ledger_seq = seq
        self.session.add(txn)
        return txn

    # -------------------------------------------------------------------------
    # Reconcile
    # -------------------------------------------------------------------------

    def ledger_quantity(self, item_id: str) -> int:
        """Fold the item's full ledger in seq order."""
        entries = self.session.execute(
            select(InventoryTransaction)
            .where(InventoryTransaction.inventory_item_id == item_id)
            .order_by(InventoryTransaction.seq)
        ).scalars()
        return fold_on_hand(entries)

    def reconcile(self, item_id: str, repair: bool = True) -> ReconcileResult:
        """
        Compare the cached quantity with the ledger fold.

        With ``repair=True`` a mismatch is corrected by writing the fold into
        the cache.  The ledger itself is never touched.
        """
        item = self._lock(item_id)
        cached = item.quantity_in_stock
        folded = self.ledger_quantity(item_id)

        if folded == cached:
            logger.debug(
                "stock_reconcile_in_sync",
                extra={"inventory_item_id": item_id, "quantity": cached},
            )
            return ReconcileResult(
                item_id=item_id, cached_before=cached, ledger_quantity=folded, repaired=False
            )

        logger.warning(
            "stock_drift_detected",
            extra={
                "inventory_item_id": item_id,
                "cached": cached,
                "ledger": folded,
                "drift": folded - cached,
                "repair": repair,
            },
        )
        if repair:
            with allow_stock_repair(self.session, item_id):
                item.quantity_in_stock = folded
                self._flush("InventoryItem", item_id)

        return ReconcileResult(
            item_id=item_id,
            cached_before=cached,
            ledger_quantity=folded,
            repaired=repair,
        )

    # -------------------------------------------------------------------------
    # Items
    # -------------------------------------------------------------------------

    def create_item(
        self,
        name: str,
        user: str,
        sku: str | None = None,
        barcode: str | None = None,
        category: str | None = None,
        location: str | None = None,
        description: str | None = None,
        minimum_stock: int = 0,
        unit_cost: Decimal | int | str = Decimal("0"),
        sell_price: Decimal | int | str | None = None,
        opening_quantity: int = 0,
        item_id: str | None = None,
    ) -> InventoryItemRecord:
        """
        Create an item.  A non-zero opening quantity is recorded as the
        item's first restock entry, so the fold matches from the start.
        """
        name = require_text(name, "name")
        user = require_text(user, "user")
        minimum_stock = require_whole_number(minimum_stock, "minimum_stock", minimum=0)
        unit_cost = require_money(unit_cost, "unit_cost")
        sell_price = require_money(sell_price, "sell_price", optional=True)
        if opening_quantity:
            opening_quantity = validate_movement_quantity(opening_quantity)
        self._check_unique(sku=sku, barcode=barcode)

        item = InventoryItem(
            id=item_id or new_id(),
            name=name,
            sku=sku,
            barcode=barcode,
            category=category,
            location=location,
            description=description,
            minimum_stock=minimum_stock,
            unit_cost=unit_cost,
            sell_price=sell_price,
            quantity_in_stock=0,
            last_ledger_seq=0,
        )
        self.session.add(item)

        if opening_quantity:
            self._append(
                item, TransactionType.RESTOCK, opening_quantity, user,
                notes="Opening balance",
            )
            item.quantity_in_stock = opening_quantity

        self._flush("InventoryItem", item.id)
        logger.info(
            "inventory_item_created",
            extra={
                "inventory_item_id": item.id,
                "sku": sku,
                "opening_quantity": opening_quantity,
            },
        )
        return InventoryItemRecord.from_model(item)

    def update_item_details(self, item_id: str, **changes: Any) -> InventoryItemRecord:
        """Edit catalogue fields.  Stock is not editable here."""
        unknown = set(changes) - EDITABLE_ITEM_FIELDS
        if unknown:
            raise ValidationError(
                ", ".join(sorted(unknown)),
                "cannot be edited directly; stock moves through checkout/restock",
            )
        values = dict(changes)
        if "name" in values:
            values["name"] = require_text(values["name"], "name")
        if "minimum_stock" in values:
            values["minimum_stock"] = require_whole_number(
                values["minimum_stock"], "minimum_stock", minimum=0
            )
        if "unit_cost" in values:
            values["unit_cost"] = require_money(values["unit_cost"], "unit_cost")
        if "sell_price" in values:
            values["sell_price"] = require_money(
                values["sell_price"], "sell_price", optional=True
            )

        item = self._lock(item_id)
        self._check_unique(
            sku=values.get("sku"), barcode=values.get("barcode"), exclude_id=item_id
        )
        for field_name, value in values.items():
            setattr(item, field_name, value)
        self._flush("InventoryItem", item_id)
        logger.info(
            "inventory_item_updated",
            extra={"inventory_item_id": item_id, "fields": sorted(values)},
        )
        return InventoryItemRecord.from_model(item)

    def _check_unique(
        self,
        sku: str | None,
        barcode: str | None,
        exclude_id: str | None = None,
    ) -> None:
        for field_name, value in (("sku", sku), ("barcode", barcode)):
            if not value:
                continue
            column = getattr(InventoryItem, field_name)
            existing = self.session.execute(
                select(InventoryItem.id).where(column == value)
            ).scalar_one_or_none()
            if existing is not None and existing != exclude_id:
                raise DuplicateInventoryItemError(field_name, value, existing)
