"""
Tests for StockLedgerService: checkout, restock, reconcile and item CRUD.

The invariant checked throughout: after every operation the cached
quantity_in_stock equals the fold of the item's ledger entries.
"""

from decimal import Decimal

import pytest
from sqlalchemy import text

from fulfillment_kernel.exceptions import (
    DuplicateInventoryItemError,
    InsufficientStockError,
    InventoryItemNotFoundError,
    ValidationError,
)
from fulfillment_kernel.models.inventory import InventoryItem, InventoryTransaction

USER = "tech@example.com"


def _assert_in_sync(stock_service, item_id):
    item = stock_service.session.get(InventoryItem, item_id)
    assert item.quantity_in_stock == stock_service.ledger_quantity(item_id)


class TestCreateItem:

    def test_opening_balance_is_a_restock_entry(self, make_item, stock_service):
        item = make_item(opening_quantity=10, sku="CT-100")

        assert item.quantity_in_stock == 10
        entries = (
            stock_service.session.query(InventoryTransaction)
            .filter_by(inventory_item_id=item.id)
            .all()
        )
        assert [(e.seq, e.type, e.quantity, e.notes) for e in entries] == [
            (1, "restock", 10, "Opening balance")
        ]
        _assert_in_sync(stock_service, item.id)

    def test_zero_opening_writes_no_entry(self, make_item, stock_service):
        item = make_item(opening_quantity=0)
        assert item.quantity_in_stock == 0
        assert item.out_of_stock
        assert stock_service.ledger_quantity(item.id) == 0

    def test_duplicate_sku(self, make_item):
        make_item(sku="CT-100")
        with pytest.raises(DuplicateInventoryItemError) as exc_info:
            make_item(name="Other", sku="CT-100")
        assert exc_info.value.field == "sku"
        assert exc_info.value.code == "DUPLICATE_INVENTORY_ITEM"

    def test_duplicate_barcode(self, make_item):
        make_item(barcode="0123")
        with pytest.raises(DuplicateInventoryItemError):
            make_item(name="Other", barcode="0123")

    def test_update_details_never_touches_stock(self, make_item, stock_service):
        item = make_item(sku="A")
        updated = stock_service.update_item_details(
            item.id, location="Van 2", minimum_stock=4, unit_cost="1.10"
        )
        assert updated.location == "Van 2"
        assert updated.unit_cost == Decimal("1.10")
        assert updated.quantity_in_stock == 10

        with pytest.raises(ValidationError):
            stock_service.update_item_details(item.id, quantity_in_stock=50)

    def test_update_keeps_own_sku(self, make_item, stock_service):
        item = make_item(sku="A")
        assert stock_service.update_item_details(item.id, sku="A").sku == "A"


class TestCheckout:

    def test_checkout_decrements_and_appends(self, make_item, stock_service):
        item = make_item(opening_quantity=10)

        movement = stock_service.checkout(item.id, 3, USER, project_id="proj-1", notes="Kitchen")

        assert movement.item.quantity_in_stock == 7
        txn = movement.transaction
        assert (txn.seq, txn.type, txn.quantity, txn.project_id) == (2, "checkout", 3, "proj-1")
        assert txn.signed_quantity == -3
        assert txn.user == USER
        _assert_in_sync(stock_service, item.id)

    def test_checkout_keeps_long_project_id(self, make_item, stock_service):
        item = make_item(opening_quantity=5)
        project_id = "workspace/" + "x" * 90

        movement = stock_service.checkout(item.id, 1, USER, project_id=project_id)

        assert movement.transaction.project_id == project_id
        assert InventoryTransaction.__table__.c.project_id.type.length == 255

    def test_checkout_of_entire_stock(self, make_item, stock_service):
        item = make_item(opening_quantity=4)
        movement = stock_service.checkout(item.id, 4, USER)
        assert movement.item.quantity_in_stock == 0
        assert movement.item.out_of_stock

    def test_insufficient_stock_writes_nothing(self, make_item, stock_service):
        item = make_item(opening_quantity=2)

        with pytest.raises(InsufficientStockError) as exc_info:
            stock_service.checkout(item.id, 3, USER)

        assert exc_info.value.requested == 3
        assert exc_info.value.available == 2
        row = stock_service.session.get(InventoryItem, item.id)
        assert row.quantity_in_stock == 2
        assert row.last_ledger_seq == 1
        _assert_in_sync(stock_service, item.id)

    @pytest.mark.parametrize("quantity", [0, -2, 1.5])
    def test_invalid_quantity(self, make_item, stock_service, quantity):
        item = make_item()
        with pytest.raises(ValidationError):
            stock_service.checkout(item.id, quantity, USER)

    def test_requires_user(self, make_item, stock_service):
        item = make_item()
        with pytest.raises(ValidationError):
            stock_service.checkout(item.id, 1, "")

    def test_unknown_item(self, stock_service):
        with pytest.raises(InventoryItemNotFoundError):
            stock_service.checkout("missing", 1, USER)

    def test_logs_rejection(self, make_item, stock_service, captured_logs):
        item = make_item(opening_quantity=1)
        with pytest.raises(InsufficientStockError):
            stock_service.checkout(item.id, 5, USER)

        records = [r for r in captured_logs() if r["message"] == "stock_checkout_rejected"]
        assert records[0]["requested"] == 5
        assert records[0]["available"] == 1


class TestRestock:

    def test_restock_increments(self, make_item, stock_service):
        item = make_item(opening_quantity=0)
        movement = stock_service.restock(item.id, 25, USER, notes="Delivery")

        assert movement.item.quantity_in_stock == 25
        assert movement.transaction.project_id is None
        assert movement.transaction.seq == 1
        _assert_in_sync(stock_service, item.id)

    def test_sequence_is_gapless(self, make_item, stock_service):
        item = make_item(opening_quantity=5)
        stock_service.checkout(item.id, 2, USER)
        stock_service.restock(item.id, 1, USER)
        stock_service.checkout(item.id, 4, USER)

        seqs = [
            e.seq
            for e in stock_service.session.query(InventoryTransaction)
            .filter_by(inventory_item_id=item.id)
            .order_by(InventoryTransaction.seq)
        ]
        assert seqs == [1, 2, 3, 4]
        _assert_in_sync(stock_service, item.id)


class TestReconcile:

    def _corrupt(self, session, item_id, quantity):
        # Raw SQL bypasses the ORM guard, simulating an out-of-band write.
        session.execute(
            text("UPDATE inventory_items SET quantity_in_stock = :q WHERE id = :id"),
            {"q": quantity, "id": item_id},
        )

    def test_in_sync(self, make_item, stock_service):
        item = make_item(opening_quantity=6)
        result = stock_service.reconcile(item.id)
        assert result.in_sync
        assert not result.repaired

    def test_repairs_drift(self, make_item, stock_service, captured_logs):
        item = make_item(opening_quantity=6)
        stock_service.checkout(item.id, 2, USER)
        self._corrupt(stock_service.session, item.id, 40)

        result = stock_service.reconcile(item.id)

        assert result.cached_before == 40
        assert result.ledger_quantity == 4
        assert result.drift == -36
        assert result.repaired
        assert stock_service.session.get(InventoryItem, item.id).quantity_in_stock == 4
        assert any(r["message"] == "stock_drift_detected" for r in captured_logs())

    def test_report_only(self, make_item, stock_service):
        item = make_item(opening_quantity=6)
        self._corrupt(stock_service.session, item.id, 1)

        result = stock_service.reconcile(item.id, repair=False)

        assert not result.in_sync
        assert not result.repaired
        assert stock_service.session.get(InventoryItem, item.id).quantity_in_stock == 1

    def test_checkout_after_repair_uses_ledger_value(self, make_item, stock_service):
        item = make_item(opening_quantity=3)
        self._corrupt(stock_service.session, item.id, 100)
        stock_service.reconcile(item.id)

        with pytest.raises(InsufficientStockError):
            stock_service.checkout(item.id, 50, USER)
