"""
Inventory selector tests.

Verifies:
- Item lookup by id, SKU and barcode.
- Low / out-of-stock classification against minimum_stock.
- Ledger history ordering and the per-project checkout view.
- The stock summary totals.
"""

from decimal import Decimal

import pytest

from fulfillment_kernel.exceptions import InventoryItemNotFoundError
from fulfillment_kernel.selectors.inventory_selector import InventorySelector

TEST_USER = "tech@example.com"


@pytest.fixture
def selector(session) -> InventorySelector:
    return InventorySelector(session)


class TestItemLookup:

    def test_get_unknown_raises(self, selector):
        with pytest.raises(InventoryItemNotFoundError):
            selector.get_item("missing")

    def test_lookup_by_sku_and_barcode(self, selector, make_item):
        item = make_item("Anchor bolt", sku="AB-1", barcode="0123456789")
        assert selector.get_item_by_sku("AB-1").id == item.id
        assert selector.get_item_by_barcode("0123456789").id == item.id
        assert selector.get_item_by_sku("nope") is None

    def test_list_items_by_category(self, selector, make_item):
        make_item("Bolt", category="fasteners")
        make_item("Tape", category="consumables")
        assert [i.name for i in selector.list_items(category="fasteners")] == ["Bolt"]


class TestStockLevels:

    def test_low_and_out_of_stock(self, selector, make_item, stock_service):
        low = make_item("Low", opening_quantity=2, minimum_stock=5)
        empty = make_item("Empty", opening_quantity=1)
        make_item("Plenty", opening_quantity=50, minimum_stock=5)
        stock_service.checkout(empty.id, 1, TEST_USER)

        assert [i.id for i in selector.low_stock_items()] == [low.id]
        assert [i.id for i in selector.out_of_stock_items()] == [empty.id]

    def test_stock_summary(self, selector, make_item):
        make_item("A", opening_quantity=4, unit_cost=Decimal("2.50"))
        make_item("B", opening_quantity=1, minimum_stock=3, unit_cost=Decimal("10"))
        make_item("C", opening_quantity=0)

        summary = selector.stock_summary()
        assert summary.total_items == 3
        assert summary.total_units == 5
        assert summary.low_stock_count == 1
        assert summary.out_of_stock_count == 1
        assert summary.inventory_value == Decimal("20.00")


class TestLedgerViews:

    def test_transactions_in_seq_order(self, selector, make_item, stock_service):
        item = make_item(opening_quantity=10)
        stock_service.checkout(item.id, 3, TEST_USER, project_id="proj-1")
        stock_service.restock(item.id, 5, TEST_USER)

        entries = selector.transactions_for_item(item.id)
        assert [e.seq for e in entries] == [1, 2, 3]
        assert [e.type for e in entries] == ["restock", "checkout", "restock"]
        assert selector.ledger_quantity(item.id) == 12

    def test_transactions_for_project_only_checkouts(self, selector, make_item, stock_service):
        item = make_item(opening_quantity=10)
        stock_service.checkout(item.id, 2, TEST_USER, project_id="proj-1")
        stock_service.checkout(item.id, 1, TEST_USER, project_id="proj-2")

        entries = selector.transactions_for_project("proj-1")
        assert [(e.type, e.quantity) for e in entries] == [("checkout", 2)]

    def test_recent_transactions_limit(self, selector, make_item, stock_service):
        item = make_item(opening_quantity=10)
        for _ in range(3):
            stock_service.restock(item.id, 1, TEST_USER)
        assert len(selector.recent_transactions(limit=2)) == 2
