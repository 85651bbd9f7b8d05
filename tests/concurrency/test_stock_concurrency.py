"""
Concurrency tests for the stock ledger and part rows.

Threads hammer the same inventory item through the Fulfillment Service
against a shared SQLite file.  Whatever interleaving happens, the final
cached quantity must equal initial - successful checkouts + restocks, and
must equal the fold of the ledger.
"""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy.orm.exc import StaleDataError

from fulfillment_kernel.exceptions import InsufficientStockError, OptimisticLockError
from fulfillment_kernel.models.part import Part
from fulfillment_kernel.selectors.inventory_selector import InventorySelector
from fulfillment_kernel.services.part_lifecycle_service import PartLifecycleService

pytestmark = pytest.mark.slow


class TestConcurrentCheckouts:

    def test_parallel_checkouts_never_oversell(self, fulfillment_service, session_factory):
        initial = 20
        item = fulfillment_service.create_inventory_item("Cable tie", "tech", opening_quantity=initial)
        barrier = threading.Barrier(8)
        lock = threading.Lock()
        outcomes = {"ok": 0, "insufficient": 0, "conflict": 0}

        def _worker(n):
            barrier.wait()
            for _ in range(5):
                try:
                    fulfillment_service.checkout(item.id, 1, f"worker-{n}")
                    key = "ok"
                except InsufficientStockError:
                    key = "insufficient"
                except OptimisticLockError:
                    key = "conflict"
                with lock:
                    outcomes[key] += 1

        with ThreadPoolExecutor(max_workers=8) as pool:
            list(pool.map(_worker, range(8)))

        assert sum(outcomes.values()) == 40
        assert outcomes["ok"] <= initial

        stored = fulfillment_service.get_inventory_item(item.id)
        session = session_factory()
        try:
            folded = InventorySelector(session).ledger_quantity(item.id)
        finally:
            session.close()

        assert stored.quantity_in_stock == initial - outcomes["ok"]
        assert stored.quantity_in_stock == folded
        assert stored.quantity_in_stock >= 0

    def test_mixed_checkout_and_restock(self, fulfillment_service):
        item = fulfillment_service.create_inventory_item("Screw", "tech", opening_quantity=5)
        lock = threading.Lock()
        net = {"value": 0}

        def _worker(n):
            for i in range(4):
                try:
                    if (n + i) % 2:
                        fulfillment_service.restock(item.id, 2, f"w{n}")
                        delta = 2
                    else:
                        fulfillment_service.checkout(item.id, 1, f"w{n}")
                        delta = -1
                except (InsufficientStockError, OptimisticLockError):
                    continue
                with lock:
                    net["value"] += delta

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(_worker, range(4)))

        assert fulfillment_service.get_inventory_item(item.id).quantity_in_stock == 5 + net["value"]
        (result,) = fulfillment_service.reconcile_all_stock(repair=False)
        assert result.in_sync

    def test_ledger_sequence_has_no_gaps(self, fulfillment_service):
        item = fulfillment_service.create_inventory_item("Washer", "tech", opening_quantity=50)

        def _worker(n):
            for _ in range(3):
                try:
                    fulfillment_service.checkout(item.id, 1, f"w{n}")
                except OptimisticLockError:
                    pass

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(_worker, range(4)))

        seqs = [t.seq for t in fulfillment_service.transactions_for_item(item.id)]
        assert sorted(seqs) == list(range(1, len(seqs) + 1))


class TestOptimisticLocking:

    def test_stale_part_write_becomes_optimistic_lock_error(
        self, fulfillment_service, session_factory, lifecycle_engine
    ):
        part = fulfillment_service.create_part("proj-1", "Panel")

        stale_session = session_factory()
        try:
            stale = stale_session.get(Part, part.id)
            fulfillment_service.update_part_details(part.id, supplier="Acme")

            stale.supplier = "Other"
            service = PartLifecycleService(stale_session, lifecycle_engine)
            with pytest.raises(OptimisticLockError) as exc_info:
                service._flush("Part", part.id)
            assert isinstance(exc_info.value.__cause__, StaleDataError)
            assert exc_info.value.code == "OPTIMISTIC_LOCK_CONFLICT"
        finally:
            stale_session.rollback()
            stale_session.close()

        assert fulfillment_service.get_part(part.id).supplier == "Acme"

    def test_version_increments_on_every_write(self, fulfillment_service):
        part = fulfillment_service.create_part("proj-1", "Panel")
        assert part.version == 1

        ordered = fulfillment_service.order_part(part.id)
        assert ordered.part.version == 2
