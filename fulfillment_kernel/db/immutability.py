"""
ORM-Level Immutability Enforcement.

===============================================================================
WHAT IS PROTECTED
===============================================================================

Entity                | Rule
----------------------|----------------------------------------------------
InventoryTransaction  | ALWAYS immutable from creation; never deleted
Part.project_id       | Immutable after creation
Part lifecycle dates  | order_date, received_date, installed_date are
                      | write-once: set from NULL, never changed or cleared
InventoryItem stock   | quantity_in_stock changes only in a flush that also
                      | inserts a ledger entry for the same item, or inside
                      | an explicit ``allow_stock_repair()`` block

===============================================================================
HOW IT WORKS
===============================================================================

    session.flush()
         |
         v
    [before_flush]  --> _check_stock_changes_have_ledger_entry()
         |
         v
    [before_update] --> _check_part_immutability() / _check_inventory_txn_*
    [before_delete]
         |
         v
    SQL sent to database (only if checks pass)

A failed check raises ImmutabilityViolationError; nothing reaches the
database and the caller's transaction is left for it to roll back.

===============================================================================
USAGE
===============================================================================

    from fulfillment_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

Tests that need to write forbidden state call
``unregister_immutability_listeners()`` and re-register afterwards.
"""

from contextlib import contextmanager
from typing import Generator

from sqlalchemy import event
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import get_history

from fulfillment_kernel.exceptions import ImmutabilityViolationError
from fulfillment_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

# session.info key holding item ids whose cached stock may be rewritten
STOCK_REPAIR_KEY = "fulfillment_stock_repair_item_ids"

WRITE_ONCE_DATE_FIELDS = ("order_date", "received_date", "installed_date")


def _blocked(entity_type: str, entity_id, operation: str, reason: str):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "reason": reason,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


# =============================================================================
# Stock ledger entries
# =============================================================================


def _check_inventory_txn_immutability(mapper, connection, target):
    """Ledger entries are never modified."""
    raise _blocked(
        "InventoryTransaction",
        target.id,
        "UPDATE",
        "Ledger entries are immutable and cannot be modified",
    )


def _check_inventory_txn_delete(mapper, connection, target):
    """Ledger entries are never deleted."""
    raise _blocked(
        "InventoryTransaction",
        target.id,
        "DELETE",
        "Ledger entries cannot be deleted",
    )


# =============================================================================
# Parts
# =============================================================================


def _check_part_immutability(mapper, connection, target):
    """
    Block project reassignment and overwrites of set lifecycle dates.

    Uses attribute history: ``deleted`` holds the value loaded from the
    database, ``added`` the value being written.  A date moving from NULL to
    a value is the transition recording itself and is allowed.
    """
    project_history = get_history(target, "project_id")
    if project_history.deleted and project_history.added:
        if project_history.deleted[0] != project_history.added[0]:
            raise _blocked(
                "Part",
                target.id,
                "UPDATE",
                "project_id is immutable after creation",
            )

    for field in WRITE_ONCE_DATE_FIELDS:
        history = get_history(target, field)
        if not history.has_changes():
            continue
        old = history.deleted[0] if history.deleted else None
        new = history.added[0] if history.added else None
        if old is not None and new != old:
            raise _blocked(
                "Part",
                target.id,
                "UPDATE",
                f"{field} is already set to {old.isoformat()} and cannot be "
                "overwritten or cleared",
            )


# =============================================================================
# Cached stock
# =============================================================================


def _check_stock_changes_have_ledger_entry(session, flush_context, instances):
    """
    Every change to InventoryItem.quantity_in_stock must be flushed with a
    new InventoryTransaction for the same item.

    Runs in SessionEvents.before_flush so new and dirty objects are visible
    together before the flush plan is fixed.
    """
    from fulfillment_kernel.models.inventory import InventoryItem, InventoryTransaction

    ledgered_items = {
        obj.inventory_item_id
        for obj in session.new
        if isinstance(obj, InventoryTransaction)
    }
    repair_allowed = session.info.get(STOCK_REPAIR_KEY, set())

    for obj in list(session.new):
        if not isinstance(obj, InventoryItem):
            continue
        if (obj.quantity_in_stock or 0) != 0 and obj.id not in ledgered_items:
            raise _blocked(
                "InventoryItem",
                obj.id,
                "INSERT",
                "opening stock must be recorded as a ledger entry",
            )

    for obj in list(session.dirty):
        if not isinstance(obj, InventoryItem):
            continue
        history = get_history(obj, "quantity_in_stock")
        if not history.has_changes():
            continue
        if obj.id in ledgered_items or obj.id in repair_allowed:
            continue
        raise _blocked(
            "InventoryItem",
            obj.id,
            "UPDATE",
            "quantity_in_stock changes only through the stock ledger",
        )


@contextmanager
def allow_stock_repair(session: Session, item_id: str) -> Generator[None, None, None]:
    """
    Permit rewriting one item's cached stock without a ledger entry.

    Used by reconcile to write the ledger fold back into the cache.  The
    permission covers flushes inside the block only.
    """
    allowed = session.info.setdefault(STOCK_REPAIR_KEY, set())
    allowed.add(item_id)
    try:
        yield
    finally:
        allowed.discard(item_id)


# =============================================================================
# Registration
# =============================================================================


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: a listener already registered is not added twice.
    """
    from fulfillment_kernel.models.inventory import InventoryTransaction
    from fulfillment_kernel.models.part import Part

    _safe_add_listener(Session, "before_flush", _check_stock_changes_have_ledger_entry)
    _safe_add_listener(
        InventoryTransaction, "before_update", _check_inventory_txn_immutability
    )
    _safe_add_listener(InventoryTransaction, "before_delete", _check_inventory_txn_delete)
    _safe_add_listener(Part, "before_update", _check_part_immutability)


def _safe_add_listener(target, event_name, listener_fn):
    if not event.contains(target, event_name, listener_fn):
        event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that intentionally write forbidden state.
    """
    from fulfillment_kernel.models.inventory import InventoryTransaction
    from fulfillment_kernel.models.part import Part

    _safe_remove_listener(Session, "before_flush", _check_stock_changes_have_ledger_entry)
    _safe_remove_listener(
        InventoryTransaction, "before_update", _check_inventory_txn_immutability
    )
    _safe_remove_listener(
        InventoryTransaction, "before_delete", _check_inventory_txn_delete
    )
    _safe_remove_listener(Part, "before_update", _check_part_immutability)
