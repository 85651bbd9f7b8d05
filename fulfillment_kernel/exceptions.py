"""
Typed Exception Hierarchy for the Fulfillment Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers decide what to do next from the error (use the status override,
lower the checkout quantity, report a bulk item as failed).  Parsing message
strings for that decision is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (current status, available stock)

Example:
    try:
        fulfillment.checkout(item_id, quantity=5, user="ops@example.com")
    except InsufficientStockError as e:
        show(f"Only {e.available} left of {e.item_id}")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    FulfillmentError (base)
    |
    +-- ValidationError
    |   +-- DuplicateInventoryItemError
    |
    +-- NotFoundError
    |   +-- PartNotFoundError
    |   +-- InventoryItemNotFoundError
    |
    +-- PartError
    |   +-- InvalidTransitionError
    |
    +-- StockError
    |   +-- InsufficientStockError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- CollaboratorError
    |
    +-- BulkError
        +-- PartialBulkFailureError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|----------------------------------
Validation   | VALIDATION_ERROR            | Bad quantity, missing installer,
             |                             | unknown status, bad field
             | DUPLICATE_INVENTORY_ITEM    | SKU or barcode already used
-------------|-----------------------------|----------------------------------
Not found    | PART_NOT_FOUND              | Part ID doesn't exist
             | INVENTORY_ITEM_NOT_FOUND    | Inventory item ID doesn't exist
-------------|-----------------------------|----------------------------------
Part         | INVALID_TRANSITION          | Guided op from a disallowed state
-------------|-----------------------------|----------------------------------
Stock        | INSUFFICIENT_STOCK          | Checkout exceeds on-hand
-------------|-----------------------------|----------------------------------
Concurrency  | OPTIMISTIC_LOCK_CONFLICT    | Row changed by another writer
-------------|-----------------------------|----------------------------------
Immutability | IMMUTABILITY_VIOLATION      | Ledger edit, date overwrite,
             |                             | stock edit outside the ledger
-------------|-----------------------------|----------------------------------
Collaborator | COLLABORATOR_FAILED         | Task creation / notification
-------------|-----------------------------|----------------------------------
Bulk         | PARTIAL_BULK_FAILURE        | BulkResult.raise_for_failures()

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Guided transitions explain the rejection:

    except InvalidTransitionError as e:
        # e.current_status, e.allowed_from -> offer set_status() instead

2. ConcurrencyError is the only category worth retrying automatically.

3. CollaboratorError is never raised out of a use-case operation; it is
   returned in the outcome so the committed transition stands.

===============================================================================
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from fulfillment_kernel.domain.bulk import BulkResult


class FulfillmentError(Exception):
    """
    Base exception for all fulfillment kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "FULFILLMENT_ERROR"


# Validation exceptions


class ValidationError(FulfillmentError):
    """Input failed validation (quantity < 1, missing required field, ...)."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class DuplicateInventoryItemError(ValidationError):
    """An inventory item with the same SKU or barcode already exists."""

    code: str = "DUPLICATE_INVENTORY_ITEM"

    def __init__(self, field: str, value: str, existing_item_id: str):
        self.value = value
        self.existing_item_id = existing_item_id
        super().__init__(
            field,
            f"{value!r} is already used by inventory item {existing_item_id}",
        )


# Not-found exceptions


class NotFoundError(FulfillmentError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class PartNotFoundError(NotFoundError):
    """Part with given ID was not found."""

    code: str = "PART_NOT_FOUND"

    def __init__(self, part_id: str):
        self.part_id = part_id
        super().__init__("Part", part_id)


class InventoryItemNotFoundError(NotFoundError):
    """Inventory item with given ID was not found."""

    code: str = "INVENTORY_ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__("InventoryItem", item_id)


# Part lifecycle exceptions


class PartError(FulfillmentError):
    """Base exception for part lifecycle errors."""

    code: str = "PART_ERROR"


class InvalidTransitionError(PartError):
    """
    Guided operation invoked from a state it does not accept.

    Carries the current status and the allowed source states so the caller
    can decide between fixing the request and using the status override.
    """

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        part_id: str,
        action: str,
        current_status: str,
        allowed_from: Iterable[str],
    ):
        self.part_id = part_id
        self.action = action
        self.current_status = current_status
        self.allowed_from = tuple(sorted(allowed_from))
        super().__init__(
            f"Cannot {action} part {part_id}: status is '{current_status}', "
            f"expected one of {', '.join(self.allowed_from)}"
        )


# Stock exceptions


class StockError(FulfillmentError):
    """Base exception for stock ledger errors."""

    code: str = "STOCK_ERROR"


class InsufficientStockError(StockError):
    """Checkout quantity exceeds the quantity on hand."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, item_id: str, requested: int, available: int):
        self.item_id = item_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for inventory item {item_id}: "
            f"requested {requested}, available {available}"
        )


# Concurrency exceptions


class ConcurrencyError(FulfillmentError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability exceptions


class ImmutabilityError(FulfillmentError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record or field.

    Ledger entries are immutable from creation; lifecycle dates are
    write-once; cached stock only moves with a ledger entry.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Collaborator exceptions


class CollaboratorError(FulfillmentError):
    """An external collaborator (task creator, notifier) failed."""

    code: str = "COLLABORATOR_FAILED"

    def __init__(self, collaborator: str, reason: str):
        self.collaborator = collaborator
        self.reason = reason
        super().__init__(f"{collaborator} failed: {reason}")


# Bulk exceptions


class BulkError(FulfillmentError):
    """Base exception for bulk operation errors."""

    code: str = "BULK_ERROR"


class PartialBulkFailureError(BulkError):
    """Some items of a bulk operation failed.

    Never raised by the coordinator itself; callers that prefer an exception
    over inspecting the result call ``BulkResult.raise_for_failures()``.
    """

    code: str = "PARTIAL_BULK_FAILURE"

    def __init__(self, result: "BulkResult"):
        self.result = result
        self.failed_ids = tuple(f.part_id for f in result.failed)
        super().__init__(
            f"Bulk {result.operation} failed for {len(result.failed)} of "
            f"{result.total} part(s): {', '.join(self.failed_ids)}"
        )
