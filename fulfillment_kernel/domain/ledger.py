"""
Stock ledger arithmetic (``fulfillment_kernel.domain.ledger``).

Responsibility:
    Pure functions over stock movements: the fold that defines an item's
    authoritative on-hand quantity, quantity validation, and the derived
    stock flags.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Used by
    StockLedgerService (writes, reconcile) and InventorySelector (reads).

Invariants enforced:
    - On-hand is the fold of an item's entries in sequence order: restock
      adds, checkout subtracts, and the running value is clamped at zero
      after every entry.
    - Movement quantities are integers >= 1.

Failure modes:
    - ValidationError from ``validate_movement_quantity``.
"""

from __future__ import annotations

from typing import Iterable, Protocol

from fulfillment_kernel.domain.validation import require_whole_number
from fulfillment_kernel.domain.values import TransactionType
from fulfillment_kernel.exceptions import ValidationError


class Movement(Protocol):
    """Anything with a movement type and a positive quantity."""

    type: str
    quantity: int


def apply_movement(on_hand: int, movement_type: str, quantity: int) -> int:
    """Return on-hand after one movement, clamped at zero."""
    if movement_type == TransactionType.RESTOCK.value:
        return on_hand + quantity
    if movement_type == TransactionType.CHECKOUT.value:
        return max(0, on_hand - quantity)
    raise ValidationError("type", f"unknown movement type {movement_type!r}")


def fold_on_hand(movements: Iterable[Movement]) -> int:
    """
    Fold movements (already in sequence order) into an on-hand quantity.

    The clamp is applied per step, so a checkout recorded against an empty
    item cannot make later restocks disappear.
    """
    on_hand = 0
    for movement in movements:
        on_hand = apply_movement(on_hand, movement.type, movement.quantity)
    return on_hand


def validate_movement_quantity(quantity: object) -> int:
    """Accept integers >= 1 only (bool is rejected)."""
    return require_whole_number(quantity, "quantity", minimum=1)


def is_out_of_stock(quantity_in_stock: int) -> bool:
    return quantity_in_stock == 0


def is_low_stock(quantity_in_stock: int, minimum_stock: int) -> bool:
    return 0 < quantity_in_stock <= minimum_stock
