"""Domain models for the fulfillment kernel."""

from fulfillment_kernel.models.inventory import (
    InventoryItem,
    InventoryTransaction,
    TransactionType,
)
from fulfillment_kernel.models.part import PART_STATUS_VALUES, Part, PartStatus

__all__ = [
    "InventoryItem",
    "InventoryTransaction",
    "PART_STATUS_VALUES",
    "Part",
    "PartStatus",
    "TransactionType",
]
