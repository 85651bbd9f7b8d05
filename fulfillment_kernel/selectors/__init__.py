"""Selectors for the fulfillment kernel (read side)."""

from fulfillment_kernel.selectors.inventory_selector import InventorySelector
from fulfillment_kernel.selectors.part_selector import PartSelector

__all__ = [
    "InventorySelector",
    "PartSelector",
]
