"""Services for the fulfillment kernel (write side)."""

from fulfillment_kernel.services.part_lifecycle_service import (
    AppliedTransition,
    PartLifecycleService,
)
from fulfillment_kernel.services.stock_ledger_service import StockLedgerService

__all__ = [
    "AppliedTransition",
    "PartLifecycleService",
    "StockLedgerService",
]
