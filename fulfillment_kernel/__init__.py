"""
Fulfillment Kernel

The physical-parts fulfillment core:
- Part lifecycle state machine with guided transitions and an override
- Append-only inventory stock ledger with a materialized on-hand quantity
- Per-entity atomic read-modify-write via row locks and version counters
"""

__version__ = "0.1.0"
