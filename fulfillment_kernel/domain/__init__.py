"""
Pure domain layer.

This module contains pure data transfer objects and domain logic
with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (except the injectable Clock interface)
- I/O

All domain objects are immutable and deterministic.
"""

from fulfillment_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from fulfillment_kernel.domain.values import PART_STATUS_VALUES, PartStatus, TransactionType

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "PART_STATUS_VALUES",
    "PartStatus",
    "TransactionType",
]
