"""
Value enumerations shared by the domain and persistence layers.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Models import these; the domain
    never imports models.
"""

from enum import Enum


class PartStatus(str, Enum):
    """
    Lifecycle status of a part.

    Guided path:
        NEEDED -> ORDERED -> RECEIVED -> READY_TO_INSTALL -> INSTALLED
        ORDERED -> READY_TO_INSTALL (receive and assign installer at once)
    """

    NEEDED = "needed"
    ORDERED = "ordered"
    RECEIVED = "received"
    READY_TO_INSTALL = "ready_to_install"
    INSTALLED = "installed"


PART_STATUS_VALUES: tuple[str, ...] = tuple(s.value for s in PartStatus)


class TransactionType(str, Enum):
    """Direction of a stock movement."""

    CHECKOUT = "checkout"  # subtracts from on-hand
    RESTOCK = "restock"    # adds to on-hand
