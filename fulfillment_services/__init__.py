"""
fulfillment_services -- Package init and public API.

Responsibility:
    Use-case orchestration over the fulfillment kernel.  This is the
    **only** layer that opens sessions, commits transactions and calls the
    external collaborators (task creator, notifier).

Architecture position:
    Services -- stateful orchestration over the kernel.

    Dependency direction (enforced by tests/architecture/test_kernel_boundary.py):
        fulfillment_services/ -> fulfillment_kernel/  (allowed)
        fulfillment_services/ -> fulfillment_config/  (allowed, bootstrap only)
        fulfillment_kernel/   -> fulfillment_services/ (FORBIDDEN)
        fulfillment_kernel/   -> fulfillment_config/   (FORBIDDEN)
"""

from fulfillment_services.bulk_coordinator import BulkCoordinator
from fulfillment_services.fulfillment_service import (
    FulfillmentService,
    build_status_notice,
)

__all__ = [
    "BulkCoordinator",
    "FulfillmentService",
    "build_status_notice",
]
