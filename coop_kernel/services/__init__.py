"""Services for the coordination kernel (write side)."""

from coop_kernel.services.bulk_order_service import BulkOrderService
from coop_kernel.services.catalog_service import (
    CatalogReader,
    CatalogService,
    StockReservation,
)
from coop_kernel.services.membership_service import MembershipRegistry, MembershipService
from coop_kernel.services.order_service import OrderService
from coop_kernel.services.participation_ledger import ParticipationLedger

__all__ = [
    "BulkOrderService",
    "CatalogReader",
    "CatalogService",
    "MembershipRegistry",
    "MembershipService",
    "OrderService",
    "ParticipationLedger",
    "StockReservation",
]
