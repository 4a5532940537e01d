"""ORM models for the coordination kernel."""

from coop_kernel.models.bulk_order import (
    BulkOrder,
    BulkOrderStatus,
    Participation,
    PaymentStatus,
)
from coop_kernel.models.group import BuyingGroup, GroupMembership, MembershipStatus
from coop_kernel.models.order import Order, OrderStatusChange
from coop_kernel.models.product import Product

__all__ = [
    "BulkOrder",
    "BulkOrderStatus",
    "BuyingGroup",
    "GroupMembership",
    "MembershipStatus",
    "Order",
    "OrderStatusChange",
    "Participation",
    "PaymentStatus",
    "Product",
]
