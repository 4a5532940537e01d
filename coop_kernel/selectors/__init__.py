"""Selectors for the coordination kernel (read side)."""

from coop_kernel.selectors.base import BaseSelector
from coop_kernel.selectors.bulk_order_selector import BulkOrderSelector
from coop_kernel.selectors.group_selector import GroupSelector
from coop_kernel.selectors.order_selector import OrderSelector

__all__ = [
    "BaseSelector",
    "BulkOrderSelector",
    "GroupSelector",
    "OrderSelector",
]
