"""
Module: coop_kernel.selectors.order_selector
Responsibility: Read-only access to individual orders and their status
    history, for buyers and for the sellers whose products were ordered.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - A user sees an order only as its buyer or as the product's seller.
    - History is ordered by sequence, oldest first.

Failure modes:
    - OrderNotFoundError, ForbiddenError from get() and history().
    - ValidationError for an unknown filter value, sort key or page bound.
"""

from uuid import UUID

from sqlalchemy import or_, select

from coop_kernel.domain.dtos import OrderHistoryEntry, OrderInfo
from coop_kernel.domain.order_lifecycle import (
    STATUS_DESCRIPTIONS,
    OrderStatus,
    OrderType,
    parse_status,
)
from coop_kernel.exceptions import ForbiddenError, OrderNotFoundError, ValidationError
from coop_kernel.models.bulk_order import PaymentStatus
from coop_kernel.models.order import Order, OrderStatusChange
from coop_kernel.models.product import Product
from coop_kernel.selectors.base import BaseSelector

SORTABLE_COLUMNS = {
    "created_at": Order.created_at,
    "total_amount": Order.total_amount,
    "status": Order.status,
}

DEFAULT_PAGE_SIZE = 50


def _check_page(limit: int, offset: int) -> None:
    if limit <= 0:
        raise ValidationError("limit", "limit must be positive")
    if offset < 0:
        raise ValidationError("offset", "offset must not be negative")


class OrderSelector(BaseSelector[Order]):
    """Order listings, lookups and history."""

    def orders_for_user(
        self,
        user_id: UUID,
        status: str | None = None,
        payment_status: str | None = None,
        order_type: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> list[OrderInfo]:
        """Orders where ``user_id`` is the buyer or the product's seller."""
        _check_page(limit, offset)
        if sort_by not in SORTABLE_COLUMNS:
            raise ValidationError(
                "sort_by", f"sort_by must be one of {', '.join(SORTABLE_COLUMNS)}"
            )
        if sort_order not in ("asc", "desc"):
            raise ValidationError("sort_order", "sort_order must be 'asc' or 'desc'")

        query = (
            select(Order)
            .join(Product, Product.id == Order.product_id)
            .where(or_(Order.buyer_id == user_id, Product.seller_id == user_id))
        )
        if status is not None:
            query = query.where(Order.status == parse_status(status).value)
        if payment_status is not None:
            try:
                payment_status = PaymentStatus(payment_status).value
            except ValueError:
                raise ValidationError(
                    "payment_status", f"unknown payment status {payment_status!r}"
                ) from None
            query = query.where(Order.payment_status == payment_status)
        if order_type is not None:
            try:
                order_type = OrderType(order_type).value
            except ValueError:
                raise ValidationError("order_type", f"unknown order type {order_type!r}") from None
            query = query.where(Order.order_type == order_type)

        column = SORTABLE_COLUMNS[sort_by]
        ordering = column.asc() if sort_order == "asc" else column.desc()
        query = query.order_by(ordering, Order.id).limit(limit).offset(offset)

        return [OrderInfo.from_model(order) for order in self.session.execute(query).scalars()]

    def get(self, order_id: UUID, caller_id: UUID) -> OrderInfo:
        return OrderInfo.from_model(self._get_visible(order_id, caller_id))

    def by_status(
        self, status: str, limit: int = DEFAULT_PAGE_SIZE, offset: int = 0
    ) -> list[OrderInfo]:
        """All orders in one status, newest first.  For operators."""
        _check_page(limit, offset)
        rows = self.session.execute(
            select(Order)
            .where(Order.status == parse_status(status).value)
            .order_by(Order.created_at.desc(), Order.id)
            .limit(limit)
            .offset(offset)
        ).scalars()
        return [OrderInfo.from_model(order) for order in rows]

    def history(self, order_id: UUID, caller_id: UUID) -> list[OrderHistoryEntry]:
        self._get_visible(order_id, caller_id)
        changes = self.session.execute(
            select(OrderStatusChange)
            .where(OrderStatusChange.order_id == order_id)
            .order_by(OrderStatusChange.sequence)
        ).scalars()
        return [
            OrderHistoryEntry.from_model(change, STATUS_DESCRIPTIONS[OrderStatus(change.to_status)])
            for change in changes
        ]

    def _get_visible(self, order_id: UUID, caller_id: UUID) -> Order:
        row = self.session.execute(
            select(Order, Product.seller_id)
            .join(Product, Product.id == Order.product_id)
            .where(Order.id == order_id)
        ).one_or_none()
        if row is None:
            raise OrderNotFoundError(str(order_id))
        order, seller_id = row
        if caller_id not in (order.buyer_id, seller_id):
            raise ForbiddenError(
                str(caller_id), "view order", "only the buyer or the product owner may view this order"
            )
        return order
