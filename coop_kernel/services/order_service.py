"""
OrderService -- individual orders and the stock they hold.

Responsibility:
    Creates individual orders, moves them through the order state machine,
    takes stock on confirmation and gives it back on cancellation, and
    records payment state and delivery address changes.  Every status
    change appends an ``order_status_history`` row.

Architecture position:
    Kernel > Services -- imperative shell.
    The allowed transitions and their stock effects come from the pure
    ``domain.order_lifecycle``; stock moves through StockReservation.

Invariants enforced:
    - Status changes are compare-and-set on the current status
      (``UPDATE orders SET status = :target WHERE id = :id AND status = :current``).
      Two concurrent confirms of one order: one wins, the other sees the
      row already moved and gets InvalidTransitionError, so stock is
      decremented once.
    - Stock is decremented once (pending -> confirmed) and restored once
      (confirmed -> cancelled).  ``stock_reserved`` tracks which orders hold
      stock.
    - A failed restore never blocks the cancellation.  The order keeps
      ``stock_reserved = True`` and the result reports
      ``stock_restored = False`` for reconciliation.

Failure modes:
    - ValidationError, ProductNotFoundError, OrderNotFoundError,
      ForbiddenError, NotAMemberError, InvalidTransitionError,
      InvalidStateError, InsufficientStockError.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from coop_kernel.db.types import extend_amount
from coop_kernel.domain.clock import Clock
from coop_kernel.domain.dtos import CancellationResult, OrderInfo
from coop_kernel.domain.order_lifecycle import (
    STATUS_DESCRIPTIONS,
    OrderStatus,
    OrderType,
    StockEffect,
    TransitionPlan,
    plan_transition,
)
from coop_kernel.domain.pricing import resolve_unit_price
from coop_kernel.exceptions import (
    ForbiddenError,
    GroupNotFoundError,
    InvalidStateError,
    InvalidTransitionError,
    NotAMemberError,
    OrderNotFoundError,
    ValidationError,
)
from coop_kernel.logging_config import get_logger
from coop_kernel.models.bulk_order import PaymentStatus
from coop_kernel.models.group import BuyingGroup
from coop_kernel.models.order import Order, OrderStatusChange
from coop_kernel.services.base import BaseService
from coop_kernel.services.catalog_service import (
    CatalogReader,
    CatalogService,
    StockReservation,
)
from coop_kernel.services.membership_service import MembershipRegistry, MembershipService

logger = get_logger("services.order")

# Timestamp column stamped when an order enters each status
_STATUS_TIMESTAMPS: dict[OrderStatus, str] = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


class OrderService(BaseService[Order]):
    """
    Individual-order writes.

    Contract:
        Flush-only.  Callers supply the acting user on every call; the
        buyer and the product's seller may change an order.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        catalog: CatalogReader | None = None,
        stock: StockReservation | None = None,
        membership: MembershipRegistry | None = None,
    ):
        super().__init__(session, clock)
        default_catalog = None
        if catalog is None or stock is None:
            default_catalog = CatalogService(session, self.clock)
        self.catalog = catalog or default_catalog
        self.stock = stock or default_catalog
        self.membership = membership or MembershipService(session, self.clock)

    # -------------------------------------------------------------------
    # Creation
    # -------------------------------------------------------------------

    def create_order(
        self,
        buyer_id: UUID,
        product_id: UUID,
        quantity: int,
        delivery_address: str,
        group_id: UUID | None = None,
    ) -> OrderInfo:
        """
        Place a pending order priced at the tier for ``quantity``.

        With ``group_id`` the buyer orders on behalf of a buying group they
        belong to, and the order type is BULK.
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError("quantity", "quantity must be a positive integer")
        if delivery_address is None or not delivery_address.strip():
            raise ValidationError("delivery_address", "delivery address is required")

        if group_id is not None:
            if self.session.get(BuyingGroup, group_id) is None:
                raise GroupNotFoundError(str(group_id))
            if not self.membership.is_active_member(group_id, buyer_id):
                raise NotAMemberError(str(buyer_id), str(group_id), "order for group")

        product = self.catalog.check_available(product_id, quantity)

        pricing = resolve_unit_price(product.unit_price, product.tier_schedule, quantity)

        now = self.clock.now()
        order = Order(
            buyer_id=buyer_id,
            product_id=product_id,
            group_id=group_id,
            order_type=(OrderType.BULK if group_id is not None else OrderType.INDIVIDUAL).value,
            quantity=quantity,
            unit_price=pricing.unit_price,
            total_amount=extend_amount(pricing.unit_price, quantity),
            status=OrderStatus.PENDING.value,
            payment_status=PaymentStatus.PENDING.value,
            delivery_address=delivery_address.strip(),
            stock_reserved=False,
            created_by_id=buyer_id,
            created_at=now,
        )
        self.session.add(order)
        self.session.flush()

        self._record_change(order.id, None, OrderStatus.PENDING, buyer_id, now)

        logger.info(
            "order_created",
            extra={
                "order_id": str(order.id),
                "buyer_id": str(buyer_id),
                "product_id": str(product_id),
                "quantity": quantity,
                "unit_price": pricing.unit_price,
                "discounted": pricing.is_discounted,
                "total_amount": order.total_amount,
                "order_type": order.order_type,
            },
        )
        return OrderInfo.from_model(order)

    # -------------------------------------------------------------------
    # Status transitions
    # -------------------------------------------------------------------

    def update_status(
        self,
        order_id: UUID,
        new_status: str | OrderStatus,
        caller_id: UUID,
        note: str | None = None,
    ) -> OrderInfo:
        """
        Move an order to ``new_status``.

        pending -> confirmed takes stock; confirmed -> cancelled gives it
        back (see cancel_order for the restore outcome).
        """
        order = self._get_order(order_id)
        self._authorize(order, caller_id, "update order status")
        plan = plan_transition(str(order_id), order.status, new_status)
        order, _ = self._apply(order, plan, caller_id, note=note)
        return OrderInfo.from_model(order)

    def cancel_order(
        self, order_id: UUID, caller_id: UUID, reason: str | None = None
    ) -> CancellationResult:
        """
        Cancel an order, restoring stock if it was holding any.

        Delivered and already-cancelled orders raise InvalidTransitionError.
        """
        order = self._get_order(order_id)
        self._authorize(order, caller_id, "cancel order")
        plan = plan_transition(str(order_id), order.status, OrderStatus.CANCELLED)
        order, stock_restored = self._apply(order, plan, caller_id, note=reason, reason=reason)

        warnings: tuple[str, ...] = ()
        if not stock_restored:
            warnings = (
                f"stock for {order.quantity} unit(s) of product {order.product_id} "
                "was not restored; reconcile manually",
            )
        return CancellationResult(
            order=OrderInfo.from_model(order),
            stock_restored=stock_restored,
            warnings=warnings,
        )

    def _apply(
        self,
        order: Order,
        plan: TransitionPlan,
        caller_id: UUID,
        note: str | None = None,
        reason: str | None = None,
    ) -> tuple[Order, bool]:
        """
        Compare-and-set the status, then carry out the stock effect.

        Returns the refreshed order and whether stock the order held was
        restored (True when no restore was needed).
        """
        now = self.clock.now()
        values: dict = {
            "status": plan.target.value,
            "updated_by_id": caller_id,
            _STATUS_TIMESTAMPS[plan.target]: now,
        }
        if plan.target == OrderStatus.CANCELLED:
            values["cancellation_reason"] = reason

        result = self.session.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == plan.current.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            # Another caller moved the order first
            current = self._get_order(order.id)
            raise InvalidTransitionError(str(order.id), current.status, plan.target.value)

        order = self._get_order(order.id)
        stock_restored = True

        if plan.stock_effect == StockEffect.DECREMENT:
            self.stock.decrement(order.product_id, order.quantity)
            order.stock_reserved = True
        elif plan.stock_effect == StockEffect.RESTORE and order.stock_reserved:
            stock_restored = self.stock.restore(order.product_id, order.quantity)
            if stock_restored:
                order.stock_reserved = False
            else:
                logger.warning(
                    "order_cancelled_without_restore",
                    extra={
                        "order_id": str(order.id),
                        "product_id": str(order.product_id),
                        "quantity": order.quantity,
                    },
                )
        self.session.flush()

        self._record_change(order.id, plan.current, plan.target, caller_id, now, note)

        logger.info(
            "order_status_changed",
            extra={
                "order_id": str(order.id),
                "from_status": plan.current.value,
                "to_status": plan.target.value,
                "stock_effect": plan.stock_effect.value,
                "terminal": plan.is_terminal,
            },
        )
        return order, stock_restored

    # -------------------------------------------------------------------
    # Payment and delivery
    # -------------------------------------------------------------------

    def update_payment_status(
        self, order_id: UUID, payment_status: str, caller_id: UUID
    ) -> OrderInfo:
        """Record payment state; ``paid`` stamps paid_at.  Nothing is settled."""
        try:
            status = PaymentStatus(payment_status)
        except ValueError:
            raise ValidationError(
                "payment_status", f"unknown payment status {payment_status!r}"
            ) from None

        order = self._get_order(order_id)
        self._authorize(order, caller_id, "update payment status")

        previous = order.payment_status
        order.payment_status = status.value
        if status == PaymentStatus.PAID:
            order.paid_at = self.clock.now()
        order.updated_by_id = caller_id
        self.session.flush()

        logger.info(
            "order_payment_recorded",
            extra={
                "order_id": str(order_id),
                "from_status": previous,
                "to_status": status.value,
            },
        )
        return OrderInfo.from_model(order)

    def update_delivery_address(
        self, order_id: UUID, caller_id: UUID, new_address: str
    ) -> OrderInfo:
        if new_address is None or not new_address.strip():
            raise ValidationError("delivery_address", "delivery address is required")

        order = self._get_order(order_id)
        if order.buyer_id != caller_id:
            raise ForbiddenError(
                str(caller_id),
                "update delivery address",
                "only the buyer can update the delivery address",
            )
        if order.status != OrderStatus.PENDING.value:
            raise InvalidStateError("order", str(order_id), order.status, "update delivery address")

        order.delivery_address = new_address.strip()
        order.updated_by_id = caller_id
        self.session.flush()

        logger.info("delivery_address_updated", extra={"order_id": str(order_id)})
        return OrderInfo.from_model(order)

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _get_order(self, order_id: UUID) -> Order:
        order = self.session.execute(
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if order is None:
            raise OrderNotFoundError(str(order_id))
        return order

    def _authorize(self, order: Order, caller_id: UUID, action: str) -> None:
        if order.buyer_id == caller_id:
            return
        product = self.catalog.get_product(order.product_id)
        if product.seller_id != caller_id:
            raise ForbiddenError(
                str(caller_id), action, "only the buyer or the product owner may do this"
            )

    def _record_change(
        self,
        order_id: UUID,
        from_status: OrderStatus | None,
        to_status: OrderStatus,
        actor_id: UUID,
        occurred_at: datetime,
        note: str | None = None,
    ) -> None:
        sequence = self.session.execute(
            select(func.coalesce(func.max(OrderStatusChange.sequence), 0)).where(
                OrderStatusChange.order_id == order_id
            )
        ).scalar_one()
        self.session.add(
            OrderStatusChange(
                order_id=order_id,
                sequence=sequence + 1,
                from_status=from_status.value if from_status is not None else None,
                to_status=to_status.value,
                actor_id=actor_id,
                occurred_at=occurred_at,
                note=note or STATUS_DESCRIPTIONS[to_status],
            )
        )
        self.session.flush()
