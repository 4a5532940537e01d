"""
Module: coop_kernel.models.order
Responsibility: ORM persistence for individual orders and their append-only
    status history.
Architecture position: Kernel > Models.  May import from db/base.py and the
    pure order lifecycle in domain/.

Invariants enforced:
    - quantity > 0 (ck_order_quantity_positive).
    - stock_reserved is True exactly while the order holds decremented
      stock (CONFIRMED or SHIPPED); it guards against a second decrement or
      a second restore.
    - order_status_history rows are written once per transition and never
      updated.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from coop_kernel.db.base import Base, TrackedBase, UUIDString
from coop_kernel.domain.order_lifecycle import OrderStatus, OrderType
from coop_kernel.models.bulk_order import PaymentStatus


class Order(TrackedBase):
    """
    A single buyer's purchase against the shared inventory.

    Contract:
        unit_price is resolved once, at creation, against this order's own
        quantity.
    """

    __tablename__ = "orders"

    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_quantity_positive"),
        Index("idx_order_buyer", "buyer_id", "created_at"),
        Index("idx_order_product", "product_id"),
        Index("idx_order_status", "status"),
    )

    buyer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    # Set when a member places the order on behalf of a buying group
    group_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("buying_groups.id", ondelete="SET NULL"),
        nullable=True,
    )

    order_type: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderType.INDIVIDUAL.value
    )

    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=OrderStatus.PENDING.value
    )

    payment_status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentStatus.PENDING.value
    )

    delivery_address: Mapped[str] = mapped_column(String(1000), nullable=False)

    stock_reserved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    shipped_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cancellation_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def __repr__(self) -> str:
        return f"<Order {self.id}: {self.quantity} x {self.product_id} {self.status}>"


class OrderStatusChange(Base):
    """Append-only record of one order status transition."""

    __tablename__ = "order_status_history"

    __table_args__ = (
        UniqueConstraint("order_id", "sequence", name="uq_status_history_sequence"),
        Index("idx_status_history_order", "order_id", "occurred_at"),
    )

    order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    # 1 for the creation record, +1 per transition
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # None for the creation record
    from_status: Mapped[str | None] = mapped_column(String(20), nullable=True)

    to_status: Mapped[str] = mapped_column(String(20), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    note: Mapped[str | None] = mapped_column(String(1000), nullable=True)
