"""
Module: coop_kernel.models.bulk_order
Responsibility: ORM persistence for group bulk orders and the member
    participations pledged against them.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Capacity: 0 <= committed_quantity <= target_quantity
      (ck_bulk_order_capacity).  committed_quantity is the running sum of
      participation quantities and is only moved by a conditional UPDATE
      in ParticipationLedger.
    - One participation per member per bulk order
      (uq_participation_member).
    - Participation quantity > 0 (ck_participation_quantity_positive).
    - FINALIZED and CANCELLED are terminal; the service layer refuses every
      write against a non-COLLECTING order.

Failure modes:
    - IntegrityError on a duplicate (bulk_order_id, member_id) insert that
      raced past the service-level duplicate check.
    - IntegrityError if a write would break the capacity CHECK.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from coop_kernel.db.base import TrackedBase, UUIDString


class BulkOrderStatus(str, Enum):
    """Lifecycle status of a bulk order.

    Contract: COLLECTING -> FINALIZED | CANCELLED.  Both targets are terminal.
    """

    COLLECTING = "collecting"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    """Recorded payment state.  The engine records it; it does not settle."""

    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class BulkOrder(TrackedBase):
    """
    A group-level aggregation of demand for one product.

    Contract:
        unit_price is resolved once, at creation, from the tier schedule
        against target_quantity, and is never re-resolved.  At finalize,
        target_quantity and total_amount are rewritten to the actual
        aggregate; unit_price stays.

    Guarantees:
        - committed_quantity equals the sum of participation quantities.
        - version increases by one on every ledger write and lifecycle
          transition.
    """

    __tablename__ = "bulk_orders"

    __table_args__ = (
        CheckConstraint(
            "committed_quantity >= 0 AND committed_quantity <= target_quantity",
            name="ck_bulk_order_capacity",
        ),
        CheckConstraint("target_quantity > 0", name="ck_bulk_order_target_positive"),
        Index("idx_bulk_order_group", "group_id", "created_at"),
        Index("idx_bulk_order_status", "status"),
    )

    group_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("buying_groups.id", ondelete="CASCADE"),
        nullable=False,
    )

    product_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("products.id"),
        nullable=False,
    )

    target_quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)

    committed_quantity: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=BulkOrderStatus.COLLECTING.value,
    )

    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)

    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    cancellation_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<BulkOrder {self.id}: {self.committed_quantity}/{self.target_quantity} "
            f"{self.status}>"
        )

    @property
    def is_collecting(self) -> bool:
        return self.status == BulkOrderStatus.COLLECTING

    @property
    def remaining_quantity(self) -> int:
        return self.target_quantity - self.committed_quantity


class Participation(TrackedBase):
    """
    One member's pledged quantity within a bulk order.

    Guarantees:
        - amount == bulk_order.unit_price * quantity at every write.
    """

    __tablename__ = "bulk_order_participations"

    __table_args__ = (
        UniqueConstraint("bulk_order_id", "member_id", name="uq_participation_member"),
        CheckConstraint("quantity > 0", name="ck_participation_quantity_positive"),
        Index("idx_participation_member", "member_id"),
    )

    bulk_order_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("bulk_orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    member_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    quantity: Mapped[int] = mapped_column(BigInteger, nullable=False)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    payment_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=PaymentStatus.PENDING.value,
    )

    def __repr__(self) -> str:
        return f"<Participation {self.member_id} x{self.quantity} on {self.bulk_order_id}>"
