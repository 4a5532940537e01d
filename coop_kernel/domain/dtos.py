"""
DTOs -- Pure domain data transfer objects.

Responsibility:
    Immutable data structures returned by services and selectors: product
    snapshots read from the catalog, groups and memberships, bulk orders
    with their participation statistics, individual orders, and order
    history entries.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    ``from_model()`` class methods are boundary converters invoked only from
    the service and selector layers, never from domain logic.

Invariants enforced:
    - Services and selectors return these, never ORM entities.
    - Monetary fields are Decimal.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from coop_kernel.domain.clock import as_aware_utc

if TYPE_CHECKING:
    from coop_kernel.models.bulk_order import BulkOrder as BulkOrderModel
    from coop_kernel.models.bulk_order import Participation as ParticipationModel
    from coop_kernel.models.group import BuyingGroup as BuyingGroupModel
    from coop_kernel.models.group import GroupMembership as GroupMembershipModel
    from coop_kernel.models.order import Order as OrderModel
    from coop_kernel.models.order import OrderStatusChange as OrderStatusChangeModel
    from coop_kernel.models.product import Product as ProductModel


def _aware(value: datetime | None) -> datetime | None:
    return as_aware_utc(value) if value is not None else None


@dataclass(frozen=True)
class ProductSnapshot:
    """What the pricing and stock logic reads from the catalog."""

    id: UUID
    seller_id: UUID
    name: str
    unit_price: Decimal
    tier_schedule: dict[str, Any]
    stock_quantity: int
    unit_type: str
    is_active: bool

    @classmethod
    def from_model(cls, product: ProductModel) -> ProductSnapshot:
        return cls(
            id=product.id,
            seller_id=product.seller_id,
            name=product.name,
            unit_price=product.unit_price,
            tier_schedule=dict(product.tier_schedule or {}),
            stock_quantity=product.stock_quantity,
            unit_type=product.unit_type,
            is_active=product.is_active,
        )


@dataclass(frozen=True)
class GroupInfo:
    id: UUID
    name: str
    region: str | None
    admin_id: UUID
    member_limit: int

    @classmethod
    def from_model(cls, group: BuyingGroupModel) -> GroupInfo:
        return cls(
            id=group.id,
            name=group.name,
            region=group.region,
            admin_id=group.admin_id,
            member_limit=group.member_limit,
        )


@dataclass(frozen=True)
class MembershipInfo:
    id: UUID
    group_id: UUID
    user_id: UUID
    status: str
    joined_at: datetime

    @classmethod
    def from_model(cls, membership: GroupMembershipModel) -> MembershipInfo:
        return cls(
            id=membership.id,
            group_id=membership.group_id,
            user_id=membership.user_id,
            status=membership.status,
            joined_at=as_aware_utc(membership.joined_at),
        )


@dataclass(frozen=True)
class GroupStats:
    group_id: UUID
    name: str
    member_count: int
    member_limit: int
    bulk_order_count: int
    total_order_value: Decimal
    utilization_rate: Decimal


@dataclass(frozen=True)
class ParticipationInfo:
    id: UUID
    bulk_order_id: UUID
    member_id: UUID
    quantity: int
    amount: Decimal
    payment_status: str
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, participation: ParticipationModel) -> ParticipationInfo:
        return cls(
            id=participation.id,
            bulk_order_id=participation.bulk_order_id,
            member_id=participation.member_id,
            quantity=participation.quantity,
            amount=participation.amount,
            payment_status=participation.payment_status,
            created_at=_aware(participation.created_at),
        )


@dataclass(frozen=True)
class ParticipationStats:
    """Aggregates over a bulk order's participations."""

    total_participated: int
    remaining_quantity: int
    member_count: int
    total_collected: Decimal
    completion_percentage: Decimal
    is_fully_subscribed: bool


@dataclass(frozen=True)
class BulkOrderInfo:
    id: UUID
    group_id: UUID
    product_id: UUID
    target_quantity: int
    committed_quantity: int
    unit_price: Decimal
    total_amount: Decimal
    deadline: datetime
    status: str
    version: int
    created_by_id: UUID
    created_at: datetime | None = None
    finalized_at: datetime | None = None
    cancelled_at: datetime | None = None
    cancellation_reason: str | None = None

    @property
    def remaining_quantity(self) -> int:
        return self.target_quantity - self.committed_quantity

    @classmethod
    def from_model(cls, bulk_order: BulkOrderModel) -> BulkOrderInfo:
        return cls(
            id=bulk_order.id,
            group_id=bulk_order.group_id,
            product_id=bulk_order.product_id,
            target_quantity=bulk_order.target_quantity,
            committed_quantity=bulk_order.committed_quantity,
            unit_price=bulk_order.unit_price,
            total_amount=bulk_order.total_amount,
            deadline=as_aware_utc(bulk_order.deadline),
            status=bulk_order.status,
            version=bulk_order.version,
            created_by_id=bulk_order.created_by_id,
            created_at=_aware(bulk_order.created_at),
            finalized_at=_aware(bulk_order.finalized_at),
            cancelled_at=_aware(bulk_order.cancelled_at),
            cancellation_reason=bulk_order.cancellation_reason,
        )


@dataclass(frozen=True)
class BulkOrderDetail:
    """A bulk order with its participations and statistics."""

    bulk_order: BulkOrderInfo
    product_name: str
    unit_type: str
    participations: tuple[ParticipationInfo, ...]
    stats: ParticipationStats


@dataclass(frozen=True)
class OrderInfo:
    id: UUID
    buyer_id: UUID
    product_id: UUID
    group_id: UUID | None
    order_type: str
    quantity: int
    unit_price: Decimal
    total_amount: Decimal
    status: str
    payment_status: str
    delivery_address: str
    stock_reserved: bool
    created_at: datetime | None = None
    confirmed_at: datetime | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    cancelled_at: datetime | None = None
    paid_at: datetime | None = None
    cancellation_reason: str | None = None

    @classmethod
    def from_model(cls, order: OrderModel) -> OrderInfo:
        return cls(
            id=order.id,
            buyer_id=order.buyer_id,
            product_id=order.product_id,
            group_id=order.group_id,
            order_type=order.order_type,
            quantity=order.quantity,
            unit_price=order.unit_price,
            total_amount=order.total_amount,
            status=order.status,
            payment_status=order.payment_status,
            delivery_address=order.delivery_address,
            stock_reserved=order.stock_reserved,
            created_at=_aware(order.created_at),
            confirmed_at=_aware(order.confirmed_at),
            shipped_at=_aware(order.shipped_at),
            delivered_at=_aware(order.delivered_at),
            cancelled_at=_aware(order.cancelled_at),
            paid_at=_aware(order.paid_at),
            cancellation_reason=order.cancellation_reason,
        )


@dataclass(frozen=True)
class CancellationResult:
    """
    Outcome of cancelling an individual order.

    ``stock_restored`` is False when the order held stock but the restore
    could not be applied; the cancellation still stands and the operator is
    warned through the log for out-of-band reconciliation.
    """

    order: OrderInfo
    stock_restored: bool
    warnings: tuple[str, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class OrderHistoryEntry:
    status: str
    timestamp: datetime
    description: str
    actor_id: UUID | None = None

    @classmethod
    def from_model(
        cls, change: OrderStatusChangeModel, description: str
    ) -> OrderHistoryEntry:
        return cls(
            status=change.to_status,
            timestamp=as_aware_utc(change.occurred_at),
            description=change.note or description,
            actor_id=change.actor_id,
        )
