"""
Module: coop_kernel.selectors.bulk_order_selector
Responsibility: Read-only access to bulk orders, their participations and
    the statistics derived from them.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Statistics are computed from participation rows, not from the
      committed_quantity counter, so a listing also shows any drift.
    - Listings are newest first.

Failure modes:
    - BulkOrderNotFoundError from get().  Listings return empty lists.
"""

from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from coop_kernel.db.types import round_money
from coop_kernel.domain.dtos import (
    BulkOrderDetail,
    BulkOrderInfo,
    ParticipationInfo,
    ParticipationStats,
)
from coop_kernel.exceptions import BulkOrderNotFoundError, ValidationError
from coop_kernel.models.bulk_order import BulkOrder, BulkOrderStatus, Participation
from coop_kernel.models.product import Product
from coop_kernel.selectors.base import BaseSelector


def compute_stats(
    target_quantity: int, participations: list[ParticipationInfo] | tuple[ParticipationInfo, ...]
) -> ParticipationStats:
    """Aggregate a bulk order's participations against its target."""
    total = sum(p.quantity for p in participations)
    collected = sum((p.amount for p in participations), Decimal("0.00"))
    if target_quantity > 0:
        completion = round_money(Decimal(total) * 100 / Decimal(target_quantity), decimal_places=1)
    else:
        completion = Decimal("0.0")
    return ParticipationStats(
        total_participated=total,
        remaining_quantity=target_quantity - total,
        member_count=len(participations),
        total_collected=collected,
        completion_percentage=completion,
        is_fully_subscribed=total >= target_quantity,
    )


class BulkOrderSelector(BaseSelector[BulkOrder]):
    """Bulk-order listings and details."""

    def list_for_group(self, group_id: UUID, status: str | None = None) -> list[BulkOrderDetail]:
        """All bulk orders of a group, newest first, each with its statistics."""
        query = (
            select(BulkOrder, Product.name, Product.unit_type)
            .join(Product, Product.id == BulkOrder.product_id)
            .where(BulkOrder.group_id == group_id)
        )
        if status is not None:
            try:
                status = BulkOrderStatus(status).value
            except ValueError:
                raise ValidationError("status", f"unknown bulk order status {status!r}") from None
            query = query.where(BulkOrder.status == status)
        query = query.order_by(BulkOrder.created_at.desc(), BulkOrder.id)

        rows = self.session.execute(query).all()
        if not rows:
            return []

        by_order = self._participations_by_order([row[0].id for row in rows])
        return [
            self._detail(bulk_order, name, unit_type, by_order.get(bulk_order.id, []))
            for bulk_order, name, unit_type in rows
        ]

    def get(self, bulk_order_id: UUID) -> BulkOrderDetail:
        row = self.session.execute(
            select(BulkOrder, Product.name, Product.unit_type)
            .join(Product, Product.id == BulkOrder.product_id)
            .where(BulkOrder.id == bulk_order_id)
        ).one_or_none()
        if row is None:
            raise BulkOrderNotFoundError(str(bulk_order_id))

        bulk_order, name, unit_type = row
        participations = self._participations_by_order([bulk_order.id]).get(bulk_order.id, [])
        return self._detail(bulk_order, name, unit_type, participations)

    def participations_for_member(self, member_id: UUID) -> list[ParticipationInfo]:
        """Every participation a member holds, newest first."""
        rows = self.session.execute(
            select(Participation)
            .where(Participation.member_id == member_id)
            .order_by(Participation.created_at.desc(), Participation.id)
        ).scalars()
        return [ParticipationInfo.from_model(p) for p in rows]

    def _participations_by_order(
        self, bulk_order_ids: list[UUID]
    ) -> dict[UUID, list[ParticipationInfo]]:
        rows = self.session.execute(
            select(Participation)
            .where(Participation.bulk_order_id.in_(bulk_order_ids))
            .order_by(Participation.created_at, Participation.id)
        ).scalars()
        grouped: dict[UUID, list[ParticipationInfo]] = defaultdict(list)
        for participation in rows:
            grouped[participation.bulk_order_id].append(ParticipationInfo.from_model(participation))
        return grouped

    @staticmethod
    def _detail(
        bulk_order: BulkOrder,
        product_name: str,
        unit_type: str,
        participations: list[ParticipationInfo],
    ) -> BulkOrderDetail:
        return BulkOrderDetail(
            bulk_order=BulkOrderInfo.from_model(bulk_order),
            product_name=product_name,
            unit_type=unit_type,
            participations=tuple(participations),
            stats=compute_stats(bulk_order.target_quantity, participations),
        )
