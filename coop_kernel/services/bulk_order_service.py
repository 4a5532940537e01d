"""
BulkOrderService -- creation and closing of group bulk orders.

Responsibility:
    Opens a bulk order for a group (pricing it once against the target
    quantity), finalizes it to the actual aggregate, or cancels it.

Architecture position:
    Kernel > Services -- imperative shell.
    Consumes CatalogReader (product snapshot), MembershipRegistry (member
    and admin checks) and the pure pricing engine.

Invariants enforced:
    - unit_price is resolved once, at creation, against target_quantity.
      finalize() rewrites target_quantity and total_amount to the actual
      aggregate and leaves unit_price alone.
    - COLLECTING -> FINALIZED | CANCELLED only; both are terminal.
    - finalize() reads the participation sum under the bulk-order row
      lock, so no ledger write can slip in between the sum and the status
      change.
    - Stock is checked at creation only; nothing is reserved while the
      order collects.

Failure modes:
    - ValidationError: target not a positive integer, deadline not in the
      future.
    - GroupNotFoundError, ProductNotFoundError, BulkOrderNotFoundError.
    - NotAMemberError (create), ForbiddenError (finalize/cancel by non-admin).
    - InsufficientStockError: target above current stock at creation.
    - InvalidStateError: finalize/cancel on a non-collecting order.
    - NoParticipationsError: finalize with nothing pledged.
"""

from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from coop_kernel.db.types import extend_amount
from coop_kernel.domain.clock import Clock, as_aware_utc
from coop_kernel.domain.dtos import BulkOrderInfo
from coop_kernel.domain.pricing import resolve_unit_price
from coop_kernel.exceptions import (
    BulkOrderNotFoundError,
    ForbiddenError,
    GroupNotFoundError,
    InvalidStateError,
    NoParticipationsError,
    NotAMemberError,
    ValidationError,
)
from coop_kernel.logging_config import get_logger
from coop_kernel.models.bulk_order import BulkOrder, BulkOrderStatus, Participation
from coop_kernel.models.group import BuyingGroup
from coop_kernel.services.base import BaseService
from coop_kernel.services.catalog_service import CatalogReader, CatalogService
from coop_kernel.services.membership_service import MembershipRegistry, MembershipService

logger = get_logger("services.bulk_order")

DEFAULT_DEADLINE_DAYS = 7


class BulkOrderService(BaseService[BulkOrder]):
    """
    Bulk-order lifecycle writes.

    Contract:
        Flush-only; one call is one unit of work in the caller's session.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        catalog: CatalogReader | None = None,
        membership: MembershipRegistry | None = None,
        default_deadline_days: int = DEFAULT_DEADLINE_DAYS,
    ):
        super().__init__(session, clock)
        self.catalog = catalog or CatalogService(session, self.clock)
        self.membership = membership or MembershipService(session, self.clock)
        self.default_deadline_days = default_deadline_days

    def create(
        self,
        group_id: UUID,
        product_id: UUID,
        target_quantity: int,
        creator_id: UUID,
        deadline: datetime | None = None,
    ) -> BulkOrderInfo:
        """
        Open a bulk order in COLLECTING state.

        The unit price is the tier price for ``target_quantity``.  When no
        deadline is given it is now + ``default_deadline_days``.
        """
        if isinstance(target_quantity, bool) or not isinstance(target_quantity, int) or target_quantity <= 0:
            raise ValidationError("target_quantity", "target quantity must be a positive integer")

        if self.session.get(BuyingGroup, group_id) is None:
            raise GroupNotFoundError(str(group_id))
        if not self.membership.is_active_member(group_id, creator_id):
            raise NotAMemberError(str(creator_id), str(group_id), "create bulk order")

        # Point-in-time check; nothing is reserved
        product = self.catalog.check_available(product_id, target_quantity)

        now = self.clock.now()
        if deadline is None:
            deadline = now + timedelta(days=self.default_deadline_days)
        else:
            deadline = as_aware_utc(deadline)
            if deadline <= now:
                raise ValidationError("deadline", "deadline must be in the future")

        pricing = resolve_unit_price(product.unit_price, product.tier_schedule, target_quantity)

        bulk_order = BulkOrder(
            group_id=group_id,
            product_id=product_id,
            target_quantity=target_quantity,
            committed_quantity=0,
            unit_price=pricing.unit_price,
            total_amount=extend_amount(pricing.unit_price, target_quantity),
            deadline=deadline,
            status=BulkOrderStatus.COLLECTING.value,
            version=1,
            created_by_id=creator_id,
            created_at=now,
        )
        self.session.add(bulk_order)
        self.session.flush()

        logger.info(
            "bulk_order_created",
            extra={
                "bulk_order_id": str(bulk_order.id),
                "group_id": str(group_id),
                "product_id": str(product_id),
                "target_quantity": target_quantity,
                "unit_price": pricing.unit_price,
                "discounted": pricing.is_discounted,
                "applied_tier": (
                    pricing.applied_tier.min_quantity if pricing.applied_tier else None
                ),
                "deadline": deadline,
            },
        )
        return BulkOrderInfo.from_model(bulk_order)

    def finalize(self, bulk_order_id: UUID, caller_id: UUID) -> BulkOrderInfo:
        """
        Close collection and record the actual aggregate.

        target_quantity becomes the participation sum and total_amount
        becomes unit_price * sum.  The unit price is not re-resolved even
        when the actual sum lands in a different tier.
        """
        bulk_order = self._get_for_update(bulk_order_id)
        self._require_admin(bulk_order, caller_id, "finalize bulk order")
        self._require_collecting(bulk_order, "finalize")

        total_quantity, participant_count = self.session.execute(
            select(
                func.coalesce(func.sum(Participation.quantity), 0),
                func.count(Participation.id),
            ).where(Participation.bulk_order_id == bulk_order_id)
        ).one()
        total_quantity = int(total_quantity)

        if participant_count == 0:
            raise NoParticipationsError(str(bulk_order_id))

        if total_quantity != bulk_order.committed_quantity:
            logger.error(
                "committed_quantity_drift",
                extra={
                    "bulk_order_id": str(bulk_order_id),
                    "committed_quantity": bulk_order.committed_quantity,
                    "participation_sum": total_quantity,
                },
            )

        now = self.clock.now()
        original_target = bulk_order.target_quantity
        bulk_order.status = BulkOrderStatus.FINALIZED.value
        bulk_order.target_quantity = total_quantity
        bulk_order.committed_quantity = total_quantity
        bulk_order.total_amount = extend_amount(bulk_order.unit_price, total_quantity)
        bulk_order.finalized_at = now
        bulk_order.version = bulk_order.version + 1
        bulk_order.updated_by_id = caller_id
        self.session.flush()

        logger.info(
            "bulk_order_finalized",
            extra={
                "bulk_order_id": str(bulk_order_id),
                "original_target": original_target,
                "final_quantity": total_quantity,
                "participant_count": participant_count,
                "total_amount": bulk_order.total_amount,
            },
        )
        return BulkOrderInfo.from_model(bulk_order)

    def cancel(
        self, bulk_order_id: UUID, caller_id: UUID, reason: str | None = None
    ) -> BulkOrderInfo:
        """Close collection without ordering.  Participations are kept as a record."""
        bulk_order = self._get_for_update(bulk_order_id)
        self._require_admin(bulk_order, caller_id, "cancel bulk order")
        self._require_collecting(bulk_order, "cancel")

        bulk_order.status = BulkOrderStatus.CANCELLED.value
        bulk_order.cancelled_at = self.clock.now()
        bulk_order.cancellation_reason = reason
        bulk_order.version = bulk_order.version + 1
        bulk_order.updated_by_id = caller_id
        self.session.flush()

        logger.info(
            "bulk_order_cancelled",
            extra={
                "bulk_order_id": str(bulk_order_id),
                "committed_quantity": bulk_order.committed_quantity,
                "reason": reason,
            },
        )
        return BulkOrderInfo.from_model(bulk_order)

    def _get_for_update(self, bulk_order_id: UUID) -> BulkOrder:
        bulk_order = self.session.execute(
            select(BulkOrder)
            .where(BulkOrder.id == bulk_order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if bulk_order is None:
            raise BulkOrderNotFoundError(str(bulk_order_id))
        return bulk_order

    def _require_admin(self, bulk_order: BulkOrder, caller_id: UUID, action: str) -> None:
        if not self.membership.is_admin(bulk_order.group_id, caller_id):
            raise ForbiddenError(str(caller_id), action, "only the group admin may do this")

    @staticmethod
    def _require_collecting(bulk_order: BulkOrder, operation: str) -> None:
        if not bulk_order.is_collecting:
            raise InvalidStateError("bulk_order", str(bulk_order.id), bulk_order.status, operation)
