"""
ParticipationLedger -- member pledges against a collecting bulk order.

Responsibility:
    Adds, resizes and withdraws participations, and records their payment
    state.  Keeps ``BulkOrder.committed_quantity`` equal to the sum of the
    participation quantities.

Architecture position:
    Kernel > Services -- imperative shell.
    Consumes MembershipRegistry for the active-member check.

Invariants enforced:
    - Capacity: sum(participation.quantity) <= target_quantity, always.
      Every write moves committed_quantity through ONE conditional UPDATE
      on the bulk-order row::

          UPDATE bulk_orders
             SET committed_quantity = committed_quantity + :delta,
                 version = version + 1
           WHERE id = :id
             AND status = 'collecting'
             AND committed_quantity + :delta <= target_quantity

      issued after ``SELECT ... FOR UPDATE`` on the same row.  When the
      UPDATE matches nothing, no participation row is touched.
    - One participation per (bulk order, member); the unique constraint
      catches inserts that race past the pre-check.
    - amount = bulk_order.unit_price * quantity at every write.

Failure modes:
    - ValidationError: quantity not a positive integer, unknown payment state.
    - BulkOrderNotFoundError / ParticipationNotFoundError.
    - NotAMemberError: caller is not an active member of the group.
    - NotOwnerError: caller does not own the participation.
    - InvalidStateError: bulk order is not collecting.
    - DeadlinePassedError: now > deadline.
    - DuplicateParticipationError, CapacityExceededError.

Audit relevance:
    Every accepted write logs ``participation_*`` with the bulk order's new
    committed quantity and version.
"""

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coop_kernel.db.types import extend_amount
from coop_kernel.domain.clock import Clock, as_aware_utc
from coop_kernel.domain.dtos import ParticipationInfo
from coop_kernel.exceptions import (
    BulkOrderNotFoundError,
    CapacityExceededError,
    DeadlinePassedError,
    DuplicateParticipationError,
    ForbiddenError,
    InvalidStateError,
    NotAMemberError,
    NotOwnerError,
    ParticipationNotFoundError,
    ValidationError,
)
from coop_kernel.logging_config import get_logger
from coop_kernel.models.bulk_order import (
    BulkOrder,
    BulkOrderStatus,
    Participation,
    PaymentStatus,
)
from coop_kernel.services.base import BaseService
from coop_kernel.services.membership_service import MembershipRegistry, MembershipService

logger = get_logger("services.participation_ledger")


def _require_positive_quantity(quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError("quantity", "quantity must be a positive integer")


class ParticipationLedger(BaseService[Participation]):
    """
    Capacity-constrained ledger of participations.

    Contract:
        Flush-only.  A raised error leaves the bulk order and its
        participations exactly as they were once the caller rolls back.

    Guarantees:
        - Concurrent adds and updates on one bulk order can never push the
          committed total past target_quantity.
        - version increases by exactly one per accepted write.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        membership: MembershipRegistry | None = None,
    ):
        super().__init__(session, clock)
        self.membership = membership or MembershipService(session, self.clock)

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------

    def add(self, bulk_order_id: UUID, member_id: UUID, quantity: int) -> ParticipationInfo:
        """Pledge ``quantity`` units.  Priced at the bulk order's fixed unit price."""
        _require_positive_quantity(quantity)

        bulk_order = self._get_bulk_order_for_update(bulk_order_id)
        self._check_writable(bulk_order, member_id, "add participation")

        if self._find_participation(bulk_order_id, member_id) is not None:
            raise DuplicateParticipationError(str(bulk_order_id), str(member_id))

        self._apply_delta(bulk_order_id, delta=quantity, requested=quantity, credit=0)

        now = self.clock.now()
        participation = Participation(
            bulk_order_id=bulk_order_id,
            member_id=member_id,
            quantity=quantity,
            amount=extend_amount(bulk_order.unit_price, quantity),
            payment_status=PaymentStatus.PENDING.value,
            created_by_id=member_id,
            created_at=now,
        )
        self.session.add(participation)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise DuplicateParticipationError(str(bulk_order_id), str(member_id)) from exc

        refreshed = self._reload_bulk_order(bulk_order_id)
        logger.info(
            "participation_added",
            extra={
                "bulk_order_id": str(bulk_order_id),
                "participation_id": str(participation.id),
                "member_id": str(member_id),
                "quantity": quantity,
                "committed_quantity": refreshed.committed_quantity,
                "version": refreshed.version,
            },
        )
        return ParticipationInfo.from_model(participation)

    def update(
        self, participation_id: UUID, member_id: UUID, new_quantity: int
    ) -> ParticipationInfo:
        """Resize a participation; capacity is checked excluding its old quantity."""
        _require_positive_quantity(new_quantity)

        participation = self._get_owned_participation(participation_id, member_id, "update participation")
        bulk_order = self._get_bulk_order_for_update(participation.bulk_order_id)
        # Re-read under the bulk-order lock
        participation = self._get_owned_participation(participation_id, member_id, "update participation")
        self._check_writable(bulk_order, member_id, "update participation")

        old_quantity = participation.quantity
        self._apply_delta(
            bulk_order.id,
            delta=new_quantity - old_quantity,
            requested=new_quantity,
            credit=old_quantity,
        )

        participation.quantity = new_quantity
        participation.amount = extend_amount(bulk_order.unit_price, new_quantity)
        participation.updated_by_id = member_id
        self.session.flush()

        refreshed = self._reload_bulk_order(bulk_order.id)
        logger.info(
            "participation_updated",
            extra={
                "bulk_order_id": str(bulk_order.id),
                "participation_id": str(participation_id),
                "member_id": str(member_id),
                "old_quantity": old_quantity,
                "new_quantity": new_quantity,
                "committed_quantity": refreshed.committed_quantity,
                "version": refreshed.version,
            },
        )
        return ParticipationInfo.from_model(participation)

    def remove(self, participation_id: UUID, member_id: UUID) -> None:
        """Withdraw a participation and release its quantity."""
        participation = self._get_owned_participation(participation_id, member_id, "remove participation")
        bulk_order = self._get_bulk_order_for_update(participation.bulk_order_id)
        participation = self._get_owned_participation(participation_id, member_id, "remove participation")
        self._check_writable(bulk_order, member_id, "remove participation")

        quantity = participation.quantity
        self._apply_delta(bulk_order.id, delta=-quantity, requested=0, credit=quantity)

        self.session.delete(participation)
        self.session.flush()

        refreshed = self._reload_bulk_order(bulk_order.id)
        logger.info(
            "participation_removed",
            extra={
                "bulk_order_id": str(bulk_order.id),
                "participation_id": str(participation_id),
                "member_id": str(member_id),
                "quantity": quantity,
                "committed_quantity": refreshed.committed_quantity,
                "version": refreshed.version,
            },
        )

    def set_payment_status(
        self, participation_id: UUID, payment_status: str, actor_id: UUID
    ) -> ParticipationInfo:
        """
        Record a participation's payment state.  Nothing is settled here.

        The participant or the group admin may record it, in any bulk-order
        status.
        """
        try:
            status = PaymentStatus(payment_status)
        except ValueError:
            raise ValidationError(
                "payment_status",
                f"unknown payment status {payment_status!r}",
            ) from None

        participation = self.session.get(Participation, participation_id)
        if participation is None:
            raise ParticipationNotFoundError(str(participation_id))

        if participation.member_id != actor_id:
            bulk_order = self.session.get(BulkOrder, participation.bulk_order_id)
            if not self.membership.is_admin(bulk_order.group_id, actor_id):
                raise ForbiddenError(
                    str(actor_id),
                    "record payment",
                    "only the participant or the group admin may record payment",
                )

        previous = participation.payment_status
        participation.payment_status = status.value
        participation.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "participation_payment_recorded",
            extra={
                "participation_id": str(participation_id),
                "from_status": previous,
                "to_status": status.value,
            },
        )
        return ParticipationInfo.from_model(participation)

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _get_bulk_order_for_update(self, bulk_order_id: UUID) -> BulkOrder:
        bulk_order = self.session.execute(
            select(BulkOrder)
            .where(BulkOrder.id == bulk_order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if bulk_order is None:
            raise BulkOrderNotFoundError(str(bulk_order_id))
        return bulk_order

    def _reload_bulk_order(self, bulk_order_id: UUID) -> BulkOrder:
        return self.session.execute(
            select(BulkOrder)
            .where(BulkOrder.id == bulk_order_id)
            .execution_options(populate_existing=True)
        ).scalar_one()

    def _find_participation(self, bulk_order_id: UUID, member_id: UUID) -> Participation | None:
        return self.session.execute(
            select(Participation).where(
                Participation.bulk_order_id == bulk_order_id,
                Participation.member_id == member_id,
            )
        ).scalar_one_or_none()

    def _get_owned_participation(
        self, participation_id: UUID, member_id: UUID, action: str
    ) -> Participation:
        participation = self.session.execute(
            select(Participation)
            .where(Participation.id == participation_id)
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if participation is None:
            raise ParticipationNotFoundError(str(participation_id))
        if participation.member_id != member_id:
            raise NotOwnerError(str(member_id), str(participation_id), action)
        return participation

    def _check_writable(self, bulk_order: BulkOrder, member_id: UUID, action: str) -> None:
        if not self.membership.is_active_member(bulk_order.group_id, member_id):
            raise NotAMemberError(str(member_id), str(bulk_order.group_id), action)

        if not bulk_order.is_collecting:
            raise InvalidStateError("bulk_order", str(bulk_order.id), bulk_order.status, action)

        deadline = as_aware_utc(bulk_order.deadline)
        if self.clock.now() > deadline:
            raise DeadlinePassedError(str(bulk_order.id), deadline)

    def _apply_delta(self, bulk_order_id: UUID, delta: int, requested: int, credit: int) -> None:
        """
        Move committed_quantity by ``delta`` if capacity allows.

        ``credit`` is the quantity being replaced (zero for an add); it is
        added back when reporting how much the caller could have had.
        """
        result = self.session.execute(
            update(BulkOrder)
            .where(
                BulkOrder.id == bulk_order_id,
                BulkOrder.status == BulkOrderStatus.COLLECTING.value,
                BulkOrder.committed_quantity + delta <= BulkOrder.target_quantity,
                BulkOrder.committed_quantity + delta >= 0,
            )
            .values(
                committed_quantity=BulkOrder.committed_quantity + delta,
                version=BulkOrder.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            return

        current = self._reload_bulk_order(bulk_order_id)
        if not current.is_collecting:
            raise InvalidStateError("bulk_order", str(bulk_order_id), current.status, "change participation")

        remaining = current.remaining_quantity + credit
        logger.info(
            "capacity_rejected",
            extra={
                "bulk_order_id": str(bulk_order_id),
                "requested": requested,
                "remaining": remaining,
            },
        )
        raise CapacityExceededError(str(bulk_order_id), requested, remaining)
