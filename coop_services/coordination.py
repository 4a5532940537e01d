"""
coop_services.coordination -- facade exposed to the API layer.

Responsibility:
    One method per exposed operation.  Each call is one unit of work:
    it opens ``session_scope()``, wires the kernel services onto that
    session, runs the operation, and commits.  Any error rolls the whole
    unit back and propagates unchanged.

Architecture position:
    Services -- the outermost layer of this repository.  The only place
    that owns transaction boundaries and translates configuration into
    kernel constructor arguments.

Invariants enforced:
    - One logical operation per transaction; no partial writes escape a
      failed call.
    - Post-commit callbacks run only after a successful commit and never
      inside the transaction holding capacity or stock locks.
    - Every call binds a correlation id and the acting user into
      LogContext.

Failure modes:
    - Any CoopKernelError subclass, re-raised after rollback and logged
      as ``operation_rejected``.
    - SQLAlchemy errors propagate after rollback.

Usage:
    from coop_services import CoordinationService

    coordination = CoordinationService.from_config(get_active_config())
    info = coordination.create_bulk_order(group_id, product_id, 100, creator_id)
    coordination.add_participation(info.id, member_id, 40)
"""

from __future__ import annotations

import time
from collections.abc import Callable
from datetime import datetime
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from coop_config import CoordinationConfig
from coop_config.validator import log_level
from coop_kernel.db.engine import init_engine_from_url, session_scope
from coop_kernel.domain.clock import Clock, SystemClock
from coop_kernel.domain.dtos import (
    BulkOrderDetail,
    BulkOrderInfo,
    CancellationResult,
    GroupInfo,
    GroupStats,
    MembershipInfo,
    OrderHistoryEntry,
    OrderInfo,
    ParticipationInfo,
)
from coop_kernel.domain.order_lifecycle import OrderStatus
from coop_kernel.domain.pricing import TierLadderStep, describe_tiers
from coop_kernel.exceptions import CoopKernelError, ValidationError
from coop_kernel.logging_config import LogContext, configure_logging, get_logger
from coop_kernel.selectors.bulk_order_selector import BulkOrderSelector
from coop_kernel.selectors.group_selector import GroupSelector
from coop_kernel.selectors.order_selector import OrderSelector
from coop_kernel.services.bulk_order_service import BulkOrderService
from coop_kernel.services.catalog_service import CatalogService
from coop_kernel.services.membership_service import MembershipService
from coop_kernel.services.order_service import OrderService
from coop_kernel.services.participation_ledger import ParticipationLedger
from coop_services.observability import (
    log_operation_completed,
    log_operation_rejected,
    log_stock_restore_failed,
)

logger = get_logger("services.coordination")

T = TypeVar("T")

CommitCallback = Callable[[str, Any], None]


class _UnitOfWork:
    """Kernel services wired onto one session."""

    def __init__(self, session: Session, clock: Clock, deadline_days: int):
        self.session = session
        self.catalog = CatalogService(session, clock)
        self.membership = MembershipService(session, clock)
        self.ledger = ParticipationLedger(session, clock, membership=self.membership)
        self.bulk_orders = BulkOrderService(
            session,
            clock,
            catalog=self.catalog,
            membership=self.membership,
            default_deadline_days=deadline_days,
        )
        self.orders = OrderService(
            session,
            clock,
            catalog=self.catalog,
            stock=self.catalog,
            membership=self.membership,
        )

    @property
    def bulk_order_selector(self) -> BulkOrderSelector:
        return BulkOrderSelector(self.session)

    @property
    def order_selector(self) -> OrderSelector:
        return OrderSelector(self.session)

    @property
    def group_selector(self) -> GroupSelector:
        return GroupSelector(self.session)


class CoordinationService:
    """
    API-facing facade over the coordination kernel.

    Contract:
        Stateless between calls apart from its configuration, clock and
        callbacks; safe to share across threads.  Each method returns a
        frozen DTO or raises a CoopKernelError.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        clock: Clock | None = None,
        config: CoordinationConfig | None = None,
        on_committed: CommitCallback | None = None,
    ):
        """
        Args:
            session_factory: Session factory; defaults to the engine module's.
            clock: Time source shared by every unit of work.
            config: Policy defaults (deadline days, member limit, paging).
            on_committed: Called as ``on_committed(operation, result)``
                after each successful write commits.
        """
        self._session_factory = session_factory
        self.clock = clock or SystemClock()
        self.config = config
        self._on_committed = on_committed

        if config is not None:
            self._deadline_days = config.bulk_orders.default_deadline_days
            self._member_limit = config.bulk_orders.default_member_limit
            self._page_size = config.orders.default_page_size
            self._max_page_size = config.orders.max_page_size
        else:
            self._deadline_days = 7
            self._member_limit = 50
            self._page_size = 50
            self._max_page_size = 200

    @classmethod
    def from_config(
        cls,
        config: CoordinationConfig,
        clock: Clock | None = None,
        on_committed: CommitCallback | None = None,
    ) -> CoordinationService:
        """Initialize logging and the engine from ``config`` and build the facade."""
        configure_logging(level=log_level(config))
        db = config.database
        init_engine_from_url(
            db.url,
            echo=db.echo,
            pool_size=db.pool_size,
            max_overflow=db.max_overflow,
            pool_timeout=db.pool_timeout,
            pool_recycle=db.pool_recycle,
        )
        return cls(clock=clock, config=config, on_committed=on_committed)

    # -------------------------------------------------------------------
    # Unit of work
    # -------------------------------------------------------------------

    def _run(
        self,
        operation: str,
        work: Callable[[_UnitOfWork], T],
        *,
        actor_id: UUID | None = None,
        notify: bool = True,
        finish: Callable[[T], Any] | None = None,
        **context: Any,
    ) -> Any:
        """
        Run ``work`` in one transaction under a fresh correlation id.

        ``finish`` runs after the commit, still inside the log context, and
        its return value replaces the work result.
        """
        started = time.perf_counter()
        with LogContext.bind(correlation_id=uuid4(), actor_id=actor_id, **context):
            try:
                with session_scope(self._session_factory) as session:
                    result = work(_UnitOfWork(session, self.clock, self._deadline_days))
            except CoopKernelError as exc:
                log_operation_rejected(operation=operation, exc=exc)
                raise

            log_operation_completed(
                operation=operation,
                duration_ms=(time.perf_counter() - started) * 1000,
            )
            if finish is not None:
                result = finish(result)
            if notify and self._on_committed is not None:
                self._notify(operation, result)
            return result

    def _notify(self, operation: str, result: Any) -> None:
        # Already committed; a failing hook cannot undo the operation
        try:
            self._on_committed(operation, result)
        except Exception:
            logger.exception("post_commit_hook_failed", extra={"operation": operation})

    def _page_size_for(self, limit: int | None) -> int:
        if limit is None:
            return self._page_size
        if limit > self._max_page_size:
            raise ValidationError("limit", f"limit must not exceed {self._max_page_size}")
        return limit

    # -------------------------------------------------------------------
    # Groups
    # -------------------------------------------------------------------

    def create_group(
        self,
        name: str,
        admin_id: UUID,
        member_limit: int | None = None,
        region: str | None = None,
    ) -> GroupInfo:
        limit = member_limit if member_limit is not None else self._member_limit
        return self._run(
            "create_group",
            lambda uow: uow.membership.create_group(name, admin_id, member_limit=limit, region=region),
            actor_id=admin_id,
        )

    def join_group(self, group_id: UUID, user_id: UUID) -> MembershipInfo:
        return self._run(
            "join_group",
            lambda uow: uow.membership.join(group_id, user_id),
            actor_id=user_id,
            group_id=group_id,
        )

    def leave_group(self, group_id: UUID, user_id: UUID) -> None:
        return self._run(
            "leave_group",
            lambda uow: uow.membership.leave(group_id, user_id),
            actor_id=user_id,
            group_id=group_id,
        )

    def transfer_admin(self, group_id: UUID, actor_id: UUID, new_admin_id: UUID) -> GroupInfo:
        return self._run(
            "transfer_admin",
            lambda uow: uow.membership.transfer_admin(group_id, actor_id, new_admin_id),
            actor_id=actor_id,
            group_id=group_id,
        )

    def get_group_stats(self, group_id: UUID) -> GroupStats:
        return self._run(
            "get_group_stats",
            lambda uow: uow.group_selector.stats(group_id),
            notify=False,
            group_id=group_id,
        )

    def list_group_members(self, group_id: UUID) -> list[MembershipInfo]:
        return self._run(
            "list_group_members",
            lambda uow: uow.group_selector.members(group_id),
            notify=False,
            group_id=group_id,
        )

    def list_groups_by_region(self, region: str) -> list[GroupInfo]:
        return self._run(
            "list_groups_by_region",
            lambda uow: uow.group_selector.for_region(region),
            notify=False,
        )

    def list_groups_for_user(self, user_id: UUID) -> list[GroupInfo]:
        return self._run(
            "list_groups_for_user",
            lambda uow: uow.group_selector.for_user(user_id),
            notify=False,
            actor_id=user_id,
        )

    # -------------------------------------------------------------------
    # Catalog
    # -------------------------------------------------------------------

    def get_product_pricing(self, product_id: UUID) -> tuple[TierLadderStep, ...]:
        """Ascending tier ladder for a product, with savings against its base price."""

        def work(uow: _UnitOfWork) -> tuple[TierLadderStep, ...]:
            product = uow.catalog.get_product(product_id)
            return describe_tiers(product.unit_price, product.tier_schedule)

        return self._run("get_product_pricing", work, notify=False, product_id=product_id)

    # -------------------------------------------------------------------
    # Bulk orders
    # -------------------------------------------------------------------

    def create_bulk_order(
        self,
        group_id: UUID,
        product_id: UUID,
        target_quantity: int,
        creator_id: UUID,
        deadline: datetime | None = None,
    ) -> BulkOrderInfo:
        return self._run(
            "create_bulk_order",
            lambda uow: uow.bulk_orders.create(
                group_id, product_id, target_quantity, creator_id, deadline=deadline
            ),
            actor_id=creator_id,
            group_id=group_id,
            product_id=product_id,
        )

    def add_participation(
        self, bulk_order_id: UUID, member_id: UUID, quantity: int
    ) -> ParticipationInfo:
        return self._run(
            "add_participation",
            lambda uow: uow.ledger.add(bulk_order_id, member_id, quantity),
            actor_id=member_id,
            bulk_order_id=bulk_order_id,
        )

    def update_participation(
        self, participation_id: UUID, member_id: UUID, new_quantity: int
    ) -> ParticipationInfo:
        return self._run(
            "update_participation",
            lambda uow: uow.ledger.update(participation_id, member_id, new_quantity),
            actor_id=member_id,
        )

    def remove_participation(self, participation_id: UUID, member_id: UUID) -> None:
        return self._run(
            "remove_participation",
            lambda uow: uow.ledger.remove(participation_id, member_id),
            actor_id=member_id,
        )

    def set_participation_payment_status(
        self, participation_id: UUID, payment_status: str, actor_id: UUID
    ) -> ParticipationInfo:
        return self._run(
            "set_participation_payment_status",
            lambda uow: uow.ledger.set_payment_status(participation_id, payment_status, actor_id),
            actor_id=actor_id,
        )

    def finalize_bulk_order(self, bulk_order_id: UUID, caller_id: UUID) -> BulkOrderInfo:
        return self._run(
            "finalize_bulk_order",
            lambda uow: uow.bulk_orders.finalize(bulk_order_id, caller_id),
            actor_id=caller_id,
            bulk_order_id=bulk_order_id,
        )

    def cancel_bulk_order(
        self, bulk_order_id: UUID, caller_id: UUID, reason: str | None = None
    ) -> BulkOrderInfo:
        return self._run(
            "cancel_bulk_order",
            lambda uow: uow.bulk_orders.cancel(bulk_order_id, caller_id, reason=reason),
            actor_id=caller_id,
            bulk_order_id=bulk_order_id,
        )

    def list_bulk_orders_for_group(
        self, group_id: UUID, status: str | None = None
    ) -> list[BulkOrderDetail]:
        return self._run(
            "list_bulk_orders_for_group",
            lambda uow: uow.bulk_order_selector.list_for_group(group_id, status=status),
            notify=False,
            group_id=group_id,
        )

    def get_bulk_order(self, bulk_order_id: UUID) -> BulkOrderDetail:
        return self._run(
            "get_bulk_order",
            lambda uow: uow.bulk_order_selector.get(bulk_order_id),
            notify=False,
            bulk_order_id=bulk_order_id,
        )

    def get_member_participations(self, member_id: UUID) -> list[ParticipationInfo]:
        return self._run(
            "get_member_participations",
            lambda uow: uow.bulk_order_selector.participations_for_member(member_id),
            notify=False,
            actor_id=member_id,
        )

    # -------------------------------------------------------------------
    # Individual orders
    # -------------------------------------------------------------------

    def create_order(
        self,
        buyer_id: UUID,
        product_id: UUID,
        quantity: int,
        delivery_address: str,
        group_id: UUID | None = None,
    ) -> OrderInfo:
        return self._run(
            "create_order",
            lambda uow: uow.orders.create_order(
                buyer_id, product_id, quantity, delivery_address, group_id=group_id
            ),
            actor_id=buyer_id,
            product_id=product_id,
            group_id=group_id,
        )

    def update_order_status(
        self, order_id: UUID, new_status: str, caller_id: UUID, note: str | None = None
    ) -> OrderInfo:
        if new_status == OrderStatus.CANCELLED.value:
            # Same restore handling as cancel_order; the note becomes the reason
            return self._run(
                "update_order_status",
                lambda uow: uow.orders.cancel_order(order_id, caller_id, reason=note),
                actor_id=caller_id,
                order_id=order_id,
                finish=lambda result: self._report_restore(result).order,
            )
        return self._run(
            "update_order_status",
            lambda uow: uow.orders.update_status(order_id, new_status, caller_id, note=note),
            actor_id=caller_id,
            order_id=order_id,
        )

    def cancel_order(
        self, order_id: UUID, caller_id: UUID, reason: str | None = None
    ) -> CancellationResult:
        return self._run(
            "cancel_order",
            lambda uow: uow.orders.cancel_order(order_id, caller_id, reason=reason),
            actor_id=caller_id,
            order_id=order_id,
            finish=self._report_restore,
        )

    @staticmethod
    def _report_restore(result: CancellationResult) -> CancellationResult:
        if not result.stock_restored:
            log_stock_restore_failed(
                order_id=str(result.order.id),
                product_id=str(result.order.product_id),
                quantity=result.order.quantity,
            )
        return result

    def update_payment_status(
        self, order_id: UUID, payment_status: str, caller_id: UUID
    ) -> OrderInfo:
        return self._run(
            "update_payment_status",
            lambda uow: uow.orders.update_payment_status(order_id, payment_status, caller_id),
            actor_id=caller_id,
            order_id=order_id,
        )

    def update_delivery_address(
        self, order_id: UUID, caller_id: UUID, new_address: str
    ) -> OrderInfo:
        return self._run(
            "update_delivery_address",
            lambda uow: uow.orders.update_delivery_address(order_id, caller_id, new_address),
            actor_id=caller_id,
            order_id=order_id,
        )

    def get_orders_for_user(
        self,
        user_id: UUID,
        status: str | None = None,
        payment_status: str | None = None,
        order_type: str | None = None,
        limit: int | None = None,
        offset: int = 0,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> list[OrderInfo]:
        page = self._page_size_for(limit)
        return self._run(
            "get_orders_for_user",
            lambda uow: uow.order_selector.orders_for_user(
                user_id,
                status=status,
                payment_status=payment_status,
                order_type=order_type,
                limit=page,
                offset=offset,
                sort_by=sort_by,
                sort_order=sort_order,
            ),
            notify=False,
            actor_id=user_id,
        )

    def get_order(self, order_id: UUID, caller_id: UUID) -> OrderInfo:
        return self._run(
            "get_order",
            lambda uow: uow.order_selector.get(order_id, caller_id),
            notify=False,
            actor_id=caller_id,
            order_id=order_id,
        )

    def get_order_history(self, order_id: UUID, caller_id: UUID) -> list[OrderHistoryEntry]:
        return self._run(
            "get_order_history",
            lambda uow: uow.order_selector.history(order_id, caller_id),
            notify=False,
            actor_id=caller_id,
            order_id=order_id,
        )

    def get_orders_by_status(
        self, status: str, limit: int | None = None, offset: int = 0
    ) -> list[OrderInfo]:
        page = self._page_size_for(limit)
        return self._run(
            "get_orders_by_status",
            lambda uow: uow.order_selector.by_status(status, limit=page, offset=offset),
            notify=False,
        )
