"""
End-to-end tests through CoordinationService.

Each facade call commits its own unit of work, so these tests use the
committed ``world`` fixture and never the per-test ``session``.

Covers:
- a full bulk-order cycle: create, pledge, resize, withdraw, finalize
- rollback of a rejected call
- individual order cycle with stock round trip
- post-commit callbacks and their failure handling
- rejection logging with correlation ids
- configuration-driven defaults
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from coop_config import get_active_config
from coop_kernel.exceptions import (
    CapacityExceededError,
    DeadlinePassedError,
    InvalidTransitionError,
    NotAMemberError,
    ProductNotFoundError,
    ValidationError,
)
from coop_kernel.services.catalog_service import CatalogService
from coop_services import CoordinationService

ADDRESS = "Stall 4, Wakulima Market"


class TestBulkOrderCycle:

    def test_full_cycle(self, coordination, world):
        members = world.member_ids
        created = coordination.create_bulk_order(world.group_id, world.product_id, 100, world.admin_id)
        assert created.unit_price == Decimal("70.00")

        first = coordination.add_participation(created.id, members[0], 40)
        second = coordination.add_participation(created.id, members[1], 30)
        coordination.update_participation(first.id, members[0], 50)
        coordination.remove_participation(second.id, members[1])
        coordination.add_participation(created.id, members[2], 25)

        detail = coordination.get_bulk_order(created.id)
        assert detail.bulk_order.committed_quantity == 75
        assert detail.stats.total_participated == 75
        assert detail.stats.completion_percentage == Decimal("75.0")

        finalized = coordination.finalize_bulk_order(created.id, world.admin_id)
        assert finalized.target_quantity == 75
        assert finalized.total_amount == Decimal("5250.00")

        listed = coordination.list_bulk_orders_for_group(world.group_id, status="finalized")
        assert [d.bulk_order.id for d in listed] == [created.id]
        assert [p.quantity for p in coordination.get_member_participations(members[0])] == [50]

    def test_rejected_call_leaves_nothing_behind(self, coordination, world):
        created = coordination.create_bulk_order(world.group_id, world.product_id, 50, world.admin_id)
        coordination.add_participation(created.id, world.member_ids[0], 45)

        with pytest.raises(CapacityExceededError) as exc_info:
            coordination.add_participation(created.id, world.member_ids[1], 10)
        assert exc_info.value.remaining == 5

        detail = coordination.get_bulk_order(created.id)
        assert detail.bulk_order.committed_quantity == 45
        assert len(detail.participations) == 1
        assert detail.bulk_order.version == created.version + 1

    def test_deadline_enforced_with_shared_clock(self, coordination, world, clock):
        created = coordination.create_bulk_order(world.group_id, world.product_id, 50, world.admin_id)
        clock.advance_days(7)
        coordination.add_participation(created.id, world.member_ids[0], 5)
        clock.advance(1)

        with pytest.raises(DeadlinePassedError):
            coordination.add_participation(created.id, world.member_ids[1], 5)

    def test_cancelled_bulk_order(self, coordination, world):
        created = coordination.create_bulk_order(world.group_id, world.product_id, 50, world.admin_id)
        cancelled = coordination.cancel_bulk_order(created.id, world.admin_id, reason="supplier out")
        assert cancelled.status == "cancelled"
        assert cancelled.cancellation_reason == "supplier out"


class TestGroups:

    def test_group_lifecycle(self, coordination):
        admin = uuid4()
        group = coordination.create_group("Embu Traders", admin, region="Embu")
        assert group.member_limit == 50

        newcomer = uuid4()
        coordination.join_group(group.id, newcomer)
        coordination.transfer_admin(group.id, admin, newcomer)
        coordination.leave_group(group.id, admin)

        stats = coordination.get_group_stats(group.id)
        assert stats.member_count == 1
        assert stats.utilization_rate == Decimal("2.0")
        assert [m.user_id for m in coordination.list_group_members(group.id)] == [newcomer]

    def test_outsider_cannot_create_bulk_order(self, coordination, world):
        with pytest.raises(NotAMemberError):
            coordination.create_bulk_order(world.group_id, world.product_id, 10, uuid4())

    def test_groups_by_region(self, coordination):
        embu_b = coordination.create_group("Embu Growers", uuid4(), region="Embu")
        embu_a = coordination.create_group("Embu Dairy", uuid4(), region="Embu")
        coordination.create_group("Kisii Tea", uuid4(), region="Kisii")

        assert [g.id for g in coordination.list_groups_by_region("Embu")] == [embu_a.id, embu_b.id]
        assert coordination.list_groups_by_region("Turkana") == []

    def test_groups_for_user_lists_active_memberships(self, coordination, clock):
        user = uuid4()
        first = coordination.create_group("Meru Millers", uuid4())
        second = coordination.create_group("Meru Bakers", uuid4())
        left = coordination.create_group("Meru Grocers", uuid4())
        coordination.join_group(first.id, user)
        clock.advance(3600)
        coordination.join_group(second.id, user)
        coordination.join_group(left.id, user)
        coordination.leave_group(left.id, user)

        assert [g.id for g in coordination.list_groups_for_user(user)] == [second.id, first.id]
        assert coordination.list_groups_for_user(uuid4()) == []


class TestIndividualOrders:

    def test_order_cycle_round_trips_stock(self, coordination, world):
        buyer = world.member_ids[0]
        order = coordination.create_order(buyer, world.product_id, 20, ADDRESS)

        coordination.update_order_status(order.id, "confirmed", world.seller_id)
        coordination.update_payment_status(order.id, "paid", buyer)
        result = coordination.cancel_order(order.id, buyer, reason="duplicate")

        assert result.stock_restored is True
        assert result.order.payment_status == "paid"
        history = coordination.get_order_history(order.id, buyer)
        assert [h.status for h in history] == ["pending", "confirmed", "cancelled"]

        # stock is back to 1000: a 1000-unit bulk order is accepted again
        coordination.create_bulk_order(world.group_id, world.product_id, 1000, world.admin_id)

    def test_shipped_order_cannot_be_cancelled(self, coordination, world):
        order = coordination.create_order(world.member_ids[0], world.product_id, 5, ADDRESS)
        coordination.update_order_status(order.id, "confirmed", world.seller_id)
        coordination.update_order_status(order.id, "shipped", world.seller_id)

        with pytest.raises(InvalidTransitionError):
            coordination.cancel_order(order.id, world.member_ids[0])
        assert coordination.get_order(order.id, world.seller_id).status == "shipped"

    def test_listing_and_paging(self, coordination, world, clock):
        buyer = world.member_ids[0]
        for quantity in (1, 2, 3):
            coordination.create_order(buyer, world.product_id, quantity, ADDRESS)
            clock.advance(1)

        assert [o.quantity for o in coordination.get_orders_for_user(buyer, limit=2)] == [3, 2]
        assert len(coordination.get_orders_for_user(world.seller_id)) == 3
        assert len(coordination.get_orders_by_status("pending")) == 3

        with pytest.raises(ValidationError):
            coordination.get_orders_for_user(buyer, limit=201)

    def test_delivery_address_update(self, coordination, world):
        order = coordination.create_order(world.member_ids[0], world.product_id, 5, ADDRESS)
        updated = coordination.update_delivery_address(order.id, world.member_ids[0], "Gate B")
        assert updated.delivery_address == "Gate B"


class TestCallbacksAndLogging:

    def test_on_committed_receives_results(self, clean_db, clock, world):
        seen = []
        coordination = CoordinationService(clock=clock, on_committed=lambda op, result: seen.append((op, result)))

        created = coordination.create_bulk_order(world.group_id, world.product_id, 10, world.admin_id)
        coordination.get_bulk_order(created.id)

        assert seen == [("create_bulk_order", created)]

    def test_rejected_call_does_not_notify(self, clean_db, clock, world):
        seen = []
        coordination = CoordinationService(clock=clock, on_committed=lambda op, result: seen.append(op))

        with pytest.raises(ValidationError):
            coordination.create_bulk_order(world.group_id, world.product_id, 0, world.admin_id)
        assert seen == []

    def test_failing_callback_is_logged_not_raised(self, clean_db, clock, world, captured_logs):
        def explode(operation, result):
            raise RuntimeError("webhook down")

        coordination = CoordinationService(clock=clock, on_committed=explode)
        created = coordination.create_bulk_order(world.group_id, world.product_id, 10, world.admin_id)

        assert coordination.get_bulk_order(created.id).bulk_order.id == created.id
        failures = [r for r in captured_logs() if r["message"] == "post_commit_hook_failed"]
        assert len(failures) == 1
        assert failures[0]["operation"] == "create_bulk_order"

    def test_rejection_logged_with_context(self, coordination, world, captured_logs):
        created = coordination.create_bulk_order(world.group_id, world.product_id, 10, world.admin_id)
        with pytest.raises(CapacityExceededError):
            coordination.add_participation(created.id, world.member_ids[0], 11)

        records = captured_logs()
        rejected = [r for r in records if r["message"] == "operation_rejected"]
        assert len(rejected) == 1
        assert rejected[0]["exc_code"] == "CAPACITY_EXCEEDED"
        assert rejected[0]["bulk_order_id"] == str(created.id)
        assert rejected[0]["actor_id"] == str(world.member_ids[0])
        assert "correlation_id" in rejected[0]

        correlation = rejected[0]["correlation_id"]
        capacity = [r for r in records if r["message"] == "capacity_rejected"]
        assert capacity and all(r["correlation_id"] == correlation for r in capacity)


class TestStockRestoreFailure:
    """A cancellation whose stock restore fails still commits, and operators are told."""

    @pytest.fixture
    def confirmed_order(self, coordination, world, monkeypatch):
        order = coordination.create_order(world.member_ids[0], world.product_id, 20, ADDRESS)
        coordination.update_order_status(order.id, "confirmed", world.seller_id)
        monkeypatch.setattr(CatalogService, "restore", lambda self, product_id, quantity: False)
        return order

    @staticmethod
    def _restore_failures(records):
        return [r for r in records if r.get("observability_event") == "stock_restore_failed"]

    def test_cancel_order_reports_unrestored_stock(self, coordination, world, confirmed_order, captured_logs):
        buyer = world.member_ids[0]
        result = coordination.cancel_order(confirmed_order.id, buyer, reason="duplicate")

        assert result.stock_restored is False
        assert result.order.status == "cancelled"
        (event,) = self._restore_failures(captured_logs())
        assert event["level"] == "WARNING"
        assert event["order_id"] == str(confirmed_order.id)
        assert event["product_id"] == str(world.product_id)
        assert event["quantity"] == 20
        assert event["actor_id"] == str(buyer)
        assert "correlation_id" in event

    def test_status_update_to_cancelled_reports_unrestored_stock(
        self, coordination, world, confirmed_order, captured_logs
    ):
        updated = coordination.update_order_status(
            confirmed_order.id, "cancelled", world.seller_id, note="out of season"
        )

        assert updated.status == "cancelled"
        assert updated.cancellation_reason == "out of season"
        records = captured_logs()
        (event,) = self._restore_failures(records)
        assert event["level"] == "WARNING"
        assert event["actor_id"] == str(world.seller_id)

        completed = [
            r for r in records
            if r["message"] == "operation_completed" and r.get("operation") == "update_order_status"
        ]
        assert completed[-1]["correlation_id"] == event["correlation_id"]

    def test_status_update_callback_receives_order(self, clean_db, clock, world, confirmed_order):
        seen = []
        coordination = CoordinationService(clock=clock, on_committed=lambda op, result: seen.append((op, result)))

        updated = coordination.update_order_status(confirmed_order.id, "cancelled", world.seller_id)

        assert seen == [("update_order_status", updated)]

    def test_restored_stock_emits_no_event(self, coordination, world, captured_logs):
        order = coordination.create_order(world.member_ids[0], world.product_id, 5, ADDRESS)
        coordination.update_order_status(order.id, "confirmed", world.seller_id)
        coordination.update_order_status(order.id, "cancelled", world.seller_id)

        assert self._restore_failures(captured_logs()) == []


class TestProductPricing:

    def test_tier_ladder_for_product(self, coordination, world):
        ladder = coordination.get_product_pricing(world.product_id)

        assert [step.min_quantity for step in ladder] == [10, 50, 100]
        assert [step.unit_price for step in ladder] == [Decimal("90.00"), Decimal("80.00"), Decimal("70.00")]
        assert ladder[-1].savings_percent == Decimal("30.00")

    def test_unknown_product(self, coordination):
        with pytest.raises(ProductNotFoundError):
            coordination.get_product_pricing(uuid4())


class TestConfiguredFacade:

    def test_config_defaults_flow_through(self, clean_db, clock, world):
        config = get_active_config(
            "local",
            overrides={
                "bulk_orders": {"default_deadline_days": 2, "default_member_limit": 5},
                "orders": {"default_page_size": 5, "max_page_size": 10},
            },
        )
        coordination = CoordinationService(clock=clock, config=config)

        created = coordination.create_bulk_order(world.group_id, world.product_id, 10, world.admin_id)
        assert created.deadline == clock.now() + timedelta(days=2)
        assert coordination.create_group("Small", uuid4()).member_limit == 5
        with pytest.raises(ValidationError):
            coordination.get_orders_by_status("pending", limit=11)
