"""
Tests for the read-side selectors.

Covers:
- compute_stats arithmetic
- BulkOrderSelector listings, detail and member participations
- GroupSelector statistics, member listing and lookups by region or member
- OrderSelector visibility, filters, sorting, paging and history
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from coop_kernel.domain.dtos import ParticipationInfo
from coop_kernel.exceptions import (
    BulkOrderNotFoundError,
    ForbiddenError,
    GroupNotFoundError,
    OrderNotFoundError,
    ValidationError,
)
from coop_kernel.selectors import BulkOrderSelector, GroupSelector, OrderSelector
from coop_kernel.selectors.bulk_order_selector import compute_stats

ADDRESS = "Plot 12, Thika Road"


def _participation(quantity: int, amount: str) -> ParticipationInfo:
    return ParticipationInfo(
        id=uuid4(),
        bulk_order_id=uuid4(),
        member_id=uuid4(),
        quantity=quantity,
        amount=Decimal(amount),
        payment_status="pending",
    )


class TestComputeStats:

    def test_partial_subscription(self):
        stats = compute_stats(300, [_participation(100, "7000.00"), _participation(50, "3500.00")])

        assert stats.total_participated == 150
        assert stats.remaining_quantity == 150
        assert stats.member_count == 2
        assert stats.total_collected == Decimal("10500.00")
        assert stats.completion_percentage == Decimal("50.0")
        assert stats.is_fully_subscribed is False

    def test_one_decimal_place(self):
        assert compute_stats(3, [_participation(1, "1.00")]).completion_percentage == Decimal("33.3")

    def test_full_subscription(self):
        stats = compute_stats(10, [_participation(10, "900.00")])
        assert stats.is_fully_subscribed is True
        assert stats.remaining_quantity == 0

    def test_empty(self):
        stats = compute_stats(10, [])
        assert stats.total_participated == 0
        assert stats.total_collected == Decimal("0.00")
        assert stats.completion_percentage == Decimal("0.0")


class TestBulkOrderSelector:

    def test_get_includes_participations_and_stats(self, session, ledger, bulk_order, member_ids):
        ledger.add(bulk_order.id, member_ids[0], 30)
        ledger.add(bulk_order.id, member_ids[1], 20)

        detail = BulkOrderSelector(session).get(bulk_order.id)

        assert detail.product_name == "Maize flour 2kg"
        assert detail.unit_type == "bags"
        assert len(detail.participations) == 2
        assert detail.stats.total_participated == 50
        assert detail.stats.total_collected == Decimal("3500.00")
        assert detail.stats.completion_percentage == Decimal("50.0")

    def test_get_unknown(self, session, clean_db):
        with pytest.raises(BulkOrderNotFoundError):
            BulkOrderSelector(session).get(uuid4())

    def test_list_for_group_newest_first_with_filter(
        self, session, clock, ledger, bulk_order_service, group, product, admin_id, member_ids
    ):
        first = bulk_order_service.create(group.id, product.id, 20, admin_id)
        clock.advance(60)
        second = bulk_order_service.create(group.id, product.id, 40, admin_id)
        ledger.add(first.id, member_ids[0], 5)
        bulk_order_service.finalize(first.id, admin_id)

        selector = BulkOrderSelector(session)
        listed = selector.list_for_group(group.id)
        assert [d.bulk_order.id for d in listed] == [second.id, first.id]
        assert listed[1].stats.total_participated == 5
        assert listed[0].participations == ()

        finalized = selector.list_for_group(group.id, status="finalized")
        assert [d.bulk_order.id for d in finalized] == [first.id]

    def test_list_unknown_status(self, session, group):
        with pytest.raises(ValidationError):
            BulkOrderSelector(session).list_for_group(group.id, status="open")

    def test_list_empty_group(self, session, clean_db):
        assert BulkOrderSelector(session).list_for_group(uuid4()) == []

    def test_participations_for_member(self, session, ledger, bulk_order, member_ids):
        ledger.add(bulk_order.id, member_ids[0], 30)
        ledger.add(bulk_order.id, member_ids[1], 20)

        mine = BulkOrderSelector(session).participations_for_member(member_ids[0])
        assert [p.quantity for p in mine] == [30]


class TestGroupSelector:

    def test_stats(self, session, ledger, bulk_order_service, group, product, admin_id, member_ids):
        created = bulk_order_service.create(group.id, product.id, 100, admin_id)
        bulk_order_service.create(group.id, product.id, 10, admin_id)

        stats = GroupSelector(session).stats(group.id)

        assert stats.member_count == 4
        assert stats.member_limit == 10
        assert stats.utilization_rate == Decimal("40.0")
        assert stats.bulk_order_count == 2
        # 100 * 70.00 + 10 * 90.00
        assert stats.total_order_value == Decimal("7900.00")
        assert created.total_amount == Decimal("7000.00")

    def test_stats_unknown_group(self, session, clean_db):
        with pytest.raises(GroupNotFoundError):
            GroupSelector(session).stats(uuid4())

    def test_members_in_join_order(self, session, clock, membership_service, admin_id):
        group = membership_service.create_group("Meru", admin_id)
        later = uuid4()
        clock.advance(5)
        membership_service.join(group.id, later)

        members = GroupSelector(session).members(group.id)
        assert [m.user_id for m in members] == [admin_id, later]

    def test_for_region_exact_match_by_name(self, session, membership_service, admin_id):
        nyeri = membership_service.create_group("Nyeri Coffee", admin_id, region="Nyeri")
        apiary = membership_service.create_group("Nyeri Apiary", uuid4(), region="Nyeri")
        membership_service.create_group("Lamu Fishers", uuid4(), region="Lamu")

        selector = GroupSelector(session)
        assert [g.id for g in selector.for_region("Nyeri")] == [apiary.id, nyeri.id]
        assert selector.for_region("nyeri") == []

    def test_for_user_skips_groups_left(self, session, clock, membership_service, admin_id):
        kept = membership_service.create_group("Kitui Weavers", uuid4(), region="Kitui")
        left = membership_service.create_group("Kitui Potters", uuid4())
        membership_service.join(kept.id, admin_id)
        membership_service.join(left.id, admin_id)
        membership_service.leave(left.id, admin_id)

        groups = GroupSelector(session).for_user(admin_id)
        assert [(g.id, g.region) for g in groups] == [(kept.id, "Kitui")]


class TestOrderSelector:

    @pytest.fixture
    def orders(self, clock, order_service, product, seller_id):
        buyer = uuid4()
        placed = []
        for quantity in (5, 20, 60):
            placed.append(order_service.create_order(buyer, product.id, quantity, ADDRESS))
            clock.advance(10)
        order_service.update_status(placed[0].id, "confirmed", seller_id)
        return buyer, placed

    def test_buyer_sees_own_orders_newest_first(self, session, orders):
        buyer, placed = orders
        listed = OrderSelector(session).orders_for_user(buyer)
        assert [o.id for o in listed] == [p.id for p in reversed(placed)]

    def test_seller_sees_orders_for_their_products(self, session, orders, seller_id):
        _, placed = orders
        assert len(OrderSelector(session).orders_for_user(seller_id)) == len(placed)

    def test_stranger_sees_nothing(self, session, orders, outsider_id):
        assert OrderSelector(session).orders_for_user(outsider_id) == []

    def test_status_filter(self, session, orders):
        buyer, placed = orders
        confirmed = OrderSelector(session).orders_for_user(buyer, status="confirmed")
        assert [o.id for o in confirmed] == [placed[0].id]

    def test_sort_by_amount_ascending_with_paging(self, session, orders):
        buyer, placed = orders
        page = OrderSelector(session).orders_for_user(
            buyer, sort_by="total_amount", sort_order="asc", limit=2, offset=1
        )
        assert [o.id for o in page] == [placed[1].id, placed[2].id]

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"status": "returned"},
            {"payment_status": "settled"},
            {"order_type": "wholesale"},
            {"sort_by": "buyer_id"},
            {"sort_order": "up"},
            {"limit": 0},
            {"offset": -1},
        ],
    )
    def test_invalid_query_arguments(self, session, orders, kwargs):
        buyer, _ = orders
        with pytest.raises(ValidationError):
            OrderSelector(session).orders_for_user(buyer, **kwargs)

    def test_get_visibility(self, session, orders, seller_id, outsider_id):
        buyer, placed = orders
        selector = OrderSelector(session)

        assert selector.get(placed[0].id, buyer).status == "confirmed"
        assert selector.get(placed[0].id, seller_id).id == placed[0].id
        with pytest.raises(ForbiddenError):
            selector.get(placed[0].id, outsider_id)
        with pytest.raises(OrderNotFoundError):
            selector.get(uuid4(), buyer)

    def test_history(self, session, orders):
        buyer, placed = orders
        history = OrderSelector(session).history(placed[0].id, buyer)

        assert [h.status for h in history] == ["pending", "confirmed"]
        assert history[1].description == "Order confirmed by seller"

    def test_by_status(self, session, orders):
        _, placed = orders
        pending = OrderSelector(session).by_status("pending")
        assert {o.id for o in pending} == {placed[1].id, placed[2].id}
