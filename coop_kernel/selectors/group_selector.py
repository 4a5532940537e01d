"""
Module: coop_kernel.selectors.group_selector
Responsibility: Read-only group statistics, member listings and group lookups
    by region or member.
Architecture position: Kernel > Selectors.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select

from coop_kernel.db.types import round_money
from coop_kernel.domain.dtos import GroupInfo, GroupStats, MembershipInfo
from coop_kernel.exceptions import GroupNotFoundError
from coop_kernel.models.bulk_order import BulkOrder
from coop_kernel.models.group import BuyingGroup, GroupMembership, MembershipStatus
from coop_kernel.selectors.base import BaseSelector


class GroupSelector(BaseSelector[BuyingGroup]):

    def stats(self, group_id: UUID) -> GroupStats:
        """
        Member count, bulk-order count and value, and how full the group is.

        total_order_value sums total_amount over every bulk order of the
        group, whatever its status.  utilization_rate is members / limit as
        a percentage with one decimal place.
        """
        group = self.session.get(BuyingGroup, group_id)
        if group is None:
            raise GroupNotFoundError(str(group_id))

        member_count = self.session.execute(
            select(func.count(GroupMembership.id)).where(
                GroupMembership.group_id == group_id,
                GroupMembership.status == MembershipStatus.ACTIVE.value,
            )
        ).scalar_one()

        bulk_order_count, total_value = self.session.execute(
            select(
                func.count(BulkOrder.id),
                func.coalesce(func.sum(BulkOrder.total_amount), 0),
            ).where(BulkOrder.group_id == group_id)
        ).one()

        utilization = round_money(
            Decimal(member_count) * 100 / Decimal(group.member_limit), decimal_places=1
        )
        return GroupStats(
            group_id=group.id,
            name=group.name,
            member_count=member_count,
            member_limit=group.member_limit,
            bulk_order_count=bulk_order_count,
            total_order_value=round_money(Decimal(str(total_value))),
            utilization_rate=utilization,
        )

    def members(self, group_id: UUID) -> list[MembershipInfo]:
        rows = self.session.execute(
            select(GroupMembership)
            .where(GroupMembership.group_id == group_id)
            .order_by(GroupMembership.joined_at, GroupMembership.id)
        ).scalars()
        return [MembershipInfo.from_model(m) for m in rows]

    def for_region(self, region: str) -> list[GroupInfo]:
        """Groups whose region matches exactly, by name."""
        rows = self.session.execute(
            select(BuyingGroup)
            .where(BuyingGroup.region == region)
            .order_by(BuyingGroup.name, BuyingGroup.id)
        ).scalars()
        return [GroupInfo.from_model(g) for g in rows]

    def for_user(self, user_id: UUID) -> list[GroupInfo]:
        """Groups the user actively belongs to, most recently joined first."""
        rows = self.session.execute(
            select(BuyingGroup)
            .join(GroupMembership, GroupMembership.group_id == BuyingGroup.id)
            .where(
                GroupMembership.user_id == user_id,
                GroupMembership.status == MembershipStatus.ACTIVE.value,
            )
            .order_by(GroupMembership.joined_at.desc(), BuyingGroup.id)
        ).scalars()
        return [GroupInfo.from_model(g) for g in rows]
