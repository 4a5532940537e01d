"""
MembershipService -- buying groups and who belongs to them.

Responsibility:
    Creates groups, admits and removes members, transfers the admin role,
    and answers the two questions the ledger asks: "is this user an active
    member of this group?" and "is this user the group's admin?".

Architecture position:
    Kernel > Services -- imperative shell.
    ParticipationLedger and BulkOrderService consume it through the
    ``MembershipRegistry`` contract.

Invariants enforced:
    - Active member count never exceeds member_limit.  join() locks the
      group row before counting, so two joins for the last slot serialize.
    - The admin is always an active member: create_group() admits the admin,
      leave() refuses the admin, transfer_admin() requires an active member.

Failure modes:
    - GroupNotFoundError, AlreadyMemberError, GroupFullError,
      NotAMemberError, AdminCannotLeaveError, ForbiddenError,
      ValidationError.
"""

from abc import ABC, abstractmethod
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from coop_kernel.domain.clock import Clock
from coop_kernel.domain.dtos import GroupInfo, MembershipInfo
from coop_kernel.exceptions import (
    AdminCannotLeaveError,
    AlreadyMemberError,
    ForbiddenError,
    GroupFullError,
    GroupNotFoundError,
    NotAMemberError,
    ValidationError,
)
from coop_kernel.logging_config import get_logger
from coop_kernel.models.group import BuyingGroup, GroupMembership, MembershipStatus
from coop_kernel.services.base import BaseService

logger = get_logger("services.membership")


class MembershipRegistry(ABC):
    """Membership questions asked by the ledger and the bulk-order service."""

    @abstractmethod
    def is_active_member(self, group_id: UUID, user_id: UUID) -> bool:
        ...

    @abstractmethod
    def is_admin(self, group_id: UUID, user_id: UUID) -> bool:
        ...


class MembershipService(BaseService[BuyingGroup], MembershipRegistry):
    """Group and membership writes, plus the registry reads."""

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    # -------------------------------------------------------------------
    # Registry
    # -------------------------------------------------------------------

    def is_active_member(self, group_id: UUID, user_id: UUID) -> bool:
        membership_id = self.session.execute(
            select(GroupMembership.id).where(
                GroupMembership.group_id == group_id,
                GroupMembership.user_id == user_id,
                GroupMembership.status == MembershipStatus.ACTIVE.value,
            )
        ).scalar_one_or_none()
        return membership_id is not None

    def is_admin(self, group_id: UUID, user_id: UUID) -> bool:
        admin_id = self.session.execute(
            select(BuyingGroup.admin_id).where(BuyingGroup.id == group_id)
        ).scalar_one_or_none()
        return admin_id is not None and admin_id == user_id

    def get_group(self, group_id: UUID) -> GroupInfo:
        group = self.session.get(BuyingGroup, group_id)
        if group is None:
            raise GroupNotFoundError(str(group_id))
        return GroupInfo.from_model(group)

    # -------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------

    def create_group(
        self,
        name: str,
        admin_id: UUID,
        member_limit: int = 50,
        region: str | None = None,
    ) -> GroupInfo:
        """Create a group; the admin becomes its first member."""
        if not name or not name.strip():
            raise ValidationError("name", "group name is required")
        if isinstance(member_limit, bool) or not isinstance(member_limit, int) or member_limit <= 0:
            raise ValidationError("member_limit", "member limit must be a positive integer")

        now = self.clock.now()
        group = BuyingGroup(
            name=name.strip(),
            region=region,
            admin_id=admin_id,
            member_limit=member_limit,
            created_by_id=admin_id,
            created_at=now,
        )
        self.session.add(group)
        self.session.flush()

        self.session.add(
            GroupMembership(
                group_id=group.id,
                user_id=admin_id,
                status=MembershipStatus.ACTIVE.value,
                joined_at=now,
                created_by_id=admin_id,
                created_at=now,
            )
        )
        self.session.flush()

        logger.info(
            "group_created",
            extra={
                "group_id": str(group.id),
                "admin_id": str(admin_id),
                "member_limit": member_limit,
            },
        )
        return GroupInfo.from_model(group)

    def join(self, group_id: UUID, user_id: UUID) -> MembershipInfo:
        group = self._get_group_for_update(group_id)

        if self.is_active_member(group_id, user_id):
            raise AlreadyMemberError(str(group_id), str(user_id))

        # Counted under the group lock
        member_count = self._active_member_count(group_id)
        if member_count >= group.member_limit:
            logger.info(
                "group_full",
                extra={
                    "group_id": str(group_id),
                    "member_limit": group.member_limit,
                },
            )
            raise GroupFullError(str(group_id), group.member_limit)

        now = self.clock.now()
        membership = GroupMembership(
            group_id=group_id,
            user_id=user_id,
            status=MembershipStatus.ACTIVE.value,
            joined_at=now,
            created_by_id=user_id,
            created_at=now,
        )
        self.session.add(membership)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise AlreadyMemberError(str(group_id), str(user_id)) from exc

        logger.info(
            "member_joined",
            extra={
                "group_id": str(group_id),
                "user_id": str(user_id),
                "member_count": member_count + 1,
            },
        )
        return MembershipInfo.from_model(membership)

    def leave(self, group_id: UUID, user_id: UUID) -> None:
        group = self._get_group_for_update(group_id)

        if group.admin_id == user_id:
            raise AdminCannotLeaveError(str(group_id), str(user_id))

        membership = self._get_membership(group_id, user_id)
        if membership is None:
            raise NotAMemberError(str(user_id), str(group_id), "leave group")

        self.session.delete(membership)
        self.session.flush()

        logger.info(
            "member_left",
            extra={"group_id": str(group_id), "user_id": str(user_id)},
        )

    def transfer_admin(self, group_id: UUID, actor_id: UUID, new_admin_id: UUID) -> GroupInfo:
        group = self._get_group_for_update(group_id)

        if group.admin_id != actor_id:
            raise ForbiddenError(str(actor_id), "transfer admin", "only the group admin may transfer the role")
        if self._get_membership(group_id, new_admin_id) is None:
            raise NotAMemberError(str(new_admin_id), str(group_id), "become admin")

        previous = group.admin_id
        group.admin_id = new_admin_id
        group.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "admin_transferred",
            extra={
                "group_id": str(group_id),
                "previous_admin_id": str(previous),
                "new_admin_id": str(new_admin_id),
            },
        )
        return GroupInfo.from_model(group)

    # -------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------

    def _get_group_for_update(self, group_id: UUID) -> BuyingGroup:
        group = self.session.execute(
            select(BuyingGroup)
            .where(BuyingGroup.id == group_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if group is None:
            raise GroupNotFoundError(str(group_id))
        return group

    def _get_membership(self, group_id: UUID, user_id: UUID) -> GroupMembership | None:
        return self.session.execute(
            select(GroupMembership).where(
                GroupMembership.group_id == group_id,
                GroupMembership.user_id == user_id,
            )
        ).scalar_one_or_none()

    def _active_member_count(self, group_id: UUID) -> int:
        return self.session.execute(
            select(func.count(GroupMembership.id)).where(
                GroupMembership.group_id == group_id,
                GroupMembership.status == MembershipStatus.ACTIVE.value,
            )
        ).scalar_one()
