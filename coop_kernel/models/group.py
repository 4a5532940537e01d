"""
Module: coop_kernel.models.group
Responsibility: ORM persistence for buying groups (cooperatives) and their
    active memberships.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - One membership row per (group, user) (uq_group_membership).
    - Active member count <= member_limit (enforced by MembershipService
      under a row lock on the group).
    - admin_id is always an active member (create_group inserts the admin's
      membership; leave refuses the admin; transfer requires an active
      member).
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from coop_kernel.db.base import TrackedBase, UUIDString


class MembershipStatus(str, Enum):
    """Membership state.  Only ACTIVE rows exist; leaving deletes the row."""

    ACTIVE = "active"


class BuyingGroup(TrackedBase):
    """
    A cooperative of buyers ("SACCO") with one administrator.

    Guarantees:
        - member_limit > 0.
        - admin_id references an active GroupMembership of this group.
    """

    __tablename__ = "buying_groups"

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    region: Mapped[str | None] = mapped_column(String(100), nullable=True)

    admin_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    member_limit: Mapped[int] = mapped_column(BigInteger, nullable=False, default=50)

    def __repr__(self) -> str:
        return f"<BuyingGroup {self.name} (limit {self.member_limit})>"


class GroupMembership(TrackedBase):
    """An active (group, user) pair."""

    __tablename__ = "group_memberships"

    __table_args__ = (
        UniqueConstraint("group_id", "user_id", name="uq_group_membership"),
        Index("idx_membership_user", "user_id"),
    )

    group_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("buying_groups.id", ondelete="CASCADE"),
        nullable=False,
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=MembershipStatus.ACTIVE.value,
    )

    joined_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
