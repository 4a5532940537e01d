"""
Typed Exception Hierarchy for the Coordination Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every failure in the engine is an expected, user-facing condition: a full
bulk order, an oversold product, a late pledge.  Callers (the API layer,
tests, operators reading logs) must be able to tell them apart without
parsing message strings, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (remaining capacity, current status)

Example:
    try:
        ledger.add(bulk_order_id, member_id, quantity=40)
    except CapacityExceededError as e:
        return {"error": e.code, "remaining": e.remaining}

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    CoopKernelError (base)
    |
    +-- NotFoundError
    |   +-- ProductNotFoundError
    |   +-- GroupNotFoundError
    |   +-- BulkOrderNotFoundError
    |   +-- ParticipationNotFoundError
    |   +-- OrderNotFoundError
    |
    +-- ForbiddenError
    |   +-- NotOwnerError
    |   +-- NotAMemberError
    |
    +-- InvalidStateError
    |   +-- AdminCannotLeaveError
    |
    +-- InvalidTransitionError
    +-- CapacityExceededError
    +-- GroupFullError
    +-- InsufficientStockError
    +-- DeadlinePassedError
    +-- DuplicateParticipationError
    +-- AlreadyMemberError
    +-- NoParticipationsError
    +-- ValidationError
        +-- InvalidTierScheduleError

===============================================================================
PROPAGATION
===============================================================================

Validation and authorization errors are raised before any write.  Capacity
and stock violations are detected by the conditional UPDATE itself, which
writes nothing when it refuses; the enclosing unit of work then rolls back.
Nothing here is fatal to the process, and every error is safe to retry.
===============================================================================
"""

from datetime import datetime


class CoopKernelError(Exception):
    """
    Base exception for all coordination kernel errors.

    All subclasses must have a ``code`` class attribute for machine-readable
    error identification.
    """

    code: str = "COOP_KERNEL_ERROR"


# Not found


class NotFoundError(CoopKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str, detail: str | None = None):
        self.entity = entity
        self.entity_id = entity_id
        message = f"{entity} not found: {entity_id}"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class ProductNotFoundError(NotFoundError):
    """Product is absent, or inactive where an active product is required."""

    code: str = "PRODUCT_NOT_FOUND"

    def __init__(self, product_id: str, reason: str | None = None):
        self.reason = reason
        super().__init__("Product", product_id, reason)


class GroupNotFoundError(NotFoundError):
    """Buying group does not exist."""

    code: str = "GROUP_NOT_FOUND"

    def __init__(self, group_id: str):
        super().__init__("Buying group", group_id)


class BulkOrderNotFoundError(NotFoundError):
    """Bulk order does not exist."""

    code: str = "BULK_ORDER_NOT_FOUND"

    def __init__(self, bulk_order_id: str):
        super().__init__("Bulk order", bulk_order_id)


class ParticipationNotFoundError(NotFoundError):
    """Participation does not exist."""

    code: str = "PARTICIPATION_NOT_FOUND"

    def __init__(self, participation_id: str):
        super().__init__("Participation", participation_id)


class OrderNotFoundError(NotFoundError):
    """Individual order does not exist."""

    code: str = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        super().__init__("Order", order_id)


# Authorization


class ForbiddenError(CoopKernelError):
    """Caller is not allowed to perform the operation."""

    code: str = "FORBIDDEN"

    def __init__(self, actor_id: str, action: str, reason: str):
        self.actor_id = actor_id
        self.action = action
        self.reason = reason
        super().__init__(f"Actor {actor_id} may not {action}: {reason}")


class NotOwnerError(ForbiddenError):
    """Caller does not own the participation being changed."""

    code: str = "NOT_OWNER"

    def __init__(self, actor_id: str, participation_id: str, action: str = "modify participation"):
        self.participation_id = participation_id
        super().__init__(
            actor_id, action, f"participation {participation_id} belongs to another member"
        )


class NotAMemberError(ForbiddenError):
    """Caller is not an active member of the buying group."""

    code: str = "NOT_A_MEMBER"

    def __init__(self, actor_id: str, group_id: str, action: str):
        self.group_id = group_id
        super().__init__(
            actor_id, action, f"not an active member of group {group_id}"
        )


# Lifecycle


class InvalidStateError(CoopKernelError):
    """Operation is not valid for the entity's current lifecycle state."""

    code: str = "INVALID_STATE"

    def __init__(self, entity: str, entity_id: str, status: str, operation: str):
        self.entity = entity
        self.entity_id = entity_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} {entity} {entity_id} in status '{status}'"
        )


class AdminCannotLeaveError(InvalidStateError):
    """Group admin tried to leave without transferring the admin role."""

    code: str = "ADMIN_CANNOT_LEAVE"

    def __init__(self, group_id: str, admin_id: str):
        self.admin_id = admin_id
        super().__init__("Buying group", group_id, "admin", "leave")
        self.args = (
            f"Admin {admin_id} cannot leave group {group_id}; transfer admin rights first",
        )


class InvalidTransitionError(CoopKernelError):
    """Order status change is not permitted."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, order_id: str, current_status: str, requested_status: str):
        self.order_id = order_id
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(
            f"Cannot change order {order_id} from '{current_status}' "
            f"to '{requested_status}'"
        )


# Capacity and stock


class CapacityExceededError(CoopKernelError):
    """Participation would push the bulk order past its target quantity."""

    code: str = "CAPACITY_EXCEEDED"

    def __init__(self, bulk_order_id: str, requested: int, remaining: int):
        self.bulk_order_id = bulk_order_id
        self.requested = requested
        self.remaining = remaining
        super().__init__(
            f"Bulk order {bulk_order_id}: requested {requested}, "
            f"only {remaining} remaining"
        )


class GroupFullError(CoopKernelError):
    """Buying group has reached its member limit."""

    code: str = "GROUP_FULL"

    def __init__(self, group_id: str, member_limit: int):
        self.group_id = group_id
        self.member_limit = member_limit
        super().__init__(
            f"Group {group_id} has reached its member limit of {member_limit}"
        )


class InsufficientStockError(CoopKernelError):
    """Stock decrement or availability check would go negative."""

    code: str = "INSUFFICIENT_STOCK"

    def __init__(self, product_id: str, available: int, requested: int):
        self.product_id = product_id
        self.available = available
        self.requested = requested
        super().__init__(
            f"Insufficient stock for product {product_id}: "
            f"available {available}, requested {requested}"
        )


class DeadlinePassedError(CoopKernelError):
    """Bulk order deadline has passed; participations are closed."""

    code: str = "DEADLINE_PASSED"

    def __init__(self, bulk_order_id: str, deadline: datetime):
        self.bulk_order_id = bulk_order_id
        self.deadline = deadline
        super().__init__(
            f"Deadline for bulk order {bulk_order_id} passed at {deadline.isoformat()}"
        )


class DuplicateParticipationError(CoopKernelError):
    """Member already has a participation on this bulk order."""

    code: str = "DUPLICATE_PARTICIPATION"

    def __init__(self, bulk_order_id: str, member_id: str):
        self.bulk_order_id = bulk_order_id
        self.member_id = member_id
        super().__init__(
            f"Member {member_id} already participates in bulk order {bulk_order_id}"
        )


class AlreadyMemberError(CoopKernelError):
    """User is already an active member of the group."""

    code: str = "ALREADY_MEMBER"

    def __init__(self, group_id: str, user_id: str):
        self.group_id = group_id
        self.user_id = user_id
        super().__init__(f"User {user_id} is already a member of group {group_id}")


class NoParticipationsError(CoopKernelError):
    """Bulk order cannot be finalized without participations."""

    code: str = "NO_PARTICIPATIONS"

    def __init__(self, bulk_order_id: str):
        self.bulk_order_id = bulk_order_id
        super().__init__(
            f"Cannot finalize bulk order {bulk_order_id} with no participations"
        )


# Validation


class ValidationError(CoopKernelError):
    """Input failed validation (non-positive quantity, missing field, ...)."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


class InvalidTierScheduleError(ValidationError):
    """Tier schedule entry is malformed."""

    code: str = "INVALID_TIER_SCHEDULE"

    def __init__(self, entry: str, message: str):
        self.entry = entry
        super().__init__("tier_schedule", f"{message} (entry {entry!r})")


__all__ = [
    "CoopKernelError",
    "NotFoundError",
    "ProductNotFoundError",
    "GroupNotFoundError",
    "BulkOrderNotFoundError",
    "ParticipationNotFoundError",
    "OrderNotFoundError",
    "ForbiddenError",
    "NotOwnerError",
    "NotAMemberError",
    "InvalidStateError",
    "AdminCannotLeaveError",
    "InvalidTransitionError",
    "CapacityExceededError",
    "GroupFullError",
    "InsufficientStockError",
    "DeadlinePassedError",
    "DuplicateParticipationError",
    "AlreadyMemberError",
    "NoParticipationsError",
    "ValidationError",
    "InvalidTierScheduleError",
]
