"""
OrderLifecycle -- pure state machine for individual orders.

Responsibility:
    Defines the individual-order statuses, the allowed transitions between
    them, and the stock effect each transition carries.  The service layer
    asks ``plan_transition()`` what to do and then does it atomically.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - pending -> {confirmed, cancelled}; confirmed -> {shipped, cancelled};
      shipped -> {delivered}; delivered and cancelled are terminal.
    - Stock is taken exactly once (pending -> confirmed) and given back
      exactly once (confirmed|shipped -> cancelled).  No other transition
      touches stock.

Failure modes:
    - InvalidTransitionError naming current and requested states.
    - ValidationError for a status string outside OrderStatus.
"""

from dataclasses import dataclass
from enum import Enum

from coop_kernel.exceptions import InvalidTransitionError, ValidationError


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class OrderType(str, Enum):
    """INDIVIDUAL for a single buyer; BULK when placed on behalf of a group."""

    INDIVIDUAL = "individual"
    BULK = "bulk"


class StockEffect(str, Enum):
    NONE = "none"
    DECREMENT = "decrement"
    RESTORE = "restore"


# Allowed state transitions (from -> set of valid targets)
VALID_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    # Terminal states
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Statuses in which the order holds decremented stock
STOCK_HOLDING_STATUSES: frozenset[OrderStatus] = frozenset(
    {OrderStatus.CONFIRMED, OrderStatus.SHIPPED}
)

STATUS_DESCRIPTIONS: dict[OrderStatus, str] = {
    OrderStatus.PENDING: "Order placed and awaiting confirmation",
    OrderStatus.CONFIRMED: "Order confirmed by seller",
    OrderStatus.SHIPPED: "Order shipped and in transit",
    OrderStatus.DELIVERED: "Order delivered successfully",
    OrderStatus.CANCELLED: "Order cancelled",
}


@dataclass(frozen=True)
class TransitionPlan:
    """What a valid transition requires of the service layer."""

    current: OrderStatus
    target: OrderStatus
    stock_effect: StockEffect

    @property
    def is_terminal(self) -> bool:
        return not VALID_TRANSITIONS[self.target]


def parse_status(value: str | OrderStatus) -> OrderStatus:
    """Coerce a status string; unknown values are a validation error."""
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationError(
            "status",
            f"unknown order status {value!r}; expected one of "
            f"{', '.join(s.value for s in OrderStatus)}",
        ) from None


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in VALID_TRANSITIONS[current]


def stock_effect_for(current: OrderStatus, target: OrderStatus) -> StockEffect:
    if current == OrderStatus.PENDING and target == OrderStatus.CONFIRMED:
        return StockEffect.DECREMENT
    if current in STOCK_HOLDING_STATUSES and target == OrderStatus.CANCELLED:
        return StockEffect.RESTORE
    return StockEffect.NONE


def plan_transition(order_id: str, current: str | OrderStatus, requested: str | OrderStatus) -> TransitionPlan:
    """
    Validate a status change and return its plan.

    Raises:
        ValidationError: ``requested`` is not a known status.
        InvalidTransitionError: the change is not in VALID_TRANSITIONS.
    """
    target = parse_status(requested)
    source = parse_status(current)
    if not can_transition(source, target):
        raise InvalidTransitionError(order_id, source.value, target.value)
    return TransitionPlan(
        current=source,
        target=target,
        stock_effect=stock_effect_for(source, target),
    )
