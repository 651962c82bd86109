"""
Order lifecycle state machine. Valid transitions enforce business rules.
"""
from enum import Enum


class OrderStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


class DeliveryMode(str, Enum):
    PICKUP = "pickup"
    COURIER = "courier"


class Role(str, Enum):
    BUYER = "buyer"
    FARMER = "farmer"
    ADMIN = "admin"


class ProductStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    SOLD = "sold"


# Current status -> statuses a farmer may move the order to
VALID_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.ACCEPTED, OrderStatus.REJECTED}),
    OrderStatus.ACCEPTED: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.REJECTED: frozenset(),  # terminal
    OrderStatus.DELIVERED: frozenset(),  # terminal
}


def _coerce(status: OrderStatus | str) -> OrderStatus | None:
    try:
        return OrderStatus(status)
    except ValueError:
        return None


def valid_next_states(current: OrderStatus | str) -> frozenset[OrderStatus]:
    """Statuses reachable in one step from current. Unknown statuses reach nothing."""
    status = _coerce(current)
    if status is None:
        return frozenset()
    return VALID_TRANSITIONS[status]


def is_valid_transition(current: OrderStatus | str, requested: OrderStatus | str) -> bool:
    """True if requested is allowed after current."""
    target = _coerce(requested)
    return target is not None and target in valid_next_states(current)


def sorted_statuses(statuses) -> list[str]:
    """Stable, graph-ordered list of status values for responses."""
    order = list(OrderStatus)
    return [s.value for s in sorted(statuses, key=order.index)]
