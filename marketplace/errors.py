"""
Order domain exceptions. Raised by the lifecycle manager and the store; the
HTTP layer maps each kind to a stable status code.
"""
from marketplace.order_state import OrderStatus, sorted_statuses


class MarketplaceError(Exception):
    """Base for every error the order core surfaces to callers."""


class NotFound(MarketplaceError):
    """Entity absent, or the caller is not allowed to see it."""


class Forbidden(MarketplaceError):
    """Caller's role does not permit the operation."""


class InvalidState(MarketplaceError):
    """Business rule violation, e.g. ordering a product that is not active."""


class InvalidRequest(MarketplaceError):
    """Malformed input: non-positive quantity, unknown delivery mode or status."""


class StorageError(MarketplaceError):
    """The durable store failed. Never retried inside the core."""


class InvalidTransition(MarketplaceError):
    """Status change not allowed from the order's current status."""

    def __init__(
        self,
        current_status: OrderStatus,
        requested_status: str,
        valid_next_states: frozenset[OrderStatus],
    ):
        self.current_status = current_status
        self.requested_status = requested_status
        self.valid_next_states = valid_next_states
        super().__init__(
            f"cannot move order from {current_status.value!r} to {requested_status!r}"
        )

    def to_dict(self) -> dict:
        return {
            "error": "Invalid status transition",
            "current_status": self.current_status.value,
            "requested_status": self.requested_status,
            "valid_transitions": sorted_statuses(self.valid_next_states),
        }
