"""
Order lifecycle: placing orders, scoped reads, and farmer-driven status changes.

The manager talks to two collaborators passed in explicitly:
- a catalog with ``get_product(product_id) -> Product | None``
- an order store with insert_order / insert_item / delete_order / get_order /
  list_orders / compare_and_set_status and a ``transactional`` flag; when the
  flag is set it also provides ``transaction()``, an async context manager
  yielding a store whose writes commit together.
"""
import logging
import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from marketplace.errors import (
    Forbidden,
    InvalidRequest,
    InvalidState,
    InvalidTransition,
    NotFound,
    StorageError,
)
from marketplace.metrics import (
    order_create_compensations_total,
    order_status_transitions_total,
    order_transitions_rejected_total,
    orders_created_total,
)
from marketplace.models import Caller, Order, OrderItem
from marketplace.order_state import (
    DeliveryMode,
    OrderStatus,
    ProductStatus,
    Role,
    is_valid_transition,
    valid_next_states,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
# NUMERIC(10, 2): eight integer digits for quantities and totals
MAX_AMOUNT = Decimal("1e8")

ORDER_NOT_FOUND = "Order not found or you don't have permission to access it"


def compute_total(quantity: Decimal, price_per_unit: Decimal) -> Decimal:
    """quantity x price, rounded half-up to the currency's minor unit."""
    return (quantity * price_per_unit).quantize(CENT, rounding=ROUND_HALF_UP)


def _parse_quantity(quantity) -> Decimal:
    try:
        value = quantity if isinstance(quantity, Decimal) else Decimal(str(quantity))
    except InvalidOperation:
        raise InvalidRequest(f"quantity must be a number, got {quantity!r}")
    if not value.is_finite() or value <= 0:
        raise InvalidRequest("quantity must be greater than zero")
    if value >= MAX_AMOUNT:
        raise InvalidRequest(f"quantity must be less than {MAX_AMOUNT:f}")
    if value != value.quantize(CENT):
        raise InvalidRequest("quantity supports at most two decimal places")
    return value


def _parse_enum(enum_cls, value, label: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidRequest(f"{label} must be one of: {allowed}")


def _require_role(caller: Caller, role: Role, message: str) -> None:
    if caller.role != role:
        raise Forbidden(message)


class OrderLifecycleManager:
    def __init__(self, store, catalog):
        self._store = store
        self._catalog = catalog

    async def create_order(
        self,
        caller: Caller,
        product_id: str,
        quantity,
        delivery_mode: DeliveryMode | str,
    ) -> Order:
        _require_role(caller, Role.BUYER, "Only buyers can place orders")
        qty = _parse_quantity(quantity)
        mode = _parse_enum(DeliveryMode, delivery_mode, "delivery_mode")

        product = await self._catalog.get_product(product_id)
        if product is None:
            raise NotFound("Product not found")
        if product.status != ProductStatus.ACTIVE:
            raise InvalidState("Product is not available for ordering")

        total = compute_total(qty, product.price_per_unit)
        if total >= MAX_AMOUNT:
            raise InvalidRequest(f"order total {total} exceeds the maximum of {MAX_AMOUNT:f}")

        now = datetime.now(timezone.utc)
        order = Order(
            id=str(uuid.uuid4()),
            buyer_id=caller.user_id,
            farmer_id=product.farmer_id,
            status=OrderStatus.PENDING,
            delivery_mode=mode,
            total_amount=total,
            created_at=now,
            updated_at=now,
        )
        item = OrderItem(
            id=str(uuid.uuid4()),
            order_id=order.id,
            product_id=product.id,
            quantity=qty,
            price_per_unit=product.price_per_unit,
            created_at=now,
            updated_at=now,
        )
        await self._persist_order(order, item)
        orders_created_total.labels(delivery_mode=mode.value).inc()
        logger.info(
            "Order %s placed by buyer=%s farmer=%s total=%s",
            order.id, order.buyer_id, order.farmer_id, order.total_amount,
        )

        created = await self._store.get_order(order.id)
        if created is None:
            raise StorageError(f"order {order.id} missing after create")
        return created

    async def _persist_order(self, order: Order, item: OrderItem) -> None:
        if self._store.transactional:
            async with self._store.transaction() as tx:
                await tx.insert_order(order)
                await tx.insert_item(item)
            return

        # No native transactions: retract the order if its item cannot be written.
        # A concurrent reader may briefly observe the order without items.
        await self._store.insert_order(order)
        try:
            await self._store.insert_item(item)
        except BaseException:
            logger.warning("Item write failed for order %s; retracting order", order.id)
            order_create_compensations_total.inc()
            await self._store.delete_order(order.id)
            raise

    async def get_order(self, order_id: str, caller: Caller) -> Order:
        if caller.role == Role.BUYER:
            order = await self._store.get_order(order_id, buyer_id=caller.user_id)
        elif caller.role == Role.FARMER:
            order = await self._store.get_order(order_id, farmer_id=caller.user_id)
        else:
            raise Forbidden("Invalid role")
        if order is None:
            raise NotFound(ORDER_NOT_FOUND)
        return order

    async def list_orders_for_buyer(self, caller: Caller) -> list[Order]:
        _require_role(caller, Role.BUYER, "Only buyers can access this endpoint")
        return await self._store.list_orders(buyer_id=caller.user_id)

    async def list_orders_for_farmer(self, caller: Caller) -> list[Order]:
        _require_role(caller, Role.FARMER, "Only farmers can access this endpoint")
        return await self._store.list_orders(farmer_id=caller.user_id)

    async def update_order_status(
        self,
        order_id: str,
        caller: Caller,
        requested: OrderStatus | str,
    ) -> Order:
        _require_role(caller, Role.FARMER, "Only farmers can update order status")
        target = _parse_enum(OrderStatus, requested, "status")

        # Re-read and retry when a concurrent update wins the compare-and-set.
        # The transition graph is acyclic, so this ends after a few rounds.
        while True:
            order = await self._store.get_order(order_id, farmer_id=caller.user_id)
            if order is None:
                raise NotFound(ORDER_NOT_FOUND)
            current = order.status
            if not is_valid_transition(current, target):
                order_transitions_rejected_total.labels(
                    current_status=current.value, requested_status=target.value
                ).inc()
                logger.warning(
                    "Rejected transition for order %s: %s -> %s", order_id, current.value, target.value
                )
                raise InvalidTransition(current, target.value, valid_next_states(current))
            if await self._store.compare_and_set_status(order_id, caller.user_id, current, target):
                break
            logger.info("Order %s changed while updating to %s; re-checking", order_id, target.value)

        order_status_transitions_total.labels(from_status=current.value, to_status=target.value).inc()
        logger.info("Order %s moved %s -> %s by farmer=%s", order_id, current.value, target.value, caller.user_id)

        updated = await self._store.get_order(order_id, farmer_id=caller.user_id)
        if updated is None:
            raise NotFound(ORDER_NOT_FOUND)
        return updated
