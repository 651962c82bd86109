from decimal import Decimal
from typing import Literal

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from marketplace.auth import get_caller
from marketplace.models import Caller, Order
from marketplace.order_state import OrderStatus
from marketplace.orders import OrderLifecycleManager

router = APIRouter(prefix="/api/v1/orders", tags=["orders"])


class CreateOrderBody(BaseModel):
    product_id: str = Field(..., min_length=1, description="Product being ordered")
    quantity: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2, description="Units of the product's unit")
    delivery_mode: Literal["pickup", "courier"]


class UpdateOrderStatusBody(BaseModel):
    status: OrderStatus


def get_manager(request: Request) -> OrderLifecycleManager:
    return request.app.state.order_manager


@router.post("", status_code=201, response_model=Order)
async def create_order(
    body: CreateOrderBody,
    caller: Caller = Depends(get_caller),
    manager: OrderLifecycleManager = Depends(get_manager),
) -> Order:
    """Place an order for one product. Buyers only; the order starts pending."""
    return await manager.create_order(caller, body.product_id, body.quantity, body.delivery_mode)


@router.get("/buyer/me", response_model=list[Order])
async def list_buyer_orders(
    caller: Caller = Depends(get_caller),
    manager: OrderLifecycleManager = Depends(get_manager),
) -> list[Order]:
    return await manager.list_orders_for_buyer(caller)


@router.get("/farmer/me", response_model=list[Order])
async def list_farmer_orders(
    caller: Caller = Depends(get_caller),
    manager: OrderLifecycleManager = Depends(get_manager),
) -> list[Order]:
    return await manager.list_orders_for_farmer(caller)


@router.get("/{order_id}", response_model=Order)
async def get_order(
    order_id: str,
    caller: Caller = Depends(get_caller),
    manager: OrderLifecycleManager = Depends(get_manager),
) -> Order:
    return await manager.get_order(order_id, caller)


@router.put("/{order_id}/status", response_model=Order)
async def update_order_status(
    order_id: str,
    body: UpdateOrderStatusBody,
    caller: Caller = Depends(get_caller),
    manager: OrderLifecycleManager = Depends(get_manager),
) -> Order:
    """
    Farmer moves their order along pending -> accepted|rejected, accepted -> shipped,
    shipped -> delivered. Illegal moves return 409 with the valid next statuses.
    """
    return await manager.update_order_status(order_id, caller, body.status)
