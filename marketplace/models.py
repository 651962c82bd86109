"""
Order, order item and catalog records. Money and quantities are Decimal end to end.
"""
from datetime import datetime
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

from marketplace.order_state import DeliveryMode, OrderStatus, ProductStatus, Role

# Exact in memory, a JSON number on the wire
JsonDecimal = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class Caller(BaseModel):
    """Authenticated identity passed explicitly into every order operation."""
    model_config = ConfigDict(frozen=True)

    user_id: str
    role: Role


class Product(BaseModel):
    id: str
    farmer_id: str
    crop_name: str = ""
    unit: str = ""
    price_per_unit: JsonDecimal
    status: ProductStatus = ProductStatus.ACTIVE


class OrderItem(BaseModel):
    id: str
    order_id: str
    product_id: str
    quantity: JsonDecimal
    price_per_unit: JsonDecimal
    created_at: datetime
    updated_at: datetime


class Order(BaseModel):
    id: str
    buyer_id: str
    farmer_id: str
    status: OrderStatus = OrderStatus.PENDING
    delivery_mode: DeliveryMode
    total_amount: JsonDecimal
    created_at: datetime
    updated_at: datetime
    order_items: list[OrderItem] = Field(default_factory=list)
