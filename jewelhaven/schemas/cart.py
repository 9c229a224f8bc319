# jewelhaven/schemas/cart.py
# Pydantic-схемы серверной корзины.
from pydantic import BaseModel, Field


class CartItemAdd(BaseModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)


class CartItemUpdate(BaseModel):
    quantity: int = Field(..., ge=1)


class CartLineOut(BaseModel):
    item_id: int | None = None
    product_id: int
    name: str
    quantity: int
    unit_price: float
    delivery_fee: float
    line_total: float


class CartOut(BaseModel):
    items: list[CartLineOut]
    item_count: int
    subtotal: float
    delivery_fee: float
    total: float
