# jewelhaven/schemas/order.py
# Pydantic-схемы заказа: черновик от клиента, ответ, смена статуса.
import re
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from jewelhaven.models.order import OrderStatus, PaymentMethod, PaymentStatus


class DeliveryDetails(BaseModel):
    """Контакты и адрес доставки. Ошибки валидации отдаются как 422."""

    delivery_name: str = Field(..., min_length=2)
    delivery_phone: str
    delivery_address: str = Field(..., min_length=10)
    notes: Optional[str] = None

    @field_validator("delivery_name", "delivery_address", mode="before")
    @classmethod
    def strip_text(cls, value):
        return value.strip() if isinstance(value, str) else value

    @field_validator("delivery_phone")
    @classmethod
    def check_phone(cls, value: str) -> str:
        digits = re.sub(r"\D", "", value)
        if not 10 <= len(digits) <= 13:
            raise ValueError("Valid phone number is required")
        return value.strip()


class OrderItemIn(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)


class OrderDraft(DeliveryDetails):
    items: list[OrderItemIn] = Field(..., min_length=1)
    payment_method: PaymentMethod
    subtotal: float = Field(..., ge=0)
    delivery_fee: float = Field(default=0.0, ge=0)
    total: float = Field(..., ge=0)


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: Optional[int] = None
    product_name: str
    product_image: str
    price: float
    quantity: int


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    status: OrderStatus
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    mpesa_receipt_number: Optional[str] = None
    mpesa_checkout_id: Optional[str] = None
    subtotal: float
    delivery_fee: float
    total: float
    delivery_name: str
    delivery_phone: str
    delivery_address: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderWithItems(OrderOut):
    items: list[OrderItemOut] = []


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
