# jewelhaven/schemas/checkout.py
# Тела запросов оформления заказа.
from typing import Optional

from pydantic import BaseModel, Field

from jewelhaven.models.order import PaymentMethod
from jewelhaven.schemas.order import DeliveryDetails


class CheckoutLineIn(BaseModel):
    """Позиция корзины из браузера. Цена берётся из каталога, не от клиента."""

    product_id: int
    quantity: int = Field(..., ge=1)


class CheckoutRequest(DeliveryDetails):
    payment_method: PaymentMethod = PaymentMethod.mpesa
    mpesa_phone: Optional[str] = None
    # Если позиции не переданы, используется серверная корзина пользователя
    items: Optional[list[CheckoutLineIn]] = None


class RetryPaymentRequest(BaseModel):
    mpesa_phone: Optional[str] = None
