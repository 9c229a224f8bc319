# jewelhaven/schemas/payment.py
# Тела запросов к платёжным эндпоинтам. Имена полей повторяют протокол шлюза.
from pydantic import BaseModel, ConfigDict, Field


class StkPushRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: int = Field(..., alias="orderId")
    phone_number: str = Field(..., alias="phoneNumber", min_length=1)
    amount: float = Field(..., gt=0)


class PaymentStatusRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    checkout_request_id: str = Field(..., alias="checkoutRequestId", min_length=1)
