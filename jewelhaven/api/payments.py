# jewelhaven/api/payments.py
# Push-оплата M-Pesa по заказу и запрос её статуса.
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from jewelhaven.core.errors import OrderNotFound
from jewelhaven.core.security import get_current_user
from jewelhaven.db.session import get_db
from jewelhaven.models.user import User
from jewelhaven.schemas.payment import PaymentStatusRequest, StkPushRequest
from jewelhaven.services import orders as order_service
from jewelhaven.services.payments import PaymentService


router = APIRouter()

def get_payment_service(request: Request) -> PaymentService:
    return request.app.state.checkout.machine.payments

@router.post("/stkpush")
async def stk_push(
    payload: StkPushRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    payments: PaymentService = Depends(get_payment_service),
):
    """Отправляет запрос на оплату на телефон покупателя, возвращает CheckoutRequestID."""
    order = order_service.get_order(db, payload.order_id)
    if order.user_id != user.id and not user.is_admin:
        raise OrderNotFound(payload.order_id)
    attempt = await payments.initiate(order.id, payload.phone_number, payload.amount)
    return {
        "success": True,
        "CheckoutRequestID": attempt.correlation_id,
        "orderId": order.id,
        "phoneNumber": attempt.requested_phone,
        "amount": attempt.requested_amount,
    }

@router.post("/callback")
async def payment_status(
    payload: PaymentStatusRequest,
    payments: PaymentService = Depends(get_payment_service),
):
    """Статус оплаты от шлюза как есть: {success, status, data}."""
    return await payments.query_status(payload.checkout_request_id)
