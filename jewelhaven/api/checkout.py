# jewelhaven/api/checkout.py
# Оформление заказа: запуск, статус для UI, повтор оплаты, переход на COD, отмена.
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from jewelhaven.core.security import get_current_user
from jewelhaven.db.session import get_db
from jewelhaven.models.user import User
from jewelhaven.schemas.checkout import CheckoutRequest, RetryPaymentRequest
from jewelhaven.schemas.order import DeliveryDetails
from jewelhaven.services import cart as cart_service
from jewelhaven.services.checkout import CheckoutRegistry, CheckoutSession

router = APIRouter()

def get_registry(request: Request) -> CheckoutRegistry:
    return request.app.state.checkout

@router.post("", status_code=201)
async def start_checkout(
    payload: CheckoutRequest,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    registry: CheckoutRegistry = Depends(get_registry),
):
    """
    Проверяет остатки и создаёт заказ. COD завершается сразу,
    для M-Pesa ответ приходит в состоянии pending, дальше опрашивайте GET /{id}.
    """
    if payload.items is None:
        cart = cart_service.load_cart(db, user.id)
    else:
        cart = cart_service.cart_from_lines(db, [(i.product_id, i.quantity) for i in payload.items])
    session = CheckoutSession(
        cart=cart,
        details=DeliveryDetails(**payload.model_dump(include=set(DeliveryDetails.model_fields))),
        payment_method=payload.payment_method,
        user_id=user.id,
        mpesa_phone=payload.mpesa_phone,
    )
    await registry.start(session)
    return session.to_dict()

@router.get("/{session_id}")
def checkout_status(session_id: str, user: User = Depends(get_current_user),
                    registry: CheckoutRegistry = Depends(get_registry)):
    return registry.get(session_id, user.id).to_dict()

@router.post("/{session_id}/retry")
async def retry_payment(
    session_id: str,
    payload: RetryPaymentRequest | None = None,
    user: User = Depends(get_current_user),
    registry: CheckoutRegistry = Depends(get_registry),
):
    """Новый push по тому же заказу."""
    session = registry.get(session_id, user.id)
    await registry.retry_payment(session, payload.mpesa_phone if payload else None)
    return session.to_dict()

@router.post("/{session_id}/switch-to-cash")
async def switch_to_cash(session_id: str, user: User = Depends(get_current_user),
                         registry: CheckoutRegistry = Depends(get_registry)):
    session = registry.get(session_id, user.id)
    await registry.switch_to_cash(session)
    return session.to_dict()

@router.delete("/{session_id}")
async def cancel_checkout(session_id: str, user: User = Depends(get_current_user),
                          registry: CheckoutRegistry = Depends(get_registry)):
    """Останавливает ожидание оплаты. Заказ и корзина сохраняются."""
    session = registry.get(session_id, user.id)
    await registry.cancel(session)
    return session.to_dict()
