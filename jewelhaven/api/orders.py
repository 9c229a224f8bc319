# jewelhaven/api/orders.py
# Заказы покупателя: создание, список, просмотр по номеру, счёт.
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from sqlalchemy.orm import Session

from jewelhaven.core.security import get_current_user
from jewelhaven.db.session import get_db
from jewelhaven.models.user import User
from jewelhaven.schemas.order import OrderDraft, OrderOut, OrderWithItems
from jewelhaven.services import invoice, orders as order_service

logger = logging.getLogger(__name__)

router = APIRouter()

@router.post("", response_model=OrderOut, status_code=201)
def create_order(draft: OrderDraft, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    """Заказ и позиции создаются одной транзакцией; статус pending/pending."""
    return order_service.create_order(db, user.id, draft)

@router.get("/mine", response_model=list[OrderWithItems])
def my_orders(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return order_service.list_user_orders(db, user.id)

@router.get("/{order_number}", response_model=OrderWithItems)
def get_order(order_number: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return order_service.get_order_for_user(db, order_number, user)

@router.get("/{order_number}/invoice")
def download_invoice(
    order_number: str,
    type: str = Query("customer", pattern="^(customer|admin)$"),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Счёт вложением. Копию администратора может получить только админ."""
    if type == "admin" and not user.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    order = order_service.get_order_for_user(db, order_number, user)
    logger.info(f"Invoice ({type}) requested for order {order_number} by user {user.id}")
    body = invoice.render_invoice(order, type)
    return Response(
        content=body.encode("utf-8"),
        media_type="text/plain; charset=utf-8",
        headers={"Content-Disposition": f"attachment; filename={invoice.invoice_filename(order, type)}"},
    )
