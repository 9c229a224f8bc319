# jewelhaven/services/orders.py
# Создание заказа (заказ + позиции одной транзакцией), выборки,
# смена статусов вперёд и списание остатков после оплаты.

import logging
import secrets
import string
import time
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload
from starlette.concurrency import run_in_threadpool

from jewelhaven.core.config import settings
from jewelhaven.core.errors import (
    InvalidStatusTransition,
    OrderAlreadyPaid,
    OrderNotFound,
    OrderTotalsMismatch,
    StockConflictError,
)
from jewelhaven.db.session import session_scope
from jewelhaven.models.order import (
    STATUS_RANK,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from jewelhaven.models.product import Product
from jewelhaven.models.user import User
from jewelhaven.schemas.order import OrderDraft

logger = logging.getLogger(__name__)

BASE36 = string.digits + string.ascii_uppercase
TOTALS_TOLERANCE = 0.01


def _to_base36(number: int) -> str:
    digits = ""
    while number:
        number, rem = divmod(number, 36)
        digits = BASE36[rem] + digits
    return digits or "0"


def generate_order_number() -> str:
    """JH + время в мс (base36) + 4 случайных символа, например JHLZ3K9Q2M7XA4."""
    timestamp = _to_base36(int(time.time() * 1000))
    suffix = "".join(secrets.choice(BASE36) for _ in range(4))
    return f"{settings.ORDER_NUMBER_PREFIX}{timestamp}{suffix}"


def check_totals(draft: OrderDraft, products: dict[int, Product]) -> tuple[float, float, float]:
    """
    Пересчитывает суммы по ценам каталога и сверяет с присланными.
    Цена позиции от клиента в расчёт не идёт. Доставка берётся по разу
    на позицию, как в корзине.
    """
    subtotal = round(sum(products[item.product_id].price * item.quantity for item in draft.items), 2)
    delivery_fee = round(sum(products[item.product_id].delivery_fee or 0.0 for item in draft.items), 2)
    total = round(subtotal + delivery_fee, 2)
    for field, expected, received in (
        ("subtotal", subtotal, draft.subtotal),
        ("delivery_fee", delivery_fee, draft.delivery_fee),
        ("total", total, draft.total),
    ):
        if abs(expected - received) > TOTALS_TOLERANCE:
            raise OrderTotalsMismatch(field, expected, received)
    return subtotal, delivery_fee, total


def create_order(db: Session, user_id: int | None, draft: OrderDraft) -> Order:
    """
    Создаёт Order и по одной OrderItem на позицию одним коммитом.
    Остатки перечитываются здесь же: между проверкой и созданием
    товар мог закончиться. Цены в заказ пишутся из каталога.
    """
    products: dict[int, Product] = {}
    issues = []
    for item in draft.items:
        product = db.get(Product, item.product_id)
        if product is None or not product.in_stock or product.stock_quantity < item.quantity:
            issues.append({
                "product_id": item.product_id,
                "product_name": product.name if product else None,
                "requested_qty": item.quantity,
                "available_qty": product.stock_quantity if product else 0,
            })
        else:
            products[item.product_id] = product
    if issues:
        raise StockConflictError(issues)

    subtotal, delivery_fee, total = check_totals(draft, products)

    order = Order(
        user_id=user_id,
        order_number=generate_order_number(),
        status=OrderStatus.pending,
        payment_method=draft.payment_method,
        payment_status=PaymentStatus.pending,
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        total=total,
        delivery_name=draft.delivery_name,
        delivery_phone=draft.delivery_phone,
        delivery_address=draft.delivery_address,
        notes=draft.notes,
    )
    for item in draft.items:
        product = products[item.product_id]
        if abs(product.price - item.price) > TOTALS_TOLERANCE:
            logger.warning(f"Product {product.id}: client price {item.price}, catalog price {product.price}")
        order.items.append(OrderItem(
            product_id=product.id,
            product_name=product.name,
            product_image=product.image or "",
            price=product.price,
            quantity=item.quantity,
        ))
    try:
        db.add(order)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.error("Create order failed, transaction rolled back", exc_info=True)
        raise
    db.refresh(order)
    logger.info(f"Order {order.order_number} created ({order.payment_method.value}, total {order.total})")
    return order


def get_order(db: Session, order_id: int) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise OrderNotFound(order_id)
    return order


def get_order_for_user(db: Session, order_number: str, user: User) -> Order:
    """Заказ по номеру: владельцу или администратору, остальным 404."""
    order = (
        db.query(Order)
        .options(selectinload(Order.items))
        .filter(Order.order_number == order_number)
        .first()
    )
    if order is None or (order.user_id != user.id and not user.is_admin):
        raise OrderNotFound(order_number)
    return order


def list_user_orders(db: Session, user_id: int) -> list[Order]:
    return (
        db.query(Order)
        .options(selectinload(Order.items))
        .filter(Order.user_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def list_all_orders(db: Session) -> list[Order]:
    return (
        db.query(Order)
        .options(selectinload(Order.items))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )


def reconcile_stock(db: Session, order: Order) -> bool:
    """
    Списывает остатки по позициям заказа, один раз на заказ.
    Коммит делает вызывающий код.
    """
    if order.stock_reconciled:
        return False
    for item in order.items:
        if item.product_id is None:
            continue
        product = db.get(Product, item.product_id)
        if product is None:
            continue
        before = product.stock_quantity
        product.stock_quantity = max(0, before - item.quantity)
        product.in_stock = product.stock_quantity > 0
        logger.info(f"Product {product.id} stock {before} -> {product.stock_quantity}")
    order.stock_reconciled = True
    return True


def advance_status(db: Session, order_id: int, status: OrderStatus) -> Order:
    """Двигает статус вперёд. COD при доставке считается оплаченным."""
    order = get_order(db, order_id)
    if STATUS_RANK[status] < STATUS_RANK[order.status]:
        raise InvalidStatusTransition(order.status.value, status.value)
    if status == order.status:
        return order

    order.status = status
    if order.payment_method == PaymentMethod.cod and status in (OrderStatus.delivered, OrderStatus.completed):
        order.payment_status = PaymentStatus.paid
        reconcile_stock(db, order)
    elif order.payment_method == PaymentMethod.mpesa and order.payment_status == PaymentStatus.paid:
        reconcile_stock(db, order)
    db.commit()
    db.refresh(order)
    logger.info(f"Order {order.order_number} moved to {status.value}")
    return order


def record_checkout_id(db: Session, order_id: int, checkout_id: str) -> Order:
    order = get_order(db, order_id)
    order.mpesa_checkout_id = checkout_id
    db.commit()
    return order


def switch_to_cash(db: Session, order_id: int) -> Order:
    """Переводит уже созданный заказ на оплату при получении."""
    order = get_order(db, order_id)
    if order.payment_status == PaymentStatus.paid:
        raise OrderAlreadyPaid(order.order_number)
    order.payment_method = PaymentMethod.cod
    order.payment_status = PaymentStatus.pending
    db.commit()
    db.refresh(order)
    logger.info(f"Order {order.order_number} switched to cash on delivery")
    return order


def confirm_payment(db: Session, checkout_id: str, receipt_number: str) -> Order | None:
    """
    Отмечает заказ оплаченным по CheckoutRequestID. Повторный вызов
    ничего не меняет и остатки второй раз не списывает.
    """
    order = db.query(Order).filter(Order.mpesa_checkout_id == checkout_id).first()
    if order is None:
        logger.warning(f"No order for CheckoutRequestID {checkout_id}")
        return None
    if order.payment_status == PaymentStatus.paid:
        return order
    order.payment_status = PaymentStatus.paid
    order.mpesa_receipt_number = receipt_number
    if STATUS_RANK[order.status] < STATUS_RANK[OrderStatus.processing]:
        order.status = OrderStatus.processing
    reconcile_stock(db, order)
    db.commit()
    db.refresh(order)
    logger.info(f"Order {order.order_number} paid. Receipt: {receipt_number}")
    return order


@dataclass(frozen=True)
class OrderRef:
    id: int
    order_number: str
    total: float


def _ref(order: Order) -> OrderRef:
    return OrderRef(id=order.id, order_number=order.order_number, total=float(order.total))


class OrderBook:
    """Асинхронный фасад над заказами для оформления: каждый шаг в своей сессии."""

    def _create(self, user_id, draft: OrderDraft) -> OrderRef:
        with session_scope() as db:
            return _ref(create_order(db, user_id, draft))

    def _switch(self, order_id: int) -> OrderRef:
        with session_scope() as db:
            return _ref(switch_to_cash(db, order_id))

    async def create(self, user_id: int | None, draft: OrderDraft) -> OrderRef:
        return await run_in_threadpool(self._create, user_id, draft)

    async def switch_to_cash(self, order_id: int) -> OrderRef:
        return await run_in_threadpool(self._switch, order_id)
