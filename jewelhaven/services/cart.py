# jewelhaven/services/cart.py
# Корзина: снимок позиций с ценами (Cart) и операции над серверной корзиной.

import logging
from dataclasses import dataclass, asdict
from typing import Callable, Iterable, Optional

from sqlalchemy.orm import Session

from jewelhaven.core.errors import CartItemNotFound, InvalidCartError, ProductNotFound
from jewelhaven.db.session import session_scope
from jewelhaven.models.cart import CartItem
from jewelhaven.models.product import Product

logger = logging.getLogger(__name__)


@dataclass
class CartLine:
    product_id: int
    quantity: int
    unit_price: float
    delivery_fee: float = 0.0
    name: str = ""
    item_id: Optional[int] = None

    @property
    def line_total(self) -> float:
        return round(self.unit_price * self.quantity, 2)


class Cart:
    """
    Корзина, переданная в оформление заказа.
    Хранит цены на момент сборки; clear() срабатывает не больше одного раза.
    """

    def __init__(self, lines: Iterable[CartLine], on_clear: Optional[Callable[[], None]] = None):
        self.lines: list[CartLine] = list(lines)
        self._on_clear = on_clear
        self.cleared = False

    @property
    def is_empty(self) -> bool:
        return not self.lines

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self.lines)

    @property
    def subtotal(self) -> float:
        return round(sum(line.unit_price * line.quantity for line in self.lines), 2)

    @property
    def delivery_fee(self) -> float:
        # доставка считается один раз на позицию, не на единицу товара
        return round(sum(line.delivery_fee for line in self.lines), 2)

    @property
    def total(self) -> float:
        return round(self.subtotal + self.delivery_fee, 2)

    def clear(self) -> bool:
        """Очищает корзину. Возвращает False, если она уже была очищена."""
        if self.cleared:
            return False
        if self._on_clear is not None:
            self._on_clear()
        self.lines = []
        self.cleared = True
        return True

    def to_dict(self) -> dict:
        return {
            "items": [dict(asdict(line), line_total=line.line_total) for line in self.lines],
            "item_count": self.item_count,
            "subtotal": self.subtotal,
            "delivery_fee": self.delivery_fee,
            "total": self.total,
        }


def _line_from_product(product: Product, quantity: int, item_id: Optional[int] = None) -> CartLine:
    return CartLine(
        product_id=product.id,
        quantity=quantity,
        unit_price=float(product.price),
        delivery_fee=float(product.delivery_fee or 0),
        name=product.name,
        item_id=item_id,
    )


def list_cart_items(db: Session, user_id: int) -> list[CartItem]:
    return (
        db.query(CartItem)
        .filter(CartItem.user_id == user_id)
        .order_by(CartItem.id)
        .all()
    )


def clear_cart(db: Session, user_id: int) -> int:
    deleted = db.query(CartItem).filter(CartItem.user_id == user_id).delete()
    db.commit()
    return deleted


def clear_hook_for_user(user_id: int) -> Callable[[], None]:
    """Хук очистки серверной корзины, вызывается из шагов оформления заказа."""
    def _clear() -> None:
        with session_scope() as db:
            deleted = clear_cart(db, user_id)
        logger.info(f"Cart of user {user_id} cleared ({deleted} items)")
    return _clear


def load_cart(db: Session, user_id: int) -> Cart:
    """Собирает Cart из серверной корзины пользователя с текущими ценами каталога."""
    lines = [
        _line_from_product(item.product, item.quantity, item_id=item.id)
        for item in list_cart_items(db, user_id)
        if item.product is not None
    ]
    return Cart(lines, on_clear=clear_hook_for_user(user_id))


def cart_from_lines(db: Session, lines: Iterable[tuple[int, int]]) -> Cart:
    """
    Собирает Cart из позиций, которые прислал браузер.
    Цены берутся из каталога. Удалённый товар остаётся позицией с нулевой ценой,
    его отсечёт проверка остатков.
    """
    result = []
    for product_id, quantity in lines:
        if quantity < 1:
            raise InvalidCartError(f"Quantity for product {product_id} must be at least 1")
        product = db.get(Product, product_id)
        if product is None:
            result.append(CartLine(product_id=product_id, quantity=quantity,
                                   unit_price=0.0, name=f"Product #{product_id}"))
        else:
            result.append(_line_from_product(product, quantity))
    return Cart(result)


def cart_summary(db: Session, user_id: int) -> dict:
    return load_cart(db, user_id).to_dict()


def add_item(db: Session, user_id: int, product_id: int, quantity: int = 1) -> CartItem:
    """Добавляет товар в корзину; повторное добавление увеличивает количество."""
    if quantity < 1:
        raise InvalidCartError("Quantity must be at least 1")
    if db.get(Product, product_id) is None:
        raise ProductNotFound(product_id)
    item = (
        db.query(CartItem)
        .filter(CartItem.user_id == user_id, CartItem.product_id == product_id)
        .first()
    )
    if item:
        item.quantity += quantity
    else:
        item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
        db.add(item)
    db.commit()
    db.refresh(item)
    return item


def _get_own_item(db: Session, user_id: int, item_id: int) -> CartItem:
    item = db.get(CartItem, item_id)
    if item is None or item.user_id != user_id:
        raise CartItemNotFound(item_id)
    return item


def update_item(db: Session, user_id: int, item_id: int, quantity: int) -> CartItem:
    if quantity < 1:
        raise InvalidCartError("Quantity must be at least 1")
    item = _get_own_item(db, user_id, item_id)
    item.quantity = quantity
    db.commit()
    db.refresh(item)
    return item


def remove_item(db: Session, user_id: int, item_id: int) -> None:
    item = _get_own_item(db, user_id, item_id)
    db.delete(item)
    db.commit()
