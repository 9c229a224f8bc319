# jewelhaven/services/catalog.py
# Каталог товаров: выборка с фильтрами, CRUD для админки,
# асинхронное чтение актуального остатка для проверки перед оформлением.

import logging
import math
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from jewelhaven.core.errors import ProductNotFound
from jewelhaven.db.session import session_scope
from jewelhaven.models.cart import CartItem
from jewelhaven.models.order import OrderItem
from jewelhaven.models.product import Product
from jewelhaven.schemas.product import ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)

SORT_ORDERS = {
    "newest": Product.created_at.desc(),
    "price_asc": Product.price.asc(),
    "price_desc": Product.price.desc(),
    "name": Product.name.asc(),
}


@dataclass(frozen=True)
class ProductSnapshot:
    """Состояние товара на момент запроса: то, что нужно проверке остатков."""

    id: int
    name: str
    price: float
    image: str
    in_stock: bool
    stock_quantity: int


def parse_price_range(price: Optional[str]) -> tuple[Optional[float], Optional[float]]:
    """'1000-5000' -> (1000, 5000), '20000+' -> (20000, None), 'all' -> (None, None)."""
    if not price or price == "all":
        return None, None
    try:
        if price.endswith("+"):
            return float(price[:-1]), None
        low, high = price.split("-", 1)
        return float(low), float(high)
    except ValueError:
        return None, None


def list_products(
    db: Session,
    search: Optional[str] = None,
    category: Optional[str] = None,
    price: Optional[str] = None,
    sort: Optional[str] = None,
    page: int = 1,
    limit: int = 12,
    featured: bool = False,
) -> dict:
    query = db.query(Product)
    if search:
        pattern = f"%{search}%"
        query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
    if category and category != "all":
        query = query.filter(Product.category == category)
    price_min, price_max = parse_price_range(price)
    if price_min is not None:
        query = query.filter(Product.price >= price_min)
    if price_max is not None:
        query = query.filter(Product.price <= price_max)
    if featured:
        query = query.filter(Product.featured.is_(True))

    page = max(page, 1)
    limit = max(min(limit, 100), 1)
    total = query.count()
    products = (
        query.order_by(SORT_ORDERS.get(sort or "newest", SORT_ORDERS["newest"]), Product.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "products": products,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if total else 0,
    }


def featured_products(db: Session, limit: int = 8) -> list[Product]:
    return (
        db.query(Product)
        .filter(Product.featured.is_(True))
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(limit)
        .all()
    )


def latest_products(db: Session, limit: int = 8) -> list[Product]:
    return db.query(Product).order_by(Product.created_at.desc(), Product.id.desc()).limit(limit).all()


def all_products(db: Session) -> list[Product]:
    """Весь каталог без фильтров и пагинации, для админки."""
    return db.query(Product).order_by(Product.created_at.desc(), Product.id.desc()).all()


def related_products(db: Session, product_id: int, limit: int = 4) -> list[Product]:
    product = db.get(Product, product_id)
    if product is None:
        return []
    return (
        db.query(Product)
        .filter(Product.category == product.category, Product.id != product.id)
        .limit(limit)
        .all()
    )


def get_product(db: Session, product_id: int) -> Product:
    product = db.get(Product, product_id)
    if product is None:
        raise ProductNotFound(product_id)
    return product


def create_product(db: Session, data: ProductCreate) -> Product:
    product = Product(**data.model_dump())
    if product.stock_quantity == 0:
        product.in_stock = False
    db.add(product)
    db.commit()
    db.refresh(product)
    logger.info(f"Product {product.id} created: {product.name}")
    return product


def update_product(db: Session, product_id: int, data: ProductUpdate) -> Product:
    product = get_product(db, product_id)
    changes = data.model_dump(exclude_unset=True)
    for field, value in changes.items():
        setattr(product, field, value)
    if "stock_quantity" in changes and "in_stock" not in changes:
        product.in_stock = product.stock_quantity > 0
    db.commit()
    db.refresh(product)
    return product


def delete_product(db: Session, product_id: int) -> None:
    """Удаляет товар. Позиции заказов остаются, теряя только ссылку на товар."""
    product = get_product(db, product_id)
    db.query(OrderItem).filter(OrderItem.product_id == product_id).update(
        {OrderItem.product_id: None}, synchronize_session=False
    )
    db.query(CartItem).filter(CartItem.product_id == product_id).delete(synchronize_session=False)
    db.delete(product)
    db.commit()
    logger.info(f"Product {product_id} deleted")


def _read_snapshot(product_id: int) -> Optional[ProductSnapshot]:
    with session_scope() as db:
        product = db.get(Product, product_id)
        if product is None:
            return None
        return ProductSnapshot(
            id=product.id,
            name=product.name,
            price=float(product.price),
            image=product.image or "",
            in_stock=bool(product.in_stock),
            stock_quantity=int(product.stock_quantity or 0),
        )


async def fetch_product(product_id: int) -> Optional[ProductSnapshot]:
    """Свежий снимок товара из БД; None, если товара нет."""
    return await run_in_threadpool(_read_snapshot, product_id)
