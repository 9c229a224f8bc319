# jewelhaven/api/products.py
# Публичный каталог: список с фильтрами, витрина, похожие товары, карточка.
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from jewelhaven.db.session import get_db
from jewelhaven.schemas.product import ProductOut, ProductPage
from jewelhaven.services import catalog

router = APIRouter()

@router.get("", response_model=ProductPage)
def list_products(
    search: Optional[str] = None,
    category: Optional[str] = None,
    price: Optional[str] = None,
    sort: Optional[str] = None,
    page: int = 1,
    limit: int = 12,
    featured: bool = False,
    db: Session = Depends(get_db),
):
    return catalog.list_products(db, search=search, category=category, price=price,
                                 sort=sort, page=page, limit=limit, featured=featured)

@router.get("/featured", response_model=list[ProductOut])
def featured(db: Session = Depends(get_db)):
    return catalog.featured_products(db)

@router.get("/latest", response_model=list[ProductOut])
def latest(db: Session = Depends(get_db)):
    return catalog.latest_products(db)

@router.get("/related/{product_id}", response_model=list[ProductOut])
def related(product_id: int, db: Session = Depends(get_db)):
    return catalog.related_products(db, product_id)

@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: int, db: Session = Depends(get_db)):
    """Актуальные цена и остаток товара."""
    return catalog.get_product(db, product_id)
