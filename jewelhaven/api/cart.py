# jewelhaven/api/cart.py
# Серверная корзина текущего пользователя.
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from jewelhaven.core.security import get_current_user
from jewelhaven.db.session import get_db
from jewelhaven.models.user import User
from jewelhaven.schemas.cart import CartItemAdd, CartItemUpdate, CartOut
from jewelhaven.services import cart as cart_service

router = APIRouter()

@router.get("", response_model=CartOut)
def get_cart(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return cart_service.cart_summary(db, user.id)

@router.post("/items", response_model=CartOut, status_code=201)
def add_item(payload: CartItemAdd, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    cart_service.add_item(db, user.id, payload.product_id, payload.quantity)
    return cart_service.cart_summary(db, user.id)

@router.patch("/items/{item_id}", response_model=CartOut)
def update_item(item_id: int, payload: CartItemUpdate,
                user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    cart_service.update_item(db, user.id, item_id, payload.quantity)
    return cart_service.cart_summary(db, user.id)

@router.delete("/items/{item_id}", response_model=CartOut)
def remove_item(item_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    cart_service.remove_item(db, user.id, item_id)
    return cart_service.cart_summary(db, user.id)

@router.delete("", response_model=CartOut)
def clear_cart(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    cart_service.clear_cart(db, user.id)
    return cart_service.cart_summary(db, user.id)
