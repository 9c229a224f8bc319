# jewelhaven/api/admin.py
# Админка: товары, заказы, аккаунты и обращения. Доступ только admin/superadmin.
from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from jewelhaven.core.security import require_admin, require_superadmin
from jewelhaven.db.session import get_db
from jewelhaven.models.user import User
from jewelhaven.schemas.auth import AccountOut, AdminUserUpdate, RoleUpdate
from jewelhaven.schemas.contact import ContactOut, ContactReplyCreate, ContactReplyOut, ContactStatusUpdate
from jewelhaven.schemas.order import OrderOut, OrderStatusUpdate, OrderWithItems
from jewelhaven.schemas.product import ProductCreate, ProductOut, ProductUpdate
from jewelhaven.services import catalog, contacts, orders as order_service, users

router = APIRouter(dependencies=[Depends(require_admin)])

@router.get("/products", response_model=list[ProductOut])
def list_products(db: Session = Depends(get_db)):
    """Все товары, включая закончившиеся."""
    return catalog.all_products(db)

@router.post("/products", response_model=ProductOut, status_code=201)
def create_product(payload: ProductCreate, db: Session = Depends(get_db)):
    return catalog.create_product(db, payload)

@router.patch("/products/{product_id}", response_model=ProductOut)
def update_product(product_id: int, payload: ProductUpdate, db: Session = Depends(get_db)):
    return catalog.update_product(db, product_id, payload)

@router.delete("/products/{product_id}", status_code=204)
def delete_product(product_id: int, db: Session = Depends(get_db)):
    catalog.delete_product(db, product_id)
    return Response(status_code=204)

@router.get("/orders", response_model=list[OrderWithItems])
def list_orders(db: Session = Depends(get_db)):
    return order_service.list_all_orders(db)

@router.patch("/orders/{order_id}/status", response_model=OrderOut)
def update_order_status(order_id: int, payload: OrderStatusUpdate, db: Session = Depends(get_db)):
    """Статус только вперёд; доставленный COD-заказ считается оплаченным."""
    return order_service.advance_status(db, order_id, payload.status)

@router.get("/users", response_model=list[AccountOut])
def list_users(db: Session = Depends(get_db)):
    return users.list_users(db)

@router.patch("/users/{user_id}/role", response_model=AccountOut, dependencies=[Depends(require_superadmin)])
def change_role(user_id: int, payload: RoleUpdate, db: Session = Depends(get_db)):
    return users.set_role(db, user_id, payload.role)

@router.patch("/users/{user_id}", response_model=AccountOut)
def update_user(user_id: int, payload: AdminUserUpdate, db: Session = Depends(get_db)):
    return users.update_user(db, user_id, payload)

@router.get("/contacts", response_model=list[ContactOut])
def list_contacts(db: Session = Depends(get_db)):
    return contacts.list_all(db)

@router.patch("/contacts/{contact_id}", response_model=ContactOut)
def update_contact_status(contact_id: int, payload: ContactStatusUpdate, db: Session = Depends(get_db)):
    return contacts.set_status(db, contact_id, payload.status)

@router.post("/contacts/{contact_id}/reply", response_model=ContactReplyOut, status_code=201)
def reply_to_contact(
    contact_id: int,
    payload: ContactReplyCreate,
    admin: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return contacts.reply(db, contact_id, admin, payload.message)

@router.delete("/contacts/{contact_id}", status_code=204)
def delete_contact(contact_id: int, db: Session = Depends(get_db)):
    contacts.delete_contact(db, contact_id)
    return Response(status_code=204)
