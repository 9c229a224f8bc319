# jewelhaven/api/contact.py
# Форма контактов: пишут и гости, и вошедшие покупатели.
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from jewelhaven.core.security import get_optional_user
from jewelhaven.db.session import get_db
from jewelhaven.models.user import User
from jewelhaven.schemas.contact import ContactCreate, ContactOut
from jewelhaven.services import contacts

router = APIRouter()

@router.post("", response_model=ContactOut, status_code=201)
def send_message(
    payload: ContactCreate,
    user: Optional[User] = Depends(get_optional_user),
    db: Session = Depends(get_db),
):
    return contacts.create_contact(db, payload, user.id if user else None)

@router.get("/messages", response_model=list[ContactOut])
def messages_by_email(
    email: str = Query(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$"),
    db: Session = Depends(get_db),
):
    """Обращения гостя по email вместе с ответами."""
    return contacts.list_for_email(db, email)
