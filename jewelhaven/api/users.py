# jewelhaven/api/users.py
# Личный кабинет: профиль, смена пароля, свои обращения в поддержку.
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from jewelhaven.core.security import get_current_user
from jewelhaven.db.session import get_db
from jewelhaven.models.user import User
from jewelhaven.schemas.auth import PasswordChange, ProfileUpdate, UserOut
from jewelhaven.schemas.contact import ContactOut
from jewelhaven.services import contacts, users

router = APIRouter()

@router.patch("/profile", response_model=UserOut)
def update_profile(payload: ProfileUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return users.update_profile(db, user, payload)

@router.patch("/password")
def change_password(payload: PasswordChange, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    users.change_password(db, user, payload.current_password, payload.new_password)
    return {"message": "Password updated"}

@router.get("/contacts", response_model=list[ContactOut])
def my_contacts(user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return contacts.list_for_user(db, user.id)
