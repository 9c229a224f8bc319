# jewelhaven/api/auth.py
# Роуты для регистрации, получения JWT токена и профиля.
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from fastapi.security import OAuth2PasswordRequestForm
from datetime import timedelta

from jewelhaven.core import security
from jewelhaven.core.config import settings
from jewelhaven.db.session import get_db
from jewelhaven.models.user import User, RoleEnum
from jewelhaven.schemas.auth import RegisterRequest, UserOut

router = APIRouter()

@router.post("/register", response_model=UserOut)
def register(payload: RegisterRequest, db: Session = Depends(get_db)):
    """
    Регистрация пользователя: email + password.
    По умолчанию роль = user.
    """
    email = payload.email.lower()
    existing = db.query(User).filter(User.email == email).first()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    user = User(
        email=email,
        hashed_password=security.get_password_hash(payload.password),
        name=payload.name,
        phone=payload.phone,
        role=RoleEnum.user,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user

@router.post("/token")
def login(form_data: OAuth2PasswordRequestForm = Depends(), db: Session = Depends(get_db)):
    """
    Логин: возвращает access_token (JWT).
    OAuth2PasswordRequestForm ожидает username и password, email передаётся как username.
    """
    user = security.authenticate_user(db, form_data.username, form_data.password)
    access_token_expires = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    token = security.create_access_token(subject=str(user.id), expires_delta=access_token_expires)
    return {"access_token": token, "token_type": "bearer"}

@router.get("/me", response_model=UserOut)
def me(current_user: User = Depends(security.get_current_user)):
    return current_user
