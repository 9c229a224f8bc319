# jewelhaven/core/security.py
# Пароли (bcrypt), JWT покупателя и зависимости доступа для роутов магазина:
# обязательный вход, необязательный вход (форма контактов), admin и superadmin.
from passlib.context import CryptContext
from datetime import datetime, timedelta
from jose import jwt, JWTError
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session
from jewelhaven.core.config import settings
from jewelhaven.db.session import get_db
from jewelhaven.models.user import User, RoleEnum

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")
# тот же токен, но без 401 при его отсутствии
optional_oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token", auto_error=False)

def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)

def create_access_token(subject: str, expires_delta: timedelta | None = None) -> str:
    """JWT покупателя: sub = id пользователя, срок по умолчанию ACCESS_TOKEN_EXPIRE_MINUTES."""
    expire = datetime.utcnow() + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode = {"sub": str(subject), "exp": expire}
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)

def authenticate_user(db: Session, email: str, password: str) -> User:
    """
    Проверка email + пароль для /api/auth/token.
    Неверная пара -> 400, неподтверждённый email при REQUIRE_VERIFIED_EMAIL -> 403.
    """
    user = db.query(User).filter(User.email == email.strip().lower()).first()
    if user is None or not verify_password(password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Incorrect credentials")
    if settings.REQUIRE_VERIFIED_EMAIL and not user.is_verified:
        raise HTTPException(status_code=403, detail="Email not verified")
    return user

def _user_id_from_token(token: str) -> int | None:
    try:
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None
    subject = payload.get("sub")
    if subject is None or not str(subject).isdigit():
        return None
    return int(subject)

def get_current_user(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> User:
    """Покупатель по Bearer-токену или 401."""
    user_id = _user_id_from_token(token)
    user = db.get(User, user_id) if user_id is not None else None
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user

def get_optional_user(
    token: str | None = Depends(optional_oauth2_scheme), db: Session = Depends(get_db)
) -> User | None:
    """Гость или покупатель: битый или просроченный токен считается гостем."""
    if not token:
        return None
    user_id = _user_id_from_token(token)
    return db.get(User, user_id) if user_id is not None else None

def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=403, detail="Forbidden")
    return current_user

def require_superadmin(current_user: User = Depends(require_admin)) -> User:
    """Роли пользователей меняет только superadmin."""
    if current_user.role != RoleEnum.superadmin:
        raise HTTPException(status_code=403, detail="Only super admin can change roles")
    return current_user
