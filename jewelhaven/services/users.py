# jewelhaven/services/users.py
# Профиль покупателя и управление аккаунтами из админки.

import logging

from sqlalchemy.orm import Session

from jewelhaven.core.errors import (
    EmailInUse,
    IncorrectPassword,
    InvalidRole,
    ProtectedAccount,
    UserNotFound,
)
from jewelhaven.core.security import get_password_hash, verify_password
from jewelhaven.models.user import RoleEnum, User
from jewelhaven.schemas.auth import AdminUserUpdate, ProfileUpdate

logger = logging.getLogger(__name__)

# superadmin через API не назначается
ASSIGNABLE_ROLES = (RoleEnum.user, RoleEnum.admin)


def get_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise UserNotFound(user_id)
    return user


def update_profile(db: Session, user: User, data: ProfileUpdate) -> User:
    changes = data.model_dump(exclude_unset=True)
    if changes.get("name") is None:
        changes.pop("name", None)
    for field, value in changes.items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)
    return user


def change_password(db: Session, user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.hashed_password):
        raise IncorrectPassword()
    user.hashed_password = get_password_hash(new_password)
    db.commit()
    logger.info(f"User {user.id} changed password")


def list_users(db: Session) -> list[User]:
    return db.query(User).order_by(User.created_at.desc(), User.id.desc()).all()


def set_role(db: Session, user_id: int, role: str) -> User:
    try:
        new_role = RoleEnum(role)
    except ValueError:
        raise InvalidRole(role)
    if new_role not in ASSIGNABLE_ROLES:
        raise InvalidRole(role)
    user = get_user(db, user_id)
    if user.role == RoleEnum.superadmin:
        raise ProtectedAccount(user_id)
    user.role = new_role
    db.commit()
    db.refresh(user)
    logger.info(f"User {user.id} role -> {new_role.value}")
    return user


def update_user(db: Session, user_id: int, data: AdminUserUpdate) -> User:
    """Правка аккаунта администратором. Аккаунт superadmin не редактируется."""
    user = get_user(db, user_id)
    if user.role == RoleEnum.superadmin:
        raise ProtectedAccount(user_id)
    changes = data.model_dump(exclude_unset=True)
    # phone можно стереть, остальные поля обязательны
    changes = {k: v for k, v in changes.items() if v is not None or k == "phone"}
    if "email" in changes:
        changes["email"] = changes["email"].strip().lower()
        taken = db.query(User).filter(User.email == changes["email"], User.id != user_id).first()
        if taken is not None:
            raise EmailInUse(changes["email"])
    for field, value in changes.items():
        setattr(user, field, value)
    db.commit()
    db.refresh(user)
    return user
