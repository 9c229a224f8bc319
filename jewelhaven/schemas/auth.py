# jewelhaven/schemas/auth.py
# Схемы регистрации и профиля пользователя.
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from jewelhaven.models.user import RoleEnum


class RegisterRequest(BaseModel):
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=2)
    phone: Optional[str] = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    phone: Optional[str] = None
    role: RoleEnum


class AccountOut(UserOut):
    """Пользователь в админке: без пароля, с флагом подтверждения."""

    is_verified: bool = False
    created_at: Optional[datetime] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2)
    phone: Optional[str] = None


class PasswordChange(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


class RoleUpdate(BaseModel):
    role: str


class AdminUserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2)
    email: Optional[str] = Field(default=None, pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: Optional[str] = None
    is_verified: Optional[bool] = None
