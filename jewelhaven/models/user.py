# jewelhaven/models/user.py
# Модель пользователя: email, phone, hashed_password, role.
from sqlalchemy import Column, Integer, String, Boolean, DateTime, Enum
from datetime import datetime
from jewelhaven.db.base import Base
import enum

class RoleEnum(str, enum.Enum):
    user = "user"
    admin = "admin"
    superadmin = "superadmin"

ADMIN_ROLES = (RoleEnum.admin, RoleEnum.superadmin)

class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    phone = Column(String, nullable=True)
    hashed_password = Column(String, nullable=False)
    name = Column(String, nullable=False)
    role = Column(Enum(RoleEnum), default=RoleEnum.user, nullable=False)
    is_verified = Column(Boolean, default=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES
