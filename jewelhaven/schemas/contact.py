# jewelhaven/schemas/contact.py
# Схемы формы контактов и ответов администратора.
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from jewelhaven.models.contact import ContactStatus


class ContactCreate(BaseModel):
    name: str = Field(..., min_length=2)
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    phone: str = Field(..., min_length=10)
    subject: str = Field(..., min_length=5)
    message: str = Field(..., min_length=10)


class ContactReplyCreate(BaseModel):
    message: str = Field(..., min_length=1)


class ContactStatusUpdate(BaseModel):
    status: ContactStatus


class ContactReplyOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    contact_id: int
    admin_id: Optional[int] = None
    admin_name: str
    message: str
    created_at: Optional[datetime] = None


class ContactOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: Optional[int] = None
    name: str
    email: str
    phone: str
    subject: str
    message: str
    status: ContactStatus
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    replies: list[ContactReplyOut] = []
