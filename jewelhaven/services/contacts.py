# jewelhaven/services/contacts.py
# Обращения из формы контактов: создание, выборки с ответами, ответы админа.

import logging
from datetime import datetime

from sqlalchemy.orm import Session, selectinload

from jewelhaven.core.errors import ContactNotFound
from jewelhaven.models.contact import Contact, ContactReply, ContactStatus
from jewelhaven.models.user import User
from jewelhaven.schemas.contact import ContactCreate

logger = logging.getLogger(__name__)


def _with_replies(db: Session):
    return (
        db.query(Contact)
        .options(selectinload(Contact.replies))
        .order_by(Contact.created_at.desc(), Contact.id.desc())
    )


def create_contact(db: Session, data: ContactCreate, user_id: int | None = None) -> Contact:
    """Гость тоже может написать; у вошедшего обращение привязывается к аккаунту."""
    contact = Contact(**data.model_dump(), user_id=user_id, status=ContactStatus.new)
    contact.email = contact.email.strip().lower()
    db.add(contact)
    db.commit()
    db.refresh(contact)
    logger.info(f"📩 Contact message {contact.id} from {contact.email}: {contact.subject}")
    return contact


def get_contact(db: Session, contact_id: int) -> Contact:
    contact = db.get(Contact, contact_id)
    if contact is None:
        raise ContactNotFound(contact_id)
    return contact


def list_for_user(db: Session, user_id: int) -> list[Contact]:
    return _with_replies(db).filter(Contact.user_id == user_id).all()


def list_for_email(db: Session, email: str) -> list[Contact]:
    return _with_replies(db).filter(Contact.email == email.strip().lower()).all()


def list_all(db: Session) -> list[Contact]:
    return _with_replies(db).all()


def set_status(db: Session, contact_id: int, status: ContactStatus) -> Contact:
    contact = get_contact(db, contact_id)
    contact.status = status
    contact.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(contact)
    return contact


def reply(db: Session, contact_id: int, admin: User, message: str) -> ContactReply:
    """Ответ админа; обращение переходит в replied."""
    contact = get_contact(db, contact_id)
    answer = ContactReply(contact_id=contact.id, admin_id=admin.id, admin_name=admin.name, message=message)
    contact.replies.append(answer)
    contact.status = ContactStatus.replied
    contact.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(answer)
    logger.info(f"Contact {contact.id} answered by admin {admin.id}")
    return answer


def delete_contact(db: Session, contact_id: int) -> None:
    db.delete(get_contact(db, contact_id))
    db.commit()
    logger.info(f"Contact {contact_id} deleted")
