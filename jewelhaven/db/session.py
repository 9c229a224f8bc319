# jewelhaven/db/session.py
# Engine, фабрика сессий и помощники для получения сессии.
# Поддерживает Postgres и SQLite (тесты, локальный запуск).

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

from jewelhaven.core.config import settings

DATABASE_URL = settings.DATABASE_URL

# sqlite из threadpool требует check_same_thread=False
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}

engine = create_engine(
    DATABASE_URL,
    connect_args=connect_args,
    pool_pre_ping=True
)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Iterator[Session]:
    """Зависимость FastAPI: сессия на время запроса."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    """Сессия для фоновых шагов оформления заказа (вне запроса)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
