"""Pytest fixtures for jewelhaven tests."""

import asyncio
import json
import os
import tempfile

# База для тестов: отдельный sqlite-файл, задаётся до импорта jewelhaven
_db_dir = tempfile.mkdtemp(prefix="jewelhaven-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_db_dir, 'test.db')}"
os.environ["ENVIRONMENT"] = "test"

import httpx
import pytest
from fastapi.testclient import TestClient

from jewelhaven.core.security import create_access_token, get_password_hash
from jewelhaven.db.base import Base
from jewelhaven.db.session import SessionLocal, engine
from jewelhaven.main import app
from jewelhaven.models.product import Product
from jewelhaven.models.user import RoleEnum, User
from jewelhaven.services.checkout import build_checkout_registry
from jewelhaven.services.payments import MpesaClient

PENDING = {"success": False, "status": "pending", "data": {"ResultDesc": "The transaction is being processed"}}


def completed(receipt: str) -> dict:
    return {
        "success": True,
        "status": "completed",
        "data": {"ResultCode": 0, "ResultDesc": "The service request is processed successfully.",
                 "MpesaReceiptNumber": receipt},
    }


def failed(status: str, desc: str) -> dict:
    return {"success": False, "status": status, "data": {"ResultCode": 1032, "ResultDesc": desc}}


async def instant_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


class FakeGateway:
    """M-Pesa шлюз для httpx.MockTransport: push отвечает push_response, verify отдаёт statuses по очереди."""

    def __init__(self):
        self.push_response = {"success": True, "CheckoutRequestID": "ws_CO_0001", "message": "Success"}
        self.statuses: list = []
        self.requests: list[tuple[str, dict]] = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content or b"{}")
        self.requests.append((request.url.path, body))
        if request.url.path.endswith("payJewelHaven.php"):
            return httpx.Response(200, json=self.push_response)
        item = self.statuses.pop(0) if self.statuses else PENDING
        if isinstance(item, Exception):
            raise item
        return httpx.Response(200, json=item)

    def calls(self, suffix: str) -> list[dict]:
        return [body for path, body in self.requests if path.endswith(suffix)]

    @property
    def pushes(self) -> list[dict]:
        return self.calls("payJewelHaven.php")

    @property
    def verifies(self) -> list[dict]:
        return self.calls("verify-transaction.php")


@pytest.fixture(autouse=True)
def db_schema():
    """Чистая схема на каждый тест."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_product(db):
    def _make(**overrides) -> Product:
        data = {
            "name": "Gold Hoop Earrings",
            "description": "18k gold hoops",
            "image": "data:image/png;base64,AAAA",
            "category": "earrings",
            "price": 2500.0,
            "stock_quantity": 10,
            "in_stock": True,
            "delivery_fee": 0.0,
        }
        data.update(overrides)
        product = Product(**data)
        db.add(product)
        db.commit()
        db.refresh(product)
        return product
    return _make


@pytest.fixture
def make_user(db):
    def _make(email: str = "buyer@example.com", role: RoleEnum = RoleEnum.user, password: str = "secret123") -> User:
        user = User(email=email, name="Test Buyer", phone="0712345678",
                    hashed_password=get_password_hash(password), role=role)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make


@pytest.fixture
def user(make_user):
    return make_user()


@pytest.fixture
def auth_headers(user):
    return {"Authorization": f"Bearer {create_access_token(str(user.id))}"}


@pytest.fixture
def admin_headers(make_user):
    admin = make_user(email="admin@example.com", role=RoleEnum.admin)
    return {"Authorization": f"Bearer {create_access_token(str(admin.id))}"}


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def mpesa_client(gateway):
    return MpesaClient(base_url="http://mpesa.test", timeout=5, transport=httpx.MockTransport(gateway.handle))


@pytest.fixture
def client(mpesa_client):
    """TestClient с реестром оформления поверх фейкового шлюза и мгновенным sleep."""
    app.state.checkout = build_checkout_registry(client=mpesa_client, sleep=instant_sleep)
    with TestClient(app) as test_client:
        yield test_client
    app.state.checkout = None
