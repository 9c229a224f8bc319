# jewelhaven/services/payments.py
# Push-оплата M-Pesa: нормализация телефона, клиент шлюза (httpx),
# запуск оплаты по заказу и разбор ответа о статусе.

import enum
import logging
import math
import re
from dataclasses import dataclass, asdict
from typing import Optional

import httpx
from starlette.concurrency import run_in_threadpool

from jewelhaven.core.config import settings
from jewelhaven.core.errors import (
    InvalidAmount,
    InvalidPhoneNumber,
    OrderAlreadyPaid,
    PaymentGatewayError,
    PaymentInitiationError,
)
from jewelhaven.db.session import session_scope
from jewelhaven.models.order import PaymentStatus
from jewelhaven.services import orders as order_service

logger = logging.getLogger(__name__)

# Словарь статусов, которые возвращает verify-transaction
STATUS_COMPLETED = "completed"
STATUS_PENDING = "pending"
TERMINAL_FAILURES = frozenset({"failed", "cancelled", "failed_insufficient_funds", "timeout"})

DEFAULT_FAILURE_REASON = "Payment was cancelled or failed"


def normalize_phone(raw: str, country_code: Optional[str] = None) -> str:
    """
    Приводит номер к международному виду без '+', который принимает шлюз:
    0712345678 -> 254712345678, +254712345678 -> 254712345678, 712345678 -> 254712345678.
    """
    country_code = country_code or settings.PHONE_COUNTRY_CODE
    phone = re.sub(r"[^\d+]", "", str(raw or "").strip()).replace("+", "")
    if phone.startswith("0"):
        phone = country_code + phone[1:]
    elif not phone.startswith(country_code):
        phone = country_code + phone
    if not re.fullmatch(rf"{country_code}\d{{9}}", phone):
        raise InvalidPhoneNumber(raw)
    return phone


def round_amount(amount) -> int:
    """Шлюз принимает только целые суммы: округляем вверх."""
    try:
        value = float(amount)
    except (TypeError, ValueError):
        raise InvalidAmount(amount)
    if math.isnan(value) or value <= 0:
        raise InvalidAmount(amount)
    return math.ceil(value)


class AttemptStatus(str, enum.Enum):
    initiating = "initiating"
    pending = "pending"
    succeeded = "succeeded"
    failed = "failed"
    timed_out = "timed_out"


@dataclass
class PaymentAttempt:
    order_id: int
    requested_amount: int
    requested_phone: str
    correlation_id: Optional[str] = None
    status: AttemptStatus = AttemptStatus.initiating
    receipt_number: Optional[str] = None
    failure_reason: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (AttemptStatus.succeeded, AttemptStatus.failed, AttemptStatus.timed_out)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.status.value
        return data


class OutcomeKind(str, enum.Enum):
    succeeded = "succeeded"
    failed = "failed"
    pending = "pending"


@dataclass(frozen=True)
class StatusOutcome:
    kind: OutcomeKind
    receipt_number: Optional[str] = None
    reason: Optional[str] = None


def _field(data: dict, *names):
    for name in names:
        if name in data:
            return data[name]
    return None


def classify_status(payload: dict) -> StatusOutcome:
    """Определённый успех, определённый отказ или «ещё ждём»."""
    status = payload.get("status")
    data = payload.get("data") or {}
    if not isinstance(data, dict):
        data = {}
    result_code = _field(data, "ResultCode", "resultCode")
    receipt = _field(data, "MpesaReceiptNumber", "receiptNumber")

    # без номера квитанции оплата не подтверждена, ждём дальше
    if payload.get("success") is True and status == STATUS_COMPLETED and str(result_code) == "0" and receipt:
        return StatusOutcome(OutcomeKind.succeeded, receipt_number=str(receipt))
    if payload.get("success") is False and status in TERMINAL_FAILURES:
        reason = _field(data, "ResultDesc", "resultDescription") or DEFAULT_FAILURE_REASON
        return StatusOutcome(OutcomeKind.failed, reason=reason)
    return StatusOutcome(OutcomeKind.pending)


class MpesaClient:
    """HTTP-клиент платёжного шлюза. Любой сбой транспорта -> PaymentGatewayError."""

    PUSH_PATH = "/api/payJewelHaven.php"
    VERIFY_PATH = "/api/verify-transaction.php"

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or settings.MPESA_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.GATEWAY_TIMEOUT
        self.transport = transport

    async def _post(self, path: str, body: dict) -> dict:
        try:
            async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout,
                                         transport=self.transport) as client:
                response = await client.post(path, json=body, headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise PaymentGatewayError(f"M-Pesa API request failed: {e!r}") from e

        logger.info(f"M-Pesa {path} -> HTTP {response.status_code}")
        try:
            data = response.json()
        except ValueError:
            logger.error(f"Invalid response from M-Pesa API: {response.text[:200]}")
            raise PaymentGatewayError("Invalid response from M-Pesa API")
        if not isinstance(data, dict):
            raise PaymentGatewayError("Invalid response from M-Pesa API")
        return data

    async def push(self, phone: str, amount: int) -> dict:
        return await self._post(self.PUSH_PATH, {"phoneNumber": phone, "amount": str(amount)})

    async def verify(self, checkout_id: str) -> dict:
        return await self._post(self.VERIFY_PATH, {"checkoutRequestId": checkout_id})


def _ensure_payable(order_id: int) -> None:
    with session_scope() as db:
        order = order_service.get_order(db, order_id)
        if order.payment_status == PaymentStatus.paid:
            raise OrderAlreadyPaid(order.order_number)


def _record_checkout_id(order_id: int, checkout_id: str) -> None:
    with session_scope() as db:
        order_service.record_checkout_id(db, order_id, checkout_id)


def _confirm(checkout_id: str, receipt_number: Optional[str]) -> None:
    with session_scope() as db:
        order_service.confirm_payment(db, checkout_id, receipt_number)


class PaymentService:
    """Запуск push-оплаты по заказу и запрос её статуса."""

    def __init__(self, client: Optional[MpesaClient] = None):
        self.client = client or MpesaClient()

    async def initiate(self, order_id: int, phone: str, amount) -> PaymentAttempt:
        """
        Отправляет STK push на телефон покупателя. При отказе шлюза заказ
        остаётся pending/pending, наружу уходит PaymentInitiationError.
        """
        normalized = normalize_phone(phone)
        rounded = round_amount(amount)
        await run_in_threadpool(_ensure_payable, order_id)

        attempt = PaymentAttempt(order_id=order_id, requested_amount=rounded, requested_phone=normalized)
        logger.info(f"Initiating M-Pesa payment for order {order_id}: {normalized}, {rounded}")
        result = await self.client.push(normalized, rounded)

        checkout_id = result.get("CheckoutRequestID")
        if not (result.get("success") and checkout_id):
            message = result.get("message") or result.get("errorMessage") or "Failed to initiate M-Pesa"
            logger.warning(f"M-Pesa rejected push for order {order_id}: {message}")
            raise PaymentInitiationError(message, response=result)

        await run_in_threadpool(_record_checkout_id, order_id, checkout_id)
        attempt.correlation_id = checkout_id
        attempt.status = AttemptStatus.pending
        return attempt

    async def query_status(self, checkout_id: str) -> dict:
        """Ответ шлюза как есть; при успехе заказ отмечается оплаченным (идемпотентно)."""
        payload = await self.client.verify(checkout_id)
        outcome = classify_status(payload)
        if outcome.kind is OutcomeKind.succeeded:
            await run_in_threadpool(_confirm, checkout_id, outcome.receipt_number)
        return payload
