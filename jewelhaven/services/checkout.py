# jewelhaven/services/checkout.py
# Оформление заказа целиком: проверка остатков -> заказ -> push-оплата ->
# опрос статуса -> очистка корзины. Состояние сессии отдаётся в UI.

import asyncio
import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from starlette.concurrency import run_in_threadpool

from jewelhaven.core.config import settings
from jewelhaven.core.errors import (
    CheckoutInProgress,
    CheckoutSessionNotFound,
    CheckoutStepTimeout,
    InvalidCartError,
    InvalidCheckoutState,
    OrderAlreadyPaid,
    StockConflictError,
    StorefrontError,
)
from jewelhaven.models.order import PaymentMethod
from jewelhaven.schemas.order import DeliveryDetails, OrderDraft, OrderItemIn
from jewelhaven.services import catalog
from jewelhaven.services.cart import Cart
from jewelhaven.services.orders import OrderBook
from jewelhaven.services.payments import (
    AttemptStatus,
    MpesaClient,
    PaymentAttempt,
    PaymentService,
    normalize_phone,
)
from jewelhaven.services.poller import ConfirmationPoller
from jewelhaven.services.stock import StockVerifier

logger = logging.getLogger(__name__)

CANCELLED_MESSAGE = "Checkout was cancelled"


class CheckoutState(str, enum.Enum):
    idle = "idle"
    initiating = "initiating"
    pending = "pending"
    polling = "polling"
    success = "success"
    failed = "failed"


class Recovery(str, enum.Enum):
    return_to_cart = "return_to_cart"
    retry_payment = "retry_payment"
    switch_to_cash = "switch_to_cash"


@dataclass
class CheckoutSession:
    """Контекст одного оформления: корзина, данные доставки и текущее состояние."""

    cart: Cart
    details: DeliveryDetails
    payment_method: PaymentMethod
    user_id: Optional[int] = None
    mpesa_phone: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: CheckoutState = CheckoutState.idle
    order_id: Optional[int] = None
    order_number: Optional[str] = None
    total: Optional[float] = None
    attempt: Optional[PaymentAttempt] = None
    stock_issues: list = field(default_factory=list)
    error: Optional[str] = None
    poll_count: int = 0
    recoveries: list = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)
    finishing: Optional[asyncio.Future] = field(default=None, init=False, repr=False)

    @property
    def payment_phone(self) -> str:
        return self.mpesa_phone or self.details.delivery_phone

    @property
    def receipt_number(self) -> Optional[str]:
        return self.attempt.receipt_number if self.attempt else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "state": self.state.value,
            "payment_method": self.payment_method.value,
            "order_id": self.order_id,
            "order_number": self.order_number,
            "total": self.total if self.total is not None else self.cart.total,
            "receipt_number": self.receipt_number,
            "payment": self.attempt.to_dict() if self.attempt else None,
            "poll_count": self.poll_count,
            "stock_issues": self.stock_issues,
            "error": self.error,
            "recoveries": [r.value for r in self.recoveries],
            "cart_cleared": self.cart.cleared,
            "cart": self.cart.to_dict(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class CheckoutStateMachine:
    """
    Переходы: idle -> initiating -> success (COD)
              idle -> initiating -> pending -> polling -> success | failed

    Корзина очищается только при success. Повтор оплаты и переход на COD
    работают с уже созданным заказом: второй заказ не создаётся.
    """

    def __init__(
        self,
        stock_verifier: StockVerifier,
        orders: OrderBook,
        payments: PaymentService,
        poller: ConfirmationPoller,
        order_timeout: Optional[float] = None,
        initiate_timeout: Optional[float] = None,
    ):
        self.stock_verifier = stock_verifier
        self.orders = orders
        self.payments = payments
        self.poller = poller
        self.order_timeout = settings.ORDER_CREATE_TIMEOUT if order_timeout is None else order_timeout
        self.initiate_timeout = settings.GATEWAY_TIMEOUT if initiate_timeout is None else initiate_timeout

    def _move(self, session: CheckoutSession, state: CheckoutState) -> None:
        logger.info(f"Checkout {session.id}: {session.state.value} -> {state.value}")
        session.state = state
        session.updated_at = datetime.utcnow()

    def _abort_to_cart(self, session: CheckoutSession, issues: list) -> None:
        session.stock_issues = issues
        session.recoveries = [Recovery.return_to_cart]
        self._move(session, CheckoutState.idle)

    def fail(self, session: CheckoutSession, reason: str) -> None:
        session.error = reason
        session.recoveries = [Recovery.retry_payment, Recovery.switch_to_cash]
        self._move(session, CheckoutState.failed)

    async def _succeed(self, session: CheckoutSession) -> None:
        # очистка корзины и переход в success доводятся до конца и при отмене задачи
        if session.finishing is None or (session.finishing.done() and session.state is not CheckoutState.success):
            session.finishing = asyncio.ensure_future(self._finish(session))
        await asyncio.shield(session.finishing)

    async def _finish(self, session: CheckoutSession) -> None:
        # к моменту, когда UI увидит success, корзина уже пуста
        await run_in_threadpool(session.cart.clear)
        session.error = None
        session.recoveries = []
        self._move(session, CheckoutState.success)

    def _draft(self, session: CheckoutSession) -> OrderDraft:
        cart = session.cart
        return OrderDraft(
            **session.details.model_dump(),
            items=[
                OrderItemIn(product_id=line.product_id, quantity=line.quantity, price=line.unit_price)
                for line in cart.lines
            ],
            payment_method=session.payment_method,
            subtotal=cart.subtotal,
            delivery_fee=cart.delivery_fee,
            total=cart.total,
        )

    async def start(self, session: CheckoutSession) -> CheckoutSession:
        """
        Проверка остатков и создание заказа. Для COD сразу success,
        для M-Pesa отправляется push и сессия остаётся в pending.
        """
        if session.state is not CheckoutState.idle:
            raise InvalidCheckoutState("start checkout", session.state.value)
        if session.payment_method == PaymentMethod.mpesa:
            # неверный номер считается ошибкой формы: заказ ещё не создан
            normalize_phone(session.payment_phone)

        session.error = None
        session.stock_issues = []
        session.recoveries = []
        self._move(session, CheckoutState.initiating)

        try:
            report = await self.stock_verifier.verify(session.cart)
        except InvalidCartError:
            self._move(session, CheckoutState.idle)
            raise
        if report.has_issues:
            issues = report.to_dict()["issues"]
            self._abort_to_cart(session, issues)
            raise StockConflictError(
                issues, "Could not verify stock, please retry" if report.retryable else None
            )

        try:
            order = await asyncio.wait_for(
                self.orders.create(session.user_id, self._draft(session)), timeout=self.order_timeout
            )
        except StockConflictError as e:
            self._abort_to_cart(session, e.issues)
            raise
        except asyncio.TimeoutError:
            session.error = "Failed to create order"
            self._move(session, CheckoutState.idle)
            raise CheckoutStepTimeout("create order", self.order_timeout)
        except Exception:
            session.error = "Failed to create order"
            self._move(session, CheckoutState.idle)
            raise

        session.order_id = order.id
        session.order_number = order.order_number
        session.total = order.total

        if session.payment_method == PaymentMethod.cod:
            await self._succeed(session)
            return session

        await self._initiate(session)
        return session

    async def _initiate(self, session: CheckoutSession) -> None:
        self._move(session, CheckoutState.initiating)
        phone = session.payment_phone
        try:
            attempt = await asyncio.wait_for(
                self.payments.initiate(session.order_id, phone, session.total),
                timeout=self.initiate_timeout,
            )
        except OrderAlreadyPaid:
            logger.info(f"Checkout {session.id}: order {session.order_number} is already paid")
            await self._succeed(session)
            return
        except (StorefrontError, asyncio.TimeoutError) as e:
            reason = str(e) or "Failed to initiate M-Pesa payment"
            if isinstance(e, asyncio.TimeoutError):
                reason = "M-Pesa did not respond in time, please retry"
            session.attempt = PaymentAttempt(
                order_id=session.order_id,
                requested_amount=0,
                requested_phone=phone,
                status=AttemptStatus.failed,
                failure_reason=reason,
            )
            self.fail(session, reason)
            return

        session.attempt = attempt
        session.poll_count = 0
        self._move(session, CheckoutState.pending)

    async def confirm(self, session: CheckoutSession) -> CheckoutSession:
        """pending -> polling -> success | failed."""
        if session.state is not CheckoutState.pending:
            raise InvalidCheckoutState("wait for payment", session.state.value)
        self._move(session, CheckoutState.polling)

        def _count(number: int) -> None:
            session.poll_count = number
            session.updated_at = datetime.utcnow()

        attempt = await self.poller.poll(session.attempt, on_attempt=_count)
        if attempt.status is AttemptStatus.succeeded:
            await self._succeed(session)
        else:
            self.fail(session, attempt.failure_reason)
        return session

    async def retry_payment(self, session: CheckoutSession, phone: Optional[str] = None) -> CheckoutSession:
        """Повторный push по тому же заказу."""
        if session.state is not CheckoutState.failed or session.order_id is None:
            raise InvalidCheckoutState("retry payment", session.state.value)
        if phone:
            normalize_phone(phone)
            session.mpesa_phone = phone
        session.error = None
        session.recoveries = []
        await self._initiate(session)
        return session

    async def switch_to_cash(self, session: CheckoutSession) -> CheckoutSession:
        """Тот же заказ, оплата при получении."""
        if session.state is not CheckoutState.failed or session.order_id is None:
            raise InvalidCheckoutState("switch to cash on delivery", session.state.value)
        try:
            await self.orders.switch_to_cash(session.order_id)
            session.payment_method = PaymentMethod.cod
        except OrderAlreadyPaid:
            logger.info(f"Checkout {session.id}: order {session.order_number} paid before switch")
        await self._succeed(session)
        return session

    def abandon(self, session: CheckoutSession) -> None:
        """Опрос прерван (ушли со страницы): заказ остаётся, корзина тоже."""
        if session.finishing is not None and not session.finishing.done():
            return
        if session.state in (CheckoutState.pending, CheckoutState.polling):
            if session.attempt is not None and not session.attempt.is_terminal:
                session.attempt.status = AttemptStatus.failed
                session.attempt.failure_reason = CANCELLED_MESSAGE
            self.fail(session, CANCELLED_MESSAGE)


SETTLED_STATES = (CheckoutState.idle, CheckoutState.success, CheckoutState.failed)


class CheckoutRegistry:
    """
    Сессии оформления в памяти процесса. На сессию не больше одной
    задачи опроса; повторная отправка во время опроса даёт CheckoutInProgress.
    Завершённые сессии забываются через retention секунд после последнего
    перехода, заказ при этом остаётся в БД.
    """

    def __init__(
        self,
        machine: CheckoutStateMachine,
        retention: Optional[float] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.machine = machine
        self.retention = settings.CHECKOUT_SESSION_TTL if retention is None else retention
        self.clock = clock
        self._sessions: dict[str, CheckoutSession] = {}
        self._tasks: dict[str, asyncio.Task] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def add(self, session: CheckoutSession) -> CheckoutSession:
        self.prune()
        self._sessions[session.id] = session
        return session

    def prune(self) -> int:
        """Убирает завершённые сессии старше retention и их отработавшие задачи."""
        cutoff = self.clock() - timedelta(seconds=self.retention)
        stale = [
            session_id for session_id, session in self._sessions.items()
            if session.state in SETTLED_STATES
            and session.updated_at <= cutoff
            and not self.is_active(session_id)
            and (session.finishing is None or session.finishing.done())
        ]
        for session_id in stale:
            del self._sessions[session_id]
        for session_id in [s for s, t in self._tasks.items() if t.done() and s not in self._sessions]:
            del self._tasks[session_id]
        if stale:
            logger.info(f"Dropped {len(stale)} settled checkout session(s), {len(self)} left")
        return len(stale)

    def get(self, session_id: str, user_id: Optional[int] = None) -> CheckoutSession:
        session = self._sessions.get(session_id)
        if session is None or (user_id is not None and session.user_id != user_id):
            raise CheckoutSessionNotFound(session_id)
        return session

    def is_active(self, session_id: str) -> bool:
        task = self._tasks.get(session_id)
        return task is not None and not task.done()

    def _guard(self, session: CheckoutSession) -> None:
        if self.is_active(session.id):
            raise CheckoutInProgress(session.id)

    def _spawn_poll(self, session: CheckoutSession) -> None:
        if session.state is CheckoutState.pending:
            self._tasks[session.id] = asyncio.create_task(self._poll(session))

    async def _poll(self, session: CheckoutSession) -> None:
        try:
            await self.machine.confirm(session)
        except asyncio.CancelledError:
            self.machine.abandon(session)
            raise
        except Exception:
            logger.error(f"Checkout {session.id}: payment confirmation crashed", exc_info=True)
            self.machine.fail(session, "Payment confirmation failed, please retry")

    async def start(self, session: CheckoutSession) -> CheckoutSession:
        self._guard(session)
        self.add(session)
        try:
            await self.machine.start(session)
        except Exception:
            # без заказа попытка отбрасывается целиком
            if session.order_id is None:
                self._sessions.pop(session.id, None)
            raise
        self._spawn_poll(session)
        return session

    async def retry_payment(self, session: CheckoutSession, phone: Optional[str] = None) -> CheckoutSession:
        self._guard(session)
        await self.machine.retry_payment(session, phone)
        self._spawn_poll(session)
        return session

    async def switch_to_cash(self, session: CheckoutSession) -> CheckoutSession:
        self._guard(session)
        return await self.machine.switch_to_cash(session)

    async def cancel(self, session: CheckoutSession) -> CheckoutSession:
        task = self._tasks.get(session.id)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        if session.finishing is not None and not session.finishing.done():
            # оплата подтвердилась до отмены: дожидаемся success
            await asyncio.gather(session.finishing, return_exceptions=True)
        self.machine.abandon(session)
        return session

    async def shutdown(self) -> None:
        tasks = [t for t in self._tasks.values() if not t.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        finishing = [
            s.finishing for s in self._sessions.values()
            if s.finishing is not None and not s.finishing.done()
        ]
        await asyncio.gather(*finishing, return_exceptions=True)


def build_checkout_registry(
    client: Optional[MpesaClient] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> CheckoutRegistry:
    """Собирает оформление заказа поверх БД и HTTP-шлюза M-Pesa."""
    payments = PaymentService(client)
    machine = CheckoutStateMachine(
        stock_verifier=StockVerifier(catalog.fetch_product, timeout=settings.STOCK_CHECK_TIMEOUT),
        orders=OrderBook(),
        payments=payments,
        poller=ConfirmationPoller(payments.query_status, sleep=sleep),
    )
    return CheckoutRegistry(machine)
