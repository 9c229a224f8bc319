"""Tests for the checkout state machine and session registry (in-memory fakes)."""

import asyncio
import threading
from datetime import datetime, timedelta

import pytest

from conftest import PENDING, completed, failed, instant_sleep
from jewelhaven.core.errors import (
    CheckoutInProgress,
    CheckoutSessionNotFound,
    CheckoutStepTimeout,
    InvalidCartError,
    InvalidCheckoutState,
    InvalidPhoneNumber,
    OrderAlreadyPaid,
    PaymentInitiationError,
    StockConflictError,
)
from jewelhaven.models.order import PaymentMethod
from jewelhaven.schemas.order import DeliveryDetails
from jewelhaven.services.cart import Cart, CartLine
from jewelhaven.services.catalog import ProductSnapshot
from jewelhaven.services.checkout import (
    CheckoutRegistry,
    CheckoutSession,
    CheckoutState,
    CheckoutStateMachine,
    Recovery,
)
from jewelhaven.services.orders import OrderRef
from jewelhaven.services.payments import AttemptStatus, PaymentAttempt
from jewelhaven.services.poller import TIMEOUT_MESSAGE, ConfirmationPoller
from jewelhaven.services.stock import StockVerifier


class FakeCatalog:
    def __init__(self, **stock):
        self.products = {
            1: ProductSnapshot(1, "Pearl Necklace", 5000.0, "", True, stock.get("necklace", 5)),
            2: ProductSnapshot(2, "Silver Ring", 1500.0, "", True, stock.get("ring", 5)),
        }

    async def lookup(self, product_id):
        return self.products.get(product_id)


class FakeOrders:
    def __init__(self):
        self.created = []
        self.switched = []
        self.create_error = None
        self.switch_error = None
        self.create_delay = 0

    async def create(self, user_id, draft):
        if self.create_delay:
            await asyncio.sleep(self.create_delay)
        if self.create_error:
            raise self.create_error
        self.created.append(draft)
        return OrderRef(id=len(self.created), order_number=f"JHTEST{len(self.created)}", total=draft.total)

    async def switch_to_cash(self, order_id):
        if self.switch_error:
            raise self.switch_error
        self.switched.append(order_id)
        return OrderRef(id=order_id, order_number=f"JHTEST{order_id}", total=0)


class FakePayments:
    def __init__(self, *statuses):
        self.statuses = list(statuses)
        self.pushes = []
        self.queries = 0
        self.push_error = None

    async def initiate(self, order_id, phone, amount):
        self.pushes.append((order_id, phone, amount))
        if self.push_error:
            raise self.push_error
        return PaymentAttempt(order_id=order_id, requested_amount=int(amount), requested_phone=phone,
                              correlation_id=f"ws_CO_{len(self.pushes)}", status=AttemptStatus.pending)

    async def query_status(self, checkout_id):
        self.queries += 1
        return self.statuses.pop(0) if self.statuses else PENDING


class ClearCounter:
    def __init__(self):
        self.calls = 0

    def __call__(self):
        self.calls += 1


def build(catalog=None, orders=None, payments=None, max_attempts=35):
    catalog = catalog or FakeCatalog()
    orders = orders or FakeOrders()
    payments = payments or FakePayments()
    poller = ConfirmationPoller(payments.query_status, interval=3, max_attempts=max_attempts,
                                query_timeout=1, sleep=instant_sleep)
    machine = CheckoutStateMachine(StockVerifier(catalog.lookup, timeout=1), orders, payments, poller,
                                   order_timeout=1, initiate_timeout=1)
    return machine, orders, payments


def make_session(method=PaymentMethod.mpesa, lines=None, on_clear=None, **kwargs):
    lines = lines if lines is not None else [
        CartLine(product_id=1, quantity=1, unit_price=5000.0, delivery_fee=200.0, name="Pearl Necklace"),
    ]
    details = DeliveryDetails(delivery_name="Amina Wanjiku", delivery_phone="0712345678",
                              delivery_address="Kenyatta Avenue 12, Nairobi")
    return CheckoutSession(cart=Cart(lines, on_clear=on_clear), details=details,
                           payment_method=method, user_id=7, **kwargs)


async def run_checkout(machine, session):
    """Как это делает реестр: start, затем опрос, если ушёл push."""
    await machine.start(session)
    if session.state is CheckoutState.pending:
        await machine.confirm(session)
    return session


class TestMpesaCheckout:
    def test_paid_on_fourth_poll(self):
        machine, orders, payments = build(payments=FakePayments(PENDING, PENDING, PENDING, completed("ABC123XYZ")))
        cleared = ClearCounter()
        session = make_session(on_clear=cleared)

        asyncio.run(run_checkout(machine, session))

        assert session.state is CheckoutState.success
        assert session.receipt_number == "ABC123XYZ"
        assert session.poll_count == 4
        assert session.total == 5200.0
        assert payments.pushes == [(1, "0712345678", 5200.0)]
        assert orders.created[0].total == 5200.0
        assert orders.created[0].delivery_fee == 200.0
        assert session.cart.is_empty
        assert cleared.calls == 1

    def test_start_leaves_session_pending(self):
        machine, _, _ = build()
        session = make_session()

        asyncio.run(machine.start(session))

        assert session.state is CheckoutState.pending
        assert session.attempt.correlation_id == "ws_CO_1"
        assert not session.cart.cleared

    def test_cancelled_by_user_keeps_cart(self):
        machine, orders, payments = build(payments=FakePayments(failed("cancelled", "Request cancelled by user")))
        cleared = ClearCounter()
        session = make_session(on_clear=cleared)

        asyncio.run(run_checkout(machine, session))

        assert session.state is CheckoutState.failed
        assert session.error == "Request cancelled by user"
        assert session.recoveries == [Recovery.retry_payment, Recovery.switch_to_cash]
        assert payments.queries == 1
        assert cleared.calls == 0
        assert not session.cart.is_empty
        assert len(orders.created) == 1

    def test_timeout_after_all_polls(self):
        machine, _, payments = build(max_attempts=5)
        session = make_session()

        asyncio.run(run_checkout(machine, session))

        assert session.state is CheckoutState.failed
        assert session.error == TIMEOUT_MESSAGE
        assert session.attempt.status is AttemptStatus.timed_out
        assert payments.queries == 5

    def test_uses_separate_mpesa_phone(self):
        machine, _, payments = build()
        session = make_session(mpesa_phone="+254722000111")

        asyncio.run(machine.start(session))

        assert payments.pushes[0][1] == "+254722000111"

    def test_invalid_phone_rejected_before_order(self):
        machine, orders, _ = build()
        session = make_session(mpesa_phone="12345")

        with pytest.raises(InvalidPhoneNumber):
            asyncio.run(machine.start(session))
        assert orders.created == []
        assert session.state is CheckoutState.idle

    def test_push_rejected_moves_to_failed(self):
        payments = FakePayments()
        payments.push_error = PaymentInitiationError("Invalid Access Token")
        machine, orders, _ = build(payments=payments)
        session = make_session()

        asyncio.run(machine.start(session))

        assert session.state is CheckoutState.failed
        assert session.error == "Invalid Access Token"
        assert session.order_id == 1
        assert len(orders.created) == 1


class TestRecovery:
    def _failed_session(self, machine):
        session = make_session()
        asyncio.run(run_checkout(machine, session))
        assert session.state is CheckoutState.failed
        return session

    def test_retry_reuses_order(self):
        payments = FakePayments(failed("failed_insufficient_funds", "Insufficient funds"), completed("RETRY01"))
        machine, orders, _ = build(payments=payments)
        session = self._failed_session(machine)

        asyncio.run(machine.retry_payment(session))
        asyncio.run(machine.confirm(session))

        assert session.state is CheckoutState.success
        assert session.receipt_number == "RETRY01"
        assert len(orders.created) == 1
        assert [push[0] for push in payments.pushes] == [1, 1]

    def test_retry_with_new_phone(self):
        payments = FakePayments(failed("cancelled", "Request cancelled by user"))
        machine, _, _ = build(payments=payments)
        session = self._failed_session(machine)

        asyncio.run(machine.retry_payment(session, "0733000111"))

        assert payments.pushes[-1][1] == "0733000111"
        assert session.state is CheckoutState.pending

    def test_switch_to_cash(self):
        machine, orders, _ = build(payments=FakePayments(failed("cancelled", "Request cancelled by user")))
        session = self._failed_session(machine)

        asyncio.run(machine.switch_to_cash(session))

        assert session.state is CheckoutState.success
        assert session.payment_method is PaymentMethod.cod
        assert orders.switched == [1]
        assert len(orders.created) == 1
        assert session.cart.cleared

    def test_switch_after_late_payment_still_succeeds(self):
        machine, orders, _ = build(payments=FakePayments(failed("cancelled", "Request cancelled by user")))
        session = self._failed_session(machine)
        orders.switch_error = OrderAlreadyPaid("JHTEST1")

        asyncio.run(machine.switch_to_cash(session))

        assert session.state is CheckoutState.success
        assert session.payment_method is PaymentMethod.mpesa

    def test_retry_when_order_already_paid(self):
        payments = FakePayments(failed("cancelled", "Request cancelled by user"))
        machine, _, _ = build(payments=payments)
        session = self._failed_session(machine)
        payments.push_error = OrderAlreadyPaid("JHTEST1")

        asyncio.run(machine.retry_payment(session))

        assert session.state is CheckoutState.success

    def test_retry_not_allowed_outside_failed(self):
        machine, _, _ = build()
        session = make_session()
        asyncio.run(machine.start(session))

        with pytest.raises(InvalidCheckoutState):
            asyncio.run(machine.retry_payment(session))


class TestStockAndOrderSteps:
    def test_insufficient_stock_returns_to_cart(self):
        machine, orders, payments = build(catalog=FakeCatalog(necklace=1))
        session = make_session(lines=[CartLine(product_id=1, quantity=3, unit_price=5000.0, name="Pearl Necklace")])

        with pytest.raises(StockConflictError) as exc_info:
            asyncio.run(machine.start(session))

        assert exc_info.value.issues[0]["error_kind"] == "insufficient_stock"
        assert session.state is CheckoutState.idle
        assert session.recoveries == [Recovery.return_to_cart]
        assert orders.created == []
        assert payments.pushes == []

    def test_unknown_product_is_out_of_stock(self):
        machine, orders, _ = build()
        session = make_session(lines=[CartLine(product_id=99, quantity=1, unit_price=0.0)])

        with pytest.raises(StockConflictError):
            asyncio.run(machine.start(session))
        assert session.stock_issues[0]["error_kind"] == "out_of_stock"
        assert orders.created == []

    def test_empty_cart(self):
        machine, orders, _ = build()
        session = make_session(lines=[])

        with pytest.raises(InvalidCartError):
            asyncio.run(machine.start(session))
        assert session.state is CheckoutState.idle

    def test_stock_race_at_order_creation(self):
        orders = FakeOrders()
        orders.create_error = StockConflictError([{"product_id": 1, "requested_qty": 1, "available_qty": 0}])
        machine, _, payments = build(orders=orders)
        session = make_session()

        with pytest.raises(StockConflictError):
            asyncio.run(machine.start(session))
        assert session.state is CheckoutState.idle
        assert payments.pushes == []

    def test_order_creation_timeout(self):
        orders = FakeOrders()
        orders.create_delay = 5
        machine, _, _ = build(orders=orders)
        session = make_session()

        with pytest.raises(CheckoutStepTimeout):
            asyncio.run(machine.start(session))
        assert session.state is CheckoutState.idle
        assert session.error == "Failed to create order"

    def test_cash_on_delivery_skips_payment(self):
        machine, orders, payments = build()
        cleared = ClearCounter()
        session = make_session(method=PaymentMethod.cod, on_clear=cleared)

        asyncio.run(run_checkout(machine, session))

        assert session.state is CheckoutState.success
        assert payments.pushes == []
        assert orders.created[0].payment_method is PaymentMethod.cod
        assert cleared.calls == 1

    def test_start_twice_is_rejected(self):
        machine, _, _ = build()
        session = make_session(method=PaymentMethod.cod)
        asyncio.run(run_checkout(machine, session))

        with pytest.raises(InvalidCheckoutState):
            asyncio.run(machine.start(session))


class TestCheckoutRegistry:
    def test_background_poll_completes(self):
        machine, _, _ = build(payments=FakePayments(PENDING, completed("BG0001")))
        registry = CheckoutRegistry(machine)
        session = make_session()

        async def scenario():
            await registry.start(session)
            assert session.state in (CheckoutState.pending, CheckoutState.polling)
            await registry._tasks[session.id]

        asyncio.run(scenario())
        assert session.state is CheckoutState.success
        assert registry.get(session.id, 7) is session

    def test_second_action_while_polling_is_rejected(self):
        payments = FakePayments()
        machine, _, _ = build(payments=payments)
        machine.poller.sleep = asyncio.sleep
        machine.poller.interval = 0.01
        registry = CheckoutRegistry(machine)
        session = make_session()

        async def scenario():
            await registry.start(session)
            with pytest.raises(CheckoutInProgress):
                await registry.switch_to_cash(session)
            await registry.cancel(session)

        asyncio.run(scenario())
        assert session.state is CheckoutState.failed
        assert session.error == "Checkout was cancelled"
        assert not session.cart.cleared

    def test_failed_start_without_order_is_dropped(self):
        machine, _, _ = build(catalog=FakeCatalog(necklace=0))
        registry = CheckoutRegistry(machine)
        session = make_session()

        with pytest.raises(StockConflictError):
            asyncio.run(registry.start(session))
        assert not registry._sessions

    def test_other_user_cannot_see_session(self):
        machine, _, _ = build()
        registry = CheckoutRegistry(machine)
        session = registry.add(make_session())

        with pytest.raises(CheckoutSessionNotFound):
            registry.get(session.id, user_id=8)

    def test_cancel_while_cart_clears_settles_at_success(self):
        entered = threading.Event()
        release = threading.Event()

        def slow_clear():
            entered.set()
            release.wait(5)

        machine, _, _ = build(payments=FakePayments(completed("LATE001")))
        registry = CheckoutRegistry(machine)
        session = make_session(on_clear=slow_clear)

        async def scenario():
            await registry.start(session)
            for _ in range(500):
                if entered.is_set():
                    break
                await asyncio.sleep(0.01)
            assert entered.is_set()
            cancelling = asyncio.create_task(registry.cancel(session))
            await asyncio.sleep(0.02)
            # пока корзина очищается, сессия ещё не завершена
            assert session.state is CheckoutState.polling
            release.set()
            await cancelling

        asyncio.run(scenario())
        assert session.state is CheckoutState.success
        assert session.error is None
        assert session.receipt_number == "LATE001"
        assert session.cart.cleared

    def test_settled_sessions_are_forgotten(self):
        now = [datetime(2026, 3, 1, 12, 0)]
        machine, _, _ = build()
        registry = CheckoutRegistry(machine, retention=600, clock=lambda: now[0])

        settled = []
        for _ in range(3):
            session = make_session(method=PaymentMethod.cod)
            asyncio.run(registry.start(session))
            session.updated_at = now[0]
            settled.append(session)
        waiting = registry.add(make_session())
        waiting.state = CheckoutState.pending
        waiting.updated_at = now[0]
        assert len(registry) == 4

        now[0] += timedelta(minutes=5)
        later = registry.add(make_session())
        later.updated_at = now[0]
        assert len(registry) == 5

        now[0] += timedelta(minutes=6)
        fresh = registry.add(make_session())

        assert len(registry) == 3
        for session in settled:
            with pytest.raises(CheckoutSessionNotFound):
                registry.get(session.id)
        assert registry.get(waiting.id) is waiting
        assert registry.get(later.id) is later
        assert registry.get(fresh.id) is fresh
