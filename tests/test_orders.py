"""Tests for order creation, status transitions and stock reconciliation."""

import re

import pytest

from jewelhaven.core.errors import (
    InvalidStatusTransition,
    OrderAlreadyPaid,
    OrderNotFound,
    OrderTotalsMismatch,
    StockConflictError,
)
from jewelhaven.models.order import Order, OrderItem, OrderStatus, PaymentMethod, PaymentStatus
from jewelhaven.models.user import RoleEnum
from jewelhaven.schemas.order import OrderDraft
from jewelhaven.services import catalog, orders as order_service


def draft_for(*lines, payment_method=PaymentMethod.mpesa, delivery_fee=None, subtotal=None, total=None, prices=None):
    prices = prices or {}
    items = [{"product_id": p.id, "quantity": qty, "price": prices.get(p.id, p.price)} for p, qty in lines]
    computed = sum(item["price"] * item["quantity"] for item in items)
    subtotal = computed if subtotal is None else subtotal
    if delivery_fee is None:
        delivery_fee = sum(p.delivery_fee for p, _ in lines)
    return OrderDraft(
        items=items,
        delivery_name="Amina Wanjiku",
        delivery_phone="0712345678",
        delivery_address="Kenyatta Avenue 12, Nairobi",
        payment_method=payment_method,
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        total=subtotal + delivery_fee if total is None else total,
    )


class TestOrderNumber:
    def test_format(self):
        number = order_service.generate_order_number()
        assert re.fullmatch(r"JH[0-9A-Z]{12,}", number)

    def test_numbers_differ(self):
        assert len({order_service.generate_order_number() for _ in range(50)}) == 50


class TestCreateOrder:
    def test_creates_order_with_items(self, db, user, make_product):
        necklace = make_product(name="Pearl Necklace", price=5000.0, delivery_fee=200.0)
        ring = make_product(name="Silver Ring", price=1500.0)

        order = order_service.create_order(db, user.id, draft_for((necklace, 1), (ring, 2)))

        assert order.status == OrderStatus.pending
        assert order.payment_status == PaymentStatus.pending
        assert order.total == 8200.0
        assert {(i.product_name, i.quantity) for i in order.items} == {("Pearl Necklace", 1), ("Silver Ring", 2)}
        assert order.stock_reconciled is False

    def test_stock_not_touched_on_create(self, db, user, make_product):
        product = make_product(stock_quantity=3)
        order_service.create_order(db, user.id, draft_for((product, 2)))

        db.refresh(product)
        assert product.stock_quantity == 3

    def test_total_mismatch_rejected(self, db, user, make_product):
        product = make_product(price=1000.0, delivery_fee=200.0)

        with pytest.raises(OrderTotalsMismatch) as exc_info:
            order_service.create_order(db, user.id, draft_for((product, 1), total=1100.0))

        assert exc_info.value.field == "total"
        assert db.query(Order).count() == 0

    def test_client_prices_cannot_lower_the_bill(self, db, user, make_product):
        product = make_product(price=25000.0)

        with pytest.raises(OrderTotalsMismatch) as exc_info:
            order_service.create_order(db, user.id, draft_for((product, 1), prices={product.id: 1.0}))

        assert exc_info.value.field == "subtotal"
        assert exc_info.value.expected == 25000.0
        assert db.query(Order).count() == 0

    def test_items_priced_from_catalog(self, db, user, make_product):
        product = make_product(price=25000.0)
        draft = draft_for((product, 1), prices={product.id: 1.0}, subtotal=25000.0)

        order = order_service.create_order(db, user.id, draft)

        assert order.items[0].price == 25000.0
        assert order.total == 25000.0

    def test_delivery_fee_comes_from_catalog(self, db, user, make_product):
        product = make_product(price=1000.0, delivery_fee=300.0)

        with pytest.raises(OrderTotalsMismatch) as exc_info:
            order_service.create_order(db, user.id, draft_for((product, 2), delivery_fee=0.0))

        assert exc_info.value.field == "delivery_fee"
        assert exc_info.value.expected == 300.0

    def test_subtotal_mismatch_rejected(self, db, user, make_product):
        product = make_product(price=1000.0)

        with pytest.raises(OrderTotalsMismatch):
            order_service.create_order(db, user.id, draft_for((product, 2), subtotal=1000.0))

    def test_small_rounding_is_tolerated(self, db, user, make_product):
        product = make_product(price=333.33)

        order = order_service.create_order(db, user.id, draft_for((product, 3), subtotal=999.995))

        assert order.id is not None

    def test_stock_rechecked_inside_transaction(self, db, user, make_product):
        product = make_product(stock_quantity=1)

        with pytest.raises(StockConflictError) as exc_info:
            order_service.create_order(db, user.id, draft_for((product, 2)))

        assert exc_info.value.issues[0]["available_qty"] == 1
        assert db.query(Order).count() == 0
        assert db.query(OrderItem).count() == 0

    def test_snapshot_survives_product_changes(self, db, user, make_product):
        product = make_product(name="Gold Bangle", price=4000.0)
        order = order_service.create_order(db, user.id, draft_for((product, 1)))

        product.name = "Gold Bangle v2"
        product.price = 9000.0
        db.commit()
        catalog.delete_product(db, product.id)

        db.expire_all()
        item = db.get(Order, order.id).items[0]
        assert item.product_name == "Gold Bangle"
        assert item.price == 4000.0
        assert item.product_id is None


class TestQueries:
    def test_owner_and_admin_can_read(self, db, user, make_user, make_product):
        order = order_service.create_order(db, user.id, draft_for((make_product(), 1)))
        admin = make_user(email="admin@example.com", role=RoleEnum.admin)

        assert order_service.get_order_for_user(db, order.order_number, user).id == order.id
        assert order_service.get_order_for_user(db, order.order_number, admin).id == order.id

    def test_other_user_gets_not_found(self, db, user, make_user, make_product):
        order = order_service.create_order(db, user.id, draft_for((make_product(), 1)))
        stranger = make_user(email="other@example.com")

        with pytest.raises(OrderNotFound):
            order_service.get_order_for_user(db, order.order_number, stranger)

    def test_list_user_orders(self, db, user, make_user, make_product):
        product = make_product()
        order_service.create_order(db, user.id, draft_for((product, 1)))
        order_service.create_order(db, user.id, draft_for((product, 1)))
        other = make_user(email="other@example.com")
        order_service.create_order(db, other.id, draft_for((product, 1)))

        assert len(order_service.list_user_orders(db, user.id)) == 2
        assert len(order_service.list_all_orders(db)) == 3


class TestStatusAndStock:
    def test_status_moves_forward_only(self, db, user, make_product):
        order = order_service.create_order(db, user.id, draft_for((make_product(), 1)))
        order_service.advance_status(db, order.id, OrderStatus.processing)

        with pytest.raises(InvalidStatusTransition):
            order_service.advance_status(db, order.id, OrderStatus.pending)

    def test_same_status_is_noop(self, db, user, make_product):
        order = order_service.create_order(db, user.id, draft_for((make_product(), 1)))
        assert order_service.advance_status(db, order.id, OrderStatus.pending).status == OrderStatus.pending

    def test_cash_order_paid_on_delivery(self, db, user, make_product):
        product = make_product(stock_quantity=5)
        order = order_service.create_order(db, user.id, draft_for((product, 2), payment_method=PaymentMethod.cod))

        order_service.advance_status(db, order.id, OrderStatus.processing)
        db.refresh(product)
        assert product.stock_quantity == 5

        order = order_service.advance_status(db, order.id, OrderStatus.delivered)
        assert order.payment_status == PaymentStatus.paid
        db.refresh(product)
        assert product.stock_quantity == 3

        order_service.advance_status(db, order.id, OrderStatus.completed)
        db.refresh(product)
        assert product.stock_quantity == 3

    def test_stock_never_negative(self, db, user, make_product):
        product = make_product(stock_quantity=2)
        order = order_service.create_order(db, user.id, draft_for((product, 2), payment_method=PaymentMethod.cod))
        product.stock_quantity = 1
        db.commit()

        order_service.advance_status(db, order.id, OrderStatus.delivered)

        db.refresh(product)
        assert product.stock_quantity == 0
        assert product.in_stock is False

    def test_confirm_payment_is_idempotent(self, db, user, make_product):
        product = make_product(stock_quantity=4)
        order = order_service.create_order(db, user.id, draft_for((product, 1)))
        order_service.record_checkout_id(db, order.id, "ws_CO_42")

        first = order_service.confirm_payment(db, "ws_CO_42", "QWE123")
        second = order_service.confirm_payment(db, "ws_CO_42", "OTHER")

        assert first.id == second.id
        assert second.mpesa_receipt_number == "QWE123"
        assert second.status == OrderStatus.processing
        db.refresh(product)
        assert product.stock_quantity == 3

    def test_confirm_unknown_checkout_id(self, db):
        assert order_service.confirm_payment(db, "ws_CO_missing", "R") is None

    def test_switch_to_cash(self, db, user, make_product):
        order = order_service.create_order(db, user.id, draft_for((make_product(), 1)))

        switched = order_service.switch_to_cash(db, order.id)

        assert switched.payment_method == PaymentMethod.cod
        assert switched.payment_status == PaymentStatus.pending

    def test_switch_paid_order_rejected(self, db, user, make_product):
        order = order_service.create_order(db, user.id, draft_for((make_product(), 1)))
        order.payment_status = PaymentStatus.paid
        db.commit()

        with pytest.raises(OrderAlreadyPaid):
            order_service.switch_to_cash(db, order.id)
