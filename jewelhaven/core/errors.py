# jewelhaven/core/errors.py
# Исключения предметной области. Каждое знает свой HTTP-статус,
# main.py превращает их в JSON-ответ {"detail", "error_type"}.


class StorefrontError(Exception):
    """Базовое исключение магазина."""

    status_code = 500


class InvalidCartError(StorefrontError):
    """Пустая корзина или позиция с количеством меньше 1."""

    status_code = 400


class OrderTotalsMismatch(StorefrontError):
    """Присланные суммы не сходятся с позициями заказа."""

    status_code = 400

    def __init__(self, field: str, expected: float, received: float):
        self.field = field
        self.expected = expected
        self.received = received
        super().__init__(f"Order {field} mismatch: expected {expected:.2f}, got {received:.2f}")


class InvalidPhoneNumber(StorefrontError):
    status_code = 400

    def __init__(self, phone: str):
        self.phone = phone
        super().__init__(f"Invalid M-Pesa phone number: {phone!r}")


class InvalidAmount(StorefrontError):
    status_code = 400

    def __init__(self, amount):
        self.amount = amount
        super().__init__(f"Invalid amount: {amount!r}")


class StockConflictError(StorefrontError):
    """Часть товаров корзины закончилась. Заказ не создаётся."""

    status_code = 409

    def __init__(self, issues: list | None = None, message: str | None = None):
        self.issues = issues or []
        super().__init__(
            message or "Some items in your cart are no longer available. Returning to cart..."
        )


class ProductNotFound(StorefrontError):
    status_code = 404

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class CartItemNotFound(StorefrontError):
    status_code = 404

    def __init__(self, item_id: int):
        self.item_id = item_id
        super().__init__(f"Cart item not found: {item_id}")


class OrderNotFound(StorefrontError):
    status_code = 404

    def __init__(self, ref):
        self.ref = ref
        super().__init__(f"Order not found: {ref}")


class InvalidStatusTransition(StorefrontError):
    """Статус заказа нельзя вернуть на более ранний этап."""

    status_code = 409

    def __init__(self, current: str, requested: str):
        self.current = current
        self.requested = requested
        super().__init__(f"Cannot move order from '{current}' to '{requested}'")


class OrderAlreadyPaid(StorefrontError):
    status_code = 409

    def __init__(self, order_number: str):
        self.order_number = order_number
        super().__init__(f"Order {order_number} is already paid")


class PaymentGatewayError(StorefrontError):
    """Шлюз недоступен, ответил не-JSON или не уложился в таймаут."""

    status_code = 502


class PaymentInitiationError(StorefrontError):
    """Шлюз отклонил push-запрос на оплату."""

    status_code = 502

    def __init__(self, message: str | None = None, response: dict | None = None):
        self.response = response or {}
        super().__init__(message or "Failed to initiate M-Pesa payment")


class CheckoutSessionNotFound(StorefrontError):
    status_code = 404

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Checkout session not found: {session_id}")


class CheckoutInProgress(StorefrontError):
    """Для сессии уже идёт опрос статуса оплаты."""

    status_code = 409

    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"Checkout {session_id} is already waiting for payment confirmation")


class InvalidCheckoutState(StorefrontError):
    status_code = 409

    def __init__(self, action: str, state: str):
        self.action = action
        self.state = state
        super().__init__(f"Cannot {action} while checkout is '{state}'")


class CheckoutStepTimeout(StorefrontError):
    """Шаг оформления не уложился в отведённое время."""

    status_code = 504

    def __init__(self, step: str, seconds: float):
        self.step = step
        self.seconds = seconds
        super().__init__(f"Checkout step '{step}' timed out after {seconds:g}s")


class UserNotFound(StorefrontError):
    status_code = 404

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class EmailInUse(StorefrontError):
    status_code = 400

    def __init__(self, email: str):
        self.email = email
        super().__init__("Email already in use")


class IncorrectPassword(StorefrontError):
    status_code = 400

    def __init__(self):
        super().__init__("Current password is incorrect")


class InvalidRole(StorefrontError):
    """Назначить можно только user или admin; superadmin не выдаётся через API."""

    status_code = 400

    def __init__(self, role: str):
        self.role = role
        super().__init__(f"Invalid role: {role}")


class ProtectedAccount(StorefrontError):
    status_code = 403

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__("Cannot edit super admin")


class ContactNotFound(StorefrontError):
    status_code = 404

    def __init__(self, contact_id: int):
        self.contact_id = contact_id
        super().__init__(f"Contact message not found: {contact_id}")
