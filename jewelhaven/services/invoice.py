# jewelhaven/services/invoice.py
# Текстовый счёт по заказу: копия покупателя или копия администратора.

from jewelhaven.core.config import settings
from jewelhaven.models.order import Order

WIDTH = 60
AUDIENCES = ("customer", "admin")


def _money(value) -> str:
    return f"{settings.CURRENCY_LABEL} {float(value or 0):,.2f}"


def render_invoice(order: Order, audience: str = "customer") -> str:
    """Позиции берутся из снимка OrderItem, а не из текущего каталога."""
    if audience not in AUDIENCES:
        raise ValueError(f"Unknown invoice audience: {audience}")
    is_admin = audience == "admin"
    rule, thin = "=" * WIDTH, "-" * WIDTH
    created = order.created_at.strftime("%d/%m/%Y") if order.created_at else "N/A"

    lines = [
        rule,
        f"{settings.STORE_NAME} INVOICE",
        rule,
        "ADMIN COPY" if is_admin else "CUSTOMER COPY",
        "",
        f"Invoice Number: {order.order_number}",
        f"Date: {created}",
        f"Customer: {order.delivery_name or 'N/A'}",
        f"Phone: {order.delivery_phone or 'N/A'}",
        f"Address: {order.delivery_address or 'N/A'}",
        "",
        thin,
        "ORDER ITEMS:",
        thin,
    ]
    for item in order.items:
        lines += [
            item.product_name or "Product",
            f"  Price: {_money(item.price)}",
            f"  Quantity: {item.quantity}",
            f"  Total: {_money(item.price * item.quantity)}",
            "",
        ]
    lines += [
        thin,
        "SUMMARY:",
        thin,
        f"Subtotal: {_money(order.subtotal)}",
        f"Delivery Fee: {_money(order.delivery_fee)}",
        f"Total: {_money(order.total)}",
        "",
        f"Payment Method: {order.payment_method.value}",
        f"Payment Status: {order.payment_status.value}",
    ]
    if order.mpesa_receipt_number:
        lines.append(f"M-Pesa Receipt: {order.mpesa_receipt_number}")
    if is_admin:
        lines.append(f"Order Status: {order.status.value}")
        if order.notes:
            lines.append(f"Notes: {order.notes}")
    lines += ["", rule, f"Thank you for shopping with {settings.STORE_NAME.title()}!", rule, ""]
    return "\n".join(lines)


def invoice_filename(order: Order, audience: str) -> str:
    return f"{audience}-invoice-{order.order_number}.txt"
