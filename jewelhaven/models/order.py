# jewelhaven/models/order.py
# Модели Order и OrderItem: суммы, статусы заказа и оплаты, снимок позиций.
from sqlalchemy import Column, Integer, String, ForeignKey, Float, DateTime, Enum, Boolean, Text
from sqlalchemy.orm import relationship
from datetime import datetime
from jewelhaven.db.base import Base
import enum

class OrderStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    paid = "paid"
    delivered = "delivered"
    completed = "completed"

# Статус заказа только растёт: откат на более ранний этап запрещён
STATUS_RANK = {status: rank for rank, status in enumerate(OrderStatus)}

class PaymentMethod(str, enum.Enum):
    mpesa = "mpesa"
    cod = "cod"

class PaymentStatus(str, enum.Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"

class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    order_number = Column(String, unique=True, index=True, nullable=False)
    status = Column(Enum(OrderStatus), default=OrderStatus.pending, nullable=False)
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    payment_status = Column(Enum(PaymentStatus), default=PaymentStatus.pending, nullable=False)
    mpesa_receipt_number = Column(String, nullable=True)
    mpesa_checkout_id = Column(String, nullable=True, index=True)
    subtotal = Column(Float, nullable=False)
    delivery_fee = Column(Float, default=0.0, nullable=False)
    total = Column(Float, nullable=False)
    delivery_name = Column(String, nullable=False)
    delivery_phone = Column(String, nullable=False)
    delivery_address = Column(Text, nullable=False)
    notes = Column(Text, nullable=True)
    stock_reconciled = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")

class OrderItem(Base):
    """Снимок товара на момент покупки; не связывается с каталогом для отображения."""
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="SET NULL"), nullable=True)
    product_name = Column(String, nullable=False)
    product_image = Column(Text, nullable=False, default="")
    price = Column(Float, nullable=False)
    quantity = Column(Integer, nullable=False)

    order = relationship("Order", back_populates="items")
