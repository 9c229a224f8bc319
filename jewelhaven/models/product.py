# jewelhaven/models/product.py
# Модель товара каталога: цена, остаток на складе, стоимость доставки.
from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, Text
from datetime import datetime
from jewelhaven.db.base import Base

class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    image = Column(Text, nullable=False, default="")
    category = Column(String, nullable=False, index=True)
    price = Column(Float, nullable=False)
    original_price = Column(Float, nullable=True)
    in_stock = Column(Boolean, default=True, nullable=False)
    stock_quantity = Column(Integer, default=0, nullable=False)
    delivery_fee = Column(Float, default=0.0, nullable=False)
    delivery_time = Column(String, nullable=True)
    featured = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
