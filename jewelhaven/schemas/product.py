# jewelhaven/schemas/product.py
# Pydantic-схемы товаров каталога.
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ProductBase(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = ""
    image: str = ""
    category: str = Field(..., min_length=1)
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(default=None, ge=0)
    in_stock: bool = True
    stock_quantity: int = Field(default=0, ge=0)
    delivery_fee: float = Field(default=0.0, ge=0)
    delivery_time: Optional[str] = None
    featured: bool = False


class ProductCreate(ProductBase):
    pass


class ProductUpdate(BaseModel):
    """Частичное обновление: передаются только изменяемые поля."""

    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    image: Optional[str] = None
    category: Optional[str] = Field(default=None, min_length=1)
    price: Optional[float] = Field(default=None, ge=0)
    original_price: Optional[float] = Field(default=None, ge=0)
    in_stock: Optional[bool] = None
    stock_quantity: Optional[int] = Field(default=None, ge=0)
    delivery_fee: Optional[float] = Field(default=None, ge=0)
    delivery_time: Optional[str] = None
    featured: Optional[bool] = None


class ProductOut(ProductBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    created_at: Optional[datetime] = None


class ProductPage(BaseModel):
    products: list[ProductOut]
    total: int
    page: int
    limit: int
    total_pages: int
