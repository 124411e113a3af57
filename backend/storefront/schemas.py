"""
Pydantic Schemas
================

Request bodies (validated by FastAPI before the endpoint runs) and response
models (built from ORM objects with from_attributes).

Decimal fields serialize to JSON strings such as "275.00" so prices never
pass through float.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

# ============================================================================
# AUTH / USERS
# ============================================================================


class UserRegister(BaseModel):
    name: str = Field(..., min_length=2)
    email: EmailStr
    password: str = Field(..., min_length=8)


class UserLogin(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2)
    email: Optional[EmailStr] = None


class User(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: str
    role: str
    created_at: datetime
    updated_at: datetime


class UserWithToken(BaseModel):
    user: User
    token: str


# ============================================================================
# CATALOG
# ============================================================================


class CategoryCreate(BaseModel):
    name: str = Field(..., min_length=2)
    description: Optional[str] = None


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2)
    description: Optional[str] = None


class Category(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=3)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0, max_digits=10, decimal_places=2)
    stock_quantity: int = Field(..., ge=0)
    category_id: int


class ProductUpdate(BaseModel):
    """Partial update: only fields sent by the client are applied."""

    name: Optional[str] = Field(None, min_length=3)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0, max_digits=10, decimal_places=2)
    stock_quantity: Optional[int] = Field(None, ge=0)
    category_id: Optional[int] = None


class Product(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    stock_quantity: int
    category_id: int
    created_at: datetime
    updated_at: datetime
    category: Optional[Category] = None


class ProductFilters(BaseModel):
    category_id: Optional[int] = None
    min_price: Optional[Decimal] = None
    max_price: Optional[Decimal] = None
    search: Optional[str] = None


class Pagination(BaseModel):
    current_page: int
    last_page: int
    per_page: int
    total: int


class ProductPage(BaseModel):
    products: List[Product]
    pagination: Pagination


# ============================================================================
# CART
# ============================================================================


class CartItemIn(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)


class Cart(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    created_at: datetime
    updated_at: datetime


class CartItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    cart_id: int
    product_id: int
    quantity: int
    created_at: datetime
    updated_at: datetime
    product: Product


class CartView(BaseModel):
    cart: Cart
    items: List[CartItem]
    total: Decimal


# ============================================================================
# ORDERS
# ============================================================================


class OrderItem(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    product_id: int
    quantity: int
    price: Decimal
    created_at: datetime
    updated_at: datetime
    product: Product


class Order(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    total_amount: Decimal
    status: str
    created_at: datetime
    updated_at: datetime
    order_items: List[OrderItem] = []


class PlacedOrder(BaseModel):
    order: Order
    order_items: List[OrderItem]
