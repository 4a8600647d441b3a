"""
Database Schemas for the storefront

Each Pydantic model represents a collection in MongoDB.
Collection name is the lowercase of the class name.
"""
from datetime import datetime
from typing import Any, List, Optional, Union

from pydantic import BaseModel, EmailStr, Field

from emails import TrackingProvider
from orders import OrderStatus


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="Hashed password")
    is_active: bool = Field(True)


class Category(BaseModel):
    name: str = Field(...)
    parent_id: Optional[str] = Field(None, description="Parent category id, empty for top-level")


class Product(BaseModel):
    title: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    categories: Union[List[str], str] = Field(default_factory=list, description="Category id or ids")
    search_keywords: List[str] = []
    is_active: bool = True
    sale_price: Optional[float] = Field(None, ge=0)
    sale_start: Optional[datetime] = None
    sale_end: Optional[datetime] = None
    units_sold: int = 0


class Customer(BaseModel):
    first_name: str
    last_name: str
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: str
    postal_code: str
    city: str
    comment: Optional[str] = None


class OrderItem(BaseModel):
    id: Optional[str] = Field(None, description="Product id")
    title: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    original_price: Optional[float] = None
    is_on_sale: bool = False


class Order(BaseModel):
    customer: Customer
    customer_number: Optional[int] = None
    items: List[OrderItem]
    subtotal: float
    shipping: float
    savings: float = 0
    total: float
    is_demo: bool = False


# Request bodies

class SelectionToggle(BaseModel):
    selected: List[str] = []
    category_id: str


class StatusUpdate(BaseModel):
    status: OrderStatus


class TrackingUpdate(BaseModel):
    tracking_code: str = Field(..., min_length=1)
    shipping_provider: TrackingProvider = TrackingProvider.POSTEN


class ContactRequest(BaseModel):
    name: Optional[Any] = None
    email: Optional[Any] = None
    subject: Optional[Any] = None
    message: Optional[Any] = None
