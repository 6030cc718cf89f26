"""
Database Schemas for the marketplace

Each Pydantic model corresponds to a MongoDB collection. Collection name is the
lowercase class name. References between collections are stored as string ids.
"""
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional, get_args

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    DELIVERED = "DELIVERED"
    CANCELED = "CANCELED"


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELED})

Role = Literal["CUSTOMER", "VENDOR", "SHIPPER"]

ProductCategory = Literal[
    "ELECTRONICS",
    "FASHION",
    "HOME",
    "BEAUTY",
    "SPORTS",
    "BOOKS",
    "TOYS",
    "GROCERY",
    "OTHERS",
]
PRODUCT_CATEGORIES = get_args(ProductCategory)


class User(BaseModel):
    username: str = Field(..., min_length=3, max_length=30)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of the password")
    role: Role
    # role specific
    name: Optional[str] = None
    address: Optional[str] = None
    business_name: Optional[str] = None
    business_address: Optional[str] = None
    hub_id: Optional[str] = Field(None, description="Distribution hub of a shipper")


class DistributionHub(BaseModel):
    hub_name: str = Field(..., min_length=1)
    hub_location: str = Field(..., min_length=1)


class Product(BaseModel):
    name: str = Field(..., min_length=10, max_length=20)
    price: float = Field(..., ge=0.01)
    available_stock: int = Field(0, ge=0)
    vendor_id: str
    sale_percentage: float = Field(0, ge=0, le=100)
    image_url: Optional[str] = None
    description: Optional[str] = Field(None, max_length=500)
    category: ProductCategory = "OTHERS"


class CartItem(BaseModel):
    customer_id: str
    product_id: str
    quantity: int = Field(..., ge=1)


class OrderItem(BaseModel):
    order_id: str
    product_id: str
    quantity: int = Field(..., ge=1)
    price_at_purchase: float = Field(..., ge=0, description="Unit price after sale at checkout")


class StatusChange(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    status: OrderStatus
    at: datetime
    actor: str


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    customer_id: str
    vendor_id: str
    hub_id: str
    order_date: datetime
    status: OrderStatus = OrderStatus.PENDING
    total_price: float = Field(..., ge=0)
    cancel_reason: Optional[str] = None
    status_history: List[StatusChange] = []
