"""
Database Schemas for the storefront

Each Pydantic model describes the documents of one MongoDB collection.
Documents are stored with camelCase keys to match the storefront client.

Collections:
- products
- orders
"""
from enum import Enum
from typing import Any, List

from pydantic import BaseModel, ConfigDict, Field


class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: Any) -> "OrderStatus":
        """Case-insensitive lookup; raises ValueError for anything outside the enum."""
        return cls(str(value if value is not None else "").lower())


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "products"
    """
    name: str = Field(..., min_length=1, description="Product name")
    price: float = Field(..., gt=0, description="Unit price")
    category: str = Field("", description="Free-form category")
    image: str = Field("", description="Image URL")
    stock: int = Field(0, ge=0, description="Units in stock")


class OrderItem(BaseModel):
    """Line item snapshot taken when the order is placed."""
    id: Any = Field(..., description="Product ObjectId")
    name: str
    price: float
    qty: int = Field(..., ge=1, le=99)


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "orders"
    """
    model_config = ConfigDict(use_enum_values=True)

    userId: str
    email: str = ""
    name: str = ""
    phone: str = ""
    address: str = Field(..., min_length=1)
    lat: str = ""
    lng: str = ""
    pay: str = "cod"
    note: str = ""
    items: List[OrderItem] = Field(..., min_length=1)
    subTotal: float
    shipping: float
    total: float
    status: OrderStatus = Field(OrderStatus.PENDING, validate_default=True)
