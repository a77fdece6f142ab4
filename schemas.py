"""
Database Schemas

MongoDB collection schemas as Pydantic models. Each model maps to one
collection, named after the model in lowercase:
- User -> "user" collection
- Product -> "product" collection
- Cart -> "cart" collection
- Order -> "order" collection

Line items, reviews and addresses are embedded documents, never collections.
References to other documents are stored as ObjectId strings.
"""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Address(BaseModel):
    id: Optional[str] = Field(None, description="Address id, assigned on save")
    street: str
    city: str
    state: str
    postal_code: str
    country: str
    is_default: bool = False


class User(BaseModel):
    """
    Users collection schema
    Collection name: "user"
    """
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lowercase")
    password_hash: str = Field(..., description="Password hash (server-side)")
    addresses: List[Address] = Field(default_factory=list, description="Saved shipping addresses")
    role: str = Field("user", description="Role: user | admin")


class Review(BaseModel):
    user_id: str = Field(..., description="Reviewer ObjectId as string")
    name: str = Field(..., description="Reviewer name at review time")
    rating: int = Field(..., ge=1, le=5)
    comment: str
    created_at: Optional[datetime] = None


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    name: str = Field(..., description="Product name")
    description: str = Field("Sample description", description="Product description")
    price: float = Field(..., ge=0, description="Price in dollars")
    images: List[str] = Field(default_factory=list, description="Image URLs")
    category: str = Field("Sample category", description="Product category")
    brand: str = Field("Unbranded", description="Brand")
    stock: int = Field(0, ge=0, description="Units in stock")
    reviews: List[Review] = Field(default_factory=list)
    num_reviews: int = Field(0, ge=0)
    average_rating: float = Field(0, ge=0, le=5, description="Mean of review ratings")
    user_id: Optional[str] = Field(None, description="Admin who created the product")


class CartItem(BaseModel):
    product_id: str = Field(..., description="Product ObjectId as string")
    name: str
    image: str
    price: float = Field(..., ge=0, description="Price when added (refreshed on quantity update)")
    quantity: int = Field(..., ge=1)


class Cart(BaseModel):
    """
    Carts collection schema, one per user
    Collection name: "cart"
    """
    user_id: str = Field(..., description="Owner ObjectId as string")
    items: List[CartItem] = Field(default_factory=list)
    total_price: float = Field(0, ge=0)
    total_items: int = Field(0, ge=0)
    version: int = Field(0, description="Bumped on every write, used for optimistic concurrency")


class OrderStatus(str, Enum):
    PENDING = "Pending"
    PROCESSING = "Processing"
    SHIPPED = "Shipped"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class OrderItem(BaseModel):
    product_id: str = Field(..., description="Product ObjectId as string")
    name: str
    image: str
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class ShippingAddress(BaseModel):
    street: str
    city: str
    state: str
    postal_code: str
    country: str


class PaymentResult(BaseModel):
    id: Optional[str] = Field(None, description="Transaction id from the payment provider")
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = Field(None, description="Payer email from the payment provider")


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    model_config = ConfigDict(use_enum_values=True)

    user_id: str = Field(..., description="User ObjectId as string")
    order_items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: str = "Stripe"
    payment_result: Optional[PaymentResult] = None
    items_price: float = Field(..., ge=0)
    tax_price: float = Field(..., ge=0)
    shipping_price: float = Field(..., ge=0)
    total_amount: float = Field(..., ge=0)
    order_status: OrderStatus = Field(OrderStatus.PENDING, validate_default=True)
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
