"""
Database Schemas for the Toolstore

Each Pydantic model represents a collection in MongoDB.
Class name lowercased = collection name (e.g., PaymentRequest -> "paymentrequest").
Money is stored as integers in minor currency units (paise/cents).
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class Role(str, Enum):
    user = "user"
    admin = "admin"


class OrderStatus(str, Enum):
    pending = "pending"
    completed = "completed"
    cancelled = "cancelled"


class PaymentStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    delivered = "delivered"


class DeliveryType(str, Enum):
    course = "course"
    api = "api"
    tool = "tool"
    service = "service"


class User(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    open_id: str = Field(..., max_length=64, description="Identity provider subject, unique per user")
    name: Optional[str] = None
    email: Optional[EmailStr] = None
    login_method: Optional[str] = None
    role: Role = Role.user
    last_signed_in: Optional[datetime] = None


class Category(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    icon: Optional[str] = None


class Product(BaseModel):
    category_id: int
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: int = Field(..., ge=0)
    original_price: Optional[int] = Field(None, ge=0)
    image: Optional[str] = None
    stock: int = Field(0, ge=0)
    is_active: bool = True
    features: List[str] = []


class CartItem(BaseModel):
    user_id: int
    product_id: int
    quantity: int = Field(1, ge=1)


class OrderItem(BaseModel):
    product_id: int
    quantity: int = Field(..., ge=1)


class Order(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    user_id: int
    total_amount: int
    status: OrderStatus = OrderStatus.pending
    items: List[OrderItem] = []


class PaymentRequest(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    user_id: int
    product_id: int
    amount: int = Field(..., ge=0)
    status: PaymentStatus = PaymentStatus.pending
    transaction_id: str = Field(..., min_length=1, max_length=255, description="UTR or transaction reference")
    payment_method: str = Field("upi", max_length=50)
    notes: Optional[str] = None


class CourseDeliverable(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    product_id: int
    payment_request_id: int
    user_id: int
    delivery_type: DeliveryType
    access_link: Optional[str] = Field(None, max_length=500)
    api_key: Optional[str] = Field(None, max_length=500)
    credentials: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True


class AdminSettings(BaseModel):
    admin_id: int
    upi_id: str = Field(..., min_length=1, max_length=255)
    upi_name: Optional[str] = Field(None, max_length=255)
    qr_code: Optional[str] = Field(None, description="QR code image as an embedded data URL")
    bank_account: Optional[str] = Field(None, max_length=255)
    phone_number: Optional[str] = Field(None, max_length=20)
    is_active: bool = True


# The database viewer reads these from /schema
MODELS = {
    "user": User,
    "category": Category,
    "product": Product,
    "cartitem": CartItem,
    "order": Order,
    "paymentrequest": PaymentRequest,
    "coursedeliverable": CourseDeliverable,
    "adminsettings": AdminSettings,
}
