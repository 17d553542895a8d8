"""
Database Schemas for the Marketplace

MongoDB collections are defined below using Pydantic models. Each class name is
converted to snake_case for the collection name (ShopChat -> "shop_chat").

We will use these collections:
- user: accounts of every role
- session: login sessions, used for presence
- shop, shop_staff, product, review: the catalog
- complaint, shop_complaint, complaint_message: support tickets
- shop_chat, shop_chat_message: customer <-> shop conversations
- cart, order: shopping
- banned_name, site_settings: admin console
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from roles import Role


class ShopStatus(str, Enum):
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"
    PENDING = "PENDING"


class ComplaintStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    RESOLVED = "RESOLVED"
    REJECTED = "REJECTED"


class SenderType(str, Enum):
    USER = "USER"
    SHOP = "SHOP"
    SYSTEM = "SYSTEM"


class OrderStatus(str, Enum):
    NEW = "NEW"
    PAID = "PAID"
    SHIPPED = "SHIPPED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Document(BaseModel):
    model_config = ConfigDict(use_enum_values=True, validate_default=True)


class User(Document):
    username: str = Field(..., min_length=3, max_length=40)
    password_hash: str = Field(..., description="BCrypt hash of password")
    display_name: Optional[str] = Field(None, max_length=60)
    avatar_url: Optional[str] = None
    bio: Optional[str] = Field(None, max_length=1000)
    role: Role = Role.USER
    is_premium: bool = False
    is_verified: bool = False
    is_blocked: bool = False
    block_reason: Optional[str] = None
    blocked_at: Optional[datetime] = None
    block_duration: Optional[str] = Field(None, description="Advisory text shown to the user")
    block_expires_at: Optional[datetime] = Field(None, description="None while blocked means permanent")
    blocked_by_id: Optional[str] = None
    last_login_at: Optional[datetime] = None


class Session(Document):
    user_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    is_active: bool = True


class Shop(Document):
    owner_id: str = Field(..., description="Reference to user _id (owner)")
    name: str = Field(..., min_length=1, max_length=120)
    description: str = ""
    avatar_url: str = ""
    status: ShopStatus = ShopStatus.ACTIVE
    is_verified: bool = False
    block_reason: Optional[str] = None
    rating: int = 0
    transactions_count: int = 0


class ShopStaff(Document):
    shop_id: str
    user_id: str
    role: Role = Field(..., description="SHOP_OWNER | SHOP_MAIN | SHOP_STAFF")
    added_at: datetime


class Product(Document):
    shop_id: str
    name: str = Field(..., min_length=1, max_length=200)
    description: str = ""
    avatar_url: str = ""
    price: float = Field(..., ge=0)
    quantity: int = Field(0, ge=0)
    rating: int = 0


class Review(Document):
    product_id: str
    user_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""


class Complaint(Document):
    user_id: str
    target_user_id: Optional[str] = None
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1)
    status: ComplaintStatus = ComplaintStatus.PENDING
    assigned_to_id: Optional[str] = None
    resolved_at: Optional[datetime] = None


class ShopComplaint(Complaint):
    shop_id: str


class ComplaintMessage(Document):
    complaint_id: str
    user_id: Optional[str] = None
    message: str
    is_system_message: bool = False


class ShopChat(Document):
    shop_id: str
    user_id: str
    last_message_at: datetime


class ShopChatMessage(Document):
    chat_id: str
    sender_id: Optional[str] = None
    sender_type: SenderType
    message: str
    is_read: bool = False


class CartItem(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class Cart(Document):
    user_id: str
    items: List[CartItem] = Field(default_factory=list)


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int = Field(..., ge=1)


class Order(Document):
    user_id: str
    shop_id: str
    items: List[OrderItem]
    total: float = Field(..., ge=0)
    status: OrderStatus = OrderStatus.NEW


class BannedName(Document):
    name: str = Field(..., min_length=1, max_length=60)


class SiteSettings(Document):
    site_name: str = Field("Marketplace", min_length=1)
    site_description: str = ""
    contact_email: Optional[EmailStr] = None
    maintenance_mode: bool = False
    registration_enabled: bool = True
    max_shops_per_user: int = Field(3, ge=1)
    max_products_per_shop: int = Field(500, ge=1)
    commission_rate: float = Field(0, ge=0, le=100)
    terms_and_conditions: str = ""
    privacy_policy: str = ""
    about_us: str = ""
