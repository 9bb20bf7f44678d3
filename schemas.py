# schemas.py

from datetime import datetime
from typing import List, Optional, Literal

from pydantic import BaseModel, Field, EmailStr

# ------------------------------------------------------------
# Shared Sub-Documents
# ------------------------------------------------------------

ORDER_STATUSES = (
    "Pending",
    "Processing",
    "Shipped",
    "Delivered",
    "Cancelled",
    "Cancelled by User",
)

REFUND_STATUSES = ("None", "Processing", "Success", "Failed")


class UserAddress(BaseModel):
    """
    Saved address on the user's profile (address book).
    """
    name: str = Field(..., min_length=1, max_length=80)
    phone: str = Field(..., min_length=7, max_length=20)
    street: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1, max_length=80)
    postal_code: str = Field(..., min_length=3, max_length=12)


class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=80)
    phone: str = Field(..., min_length=7, max_length=20)
    house_no: str = Field(..., min_length=1, max_length=60)
    street: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1, max_length=80)
    state: str = Field(..., min_length=1, max_length=80)
    zip: str = Field(..., min_length=3, max_length=12)


class OrderItemIn(BaseModel):
    product_id: int
    qty: int = Field(1, ge=1, le=999)

# ------------------------------------------------------------
# Users / Auth
# ------------------------------------------------------------

class User(BaseModel):
    """
    User document. Accounts are email + password only;
    role is "user" or "admin".
    """
    user_id: int
    name: str
    email: EmailStr
    password_hash: Optional[str] = None
    role: Literal["user", "admin"] = "user"
    phone: Optional[str] = None
    addresses: List[UserAddress] = Field(default_factory=list)

    # spin-wheel gating
    last_spin_time: Optional[datetime] = None
    last_order_completion_time: Optional[datetime] = None

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class RegisterIn(BaseModel):
    name: str = ""
    email: str = ""
    password: str = ""


class LoginIn(BaseModel):
    email: str = ""
    password: str = ""


class ProfileUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=80)
    phone: Optional[str] = Field(default=None, min_length=10, max_length=15, pattern=r"^\d+$")
    addresses: Optional[List[UserAddress]] = None


class RoleUpdateIn(BaseModel):
    role: str

# ------------------------------------------------------------
# Auth: Sessions (for cookies)
# ------------------------------------------------------------

class SessionUser(BaseModel):
    """
    Compact user object kept on the session for authorization checks.
    """
    id: int
    name: str
    email: str
    role: str


class Session(BaseModel):
    session_id: str
    user: SessionUser
    created_at: datetime
    last_seen_at: datetime
    expires_at: datetime

# ------------------------------------------------------------
# Products
# ------------------------------------------------------------

class Review(BaseModel):
    review_id: int
    user_id: int
    name: str
    rating: int = Field(..., ge=1, le=5)
    comment: str
    created_at: datetime
    updated_at: datetime


class Product(BaseModel):
    product_id: int
    name: str
    base_price: float = Field(..., ge=0)
    unit: str = "kg"
    category: Optional[str] = None
    desc: str = ""
    image: Optional[str] = None
    trending: bool = False
    stock: Literal["in", "out"] = "in"
    active: bool = True

    reviews: List[Review] = Field(default_factory=list)
    rating: float = 0.0
    num_reviews: int = 0

    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ProductUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    category: Optional[str] = None
    desc: Optional[str] = None
    trending: Optional[bool] = None
    stock: Optional[Literal["in", "out"]] = None
    active: Optional[bool] = None
    image: Optional[str] = None
    base_price: Optional[float] = Field(default=None, ge=0)
    unit: Optional[str] = Field(default=None, min_length=1, max_length=20)


class ReviewIn(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1, max_length=2000)

# ------------------------------------------------------------
# Orders
# ------------------------------------------------------------

class OrderItem(BaseModel):
    product_id: int
    name: str
    price: float
    qty: int
    image: Optional[str] = None


class Order(BaseModel):
    order_id: int
    user_id: int

    items: List[OrderItem]

    # pricing breakdown (server-side, see pricing.compute_totals)
    items_price: float
    tax_price: float
    shipping_price: float
    discount: float = 0.0
    coupon_code: Optional[str] = None
    total_amount: float

    payment_method: Literal["COD", "Prepaid"] = "COD"
    razorpay_order_id: Optional[str] = None
    payment_id: Optional[str] = None
    is_paid: bool = False
    paid_at: Optional[datetime] = None

    shipping_address: ShippingAddress

    status: Literal[ORDER_STATUSES] = "Pending"
    refund_status: Literal[REFUND_STATUSES] = "None"
    cancel_reason: str = ""

    delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class PlaceOrderIn(BaseModel):
    items: List[OrderItemIn] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    coupon_code: Optional[str] = None


class CheckoutIn(PlaceOrderIn):
    payment_method: Literal["COD", "Prepaid"] = "COD"


class OrderStatusUpdateIn(BaseModel):
    status: Optional[Literal[ORDER_STATUSES]] = None
    refund_status: Optional[Literal[REFUND_STATUSES]] = None


class CancelOrderIn(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class CartTotalsIn(BaseModel):
    items: List[OrderItemIn] = Field(default_factory=list)
    coupon_code: Optional[str] = None

# ------------------------------------------------------------
# Payments
# ------------------------------------------------------------

class PaymentVerifyIn(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str


class RefundIn(BaseModel):
    order_id: int

# ------------------------------------------------------------
# Coupons
# ------------------------------------------------------------

class Coupon(BaseModel):
    code: str = Field(..., min_length=2, max_length=32)           # e.g. "SEABITE10"

    # discount rules
    discount_type: Literal["percent", "flat"] = "percent"         # flat = rupees off
    value: float = Field(..., gt=0)                                # e.g. 20 (means 20% or Rs 20)
    max_discount: float = Field(default=0, ge=0)                   # 0 = no cap
    min_order_amount: float = Field(default=0, ge=0)
    is_active: bool = True

    # spin-wheel rewards are bound to one account
    is_spin_coupon: bool = False
    user_email: Optional[str] = None
    expires_at: Optional[datetime] = None

    # usage limits
    max_uses: int = Field(default=0, ge=0)                         # 0 = unlimited
    used_count: int = Field(default=0, ge=0)

    created_at: Optional[datetime] = None


class CouponCreateIn(BaseModel):
    code: str = Field(..., min_length=2, max_length=32)
    discount_type: Literal["percent", "flat"] = "percent"
    value: float = Field(..., gt=0)
    max_discount: float = Field(default=0, ge=0)
    min_order_amount: float = Field(default=0, ge=0)
    is_active: bool = True
    max_uses: int = Field(default=0, ge=0)
    expires_at: Optional[datetime] = None


class CouponUpdateIn(BaseModel):
    discount_type: Optional[Literal["percent", "flat"]] = None
    value: Optional[float] = Field(default=None, gt=0)
    max_discount: Optional[float] = Field(default=None, ge=0)
    min_order_amount: Optional[float] = Field(default=None, ge=0)
    is_active: Optional[bool] = None
    max_uses: Optional[int] = Field(default=None, ge=0)
    expires_at: Optional[datetime] = None


class CouponValidateIn(BaseModel):
    code: Optional[str] = None
    cart_total: float = Field(default=0, ge=0)
    email: Optional[str] = None
    is_auto_check: bool = False

# ------------------------------------------------------------
# Notifications
# ------------------------------------------------------------

class Notification(BaseModel):
    notification_id: int
    user_id: int
    message: str
    order_id: Optional[int] = None
    status_type: str = "Pending"
    read: bool = False
    created_at: datetime

# ------------------------------------------------------------
# Contact messages
# ------------------------------------------------------------

class ContactCreate(BaseModel):
    """
    Incoming payload from the Contact Us form.
    Both fields are checked by the endpoint so the client gets one message.
    """
    email: str = ""
    message: str = ""


class ContactInDB(BaseModel):
    message_id: int = Field(..., ge=1)
    email: EmailStr
    message: str
    created_at: datetime

    is_replied: bool = False
    reply_subject: Optional[str] = Field(default=None, max_length=150)
    reply_message: Optional[str] = Field(default=None, max_length=8000)
    replied_at: Optional[datetime] = None


class AdminReplyIn(BaseModel):
    """
    Admin panel payload when replying to a message.
    This reply will be saved AND emailed to the sender.
    """
    subject: str = Field(..., min_length=2, max_length=150)
    message: str = Field(..., min_length=2, max_length=8000)
