from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from datetime import datetime
from uuid import UUID
from typing import Optional, List, Dict, Any, Literal

from models import Subject, YearGroup


class UserResponse(BaseModel):
    id: UUID
    email: str
    first_name: str
    last_name: str
    role: str
    avatar: Optional[str] = None
    is_active: bool
    subjects: List[str] = []
    year_group: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SubscriptionResponse(BaseModel):
    id: UUID
    tier: str
    status: str
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    homework_site_access: bool = False
    homework_site_username: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class NotificationResponse(BaseModel):
    id: UUID
    type: str
    title: str
    message: str
    link: Optional[str] = None
    is_read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]
    unread_count: int


class PricingPlanResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    tier: str
    price_monthly: int  # pence
    price_yearly: Optional[int] = None
    features: List[str] = []
    subjects: List[str] = []
    is_popular: bool = False
    is_active: bool = True
    sort_order: int = 0

    model_config = ConfigDict(from_attributes=True)


class CheckoutRequest(BaseModel):
    """Payment-first signup: the account is created once Stripe confirms payment."""
    plan_id: UUID
    billing_interval: Literal["monthly", "yearly"] = "monthly"
    email: EmailStr
    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    year_group: YearGroup
    subjects: List[Subject] = Field(min_length=1)

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        return v.lower()


class CheckoutResponse(BaseModel):
    session_id: str
    url: str


class PortalResponse(BaseModel):
    url: str


class ActivityItem(BaseModel):
    id: str
    type: str
    description: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    user_role: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int


class ActivityPage(BaseModel):
    data: List[ActivityItem]
    pagination: Pagination
