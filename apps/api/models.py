from sqlalchemy import Column, Integer, Boolean, DateTime, ForeignKey, Text, Index, JSON, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from core.database import Base
import enum
import uuid


# JSONB on Postgres, plain JSON elsewhere (SQLite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")


class UserRole(str, enum.Enum):
    STUDENT = "STUDENT"
    TEACHER = "TEACHER"
    ADMIN = "ADMIN"


class Subject(str, enum.Enum):
    MATHS = "MATHS"
    ENGLISH = "ENGLISH"


class YearGroup(str, enum.Enum):
    KS3 = "KS3"
    KS4 = "KS4"
    GCSE = "GCSE"
    A_LEVEL = "A_LEVEL"


class SubscriptionTier(str, enum.Enum):
    BASIC = "BASIC"
    PREMIUM = "PREMIUM"


class SubscriptionStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    PAST_DUE = "PAST_DUE"


class NotificationType(str, enum.Enum):
    SESSION_REMINDER = "SESSION_REMINDER"
    NEW_RECORDING = "NEW_RECORDING"
    SUBSCRIPTION = "SUBSCRIPTION"
    SYSTEM = "SYSTEM"


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(Text, unique=True, nullable=False, index=True)  # always lower-case
    password_hash = Column(Text, nullable=True)
    first_name = Column(Text, nullable=False)
    last_name = Column(Text, nullable=False)
    role = Column(Text, default=UserRole.STUDENT.value, nullable=False)  # STUDENT|TEACHER|ADMIN
    avatar = Column(Text, nullable=True)

    # Never hard-deleted; deactivated instead.
    is_active = Column(Boolean, default=True, nullable=False)

    subjects = Column(JSONType, nullable=False, default=list)  # list of Subject values
    year_group = Column(Text, nullable=True)  # YearGroup value

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    subscription = relationship("Subscription", back_populates="user", uselist=False)
    notifications = relationship("Notification", back_populates="user", order_by="Notification.created_at.desc()")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class Subscription(Base):
    """
    Stripe subscription mirror.

    Stripe is the billing source of truth; status only moves in response to
    verified webhook events. Rows are never deleted, only CANCELLED.
    """

    __tablename__ = "subscriptions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, unique=True, index=True)

    stripe_customer_id = Column(Text, nullable=True)
    stripe_subscription_id = Column(Text, nullable=True)
    stripe_price_id = Column(Text, nullable=True)

    tier = Column(Text, default=SubscriptionTier.BASIC.value, nullable=False)
    status = Column(Text, default=SubscriptionStatus.ACTIVE.value, nullable=False)
    current_period_start = Column(DateTime(timezone=True), nullable=True)
    current_period_end = Column(DateTime(timezone=True), nullable=True)

    # Homework portal is a PREMIUM perk with its own login.
    homework_site_access = Column(Boolean, default=False, nullable=False)
    homework_site_username = Column(Text, nullable=True)
    homework_site_password = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User", back_populates="subscription")

    __table_args__ = (
        Index("ix_subscriptions_stripe_customer_id", "stripe_customer_id"),
        Index("ix_subscriptions_stripe_subscription_id", "stripe_subscription_id"),
        Index("ix_subscriptions_status", "status"),
    )


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    type = Column(Text, nullable=False)  # NotificationType value
    title = Column(Text, nullable=False)
    message = Column(Text, nullable=False)
    link = Column(Text, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    user = relationship("User", back_populates="notifications")

    __table_args__ = (
        Index("ix_notifications_user_unread", "user_id", "is_read"),
    )


class PricingPlan(Base):
    """Sellable plan. Prices are integer pence."""

    __tablename__ = "pricing_plans"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    tier = Column(Text, nullable=False)  # SubscriptionTier value
    price_monthly = Column(Integer, nullable=False)
    price_yearly = Column(Integer, nullable=True)
    features = Column(JSONType, nullable=False, default=list)
    subjects = Column(JSONType, nullable=False, default=list)

    stripe_product_id = Column(Text, nullable=True)
    stripe_price_id_monthly = Column(Text, nullable=True, index=True)
    stripe_price_id_yearly = Column(Text, nullable=True, index=True)

    is_popular = Column(Boolean, default=False, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    sort_order = Column(Integer, default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def price_id_for(self, billing_interval: str):
        if billing_interval == "yearly":
            return self.stripe_price_id_yearly
        return self.stripe_price_id_monthly


class LiveSession(Base):
    """Scheduled live class. Read here only to feed the admin activity log."""

    __tablename__ = "live_sessions"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    subject = Column(Text, nullable=False)
    year_group = Column(Text, nullable=False)
    teacher_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    teacher = relationship("User", lazy="joined")


class Recording(Base):
    __tablename__ = "recordings"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    subject = Column(Text, nullable=False)
    year_group = Column(Text, nullable=False)
    teacher_id = Column(Uuid(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    duration = Column(Integer, nullable=True)  # seconds
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    teacher = relationship("User", lazy="joined")
