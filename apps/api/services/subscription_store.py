"""
SQLAlchemy-backed persistence for subscription reconciliation.

Every write flushes but does not commit; the caller owns the transaction
so one webhook event lands atomically or not at all.
"""
from __future__ import annotations

from typing import Any, Dict, Optional
from uuid import UUID

from sqlalchemy import or_
from sqlalchemy.orm import Session

from models import Notification, PricingPlan, Subscription, User
from services import notifications


class SubscriptionStore:
    def __init__(self, db: Session) -> None:
        self.db = db

    def find_user_by_email(self, email: str) -> Optional[User]:
        return self.db.query(User).filter(User.email == email.lower()).first()

    def create_user(self, fields: Dict[str, Any]) -> User:
        data = dict(fields)
        data["email"] = data["email"].lower()
        user = User(**data)
        self.db.add(user)
        self.db.flush()
        return user

    def find_subscription_by_provider_id(self, provider_subscription_id: str) -> Optional[Subscription]:
        if not provider_subscription_id:
            return None
        return (
            self.db.query(Subscription)
            .filter(Subscription.stripe_subscription_id == provider_subscription_id)
            .first()
        )

    def upsert_subscription_for_user(self, user_id: UUID, fields: Dict[str, Any]) -> Subscription:
        """Create or update the user's single subscription row (unique on user_id)."""
        sub = self.db.query(Subscription).filter(Subscription.user_id == user_id).first()
        if sub is None:
            sub = Subscription(user_id=user_id)
            self.db.add(sub)
        for key, value in fields.items():
            setattr(sub, key, value)
        self.db.flush()
        return sub

    def update_subscription(self, subscription_id: UUID, fields: Dict[str, Any]) -> Subscription:
        sub = self.db.get(Subscription, subscription_id)
        if sub is None:
            raise LookupError(f"Subscription {subscription_id} vanished mid-update")
        for key, value in fields.items():
            setattr(sub, key, value)
        self.db.flush()
        return sub

    def create_notification(self, fields: Dict[str, Any]) -> Notification:
        return notifications.create_notification(self.db, **fields)

    def find_plan_by_price_id(self, price_id: Optional[str]) -> Optional[PricingPlan]:
        if not price_id:
            return None
        return (
            self.db.query(PricingPlan)
            .filter(
                or_(
                    PricingPlan.stripe_price_id_monthly == price_id,
                    PricingPlan.stripe_price_id_yearly == price_id,
                )
            )
            .first()
        )

    def commit(self) -> None:
        self.db.commit()

    def rollback(self) -> None:
        self.db.rollback()
