"""
Billing defaults in one place.

Checkout metadata is optional field-by-field; whatever the payment flow
leaves out is filled from CHECKOUT_DEFAULTS. Tests assert against this
table rather than repeating literals.
"""
from datetime import timedelta
from typing import Dict, List, Optional

from models import NotificationType, Subject, SubscriptionStatus, SubscriptionTier, UserRole, YearGroup


CHECKOUT_DEFAULTS = {
    "plan_tier": SubscriptionTier.BASIC.value,
    "first_name": "New",
    "last_name": "Student",
    "year_group": YearGroup.GCSE.value,
    "subjects": [Subject.MATHS.value, Subject.ENGLISH.value],
    "role": UserRole.STUDENT.value,
}

# Checkout does not carry the billing period; assume a month until the
# subscription.updated event brings the real window.
INITIAL_PERIOD = timedelta(days=30)

# Stripe subscription.status -> local status. Anything unlisted maps to ACTIVE.
PROVIDER_STATUS_MAP: Dict[str, str] = {
    "active": SubscriptionStatus.ACTIVE.value,
    "canceled": SubscriptionStatus.CANCELLED.value,
    "past_due": SubscriptionStatus.PAST_DUE.value,
    "unpaid": SubscriptionStatus.EXPIRED.value,
}


def map_provider_status(provider_status: Optional[str]) -> str:
    return PROVIDER_STATUS_MAP.get((provider_status or "").lower(), SubscriptionStatus.ACTIVE.value)


def normalize_tier(raw: Optional[str]) -> str:
    """Coerce a metadata tier to BASIC|PREMIUM, defaulting to BASIC."""
    value = (raw or "").strip().upper()
    if value in SubscriptionTier.__members__:
        return value
    return CHECKOUT_DEFAULTS["plan_tier"]


def normalize_year_group(raw: Optional[str]) -> str:
    """Coerce a metadata year group to a YearGroup value, defaulting to GCSE."""
    value = str(raw or "").strip().upper().replace("-", "_").replace(" ", "_")
    if value in YearGroup.__members__:
        return YearGroup[value].value
    return CHECKOUT_DEFAULTS["year_group"]


def normalize_subjects(raw: List[str]) -> List[str]:
    """Keep known subjects in order, without duplicates; defaults if none survive."""
    subjects: List[str] = []
    for s in raw:
        value = str(s).strip().upper()
        if value in Subject.__members__ and value not in subjects:
            subjects.append(value)
    return subjects or list(CHECKOUT_DEFAULTS["subjects"])


def grants_homework_access(tier: str) -> bool:
    return tier == SubscriptionTier.PREMIUM.value


# Notification copy emitted by the reconciler.
WELCOME_TITLE = "Welcome to BrainBooster! 🎉"
WELCOME_LINK = "/dashboard"

NOTIFICATION_TEMPLATES = {
    "subscription_cancelled": {
        "type": NotificationType.SUBSCRIPTION.value,
        "title": "Subscription Cancelled",
        "message": "Your subscription has been cancelled. You can resubscribe anytime to regain access.",
        "link": "/pricing",
    },
    "payment_failed": {
        "type": NotificationType.SUBSCRIPTION.value,
        "title": "Payment Failed",
        "message": "We couldn't process your payment. Please update your payment method to continue your subscription.",
        "link": "/dashboard/subscription",
    },
}


def welcome_notification(tier: str) -> dict:
    return {
        "type": NotificationType.SYSTEM.value,
        "title": WELCOME_TITLE,
        "message": f"Your {tier} subscription is now active. Check out your timetable and start learning!",
        "link": WELCOME_LINK,
    }
