"""
Admin dashboard counters.

Counts are cheap individually but the dashboard polls them, so the router
serves them through the app cache under STATS_CACHE_KEY. Anything that
changes subscriptions invalidates the ``admin:`` prefix.
"""
from datetime import datetime, timezone
from typing import Any, Dict

from sqlalchemy import func
from sqlalchemy.orm import Session

from core.cache import TTLCache
from core.config import settings
from models import LiveSession, Recording, Subscription, SubscriptionStatus, User

ADMIN_CACHE_PREFIX = "admin:"
STATS_CACHE_KEY = f"{ADMIN_CACHE_PREFIX}stats"


def _grouped(db: Session, column) -> Dict[str, int]:
    return {str(key): int(count) for key, count in db.query(column, func.count()).group_by(column).all()}


def compute_admin_stats(db: Session) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    return {
        "total_users": db.query(User).count(),
        "active_users": db.query(User).filter(User.is_active.is_(True)).count(),
        "users_by_role": _grouped(db, User.role),
        "active_subscribers": db.query(Subscription)
        .filter(Subscription.status == SubscriptionStatus.ACTIVE.value)
        .count(),
        "subscriptions_by_status": _grouped(db, Subscription.status),
        "subscriptions_by_tier": _grouped(db, Subscription.tier),
        "total_sessions": db.query(LiveSession).count(),
        "upcoming_sessions": db.query(LiveSession).filter(LiveSession.scheduled_at >= now).count(),
        "total_recordings": db.query(Recording).count(),
    }


def get_admin_stats(db: Session, cache: TTLCache) -> Dict[str, Any]:
    return cache.get_or_set(STATS_CACHE_KEY, lambda: compute_admin_stats(db), settings.CACHE_TTL_STATS)
