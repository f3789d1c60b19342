"""
Admin dashboard endpoints.

Read-only views for ADMIN users: the synthesized activity feed and cached
platform counters.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.auth import require_admin
from core.cache import TTLCache, get_cache
from core.database import get_db
from models import User
from schemas import ActivityPage
from services.activity_feed import ACTIVITY_TYPES, DEFAULT_LIMIT, get_activity_page
from services.dashboard_stats import get_admin_stats

router = APIRouter(prefix="/v1/admin", tags=["admin"])


@router.get("/activity", response_model=ActivityPage)
def get_activity(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_LIMIT, ge=1, description="Capped at 100"),
    type: Optional[str] = Query(None, description=f"One of {', '.join(ACTIVITY_TYPES)}"),
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
):
    return get_activity_page(db, page=page, limit=limit, activity_type=type)


@router.get("/stats")
def get_stats(
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    cache: TTLCache = Depends(get_cache),
):
    return get_admin_stats(db, cache)
