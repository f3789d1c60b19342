"""
Admin activity feed.

There is no activity table. The feed is synthesized from the newest rows of
users, live sessions and recordings, merged newest-first, then filtered and
paginated in memory. Only the last SOURCE_WINDOW rows of each source are
considered, so deep pages run dry long before the tables do.
"""
from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from models import LiveSession, Recording, User

USER_CREATED = "USER_CREATED"
SESSION_CREATED = "SESSION_CREATED"
RECORDING_UPLOADED = "RECORDING_UPLOADED"
ACTIVITY_TYPES = (USER_CREATED, SESSION_CREATED, RECORDING_UPLOADED)

SOURCE_WINDOW = 20
DEFAULT_LIMIT = 20
MAX_LIMIT = 100


def _aware(dt: Optional[datetime]) -> datetime:
    # SQLite hands back naive datetimes; treat them as UTC.
    if dt is None:
        return datetime.min.replace(tzinfo=timezone.utc)
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def _teacher_name(teacher: Optional[User]) -> Optional[str]:
    return teacher.full_name if teacher is not None else None


def collect_activity(db: Session) -> List[Dict[str, Any]]:
    """All feed items from the three sources, newest first."""
    users = db.query(User).order_by(User.created_at.desc()).limit(SOURCE_WINDOW).all()
    sessions = db.query(LiveSession).order_by(LiveSession.created_at.desc()).limit(SOURCE_WINDOW).all()
    recordings = db.query(Recording).order_by(Recording.created_at.desc()).limit(SOURCE_WINDOW).all()

    items: List[Dict[str, Any]] = []
    for u in users:
        items.append({
            "id": f"user-{u.id}",
            "type": USER_CREATED,
            "description": f"New {u.role.lower()} account created: {u.first_name} {u.last_name}",
            "user_id": str(u.id),
            "user_name": u.full_name,
            "user_role": u.role,
            "metadata": None,
            "created_at": _aware(u.created_at),
        })
    for s in sessions:
        items.append({
            "id": f"session-{s.id}",
            "type": SESSION_CREATED,
            "description": f"Session scheduled: {s.title}",
            "user_id": str(s.teacher_id),
            "user_name": _teacher_name(s.teacher),
            "user_role": s.teacher.role if s.teacher is not None else None,
            "metadata": {"subject": s.subject, "yearGroup": s.year_group},
            "created_at": _aware(s.created_at),
        })
    for r in recordings:
        items.append({
            "id": f"recording-{r.id}",
            "type": RECORDING_UPLOADED,
            "description": f"Recording uploaded: {r.title}",
            "user_id": str(r.teacher_id),
            "user_name": _teacher_name(r.teacher),
            "user_role": r.teacher.role if r.teacher is not None else None,
            "metadata": {"subject": r.subject, "yearGroup": r.year_group},
            "created_at": _aware(r.created_at),
        })

    items.sort(key=lambda a: a["created_at"], reverse=True)
    return items


def get_activity_page(
    db: Session,
    *,
    page: int = 1,
    limit: int = DEFAULT_LIMIT,
    activity_type: Optional[str] = None,
) -> Dict[str, Any]:
    page = max(1, page)
    limit = max(1, min(limit, MAX_LIMIT))

    items = collect_activity(db)
    if activity_type:
        items = [a for a in items if a["type"] == activity_type]

    total = len(items)
    start = (page - 1) * limit
    return {
        "data": items[start:start + limit],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": math.ceil(total / limit),
        },
    }
