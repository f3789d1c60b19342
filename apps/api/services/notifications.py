"""
User notification helpers.

Notifications are inserted as side effects elsewhere (billing, scheduling)
and only ever read or marked read by their owner.
"""
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from models import Notification, NotificationType


def create_notification(
    db: Session,
    *,
    user_id: UUID,
    type: NotificationType,
    title: str,
    message: str,
    link: Optional[str] = None,
) -> Notification:
    note = Notification(user_id=user_id, type=NotificationType(type).value, title=title, message=message, link=link)
    db.add(note)
    db.flush()
    return note


def list_for_user(db: Session, user_id: UUID, *, unread_only: bool = False, limit: int = 50) -> List[Notification]:
    q = db.query(Notification).filter(Notification.user_id == user_id)
    if unread_only:
        q = q.filter(Notification.is_read.is_(False))
    return q.order_by(Notification.created_at.desc()).limit(limit).all()


def unread_count(db: Session, user_id: UUID) -> int:
    return (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .count()
    )


def mark_read(db: Session, user_id: UUID, notification_id: UUID) -> Optional[Notification]:
    """Mark one notification read. Returns None if it doesn't exist or isn't the user's."""
    note = (
        db.query(Notification)
        .filter(Notification.id == notification_id, Notification.user_id == user_id)
        .first()
    )
    if note is None:
        return None
    note.is_read = True
    db.flush()
    return note


def mark_all_read(db: Session, user_id: UUID) -> int:
    updated = (
        db.query(Notification)
        .filter(Notification.user_id == user_id, Notification.is_read.is_(False))
        .update({Notification.is_read: True}, synchronize_session=False)
    )
    db.flush()
    return int(updated)
