"""
Notifications API

In-app notifications for the signed-in user. Rows are created by other
services (billing webhooks, scheduling); this router only reads and marks
them read.
"""
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.auth import get_current_user
from core.database import get_db
from core.exceptions import NotFoundError
from models import User
from schemas import NotificationListResponse, NotificationResponse
from services import notifications as notification_service

router = APIRouter(prefix="/v1/notifications", tags=["notifications"])

MAX_NOTIFICATIONS = 50


@router.get("", response_model=NotificationListResponse)
def list_notifications(
    unread_only: bool = Query(False),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    items = notification_service.list_for_user(
        db, current_user.id, unread_only=unread_only, limit=MAX_NOTIFICATIONS
    )
    return {
        "notifications": items,
        "unread_count": notification_service.unread_count(db, current_user.id),
    }


@router.post("/{notification_id}/read", response_model=NotificationResponse)
def mark_notification_read(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    note = notification_service.mark_read(db, current_user.id, notification_id)
    if note is None:
        # Someone else's notification looks the same as a missing one.
        raise NotFoundError("Notification", str(notification_id))
    return note


@router.post("/read-all")
def mark_all_notifications_read(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    updated = notification_service.mark_all_read(db, current_user.id)
    return {"updated": updated}
