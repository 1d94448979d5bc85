"""Notification router - the current user's notification feed"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user
from ...database import get_db
from ...models import Notification, User
from ...shared.serializers import serialize_notification

router = APIRouter(prefix="/api/notifications", tags=["Notifications"])


@router.get("")
async def get_notifications(
    limit: int = Query(20),
    skip: int = Query(0),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Notifications addressed to the current user, newest first"""
    query = db.query(Notification).filter(Notification.recipients.any(User.id == current_user.id))
    notification_count = query.count()
    notifications = (
        query.order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset(skip)
        .limit(limit or 20)
        .all()
    )
    return {
        "notifications": [serialize_notification(n) for n in notifications],
        "notificationCount": notification_count,
    }
