"""
Unified Notification Service
In-app notifications with their push fan-out, plus the email side-channel.
A failed push or email is logged and never undoes the action that triggered it.
"""

import logging
from typing import Iterable, Optional

from sqlalchemy.orm import Session

from ..models import Notification, User
from . import push_service

logger = logging.getLogger(__name__)


def _resolve_recipients(db: Session, recipients: Iterable) -> list[User]:
    """Accept users or user ids; drop blanks and duplicates"""
    users: list[User] = []
    ids: list[int] = []
    for recipient in recipients:
        if recipient is None:
            continue
        if isinstance(recipient, User):
            if all(user.id != recipient.id for user in users):
                users.append(recipient)
        else:
            ids.append(int(recipient))

    if ids:
        known = {user.id for user in users}
        for user in db.query(User).filter(User.id.in_(ids)).all():
            if user.id not in known:
                users.append(user)
                known.add(user.id)
    return users


async def create_notification(
    db: Session,
    recipients: Iterable,
    message: str,
    send_push: bool = True,
) -> Optional[Notification]:
    """
    Record a notification for the recipients and, when send_push is set,
    push the same message to their devices.
    """
    users = _resolve_recipients(db, recipients)
    if not users or not message:
        return None

    notification = Notification(message=message, send_push=send_push, recipients=users)
    db.add(notification)
    db.commit()
    db.refresh(notification)
    logger.info(f"🔔 Notification {notification.id} for {len(users)} user(s)")

    if send_push:
        await push_service.send_push_notification(users, message)

    return notification


async def send_email_safely(email_func, notification_type: str, **email_kwargs) -> bool:
    """Run an email sender, logging instead of raising on failure"""
    try:
        logger.info(f"📧 Sending {notification_type} email")
        await email_func(**email_kwargs)
        logger.info(f"✅ {notification_type} email sent")
        return True
    except Exception as e:
        logger.error(f"❌ Failed to send {notification_type} email: {e}")
        return False
