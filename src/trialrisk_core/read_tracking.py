"""Per-user notification read state.

User-addressed notifications carry their own ``read``/``read_at`` flags.
Role broadcasts (``user_id`` null) are shared, so whether a given user has
read one is only known from NotificationReadStatus. Both kinds get a
read-status row on mark-read so every read is auditable per user.
"""
import json
import logging
from typing import Optional

from sqlalchemy import String, and_, cast, or_, type_coerce
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas

logger = logging.getLogger("trialrisk-core.read_tracking")


def _role_targeted(db: Session, role: str):
    """SQL condition: the notification's ``target_roles`` contains ``role``."""
    column = models.Notification.target_roles
    if db.get_bind().dialect.name == "postgresql":
        return type_coerce(column, JSONB).contains([role])

    # JSON text match; callers confirm the exact role with _is_visible_to
    pattern = json.dumps(role).replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return cast(column, String).like(f"%{pattern}%", escape="\\")


def _visible_notifications(
    db: Session,
    user: models.User,
    types: Optional[list[str]] = None,
) -> list[models.Notification]:
    """Notifications addressed to the user plus broadcasts to the user's role, newest first."""
    audience = models.Notification.user_id == user.id
    if user.role:
        audience = or_(
            audience,
            and_(models.Notification.user_id.is_(None), _role_targeted(db, user.role)),
        )

    query = db.query(models.Notification).filter(audience)
    if types:
        query = query.filter(models.Notification.type.in_(types))

    rows = query.order_by(models.Notification.created_at.desc(), models.Notification.id.desc()).all()
    return [notification for notification in rows if _is_visible_to(notification, user)]


def _read_status_map(db: Session, user_id: int) -> dict[int, models.NotificationReadStatus]:
    rows = db.query(models.NotificationReadStatus).filter(
        models.NotificationReadStatus.user_id == user_id
    ).all()
    return {row.notification_id: row for row in rows}


def _is_visible_to(notification: models.Notification, user: models.User) -> bool:
    if notification.user_id is not None:
        return notification.user_id == user.id
    return user.role in (notification.target_roles or [])


def mark_read(db: Session, notification_ids: list[int], user_id: int) -> int:
    """
    Mark notifications as read by a user. Idempotent.

    The first read wins: ``read_at`` is never moved by a repeated call.
    Ids that do not exist or are not visible to the user are ignored.

    Args:
        db: Database session
        notification_ids: Notification ids to mark
        user_id: Reading user

    Returns:
        Number of requested notifications now read by the user
    """
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if user is None or not notification_ids:
        return 0

    notifications = [
        notification
        for notification in db.query(models.Notification).filter(
            models.Notification.id.in_(notification_ids)
        ).order_by(models.Notification.id).all()
        if _is_visible_to(notification, user)
    ]

    now = models.utcnow()
    for notification in notifications:
        if notification.user_id == user_id and not notification.read:
            notification.read = True
            notification.read_at = now
    db.commit()

    already_recorded = _read_status_map(db, user_id)
    for notification_id in [n.id for n in notifications]:
        if notification_id in already_recorded:
            continue
        db.add(models.NotificationReadStatus(
            notification_id=notification_id,
            user_id=user_id,
            read_at=now,
        ))
        try:
            db.commit()
        except IntegrityError:
            # Recorded concurrently by another request for the same user
            db.rollback()

    logger.info(f"User {user_id} marked {len(notifications)} notifications read")
    return len(notifications)


def mark_all_read(db: Session, user_id: int) -> int:
    """Mark every unread notification visible to a user as read."""
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if user is None:
        return 0

    recorded = _read_status_map(db, user_id)
    unread_ids = [
        notification.id
        for notification in _visible_notifications(db, user)
        if notification.id not in recorded
        or (notification.user_id == user_id and not notification.read)
    ]
    if not unread_ids:
        return 0
    return mark_read(db, unread_ids, user_id)


def list_notifications(
    db: Session,
    user_id: int,
    limit: int = 50,
    offset: int = 0,
    types: Optional[list[str]] = None,
    unread_only: bool = False,
) -> list[schemas.NotificationResponse]:
    """
    List a user's notifications, newest first, with the user's read state.

    Args:
        db: Database session
        user_id: User whose inbox to list
        limit: Maximum number of notifications
        offset: Number to skip
        types: Only these notification types
        unread_only: Only notifications the user has not read

    Returns:
        Notification responses; broadcasts show this user's read state
    """
    items = _inbox(db, user_id, types, unread_only)
    return items[offset:offset + limit]


def count_unread(db: Session, user_id: int) -> int:
    return len(_inbox(db, user_id, unread_only=True))


def _inbox(
    db: Session,
    user_id: int,
    types: Optional[list[str]] = None,
    unread_only: bool = False,
) -> list[schemas.NotificationResponse]:
    user = db.query(models.User).filter(models.User.id == user_id).first()
    if user is None:
        return []

    recorded = _read_status_map(db, user_id)
    items = []
    for notification in _visible_notifications(db, user, types):
        item = schemas.NotificationResponse.model_validate(notification)
        if notification.user_id is None:
            status = recorded.get(notification.id)
            item = item.model_copy(update={
                "read": status is not None,
                "read_at": status.read_at if status else None,
            })

        if unread_only and item.read:
            continue
        items.append(item)
    return items
