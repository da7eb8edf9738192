"""Notification fan-out for tasks.

A task's notification is delivered as one row per target user. The unique
constraint on (related_entity_type, related_entity_id, user_id) makes fan-out
idempotent: dispatching the same task twice, or racing another dispatcher,
never produces a second row for a user.
"""
import logging
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .config import Settings, get_settings
from .directory import UserDirectory
from .errors import BatchError

logger = logging.getLogger("trialrisk-core.notifications")

TASK_ENTITY = "task"

# Priorities still delivered to users who chose critical-only
CRITICAL_ONLY_PRIORITIES = (models.TaskPriority.CRITICAL, models.TaskPriority.HIGH)


@dataclass
class DispatchResult:
    created: list[models.Notification] = field(default_factory=list)
    skipped: int = 0
    suppressed: int = 0
    errors: list[BatchError] = field(default_factory=list)


def task_action_url(task: models.Task) -> str:
    return f"/tasks/details/{task.id}"


def get_notification_settings(db: Session, user_id: int) -> Optional[models.NotificationSettings]:
    return db.query(models.NotificationSettings).filter(
        models.NotificationSettings.user_id == user_id
    ).first()


def should_deliver(db: Session, user: models.User, task: models.Task) -> bool:
    """
    Check a user's delivery preferences for a task notification.

    No settings row means deliver everything.
    """
    settings = get_notification_settings(db, user.id)
    if settings is None:
        return True
    if not settings.push_notifications:
        return False
    if settings.critical_only and task.priority not in CRITICAL_ONLY_PRIORITIES:
        return False
    return True


def find_task_notification(db: Session, task_id: int, user_id: int) -> Optional[models.Notification]:
    return db.query(models.Notification).filter(
        models.Notification.related_entity_type == TASK_ENTITY,
        models.Notification.related_entity_id == task_id,
        models.Notification.user_id == user_id,
    ).first()


def resolve_audience(
    task: models.Task,
    directory: UserDirectory,
    roles: Optional[list[str]] = None,
    user_ids: Optional[list[int]] = None,
    settings: Optional[Settings] = None,
) -> tuple[list[models.User], list[str]]:
    """
    Resolve the users a task notification goes to.

    Priority:
    1. Explicit user ids and/or roles (if provided)
    2. The task's assigned role
    3. The configured fallback role, when the above resolve to nobody

    Returns:
        Tuple of (users without duplicates, role names that were resolved)
    """
    settings = settings or get_settings()

    if roles is None and user_ids is None:
        roles = [task.assigned_to] if task.assigned_to else []
    roles = list(roles or [])

    users: dict[int, models.User] = {}
    for user_id in user_ids or []:
        user = directory.get_user(user_id)
        if user is None:
            logger.warning(f"Notification target user {user_id} not found, skipping")
            continue
        users.setdefault(user.id, user)

    for role in roles:
        for user in directory.resolve_users_for_role(role, task.trial_id):
            users.setdefault(user.id, user)

    if not users:
        fallback_role = settings.fallback_notification_role
        logger.warning(f"No recipients for task {task.task_id}, falling back to role '{fallback_role}'")
        roles = [fallback_role]
        for user in directory.resolve_users_for_role(fallback_role, task.trial_id):
            users.setdefault(user.id, user)

    return list(users.values()), roles


def build_task_notification(
    task: models.Task,
    user: models.User,
    target_roles: list[str],
) -> models.Notification:
    description_lines = [task.description]
    if task.domain:
        description_lines.append(f"Domain: {task.domain}")
    if task.record_id:
        description_lines.append(f"Record ID: {task.record_id}")
    if task.source:
        description_lines.append(f"Source: {task.source}")

    return models.Notification(
        user_id=user.id,
        title=f"{task.task_id}: {task.title}",
        description="\n".join(description_lines),
        type="task",
        priority=task.priority.value.lower(),
        trial_id=task.trial_id,
        source="Task Management",
        related_entity_type=TASK_ENTITY,
        related_entity_id=task.id,
        target_roles=target_roles,
        target_users=[user.id],
        read=False,
        action_required=True,
        action_url=task_action_url(task),
    )


def notify_user(
    db: Session,
    task: models.Task,
    user: models.User,
    target_roles: list[str],
    result: DispatchResult,
) -> None:
    """Create one user's notification for a task, recording the outcome in ``result``."""
    # Read before any rollback below expires the instances
    task_pk, user_pk = task.id, user.id

    try:
        if find_task_notification(db, task_pk, user_pk):
            result.skipped += 1
            return

        if not should_deliver(db, user, task):
            logger.debug(f"User {user.username} muted notifications for task {task.task_id}")
            result.suppressed += 1
            return

        notification = build_task_notification(task, user, target_roles)
        db.add(notification)
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.debug(f"Notification for task {task_pk} -> user {user_pk} already exists")
        result.skipped += 1
        return
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to notify user {user_pk} of task {task_pk}: {e}", exc_info=True)
        result.errors.append(BatchError.persistence_error(f"{task_pk}:{user_pk}", e))
        return

    db.refresh(notification)
    result.created.append(notification)


def dispatch(
    db: Session,
    task: models.Task,
    directory: UserDirectory,
    roles: Optional[list[str]] = None,
    user_ids: Optional[list[int]] = None,
    settings: Optional[Settings] = None,
) -> DispatchResult:
    """
    Notify every resolved target user of a task, at most once per user.

    Args:
        db: Database session
        task: Task to notify about
        directory: Role/user directory, resolved fresh on each call
        roles: Target roles (default: the task's assigned role)
        user_ids: Explicit target user ids
        settings: Settings override (default ``get_settings()``)

    Returns:
        DispatchResult with created notifications and skipped, suppressed and
        failed counts. One user's failure never stops the others.
    """
    users, target_roles = resolve_audience(task, directory, roles, user_ids, settings)
    result = DispatchResult()

    for user in users:
        notify_user(db, task, user, target_roles, result)

    logger.info(
        f"Dispatched task {task.task_id} to {len(users)} users: "
        f"{len(result.created)} created, {result.skipped} skipped, "
        f"{result.suppressed} suppressed, {len(result.errors)} failed"
    )
    return result


def broadcast(
    db: Session,
    title: str,
    description: str,
    roles: list[str],
    trial_id: Optional[int] = None,
    notification_type: str = "system",
    priority: str = "info",
    source: Optional[str] = None,
) -> models.Notification:
    """
    Create one role-broadcast notification.

    Broadcasts have no ``user_id``; each reader's read state is kept in
    NotificationReadStatus.
    """
    notification = models.Notification(
        user_id=None,
        title=title,
        description=description,
        type=notification_type,
        priority=priority,
        trial_id=trial_id,
        source=source,
        target_roles=roles,
        target_users=[],
        read=False,
        action_required=False,
    )
    db.add(notification)
    db.commit()
    db.refresh(notification)
    logger.info(f"Broadcast notification {notification.id} to roles {roles}")
    return notification
