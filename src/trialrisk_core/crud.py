"""CRUD operations for tasks, comments and imported domain records."""
import json
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas, task_priority
from .errors import OpenTaskConflictError
from .state_machine import validate_transition

logger = logging.getLogger("trialrisk-core.crud")

PRIORITY_ORDER = [
    models.TaskPriority.CRITICAL,
    models.TaskPriority.HIGH,
    models.TaskPriority.MEDIUM,
    models.TaskPriority.LOW,
]


# ============================================================================
# Directory lookups
# ============================================================================

def get_trial(db: Session, trial_id: int) -> Optional[models.Trial]:
    return db.query(models.Trial).filter(models.Trial.id == trial_id).first()


def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


# ============================================================================
# Domain records (import feed)
# ============================================================================

def store_domain_records(
    db: Session,
    trial_id: int,
    domain: str,
    source: str,
    records: dict[str, Any],
) -> list[str]:
    """
    Store imported records, replacing the payload of records already present.

    Args:
        db: Database session
        trial_id: Trial ID
        domain: Clinical data domain (e.g. 'LB')
        source: Source system (e.g. 'EDC')
        records: Map of record id to field map, or to raw JSON text

    Returns:
        Record ids stored, in input order
    """
    existing = {
        record.record_id: record
        for record in get_domain_records(db, trial_id, domain, source, list(records))
    }

    for record_id, payload in records.items():
        record_data = payload if isinstance(payload, str) else json.dumps(payload)
        record = existing.get(record_id)
        if record:
            record.record_data = record_data
            record.imported_at = models.utcnow()
        else:
            db.add(models.DomainRecord(
                trial_id=trial_id,
                domain=domain,
                source=source,
                record_id=record_id,
                record_data=record_data,
            ))

    db.commit()
    logger.info(f"Stored {len(records)} {domain}/{source} records for trial {trial_id}")
    return list(records)


def get_domain_records(
    db: Session,
    trial_id: int,
    domain: str,
    source: str,
    record_ids: Optional[list[str]] = None,
) -> list[models.DomainRecord]:
    """Get imported records for (trial, domain, source), optionally restricted to ids."""
    query = db.query(models.DomainRecord).filter(
        models.DomainRecord.trial_id == trial_id,
        models.DomainRecord.domain == domain,
        models.DomainRecord.source == source,
    )
    if record_ids is not None:
        query = query.filter(models.DomainRecord.record_id.in_(record_ids))
    return query.order_by(models.DomainRecord.record_id).all()


# ============================================================================
# Tasks
# ============================================================================

def _add_history(
    db: Session,
    task: models.Task,
    change_type: models.TaskChangeType,
    changed_by: Optional[str],
    field_name: Optional[str] = None,
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
) -> None:
    db.add(models.TaskHistory(
        task_id=task.id,
        change_type=change_type,
        field_name=field_name,
        old_value=old_value,
        new_value=new_value,
        changed_by=changed_by,
    ))


def create_task(db: Session, task_data: schemas.TaskCreate) -> models.Task:
    """
    Create a task manually.

    The task code and due date default from the priority.

    Args:
        db: Database session
        task_data: Task creation data

    Returns:
        Created Task object

    Raises:
        ValueError: If the trial does not exist
    """
    if not get_trial(db, task_data.trial_id):
        raise ValueError(f"Trial {task_data.trial_id} not found")

    task = models.Task(
        task_id=task_data.task_id or task_priority.generate_task_code(task_data.priority),
        title=task_data.title,
        description=task_data.description,
        priority=task_data.priority,
        status=task_data.status,
        trial_id=task_data.trial_id,
        site_id=task_data.site_id,
        detection_id=task_data.detection_id,
        assigned_to=task_data.assigned_to,
        created_by=task_data.created_by,
        domain=task_data.domain,
        record_id=task_data.record_id,
        source=task_data.source,
        data_context=task_data.data_context,
        due_date=task_data.due_date or task_priority.calculate_due_date(task_data.priority),
    )
    db.add(task)
    db.flush()

    _add_history(db, task, models.TaskChangeType.CREATED, task_data.created_by, new_value=task.title)

    db.commit()
    db.refresh(task)
    logger.info(f"Created task {task.task_id}: {task.title}")
    return task


def get_task(db: Session, task_id: str) -> Optional[models.Task]:
    """
    Get a task by numeric id or external task code.

    Args:
        db: Database session
        task_id: Numeric id or task code (e.g., 'CRIT_3F9A01BC')

    Returns:
        Task or None if not found
    """
    if str(task_id).isdigit():
        task = db.query(models.Task).filter(models.Task.id == int(task_id)).first()
        if task:
            return task

    return db.query(models.Task).filter(models.Task.task_id.ilike(str(task_id))).first()


def get_tasks(
    db: Session,
    skip: int = 0,
    limit: int = 50,
    trial_id: Optional[int] = None,
    status: Optional[models.TaskStatus] = None,
    priority: Optional[models.TaskPriority] = None,
    assigned_to: Optional[str] = None,
    domain: Optional[str] = None,
    overdue_only: bool = False,
    include_closed: bool = False,
) -> tuple[list[models.Task], int]:
    """
    Get tasks with filtering and pagination.

    Completed and closed tasks are excluded unless ``include_closed`` is set
    or a status filter is given.

    Returns:
        Tuple of (tasks, total_count)
    """
    query = db.query(models.Task)

    if trial_id:
        query = query.filter(models.Task.trial_id == trial_id)

    if status:
        query = query.filter(models.Task.status == status)
    elif not include_closed:
        query = query.filter(models.Task.status.notin_(models.CLOSED_TASK_STATUSES))

    if priority:
        query = query.filter(models.Task.priority == priority)

    if assigned_to:
        query = query.filter(models.Task.assigned_to == assigned_to)

    if domain:
        query = query.filter(models.Task.domain == domain)

    if overdue_only:
        query = query.filter(
            models.Task.due_date < models.utcnow(),
            models.Task.status.notin_(models.CLOSED_TASK_STATUSES),
        )

    total = query.count()

    # Critical first, then earliest due, then newest
    query = query.order_by(
        case({p: i for i, p in enumerate(PRIORITY_ORDER)}, value=models.Task.priority),
        models.Task.due_date.asc().nulls_last(),
        models.Task.created_at.desc(),
    )

    return query.offset(skip).limit(limit).all(), total


def get_tasks_for_role(db: Session, role: str) -> list[models.Task]:
    """All tasks assigned to a role, oldest first."""
    return (
        db.query(models.Task)
        .filter(models.Task.assigned_to == role)
        .order_by(models.Task.id)
        .all()
    )


def get_assigned_roles(db: Session) -> list[str]:
    """Distinct roles that have at least one task assigned."""
    rows = (
        db.query(models.Task.assigned_to)
        .filter(models.Task.assigned_to.isnot(None))
        .distinct()
        .order_by(models.Task.assigned_to)
        .all()
    )
    return [row[0] for row in rows]


def find_open_task_by_dedup_key(db: Session, dedup_key: str) -> Optional[models.Task]:
    """
    Find the open task holding a dedup key.

    Used to prevent duplicate tasks for the same (domain, record, metric).
    """
    return db.query(models.Task).filter(
        models.Task.dedup_key == dedup_key,
        models.Task.status.notin_(models.CLOSED_TASK_STATUSES),
    ).first()


def update_task(
    db: Session,
    task_id: int,
    task_update: schemas.TaskUpdate,
    changed_by: Optional[str] = None,
) -> Optional[models.Task]:
    """
    Update a task, recording each change in its history.

    Args:
        db: Database session
        task_id: Task id
        task_update: Update data
        changed_by: Name of whoever made the change

    Returns:
        Updated Task or None if not found

    Raises:
        StateTransitionError: If the status change is not allowed
        OpenTaskConflictError: If reopening would leave two open tasks for
            one dedup key
    """
    task = db.query(models.Task).filter(models.Task.id == task_id).first()
    if not task:
        return None

    if task_update.status is not None:
        validate_transition(task.status, task_update.status)

    reopening = (
        task_update.status is not None
        and task.status in models.CLOSED_TASK_STATUSES
        and task_update.status not in models.CLOSED_TASK_STATUSES
    )
    if reopening and task.dedup_key:
        open_task = find_open_task_by_dedup_key(db, task.dedup_key)
        if open_task and open_task.id != task.id:
            raise OpenTaskConflictError(task.task_id, open_task.task_id)

    if task_update.title is not None and task_update.title != task.title:
        task.title = task_update.title

    if task_update.description is not None:
        task.description = task_update.description

    if task_update.status is not None and task_update.status != task.status:
        old_status = task.status.value
        task.status = task_update.status

        if task_update.status == models.TaskStatus.COMPLETED:
            task.completed_at = models.utcnow()
            change_type = models.TaskChangeType.COMPLETED
        elif task_update.status == models.TaskStatus.CLOSED:
            change_type = models.TaskChangeType.CLOSED
        else:
            if task_update.status == models.TaskStatus.RE_OPENED:
                task.completed_at = None
            change_type = models.TaskChangeType.STATUS_CHANGED

        _add_history(
            db, task, change_type, changed_by,
            field_name="status", old_value=old_status, new_value=task_update.status.value,
        )

    if task_update.priority is not None and task_update.priority != task.priority:
        old_priority = task.priority.value
        task.priority = task_update.priority
        _add_history(
            db, task, models.TaskChangeType.PRIORITY_CHANGED, changed_by,
            field_name="priority", old_value=old_priority, new_value=task_update.priority.value,
        )

    if task_update.assigned_to is not None and task_update.assigned_to != task.assigned_to:
        old_assignee = task.assigned_to
        task.assigned_to = task_update.assigned_to
        _add_history(
            db, task, models.TaskChangeType.ASSIGNED, changed_by,
            field_name="assigned_to", old_value=old_assignee, new_value=task_update.assigned_to,
        )

    if task_update.due_date is not None:
        old_due = str(task.due_date) if task.due_date else None
        task.due_date = task_update.due_date
        _add_history(
            db, task, models.TaskChangeType.DUE_DATE_CHANGED, changed_by,
            field_name="due_date", old_value=old_due, new_value=str(task_update.due_date),
        )

    task_code = task.task_id
    try:
        db.commit()
    except IntegrityError:
        # Another task took the dedup key between the check and the commit
        db.rollback()
        raise OpenTaskConflictError(task_code)
    db.refresh(task)
    logger.info(f"Updated task {task.task_id}")
    return task


def get_task_history(db: Session, task_id: int, limit: int = 50) -> list[models.TaskHistory]:
    return db.query(models.TaskHistory).filter(
        models.TaskHistory.task_id == task_id
    ).order_by(
        models.TaskHistory.changed_at.desc(),
        models.TaskHistory.id.desc(),
    ).limit(limit).all()


# ============================================================================
# Comments
# ============================================================================

def add_comment(
    db: Session,
    task: models.Task,
    comment_data: schemas.TaskCommentCreate,
    created_at: Optional[datetime] = None,
) -> models.TaskComment:
    """
    Append a comment to a task and stamp the task's last-comment fields.

    Args:
        db: Database session
        task: Task being commented on
        comment_data: Comment payload
        created_at: Override the comment timestamp (default now)

    Returns:
        Created TaskComment
    """
    created_at = created_at or models.utcnow()

    comment = models.TaskComment(
        task_id=task.id,
        comment=comment_data.comment,
        created_by=comment_data.created_by,
        role=comment_data.role,
        attachments=comment_data.attachments,
        created_at=created_at,
    )
    db.add(comment)

    task.last_comment_at = created_at
    task.last_comment_by = comment_data.created_by
    _add_history(
        db, task, models.TaskChangeType.COMMENTED, comment_data.created_by,
        new_value=comment_data.comment[:255],
    )

    db.commit()
    db.refresh(comment)
    logger.info(f"Added comment {comment.id} to task {task.task_id}")
    return comment


def get_comments(db: Session, task_id: int) -> list[models.TaskComment]:
    """Comments on a task in insertion order."""
    return (
        db.query(models.TaskComment)
        .filter(models.TaskComment.task_id == task_id)
        .order_by(models.TaskComment.id)
        .all()
    )
