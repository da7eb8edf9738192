"""Priority, due date and task code rules for tasks raised from findings."""
import uuid
from datetime import datetime, timedelta
from typing import Optional

from . import models

# Days from detection until a task of each priority is due
DUE_DAYS: dict[models.TaskPriority, int] = {
    models.TaskPriority.CRITICAL: 3,
    models.TaskPriority.HIGH: 7,
    models.TaskPriority.MEDIUM: 14,
    models.TaskPriority.LOW: 30,
}

TASK_CODE_PREFIX: dict[models.TaskPriority, str] = {
    models.TaskPriority.CRITICAL: "CRIT",
    models.TaskPriority.HIGH: "HIGH",
    models.TaskPriority.MEDIUM: "MED",
    models.TaskPriority.LOW: "LOW",
}


def map_severity_priority(severity: models.Severity) -> models.TaskPriority:
    """Finding severity maps one-to-one onto task priority."""
    return models.TaskPriority(severity.value)


def calculate_due_date(
    priority: models.TaskPriority,
    base_date: Optional[datetime] = None,
) -> datetime:
    """Calculate the due date for a priority, counted from ``base_date`` (default now)."""
    if base_date is None:
        base_date = models.utcnow()
    return base_date + timedelta(days=DUE_DAYS[priority])


def generate_task_code(priority: models.TaskPriority) -> str:
    """External task code, e.g. ``CRIT_3F9A01BC``."""
    return f"{TASK_CODE_PREFIX[priority]}_{uuid.uuid4().hex[:8].upper()}"
