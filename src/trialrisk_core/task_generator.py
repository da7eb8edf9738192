"""Turn findings into tasks, at most one open task per dedup key.

The dedup key identifies *what* is wrong (domain, record, metric), not how
badly: a worsening value on a record that already has an open task does not
raise a second one. Once the task is completed or closed the key is released
and a later finding opens a new task.

The partial unique index ``uq_tasks_open_dedup_key`` is the arbiter between
concurrent generators. The lookup below only avoids the round trip in the
common case.
"""
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import crud, models, task_priority
from .config import Settings, get_settings
from .errors import BatchError
from .validation import Finding

logger = logging.getLogger("trialrisk-core.task_generator")


@dataclass
class MaterializeResult:
    created: list[models.Task] = field(default_factory=list)
    skipped_keys: list[str] = field(default_factory=list)
    errors: list[BatchError] = field(default_factory=list)


def compute_dedup_key(domain: str, record_id: str, metric_name: str) -> str:
    """
    SHA-256 of the normalized (domain, record_id, metric_name) tuple.

    Domain and metric are case-insensitive; the record id is only trimmed.
    """
    normalized = "\x1f".join((
        domain.strip().upper(),
        record_id.strip(),
        metric_name.strip().lower(),
    ))
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def build_task(
    finding: Finding,
    dedup_key: str,
    detection_date: datetime,
    settings: Settings,
) -> models.Task:
    """Build (but do not persist) the task for a finding."""
    priority = task_priority.map_severity_priority(finding.severity)

    return models.Task(
        task_id=task_priority.generate_task_code(priority),
        title=f"{finding.severity.value} {finding.metric_name} finding in {finding.domain} record {finding.record_id}",
        description=(
            f"{finding.metric_name} = {finding.observed_value:g} breached the "
            f"{finding.severity.value.lower()} threshold for {finding.domain} record "
            f"{finding.record_id} (source: {finding.source}). Review the record and "
            f"raise a query with the site if the value is not expected."
        ),
        priority=priority,
        status=models.TaskStatus.NOT_STARTED,
        trial_id=finding.trial_id,
        assigned_to=settings.finding_assignee_role,
        created_by=settings.system_actor,
        domain=finding.domain,
        record_id=finding.record_id,
        source=finding.source,
        data_context={
            "metric_name": finding.metric_name,
            "observed_value": finding.observed_value,
            "severity": finding.severity.value,
            "rule_id": finding.rule_id,
            "detected_at": detection_date.isoformat(),
        },
        dedup_key=dedup_key,
        due_date=task_priority.calculate_due_date(priority, detection_date),
    )


def materialize(
    db: Session,
    findings: list[Finding],
    detection_date: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> MaterializeResult:
    """
    Create one task per finding whose dedup key has no open task.

    Each task is committed on its own so one failure never rolls back its
    siblings.

    Args:
        db: Database session
        findings: Findings from the validator
        detection_date: When the findings were detected (default now)
        settings: Settings override (default ``get_settings()``)

    Returns:
        MaterializeResult with created tasks, skipped dedup keys and
        persistence errors
    """
    settings = settings or get_settings()
    detection_date = detection_date or models.utcnow()
    result = MaterializeResult()

    for finding in findings:
        dedup_key = compute_dedup_key(finding.domain, finding.record_id, finding.metric_name)

        try:
            if crud.find_open_task_by_dedup_key(db, dedup_key):
                logger.debug(f"Open task exists for {finding.record_id}/{finding.metric_name}, skipping")
                result.skipped_keys.append(dedup_key)
                continue

            task = build_task(finding, dedup_key, detection_date, settings)
            db.add(task)
            db.flush()
            db.add(models.TaskHistory(
                task_id=task.id,
                change_type=models.TaskChangeType.CREATED,
                new_value=task.title,
                changed_by=settings.system_actor,
            ))
            db.commit()
        except IntegrityError:
            # Lost the race to a concurrent generator holding the same key
            db.rollback()
            logger.debug(f"Concurrent insert for {finding.record_id}/{finding.metric_name}, skipping")
            result.skipped_keys.append(dedup_key)
            continue
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(
                f"Failed to create task for {finding.record_id}/{finding.metric_name}: {e}",
                exc_info=True,
            )
            result.errors.append(BatchError.persistence_error(dedup_key, e))
            continue

        db.refresh(task)
        logger.info(f"Created task {task.task_id} ({task.priority.value}) for {finding.record_id}/{finding.metric_name}")
        result.created.append(task)

    return result
