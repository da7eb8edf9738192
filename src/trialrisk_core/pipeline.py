"""Validate → materialize → dispatch for one import batch."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from . import notifications, task_generator, validation
from .config import Settings
from .directory import SqlUserDirectory, UserDirectory
from .errors import BatchError

logger = logging.getLogger("trialrisk-core.pipeline")


@dataclass
class PipelineSummary:
    records_validated: int = 0
    findings: int = 0
    tasks_created: list[str] = field(default_factory=list)
    duplicates_skipped: int = 0
    notifications_created: int = 0
    errors: list[BatchError] = field(default_factory=list)


def process_records(
    db: Session,
    trial_id: int,
    domain: str,
    source: str,
    record_ids: Optional[list[str]] = None,
    directory: Optional[UserDirectory] = None,
    detection_date: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> PipelineSummary:
    """
    Run the consistency pipeline over imported records.

    Every stage collects its per-item errors instead of raising, so the
    summary always covers the whole batch.

    Args:
        db: Database session
        trial_id: Trial ID
        domain: Clinical data domain
        source: Source system
        record_ids: Records to process (default: all stored records)
        directory: Role directory (default: ``SqlUserDirectory``)
        detection_date: Detection timestamp for due dates (default now)
        settings: Settings override

    Returns:
        PipelineSummary for the batch
    """
    directory = directory or SqlUserDirectory(db)
    summary = PipelineSummary()

    validated = validation.validate(db, trial_id, domain, source, record_ids)
    summary.records_validated = validated.records_validated
    summary.findings = len(validated.findings)
    summary.errors.extend(validated.errors)

    materialized = task_generator.materialize(db, validated.findings, detection_date, settings)
    summary.duplicates_skipped = len(materialized.skipped_keys)
    summary.errors.extend(materialized.errors)

    for task in materialized.created:
        summary.tasks_created.append(task.task_id)
        dispatched = notifications.dispatch(db, task, directory, settings=settings)
        summary.notifications_created += len(dispatched.created)
        summary.errors.extend(dispatched.errors)

    logger.info(
        f"Pipeline {domain}/{source} trial {trial_id}: {summary.findings} findings, "
        f"{len(summary.tasks_created)} tasks, {summary.notifications_created} notifications, "
        f"{len(summary.errors)} errors"
    )
    return summary
