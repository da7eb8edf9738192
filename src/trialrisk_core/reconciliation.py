"""Reconciliation sweep: create task notifications that dispatch missed.

Dispatch only reaches the users in a role at the moment the task is created.
Users who join the role later, or dispatches that failed part-way, leave
gaps. The sweep walks every task assigned to a role and fills them in. It
only ever creates missing rows, so a second run creates nothing.
"""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from . import crud
from .directory import UserDirectory
from .notifications import DispatchResult, notify_user

logger = logging.getLogger("trialrisk-core.reconciliation")


def repair(db: Session, directory: UserDirectory, role: str) -> int:
    """
    Create the missing notifications for every task assigned to a role.

    Args:
        db: Database session
        directory: Role/user directory, resolved fresh per task
        role: Role name, e.g. "EDC Data Manager"

    Returns:
        Number of notifications created
    """
    tasks = crud.get_tasks_for_role(db, role)
    result = DispatchResult()

    for task in tasks:
        for user in directory.resolve_users_for_role(role, task.trial_id):
            notify_user(db, task, user, [role], result)

    for error in result.errors:
        logger.error(f"Repair for role '{role}' could not notify {error.item}: {error.message}")

    logger.info(
        f"Repaired notifications for role '{role}': {len(result.created)} created "
        f"across {len(tasks)} tasks"
    )
    return len(result.created)


def repair_all(
    db: Session,
    directory: UserDirectory,
    roles: Optional[list[str]] = None,
) -> dict[str, int]:
    """
    Run ``repair`` for several roles.

    Args:
        roles: Roles to sweep (default: every role that has assigned tasks)

    Returns:
        Dict of role -> notifications created
    """
    if roles is None:
        roles = crud.get_assigned_roles(db)
    return {role: repair(db, directory, role) for role in roles}
