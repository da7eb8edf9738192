"""User/role directory consumed by notification dispatch.

Role membership is owned by an external directory and may change between
dispatches, so it is resolved on every call and never cached.
"""
import logging
from typing import Optional, Protocol

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger("trialrisk-core.directory")

ALL_STUDIES = "All Studies"


class UserDirectory(Protocol):
    """Resolves role names to the users currently holding them."""

    def resolve_users_for_role(self, role: str, trial_id: Optional[int] = None) -> list[models.User]:
        ...

    def get_user(self, user_id: int) -> Optional[models.User]:
        ...


def has_study_access(user: models.User, protocol_id: str) -> bool:
    """Null access, "All Studies" or the protocol id itself grants access."""
    if user.study_access is None:
        return True
    return ALL_STUDIES in user.study_access or protocol_id in user.study_access


class SqlUserDirectory:
    """Directory backed by the ``users`` table."""

    def __init__(self, db: Session):
        self.db = db

    def get_user(self, user_id: int) -> Optional[models.User]:
        return self.db.query(models.User).filter(models.User.id == user_id).first()

    def resolve_users_for_role(self, role: str, trial_id: Optional[int] = None) -> list[models.User]:
        """
        Active users in a role.

        With a trial, users are narrowed to those with access to the trial's
        study. If that leaves nobody, every member of the role is returned so
        the task still reaches someone.

        Args:
            role: Role name, e.g. "EDC Data Manager"
            trial_id: Trial the notification concerns

        Returns:
            Users ordered by id
        """
        members = (
            self.db.query(models.User)
            .filter(models.User.role == role, models.User.status == "active")
            .order_by(models.User.id)
            .all()
        )
        if trial_id is None or not members:
            return members

        trial = self.db.query(models.Trial).filter(models.Trial.id == trial_id).first()
        if trial is None:
            return members

        with_access = [user for user in members if has_study_access(user, trial.protocol_id)]
        if not with_access:
            logger.warning(
                f"No '{role}' member has access to {trial.protocol_id}, "
                f"falling back to all {len(members)} role members"
            )
            return members
        return with_access
