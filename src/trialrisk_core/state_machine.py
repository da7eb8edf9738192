"""State machine validation for task status transitions.

Tasks move from triage through response and review to completion:
- Work is assigned or started from not_started
- Responses go through review before completion
- Completed tasks can be re-opened; closed is terminal
- Any non-terminal task can be closed administratively
"""
import logging

from .models import TaskStatus

logger = logging.getLogger("trialrisk-core.state_machine")


class StateTransitionError(Exception):
    """Raised when an invalid task status transition is attempted."""

    def __init__(
        self,
        message: str,
        current_status: TaskStatus,
        requested_status: TaskStatus,
        allowed_transitions: list[TaskStatus]
    ):
        super().__init__(message)
        self.current_status = current_status
        self.requested_status = requested_status
        self.allowed_transitions = allowed_transitions


# Maps current status → list of allowed next statuses
TRANSITION_MATRIX: dict[TaskStatus, list[TaskStatus]] = {
    TaskStatus.NOT_STARTED: [
        TaskStatus.NOT_STARTED,    # No-op (allowed)
        TaskStatus.ASSIGNED,       # Forward: picked up by a role member
        TaskStatus.IN_PROGRESS,    # Forward: work started directly
        TaskStatus.CLOSED,         # Terminal: dismissed
    ],
    TaskStatus.ASSIGNED: [
        TaskStatus.ASSIGNED,
        TaskStatus.IN_PROGRESS,
        TaskStatus.NOT_STARTED,    # Back: unassigned
        TaskStatus.CLOSED,
    ],
    TaskStatus.IN_PROGRESS: [
        TaskStatus.IN_PROGRESS,
        TaskStatus.RESPONDED,      # Forward: site/data manager responded
        TaskStatus.ASSIGNED,       # Back: handed over
        TaskStatus.CLOSED,
    ],
    TaskStatus.RESPONDED: [
        TaskStatus.RESPONDED,
        TaskStatus.UNDER_REVIEW,
        TaskStatus.IN_PROGRESS,    # Back: response incomplete
        TaskStatus.CLOSED,
    ],
    TaskStatus.UNDER_REVIEW: [
        TaskStatus.UNDER_REVIEW,
        TaskStatus.COMPLETED,      # Forward: review accepted
        TaskStatus.RE_OPENED,      # Back: review rejected
        TaskStatus.CLOSED,
    ],
    TaskStatus.RE_OPENED: [
        TaskStatus.RE_OPENED,
        TaskStatus.IN_PROGRESS,
        TaskStatus.ASSIGNED,
        TaskStatus.CLOSED,
    ],
    TaskStatus.COMPLETED: [
        TaskStatus.COMPLETED,
        TaskStatus.RE_OPENED,      # Back: issue recurred
        TaskStatus.CLOSED,
    ],
    TaskStatus.CLOSED: [
        TaskStatus.CLOSED,
        # Closed is terminal; a recurring condition raises a new task
    ],
}


def is_transition_valid(current_status: TaskStatus, new_status: TaskStatus) -> bool:
    """
    Check if a status transition is valid.

    Args:
        current_status: Current task status
        new_status: Requested new task status

    Returns:
        True if transition is allowed, False otherwise
    """
    return new_status in TRANSITION_MATRIX.get(current_status, [])


def validate_transition(current_status: TaskStatus, new_status: TaskStatus) -> None:
    """
    Validate a status transition and raise exception if invalid.

    Raises:
        StateTransitionError: If the transition is not allowed
    """
    if current_status == new_status:
        logger.debug(f"No-op transition: {current_status.value} → {new_status.value}")
        return

    if not is_transition_valid(current_status, new_status):
        allowed_transitions = TRANSITION_MATRIX.get(current_status, [])
        allowed_names = [s.value for s in allowed_transitions if s != current_status]

        error_msg = f"Invalid status transition: {current_status.value} → {new_status.value}."
        if allowed_names:
            error_msg += f" From {current_status.value}, you can only transition to: {', '.join(allowed_names)}."

        if current_status == TaskStatus.CLOSED:
            error_msg += " Closed tasks are terminal. A recurring condition raises a new task."
        elif new_status == TaskStatus.COMPLETED:
            error_msg += " Tasks must pass review before completion. Transition to 'under_review' first."

        logger.warning(f"Blocked transition: {error_msg}")
        raise StateTransitionError(
            message=error_msg,
            current_status=current_status,
            requested_status=new_status,
            allowed_transitions=allowed_transitions
        )

    logger.debug(f"Valid transition: {current_status.value} → {new_status.value}")


def get_allowed_transitions(current_status: TaskStatus) -> list[TaskStatus]:
    """List allowed next statuses, excluding the no-op."""
    return [s for s in TRANSITION_MATRIX.get(current_status, []) if s != current_status]
