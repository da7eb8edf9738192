"""State machine for opening a task view.

    INIT --open--> MARKING_READ --mark_read_done--> FETCHING_COMMENTS
    FETCHING_COMMENTS --fetch_succeeded--> READY
    FETCHING_COMMENTS --fetch_failed--> RETRYING
    RETRYING --retry_due--> FETCHING_COMMENTS
    RETRYING --retries_exhausted--> FAILED
    FAILED --manual_retry--> FETCHING_COMMENTS
    READY --comment_posted--> READY

``transition`` is pure: it never touches the network or the cache, so the
ordering of the async steps is fully described by the table below.
"""
import enum
import logging

logger = logging.getLogger("trialrisk-client.session_state")


class SessionState(str, enum.Enum):
    INIT = "init"
    MARKING_READ = "marking_read"
    FETCHING_COMMENTS = "fetching_comments"
    RETRYING = "retrying"
    READY = "ready"
    FAILED = "failed"


class SessionEvent(str, enum.Enum):
    OPEN = "open"
    MARK_READ_DONE = "mark_read_done"
    FETCH_SUCCEEDED = "fetch_succeeded"
    FETCH_FAILED = "fetch_failed"
    RETRY_DUE = "retry_due"
    RETRIES_EXHAUSTED = "retries_exhausted"
    MANUAL_RETRY = "manual_retry"
    COMMENT_POSTED = "comment_posted"


class SessionTransitionError(Exception):
    """Raised when an event is not allowed in the current state."""

    def __init__(self, state: SessionState, event: SessionEvent):
        super().__init__(f"Event '{event.value}' is not allowed in state '{state.value}'")
        self.state = state
        self.event = event


TRANSITIONS: dict[tuple[SessionState, SessionEvent], SessionState] = {
    (SessionState.INIT, SessionEvent.OPEN): SessionState.MARKING_READ,
    (SessionState.MARKING_READ, SessionEvent.MARK_READ_DONE): SessionState.FETCHING_COMMENTS,
    (SessionState.FETCHING_COMMENTS, SessionEvent.FETCH_SUCCEEDED): SessionState.READY,
    (SessionState.FETCHING_COMMENTS, SessionEvent.FETCH_FAILED): SessionState.RETRYING,
    (SessionState.RETRYING, SessionEvent.RETRY_DUE): SessionState.FETCHING_COMMENTS,
    (SessionState.RETRYING, SessionEvent.RETRIES_EXHAUSTED): SessionState.FAILED,
    (SessionState.FAILED, SessionEvent.MANUAL_RETRY): SessionState.FETCHING_COMMENTS,
    (SessionState.READY, SessionEvent.COMMENT_POSTED): SessionState.READY,
}


def transition(state: SessionState, event: SessionEvent) -> SessionState:
    """
    Next state for an event.

    Raises:
        SessionTransitionError: If the event is not allowed in ``state``
    """
    try:
        next_state = TRANSITIONS[(state, event)]
    except KeyError:
        raise SessionTransitionError(state, event) from None

    logger.debug(f"{state.value} --{event.value}--> {next_state.value}")
    return next_state
