"""Error taxonomy shared by the batch operations and the task API.

Batch operations (validate, materialize, dispatch) never raise ``DataError``
past the batch boundary. Each failing item is recorded as a ``BatchError`` in
the result summary and its siblings carry on. ``OpenTaskConflictError`` is
raised to the caller of a single task update.
"""
from dataclasses import dataclass
from typing import Optional


class DataError(ValueError):
    """Raised when an imported record cannot be parsed or found."""

    def __init__(self, record_id: str, message: str):
        super().__init__(f"{record_id}: {message}")
        self.record_id = record_id


@dataclass(frozen=True)
class BatchError:
    """One failed item in a batch result."""

    kind: str     # "data_error" or "persistence_error"
    item: str     # record id, dedup key or "task:user" pair
    message: str

    @classmethod
    def data_error(cls, error: DataError) -> "BatchError":
        return cls(kind="data_error", item=error.record_id, message=str(error))

    @classmethod
    def persistence_error(cls, item: str, error: Exception) -> "BatchError":
        return cls(kind="persistence_error", item=item, message=str(error))


class OpenTaskConflictError(Exception):
    """Raised when reopening a task would give its dedup key a second open task."""

    def __init__(self, task_code: str, open_task_code: Optional[str] = None):
        if open_task_code:
            message = f"Cannot reopen {task_code}: {open_task_code} is already open for the same finding"
        else:
            message = f"Cannot reopen {task_code}: another task is already open for the same finding"
        super().__init__(message)
        self.task_code = task_code
        self.open_task_code = open_task_code
