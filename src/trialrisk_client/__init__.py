"""Trial risk client: consistent task views opened from notifications.

Modules:
- config: client settings
- api: async HTTP client for the trial risk API
- cache: comment cache with standard and notification-origin partitions
- session_state: task-open session state machine
- reconciler: TaskViewSession, which drives mark-read and comment fetches
"""

__version__ = "1.0.0"

from .api import FetchError, FetchTimeoutError, TaskApiClient
from .cache import CachePartition, CommentCache
from .config import ClientSettings, get_client_settings
from .reconciler import TaskViewSession
from .session_state import SessionEvent, SessionState, SessionTransitionError

__all__ = [
    "CachePartition",
    "ClientSettings",
    "CommentCache",
    "FetchError",
    "FetchTimeoutError",
    "SessionEvent",
    "SessionState",
    "SessionTransitionError",
    "TaskApiClient",
    "TaskViewSession",
    "get_client_settings",
    "__version__",
]
