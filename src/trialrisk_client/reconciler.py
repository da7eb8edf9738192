"""Client view reconciler: open a task so the view is consistent.

Opening a task from a notification must show a thread that reflects the
notification being read, even though the read and the fetch are separate
requests and the thread is cached in two partitions. ``TaskViewSession``
drives the steps in order:

1. mark the notification read (retried; not confirmed is tolerated)
2. if mark-read was not confirmed, wait ``initial_delay`` before fetching
3. fetch the task and its comments, clearing both cache partitions before
   each attempt and backing off linearly between attempts
4. write the result into both partitions so the standard view and the
   notification view agree

Step 2 narrows, but does not close, the window in which the fetch can miss
the read. That eventual-consistency window is accepted.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from .api import FetchError, TaskApiClient
from .cache import CachePartition, CommentCache
from .config import ClientSettings, get_client_settings
from .session_state import SessionEvent, SessionState, transition

logger = logging.getLogger("trialrisk-client.reconciler")

Listener = Callable[["TaskViewSession"], None]


class TaskViewSession:
    """One opened task view.

    Args:
        api: API client
        cache: Comment cache shared by every view in the client
        task_id: Task being opened
        notification_id: Notification the task was opened from, if any
        settings: Retry and delay settings (default ``get_client_settings()``)
        listener: Called after every state change while the view is mounted
        sleep: Awaitable sleep, replaceable in tests
    """

    def __init__(
        self,
        api: TaskApiClient,
        cache: CommentCache,
        task_id: int,
        notification_id: Optional[int] = None,
        settings: Optional[ClientSettings] = None,
        listener: Optional[Listener] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api = api
        self.cache = cache
        self.task_id = task_id
        self.notification_id = notification_id
        self.settings = settings or get_client_settings()
        self.listener = listener
        self._sleep = sleep

        self.origin = CachePartition.NOTIFICATION if notification_id is not None else CachePartition.STANDARD
        self.state = SessionState.INIT
        self.task: Optional[dict] = None
        self.comments: list[dict] = []
        self.error: Optional[FetchError] = None
        self.mark_read_confirmed = False
        self.attempts = 0
        self._mounted = True

    @property
    def is_mounted(self) -> bool:
        return self._mounted

    def _advance(self, event: SessionEvent) -> None:
        self.state = transition(self.state, event)
        if self._mounted and self.listener is not None:
            self.listener(self)

    async def open(self) -> SessionState:
        """Run mark-read and the comment fetch. Ends in READY or FAILED."""
        self._advance(SessionEvent.OPEN)

        if self.notification_id is None:
            self.mark_read_confirmed = True
        else:
            self.mark_read_confirmed = await self._mark_read()

        self._advance(SessionEvent.MARK_READ_DONE)

        if not self.mark_read_confirmed:
            await self._sleep(self.settings.initial_delay)

        await self._fetch_with_retry()
        return self.state

    async def retry(self) -> SessionState:
        """Restart the fetch after FAILED."""
        self._advance(SessionEvent.MANUAL_RETRY)
        await self._fetch_with_retry()
        return self.state

    async def post_comment(self, comment: str, created_by: str, role: Optional[str] = None) -> dict:
        """
        Post a comment while READY.

        The new comment goes into both partitions and the local thread
        without refetching.

        Raises:
            SessionTransitionError: If the view is not READY
            FetchError: If the post fails
        """
        transition(self.state, SessionEvent.COMMENT_POSTED)

        posted = await self.api.post_comment(self.task_id, comment, created_by, role)
        self.cache.append(self.task_id, posted)
        if all(c.get("id") != posted.get("id") for c in self.comments):
            self.comments.append(posted)

        self._advance(SessionEvent.COMMENT_POSTED)
        return posted

    def close(self) -> None:
        """Unmount the view. Work in flight still fills the cache."""
        self._mounted = False

    async def _mark_read(self) -> bool:
        for attempt in range(1, self.settings.mark_read_attempts + 1):
            try:
                await self.api.mark_read([self.notification_id])
                logger.debug(f"Notification {self.notification_id} marked read (attempt {attempt})")
                return True
            except FetchError as e:
                logger.warning(
                    f"Mark-read of notification {self.notification_id} failed "
                    f"(attempt {attempt}/{self.settings.mark_read_attempts}): {e}"
                )
                if attempt < self.settings.mark_read_attempts:
                    await self._sleep(self.settings.backoff_step * attempt)
        return False

    async def _fetch_with_retry(self) -> None:
        attempt = 0
        while True:
            attempt += 1
            self.attempts = attempt
            self.cache.clear(self.task_id)

            try:
                task = await self.api.get_task(self.task_id)
                comments = await self.api.get_comments(self.task_id, self.origin)
            except FetchError as e:
                self.error = e
                self._advance(SessionEvent.FETCH_FAILED)

                if attempt >= self.settings.max_attempts:
                    logger.error(f"Giving up on task {self.task_id} after {attempt} attempts: {e}")
                    self._advance(SessionEvent.RETRIES_EXHAUSTED)
                    return

                delay = self.settings.backoff_step * attempt
                logger.info(f"Fetch of task {self.task_id} failed, retrying in {delay:.2f}s")
                await self._sleep(delay)
                self._advance(SessionEvent.RETRY_DUE)
                continue

            merged: list[dict] = []
            for partition in CachePartition:
                merged = self.cache.merge_into(partition, self.task_id, comments)

            self.task = task
            self.comments = merged
            self.error = None
            self._advance(SessionEvent.FETCH_SUCCEEDED)
            return
