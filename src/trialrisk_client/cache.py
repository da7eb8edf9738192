"""Comment cache with two partitions over the same comment data.

A task's thread is cached once for the standard task view and once for the
view opened from a notification. The two are filled by different requests
and can drift apart; ``merge_into`` and ``append`` are the only writers and
the reconciler always writes both.
"""
import enum
import logging
from typing import Iterable, Optional

logger = logging.getLogger("trialrisk-client.cache")

Comment = dict


class CachePartition(str, enum.Enum):
    STANDARD = "standard"
    NOTIFICATION = "notification"


def _merge(existing: list[Comment], incoming: Iterable[Comment]) -> list[Comment]:
    """Union by comment id; incoming copies win. Ordered by id, id-less comments last."""
    by_id: dict = {}
    without_id: list[Comment] = []
    for comment in list(existing) + list(incoming):
        if comment.get("id") is None:
            if comment not in without_id:
                without_id.append(comment)
        else:
            by_id[comment["id"]] = comment
    return [by_id[key] for key in sorted(by_id)] + without_id


class CommentCache:
    """In-memory comment threads keyed by (partition, task id)."""

    def __init__(self):
        self._partitions: dict[CachePartition, dict[int, list[Comment]]] = {
            partition: {} for partition in CachePartition
        }

    def get(self, partition: CachePartition, task_id: int) -> Optional[list[Comment]]:
        """Cached thread, or None when the partition holds nothing for the task."""
        comments = self._partitions[partition].get(task_id)
        return list(comments) if comments is not None else None

    def clear(self, task_id: int, partitions: Optional[Iterable[CachePartition]] = None) -> None:
        """Drop a task's thread from the given partitions (default: both)."""
        for partition in partitions or CachePartition:
            self._partitions[partition].pop(task_id, None)
        logger.debug(f"Cleared cached comments for task {task_id}")

    def merge_into(self, partition: CachePartition, task_id: int, comments: Iterable[Comment]) -> list[Comment]:
        """Merge a fetched thread into one partition and return the result."""
        merged = _merge(self._partitions[partition].get(task_id, []), comments)
        self._partitions[partition][task_id] = merged
        return list(merged)

    def append(self, task_id: int, comment: Comment) -> None:
        """Add a newly posted comment to both partitions."""
        for partition in CachePartition:
            self.merge_into(partition, task_id, [comment])
