"""Async HTTP client for the trial risk API."""
import logging
import time
import uuid
from typing import Any, Optional

import httpx

from .cache import CachePartition
from .config import ClientSettings, get_client_settings

logger = logging.getLogger("trialrisk-client.api")


class FetchError(Exception):
    """A request failed: network error or non-2xx response."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FetchTimeoutError(FetchError):
    """A request exceeded the client timeout."""


def cache_buster() -> str:
    """Unique ``t`` query value, e.g. ``1718000000000_3f9a01bc``."""
    return f"{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


class TaskApiClient:
    """
    Thin wrapper over ``httpx.AsyncClient`` for the task view endpoints.

    Every failure surfaces as ``FetchError`` (or ``FetchTimeoutError``) so
    callers have a single exception family to retry on.
    """

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    @classmethod
    def from_settings(
        cls,
        user_id: int,
        settings: Optional[ClientSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> "TaskApiClient":
        settings = settings or get_client_settings()
        client = httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout,
            headers={"X-User-Id": str(user_id)},
            transport=transport,
        )
        return cls(client)

    async def aclose(self) -> None:
        await self.client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = await self.client.request(method, url, **kwargs)
            response.raise_for_status()
            return response.json()
        except httpx.TimeoutException as e:
            logger.warning(f"{method} {url} timed out")
            raise FetchTimeoutError(f"{method} {url} timed out") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning(f"{method} {url} failed with HTTP {status}")
            raise FetchError(f"{method} {url} failed with HTTP {status}", status_code=status) from e
        except httpx.RequestError as e:
            logger.warning(f"{method} {url} failed: {e}")
            raise FetchError(f"{method} {url} failed: {e}") from e
        except ValueError as e:
            logger.warning(f"{method} {url} returned a body that is not JSON")
            raise FetchError(
                f"{method} {url} returned a body that is not JSON", status_code=response.status_code
            ) from e

    async def mark_read(self, notification_ids: list[int]) -> int:
        """Mark notifications read; returns how many the server confirmed."""
        result = await self._request("POST", "/notifications/mark-read", json={"ids": notification_ids})
        try:
            return int(result["count"])
        except (KeyError, TypeError, ValueError) as e:
            raise FetchError(f"Unexpected mark-read response: {result!r}") from e

    async def get_task(self, task_id: int) -> dict:
        task = await self._request("GET", f"/tasks/{task_id}")
        if not isinstance(task, dict):
            raise FetchError(f"Unexpected task response for {task_id}: {type(task).__name__}")
        return task

    async def get_comments(
        self,
        task_id: int,
        origin: CachePartition = CachePartition.STANDARD,
    ) -> list[dict]:
        """Fetch a task's comment thread, bypassing any HTTP cache."""
        params = {"t": cache_buster(), "from": origin.value}
        comments = await self._request(
            "GET",
            f"/tasks/{task_id}/comments",
            params=params,
            headers={"Cache-Control": "no-cache"},
        )
        if not isinstance(comments, list) or not all(isinstance(c, dict) for c in comments):
            raise FetchError(f"Unexpected comments response for task {task_id}")
        logger.debug(f"Fetched {len(comments)} comments for task {task_id} ({origin.value})")
        return comments

    async def post_comment(
        self,
        task_id: int,
        comment: str,
        created_by: str,
        role: Optional[str] = None,
    ) -> dict:
        payload = {"comment": comment, "created_by": created_by, "role": role}
        posted = await self._request("POST", f"/tasks/{task_id}/comments", json=payload)
        if not isinstance(posted, dict):
            raise FetchError(f"Unexpected comment response for task {task_id}")
        return posted
