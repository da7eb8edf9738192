"""Tests for TaskViewSession against a mocked API."""
import json

import httpx
import pytest
import pytest_asyncio

from trialrisk_client import (
    CachePartition,
    ClientSettings,
    CommentCache,
    FetchError,
    FetchTimeoutError,
    SessionState,
    SessionTransitionError,
    TaskApiClient,
    TaskViewSession,
)

TASK_ID = 7
NOTIFICATION_ID = 42


class FakeApi:
    """In-memory stand-in for the task and notification endpoints.

    ``failures`` holds how many upcoming calls of each kind answer 500;
    a negative count fails forever.
    """

    def __init__(self):
        self.comments = [
            {"id": 1, "task_id": TASK_ID, "comment": "Value confirmed with site", "created_by": "cra"},
        ]
        self.failures = {"mark_read": 0, "task": 0, "comments": 0}
        self.timeout_on = None
        # kind -> callable building a replacement 200 response
        self.overrides = {}
        self.requests: list[httpx.Request] = []

    def _should_fail(self, kind):
        remaining = self.failures[kind]
        if remaining == 0:
            return False
        if remaining > 0:
            self.failures[kind] = remaining - 1
        return True

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path.endswith("/notifications/mark-read"):
            kind = "mark_read"
        elif path.endswith("/comments"):
            kind = "comments"
        else:
            kind = "task"

        if self.timeout_on == kind:
            raise httpx.ReadTimeout("timed out", request=request)
        if kind in self.overrides:
            return self.overrides[kind]()
        if self._should_fail(kind):
            return httpx.Response(500, json={"detail": "boom"})

        if kind == "mark_read":
            return httpx.Response(200, json={"count": len(json.loads(request.content)["ids"])})
        if kind == "task":
            return httpx.Response(200, json={"id": TASK_ID, "task_id": "HIGH_0000000A", "title": "Check ALT"})
        if request.method == "POST":
            body = json.loads(request.content)
            comment = {"id": len(self.comments) + 1, "task_id": TASK_ID, **body}
            self.comments.append(comment)
            return httpx.Response(201, json=comment)
        return httpx.Response(200, json=list(self.comments))

    def paths(self, method="GET"):
        return [r.url.path for r in self.requests if r.method == method]


class RecordingSleep:
    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def server():
    return FakeApi()


@pytest.fixture
def settings():
    return ClientSettings(api_base_url="http://test/api/v1")


@pytest_asyncio.fixture
async def api(server, settings):
    client = TaskApiClient.from_settings(1, settings, transport=httpx.MockTransport(server))
    yield client
    await client.aclose()


@pytest.fixture
def cache():
    return CommentCache()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def make_session(api, cache, settings, sleep):
    def _make_session(notification_id=NOTIFICATION_ID, listener=None):
        return TaskViewSession(
            api, cache, TASK_ID,
            notification_id=notification_id,
            settings=settings,
            listener=listener,
            sleep=sleep,
        )

    return _make_session


class TestOpenFromNotification:
    """Test the mark-read → fetch ordering."""

    @pytest.mark.asyncio
    async def test_mark_read_precedes_fetch(self, server, make_session, cache):
        session = make_session()

        assert await session.open() == SessionState.READY
        assert server.paths("POST") == ["/api/v1/notifications/mark-read"]
        assert server.requests[0].method == "POST"
        assert session.mark_read_confirmed is True
        assert session.task["id"] == TASK_ID
        assert [c["id"] for c in session.comments] == [1]
        assert cache.get(CachePartition.STANDARD, TASK_ID) == cache.get(CachePartition.NOTIFICATION, TASK_ID)

    @pytest.mark.asyncio
    async def test_mark_read_retried_once(self, server, make_session, sleep, cache):
        """A single mark-read failure is retried; both partitions end up equal."""
        server.failures["mark_read"] = 1
        session = make_session()

        assert await session.open() == SessionState.READY
        assert server.paths("POST") == ["/api/v1/notifications/mark-read"] * 2
        assert sleep.delays == [pytest.approx(0.3)]
        assert cache.get(CachePartition.STANDARD, TASK_ID) == cache.get(CachePartition.NOTIFICATION, TASK_ID)

    @pytest.mark.asyncio
    async def test_unconfirmed_mark_read_waits_before_fetch(self, server, make_session, sleep):
        server.failures["mark_read"] = -1
        session = make_session()

        assert await session.open() == SessionState.READY
        assert session.mark_read_confirmed is False
        assert sleep.delays == [pytest.approx(0.3), pytest.approx(0.25)]

    @pytest.mark.asyncio
    async def test_comment_requests_bypass_caches(self, server, make_session):
        await make_session().open()
        await make_session().open()

        comment_requests = [r for r in server.requests if r.url.path.endswith("/comments")]
        busters = [r.url.params["t"] for r in comment_requests]
        assert len(busters) == 2
        assert len(set(busters)) == 2
        assert all(r.url.params["from"] == "notification" for r in comment_requests)
        assert all(r.headers["Cache-Control"] == "no-cache" for r in comment_requests)

    @pytest.mark.asyncio
    async def test_standard_open_skips_mark_read(self, server, make_session, sleep):
        session = make_session(notification_id=None)

        assert await session.open() == SessionState.READY
        assert server.paths("POST") == []
        assert sleep.delays == []
        comment_request = [r for r in server.requests if r.url.path.endswith("/comments")][0]
        assert comment_request.url.params["from"] == "standard"


class TestFetchRetry:
    """Test linear backoff and manual retry."""

    @pytest.mark.asyncio
    async def test_recovers_after_two_failures(self, server, make_session, sleep):
        server.failures["comments"] = 2
        session = make_session(notification_id=None)

        assert await session.open() == SessionState.READY
        assert session.attempts == 3
        assert sleep.delays == [pytest.approx(0.3), pytest.approx(0.6)]
        assert session.error is None

    @pytest.mark.asyncio
    async def test_exhausted_then_manual_retry(self, server, make_session, sleep):
        server.failures["task"] = -1
        states = []
        session = make_session(notification_id=None, listener=lambda s: states.append(s.state))

        assert await session.open() == SessionState.FAILED
        assert isinstance(session.error, FetchError)
        assert session.error.status_code == 500
        assert states[-2:] == [SessionState.RETRYING, SessionState.FAILED]

        server.failures["task"] = 0
        assert await session.retry() == SessionState.READY
        assert session.comments

    @pytest.mark.asyncio
    async def test_cache_cleared_before_each_attempt(self, server, make_session, cache):
        cache.append(TASK_ID, {"id": 99, "comment": "stale"})
        server.failures["comments"] = -1

        await make_session(notification_id=None).open()

        assert cache.get(CachePartition.STANDARD, TASK_ID) is None
        assert cache.get(CachePartition.NOTIFICATION, TASK_ID) is None

    @pytest.mark.asyncio
    async def test_timeout_surfaces_as_fetch_timeout(self, server, api):
        server.timeout_on = "task"
        with pytest.raises(FetchTimeoutError):
            await api.get_task(TASK_ID)


class TestMalformedResponses:
    """Test 2xx responses whose body is not what the client expects."""

    @pytest.mark.asyncio
    async def test_non_json_comments_end_in_failed_then_recover(self, server, make_session, sleep):
        server.overrides["comments"] = lambda: httpx.Response(200, text="<html>proxy</html>")
        session = make_session(notification_id=None)

        assert await session.open() == SessionState.FAILED
        assert isinstance(session.error, FetchError)
        assert session.error.status_code == 200
        assert session.attempts == 3
        assert sleep.delays == [pytest.approx(0.3), pytest.approx(0.6)]

        del server.overrides["comments"]
        assert await session.retry() == SessionState.READY

    @pytest.mark.asyncio
    @pytest.mark.parametrize("response", [
        lambda: httpx.Response(200, text="<html>login</html>"),
        lambda: httpx.Response(200, json={"ok": True}),
    ])
    async def test_unreadable_mark_read_counts_as_unconfirmed(self, server, make_session, sleep, response):
        server.overrides["mark_read"] = response
        session = make_session()

        assert await session.open() == SessionState.READY
        assert session.mark_read_confirmed is False
        assert sleep.delays == [pytest.approx(0.3), pytest.approx(0.25)]

    @pytest.mark.asyncio
    async def test_wrong_shape_is_a_fetch_error(self, server, api):
        server.overrides["comments"] = lambda: httpx.Response(200, json={"detail": "not a list"})
        server.overrides["task"] = lambda: httpx.Response(200, json=[1, 2])

        with pytest.raises(FetchError):
            await api.get_comments(TASK_ID)
        with pytest.raises(FetchError):
            await api.get_task(TASK_ID)


class TestPostComment:
    """Test posting into a ready view."""

    @pytest.mark.asyncio
    async def test_posted_comment_visible_without_refetch(self, server, make_session, cache):
        session = make_session()
        await session.open()
        gets_before = len(server.paths("GET"))

        posted = await session.post_comment("Query raised with site", "dana", role="Data Manager")

        assert session.state == SessionState.READY
        assert posted in session.comments
        assert len(server.paths("GET")) == gets_before
        for partition in CachePartition:
            assert posted in cache.get(partition, TASK_ID)

        standard = make_session(notification_id=None)
        await standard.open()
        assert posted["id"] in [c["id"] for c in standard.comments]

    @pytest.mark.asyncio
    async def test_post_requires_ready(self, server, make_session):
        session = make_session()

        with pytest.raises(SessionTransitionError):
            await session.post_comment("too early", "dana")
        assert server.requests == []


class TestUnmount:
    @pytest.mark.asyncio
    async def test_closed_view_still_fills_cache(self, make_session, cache):
        calls = []
        session = make_session(listener=lambda s: calls.append(s.state))
        session.close()

        assert await session.open() == SessionState.READY
        assert calls == []
        assert session.is_mounted is False
        assert cache.get(CachePartition.NOTIFICATION, TASK_ID)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
