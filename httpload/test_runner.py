"""
Tests for the load test runner.

Most tests use httpx.MockTransport so that they exercise the worker pool,
dispatcher and stop conditions without sockets; a few run against the local
server fixture to cover the real transport.
"""

import asyncio
import time

import httpx
import pytest

from httpload.config import ConfigValidationError, LoadConfig
from httpload.runner import Runner, run_load_test_sync


def _ok_transport(body: bytes = b"ok") -> httpx.MockTransport:
    async def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=body)

    return httpx.MockTransport(handler)


def _flaky_transport() -> httpx.MockTransport:
    """Every third request gets a 500."""
    calls = 0

    async def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(500 if calls % 3 == 0 else 200)

    return httpx.MockTransport(handler)


def _assert_accounted(result):
    assert result.success_count + result.failure_count == result.total_requests
    assert sum(result.status_codes.values()) + sum(result.errors.values()) == result.total_requests


class TestRequestCount:
    """Runs bounded by a request count."""

    @pytest.mark.asyncio
    async def test_exact_request_count(self):
        config = LoadConfig(url="http://test/", requests=100, concurrency=10)
        result = await Runner(config, transport=_ok_transport()).run()

        assert result.total_requests == 100
        assert result.success_count == 100
        assert result.failure_count == 0
        assert result.status_codes == {200: 100}
        assert result.bytes_received == 200
        assert len(result.latencies) == 100
        assert result.start_time is not None
        assert result.end_time >= result.start_time

    @pytest.mark.asyncio
    async def test_fewer_requests_than_workers(self):
        config = LoadConfig(url="http://test/", requests=3, concurrency=10)
        result = await Runner(config, transport=_ok_transport()).run()

        assert result.total_requests == 3

    @pytest.mark.asyncio
    async def test_mixed_statuses(self):
        config = LoadConfig(url="http://test/", requests=30, concurrency=5)
        result = await Runner(config, transport=_flaky_transport()).run()

        assert result.total_requests == 30
        assert result.success_count == 20
        assert result.failure_count == 10
        assert result.status_codes == {200: 20, 500: 10}
        _assert_accounted(result)

    @pytest.mark.asyncio
    async def test_request_count_reached_before_duration(self):
        config = LoadConfig(url="http://test/", requests=10, duration_seconds=10, concurrency=2)

        result = await Runner(config, transport=_ok_transport()).run()

        assert result.total_requests == 10
        assert result.duration_seconds < 5


class TestDuration:
    """Runs bounded by a duration."""

    @pytest.mark.asyncio
    async def test_duration(self):
        config = LoadConfig(url="http://test/", duration_seconds=0.5, concurrency=4)

        result = await Runner(config, transport=_ok_transport()).run()

        assert result.total_requests > 0
        assert result.duration_seconds >= 0.5
        assert result.duration_seconds < 3
        assert result.requests_per_second == pytest.approx(
            result.total_requests / result.duration_seconds
        )
        _assert_accounted(result)

    @pytest.mark.asyncio
    async def test_duration_reached_before_request_count(self):
        config = LoadConfig(
            url="http://test/", requests=10**9, duration_seconds=0.3, concurrency=2
        )

        result = await Runner(config, transport=_ok_transport()).run()

        assert 0 < result.total_requests < 10**9
        assert result.duration_seconds >= 0.3


class TestRateLimit:
    """Rate limited dispatch."""

    @pytest.mark.asyncio
    async def test_rate_limit(self):
        config = LoadConfig(url="http://test/", duration_seconds=1, rate_limit=20, concurrency=5)

        result = await Runner(config, transport=_ok_transport()).run()

        # 20 req/s for 1s, within 30%
        assert 14 <= result.total_requests <= 26

    @pytest.mark.asyncio
    async def test_rate_limit_with_request_count(self):
        config = LoadConfig(url="http://test/", requests=5, rate_limit=50, concurrency=5)

        start = time.monotonic()
        result = await Runner(config, transport=_ok_transport()).run()
        elapsed = time.monotonic() - start

        assert result.total_requests == 5
        # Five ticks at 20ms intervals
        assert elapsed >= 0.08


class TestCancellation:
    """Stopping a run early."""

    @pytest.mark.asyncio
    async def test_cancel_event(self):
        config = LoadConfig(url="http://test/", concurrency=3)
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.2, cancel.set)

        result = await asyncio.wait_for(
            Runner(config, transport=_ok_transport()).run(cancel=cancel), timeout=5
        )

        assert result.total_requests > 0
        assert result.duration_seconds >= 0.15
        _assert_accounted(result)

    @pytest.mark.asyncio
    async def test_stop(self):
        config = LoadConfig(url="http://test/", concurrency=3)
        runner = Runner(config, transport=_ok_transport())
        asyncio.get_running_loop().call_later(0.2, runner.stop)

        result = await asyncio.wait_for(runner.run(), timeout=5)

        assert result.total_requests > 0

    @pytest.mark.asyncio
    async def test_cancel_already_set(self):
        config = LoadConfig(url="http://test/", requests=100)
        cancel = asyncio.Event()
        cancel.set()

        result = await Runner(config, transport=_ok_transport()).run(cancel=cancel)

        assert result.total_requests == 0
        assert result.p99_ms == 0.0

    @pytest.mark.asyncio
    async def test_in_flight_requests_complete(self):
        calls = 0

        async def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            await asyncio.sleep(0.3)
            return httpx.Response(200)

        config = LoadConfig(url="http://test/", concurrency=5)
        cancel = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, cancel.set)

        result = await Runner(config, transport=httpx.MockTransport(handler)).run(cancel=cancel)

        assert result.total_requests >= 5
        assert result.total_requests == calls
        assert result.success_count == calls
        assert result.errors == {}

    @pytest.mark.asyncio
    async def test_outer_cancellation_leaves_no_tasks(self):
        config = LoadConfig(url="http://test/", concurrency=4)
        task = asyncio.create_task(Runner(config, transport=_ok_transport()).run())
        await asyncio.sleep(0.1)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert [t for t in asyncio.all_tasks() if t is not asyncio.current_task()] == []

    @pytest.mark.asyncio
    async def test_outer_cancellation_while_waiting_for_tick(self):
        config = LoadConfig(url="http://test/", rate_limit=0.5, concurrency=1)
        task = asyncio.create_task(Runner(config, transport=_ok_transport()).run())
        await asyncio.sleep(0.1)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert [t for t in asyncio.all_tasks() if t is not asyncio.current_task()] == []

    @pytest.mark.asyncio
    async def test_no_tasks_left_after_run(self):
        config = LoadConfig(url="http://test/", requests=20, rate_limit=200, concurrency=4)
        await Runner(config, transport=_ok_transport()).run()

        assert [t for t in asyncio.all_tasks() if t is not asyncio.current_task()] == []


class TestRequests:
    """Request construction and byte accounting."""

    @pytest.mark.asyncio
    async def test_headers_and_body(self):
        seen = []

        async def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.headers.get("x-token"), request.content))
            return httpx.Response(201, content=b"12345")

        config = LoadConfig(
            url="http://test/items",
            method="post",
            headers={"X-Token": "secret"},
            body=b"hello",
            requests=4,
            concurrency=2,
        )
        result = await Runner(config, transport=httpx.MockTransport(handler)).run()

        assert seen == [("POST", "secret", b"hello")] * 4
        assert result.bytes_sent == 20
        assert result.bytes_received == 20
        assert result.status_codes == {201: 4}

    @pytest.mark.asyncio
    async def test_request_factory(self):
        seen = []
        counter = 0

        def factory() -> httpx.Request:
            nonlocal counter
            counter += 1
            return httpx.Request("PUT", f"http://test/items/{counter}", content=b"abc")

        async def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.path, request.headers.get("x-extra")))
            return httpx.Response(200)

        config = LoadConfig(
            headers={"X-Extra": "1"},
            requests=5,
            concurrency=1,
            request_factory=factory,
        )
        result = await Runner(config, transport=httpx.MockTransport(handler)).run()

        assert result.success_count == 5
        assert result.bytes_sent == 15
        assert sorted(seen) == [(f"/items/{i}", "1") for i in range(1, 6)]

    @pytest.mark.asyncio
    async def test_request_factory_failures(self):
        counter = 0

        def factory() -> httpx.Request:
            nonlocal counter
            counter += 1
            if counter % 2 == 0:
                raise RuntimeError("cannot sign request")
            return httpx.Request("GET", "http://test/")

        config = LoadConfig(requests=10, concurrency=2, request_factory=factory)
        result = await Runner(config, transport=_ok_transport()).run()

        assert result.total_requests == 10
        assert result.success_count == 5
        assert result.errors == {"request-build": 5}
        assert len(result.latencies) == 5
        _assert_accounted(result)

    @pytest.mark.asyncio
    async def test_request_factory_returning_non_request(self):
        config = LoadConfig(requests=5, concurrency=1, request_factory=lambda: "http://test/")

        result = await asyncio.wait_for(
            Runner(config, transport=_ok_transport()).run(), timeout=5
        )

        assert result.total_requests == 5
        assert result.errors == {"request-build": 5}
        _assert_accounted(result)

    @pytest.mark.asyncio
    async def test_unexpected_send_error(self):
        async def handler(request: httpx.Request) -> httpx.Response:
            raise RuntimeError("transport bug")

        config = LoadConfig(url="http://test/", requests=4, concurrency=1)
        result = await asyncio.wait_for(
            Runner(config, transport=httpx.MockTransport(handler)).run(), timeout=5
        )

        assert result.errors == {"other": 4}
        _assert_accounted(result)

    @pytest.mark.asyncio
    async def test_worker_failure_stops_run(self, monkeypatch):
        async def broken_execute(self, client, result):
            raise RuntimeError("worker bug")

        monkeypatch.setattr(Runner, "_execute", broken_execute)
        config = LoadConfig(url="http://test/", concurrency=1)

        result = await asyncio.wait_for(
            Runner(config, transport=_ok_transport()).run(), timeout=5
        )

        assert result.total_requests == 0
        assert [t for t in asyncio.all_tasks() if t is not asyncio.current_task()] == []

    @pytest.mark.asyncio
    async def test_timeout(self):
        async def handler(request: httpx.Request) -> httpx.Response:
            await asyncio.sleep(2)
            return httpx.Response(200)

        config = LoadConfig(url="http://test/", requests=3, concurrency=3, timeout_seconds=0.1)
        result = await Runner(config, transport=httpx.MockTransport(handler)).run()

        assert result.errors == {"timeout": 3}
        assert result.failure_count == 3
        assert result.latencies == []
        assert result.duration_seconds < 2

    @pytest.mark.asyncio
    async def test_transport_errors_are_classified(self):
        async def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.RemoteProtocolError("peer closed connection", request=request)

        config = LoadConfig(url="http://test/", requests=4, concurrency=2)
        result = await Runner(config, transport=httpx.MockTransport(handler)).run()

        assert result.errors == {"other": 4}


class TestInvalidConfig:
    """Configs that cannot run."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["", "ftp://example.com/", "http://"])
    async def test_invalid_url(self, url):
        with pytest.raises(ConfigValidationError):
            await Runner(LoadConfig(url=url, requests=1)).run()

    @pytest.mark.asyncio
    async def test_invalid_method(self):
        with pytest.raises(ConfigValidationError):
            await Runner(LoadConfig(url="http://test/", method="BAD METHOD", requests=1)).run()


class TestRealTransport:
    """Runs against the local HTTP server."""

    @pytest.mark.asyncio
    async def test_local_server(self, http_server):
        config = LoadConfig(url=f"{http_server}/", requests=50, concurrency=5, timeout_seconds=5)
        result = await Runner(config).run()

        assert result.total_requests == 50
        assert result.success_count == 50
        assert result.bytes_received == 100
        assert result.min_latency_ms > 0

    @pytest.mark.asyncio
    async def test_flaky_endpoint(self, http_server):
        config = LoadConfig(url=f"{http_server}/flaky", requests=30, concurrency=3, timeout_seconds=5)
        result = await Runner(config).run()

        assert result.total_requests == 30
        assert result.status_codes == {200: 20, 500: 10}
        assert result.failure_count == 10

    @pytest.mark.asyncio
    async def test_post_body(self, http_server):
        config = LoadConfig(
            url=f"{http_server}/",
            method="POST",
            body=b'{"key": "value"}',
            headers={"Content-Type": "application/json"},
            requests=10,
            concurrency=2,
            timeout_seconds=5,
        )
        result = await Runner(config).run()

        assert result.success_count == 10
        assert result.bytes_sent == 160

    @pytest.mark.asyncio
    async def test_connection_refused(self, unused_port):
        config = LoadConfig(
            url=f"http://127.0.0.1:{unused_port}/",
            requests=5,
            concurrency=1,
            timeout_seconds=0.1,
        )
        result = await Runner(config).run()

        assert result.total_requests == 5
        assert result.success_count == 0
        assert result.errors == {"connection-refused": 5}
        assert result.status_codes == {}


def test_run_load_test_sync():
    config = LoadConfig(url="http://test/", requests=7, concurrency=2)

    result = run_load_test_sync(config, transport=_ok_transport())

    assert result.total_requests == 7
    assert result.success_count == 7
