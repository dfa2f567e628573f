"""
HTTP load generation.

This module provides the Runner, which executes one LoadConfig against one
target with a fixed pool of worker tasks fed by a single dispatcher.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Iterable, Optional

import httpx

from .config import ConfigValidationError, LoadConfig
from .errors import ErrorClass, classify_error
from .result import LoadResult

logger = logging.getLogger(__name__)

# Queue items: one token per request, one close marker per worker
_TOKEN = object()
_CLOSE = object()

KEEPALIVE_EXPIRY_SECONDS = 90.0


class Runner:
    """
    Executes a load test against a single HTTP target.

    Each call to run() starts `concurrency` worker tasks, one dispatcher
    task and, when rate limited, one ticker task. All of them finish before
    run() returns.
    """

    def __init__(
        self,
        config: LoadConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the runner.

        Args:
            config: Configuration for the run
            transport: Optional httpx transport, mainly for tests
        """
        self.config = config
        self._transport = transport
        self._stop_event: Optional[asyncio.Event] = None

    def _create_client(self) -> httpx.AsyncClient:
        pool_size = self.config.concurrency * 2
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.config.timeout_seconds),
            limits=httpx.Limits(
                max_connections=pool_size,
                max_keepalive_connections=pool_size,
                keepalive_expiry=KEEPALIVE_EXPIRY_SECONDS,
            ),
            transport=self._transport,
            trust_env=False,
        )

    def _build_request(self, client: httpx.AsyncClient) -> httpx.Request:
        config = self.config
        if config.request_factory is None:
            return client.build_request(
                config.method,
                config.url,
                headers=config.headers,
                content=config.body,
            )

        request = config.request_factory()
        for name, value in config.headers.items():
            request.headers[name] = value
        return request

    def _check_base_request(self, client: httpx.AsyncClient) -> None:
        """Fail the run early if the plain request cannot be built at all."""
        if self.config.request_factory is not None:
            return
        try:
            self._build_request(client)
        except (httpx.InvalidURL, httpx.UnsupportedProtocol, TypeError, ValueError) as e:
            raise ConfigValidationError(
                f"Cannot build request for {self.config.url}: {e}",
                errors=[str(e)],
            ) from e

    async def _execute(self, client: httpx.AsyncClient, result: LoadResult) -> None:
        """Send one request and record its outcome."""
        try:
            request = self._build_request(client)
            try:
                bytes_sent = len(request.content)
            except httpx.RequestNotRead:
                bytes_sent = 0
        except Exception:
            # The factory is user code; anything it returns that cannot be sent
            # is a per-request failure
            result.record_error(ErrorClass.REQUEST_BUILD)
            return

        loop = asyncio.get_running_loop()
        start = loop.time()
        try:
            response = await asyncio.wait_for(
                client.send(request), timeout=self.config.timeout_seconds
            )
        except asyncio.TimeoutError:
            result.record_error(ErrorClass.TIMEOUT, bytes_sent=bytes_sent)
            return
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            result.record_error(classify_error(e), bytes_sent=bytes_sent)
            return
        except Exception:
            logger.debug("Unexpected error sending request", exc_info=True)
            result.record_error(ErrorClass.OTHER, bytes_sent=bytes_sent)
            return
        latency_ms = (loop.time() - start) * 1000

        result.record_response(
            response.status_code,
            latency_ms,
            bytes_sent=bytes_sent,
            bytes_received=len(response.content),
        )

    async def _worker(
        self,
        client: httpx.AsyncClient,
        queue: asyncio.Queue,
        result: LoadResult,
    ) -> None:
        while True:
            token = await queue.get()
            if token is _CLOSE:
                return
            try:
                await self._execute(client, result)
            except Exception:
                # Keep draining so the dispatcher never blocks on a dead pool
                logger.exception("Worker failed, stopping the run")
                if self._stop_event is not None:
                    self._stop_event.set()

    async def _tick(self, ticks: asyncio.Queue, interval: float) -> None:
        """Emit a tick every interval; ticks nobody has taken are dropped."""
        loop = asyncio.get_running_loop()
        next_tick = loop.time() + interval
        while True:
            await asyncio.sleep(max(0.0, next_tick - loop.time()))
            next_tick += interval
            now = loop.time()
            if next_tick < now:
                next_tick += ((now - next_tick) // interval + 1) * interval
            if ticks.empty():
                ticks.put_nowait(None)

    def _stop_reason(
        self,
        deadline: Optional[float],
        stop_events: Iterable[asyncio.Event],
    ) -> Optional[str]:
        if any(event.is_set() for event in stop_events):
            return "cancelled"
        if deadline is not None and asyncio.get_running_loop().time() >= deadline:
            return "duration elapsed"
        return None

    async def _wait_or_stop(
        self,
        awaitable: Awaitable,
        deadline: Optional[float],
        stop_waiters: list[asyncio.Future],
    ) -> bool:
        """Wait for awaitable unless a stop condition fires first.

        Returns:
            True if the awaitable completed, False if it was abandoned
        """
        task = asyncio.ensure_future(awaitable)
        timeout = None
        if deadline is not None:
            timeout = max(0.0, deadline - asyncio.get_running_loop().time())

        try:
            done, _ = await asyncio.wait(
                [task, *stop_waiters],
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.wait([task])
            raise

        if task in done:
            return True

        task.cancel()
        await asyncio.wait([task])
        return not task.cancelled()

    async def _dispatch(
        self,
        queue: asyncio.Queue,
        ticks: Optional[asyncio.Queue],
        deadline: Optional[float],
        stop_events: list[asyncio.Event],
        stop_waiters: list[asyncio.Future],
    ) -> tuple[int, str]:
        """Produce dispatch tokens until a stop condition fires.

        Returns:
            Tuple of (tokens dispatched, stop reason)
        """
        limit = self.config.requests
        dispatched = 0

        while True:
            reason = self._stop_reason(deadline, stop_events)
            if reason:
                break
            if limit and dispatched >= limit:
                reason = "request limit reached"
                break

            # A wait abandoned here is re-checked at the top of the loop
            if ticks is not None and not await self._wait_or_stop(
                ticks.get(), deadline, stop_waiters
            ):
                continue
            if not await self._wait_or_stop(queue.put(_TOKEN), deadline, stop_waiters):
                continue
            dispatched += 1

        for _ in range(self.config.concurrency):
            await queue.put(_CLOSE)

        return dispatched, reason

    async def run(self, cancel: Optional[asyncio.Event] = None) -> LoadResult:
        """Run the load test.

        Stops dispatching new requests as soon as the request count is
        reached, the duration elapses, `cancel` is set or stop() is called.
        Requests already dispatched are allowed to finish.

        Args:
            cancel: Optional event that stops the run when set

        Returns:
            Result of the run

        Raises:
            ConfigValidationError: If the config cannot be used
        """
        config = self.config
        config.validate()

        if not config.is_bounded:
            logger.warning(
                "No request count or duration set for %s; running until cancelled",
                config.url or "custom requests",
            )

        loop = asyncio.get_running_loop()
        result = LoadResult()
        self._stop_event = asyncio.Event()

        async with self._create_client() as client:
            self._check_base_request(client)

            logger.info(
                "Starting load test: %s %s (concurrency=%d, requests=%d, duration=%.1fs, rate=%s)",
                config.method,
                config.url or "<custom requests>",
                config.concurrency,
                config.requests,
                config.duration_seconds,
                f"{config.rate_limit:g}/s" if config.rate_limit else "unlimited",
            )

            queue: asyncio.Queue = asyncio.Queue(maxsize=config.concurrency * 2)
            ticks: Optional[asyncio.Queue] = None
            if config.rate_limit > 0:
                ticks = asyncio.Queue(maxsize=1)

            stop_events = [self._stop_event]
            if cancel is not None:
                stop_events.append(cancel)
            stop_waiters = [asyncio.ensure_future(event.wait()) for event in stop_events]

            result.start_time = datetime.now(timezone.utc)
            started = loop.time()
            deadline = started + config.duration_seconds if config.duration_seconds > 0 else None

            workers = [
                asyncio.create_task(self._worker(client, queue, result))
                for _ in range(config.concurrency)
            ]
            tasks = list(workers)
            ticker = None
            if ticks is not None:
                ticker = asyncio.create_task(self._tick(ticks, 1.0 / config.rate_limit))
                tasks.append(ticker)
            dispatcher = asyncio.create_task(
                self._dispatch(queue, ticks, deadline, stop_events, stop_waiters)
            )
            tasks.append(dispatcher)

            try:
                dispatched, reason = await dispatcher
                if ticker is not None:
                    ticker.cancel()
                logger.debug("Stopped dispatching after %d requests: %s", dispatched, reason)
                await asyncio.gather(*workers)
            finally:
                for task in [*tasks, *stop_waiters]:
                    task.cancel()
                await asyncio.gather(*tasks, *stop_waiters, return_exceptions=True)

            elapsed = loop.time() - started

        result.end_time = datetime.now(timezone.utc)
        result.finalize(elapsed)
        self._stop_event = None

        logger.info(
            "Load test finished: %d requests in %.2fs (%.1f req/s, %d failed)",
            result.total_requests,
            result.duration_seconds,
            result.requests_per_second,
            result.failure_count,
        )
        return result

    def stop(self) -> None:
        """Stop dispatching new requests.

        Must be called from the event loop running the test.
        """
        if self._stop_event is not None:
            self._stop_event.set()


def run_load_test_sync(
    config: LoadConfig,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> LoadResult:
    """Synchronous wrapper for running a load test.

    Args:
        config: Configuration for the run
        transport: Optional httpx transport

    Returns:
        Result of the run
    """
    return asyncio.run(Runner(config, transport=transport).run())
