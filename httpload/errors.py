"""
Exceptions and transport error classification for httpload.

Per-request failures are grouped into a small, fixed set of buckets so that
histograms stay readable no matter how many distinct error messages the
target produces.
"""

import errno
import socket
from enum import Enum
from typing import Iterator, Optional

import httpx


class LoadTestError(Exception):
    """Base exception for load test errors."""
    pass


class ScenarioError(LoadTestError):
    """Raised when a scenario cannot be executed."""

    def __init__(self, message: str, scenario: Optional[str] = None):
        super().__init__(message)
        self.scenario = scenario


class ScenarioValidationError(ScenarioError):
    """Raised when a scenario's validation callback rejects its result."""
    pass


class PerformanceAssertionError(LoadTestError):
    """Raised when a result does not meet performance thresholds."""

    def __init__(self, message: str, failures: Optional[list[str]] = None):
        super().__init__(message)
        self.failures = failures or []


class ErrorClass(Enum):
    """Semantic buckets for failed requests."""

    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection-refused"
    DNS = "dns-error"
    REQUEST_BUILD = "request-build"
    OTHER = "other"


def _iter_exception_chain(exc: BaseException) -> Iterator[BaseException]:
    """Yield an exception and everything reachable through its causes.

    httpx wraps the underlying socket error (httpcore -> anyio -> OSError),
    and anyio may further wrap per-address failures in an exception group.
    """
    seen: set[int] = set()
    stack: list[Optional[BaseException]] = [exc]
    while stack:
        current = stack.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        stack.append(current.__cause__)
        stack.append(current.__context__)
        stack.extend(getattr(current, "exceptions", ()))


def classify_error(exc: BaseException) -> ErrorClass:
    """Map a transport exception to an error bucket.

    Args:
        exc: Exception raised while sending a request

    Returns:
        The matching ErrorClass, OTHER if nothing more specific applies
    """
    chain = list(_iter_exception_chain(exc))

    if any(isinstance(e, (httpx.TimeoutException, TimeoutError)) for e in chain):
        return ErrorClass.TIMEOUT

    if any(isinstance(e, socket.gaierror) for e in chain):
        return ErrorClass.DNS

    for e in chain:
        if isinstance(e, ConnectionRefusedError):
            return ErrorClass.CONNECTION_REFUSED
        if isinstance(e, OSError) and e.errno == errno.ECONNREFUSED:
            return ErrorClass.CONNECTION_REFUSED

    return ErrorClass.OTHER
