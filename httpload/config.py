"""
Configuration for httpload runs.

This module defines the LoadConfig dataclass describing one load test run,
its validation rules, and helpers for parsing durations, headers and
environment variable references.
"""

import dataclasses
import os
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import httpx

from .errors import LoadTestError

DEFAULT_METHOD = "GET"
DEFAULT_CONCURRENCY = 10
DEFAULT_TIMEOUT_SECONDS = 30.0

VALID_SCHEMES = ("http", "https")

_METHOD_PATTERN = re.compile(r"^[!#$%&'*+\-.^_`|~0-9A-Za-z]+$")
_DURATION_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)?\s*$", re.IGNORECASE)
_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")

_DURATION_MULTIPLIERS = {
    "ms": 0.001,
    "s": 1.0,
    "m": 60.0,
    "h": 3600.0,
    "d": 86400.0,
}


class ConfigValidationError(LoadTestError):
    """Raised when configuration validation fails."""

    def __init__(self, message: str, errors: list[str] | None = None):
        super().__init__(message)
        self.errors = errors or []


RequestFactory = Callable[[], httpx.Request]


@dataclass
class LoadConfig:
    """Configuration for a single load test run.

    Attributes:
        url: Target URL
        method: HTTP method
        headers: Headers applied to every request
        body: Request body sent with every request
        concurrency: Number of concurrent workers
        requests: Total number of requests (0 = unlimited, use duration)
        duration_seconds: Test duration (0 = unlimited, use requests)
        rate_limit: Requests per second (0 = unthrottled)
        timeout_seconds: Timeout per request
        request_factory: Builds a fresh request for each dispatch
    """

    url: str = ""
    method: str = DEFAULT_METHOD
    headers: dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None
    concurrency: int = DEFAULT_CONCURRENCY
    requests: int = 0
    duration_seconds: float = 0.0
    rate_limit: float = 0.0
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    request_factory: Optional[RequestFactory] = field(default=None, compare=False)

    def __post_init__(self):
        """Apply defaults and reject impossible values."""
        self.method = (self.method or DEFAULT_METHOD).upper()
        if isinstance(self.body, str):
            self.body = self.body.encode("utf-8")
        if not self.concurrency:
            self.concurrency = DEFAULT_CONCURRENCY
        if not self.timeout_seconds:
            self.timeout_seconds = DEFAULT_TIMEOUT_SECONDS

        for name in ("concurrency", "requests", "duration_seconds", "rate_limit", "timeout_seconds"):
            if getattr(self, name) < 0:
                raise ValueError(f"Invalid {name}: {getattr(self, name)}. Must not be negative")

    @property
    def is_bounded(self) -> bool:
        """Whether a request count or duration will end the run on its own."""
        return self.requests > 0 or self.duration_seconds > 0

    def replace(self, **changes: Any) -> "LoadConfig":
        """Return a copy of this config with the given fields replaced."""
        return dataclasses.replace(self, **changes)

    def validation_errors(self) -> list[str]:
        """Collect everything that makes this config unusable.

        Returns:
            List of validation error messages (empty if valid)
        """
        errors = []

        if not _METHOD_PATTERN.match(self.method):
            errors.append(f"method: invalid HTTP method '{self.method}'")

        # A request factory supplies its own URL
        if self.request_factory is not None:
            return errors

        if not self.url:
            errors.append("url: a target URL is required")
            return errors

        try:
            url = httpx.URL(self.url)
        except httpx.InvalidURL as e:
            errors.append(f"url: {e}")
            return errors

        if url.scheme not in VALID_SCHEMES:
            errors.append(
                f"url: unsupported scheme '{url.scheme}'. Must be one of: {', '.join(VALID_SCHEMES)}"
            )
        if not url.host:
            errors.append(f"url: no host in '{self.url}'")

        return errors

    def validate(self) -> None:
        """Validate the config.

        Raises:
            ConfigValidationError: If the config cannot be used for a run
        """
        errors = self.validation_errors()
        if errors:
            raise ConfigValidationError(
                f"Load test configuration is invalid ({len(errors)} error(s)): {'; '.join(errors)}",
                errors=errors,
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LoadConfig":
        """
        Create a config from a dictionary.

        Durations may be given as numbers of seconds or as strings such
        as "30s" or "5m", under "duration"/"timeout" or the
        "duration_seconds"/"timeout_seconds" keys written by to_dict().

        Args:
            data: Dictionary containing configuration values

        Returns:
            LoadConfig instance
        """
        body = data.get("body")
        duration = data.get("duration", data.get("duration_seconds", 0))
        timeout = data.get("timeout", data.get("timeout_seconds", DEFAULT_TIMEOUT_SECONDS))
        return cls(
            url=data.get("url", ""),
            method=data.get("method", DEFAULT_METHOD),
            headers=dict(data.get("headers") or {}),
            body=body.encode("utf-8", "surrogateescape") if isinstance(body, str) else body,
            concurrency=int(data.get("concurrency", DEFAULT_CONCURRENCY)),
            requests=int(data.get("requests", 0)),
            duration_seconds=parse_duration(duration),
            rate_limit=float(data.get("rate_limit", 0)),
            timeout_seconds=parse_duration(timeout),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary; from_dict() accepts the output."""
        return {
            "url": self.url,
            "method": self.method,
            "headers": dict(self.headers),
            "body": self.body.decode("utf-8", "surrogateescape") if self.body is not None else None,
            "concurrency": self.concurrency,
            "requests": self.requests,
            "duration_seconds": self.duration_seconds,
            "rate_limit": self.rate_limit,
            "timeout_seconds": self.timeout_seconds,
            "custom_requests": self.request_factory is not None,
        }


def parse_duration(value: str | float | int | None) -> float:
    """Parse a duration to seconds.

    Args:
        value: Number of seconds, or a string such as "500ms", "30s", "5m", "1h"

    Returns:
        Duration in seconds

    Raises:
        ValueError: If the value is not a recognizable duration
    """
    if value is None or value == "":
        return 0.0
    if isinstance(value, (int, float)):
        if value < 0:
            raise ValueError(f"Invalid duration: {value}")
        return float(value)

    match = _DURATION_PATTERN.match(value)
    if not match:
        raise ValueError(f"Invalid duration: '{value}'")

    amount, unit = match.groups()
    return float(amount) * _DURATION_MULTIPLIERS[(unit or "s").lower()]


def parse_header(raw: str) -> tuple[str, str]:
    """Split a "Name: value" header string.

    Raises:
        ValueError: If there is no colon or the name is empty
    """
    name, sep, value = raw.partition(":")
    if not sep or not name.strip():
        raise ValueError(f"Invalid header '{raw}'. Expected 'Name: value'")
    return name.strip(), value.strip()


def expand_env_vars(value: Any) -> Any:
    """
    Expand environment variables in a string.

    Supports ${VAR_NAME} syntax; unknown variables expand to "".

    Args:
        value: String potentially containing environment variable references

    Returns:
        String with environment variables expanded
    """
    if not isinstance(value, str):
        return value
    return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), value)
