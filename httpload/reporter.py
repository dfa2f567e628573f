"""
Report generation for httpload results.

This module renders results as a human-readable text report, JSON or
Markdown, and checks them against performance thresholds.
"""

import json
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from .errors import PerformanceAssertionError
from .result import LoadResult

VALID_REPORT_FORMATS = ["text", "json", "markdown"]

_FILE_EXTENSIONS = {
    "text": "txt",
    "json": "json",
    "markdown": "md",
}


def format_bytes(num_bytes: int) -> str:
    """Format a byte count with a 1024-based unit, e.g. "1.5 KB".

    Args:
        num_bytes: Number of bytes

    Returns:
        Human-readable size
    """
    unit = 1024
    if num_bytes < unit:
        return f"{num_bytes} B"
    div, exp = unit, 0
    n = num_bytes // unit
    while n >= unit and exp < 5:
        div *= unit
        exp += 1
        n //= unit
    return f"{num_bytes / div:.1f} {'KMGTPE'[exp]}B"


def format_latency(ms: float) -> str:
    """Format a latency given in milliseconds."""
    if ms >= 1000:
        return f"{ms / 1000:.3f}s"
    if ms >= 1:
        return f"{ms:.3f}ms"
    return f"{ms * 1000:.0f}µs"


def generate_report(result: LoadResult) -> str:
    """Create a formatted text report.

    Args:
        result: Finished load test result

    Returns:
        Multi-line report
    """
    lines = [
        "Load Test Report",
        "================",
        "",
        "Summary:",
        f"  Total Requests:  {result.total_requests}",
        f"  Successful:      {result.success_count} ({result.success_rate:.1f}%)",
        f"  Failed:          {result.failure_count} ({result.failure_rate:.1f}%)",
        f"  Duration:        {result.duration_seconds:.3f}s",
        f"  Requests/sec:    {result.requests_per_second:.2f}",
        "",
        "Latency:",
        f"  Min:    {format_latency(result.min_latency_ms)}",
        f"  Avg:    {format_latency(result.avg_latency_ms)}",
        f"  P50:    {format_latency(result.p50_ms)}",
        f"  P90:    {format_latency(result.p90_ms)}",
        f"  P95:    {format_latency(result.p95_ms)}",
        f"  P99:    {format_latency(result.p99_ms)}",
        f"  Max:    {format_latency(result.max_latency_ms)}",
        "",
        "Throughput:",
        f"  Bytes Sent:      {format_bytes(result.bytes_sent)}",
        f"  Bytes Received:  {format_bytes(result.bytes_received)}",
        "",
    ]

    if result.status_codes:
        lines.append("Status Codes:")
        for code, count in sorted(result.status_codes.items()):
            lines.append(f"  {code}: {count}")
        lines.append("")

    if result.errors:
        lines.append("Errors:")
        for error, count in sorted(result.errors.items()):
            lines.append(f"  {error}: {count}")
        lines.append("")

    return "\n".join(lines)


@dataclass
class PerformanceThresholds:
    """Pass/fail limits for a load test result.

    Attributes:
        max_p99_ms: Maximum allowed p99 latency
        min_rps: Minimum required requests per second
        max_failure_rate: Maximum allowed failure percentage
    """

    max_p99_ms: Optional[float] = None
    min_rps: Optional[float] = None
    max_failure_rate: Optional[float] = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, omitting unset limits."""
        return {k: v for k, v in asdict(self).items() if v is not None}


def evaluate_thresholds(
    result: LoadResult,
    thresholds: PerformanceThresholds,
) -> tuple[bool, list[str]]:
    """Evaluate a result against thresholds.

    Args:
        result: Finished load test result
        thresholds: Limits to check; unset limits are skipped

    Returns:
        Tuple of (passed, list of failure messages)
    """
    failures = []

    if thresholds.max_p99_ms is not None and result.p99_ms > thresholds.max_p99_ms:
        failures.append(
            f"P99 latency {result.p99_ms:.2f}ms exceeds maximum {thresholds.max_p99_ms}ms"
        )

    if thresholds.min_rps is not None and result.requests_per_second < thresholds.min_rps:
        failures.append(
            f"RPS {result.requests_per_second:.2f} below minimum {thresholds.min_rps:.2f}"
        )

    if (
        thresholds.max_failure_rate is not None
        and result.total_requests > 0
        and result.failure_rate > thresholds.max_failure_rate
    ):
        failures.append(
            f"failure rate {result.failure_rate:.2f}% exceeds maximum "
            f"{thresholds.max_failure_rate:.2f}%"
        )

    return len(failures) == 0, failures


def assert_performance(result: LoadResult, thresholds: PerformanceThresholds) -> None:
    """Check a result against thresholds.

    Raises:
        PerformanceAssertionError: If any threshold is not met
    """
    passed, failures = evaluate_thresholds(result, thresholds)
    if not passed:
        raise PerformanceAssertionError("; ".join(failures), failures=failures)


def to_json(result: LoadResult, indent: int = 2) -> str:
    """Convert a result to a JSON string."""
    return json.dumps(result.to_dict(), indent=indent, default=str)


def to_markdown(result: LoadResult, title: str = "Load Test Report") -> str:
    """Convert a result to Markdown format.

    Args:
        result: Finished load test result
        title: Report heading

    Returns:
        Markdown string representation
    """
    lines = [
        f"# {title}",
        "",
        "## Summary",
        "",
        f"- **Total Requests**: {result.total_requests}",
        f"- **Successful**: {result.success_count} ({result.success_rate:.1f}%)",
        f"- **Failed**: {result.failure_count} ({result.failure_rate:.1f}%)",
        f"- **Duration**: {result.duration_seconds:.2f} seconds",
        f"- **Requests/Second**: {result.requests_per_second:.2f}",
        "",
        "## Latency",
        "",
        "| Statistic | Latency (ms) |",
        "|-----------|--------------|",
        f"| min | {result.min_latency_ms:.2f} |",
        f"| avg | {result.avg_latency_ms:.2f} |",
        f"| p50 | {result.p50_ms:.2f} |",
        f"| p90 | {result.p90_ms:.2f} |",
        f"| p95 | {result.p95_ms:.2f} |",
        f"| p99 | {result.p99_ms:.2f} |",
        f"| max | {result.max_latency_ms:.2f} |",
        "",
        "## Throughput",
        "",
        f"- **Bytes Sent**: {format_bytes(result.bytes_sent)}",
        f"- **Bytes Received**: {format_bytes(result.bytes_received)}",
        "",
    ]

    if result.status_codes:
        lines.extend(["## Status Codes", "", "| Code | Count |", "|------|-------|"])
        for code, count in sorted(result.status_codes.items()):
            lines.append(f"| {code} | {count} |")
        lines.append("")

    if result.errors:
        lines.extend(["## Errors", "", "| Error | Count |", "|-------|-------|"])
        for error, count in sorted(result.errors.items()):
            lines.append(f"| {error} | {count} |")
        lines.append("")

    return "\n".join(lines)


def save_report(
    result: LoadResult,
    output_dir: Path | str,
    formats: Optional[list[str]] = None,
    base_name: str = "load_test_report",
) -> list[Path]:
    """Save a result to files in the specified formats.

    Args:
        result: Finished load test result
        output_dir: Directory to save reports
        formats: List of formats (text, json, markdown)
        base_name: File name prefix; a UTC timestamp is appended

    Returns:
        List of saved file paths
    """
    formats = formats or ["json", "markdown"]
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    renderers = {
        "text": generate_report,
        "json": to_json,
        "markdown": to_markdown,
    }

    saved_files = []
    for fmt in formats:
        if fmt not in renderers:
            raise ValueError(
                f"Invalid format '{fmt}'. Must be one of: {', '.join(VALID_REPORT_FORMATS)}"
            )
        path = output_dir / f"{base_name}_{timestamp}.{_FILE_EXTENSIONS[fmt]}"
        path.write_text(renderers[fmt](result), encoding="utf-8")
        saved_files.append(path)

    return saved_files
