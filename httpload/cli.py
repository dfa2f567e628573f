#!/usr/bin/env python3
"""
Command-Line Interface for httpload.

Usage:
    # Fixed number of requests
    httpload run http://localhost:8080/ -n 1000 -c 20

    # Rate-limited run for five minutes with a JSON body
    httpload run http://localhost:8080/api -X POST -H "Content-Type: application/json" \\
        --body-file payload.json -d 5m -r 200

    # Concurrency ramp until more than 5% of requests fail
    httpload stress http://localhost:8080/ --start 10 --max 200 --step 10 --step-duration 30s

    # Scenarios from a YAML file
    httpload scenarios scenarios.yaml
"""

import asyncio
import functools
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from . import __version__
from .config import ConfigValidationError, LoadConfig, parse_duration, parse_header
from .errors import ScenarioError, ScenarioValidationError
from .reporter import (
    VALID_REPORT_FORMATS,
    PerformanceThresholds,
    evaluate_thresholds,
    format_latency,
    generate_report,
    save_report,
)
from .result import LoadResult
from .runner import Runner
from .scenario import ScenarioRunner, load_scenarios
from .stress import StressTestConfig, find_breaking_point, run_stress_test

# Set up logging with rich handler
logging.basicConfig(
    level=logging.INFO,
    format="%(message)s",
    handlers=[RichHandler(rich_tracebacks=True, show_time=False)],
)
logger = logging.getLogger(__name__)
console = Console()

EXIT_THRESHOLD_FAILED = 1
EXIT_CONFIG_ERROR = 2


class CLIContext:
    """Context object for CLI commands."""

    def __init__(self):
        self.verbose = False


pass_context = click.make_pass_decorator(CLIContext, ensure=True)


def validate_duration(ctx, param, value):
    """Validate a duration option such as 30s or 5m."""
    try:
        return parse_duration(value)
    except ValueError as e:
        raise click.BadParameter(str(e))


def validate_headers(ctx, param, value):
    """Validate repeated "Name: value" header options."""
    headers = {}
    for raw in value:
        try:
            name, header_value = parse_header(raw)
        except ValueError as e:
            raise click.BadParameter(str(e))
        headers[name] = header_value
    return headers


def request_options(f: Callable) -> Callable:
    """Options shared by every command that sends requests."""
    options = [
        click.option("--method", "-X", default="GET", show_default=True, help="HTTP method"),
        click.option(
            "--header", "-H", "headers",
            multiple=True,
            callback=validate_headers,
            help="Request header as 'Name: value' (can be specified multiple times)",
        ),
        click.option("--body", type=str, default=None, help="Request body"),
        click.option(
            "--body-file",
            type=click.Path(exists=True, dir_okay=False, path_type=Path),
            default=None,
            help="Read the request body from a file",
        ),
        click.option(
            "--timeout",
            default="30s",
            show_default=True,
            callback=validate_duration,
            help="Per-request timeout (e.g., 500ms, 10s)",
        ),
        click.option(
            "--rate", "-r",
            type=click.FloatRange(min=0),
            default=0,
            help="Rate limit in requests per second (0 = unlimited)",
        ),
    ]
    for option in reversed(options):
        f = option(f)
    return f


def _read_body(body: Optional[str], body_file: Optional[Path]) -> Optional[bytes]:
    if body is not None and body_file is not None:
        raise click.UsageError("--body and --body-file are mutually exclusive")
    if body_file is not None:
        return body_file.read_bytes()
    if body is not None:
        return body.encode("utf-8")
    return None


def _build_config(url: str, **options: Any) -> LoadConfig:
    body = _read_body(options.pop("body"), options.pop("body_file"))
    try:
        config = LoadConfig(url=url, body=body, **options)
        config.validate()
    except (ValueError, ConfigValidationError) as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        sys.exit(EXIT_CONFIG_ERROR)
    return config


def _run_until_signalled(main: Callable[[asyncio.Event], Awaitable[Any]]) -> Any:
    """Run a coroutine, turning SIGINT/SIGTERM into a graceful stop."""

    async def runner() -> Any:
        cancel = asyncio.Event()
        if sys.platform != "win32":
            loop = asyncio.get_running_loop()
            for signum in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(signum, functools.partial(_handle_shutdown, signum, cancel))
        return await main(cancel)

    return asyncio.run(runner())


def _handle_shutdown(signum: int, cancel: asyncio.Event) -> None:
    logger.info("Received shutdown signal %d, finishing in-flight requests...", signum)
    cancel.set()


@click.group()
@click.option(
    "-v", "--verbose",
    is_flag=True,
    help="Enable verbose output"
)
@click.version_option(version=__version__, prog_name="httpload")
@pass_context
def cli(ctx: CLIContext, verbose: bool):
    """
    HTTP load generator.

    Run load tests, concurrency ramps and scenario sequences against an
    HTTP(S) endpoint.
    """
    ctx.verbose = verbose

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.debug("Verbose mode enabled")


@cli.command()
@click.argument("url")
@request_options
@click.option(
    "--concurrency", "-c",
    type=click.IntRange(min=1),
    default=10,
    show_default=True,
    help="Number of concurrent workers",
)
@click.option(
    "--requests", "-n",
    type=click.IntRange(min=0),
    default=0,
    help="Total number of requests (0 = unlimited)",
)
@click.option(
    "--duration", "-d",
    default="0",
    callback=validate_duration,
    help="Test duration (e.g., 30s, 5m; 0 = unlimited)",
)
@click.option("--max-p99-ms", type=float, default=None, help="Fail if p99 latency exceeds this")
@click.option("--min-rps", type=float, default=None, help="Fail if requests/sec falls below this")
@click.option(
    "--max-failure-rate",
    type=click.FloatRange(min=0, max=100),
    default=None,
    help="Fail if the failure percentage exceeds this",
)
@click.option(
    "--output", "-o",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Directory to save reports to",
)
@click.option(
    "--format", "-f", "formats",
    multiple=True,
    type=click.Choice(VALID_REPORT_FORMATS, case_sensitive=False),
    help="Report format(s) to save (can be specified multiple times)",
)
@pass_context
def run(
    ctx: CLIContext,
    url: str,
    method: str,
    headers: dict[str, str],
    body: Optional[str],
    body_file: Optional[Path],
    timeout: float,
    rate: float,
    concurrency: int,
    requests: int,
    duration: float,
    max_p99_ms: Optional[float],
    min_rps: Optional[float],
    max_failure_rate: Optional[float],
    output: Optional[Path],
    formats: tuple,
):
    """
    Run a load test against URL.

    The run stops at whichever comes first: --requests, --duration or
    Ctrl-C. Without either limit it runs until interrupted.
    """
    config = _build_config(
        url,
        method=method,
        headers=headers,
        body=body,
        body_file=body_file,
        concurrency=concurrency,
        requests=requests,
        duration_seconds=duration,
        rate_limit=rate,
        timeout_seconds=timeout,
    )

    try:
        result = _run_until_signalled(Runner(config).run)
    except ConfigValidationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        sys.exit(EXIT_CONFIG_ERROR)

    console.print(generate_report(result), highlight=False, markup=False)

    if output is not None:
        saved_files = save_report(result, output, formats=list(formats) or ["json", "text"])
        console.print("[bold]Reports saved to:[/bold]")
        for f in saved_files:
            console.print(f"  • {f}")

    thresholds = PerformanceThresholds(
        max_p99_ms=max_p99_ms,
        min_rps=min_rps,
        max_failure_rate=max_failure_rate,
    )
    passed, failures = evaluate_thresholds(result, thresholds)
    if not passed:
        console.print("[bold red]Thresholds failed:[/bold red]")
        for failure in failures:
            console.print(f"  • {failure}")
        sys.exit(EXIT_THRESHOLD_FAILED)


@cli.command()
@click.argument("url")
@request_options
@click.option("--start", type=click.IntRange(min=1), default=10, show_default=True, help="Starting concurrency")
@click.option("--max", "max_concurrency", type=click.IntRange(min=1), default=100, show_default=True, help="Maximum concurrency")
@click.option("--step", type=click.IntRange(min=1), default=10, show_default=True, help="Concurrency increase per step")
@click.option(
    "--step-duration",
    default="10s",
    show_default=True,
    callback=validate_duration,
    help="Duration of each step",
)
@click.option(
    "--failure-threshold",
    type=click.FloatRange(min=0, max=100),
    default=5.0,
    show_default=True,
    help="Failure percentage that marks the breaking point",
)
@pass_context
def stress(
    ctx: CLIContext,
    url: str,
    method: str,
    headers: dict[str, str],
    body: Optional[str],
    body_file: Optional[Path],
    timeout: float,
    rate: float,
    start: int,
    max_concurrency: int,
    step: int,
    step_duration: float,
    failure_threshold: float,
):
    """
    Ramp concurrency against URL until the failure rate breaks.
    """
    base_config = _build_config(
        url,
        method=method,
        headers=headers,
        body=body,
        body_file=body_file,
        rate_limit=rate,
        timeout_seconds=timeout,
    )
    try:
        stress_config = StressTestConfig(
            base_config=base_config,
            start_concurrency=start,
            max_concurrency=max_concurrency,
            step_size=step,
            step_duration_seconds=step_duration,
            failure_threshold=failure_threshold,
        )
    except ValueError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        sys.exit(EXIT_CONFIG_ERROR)

    results = _run_until_signalled(
        lambda cancel: run_stress_test(stress_config, cancel=cancel)
    )

    table = Table(title="Stress Test Results", show_header=True, header_style="bold magenta")
    table.add_column("Concurrency", justify="right", style="cyan")
    table.add_column("Requests", justify="right")
    table.add_column("Req/s", justify="right")
    table.add_column("P50", justify="right")
    table.add_column("P99", justify="right")
    table.add_column("Failures", justify="right")
    table.add_column("Status")

    for step_result in results:
        r = step_result.result
        status = "[red]BREAKING POINT[/red]" if step_result.breaking_point else "[green]ok[/green]"
        table.add_row(
            str(step_result.concurrency),
            str(r.total_requests),
            f"{r.requests_per_second:.1f}",
            format_latency(r.p50_ms),
            format_latency(r.p99_ms),
            f"{r.failure_rate:.1f}%",
            status,
        )
    console.print(table)

    breaking_point = find_breaking_point(results)
    if breaking_point is None:
        console.print("[green]No breaking point found up to the maximum concurrency.[/green]")
    else:
        console.print(
            f"[bold red]Breaking point:[/bold red] concurrency {breaking_point.concurrency} "
            f"({breaking_point.result.failure_rate:.1f}% failures)"
        )


@cli.command()
@click.argument("scenario_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@pass_context
def scenarios(ctx: CLIContext, scenario_file: Path):
    """
    Run the scenarios defined in SCENARIO_FILE in order.
    """
    try:
        loaded = load_scenarios(scenario_file)
    except ConfigValidationError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        for error in e.errors:
            console.print(f"  • {error}")
        sys.exit(EXIT_CONFIG_ERROR)

    scenario_runner = ScenarioRunner()
    for scenario in loaded:
        scenario_runner.add_scenario(scenario)

    exit_code = 0
    try:
        _run_until_signalled(scenario_runner.run)
    except ScenarioValidationError as e:
        console.print(f"[bold red]{e}[/bold red]")
        exit_code = EXIT_THRESHOLD_FAILED
    except ScenarioError as e:
        console.print(f"[bold red]Configuration error:[/bold red] {e}")
        exit_code = EXIT_CONFIG_ERROR

    _display_scenario_summary(scenario_runner.results())
    sys.exit(exit_code)


def _display_scenario_summary(results: dict[str, LoadResult]) -> None:
    table = Table(title="Scenario Results", show_header=True, header_style="bold magenta")
    table.add_column("Scenario", style="cyan")
    table.add_column("Requests", justify="right")
    table.add_column("Req/s", justify="right")
    table.add_column("P99", justify="right")
    table.add_column("Failures", justify="right")

    for name, result in results.items():
        table.add_row(
            name,
            str(result.total_requests),
            f"{result.requests_per_second:.1f}",
            format_latency(result.p99_ms),
            f"{result.failure_rate:.1f}%",
        )
    console.print(table)


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
