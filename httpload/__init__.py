"""
httpload: a single-process HTTP load generator.

This package provides:
- Runner: Executes one load test with a bounded worker pool
- LoadResult: Thread-safe metric aggregation and percentile statistics
- ScenarioRunner: Sequences named load tests with warmup and validation
- run_stress_test: Escalating concurrency ramp with breaking point detection
- Reporter helpers: Text/JSON/Markdown reports and performance assertions
"""

__version__ = "0.1.0"

from .config import (
    ConfigValidationError,
    LoadConfig,
    parse_duration,
)
from .errors import (
    ErrorClass,
    LoadTestError,
    PerformanceAssertionError,
    ScenarioError,
    ScenarioValidationError,
    classify_error,
)
from .reporter import (
    PerformanceThresholds,
    assert_performance,
    evaluate_thresholds,
    format_bytes,
    generate_report,
    save_report,
)
from .result import LoadResult, percentile
from .runner import Runner, run_load_test_sync
from .scenario import Scenario, ScenarioRunner, load_scenarios
from .stress import (
    StressResult,
    StressTestConfig,
    find_breaking_point,
    run_stress_test,
    run_stress_test_sync,
)

__all__ = [
    # Config
    "LoadConfig",
    "ConfigValidationError",
    "parse_duration",
    # Errors
    "ErrorClass",
    "LoadTestError",
    "PerformanceAssertionError",
    "ScenarioError",
    "ScenarioValidationError",
    "classify_error",
    # Results
    "LoadResult",
    "percentile",
    # Runner
    "Runner",
    "run_load_test_sync",
    # Scenarios
    "Scenario",
    "ScenarioRunner",
    "load_scenarios",
    # Stress
    "StressTestConfig",
    "StressResult",
    "run_stress_test",
    "run_stress_test_sync",
    "find_breaking_point",
    # Reporter
    "PerformanceThresholds",
    "assert_performance",
    "evaluate_thresholds",
    "format_bytes",
    "generate_report",
    "save_report",
]
