"""
Stress testing for httpload.

Runs the same load test at escalating concurrency levels until the failure
rate crosses a threshold, recording the breaking point.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .config import LoadConfig
from .result import LoadResult
from .runner import Runner

logger = logging.getLogger(__name__)

RunnerFactory = Callable[[LoadConfig], Runner]


@dataclass
class StressTestConfig:
    """
    Configuration for a fixed-step concurrency ramp.

    Attributes:
        base_config: Load test run at every step
        start_concurrency: Concurrency of the first step
        max_concurrency: Highest concurrency attempted (inclusive)
        step_size: Concurrency increase per step
        step_duration_seconds: Duration of each step
        failure_threshold: Failure percentage above which a step breaks
    """

    base_config: LoadConfig = field(default_factory=LoadConfig)
    start_concurrency: int = 1
    max_concurrency: int = 100
    step_size: int = 10
    step_duration_seconds: float = 10.0
    failure_threshold: float = 5.0

    def __post_init__(self):
        if self.start_concurrency < 1:
            raise ValueError(f"Invalid start_concurrency: {self.start_concurrency}. Must be >= 1")
        if self.step_size < 1:
            raise ValueError(f"Invalid step_size: {self.step_size}. Must be >= 1")
        if self.max_concurrency < self.start_concurrency:
            raise ValueError(
                f"max_concurrency ({self.max_concurrency}) is below "
                f"start_concurrency ({self.start_concurrency})"
            )
        if self.step_duration_seconds <= 0:
            raise ValueError(
                f"Invalid step_duration_seconds: {self.step_duration_seconds}. Must be > 0"
            )
        if not 0 <= self.failure_threshold <= 100:
            raise ValueError(
                f"Invalid failure_threshold: {self.failure_threshold}. Must be between 0 and 100"
            )

    def levels(self) -> list[int]:
        """Concurrency level of every step in the ramp."""
        return list(range(self.start_concurrency, self.max_concurrency + 1, self.step_size))


@dataclass
class StressResult:
    """Result of one ramp step.

    Attributes:
        concurrency: Concurrency used for the step
        result: Load test result of the step
        breaking_point: Whether this step crossed the failure threshold
    """

    concurrency: int
    result: LoadResult
    breaking_point: bool = False

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "concurrency": self.concurrency,
            "breaking_point": self.breaking_point,
            "result": self.result.to_dict(),
        }


async def run_stress_test(
    stress_config: StressTestConfig,
    cancel: Optional[asyncio.Event] = None,
    runner_factory: RunnerFactory = Runner,
) -> list[StressResult]:
    """Run the concurrency ramp.

    Args:
        stress_config: Ramp configuration
        cancel: Optional event; once set, the ramp stops after the current step
        runner_factory: Creates the Runner for each step

    Returns:
        One StressResult per completed step, ending at the breaking point
        if one was found

    Raises:
        ConfigValidationError: If the base config cannot be used
    """
    results: list[StressResult] = []

    for concurrency in stress_config.levels():
        if cancel is not None and cancel.is_set():
            logger.warning("Stress test cancelled before concurrency %d", concurrency)
            break

        logger.info(
            "Stress step: concurrency=%d for %.1fs",
            concurrency,
            stress_config.step_duration_seconds,
        )
        config = stress_config.base_config.replace(
            concurrency=concurrency,
            duration_seconds=stress_config.step_duration_seconds,
        )
        result = await runner_factory(config).run(cancel=cancel)
        step = StressResult(concurrency=concurrency, result=result)
        results.append(step)

        if result.total_requests > 0 and result.failure_rate > stress_config.failure_threshold:
            step.breaking_point = True
            logger.warning(
                "Breaking point at concurrency %d: failure rate %.1f%% exceeds %.1f%%",
                concurrency,
                result.failure_rate,
                stress_config.failure_threshold,
            )
            break

    return results


def run_stress_test_sync(
    stress_config: StressTestConfig,
    runner_factory: RunnerFactory = Runner,
) -> list[StressResult]:
    """Synchronous wrapper for run_stress_test()."""
    return asyncio.run(run_stress_test(stress_config, runner_factory=runner_factory))


def find_breaking_point(results: list[StressResult]) -> Optional[StressResult]:
    """Return the step flagged as the breaking point, if any."""
    for step in results:
        if step.breaking_point:
            return step
    return None
