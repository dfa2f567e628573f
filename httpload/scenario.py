"""
Scenario sequencing for httpload.

A ScenarioRunner executes named load tests one after another, optionally
preceded by a discarded warmup run, and stops at the first scenario whose
validation fails. Scenarios can also be loaded from a YAML file.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Optional

import yaml
from jsonschema import Draft7Validator

from .config import ConfigValidationError, LoadConfig, expand_env_vars, parse_duration
from .errors import ScenarioError, ScenarioValidationError
from .reporter import PerformanceThresholds, assert_performance
from .result import LoadResult
from .runner import Runner

logger = logging.getLogger(__name__)

Validator = Callable[[LoadResult], None]
RunnerFactory = Callable[[LoadConfig], Runner]

_DURATION_SCHEMA = {"type": ["string", "number"]}

SCENARIO_FILE_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["scenarios"],
    "properties": {
        "scenarios": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "required": ["name", "url"],
                "additionalProperties": False,
                "properties": {
                    "name": {"type": "string", "minLength": 1},
                    "url": {"type": "string", "minLength": 1},
                    "method": {"type": "string"},
                    "headers": {
                        "type": "object",
                        "additionalProperties": {"type": "string"},
                    },
                    "body": {"type": "string"},
                    "concurrency": {"type": "integer", "minimum": 1},
                    "requests": {"type": "integer", "minimum": 0},
                    "duration": _DURATION_SCHEMA,
                    "rate_limit": {"type": "number", "minimum": 0},
                    "timeout": _DURATION_SCHEMA,
                    "warmup": _DURATION_SCHEMA,
                    "thresholds": {
                        "type": "object",
                        "additionalProperties": False,
                        "properties": {
                            "max_p99_ms": {"type": "number", "minimum": 0},
                            "min_rps": {"type": "number", "minimum": 0},
                            "max_failure_rate": {"type": "number", "minimum": 0, "maximum": 100},
                        },
                    },
                },
            },
        },
    },
}


@dataclass(frozen=True)
class Scenario:
    """A named load test.

    Attributes:
        name: Unique scenario name, used as the results key
        config: Load test configuration
        warmup_seconds: Duration of a discarded warmup run (0 = none)
        validate: Called with the result; raises to fail the sequence
    """

    name: str
    config: LoadConfig
    warmup_seconds: float = 0.0
    validate: Optional[Validator] = None


class ScenarioRunner:
    """Runs scenarios strictly one after another."""

    def __init__(self, runner_factory: RunnerFactory = Runner):
        """Initialize the scenario runner.

        Args:
            runner_factory: Creates the Runner for each run
        """
        self._runner_factory = runner_factory
        self._scenarios: list[Scenario] = []
        self._results: dict[str, LoadResult] = {}

    @property
    def scenarios(self) -> tuple[Scenario, ...]:
        return tuple(self._scenarios)

    def add_scenario(self, scenario: Scenario) -> None:
        """Append a scenario to the sequence."""
        self._scenarios.append(scenario)

    async def _warmup(self, scenario: Scenario, cancel: Optional[asyncio.Event]) -> None:
        logger.info("Warming up scenario %s for %.1fs", scenario.name, scenario.warmup_seconds)
        runner = self._runner_factory(
            scenario.config.replace(duration_seconds=scenario.warmup_seconds)
        )
        await runner.run(cancel=cancel)

    async def run(self, cancel: Optional[asyncio.Event] = None) -> None:
        """Run all scenarios in order.

        Args:
            cancel: Optional event; once set, remaining scenarios are skipped

        Raises:
            ScenarioError: If a scenario's configuration is unusable
            ScenarioValidationError: If a scenario's validation fails
        """
        for scenario in self._scenarios:
            if cancel is not None and cancel.is_set():
                logger.warning("Cancelled, skipping remaining scenarios from %s", scenario.name)
                return

            try:
                if scenario.warmup_seconds > 0:
                    await self._warmup(scenario, cancel)

                logger.info("Running scenario: %s", scenario.name)
                result = await self._runner_factory(scenario.config).run(cancel=cancel)
            except ConfigValidationError as e:
                raise ScenarioError(
                    f"scenario {scenario.name} failed: {e}", scenario=scenario.name
                ) from e

            self._results[scenario.name] = result

            if scenario.validate is not None:
                try:
                    scenario.validate(result)
                except Exception as e:
                    logger.warning("Scenario %s failed validation: %s", scenario.name, e)
                    raise ScenarioValidationError(
                        f"scenario {scenario.name} validation failed: {e}",
                        scenario=scenario.name,
                    ) from e

    def run_sync(self) -> dict[str, LoadResult]:
        """Synchronous wrapper for run().

        Returns:
            Results by scenario name
        """
        asyncio.run(self.run())
        return self.results()

    def results(self) -> dict[str, LoadResult]:
        """Get a copy of the results collected so far."""
        return dict(self._results)


def _threshold_validator(thresholds: dict[str, Any]) -> Validator:
    limits = PerformanceThresholds(**thresholds)

    def validate(result: LoadResult) -> None:
        assert_performance(result, limits)

    return validate


def scenario_from_dict(data: dict[str, Any]) -> Scenario:
    """Build a Scenario from one entry of a scenario file.

    Args:
        data: Scenario dictionary (already schema-validated)

    Returns:
        Scenario instance
    """
    config_data = dict(data)
    config_data["url"] = expand_env_vars(config_data["url"])
    config_data["headers"] = {
        name: expand_env_vars(value)
        for name, value in (config_data.get("headers") or {}).items()
    }
    if "body" in config_data:
        config_data["body"] = expand_env_vars(config_data["body"])

    thresholds = data.get("thresholds")
    return Scenario(
        name=data["name"],
        config=LoadConfig.from_dict(config_data),
        warmup_seconds=parse_duration(data.get("warmup", 0)),
        validate=_threshold_validator(thresholds) if thresholds else None,
    )


def load_scenarios(path: Path | str) -> list[Scenario]:
    """
    Load scenarios from a YAML file.

    Args:
        path: Path to the YAML scenario file

    Returns:
        Scenarios in file order

    Raises:
        FileNotFoundError: If the file doesn't exist
        yaml.YAMLError: If the YAML is invalid
        ConfigValidationError: If the file does not match the schema
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Scenario file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    validator = Draft7Validator(SCENARIO_FILE_SCHEMA)
    errors = []
    for error in validator.iter_errors(data):
        location = ".".join(str(p) for p in error.path) if error.path else "root"
        errors.append(f"{location}: {error.message}")
    if errors:
        raise ConfigValidationError(
            f"Scenario file validation failed with {len(errors)} error(s)",
            errors=errors,
        )

    scenarios = []
    try:
        for entry in data["scenarios"]:
            scenarios.append(scenario_from_dict(entry))
    except ValueError as e:
        raise ConfigValidationError(f"Invalid scenario in {path}: {e}", errors=[str(e)]) from e

    names = [s.name for s in scenarios]
    duplicates = sorted({n for n in names if names.count(n) > 1})
    if duplicates:
        raise ConfigValidationError(
            f"Duplicate scenario names in {path}: {', '.join(duplicates)}",
            errors=[f"duplicate name: {n}" for n in duplicates],
        )

    return scenarios
