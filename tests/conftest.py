"""Pytest configuration and fixtures."""

import time
from collections.abc import Callable, Generator
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
from pipebench.application.measurement_collector import MeasurementCollector
from pipebench.application.stage_scheduler import StageScheduler
from pipebench.domain.models import BenchmarkScenario, Stage
from pipebench.infrastructure.config import CacheConfig, MonitorConfig, SchedulerConfig
from pipebench.services.cache_optimizer import CacheOptimizer


class FakeClock:
    """Manually advanced clock for TTL and retention tests."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# Register pytest helpers
class Helpers:
    """Helper functions for tests."""

    @staticmethod
    def stage(
        name: str,
        fn: Callable[[], Any] | None = None,
        dependencies: set[str] | None = None,
        delay: float = 0.0,
    ) -> Stage:
        """Build a stage that sleeps for delay and returns its name."""

        def run() -> Any:
            if delay:
                time.sleep(delay)
            return fn() if fn is not None else name

        return Stage(name=name, callable=run, dependencies=dependencies or set())

    @staticmethod
    def generation_result(
        files: int = 2, models: int = 1, success: bool = True, errors: list[str] | None = None
    ) -> dict[str, Any]:
        """A generation result descriptor as returned by a system under test."""
        return {
            "success": success,
            "generated_files": [f"file_{i}.py" for i in range(files)],
            "generated_models": [f"Model{i}" for i in range(models)],
            "errors": errors or [],
        }


@pytest.fixture
def helpers() -> type[Helpers]:
    """Provide helper functions to tests."""
    return Helpers


# Add helpers to pytest namespace
pytest.helpers = Helpers  # type: ignore[attr-defined]


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at a fixed UTC instant."""
    return FakeClock()


@pytest.fixture
def cache_config(tmp_path: Path) -> CacheConfig:
    """Cache configuration writing its file tier under tmp_path."""
    return CacheConfig(file_cache_directory=tmp_path / "cache")


@pytest.fixture
def memory_cache_config() -> CacheConfig:
    """Cache configuration without a file tier."""
    return CacheConfig(file_cache_enabled=False)


@pytest.fixture
def cache(memory_cache_config: CacheConfig, clock: FakeClock) -> CacheOptimizer:
    """Memory-only cache driven by the fake clock."""
    return CacheOptimizer(memory_cache_config, clock=clock)


@pytest.fixture
def scheduler() -> Generator[StageScheduler, None, None]:
    """Scheduler with four workers, shut down after the test."""
    scheduler = StageScheduler(SchedulerConfig(max_threads=4, shutdown_timeout=5.0))
    yield scheduler
    scheduler.shutdown()


@pytest.fixture
def monitor_config(tmp_path: Path) -> MonitorConfig:
    """Monitor configuration persisting under tmp_path."""
    return MonitorConfig(data_directory=tmp_path / "sessions")


@pytest.fixture
def collector() -> MeasurementCollector:
    """Collector with a constant memory reading and no forced GC."""
    return MeasurementCollector(memory_provider=lambda: 100.0, collect_garbage=False)


@pytest.fixture
def scenario() -> BenchmarkScenario:
    """A small benchmark scenario."""
    return BenchmarkScenario(key="tiny", name="Tiny", expected_models=1)
