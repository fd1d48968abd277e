"""Timing, memory, GC and file-operation capture for a single execution."""

import gc
import re
import time
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

import psutil
from pydantic import BaseModel

from pipebench.domain.models import GenerationResult, Measurement
from pipebench.infrastructure.logger import get_logger

logger = get_logger(__name__)

# Files per second considered a full speed score
BASELINE_FILES_PER_SECOND = 2.0
# Memory growth per generated file considered a zero memory score
BASELINE_MB_PER_FILE = 1.0

ERROR_CATEGORIES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("template_errors", re.compile(r"template", re.IGNORECASE)),
    ("file_errors", re.compile(r"file|write", re.IGNORECASE)),
    ("schema_errors", re.compile(r"schema|database", re.IGNORECASE)),
    ("relationship_errors", re.compile(r"relationship", re.IGNORECASE)),
)


class PerformanceScore(BaseModel):
    """0-100 scores derived from one measurement."""

    overall: float = 0.0
    speed: float = 0.0
    memory_efficiency: float = 0.0
    reliability: float = 0.0


def process_memory_mb() -> float:
    """Resident set size of the current process in MB."""
    return psutil.Process().memory_info().rss / (1024 * 1024)


def gc_collection_count() -> int:
    """Total collections run by the garbage collector across generations."""
    return sum(generation["collections"] for generation in gc.get_stats())


def categorize_errors(errors: list[str]) -> dict[str, int]:
    """Count errors by coarse category based on their message."""
    counts: dict[str, int] = {}
    for error in errors:
        category = next(
            (name for name, pattern in ERROR_CATEGORIES if pattern.search(error)),
            "other_errors",
        )
        counts[category] = counts.get(category, 0) + 1
    return counts


def reports_failure(raw: Any) -> bool:
    """True only when a return value carries an explicit falsy ``success`` field.

    Plain values such as ints, lists or models without that field count as
    successful.
    """
    if isinstance(raw, Mapping):
        flag = raw.get("success")
    else:
        flag = getattr(raw, "success", None)
    return flag is not None and not flag


class MeasurementCollector:
    """Wraps a callable and produces an immutable Measurement.

    Exceptions raised by the callable are captured into the measurement
    (success=False) rather than propagated. Instances keep per-run stage
    timings and are not meant to be shared across threads.
    """

    def __init__(
        self,
        memory_provider: Callable[[], float] = process_memory_mb,
        collect_garbage: bool = True,
    ):
        """Initialize measurement collector.

        Args:
            memory_provider: Returns current memory usage in MB
            collect_garbage: Run a full collection before each measurement
        """
        self.memory_provider = memory_provider
        self.collect_garbage = collect_garbage
        self._stage_timings: list[tuple[str, float]] = []

    def measure(self, fn: Callable[[], Any]) -> tuple[Measurement, Any]:
        """Run fn once and measure it.

        Args:
            fn: Zero-argument callable, typically a generation callable

        Returns:
            (measurement, raw result); raw result is None if fn raised
        """
        self._stage_timings = []
        if self.collect_garbage:
            gc.collect()

        start_memory = self.memory_provider()
        start_gc = gc_collection_count()
        start_cpu = time.process_time()
        start = time.perf_counter()

        raw: Any = None
        error: str | None = None
        try:
            raw = fn()
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.warning("measured_callable_failed", error=error)

        execution_time = time.perf_counter() - start
        cpu_time = time.process_time() - start_cpu
        end_memory = self.memory_provider()
        gc_delta = gc_collection_count() - start_gc

        descriptor = GenerationResult.from_any(raw)
        errors = list(descriptor.errors)
        if error is not None:
            errors.append(error)
        success = error is None and not descriptor.errors and not reports_failure(raw)

        measurement = Measurement(
            execution_time=execution_time,
            memory_peak=round(max(start_memory, end_memory, descriptor.peak_memory_mb, 0.0), 2),
            memory_delta=round(end_memory - start_memory, 2),
            cpu_time=max(cpu_time, 0.0),
            files_created=descriptor.files_created,
            models_generated=descriptor.models_generated,
            errors=tuple(errors),
            success=success,
            gc_collections=max(gc_delta, 0),
            stage_timings=tuple(self._stage_timings),
        )
        return measurement, raw

    @contextmanager
    def stage(self, name: str) -> Iterator[None]:
        """Time a named stage inside the callable currently being measured."""
        start = time.perf_counter()
        try:
            yield
        finally:
            self.record_stage(name, time.perf_counter() - start)

    def record_stage(self, name: str, execution_time: float) -> None:
        """Record a stage timing for the current measurement."""
        self._stage_timings.append((name, execution_time))

    @staticmethod
    def performance_score(measurement: Measurement) -> PerformanceScore:
        """Score speed (40%), memory efficiency (30%) and reliability (30%)."""
        files = measurement.files_created
        error_count = len(measurement.errors)

        if files == 0 or measurement.execution_time <= 0:
            speed = 0.0
        else:
            files_per_second = files / measurement.execution_time
            speed = min(files_per_second / BASELINE_FILES_PER_SECOND * 100, 100.0)

        if measurement.memory_delta <= 0 or files == 0:
            memory = 100.0
        else:
            per_file = measurement.memory_delta / files
            memory = min(max(100.0 - per_file / BASELINE_MB_PER_FILE * 100, 0.0), 100.0)

        if error_count == 0:
            reliability = 100.0
        elif files == 0:
            reliability = 0.0
        else:
            reliability = min(max(100.0 * (1.0 - error_count / files), 0.0), 100.0)

        return PerformanceScore(
            overall=round(speed * 0.4 + memory * 0.3 + reliability * 0.3, 2),
            speed=round(speed, 2),
            memory_efficiency=round(memory, 2),
            reliability=round(reliability, 2),
        )
