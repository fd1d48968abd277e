"""Stage scheduler for sequential, parallel, and dependency-aware execution."""

import threading
import time
import traceback
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field

from pipebench.domain.models import (
    ExecutionMethod,
    ExecutionResult,
    MethodComparison,
    Stage,
    StageError,
    StageResult,
)
from pipebench.infrastructure.config import SchedulerConfig
from pipebench.infrastructure.exceptions import SchedulingDeadlockError
from pipebench.infrastructure.logger import get_logger
from pipebench.services.recommendations import (
    NO_STAGES_RECOMMENDATION,
    PARALLELIZATION_TIERS,
    classify,
)
from pipebench.services.stage_graph import StageGraph

logger = get_logger(__name__)

TRACEBACK_FRAMES = 5


@dataclass
class StageStatistics:
    """Running statistics for one stage name."""

    total_executions: int = 0
    total_time: float = 0.0
    average_time: float = 0.0
    success_rate: float = 0.0


@dataclass
class SchedulerStatistics:
    """Running statistics across all scheduler runs."""

    total_executions: int = 0
    sequential_executions: int = 0
    parallel_executions: int = 0
    dependency_executions: int = 0
    average_sequential_time: float = 0.0
    average_parallel_time: float = 0.0
    average_improvement: float = 0.0
    average_parallel_efficiency: float = 0.0
    stage_statistics: dict[str, StageStatistics] = field(default_factory=dict)


class StageScheduler:
    """Runs stage sets on a bounded thread pool.

    Stage exceptions are captured per stage and never propagate out of the
    run_* methods. Unknown dependencies and cycles are raised before any
    stage executes.
    """

    def __init__(self, config: SchedulerConfig | None = None, max_threads: int | None = None):
        """Initialize stage scheduler.

        Args:
            config: Scheduler configuration (default: SchedulerConfig())
            max_threads: Overrides config.max_threads when given
        """
        self.config = config or SchedulerConfig()
        self.max_threads = max_threads or self.config.max_threads
        self.shutdown_timeout = self.config.shutdown_timeout
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()
        self._stats_lock = threading.Lock()
        self._errors_lock = threading.Lock()
        self._statistics = SchedulerStatistics()
        self._outstanding: set[Future[StageResult]] = set()

    def __enter__(self) -> "StageScheduler":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    # ===== Execution =====

    def run_sequential(self, stages: Sequence[Stage]) -> ExecutionResult:
        """Execute stages one after another in declaration order.

        Args:
            stages: Stages to run; dependencies are ignored

        Returns:
            Execution result with per-stage outcomes
        """
        if not stages:
            return self._empty_result()

        errors: list[StageError] = []
        results: dict[str, StageResult] = {}
        start = time.perf_counter()

        for stage in stages:
            results[stage.name] = self._execute_stage(stage, errors)

        return self._finish(ExecutionMethod.SEQUENTIAL, results, errors, start)

    def run_parallel(self, stages: Sequence[Stage]) -> ExecutionResult:
        """Execute all stages concurrently and wait for every one to finish.

        Args:
            stages: Independent stages; dependencies are ignored

        Returns:
            Execution result with per-stage outcomes
        """
        if not stages:
            return self._empty_result()

        errors: list[StageError] = []
        start = time.perf_counter()
        results = self._run_batch(stages, errors)

        ordered = {stage.name: results[stage.name] for stage in stages}
        return self._finish(ExecutionMethod.PARALLEL, ordered, errors, start)

    def run_with_dependencies(self, stages: Sequence[Stage]) -> ExecutionResult:
        """Execute stages in waves that respect declared dependencies.

        Each wave is the set of pending stages whose dependencies have all
        completed (successfully or not); the wave runs as one parallel batch.

        Args:
            stages: Stages with optional dependencies

        Returns:
            Execution result including the executed waves

        Raises:
            UnknownDependencyError: If a dependency names an undeclared stage
            CircularDependencyError: If the dependencies contain a cycle
            SchedulingDeadlockError: If a wave finds no ready stage while
                stages remain pending
        """
        if not stages:
            return self._empty_result()

        graph = StageGraph(stages)
        graph.validate()

        by_name = {stage.name: stage for stage in stages}
        errors: list[StageError] = []
        results: dict[str, StageResult] = {}
        waves: list[list[str]] = []
        pending = list(graph.names)
        start = time.perf_counter()

        while pending:
            wave = graph.ready(results.keys(), pending)
            if not wave:
                logger.error("scheduling_deadlock", pending=pending)
                raise SchedulingDeadlockError(pending)

            logger.debug("stage_wave_started", wave=len(waves), stages=wave)
            results.update(self._run_batch([by_name[name] for name in wave], errors))
            waves.append(wave)
            pending = [name for name in pending if name not in results]

        ordered = {name: results[name] for name in graph.names}
        return self._finish(ExecutionMethod.DEPENDENCY_AWARE, ordered, errors, start, waves)

    def compare_methods(self, stages: Sequence[Stage]) -> MethodComparison:
        """Run the same stages sequentially and in parallel and compare.

        Args:
            stages: Stages to run twice

        Returns:
            Both results, improvement percent (floored at 0), efficiency
            percent (capped at 100), and a recommendation
        """
        if not stages:
            return MethodComparison(
                sequential=self._empty_result(),
                parallel=self._empty_result(),
                recommendation=NO_STAGES_RECOMMENDATION,
            )

        sequential = self.run_sequential(stages)
        parallel = self.run_parallel(stages)

        improvement = self._improvement(
            sequential.total_execution_time, parallel.total_execution_time
        )
        efficiency = self._speedup_efficiency(
            sequential.total_execution_time, parallel.total_execution_time
        )
        tier = classify(improvement, PARALLELIZATION_TIERS)

        logger.info(
            "execution_methods_compared",
            sequential_time=sequential.total_execution_time,
            parallel_time=parallel.total_execution_time,
            improvement=improvement,
            tier=tier.label,
        )

        return MethodComparison(
            sequential=sequential,
            parallel=parallel,
            performance_improvement=improvement,
            parallelization_efficiency=efficiency,
            recommendation=tier.message,
        )

    # ===== Statistics =====

    def performance_statistics(self) -> SchedulerStatistics:
        """Snapshot of running statistics."""
        with self._stats_lock:
            return SchedulerStatistics(
                total_executions=self._statistics.total_executions,
                sequential_executions=self._statistics.sequential_executions,
                parallel_executions=self._statistics.parallel_executions,
                dependency_executions=self._statistics.dependency_executions,
                average_sequential_time=self._statistics.average_sequential_time,
                average_parallel_time=self._statistics.average_parallel_time,
                average_improvement=self._statistics.average_improvement,
                average_parallel_efficiency=self._statistics.average_parallel_efficiency,
                stage_statistics={
                    name: StageStatistics(**vars(stats))
                    for name, stats in self._statistics.stage_statistics.items()
                },
            )

    def reset_statistics(self) -> None:
        with self._stats_lock:
            self._statistics = SchedulerStatistics()

    # ===== Lifecycle =====

    def configure(self, max_threads: int) -> None:
        """Change the worker count; the pool is rebuilt on next use."""
        if max_threads < 1:
            raise ValueError(f"max_threads must be >= 1, got {max_threads}")
        if max_threads == self.max_threads:
            return
        self.shutdown()
        self.max_threads = max_threads
        logger.info("scheduler_reconfigured", max_threads=max_threads)

    def shutdown(self, timeout: float | None = None) -> None:
        """Drain running stages within timeout, then cancel queued ones.

        Threads cannot be killed; stages still running after the timeout are
        abandoned and logged.

        Args:
            timeout: Seconds to wait for outstanding stages (default from config)
        """
        with self._executor_lock:
            executor = self._executor
            self._executor = None
        if executor is None:
            return

        timeout = self.shutdown_timeout if timeout is None else timeout
        with self._errors_lock:
            outstanding = set(self._outstanding)

        _, not_done = wait(outstanding, timeout=timeout)
        if not_done:
            logger.warning("scheduler_shutdown_timeout", abandoned=len(not_done), timeout=timeout)
        executor.shutdown(wait=not not_done, cancel_futures=True)
        logger.info("scheduler_shutdown", max_threads=self.max_threads)

    # ===== Internals =====

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_threads, thread_name_prefix="pipebench-stage"
                )
            return self._executor

    def _run_batch(self, stages: Sequence[Stage], errors: list[StageError]) -> dict[str, StageResult]:
        """Submit stages to the pool and block until all complete."""
        executor = self._get_executor()
        futures = [executor.submit(self._execute_stage, stage, errors) for stage in stages]
        with self._errors_lock:
            self._outstanding.update(futures)
        try:
            wait(futures)
        finally:
            with self._errors_lock:
                self._outstanding.difference_update(futures)

        results: dict[str, StageResult] = {}
        for stage, future in zip(stages, futures):
            # _execute_stage never raises; a cancelled future means shutdown raced us
            if future.cancelled():
                results[stage.name] = StageResult(
                    stage_name=stage.name, success=False, error="cancelled"
                )
            else:
                results[stage.name] = future.result()
        return results

    def _execute_stage(self, stage: Stage, errors: list[StageError]) -> StageResult:
        """Invoke one stage, capturing any exception into errors."""
        started = time.perf_counter()
        try:
            value = stage.callable()
        except Exception as e:
            finished = time.perf_counter()
            elapsed = finished - started
            frames = traceback.format_tb(e.__traceback__)[-TRACEBACK_FRAMES:]
            with self._errors_lock:
                errors.append(
                    StageError(
                        stage=stage.name,
                        error=str(e),
                        error_type=type(e).__name__,
                        traceback=[frame.rstrip() for frame in frames],
                        execution_time=elapsed,
                    )
                )
            logger.warning(
                "stage_failed", stage=stage.name, error=str(e), error_type=type(e).__name__
            )
            self._record_stage(stage.name, elapsed, False)
            return StageResult(
                stage_name=stage.name,
                execution_time=elapsed,
                success=False,
                error=str(e),
                started_at=started,
                finished_at=finished,
            )

        finished = time.perf_counter()
        self._record_stage(stage.name, finished - started, True)
        return StageResult(
            stage_name=stage.name,
            result=value,
            execution_time=finished - started,
            success=True,
            started_at=started,
            finished_at=finished,
        )

    def _finish(
        self,
        method: ExecutionMethod,
        results: dict[str, StageResult],
        errors: list[StageError],
        start: float,
        waves: list[list[str]] | None = None,
    ) -> ExecutionResult:
        result = ExecutionResult(
            execution_method=method,
            total_execution_time=time.perf_counter() - start,
            stage_results=results,
            errors=errors,
            max_threads=self.max_threads,
            waves=waves or [],
        )
        self._record_execution(result)

        logger.info(
            "stages_executed",
            method=method.value,
            total_stages=result.total_stages,
            failed_stages=result.failed_stages,
            execution_time=round(result.total_execution_time, 4),
        )
        return result

    def _record_stage(self, name: str, execution_time: float, success: bool) -> None:
        with self._stats_lock:
            stats = self._statistics.stage_statistics.setdefault(name, StageStatistics())
            stats.total_executions += 1
            stats.total_time += execution_time
            stats.average_time = stats.total_time / stats.total_executions
            stats.success_rate = (
                stats.success_rate * (stats.total_executions - 1) + (100.0 if success else 0.0)
            ) / stats.total_executions

    def _record_execution(self, result: ExecutionResult) -> None:
        with self._stats_lock:
            stats = self._statistics
            stats.total_executions += 1
            elapsed = result.total_execution_time

            if result.execution_method == ExecutionMethod.SEQUENTIAL:
                stats.sequential_executions += 1
                count = stats.sequential_executions
                stats.average_sequential_time += (elapsed - stats.average_sequential_time) / count
            elif result.execution_method == ExecutionMethod.PARALLEL:
                stats.parallel_executions += 1
                count = stats.parallel_executions
                stats.average_parallel_time += (elapsed - stats.average_parallel_time) / count
            else:
                stats.dependency_executions += 1

            if result.execution_method != ExecutionMethod.SEQUENTIAL:
                concurrent_runs = stats.parallel_executions + stats.dependency_executions
                stats.average_parallel_efficiency += (
                    result.parallelization_efficiency - stats.average_parallel_efficiency
                ) / concurrent_runs

            if stats.average_sequential_time > 0 and stats.average_parallel_time > 0:
                stats.average_improvement = round(
                    self._improvement(stats.average_sequential_time, stats.average_parallel_time),
                    2,
                )

    @staticmethod
    def _improvement(sequential_time: float, parallel_time: float) -> float:
        """Percent time saved by the parallel run, never negative."""
        if sequential_time <= 0:
            return 0.0
        improvement = (sequential_time - parallel_time) / sequential_time * 100
        return round(max(improvement, 0.0), 2)

    def _speedup_efficiency(self, sequential_time: float, parallel_time: float) -> float:
        """Actual speedup as a percent of the ideal max_threads speedup."""
        if sequential_time <= 0 or parallel_time <= 0:
            return 0.0
        efficiency = (sequential_time / parallel_time) / self.max_threads * 100
        return round(min(efficiency, 100.0), 2)

    @staticmethod
    def _empty_result() -> ExecutionResult:
        return ExecutionResult(execution_method=ExecutionMethod.NONE)
