"""Optimizer facade tying benchmarking, scheduling, caching, and monitoring together."""

import statistics
from collections.abc import Callable, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from pipebench.application.benchmark_runner import (
    NEW_SYSTEM,
    BenchmarkRunner,
    percentage_improvement,
)
from pipebench.application.measurement_collector import MeasurementCollector
from pipebench.application.performance_monitor import PerformanceMonitor, RealTimeMetrics
from pipebench.application.report_renderer import OptimizationReport, render_optimization_report
from pipebench.application.stage_scheduler import StageScheduler
from pipebench.domain.models import (
    CacheCategory,
    ComplexityLevel,
    DatasetSize,
    ExecutionResult,
    Measurement,
    OptimizationRecord,
    ScenarioResult,
    Stage,
    StrategyConfig,
    StrategyName,
    WorkloadCharacteristics,
    utc_now,
)
from pipebench.infrastructure.config import Config
from pipebench.infrastructure.logger import get_logger
from pipebench.services.cache_optimizer import CacheEfficiencyReport, CacheOptimizer
from pipebench.services.recommendations import (
    BEST_STRATEGY_ISSUE,
    BEST_STRATEGY_RECOMMENDATION,
    OPTIMIZER_RULES,
    Priority,
    Recommendation,
    evaluate_rules,
)
from pipebench.services.stage_graph import StageGraph
from pipebench.services.statistical_analyzer import StatisticalAnalyzer

logger = get_logger(__name__)

T = TypeVar("T")

HISTORY_LIMIT = 100
CALIBRATION_SCENARIO = "small_dataset"
CALIBRATION_ITERATIONS = 3
BASELINE_SCENARIOS = ("small_dataset", "medium_dataset")
TOP_STRATEGIES = (StrategyName.SEQUENTIAL, StrategyName.PARALLEL, StrategyName.BALANCED)

# Strategy selection thresholds
LARGE_DATASET_PARALLEL_POTENTIAL = 0.7
CACHE_HEAVY_POTENTIAL = 0.8
HIGH_CONFIDENCE_POTENTIAL = 0.8
FAST_BASELINE_SECONDS = 5.0
BASE_CONFIDENCE = 0.7
CONFIDENCE_BONUS = 0.2

# Expected model counts bounding the dataset size buckets
SMALL_DATASET_MODELS = 5
MEDIUM_DATASET_MODELS = 10

STRATEGIES: dict[StrategyName, StrategyConfig] = {
    StrategyName.SEQUENTIAL: StrategyConfig(
        name=StrategyName.SEQUENTIAL,
        description="Standard sequential processing with caching",
        use_parallel=False,
        use_cache=True,
    ),
    StrategyName.PARALLEL: StrategyConfig(
        name=StrategyName.PARALLEL,
        description="Parallel processing of independent stages",
        use_parallel=True,
        use_cache=True,
    ),
    StrategyName.CACHE_HEAVY: StrategyConfig(
        name=StrategyName.CACHE_HEAVY,
        description="Aggressive caching with sequential processing",
        use_parallel=False,
        use_cache=True,
        cache_aggressive=True,
    ),
    StrategyName.BALANCED: StrategyConfig(
        name=StrategyName.BALANCED,
        description="Balanced approach with moderate parallelization and caching",
        use_parallel=True,
        use_cache=True,
        parallel_conservative=True,
    ),
    StrategyName.MINIMAL: StrategyConfig(
        name=StrategyName.MINIMAL,
        description="Lightweight optimization with minimal overhead",
        use_parallel=False,
        use_cache=False,
        use_monitoring=False,
    ),
}


class StrategyRanking(BaseModel):
    """A strategy with the confidence it fits the analyzed workload."""

    strategy: StrategyName
    confidence: float


class StrategyRecommendation(BaseModel):
    """Outcome of analyze_and_recommend_strategy."""

    recommended_strategy: StrategyName
    workload_analysis: WorkloadCharacteristics
    confidence_score: float
    alternative_strategies: list[StrategyRanking] = Field(default_factory=list)


class OptimizationResult(BaseModel):
    """Result of one optimize_generation call."""

    strategy: StrategyName
    result: Any = None
    measurement: Measurement

    model_config = ConfigDict(arbitrary_types_allowed=True)


class StrategyTrial(BaseModel):
    """Measured performance of one strategy on the analysis workload."""

    strategy: StrategyName
    execution_time: float = 0.0
    memory_usage: float = 0.0
    success_rate: float = 0.0
    improvement_over_baseline: float = 0.0


class ComprehensiveAnalysis(BaseModel):
    """Output of run_comprehensive_analysis."""

    timestamp: datetime = Field(default_factory=utc_now)
    workload_analysis: WorkloadCharacteristics
    benchmark_results: dict[str, ScenarioResult] = Field(default_factory=dict)
    strategy_comparisons: dict[StrategyName, StrategyTrial] = Field(default_factory=dict)
    ranked_strategies: list[StrategyName] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)


class OptimizationMetrics(BaseModel):
    """Live optimizer state."""

    current_strategy: StrategyName | None = None
    monitor_metrics: RealTimeMetrics | None = None
    cache_performance: CacheEfficiencyReport
    scheduler_statistics: dict[str, Any] = Field(default_factory=dict)
    recent_optimizations: list[OptimizationRecord] = Field(default_factory=list)


def select_strategy(characteristics: WorkloadCharacteristics) -> StrategyName:
    """Pick a strategy for a workload.

    Rules, first match wins:
    1. Large dataset with parallelization potential above 0.7 -> parallel
    2. Caching potential above 0.8 -> cache_heavy
    3. High complexity -> balanced
    4. Baseline under 5 seconds -> minimal
    5. Otherwise -> sequential
    """
    if (
        characteristics.dataset_size == DatasetSize.LARGE
        and characteristics.parallelization_potential > LARGE_DATASET_PARALLEL_POTENTIAL
    ):
        return StrategyName.PARALLEL
    if characteristics.caching_potential > CACHE_HEAVY_POTENTIAL:
        return StrategyName.CACHE_HEAVY
    if characteristics.complexity_level == ComplexityLevel.HIGH:
        return StrategyName.BALANCED
    if (
        characteristics.baseline_execution_time is not None
        and characteristics.baseline_execution_time < FAST_BASELINE_SECONDS
    ):
        return StrategyName.MINIMAL
    return StrategyName.SEQUENTIAL


def strategy_confidence(strategy: StrategyName, characteristics: WorkloadCharacteristics) -> float:
    """Confidence that a strategy suits the workload, in [0, 1]."""
    confidence = BASE_CONFIDENCE
    if (
        strategy == StrategyName.PARALLEL
        and characteristics.parallelization_potential > HIGH_CONFIDENCE_POTENTIAL
    ):
        confidence += CONFIDENCE_BONUS
    elif (
        strategy == StrategyName.CACHE_HEAVY
        and characteristics.caching_potential > HIGH_CONFIDENCE_POTENTIAL
    ):
        confidence += CONFIDENCE_BONUS
    return round(min(confidence, 1.0), 2)


def dataset_size_for(expected_models: int) -> DatasetSize:
    if expected_models <= SMALL_DATASET_MODELS:
        return DatasetSize.SMALL
    if expected_models <= MEDIUM_DATASET_MODELS:
        return DatasetSize.MEDIUM
    return DatasetSize.LARGE


def parallelization_potential(
    measurements: Sequence[Measurement], stages: Sequence[Stage] | None = None
) -> float:
    """Estimate how much a workload could gain from threads.

    With stages, the share of stages that do not need their own wave. Without
    them, the share of wall time not spent on the CPU (I/O-bound work
    overlaps well on threads).
    """
    if stages:
        waves = StageGraph(stages).waves()
        return round(1.0 - len(waves) / len(stages), 4)

    total_time = sum(m.execution_time for m in measurements)
    if total_time <= 0:
        return 0.0
    cpu_share = sum(m.cpu_time for m in measurements) / total_time
    return round(min(max(1.0 - cpu_share, 0.0), 1.0), 4)


class PerformanceOptimizer:
    """Facade that picks an execution strategy and runs work under it.

    Owns (or is handed) a scheduler, cache, monitor, and optionally a
    benchmark runner used for calibration and baseline benchmarks.
    """

    def __init__(
        self,
        config: Config | None = None,
        benchmark_runner: BenchmarkRunner | None = None,
        scheduler: StageScheduler | None = None,
        cache_optimizer: CacheOptimizer | None = None,
        monitor: PerformanceMonitor | None = None,
        collector: MeasurementCollector | None = None,
    ):
        """Initialize performance optimizer.

        Args:
            config: Full configuration (default: Config())
            benchmark_runner: Optional runner for calibration and baselines
            scheduler: Stage scheduler (built from config when omitted)
            cache_optimizer: Cache (built from config when omitted)
            monitor: Monitor integrated with the cache and scheduler
            collector: Measurement collector for optimized runs
        """
        self.config = config or Config()
        self.benchmark_runner = benchmark_runner
        self.scheduler = scheduler or StageScheduler(self.config.scheduler)
        self.cache_optimizer = cache_optimizer or CacheOptimizer(self.config.cache)
        self.monitor = monitor or PerformanceMonitor(
            self.config.monitor, cache_optimizer=self.cache_optimizer, scheduler=self.scheduler
        )
        self.collector = collector or MeasurementCollector()
        self.analyzer = StatisticalAnalyzer(
            confidence_level=self.config.analysis.confidence_level,
            practical_threshold=self.config.analysis.practical_threshold,
        )
        self.current_strategy: StrategyName | None = None
        self.optimization_history: list[OptimizationRecord] = []
        self._base_ttl = self.cache_optimizer.config.default_ttl
        self._base_threads = self.scheduler.max_threads

    def __enter__(self) -> "PerformanceOptimizer":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()

    @property
    def strategy_config(self) -> StrategyConfig | None:
        if self.current_strategy is None:
            return None
        return STRATEGIES[self.current_strategy]

    # ===== Workload analysis =====

    def analyze_workload_characteristics(
        self,
        block: Callable[[], Any] | None = None,
        stages: Sequence[Stage] | None = None,
        iterations: int = CALIBRATION_ITERATIONS,
    ) -> WorkloadCharacteristics:
        """Calibrate a workload with a short benchmark.

        Uses the benchmark runner's calibration scenario when a runner is
        available, otherwise measures block directly. With neither, returns
        neutral characteristics with no baseline.
        """
        complexity = ComplexityLevel.LOW
        dataset_size = DatasetSize.SMALL
        runner = self.benchmark_runner

        if runner is not None and CALIBRATION_SCENARIO in runner.scenarios:
            result = runner.benchmark_scenario(
                CALIBRATION_SCENARIO, iterations=iterations, warmup=0
            )
            measurements = result.old_system.measurements
            complexity = result.scenario.complexity_level
            dataset_size = dataset_size_for(result.scenario.expected_models)
        elif block is not None:
            measurements = [self.collector.measure(block)[0] for _ in range(iterations)]
        else:
            return WorkloadCharacteristics()

        summary = self.analyzer.summarize_measurements(measurements)
        cache_report = self.cache_optimizer.cache_efficiency_report().overall
        caching = cache_report.hit_rate / 100 if cache_report.total_requests > 0 else 0.0

        characteristics = WorkloadCharacteristics(
            dataset_size=dataset_size,
            complexity_level=complexity,
            baseline_execution_time=summary.avg_execution_time,
            baseline_memory_usage=summary.avg_peak_memory,
            parallelization_potential=parallelization_potential(measurements, stages),
            caching_potential=round(caching, 4),
        )
        logger.info("workload_analyzed", **characteristics.model_dump(mode="json"))
        return characteristics

    def analyze_and_recommend_strategy(
        self,
        characteristics: WorkloadCharacteristics | None = None,
        block: Callable[[], Any] | None = None,
        stages: Sequence[Stage] | None = None,
    ) -> StrategyRecommendation:
        """Recommend a strategy, calibrating first when no characteristics are given."""
        if characteristics is None:
            characteristics = self.analyze_workload_characteristics(block=block, stages=stages)

        strategy = select_strategy(characteristics)
        alternatives = sorted(
            (
                StrategyRanking(strategy=name, confidence=strategy_confidence(name, characteristics))
                for name in STRATEGIES
                if name != strategy
            ),
            key=lambda ranking: ranking.confidence,
            reverse=True,
        )

        return StrategyRecommendation(
            recommended_strategy=strategy,
            workload_analysis=characteristics,
            confidence_score=strategy_confidence(strategy, characteristics),
            alternative_strategies=alternatives,
        )

    # ===== Execution =====

    def configure_for_strategy(self, strategy: StrategyName | str) -> StrategyConfig:
        """Apply a strategy to the scheduler and cache."""
        strategy = StrategyName(strategy)
        preset = STRATEGIES[strategy]
        self.current_strategy = strategy

        max_threads = self._base_threads
        if preset.use_parallel and preset.parallel_conservative:
            max_threads = max(1, max_threads // 2)
        self.scheduler.configure(max_threads)

        ttl = self._base_ttl * 2 if preset.cache_aggressive else self._base_ttl
        if self.cache_optimizer.config.default_ttl != ttl:
            self.cache_optimizer.update_configuration(default_ttl=ttl)

        logger.info(
            "strategy_configured",
            strategy=strategy.value,
            use_parallel=preset.use_parallel,
            use_cache=preset.use_cache,
            max_threads=max_threads,
        )
        return preset

    def optimize_generation(
        self,
        block: Callable[[], T],
        strategy: StrategyName | str | None = None,
    ) -> OptimizationResult:
        """Run block under a strategy inside a monitoring session.

        When no strategy is given, one is selected by calibrating the
        workload first. Exceptions from block are captured in the measurement.
        """
        if strategy is None:
            strategy = self.analyze_and_recommend_strategy(block=block).recommended_strategy
        preset = self.configure_for_strategy(strategy)

        self.monitor.start_session(
            f"optimization_{preset.name.value}",
            metadata={"strategy": preset.name.value, "auto_optimized": True},
        )
        try:
            measurement, result = self.collector.measure(block)
            if preset.use_monitoring:
                self.monitor.record_result(measurement)
            self._record_optimization(preset.name, measurement)
        finally:
            self.monitor.end_session()

        return OptimizationResult(strategy=preset.name, result=result, measurement=measurement)

    def cached(
        self,
        category: CacheCategory | str,
        key: str,
        compute_fn: Callable[[], T],
        force_refresh: bool = False,
    ) -> T:
        """Cache-through helper for work run under the current strategy.

        Computes directly when the strategy disables caching.
        """
        preset = self.strategy_config
        if preset is not None and not preset.use_cache:
            return compute_fn()
        return self.cache_optimizer.cached(category, key, compute_fn, force_refresh)

    def execute_stages(self, stages: Sequence[Stage]) -> ExecutionResult:
        """Run stages with the scheduler method the current strategy selects.

        Parallel strategies use dependency-aware waves (or one flat batch
        when no stage declares dependencies); sequential ones run in
        dependency order on the calling thread.
        """
        preset = self.strategy_config
        use_parallel = preset.use_parallel if preset is not None else False

        if use_parallel and any(stage.dependencies for stage in stages):
            result = self.scheduler.run_with_dependencies(stages)
        elif use_parallel:
            result = self.scheduler.run_parallel(stages)
        else:
            graph = StageGraph(stages)
            order = graph.execution_order()
            by_name = {stage.name: stage for stage in stages}
            result = self.scheduler.run_sequential([by_name[name] for name in order])

        self.monitor.record_event(
            "stages_executed",
            f"{result.total_stages} stages executed",
            method=result.execution_method.value,
            execution_time=result.total_execution_time,
            failed_stages=result.failed_stages,
            parallelization_efficiency=result.parallelization_efficiency,
        )
        return result

    # ===== Analysis =====

    def run_comprehensive_analysis(
        self,
        include_all_strategies: bool = False,
        block: Callable[[], Any] | None = None,
        iterations: int | None = None,
    ) -> ComprehensiveAnalysis:
        """Benchmark baselines, trial strategies, and rank them.

        Strategy trials run block (or, without one, the runner's new system
        on the calibration scenario) under each strategy. Trials with no
        workload available are skipped.

        Args:
            include_all_strategies: Trial all five strategies instead of three
            block: Workload to trial
            iterations: Trial iterations per strategy (default from config)
        """
        iterations = iterations or self.config.benchmark.iterations
        previous_strategy = self.current_strategy

        self.monitor.start_session(
            "comprehensive_analysis", metadata={"analysis_type": "comprehensive"}
        )
        try:
            workload = self.analyze_workload_characteristics(block=block)
            benchmarks = self._run_baseline_benchmarks()

            workload_fn = block or self._calibration_workload()
            strategies = list(STRATEGIES) if include_all_strategies else list(TOP_STRATEGIES)
            trials: dict[StrategyName, StrategyTrial] = {}
            if workload_fn is not None:
                baseline = workload.baseline_execution_time
                for strategy in strategies:
                    trial = self._trial_strategy(strategy, workload_fn, iterations, baseline)
                    trials[strategy] = trial
                    self.monitor.record_event(
                        "strategy_tested", strategy.value, **trial.model_dump(mode="json")
                    )

            ranked = sorted(
                trials, key=lambda name: trials[name].improvement_over_baseline, reverse=True
            )
            analysis = ComprehensiveAnalysis(
                workload_analysis=workload,
                benchmark_results=benchmarks,
                strategy_comparisons=trials,
                ranked_strategies=ranked,
                recommendations=self._analysis_recommendations(workload, benchmarks, ranked),
            )
        finally:
            if previous_strategy is not None:
                self.configure_for_strategy(previous_strategy)
            else:
                self.current_strategy = None
            self.monitor.end_session()

        logger.info(
            "comprehensive_analysis_completed",
            strategies_tested=len(trials),
            best_strategy=ranked[0].value if ranked else None,
        )
        return analysis

    def optimization_metrics(self) -> OptimizationMetrics:
        stats = self.scheduler.performance_statistics()
        return OptimizationMetrics(
            current_strategy=self.current_strategy,
            monitor_metrics=self.monitor.real_time_metrics(),
            cache_performance=self.cache_optimizer.cache_efficiency_report(),
            scheduler_statistics={
                "total_executions": stats.total_executions,
                "average_improvement": stats.average_improvement,
                "average_parallel_efficiency": stats.average_parallel_efficiency,
            },
            recent_optimizations=self.optimization_history[-5:],
        )

    def generate_comprehensive_report(
        self, format: str = "json", include_history: bool = True
    ) -> str:
        """Render the optimizer report as json, html, or markdown.

        Raises:
            UnsupportedFormatError: For any other format
        """
        stats = self.scheduler.performance_statistics()
        cache_report = self.cache_optimizer.cache_efficiency_report()
        history = self.optimization_history if include_history else self.optimization_history[-10:]
        measured = stats.total_executions > 0

        report = OptimizationReport(
            current_strategy=self.current_strategy,
            component_status={
                "benchmarking": self.benchmark_runner is not None,
                "parallel_execution": True,
                "caching": True,
                "monitoring": True,
            },
            cache_hit_rate=(
                cache_report.overall.hit_rate if cache_report.overall.total_requests else None
            ),
            parallel_efficiency=round(stats.average_parallel_efficiency, 2) if measured else None,
            average_parallel_improvement=stats.average_improvement if measured else None,
            optimization_history=list(history),
            strategies=list(STRATEGIES.values()),
            recommendations=cache_report.recommendations + self.monitor.recommendations(),
            configuration=self.config.model_dump(mode="json"),
        )
        return render_optimization_report(report, format)

    def preload_cache(self, path: Path) -> int:
        """Pre-warm the cache from an export file."""
        return self.cache_optimizer.import_cache(path)

    def shutdown(self) -> None:
        """End any active session and stop the scheduler's workers."""
        self.monitor.end_session()
        self.scheduler.shutdown()

    # ===== Internals =====

    def _record_optimization(self, strategy: StrategyName, measurement: Measurement) -> None:
        stats = self.scheduler.performance_statistics()
        self.optimization_history.append(
            OptimizationRecord(
                strategy=strategy,
                execution_time=measurement.execution_time,
                success=measurement.success,
                memory_usage=measurement.memory_peak,
                files_generated=measurement.files_created,
                cache_hit_rate=self.cache_optimizer.hit_rate,
                parallel_efficiency=round(stats.average_parallel_efficiency, 2),
            )
        )
        if len(self.optimization_history) > HISTORY_LIMIT:
            self.optimization_history = self.optimization_history[-HISTORY_LIMIT:]

    def _run_baseline_benchmarks(self) -> dict[str, ScenarioResult]:
        runner = self.benchmark_runner
        if runner is None:
            return {}
        return {
            name: runner.benchmark_scenario(name)
            for name in BASELINE_SCENARIOS
            if name in runner.scenarios
        }

    def _calibration_workload(self) -> Callable[[], Any] | None:
        runner = self.benchmark_runner
        if runner is None or CALIBRATION_SCENARIO not in runner.scenarios:
            return None
        scenario = runner.scenarios[CALIBRATION_SCENARIO]
        new_system = runner.systems[NEW_SYSTEM]
        return lambda: new_system(scenario)

    def _trial_strategy(
        self,
        strategy: StrategyName,
        workload_fn: Callable[[], Any],
        iterations: int,
        baseline: float | None,
    ) -> StrategyTrial:
        self.configure_for_strategy(strategy)
        measurements = [self.collector.measure(workload_fn)[0] for _ in range(iterations)]

        execution_time = statistics.fmean(m.execution_time for m in measurements)
        succeeded = sum(1 for m in measurements if m.success)
        return StrategyTrial(
            strategy=strategy,
            execution_time=execution_time,
            memory_usage=statistics.fmean(m.memory_peak for m in measurements),
            success_rate=round(succeeded / len(measurements) * 100, 2),
            improvement_over_baseline=percentage_improvement(baseline, execution_time)
            if baseline
            else 0.0,
        )

    @staticmethod
    def _analysis_recommendations(
        workload: WorkloadCharacteristics,
        benchmarks: dict[str, ScenarioResult],
        ranked: list[StrategyName],
    ) -> list[Recommendation]:
        baseline = None
        if "small_dataset" in benchmarks:
            baseline = benchmarks["small_dataset"].old_system.summary.avg_execution_time
        elif workload.baseline_execution_time is not None:
            baseline = workload.baseline_execution_time

        recommendations = []
        if baseline is not None:
            recommendations = evaluate_rules(OPTIMIZER_RULES, {"baseline_execution_time": baseline})

        if ranked:
            recommendations.append(
                Recommendation(
                    priority=Priority.HIGH,
                    category="optimization",
                    issue=BEST_STRATEGY_ISSUE,
                    recommendation=BEST_STRATEGY_RECOMMENDATION.format(strategy=ranked[0].value),
                )
            )
        return recommendations
