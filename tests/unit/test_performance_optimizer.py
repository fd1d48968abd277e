"""Unit tests for the performance optimizer facade."""

import json
import time
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest
from pipebench.application.benchmark_runner import BenchmarkRunner
from pipebench.application.measurement_collector import MeasurementCollector
from pipebench.application.performance_optimizer import (
    HISTORY_LIMIT,
    STRATEGIES,
    PerformanceOptimizer,
    dataset_size_for,
    parallelization_potential,
    select_strategy,
    strategy_confidence,
)
from pipebench.domain.models import (
    ComplexityLevel,
    DatasetSize,
    ExecutionMethod,
    Measurement,
    StrategyName,
    WorkloadCharacteristics,
)
from pipebench.infrastructure.config import (
    BenchmarkConfig,
    CacheConfig,
    Config,
    MonitorConfig,
    SchedulerConfig,
)
from pipebench.infrastructure.exceptions import UnsupportedFormatError
from pipebench.services.cache_optimizer import CacheOptimizer


@pytest.fixture
def optimizer_config(tmp_path: Path) -> Config:
    return Config(
        scheduler=SchedulerConfig(max_threads=4, shutdown_timeout=5.0),
        cache=CacheConfig(file_cache_enabled=False),
        monitor=MonitorConfig(data_directory=tmp_path / "sessions"),
        benchmark=BenchmarkConfig(iterations=2, warmup_iterations=0),
    )


@pytest.fixture
def optimizer(
    optimizer_config: Config, collector: MeasurementCollector
) -> Generator[PerformanceOptimizer, None, None]:
    optimizer = PerformanceOptimizer(optimizer_config, collector=collector)
    yield optimizer
    optimizer.shutdown()


def _workload(calls: list[int] | None = None, delay: float = 0.001):
    def run() -> dict[str, Any]:
        if calls is not None:
            calls.append(1)
        time.sleep(delay)
        return pytest.helpers.generation_result()

    return run


class TestStrategySelection:
    """Tests for the strategy selection rules."""

    @pytest.mark.parametrize(
        ("characteristics", "expected"),
        [
            (
                WorkloadCharacteristics(
                    dataset_size=DatasetSize.LARGE, parallelization_potential=0.9
                ),
                StrategyName.PARALLEL,
            ),
            (
                WorkloadCharacteristics(
                    dataset_size=DatasetSize.LARGE,
                    parallelization_potential=0.5,
                    caching_potential=0.9,
                ),
                StrategyName.CACHE_HEAVY,
            ),
            (
                WorkloadCharacteristics(complexity_level=ComplexityLevel.HIGH),
                StrategyName.BALANCED,
            ),
            (WorkloadCharacteristics(baseline_execution_time=1.0), StrategyName.MINIMAL),
            (WorkloadCharacteristics(baseline_execution_time=10.0), StrategyName.SEQUENTIAL),
            (WorkloadCharacteristics(), StrategyName.SEQUENTIAL),
        ],
    )
    def test_select_strategy(
        self, characteristics: WorkloadCharacteristics, expected: StrategyName
    ) -> None:
        """Test the first matching rule wins."""
        assert select_strategy(characteristics) == expected

    def test_parallel_potential_exactly_at_threshold(self) -> None:
        """Test the large dataset rule needs potential strictly above 0.7."""
        characteristics = WorkloadCharacteristics(
            dataset_size=DatasetSize.LARGE,
            parallelization_potential=0.7,
            baseline_execution_time=10.0,
        )

        assert select_strategy(characteristics) == StrategyName.SEQUENTIAL

    def test_confidence(self) -> None:
        """Test the confidence bonus applies to the matching potential only."""
        characteristics = WorkloadCharacteristics(
            parallelization_potential=0.9, caching_potential=0.5
        )

        assert strategy_confidence(StrategyName.PARALLEL, characteristics) == 0.9
        assert strategy_confidence(StrategyName.CACHE_HEAVY, characteristics) == 0.7
        assert strategy_confidence(StrategyName.MINIMAL, characteristics) == 0.7

    @pytest.mark.parametrize(
        ("models", "expected"),
        [
            (3, DatasetSize.SMALL),
            (5, DatasetSize.SMALL),
            (8, DatasetSize.MEDIUM),
            (15, DatasetSize.LARGE),
        ],
    )
    def test_dataset_size_for(self, models: int, expected: DatasetSize) -> None:
        """Test expected model counts map to dataset buckets."""
        assert dataset_size_for(models) == expected

    def test_parallelization_potential_from_stages(self, helpers) -> None:
        """Test independent stages have high potential and chains have none."""
        independent = [helpers.stage(name) for name in "abcd"]
        chain = [
            helpers.stage("a"),
            helpers.stage("b", dependencies={"a"}),
            helpers.stage("c", dependencies={"b"}),
        ]

        assert parallelization_potential([], independent) == 0.75
        assert parallelization_potential([], chain) == 0.0

    def test_parallelization_potential_from_cpu_share(self) -> None:
        """Test time off the CPU counts as parallelizable."""
        measurements = [Measurement(execution_time=1.0, cpu_time=0.25)]

        assert parallelization_potential(measurements) == 0.75
        assert parallelization_potential([]) == 0.0


class TestWorkloadAnalysis:
    """Tests for calibration and recommendations."""

    def test_without_runner_or_block(self, optimizer: PerformanceOptimizer) -> None:
        """Test neutral characteristics when nothing can be measured."""
        characteristics = optimizer.analyze_workload_characteristics()

        assert characteristics.baseline_execution_time is None
        assert characteristics.dataset_size == DatasetSize.SMALL

    def test_with_block(self, optimizer: PerformanceOptimizer) -> None:
        """Test a block is measured for the baseline."""
        calls: list[int] = []
        characteristics = optimizer.analyze_workload_characteristics(block=_workload(calls))

        assert len(calls) == 3
        assert characteristics.baseline_execution_time > 0
        assert characteristics.baseline_memory_usage == 100.0

    def test_with_runner(self, optimizer_config: Config, collector: MeasurementCollector) -> None:
        """Test the runner's small dataset scenario drives calibration."""
        runner = BenchmarkRunner(
            lambda scenario: pytest.helpers.generation_result(),
            lambda scenario: pytest.helpers.generation_result(),
            collector=collector,
        )
        with PerformanceOptimizer(
            optimizer_config, benchmark_runner=runner, collector=collector
        ) as optimizer:
            characteristics = optimizer.analyze_workload_characteristics()

        assert characteristics.dataset_size == DatasetSize.SMALL
        assert characteristics.complexity_level == ComplexityLevel.LOW
        assert characteristics.baseline_execution_time is not None

    def test_recommendation_alternatives(self, optimizer: PerformanceOptimizer) -> None:
        """Test the other four strategies are ranked by confidence."""
        characteristics = WorkloadCharacteristics(
            dataset_size=DatasetSize.LARGE, parallelization_potential=0.9
        )

        recommendation = optimizer.analyze_and_recommend_strategy(characteristics)

        assert recommendation.recommended_strategy == StrategyName.PARALLEL
        assert recommendation.confidence_score == 0.9
        alternatives = recommendation.alternative_strategies
        assert len(alternatives) == 4
        assert StrategyName.PARALLEL not in [a.strategy for a in alternatives]
        confidences = [a.confidence for a in alternatives]
        assert confidences == sorted(confidences, reverse=True)


class TestConfiguration:
    """Tests for applying strategies."""

    def test_balanced_halves_threads(self, optimizer: PerformanceOptimizer) -> None:
        """Test the conservative parallel preset uses half the workers."""
        optimizer.configure_for_strategy(StrategyName.BALANCED)

        assert optimizer.scheduler.max_threads == 2
        assert optimizer.current_strategy == StrategyName.BALANCED

        optimizer.configure_for_strategy("parallel")
        assert optimizer.scheduler.max_threads == 4

    def test_cache_heavy_doubles_ttl(self, optimizer: PerformanceOptimizer) -> None:
        """Test aggressive caching doubles the default TTL and reverts afterwards."""
        optimizer.configure_for_strategy(StrategyName.CACHE_HEAVY)
        assert optimizer.cache_optimizer.config.default_ttl == 7200.0

        optimizer.configure_for_strategy(StrategyName.SEQUENTIAL)
        assert optimizer.cache_optimizer.config.default_ttl == 3600.0

    def test_unknown_strategy(self, optimizer: PerformanceOptimizer) -> None:
        """Test unknown strategy names are rejected."""
        with pytest.raises(ValueError):
            optimizer.configure_for_strategy("turbo")

    def test_presets(self) -> None:
        """Test every strategy has a preset."""
        assert set(STRATEGIES) == set(StrategyName)
        assert STRATEGIES[StrategyName.MINIMAL].use_monitoring is False


class TestOptimizeGeneration:
    """Tests for running work under a strategy."""

    def test_explicit_strategy(self, optimizer: PerformanceOptimizer) -> None:
        """Test the result, measurement, and monitoring session."""
        result = optimizer.optimize_generation(_workload(), strategy=StrategyName.PARALLEL)

        assert result.strategy == StrategyName.PARALLEL
        assert result.result["success"] is True
        assert result.measurement.success is True
        assert len(optimizer.optimization_history) == 1

        session = optimizer.monitor.session_history[-1]
        assert session.name == "optimization_parallel"
        assert "generation_completed" in [e.type for e in session.events]
        assert optimizer.monitor.current_session is None

    def test_minimal_skips_monitoring(self, optimizer: PerformanceOptimizer) -> None:
        """Test the minimal preset does not record results."""
        optimizer.optimize_generation(_workload(), strategy="minimal")

        session = optimizer.monitor.session_history[-1]
        assert "generation_completed" not in [e.type for e in session.events]
        assert len(optimizer.optimization_history) == 1

    def test_auto_selects_strategy(self, optimizer: PerformanceOptimizer) -> None:
        """Test a fast workload is calibrated and gets the minimal strategy."""
        calls: list[int] = []

        result = optimizer.optimize_generation(_workload(calls))

        assert result.strategy == StrategyName.MINIMAL
        assert len(calls) == 4

    def test_failure_is_captured(self, optimizer: PerformanceOptimizer) -> None:
        """Test an exception ends the session and marks the measurement failed."""

        def broken() -> None:
            raise RuntimeError("boom")

        result = optimizer.optimize_generation(broken, strategy=StrategyName.SEQUENTIAL)

        assert result.measurement.success is False
        assert result.result is None
        assert optimizer.monitor.current_session is None
        assert optimizer.optimization_history[-1].success is False

    def test_history_is_bounded(self, optimizer: PerformanceOptimizer) -> None:
        """Test only the most recent optimizations are kept."""
        for _ in range(HISTORY_LIMIT + 5):
            optimizer.optimize_generation(lambda: None, strategy=StrategyName.MINIMAL)

        assert len(optimizer.optimization_history) == HISTORY_LIMIT

    def test_cached_respects_strategy(self, optimizer: PerformanceOptimizer) -> None:
        """Test the minimal preset bypasses the cache."""
        calls: list[int] = []

        def compute() -> int:
            calls.append(1)
            return 42

        optimizer.configure_for_strategy(StrategyName.MINIMAL)
        optimizer.cached("type_mapping", "k", compute)
        optimizer.cached("type_mapping", "k", compute)
        assert len(calls) == 2

        optimizer.configure_for_strategy(StrategyName.SEQUENTIAL)
        assert optimizer.cached("type_mapping", "k", compute) == 42
        assert optimizer.cached("type_mapping", "k", compute) == 42
        assert len(calls) == 3


class TestExecuteStages:
    """Tests for strategy-driven stage execution."""

    def test_sequential_follows_dependencies(self, optimizer: PerformanceOptimizer, helpers) -> None:
        """Test sequential execution runs stages in dependency order."""
        order: list[str] = []
        stages = [
            helpers.stage("render", fn=lambda: order.append("render"), dependencies={"parse"}),
            helpers.stage("parse", fn=lambda: order.append("parse")),
        ]
        optimizer.configure_for_strategy(StrategyName.SEQUENTIAL)

        result = optimizer.execute_stages(stages)

        assert result.execution_method == ExecutionMethod.SEQUENTIAL
        assert order == ["parse", "render"]

    def test_parallel_with_dependencies(self, optimizer: PerformanceOptimizer, helpers) -> None:
        """Test parallel strategies use dependency-aware waves when needed."""
        stages = [helpers.stage("a"), helpers.stage("b", dependencies={"a"})]
        optimizer.configure_for_strategy(StrategyName.PARALLEL)

        result = optimizer.execute_stages(stages)

        assert result.execution_method == ExecutionMethod.DEPENDENCY_AWARE
        assert result.stage_results["b"].result == "b"

    def test_parallel_without_dependencies(self, optimizer: PerformanceOptimizer, helpers) -> None:
        """Test independent stages run as one parallel batch."""
        optimizer.configure_for_strategy(StrategyName.PARALLEL)

        result = optimizer.execute_stages([helpers.stage("a"), helpers.stage("b")])

        assert result.execution_method == ExecutionMethod.PARALLEL
        assert result.successful_stages == 2

    def test_records_event(self, optimizer: PerformanceOptimizer, helpers) -> None:
        """Test execution is logged in the active session."""
        optimizer.monitor.start_session("stages")

        optimizer.execute_stages([helpers.stage("a")])

        event = optimizer.monitor.current_session.events[-1]
        assert event.type == "stages_executed"
        assert event.metadata["method"] == "sequential"


class TestComprehensiveAnalysis:
    """Tests for strategy trials and reports."""

    def test_trials_top_strategies(self, optimizer: PerformanceOptimizer) -> None:
        """Test three strategies are trialed, ranked, and the state is restored."""
        analysis = optimizer.run_comprehensive_analysis(block=_workload())

        assert set(analysis.strategy_comparisons) == {
            StrategyName.SEQUENTIAL,
            StrategyName.PARALLEL,
            StrategyName.BALANCED,
        }
        assert len(analysis.ranked_strategies) == 3
        assert analysis.recommendations[-1].category == "optimization"
        assert analysis.benchmark_results == {}
        assert optimizer.current_strategy is None
        assert optimizer.monitor.session_history[-1].name == "comprehensive_analysis"

    def test_all_strategies_and_restore(self, optimizer: PerformanceOptimizer) -> None:
        """Test all five presets run and the previous strategy comes back."""
        optimizer.configure_for_strategy(StrategyName.CACHE_HEAVY)

        analysis = optimizer.run_comprehensive_analysis(
            include_all_strategies=True, block=_workload(), iterations=1
        )

        assert len(analysis.strategy_comparisons) == 5
        assert all(t.success_rate == 100.0 for t in analysis.strategy_comparisons.values())
        assert optimizer.current_strategy == StrategyName.CACHE_HEAVY
        assert optimizer.cache_optimizer.config.default_ttl == 7200.0

    def test_no_workload(self, optimizer: PerformanceOptimizer) -> None:
        """Test without a runner or block nothing is trialed."""
        analysis = optimizer.run_comprehensive_analysis()

        assert analysis.strategy_comparisons == {}
        assert analysis.ranked_strategies == []

    def test_with_runner_baselines(
        self, optimizer_config: Config, collector: MeasurementCollector
    ) -> None:
        """Test baseline scenarios come from the runner."""
        runner = BenchmarkRunner(
            lambda scenario: pytest.helpers.generation_result(),
            lambda scenario: pytest.helpers.generation_result(),
            config=BenchmarkConfig(iterations=2, warmup_iterations=0),
            collector=collector,
        )
        with PerformanceOptimizer(
            optimizer_config, benchmark_runner=runner, collector=collector
        ) as optimizer:
            analysis = optimizer.run_comprehensive_analysis(iterations=1)

        assert set(analysis.benchmark_results) == {"small_dataset", "medium_dataset"}
        assert len(analysis.strategy_comparisons) == 3


class TestReporting:
    """Tests for metrics, reports, and cache preloading."""

    def test_optimization_metrics(self, optimizer: PerformanceOptimizer, helpers) -> None:
        """Test live metrics expose strategy, scheduler, and history."""
        optimizer.optimize_generation(_workload(), strategy=StrategyName.PARALLEL)
        optimizer.execute_stages([helpers.stage("a"), helpers.stage("b")])

        metrics = optimizer.optimization_metrics()

        assert metrics.current_strategy == StrategyName.PARALLEL
        assert metrics.monitor_metrics is None
        assert metrics.scheduler_statistics["total_executions"] == 1
        assert len(metrics.recent_optimizations) == 1

    def test_markdown_report(self, optimizer: PerformanceOptimizer) -> None:
        """Test the markdown report includes history and strategies."""
        optimizer.optimize_generation(_workload(), strategy=StrategyName.SEQUENTIAL)

        report = optimizer.generate_comprehensive_report(format="markdown")

        assert report.startswith("# Performance Optimization Report")
        assert "**Current Strategy:** sequential" in report
        assert "### cache_heavy" in report
        assert "- Benchmarking: **disabled**" in report

    def test_json_report(self, optimizer: PerformanceOptimizer) -> None:
        """Test the JSON report lists every strategy."""
        data = json.loads(optimizer.generate_comprehensive_report())

        assert len(data["strategies"]) == 5
        assert data["cache_hit_rate"] is None

    def test_unsupported_report_format(self, optimizer: PerformanceOptimizer) -> None:
        """Test unknown formats are rejected."""
        with pytest.raises(UnsupportedFormatError):
            optimizer.generate_comprehensive_report(format="csv")

    def test_preload_cache(
        self, optimizer: PerformanceOptimizer, memory_cache_config: CacheConfig, tmp_path: Path
    ) -> None:
        """Test an exported cache pre-warms the optimizer's cache."""
        source = CacheOptimizer(memory_cache_config)
        source.cached("type_mapping", "users", lambda: {"id": "int"})
        path = tmp_path / "cache.json"
        source.export_cache(path)

        assert optimizer.preload_cache(path) == 1
        assert optimizer.cached("type_mapping", "users", lambda: {}) == {"id": "int"}

    def test_context_manager_ends_session(
        self, optimizer_config: Config, collector: MeasurementCollector
    ) -> None:
        """Test leaving the context ends the active session."""
        with PerformanceOptimizer(optimizer_config, collector=collector) as optimizer:
            optimizer.monitor.start_session("open")

        assert optimizer.monitor.current_session is None
        assert optimizer.monitor.session_history[-1].name == "open"
