"""Unit tests for the comparative benchmark runner."""

import time
from pathlib import Path
from typing import Any

import pytest
from pipebench.application.benchmark_runner import (
    DEFAULT_SCENARIOS,
    NEW_SYSTEM,
    OLD_SYSTEM,
    BenchmarkRunner,
    percentage_improvement,
)
from pipebench.application.measurement_collector import MeasurementCollector
from pipebench.application.performance_monitor import PerformanceMonitor
from pipebench.domain.models import BenchmarkScenario
from pipebench.infrastructure.config import BenchmarkConfig, MonitorConfig


def _system(delay: float, files: int = 2, calls: list[str] | None = None):
    def run(scenario: BenchmarkScenario) -> dict[str, Any]:
        if calls is not None:
            calls.append(scenario.key)
        time.sleep(delay)
        return pytest.helpers.generation_result(files=files, models=scenario.expected_models)

    return run


@pytest.fixture
def runner(collector: MeasurementCollector, scenario: BenchmarkScenario) -> BenchmarkRunner:
    """Runner whose new system is clearly faster than the old one."""
    return BenchmarkRunner(
        old_system=_system(0.02),
        new_system=_system(0.002),
        config=BenchmarkConfig(iterations=3, warmup_iterations=0),
        collector=collector,
        scenarios=[scenario],
    )


class TestPercentageImprovement:
    """Tests for percentage_improvement."""

    @pytest.mark.parametrize(
        ("old", "new", "expected"),
        [(10.0, 5.0, 50.0), (10.0, 12.5, -25.0), (3.0, 2.0, 33.33), (0.0, 5.0, 0.0)],
    )
    def test_values(self, old: float, new: float, expected: float) -> None:
        """Test positive means the new value is lower."""
        assert percentage_improvement(old, new) == expected


class TestBenchmarkScenario:
    """Tests for single scenario benchmarks."""

    def test_default_registry(self) -> None:
        """Test the four built-in scenarios are registered by default."""
        runner = BenchmarkRunner(_system(0), _system(0))

        assert set(runner.scenarios) == set(DEFAULT_SCENARIOS)
        assert runner.scenarios["large_dataset"].table_filter is None

    def test_unknown_scenario(self, runner: BenchmarkRunner) -> None:
        """Test unknown scenario names are rejected."""
        with pytest.raises(ValueError, match="Unknown scenario"):
            runner.benchmark_scenario("missing")

    def test_measures_both_systems(self, runner: BenchmarkRunner) -> None:
        """Test each system is measured the configured number of times."""
        result = runner.benchmark_scenario("tiny")

        assert result.old_system.system_type == OLD_SYSTEM
        assert result.new_system.system_type == NEW_SYSTEM
        assert len(result.old_system.measurements) == 3
        assert len(result.new_system.measurements) == 3
        assert result.old_system.summary.sample_size == 3
        assert all(m.files_created == 2 for m in result.new_system.measurements)

    def test_faster_new_system_improves(self, runner: BenchmarkRunner) -> None:
        """Test a faster new system yields a positive improvement."""
        result = runner.benchmark_scenario("tiny")

        assert result.performance_improvement.execution_time_improvement > 0
        assert result.comparison.performance_difference.improvement is True

    def test_warmup_runs_discarded(
        self, collector: MeasurementCollector, scenario: BenchmarkScenario
    ) -> None:
        """Test warmup iterations run on both systems but are not measured."""
        old_calls: list[str] = []
        new_calls: list[str] = []
        runner = BenchmarkRunner(
            _system(0, calls=old_calls),
            _system(0, calls=new_calls),
            collector=collector,
            scenarios=[scenario],
        )

        result = runner.benchmark_scenario("tiny", iterations=2, warmup=1)

        assert len(old_calls) == 3
        assert len(new_calls) == 3
        assert len(result.old_system.measurements) == 2

    def test_failures_are_captured(
        self, collector: MeasurementCollector, scenario: BenchmarkScenario
    ) -> None:
        """Test a raising system produces failed measurements."""

        def broken(scenario: BenchmarkScenario) -> None:
            raise RuntimeError("boom")

        runner = BenchmarkRunner(_system(0), broken, collector=collector, scenarios=[scenario])

        result = runner.benchmark_scenario("tiny", iterations=2, warmup=0)

        assert all(not m.success for m in result.new_system.measurements)
        assert "RuntimeError: boom" in result.new_system.measurements[0].errors[0]

    def test_register_scenario(self, runner: BenchmarkRunner) -> None:
        """Test scenarios can be added after construction."""
        runner.register_scenario(BenchmarkScenario(key="extra", name="Extra"))

        assert "extra" in runner.scenarios


class TestComparativeBenchmark:
    """Tests for multi-scenario runs, summaries, and reports."""

    def test_summary(self, runner: BenchmarkRunner) -> None:
        """Test the summary aggregates scenario improvements."""
        report = runner.run_comparative_benchmark()

        summary = report.summary
        assert summary.total_scenarios_tested == 1
        assert summary.scenarios_with_improvement == 1
        assert summary.scenarios_with_regression == 0
        assert summary.best_improvement == summary.worst_improvement
        assert report.metadata.iterations == 3

    def test_summarize_empty(self) -> None:
        """Test no scenarios gives an empty summary."""
        assert BenchmarkRunner.summarize([]).total_scenarios_tested == 0

    def test_notifies_monitor(
        self, collector: MeasurementCollector, scenario: BenchmarkScenario, tmp_path: Path
    ) -> None:
        """Test the monitor records the benchmark in its active session."""
        monitor = PerformanceMonitor(MonitorConfig(data_directory=tmp_path))
        monitor.start_session("bench")
        runner = BenchmarkRunner(
            _system(0),
            _system(0),
            config=BenchmarkConfig(iterations=2, warmup_iterations=0),
            collector=collector,
            scenarios=[scenario],
            monitor=monitor,
        )

        runner.run_comparative_benchmark()

        assert len(monitor.benchmarks) == 1
        assert monitor.current_session.events[-1].type == "benchmark_completed"

    def test_regression_recommendation(
        self, collector: MeasurementCollector, scenario: BenchmarkScenario
    ) -> None:
        """Test a slower new system produces a high priority regression recommendation."""
        runner = BenchmarkRunner(
            _system(0.002),
            _system(0.02),
            config=BenchmarkConfig(iterations=3, warmup_iterations=0),
            collector=collector,
            scenarios=[scenario],
        )
        report = runner.run_comparative_benchmark()

        recommendations = runner.get_performance_recommendations(report)

        categories = [r.category for r in recommendations]
        assert "performance_regression" in categories
        # Only the most severe execution time rule applies
        assert "optimization_opportunity" not in categories
        assert all(r.scenario == "tiny" for r in recommendations)

    def test_markdown_report(self, runner: BenchmarkRunner, tmp_path: Path) -> None:
        """Test the markdown report is written to the requested file."""
        report = runner.run_comparative_benchmark()
        output = tmp_path / "reports" / "benchmark.md"

        content = runner.generate_report(report, output_file=output)

        assert output.read_text() == content
        assert content.startswith("# Performance Benchmark Report")
        assert "### Tiny (tiny)" in content
        assert "## Statistical Analysis" in content
        assert "| tiny | old_system | 3 | 0 |" in content
