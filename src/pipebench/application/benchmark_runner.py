"""Comparative benchmarking of an old and a new system across scenarios."""

import platform
from collections.abc import Callable, Iterable
from datetime import datetime
from functools import partial
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

from pipebench.application.measurement_collector import MeasurementCollector
from pipebench.domain.models import (
    BenchmarkScenario,
    ComplexityLevel,
    Measurement,
    PerformanceImprovement,
    ScenarioResult,
    SystemRun,
    utc_now,
)
from pipebench.infrastructure.config import BenchmarkConfig
from pipebench.infrastructure.logger import get_logger
from pipebench.services.recommendations import (
    BENCHMARK_RULES,
    BENCHMARK_STATUS_TIERS,
    Recommendation,
    classify,
    evaluate_rules,
)
from pipebench.services.statistical_analyzer import StatisticalAnalyzer

if TYPE_CHECKING:
    from pipebench.application.performance_monitor import PerformanceMonitor

logger = get_logger(__name__)

# A system under test receives the scenario and returns a generation result descriptor
SystemCallable = Callable[[BenchmarkScenario], Any]

OLD_SYSTEM = "old_system"
NEW_SYSTEM = "new_system"

DEFAULT_SCENARIOS: dict[str, BenchmarkScenario] = {
    scenario.key: scenario
    for scenario in (
        BenchmarkScenario(
            key="small_dataset",
            name="Small Dataset",
            description="5-10 simple tables with basic relationships",
            complexity_level=ComplexityLevel.LOW,
            expected_models=3,
            table_filter=["users", "clients", "devices"],
        ),
        BenchmarkScenario(
            key="medium_dataset",
            name="Medium Dataset",
            description="10-20 tables with complex relationships and patterns",
            complexity_level=ComplexityLevel.MEDIUM,
            expected_models=8,
            table_filter=[
                "users",
                "clients",
                "devices",
                "jobs",
                "tasks",
                "notes",
                "activity_logs",
                "contact_methods",
            ],
        ),
        BenchmarkScenario(
            key="large_dataset",
            name="Large Dataset",
            description="Full schema with all tables and relationships",
            complexity_level=ComplexityLevel.HIGH,
            expected_models=15,
            table_filter=None,
        ),
        BenchmarkScenario(
            key="polymorphic_heavy",
            name="Polymorphic Heavy",
            description="Tables with complex polymorphic relationships",
            complexity_level=ComplexityLevel.HIGH,
            expected_models=2,
            table_filter=["activity_logs", "notes"],
        ),
    )
}


class BenchmarkMetadata(BaseModel):
    """Context of a benchmark run."""

    timestamp: datetime = Field(default_factory=utc_now)
    python_version: str = Field(default_factory=platform.python_version)
    iterations: int
    warmup_iterations: int


class BenchmarkSummary(BaseModel):
    """Aggregate execution-time improvement across scenarios."""

    total_scenarios_tested: int = 0
    overall_performance_improvement: float = 0.0
    best_improvement: float = 0.0
    worst_improvement: float = 0.0
    scenarios_with_improvement: int = 0
    scenarios_with_regression: int = 0


class BenchmarkReport(BaseModel):
    """Complete output of run_comparative_benchmark."""

    metadata: BenchmarkMetadata
    scenarios: dict[str, ScenarioResult] = Field(default_factory=dict)
    summary: BenchmarkSummary = Field(default_factory=BenchmarkSummary)


def percentage_improvement(old_value: float, new_value: float) -> float:
    """Percent reduction from old to new; positive means new is lower."""
    if old_value == 0:
        return 0.0
    return round((old_value - new_value) / old_value * 100, 2)


class BenchmarkRunner:
    """Runs old and new systems through scenarios and compares them."""

    def __init__(
        self,
        old_system: SystemCallable,
        new_system: SystemCallable,
        config: BenchmarkConfig | None = None,
        analyzer: StatisticalAnalyzer | None = None,
        collector: MeasurementCollector | None = None,
        scenarios: Iterable[BenchmarkScenario] | None = None,
        monitor: "PerformanceMonitor | None" = None,
    ):
        """Initialize benchmark runner.

        Args:
            old_system: Baseline system under test
            new_system: Candidate system under test
            config: Iteration settings (default: BenchmarkConfig())
            analyzer: Statistical analyzer for comparisons
            collector: Measurement collector wrapping each iteration
            scenarios: Scenario registry (default: DEFAULT_SCENARIOS)
            monitor: Optional monitor notified of every comparative benchmark
        """
        self.systems: dict[str, SystemCallable] = {OLD_SYSTEM: old_system, NEW_SYSTEM: new_system}
        self.config = config or BenchmarkConfig()
        self.analyzer = analyzer or StatisticalAnalyzer()
        self.collector = collector or MeasurementCollector()
        self.scenarios: dict[str, BenchmarkScenario] = (
            {s.key: s for s in scenarios} if scenarios is not None else dict(DEFAULT_SCENARIOS)
        )
        self.monitor = monitor

    def register_scenario(self, scenario: BenchmarkScenario) -> None:
        """Add or replace a scenario in the registry."""
        self.scenarios[scenario.key] = scenario

    def benchmark_scenario(
        self,
        name: str,
        iterations: int | None = None,
        warmup: int | None = None,
    ) -> ScenarioResult:
        """Benchmark one scenario on both systems.

        Warmup runs are executed on both systems and discarded. Iteration
        failures are captured in the measurements, never raised.

        Args:
            name: Scenario key
            iterations: Measured iterations per system (default from config)
            warmup: Discarded warmup iterations (default from config)

        Raises:
            ValueError: If the scenario is not registered
        """
        scenario = self.scenarios.get(name)
        if scenario is None:
            raise ValueError(f"Unknown scenario: {name}")

        iterations = self.config.iterations if iterations is None else iterations
        warmup = self.config.warmup_iterations if warmup is None else warmup

        logger.info(
            "scenario_benchmark_started", scenario=name, iterations=iterations, warmup=warmup
        )

        for _ in range(warmup):
            for system in self.systems.values():
                self.collector.measure(partial(system, scenario))

        old_run = self._run_system(OLD_SYSTEM, scenario, iterations)
        new_run = self._run_system(NEW_SYSTEM, scenario, iterations)

        comparison = self.analyzer.compare_measurements(old_run.measurements, new_run.measurements)
        improvement = PerformanceImprovement(
            execution_time_improvement=percentage_improvement(
                old_run.summary.avg_execution_time, new_run.summary.avg_execution_time
            ),
            memory_efficiency_improvement=percentage_improvement(
                old_run.summary.avg_peak_memory, new_run.summary.avg_peak_memory
            ),
            file_operations_improvement=percentage_improvement(
                old_run.summary.avg_file_operations, new_run.summary.avg_file_operations
            ),
        )

        logger.info(
            "scenario_benchmark_completed",
            scenario=name,
            old_avg=round(old_run.summary.avg_execution_time, 4),
            new_avg=round(new_run.summary.avg_execution_time, 4),
            improvement=improvement.execution_time_improvement,
            significant=comparison.statistically_significant,
        )

        return ScenarioResult(
            scenario=scenario,
            old_system=old_run,
            new_system=new_run,
            comparison=comparison,
            performance_improvement=improvement,
        )

    def run_comparative_benchmark(self, scenarios: Iterable[str] | None = None) -> BenchmarkReport:
        """Benchmark several scenarios and summarize them.

        Args:
            scenarios: Scenario keys to run (default: every registered scenario)
        """
        names = list(scenarios) if scenarios is not None else list(self.scenarios)
        report = BenchmarkReport(
            metadata=BenchmarkMetadata(
                iterations=self.config.iterations,
                warmup_iterations=self.config.warmup_iterations,
            )
        )

        for name in names:
            report.scenarios[name] = self.benchmark_scenario(name)

        report.summary = self.summarize(report.scenarios.values())

        if self.monitor is not None:
            self.monitor.record_benchmark_result(report)
        return report

    @staticmethod
    def summarize(results: Iterable[ScenarioResult]) -> BenchmarkSummary:
        improvements = [r.performance_improvement.execution_time_improvement for r in results]
        if not improvements:
            return BenchmarkSummary()

        return BenchmarkSummary(
            total_scenarios_tested=len(improvements),
            overall_performance_improvement=round(sum(improvements) / len(improvements), 2),
            best_improvement=max(improvements),
            worst_improvement=min(improvements),
            scenarios_with_improvement=sum(1 for i in improvements if i > 0),
            scenarios_with_regression=sum(1 for i in improvements if i < 0),
        )

    @staticmethod
    def get_performance_recommendations(report: BenchmarkReport) -> list[Recommendation]:
        """Rule-based recommendations per scenario."""
        recommendations: list[Recommendation] = []
        for name, result in report.scenarios.items():
            recommendations.extend(
                evaluate_rules(
                    BENCHMARK_RULES,
                    result.performance_improvement.model_dump(),
                    scenario=name,
                )
            )
        return recommendations

    def generate_report(self, report: BenchmarkReport, output_file: Path | None = None) -> str:
        """Render a Markdown benchmark report, optionally writing it to a file."""
        content = render_benchmark_markdown(report, self.get_performance_recommendations(report))
        if output_file is not None:
            output_file = Path(output_file)
            output_file.parent.mkdir(parents=True, exist_ok=True)
            output_file.write_text(content)
            logger.info("benchmark_report_saved", path=str(output_file))
        return content

    def _run_system(self, system_type: str, scenario: BenchmarkScenario, iterations: int) -> SystemRun:
        system = self.systems[system_type]
        measurements: list[Measurement] = []

        for iteration in range(iterations):
            measurement, _ = self.collector.measure(partial(system, scenario))
            measurements.append(measurement)
            logger.debug(
                "benchmark_iteration",
                system=system_type,
                scenario=scenario.key,
                iteration=iteration + 1,
                execution_time=round(measurement.execution_time, 4),
                success=measurement.success,
            )

        return SystemRun(
            system_type=system_type,
            measurements=measurements,
            summary=self.analyzer.summarize_measurements(measurements),
        )


def render_benchmark_markdown(
    report: BenchmarkReport, recommendations: list[Recommendation]
) -> str:
    summary = report.summary
    status = classify(
        summary.overall_performance_improvement, BENCHMARK_STATUS_TIERS, inclusive=True
    )
    total = summary.total_scenarios_tested

    lines = [
        "# Performance Benchmark Report",
        "",
        f"Generated: {report.metadata.timestamp.isoformat()}",
        f"Python Version: {report.metadata.python_version}",
        f"Iterations: {report.metadata.iterations}",
        f"Warmup Iterations: {report.metadata.warmup_iterations}",
        "",
        "## Executive Summary",
        "",
        f"- **Overall Performance**: {status.message} "
        f"({summary.overall_performance_improvement:.2f}% improvement)",
        f"- **Scenarios Tested**: {total}",
        f"- **Improved Performance**: {summary.scenarios_with_improvement}/{total} scenarios",
        f"- **Performance Regressions**: {summary.scenarios_with_regression}/{total} scenarios",
        f"- **Best Improvement**: {summary.best_improvement:.2f}%",
        f"- **Worst Result**: {summary.worst_improvement:.2f}%",
        "",
        "## Scenario Results",
        "",
    ]

    for key, result in report.scenarios.items():
        old = result.old_system.summary
        new = result.new_system.summary
        improvement = result.performance_improvement
        difference_ci = result.comparison.confidence_intervals.get("difference")
        lines.extend(
            [
                f"### {result.scenario.name} ({key})",
                "",
                f"**Description**: {result.scenario.description}",
                f"**Complexity**: {result.scenario.complexity_level.value}",
                f"**Expected Models**: {result.scenario.expected_models}",
                "",
                "| Metric | Old System | New System | Improvement |",
                "|--------|------------|------------|-------------|",
                f"| Execution Time | {old.avg_execution_time:.4f}s | {new.avg_execution_time:.4f}s "
                f"| {improvement.execution_time_improvement:.2f}% |",
                f"| Memory Usage | {old.avg_peak_memory:.2f}MB | {new.avg_peak_memory:.2f}MB "
                f"| {improvement.memory_efficiency_improvement:.2f}% |",
                f"| File Operations | {old.avg_file_operations:.1f} | {new.avg_file_operations:.1f} "
                f"| {improvement.file_operations_improvement:.2f}% |",
                "",
                "**Statistical Significance**: "
                + ("Yes" if result.comparison.statistically_significant else "No"),
            ]
        )
        if difference_ci is not None:
            lines.append(
                f"**Difference CI ({difference_ci.confidence_level:.0%})**: "
                f"[{difference_ci.lower:.4f}s, {difference_ci.upper:.4f}s]"
            )
        lines.append("")

    lines.extend(
        [
            "## Statistical Analysis",
            "",
            "| Scenario | p-value | Cohen's d | Effect | Practical |",
            "|----------|---------|-----------|--------|-----------|",
        ]
    )
    for key, result in report.scenarios.items():
        comparison = result.comparison
        lines.append(
            f"| {key} | {comparison.p_value:.4f} | {comparison.effect_size.cohens_d:.2f} "
            f"| {comparison.effect_size.interpretation.value} "
            f"| {'Yes' if comparison.practical_significance else 'No'} |"
        )
    lines.extend(["", "## Performance Recommendations", ""])

    if recommendations:
        for rec in recommendations:
            lines.append(
                f"- **{rec.priority.value.upper()}** ({rec.scenario}) {rec.issue}: "
                f"{rec.recommendation}"
            )
    else:
        lines.append("No recommendations. All scenarios meet expectations.")

    lines.extend(
        [
            "",
            "## Detailed Metrics",
            "",
            "| Scenario | System | Runs | Failed | Std Dev | CV | Outliers | Data Quality |",
            "|----------|--------|------|--------|---------|----|----------|--------------|",
        ]
    )
    for key, result in report.scenarios.items():
        for run in (result.old_system, result.new_system):
            failed = sum(1 for m in run.measurements if not m.success)
            s = run.summary
            lines.append(
                f"| {key} | {run.system_type} | {s.sample_size} | {failed} "
                f"| {s.std_dev_execution_time:.4f}s | {s.coefficient_of_variation:.2f}% "
                f"| {s.outlier_count} | {s.data_quality_score:.1f} |"
            )
    lines.append("")

    return "\n".join(lines)
