"""Core domain models for pipebench."""

from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


class AlertLevel(str, Enum):
    """Performance alert severity."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class ExecutionMethod(str, Enum):
    """How a stage set was executed."""

    NONE = "none"
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    DEPENDENCY_AWARE = "dependency_aware"


class CacheCategory(str, Enum):
    """Cache categories, each with its own TTL policy."""

    SCHEMA_INTROSPECTION = "schema_introspection"
    TEMPLATE_RENDERING = "template_rendering"
    TYPE_MAPPING = "type_mapping"
    RELATIONSHIP_PROCESSING = "relationship_processing"
    FILE_OPERATIONS = "file_operations"
    POLYMORPHIC_ANALYSIS = "polymorphic_analysis"
    DEFAULT = "default"  # Uncategorized keys


class ComplexityLevel(str, Enum):
    """Workload complexity bucket."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class DatasetSize(str, Enum):
    """Workload dataset size bucket."""

    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class StrategyName(str, Enum):
    """Available optimization strategies."""

    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CACHE_HEAVY = "cache_heavy"
    BALANCED = "balanced"
    MINIMAL = "minimal"


class EffectMagnitude(str, Enum):
    """Cohen's d interpretation bucket."""

    NEGLIGIBLE = "negligible"
    SMALL = "small"
    MEDIUM = "medium"
    LARGE = "large"


class Trend(str, Enum):
    """Direction of a metric across recent sessions."""

    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


# ===== Scheduling =====


class Stage(BaseModel):
    """A named unit of work with optional dependencies on other stages."""

    name: str
    callable: Callable[[], Any]
    dependencies: set[str] = Field(default_factory=set)

    model_config = ConfigDict(arbitrary_types_allowed=True)


class StageError(BaseModel):
    """An exception captured while running a stage."""

    stage: str
    error: str
    error_type: str
    traceback: list[str] = Field(default_factory=list)  # Last frames only
    execution_time: float = 0.0


class StageResult(BaseModel):
    """Outcome of a single stage execution.

    started_at/finished_at are monotonic clock readings (time.perf_counter),
    comparable only within one process.
    """

    stage_name: str
    result: Any = None
    execution_time: float = 0.0
    success: bool
    error: str | None = None
    started_at: float = 0.0
    finished_at: float = 0.0

    model_config = ConfigDict(arbitrary_types_allowed=True)


class ExecutionResult(BaseModel):
    """Aggregate outcome of a scheduler run."""

    execution_method: ExecutionMethod
    total_execution_time: float = 0.0
    stage_results: dict[str, StageResult] = Field(default_factory=dict)
    errors: list[StageError] = Field(default_factory=list)
    max_threads: int = 1
    waves: list[list[str]] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_stages(self) -> int:
        return len(self.stage_results)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def successful_stages(self) -> int:
        return sum(1 for r in self.stage_results.values() if r.success)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def failed_stages(self) -> int:
        return self.total_stages - self.successful_stages

    @computed_field  # type: ignore[prop-decorator]
    @property
    def success_rate(self) -> float:
        """Percentage of stages that succeeded (0.0 for an empty run)."""
        if not self.stage_results:
            return 0.0
        return round(self.successful_stages / self.total_stages * 100, 2)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def parallelization_efficiency(self) -> float:
        """(sum of stage times / max_threads) / wall clock, as a percent in [0, 100]."""
        if not self.stage_results or self.total_execution_time <= 0:
            return 0.0
        total_stage_time = sum(r.execution_time for r in self.stage_results.values())
        if total_stage_time <= 0:
            return 0.0
        theoretical_minimum = total_stage_time / max(self.max_threads, 1)
        efficiency = theoretical_minimum / self.total_execution_time * 100
        return round(min(max(efficiency, 0.0), 100.0), 2)


class MethodComparison(BaseModel):
    """Side-by-side sequential vs parallel run of the same stage set."""

    sequential: ExecutionResult
    parallel: ExecutionResult
    performance_improvement: float = 0.0
    parallelization_efficiency: float = 0.0
    recommendation: str


# ===== Measurements =====


class GenerationResult(BaseModel):
    """Result descriptor returned by a generation callable.

    Every field is optional; missing fields default to zero/empty.
    """

    success: bool = False
    execution_time: float = 0.0
    generated_files: list[str] = Field(default_factory=list)
    generated_models: list[str] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)
    statistics: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_any(cls, raw: Any) -> "GenerationResult":
        """Read a descriptor from a mapping, object, or None.

        Unknown or malformed fields are dropped rather than raised.
        """
        if isinstance(raw, GenerationResult):
            return raw
        if raw is None:
            return cls()

        def read(name: str) -> Any:
            if isinstance(raw, Mapping):
                return raw.get(name)
            return getattr(raw, name, None)

        errors = read("errors") or []
        if isinstance(errors, str):
            errors = [errors]
        statistics = read("statistics")
        execution_time = read("execution_time")
        if execution_time is None and isinstance(statistics, Mapping):
            execution_time = statistics.get("execution_time")

        return cls(
            success=bool(read("success") or False),
            execution_time=float(execution_time) if isinstance(execution_time, int | float) else 0.0,
            generated_files=[str(f) for f in (read("generated_files") or []) if f is not None],
            generated_models=[str(m) for m in (read("generated_models") or []) if m is not None],
            errors=[str(e) for e in errors],
            statistics=dict(statistics) if isinstance(statistics, Mapping) else {},
        )

    @property
    def files_created(self) -> int:
        """Generated file count, falling back to statistics['files_created']."""
        if self.generated_files:
            return len(self.generated_files)
        value = self.statistics.get("files_created", 0)
        return int(value) if isinstance(value, int | float) else 0

    @property
    def models_generated(self) -> int:
        """Generated model count, falling back to statistics['models_generated']."""
        if self.generated_models:
            return len(self.generated_models)
        value = self.statistics.get("models_generated", 0)
        return int(value) if isinstance(value, int | float) else 0

    @property
    def peak_memory_mb(self) -> float:
        """Peak memory reported under statistics['memory_usage']['peak_memory_mb']."""
        memory = self.statistics.get("memory_usage")
        if isinstance(memory, Mapping):
            value = memory.get("peak_memory_mb", 0.0)
            if isinstance(value, int | float):
                return float(value)
        return 0.0


class Measurement(BaseModel):
    """Timing, memory, file-op and error capture for one execution. Immutable."""

    execution_time: float = Field(ge=0)  # seconds
    memory_peak: float = Field(default=0.0, ge=0)  # MB
    memory_delta: float = 0.0  # MB
    cpu_time: float = Field(default=0.0, ge=0)  # seconds
    files_created: int = Field(default=0, ge=0)
    models_generated: int = Field(default=0, ge=0)
    errors: tuple[str, ...] = ()
    success: bool = True
    gc_collections: int = Field(default=0, ge=0)
    stage_timings: tuple[tuple[str, float], ...] = ()
    timestamp: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(frozen=True)


# ===== Cache =====


class CacheEntry(BaseModel):
    """A cached value with its category and expiry window."""

    key: str
    category: str
    data: Any = None
    created_at: datetime
    expires_at: datetime

    @model_validator(mode="after")
    def validate_window(self) -> "CacheEntry":
        """Expiry must fall strictly after creation."""
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")
        return self

    def is_expired(self, now: datetime) -> bool:
        """True once now has reached expires_at."""
        return now >= self.expires_at


# ===== Statistics =====


class DescriptiveStats(BaseModel):
    """Descriptive statistics for one population of samples."""

    count: int = 0
    mean: float = 0.0
    median: float = 0.0
    mode: float = 0.0
    variance: float = 0.0
    standard_deviation: float = 0.0
    minimum: float = 0.0
    maximum: float = 0.0
    range: float = 0.0
    quartiles: dict[str, float] = Field(
        default_factory=lambda: {"q1": 0.0, "q2": 0.0, "q3": 0.0}
    )
    percentiles: dict[str, float] = Field(default_factory=dict)
    skewness: float = 0.0
    kurtosis: float = 0.0  # Excess kurtosis
    coefficient_of_variation: float = 0.0
    outlier_count: int = 0
    data_quality_score: float = 0.0

    model_config = ConfigDict(frozen=True)


class MeasurementSummary(BaseModel):
    """Per-metric statistics over a set of measurements."""

    sample_size: int = 0
    execution_time_stats: DescriptiveStats = Field(default_factory=DescriptiveStats)
    memory_usage_stats: DescriptiveStats = Field(default_factory=DescriptiveStats)
    file_operations_stats: DescriptiveStats = Field(default_factory=DescriptiveStats)
    avg_execution_time: float = 0.0
    median_execution_time: float = 0.0
    std_dev_execution_time: float = 0.0
    avg_peak_memory: float = 0.0
    avg_file_operations: float = 0.0
    coefficient_of_variation: float = 0.0
    outlier_count: int = 0
    data_quality_score: float = 0.0

    model_config = ConfigDict(frozen=True)


class PerformanceDifference(BaseModel):
    """Mean difference between old and new. Negative percentage = improvement."""

    absolute_difference: float = 0.0
    percentage_difference: float = 0.0
    improvement: bool = False
    old_mean: float = 0.0
    new_mean: float = 0.0

    model_config = ConfigDict(frozen=True)


class SignificanceTest(BaseModel):
    """Output of one hypothesis test."""

    test_name: str
    statistic: float = 0.0
    p_value: float = 1.0
    significant: bool = False
    alpha: float = 0.05
    degrees_of_freedom: float | None = None
    z_score: float | None = None
    note: str | None = None

    model_config = ConfigDict(frozen=True)


class ConfidenceInterval(BaseModel):
    """Confidence interval around a mean (or a difference of means)."""

    mean: float = 0.0
    lower: float = 0.0
    upper: float = 0.0
    margin_of_error: float = 0.0
    confidence_level: float = 0.95

    model_config = ConfigDict(frozen=True)


class EffectSize(BaseModel):
    """Cohen's d effect size."""

    cohens_d: float = 0.0
    magnitude: float = 0.0
    interpretation: EffectMagnitude = EffectMagnitude.NEGLIGIBLE

    model_config = ConfigDict(frozen=True)


class ComparisonResult(BaseModel):
    """Statistical comparison of two populations. Never mutated after creation."""

    old_summary: DescriptiveStats = Field(default_factory=DescriptiveStats)
    new_summary: DescriptiveStats = Field(default_factory=DescriptiveStats)
    sample_sizes: dict[str, int] = Field(default_factory=dict)
    performance_difference: PerformanceDifference = Field(default_factory=PerformanceDifference)
    significance_tests: dict[str, SignificanceTest] = Field(default_factory=dict)
    confidence_intervals: dict[str, ConfidenceInterval] = Field(default_factory=dict)
    effect_size: EffectSize = Field(default_factory=EffectSize)
    statistically_significant: bool = False
    practical_significance: bool = False
    p_value: float = 1.0
    confidence_level: float = 0.95

    model_config = ConfigDict(frozen=True)

    @property
    def percentage_difference(self) -> float:
        return self.performance_difference.percentage_difference


class RegressionReport(BaseModel):
    """Outcome of comparing current measurements against a baseline."""

    is_regression: bool
    performance_change_percent: float
    regression_threshold: float
    baseline_mean: float
    current_mean: float
    statistical_significance: bool
    confidence_level: float
    recommendation: str


# ===== Monitoring =====


class SessionEvent(BaseModel):
    """Something that happened during a monitoring session."""

    type: str
    message: str = ""
    timestamp: datetime = Field(default_factory=utc_now)
    metadata: dict[str, Any] = Field(default_factory=dict)


class Alert(BaseModel):
    """A threshold breach raised by the monitor."""

    id: str = Field(default_factory=lambda: f"alert_{uuid4().hex[:12]}")
    level: AlertLevel
    category: str
    message: str
    timestamp: datetime = Field(default_factory=utc_now)
    session_id: str | None = None
    active: bool = True


class ResourceSample(BaseModel):
    """Background snapshot of process resources."""

    timestamp: datetime = Field(default_factory=utc_now)
    memory_mb: float = 0.0
    cpu_percent: float = 0.0
    gc_counts: tuple[int, ...] = ()
    thread_count: int = 0


class SessionMetrics(BaseModel):
    """Running aggregates for one monitoring session."""

    total_operations: int = 0
    failed_operations: int = 0
    total_execution_time: float = 0.0
    average_execution_time: float = 0.0
    peak_memory_usage: float = 0.0
    total_files_generated: int = 0
    total_errors: int = 0
    cache_hit_rate: float = 0.0
    parallel_efficiency: float = 0.0

    @property
    def error_rate(self) -> float:
        """Percentage of operations that reported errors or failed."""
        if self.total_operations == 0:
            return 0.0
        return self.failed_operations / self.total_operations * 100


class Session(BaseModel):
    """A bounded monitoring scope aggregating metrics, events, and alerts."""

    id: str = Field(default_factory=lambda: f"session_{uuid4().hex[:12]}")
    name: str
    start_time: datetime = Field(default_factory=utc_now)
    end_time: datetime | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    metrics: SessionMetrics = Field(default_factory=SessionMetrics)
    events: list[SessionEvent] = Field(default_factory=list)
    alerts: list[Alert] = Field(default_factory=list)
    samples: list[ResourceSample] = Field(default_factory=list)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def duration(self) -> float:
        """Seconds elapsed, up to now for an active session."""
        end = self.end_time or utc_now()
        return (end - self.start_time).total_seconds()

    @property
    def is_active(self) -> bool:
        return self.end_time is None


# ===== Optimization =====


class StrategyConfig(BaseModel):
    """Named execution preset."""

    name: StrategyName
    description: str
    use_parallel: bool
    use_cache: bool
    cache_aggressive: bool = False
    parallel_conservative: bool = False
    use_monitoring: bool = True

    model_config = ConfigDict(frozen=True)


class WorkloadCharacteristics(BaseModel):
    """Calibration-derived view of a workload used for strategy selection."""

    dataset_size: DatasetSize = DatasetSize.SMALL
    complexity_level: ComplexityLevel = ComplexityLevel.LOW
    baseline_execution_time: float | None = None
    baseline_memory_usage: float = 0.0
    parallelization_potential: float = Field(default=0.0, ge=0, le=1)
    caching_potential: float = Field(default=0.0, ge=0, le=1)


class OptimizationRecord(BaseModel):
    """One optimize_generation outcome kept in bounded history."""

    strategy: StrategyName
    timestamp: datetime = Field(default_factory=utc_now)
    execution_time: float = 0.0
    success: bool = False
    memory_usage: float = 0.0
    files_generated: int = 0
    cache_hit_rate: float = 0.0
    parallel_efficiency: float = 0.0


# ===== Benchmarking =====


class BenchmarkScenario(BaseModel):
    """A named benchmark workload preset."""

    key: str
    name: str
    description: str = ""
    complexity_level: ComplexityLevel = ComplexityLevel.LOW
    expected_models: int = 0
    table_filter: list[str] | None = None


class SystemRun(BaseModel):
    """Measured iterations of one system within a scenario."""

    system_type: str
    measurements: list[Measurement] = Field(default_factory=list)
    summary: MeasurementSummary = Field(default_factory=MeasurementSummary)


class PerformanceImprovement(BaseModel):
    """Per-metric improvement of new over old, in percent (positive = better)."""

    execution_time_improvement: float = 0.0
    memory_efficiency_improvement: float = 0.0
    file_operations_improvement: float = 0.0


class ScenarioResult(BaseModel):
    """Complete outcome of one benchmark scenario."""

    scenario: BenchmarkScenario
    old_system: SystemRun
    new_system: SystemRun
    comparison: ComparisonResult
    performance_improvement: PerformanceImprovement
