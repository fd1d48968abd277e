"""Rule tables that turn metrics into recommendation text.

Every recommendation emitted by the engine comes from one of the tables in
this module, so thresholds and wording live in one place and can be tested
without running a benchmark.
"""

import math
from collections.abc import Iterable, Mapping, Sequence
from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict


class Priority(str, Enum):
    """Recommendation priority."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class Recommendation(BaseModel):
    """A single rule-based recommendation."""

    priority: Priority
    category: str
    issue: str
    recommendation: str
    scenario: str | None = None


class Tier(NamedTuple):
    """One band of a tier table: applies while value is below ``upper``."""

    upper: float
    label: str
    message: str


def classify(value: float, tiers: Sequence[Tier], inclusive: bool = False) -> Tier:
    """Return the first tier whose upper bound the value falls under.

    Args:
        value: Metric value
        tiers: Tiers ordered by ascending upper bound, last one unbounded
        inclusive: Treat the upper bound as part of the tier (value <= upper)
    """
    for tier in tiers:
        if value < tier.upper or (inclusive and value == tier.upper):
            return tier
    return tiers[-1]


class ThresholdRule(BaseModel):
    """Emit a recommendation when a metric crosses a threshold.

    Rules sharing a ``group`` are exclusive: only the first matching rule of
    the group fires.
    """

    metric: str
    below: float | None = None
    above: float | None = None
    min_requests: int = 0
    priority: Priority
    category: str | None = None
    issue: str
    recommendation: str
    group: str | None = None

    model_config = ConfigDict(frozen=True)

    def matches(self, value: float, requests: int = 0) -> bool:
        if requests < self.min_requests:
            return False
        if self.below is not None and not value < self.below:
            return False
        if self.above is not None and not value > self.above:
            return False
        return True

    def build(self, value: float, **context: Any) -> Recommendation:
        fields = {"value": round(value, 2), "abs_value": round(abs(value), 2), **context}
        category = self.category or str(context.get("category", self.metric))
        return Recommendation(
            priority=self.priority,
            category=category,
            issue=self.issue.format(**fields),
            recommendation=self.recommendation.format(**fields),
            scenario=context.get("scenario"),
        )


def evaluate_rules(
    rules: Iterable[ThresholdRule],
    metrics: Mapping[str, float],
    requests: int = 0,
    **context: Any,
) -> list[Recommendation]:
    """Apply a rule table to a metrics mapping.

    Metrics missing from the mapping are skipped.
    """
    results: list[Recommendation] = []
    fired_groups: set[str] = set()
    for rule in rules:
        if rule.group is not None and rule.group in fired_groups:
            continue
        value = metrics.get(rule.metric)
        if value is None or not rule.matches(value, requests):
            continue
        results.append(rule.build(value, **context))
        if rule.group is not None:
            fired_groups.add(rule.group)
    return results


# ===== Scheduler =====

PARALLELIZATION_TIERS: tuple[Tier, ...] = (
    Tier(
        10.0,
        "minimal",
        "Minimal performance gain from parallelization. "
        "Consider sequential execution for simplicity.",
    ),
    Tier(
        25.0,
        "moderate",
        "Moderate performance improvement. "
        "Parallelization provides some benefit but overhead is significant.",
    ),
    Tier(
        50.0,
        "good",
        "Good performance improvement. Parallelization is recommended for this workload.",
    ),
    Tier(
        math.inf,
        "excellent",
        "Excellent performance improvement. Parallelization is highly recommended.",
    ),
)

NO_STAGES_RECOMMENDATION = "No stages to execute"


# ===== Statistics =====

REGRESSION_TIERS: tuple[Tier, ...] = (
    Tier(
        10.0,
        "minor",
        "Minor performance regression detected. "
        "Monitor closely and investigate if trend continues.",
    ),
    Tier(
        25.0,
        "moderate",
        "Moderate performance regression. Recommend immediate investigation of recent changes.",
    ),
    Tier(
        math.inf,
        "urgent",
        "Significant performance regression. Urgent investigation required.",
    ),
)

UNCONFIRMED_DEGRADATION = (
    "Performance degradation detected but not statistically significant. Continue monitoring."
)
NO_REGRESSION = "No performance regression detected. Performance is stable or improved."


# ===== Cache =====

CACHE_OVERALL_RULES: tuple[ThresholdRule, ...] = (
    ThresholdRule(
        metric="hit_rate",
        below=50.0,
        priority=Priority.HIGH,
        category="overall",
        issue="Low cache hit rate ({value}%)",
        recommendation="Consider increasing cache TTL settings and memory cache size",
    ),
)

CACHE_CATEGORY_RULES: tuple[ThresholdRule, ...] = (
    ThresholdRule(
        metric="hit_rate",
        below=30.0,
        min_requests=11,
        priority=Priority.MEDIUM,
        issue="Low hit rate for {category} ({value}%)",
        recommendation="Review cache key generation and TTL settings for this category",
    ),
)

# Lower bound exclusive: value <= 0 means caching did not pay off
CACHE_IMPACT_TIERS: tuple[Tier, ...] = (
    Tier(
        0.0,
        "overhead",
        "Caching overhead may be negating benefits. Consider disabling caching for this workload.",
    ),
    Tier(
        10.0,
        "minimal",
        "Minimal performance improvement ({value}%). "
        "Review cache policies and consider alternative optimizations.",
    ),
    Tier(
        25.0,
        "good",
        "Good performance improvement from caching ({value}%). "
        "Consider optimizing cache hit rates further.",
    ),
    Tier(
        math.inf,
        "excellent",
        "Caching provides excellent performance improvement ({value}%). "
        "Current implementation is optimal.",
    ),
)


# ===== Monitor =====

MONITOR_RULES: tuple[ThresholdRule, ...] = (
    ThresholdRule(
        metric="average_execution_time",
        above=30.0,
        priority=Priority.MEDIUM,
        category="performance",
        issue="Average execution time is {value}s",
        recommendation="Consider enabling parallel execution to improve performance",
    ),
    ThresholdRule(
        metric="error_rate",
        above=0.0,
        priority=Priority.HIGH,
        category="reliability",
        issue="Error rate is {value}%",
        recommendation="Inspect recorded errors before trusting timing results",
    ),
    ThresholdRule(
        metric="cache_hit_rate",
        below=50.0,
        min_requests=1,
        priority=Priority.MEDIUM,
        category="cache",
        issue="Cache hit rate is {value}%",
        recommendation="Low cache hit rate - consider adjusting cache policies",
    ),
)


# ===== Benchmark =====

BENCHMARK_RULES: tuple[ThresholdRule, ...] = (
    ThresholdRule(
        metric="execution_time_improvement",
        below=0.0,
        priority=Priority.HIGH,
        category="performance_regression",
        issue="New system is {abs_value}% slower",
        recommendation="Investigate pipeline stage bottlenecks and consider caching optimizations",
        group="execution_time",
    ),
    ThresholdRule(
        metric="execution_time_improvement",
        below=10.0,
        priority=Priority.MEDIUM,
        category="optimization_opportunity",
        issue="Minimal performance improvement ({value}%)",
        recommendation="Consider parallel execution for independent pipeline stages",
        group="execution_time",
    ),
    ThresholdRule(
        metric="memory_efficiency_improvement",
        below=0.0,
        priority=Priority.MEDIUM,
        category="memory_usage",
        issue="New system uses {abs_value}% more memory",
        recommendation="Review per-run memory footprint and reuse large intermediate objects",
    ),
)

# Inclusive upper bounds: value <= 0 needs attention
BENCHMARK_STATUS_TIERS: tuple[Tier, ...] = (
    Tier(0.0, "needs_attention", "Needs Attention"),
    Tier(10.0, "marginal", "Marginal"),
    Tier(20.0, "good", "Good"),
    Tier(math.inf, "excellent", "Excellent"),
)


# ===== Optimizer =====

OPTIMIZER_RULES: tuple[ThresholdRule, ...] = (
    ThresholdRule(
        metric="baseline_execution_time",
        above=30.0,
        priority=Priority.HIGH,
        category="performance",
        issue="Slow baseline performance ({value}s)",
        recommendation="Consider enabling parallel execution and aggressive caching",
    ),
)

BEST_STRATEGY_ISSUE = "Optimization strategy selection"
BEST_STRATEGY_RECOMMENDATION = "Use '{strategy}' strategy for optimal performance"
