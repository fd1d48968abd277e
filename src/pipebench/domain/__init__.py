"""Domain models for pipebench."""

from pipebench.domain.models import (
    Alert,
    AlertLevel,
    CacheCategory,
    CacheEntry,
    ComparisonResult,
    DescriptiveStats,
    ExecutionMethod,
    ExecutionResult,
    GenerationResult,
    Measurement,
    MeasurementSummary,
    Session,
    Stage,
    StageResult,
    StrategyConfig,
    StrategyName,
)

__all__ = [
    "Alert",
    "AlertLevel",
    "CacheCategory",
    "CacheEntry",
    "ComparisonResult",
    "DescriptiveStats",
    "ExecutionMethod",
    "ExecutionResult",
    "GenerationResult",
    "Measurement",
    "MeasurementSummary",
    "Session",
    "Stage",
    "StageResult",
    "StrategyConfig",
    "StrategyName",
]
