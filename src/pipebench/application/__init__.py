"""Application services for pipebench."""

from pipebench.application.benchmark_runner import (
    BenchmarkReport,
    BenchmarkRunner,
    percentage_improvement,
)
from pipebench.application.measurement_collector import MeasurementCollector, PerformanceScore
from pipebench.application.performance_monitor import (
    DashboardData,
    PerformanceHistory,
    PerformanceMonitor,
    RealTimeMetrics,
)
from pipebench.application.performance_optimizer import (
    STRATEGIES,
    ComprehensiveAnalysis,
    OptimizationResult,
    PerformanceOptimizer,
    StrategyRecommendation,
)
from pipebench.application.report_renderer import MonitorReport, OptimizationReport
from pipebench.application.resource_sampler import ResourceSampler
from pipebench.application.stage_scheduler import SchedulerStatistics, StageScheduler

__all__ = [
    "BenchmarkReport",
    "BenchmarkRunner",
    "ComprehensiveAnalysis",
    "DashboardData",
    "MeasurementCollector",
    "MonitorReport",
    "OptimizationReport",
    "OptimizationResult",
    "PerformanceHistory",
    "PerformanceMonitor",
    "PerformanceOptimizer",
    "PerformanceScore",
    "RealTimeMetrics",
    "ResourceSampler",
    "STRATEGIES",
    "SchedulerStatistics",
    "StageScheduler",
    "StrategyRecommendation",
    "percentage_improvement",
]
