"""Service layer for dependency graphs, caching, statistics, and recommendation rules."""

from pipebench.services.cache_optimizer import CacheOptimizer
from pipebench.services.recommendations import Priority, Recommendation
from pipebench.services.stage_graph import StageGraph
from pipebench.services.statistical_analyzer import StatisticalAnalyzer

__all__ = [
    "CacheOptimizer",
    "StageGraph",
    "StatisticalAnalyzer",
    "Priority",
    "Recommendation",
]
