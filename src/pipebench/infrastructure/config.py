"""Configuration management with hierarchical loading."""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from pipebench.infrastructure.logger import get_logger

logger = get_logger(__name__)


def default_max_threads() -> int:
    """Default worker count: available cores, capped at 4."""
    return min(os.cpu_count() or 1, 4)


class SchedulerConfig(BaseModel):
    """Stage scheduler configuration."""

    max_threads: int = Field(default_factory=default_max_threads, ge=1)
    shutdown_timeout: float = Field(default=30.0, gt=0)


class CacheConfig(BaseModel):
    """Multi-tier cache configuration."""

    memory_cache_size: int = Field(default=100, ge=1)
    eviction_batch_size: int = Field(default=10, ge=1)
    default_ttl: float = Field(default=3600.0, gt=0)
    category_ttls: dict[str, float] = Field(
        default_factory=lambda: {
            "schema_introspection": 7200.0,
            "template_rendering": 3600.0,
            "type_mapping": 14400.0,
        }
    )
    file_cache_enabled: bool = True
    file_cache_directory: Path = Path(".pipebench") / "cache"

    @field_validator("category_ttls")
    @classmethod
    def validate_category_ttls(cls, v: dict[str, float]) -> dict[str, float]:
        """Every TTL must be strictly positive so expires_at > created_at."""
        for category, ttl in v.items():
            if ttl <= 0:
                raise ValueError(f"TTL for category '{category}' must be > 0, got {ttl}")
        return v


class AlertThresholds(BaseModel):
    """Thresholds that trigger performance alerts."""

    execution_time: float = Field(default=60.0, ge=0)  # seconds
    memory_usage: float = Field(default=256.0, ge=0)  # MB
    error_rate: float = Field(default=5.0, ge=0, le=100)  # percent
    cache_hit_rate: float = Field(default=50.0, ge=0, le=100)  # percent


class MonitorConfig(BaseModel):
    """Performance monitor configuration."""

    enable_alerts: bool = True
    alert_thresholds: AlertThresholds = Field(default_factory=AlertThresholds)
    sampling_interval: float = Field(default=1.0, gt=0)
    enable_real_time_monitoring: bool = False
    history_retention: int = Field(default=100, ge=1)
    history_retention_days: int = Field(default=30, ge=1)
    persist_data: bool = False
    data_directory: Path = Path(".pipebench") / "sessions"


class AnalysisConfig(BaseModel):
    """Statistical analysis configuration."""

    confidence_level: float = Field(default=0.95, gt=0, lt=1)
    practical_threshold: float = Field(default=5.0, ge=0)  # percent

    @property
    def alpha(self) -> float:
        """Significance level derived from the confidence level."""
        return 1.0 - self.confidence_level


class BenchmarkConfig(BaseModel):
    """Benchmark runner configuration."""

    iterations: int = Field(default=5, ge=1)
    warmup_iterations: int = Field(default=2, ge=0)


class Config(BaseModel):
    """Main configuration model."""

    version: str = "0.1.0"
    log_level: str = "INFO"
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    benchmark: BenchmarkConfig = Field(default_factory=BenchmarkConfig)


class ConfigManager:
    """Manage configuration loading from multiple sources with hierarchy."""

    def __init__(self, project_root: Path | None = None) -> None:
        """Initialize config manager.

        Args:
            project_root: Root directory of the project (default: current directory)
        """
        self.project_root = project_root or Path.cwd()
        self._config: Config | None = None

    def load_config(self) -> Config:
        """Load configuration from all sources in hierarchy order.

        Configuration hierarchy (highest priority last):
        1. System defaults (embedded in Config model)
        2. Project defaults (.pipebench/config.yaml)
        3. User overrides (~/.pipebench/config.yaml)
        4. Project overrides (.pipebench/local.yaml)
        5. Environment variables (PIPEBENCH_* prefix)

        Returns:
            Merged configuration
        """
        if self._config is not None:
            return self._config

        config_dict: dict[str, Any] = {}

        for path in (
            self.project_root / ".pipebench" / "config.yaml",
            Path.home() / ".pipebench" / "config.yaml",
            self.project_root / ".pipebench" / "local.yaml",
        ):
            if path.exists():
                config_dict = self._merge_dicts(config_dict, self._load_yaml(path))
                logger.debug("config_file_loaded", path=str(path))

        config_dict = self._apply_env_vars(config_dict)

        self._config = Config(**config_dict)
        return self._config

    def _load_yaml(self, path: Path) -> dict[str, Any]:
        """Load YAML configuration file."""
        with open(path) as f:
            return yaml.safe_load(f) or {}

    def _merge_dicts(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Recursively merge two dictionaries."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_dicts(result[key], value)
            else:
                result[key] = value
        return result

    def _apply_env_vars(self, config_dict: dict[str, Any]) -> dict[str, Any]:
        """Apply environment variables with PIPEBENCH_ prefix."""
        env_mappings = {
            "PIPEBENCH_LOG_LEVEL": ["log_level"],
            "PIPEBENCH_MAX_THREADS": ["scheduler", "max_threads"],
            "PIPEBENCH_MEMORY_CACHE_SIZE": ["cache", "memory_cache_size"],
            "PIPEBENCH_CACHE_DIR": ["cache", "file_cache_directory"],
            "PIPEBENCH_SAMPLING_INTERVAL": ["monitor", "sampling_interval"],
            "PIPEBENCH_CONFIDENCE_LEVEL": ["analysis", "confidence_level"],
            "PIPEBENCH_ITERATIONS": ["benchmark", "iterations"],
        }

        for env_var, path in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                current = config_dict
                for key in path[:-1]:
                    if key not in current:
                        current[key] = {}
                    current = current[key]
                current[path[-1]] = self._coerce(value)

        return config_dict

    @staticmethod
    def _coerce(value: str) -> int | float | str:
        """Convert an environment string to int or float where possible."""
        for cast in (int, float):
            try:
                return cast(value)
            except ValueError:
                continue
        return value

    def get_log_dir(self) -> Path:
        """Get path to log directory."""
        log_dir = self.project_root / ".pipebench" / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        return log_dir
