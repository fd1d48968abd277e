"""Unit tests for configuration management."""

from pathlib import Path
from tempfile import TemporaryDirectory

import pytest
from pipebench.infrastructure.config import (
    AlertThresholds,
    AnalysisConfig,
    CacheConfig,
    Config,
    ConfigManager,
    SchedulerConfig,
)
from pydantic import ValidationError


class TestConfig:
    """Tests for Config model."""

    def test_default_config(self) -> None:
        """Test creating a config with defaults."""
        config = Config()

        assert config.version == "0.1.0"
        assert config.log_level == "INFO"
        assert 1 <= config.scheduler.max_threads <= 4
        assert config.cache.memory_cache_size == 100
        assert config.cache.default_ttl == 3600.0
        assert config.cache.category_ttls["type_mapping"] == 14400.0
        assert config.monitor.alert_thresholds.error_rate == 5.0
        assert config.monitor.history_retention == 100
        assert config.analysis.confidence_level == 0.95
        assert config.benchmark.iterations == 5
        assert config.benchmark.warmup_iterations == 2

    def test_custom_config_values(self) -> None:
        """Test creating a config with custom values."""
        config = Config(
            log_level="DEBUG",
            scheduler=SchedulerConfig(max_threads=2),
            cache=CacheConfig(memory_cache_size=10, file_cache_enabled=False),
        )

        assert config.log_level == "DEBUG"
        assert config.scheduler.max_threads == 2
        assert config.cache.memory_cache_size == 10
        assert config.cache.file_cache_enabled is False

    def test_alpha_derived_from_confidence_level(self) -> None:
        """Test alpha is 1 - confidence level."""
        assert AnalysisConfig(confidence_level=0.99).alpha == pytest.approx(0.01)

    def test_rejects_non_positive_category_ttl(self) -> None:
        """Test a zero TTL is rejected."""
        with pytest.raises(ValidationError, match="must be > 0"):
            CacheConfig(category_ttls={"template_rendering": 0})

    def test_rejects_zero_threads(self) -> None:
        """Test the worker count must be at least one."""
        with pytest.raises(ValidationError):
            SchedulerConfig(max_threads=0)

    def test_rejects_error_rate_above_hundred(self) -> None:
        """Test error rate threshold is a percentage."""
        with pytest.raises(ValidationError):
            AlertThresholds(error_rate=150)


class TestConfigManager:
    """Tests for ConfigManager."""

    def test_load_default_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test loading config with no files present."""
        with TemporaryDirectory() as tmpdir:
            monkeypatch.setenv("HOME", tmpdir)
            config_manager = ConfigManager(project_root=Path(tmpdir))
            config = config_manager.load_config()

            assert config.version == "0.1.0"
            assert config.log_level == "INFO"

    def test_load_project_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test loading config from the project file."""
        with TemporaryDirectory() as tmpdir:
            monkeypatch.setenv("HOME", tmpdir)
            project_root = Path(tmpdir)
            config_dir = project_root / ".pipebench"
            config_dir.mkdir()
            (config_dir / "config.yaml").write_text(
                """
log_level: DEBUG
cache:
  memory_cache_size: 50
scheduler:
  max_threads: 3
                """
            )

            config = ConfigManager(project_root=project_root).load_config()

            assert config.log_level == "DEBUG"
            assert config.cache.memory_cache_size == 50
            assert config.scheduler.max_threads == 3
            # Untouched nested values keep their defaults
            assert config.cache.default_ttl == 3600.0

    def test_local_overrides_project(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test local.yaml wins over config.yaml."""
        with TemporaryDirectory() as tmpdir:
            monkeypatch.setenv("HOME", tmpdir)
            project_root = Path(tmpdir)
            config_dir = project_root / ".pipebench"
            config_dir.mkdir()
            (config_dir / "config.yaml").write_text("benchmark:\n  iterations: 10\n")
            (config_dir / "local.yaml").write_text("benchmark:\n  iterations: 3\n")

            config = ConfigManager(project_root=project_root).load_config()

            assert config.benchmark.iterations == 3

    def test_env_vars_override_files(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test PIPEBENCH_* variables have the highest priority."""
        with TemporaryDirectory() as tmpdir:
            monkeypatch.setenv("HOME", tmpdir)
            monkeypatch.setenv("PIPEBENCH_MAX_THREADS", "2")
            monkeypatch.setenv("PIPEBENCH_CONFIDENCE_LEVEL", "0.9")
            monkeypatch.setenv("PIPEBENCH_LOG_LEVEL", "WARNING")

            config = ConfigManager(project_root=Path(tmpdir)).load_config()

            assert config.scheduler.max_threads == 2
            assert config.analysis.confidence_level == 0.9
            assert config.log_level == "WARNING"

    def test_config_is_cached(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test the merged config is loaded once."""
        with TemporaryDirectory() as tmpdir:
            monkeypatch.setenv("HOME", tmpdir)
            manager = ConfigManager(project_root=Path(tmpdir))

            assert manager.load_config() is manager.load_config()

    def test_log_dir_created_under_project(self, tmp_path: Path) -> None:
        """Test the log directory lives in the project's .pipebench folder."""
        log_dir = ConfigManager(project_root=tmp_path).get_log_dir()

        assert log_dir == tmp_path / ".pipebench" / "logs"
        assert log_dir.is_dir()
