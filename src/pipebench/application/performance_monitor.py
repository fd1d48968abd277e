"""Session-scoped performance monitoring, alerting, and reporting."""

import csv
import json
import threading
from collections.abc import Callable, Sequence
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from pipebench.application.measurement_collector import process_memory_mb
from pipebench.application.report_renderer import (
    MonitorReport,
    SessionSummary,
    TrendSummary,
    render_report,
)
from pipebench.application.resource_sampler import ResourceSampler
from pipebench.application.stage_scheduler import StageScheduler
from pipebench.domain.models import (
    Alert,
    AlertLevel,
    GenerationResult,
    Measurement,
    ResourceSample,
    Session,
    SessionEvent,
    SessionMetrics,
    Trend,
    utc_now,
)
from pipebench.infrastructure.config import AlertThresholds, MonitorConfig
from pipebench.infrastructure.exceptions import UnsupportedFormatError
from pipebench.infrastructure.logger import get_logger
from pipebench.services.cache_optimizer import CacheOptimizer
from pipebench.services.recommendations import MONITOR_RULES, Recommendation, evaluate_rules

logger = get_logger(__name__)

EXPORT_FORMATS = ("json", "csv")
# Alert categories that track cumulative session state; one active alert each
CUMULATIVE_ALERT_CATEGORIES = frozenset({"error_rate", "cache_hit_rate"})
TREND_WINDOW = 3
TREND_TOLERANCE = 0.1
DASHBOARD_SESSIONS = 10
DASHBOARD_ALERTS = 20


class OperationMetrics(BaseModel):
    """Metrics extracted from one recorded result."""

    execution_time: float = 0.0
    memory_usage: float = 0.0
    files_generated: int = 0
    models_generated: int = 0
    errors: int = 0
    success: bool = False


class BenchmarkRecord(BaseModel):
    """A benchmark result recorded during a session."""

    session_id: str
    timestamp: datetime = Field(default_factory=utc_now)
    result: dict[str, Any] = Field(default_factory=dict)


class PerformanceHistory(BaseModel):
    """Exported monitor history."""

    sessions: list[Session] = Field(default_factory=list)
    benchmarks: list[BenchmarkRecord] = Field(default_factory=list)
    alerts: list[Alert] = Field(default_factory=list)
    configuration: dict[str, Any] = Field(default_factory=dict)
    export_timestamp: datetime = Field(default_factory=utc_now)


class RealTimeMetrics(BaseModel):
    """Live view of the active session."""

    session_id: str
    session_name: str
    duration: float
    current_metrics: SessionMetrics
    recent_samples: list[ResourceSample] = Field(default_factory=list)
    active_alerts: list[Alert] = Field(default_factory=list)


class SystemHealth(BaseModel):
    """Process and integration health figures."""

    current_memory_mb: float = 0.0
    cache_hit_rate: float | None = None
    cache_requests: int | None = None
    parallel_efficiency: float | None = None
    average_parallel_improvement: float | None = None


class DashboardData(BaseModel):
    """Data backing a performance dashboard."""

    current_session: SessionSummary | None = None
    recent_sessions: list[SessionSummary] = Field(default_factory=list)
    trends: TrendSummary | None = None
    recent_alerts: list[Alert] = Field(default_factory=list)
    system_health: SystemHealth = Field(default_factory=SystemHealth)
    recommendations: list[Recommendation] = Field(default_factory=list)


def calculate_trend(values: Sequence[float]) -> Trend:
    """Compare the mean of the latest values to the mean of the earliest ones.

    Both windows hold up to three values and never overlap; short series are
    split in halves. A change beyond 10% either way is a trend; anything
    else is stable.
    """
    if len(values) < 2:
        return Trend.STABLE

    window = min(TREND_WINDOW, len(values) // 2)
    recent = list(values[-window:])
    earlier = list(values[:window])
    recent_avg = sum(recent) / window
    earlier_avg = sum(earlier) / window

    if recent_avg > earlier_avg * (1 + TREND_TOLERANCE):
        return Trend.INCREASING
    if recent_avg < earlier_avg * (1 - TREND_TOLERANCE):
        return Trend.DECREASING
    return Trend.STABLE


class PerformanceMonitor:
    """Tracks monitoring sessions, raises threshold alerts, and keeps history.

    At most one session is active. Starting a new session ends the active
    one first. The cache optimizer and scheduler integrations are only read,
    never modified.
    """

    def __init__(
        self,
        config: MonitorConfig | None = None,
        cache_optimizer: CacheOptimizer | None = None,
        scheduler: StageScheduler | None = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """Initialize performance monitor.

        Args:
            config: Monitor configuration (default: MonitorConfig())
            cache_optimizer: Optional cache whose hit rate is monitored
            scheduler: Optional scheduler whose efficiency is monitored
            clock: Returns the current time for session, event and alert
                timestamps and history retention
        """
        self.config = config or MonitorConfig()
        self.alert_thresholds: AlertThresholds = self.config.alert_thresholds
        self.cache_optimizer = cache_optimizer
        self.scheduler = scheduler
        self._clock = clock
        self._lock = threading.RLock()
        self._current: Session | None = None
        self._sampler: ResourceSampler | None = None
        self.session_history: list[Session] = []
        self.alerts: list[Alert] = []
        self.benchmarks: list[BenchmarkRecord] = []

        if self.config.persist_data:
            self.config.data_directory.mkdir(parents=True, exist_ok=True)

    @property
    def current_session(self) -> Session | None:
        with self._lock:
            return self._current

    @property
    def integrations(self) -> list[str]:
        names = []
        if self.cache_optimizer is not None:
            names.append("cache_optimizer")
        if self.scheduler is not None:
            names.append("scheduler")
        return names

    # ===== Session lifecycle =====

    def start_session(self, name: str, metadata: dict[str, Any] | None = None) -> Session:
        """Start a session, ending the active one first.

        Args:
            name: Session name
            metadata: Arbitrary session metadata

        Returns:
            The new active session
        """
        with self._lock:
            if self._current is not None:
                self._end_session_locked()

            session = Session(name=name, start_time=self._clock(), metadata=dict(metadata or {}))
            self._current = session
            self._add_event("session_started", f"Monitoring session '{name}' started")

            if self.config.enable_real_time_monitoring:
                self._sampler = ResourceSampler(interval=self.config.sampling_interval)
                self._sampler.start()

        logger.info("session_started", session_id=session.id, name=name)
        return session

    def end_session(self) -> Session | None:
        """End the active session and archive it.

        Blocks until background sampling has stopped.

        Returns:
            The archived session, or None if no session was active
        """
        with self._lock:
            if self._current is None:
                return None
            return self._end_session_locked()

    def _end_session_locked(self) -> Session:
        session = self._current
        assert session is not None

        # Sampler thread never takes the monitor lock, so joining here is safe
        if self._sampler is not None:
            self._sampler.stop()
            session.samples = self._sampler.recent(self._sampler.max_samples)
            self._sampler = None

        session.end_time = self._clock()
        self._finalize_metrics(session)
        self._add_event("session_ended", "Monitoring session ended")

        self.session_history.append(session)
        self._prune_history()
        self._current = None

        if self.config.persist_data:
            self._persist_session(session)

        logger.info(
            "session_ended",
            session_id=session.id,
            duration=round(session.duration, 3),
            operations=session.metrics.total_operations,
            alerts=len(session.alerts),
        )
        return session

    # ===== Recording =====

    def record_result(
        self, result: Measurement | GenerationResult | Any, operation_type: str = "generation"
    ) -> list[Alert]:
        """Record one operation result in the active session.

        Args:
            result: A Measurement or any generation result descriptor
            operation_type: Label stored with the event

        Returns:
            Alerts raised by this result (empty when no session is active)
        """
        metrics = self._extract_metrics(result)

        with self._lock:
            session = self._current
            if session is None:
                logger.debug("result_ignored_no_session", operation_type=operation_type)
                return []

            self._add_event(
                "generation_completed",
                f"{operation_type} completed",
                operation_type=operation_type,
                **metrics.model_dump(),
            )
            self._update_metrics(session.metrics, metrics)

            if not self.config.enable_alerts:
                return []
            return self._check_alerts(session, metrics)

    def record_event(self, event_type: str, message: str = "", **metadata: Any) -> None:
        """Append a custom event to the active session."""
        with self._lock:
            if self._current is not None:
                self._add_event(event_type, message, **metadata)

    def record_benchmark_result(self, result: BaseModel | dict[str, Any]) -> None:
        """Record a benchmark run in the active session and the benchmark log."""
        data = result.model_dump(mode="json") if isinstance(result, BaseModel) else dict(result)
        summary = data.get("summary") or {}

        with self._lock:
            session = self._current
            if session is None:
                return

            self._add_event(
                "benchmark_completed",
                "Benchmark completed",
                scenarios_tested=len(data.get("scenarios") or {}),
                overall_improvement=summary.get("overall_performance_improvement", 0.0),
            )
            self.benchmarks.append(
                BenchmarkRecord(session_id=session.id, timestamp=self._clock(), result=data)
            )

    # ===== Alerts =====

    def get_alerts(self, level: AlertLevel | None = None, active_only: bool = False) -> list[Alert]:
        """Alerts, newest first, optionally filtered."""
        with self._lock:
            alerts = list(self.alerts)

        if level is not None:
            alerts = [a for a in alerts if a.level == level]
        if active_only:
            alerts = [a for a in alerts if a.active]
        return sorted(alerts, key=lambda a: a.timestamp, reverse=True)

    def acknowledge_alert(self, alert_id: str) -> bool:
        """Mark an alert inactive. Returns False if no alert has that id."""
        with self._lock:
            for alert in self.alerts:
                if alert.id == alert_id:
                    alert.active = False
                    logger.info("alert_acknowledged", alert_id=alert_id)
                    return True
        return False

    def set_alert_thresholds(self, **thresholds: float) -> AlertThresholds:
        """Merge new threshold values into the current ones.

        Raises:
            pydantic.ValidationError: If a value is out of range
        """
        with self._lock:
            merged = {**self.alert_thresholds.model_dump(), **thresholds}
            self.alert_thresholds = AlertThresholds.model_validate(merged)
            if self._current is not None:
                self._add_event("thresholds_updated", "Alert thresholds updated", **thresholds)
            return self.alert_thresholds

    # ===== Views =====

    def real_time_metrics(self) -> RealTimeMetrics | None:
        """Live metrics of the active session, or None if idle."""
        with self._lock:
            session = self._current
            if session is None:
                return None
            samples = self._sampler.recent(10) if self._sampler is not None else session.samples[-10:]
            return RealTimeMetrics(
                session_id=session.id,
                session_name=session.name,
                duration=session.duration,
                current_metrics=session.metrics.model_copy(),
                recent_samples=samples,
                active_alerts=[a for a in session.alerts if a.active],
            )

    def dashboard_data(self) -> DashboardData:
        """Current session, recent history, trends, health, and recommendations."""
        with self._lock:
            current = SessionSummary.from_session(self._current) if self._current else None
            recent = self.session_history[-DASHBOARD_SESSIONS:]
            recent_summaries = [SessionSummary.from_session(s) for s in recent]
            alerts = self.alerts[-DASHBOARD_ALERTS:]

        return DashboardData(
            current_session=current,
            recent_sessions=recent_summaries,
            trends=self._trends(recent),
            recent_alerts=alerts,
            system_health=self._system_health(),
            recommendations=self.recommendations(),
        )

    def recommendations(self) -> list[Recommendation]:
        """Rule-based recommendations from the latest session metrics."""
        with self._lock:
            session = self._current or (self.session_history[-1] if self.session_history else None)
            metrics = session.metrics.model_copy() if session else SessionMetrics()

        values: dict[str, float] = {
            "average_execution_time": metrics.average_execution_time,
            "error_rate": round(metrics.error_rate, 2),
        }
        requests = 0
        if self.cache_optimizer is not None:
            overall = self.cache_optimizer.cache_efficiency_report().overall
            values["cache_hit_rate"] = overall.hit_rate
            requests = overall.total_requests
        return evaluate_rules(MONITOR_RULES, values, requests=requests)

    def build_report(self, include_history: bool = True) -> MonitorReport:
        """Assemble report data without rendering it."""
        with self._lock:
            current = SessionSummary.from_session(self._current) if self._current else None
            history = list(self.session_history)
            alerts = list(self.alerts)

        total_duration = sum(s.duration for s in history)
        return MonitorReport(
            current_session=current,
            sessions=[SessionSummary.from_session(s) for s in history] if include_history else [],
            total_sessions=len(history),
            total_operations=sum(s.metrics.total_operations for s in history),
            average_session_duration=total_duration / len(history) if history else 0.0,
            total_alerts=len(alerts),
            trends=self._trends(history[-DASHBOARD_SESSIONS:]),
            alerts=alerts if include_history else [a for a in alerts if a.active],
            recommendations=self.recommendations(),
            integrations=self.integrations,
            configuration=self.config.model_dump(mode="json"),
        )

    def generate_report(self, format: str = "json", include_history: bool = True) -> str:
        """Render a performance report.

        Args:
            format: One of json, html, markdown, csv
            include_history: Include archived sessions and all alerts

        Raises:
            UnsupportedFormatError: For any other format
        """
        return render_report(self.build_report(include_history), format)

    # ===== Export / import =====

    def export_history(self, path: Path, format: str = "json") -> Path:
        """Write session history, benchmarks, and alerts to a file.

        CSV output has one row per session and benchmark: Type, Timestamp, Data.

        Raises:
            UnsupportedFormatError: If format is not json or csv
        """
        fmt = format.lower()
        if fmt not in EXPORT_FORMATS:
            raise UnsupportedFormatError(format, EXPORT_FORMATS)

        with self._lock:
            history = PerformanceHistory(
                sessions=list(self.session_history),
                benchmarks=list(self.benchmarks),
                alerts=list(self.alerts),
                configuration=self.config.model_dump(mode="json"),
            )

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        if fmt == "json":
            path.write_text(history.model_dump_json(indent=2))
        else:
            with open(path, "w", newline="") as f:
                writer = csv.writer(f)
                writer.writerow(["Type", "Timestamp", "Data"])
                for session in history.sessions:
                    writer.writerow(
                        ["session", session.start_time.isoformat(), session.model_dump_json()]
                    )
                for record in history.benchmarks:
                    writer.writerow(
                        ["benchmark", record.timestamp.isoformat(), json.dumps(record.result)]
                    )

        logger.info(
            "history_exported", path=str(path), format=fmt, sessions=len(history.sessions)
        )
        return path

    def import_history(self, path: Path, merge: bool = True) -> int:
        """Load a JSON history export.

        Sessions are de-duplicated by id and sorted by start time; retention
        limits are applied afterwards.

        Args:
            path: File written by export_history(format="json")
            merge: Merge with current history instead of replacing it

        Returns:
            Number of sessions in history after the import
        """
        path = Path(path)
        if not path.exists():
            logger.warning("history_import_missing", path=str(path))
            return len(self.session_history)

        try:
            imported = PerformanceHistory.model_validate_json(path.read_text())
        except ValidationError as e:
            logger.error("history_import_invalid", path=str(path), error=str(e))
            raise

        with self._lock:
            if merge:
                sessions = self.session_history + imported.sessions
                benchmarks = self.benchmarks + imported.benchmarks
                alerts = self.alerts + imported.alerts
            else:
                sessions, benchmarks, alerts = (
                    imported.sessions,
                    imported.benchmarks,
                    imported.alerts,
                )

            self.session_history = sorted(
                {s.id: s for s in sessions}.values(), key=lambda s: s.start_time
            )
            self.benchmarks = sorted(
                {(b.session_id, b.timestamp): b for b in benchmarks}.values(),
                key=lambda b: b.timestamp,
            )
            self.alerts = sorted({a.id: a for a in alerts}.values(), key=lambda a: a.timestamp)
            self._prune_history()
            count = len(self.session_history)

        logger.info("history_imported", path=str(path), merge=merge, sessions=count)
        return count

    # ===== Internals =====

    def _add_event(self, event_type: str, message: str, **metadata: Any) -> None:
        assert self._current is not None
        self._current.events.append(
            SessionEvent(
                type=event_type, message=message, metadata=metadata, timestamp=self._clock()
            )
        )

    @staticmethod
    def _extract_metrics(result: Any) -> OperationMetrics:
        if isinstance(result, Measurement):
            return OperationMetrics(
                execution_time=result.execution_time,
                memory_usage=result.memory_peak,
                files_generated=result.files_created,
                models_generated=result.models_generated,
                errors=len(result.errors),
                success=result.success,
            )

        descriptor = GenerationResult.from_any(result)
        return OperationMetrics(
            execution_time=descriptor.execution_time,
            memory_usage=descriptor.peak_memory_mb,
            files_generated=descriptor.files_created,
            models_generated=descriptor.models_generated,
            errors=len(descriptor.errors),
            success=descriptor.success,
        )

    @staticmethod
    def _update_metrics(metrics: SessionMetrics, operation: OperationMetrics) -> None:
        metrics.total_operations += 1
        if not operation.success or operation.errors:
            metrics.failed_operations += 1
        metrics.total_execution_time += operation.execution_time
        metrics.average_execution_time = metrics.total_execution_time / metrics.total_operations
        metrics.peak_memory_usage = max(metrics.peak_memory_usage, operation.memory_usage)
        metrics.total_files_generated += operation.files_generated
        metrics.total_errors += operation.errors

    def _check_alerts(self, session: Session, operation: OperationMetrics) -> list[Alert]:
        thresholds = self.alert_thresholds
        raised: list[Alert | None] = []

        if operation.execution_time > thresholds.execution_time:
            raised.append(
                self._alert(
                    session,
                    AlertLevel.WARNING,
                    "execution_time",
                    f"Execution time ({operation.execution_time:.2f}s) exceeded threshold "
                    f"({thresholds.execution_time}s)",
                )
            )

        if operation.memory_usage > thresholds.memory_usage:
            raised.append(
                self._alert(
                    session,
                    AlertLevel.WARNING,
                    "memory_usage",
                    f"Memory usage ({operation.memory_usage:.2f}MB) exceeded threshold "
                    f"({thresholds.memory_usage}MB)",
                )
            )

        error_rate = session.metrics.error_rate
        if error_rate > thresholds.error_rate:
            raised.append(
                self._alert(
                    session,
                    AlertLevel.CRITICAL,
                    "error_rate",
                    f"Error rate ({error_rate:.2f}%) exceeded threshold ({thresholds.error_rate}%)",
                )
            )

        if self.cache_optimizer is not None:
            overall = self.cache_optimizer.cache_efficiency_report().overall
            if overall.total_requests > 0 and overall.hit_rate < thresholds.cache_hit_rate:
                level = (
                    AlertLevel.WARNING
                    if overall.hit_rate < thresholds.cache_hit_rate / 2
                    else AlertLevel.INFO
                )
                raised.append(
                    self._alert(
                        session,
                        level,
                        "cache_hit_rate",
                        f"Cache hit rate ({overall.hit_rate:.2f}%) below threshold "
                        f"({thresholds.cache_hit_rate}%)",
                    )
                )

        alerts = [alert for alert in raised if alert is not None]
        for alert in alerts:
            session.alerts.append(alert)
            self.alerts.append(alert)
            logger.warning(
                "alert_raised",
                alert_id=alert.id,
                level=alert.level.value,
                category=alert.category,
                message=alert.message,
            )
        return alerts

    def _alert(
        self, session: Session, level: AlertLevel, category: str, message: str
    ) -> Alert | None:
        """Build an alert, or None if a cumulative category already has an active one."""
        if category in CUMULATIVE_ALERT_CATEGORIES and any(
            a.active and a.category == category for a in session.alerts
        ):
            return None
        return Alert(
            level=level,
            category=category,
            message=message,
            session_id=session.id,
            timestamp=self._clock(),
        )

    def _finalize_metrics(self, session: Session) -> None:
        if self.cache_optimizer is not None:
            session.metrics.cache_hit_rate = self.cache_optimizer.hit_rate
        if self.scheduler is not None:
            stats = self.scheduler.performance_statistics()
            session.metrics.parallel_efficiency = round(stats.average_parallel_efficiency, 2)

    def _system_health(self) -> SystemHealth:
        health = SystemHealth(current_memory_mb=round(process_memory_mb(), 2))
        if self.cache_optimizer is not None:
            overall = self.cache_optimizer.cache_efficiency_report().overall
            health.cache_hit_rate = overall.hit_rate
            health.cache_requests = overall.total_requests
        if self.scheduler is not None:
            stats = self.scheduler.performance_statistics()
            health.parallel_efficiency = round(stats.average_parallel_efficiency, 2)
            health.average_parallel_improvement = stats.average_improvement
        return health

    @staticmethod
    def _trends(sessions: Sequence[Session]) -> TrendSummary | None:
        if len(sessions) < 2:
            return None
        return TrendSummary(
            execution_time_trend=calculate_trend(
                [s.metrics.average_execution_time for s in sessions]
            ),
            memory_usage_trend=calculate_trend([s.metrics.peak_memory_usage for s in sessions]),
            session_count=len(sessions),
        )

    def _prune_history(self) -> None:
        """Drop sessions beyond the retention count or older than the retention age.

        Alerts and benchmark records of dropped sessions go with them.
        """
        cutoff = self._clock() - timedelta(days=self.config.history_retention_days)
        kept = [s for s in self.session_history if s.start_time >= cutoff]
        pruned = len(self.session_history) - len(kept)
        if len(kept) > self.config.history_retention:
            pruned += len(kept) - self.config.history_retention
            kept = kept[-self.config.history_retention :]
        if pruned:
            logger.debug("session_history_pruned", pruned=pruned, retained=len(kept))
        self.session_history = kept

        retained = {s.id for s in kept}
        if self._current is not None:
            retained.add(self._current.id)
        self.alerts = [a for a in self.alerts if a.session_id in retained]
        self.benchmarks = [b for b in self.benchmarks if b.session_id in retained]

    def _persist_session(self, session: Session) -> None:
        path = self.config.data_directory / f"{session.id}.json"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(session.model_dump_json(indent=2))
        except OSError as e:
            logger.error("session_persist_failed", session_id=session.id, error=str(e))
            return
        logger.debug("session_persisted", session_id=session.id, path=str(path))
