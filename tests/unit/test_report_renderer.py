"""Unit tests for report rendering."""

import csv
import io
import json
from datetime import datetime, timezone

import pytest
from pipebench.application.report_renderer import (
    CSV_HEADERS,
    MonitorReport,
    OptimizationReport,
    SessionSummary,
    TrendSummary,
    render_optimization_report,
    render_report,
)
from pipebench.domain.models import (
    Alert,
    AlertLevel,
    OptimizationRecord,
    SessionMetrics,
    StrategyName,
    Trend,
)
from pipebench.infrastructure.exceptions import UnsupportedFormatError
from pipebench.services.recommendations import Priority, Recommendation

STARTED = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def _summary(name: str, operations: int = 2) -> SessionSummary:
    return SessionSummary(
        id=f"session_{name}",
        name=name,
        start_time=STARTED,
        duration=1.5,
        metrics=SessionMetrics(
            total_operations=operations,
            average_execution_time=0.25,
            peak_memory_usage=42.0,
            total_files_generated=4,
        ),
    )


@pytest.fixture
def monitor_report() -> MonitorReport:
    return MonitorReport(
        current_session=_summary("live"),
        sessions=[_summary("first"), _summary("second", operations=3)],
        total_sessions=2,
        total_operations=5,
        average_session_duration=1.5,
        total_alerts=1,
        trends=TrendSummary(execution_time_trend=Trend.INCREASING, session_count=2),
        alerts=[Alert(level=AlertLevel.WARNING, category="execution_time", message="slow <run>")],
        recommendations=[
            Recommendation(
                priority=Priority.HIGH,
                category="reliability",
                issue="Error rate is 10%",
                recommendation="Inspect errors",
            )
        ],
    )


class TestMonitorReport:
    """Tests for monitor report formats."""

    def test_markdown(self, monitor_report: MonitorReport) -> None:
        """Test markdown has summary, history, trends, alerts, and recommendations."""
        output = render_report(monitor_report, "markdown")

        assert output.startswith("# Performance Report")
        assert "- Total sessions: 2" in output
        assert "**live** (`session_live`)" in output
        assert "| second | 1.50s | 3 |" in output
        assert "- Execution time: increasing" in output
        assert "**WARNING** [execution_time]" in output
        assert "**HIGH** Error rate is 10%: Inspect errors" in output

    def test_markdown_without_session(self) -> None:
        """Test an empty report still renders."""
        output = render_report(MonitorReport(), "markdown")

        assert "No current session" in output
        assert "No recommendations." in output
        assert "## Session History" not in output

    def test_html_escapes_content(self, monitor_report: MonitorReport) -> None:
        """Test user-provided text is escaped."""
        output = render_report(monitor_report, "html")

        assert output.startswith("<!DOCTYPE html>")
        assert "slow &lt;run&gt;" in output
        assert "slow <run>" not in output

    def test_csv_current_session_first(self, monitor_report: MonitorReport) -> None:
        """Test CSV has the header then one row per session."""
        rows = list(csv.reader(io.StringIO(render_report(monitor_report, "csv"))))

        assert tuple(rows[0]) == CSV_HEADERS
        assert [row[1] for row in rows[1:]] == ["live", "first", "second"]
        assert rows[1][5] == "42.0"

    def test_json_round_trips(self, monitor_report: MonitorReport) -> None:
        """Test JSON output validates back into the report model."""
        output = render_report(monitor_report, "JSON")

        assert MonitorReport.model_validate_json(output).total_operations == 5

    def test_unknown_format(self, monitor_report: MonitorReport) -> None:
        """Test unsupported formats raise with the supported list."""
        with pytest.raises(UnsupportedFormatError) as exc_info:
            render_report(monitor_report, "pdf")

        assert exc_info.value.format == "pdf"
        assert "csv" in exc_info.value.supported


class TestOptimizationReport:
    """Tests for optimizer report formats."""

    @pytest.fixture
    def report(self) -> OptimizationReport:
        return OptimizationReport(
            current_strategy=StrategyName.PARALLEL,
            component_status={"cache_optimizer": True, "parallel_scheduler": False},
            cache_hit_rate=75.0,
            optimization_history=[
                OptimizationRecord(
                    strategy=StrategyName.PARALLEL,
                    timestamp=STARTED,
                    execution_time=1.25,
                    success=True,
                )
            ],
        )

    def test_markdown(self, report: OptimizationReport) -> None:
        """Test markdown shows strategy, components, metrics, and history."""
        output = render_optimization_report(report, "markdown")

        assert output.startswith("# Performance Optimization Report")
        assert "**Current Strategy:** parallel" in output
        assert "- Cache optimizer: **enabled**" in output
        assert "- Parallel scheduler: **disabled**" in output
        assert "- Cache Hit Rate: 75.00%" in output
        assert "- Parallel Efficiency: N/A" in output
        assert "- 2024-01-01 12:00 - parallel - 1.25s - ok" in output

    def test_markdown_without_history(self) -> None:
        """Test empty history is called out."""
        output = render_optimization_report(OptimizationReport(), "markdown")

        assert "**Current Strategy:** None" in output
        assert "No optimization history available." in output

    def test_html(self, report: OptimizationReport) -> None:
        """Test HTML includes the history table."""
        output = render_optimization_report(report, "html")

        assert "<title>Performance Optimization Report</title>" in output
        assert "<td>parallel</td><td>1.25s</td><td>yes</td>" in output

    def test_json(self, report: OptimizationReport) -> None:
        """Test JSON output carries the strategy value."""
        data = json.loads(render_optimization_report(report, "json"))

        assert data["current_strategy"] == "parallel"

    def test_csv_not_supported(self, report: OptimizationReport) -> None:
        """Test optimizer reports have no CSV form."""
        with pytest.raises(UnsupportedFormatError):
            render_optimization_report(report, "csv")
