"""Rendering of monitor and optimizer reports."""

import csv
import io
import json
from datetime import datetime
from html import escape
from typing import Any

from pydantic import BaseModel, Field

from pipebench.domain.models import (
    Alert,
    OptimizationRecord,
    Session,
    SessionMetrics,
    StrategyConfig,
    StrategyName,
    Trend,
    utc_now,
)
from pipebench.infrastructure.exceptions import UnsupportedFormatError
from pipebench.services.recommendations import Recommendation

REPORT_FORMATS = ("json", "html", "markdown", "csv")

CSV_HEADERS = (
    "Session ID",
    "Session Name",
    "Duration",
    "Total Operations",
    "Average Execution Time",
    "Peak Memory",
    "Files Generated",
    "Errors",
)


class SessionSummary(BaseModel):
    """Condensed view of one session for reports and dashboards."""

    id: str
    name: str
    start_time: datetime
    end_time: datetime | None = None
    duration: float = 0.0
    metrics: SessionMetrics = Field(default_factory=SessionMetrics)
    event_count: int = 0
    alert_count: int = 0

    @classmethod
    def from_session(cls, session: Session) -> "SessionSummary":
        return cls(
            id=session.id,
            name=session.name,
            start_time=session.start_time,
            end_time=session.end_time,
            duration=session.duration,
            metrics=session.metrics.model_copy(),
            event_count=len(session.events),
            alert_count=len(session.alerts),
        )


class TrendSummary(BaseModel):
    """Direction of key metrics across recent sessions."""

    execution_time_trend: Trend = Trend.STABLE
    memory_usage_trend: Trend = Trend.STABLE
    session_count: int = 0


class MonitorReport(BaseModel):
    """Everything a monitor report renders."""

    generated_at: datetime = Field(default_factory=utc_now)
    current_session: SessionSummary | None = None
    sessions: list[SessionSummary] = Field(default_factory=list)
    total_sessions: int = 0
    total_operations: int = 0
    average_session_duration: float = 0.0
    total_alerts: int = 0
    trends: TrendSummary | None = None
    alerts: list[Alert] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
    integrations: list[str] = Field(default_factory=list)
    configuration: dict[str, Any] = Field(default_factory=dict)


def render_report(report: MonitorReport, fmt: str = "json") -> str:
    """Render a monitor report in the requested format.

    Raises:
        UnsupportedFormatError: If fmt is not one of REPORT_FORMATS
    """
    renderers = {
        "json": render_json,
        "html": render_html,
        "markdown": render_markdown,
        "csv": render_csv,
    }
    renderer = renderers.get(fmt.lower())
    if renderer is None:
        raise UnsupportedFormatError(fmt, REPORT_FORMATS)
    return renderer(report)


def render_json(report: BaseModel) -> str:
    return report.model_dump_json(indent=2)


def render_markdown(report: MonitorReport) -> str:
    lines = [
        "# Performance Report",
        "",
        f"Generated: {report.generated_at.isoformat()}",
        "",
        "## Summary",
        "",
        f"- Total sessions: {report.total_sessions}",
        f"- Total operations: {report.total_operations}",
        f"- Average session duration: {report.average_session_duration:.2f}s",
        f"- Total alerts: {report.total_alerts}",
        "",
        "## Current Session",
        "",
    ]

    if report.current_session is None:
        lines.append("No current session")
    else:
        session = report.current_session
        metrics = session.metrics
        lines.extend(
            [
                f"**{session.name}** (`{session.id}`)",
                "",
                "| Metric | Value |",
                "|--------|-------|",
                f"| Duration | {session.duration:.2f}s |",
                f"| Operations | {metrics.total_operations} |",
                f"| Average Execution Time | {metrics.average_execution_time:.4f}s |",
                f"| Peak Memory | {metrics.peak_memory_usage:.2f}MB |",
                f"| Files Generated | {metrics.total_files_generated} |",
                f"| Errors | {metrics.total_errors} |",
                f"| Error Rate | {metrics.error_rate:.2f}% |",
            ]
        )
    lines.append("")

    if report.sessions:
        lines.extend(
            [
                "## Session History",
                "",
                "| Session | Duration | Operations | Avg Time | Peak Memory | Errors |",
                "|---------|----------|------------|----------|-------------|--------|",
            ]
        )
        for session in report.sessions:
            metrics = session.metrics
            lines.append(
                f"| {session.name} | {session.duration:.2f}s | {metrics.total_operations} "
                f"| {metrics.average_execution_time:.4f}s | {metrics.peak_memory_usage:.2f}MB "
                f"| {metrics.total_errors} |"
            )
        lines.append("")

    if report.trends is not None:
        lines.extend(
            [
                "## Trends",
                "",
                f"- Execution time: {report.trends.execution_time_trend.value}",
                f"- Memory usage: {report.trends.memory_usage_trend.value}",
                f"- Sessions analyzed: {report.trends.session_count}",
                "",
            ]
        )

    if report.alerts:
        lines.extend(["## Alerts", ""])
        for alert in report.alerts:
            lines.append(f"- **{alert.level.value.upper()}** [{alert.category}] {alert.message}")
        lines.append("")

    lines.extend(["## Recommendations", ""])
    if report.recommendations:
        for rec in report.recommendations:
            lines.append(f"- **{rec.priority.value.upper()}** {rec.issue}: {rec.recommendation}")
    else:
        lines.append("No recommendations.")
    lines.append("")

    return "\n".join(lines)


def render_html(report: MonitorReport) -> str:
    if report.current_session is None:
        current = "<p>No current session</p>"
    else:
        session = report.current_session
        metrics = session.metrics
        current = (
            '<div class="metric">\n'
            f"  <h3>{escape(session.name)} ({escape(session.id)})</h3>\n"
            f"  <p>Duration: {session.duration:.2f}s</p>\n"
            f"  <p>Operations: {metrics.total_operations}</p>\n"
            f"  <p>Average Execution Time: {metrics.average_execution_time:.4f}s</p>\n"
            f"  <p>Peak Memory: {metrics.peak_memory_usage:.2f}MB</p>\n"
            f"  <p>Files Generated: {metrics.total_files_generated}</p>\n"
            f"  <p>Errors: {metrics.total_errors}</p>\n"
            "</div>"
        )

    history_rows = "\n".join(
        f"    <tr><td>{escape(s.name)}</td><td>{s.duration:.2f}s</td>"
        f"<td>{s.metrics.total_operations}</td>"
        f"<td>{s.metrics.average_execution_time:.4f}s</td>"
        f"<td>{s.metrics.peak_memory_usage:.2f}MB</td>"
        f"<td>{s.metrics.total_errors}</td></tr>"
        for s in report.sessions
    )
    alerts = "\n".join(
        f'  <div class="alert">{escape(alert.level.value.upper())} '
        f"[{escape(alert.category)}] {escape(alert.message)}</div>"
        for alert in report.alerts
    )
    recommendations = "\n".join(
        f"    <li><strong>{escape(rec.priority.value)}</strong> "
        f"{escape(rec.issue)}: {escape(rec.recommendation)}</li>"
        for rec in report.recommendations
    )
    configuration = escape(json.dumps(report.configuration, indent=2, default=str))

    return f"""<!DOCTYPE html>
<html>
<head>
  <title>Performance Report</title>
  <style>
    body {{ font-family: Arial, sans-serif; margin: 20px; }}
    .metric {{ background: #f5f5f5; padding: 10px; margin: 10px 0; border-radius: 5px; }}
    .alert {{ background: #ffe6e6; padding: 10px; margin: 5px 0; border-left: 4px solid #ff4444; }}
    .summary {{ background: #e6f3ff; padding: 15px; border-radius: 5px; }}
    table {{ border-collapse: collapse; }}
    td, th {{ border: 1px solid #ddd; padding: 4px 8px; }}
  </style>
</head>
<body>
  <h1>Performance Report</h1>
  <div class="summary">
    <h2>Summary</h2>
    <p>Generated: {escape(report.generated_at.isoformat())}</p>
    <p>Total Sessions: {report.total_sessions}</p>
    <p>Total Operations: {report.total_operations}</p>
    <p>Average Session Duration: {report.average_session_duration:.2f}s</p>
    <p>Total Alerts: {report.total_alerts}</p>
  </div>

  <h2>Current Session</h2>
  {current}

  <h2>Session History</h2>
  <table>
    <tr><th>Session</th><th>Duration</th><th>Operations</th><th>Avg Time</th><th>Peak Memory</th><th>Errors</th></tr>
{history_rows}
  </table>

  <h2>Alerts</h2>
{alerts}

  <h2>Recommendations</h2>
  <ul>
{recommendations}
  </ul>

  <h2>Configuration</h2>
  <pre>{configuration}</pre>
</body>
</html>
"""


def render_csv(report: MonitorReport) -> str:
    """One row per session, current session first."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(CSV_HEADERS)

    sessions = list(report.sessions)
    if report.current_session is not None:
        sessions.insert(0, report.current_session)

    for session in sessions:
        metrics = session.metrics
        writer.writerow(
            [
                session.id,
                session.name,
                round(session.duration, 2),
                metrics.total_operations,
                round(metrics.average_execution_time, 4),
                round(metrics.peak_memory_usage, 2),
                metrics.total_files_generated,
                metrics.total_errors,
            ]
        )

    return buffer.getvalue()


# ===== Optimization reports =====

OPTIMIZATION_REPORT_FORMATS = ("json", "html", "markdown")


class OptimizationReport(BaseModel):
    """Everything an optimizer report renders."""

    generated_at: datetime = Field(default_factory=utc_now)
    current_strategy: StrategyName | None = None
    component_status: dict[str, bool] = Field(default_factory=dict)
    cache_hit_rate: float | None = None
    parallel_efficiency: float | None = None
    average_parallel_improvement: float | None = None
    optimization_history: list[OptimizationRecord] = Field(default_factory=list)
    strategies: list[StrategyConfig] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)
    configuration: dict[str, Any] = Field(default_factory=dict)


def render_optimization_report(report: OptimizationReport, fmt: str = "json") -> str:
    """Render an optimizer report.

    Raises:
        UnsupportedFormatError: If fmt is not one of OPTIMIZATION_REPORT_FORMATS
    """
    fmt = fmt.lower()
    if fmt == "json":
        return render_json(report)
    if fmt == "markdown":
        return _optimization_markdown(report)
    if fmt == "html":
        return _optimization_html(report)
    raise UnsupportedFormatError(fmt, OPTIMIZATION_REPORT_FORMATS)


def _percent_or_na(value: float | None) -> str:
    return "N/A" if value is None else f"{value:.2f}%"


def _optimization_markdown(report: OptimizationReport) -> str:
    strategy = report.current_strategy.value if report.current_strategy else "None"
    lines = [
        "# Performance Optimization Report",
        "",
        f"**Generated:** {report.generated_at.isoformat()}",
        f"**Current Strategy:** {strategy}",
        "",
        "## Component Status",
        "",
    ]
    for component, enabled in report.component_status.items():
        state = "enabled" if enabled else "disabled"
        lines.append(f"- {component.replace('_', ' ').capitalize()}: **{state}**")

    lines.extend(
        [
            "",
            "## Performance Metrics",
            "",
            f"- Cache Hit Rate: {_percent_or_na(report.cache_hit_rate)}",
            f"- Parallel Efficiency: {_percent_or_na(report.parallel_efficiency)}",
            f"- Average Parallel Improvement: {_percent_or_na(report.average_parallel_improvement)}",
            "",
            "## Available Optimization Strategies",
            "",
        ]
    )
    for config in report.strategies:
        lines.extend([f"### {config.name.value}", config.description, ""])

    lines.extend(["## Recent Optimization History", ""])
    if report.optimization_history:
        for record in report.optimization_history[-5:]:
            lines.append(
                f"- {record.timestamp.strftime('%Y-%m-%d %H:%M')} - {record.strategy.value} "
                f"- {record.execution_time:.2f}s - {'ok' if record.success else 'failed'}"
            )
    else:
        lines.append("No optimization history available.")

    if report.recommendations:
        lines.extend(["", "## Recommendations", ""])
        for rec in report.recommendations:
            lines.append(f"- **{rec.priority.value.upper()}** {rec.issue}: {rec.recommendation}")
    lines.append("")

    return "\n".join(lines)


def _optimization_html(report: OptimizationReport) -> str:
    strategy = report.current_strategy.value if report.current_strategy else "None"
    components = "".join(
        f"<li>{escape(component.replace('_', ' ').capitalize())}: "
        f"<strong>{'enabled' if enabled else 'disabled'}</strong></li>"
        for component, enabled in report.component_status.items()
    )
    strategies = "\n".join(
        f"    <p><strong>{escape(config.name.value)}</strong>: {escape(config.description)}</p>"
        for config in report.strategies
    )
    history_rows = "\n".join(
        f"      <tr><td>{escape(record.timestamp.isoformat())}</td>"
        f"<td>{escape(record.strategy.value)}</td><td>{record.execution_time:.2f}s</td>"
        f"<td>{'yes' if record.success else 'no'}</td></tr>"
        for record in report.optimization_history
    )
    recommendations = "\n".join(
        f'    <div class="recommendation"><strong>{escape(rec.priority.value)}</strong> '
        f"{escape(rec.issue)}: {escape(rec.recommendation)}</div>"
        for rec in report.recommendations
    )

    return f"""<!DOCTYPE html>
<html>
<head>
  <title>Performance Optimization Report</title>
  <style>
    body {{ font-family: Arial, sans-serif; margin: 20px; line-height: 1.6; }}
    .header {{ background: #2c3e50; color: white; padding: 20px; border-radius: 8px; }}
    .metric-card {{ background: #ecf0f1; padding: 15px; margin: 10px 0; border-radius: 8px; }}
    .strategy {{ background: #e8f8f5; padding: 15px; margin: 10px 0; border-radius: 8px; }}
    .recommendation {{ background: #fff3cd; padding: 15px; margin: 10px 0; border-radius: 8px; }}
    table {{ width: 100%; border-collapse: collapse; margin: 20px 0; }}
    th, td {{ padding: 12px; text-align: left; border-bottom: 1px solid #ddd; }}
  </style>
</head>
<body>
  <div class="header">
    <h1>Performance Optimization Report</h1>
    <p>Generated: {escape(report.generated_at.isoformat())}</p>
    <p>Current Strategy: {escape(strategy)}</p>
  </div>

  <div class="metric-card">
    <h2>Component Status</h2>
    <ul>{components}</ul>
  </div>

  <div class="metric-card">
    <h2>Current Performance Metrics</h2>
    <p>Cache Hit Rate: {_percent_or_na(report.cache_hit_rate)}</p>
    <p>Parallel Efficiency: {_percent_or_na(report.parallel_efficiency)}</p>
  </div>

  <div class="strategy">
    <h2>Available Optimization Strategies</h2>
{strategies}
  </div>

  <h2>Optimization History</h2>
  <table>
    <tr><th>Timestamp</th><th>Strategy</th><th>Execution Time</th><th>Success</th></tr>
{history_rows}
  </table>

  <h2>Recommendations</h2>
{recommendations}
</body>
</html>
"""
