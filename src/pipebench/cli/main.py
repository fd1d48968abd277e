"""pipebench CLI - compare, summarize, and report on performance samples."""

import json
import sys
from pathlib import Path

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from pipebench import __version__
from pipebench.domain.models import ComparisonResult, DescriptiveStats
from pipebench.infrastructure.config import Config, ConfigManager
from pipebench.infrastructure.exceptions import UnsupportedFormatError
from pipebench.infrastructure.logger import setup_logging

# Initialize Typer app
app = typer.Typer(
    name="pipebench",
    help="Performance benchmarking and optimization engine for generation pipelines",
    no_args_is_help=True,
)

console = Console()


# ===== Version =====
@app.command()
def version() -> None:
    """Show pipebench version."""
    console.print(f"[bold]pipebench[/bold] version [cyan]{__version__}[/cyan]")


# ===== Helper Functions =====
def _load_config() -> Config:
    config_manager = ConfigManager()
    config = config_manager.load_config()
    setup_logging(log_level=config.log_level, log_dir=config_manager.get_log_dir())
    return config


def load_samples(path: Path) -> list[float]:
    """Read samples from a JSON array or a file with one number per line.

    Raises:
        ValueError: If the file holds anything other than numbers
    """
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return []
    if text.startswith("["):
        values = json.loads(text)
        if not isinstance(values, list):
            raise ValueError(f"{path}: expected a JSON array of numbers")
        return [float(v) for v in values]
    return [float(line) for line in text.splitlines() if line.strip()]


def _read_samples(path: Path) -> list[float]:
    try:
        return load_samples(path)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error:[/red] Could not read samples from {path}: {e}")
        raise typer.Exit(1) from e


def _stats_table(title: str, columns: dict[str, DescriptiveStats]) -> Table:
    table = Table(title=title)
    table.add_column("Statistic", style="cyan")
    for name in columns:
        table.add_column(name, justify="right")

    for label, field in (
        ("Count", "count"),
        ("Mean", "mean"),
        ("Median", "median"),
        ("Std Dev", "standard_deviation"),
        ("Min", "minimum"),
        ("Max", "maximum"),
        ("CV", "coefficient_of_variation"),
        ("Outliers", "outlier_count"),
    ):
        table.add_row(label, *(_format_number(getattr(s, field)) for s in columns.values()))
    return table


def _format_number(value: float) -> str:
    if isinstance(value, int):
        return str(value)
    return f"{value:.4f}"


def _print_comparison(comparison: ComparisonResult) -> None:
    console.print(
        _stats_table("Sample Comparison", {"Old": comparison.old_summary, "New": comparison.new_summary})
    )

    tests = Table(title="Significance Tests")
    tests.add_column("Test", style="cyan")
    tests.add_column("Statistic", justify="right")
    tests.add_column("p-value", justify="right")
    tests.add_column("Significant")
    for test in comparison.significance_tests.values():
        tests.add_row(
            test.test_name,
            f"{test.statistic:.4f}",
            f"{test.p_value:.4f}",
            "[green]yes[/green]" if test.significant else "[dim]no[/dim]",
        )
    console.print(tests)

    diff = comparison.performance_difference
    color = "green" if diff.improvement else "red"
    console.print(
        f"Change: [{color}]{diff.percentage_difference:+.2f}%[/{color}]  "
        f"Effect size: {comparison.effect_size.cohens_d:.3f} "
        f"({comparison.effect_size.interpretation.value})"
    )
    console.print(
        f"Statistically significant: {comparison.statistically_significant}  "
        f"Practically significant: {comparison.practical_significance}"
    )


# ===== Analysis Commands =====
@app.command()
def compare(
    old: Path = typer.Argument(..., help="Samples from the old system", exists=True),
    new: Path = typer.Argument(..., help="Samples from the new system", exists=True),
    json_output: bool = typer.Option(False, "--json", help="Print the comparison as JSON"),
) -> None:
    """Compare two sample sets with significance tests and effect size."""
    from pipebench.services.statistical_analyzer import StatisticalAnalyzer

    config = _load_config()
    analyzer = StatisticalAnalyzer(
        confidence_level=config.analysis.confidence_level,
        practical_threshold=config.analysis.practical_threshold,
    )
    comparison = analyzer.compare(_read_samples(old), _read_samples(new))

    if json_output:
        sys.stdout.write(comparison.model_dump_json(indent=2) + "\n")
        return
    _print_comparison(comparison)


@app.command()
def regression(
    baseline: Path = typer.Argument(..., help="Baseline samples", exists=True),
    current: Path = typer.Argument(..., help="Current samples", exists=True),
    threshold: float = typer.Option(5.0, "--threshold", "-t", help="Slowdown percent to flag"),
) -> None:
    """Check current samples for a significant slowdown against a baseline."""
    from pipebench.services.statistical_analyzer import StatisticalAnalyzer

    config = _load_config()
    analyzer = StatisticalAnalyzer(confidence_level=config.analysis.confidence_level)
    report = analyzer.detect_regression(
        _read_samples(baseline), _read_samples(current), threshold=threshold
    )

    if report.is_regression:
        console.print(
            f"[red]✗[/red] Regression detected: {report.performance_change_percent:+.2f}% "
            f"(threshold {report.regression_threshold}%)"
        )
    else:
        console.print(
            f"[green]✓[/green] No regression: {report.performance_change_percent:+.2f}% "
            f"(threshold {report.regression_threshold}%)"
        )
    console.print(f"[dim]{report.recommendation}[/dim]")

    if report.is_regression:
        raise typer.Exit(1)


@app.command()
def summarize(
    samples: Path = typer.Argument(..., help="Sample file", exists=True),
) -> None:
    """Show descriptive statistics for one sample set."""
    from pipebench.services.statistical_analyzer import StatisticalAnalyzer

    _load_config()
    stats = StatisticalAnalyzer().summarize(_read_samples(samples))
    console.print(_stats_table(f"Summary: {samples.name}", {"Value": stats}))

    if stats.percentiles:
        console.print(
            "Percentiles: "
            + ", ".join(f"{name}={value:.4f}" for name, value in stats.percentiles.items())
        )
    console.print(f"Data quality score: {stats.data_quality_score:.2f}")


@app.command()
def report(
    history: Path = typer.Argument(..., help="Exported performance history (JSON)", exists=True),
    format: str = typer.Option("markdown", "--format", "-f", help="json, html, markdown, or csv"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write the report to a file"),
) -> None:
    """Render a monitor report from an exported performance history."""
    from pipebench.application.performance_monitor import PerformanceMonitor

    config = _load_config()
    monitor = PerformanceMonitor(config.monitor.model_copy(update={"persist_data": False}))
    try:
        imported = monitor.import_history(history)
    except ValidationError as e:
        console.print(f"[red]Error:[/red] {history} is not a performance history export")
        raise typer.Exit(1) from e

    try:
        rendered = monitor.generate_report(format=format)
    except UnsupportedFormatError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e

    if output is not None:
        output.write_text(rendered, encoding="utf-8")
        console.print(f"[green]✓[/green] Report for {imported} session(s) written to {output}")
    else:
        sys.stdout.write(rendered + "\n")


# ===== Configuration =====
@app.command("config-show")
def config_show() -> None:
    """Show the merged configuration."""
    config = ConfigManager().load_config()
    console.print(yaml.safe_dump(config.model_dump(mode="json"), sort_keys=False))


# ===== Main Entry Point =====
def main() -> None:
    """Main entry point."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n[yellow]Interrupted[/yellow]")
        sys.exit(130)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
