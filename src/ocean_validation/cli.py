"""
OCEAN Dual Validation CLI.

Command-line interface for running and inspecting validation workflows.

Usage:
    ocean-validation run resp-1 --generator a1.yml --validator b1.yml
    ocean-validation status <workflow-id> --store-dir .ocean_validation/workflows
    ocean-validation analyze a1.yml b1.yml
    ocean-validation report metrics.json --format markdown
"""

from __future__ import annotations

import json
import logging
import shutil
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

import click
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from ocean_validation import __version__
from ocean_validation.analyzers import DisagreementAnalyzer
from ocean_validation.collaborators import ScriptedGenerator, ScriptedValidator, load_payloads
from ocean_validation.config import ValidationConfig, load_config, save_config
from ocean_validation.errors import OceanValidationError
from ocean_validation.orchestrator import WorkflowOrchestrator
from ocean_validation.schemas import GeneratorOutput, Trait, ValidatorOutput
from ocean_validation.scoring import QualityScorer
from ocean_validation.storage import FileWorkflowStore

console = Console()

SEVERITY_COLORS = {"high": "red", "medium": "yellow", "low": "blue"}
STATUS_COLORS = {"completed": "green", "failed": "red"}


def setup_logging(
    level: str,
    rich_console: bool = True,
    fmt: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
) -> None:
    """Configure logging with optional rich formatting."""
    log_level = getattr(logging, level.upper(), logging.INFO)

    if rich_console:
        logging.basicConfig(
            level=log_level,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(console=console, rich_tracebacks=True)],
        )
    else:
        logging.basicConfig(level=log_level, format=fmt)


def _load_cli_config(config: Optional[Path], overrides: Dict[str, Any]) -> ValidationConfig:
    try:
        return load_config(
            config_path=config,
            project_root=Path.cwd(),
            overrides=overrides if overrides else None,
        )
    except (OSError, ValueError) as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__, prog_name="ocean-validation")
def main() -> None:
    """
    OCEAN Dual Validation - generator/validator workflow for OCEAN scoring.

    Runs a generator (A1) and an independent validator (B1) over an
    assessment response, compares their trait and facet scores and
    iterates on disagreeing nodes until the confidence threshold is met.

    \b
    Examples:
        ocean-validation run resp-1 -g a1.yml -b b1.yml
        ocean-validation analyze a1.yml b1.yml
        ocean-validation init
    """
    pass


@main.command()
@click.argument("response_id")
@click.option(
    "--generator",
    "-g",
    "generator_file",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="YAML/JSON file of recorded generator outputs (replayed in order).",
)
@click.option(
    "--validator",
    "-b",
    "validator_file",
    type=click.Path(exists=True, path_type=Path),
    required=True,
    help="YAML/JSON file of recorded validator outputs (replayed in order).",
)
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to configuration YAML file.",
)
@click.option("--threshold", type=float, default=None, help="Confidence threshold (0-100).")
@click.option("--max-iterations", type=int, default=None, help="Improvement cycle budget.")
@click.option(
    "--report-style",
    type=click.Choice(["standard", "executive", "coaching"]),
    default=None,
    help="Report style passed to the generator.",
)
@click.option(
    "--store-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Persist the workflow in a file store at this directory.",
)
@click.option(
    "--metrics-out",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write workflow metrics JSON to this file.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the status as JSON.")
@click.option(
    "--log-level",
    "-l",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Logging verbosity level (default: logging.level from config).",
)
@click.option("--quiet", "-q", is_flag=True, help="Plain log output, no spinner.")
def run(
    response_id: str,
    generator_file: Path,
    validator_file: Path,
    config: Optional[Path],
    threshold: Optional[float],
    max_iterations: Optional[int],
    report_style: Optional[str],
    store_dir: Optional[Path],
    metrics_out: Optional[Path],
    as_json: bool,
    log_level: Optional[str],
    quiet: bool,
) -> None:
    """
    Run one validation workflow with recorded collaborator outputs.

    \b
    Examples:
        ocean-validation run resp-1 -g a1.yml -b b1.yml
        ocean-validation run resp-1 -g a1.yml -b b1.yml --threshold 90 --max-iterations 2
    """
    overrides: Dict[str, Any] = {}
    if store_dir:
        overrides["storage.backend"] = "file"
        overrides["storage.directory"] = str(store_dir)
    cfg = _load_cli_config(config, overrides)

    setup_logging(
        log_level or cfg.logging.level,
        rich_console=cfg.logging.rich_console and not quiet,
        fmt=cfg.logging.format,
    )
    logger = logging.getLogger("ocean_validation.cli")

    if not (quiet or as_json):
        console.print(f"[bold blue]{cfg.project.name} v{__version__}[/bold blue]")
        console.print(f"Config: {config or 'defaults'}")
        console.print()

    options: Dict[str, Any] = {}
    if threshold is not None:
        options["confidence_threshold"] = threshold
    if max_iterations is not None:
        options["max_iterations"] = max_iterations
    if report_style is not None:
        options["report_style"] = report_style

    try:
        generator = ScriptedGenerator.from_file(generator_file)
        validator = ScriptedValidator.from_file(validator_file)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error loading collaborator outputs:[/red] {e}")
        sys.exit(1)

    try:
        with WorkflowOrchestrator(cfg, generator, validator) as orchestrator:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console if not (quiet or as_json) else Console(quiet=True),
            ) as progress:
                task = progress.add_task(f"Validating {response_id}...", total=None)
                status = orchestrator.run(response_id, options=options)
                progress.update(task, completed=True)

            if metrics_out:
                orchestrator.metrics.save(metrics_out)

    except OceanValidationError as e:
        console.print(f"[red]{e.kind}:[/red] {e.message}")
        sys.exit(2)
    except Exception as e:
        logger.exception("Workflow run failed")
        console.print(f"[red]Workflow error:[/red] {e}")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(status, indent=2))
    else:
        _print_status(status)

    if status["status"] != "completed":
        sys.exit(1)


@main.command()
@click.argument("workflow_id")
@click.option(
    "--store-dir",
    type=click.Path(exists=True, file_okay=False, path_type=Path),
    default=None,
    help="File store directory (default: storage.directory from config).",
)
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to configuration YAML file.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the status as JSON.")
def status(
    workflow_id: str,
    store_dir: Optional[Path],
    config: Optional[Path],
    as_json: bool,
) -> None:
    """
    Show the status of a stored workflow.

    \b
    Example:
        ocean-validation status 3f2c... --store-dir .ocean_validation/workflows
    """
    if store_dir is None:
        store_dir = _load_cli_config(config, {}).get_storage_dir()

    store = FileWorkflowStore(store_dir)
    try:
        projection = store.load(workflow_id).to_status()
    except OceanValidationError as e:
        console.print(f"[red]{e.kind}:[/red] {e.message}")
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(projection, indent=2))
    else:
        _print_status(projection)


@main.command()
@click.argument("a1_file", type=click.Path(exists=True, path_type=Path))
@click.argument("b1_file", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to configuration YAML file.",
)
@click.option("--json", "as_json", is_flag=True, help="Print the analysis as JSON.")
def analyze(a1_file: Path, b1_file: Path, config: Optional[Path], as_json: bool) -> None:
    """
    Compare two score payloads without running a workflow.

    Each file holds a generator/validator output, or a bare score payload
    (``dimensions`` and optional ``facets``) which is treated as fully
    confident.

    \b
    Example:
        ocean-validation analyze a1.yml b1.yml
    """
    cfg = _load_cli_config(config, {})

    try:
        a1 = GeneratorOutput.model_validate(_as_output(load_payloads(a1_file)[0]))
        b1 = ValidatorOutput.model_validate(_as_output(load_payloads(b1_file)[0]))
    except (OSError, ValueError, ValidationError) as e:
        console.print(f"[red]Invalid score payload:[/red] {e}")
        sys.exit(1)

    agreement = DisagreementAnalyzer(cfg.analyzer).analyze(a1, b1)
    quality = QualityScorer(cfg.quality).score(agreement)

    if as_json:
        click.echo(
            json.dumps(
                {"agreement": agreement.to_dict(), "quality_metrics": quality.to_dict()},
                indent=2,
            )
        )
        return

    console.print(f"[bold]Agreement:[/bold] {agreement.agreement_score:.3f}")
    console.print(f"[bold]Disagreement rate:[/bold] {agreement.disagreement_rate:.3f}")
    console.print(f"[bold]Confidence:[/bold] {agreement.confidence:.3f}")
    console.print(
        f"[bold]Quality:[/bold] {quality.quality_score:.3f} "
        f"({quality.quality_bucket(cfg.quality.score_thresholds)})"
    )

    table = Table(title="Dimensions")
    table.add_column("Trait")
    table.add_column("A1", justify="right")
    table.add_column("B1", justify="right")
    table.add_column("Agreement", justify="right")
    for trait, value in agreement.dimension_agreement.items():
        table.add_row(
            trait,
            f"{a1.scores.dimension(Trait(trait)):.1f}",
            f"{b1.scores.dimension(Trait(trait)):.1f}",
            f"{value:.2f}",
        )
    console.print(table)

    _print_disagreements([d.to_dict() for d in agreement.disagreements])

    if agreement.not_comparable:
        console.print(f"[dim]Not comparable:[/dim] {', '.join(agreement.not_comparable)}")
    for issue in agreement.issues:
        console.print(f"[yellow]Issue:[/yellow] {issue}")
    for recommendation in agreement.recommendations:
        console.print(f"[cyan]Recommendation:[/cyan] {recommendation}")


@main.command()
@click.argument("input_file", type=click.Path(exists=True, path_type=Path))
@click.option(
    "--format",
    "-f",
    type=click.Choice(["text", "json", "markdown"]),
    default="text",
    help="Output format.",
)
@click.option(
    "--output",
    "-o",
    type=click.Path(path_type=Path),
    default=None,
    help="Output file (default: stdout).",
)
def report(input_file: Path, format: str, output: Optional[Path]) -> None:
    """
    Generate a report from a saved metrics file.

    \b
    Example:
        ocean-validation report metrics.json
        ocean-validation report -f markdown -o report.md metrics.json
    """
    with open(input_file) as f:
        data = json.load(f)

    if format == "json":
        output_text = json.dumps(data, indent=2)
    elif format == "markdown":
        output_text = _generate_markdown_report(data)
    else:
        output_text = _generate_text_report(data)

    if output:
        with open(output, "w") as f:
            f.write(output_text)
        console.print(f"Report written to: {output}")
    else:
        click.echo(output_text)


@main.command()
def init() -> None:
    """
    Initialize a new project with default configuration.

    Creates config/config.yml. If it already exists, a timestamped
    backup is written first.
    """
    config_dir = Path("config")
    config_dir.mkdir(exist_ok=True)

    config_file = config_dir / "config.yml"

    if config_file.exists():
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        backup_file = config_dir / f"config_{timestamp}.yml"
        shutil.copy(config_file, backup_file)
        console.print(f"[yellow]Backed up:[/yellow] {config_file} → {backup_file}")

    save_config(ValidationConfig(), config_file)
    console.print(f"[green]Created:[/green] {config_file}")


# =============================================================================
# Output Helpers
# =============================================================================


def _as_output(data: Dict[str, Any]) -> Dict[str, Any]:
    if "scores" in data:
        return data
    return {"scores": data, "confidence": 100.0}


def _print_status(status: Dict[str, Any]) -> None:
    color = STATUS_COLORS.get(status["status"], "yellow")
    progress = status["progress"]

    console.print(f"[bold]Workflow:[/bold] {status['workflow_id']}")
    console.print(f"[bold]Response:[/bold] {status['response_id']}")
    console.print(
        f"[bold]Status:[/bold] [{color}]{status['status']}[/{color}] "
        f"({progress['percentage']}%, step {progress['current_step']})"
    )
    console.print(f"[bold]Iterations:[/bold] {status['iteration']}")
    if status.get("convergence_reason"):
        console.print(f"[bold]Stopped:[/bold] {status['convergence_reason'].replace('_', ' ')}")

    if status.get("error"):
        error = status["error"]
        console.print(f"[red]{error.get('kind')}:[/red] {error.get('message')}")

    results = status.get("results")
    if results:
        console.print(f"[bold]Final confidence:[/bold] {results['final_confidence']}")
        console.print(f"[bold]Processing time:[/bold] {results['processing_time']}s")
        for recommendation in results.get("recommendations", []):
            console.print(f"[cyan]Recommendation:[/cyan] {recommendation}")

    latest = [d for d in status["disagreements"] if d["iteration"] == status["iteration"]]
    _print_disagreements(latest)

    feedback = status.get("feedback", [])
    if feedback:
        table = Table(title="Feedback")
        table.add_column("Iter", justify="right")
        table.add_column("Node")
        table.add_column("Category")
        table.add_column("Priority", justify="right")
        table.add_column("Applied")
        table.add_column("Δ confidence", justify="right")
        for item in feedback:
            improvement = item.get("confidence_improvement")
            table.add_row(
                str(item["iteration"]),
                item["node_id"],
                item["category"],
                str(item["priority"]),
                "yes" if item["applied"] else "no",
                f"{improvement:+.1f}" if improvement is not None else "-",
            )
        console.print(table)


def _print_disagreements(disagreements: list) -> None:
    if not disagreements:
        console.print("[green]✓ No disagreements[/green]")
        return

    table = Table(title="Disagreements")
    table.add_column("Trait")
    table.add_column("Facet")
    table.add_column("A1", justify="right")
    table.add_column("B1", justify="right")
    table.add_column("Diff", justify="right")
    table.add_column("Severity")
    for d in disagreements:
        color = SEVERITY_COLORS[d["severity"]]
        table.add_row(
            d["trait"],
            d["facet"] if d["level"] == "facet" else "-",
            f"{d['a1_score']:.1f}",
            f"{d['b1_score']:.1f}",
            f"{d['difference']:+.1f}",
            f"[{color}]{d['severity']}[/{color}]",
        )
    console.print(table)


def _generate_text_report(data: dict) -> str:
    """Generate text report from metrics data."""
    summary = data.get("summary", {})
    times = summary.get("processing_time_ms", {})
    lines = [
        "=" * 70,
        "OCEAN DUAL VALIDATION METRICS",
        "=" * 70,
        "",
        "SUMMARY",
        "-" * 40,
        f"Workflows:           {summary.get('count', 'N/A')}",
        f"Completed:           {summary.get('completed', 'N/A')}",
        f"Failed:              {summary.get('failed', 'N/A')}",
        f"Completion rate:     {summary.get('completion_rate', 'N/A')}",
        f"Mean confidence:     {summary.get('mean_confidence', 'N/A')}",
        f"Mean disagreement:   {summary.get('mean_disagreement_rate', 'N/A')}",
        f"Total tokens:        {summary.get('total_tokens', 'N/A')}",
        f"Total cost (USD):    {summary.get('total_cost_usd', 'N/A')}",
        f"p50 / p95 time (ms): {times.get('p50', 'N/A')} / {times.get('p95', 'N/A')}",
        "",
    ]

    alerts = summary.get("alerts", [])
    if alerts:
        lines.extend(["HIGH DISAGREEMENT ALERTS", "-" * 40])
        for alert in alerts:
            lines.append(f"  {alert['response_id']}: {alert['disagreement_rate']:.1%}")
        lines.append("")

    lines.append("=" * 70)
    return "\n".join(lines)


def _generate_markdown_report(data: dict) -> str:
    """Generate Markdown report from metrics data."""
    summary = data.get("summary", {})
    lines = [
        "# OCEAN Dual Validation Metrics",
        "",
        f"Generated: {data.get('generated_at', datetime.now().isoformat())}",
        "",
        "## Summary",
        "",
        "| Metric | Value |",
        "|--------|-------|",
        f"| Workflows | {summary.get('count', 'N/A')} |",
        f"| Completion rate | {summary.get('completion_rate', 'N/A')} |",
        f"| Mean confidence | {summary.get('mean_confidence', 'N/A')} |",
        f"| Mean disagreement rate | {summary.get('mean_disagreement_rate', 'N/A')} |",
        f"| Total cost (USD) | {summary.get('total_cost_usd', 'N/A')} |",
        "",
    ]

    workflows = data.get("workflows", [])
    if workflows:
        lines.extend(
            [
                "## Workflows",
                "",
                "| Response | Status | Confidence | Iterations | Cost (USD) |",
                "|----------|--------|------------|------------|------------|",
            ]
        )
        for w in workflows:
            lines.append(
                f"| {w['response_id']} | {w['status']} | {w.get('final_confidence')} "
                f"| {w['iterations']} | {w['cost_usd']} |"
            )
        lines.append("")

    return "\n".join(lines)


if __name__ == "__main__":
    main()
