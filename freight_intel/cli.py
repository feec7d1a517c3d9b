"""Command-line interface for the Freight Call Intelligence engine."""

import json
import sys
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from freight_intel.config.settings import get_settings
from freight_intel.logging_config import configure_logging
from freight_intel.models.result import ExtractionResult, RunStatus
from freight_intel.models.transcript import CallType, RunMetadata, Transcript
from freight_intel.pipeline.errors import RegistryConfigurationError
from freight_intel.pipeline.orchestrator import run_extraction

app = typer.Typer(
    name="freight-intel",
    help="Freight Call Intelligence - Extract loads, rates and negotiation outcomes from brokerage calls",
    add_completion=False,
)
console = Console()

_STATUS_STYLE = {
    RunStatus.COMPLETE: "green",
    RunStatus.PARTIAL: "yellow",
    RunStatus.FAILED: "red",
}


def load_call_file(path: Path, call_type: Optional[CallType] = None) -> tuple[Transcript, RunMetadata]:
    """Read a call file into a transcript and its run metadata.

    The file holds ``{"utterances": [...], "text": "...", "metadata": {...}}``.
    Missing metadata falls back to the file stem as call id.

    Args:
        path: JSON call file.
        call_type: Overrides the call type hint in the file.

    Returns:
        Tuple of (transcript, metadata).
    """
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    transcript = Transcript(
        utterances=tuple(data.get("utterances", [])),
        text=data.get("text", ""),
    )

    meta = dict(data.get("metadata", {}))
    meta.setdefault("call_id", path.stem)
    meta.setdefault("organization_id", "local")
    meta.setdefault("user_id", "cli")
    if call_type is not None:
        meta["call_type"] = call_type
    return transcript, RunMetadata(**meta)


@app.command()
def analyze(
    call_path: Path = typer.Argument(
        ...,
        help="Path to the call transcript JSON",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
    call_type: Optional[CallType] = typer.Option(
        None,
        "--call-type",
        "-t",
        help="Call type hint (overrides the file's metadata)",
    ),
    output: Path = typer.Option(
        None,
        "--output",
        "-o",
        help="Output file path for the JSON result (default: <call_name>_result.json)",
    ),
    pretty: bool = typer.Option(
        True,
        "--pretty/--compact",
        help="Pretty-print JSON output",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose console logging",
    ),
) -> None:
    """Run the extraction pipeline on one call and write the result."""
    settings = get_settings()
    configure_logging(
        level="DEBUG" if verbose else "WARNING",
        json_output=settings.log_json and not verbose,
    )

    console.print(
        Panel.fit(
            "[bold blue]Freight Call Intelligence[/bold blue]\n"
            "Extracting call details...",
            border_style="blue",
        )
    )
    console.print(f"\n[dim]Input:[/dim] {call_path}")

    if output is None:
        output = call_path.with_name(f"{call_path.stem}_result.json")
    console.print(f"[dim]Output:[/dim] {output}\n")

    try:
        transcript, metadata = load_call_file(call_path, call_type)
    except (json.JSONDecodeError, ValidationError) as e:
        console.print(f"[red]Invalid call file:[/red] {e}")
        sys.exit(1)

    try:
        result = run_extraction(transcript, metadata, settings=settings)
    except RegistryConfigurationError as e:
        console.print(f"\n[red]Pipeline misconfigured:[/red] {e}")
        if verbose:
            console.print_exception()
        sys.exit(1)

    with open(output, "w", encoding="utf-8") as f:
        f.write(result.model_dump_json(indent=2 if pretty else None))

    _display_summary(result)
    console.print(f"\n[green]Result saved to:[/green] {output}")

    if result.status == RunStatus.FAILED:
        sys.exit(2)


@app.command()
def info() -> None:
    """Display system information and configuration."""
    from freight_intel import __version__
    from freight_intel.pipeline.registry import get_stage_registry

    settings = get_settings()

    console.print(
        Panel.fit(
            "[bold blue]Freight Call Intelligence[/bold blue]",
            border_style="blue",
        )
    )

    table = Table(show_header=False, box=None)
    table.add_column("Setting", style="dim")
    table.add_column("Value")

    table.add_row("Version", __version__)
    table.add_row("LLM Model", settings.llm_model_name)
    table.add_row("Ollama URL", settings.llm_ollama_base_url)
    table.add_row("Temperature", str(settings.llm_temperature))
    table.add_row("Request Timeout", f"{settings.llm_request_timeout}s")
    table.add_row("Max Attempts", str(settings.stage_max_attempts))
    table.add_row("Stage Order", " -> ".join(get_stage_registry().resolve_order()))

    console.print(table)


def _display_summary(result: ExtractionResult) -> None:
    """Display a summary of the extraction result.

    Args:
        result: The finished extraction result.
    """
    style = _STATUS_STYLE[result.status]
    console.print(f"\n[bold]Extraction Summary[/bold] [{style}]{result.status.value}[/{style}]")
    console.print("-" * 40)

    if result.summary:
        console.print(f"[bold]{result.summary.headline}[/bold]")

    if result.classification:
        console.print(
            f"[dim]Call type:[/dim] {result.classification.call_type.value} "
            f"({result.classification.confidence}%)"
        )

    negotiation = result.negotiation
    if negotiation:
        line = f"[dim]Negotiation:[/dim] {negotiation.status.value}"
        if negotiation.agreed_rate is not None:
            line += f" at ${negotiation.agreed_rate:,.2f}"
        console.print(line)

    table = Table(show_header=True, box=None)
    table.add_column("Stage", style="dim")
    table.add_column("Status")
    table.add_column("Attempts", justify="right")
    table.add_column("Time", justify="right")
    for record in result.stage_records:
        table.add_row(
            record.stage,
            record.status.value,
            str(record.attempts),
            f"{record.duration_seconds:.2f}s",
        )
    console.print(table)

    if result.warnings:
        console.print(f"\n[yellow]Warnings:[/yellow] {len(result.warnings)}")
        for warning in result.warnings[:5]:
            console.print(f"  [{warning.severity.value}] {warning.field}: {warning.message}")

    console.print(
        f"\n[dim]Rate confirmation: {'yes' if result.should_generate_rate_confirmation else 'no'} | "
        f"{result.usage.calls} LLM calls, {result.usage.total_tokens} tokens "
        f"in {result.duration_seconds:.1f}s[/dim]"
    )


if __name__ == "__main__":
    app()
