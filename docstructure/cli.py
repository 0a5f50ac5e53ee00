"""
CLI Interface
=============
Command-line interface for the document structure engine.

Usage:
    python -m docstructure analyze <text_file> [options]
    python -m docstructure batch <directory> [options]
    python -m docstructure parse-response <response_file> [options]
    python -m docstructure schemas
    python -m docstructure sample <schema_name> [--seed N]
"""

from __future__ import annotations

import json
import os
import random
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeRemainingColumn,
)
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from . import __version__
from .analyzer import AnalyzerConfig, StructureAnalyzer, setup_logging
from .errors import SchemaError
from .models import SCHEMA_TYPES, LlmParsingRequest, ParseOutcome
from .response_parser import ResponseParser
from .schema_store import SchemaStore
from .text_extractor import TextExtractor

console = Console()

LOG_LEVELS = click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"])


@click.group()
@click.version_option(version=__version__, prog_name="docstructure")
def cli():
    """Document Structure Engine: section detection and LLM response parsing."""
    pass


@cli.command()
@click.argument("text_file", type=click.Path(exists=True, dir_okay=False))
@click.option(
    "--min-confidence",
    default=0.3,
    type=click.FloatRange(0.0, 1.0),
    help="Discard sections below this confidence",
)
@click.option(
    "--max-time",
    default=120.0,
    type=float,
    help="Soft analysis time limit in seconds",
)
@click.option(
    "--output", "-o",
    default=None,
    help="Write the analysis result JSON to this file",
)
@click.option(
    "--anchored-text",
    default=None,
    help="Write the anchored document text to this file",
)
@click.option("--log-level", default="INFO", type=LOG_LEVELS, help="Logging level")
@click.option("--log-file", default=None, help="Path to log file")
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only JSON result to stdout (for programmatic use)",
)
def analyze(
    text_file: str,
    min_confidence: float,
    max_time: float,
    output: str,
    anchored_text: str,
    log_level: str,
    log_file: str,
    json_output: bool,
):
    """Analyze the section structure of a plain text document."""

    if json_output:
        # Suppress console output for JSON mode
        log_level = "ERROR"

    config = AnalyzerConfig.from_env(
        min_confidence_threshold=min_confidence,
        max_analysis_time_seconds=max_time,
        log_level=log_level,
        log_file=log_file,
    )

    if not json_output:
        console.print()
        console.print(
            Panel.fit(
                f"[bold cyan]Document Structure Engine v{__version__}[/]\n"
                f"[dim]Analyzing: {os.path.basename(text_file)}[/]",
                border_style="cyan",
            )
        )
        console.print()

    try:
        analyzer = StructureAnalyzer(config)
        document = TextExtractor().extract(text_file)
        result = analyzer.analyze(document)

        if output:
            _write_json(output, result.model_dump())
        if anchored_text:
            Path(anchored_text).write_text(result.anchored_text(), encoding="utf-8")

        if json_output:
            print(json.dumps(
                result.model_dump(),
                indent=2,
                ensure_ascii=False,
                default=str,
            ))
        else:
            _display_analysis(result)

    except FileNotFoundError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/] {e}")
        if log_level == "DEBUG":
            console.print_exception()
        sys.exit(1)


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False))
@click.option("--pattern", default="*.txt", help="Glob for input files")
@click.option("--output", "-o", default=None, help="Directory for result JSON files")
@click.option(
    "--min-confidence",
    default=0.3,
    type=click.FloatRange(0.0, 1.0),
    help="Discard sections below this confidence",
)
@click.option("--log-level", default="WARNING", type=LOG_LEVELS, help="Logging level")
def batch(
    directory: str,
    pattern: str,
    output: str,
    min_confidence: float,
    log_level: str,
):
    """Analyze every text file in a directory."""

    text_files = sorted(Path(directory).glob(pattern))

    if not text_files:
        console.print(f"[yellow]No files matching {pattern} in: {directory}[/]")
        return

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]Batch Structure Analysis[/]\n"
            f"[dim]Found {len(text_files)} files in: {directory}[/]",
            border_style="cyan",
        )
    )
    console.print()

    config = AnalyzerConfig.from_env(
        min_confidence_threshold=min_confidence,
        log_level=log_level,
    )
    analyzer = StructureAnalyzer(config)
    extractor = TextExtractor()

    results = []
    errors = []

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeRemainingColumn(),
        console=console,
    ) as progress:
        task = progress.add_task(
            "Analyzing documents...", total=len(text_files)
        )

        for text_file in text_files:
            progress.update(
                task, description=f"Analyzing {text_file.name}..."
            )
            try:
                document = extractor.extract(str(text_file))
                results.append((text_file.name, analyzer.analyze(document)))
            except OSError as e:
                errors.append((text_file.name, str(e)))
            progress.advance(task)

    if output:
        out_dir = Path(output)
        out_dir.mkdir(parents=True, exist_ok=True)
        for name, result in results:
            _write_json(out_dir / f"{Path(name).stem}_structure.json", result.model_dump())

    _display_batch_summary(results, errors)


@cli.command("parse-response")
@click.argument("response_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--schema", "schema_name", default=None, help="Expected schema name")
@click.option(
    "--schema-type",
    default=None,
    type=click.Choice(list(SCHEMA_TYPES)),
    help="Response type (detected from the response when omitted)",
)
@click.option(
    "--anchor", "anchors",
    multiple=True,
    help="Anchor id expected in the response (repeatable)",
)
@click.option(
    "--anchors-from",
    default=None,
    type=click.Path(exists=True, dir_okay=False),
    help="Analysis result JSON whose anchors are expected",
)
@click.option("--rule", "rules", multiple=True, help="Validation rule (repeatable)")
@click.option("--lenient", is_flag=True, default=False, help="Disable strict validation")
@click.option(
    "--fallback/--no-fallback",
    default=True,
    help="Retry without schema and rules if strict parsing fails",
)
@click.option(
    "--json-output",
    is_flag=True,
    default=False,
    help="Output only JSON result to stdout (for programmatic use)",
)
def parse_response(
    response_file: str,
    schema_name: str,
    schema_type: str,
    anchors: tuple[str, ...],
    anchors_from: str,
    rules: tuple[str, ...],
    lenient: bool,
    fallback: bool,
    json_output: bool,
):
    """Parse and validate a raw LLM response."""

    setup_logging("ERROR" if json_output else "WARNING")

    expected_anchors = list(anchors)
    if anchors_from:
        with open(anchors_from, "r", encoding="utf-8") as f:
            expected_anchors.extend(_anchor_ids(json.load(f)))

    request = LlmParsingRequest(
        raw_response=Path(response_file).read_text(encoding="utf-8"),
        expected_schema=schema_name,
        schema_type=schema_type,
        original_anchors=expected_anchors,
        validation_rules=list(rules),
        strict_validation=not lenient,
    )

    parser = ResponseParser()
    parsed = parser.parse_with_fallback(request) if fallback else parser.parse(request)

    if json_output:
        print(json.dumps(
            parsed.model_dump(exclude={"raw_response"}),
            indent=2,
            ensure_ascii=False,
            default=str,
        ))
    else:
        _display_parsed(parsed)

    if not parsed.is_valid:
        sys.exit(1)


@cli.command()
def schemas():
    """List the available response schemas."""

    store = SchemaStore()
    table = Table(title="Response Schemas", border_style="cyan")
    table.add_column("Name", style="bold")
    table.add_column("Title")
    table.add_column("Required Fields")
    table.add_column("Properties", justify="right")

    for name in store.available_schemas():
        try:
            info = store.schema_info(name)
        except SchemaError as e:
            table.add_row(name, f"[red]{e}[/]", "-", "-")
            continue
        table.add_row(
            name,
            info["title"],
            ", ".join(info["required_fields"]) or "-",
            str(len(info["properties"])),
        )

    console.print()
    console.print(table)
    console.print()


@cli.command()
@click.argument("schema_name")
@click.option("--seed", default=None, type=int, help="Random seed for reproducible output")
def sample(schema_name: str, seed: int):
    """Print a sample response for a schema."""

    try:
        data = SchemaStore().generate_sample_response(schema_name, random.Random(seed))
    except SchemaError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(1)

    print(json.dumps(data, indent=2, ensure_ascii=False))


# ─── Display Helpers ──────────────────────────────────────────────────────────


def _display_analysis(result):
    """Display the section tree and statistics."""
    tree = Tree(f"[bold]{result.document_id}[/]")

    def add(node, sections):
        for section in sections:
            color = "green" if section.confidence >= 0.7 else "yellow"
            branch = node.add(
                f"{escape(section.title)} "
                f"[dim](level {section.level}, "
                f"[{color}]{section.confidence:.2f}[/{color}])[/]"
            )
            add(branch, section.subsections)

    add(tree, result.sections)
    console.print(tree)
    console.print()

    stats = result.statistics
    table = Table(title="Structure Statistics", border_style="green")
    table.add_column("Metric", style="bold")
    table.add_column("Value", justify="right")
    table.add_row("Total Sections", str(stats.get("total_sections", 0)))
    table.add_row("Root Sections", str(result.sections_count))
    table.add_row("Max Depth", str(stats.get("max_depth", 0)))
    table.add_row("Average Confidence", f"{result.average_confidence:.3f}")
    table.add_row("Coverage", f"{stats.get('coverage_percentage', 0)}%")
    table.add_row("Analysis Time", f"{result.analysis_time:.3f}s")
    console.print(table)
    console.print()

    for warning in result.warnings:
        console.print(f"[yellow]⚠[/] {warning}")
    if result.warnings:
        console.print()


def _display_parsed(parsed):
    """Display parse outcome, errors and anchor checks."""
    status = {
        ParseOutcome.VALID_PRIMARY: "[green]✓ valid[/]",
        ParseOutcome.VALID_FALLBACK: "[yellow]⚠ valid (fallback)[/]",
        ParseOutcome.INVALID: "[red]✗ invalid[/]",
    }[parsed.outcome]

    console.print()
    console.print(
        Panel.fit(
            f"[bold cyan]LLM Response[/] {status}\n"
            f"[dim]Type: {parsed.schema_type or 'unknown'} | "
            f"Anchors: {parsed.valid_anchor_count} ok, "
            f"{parsed.invalid_anchor_count} bad[/]",
            border_style="cyan",
        )
    )

    for error in parsed.errors:
        console.print(f"[red]✗[/] {error}")
    for warning in parsed.warnings:
        console.print(f"[yellow]⚠[/] {warning}")

    bad = parsed.anchor_errors()
    if bad:
        table = Table(title="Anchor Problems", border_style="yellow")
        table.add_column("Anchor", style="bold")
        table.add_column("Problem")
        for check in bad:
            table.add_row(check.anchor, check.error or "")
        console.print(table)
    console.print()


def _display_batch_summary(results, errors):
    """Display batch processing summary."""
    console.print()

    table = Table(title="Batch Analysis Summary", border_style="cyan")
    table.add_column("File", style="bold")
    table.add_column("Sections", justify="right")
    table.add_column("Confidence", justify="right")
    table.add_column("Warnings", justify="right")
    table.add_column("Status", justify="center")

    total_sections = 0
    failures = len(errors)

    for name, result in results:
        total_sections += result.total_sections_count
        if result.is_successful():
            status = "[green]✓[/]" if not result.warnings else "[yellow]⚠[/]"
        else:
            status = "[red]✗ FAILED[/]"
            failures += 1
        table.add_row(
            name,
            str(result.total_sections_count),
            f"{result.average_confidence:.3f}",
            str(len(result.warnings)),
            status,
        )

    for name, _ in errors:
        table.add_row(name, "-", "-", "-", "[red]✗ FAILED[/]")

    console.print(table)
    console.print()
    console.print(
        f"[bold]Total:[/] {total_sections} sections from "
        f"{len(results)} documents, {failures} failures"
    )
    console.print()


def _anchor_ids(data: dict) -> list[str]:
    """Anchor ids from a serialized analysis result."""
    found = []

    def walk(sections):
        for section in sections:
            if section.get("anchor_id"):
                found.append(section["anchor_id"])
            walk(section.get("subsections", []))

    walk(data.get("sections", []))
    return found


def _write_json(path, data: dict):
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2, ensure_ascii=False, default=str)


# ─── Entry point (for python -m docstructure.cli) ─────────────────────────────


if __name__ == "__main__":
    cli()
