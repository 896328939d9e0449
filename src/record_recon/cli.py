"""
Command-line interface for the record reconciliation engine.
"""

from pathlib import Path
from typing import Optional
import logging
import sys

import click
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from . import __version__
from .audit.sink import AuditSink, JsonlAuditSink, LoggingAuditSink
from .config import ReconConfig, generate_default_config, load_config
from .matching.duplicates import DuplicateDetector
from .matching.engine import ReconciliationEngine
from .models.record import ReconciliationResult, RecordSource
from .store.loader import RecordLoader
from .store.memory import InMemoryRecordStore
from .utils.logging_config import setup_logging

console = Console()


@click.group()
@click.version_option(version=__version__)
def main():
    """Transaction record reconciliation tool."""
    pass


@main.command()
@click.argument("system_file", type=click.Path(exists=True, path_type=Path))
@click.argument("upload_file", type=click.Path(exists=True, path_type=Path))
@click.option("-b", "--batch", "batch_ref", required=True, help="Batch reference of the upload")
@click.option("-a", "--actor", "actor_id", default="cli", show_default=True, help="Actor id for the audit trail")
@click.option(
    "-c",
    "--config",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file (YAML)",
)
@click.option(
    "--partial-threshold", type=float, default=None, help="Override partial match threshold"
)
@click.option(
    "--variance-percent",
    type=float,
    default=None,
    help="Override amount variance tolerance in percent",
)
@click.option(
    "--audit-log",
    type=click.Path(path_type=Path),
    default=None,
    help="Append audit events to this JSON Lines file",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
def reconcile(
    system_file: Path,
    upload_file: Path,
    batch_ref: str,
    actor_id: str,
    config: Optional[Path],
    partial_threshold: Optional[float],
    variance_percent: Optional[float],
    audit_log: Optional[Path],
    verbose: bool,
):
    """
    Reconcile an upload batch against system records.

    SYSTEM_FILE: CSV of system (reference) records
    UPLOAD_FILE: CSV of uploaded records for the batch
    """
    try:
        recon_config = load_config(config)
        _setup_logging(recon_config, verbose)

        # Apply command-line overrides
        if partial_threshold is not None:
            recon_config.matching.partial_match_threshold = partial_threshold
        if variance_percent is not None:
            recon_config.matching.amount_variance_percentage = variance_percent

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            loader = RecordLoader(recon_config.input)

            task = progress.add_task("Loading system records...", total=None)
            store = InMemoryRecordStore(loader.load_file(system_file, RecordSource.SYSTEM))
            progress.update(task, completed=True)

            task = progress.add_task("Loading uploaded records...", total=None)
            store.add_records(loader.load_file(upload_file, RecordSource.UPLOAD, batch_ref))
            progress.update(task, completed=True)

            task = progress.add_task("Running reconciliation...", total=None)
            engine = ReconciliationEngine(
                recon_config, store, audit_sink=_build_audit_sink(recon_config, audit_log)
            )
            result = engine.reconcile(batch_ref, actor_id)
            progress.update(task, completed=True)

        _display_summary(result)
        _display_matches(result)

    except Exception as e:
        console.print(f"[red]Error: {e}[/red]")
        if verbose:
            console.print_exception()
        sys.exit(1)


@main.command("inspect-batch")
@click.argument("upload_file", type=click.Path(exists=True, path_type=Path))
@click.option("-b", "--batch", "batch_ref", default="inspect", help="Batch reference to tag records with")
@click.option("-c", "--config", type=click.Path(exists=True, path_type=Path))
def inspect_batch(upload_file: Path, batch_ref: str, config: Optional[Path]):
    """
    Load an upload CSV and show its records and duplicate groups.

    UPLOAD_FILE: CSV of uploaded records
    """
    try:
        recon_config = load_config(config)
        records = RecordLoader(recon_config.input).load_file(
            upload_file, RecordSource.UPLOAD, batch_ref
        )

        table = Table(title=f"Uploaded Records: {upload_file.name}")
        table.add_column("ID")
        table.add_column("Transaction ID")
        table.add_column("Reference")
        table.add_column("Amount", justify="right")
        table.add_column("Date")

        for record in records[:20]:  # Show first 20
            table.add_row(
                record.id,
                record.transaction_id,
                record.reference_number,
                f"{record.amount:,.2f}",
                record.date.isoformat(),
            )

        console.print(table)

        if len(records) > 20:
            console.print(f"\n... and {len(records) - 20} more records")

        groups = DuplicateDetector().detect(records)
        if groups:
            dup_table = Table(title="Duplicate Groups")
            dup_table.add_column("Transaction ID")
            dup_table.add_column("Count", justify="right")
            dup_table.add_column("Records")
            for group in groups.values():
                dup_table.add_row(group.key, str(group.count), ", ".join(group.record_ids))
            console.print(dup_table)

        console.print(f"\nTotal records: {len(records)}, duplicate groups: {len(groups)}")

    except Exception as e:
        console.print(f"[red]Error loading file: {e}[/red]")
        sys.exit(1)


@main.command("init-config")
@click.option(
    "-o", "--output", type=click.Path(path_type=Path), default=Path("config.yaml")
)
def init_config(output: Path):
    """Generate a sample configuration file."""
    generate_default_config(output)
    console.print(f"[green]Configuration file generated: {output}[/green]")


def _setup_logging(config: ReconConfig, verbose: bool) -> None:
    level = logging.DEBUG if verbose else config.logging.level
    log_file = Path(config.logging.log_file) if config.logging.log_file else None
    setup_logging(level, log_file=log_file, log_format=config.logging.format)


def _build_audit_sink(config: ReconConfig, audit_log: Optional[Path]) -> AuditSink:
    path = audit_log or (Path(config.audit.log_file) if config.audit.log_file else None)
    if path is not None:
        return JsonlAuditSink(path)
    return LoggingAuditSink()


def _display_summary(result: ReconciliationResult) -> None:
    """Display reconciliation summary in console."""
    summary = result.summary
    table = Table(title=f"Reconciliation Summary: {result.batch_ref}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Total Records", str(summary.total_records))
    table.add_row("Matched", str(summary.matched))
    table.add_row("Partially Matched", str(summary.partially_matched))
    table.add_row("Unmatched", str(summary.unmatched))
    table.add_row("Duplicates", str(summary.duplicates))
    table.add_row("Duplicate Groups", str(summary.duplicate_group_count))
    table.add_row("Accuracy", f"{summary.accuracy_percentage}%")
    table.add_row("Processing Time", f"{result.processing_time:.2f}s")

    console.print(table)


def _display_matches(result: ReconciliationResult) -> None:
    """Display matched pairs in console."""
    if not result.matches:
        return

    table = Table(title="Matches")
    table.add_column("Uploaded")
    table.add_column("System")
    table.add_column("Type")
    table.add_column("Confidence", justify="right")
    table.add_column("Mismatched Fields")

    for match in result.matches[:20]:  # Show first 20
        table.add_row(
            match.uploaded_record_id,
            match.system_record_id,
            match.match_type.value,
            f"{match.confidence_score:.2f}",
            ", ".join(m.field for m in match.mismatched_fields) or "-",
        )

    console.print(table)

    if len(result.matches) > 20:
        console.print(f"\n... and {len(result.matches) - 20} more matches")


if __name__ == "__main__":
    main()
