"""
Main CLI application for process-versioning.

Provides a Typer-based command-line interface over a configured version store:
save process documents, browse history, diff, restore and review the audit
trail.
"""

from __future__ import annotations

import copy
import json
import logging
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.table import Table

from ..audit.models import AuditAction, AuditFilters
from ..config import BACKENDS, build_store, get_config_manager, load_config
from ..errors import VersioningError
from ..version.diff_engine import ChangeKind, Severity, render_text_diff
from ..version.models import ChangeType
from ..version.version_control import VersionStore

# Initialize Typer app
app = typer.Typer(
    name="process-versioning",
    help="Version history, structural diffs and audit trail for process documents",
    add_completion=False,
    rich_markup_mode="rich"
)

# Global console for rich output
console = Console()

# Storage directory override from the --store option
store_path: Optional[Path] = None

SEVERITY_STYLES = {
    Severity.INFO: "cyan",
    Severity.WARNING: "yellow",
    Severity.BREAKING: "bold red",
}

CHANGE_MARKERS = {
    ChangeKind.ADDED: "[green]+[/green]",
    ChangeKind.REMOVED: "[red]-[/red]",
    ChangeKind.MODIFIED: "[yellow]~[/yellow]",
}


@app.callback()
def main(
    store: Optional[Path] = typer.Option(None, "--store", "-s", help="Storage directory (overrides config)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging"),
) -> None:
    """
    Version history, structural diffs and audit trail for process documents.
    """
    global store_path
    store_path = store

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
    )


@contextmanager
def open_store() -> Iterator[VersionStore]:
    """Build the configured store and make sure audit entries are written."""
    config = copy.deepcopy(load_config())
    if store_path is not None:
        config.storage.backend = "file"
        config.storage.path = store_path

    try:
        version_store = build_store(config)
    except VersioningError as e:
        console.print(f"[red]Error opening store: {e.message}[/red]")
        raise typer.Exit(1)

    try:
        yield version_store
    except VersioningError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)
    finally:
        if version_store.audit_log is not None:
            try:
                version_store.audit_log.close()
            except VersioningError as e:
                console.print(f"[yellow]Warning: audit entries not written: {e.message}[/yellow]")


@app.command()
def save(
    file_path: Path = typer.Argument(..., help="JSON file containing the process document"),
    notes: str = typer.Option(..., "--notes", "-m", help="Change notes"),
    change_type: ChangeType = typer.Option(ChangeType.PATCH, "--type", "-t", help="Change type"),
) -> None:
    """
    Save a process document as a new version.
    """
    if not file_path.exists():
        console.print(f"[red]Error: File not found: {file_path}[/red]")
        raise typer.Exit(1)

    try:
        document = json.loads(file_path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Error reading {file_path}: {e}[/red]")
        raise typer.Exit(1)

    with open_store() as version_store:
        version = version_store.save(document, notes, change_type)

    console.print(f"[green]Saved version {version.version} ({version.id})[/green]")
    console.print(f"Changes: {version.change_summary}")
    if version.diff_from_previous and version.diff_from_previous.summary.has_breaking_changes:
        console.print("[bold red]This version contains breaking changes[/bold red]")


@app.command()
def history(
    document_id: str = typer.Argument(..., help="Process document ID"),
    max_count: int = typer.Option(10, "--count", "-n", help="Maximum number of versions to show"),
) -> None:
    """
    Show the version history of a document.
    """
    with open_store() as version_store:
        versions = version_store.get_versions(document_id)[:max_count]

    if not versions:
        console.print("[yellow]No version history available[/yellow]")
        return

    history_table = Table(title=f"Version History ({document_id})")
    history_table.add_column("Version", style="cyan")
    history_table.add_column("#", style="dim")
    history_table.add_column("Type", style="magenta")
    history_table.add_column("Notes", style="white")
    history_table.add_column("Author", style="yellow")
    history_table.add_column("Date", style="blue")
    history_table.add_column("Changes", style="green")
    history_table.add_column("ID", style="dim")

    for version in versions:
        marker = "→ " if version.is_latest else "  "
        history_table.add_row(
            f"{marker}{version.version}",
            str(version.version_number),
            version.change_type.value,
            version.change_notes,
            version.created_by,
            version.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            version.change_summary or "-",
            version.id,
        )

    console.print(history_table)


@app.command()
def show(
    version_id: str = typer.Argument(..., help="Version ID"),
    snapshot: bool = typer.Option(False, "--snapshot", help="Print the full document snapshot"),
) -> None:
    """
    Show a single version.
    """
    with open_store() as version_store:
        version = version_store.get_version(version_id)

    if version is None:
        console.print(f"[red]Error: Version {version_id} not found[/red]")
        raise typer.Exit(1)

    console.print(Panel.fit(
        f"""[bold]Document:[/bold] {version.snapshot.name} ({version.document_id})
[bold]Version:[/bold] {version.version} (#{version.version_number})
[bold]Type:[/bold] {version.change_type.value}{' (draft)' if version.is_draft else ''}
[bold]Latest:[/bold] {'Yes' if version.is_latest else 'No'}
[bold]Author:[/bold] {version.created_by}
[bold]Created:[/bold] {version.created_at.isoformat()}
[bold]Notes:[/bold] {version.change_notes}
[bold]Summary:[/bold] {version.change_summary}
[bold]Steps:[/bold] {len(version.snapshot.steps)}""",
        title=version.id,
        border_style="blue"
    ))

    if snapshot:
        console.print_json(json.dumps(version.snapshot.to_dict()))


@app.command()
def diff(
    version1: str = typer.Argument(..., help="First version ID"),
    version2: str = typer.Argument(..., help="Second version ID"),
    output_format: str = typer.Option("text", "--format", "-f", help="Output format: text, json"),
    output_file: Optional[Path] = typer.Option(None, "--output", "-o", help="Save diff to file"),
) -> None:
    """
    Show differences between two versions.
    """
    with open_store() as version_store:
        version_diff = version_store.compare_versions(version1, version2)

    if output_format == "json":
        json_diff = json.dumps(version_diff.to_dict(), indent=2)
        if output_file:
            output_file.write_text(json_diff, encoding="utf-8")
            console.print(f"[green]JSON diff saved to {output_file}[/green]")
        else:
            console.print(json_diff)
        return

    if output_format != "text":
        console.print(f"[red]Error: Unknown format '{output_format}'[/red]")
        raise typer.Exit(1)

    if not version_diff.changes:
        console.print("[yellow]No differences found[/yellow]")
        return

    diff_table = Table(title=f"Diff: {version1} → {version2}")
    diff_table.add_column("", width=1)
    diff_table.add_column("Field", style="bold")
    diff_table.add_column("Step", style="dim")
    diff_table.add_column("Change")

    for change in version_diff.changes:
        if change.text_diff is not None:
            detail = render_text_diff(change.text_diff)
        elif change.type == ChangeKind.ADDED:
            detail = str(change.new_value)
        elif change.type == ChangeKind.REMOVED:
            detail = str(change.old_value)
        else:
            detail = f"{change.old_value} → {change.new_value}"
        diff_table.add_row(
            CHANGE_MARKERS[change.type],
            f"[{SEVERITY_STYLES[change.severity]}]{change.field}[/]",
            change.step_id or "",
            detail,
        )

    console.print(diff_table)

    summary = version_diff.summary
    console.print(Panel.fit(
        f"""[bold]{summary.total_changes} changes[/bold] ({summary.additions} added, {summary.deletions} removed, {summary.modifications} modified)
Steps: +{summary.steps_added} / -{summary.steps_removed} / ~{summary.steps_modified}
Breaking: {'[bold red]Yes[/bold red]' if summary.has_breaking_changes else 'No'}""",
        title="Change Summary",
        border_style="green"
    ))


@app.command()
def restore(
    version_id: str = typer.Argument(..., help="Version ID to restore"),
) -> None:
    """
    Restore an old version as a new latest version.
    """
    with open_store() as version_store:
        restored = version_store.restore_version(version_id)

    console.print(f"[green]Restored as version {restored.version} ({restored.id})[/green]")


@app.command()
def delete(
    version_id: str = typer.Argument(..., help="Version ID to delete"),
) -> None:
    """
    Delete a historical (non-latest) version.
    """
    with open_store() as version_store:
        version_store.delete_version(version_id)

    console.print(f"[green]Deleted version {version_id}[/green]")


@app.command()
def changelog(
    document_id: str = typer.Argument(..., help="Process document ID"),
) -> None:
    """
    Show the change log of a document.
    """
    with open_store() as version_store:
        log = version_store.generate_change_log(document_id)

    if not log.entries:
        console.print("[yellow]No versions recorded[/yellow]")
        return

    console.print(
        f"[bold]{log.total_versions} versions[/bold], "
        f"{log.first_version} → {log.latest_version}\n"
    )
    for entry in log.entries:
        console.print(
            f"[cyan]{entry.version}[/cyan] [magenta]{entry.change_type.value}[/magenta] "
            f"{entry.created_at.strftime('%Y-%m-%d')} by {entry.created_by}"
        )
        console.print(f"  {entry.change_notes}")
        for highlight in entry.highlights:
            console.print(f"  • {highlight}")


@app.command()
def audit(
    document_id: str = typer.Argument(..., help="Process document ID"),
    actions: Optional[List[AuditAction]] = typer.Option(None, "--action", "-a", help="Filter by action"),
    users: Optional[List[str]] = typer.Option(None, "--user", "-u", help="Filter by user ID"),
    search: Optional[str] = typer.Option(None, "--search", help="Search descriptions and names"),
    limit: int = typer.Option(20, "--limit", "-n", help="Page size"),
    offset: int = typer.Option(0, "--offset", help="Entries to skip"),
) -> None:
    """
    Show the audit trail of a document.
    """
    filters = AuditFilters(action_types=actions or None, user_ids=users or None, search_query=search)

    with open_store() as version_store:
        page = version_store.audit_log.query(document_id, filters, limit=limit, offset=offset)

    if not page.entries:
        console.print("[yellow]No audit entries found[/yellow]")
        return

    audit_table = Table(title=f"Audit Trail ({document_id}) {offset + 1}-{offset + len(page.entries)} of {page.total}")
    audit_table.add_column("Time", style="blue")
    audit_table.add_column("Action", style="magenta")
    audit_table.add_column("Description", style="white")
    audit_table.add_column("User", style="yellow")
    audit_table.add_column("OK", style="green")

    for entry in page.entries:
        audit_table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.action_label,
            entry.description,
            entry.user_name,
            "✓" if entry.success else "[red]✗[/red]",
        )

    console.print(audit_table)


@app.command("export-audit")
def export_audit(
    document_id: str = typer.Argument(..., help="Process document ID"),
    output_file: Path = typer.Option(..., "--output", "-o", help="CSV file to write"),
) -> None:
    """
    Export the full audit trail of a document as CSV.
    """
    with open_store() as version_store:
        data = version_store.audit_log.export_csv(document_id)

    output_file.write_bytes(data)
    console.print(f"[green]Audit trail exported to {output_file}[/green]")


@app.command()
def config(
    show: bool = typer.Option(False, "--show", help="Show current configuration"),
    create_default: bool = typer.Option(False, "--create-default", help="Create default config file"),
) -> None:
    """
    Manage process-versioning configuration.
    """
    config_manager = get_config_manager()

    if create_default:
        config_manager.create_default_config()
        console.print(f"[green]Created default configuration at {config_manager.config_file}[/green]")
        return

    if show:
        config_info = config_manager.get_config_info()
        current_config = load_config()

        config_display = f"""[bold]process-versioning Configuration[/bold]

[bold cyan]Storage:[/bold cyan]
• Backend: {current_config.storage.backend} (one of {', '.join(BACKENDS)})
• Path: {current_config.storage.path}

[bold yellow]Audit:[/bold yellow]
• Max Entries: {current_config.audit.max_entries}
• Async Writes: {current_config.audit.async_writes}
• Batch Size: {current_config.audit.batch_size}

[bold green]Diff Severity:[/bold green]
• Warning Step Fields: {', '.join(current_config.diff.warning_step_fields)}
• Warning Metadata Fields: {', '.join(current_config.diff.warning_metadata_fields)}

[bold blue]Actor:[/bold blue]
• {current_config.actor.user_name} ({current_config.actor.user_id})

[bold magenta]Files:[/bold magenta]
• Config File: {config_info['config_file']}
• Exists: {'Yes' if config_info['config_exists'] else 'No'}"""

        console.print(Panel(config_display, border_style="green"))
        return

    console.print("Use [cyan]process-versioning config --show[/cyan] to see full configuration")
    console.print("Use [cyan]process-versioning config --create-default[/cyan] to create a default config file")


if __name__ == "__main__":
    app()
