"""Command-line interface for vibesync."""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from typing import TYPE_CHECKING

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.table import Table

from vibesync.api_client import ApiClient
from vibesync.config import get_config, is_debug_enabled
from vibesync.errors import VibesyncError
from vibesync.hook_utils import NO_LOGS_MESSAGE, clear_hook_log, get_hook_log_path, read_hook_log
from vibesync.lock import HookLock
from vibesync.models import SourceTool
from vibesync.readers import ClaudeCodeReader, CursorReader, registry
from vibesync.security import MessageSanitizer
from vibesync.storage import StateStore
from vibesync.sync import HookSyncOrchestrator, SyncOptions, SyncOrchestrator, SyncState

if TYPE_CHECKING:
    from vibesync.config import Config
    from vibesync.readers.base import SessionReader
    from vibesync.security.sanitizer import CredentialFinding
    from vibesync.sync import SyncResult

console = Console()
error_console = Console(stderr=True)

SOURCE_CHOICES = [SourceTool.CLAUDE_CODE.value, SourceTool.CURSOR.value]

# Follow-up advice shown under an error, keyed by error code
ERROR_HINTS = {
    "AUTH_REQUIRED": "Run `vibesync config set-token <TOKEN>` to authenticate.",
    "AUTH_EXPIRED": "Run `vibesync config set-token <TOKEN>` with a fresh token.",
    "CLAUDE_NOT_FOUND": "Set [sources.claude_code] path in ~/.vibesync/config.toml if logs live elsewhere.",
    "CURSOR_NOT_FOUND": "Set [sources.cursor] path in ~/.vibesync/config.toml if Cursor is installed elsewhere.",
    "VALIDATION_ERROR": "Only sessions of at least 4 minutes are uploaded.",
    "NETWORK_ERROR": "Check your internet connection and try again.",
    "TIMEOUT": "Check your internet connection and try again.",
    "RATE_LIMITED": "Wait a minute before sending again.",
    "ENDPOINT_NOT_FOUND": "Upgrade vibesync or check [api] url in your config.",
}


def format_age(dt: datetime | None) -> str:
    """Format a timestamp as local date and time, or '-' when unset."""
    if dt is None:
        return "-"
    return dt.astimezone().strftime("%Y-%m-%d %H:%M")


def mask_token(token: str | None) -> str:
    """Show only the last four characters of a token."""
    if not token:
        return "[dim]not set[/dim]"
    if len(token) <= 4:
        return "****"
    return "****" + token[-4:]


def build_reader(source: str, config: Config) -> SessionReader:
    """Create the reader for ``source`` using configured paths.

    Raises:
        click.BadParameter: If the source is unknown.
    """
    if source == SourceTool.CLAUDE_CODE.value:
        return ClaudeCodeReader(path=config.get_source_path(source))
    if source == SourceTool.CURSOR.value:
        return CursorReader(
            path=config.get_source_path(source),
            workspace_path=config.get_workspace_path(source),
        )
    raise click.BadParameter(f"Unknown source: {source}", param_hint="--source")


def print_error(error: VibesyncError) -> None:
    error_console.print(f"[red]Error:[/red] {escape(error.message)}")
    hint = ERROR_HINTS.get(error.code)
    if hint:
        error_console.print(f"[dim]{escape(hint)}[/dim]")


def print_result(result: SyncResult, dry: bool) -> None:
    """Summarize a finished sync run."""
    if result.state == SyncState.DRY_RUN_EXIT or dry:
        console.print(
            f"[yellow]Dry run:[/yellow] {result.sessions_prepared} session(s) ready to upload, "
            f"{result.sessions_filtered} too short. Nothing was sent."
        )
        return

    if result.sessions_loaded == 0:
        console.print("[dim]No sessions found to upload.[/dim]")
        return

    if result.summary is None:
        console.print("[dim]No sessions long enough to upload.[/dim]")
        return

    summary = result.summary
    console.print(
        f"[bold green]Uploaded {result.sessions_prepared} session(s)[/bold green] "
        f"({summary.created} new, {summary.duplicates} already synced)"
    )
    if result.sessions_filtered:
        console.print(f"[dim]Skipped {result.sessions_filtered} session(s) shorter than 4 minutes[/dim]")


def print_credential_findings(findings: list[CredentialFinding]) -> None:
    """List truncated previews of redacted credentials."""
    if not findings:
        return

    table = Table(title=f"Redacted credentials ({len(findings)})")
    table.add_column("Pattern", style="cyan")
    table.add_column("Preview", style="dim")
    for finding in findings:
        table.add_row(escape(finding.pattern), escape(finding.preview))
    console.print(table)


@click.group()
def cli() -> None:
    """vibesync - Upload sanitized AI coding sessions for analysis."""
    pass


@cli.command()
@click.option("--dry", is_flag=True, help="Prepare sessions without uploading")
@click.option("--all", "all_projects", is_flag=True, help="Send sessions from all projects")
@click.option("--silent", is_flag=True, help="No output; errors go to the hook log")
@click.option("--hook-trigger", type=str, help="Name of the hook that triggered this run")
@click.option(
    "--project-dir",
    "--claude-project-dir",
    "project_dir",
    type=str,
    help="Project directory to sync (defaults to the current directory)",
)
@click.option("--initial-sync", is_flag=True, help="Do not fail when every session is too short")
@click.option(
    "--source",
    type=click.Choice(SOURCE_CHOICES),
    default=SourceTool.CLAUDE_CODE.value,
    show_default=True,
    help="Which tool's sessions to send",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging and redacted credential previews")
@click.option("--test", "test_mode", is_flag=True, hidden=True, help="Check that hooks can run")
def send(
    dry: bool,
    all_projects: bool,
    silent: bool,
    hook_trigger: str | None,
    project_dir: str | None,
    initial_sync: bool,
    source: str,
    verbose: bool,
    test_mode: bool,
) -> None:
    """Sanitize and upload sessions."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=error_console, show_path=False)],
        )

    cfg = get_config()
    if not cfg.is_source_enabled(source):
        if not silent:
            error_console.print(f"[red]Error:[/red] Source {source} is disabled in the configuration")
        sys.exit(0 if silent else 1)

    options = SyncOptions(
        dry=dry,
        all_projects=all_projects,
        silent=silent or bool(hook_trigger),
        hook_trigger=hook_trigger,
        project_dir=project_dir,
        initial_sync=initial_sync,
        source=source,
        cwd=os.getcwd(),
        test=test_mode,
    )

    try:
        store = StateStore(cfg.state_path)
    except Exception as e:
        if not options.silent:
            error_console.print(f"[red]Error initializing state store:[/red] {e}")
        sys.exit(0 if options.silent else 1)

    reader = build_reader(source, cfg)

    def report_progress(uploaded: int, total: int, size_kb: float) -> None:
        console.print(f"[dim]Uploaded {uploaded}/{total} session(s) ({size_kb:.1f} KB)[/dim]")

    sanitizer = MessageSanitizer(debug=verbose or is_debug_enabled())

    with store, ApiClient(cfg.api.url, store.get_token, timeout=cfg.api.timeout) as client:
        orchestrator = SyncOrchestrator(
            reader,
            client,
            store,
            sanitizer=sanitizer,
            on_progress=None if options.silent else report_progress,
        )

        if hook_trigger or test_mode:
            HookSyncOrchestrator(orchestrator, HookLock()).execute(options)
            if test_mode:
                console.print("Hook test successful")
            return

        if not options.silent:
            console.print(f"[bold]Sending {reader.display_name} sessions...[/bold]")

        try:
            result = orchestrator.execute(options)
        except VibesyncError as e:
            print_error(e)
            sys.exit(1)

    if not options.silent:
        print_credential_findings(sanitizer.debug_credentials)
        print_result(result, dry)


@cli.command()
def status() -> None:
    """Show sync boundaries, the last sync and source availability."""
    cfg = get_config()
    try:
        store = StateStore(cfg.state_path)
    except Exception as e:
        error_console.print(f"[red]Error initializing state store:[/red] {e}")
        sys.exit(1)

    with store:
        summary = store.get_last_sync_summary()
        boundaries = store.list_project_syncs()
        token = store.get_token()

    console.print(f"[bold]API:[/bold] {cfg.api.url}")
    console.print(f"[bold]Token:[/bold] {mask_token(token)}")
    if summary is not None:
        console.print(f"[bold]Last sync:[/bold] {summary.description} at {format_age(summary.timestamp)}")
    else:
        console.print("[bold]Last sync:[/bold] [dim]never[/dim]")

    if boundaries:
        table = Table(show_header=True, header_style="bold")
        table.add_column("Project Key", style="cyan")
        table.add_column("Project", style="green")
        table.add_column("Oldest Synced", style="yellow")
        table.add_column("Newest Synced", style="yellow")
        table.add_column("Sessions", justify="right")
        table.add_column("Last Sync")

        for key, boundary in boundaries.items():
            table.add_row(
                key,
                boundary.project_name or "-",
                format_age(boundary.oldest_synced_timestamp),
                format_age(boundary.newest_synced_timestamp),
                str(boundary.session_count) if boundary.session_count is not None else "-",
                format_age(boundary.last_sync_time),
            )
        console.print(table)
    else:
        console.print("[dim]No project sync boundaries recorded yet.[/dim]")

    sources_table = Table(show_header=True, header_style="bold")
    sources_table.add_column("Source")
    sources_table.add_column("Status")
    sources_table.add_column("Path")
    for name in SOURCE_CHOICES:
        reader = build_reader(name, cfg)
        available = reader.is_available()
        state = "[green]Available[/green]" if available else "[red]Not Found[/red]"
        path = cfg.get_source_path(name) or reader.get_default_path()
        sources_table.add_row(registry.get_reader(name).display_name, state, str(path))
    console.print(sources_table)

    holder = HookLock().read()
    if holder is not None:
        console.print(f"[yellow]Hook lock held by pid {holder.pid} on {holder.host}[/yellow]")


@cli.command("hooks-log")
@click.option("--lines", "-n", type=int, default=50, show_default=True, help="Number of lines to show")
@click.option("--clear", is_flag=True, help="Delete the hook log")
def hooks_log(lines: int, clear: bool) -> None:
    """Show errors recorded by hook-triggered runs."""
    if clear:
        if click.confirm("Clear all hook logs?", default=False):
            if clear_hook_log():
                console.print("[green]Hook logs cleared![/green]")
            else:
                console.print("[dim]No hook logs to clear.[/dim]")
        else:
            console.print("[yellow]Operation cancelled.[/yellow]")
        return

    logs = read_hook_log(lines)
    console.print("[bold cyan]Hook Execution Logs[/bold cyan]")
    console.print(f"[dim]Location: {get_hook_log_path()}[/dim]")
    console.print("[dim]" + "-" * 80 + "[/dim]")
    console.print(logs, markup=False, highlight=False)
    console.print("[dim]" + "-" * 80 + "[/dim]")

    if logs == NO_LOGS_MESSAGE:
        console.print("No errors have been logged. Hooks are running successfully!")
    else:
        console.print(f"[dim]Showing last {lines} lines. Use --lines=N to see more.[/dim]")


@cli.command()
def unlock() -> None:
    """Remove a stuck hook lock."""
    if HookLock().force_clear():
        console.print("[green]Hook lock cleared.[/green]")
    else:
        console.print("[dim]No hook lock to clear.[/dim]")


@cli.group()
def config() -> None:
    """Manage the API token and show configuration."""
    pass


@config.command("set-token")
@click.argument("token")
def set_token(token: str) -> None:
    """Store the API token used for uploads."""
    token = token.strip()
    if not token:
        error_console.print("[red]Error:[/red] Token must not be empty")
        sys.exit(1)
    with StateStore(get_config().state_path) as store:
        store.set_token(token)
    console.print("[green]Token saved.[/green]")


@config.command("clear-token")
def clear_token() -> None:
    """Remove the stored API token."""
    with StateStore(get_config().state_path) as store:
        store.clear_token()
    console.print("[green]Token cleared.[/green]")


@config.command("show")
def show_config() -> None:
    """Print the effective configuration."""
    cfg = get_config()
    with StateStore(cfg.state_path) as store:
        token = store.get_token()

    table = Table(show_header=True, header_style="bold")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("api.url", cfg.api.url)
    table.add_row("api.timeout", f"{cfg.api.timeout:g}s")
    table.add_row("state.path", str(cfg.state_path))
    table.add_row("token", mask_token(token))
    for name, source in cfg.sources.items():
        table.add_row(f"sources.{name}.enabled", str(source.enabled).lower())
        table.add_row(f"sources.{name}.path", source.path or "[dim]default[/dim]")
        if source.workspace_path:
            table.add_row(f"sources.{name}.workspace_path", source.workspace_path)
    console.print(table)


if __name__ == "__main__":
    cli()
