"""Main CLI entry point using Typer."""

import atexit
import logging
import signal
import sys
from datetime import datetime
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table

from ..config import Config
from ..exceptions import CloudGuardError, OperationFailedError
from ..locking.manager import LockManager
from ..models.error_report import ErrorCategory
from ..models.operation import DeletionPlan, OperationStatus
from ..models.resource import ResourceId, ResourceState
from ..provider.aws import AWSResourceProvider
from ..provider.base import ResourceProvider
from ..recovery.coordinator import RecoveryCoordinator
from ..recovery.diagnostics import DiagnosticsStorage
from ..restore.coordinator import DeletionCoordinator
from ..state.store import StateStore
from ..utils.logging import setup_logging

logger = logging.getLogger(__name__)

# Create Typer app
app = typer.Typer(
    name="cloudguard",
    help="CloudGuard - Safe, coordinated deletion of cloud resources",
    add_completion=False,
)

# Create Rich console for output
console = Console()

# Global config
config: Optional[Config] = None

# Lock manager whose locks are released at interpreter exit
_lock_manager: Optional[LockManager] = None


def _release_locks_at_exit() -> None:
    if _lock_manager is None:
        return
    released = _lock_manager.release_all()
    if not released:
        return
    logger.warning(f"Released {len(released)} lock(s) held at exit")
    try:
        StateStore(config).mark_cleanup()
    except CloudGuardError as e:
        logger.error(f"Could not record cleanup in state document: {e}")


def _handle_sigterm(signum, frame):
    # SystemExit unwinds finally blocks and runs atexit handlers
    sys.exit(128 + signum)


def get_lock_manager() -> LockManager:
    """Lock manager for the current configuration, registered for release at exit."""
    global _lock_manager
    if _lock_manager is None or _lock_manager.lock_dir != config.lock_dir:
        _lock_manager = LockManager(config)
    return _lock_manager


def build_recovery(lock_manager: Optional[LockManager] = None) -> RecoveryCoordinator:
    return RecoveryCoordinator(
        config,
        state_store=StateStore(config),
        lock_manager=lock_manager or get_lock_manager(),
        diagnostics=DiagnosticsStorage(config.diagnostics_dir),
    )


def build_provider() -> ResourceProvider:
    """Resource provider used by dependency and delete commands."""
    return AWSResourceProvider(aws_profile=config.aws_profile, region=config.region)


def build_deletion_coordinator() -> DeletionCoordinator:
    lock_manager = get_lock_manager()
    recovery = build_recovery(lock_manager)
    return DeletionCoordinator(
        config,
        lock_manager=lock_manager,
        state_store=recovery.state_store,
        recovery=recovery,
        provider=build_provider(),
    )


def parse_resource(key: str) -> ResourceId:
    """Parse a TYPE/NAME argument, exiting with code 1 if invalid."""
    try:
        resource = ResourceId.from_key(key)
        resource.validate()
    except ValueError as e:
        console.print(f"✗ Invalid resource '{key}': {e}", style="bold red")
        console.print("  Expected TYPE/NAME, e.g. AWS::EC2::Volume/vol-0123456789abcdef0", style="yellow")
        raise typer.Exit(code=1)
    return resource


def print_failure(error: OperationFailedError) -> None:
    report = error.report
    console.print(f"✗ {report.message}", style="bold red")
    console.print(f"  Error ID: {report.error_id}", style="yellow")
    console.print(f"  {report.resolution}", style="yellow")
    console.print(f"  Details: cloudguard errors show {report.error_id}", style="dim")


@app.callback()
def main(
    profile: Optional[str] = typer.Option(None, "--profile", "-p", help="AWS profile name"),
    region: Optional[str] = typer.Option(None, "--region", "-r", help="AWS region"),
    config_file: Optional[str] = typer.Option(
        None,
        "--config",
        help="Config file path (default: ~/.cloudguard/config.yaml or $CLOUDGUARD_HOME/config.yaml)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    quiet: bool = typer.Option(False, "--quiet", "-q", help="Suppress output except errors"),
    no_color: bool = typer.Option(False, "--no-color", help="Disable colored output"),
):
    """CloudGuard - Safe, coordinated deletion of cloud resources."""
    global config

    # Load configuration
    try:
        config = Config.load(config_file)
    except ValueError as e:
        console.print(f"✗ Invalid configuration: {e}", style="bold red")
        raise typer.Exit(code=1)

    # Override with CLI options
    if profile:
        config.aws_profile = profile
    if region:
        config.region = region

    config.ensure_directories()

    # Setup logging
    log_level = "ERROR" if quiet else ("DEBUG" if verbose else config.log_level)
    setup_logging(level=log_level, verbose=verbose, log_dir=config.log_dir)

    signal.signal(signal.SIGTERM, _handle_sigterm)

    # Disable colors if requested
    if no_color:
        console.no_color = True


atexit.register(_release_locks_at_exit)


@app.command()
def version():
    """Show version information."""
    import boto3

    from .. import __version__

    console.print(f"cloudguard version {__version__}")
    console.print(f"Python {sys.version.split()[0]}")
    console.print(f"boto3 {boto3.__version__}")


# ============================================================================
# Lock Commands
# ============================================================================

locks_app = typer.Typer(help="Resource lock inspection commands")
app.add_typer(locks_app, name="locks")


@locks_app.command("list")
def locks_list():
    """List held resource locks and whether their owners are still running."""
    try:
        lock_manager = get_lock_manager()
        locks = lock_manager.list_locks()

        if not locks:
            console.print("No locks held.", style="green")
            return

        table = Table(title="Resource Locks", show_header=True, header_style="bold magenta")
        table.add_column("Resource", style="cyan")
        table.add_column("Owner")
        table.add_column("Acquired (UTC)")
        table.add_column("Status")

        for info in locks:
            status = "[red]stale[/red]" if lock_manager.is_stale(info) else "[green]alive[/green]"
            table.add_row(info.resource.key, info.label, info.acquired_at.strftime("%Y-%m-%d %H:%M:%S"), status)

        console.print(table)

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"✗ Error listing locks: {e}", style="bold red")
        logger.exception("Error in locks list command")
        raise typer.Exit(code=2)


@locks_app.command("reclaim")
def locks_reclaim(
    resource_key: str = typer.Argument(..., help="Locked resource (TYPE/NAME)"),
):
    """Remove a lock whose owner is no longer running.

    A lock held by a live process is never removed; stop that process instead.
    """
    resource = parse_resource(resource_key)
    try:
        lock_manager = get_lock_manager()
        holder = lock_manager.get_lock(resource)
        if lock_manager.reclaim_if_stale(resource):
            if holder is None:
                console.print(f"✓ {resource.key} is not locked", style="green")
            else:
                console.print(f"✓ Reclaimed stale lock on {resource.key} from {holder.label}", style="green")
            return

        owner = holder.label if holder else "unknown owner"
        console.print(f"✗ Lock on {resource.key} is held by a running process ({owner})", style="bold red")
        raise typer.Exit(code=1)

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"✗ Error reclaiming lock: {e}", style="bold red")
        logger.exception("Error in locks reclaim command")
        raise typer.Exit(code=2)


# ============================================================================
# State Commands
# ============================================================================

state_app = typer.Typer(help="Resource state document commands")
app.add_typer(state_app, name="state")


@state_app.command("show")
def state_show(
    state_filter: Optional[str] = typer.Option(None, "--state", "-s", help="Only resources in this state"),
    operations: int = typer.Option(10, "--operations", "-n", help="Number of recent operations to show"),
):
    """Show tracked resources and recent operations."""
    try:
        selected = ResourceState(state_filter) if state_filter else None
    except ValueError:
        valid = ", ".join(s.value for s in ResourceState)
        console.print(f"✗ Unknown state '{state_filter}'. Use one of: {valid}", style="bold red")
        raise typer.Exit(code=1)

    try:
        recovery = build_recovery()
        store = recovery.state_store
        records = recovery.run(lambda: store.list_resources(selected), "read state document")

        table = Table(title="Tracked Resources", show_header=True, header_style="bold magenta")
        table.add_column("Resource", style="cyan")
        table.add_column("State")
        table.add_column("Updated (UTC)")
        for record in records:
            updated = record.timestamp.strftime("%Y-%m-%d %H:%M:%S") if record.timestamp else "-"
            table.add_row(record.resource.key, record.state.value, updated)
        console.print(table)

        if operations > 0:
            ops = recovery.run(lambda: store.recent_operations(operations), "read operation log")
            if ops:
                op_table = Table(title="Recent Operations", show_header=True, header_style="bold magenta")
                op_table.add_column("Operation")
                op_table.add_column("Kind")
                op_table.add_column("Resource", style="cyan")
                op_table.add_column("Status")
                op_table.add_column("Error ID")
                for op in ops:
                    op_table.add_row(op.operation_id, op.kind, op.resource_key, op.status.value, op.error_id or "-")
                console.print(op_table)

    except OperationFailedError as e:
        print_failure(e)
        raise typer.Exit(code=2)
    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"✗ Error reading state: {e}", style="bold red")
        logger.exception("Error in state show command")
        raise typer.Exit(code=2)


@state_app.command("validate")
def state_validate(
    repair: bool = typer.Option(False, "--repair", help="Move a corrupt document aside and start a fresh one"),
):
    """Check that the state document is readable."""
    try:
        recovery = build_recovery()
        store = recovery.state_store

        if store.validate():
            console.print(f"✓ State document {store.state_file} is valid", style="green")
            return

        if not repair:
            console.print(f"✗ State document {store.state_file} is corrupt", style="bold red")
            console.print("  Run 'cloudguard state validate --repair' to back it up and reinitialize", style="yellow")
            raise typer.Exit(code=1)

        report = recovery.check_state()
        console.print(f"✓ State document {store.state_file} repaired", style="green")
        if report is not None:
            console.print(f"  Error ID: {report.error_id}", style="yellow")

    except OperationFailedError as e:
        print_failure(e)
        raise typer.Exit(code=2)
    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"✗ Error validating state: {e}", style="bold red")
        logger.exception("Error in state validate command")
        raise typer.Exit(code=2)


# ============================================================================
# Dependency Commands
# ============================================================================

deps_app = typer.Typer(help="Dependency analysis commands")
app.add_typer(deps_app, name="deps")


def show_plan(plan: DeletionPlan) -> None:
    console.print(f"\n🔍 Dependency analysis for [bold]{plan.root.key}[/bold]\n")

    if plan.cycle:
        path = " -> ".join(r.key for r in plan.cycle + plan.cycle[:1])
        console.print(f"✗ Circular dependency: {path}", style="bold red")
    if plan.dangling:
        console.print(f"✗ {len(plan.dangling)} dependency edge(s) could not be resolved", style="bold red")

    if plan.blocking_dependents:
        style = "yellow" if plan.cascade else "bold red"
        console.print(f"Resources that depend on {plan.root.key}:", style=style)
        for dependent in plan.blocking_dependents:
            console.print(f"  • {dependent.key}")

    if plan.targets:
        table = Table(title="Deletion Order", show_header=True, header_style="bold magenta")
        table.add_column("#", justify="right")
        table.add_column("Resource", style="cyan")
        for index, target in enumerate(plan.targets, start=1):
            table.add_row(str(index), target.key)
        console.print(table)

    if plan.is_safe:
        console.print(f"\n✓ {plan.root.key} can be deleted safely", style="green")
    else:
        console.print(f"\n✗ {plan.root.key} cannot be deleted", style="bold red")
        if plan.blocking_dependents and not plan.cascade and not plan.cycle:
            console.print("  Delete the dependents first or use --cascade", style="yellow")


@deps_app.command("check")
def deps_check(
    resource_key: str = typer.Argument(..., help="Resource to analyze (TYPE/NAME)"),
    cascade: bool = typer.Option(False, "--cascade", help="Evaluate deleting dependents too"),
):
    """Show what depends on a resource and whether it can be deleted."""
    resource = parse_resource(resource_key)
    try:
        plan = build_deletion_coordinator().plan(resource, cascade=cascade)
        show_plan(plan)
        if not plan.is_safe:
            raise typer.Exit(code=1)

    except OperationFailedError as e:
        print_failure(e)
        raise typer.Exit(code=2)
    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"✗ Error analyzing dependencies: {e}", style="bold red")
        logger.exception("Error in deps check command")
        raise typer.Exit(code=2)


# ============================================================================
# Delete Command
# ============================================================================


@app.command("delete")
def delete(
    resource_key: str = typer.Argument(..., help="Resource to delete (TYPE/NAME)"),
    cascade: bool = typer.Option(False, "--cascade", help="Also delete resources that depend on it"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show the plan without deleting anything"),
    confirm: bool = typer.Option(False, "--confirm", "-y", help="Skip confirmation prompt"),
):
    """Delete a resource after checking that nothing depends on it.

    WARNING: With --cascade every dependent is deleted first.

    Examples:
        # Preview
        cloudguard delete AWS::EC2::Volume/vol-0123 --dry-run

        # Delete a volume and the instances using it
        cloudguard delete AWS::EC2::Volume/vol-0123 --cascade --confirm
    """
    resource = parse_resource(resource_key)
    try:
        coordinator = build_deletion_coordinator()

        if dry_run:
            plan = coordinator.plan(resource, cascade=cascade)
            show_plan(plan)
            if not plan.is_safe:
                raise typer.Exit(code=1)
            return

        if not confirm:
            console.print()
            if not typer.confirm(f"Delete {resource.key}{' and its dependents' if cascade else ''}?", default=False):
                console.print("Cancelled.")
                raise typer.Exit(code=0)

        result = coordinator.execute(resource, confirmed=True, cascade=cascade)

        for target in result.deleted:
            console.print(f"✓ Deleted {target.key}", style="green")

        if result.status is OperationStatus.COMPLETED:
            console.print(f"\n✓ Operation {result.operation_id} completed", style="green")
            return

        if result.status is OperationStatus.REJECTED:
            console.print(f"✗ {result.reason}", style="bold red")
            console.print("  Nothing was deleted. Use --cascade to delete dependents first.", style="yellow")
            raise typer.Exit(code=1)

        console.print(f"✗ Operation {result.operation_id} {result.status.value}: {result.reason}", style="bold red")
        if result.failed:
            console.print(f"  Failed on: {result.failed.key}", style="yellow")
        if result.error_id:
            console.print(f"  Error ID: {result.error_id}", style="yellow")
            console.print(f"  Details: cloudguard errors show {result.error_id}", style="dim")
        raise typer.Exit(code=2)

    except OperationFailedError as e:
        print_failure(e)
        raise typer.Exit(code=2)
    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"✗ Error deleting resource: {e}", style="bold red")
        logger.exception("Error in delete command")
        raise typer.Exit(code=2)


# ============================================================================
# Error Report Commands
# ============================================================================

errors_app = typer.Typer(help="Error report commands")
app.add_typer(errors_app, name="errors")


@errors_app.command("list")
def errors_list(
    since: Optional[str] = typer.Option(None, "--since", help="Start date (YYYY-MM-DD, UTC)"),
    until: Optional[str] = typer.Option(None, "--until", help="End date (YYYY-MM-DD, UTC, inclusive)"),
    category: Optional[str] = typer.Option(None, "--category", "-c", help="Only reports of this category"),
):
    """List error reports."""
    try:
        since_dt = datetime.strptime(since, "%Y-%m-%d") if since else None
        until_dt = datetime.strptime(until, "%Y-%m-%d").replace(hour=23, minute=59, second=59) if until else None
    except ValueError:
        console.print("✗ Invalid date format. Use YYYY-MM-DD (UTC)", style="bold red")
        raise typer.Exit(code=1)

    try:
        selected = ErrorCategory(category) if category else None
    except ValueError:
        valid = ", ".join(c.value for c in ErrorCategory)
        console.print(f"✗ Unknown category '{category}'. Use one of: {valid}", style="bold red")
        raise typer.Exit(code=1)

    try:
        storage = DiagnosticsStorage(config.diagnostics_dir)
        reports = storage.query_reports(since=since_dt, until=until_dt, category=selected)

        if not reports:
            console.print("No error reports found.", style="green")
            return

        table = Table(title="Error Reports", show_header=True, header_style="bold magenta")
        table.add_column("Error ID", style="cyan")
        table.add_column("Category")
        table.add_column("Context")
        table.add_column("Outcome")
        for data in reports:
            error = data["error"]
            outcome = error.get("terminal_state", "")
            style = "green" if outcome == "succeeded" else "red"
            table.add_row(error["error_id"], error["category"], error.get("context", ""), f"[{style}]{outcome}[/{style}]")
        console.print(table)

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"✗ Error listing error reports: {e}", style="bold red")
        logger.exception("Error in errors list command")
        raise typer.Exit(code=2)


@errors_app.command("show")
def errors_show(
    error_id: str = typer.Argument(..., help="Error ID (ERR-YYYYMMDD-HHMMSS-CCC-NNNN)"),
):
    """Show a full error report."""
    try:
        data = DiagnosticsStorage(config.diagnostics_dir).get_report(error_id)
        if data is None:
            console.print(f"✗ Error report '{error_id}' not found", style="bold red")
            raise typer.Exit(code=1)

        error = data.get("error", {})
        console.print(
            Panel(
                f"[bold]{error.get('message', '')}[/bold]\n\n"
                f"Category: {error.get('category')} ({error.get('code')})\n"
                f"Context: {error.get('context')}\n"
                f"Resource: {error.get('resource') or '-'}\n"
                f"Attempts: {error.get('attempts')}\n"
                f"Recovery: {error.get('recovery_outcome')}\n"
                f"Result: {error.get('terminal_state')}\n\n"
                f"[yellow]{error.get('resolution', '')}[/yellow]",
                title=f"[bold cyan]{error_id}[/bold cyan]",
                border_style="cyan",
                padding=(1, 2),
            )
        )
        console.print(Syntax(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), "yaml"))

    except typer.Exit:
        raise
    except Exception as e:
        console.print(f"✗ Error reading error report: {e}", style="bold red")
        logger.exception("Error in errors show command")
        raise typer.Exit(code=2)


def cli_main():
    """Entry point for console script."""
    app()


if __name__ == "__main__":
    cli_main()
