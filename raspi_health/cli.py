"""
CLI interface for raspi-health.
Health checks, recovery and backups for a Raspberry Pi home server.
"""

import click
import sys
from pathlib import Path
from typing import Optional, Sequence

from rich.console import Console
from rich.prompt import Confirm
from rich.table import Table

from . import __version__
from .core import installer
from .core.alerts import AlertDispatcher
from .core.backup import BackupManager
from .core.health_check import (
    FULL_CHECK_KINDS,
    TEMPERATURE_CHECK_KINDS,
    HealthCheckRunner,
    RunReport,
)
from .core.notifier import build_sink
from .core.recovery import RecoveryController
from .display import (
    show_backups_table,
    show_findings_table,
    show_state_table,
    show_success,
)
from .reports.formatters import ReportFormatter
from .signals.collector import SignalCollector
from .signals.models import Severity, SignalKind
from .utils.config import HealthConfig, load_config
from .utils.errors import (
    ConfigurationError,
    HealthError,
    LockHeldError,
    ThresholdBreachError,
    exit_code_for,
    handle_error,
)
from .utils.lock import RunLock
from .utils.logger import OperationLogger, setup_logger, tail_log
from .utils.state import AlertStateStore
from .utils.system import ServiceManager, install_termination_handler

# Global console for rich output
console = Console()

BACKUP_COMMANDS = {"backup", "image"}
HEALTH_COMMANDS = {"check", "temp-check", "install"}
EXIT_INTERRUPTED = 130


# Context object to pass data between commands
class HealthContext:
    def __init__(self):
        self.config: Optional[HealthConfig] = None
        self.logger = None
        self.verbose: bool = False
        self.dry_run: bool = False


@click.group()
@click.option(
    '--config', '-c',
    type=click.Path(exists=True, path_type=Path),
    help='Path to configuration file'
)
@click.option(
    '--verbose', '-v',
    is_flag=True,
    help='Enable verbose output'
)
@click.option(
    '--quiet', '-q',
    is_flag=True,
    help='Suppress all output except warnings and errors'
)
@click.option(
    '--dry-run',
    is_flag=True,
    help='Check and report without restarting services, notifying or writing state'
)
@click.option(
    '--output-format',
    type=click.Choice(['table', 'json', 'yaml', 'executive'], case_sensitive=False),
    help='Output format'
)
@click.option(
    '--no-color',
    is_flag=True,
    help='Disable colored output'
)
@click.pass_context
def cli(ctx, config, verbose, quiet, dry_run, output_format, no_color):
    """
    🩺 raspi-health - Raspberry Pi health monitor

    Hardware, disk, network and service checks with alerting, automatic
    service recovery and configuration backups.

    Examples:
      raspi-health check                     # Full health check
      raspi-health temp-check                # Temperature/throttling only
      raspi-health --output-format json check
      raspi-health backup                    # Configuration snapshot
      sudo raspi-health install              # Schedule checks via cron
    """
    ctx.ensure_object(HealthContext)

    try:
        app_config = load_config(config)

        # Override config with CLI options
        if output_format:
            app_config.output.format = output_format.lower()
        if no_color:
            app_config.output.color = False
        if verbose:
            app_config.output.verbose = True
        if quiet:
            app_config.output.quiet = True

        log_file = None
        if ctx.invoked_subcommand in BACKUP_COMMANDS:
            log_file = app_config.paths.backup_log
        elif ctx.invoked_subcommand in HEALTH_COMMANDS:
            log_file = app_config.paths.health_log

        try:
            logger = setup_logger(
                verbose=app_config.output.verbose,
                quiet=app_config.output.quiet,
                log_file=log_file,
            )
        except ConfigurationError as e:
            # Unwritable log directory, console only
            logger = setup_logger(
                verbose=app_config.output.verbose,
                quiet=app_config.output.quiet,
            )
            logger.warning(f"{e}; logging to console only")

        # Configure rich console
        if not app_config.output.color:
            console.no_color = True

        ctx.obj.config = app_config
        ctx.obj.logger = logger
        ctx.obj.verbose = app_config.output.verbose
        ctx.obj.dry_run = dry_run

    except Exception as e:
        handle_error(e, verbose)
        sys.exit(exit_code_for(e))


def _build_collector(config: HealthConfig) -> SignalCollector:
    return SignalCollector(config)


def _build_service_manager(config: HealthConfig) -> ServiceManager:
    return ServiceManager()


def _build_sink(config: HealthConfig):
    return build_sink(config.alerts)


def _run_health_check(ctx, kinds: Sequence[SignalKind], mode: str) -> RunReport:
    """Run a check under the run lock and persist alert state."""
    config = ctx.obj.config
    logger = ctx.obj.logger
    dry_run = ctx.obj.dry_run

    install_termination_handler()
    try:
        with RunLock(config.paths.lock_file):
            store = AlertStateStore(config.paths.state_file)
            dispatcher = AlertDispatcher(
                store,
                sink=_build_sink(config),
                subject_prefix=config.alerts.subject_prefix,
                dry_run=dry_run,
            )
            recovery = RecoveryController(
                _build_service_manager(config), dispatcher, dry_run=dry_run
            )
            runner = HealthCheckRunner(config, _build_collector(config), dispatcher, recovery)

            with OperationLogger(logger, f"{mode} health check"):
                report = runner.run(kinds, mode=mode)

            if not dry_run:
                store.save()

    except LockHeldError as e:
        logger.warning(f"SUMMARY {mode}: skipped, {e}")
        handle_error(e, ctx.obj.verbose)
        sys.exit(e.exit_code)
    except KeyboardInterrupt:
        logger.warning(f"SUMMARY {mode}: interrupted")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        logger.error(f"SUMMARY {mode}: aborted, {e}")
        handle_error(e, ctx.obj.verbose)
        sys.exit(exit_code_for(e))

    return report


def _render_report(ctx, report: RunReport, export_file: Optional[str]) -> None:
    config = ctx.obj.config
    output_format = config.output.format
    formatter = ReportFormatter(config, console)

    if output_format == 'table':
        if not config.output.quiet:
            show_findings_table(report)
    else:
        content = formatter.format_run_report(report, output_format)
        if content:
            click.echo(content)

    if export_file:
        export_format = output_format if output_format != 'table' else 'json'
        content = formatter.format_run_report(report, export_format)
        formatter.save_report(content, export_file)


def _exit_for_report(ctx, report: RunReport) -> None:
    critical = report.unresolved_critical
    if critical:
        error = ThresholdBreachError(
            f"{len(critical)} critical finding(s) unresolved after recovery",
            severity=Severity.CRITICAL,
        )
        handle_error(error, ctx.obj.verbose)
        sys.exit(error.exit_code)


@cli.command('check')
@click.option('--export', 'export_file', help='Write the report to a file (json unless --output-format says otherwise)')
@click.pass_context
def check(ctx, export_file):
    """Run the full health check with alerting and service recovery."""
    report = _run_health_check(ctx, FULL_CHECK_KINDS, mode="check")
    _render_report(ctx, report, export_file)
    _exit_for_report(ctx, report)


@cli.command('temp-check')
@click.option('--export', 'export_file', help='Write the report to a file')
@click.pass_context
def temp_check(ctx, export_file):
    """Check temperature, throttling and voltages only."""
    report = _run_health_check(ctx, TEMPERATURE_CHECK_KINDS, mode="temp-check")
    _render_report(ctx, report, export_file)
    _exit_for_report(ctx, report)


@cli.command('backup')
@click.pass_context
def backup(ctx):
    """Create a configuration snapshot and prune old ones."""
    config = ctx.obj.config
    logger = ctx.obj.logger
    manager = BackupManager(config.backup)

    if ctx.obj.dry_run:
        table = Table(title="💾 Configuration snapshot (dry-run)")
        table.add_column("Path", style="cyan")
        table.add_column("Present", justify="center")
        for entry in config.backup.config_paths:
            present = Path(entry).exists()
            table.add_row(entry, "[green]yes[/green]" if present else "[dim]no[/dim]")
        console.print(table)
        console.print(f"[dim]Destination: {config.backup.destination}, retention {config.backup.retention_days} days[/dim]")
        return

    install_termination_handler()
    try:
        with RunLock(config.paths.lock_file):
            with OperationLogger(logger, "configuration backup"):
                record = manager.create_config_snapshot()
    except KeyboardInterrupt:
        logger.warning("SUMMARY backup: interrupted")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        logger.error(f"SUMMARY backup: failed, {e}")
        handle_error(e, ctx.obj.verbose)
        sys.exit(exit_code_for(e))

    logger.info(f"SUMMARY backup: {record.path.name} ({record.size_bytes} bytes)")
    if not config.output.quiet:
        show_success(f"Configuration backup created: {record.path}")


@cli.command('image')
@click.option('--device', help='Block device to image (default: the root device)')
@click.option('--yes', '-y', is_flag=True, help='Do not ask for confirmation')
@click.pass_context
def image(ctx, device, yes):
    """Create a full compressed image of the SD card (slow)."""
    config = ctx.obj.config
    logger = ctx.obj.logger
    manager = BackupManager(config.backup)

    console.print("[yellow]⚠️  This creates a full block-level image. It needs significant space and time.[/yellow]")
    console.print("[dim]An interrupted image is discarded and must be restarted from scratch.[/dim]")

    if ctx.obj.dry_run:
        console.print(f"[yellow]Dry-run: would image {device or 'the root device'} into {config.backup.destination}[/yellow]")
        return

    if not yes and not Confirm.ask("Continue?", default=False):
        console.print("[dim]Cancelled[/dim]")
        return

    install_termination_handler()
    try:
        with RunLock(config.paths.lock_file):
            with OperationLogger(logger, "full image backup", device):
                record = manager.create_full_image(device=device)
    except KeyboardInterrupt:
        logger.warning("SUMMARY image: interrupted, partial image removed")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as e:
        logger.error(f"SUMMARY image: failed, {e}")
        handle_error(e, ctx.obj.verbose)
        sys.exit(exit_code_for(e))

    logger.info(f"SUMMARY image: {record.path.name} ({record.size_bytes} bytes)")
    show_success(f"Image created: {record.path}")


@cli.command('install')
@click.option('--cron-file', type=click.Path(path_type=Path), default=installer.DEFAULT_CRON_FILE, show_default=True)
@click.option('--logrotate-file', type=click.Path(path_type=Path), default=installer.DEFAULT_LOGROTATE_FILE, show_default=True)
@click.pass_context
def install(ctx, cron_file, logrotate_file):
    """Schedule checks and backups via cron and set up log rotation."""
    config = ctx.obj.config
    logger = ctx.obj.logger

    try:
        results = installer.install(
            config,
            cron_file=cron_file,
            logrotate_file=logrotate_file,
            dry_run=ctx.obj.dry_run,
        )
    except OSError as e:
        logger.error(f"SUMMARY install: failed, {e}")
        handle_error(HealthError(f"Install failed (run with sudo?): {e}"), ctx.obj.verbose)
        sys.exit(1)

    table = Table(title="⚙️  Scheduled monitoring")
    table.add_column("File", style="cyan")
    table.add_column("Status")
    for result in results:
        if ctx.obj.dry_run:
            status = "[yellow]would change[/yellow]" if result.changed else "up to date"
        else:
            status = "[green]written[/green]" if result.changed else "unchanged"
        table.add_row(str(result.path), status)
    console.print(table)

    changed = sum(1 for r in results if r.changed)
    logger.info(f"SUMMARY install: {changed} file(s) changed")


@cli.command('status')
@click.option('--lines', '-n', default=20, show_default=True, help='Health log lines to show')
@click.pass_context
def status(ctx, lines):
    """Show the last known severity per signal and recent log lines."""
    config = ctx.obj.config

    store = AlertStateStore(config.paths.state_file)
    entries = store.entries()
    if entries:
        show_state_table(entries, store.updated_at)
    else:
        console.print("[green]✅ No signal is in warning or critical state[/green]")

    recent = tail_log(config.paths.health_log, lines)
    if recent:
        console.print(f"\n[bold]Last {len(recent)} lines of {config.paths.health_log}:[/bold]")
        for line in recent:
            console.print(line, markup=False, highlight=False)


@cli.command('backups')
@click.pass_context
def backups(ctx):
    """List configuration snapshots and images."""
    config = ctx.obj.config
    manager = BackupManager(config.backup)

    records = manager.list_backups()
    if records:
        show_backups_table(records)
    else:
        console.print(f"[dim]No backups in {config.backup.destination}[/dim]")

    for leftover in manager.salvageable_snapshots():
        console.print(f"[yellow]⚠️  Uncompressed snapshot from a failed run: {leftover}[/yellow]")


@cli.command('version')
def version():
    """Show version information."""
    console.print(f"[bold]raspi-health[/bold] v{__version__}")


def main():
    cli(obj=HealthContext())


if __name__ == "__main__":
    main()
