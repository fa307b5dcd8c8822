"""
Custom exceptions and error handling for raspi-health.
Each error carries the exit code the CLI returns for it.
"""

from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.panel import Panel

console = Console(stderr=True)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CRITICAL = 2
EXIT_LOCK_HELD = 75  # EX_TEMPFAIL: the scheduler will simply try again


class HealthError(Exception):
    """Base exception for raspi-health."""

    exit_code = EXIT_ERROR


class SensorUnavailableError(HealthError):
    """A sensor, pseudo-file or probing tool is not present on this host."""

    pass


class CommandUnavailableError(SensorUnavailableError):
    """An external command is not installed or not on PATH."""

    def __init__(self, command: str):
        super().__init__(f"Command not available: {command}")
        self.command = command


class ThresholdBreachError(HealthError):
    """One or more findings remain at warning or critical severity."""

    exit_code = EXIT_CRITICAL

    def __init__(self, message: str, severity=None):
        super().__init__(message)
        self.severity = severity


class ServiceDownError(HealthError):
    """A monitored systemd unit is not active."""

    pass


class RestartFailedError(HealthError):
    """A restart of an inactive unit did not bring it back."""

    pass


class NetworkUnreachableError(HealthError):
    """A network probe target could not be reached."""

    pass


class DnsFailureError(HealthError):
    """Name resolution failed."""

    pass


class BackupDestinationMissingError(HealthError):
    """The backup destination does not exist and could not be created."""

    pass


class BackupWriteFailedError(HealthError):
    """Writing a backup artifact failed."""

    def __init__(self, message: str, salvage_path: Optional[Path] = None):
        super().__init__(message)
        self.salvage_path = salvage_path


class LockHeldError(HealthError):
    """Another raspi-health run holds the run lock."""

    exit_code = EXIT_LOCK_HELD

    def __init__(self, lock_path: Path, holder_pid: Optional[int] = None):
        message = f"Another run is already in progress (lock: {lock_path}"
        if holder_pid:
            message += f", pid {holder_pid}"
        super().__init__(message + ")")
        self.lock_path = lock_path
        self.holder_pid = holder_pid


class NotificationError(HealthError):
    """The notification channel rejected or could not receive a message."""

    pass


class ConfigurationError(HealthError):
    """Configuration file or settings error."""

    pass


class ValidationError(HealthError):
    """Input validation error."""

    pass


def handle_error(error: Exception, verbose: bool = False):
    """Handle errors with user-friendly messages and actionable suggestions."""

    if isinstance(error, LockHeldError):
        _handle_lock_held(error)

    elif isinstance(error, BackupDestinationMissingError):
        _handle_destination_missing(error)

    elif isinstance(error, BackupWriteFailedError):
        _handle_backup_write_failed(error)

    elif isinstance(error, ThresholdBreachError):
        _handle_threshold_breach(error)

    elif isinstance(error, ValidationError):
        _handle_validation_error(error)

    elif isinstance(error, ConfigurationError):
        _handle_configuration_error(error)

    elif isinstance(error, HealthError):
        console.print(f"[red]❌ {type(error).__name__}:[/red] {error}")

    else:
        _handle_generic_error(error, verbose)


def exit_code_for(error: Exception) -> int:
    """Map an exception to the process exit code."""
    return getattr(error, "exit_code", EXIT_ERROR)


def _handle_lock_held(error: LockHeldError):
    """Explain an overlapping run."""
    error_panel = f"""[yellow]⏳ Already running[/yellow]

{error}

[yellow]💡 What this means:[/yellow]
  • A scheduled check or backup is still in progress
  • This run exited without touching alert state or backups
  • The next scheduled trigger will try again

[dim]If no run is active, the lock is released automatically when its holder exits.[/dim]"""

    console.print(Panel(error_panel, title="🔒 Run Lock", border_style="yellow"))


def _handle_destination_missing(error: BackupDestinationMissingError):
    """Handle a missing backup destination."""
    error_panel = f"""[red]❌ Backup Destination Unavailable[/red]

{error}

[yellow]💡 Quick Fixes:[/yellow]
  [bold]1. Check the backup drive is mounted:[/bold]
     findmnt /mnt/backup
  [bold]2. Point the config at another location:[/bold]
     backup:
       destination: /path/to/backups
  [bold]3. Or override for one run:[/bold]
     export RASPI_HEALTH_BACKUP_DESTINATION=/path/to/backups

[dim]No backup was written.[/dim]"""

    console.print(Panel(error_panel, title="💾 Backup", border_style="red"))


def _handle_backup_write_failed(error: BackupWriteFailedError):
    """Handle a failed backup write, pointing at salvageable data."""
    lines = [f"[red]❌ Backup Write Failed[/red]", "", str(error)]
    if error.salvage_path:
        lines += [
            "",
            "[yellow]💡 Uncompressed snapshot kept for manual recovery:[/yellow]",
            f"  [bold]{error.salvage_path}[/bold]",
        ]
    lines += ["", "[dim]Check free space on the backup destination and retry.[/dim]"]
    console.print(Panel("\n".join(lines), title="💾 Backup", border_style="red"))


def _handle_threshold_breach(error: ThresholdBreachError):
    """Summarise unresolved critical findings."""
    console.print(f"[red]🔥 {error}[/red]")
    console.print("[yellow]💡 Review the findings above and the health log[/yellow]")


def _handle_validation_error(error: ValidationError):
    """Handle validation errors."""
    console.print(f"[red]❌ Invalid Input:[/red] {error}")
    console.print("[yellow]💡 Check your parameters and try again[/yellow]")


def _handle_configuration_error(error: ConfigurationError):
    """Handle configuration errors."""
    console.print(f"[red]❌ Configuration Error:[/red] {error}")
    console.print(
        "[yellow]💡 Check your config file (raspi-health.yaml) or RASPI_HEALTH_* variables[/yellow]"
    )


def _handle_generic_error(error: Exception, verbose: bool):
    """Handle unexpected errors."""
    console.print(f"[red]❌ Unexpected Error:[/red] {error}")
    if verbose:
        console.print_exception()
    else:
        console.print("[dim]Use --verbose for detailed error information[/dim]")


def validate_retention_days(days: int) -> int:
    """Validate the backup retention window."""
    if not isinstance(days, int) or isinstance(days, bool):
        raise ValidationError("Retention days must be an integer")

    if days < 1:
        raise ValidationError("Retention days must be at least 1")

    if days > 3650:
        raise ValidationError("Retention days cannot exceed 3650")

    return days


def validate_probe_targets(targets) -> list:
    """Reachability needs at least two independent endpoints."""
    if targets is not None and not isinstance(targets, (list, tuple)):
        raise ValidationError("Network probe targets must be a list of hosts")
    cleaned = [str(t).strip() for t in (targets or []) if str(t).strip()]
    if len(set(cleaned)) < 2:
        raise ValidationError(
            "At least two distinct network probe targets are required"
        )
    return cleaned
