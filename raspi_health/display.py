from rich.console import Console
from rich.table import Table
from rich.panel import Panel

from .signals.models import Severity

console = Console()

SEVERITY_STYLES = {
    Severity.NORMAL: "green",
    Severity.WARNING: "yellow",
    Severity.CRITICAL: "bold red",
}


def severity_text(severity, unmonitored=False):
    if unmonitored:
        return "[dim]unmonitored[/dim]"
    style = SEVERITY_STYLES[severity]
    return f"[{style}]{severity.label.upper()}[/{style}]"


def show_findings_table(report):
    """Show every evaluated signal with its severity"""

    table = Table(
        title=f"🩺 Health Check ({report.mode})",
        show_header=True,
        header_style="bold magenta"
    )

    table.add_column("Signal", style="cyan")
    table.add_column("Value", justify="right")
    table.add_column("Severity", justify="center")
    table.add_column("Details", overflow="fold")

    for finding in report.findings:
        signal = finding.kind.value
        if finding.subject:
            signal = f"{signal} [dim]{finding.subject}[/dim]"
        table.add_row(
            signal,
            finding.sample.display_value(),
            severity_text(finding.severity, finding.unmonitored),
            finding.message,
        )

    console.print(table)

    if report.service_results:
        show_service_results(report.service_results)

    worst = report.worst_severity
    style = SEVERITY_STYLES[worst]
    summary = f"""
Overall: [{style}]{worst.label.upper()}[/{style}]
Alerts: {len(report.events)} ({report.dispatch_counts.get('sent', 0)} sent, {report.dispatch_counts.get('logged_only', 0)} logged only)
"""
    console.print(Panel(summary, title="📋 Summary", border_style=style.split()[-1]))


def show_service_results(results):
    """Show recovery actions taken on systemd units"""
    table = Table(title="🔧 Services")
    table.add_column("Unit", style="cyan")
    table.add_column("Was Active", justify="center")
    table.add_column("Action")
    table.add_column("Restarted", justify="center")

    for result in results:
        if result.restart_succeeded is None:
            restarted = "-"
        elif result.restart_succeeded:
            restarted = "[green]yes[/green]"
        else:
            restarted = "[red]no[/red]"
        table.add_row(
            result.service_name,
            "yes" if result.was_active else "[red]no[/red]",
            result.action_taken.value,
            restarted,
        )

    console.print(table)


def show_backups_table(records):
    """List backups in a table"""
    table = Table(title="💾 Backups", show_header=True, header_style="bold magenta")
    table.add_column("ID", style="cyan")
    table.add_column("Kind")
    table.add_column("Size", justify="right", style="green")
    table.add_column("Path", overflow="fold")

    for record in records:
        table.add_row(
            record.id,
            record.kind.value,
            f"{record.size_bytes / (1024 * 1024):,.1f} MiB",
            str(record.path),
        )

    console.print(table)


def show_state_table(entries, updated_at=None):
    """Show the last known severity per signal"""
    title = "📡 Alert State"
    if updated_at:
        title += f" (updated {updated_at})"
    table = Table(title=title)
    table.add_column("Signal", style="cyan")
    table.add_column("Severity", justify="center")
    table.add_column("Since")
    table.add_column("Message", overflow="fold")

    for key, entry in sorted(entries.items()):
        table.add_row(key, severity_text(entry.severity), entry.since, entry.message)

    console.print(table)


def show_success(message):
    """Show success message in green box"""
    panel = Panel(
        f"✅ {message}",
        title="Success",
        border_style="green"
    )
    console.print(panel)
