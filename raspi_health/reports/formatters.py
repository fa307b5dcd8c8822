"""
Report formatters for raspi-health.
Handles multiple output formats: table, json, yaml, executive summary.
"""

import json
import yaml
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional, Union

from rich.console import Console

from .. import __version__
from ..signals.models import Severity


class ReportEncoder(json.JSONEncoder):
    """JSON encoder that handles datetimes and paths."""

    def default(self, obj):
        if isinstance(obj, datetime):
            return obj.isoformat()
        if isinstance(obj, Path):
            return str(obj)
        return super().default(obj)


class ReportFormatter:
    """Main report formatter class that handles multiple output formats."""

    def __init__(self, config, console: Optional[Console] = None):
        self.config = config
        self.console = console or Console()

    def format_run_report(
        self, report, format_type: Optional[str] = None
    ) -> Union[str, None]:
        """
        Format a health check run report in the specified format.

        Args:
            report: RunReport from the health check runner
            format_type: Output format (table, json, yaml, executive)

        Returns:
            Formatted string for file formats, None for console output
        """
        output_format = format_type or self.config.output.format

        if output_format == "json":
            return self._format_json_output(report)
        elif output_format == "yaml":
            return self._format_yaml_output(report)
        elif output_format == "executive":
            return self._format_executive_summary(report)
        else:
            # Default to table (handled by display)
            return None

    def _envelope(self, report) -> Dict[str, Any]:
        return {
            "raspi_health_report": {
                "version": __version__,
                "generated_at": datetime.now().isoformat(),
                **report.to_dict(),
            }
        }

    def _format_json_output(self, report) -> str:
        """Format as JSON for programmatic use."""
        return json.dumps(self._envelope(report), indent=2, cls=ReportEncoder)

    def _format_yaml_output(self, report) -> str:
        """Format as YAML for configuration-style output."""
        return yaml.dump(self._envelope(report), default_flow_style=False, sort_keys=False)

    def _format_executive_summary(self, report) -> str:
        """Plain-text summary suitable for a mail body or a terminal."""
        worst = report.worst_severity
        lines = [
            "RASPBERRY PI HEALTH SUMMARY",
            "=" * 50,
            "",
            f"CHECK: {report.mode}",
            f"GENERATED: {datetime.now().strftime('%B %d, %Y at %I:%M %p')}",
            f"OVERALL: {worst.label.upper()}",
            "",
            "FINDINGS",
            "-" * 25,
        ]

        flagged = [f for f in report.findings if f.severity > Severity.NORMAL]
        if flagged:
            for finding in sorted(flagged, key=lambda f: f.severity, reverse=True):
                lines.append(f"[{finding.severity.label.upper()}] {finding.message}")
        else:
            lines.append("All monitored signals are normal")

        unmonitored = [f for f in report.findings if f.unmonitored]
        if unmonitored:
            lines += ["", "NOT MONITORED ON THIS HOST", "-" * 25]
            lines += [f"• {f.message}" for f in unmonitored]

        if report.service_results:
            restarted = [r for r in report.service_results if r.restart_succeeded is not None]
            if restarted:
                lines += ["", "RECOVERY ACTIONS", "-" * 25]
                for result in restarted:
                    outcome = "restarted" if result.restart_succeeded else "restart FAILED"
                    lines.append(f"• {result.service_name}: {outcome}")

        if report.events:
            lines += ["", "ALERTS", "-" * 25]
            lines += [f"• {event.message}" for event in report.events]

        lines += ["", f"Generated by raspi-health v{__version__}", ""]
        return "\n".join(lines)

    def save_report(self, content: str, filename: Union[str, Path]) -> Path:
        """Save report to file."""
        file_path = Path(filename)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        with open(file_path, "w") as f:
            f.write(content)

        self.console.print(f"[green]Report saved to: {file_path}[/green]")
        return file_path
