"""
Provision scheduled triggers and log rotation for raspi-health.

Re-running is safe: files are only rewritten when their content changes.
"""

import logging
import os
import shutil
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from ..utils.config import HealthConfig

logger = logging.getLogger(__name__)

DEFAULT_CRON_FILE = Path("/etc/cron.d/raspi-health")
DEFAULT_LOGROTATE_FILE = Path("/etc/logrotate.d/raspi-health")

CRON_TEMPLATE = """\
# raspi-health: managed file, changes are overwritten by `raspi-health install`
SHELL=/bin/bash
PATH=/usr/local/sbin:/usr/local/bin:/sbin:/bin:/usr/sbin:/usr/bin

# Full health check every hour
0 * * * * root {command} --quiet check

# Temperature check every 15 minutes
*/15 * * * * root {command} --quiet temp-check

# Configuration backup weekly (Sunday 2 AM)
0 2 * * 0 root {command} --quiet backup
"""

LOGROTATE_TEMPLATE = """\
{log_dir}/*.log {{
    daily
    rotate 7
    compress
    delaycompress
    missingok
    notifempty
    create 0644 root root
}}
"""


@dataclass
class InstallResult:
    path: Path
    changed: bool


def resolve_command() -> str:
    """Absolute path of the raspi-health entry point for cron."""
    found = shutil.which("raspi-health")
    if found:
        return found
    return f"{sys.executable} -m raspi_health.cli"


def render_cron(command: str, config_file: Optional[Path] = None) -> str:
    if config_file:
        command = f"{command} --config {Path(config_file).resolve()}"
    return CRON_TEMPLATE.format(command=command)


def render_logrotate(log_dir: Path) -> str:
    return LOGROTATE_TEMPLATE.format(log_dir=str(log_dir).rstrip("/"))


def write_if_changed(path: Path, content: str, mode: int = 0o644) -> bool:
    """Atomically write ``content`` unless the file already holds it."""
    path = Path(path)
    if path.exists() and path.read_text() == content:
        return False

    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(content)
    os.chmod(tmp, mode)
    os.replace(tmp, path)
    return True


def install(
    config: HealthConfig,
    cron_file: Path = DEFAULT_CRON_FILE,
    logrotate_file: Path = DEFAULT_LOGROTATE_FILE,
    command: Optional[str] = None,
    dry_run: bool = False,
) -> List[InstallResult]:
    """Write the cron schedule and logrotate policy."""
    command = command or resolve_command()
    planned = [
        (Path(cron_file), render_cron(command, config.config_file)),
        (Path(logrotate_file), render_logrotate(config.paths.log_dir)),
    ]

    results = []
    for path, content in planned:
        if dry_run:
            current = path.read_text() if path.exists() else None
            results.append(InstallResult(path=path, changed=current != content))
            continue
        changed = write_if_changed(path, content)
        logger.info(f"{'Wrote' if changed else 'Unchanged'}: {path}")
        results.append(InstallResult(path=path, changed=changed))

    if not dry_run:
        config.paths.log_dir.mkdir(parents=True, exist_ok=True)
    return results
