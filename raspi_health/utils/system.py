"""
Thin wrappers around the host tools raspi-health depends on.

Every call here is fallible: commands may be missing, time out or fail.
Callers decide whether a failure is absorbed or escalated.
"""

import logging
import shutil
import signal
import subprocess
from dataclasses import dataclass
from typing import List, Optional, Sequence

from .errors import CommandUnavailableError

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT = 30.0


@dataclass
class CommandResult:
    """Outcome of one external command."""

    args: Sequence[str]
    returncode: Optional[int]
    stdout: str = ""
    stderr: str = ""
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.timed_out


class CommandRunner:
    """Runs external commands with a bounded timeout."""

    def __init__(self, default_timeout: float = DEFAULT_COMMAND_TIMEOUT):
        self.default_timeout = default_timeout

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    def run(
        self,
        args: Sequence[str],
        timeout: Optional[float] = None,
        input_text: Optional[str] = None,
    ) -> CommandResult:
        """
        Run a command and capture its output.

        Raises:
            CommandUnavailableError: the executable does not exist
        """
        timeout = self.default_timeout if timeout is None else timeout
        try:
            proc = subprocess.run(
                list(args),
                capture_output=True,
                text=True,
                timeout=timeout,
                input=input_text,
                check=False,
            )
        except FileNotFoundError:
            raise CommandUnavailableError(args[0])
        except subprocess.TimeoutExpired as e:
            logger.debug(f"Command timed out after {timeout}s: {' '.join(args)}")
            return CommandResult(
                args=args,
                returncode=None,
                stdout=_as_text(e.stdout),
                stderr=_as_text(e.stderr),
                timed_out=True,
            )

        return CommandResult(
            args=args,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )


def _as_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bytes):
        return value.decode(errors="replace")
    return value


class ServiceManager:
    """systemd unit queries and restarts via ``systemctl``."""

    def __init__(self, runner: Optional[CommandRunner] = None, timeout: float = 60.0):
        self.runner = runner or CommandRunner()
        self.timeout = timeout

    def is_installed(self, unit: str) -> bool:
        result = self.runner.run(
            ["systemctl", "list-unit-files", "--no-legend", unit], timeout=self.timeout
        )
        return result.ok and any(
            line.split()[0] == unit for line in result.stdout.splitlines() if line.strip()
        )

    def is_active(self, unit: str) -> bool:
        result = self.runner.run(
            ["systemctl", "is-active", "--quiet", unit], timeout=self.timeout
        )
        return result.ok

    def restart(self, unit: str) -> bool:
        result = self.runner.run(["systemctl", "restart", unit], timeout=self.timeout)
        if not result.ok:
            logger.debug(f"systemctl restart {unit} failed: {result.stderr.strip()}")
        return result.ok


class ContainerRuntime:
    """Read-only container queries via the ``docker`` CLI."""

    def __init__(self, runner: Optional[CommandRunner] = None, timeout: float = 30.0):
        self.runner = runner or CommandRunner()
        self.timeout = timeout

    def exited_containers(self) -> List[str]:
        """
        Names of containers in the ``exited`` state.

        Raises:
            CommandUnavailableError: docker is missing or not accessible
        """
        result = self.runner.run(
            [
                "docker",
                "ps",
                "-a",
                "--filter",
                "status=exited",
                "--format",
                "{{.Names}}",
            ],
            timeout=self.timeout,
        )
        if not result.ok:
            raise CommandUnavailableError("docker")
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt(f"terminated by signal {signum}")


def install_termination_handler() -> None:
    """Turn SIGTERM into KeyboardInterrupt so partial artifacts get cleaned up."""
    signal.signal(signal.SIGTERM, _raise_interrupt)
