"""
Notification sinks for alert delivery.

A sink either accepts a message or raises ``NotificationError``; the
dispatcher decides what a failure means for the run. ``MultiSink`` also
reports the channels that failed while another one delivered.
"""

import logging
import socket
from typing import List, Optional

import httpx

from ..utils.config import AlertConfig
from ..utils.errors import CommandUnavailableError, NotificationError
from ..utils.system import CommandRunner

logger = logging.getLogger(__name__)


class NotificationSink:
    """Base class for alert channels."""

    name = "sink"

    def send(self, subject: str, message: str, severity: str) -> Optional[List[str]]:
        """
        Deliver one alert.

        Returns the channels that failed when the message still got through
        another one, otherwise None.

        Raises:
            NotificationError: the message was not delivered anywhere
        """
        raise NotImplementedError


class WebhookSink(NotificationSink):
    """POSTs a JSON payload to a webhook (ntfy, Gotify, Home Assistant, ...)."""

    name = "webhook"

    def __init__(self, url: str, timeout: float = 10.0, hostname: Optional[str] = None):
        self.url = url
        self.timeout = timeout
        self.hostname = hostname or socket.gethostname()

    def send(self, subject: str, message: str, severity: str) -> None:
        payload = {
            "title": subject,
            "message": message,
            "severity": severity,
            "host": self.hostname,
        }
        try:
            response = httpx.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NotificationError(
                f"Webhook returned {e.response.status_code}: {e.response.text[:200]}"
            )
        except httpx.HTTPError as e:
            raise NotificationError(f"Webhook unreachable: {e}")
        except httpx.InvalidURL as e:
            raise NotificationError(f"Invalid webhook URL: {e}")


class MailSink(NotificationSink):
    """Sends mail through the local ``mail`` command (mailutils + ssmtp)."""

    name = "email"

    def __init__(self, address: str, runner: Optional[CommandRunner] = None, timeout: float = 30.0):
        self.address = address
        self.runner = runner or CommandRunner()
        self.timeout = timeout

    def send(self, subject: str, message: str, severity: str) -> None:
        try:
            result = self.runner.run(
                ["mail", "-s", subject, self.address],
                timeout=self.timeout,
                input_text=message + "\n",
            )
        except CommandUnavailableError:
            raise NotificationError("mail command not installed")
        except OSError as e:
            raise NotificationError(f"mail command could not run: {e}")
        if not result.ok:
            reason = "timed out" if result.timed_out else result.stderr.strip()
            raise NotificationError(f"mail to {self.address} failed: {reason}")


class MultiSink(NotificationSink):
    """Fans out to several sinks; succeeds if any of them accepted the message."""

    name = "multi"

    def __init__(self, sinks):
        self.sinks = list(sinks)

    def send(self, subject: str, message: str, severity: str) -> Optional[List[str]]:
        errors = []
        for sink in self.sinks:
            try:
                sink.send(subject, message, severity)
            except NotificationError as e:
                errors.append(f"{sink.name}: {e}")
        if len(errors) == len(self.sinks):
            raise NotificationError("; ".join(errors))
        return errors or None


def build_sink(config: AlertConfig, runner: Optional[CommandRunner] = None) -> Optional[NotificationSink]:
    """The configured channel, or None when alerts are off or unconfigured."""
    if not config.enabled:
        return None

    sinks = []
    if config.webhook_url:
        sinks.append(WebhookSink(config.webhook_url, timeout=config.timeout_seconds))
    if config.email:
        sinks.append(MailSink(config.email, runner=runner, timeout=config.timeout_seconds))

    if not sinks:
        return None
    if len(sinks) == 1:
        return sinks[0]
    return MultiSink(sinks)
