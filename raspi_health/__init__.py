"""
raspi-health - health monitoring, recovery and backups for a Raspberry Pi home server.

Checks temperature, throttling, disks, network and services on a schedule,
alerts on severity changes, restarts failed units once per run and keeps
rotating configuration backups.
"""

__version__ = "0.1.0"

from .utils.config import HealthConfig, load_config

__all__ = ["HealthConfig", "load_config", "__version__"]
