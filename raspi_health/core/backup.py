"""
Backup lifecycle: configuration snapshots, retention pruning and full images.

Artifacts are written under a temporary name and renamed only once complete,
so nothing ever sees a partial archive or image under its final name.
"""

import gzip
import hashlib
import logging
import os
import re
import shutil
import tarfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional

from ..signals.models import BackupKind, BackupRecord
from ..utils.config import BackupConfig
from ..utils.errors import (
    BackupDestinationMissingError,
    BackupWriteFailedError,
    CommandUnavailableError,
)
from ..utils.system import CommandRunner

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"
CONFIG_PREFIX = "config_backup_"
IMAGE_PREFIX = "raspi_backup_"
IMAGE_CHUNK_SIZE = 4 * 1024 * 1024  # dd bs=4M
PARTIAL_SUFFIX = ".partial"

_ARCHIVE_RE = re.compile(r"^config_backup_(\d{8}_\d{6})\.tar\.gz$")
_WORKDIR_RE = re.compile(r"^config_backup_(\d{8}_\d{6})$")
_IMAGE_RE = re.compile(r"^raspi_backup_(\d{8}_\d{6})\.img\.gz$")
_PARTITIONED_RE = re.compile(r"^(/dev/(?:mmcblk|nvme\d+n|loop)\d+)p\d+$")


def base_device(source: str) -> str:
    """Strip the partition suffix: /dev/mmcblk0p2 -> /dev/mmcblk0, /dev/sda1 -> /dev/sda."""
    match = _PARTITIONED_RE.match(source)
    if match:
        return match.group(1)
    return re.sub(r"\d+$", "", source)


class _HashingWriter:
    """File wrapper that hashes every byte written through it."""

    def __init__(self, raw, digest):
        self.raw = raw
        self.digest = digest

    def write(self, data) -> int:
        self.digest.update(data)
        return self.raw.write(data)

    def flush(self) -> None:
        self.raw.flush()


class BackupManager:
    """Creates, lists and prunes backups in the configured destination."""

    def __init__(self, config: BackupConfig, runner: Optional[CommandRunner] = None):
        self.config = config
        self.destination = Path(config.destination)
        self.runner = runner or CommandRunner()

    def ensure_destination(self) -> Path:
        """
        Make sure the destination exists.

        Raises:
            BackupDestinationMissingError: it is missing and cannot be created
        """
        if self.destination.is_dir():
            return self.destination

        logger.warning(f"Backup destination {self.destination} does not exist, creating it")
        try:
            self.destination.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise BackupDestinationMissingError(
                f"Failed to create backup destination {self.destination}: {e}"
            )
        return self.destination

    # --- Config snapshots ---

    def create_config_snapshot(self, now: Optional[datetime] = None) -> BackupRecord:
        """Copy the allowlist, compress it, then prune old snapshots."""
        self.ensure_destination()
        now = now or datetime.now()
        stamp = now.strftime(TIMESTAMP_FORMAT)
        workdir = self.destination / f"{CONFIG_PREFIX}{stamp}"
        archive = self.destination / f"{CONFIG_PREFIX}{stamp}.tar.gz"

        for leftover in self.salvageable_snapshots():
            logger.warning(f"Uncompressed snapshot from an earlier failed run kept at {leftover}")

        if workdir.exists() or archive.exists():
            raise BackupWriteFailedError(f"Backup {stamp} already exists in {self.destination}")

        logger.info(f"Creating configuration backup at {workdir}...")
        try:
            workdir.mkdir()
        except OSError as e:
            raise BackupWriteFailedError(f"Cannot create {workdir}: {e}")

        copied = self._copy_allowlist(workdir)
        if self.config.include_package_list:
            self._write_package_list(workdir)
        logger.info(f"Copied {copied} configuration entries")

        logger.info("Compressing backup...")
        self._compress(workdir, archive)
        shutil.rmtree(workdir)
        logger.info(f"Backup compressed successfully: {archive}")

        record = BackupRecord(
            id=stamp,
            kind=BackupKind.CONFIG,
            path=archive,
            size_bytes=archive.stat().st_size,
            created_at=datetime.strptime(stamp, TIMESTAMP_FORMAT),
        )

        self.prune(now)
        return record

    def _copy_allowlist(self, workdir: Path) -> int:
        copied = 0
        for entry in self.config.config_paths:
            source = Path(entry)
            if not source.exists():
                logger.debug(f"Skipping missing {source}")
                continue

            target = workdir / source.relative_to(source.anchor)
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                if source.is_dir():
                    shutil.copytree(source, target, symlinks=True)
                else:
                    shutil.copy2(source, target)
            except (OSError, shutil.Error) as e:
                logger.warning(f"Failed to backup: {source} ({e})")
                continue

            logger.info(f"Backed up: {source}")
            copied += 1
        return copied

    def _write_package_list(self, workdir: Path) -> None:
        try:
            result = self.runner.run(["dpkg", "--get-selections"], timeout=60)
        except CommandUnavailableError:
            logger.debug("dpkg not available, skipping package list")
            return
        if not result.ok:
            logger.warning("Could not list installed packages")
            return
        try:
            (workdir / "installed_packages.txt").write_text(result.stdout)
        except OSError as e:
            raise BackupWriteFailedError(
                f"Writing package list failed: {e}", salvage_path=workdir
            ) from e

    def _compress(self, workdir: Path, archive: Path) -> None:
        partial = archive.with_name(f".{archive.name}{PARTIAL_SUFFIX}")
        try:
            with tarfile.open(partial, "w:gz") as tar:
                tar.add(str(workdir), arcname=workdir.name)
            os.replace(partial, archive)
        except (OSError, tarfile.TarError) as e:
            partial.unlink(missing_ok=True)
            raise BackupWriteFailedError(
                f"Compressing {workdir.name} failed: {e}", salvage_path=workdir
            ) from e
        except BaseException:
            partial.unlink(missing_ok=True)
            raise

    def salvageable_snapshots(self) -> List[Path]:
        """Uncompressed snapshot directories left behind by failed runs."""
        if not self.destination.is_dir():
            return []
        return sorted(
            path
            for path in self.destination.iterdir()
            if path.is_dir() and _WORKDIR_RE.match(path.name)
        )

    # --- Listing and retention ---

    def list_backups(self, kind: Optional[BackupKind] = None) -> List[BackupRecord]:
        """Completed backups, newest first."""
        if not self.destination.is_dir():
            return []

        records = []
        for path in self.destination.iterdir():
            if not path.is_file():
                continue
            for record_kind, pattern in (
                (BackupKind.CONFIG, _ARCHIVE_RE),
                (BackupKind.FULL_IMAGE, _IMAGE_RE),
            ):
                match = pattern.match(path.name)
                if not match or (kind and kind != record_kind):
                    continue
                stamp = match.group(1)
                try:
                    created_at = datetime.strptime(stamp, TIMESTAMP_FORMAT)
                except ValueError:
                    continue
                records.append(
                    BackupRecord(
                        id=stamp,
                        kind=record_kind,
                        path=path,
                        size_bytes=path.stat().st_size,
                        created_at=created_at,
                    )
                )

        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def prune(self, now: Optional[datetime] = None) -> List[BackupRecord]:
        """Delete config snapshots strictly older than ``retention_days``."""
        now = now or datetime.now()
        cutoff = now - timedelta(days=self.config.retention_days)
        logger.info(f"Cleaning backups older than {self.config.retention_days} days...")

        removed = []
        for record in self.list_backups(BackupKind.CONFIG):
            if record.created_at >= cutoff:
                continue
            try:
                record.path.unlink()
            except OSError as e:
                logger.warning(f"Could not delete old backup {record.path}: {e}")
                continue
            logger.info(f"Deleted old backup {record.path.name}")
            removed.append(record)
        return removed

    # --- Full images ---

    def find_root_device(self) -> str:
        result = self.runner.run(["findmnt", "-n", "-o", "SOURCE", "/"], timeout=10)
        source = result.stdout.strip()
        if not result.ok or not source.startswith("/dev/"):
            raise BackupWriteFailedError(f"Cannot determine root block device (got {source!r})")
        return base_device(source)

    def create_full_image(
        self, device: Optional[str] = None, now: Optional[datetime] = None
    ) -> BackupRecord:
        """
        Block-level gzip image of the root device.

        Long running with no checkpointing: an interrupted or failed image is
        deleted and must be restarted from scratch.
        """
        self.ensure_destination()
        device = device or self.find_root_device()
        now = now or datetime.now()
        stamp = now.strftime(TIMESTAMP_FORMAT)
        name = f"{IMAGE_PREFIX}{stamp}.img.gz"
        image = self.destination / name
        partial = self.destination / f".{name}{PARTIAL_SUFFIX}"
        digest = hashlib.sha256() if self.config.image_checksum else None

        logger.info(f"Creating image of {device} at {image}...")
        try:
            with open(device, "rb") as src, open(partial, "wb") as raw:
                sink = _HashingWriter(raw, digest) if digest else raw
                with gzip.GzipFile(filename=name[:-3], mode="wb", fileobj=sink) as gz:
                    copied = self._copy_stream(src, gz)
                raw.flush()
                os.fsync(raw.fileno())
            os.replace(partial, image)
        except OSError as e:
            partial.unlink(missing_ok=True)
            raise BackupWriteFailedError(f"Failed to create image of {device}: {e}") from e
        except BaseException:
            partial.unlink(missing_ok=True)
            logger.warning("Image backup interrupted, partial image removed")
            raise

        logger.info(f"Image created: {image} ({copied / (1024 * 1024):.0f} MiB read)")
        if digest:
            self._write_checksum(image, digest.hexdigest())
        logger.info(f"To restore: gunzip -c {name} | sudo dd of=/dev/sdX bs=4M")

        return BackupRecord(
            id=stamp,
            kind=BackupKind.FULL_IMAGE,
            path=image,
            size_bytes=image.stat().st_size,
            created_at=datetime.strptime(stamp, TIMESTAMP_FORMAT),
        )

    def _copy_stream(self, src, dst) -> int:
        copied = 0
        while True:
            chunk = src.read(IMAGE_CHUNK_SIZE)
            if not chunk:
                return copied
            dst.write(chunk)
            copied += len(chunk)

    def _write_checksum(self, image: Path, hexdigest: str) -> Path:
        """``sha256sum -c`` compatible sidecar next to the image."""
        sidecar = image.with_name(image.name + ".sha256")
        tmp = sidecar.with_name(f".{sidecar.name}{PARTIAL_SUFFIX}")
        tmp.write_text(f"{hexdigest}  {image.name}\n")
        os.replace(tmp, sidecar)
        return sidecar
