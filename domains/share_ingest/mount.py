"""
Mount manager for SMB/CIFS shares.

Attaches a share onto a local directory with the OS mount facility so a
filesystem walker can ingest it as local files. Every attempt is recorded
in a shared mount ledger keyed by mount point.
"""

from __future__ import annotations

import subprocess
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Optional

from loguru import logger

from app.utils.config import Settings, get_settings
from app.utils.helpers import (
    generate_uuid,
    normalize_remote_path,
    now_iso,
    parse_iso_timestamp,
    read_csv_records,
    write_csv_atomic,
)
from domains.share_ingest.errors import LedgerIOError, MountError
from domains.share_ingest.share import Credentials, ShareSpec

MOUNT_HEADER = ("mount_id", "mount_point", "target_path", "list_name", "mount_time", "status")

MOUNT_MOUNTED = "mounted"
MOUNT_UNMOUNTED = "unmounted"
MOUNT_FAILED = "failed"


def _failure_detail(error: Exception) -> str:
    # str() of these carries the argv, which holds the mount password
    if isinstance(error, subprocess.CalledProcessError):
        return error.stderr or f"exit status {error.returncode}"
    if isinstance(error, subprocess.TimeoutExpired):
        return f"timed out after {error.timeout}s"
    return str(error)


@dataclass(slots=True)
class MountRecord:
    """One mount attempt."""

    mount_id: str
    mount_point: str
    target_path: str
    list_name: str
    mount_time: str
    status: str  # mounted, unmounted, failed

    def as_row(self) -> Dict[str, str]:
        return asdict(self)

    @classmethod
    def from_row(cls, row: Dict[str, str]) -> "MountRecord":
        return cls(**{key: row.get(key, "") for key in MOUNT_HEADER})


class MountManager:
    """Mounts shares and keeps the mount ledger."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.ledger_path = self.settings.mount_ledger_path

    # Ledger -------------------------------------------------------------------------

    def records(self) -> List[MountRecord]:
        """All mount records, in ledger order."""
        if not self.ledger_path.is_file():
            return []
        try:
            return [MountRecord.from_row(row) for row in read_csv_records(self.ledger_path)]
        except (OSError, UnicodeDecodeError, TypeError) as e:
            raise LedgerIOError(f"Failed to read mount ledger {self.ledger_path}: {e}") from e

    def _save(self, records: List[MountRecord]) -> None:
        try:
            write_csv_atomic(self.ledger_path, MOUNT_HEADER, [record.as_row() for record in records])
        except OSError as e:
            raise LedgerIOError(f"Failed to save mount ledger {self.ledger_path}: {e}") from e

    def upsert(self, record: MountRecord) -> None:
        """Replace any record for the same mount point, then append."""
        records = [r for r in self.records() if r.mount_point != record.mount_point]
        records.append(record)
        self._save(records)
        logger.info(f"Mount point updated in {self.ledger_path} ({len(records)} total records)")

    def find_existing_mount(self, spec: ShareSpec) -> Optional[MountRecord]:
        """Newest ``mounted`` record for this share whose mount point still exists."""
        candidates = [
            record for record in self.records()
            if record.target_path == spec.target and record.status == MOUNT_MOUNTED
        ]
        if not candidates:
            logger.info(f"No active mount found for {spec.target}")
            return None

        latest = max(candidates, key=lambda record: parse_iso_timestamp(record.mount_time))
        if not Path(latest.mount_point).exists():
            logger.info(f"Mount point no longer exists: {latest.mount_point}")
            return None

        logger.info(f"Found existing mount for {spec.target}: {latest.mount_point}")
        return latest

    # OS facility --------------------------------------------------------------------

    def _run(self, command: List[str]) -> subprocess.CompletedProcess:
        return subprocess.run(
            self.settings.get_mount_command_prefix() + command,
            capture_output=True,
            text=True,
            check=True,
            timeout=self.settings.mount_timeout_seconds,
        )

    def mount(
        self,
        spec: ShareSpec,
        credentials: Credentials,
        mount_point: Path,
        mount_id: str,
        list_name: str = "",
    ) -> MountRecord:
        """
        Mount ``spec`` onto ``mount_point`` and record the attempt.

        Raises:
            MountError: If the mount command fails (the failed record is
                still written)
        """
        options = f"username={credentials.username},password={credentials.password},iocharset=utf8"
        command = ["mount", "-t", "cifs", spec.target, str(mount_point), "-o", options]

        logger.info(f"Mounting: {spec.target} -> {mount_point}")
        record = MountRecord(
            mount_id=mount_id,
            mount_point=str(mount_point),
            target_path=spec.target,
            list_name=list_name,
            mount_time=now_iso(),
            status=MOUNT_MOUNTED,
        )

        try:
            self._run(command)
        except (subprocess.SubprocessError, OSError) as e:
            stderr = _failure_detail(e)
            logger.error(f"Mount error for {spec.target}: {stderr.strip()}")
            record.status = MOUNT_FAILED
            self.upsert(record)
            raise MountError(f"Failed to mount: {stderr.strip()}") from e

        self.upsert(record)
        logger.success(f"Mounted {spec.target} at {mount_point}")
        return record

    def unmount(self, mount_point: Path) -> None:
        """
        Force-unmount ``mount_point`` and mark its record ``unmounted``.

        Raises:
            MountError: If the unmount command fails
        """
        logger.info(f"Unmounting: {mount_point}")
        try:
            self._run(["umount", "-f", str(mount_point)])
        except (subprocess.SubprocessError, OSError) as e:
            stderr = _failure_detail(e)
            raise MountError(f"Failed to unmount {mount_point}: {stderr.strip()}") from e

        records = self.records()
        for record in records:
            if record.mount_point == str(mount_point):
                record.status = MOUNT_UNMOUNTED
        if records:
            self._save(records)
        logger.success(f"Unmounted {mount_point}")

    def is_mount_point(self, path: Path) -> bool:
        """Whether ``path`` is in the live mount table."""
        try:
            result = subprocess.run(
                ["findmnt", "--mountpoint", str(path)],
                capture_output=True,
                text=True,
                timeout=self.settings.mount_timeout_seconds,
            )
        except (subprocess.TimeoutExpired, OSError) as e:
            logger.error(f"Error checking mount point {path}: {e}")
            return False
        return result.returncode == 0

    def ensure_mount_point(self, base_dir: Path, mount_id: str, share_subpath: str) -> Path:
        """
        Prepare ``base_dir/mount_id/share_subpath`` for mounting.

        An existing, mounted directory is unmounted first; a missing one is
        created.

        Raises:
            MountError: If the existing mount cannot be released
        """
        local_mount_point = base_dir / mount_id / normalize_remote_path(share_subpath)
        logger.info(f"Mount point: {local_mount_point}")

        if local_mount_point.exists():
            if self.is_mount_point(local_mount_point):
                logger.info(f"Directory is already mounted: {local_mount_point}")
                self.unmount(local_mount_point)
        else:
            local_mount_point.mkdir(parents=True, exist_ok=True)

        return local_mount_point

    def mount_share(self, spec: ShareSpec, credentials: Credentials) -> MountRecord:
        """
        Reuse or create a mount for ``spec`` under the mount root.

        An existing ``mounted`` record is reused, remounting when the OS no
        longer lists it. Otherwise a fresh mount id and point are made.
        """
        existing = self.find_existing_mount(spec)
        if existing:
            mount_point = Path(existing.mount_point)
            if self.is_mount_point(mount_point):
                return existing
            return self.mount(spec, credentials, mount_point, existing.mount_id, existing.list_name)

        mount_id = generate_uuid()
        list_name = str(self.settings.mount_root / f"{mount_id}-{self.settings.ledger_filename}")
        mount_point = self.ensure_mount_point(self.settings.mount_root, mount_id, spec.share_key)
        return self.mount(spec, credentials, mount_point, mount_id, list_name)
