"""
Single-file transfer from a share into the staging directory.

Bytes are fetched by the samba ``smbclient`` command line tool, which
opens its own short-lived connection per call. Each attempt writes to a
``.tmp`` sibling that is renamed into place only once it is non-empty.
"""

from __future__ import annotations

import os
import subprocess
import time
from pathlib import Path, PurePosixPath
from typing import Callable, List, Optional

from loguru import logger

from app.utils.config import Settings, get_settings
from app.utils.helpers import generate_uuid, normalize_remote_path, to_backslash_path
from domains.share_ingest.errors import TransferError
from domains.share_ingest.share import Credentials, ShareSpec

RESERVED_FILES = frozenset({"__HOTDIR__.md"})
TMP_SUFFIX = ".tmp"
# smbclient -c splits commands on ";" and quotes arguments with '"'
UNSAFE_COMMAND_CHARS = frozenset('";\n\r')


class FileTransfer:
    """Copies remote files into a local staging directory."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        prefix_factory: Callable[[], str] = generate_uuid,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.settings = settings or get_settings()
        self._prefix_factory = prefix_factory
        self._sleep = sleep

    def transfer(
        self,
        remote_path: str,
        spec: ShareSpec,
        credentials: Credentials,
        staging_dir: Path,
    ) -> Path:
        """
        Copy one remote file into ``staging_dir``.

        Args:
            remote_path: Path relative to the share root
            spec: Share the file lives on
            credentials: Share credentials
            staging_dir: Local destination directory

        Returns:
            Path of the staged copy, ``<staging_dir>/<prefix>_<basename>``

        Raises:
            TransferError: Reserved or empty name, a name smbclient cannot
                quote, or every attempt failed
        """
        self._check_quotable(remote_path, staging_dir)

        basename = PurePosixPath(normalize_remote_path(remote_path)).name
        if not basename:
            raise TransferError(remote_path, "empty filename")

        new_name = f"{self._prefix_factory()}_{basename}"
        if new_name in RESERVED_FILES or basename in RESERVED_FILES:
            raise TransferError(remote_path, "reserved filename")

        staging_dir.mkdir(parents=True, exist_ok=True)
        final_path = staging_dir / new_name
        tmp_path = final_path.with_name(final_path.name + TMP_SUFFIX)

        max_attempts = self.settings.transfer_max_attempts
        last_error: Optional[BaseException] = None

        try:
            for attempt in range(1, max_attempts + 1):
                try:
                    self._fetch(remote_path, spec, credentials, tmp_path)

                    if not tmp_path.is_file() or tmp_path.stat().st_size == 0:
                        raise TransferError(remote_path, "copy resulted in empty file")

                    os.replace(tmp_path, final_path)
                    logger.info(f"Copied {remote_path} -> {final_path}")
                    return final_path

                except (TransferError, subprocess.SubprocessError, OSError) as e:
                    last_error = e
                    detail = e.stderr.strip() if isinstance(e, subprocess.CalledProcessError) and e.stderr else e
                    logger.warning(f"Attempt {attempt}/{max_attempts} failed for {remote_path}: {detail}")
                    self._cleanup(tmp_path)

                    if attempt < max_attempts:
                        self._sleep(self._backoff(attempt))

            raise TransferError(remote_path, f"copy failed after {max_attempts} attempts: {last_error}")

        finally:
            self._cleanup(tmp_path)

    def build_command(self, remote_path: str, spec: ShareSpec, credentials: Credentials, local_path: Path) -> List[str]:
        """Argv for one ``smbclient get``. The password travels in the environment."""
        self._check_quotable(remote_path, local_path)
        remote = to_backslash_path(remote_path)
        return [
            self.settings.transfer_tool,
            spec.target,
            "-U", credentials.username,
            "-p", str(self.settings.smb_port),
            "-c", f'get "{remote}" "{local_path}"',
        ]

    @staticmethod
    def _check_quotable(remote_path: str, local_path: Path) -> None:
        if UNSAFE_COMMAND_CHARS.intersection(remote_path + str(local_path)):
            raise TransferError(remote_path, "unsupported character in path")

    def _fetch(self, remote_path: str, spec: ShareSpec, credentials: Credentials, tmp_path: Path) -> None:
        command = self.build_command(remote_path, spec, credentials, tmp_path)
        env = {**os.environ, "PASSWD": credentials.password}

        # timeout kills the child before raising TimeoutExpired
        subprocess.run(
            command,
            capture_output=True,
            text=True,
            timeout=self.settings.transfer_timeout_seconds,
            env=env,
            check=True,
        )

    def _backoff(self, attempt: int) -> float:
        return min(
            self.settings.transfer_backoff_seconds * (2 ** attempt),
            self.settings.transfer_backoff_cap_seconds,
        )

    @staticmethod
    def _cleanup(tmp_path: Path) -> None:
        try:
            tmp_path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Temp file cleanup failed for {tmp_path}: {e}")
