"""
Ledger of remote files per share.

One CSV per share key under the staging root records which remote paths
exist and which have already been transferred. The in-memory list of
FileRecords is authoritative during a run; the CSV is rewritten whole at
every checkpoint.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from loguru import logger

from app.utils.config import Settings, get_settings
from app.utils.helpers import (
    extensions_from_patterns,
    get_file_extension,
    normalize_remote_path,
    read_csv_records,
    write_csv_atomic,
)
from domains.share_ingest.converters import ConverterRegistry
from domains.share_ingest.errors import LedgerIOError
from domains.share_ingest.session import ShareSession

LEDGER_HEADER = ("file_path", "processed", "hash_value")


@dataclass(slots=True)
class FileRecord:
    """Processing state of one remote file."""

    path: str
    processed: bool = False
    hash: str = ""

    def __post_init__(self):
        self.path = normalize_remote_path(self.path)

    @property
    def extension(self) -> str:
        return get_file_extension(self.path)

    def as_row(self) -> Dict[str, str]:
        return {
            "file_path": self.path,
            "processed": "true" if self.processed else "false",
            "hash_value": self.hash,
        }

    @classmethod
    def from_row(cls, row: Dict[str, str]) -> "FileRecord":
        return cls(
            path=row.get("file_path", ""),
            processed=row.get("processed", "").lower() == "true",
            hash=row.get("hash_value", ""),
        )


class LedgerStore:
    """Reads, discovers and checkpoints per-share ledgers."""

    def __init__(
        self,
        converters: ConverterRegistry,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.converters = converters

    def staging_dir(self, share_key: str) -> Path:
        """Local staging directory for a share key."""
        return self.settings.staging_root / normalize_remote_path(share_key)

    def ledger_path(self, share_key: str) -> Path:
        return self.staging_dir(share_key) / self.settings.ledger_filename

    def exists(self, share_key: str) -> bool:
        """Whether a ledger has already been written for this share key."""
        return self.ledger_path(share_key).is_file()

    def discover(
        self,
        session: ShareSession,
        subdirectory: str = "",
        ignore_patterns: Optional[Iterable[str]] = None,
        include_unsupported: Optional[bool] = None,
    ) -> List[str]:
        """
        Recursively list remote files under ``subdirectory``.

        Files matching an ignore pattern are dropped. Files without a
        registered converter are dropped unless ``include_unsupported``
        (default: ``track_unsupported_files`` setting).

        Args:
            session: Open share session
            subdirectory: Starting directory relative to the share root
            ignore_patterns: Patterns whose trailing extension is skipped
            include_unsupported: Keep files that have no converter

        Returns:
            Flat list of normalized remote paths, in listing order
        """
        if include_unsupported is None:
            include_unsupported = self.settings.track_unsupported_files

        ignored = extensions_from_patterns(ignore_patterns)
        if ignored:
            logger.info(f"Ignoring extensions: {sorted(ignored)}")

        start = normalize_remote_path(subdirectory)
        files = self._walk(session, start, ignored, include_unsupported, is_root=True)
        logger.info(f"Discovery complete: {len(files)} files under '{start or '(root)'}'")
        return files

    def _walk(
        self,
        session: ShareSession,
        directory: str,
        ignored: set[str],
        include_unsupported: bool,
        is_root: bool = False,
    ) -> List[str]:
        try:
            entries = session.list_directory(directory)
        except Exception as e:
            if is_root:
                raise
            logger.warning(f"Skipping inaccessible directory {directory}: {e}")
            return []

        logger.debug(f"Scanning {directory or '(root)'}: {len(entries)} entries")
        found: List[str] = []

        for name in entries:
            if name in (".", ".."):
                continue

            path = normalize_remote_path(f"{directory}/{name}")
            if session.stat(path).is_directory:
                found.extend(self._walk(session, path, ignored, include_unsupported))
                continue

            extension = get_file_extension(path)
            if extension in ignored:
                logger.debug(f"Skipping ignored file: {path}")
                continue
            if not include_unsupported and not self.converters.supports(extension):
                logger.debug(f"Skipping unsupported file: {path} (ext: {extension or 'none'})")
                continue

            found.append(path)

        return found

    def load(self, share_key: str) -> List[FileRecord]:
        """
        Parse the ledger for a share key.

        Rows sharing a path collapse into one, the last row winning.

        Raises:
            LedgerIOError: If the ledger cannot be read
        """
        path = self.ledger_path(share_key)
        try:
            rows = read_csv_records(path)
        except (OSError, UnicodeDecodeError) as e:
            raise LedgerIOError(f"Failed to read ledger {path}: {e}") from e

        records: Dict[str, FileRecord] = {}
        for row in rows:
            record = FileRecord.from_row(row)
            if record.path:
                records[record.path] = record

        processed = sum(1 for record in records.values() if record.processed)
        logger.info(f"Ledger loaded: {len(records)} records ({processed} processed) from {path}")
        return list(records.values())

    def unprocessed(
        self,
        records: Iterable[FileRecord],
        ignore_patterns: Optional[Iterable[str]] = None,
    ) -> List[FileRecord]:
        """Records still to transfer: not processed, supported and not ignored."""
        ignored = extensions_from_patterns(ignore_patterns)
        return [
            record
            for record in records
            if not record.processed
            and record.extension not in ignored
            and self.converters.supports(record.extension)
        ]

    def checkpoint(self, share_key: str, records: Iterable[FileRecord]) -> None:
        """
        Atomically rewrite the full ledger.

        Raises:
            LedgerIOError: If the write fails; the previous ledger is intact
        """
        path = self.ledger_path(share_key)
        rows = [record.as_row() for record in records]
        try:
            write_csv_atomic(path, LEDGER_HEADER, rows)
        except OSError as e:
            raise LedgerIOError(f"Failed to save ledger {path}: {e}") from e

        logger.debug(f"Ledger saved: {path} ({len(rows)} records)")

    def bootstrap(self, share_key: str, paths: Iterable[str]) -> List[FileRecord]:
        """Write an initial ledger with every path unprocessed."""
        records: Dict[str, FileRecord] = {}
        for path in paths:
            record = FileRecord(path=path)
            records.setdefault(record.path, record)

        self.checkpoint(share_key, records.values())
        logger.success(f"Initial ledger written with {len(records)} records")
        return list(records.values())
