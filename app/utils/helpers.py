"""
Helper utilities for the share ingest service.

Common functions used across domains.
"""

import csv
import hashlib
import os
import re
import tempfile
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional, Sequence
from uuid import uuid4


def generate_uuid() -> str:
    """Generate a unique identifier."""
    return str(uuid4())


def hash_text(text: str) -> str:
    """Generate SHA256 hash of text."""
    return hashlib.sha256(text.encode()).hexdigest()


def now_iso() -> str:
    """Get current timestamp as ISO string."""
    return datetime.now(timezone.utc).isoformat()


def parse_iso_timestamp(ts_str: str) -> datetime:
    """Parse ISO timestamp string to datetime."""
    return datetime.fromisoformat(ts_str.replace('Z', '+00:00'))


def normalize_remote_path(path: str) -> str:
    """
    Normalize a remote path to forward slashes without a leading separator.

    Args:
        path: Path using either separator convention

    Returns:
        Normalized path, e.g. ``docs/a.txt``
    """
    cleaned = re.sub(r'[\\/]+', '/', path.strip())
    return cleaned.strip('/')


def to_backslash_path(path: str) -> str:
    """Convert a normalized remote path to the SMB backslash form."""
    return normalize_remote_path(path).replace('/', '\\')


def get_file_extension(path: str) -> str:
    """Get lowercase file extension including the dot, or empty string."""
    return PurePosixPath(normalize_remote_path(path)).suffix.lower()


def extensions_from_patterns(patterns: Optional[Iterable[str]]) -> set[str]:
    """
    Reduce ignore patterns to the extensions they end with.

    ``*.log`` and ``logs/*.LOG`` both become ``.log``; patterns without a
    trailing extension are dropped.
    """
    extensions = set()
    for pattern in patterns or []:
        match = re.search(r'\.(\w+)$', pattern.strip())
        if match:
            extensions.add(f".{match.group(1).lower()}")
    return extensions


def write_csv_atomic(path: Path, header: Sequence[str], rows: Iterable[Dict[str, str]]) -> None:
    """
    Rewrite ``path`` with ``rows`` through a temp file and an atomic rename.

    Readers see either the previous file or the complete new one.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    # temp name is unique per writer
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    tmp_path = Path(tmp_name)

    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            writer = csv.DictWriter(handle, fieldnames=list(header), extrasaction="ignore")
            writer.writeheader()
            writer.writerows(rows)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_path, path)
    finally:
        if tmp_path.exists():
            tmp_path.unlink()


def read_csv_records(path: Path) -> List[Dict[str, str]]:
    """Read a CSV file with a header row, skipping blank lines."""
    records = []
    with path.open("r", encoding="utf-8", newline="") as handle:
        for row in csv.DictReader(handle):
            # Overflow columns land under the None key as a list
            cleaned = {
                key: (value or "").strip()
                for key, value in row.items()
                if key is not None and not isinstance(value, list)
            }
            if any(cleaned.values()):
                records.append(cleaned)
    return records
