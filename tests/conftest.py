from typing import Dict

import pytest

from app.utils.config import Settings


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        staging_root=tmp_path / "hotdir",
        trash_dir=tmp_path / "trash",
        mount_root=tmp_path / "mountpoint",
        batch_size=2,
        concurrent_operations=2,
        batch_timeout_seconds=5,
        transfer_backoff_seconds=0,
        transfer_backoff_cap_seconds=0,
        mount_command_prefix="",
    )


@pytest.fixture
def share_files() -> Dict[str, bytes]:
    return {
        "docs/a.txt": b"alpha",
        "docs/b.pdf": b"%PDF-1.4 beta",
        "docs/c.xyz": b"\x00\x01\x02 unknown",
        "docs/reports/d.md": b"# delta",
        "docs/reports/e.docx": b"PK docx bytes",
    }
