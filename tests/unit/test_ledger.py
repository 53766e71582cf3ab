import os
import threading

import pytest

from domains.share_ingest.converters import ConverterRegistry
from domains.share_ingest.errors import LedgerIOError
from domains.share_ingest.ledger import FileRecord, LedgerStore
from domains.share_ingest.session import ShareSession
from domains.share_ingest.share import parse_share_spec
from fakes import FakeShareClient

SHARE_KEY = "nas/docs"


@pytest.fixture
def store(settings) -> LedgerStore:
    return LedgerStore(ConverterRegistry(), settings)


def make_session(files, **kwargs) -> ShareSession:
    client = FakeShareClient(files, **kwargs)
    return ShareSession(client, parse_share_spec("//nas/docs"), handle=object())


def test_bootstrap_keeps_unsupported_rows_but_filters_them_from_work(store):
    session = make_session({"a.txt": b"a", "b.pdf": b"b", "c.xyz": b"c"})

    paths = store.discover(session, "", include_unsupported=True)
    store.bootstrap(SHARE_KEY, paths)
    records = store.load(SHARE_KEY)

    assert sorted(record.path for record in records) == ["a.txt", "b.pdf", "c.xyz"]
    assert all(record.processed is False for record in records)
    assert sorted(record.path for record in store.unprocessed(records)) == ["a.txt", "b.pdf"]


def test_discover_skips_unsupported_by_default(store, share_files):
    session = make_session(share_files)

    paths = store.discover(session, "")

    assert sorted(paths) == ["docs/a.txt", "docs/b.pdf", "docs/reports/d.md", "docs/reports/e.docx"]


def test_discover_starts_at_subdirectory_and_applies_ignores(store, share_files):
    session = make_session(share_files)

    paths = store.discover(session, "docs\\reports", ignore_patterns=["*.DOCX", "README"])

    assert paths == ["docs/reports/d.md"]
    assert session.client.listed == ["docs/reports"]


def test_discover_skips_unreadable_subdirectory(store, share_files):
    session = make_session(share_files)
    session.client.unreadable.add("docs/reports")

    paths = store.discover(session, "")

    assert sorted(paths) == ["docs/a.txt", "docs/b.pdf"]


def test_discover_propagates_unreadable_root(store, share_files):
    session = make_session(share_files)
    session.client.unreadable.add("docs")

    with pytest.raises(PermissionError):
        store.discover(session, "docs")


def test_exists_and_layout(store, settings):
    assert store.exists(SHARE_KEY) is False

    store.checkpoint(SHARE_KEY, [FileRecord(path="a.txt")])

    assert store.exists(SHARE_KEY) is True
    assert store.ledger_path(SHARE_KEY) == settings.staging_root / "nas" / "docs" / "file_data.csv"


def test_checkpoint_round_trips_records(store):
    records = [
        FileRecord(path="\\docs\\a.txt", processed=True, hash="abc"),
        FileRecord(path="docs/with, comma.md"),
    ]

    store.checkpoint(SHARE_KEY, records)
    loaded = store.load(SHARE_KEY)

    assert loaded == [
        FileRecord(path="docs/a.txt", processed=True, hash="abc"),
        FileRecord(path="docs/with, comma.md", processed=False, hash=""),
    ]
    assert store.ledger_path(SHARE_KEY).read_text().splitlines()[0] == "file_path,processed,hash_value"


def test_load_collapses_duplicate_paths(store):
    path = store.ledger_path(SHARE_KEY)
    path.parent.mkdir(parents=True)
    path.write_text(
        "file_path,processed,hash_value\n"
        "docs/a.txt,false,\n"
        "docs/a.txt,true,abc\n"
        "\n"
    )

    records = store.load(SHARE_KEY)

    assert records == [FileRecord(path="docs/a.txt", processed=True, hash="abc")]


def test_bootstrap_deduplicates_paths(store):
    records = store.bootstrap(SHARE_KEY, ["docs/a.txt", "docs\\a.txt", "/docs/a.txt"])

    assert records == [FileRecord(path="docs/a.txt")]


def test_unprocessed_respects_processed_flag_and_ignores(store):
    records = [
        FileRecord(path="a.txt", processed=True),
        FileRecord(path="b.pdf"),
        FileRecord(path="c.log"),
        FileRecord(path="d.md"),
    ]

    pending = store.unprocessed(records, ignore_patterns=["*.md"])

    assert [record.path for record in pending] == ["b.pdf"]


def test_failed_checkpoint_keeps_previous_ledger(store, monkeypatch):
    store.checkpoint(SHARE_KEY, [FileRecord(path="a.txt", processed=True, hash="h1")])
    path = store.ledger_path(SHARE_KEY)
    before = path.read_bytes()

    def broken_replace(src, dst):
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", broken_replace)

    with pytest.raises(LedgerIOError):
        store.checkpoint(SHARE_KEY, [FileRecord(path="a.txt", processed=True), FileRecord(path="b.pdf", processed=True)])

    assert path.read_bytes() == before
    assert list(path.parent.glob("*.tmp")) == []


def test_load_missing_ledger_raises(store):
    with pytest.raises(LedgerIOError):
        store.load("nas/unknown")


def test_concurrent_checkpoints_do_not_collide(store):
    errors = []

    def writer(name):
        for i in range(50):
            try:
                store.checkpoint(SHARE_KEY, [FileRecord(path=f"{name}-{i}.txt", processed=True)])
            except LedgerIOError as e:
                errors.append(e)

    threads = [threading.Thread(target=writer, args=(name,)) for name in ("a", "b")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len(store.load(SHARE_KEY)) == 1
    assert list(store.ledger_path(SHARE_KEY).parent.glob("*.tmp")) == []
