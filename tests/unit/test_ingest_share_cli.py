import signal

from domains.share_ingest.registry import ProcessRegistry
from scripts import ingest_share


def test_parse_args_collects_ignores():
    args = ingest_share.parse_args(["//nas/docs", "-u", "svc-ingest", "--ignore", "*.log", "--ignore", "*.tmp"])

    assert args.share == "//nas/docs"
    assert args.username == "svc-ingest"
    assert args.ignore == ["*.log", "*.tmp"]
    assert args.poll == 2.0


def test_malformed_share_exits_before_connecting(monkeypatch):
    monkeypatch.setenv("SMB_PASSWORD", "hunter2")

    assert ingest_share.main(["//nas", "-u", "svc-ingest"]) == 2


def test_stop_handler_flags_live_job(settings):
    registry = ProcessRegistry(settings)
    job_id = registry.create()

    ingest_share.make_stop_handler(registry, job_id)(signal.SIGINT, None)

    assert registry.get(job_id).should_stop is True


def test_stop_handler_tolerates_cleared_job(settings):
    handler = ingest_share.make_stop_handler(ProcessRegistry(settings), "gone")

    handler(signal.SIGINT, None)
