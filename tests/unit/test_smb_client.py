import pytest

from domains.share_ingest import smb_client as smb_client_module
from domains.share_ingest.errors import ShareConnectionError
from domains.share_ingest.share import Credentials, parse_share_spec
from domains.share_ingest.smb_client import SmbProtocolClient

CREDENTIALS = Credentials("svc-ingest", "hunter2")


@pytest.fixture
def sessions(monkeypatch):
    """Record smbprotocol session calls instead of opening connections."""
    calls = []

    def register_session(server, **kwargs):
        calls.append(("register", server, kwargs["port"]))

    def delete_session(server, port=445):
        calls.append(("delete", server, port))

    monkeypatch.setattr(smb_client_module.smbclient, "register_session", register_session)
    monkeypatch.setattr(smb_client_module.smbclient, "delete_session", delete_session)
    return calls


def test_session_kept_while_another_job_uses_server(sessions):
    client = SmbProtocolClient()
    first = client.connect(parse_share_spec("//nas/docs"), CREDENTIALS)
    second = client.connect(parse_share_spec("//nas/finance"), CREDENTIALS)

    client.disconnect(first)

    assert ("delete", "nas", 445) not in sessions

    client.disconnect(second)

    assert sessions[-1] == ("delete", "nas", 445)


def test_sessions_counted_per_server(sessions):
    client = SmbProtocolClient(port=1445)
    nas = client.connect(parse_share_spec("//nas/docs"), CREDENTIALS)
    client.connect(parse_share_spec("//backup/docs"), CREDENTIALS)

    client.disconnect(nas)

    assert [c for c in sessions if c[0] == "delete"] == [("delete", "nas", 1445)]


def test_failed_connect_is_not_counted(sessions, monkeypatch):
    client = SmbProtocolClient()
    register = smb_client_module.smbclient.register_session

    def refuse(server, **kwargs):
        raise OSError("connection refused")

    monkeypatch.setattr(smb_client_module.smbclient, "register_session", refuse)
    with pytest.raises(ShareConnectionError, match="//nas/docs"):
        client.connect(parse_share_spec("//nas/docs"), CREDENTIALS)

    monkeypatch.setattr(smb_client_module.smbclient, "register_session", register)
    handle = client.connect(parse_share_spec("//nas/docs"), CREDENTIALS)
    client.disconnect(handle)

    assert sessions == [("register", "nas", 445), ("delete", "nas", 445)]


def test_handle_does_not_leak_password(sessions):
    client = SmbProtocolClient()

    handle = client.connect(parse_share_spec("//nas/docs"), CREDENTIALS)

    assert "hunter2" not in repr(handle)
