"""
SMB protocol client backed by smbprotocol's ``smbclient`` API.

The session layer talks to remote shares only through this adapter, so
tests swap in an in-memory client with the same five methods.
"""

from __future__ import annotations

import stat as stat_module
import threading
from dataclasses import dataclass
from typing import Dict, List, Protocol, Tuple

import smbclient
from loguru import logger
from smbprotocol.exceptions import SMBException

from domains.share_ingest.errors import ShareConnectionError
from domains.share_ingest.share import Credentials, ShareSpec


@dataclass(frozen=True, slots=True)
class RemoteStat:
    """Subset of remote stat results the ingest path needs."""

    is_directory: bool


class RemoteShareClient(Protocol):
    """Boundary every remote share client implements."""

    def connect(self, spec: ShareSpec, credentials: Credentials) -> object: ...

    def list_directory(self, handle: object, path: str) -> List[str]: ...

    def stat(self, handle: object, path: str) -> RemoteStat: ...

    def exists(self, handle: object, path: str) -> bool: ...

    def disconnect(self, handle: object) -> None: ...


@dataclass(frozen=True, slots=True)
class SmbHandle:
    """One registered use of a server session."""

    spec: ShareSpec
    credentials: Credentials


class SmbProtocolClient:
    """
    ``RemoteShareClient`` over SMB2/3.

    smbprotocol keeps one session per server for the whole process, so
    sessions are reference counted per ``(server, port)`` and only deleted
    when the last handle on that server disconnects. Every call also carries
    the credentials, letting smbprotocol re-register a dropped session.
    """

    def __init__(self, port: int = 445, connection_timeout: int = 60):
        self.port = port
        self.connection_timeout = connection_timeout
        self._refcounts: Dict[Tuple[str, int], int] = {}
        self._lock = threading.Lock()

    def connect(self, spec: ShareSpec, credentials: Credentials) -> SmbHandle:
        """Register an authenticated session with the server."""
        key = (spec.server, self.port)
        with self._lock:
            try:
                smbclient.register_session(
                    spec.server,
                    username=credentials.username,
                    password=credentials.password,
                    port=self.port,
                    connection_timeout=self.connection_timeout,
                )
            except (SMBException, OSError, ValueError) as e:
                raise ShareConnectionError(f"Error connecting to share {spec.target}: {e}") from e
            in_use = self._refcounts[key] = self._refcounts.get(key, 0) + 1

        logger.debug(f"SMB session registered for {spec.server}:{self.port} ({in_use} in use)")
        return SmbHandle(spec, credentials)

    def _kwargs(self, handle: SmbHandle) -> Dict[str, object]:
        return {
            "username": handle.credentials.username,
            "password": handle.credentials.password,
            "port": self.port,
            "connection_timeout": self.connection_timeout,
        }

    def list_directory(self, handle: SmbHandle, path: str) -> List[str]:
        return smbclient.listdir(handle.spec.unc(path), **self._kwargs(handle))

    def stat(self, handle: SmbHandle, path: str) -> RemoteStat:
        result = smbclient.stat(handle.spec.unc(path), **self._kwargs(handle))
        return RemoteStat(is_directory=stat_module.S_ISDIR(result.st_mode))

    def exists(self, handle: SmbHandle, path: str) -> bool:
        return smbclient.path.exists(handle.spec.unc(path), **self._kwargs(handle))

    def disconnect(self, handle: SmbHandle) -> None:
        key = (handle.spec.server, self.port)
        with self._lock:
            remaining = self._refcounts.get(key, 0) - 1
            if remaining > 0:
                self._refcounts[key] = remaining
                logger.debug(f"SMB session for {handle.spec.server}:{self.port} still in use ({remaining})")
                return
            self._refcounts.pop(key, None)
            smbclient.delete_session(handle.spec.server, port=self.port)

        logger.debug(f"SMB session closed for {handle.spec.server}:{self.port}")
