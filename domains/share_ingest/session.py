"""
Share session: one logical connection to a remote share plus the mutex
that serializes every remote call made through it.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Callable, Iterator, List, TypeVar

from loguru import logger

from domains.share_ingest.errors import ShareConnectionError
from domains.share_ingest.share import Credentials, ShareSpec
from domains.share_ingest.smb_client import RemoteShareClient, RemoteStat

T = TypeVar("T")


class ShareSession:
    """Serialized access to one remote share."""

    def __init__(self, client: RemoteShareClient, spec: ShareSpec, handle: object):
        self.client = client
        self.spec = spec
        self._handle = handle
        self._lock = threading.Lock()

    @classmethod
    def open(cls, client: RemoteShareClient, spec: ShareSpec, credentials: Credentials) -> "ShareSession":
        """
        Connect to the share endpoint.

        Raises:
            ShareConnectionError: If the client cannot connect
        """
        logger.info(f"Connecting to share {spec.target}...")
        try:
            handle = client.connect(spec, credentials)
        except ShareConnectionError:
            raise
        except Exception as e:
            raise ShareConnectionError(f"Error connecting to share {spec.target}: {e}") from e

        logger.success(f"Connected to share {spec.target}")
        return cls(client, spec, handle)

    def with_lock(self, fn: Callable[[], T]) -> T:
        """
        Run ``fn`` while holding the session mutex.

        The mutex is not reentrant: ``fn`` must not call ``with_lock``.
        """
        with self._lock:
            return fn()

    def list_directory(self, path: str) -> List[str]:
        return self.with_lock(lambda: self.client.list_directory(self._handle, path))

    def stat(self, path: str) -> RemoteStat:
        return self.with_lock(lambda: self.client.stat(self._handle, path))

    def exists(self, path: str) -> bool:
        return self.with_lock(lambda: self.client.exists(self._handle, path))

    def close(self) -> None:
        """Release the remote connection. Safe to call twice."""
        if self._handle is None:
            return

        handle, self._handle = self._handle, None
        try:
            self.with_lock(lambda: self.client.disconnect(handle))
            logger.info(f"Closed share session {self.spec.target}")
        except Exception as e:
            logger.warning(f"Error closing share session {self.spec.target}: {e}")


@contextmanager
def open_session(
    client: RemoteShareClient,
    spec: ShareSpec,
    credentials: Credentials,
) -> Iterator[ShareSession]:
    """Context manager that always closes the session."""
    session = ShareSession.open(client, spec, credentials)
    try:
        yield session
    finally:
        session.close()
