"""
Share Ingestion Domain

Pulls documents from remote SMB/CIFS shares into the local staging area:
- registry.py - In-process job table polled by the control API
- ledger.py - Per-share record of which remote files are done
- session.py / smb_client.py - Serialized access to one remote share
- transfer.py - Temp-file-then-rename copy through smbclient
- converters.py - Extension to converter lookup, text sniffing and trash
- scheduler.py - Batched, checkpointed, cancellable ingestion runs
- mount.py - CIFS mount/unmount with its own mount ledger
"""

__all__ = ["errors", "share", "registry", "ledger", "converters", "session", "smb_client", "transfer", "scheduler", "mount"]
