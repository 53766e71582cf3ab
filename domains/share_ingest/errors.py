"""Exception taxonomy for share ingestion."""


class ShareIngestError(Exception):
    """Base class for all share ingestion errors."""


class ShareValidationError(ShareIngestError):
    """The share specification is malformed. Raised before any I/O."""


class ShareConnectionError(ShareIngestError):
    """The share session could not be established."""


class TransferError(ShareIngestError):
    """A single-file copy failed or exhausted its retry budget."""

    def __init__(self, remote_path: str, reason: str):
        super().__init__(f"Transfer of {remote_path} failed: {reason}")
        self.remote_path = remote_path
        self.reason = reason


class UnsupportedFileError(ShareIngestError):
    """No converter applies to the file, not even the plain-text fallback."""


class BatchTimeoutError(ShareIngestError):
    """A batch did not finish within its deadline."""


class LedgerIOError(ShareIngestError):
    """A ledger could not be read or checkpointed."""


class JobNotFoundError(ShareIngestError):
    """No job record exists for the requested id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class MountError(ShareIngestError):
    """The OS mount or unmount facility reported a failure."""


class ShareBusyError(ShareIngestError):
    """Another job is already ingesting the same share key."""
