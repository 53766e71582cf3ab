"""
Batch scheduler for share ingestion.

Drives one job from share spec to terminal status: opens the share
session, bootstraps or loads the ledger, then walks the unprocessed files
in fixed-size batches. Each batch runs on a bounded worker pool under a
wall-clock deadline and is checkpointed to the ledger before the next
batch starts. Stop requests are polled between batches only.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from loguru import logger

from app.models.schemas import (
    JOB_COMPLETED,
    JOB_FAILED,
    JOB_INTERRUPTED,
    JOB_RUNNING,
    JobRecord,
)
from app.utils.config import Settings, get_settings
from app.utils.helpers import hash_text
from domains.share_ingest.converters import ConverterRegistry, trash_file
from domains.share_ingest.errors import (
    BatchTimeoutError,
    JobNotFoundError,
    ShareBusyError,
    TransferError,
    UnsupportedFileError,
)
from domains.share_ingest.ledger import FileRecord, LedgerStore
from domains.share_ingest.registry import ProcessRegistry
from domains.share_ingest.session import ShareSession, open_session
from domains.share_ingest.share import Credentials, ShareSpec, parse_share_spec
from domains.share_ingest.smb_client import RemoteShareClient, SmbProtocolClient
from domains.share_ingest.transfer import FileTransfer

NOTHING_TO_DO = "No new files to process - all files already processed!"
COMPLETED = "Process completed successfully!"


@dataclass
class FileOutcome:
    """Result of processing one file within a batch."""

    path: str
    success: bool
    hash: str = ""
    reason: Optional[str] = None
    local_path: Optional[Path] = None
    documents: List[Dict[str, Any]] = field(default_factory=list)


class BatchTimedOut(BatchTimeoutError):
    """Batch deadline elapsed; carries what did finish in time."""

    def __init__(self, completed: List[FileOutcome], pending: List[str], timeout: float):
        super().__init__(f"Batch timed out after {timeout}s with {len(pending)} file(s) unresolved")
        self.completed = completed
        self.pending = pending


def batch_progress(completed_batches: int, total_batches: int) -> float:
    """Percentage of batches completed, two decimals."""
    if total_batches <= 0:
        return 100.0
    return round(completed_batches / total_batches * 100, 2)


class BatchScheduler:
    """Runs ingestion jobs against remote shares."""

    def __init__(
        self,
        registry: ProcessRegistry,
        client: Optional[RemoteShareClient] = None,
        transfer: Optional[FileTransfer] = None,
        converters: Optional[ConverterRegistry] = None,
        ledger: Optional[LedgerStore] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.registry = registry
        self.converters = converters or ConverterRegistry()
        self.client = client or SmbProtocolClient(
            port=self.settings.smb_port,
            connection_timeout=self.settings.smb_connection_timeout,
        )
        self.transfer = transfer or FileTransfer(self.settings)
        self.ledger = ledger or LedgerStore(self.converters, self.settings)
        self._active_keys: Set[str] = set()
        self._active_lock = threading.Lock()

    def start_job(
        self,
        share: str,
        credentials: Credentials,
        ignore_patterns: Optional[Iterable[str]] = None,
    ) -> str:
        """
        Validate the share spec, create a job and run it on a daemon thread.

        Raises:
            ShareValidationError: If the share spec is malformed
            ShareBusyError: If a job for the same share key is still running
        """
        spec = parse_share_spec(share)
        with self._active_lock:
            if spec.share_key in self._active_keys:
                raise ShareBusyError(f"A job for {spec.share_key} is already running")
            self._active_keys.add(spec.share_key)

        try:
            job_id = self.registry.create()
            thread = threading.Thread(
                target=self._run_and_release,
                args=(spec.share_key, job_id, share, credentials, list(ignore_patterns or [])),
                name=f"ingest-{job_id[:8]}",
                daemon=True,
            )
            thread.start()
        except Exception:
            with self._active_lock:
                self._active_keys.discard(spec.share_key)
            raise

        logger.info(f"Started ingestion job {job_id} for {share}")
        return job_id

    def _run_and_release(self, share_key: str, job_id: str, *args) -> None:
        try:
            self.run(job_id, *args)
        finally:
            with self._active_lock:
                self._active_keys.discard(share_key)

    def is_active(self, share_key: str) -> bool:
        """Whether a job started through ``start_job`` still runs for this share key."""
        with self._active_lock:
            return share_key in self._active_keys

    def run(
        self,
        job_id: str,
        share: str,
        credentials: Credentials,
        ignore_patterns: Optional[Iterable[str]] = None,
    ) -> Optional[JobRecord]:
        """
        Run a job to a terminal status.

        Never raises: any error lands in the job record as ``failed``.

        Returns:
            Final job record, or None if the record was cleared meanwhile
        """
        ignore_patterns = list(ignore_patterns or [])

        try:
            spec = parse_share_spec(share)
            if spec.subdirectory:
                logger.info(f"Starting directory: {spec.subdirectory}")

            with open_session(self.client, spec, credentials) as session:
                records = self._load_or_discover(spec, session, ignore_patterns)
                pending = self.ledger.unprocessed(records, ignore_patterns)
                logger.info(f"Found {len(pending)} unprocessed files out of {len(records)} total")

                if not pending:
                    logger.success(f"Job {job_id}: nothing to process")
                    self.registry.update(job_id, status=JOB_COMPLETED, progress=100.0, result=NOTHING_TO_DO)
                else:
                    self._process_batches(job_id, spec, credentials, session, records, pending)

        except Exception as e:
            logger.error(f"Job {job_id} failed: {e}")
            self.registry.update(job_id, status=JOB_FAILED, result=f"Error: {e}")

        return self._snapshot(job_id)

    def _load_or_discover(
        self,
        spec: ShareSpec,
        session: ShareSession,
        ignore_patterns: List[str],
    ) -> List[FileRecord]:
        if not self.ledger.exists(spec.share_key):
            logger.info(f"No ledger for {spec.share_key}, starting discovery...")
            paths = self.ledger.discover(session, spec.subdirectory, ignore_patterns)
            self.ledger.bootstrap(spec.share_key, paths)

        return self.ledger.load(spec.share_key)

    def _process_batches(
        self,
        job_id: str,
        spec: ShareSpec,
        credentials: Credentials,
        session: ShareSession,
        records: List[FileRecord],
        pending: List[FileRecord],
    ) -> None:
        size = self.settings.batch_size
        batches = [pending[i:i + size] for i in range(0, len(pending), size)]
        total = len(batches)
        by_path = {record.path: record for record in records}
        staging_dir = self.ledger.staging_dir(spec.share_key)

        logger.info(f"Starting batch processing: {len(pending)} files, {total} batches of {size}")

        for number, batch in enumerate(batches):
            if self.registry.should_stop(job_id):
                progress = batch_progress(number, total)
                logger.warning(f"Job {job_id} stopped before batch {number + 1}/{total} ({progress}%)")
                self.registry.update(
                    job_id,
                    status=JOB_INTERRUPTED,
                    progress=progress,
                    result=f"Interrupted after {number} of {total} batches",
                )
                return

            self.registry.update(job_id, status=JOB_RUNNING)
            logger.info(f"Processing batch {number + 1}/{total} ({len(batch)} files)")

            try:
                outcomes = self.run_batch(batch, spec, credentials, session, staging_dir)
            except BatchTimedOut as e:
                logger.warning(f"{e}; still running: {e.pending}")
                outcomes = e.completed

            succeeded = 0
            for outcome in outcomes:
                if not outcome.success:
                    continue
                record = by_path.get(outcome.path)
                if record is None:
                    record = FileRecord(path=outcome.path)
                    by_path[record.path] = record
                    records.append(record)
                record.processed = True
                record.hash = outcome.hash
                succeeded += 1

            self.ledger.checkpoint(spec.share_key, records)
            self.registry.update(job_id, progress=batch_progress(number + 1, total))
            logger.info(f"Batch {number + 1}/{total} saved: {succeeded}/{len(batch)} files processed")

        self.registry.update(job_id, status=JOB_COMPLETED, progress=100.0, result=COMPLETED)
        logger.success(f"Job {job_id} completed ({total} batches)")

    def run_batch(
        self,
        batch: List[FileRecord],
        spec: ShareSpec,
        credentials: Credentials,
        session: ShareSession,
        staging_dir: Path,
    ) -> List[FileOutcome]:
        """
        Process one batch on a bounded pool under the batch deadline.

        Workers still running at the deadline are abandoned, not killed;
        each transfer tool call is itself bounded by the transfer timeout.

        Raises:
            BatchTimedOut: If the deadline elapsed before every file resolved
        """
        timeout = self.settings.batch_timeout_seconds
        executor = ThreadPoolExecutor(
            max_workers=self.settings.concurrent_operations,
            thread_name_prefix="ingest-worker",
        )
        try:
            futures: Dict[Future, FileRecord] = {
                executor.submit(self.process_file, record, spec, credentials, session, staging_dir): record
                for record in batch
            }
            done, not_done = wait(futures, timeout=timeout)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        completed = [self._outcome_of(future, futures[future]) for future in done]
        if not_done:
            raise BatchTimedOut(completed, [futures[future].path for future in not_done], timeout)
        return completed

    def process_file(
        self,
        record: FileRecord,
        spec: ShareSpec,
        credentials: Credentials,
        session: ShareSession,
        staging_dir: Path,
    ) -> FileOutcome:
        """Transfer one file and hand it to its converter. Never raises."""
        try:
            if not session.exists(record.path):
                logger.warning(f"File does not exist on share: {record.path}")
                return FileOutcome(record.path, False, reason="File does not exist on share.")

            local_path = self.transfer.transfer(record.path, spec, credentials, staging_dir)

            try:
                processed_as, converter = self.converters.resolve(local_path)
            except UnsupportedFileError as e:
                trash_file(local_path, self.settings.trash_dir)
                logger.warning(f"{record.path}: {e}")
                return FileOutcome(record.path, False, reason=str(e))

            result = converter(
                local_path=local_path,
                filename=local_path.name,
                options={"share": spec.target, "remote_path": record.path},
            )
            if not result.success:
                logger.warning(f"Converter {processed_as} rejected {record.path}: {result.reason}")
                return FileOutcome(record.path, False, reason=result.reason, local_path=local_path)

            # Identity token is derived from the remote path, not the bytes
            return FileOutcome(
                record.path,
                True,
                hash=hash_text(record.path),
                local_path=local_path,
                documents=result.documents,
            )

        except TransferError as e:
            logger.warning(str(e))
            return FileOutcome(record.path, False, reason=e.reason)
        except Exception as e:
            logger.error(f"Error processing file {record.path}: {e}")
            return FileOutcome(record.path, False, reason=str(e))

    @staticmethod
    def _outcome_of(future: Future, record: FileRecord) -> FileOutcome:
        error = future.exception()
        if error is not None:
            return FileOutcome(record.path, False, reason=str(error))
        return future.result()

    def _snapshot(self, job_id: str) -> Optional[JobRecord]:
        try:
            return self.registry.get(job_id)
        except JobNotFoundError:
            logger.info(f"Job {job_id} record was cleared before completion")
            return None
