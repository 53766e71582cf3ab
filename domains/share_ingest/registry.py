"""
Process registry for share ingestion jobs.

Holds one JobRecord per run. The scheduler writes status and progress,
the control API reads records and raises stop flags. Terminal records are
evicted by a periodic sweep once they have been idle past the expiration
window.
"""

import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from loguru import logger

from app.models.schemas import JOB_STARTED, JobRecord
from app.utils.config import Settings, get_settings
from app.utils.helpers import generate_uuid
from domains.share_ingest.errors import JobNotFoundError


class ProcessRegistry:
    """Thread-safe table of job records."""

    def __init__(self, settings: Optional[Settings] = None):
        """
        Initialize registry.

        Args:
            settings: Settings supplying sweep interval and expiration window
        """
        self.settings = settings or get_settings()
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._sweeper: Optional[threading.Thread] = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def create(self) -> str:
        """Allocate a new record in ``started`` state and return its id."""
        job_id = generate_uuid()
        with self._lock:
            self._jobs[job_id] = JobRecord(job_id=job_id, status=JOB_STARTED)
        logger.info(f"Job created: {job_id}")
        return job_id

    def get(self, job_id: str) -> JobRecord:
        """
        Get a snapshot of a job record.

        Raises:
            JobNotFoundError: If the id is unknown or already evicted
        """
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                raise JobNotFoundError(job_id)
            return record.model_copy()

    def update(self, job_id: str, **fields) -> Optional[JobRecord]:
        """
        Merge fields into a record and refresh ``updated_at``.

        Unknown ids are ignored so a record discarded by ``stop_all`` is
        never resurrected by a job still winding down.
        """
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                logger.debug(f"Ignoring update for unknown job {job_id}: {fields}")
                return None

            fields["updated_at"] = datetime.now(timezone.utc)
            updated = record.model_copy(update=fields)
            self._jobs[job_id] = updated
            return updated.model_copy()

    def request_stop(self, job_id: str) -> None:
        """
        Raise the stop flag. Status is left to the scheduler.

        Raises:
            JobNotFoundError: If the id is unknown
        """
        with self._lock:
            record = self._jobs.get(job_id)
            if record is None:
                raise JobNotFoundError(job_id)
            self._jobs[job_id] = record.model_copy(update={"should_stop": True})
        logger.info(f"Stop requested for job {job_id}")

    def should_stop(self, job_id: str) -> bool:
        """Whether the job must stop: flag raised, or record gone."""
        with self._lock:
            record = self._jobs.get(job_id)
            return record is None or record.should_stop

    def stop_all(self) -> int:
        """
        Flag every live job to stop and clear the registry.

        This is a global abort: the cleared jobs observe the missing record
        at their next batch boundary. Nothing waits for their I/O to end.

        Returns:
            Number of records cleared
        """
        with self._lock:
            job_ids = list(self._jobs)
            for job_id in job_ids:
                self._jobs[job_id] = self._jobs[job_id].model_copy(update={"should_stop": True})
                logger.info(f"Stopping job {job_id}")
            self._jobs.clear()

        logger.info(f"All jobs stopped and cleared ({len(job_ids)})")
        return len(job_ids)

    def sweep(self, now: Optional[datetime] = None) -> int:
        """
        Evict terminal records idle longer than the expiration window.

        Args:
            now: Reference time, defaults to current UTC time

        Returns:
            Number of evicted records
        """
        now = now or datetime.now(timezone.utc)
        window = timedelta(seconds=self.settings.registry_expiration_seconds)

        with self._lock:
            expired = [
                job_id
                for job_id, record in self._jobs.items()
                if record.is_terminal and now - record.updated_at >= window
            ]
            for job_id in expired:
                del self._jobs[job_id]

        for job_id in expired:
            logger.info(f"Removing expired job: {job_id}")
        return len(expired)

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def start_sweeper(self) -> None:
        """Run ``sweep`` on a daemon thread every sweep interval."""
        if self._sweeper and self._sweeper.is_alive():
            return

        self._stop_event.clear()
        self._sweeper = threading.Thread(target=self._sweep_loop, name="registry-sweeper", daemon=True)
        self._sweeper.start()
        logger.info(f"Registry sweeper started (every {self.settings.registry_sweep_interval_seconds}s)")

    def stop_sweeper(self) -> None:
        """Stop the sweeper thread."""
        self._stop_event.set()
        if self._sweeper:
            self._sweeper.join()
            self._sweeper = None
        logger.info("Registry sweeper stopped")

    def _sweep_loop(self) -> None:
        while not self._stop_event.wait(self.settings.registry_sweep_interval_seconds):
            try:
                self.sweep()
            except Exception as e:
                logger.error(f"Registry sweep failed: {e}")
