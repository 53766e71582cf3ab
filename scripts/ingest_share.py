#!/usr/bin/env python3
"""Run one share ingestion job in the foreground.

Connects to the share, transfers every not-yet-processed file into the
staging area and prints progress until the job ends. Ctrl-C requests a
stop, which takes effect at the next batch boundary.
"""

from __future__ import annotations

import argparse
import getpass
import os
import signal
import sys
import time
from typing import Any, Callable, Optional

from loguru import logger

from app.models.schemas import JOB_COMPLETED
from app.utils.config import get_settings
from domains.share_ingest.errors import JobNotFoundError, ShareValidationError
from domains.share_ingest.registry import ProcessRegistry
from domains.share_ingest.scheduler import BatchScheduler
from domains.share_ingest.share import Credentials


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """Parse CLI arguments."""

    parser = argparse.ArgumentParser(
        description="Ingest documents from an SMB/CIFS share into the staging area.",
    )
    parser.add_argument(
        "share",
        help="Share path, e.g. //nas/docs or //nas/docs/projects/2024.",
    )
    parser.add_argument(
        "--username",
        "-u",
        required=True,
        help="Share username.",
    )
    parser.add_argument(
        "--ignore",
        action="append",
        default=[],
        help="Ignore pattern such as '*.log' (can be repeated).",
    )
    parser.add_argument(
        "--poll",
        type=float,
        default=2.0,
        help="Seconds between progress reports.",
    )

    return parser.parse_args(argv)


def make_stop_handler(registry: ProcessRegistry, job_id: str) -> Callable[[int, Any], None]:
    """Signal handler that asks the job to stop at its next batch boundary."""

    def _signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, stopping after the current batch.")
        try:
            registry.request_stop(job_id)
        except JobNotFoundError:
            logger.info(f"Job {job_id} already gone, nothing to stop")

    return _signal_handler


def main(argv: Optional[list[str]] = None) -> int:
    """Entry point for the CLI script."""

    args = parse_args(argv)
    settings = get_settings()

    logger.remove()
    logger.add(sys.stderr, format="{time:YYYY-MM-DD HH:mm:ss} [{level}] {message}", level=settings.log_level)

    password = os.environ.get("SMB_PASSWORD") or getpass.getpass(f"Password for {args.username}: ")
    credentials = Credentials(username=args.username, password=password)

    registry = ProcessRegistry(settings)
    scheduler = BatchScheduler(registry, settings=settings)

    try:
        job_id = scheduler.start_job(args.share, credentials, args.ignore)
    except ShareValidationError as e:
        logger.error(str(e))
        return 2

    handler = make_stop_handler(registry, job_id)
    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)

    record = registry.get(job_id)
    while not record.is_terminal:
        time.sleep(args.poll)
        try:
            record = registry.get(job_id)
        except JobNotFoundError:
            logger.error(f"Job {job_id} disappeared from the registry")
            return 1
        logger.info(f"Job {job_id}: {record.status} {record.progress}%")

    logger.info(f"Job {job_id} finished: {record.status} - {record.result}")
    return 0 if record.status == JOB_COMPLETED else 1


if __name__ == "__main__":  # pragma: no cover - CLI bridge
    sys.exit(main())
