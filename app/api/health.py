"""
Health check endpoint.
"""

import os
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.deps import get_registry
from domains.share_ingest.registry import ProcessRegistry

router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str
    timestamp: datetime
    version: str
    active_jobs: int
    staging_writable: bool
    sweeper_running: bool


@router.get("/health", response_model=HealthResponse)
async def health_check(registry: ProcessRegistry = Depends(get_registry)):
    """
    Liveness of the ingest service.

    Degraded when the staging root, where ledgers are checkpointed, is
    not writable.
    """
    settings = registry.settings
    staging_root = settings.staging_root
    staging_writable = staging_root.is_dir() and os.access(staging_root, os.W_OK)

    return HealthResponse(
        status="healthy" if staging_writable else "degraded",
        timestamp=datetime.now(timezone.utc),
        version=settings.api_version,
        active_jobs=len(registry),
        staging_writable=staging_writable,
        sweeper_running=registry.sweeper_running,
    )
