"""
Share ingestion endpoints.

Includes:
- Job launch for a remote share
- Job status polling
- Stop of one job or of every job
"""

from fastapi import APIRouter, Depends, HTTPException
from loguru import logger

from app.api.deps import get_registry, get_scheduler
from app.models.schemas import JobRecord, StartJobRequest, StartJobResponse, StopResponse
from domains.share_ingest.errors import JobNotFoundError, ShareBusyError, ShareValidationError
from domains.share_ingest.registry import ProcessRegistry
from domains.share_ingest.scheduler import BatchScheduler
from domains.share_ingest.share import Credentials

router = APIRouter()


@router.post("/jobs", response_model=StartJobResponse)
async def start_job(
    request: StartJobRequest,
    scheduler: BatchScheduler = Depends(get_scheduler),
):
    """
    Start ingesting a share in the background.

    Returns:
        Job id to poll
    """
    if not request.share or not request.username or not request.password:
        raise HTTPException(status_code=400, detail="Missing required fields: username, password, or share.")

    try:
        job_id = scheduler.start_job(
            request.share,
            Credentials(username=request.username, password=request.password),
            request.ignores,
        )
    except ShareValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ShareBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))

    return StartJobResponse(job_id=job_id, share=request.share, success=True)


@router.get("/jobs/{job_id}", response_model=JobRecord)
async def get_job_status(job_id: str, registry: ProcessRegistry = Depends(get_registry)):
    """Current status, progress and result of a job."""
    try:
        return registry.get(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Process not found")


@router.post("/jobs/stop-all", response_model=StopResponse)
async def stop_all_jobs(registry: ProcessRegistry = Depends(get_registry)):
    """Flag every job to stop and clear the registry."""
    if len(registry) == 0:
        raise HTTPException(status_code=400, detail="No active processes to stop")

    stopped = registry.stop_all()
    return StopResponse(message="All processes have been stopped and cleared", stopped=stopped)


@router.post("/jobs/{job_id}/stop", response_model=StopResponse)
async def stop_job(job_id: str, registry: ProcessRegistry = Depends(get_registry)):
    """Ask a job to stop at its next batch boundary."""
    try:
        registry.request_stop(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Process not found")

    logger.info(f"Stopping process with ID: {job_id}")
    return StopResponse(message=f"Process {job_id} is stopping", stopped=1)


@router.get("/accepts")
async def accepted_extensions(scheduler: BatchScheduler = Depends(get_scheduler)):
    """File extensions with a registered converter."""
    return {"extensions": scheduler.converters.extensions()}
