"""
Mount endpoints.

Alternative ingestion entry point: attach a share under the mount root so
it can be walked as local files.
"""

from dataclasses import asdict
from pathlib import Path
from typing import List

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import get_mount_manager
from app.models.schemas import MountRecordModel, MountRequest, OperationStatus
from domains.share_ingest.errors import MountError, ShareValidationError
from domains.share_ingest.mount import MountManager
from domains.share_ingest.share import Credentials, parse_share_spec

router = APIRouter()


@router.get("", response_model=List[MountRecordModel])
def list_mounts(manager: MountManager = Depends(get_mount_manager)):
    """All recorded mount attempts."""
    return [MountRecordModel(**asdict(record)) for record in manager.records()]


@router.post("", response_model=MountRecordModel)
def mount_share(request: MountRequest, manager: MountManager = Depends(get_mount_manager)):
    """Mount a share, reusing an existing mount for it when possible."""
    try:
        spec = parse_share_spec(request.share)
    except ShareValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        record = manager.mount_share(spec, Credentials(username=request.username, password=request.password))
    except MountError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return MountRecordModel(**asdict(record))


@router.delete("", response_model=OperationStatus)
def unmount_share(mount_point: str, manager: MountManager = Depends(get_mount_manager)):
    """Unmount a recorded mount point."""
    if not any(record.mount_point == mount_point for record in manager.records()):
        raise HTTPException(status_code=404, detail="Mount point not found")

    try:
        manager.unmount(Path(mount_point))
    except MountError as e:
        raise HTTPException(status_code=502, detail=str(e))

    return OperationStatus(status="unmounted", message=f"Unmounted {mount_point}")
