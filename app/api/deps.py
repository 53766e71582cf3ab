"""
Request-scoped access to the service objects created at startup.
"""

from fastapi import Request

from domains.share_ingest.mount import MountManager
from domains.share_ingest.registry import ProcessRegistry
from domains.share_ingest.scheduler import BatchScheduler


def get_registry(request: Request) -> ProcessRegistry:
    return request.app.state.registry


def get_scheduler(request: Request) -> BatchScheduler:
    return request.app.state.scheduler


def get_mount_manager(request: Request) -> MountManager:
    return request.app.state.mount_manager
