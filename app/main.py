"""
Share Ingest - FastAPI service

Control surface for pulling documents off SMB/CIFS shares:
- /shares: launch ingestion jobs, poll them, stop one or all
- /mounts: attach shares under the mount root and detach them again
- /health: liveness plus staging-area and registry state
"""

import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from app.api import health, mounts, shares
from app.utils.config import Settings, get_settings
from domains.share_ingest.errors import LedgerIOError, ShareIngestError
from domains.share_ingest.mount import MountManager
from domains.share_ingest.registry import ProcessRegistry
from domains.share_ingest.scheduler import BatchScheduler

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
)


def configure_logging(settings: Settings) -> None:
    logger.remove()
    logger.add(sys.stdout, format=LOG_FORMAT, level=settings.log_level)


settings = get_settings()
configure_logging(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the registry, scheduler and mount manager; run the registry sweeper."""
    logger.info(f"Starting {settings.api_title} v{settings.api_version}")

    settings.staging_root.mkdir(parents=True, exist_ok=True)
    registry = ProcessRegistry(settings)
    app.state.registry = registry
    app.state.scheduler = BatchScheduler(registry, settings=settings)
    app.state.mount_manager = MountManager(settings)
    registry.start_sweeper()
    logger.success(
        f"Ready: staging={settings.staging_root} batch_size={settings.batch_size} "
        f"concurrency={settings.concurrent_operations}"
    )

    yield

    logger.info("Shutting down, abandoning unfinished jobs")
    registry.stop_sweeper()
    dropped = registry.stop_all()
    if dropped:
        logger.warning(f"Dropped {dropped} job record(s) on shutdown")


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description="Incremental, resumable document ingestion from SMB/CIFS shares",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ShareIngestError)
async def share_ingest_error_handler(request: Request, exc: ShareIngestError):
    """Domain errors that escaped a route."""
    status_code = 503 if isinstance(exc, LedgerIOError) else 500
    logger.error(f"{type(exc).__name__} on {request.url.path}: {exc}")
    return JSONResponse(status_code=status_code, content={"error": type(exc).__name__, "detail": str(exc)})


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception on {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "detail": str(exc) if settings.log_level == "DEBUG" else "An error occurred",
        },
    )


app.include_router(health.router, tags=["Health"])
app.include_router(shares.router, prefix="/shares", tags=["Shares"])
app.include_router(mounts.router, prefix="/mounts", tags=["Mounts"])


@app.get("/")
async def root():
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "routes": ["/shares/jobs", "/shares/accepts", "/mounts", "/health"],
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )
