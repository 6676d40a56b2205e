"""
FastAPI application entry point for RenderGate.

RenderGate admits, queues and tracks cloud video renders:
1. Storage quota accounting and upload admission
2. Render job submission (single and batch) to the worker queue
3. Render status reads and the stuck-job cleanup trigger
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.config import Settings, get_settings
from app.errors import RenderServiceError
from app.routers import health, media, render, storage
from app.routers.health import SERVICE_VERSION
from app.services.admission_gate import AdmissionGate
from app.services.job_store import JobStore, build_job_store
from app.services.media_library import MediaLibraryService
from app.services.object_storage import ObjectStorage, build_object_storage
from app.services.render_query import RenderQueryService
from app.services.render_submission import RenderSubmissionService
from app.services.storage_accountant import StorageAccountant
from app.services.stuck_job_reaper import StuckJobReaper
from app.services.subscriptions import StaticSubscriptionDirectory, SubscriptionDirectory
from app.services.work_queue import WorkQueue, build_work_queue

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    object_storage: Optional[ObjectStorage] = None,
    job_store: Optional[JobStore] = None,
    work_queue: Optional[WorkQueue] = None,
    subscriptions: Optional[SubscriptionDirectory] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    External collaborators default to the backends selected in settings and
    can be replaced, e.g. with in-memory implementations in tests.

    Args:
        settings: Settings to use (defaults to the cached settings)
        object_storage: Object storage backend
        job_store: Render job store
        work_queue: Render work queue
        subscriptions: Subscription tier lookup

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """
        Lifespan context manager for startup and shutdown events.
        Wires the services on startup and refuses to start without CRON_SECRET.
        """
        logger.info(f"Starting {settings.app_name}...")
        logging.getLogger().setLevel(settings.log_level.upper())

        settings.require_cron_secret()

        storage = object_storage or build_object_storage(settings)
        store = job_store or build_job_store(settings)
        queue = work_queue or build_work_queue(settings)
        directory = subscriptions or StaticSubscriptionDirectory.from_settings(settings)
        logger.info(
            f"Storage backend: {type(storage).__name__}, "
            f"job store: {type(store).__name__}, queue: {type(queue).__name__}"
        )

        accountant = StorageAccountant(storage, settings=settings)
        gate = AdmissionGate(accountant, directory, settings=settings)

        # Store in app state for dependency injection
        app.state.settings = settings
        app.state.admission_gate = gate
        app.state.render_submission = RenderSubmissionService(store, queue, gate, directory)
        app.state.render_query = RenderQueryService(store, storage, settings=settings)
        app.state.media_library = MediaLibraryService(storage, gate, settings=settings)
        app.state.stuck_job_reaper = StuckJobReaper(store, settings=settings)

        logger.info(f"{settings.app_name} ready to accept requests.")

        yield

        logger.info(f"Shutting down {settings.app_name}...")
        for name in (
            "admission_gate",
            "render_submission",
            "render_query",
            "media_library",
            "stuck_job_reaper",
        ):
            setattr(app.state, name, None)
        logger.info("Shutdown complete")

    app = FastAPI(
        title="RenderGate",
        description="""
RenderGate - quota-gated cloud video rendering.

## Features

### Storage (`/api/storage`)
- Recursive usage accounting across media library and renders
- Upload pre-checks against per-file and per-account limits

### Media (`/api/media`)
- Signed upload targets
- Folder moves

### Render (`/api/render`, `/api/renders`)
- Single and batch render submission
- Status polling with signed result URLs
- Stuck-job cleanup (scheduler only)

## Usage

1. Submit a render: `POST /api/render/start`
2. Poll status: `GET /api/render/{job_id}`
3. Download the result from `downloadUrl` once completed
        """,
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict to specific origins
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RenderServiceError)
    async def render_service_error_handler(request: Request, exc: RenderServiceError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={
                "error": "invalid_request",
                "message": "Malformed request",
                "fields": [
                    {"loc": list(error["loc"]), "message": error["msg"]}
                    for error in exc.errors()
                ],
            },
        )

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(storage.router)
    app.include_router(media.router)
    app.include_router(render.router)

    @app.get("/")
    async def root():
        """Root endpoint with service info."""
        return {
            "service": "RenderGate",
            "version": SERVICE_VERSION,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "app.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
        reload=settings.debug,
    )
