"""
Health check endpoints for the render service.
"""

from fastapi import APIRouter, Request

from app.schemas.responses import HealthResponse, ReadinessResponse

router = APIRouter()

SERVICE_VERSION = "1.0.0"

_COMPONENTS = (
    "admission_gate",
    "render_submission",
    "render_query",
    "media_library",
    "stuck_job_reaper",
)


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    return HealthResponse(
        status="healthy",
        version=SERVICE_VERSION,
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request):
    """
    Readiness check endpoint.

    Returns whether every service component was initialized on startup.
    """
    components = {
        name: "ready" if getattr(request.app.state, name, None) is not None else "not_loaded"
        for name in _COMPONENTS
    }

    return ReadinessResponse(
        ready=all(state == "ready" for state in components.values()),
        components=components,
    )
