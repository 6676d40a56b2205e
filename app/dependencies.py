"""
FastAPI dependencies exposing the services stored on ``app.state``.
"""

from fastapi import Request

from app.config import Settings
from app.services.admission_gate import AdmissionGate
from app.services.media_library import MediaLibraryService
from app.services.render_query import RenderQueryService
from app.services.render_submission import RenderSubmissionService
from app.services.stuck_job_reaper import StuckJobReaper


def _component(request: Request, name: str):
    component = getattr(request.app.state, name, None)
    if component is None:
        raise RuntimeError(f"{name} not initialized")
    return component


def get_app_settings(request: Request) -> Settings:
    return _component(request, "settings")


def get_admission_gate(request: Request) -> AdmissionGate:
    return _component(request, "admission_gate")


def get_render_submission(request: Request) -> RenderSubmissionService:
    return _component(request, "render_submission")


def get_render_query(request: Request) -> RenderQueryService:
    return _component(request, "render_query")


def get_media_library(request: Request) -> MediaLibraryService:
    return _component(request, "media_library")


def get_stuck_job_reaper(request: Request) -> StuckJobReaper:
    return _component(request, "stuck_job_reaper")
