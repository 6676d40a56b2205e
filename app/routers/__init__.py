"""
FastAPI routers for the render API.
"""

from app.routers import health, media, render, storage

__all__ = ["health", "storage", "media", "render"]
