"""Health endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Request, status

from ...config import settings

router = APIRouter(tags=["health"])


@router.get("/health", status_code=status.HTTP_200_OK)
def health_root(request: Request) -> dict:
    """Simple health check endpoint that doesn't touch the store."""
    container = getattr(request.app.state, "container", None)
    return {
        "status": "ok",
        "storage_backend": settings.storage_backend,
        "services_ready": container is not None,
    }
