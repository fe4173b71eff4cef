"""Health check endpoint."""

import platform
import sys

from fastapi import APIRouter

from app.api.v1.jobs import get_dispatchers

router = APIRouter()


@router.get("/health")
async def health_check():
    """Service health and per-kind queue depth."""
    dispatchers = get_dispatchers()
    return {
        "status": "healthy" if dispatchers else "starting",
        "queues": {kind: d.pending() for kind, d in dispatchers.items()},
        "python_version": sys.version,
        "platform": platform.platform(),
    }
