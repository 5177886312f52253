"""System router — health and dependency status."""
from __future__ import annotations

import logging
import shutil
from typing import Any, Dict

from fastapi import APIRouter

from backend.routers import deps

logger = logging.getLogger("timeline_studio.routers.system")
router = APIRouter()

_VERSION = "1.0.0"


@router.get("/health")
async def health_check() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok", "version": _VERSION}


@router.get("/status")
async def system_status() -> Dict[str, Any]:
    """Report whether the provider and the ffmpeg tools are usable."""
    registry = deps.get_registry()
    return {
        "provider_configured": deps.get_backend().is_available(),
        "ffmpeg":  shutil.which("ffmpeg") is not None,
        "ffprobe": shutil.which("ffprobe") is not None,
        "models_total": len(registry),
        "models_available": len(registry.list_available()),
    }
