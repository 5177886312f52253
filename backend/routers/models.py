"""Model router — read-only view of the capability registry."""
from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, status

from backend.routers import deps
from backend.services.shared.config import get_config
from backend.services.video.types import ModelCapability

logger = logging.getLogger("timeline_studio.routers.models")
router = APIRouter()


def _capability_to_dict(cap: ModelCapability) -> Dict[str, Any]:
    data = dataclasses.asdict(cap)
    data["priority"] = cap.priority.value
    data["supports_full_chaining"] = cap.supports_full_chaining
    for key in ("supported_resolutions", "style_presets", "motion_profiles", "camera_paths"):
        data[key] = list(data[key])
    return data


@router.get("/")
async def list_models(
    available_only: bool = False,
    preview_only: bool = False,
    high_quality_only: bool = False,
) -> Dict[str, Any]:
    """List video models with their duration and frame-constraint support.

    ``high_quality_only`` keeps available, non-preview models scoring at
    least ``registry.high_quality_threshold``.
    """
    registry = deps.get_registry()
    if high_quality_only:
        models = registry.list_high_quality(get_config().get_int("registry.high_quality_threshold", 7))
    elif preview_only:
        models = registry.list_preview()
    elif available_only:
        models = registry.list_available()
    else:
        models = registry.list_all()
    return {"models": [_capability_to_dict(m) for m in models], "total": len(models)}


@router.get("/{model_id}")
async def get_model(model_id: str) -> Dict[str, Any]:
    cap = deps.get_registry().lookup(model_id)
    if cap is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Model {model_id!r} not found.",
        )
    return _capability_to_dict(cap)
