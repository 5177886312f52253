"""Timeline export / import.

Import always assigns a fresh timeline id and fresh timestamps so an
imported copy never collides with a stored timeline of the same id.
Malformed payloads are reported through :class:`ImportResult`; no partial
timeline is ever returned.
"""
from __future__ import annotations

import dataclasses
import json
import logging
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from backend.services.video.types import (
    CameraPath,
    ImportResult,
    MotionProfile,
    RenderPriority,
    Segment,
    SegmentStatus,
    Timeline,
    TransitionType,
    new_timeline_id,
    utc_now,
)

logger = logging.getLogger("timeline_studio.video.serialization")


class SegmentPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    segment_id: int
    duration_sec: float = Field(gt=0, allow_inf_nan=False)
    model: str
    prompt: str = ""
    negative_prompt: Optional[str] = None
    first_frame: Optional[str] = None
    last_frame: Optional[str] = None
    generated_video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    preview_video_url: Optional[str] = None
    status: SegmentStatus = SegmentStatus.PENDING
    transition: TransitionType = TransitionType.FADE
    motion_profile: MotionProfile = MotionProfile.SMOOTH
    camera_path: CameraPath = CameraPath.STATIC
    priority: RenderPriority = RenderPriority.STANDARD
    seed: Optional[int] = None
    style_preset: Optional[str] = None
    error_message: Optional[str] = None
    first_frame_pinned: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class TimelinePayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    timeline_id: Optional[str] = None
    name: str = "Untitled Timeline"
    description: str = ""
    version: str = "1.0"
    segments: List[SegmentPayload] = Field(min_length=1)
    global_style: Optional[str] = None
    target_resolution: str = "1080p"
    tags: List[str] = Field(default_factory=list)
    is_template: bool = False
    user_id: Optional[str] = None
    scenario_id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @field_validator("segments")
    @classmethod
    def _unique_segment_ids(cls, segments: List[SegmentPayload]) -> List[SegmentPayload]:
        ids = [s.segment_id for s in segments]
        if len(ids) != len(set(ids)):
            raise ValueError(f"duplicate segment ids: {ids}")
        return segments


# ── export ────────────────────────────────────────────────────────────────────


def segment_to_dict(segment: Segment) -> Dict[str, Any]:
    data = dataclasses.asdict(segment)
    for key in ("status", "transition", "motion_profile", "camera_path", "priority"):
        data[key] = data[key].value
    return data


def timeline_to_dict(timeline: Timeline) -> Dict[str, Any]:
    return {
        "timeline_id": timeline.timeline_id,
        "name": timeline.name,
        "description": timeline.description,
        "version": timeline.version,
        "segments": [segment_to_dict(s) for s in timeline.segments],
        "global_style": timeline.global_style,
        "total_duration_sec": timeline.total_duration_sec,
        "target_resolution": timeline.target_resolution,
        "tags": list(timeline.tags),
        "is_template": timeline.is_template,
        "user_id": timeline.user_id,
        "scenario_id": timeline.scenario_id,
        "created_at": timeline.created_at,
        "updated_at": timeline.updated_at,
    }


def export_timeline(timeline: Timeline) -> str:
    return json.dumps(timeline_to_dict(timeline), indent=2)


# ── import ────────────────────────────────────────────────────────────────────


def timeline_from_dict(data: Dict[str, Any]) -> Timeline:
    """Restore a stored timeline, keeping its identity.

    Raises:
        pydantic.ValidationError: If ``data`` does not match the schema.
    """
    payload = TimelinePayload.model_validate(data)
    return _build_timeline(payload, keep_identity=True)


def import_timeline(raw: Union[str, bytes, Dict[str, Any]]) -> ImportResult:
    """Import an exported timeline under a fresh id and fresh timestamps."""
    try:
        data = json.loads(raw) if isinstance(raw, (str, bytes)) else raw
    except json.JSONDecodeError as exc:
        logger.warning("Timeline import rejected: invalid JSON (%s)", exc)
        return ImportResult(success=False, error=f"Invalid JSON: {exc.msg}")
    if not isinstance(data, dict):
        return ImportResult(success=False, error="Timeline payload must be a JSON object")

    try:
        payload = TimelinePayload.model_validate(data)
    except ValidationError as exc:
        logger.warning("Timeline import rejected: %d validation error(s)", exc.error_count())
        return ImportResult(success=False, error=_summarize(exc))

    return ImportResult(success=True, timeline=_build_timeline(payload, keep_identity=False))


def timeline_from_scenario(data: Dict[str, Any]) -> ImportResult:
    """Adapt a scenario-assistant timeline (looser key names) into a Timeline."""
    if not isinstance(data, dict):
        return ImportResult(success=False, error="Scenario payload must be a JSON object")
    raw_segments = data.get("segments") or []
    if not isinstance(raw_segments, list):
        return ImportResult(success=False, error="Scenario 'segments' must be a list")

    segments = []
    for idx, seg in enumerate(raw_segments):
        if not isinstance(seg, dict):
            return ImportResult(success=False, error=f"Scenario segment {idx + 1} is not an object")
        segments.append({
            "segment_id": seg.get("segment_id") or idx + 1,
            "duration_sec": seg.get("duration_sec") or 5,
            "model": seg.get("model_id") or seg.get("model") or "wan-2.5-i2v",
            "prompt": seg.get("prompt_text") or seg.get("prompt") or "",
            "negative_prompt": seg.get("negative_prompt") or "",
            "first_frame": seg.get("first_frame_url") or seg.get("first_frame"),
            "last_frame": seg.get("last_frame_url") or seg.get("last_frame"),
            "transition": seg.get("transition_type") or seg.get("transition") or "fade",
            "motion_profile": seg.get("motion_profile") or "smooth",
            "camera_path": seg.get("camera_path") or "static",
            "priority": seg.get("priority") or "standard",
            "style_preset": seg.get("style_preset"),
        })

    result = import_timeline({
        "name": data.get("name") or "AI Generated Timeline",
        "description": data.get("description") or "",
        "segments": segments,
        "target_resolution": data.get("target_resolution") or "1080p",
        "scenario_id": data.get("scenario_id"),
    })
    if result.success and data.get("timeline_id"):
        result.timeline.timeline_id = str(data["timeline_id"])
    return result


# ── private ───────────────────────────────────────────────────────────────────


def _build_timeline(payload: TimelinePayload, keep_identity: bool) -> Timeline:
    now = utc_now()
    segments = [
        Segment(**{
            **seg.model_dump(exclude={"created_at", "updated_at"}),
            "status": _imported_status(seg.status, keep_identity),
            "created_at": seg.created_at or now,
            "updated_at": seg.updated_at or now,
        })
        for seg in payload.segments
    ]
    fields = payload.model_dump(exclude={"segments", "timeline_id", "created_at", "updated_at"})
    if keep_identity and payload.timeline_id:
        identity = {
            "timeline_id": payload.timeline_id,
            "created_at": payload.created_at or now,
            "updated_at": payload.updated_at or now,
        }
    else:
        identity = {"timeline_id": new_timeline_id(), "created_at": now, "updated_at": now}
    return Timeline(segments=segments, **fields, **identity)


def _summarize(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors()[:5]:
        loc = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "Invalid timeline payload: " + "; ".join(parts)


def _imported_status(status: SegmentStatus, keep_identity: bool) -> SegmentStatus:
    # imported copies never have a run in flight
    if not keep_identity and status is SegmentStatus.GENERATING:
        return SegmentStatus.PENDING
    return status
