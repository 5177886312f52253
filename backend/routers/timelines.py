"""Timeline router — timeline/segment CRUD, routing, splitting, generation."""
from __future__ import annotations

import contextlib
import dataclasses
import logging
from typing import Any, Dict, Iterator, List, Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, Response, status
from pydantic import BaseModel, Field

from backend.routers import deps
from backend.services.video.segment_state import InvalidTransitionError, SegmentBusyError
from backend.services.video.serialization import (
    export_timeline,
    import_timeline,
    segment_to_dict,
    timeline_from_scenario,
    timeline_to_dict,
)
from backend.services.video.timeline_editor import (
    SegmentNotFoundError,
    TimelineEditor,
    TimelineMutationError,
)
from backend.services.video.types import DEFAULT_MODEL_ID, ImportResult, Timeline, create_timeline

logger = logging.getLogger("timeline_studio.routers.timelines")
router = APIRouter()


# ── Request bodies ────────────────────────────────────────────────────────────


class CreateTimelineRequest(BaseModel):
    name: str = "Untitled Timeline"
    model: str = DEFAULT_MODEL_ID
    description: str = ""


class UpdateTimelineRequest(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    target_resolution: Optional[str] = None
    global_style: Optional[str] = None
    tags: Optional[List[str]] = None
    is_template: Optional[bool] = None


class SegmentFields(BaseModel):
    duration_sec: Optional[float] = Field(default=None, gt=0, allow_inf_nan=False)
    model: Optional[str] = None
    prompt: Optional[str] = None
    negative_prompt: Optional[str] = None
    first_frame: Optional[str] = None
    last_frame: Optional[str] = None
    transition: Optional[str] = None
    motion_profile: Optional[str] = None
    camera_path: Optional[str] = None
    priority: Optional[str] = None
    seed: Optional[int] = None
    style_preset: Optional[str] = None
    first_frame_pinned: Optional[bool] = None


# Fields that may be explicitly cleared with null.
_NULLABLE_FIELDS = {"negative_prompt", "first_frame", "last_frame", "seed", "style_preset"}


class AddSegmentRequest(SegmentFields):
    after_segment_id: Optional[int] = None


class ReorderRequest(BaseModel):
    from_index: int
    to_index: int


class PreviewRequest(BaseModel):
    concurrency: Optional[int] = Field(default=None, ge=1)


# ── Helpers ───────────────────────────────────────────────────────────────────


def _load(timeline_id: str) -> Timeline:
    timeline = deps.get_store().get(timeline_id)
    if timeline is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Timeline {timeline_id!r} not found.",
        )
    return timeline


def _require_idle(timeline_id: str) -> None:
    if deps.is_running(timeline_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Timeline {timeline_id!r} has a generation run in progress.",
        )


def _claim(timeline_id: str) -> None:
    if not deps.claim_run(timeline_id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Timeline {timeline_id!r} already has a generation run in progress.",
        )


@contextlib.contextmanager
def _editor_errors() -> Iterator[None]:
    """Translate editor exceptions into HTTP errors."""
    try:
        yield
    except SegmentNotFoundError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Segment {exc.args[0]!r} not found.",
        ) from exc
    except SegmentBusyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except (TimelineMutationError, InvalidTransitionError) as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(exc)) from exc


def _save_imported(result: ImportResult) -> Dict[str, Any]:
    if not result.success:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=result.error)
    deps.get_store().save(result.timeline)
    return timeline_to_dict(result.timeline)


# ── Background workers ────────────────────────────────────────────────────────


async def _run_generation(timeline_id: str) -> None:
    """Background worker: full sequential generation, saved after every segment."""
    store = deps.get_store()
    try:
        timeline = store.get(timeline_id)
        if timeline is None:
            logger.warning("Timeline %s vanished before generation started", timeline_id)
            return
        run = await deps.get_orchestrator().generate_timeline(
            timeline,
            on_segment_complete=lambda _sid, _result: store.save(timeline),
        )
        store.save(timeline)
        logger.info("Generation run for %s finished (success=%s)", timeline_id, run.success)
    except Exception as exc:
        # Runs after the 202 response is sent; failures are only logged.
        logger.exception("Generation run for %s failed: %s", timeline_id, exc)
    finally:
        deps.release_run(timeline_id)


async def _run_preview(timeline_id: str, concurrency: Optional[int]) -> None:
    """Background worker: preview every segment on the fast model."""
    store = deps.get_store()
    try:
        timeline = store.get(timeline_id)
        if timeline is None:
            return
        results = await deps.get_orchestrator().generate_preview(timeline, concurrency=concurrency)
        store.save(timeline)
        logger.info(
            "Preview run for %s finished: %d/%d ok",
            timeline_id, sum(r.success for r in results), len(results),
        )
    except Exception as exc:
        logger.exception("Preview run for %s failed: %s", timeline_id, exc)
    finally:
        deps.release_run(timeline_id)


async def _run_retry(timeline_id: str, segment_id: int) -> None:
    """Background worker: regenerate a single segment."""
    store = deps.get_store()
    try:
        timeline = store.get(timeline_id)
        if timeline is None:
            return
        result = await deps.get_orchestrator().retry_segment(timeline, segment_id)
        store.save(timeline)
        logger.info("Retry of segment %d in %s: success=%s", segment_id, timeline_id, result.success)
    except Exception as exc:
        logger.exception("Retry of segment %d in %s failed: %s", segment_id, timeline_id, exc)
    finally:
        deps.release_run(timeline_id)


# ── Timeline endpoints ────────────────────────────────────────────────────────

# NOTE: static paths ("/import", "/from-scenario") are declared before
# "/{timeline_id}" so they are not captured as ids.

@router.get("/")
async def list_timelines() -> Dict[str, Any]:
    """List stored timelines (summaries only)."""
    timelines = deps.get_store().list_summaries()
    return {"timelines": timelines, "total": len(timelines)}


@router.post("/", status_code=status.HTTP_201_CREATED)
async def create_new_timeline(request: CreateTimelineRequest) -> Dict[str, Any]:
    """Create a timeline holding one empty 5-second segment."""
    timeline = create_timeline(request.name, model=request.model)
    timeline.description = request.description
    deps.get_store().save(timeline)
    return timeline_to_dict(timeline)


@router.post("/import", status_code=status.HTTP_201_CREATED)
async def import_timeline_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Import an exported timeline under a fresh id."""
    return _save_imported(import_timeline(payload))


@router.post("/from-scenario", status_code=status.HTTP_201_CREATED)
async def import_scenario(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Create a timeline from a scenario-assistant payload."""
    return _save_imported(timeline_from_scenario(payload))


@router.get("/{timeline_id}")
async def get_timeline(timeline_id: str) -> Dict[str, Any]:
    return timeline_to_dict(_load(timeline_id))


@router.patch("/{timeline_id}")
async def update_timeline(timeline_id: str, request: UpdateTimelineRequest) -> Dict[str, Any]:
    """Update timeline-level properties."""
    _require_idle(timeline_id)
    timeline = _load(timeline_id)
    with _editor_errors():
        TimelineEditor(timeline).update_properties(**request.model_dump(exclude_none=True))
    deps.get_store().save(timeline)
    return timeline_to_dict(timeline)


@router.delete("/{timeline_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_timeline(timeline_id: str) -> None:
    _require_idle(timeline_id)
    if not deps.get_store().delete(timeline_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Timeline {timeline_id!r} not found.",
        )


@router.get("/{timeline_id}/export")
async def export_timeline_json(timeline_id: str) -> Response:
    """Download the timeline as a JSON document."""
    timeline = _load(timeline_id)
    return Response(
        content=export_timeline(timeline),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="timeline_{timeline.timeline_id}.json"'},
    )


# ── Segment endpoints ─────────────────────────────────────────────────────────


@router.post("/{timeline_id}/segments", status_code=status.HTTP_201_CREATED)
async def add_segment(timeline_id: str, request: AddSegmentRequest) -> Dict[str, Any]:
    _require_idle(timeline_id)
    timeline = _load(timeline_id)
    fields = request.model_dump(exclude_none=True, exclude={"after_segment_id"})
    with _editor_errors():
        segment = TimelineEditor(timeline).add_segment(request.after_segment_id, **fields)
    deps.get_store().save(timeline)
    return segment_to_dict(segment)


@router.post("/{timeline_id}/segments/reorder")
async def reorder_segments(timeline_id: str, request: ReorderRequest) -> Dict[str, Any]:
    _require_idle(timeline_id)
    timeline = _load(timeline_id)
    with _editor_errors():
        TimelineEditor(timeline).reorder_segments(request.from_index, request.to_index)
    deps.get_store().save(timeline)
    return timeline_to_dict(timeline)


@router.patch("/{timeline_id}/segments/{segment_id}")
async def update_segment(timeline_id: str, segment_id: int, request: SegmentFields) -> Dict[str, Any]:
    """Edit segment fields; the segment becomes ``modified``."""
    _require_idle(timeline_id)
    timeline = _load(timeline_id)
    updates = {
        k: v for k, v in request.model_dump(exclude_unset=True).items()
        if v is not None or k in _NULLABLE_FIELDS
    }
    with _editor_errors():
        segment = TimelineEditor(timeline).update_segment(segment_id, **updates)
    deps.get_store().save(timeline)
    return segment_to_dict(segment)


@router.delete("/{timeline_id}/segments/{segment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_segment(timeline_id: str, segment_id: int) -> None:
    _require_idle(timeline_id)
    timeline = _load(timeline_id)
    with _editor_errors():
        TimelineEditor(timeline).remove_segment(segment_id)
    deps.get_store().save(timeline)


@router.post("/{timeline_id}/segments/{segment_id}/duplicate", status_code=status.HTTP_201_CREATED)
async def duplicate_segment(timeline_id: str, segment_id: int) -> Dict[str, Any]:
    _require_idle(timeline_id)
    timeline = _load(timeline_id)
    with _editor_errors():
        segment = TimelineEditor(timeline).duplicate_segment(segment_id)
    deps.get_store().save(timeline)
    return segment_to_dict(segment)


@router.get("/{timeline_id}/segments/{segment_id}/routing")
async def get_routing_decision(timeline_id: str, segment_id: int) -> Dict[str, Any]:
    """Advisory routing decision for one segment (never applied automatically)."""
    decision = deps.get_routing().decide_in(_load(timeline_id), segment_id)
    if decision is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Segment {segment_id!r} not found.",
        )
    return dataclasses.asdict(decision)


@router.post("/{timeline_id}/segments/{segment_id}/split")
async def split_segment(timeline_id: str, segment_id: int) -> Dict[str, Any]:
    """Split an over-long segment in place to fit its model's maximum duration."""
    _require_idle(timeline_id)
    timeline = _load(timeline_id)
    with _editor_errors():
        parts = deps.get_splitter().split_in_timeline(TimelineEditor(timeline), segment_id)
    deps.get_store().save(timeline)
    return {
        "segments": [segment_to_dict(p) for p in parts],
        "split": len(parts) > 1,
        "timeline": timeline_to_dict(timeline),
    }


@router.post("/{timeline_id}/chain")
async def chain_frames(timeline_id: str) -> Dict[str, Any]:
    """Propagate last frames of generated segments into their successors."""
    _require_idle(timeline_id)
    timeline = _load(timeline_id)
    timeline.segments = await deps.get_chaining().chain_adjacent(timeline.segments)
    deps.get_store().save(timeline)
    return timeline_to_dict(timeline)


# ── Analysis endpoints ────────────────────────────────────────────────────────


@router.get("/{timeline_id}/consistency")
async def check_consistency(timeline_id: str) -> Dict[str, Any]:
    return dataclasses.asdict(deps.get_consistency_checker().check(_load(timeline_id)))


@router.get("/{timeline_id}/estimate")
async def estimate_timeline(timeline_id: str) -> Dict[str, Any]:
    """Token and time estimate for a full generation run."""
    return dataclasses.asdict(deps.get_cost_estimator().estimate_timeline(_load(timeline_id)))


# ── Generation endpoints ──────────────────────────────────────────────────────


@router.post("/{timeline_id}/generate", status_code=status.HTTP_202_ACCEPTED)
async def generate_timeline(timeline_id: str, background_tasks: BackgroundTasks) -> Dict[str, Any]:
    """Start sequential generation of every segment as a background task."""
    _load(timeline_id)
    _claim(timeline_id)
    background_tasks.add_task(_run_generation, timeline_id)
    return {"timeline_id": timeline_id, "status": "queued"}


@router.post("/{timeline_id}/preview", status_code=status.HTTP_202_ACCEPTED)
async def preview_timeline(
    timeline_id: str,
    background_tasks: BackgroundTasks,
    request: Optional[PreviewRequest] = None,
) -> Dict[str, Any]:
    """Start a low-fidelity preview run as a background task."""
    _load(timeline_id)
    _claim(timeline_id)
    concurrency = request.concurrency if request else None
    background_tasks.add_task(_run_preview, timeline_id, concurrency)
    return {"timeline_id": timeline_id, "status": "queued"}


@router.post("/{timeline_id}/segments/{segment_id}/retry", status_code=status.HTTP_202_ACCEPTED)
async def retry_segment(timeline_id: str, segment_id: int, background_tasks: BackgroundTasks) -> Dict[str, Any]:
    """Regenerate one segment (typically one in the ``error`` state)."""
    timeline = _load(timeline_id)
    if timeline.index_of(segment_id) < 0:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Segment {segment_id!r} not found.",
        )
    _claim(timeline_id)
    background_tasks.add_task(_run_retry, timeline_id, segment_id)
    return {"timeline_id": timeline_id, "segment_id": segment_id, "status": "queued"}


@router.get("/{timeline_id}/run")
async def get_run_status(timeline_id: str) -> Dict[str, Any]:
    """Per-segment status of the latest run, and whether one is in flight."""
    timeline = _load(timeline_id)
    return {
        "timeline_id": timeline_id,
        "running": deps.is_running(timeline_id),
        "segments": [
            {
                "segment_id": s.segment_id,
                "status": s.status.value,
                "error_message": s.error_message,
                "generated_video_url": s.generated_video_url,
                "preview_video_url": s.preview_video_url,
            }
            for s in timeline.segments
        ],
    }
