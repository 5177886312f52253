"""Render job router — start final renders, poll them, stream progress."""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, HTTPException, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel

from backend.routers import deps
from backend.services.video.types import RenderJob, RenderJobStatus

logger = logging.getLogger("timeline_studio.routers.jobs")
router = APIRouter()

_WS_POLL_INTERVAL = 0.5   # seconds between job-map reads for WebSocket updates
_WS_TIMEOUT       = 3600  # max WebSocket session duration (1 hour)

_TERMINAL_STATUSES = {RenderJobStatus.COMPLETED, RenderJobStatus.FAILED}


class RenderRequest(BaseModel):
    timeline_id: str


def _job_to_dict(job: RenderJob) -> Dict[str, Any]:
    data = dataclasses.asdict(job)
    data["status"] = job.status.value
    return data


# ── Endpoints ─────────────────────────────────────────────────────────────────

# NOTE: GET "/" must be defined before GET "/{job_id}" so FastAPI doesn't
# swallow the empty path as a job_id.

@router.get("/")
async def list_jobs(timeline_id: Optional[str] = None) -> Dict[str, Any]:
    """List render jobs, newest first, optionally for one timeline."""
    jobs = deps.get_render_manager().list_jobs(timeline_id)
    return {"jobs": [_job_to_dict(j) for j in jobs], "total": len(jobs)}


@router.post("/render", status_code=status.HTTP_202_ACCEPTED)
async def start_render(request: RenderRequest, background_tasks: BackgroundTasks) -> Dict[str, Any]:
    """Queue a final render of a stored timeline.

    Every call creates a new job; a render whose segments are not all
    generated finishes as ``failed`` with the reason in ``error``.
    """
    timeline = deps.get_store().get(request.timeline_id)
    if timeline is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Timeline {request.timeline_id!r} not found.",
        )
    manager = deps.get_render_manager()
    job = manager.create_job(timeline)
    background_tasks.add_task(manager.run_job, job.job_id, timeline)
    return _job_to_dict(job)


@router.get("/{job_id}")
async def get_job(job_id: str) -> Dict[str, Any]:
    """Return the current state of a render job.

    Status values: ``queued`` | ``processing`` | ``completed`` | ``failed``
    """
    job = deps.get_render_manager().get_job(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Render job {job_id!r} not found.",
        )
    return _job_to_dict(job)


@router.websocket("/ws/{job_id}")
async def job_progress_ws(websocket: WebSocket, job_id: str) -> None:
    """Stream render progress over WebSocket.

    Reads the job map every 500 ms and pushes
    ``{job_id, status, progress, current_segment, total_segments, output_url, error}``.

    Closes automatically when the job reaches a terminal state
    (completed / failed) or after 1 hour.
    """
    await websocket.accept()
    manager = deps.get_render_manager()
    elapsed = 0.0

    try:
        while elapsed < _WS_TIMEOUT:
            job = manager.get_job(job_id)

            if job is None:
                await websocket.send_json({
                    "job_id": job_id,
                    "status": RenderJobStatus.FAILED.value,
                    "progress": 0,
                    "error": f"Render job {job_id!r} not found.",
                })
                break

            await websocket.send_json({
                "job_id":          job_id,
                "status":          job.status.value,
                "progress":        job.progress_percent,
                "current_segment": job.current_segment,
                "total_segments":  job.total_segments,
                "output_url":      job.output_url,
                "error":           job.error,
            })

            if job.status in _TERMINAL_STATUSES:
                break

            await asyncio.sleep(_WS_POLL_INTERVAL)
            elapsed += _WS_POLL_INTERVAL

        await websocket.close()

    except WebSocketDisconnect:
        logger.debug("WebSocket disconnected for job_id=%s", job_id)
    except Exception as exc:  # noqa: BLE001
        logger.warning("WebSocket error for job_id=%s: %s", job_id, exc)
