"""RenderJobManager — final composition of a generated timeline, tracked as jobs."""
from __future__ import annotations

import asyncio
import copy
import dataclasses
import logging
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from backend.services.video.assembler import TimelineAssembler, resolution_to_size
from backend.services.video.transition_engine import TransitionEngine
from backend.services.video.types import (
    RenderClip,
    RenderJob,
    RenderJobStatus,
    SegmentStatus,
    Timeline,
    utc_now,
)

logger = logging.getLogger("timeline_studio.video.render_jobs")

RenderProgressCallback = Callable[[RenderJob], None]

# Share of progress reported while collecting segments; composition finishes the rest.
_SEGMENT_PROGRESS_SHARE = 90


class RenderError(RuntimeError):
    """Raised inside a render when the timeline cannot be composed."""


class RenderJobManager:
    """Process-wide keyed map of render jobs plus the render driver.

    Jobs live in memory only and are never reused: every
    :meth:`start_render` call creates a new job.  The map is guarded by a
    lock; readers always receive copies, so a snapshot may already be stale
    once a progress callback returns.

    Usage::

        manager = RenderJobManager(TimelineAssembler(), TransitionEngine())
        job = manager.create_job(timeline)
        background.add_task(manager.run_job, job.job_id, timeline)
        manager.get_job(job.job_id).progress_percent
    """

    def __init__(
        self,
        assembler: Optional[TimelineAssembler] = None,
        transition_engine: Optional[TransitionEngine] = None,
        output_dir: str = "output/renders",
        fps: int = 24,
    ):
        self._assembler = assembler or TimelineAssembler()
        self._transitions = transition_engine or TransitionEngine()
        self._output_dir = Path(output_dir)
        self._fps = fps
        self._jobs: Dict[str, RenderJob] = {}
        self._lock = threading.Lock()

    # ── job map ───────────────────────────────────────────────────────────────

    def create_job(self, timeline: Timeline) -> RenderJob:
        job = RenderJob(
            job_id=f"render_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}",
            timeline_id=timeline.timeline_id,
            total_segments=len(timeline.segments),
        )
        with self._lock:
            self._jobs[job.job_id] = job
            return dataclasses.replace(job)

    def get_job(self, job_id: str) -> Optional[RenderJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return dataclasses.replace(job) if job else None

    def list_jobs(self, timeline_id: Optional[str] = None) -> List[RenderJob]:
        with self._lock:
            jobs = [
                dataclasses.replace(j) for j in self._jobs.values()
                if timeline_id is None or j.timeline_id == timeline_id
            ]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    def update_job(self, job_id: str, **updates: Any) -> Optional[RenderJob]:
        """Apply a partial update; returns the new snapshot or ``None`` if unknown."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            job = dataclasses.replace(job, **updates)
            self._jobs[job_id] = job
            return dataclasses.replace(job)

    # ── rendering ─────────────────────────────────────────────────────────────

    async def start_render(
        self,
        timeline: Timeline,
        on_progress: Optional[RenderProgressCallback] = None,
    ) -> RenderJob:
        """Create a job and render it to completion."""
        job = self.create_job(timeline)
        return await self.run_job(job.job_id, timeline, on_progress)

    async def run_job(
        self,
        job_id: str,
        timeline: Timeline,
        on_progress: Optional[RenderProgressCallback] = None,
    ) -> RenderJob:
        """Render ``timeline`` into an existing job; never raises.

        The timeline is deep-copied when the job starts, so later edits do
        not affect a running render.
        """
        snapshot = copy.deepcopy(timeline)
        segments = snapshot.segments
        total = len(segments)
        self.update_job(
            job_id,
            status=RenderJobStatus.PROCESSING,
            started_at=utc_now(),
            total_segments=total,
        )
        try:
            not_ready = [
                s.segment_id for s in segments
                if s.status is not SegmentStatus.GENERATED or not s.generated_video_url
            ]
            if not_ready:
                raise RenderError(f"Segments not generated: {not_ready}")

            clips: List[RenderClip] = []
            for i, seg in enumerate(segments):
                clips.append(RenderClip(
                    file_path=seg.generated_video_url,
                    duration_sec=seg.duration_sec,
                    segment_id=seg.segment_id,
                ))
                job = self.update_job(
                    job_id,
                    current_segment=i + 1,
                    progress_percent=round((i + 1) / total * _SEGMENT_PROGRESS_SHARE),
                )
                _notify(on_progress, job)

            transitions = [
                self._transitions.select_transition(a, b) for a, b in zip(segments, segments[1:])
            ]
            output_path = str(self._output_dir / f"{job_id}.mp4")
            output = await asyncio.to_thread(
                self._assembler.assemble,
                clips,
                transitions,
                output_path,
                resolution_to_size(snapshot.target_resolution),
                self._fps,
            )
            job = self.update_job(
                job_id,
                status=RenderJobStatus.COMPLETED,
                progress_percent=100,
                output_url=output,
                completed_at=utc_now(),
            )
            logger.info("Render %s completed → %s", job_id, output)
        except RenderError as exc:
            logger.warning("Render %s failed: %s", job_id, exc)
            job = self._fail(job_id, str(exc))
        except Exception as exc:
            logger.exception("Render %s failed", job_id)
            job = self._fail(job_id, str(exc) or type(exc).__name__)

        _notify(on_progress, job)
        return job

    def _fail(self, job_id: str, error: str) -> Optional[RenderJob]:
        return self.update_job(
            job_id,
            status=RenderJobStatus.FAILED,
            error=error,
            completed_at=utc_now(),
        )


def _notify(callback: Optional[RenderProgressCallback], job: Optional[RenderJob]) -> None:
    if callback is None or job is None:
        return
    try:
        callback(job)
    except Exception:
        logger.exception("Render progress callback raised; ignoring")
