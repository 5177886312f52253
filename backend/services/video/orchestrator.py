"""GenerationOrchestrator — drives per-segment generation across a timeline."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import AsyncIterator, Callable, List, Optional

from backend.services.video.backends.base import (
    BackendError,
    GenerationBackend,
    GenerationRequest,
)
from backend.services.video.capabilities import CapabilityRegistry
from backend.services.video.frame_chaining import FrameChainingEngine
from backend.services.video.routing import RoutingEngine
from backend.services.video.segment_state import begin_generation, touch, transition
from backend.services.video.types import (
    BoundaryFrame,
    GenerationResult,
    Segment,
    SegmentStatus,
    Timeline,
    TimelineRunResult,
)

logger = logging.getLogger("timeline_studio.video.orchestrator")

ProgressCallback = Callable[[int, int], None]
SegmentCompleteCallback = Callable[[int, GenerationResult], None]

DEFAULT_PREVIEW_MODEL = "animatediff-lightning"


class GenerationOrchestrator:
    """Sequential, fault-tolerant generation with incremental frame chaining.

    Full runs walk the timeline in order.  Before segment *i* generates, the
    last frame produced by segment *i-1* (if it just succeeded) becomes its
    ``first_frame``; a failed predecessor leaves the existing frame alone.
    A failed segment never aborts the run.

    Per-segment calls never raise: backend errors, unknown models and
    timeouts all come back as ``GenerationResult(success=False)``.

    Preview runs redirect each segment to ``preview_model`` for the call
    only, write ``preview_video_url`` and leave status untouched.

    Usage::

        orch = GenerationOrchestrator(ProviderAPIBackend(), registry,
                                      chaining=FrameChainingEngine(FFmpegFrameExtractor()))
        run = await orch.generate_timeline(timeline, on_progress=print)

        async for result in orch.iter_generation(timeline):
            if should_stop():
                break            # abandons the run between segments
    """

    def __init__(
        self,
        backend: GenerationBackend,
        registry: CapabilityRegistry,
        chaining: Optional[FrameChainingEngine] = None,
        routing: Optional[RoutingEngine] = None,
        preview_model: str = DEFAULT_PREVIEW_MODEL,
        preview_concurrency: int = 1,
    ):
        self._backend = backend
        self._registry = registry
        self._chaining = chaining
        self._routing = routing or RoutingEngine(registry)
        self._preview_model = preview_model
        self._preview_concurrency = max(1, preview_concurrency)

    # ── single segment ────────────────────────────────────────────────────────

    async def generate_segment(
        self,
        segment: Segment,
        model_id: Optional[str] = None,
        use_fallback: bool = False,
    ) -> GenerationResult:
        """Generate one segment and record the outcome on it.

        Args:
            segment: Segment to generate; its status goes through
                ``generating`` to ``generated`` or ``error``.
            model_id: Override the segment's model for this call.
            use_fallback: Pick a model from the fallback priority list
                (ignored when ``model_id`` is given).
        """
        if segment.status is SegmentStatus.GENERATING:
            return GenerationResult(
                success=False,
                segment_id=segment.segment_id,
                model_used=segment.model,
                error=f"Segment {segment.segment_id} is already generating",
            )

        selected = model_id or segment.model
        if model_id is None and use_fallback:
            selected = self._routing.select_fallback_model(segment.model, bool(segment.last_frame))

        begin_generation(segment)
        result = await self._attempt(segment, selected)

        if result.success:
            segment.generated_video_url = result.video_url
            segment.thumbnail_url = result.thumbnail_url
            if result.last_frame:
                segment.last_frame = result.last_frame
            transition(segment, SegmentStatus.GENERATED)
        else:
            transition(segment, SegmentStatus.ERROR, error_message=result.error)
        return result

    # ── full run ──────────────────────────────────────────────────────────────

    async def iter_generation(
        self,
        timeline: Timeline,
        on_progress: Optional[ProgressCallback] = None,
        on_segment_complete: Optional[SegmentCompleteCallback] = None,
    ) -> AsyncIterator[GenerationResult]:
        """Yield one :class:`GenerationResult` per segment, in timeline order.

        Segment *i*'s result, including the chaining write into segment
        *i+1*, is fully resolved before segment *i+1* starts.
        """
        previous: Optional[GenerationResult] = None
        for segment in list(timeline.segments):
            if previous is not None and previous.success and previous.last_frame:
                self._chain_into(segment, previous.last_frame)

            _notify(on_progress, segment.segment_id, 0)
            result = await self.generate_segment(segment)
            _notify(on_progress, segment.segment_id, 100)
            _notify(on_segment_complete, segment.segment_id, result)

            if not result.success:
                logger.warning(
                    "Segment %d failed (%s), continuing with remaining segments",
                    segment.segment_id, result.error,
                )
            previous = result
            yield result

    async def generate_timeline(
        self,
        timeline: Timeline,
        on_progress: Optional[ProgressCallback] = None,
        on_segment_complete: Optional[SegmentCompleteCallback] = None,
    ) -> TimelineRunResult:
        t0 = time.monotonic()
        results = [r async for r in self.iter_generation(timeline, on_progress, on_segment_complete)]
        run = _aggregate(results, t0)
        logger.info(
            "Timeline %s generated: %d/%d segments ok, %d tokens, %d ms",
            timeline.timeline_id, sum(r.success for r in results), len(results),
            run.total_tokens, run.total_time_ms,
        )
        return run

    async def retry_segment(self, timeline: Timeline, segment_id: int) -> GenerationResult:
        """Regenerate one segment, re-chaining from a generated predecessor."""
        idx = timeline.index_of(segment_id)
        if idx < 0:
            return GenerationResult(
                success=False, segment_id=segment_id, model_used="",
                error=f"Segment {segment_id} not found",
            )
        segment = timeline.segments[idx]
        if idx > 0:
            prev = timeline.segments[idx - 1]
            if prev.status is SegmentStatus.GENERATED:
                frame = prev.last_frame or await self._extract_last_frame(prev.generated_video_url)
                if frame:
                    self._chain_into(segment, frame)
        return await self.generate_segment(segment)

    # ── preview ───────────────────────────────────────────────────────────────

    async def iter_preview(
        self,
        timeline: Timeline,
        on_progress: Optional[ProgressCallback] = None,
    ) -> AsyncIterator[GenerationResult]:
        """Yield one preview result per segment, in timeline order."""
        for segment in list(timeline.segments):
            _notify(on_progress, segment.segment_id, 0)
            result = await self.preview_segment(segment)
            _notify(on_progress, segment.segment_id, 100)
            yield result

    async def generate_preview(
        self,
        timeline: Timeline,
        on_progress: Optional[ProgressCallback] = None,
        concurrency: Optional[int] = None,
    ) -> List[GenerationResult]:
        """Preview every segment; results are always in timeline order.

        With ``concurrency > 1`` segments are previewed concurrently, bounded
        by a semaphore.
        """
        limit = self._preview_concurrency if concurrency is None else max(1, concurrency)
        if limit == 1:
            return [r async for r in self.iter_preview(timeline, on_progress)]

        semaphore = asyncio.Semaphore(limit)

        async def _one(segment: Segment) -> GenerationResult:
            async with semaphore:
                _notify(on_progress, segment.segment_id, 0)
                result = await self.preview_segment(segment)
                _notify(on_progress, segment.segment_id, 100)
                return result

        return list(await asyncio.gather(*(_one(s) for s in list(timeline.segments))))

    async def preview_segment(self, segment: Segment) -> GenerationResult:
        """Generate a low-fidelity preview without changing the segment's model or status."""
        if segment.status is SegmentStatus.GENERATING:
            return GenerationResult(
                success=False,
                segment_id=segment.segment_id,
                model_used=self._preview_model,
                error=f"Segment {segment.segment_id} is already generating",
            )
        original_model = segment.model
        segment.model = self._preview_model
        try:
            result = await self._attempt(segment, self._preview_model, extract_last_frame=False)
        finally:
            segment.model = original_model
        if result.success:
            segment.preview_video_url = result.video_url
            touch(segment)
        return result

    # ── Internal ──────────────────────────────────────────────────────────────

    async def _attempt(
        self,
        segment: Segment,
        model_id: str,
        extract_last_frame: bool = True,
    ) -> GenerationResult:
        """One backend call converted into a result; never raises."""
        t0 = time.monotonic()
        capability = self._registry.lookup(model_id)
        if capability is None:
            return self._failure(segment, model_id, f"Unknown model: {model_id}", t0)

        request = GenerationRequest.from_segment(segment, model_id, capability)
        try:
            output = await self._backend.generate(request)
        except BackendError as exc:
            logger.warning("Segment %d on %s failed: %s", segment.segment_id, model_id, exc)
            return self._failure(segment, model_id, str(exc), t0)
        except Exception as exc:
            logger.exception("Unexpected backend error for segment %d", segment.segment_id)
            return self._failure(segment, model_id, str(exc) or type(exc).__name__, t0)

        last_frame = output.last_frame
        if not last_frame and extract_last_frame:
            last_frame = await self._extract_last_frame(output.video_url)

        return GenerationResult(
            success=True,
            segment_id=segment.segment_id,
            model_used=model_id,
            video_url=output.video_url,
            thumbnail_url=output.thumbnail_url,
            last_frame=last_frame,
            duration_actual=output.duration_sec,
            generation_time_ms=_elapsed_ms(t0),
            tokens_used=output.tokens_used,
        )

    async def _extract_last_frame(self, video_url: Optional[str]) -> Optional[str]:
        if self._chaining is None or not video_url:
            return None
        extraction = await self._chaining.extract_boundary_frame(video_url, BoundaryFrame.LAST)
        return extraction.frame_image if extraction.success else None

    @staticmethod
    def _chain_into(segment: Segment, frame: str) -> None:
        if segment.first_frame_pinned:
            logger.debug("Segment %d has a pinned first frame; not chaining", segment.segment_id)
            return
        segment.first_frame = frame
        touch(segment)

    @staticmethod
    def _failure(segment: Segment, model_id: str, error: str, t0: float) -> GenerationResult:
        return GenerationResult(
            success=False,
            segment_id=segment.segment_id,
            model_used=model_id,
            generation_time_ms=_elapsed_ms(t0),
            error=error,
        )


def _elapsed_ms(t0: float) -> int:
    return int((time.monotonic() - t0) * 1000)


def _aggregate(results: List[GenerationResult], t0: float) -> TimelineRunResult:
    return TimelineRunResult(
        success=all(r.success for r in results),
        results=results,
        total_time_ms=_elapsed_ms(t0),
        total_tokens=sum(r.tokens_used for r in results),
    )


def _notify(callback: Optional[Callable], *args) -> None:
    if callback is None:
        return
    try:
        callback(*args)
    except Exception:
        logger.exception("Progress callback raised; ignoring")
