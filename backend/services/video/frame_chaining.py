"""FrameChainingEngine — threads visual continuity between adjacent clips."""
from __future__ import annotations

import dataclasses
import logging
from typing import List, Sequence

from backend.services.video.frame_extractor import (
    FrameExtractionError,
    FrameExtractor,
    TimestampPolicy,
)
from backend.services.video.types import (
    BoundaryFrame,
    FrameExtractionResult,
    Segment,
    SegmentStatus,
)

logger = logging.getLogger("timeline_studio.video.frame_chaining")

_POLICY = {
    BoundaryFrame.FIRST: TimestampPolicy.NEAR_START,
    BoundaryFrame.LAST: TimestampPolicy.NEAR_END,
}


class FrameChainingEngine:
    """Extracts boundary frames and propagates them forward.

    Chaining only flows forward: segment *i*'s last frame becomes segment
    *i+1*'s first frame, never the reverse.  Extraction failures degrade to
    ``success=False`` and leave the neighbour untouched.

    The engine always overwrites the downstream ``first_frame``; honouring a
    pinned first frame is the caller's decision (see the orchestrator).

    Usage::

        engine = FrameChainingEngine(FFmpegFrameExtractor())
        result = await engine.extract_boundary_frame(url, BoundaryFrame.LAST)
        chained = await engine.chain_adjacent(timeline.segments)
    """

    def __init__(self, extractor: FrameExtractor):
        self._extractor = extractor

    async def extract_boundary_frame(self, video_ref: str, which: BoundaryFrame) -> FrameExtractionResult:
        which = BoundaryFrame(which)
        try:
            frame = await self._extractor.decode_and_seek(video_ref, _POLICY[which])
        except FrameExtractionError as exc:
            logger.warning("Could not extract %s frame from %s: %s", which.value, video_ref, exc)
            return FrameExtractionResult(success=False, which=which, error=str(exc))
        return FrameExtractionResult(
            success=True,
            frame_image=frame.image,
            timestamp_sec=frame.timestamp_sec,
            resolution=frame.resolution,
            which=which,
        )

    async def chain_adjacent(self, segments: Sequence[Segment]) -> List[Segment]:
        """Return a new list where every generated segment feeds its successor.

        For each adjacent pair whose earlier segment is ``generated`` with a
        video reference, the extracted last frame is written to that segment's
        ``last_frame`` and to the next segment's ``first_frame``.  The input
        segments are not modified.
        """
        chained = list(segments)
        for i in range(len(chained) - 1):
            current = chained[i]
            if current.status is not SegmentStatus.GENERATED or not current.generated_video_url:
                continue
            result = await self.extract_boundary_frame(current.generated_video_url, BoundaryFrame.LAST)
            if not result.success:
                continue
            chained[i] = dataclasses.replace(current, last_frame=result.frame_image)
            chained[i + 1] = dataclasses.replace(chained[i + 1], first_frame=result.frame_image)
            logger.debug(
                "Chained segment %d → %d at %.3fs",
                current.segment_id, chained[i + 1].segment_id, result.timestamp_sec,
            )
        return chained
