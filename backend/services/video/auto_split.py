"""AutoSplitter — partitions an over-long segment to fit a backend's ceiling."""
from __future__ import annotations

import dataclasses
import logging
import math
from typing import List

from backend.services.video.capabilities import CapabilityRegistry
from backend.services.video.timeline_editor import SegmentNotFoundError, TimelineEditor
from backend.services.video.types import Segment, SegmentStatus, utc_now

logger = logging.getLogger("timeline_studio.video.auto_split")

# Derived ids are parent_id * _ID_STRIDE + part_number.
_ID_STRIDE = 100


class AutoSplitter:
    """Deterministic duration-based segment splitting.

    Rules:
    - Within the model's ``max_duration`` (or unknown model) → ``[segment]``
    - Otherwise ``n = ceil(duration / max_duration)`` parts, durations spread
      in tenths of a second so they sum back to the original
    - Only part 1 keeps ``first_frame``; only part n keeps ``last_frame``;
      interior parts start unconstrained and are filled by chaining
    - Every part is ``pending`` with a ``(Part i/n)`` prompt suffix

    Usage::

        splitter = AutoSplitter(registry)
        parts = splitter.split(segment)
        splitter.split_in_timeline(editor, segment.segment_id)
    """

    def __init__(self, registry: CapabilityRegistry):
        self._registry = registry

    def split(self, segment: Segment) -> List[Segment]:
        capability = self._registry.lookup(segment.model)
        if capability is None or segment.duration_sec <= capability.max_duration:
            return [segment]

        n = math.ceil(segment.duration_sec / capability.max_duration)
        durations = _spread_tenths(segment.duration_sec, n)
        now = utc_now()
        parts: List[Segment] = []
        for i, duration in enumerate(durations):
            is_first = i == 0
            is_last = i == n - 1
            parts.append(dataclasses.replace(
                segment,
                segment_id=segment.segment_id * _ID_STRIDE + i + 1,
                duration_sec=duration,
                prompt=f"{segment.prompt} (Part {i + 1}/{n})",
                first_frame=segment.first_frame if is_first else None,
                last_frame=segment.last_frame if is_last else None,
                first_frame_pinned=segment.first_frame_pinned if is_first else False,
                generated_video_url=None,
                thumbnail_url=None,
                preview_video_url=None,
                status=SegmentStatus.PENDING,
                error_message=None,
                created_at=now,
                updated_at=now,
            ))

        logger.info(
            "Split segment %d (%.1fs on %s, max %.1fs) into %d parts",
            segment.segment_id, segment.duration_sec, segment.model, capability.max_duration, n,
        )
        return parts

    def split_in_timeline(self, editor: TimelineEditor, segment_id: int) -> List[Segment]:
        """Split a segment in place, keeping ids unique within the timeline.

        Raises:
            SegmentNotFoundError: Unknown ``segment_id``.
        """
        segment = editor.get_segment(segment_id)
        if segment is None:
            raise SegmentNotFoundError(segment_id)

        parts = self.split(segment)
        if len(parts) == 1:
            return parts

        taken = {s.segment_id for s in editor.timeline.segments if s.segment_id != segment_id}
        next_free = max(taken | {p.segment_id for p in parts}) + 1
        for part in parts:
            if part.segment_id in taken:
                part.segment_id = next_free
                next_free += 1
            taken.add(part.segment_id)
        return editor.replace_segment(segment_id, parts)


def _spread_tenths(duration_sec: float, n: int) -> List[float]:
    """Split ``duration_sec`` into ``n`` one-decimal parts summing to the total."""
    total_tenths = round(duration_sec * 10)
    base, extra = divmod(total_tenths, n)
    return [(base + (1 if i < extra else 0)) / 10 for i in range(n)]
