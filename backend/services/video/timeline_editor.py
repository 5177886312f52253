"""TimelineEditor — the record-level mutation API over a Timeline.

External code (routers, UI adapters) only changes a timeline through this
class; status rules are delegated to :mod:`segment_state`.
"""
from __future__ import annotations

import dataclasses
import logging
import math
from typing import Any, Dict, List, Optional, Sequence, Tuple

from backend.services.video import segment_state
from backend.services.video.types import (
    CameraPath,
    MotionProfile,
    RenderPriority,
    Segment,
    SegmentStatus,
    Timeline,
    TransitionType,
    create_empty_segment,
    utc_now,
)

logger = logging.getLogger("timeline_studio.video.timeline_editor")

_ENUM_FIELDS = {
    "transition": TransitionType,
    "motion_profile": MotionProfile,
    "camera_path": CameraPath,
    "priority": RenderPriority,
}

EDITABLE_SEGMENT_FIELDS = frozenset({
    "duration_sec", "model", "prompt", "negative_prompt",
    "first_frame", "last_frame", "seed", "style_preset",
    "first_frame_pinned", *_ENUM_FIELDS,
})

EDITABLE_TIMELINE_FIELDS = frozenset({
    "name", "description", "target_resolution", "global_style", "tags", "is_template",
})


class SegmentNotFoundError(KeyError):
    """Raised when a segment id does not exist in the timeline."""


class TimelineMutationError(ValueError):
    """Raised when a mutation would break a timeline invariant."""


class TimelineEditor:
    """Mutates one :class:`Timeline` in place.

    Usage::

        editor = TimelineEditor(timeline)
        seg = editor.add_segment(after_segment_id=1)
        editor.update_segment(seg.segment_id, prompt="a lighthouse at dusk")
        editor.reorder_segments(0, 1)
    """

    def __init__(self, timeline: Timeline):
        self._timeline = timeline

    @property
    def timeline(self) -> Timeline:
        return self._timeline

    # ── lookup ────────────────────────────────────────────────────────────────

    def get_segment(self, segment_id: int) -> Optional[Segment]:
        for seg in self._timeline.segments:
            if seg.segment_id == segment_id:
                return seg
        return None

    def get_adjacent(self, segment_id: int) -> Tuple[Optional[Segment], Optional[Segment]]:
        """Return ``(previous, next)`` neighbours by array position."""
        idx = self._index(segment_id)
        segments = self._timeline.segments
        prev_seg = segments[idx - 1] if idx > 0 else None
        next_seg = segments[idx + 1] if idx < len(segments) - 1 else None
        return prev_seg, next_seg

    def next_segment_id(self) -> int:
        return max((s.segment_id for s in self._timeline.segments), default=0) + 1

    # ── segment structure ─────────────────────────────────────────────────────

    def add_segment(self, after_segment_id: Optional[int] = None, **fields: Any) -> Segment:
        """Append a new empty segment, or insert it after ``after_segment_id``."""
        segment = create_empty_segment(self.next_segment_id())
        if fields:
            self._apply_fields(segment, fields)

        segments = self._timeline.segments
        if after_segment_id is None:
            segments.append(segment)
        else:
            segments.insert(self._index(after_segment_id) + 1, segment)
        self._touch_timeline()
        logger.debug("Added segment %d to timeline %s", segment.segment_id, self._timeline.timeline_id)
        return segment

    def remove_segment(self, segment_id: int) -> Segment:
        """Remove a segment; the last remaining segment cannot be removed."""
        idx = self._index(segment_id)
        if len(self._timeline.segments) <= 1:
            raise TimelineMutationError("A timeline must keep at least one segment")
        removed = self._timeline.segments.pop(idx)
        self._touch_timeline()
        return removed

    def duplicate_segment(self, segment_id: int) -> Segment:
        """Copy a segment's settings into a fresh pending segment placed after it."""
        source = self._require(segment_id)
        now = utc_now()
        duplicated = dataclasses.replace(
            source,
            segment_id=self.next_segment_id(),
            status=SegmentStatus.PENDING,
            generated_video_url=None,
            thumbnail_url=None,
            preview_video_url=None,
            first_frame=None,
            last_frame=None,
            first_frame_pinned=False,
            error_message=None,
            created_at=now,
            updated_at=now,
        )
        self._timeline.segments.insert(self._index(segment_id) + 1, duplicated)
        self._touch_timeline()
        return duplicated

    def reorder_segments(self, from_index: int, to_index: int) -> None:
        segments = self._timeline.segments
        for name, value in (("from_index", from_index), ("to_index", to_index)):
            if not 0 <= value < len(segments):
                raise TimelineMutationError(f"{name} {value} out of range 0..{len(segments) - 1}")
        moved = segments.pop(from_index)
        segments.insert(to_index, moved)
        self._touch_timeline()

    def replace_segment(self, segment_id: int, replacements: Sequence[Segment]) -> List[Segment]:
        """Swap one segment for ``replacements`` at the same position."""
        if not replacements:
            raise TimelineMutationError("Replacement list must not be empty")
        idx = self._index(segment_id)
        taken = {s.segment_id for i, s in enumerate(self._timeline.segments) if i != idx}
        new_ids = [s.segment_id for s in replacements]
        if len(set(new_ids)) != len(new_ids) or taken.intersection(new_ids):
            raise TimelineMutationError(f"Replacement segment ids collide: {new_ids}")
        self._timeline.segments[idx:idx + 1] = list(replacements)
        self._touch_timeline()
        return list(replacements)

    # ── segment fields ────────────────────────────────────────────────────────

    def update_segment(self, segment_id: int, **updates: Any) -> Segment:
        """Edit segment fields; the segment becomes ``modified``.

        Raises:
            SegmentNotFoundError: Unknown ``segment_id``.
            SegmentBusyError: The segment is generating.
            TimelineMutationError: Unknown field or invalid value.
        """
        segment = self._require(segment_id)
        if segment.status is SegmentStatus.GENERATING:
            raise segment_state.SegmentBusyError(
                f"Segment {segment_id} is generating and cannot be edited"
            )
        self._apply_fields(segment, updates)
        segment_state.mark_edited(segment)
        self._touch_timeline()
        return segment

    def set_segment_status(
        self,
        segment_id: int,
        status: SegmentStatus,
        error_message: Optional[str] = None,
    ) -> Segment:
        """Status-only change; does not count as an edit."""
        segment = self._require(segment_id)
        segment_state.transition(segment, SegmentStatus(status), error_message)
        return segment

    def set_segment_result(
        self,
        segment_id: int,
        video_url: str,
        thumbnail_url: Optional[str] = None,
        last_frame: Optional[str] = None,
    ) -> Segment:
        """Record generated output and move the segment to ``generated``."""
        segment = self._require(segment_id)
        segment_state.transition(segment, SegmentStatus.GENERATED)
        segment.generated_video_url = video_url
        segment.thumbnail_url = thumbnail_url
        segment.last_frame = last_frame or segment.last_frame
        return segment

    # ── timeline properties ───────────────────────────────────────────────────

    def update_properties(self, **props: Any) -> Timeline:
        unknown = set(props) - EDITABLE_TIMELINE_FIELDS
        if unknown:
            raise TimelineMutationError(f"Unknown timeline fields: {sorted(unknown)}")
        for key, value in props.items():
            if key == "tags":
                value = list(value or [])
            setattr(self._timeline, key, value)
        self._touch_timeline()
        return self._timeline

    # ── private ───────────────────────────────────────────────────────────────

    def _index(self, segment_id: int) -> int:
        idx = self._timeline.index_of(segment_id)
        if idx < 0:
            raise SegmentNotFoundError(segment_id)
        return idx

    def _require(self, segment_id: int) -> Segment:
        return self._timeline.segments[self._index(segment_id)]

    def _touch_timeline(self) -> None:
        self._timeline.updated_at = utc_now()

    @staticmethod
    def _apply_fields(segment: Segment, fields: Dict[str, Any]) -> None:
        """Validate every field first; the segment is untouched if any is bad."""
        for key, value in TimelineEditor._coerce_fields(fields).items():
            setattr(segment, key, value)

    @staticmethod
    def _coerce_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
        unknown = set(fields) - EDITABLE_SEGMENT_FIELDS
        if unknown:
            raise TimelineMutationError(f"Unknown segment fields: {sorted(unknown)}")
        coerced: Dict[str, Any] = {}
        for key, value in fields.items():
            if key == "duration_sec":
                try:
                    value = float(value)
                except (TypeError, ValueError) as exc:
                    raise TimelineMutationError(f"Invalid duration_sec: {value!r}") from exc
                if not math.isfinite(value) or value <= 0:
                    raise TimelineMutationError("duration_sec must be a finite number greater than 0")
            enum_cls = _ENUM_FIELDS.get(key)
            if enum_cls is not None:
                try:
                    value = enum_cls(value)
                except ValueError as exc:
                    raise TimelineMutationError(f"Invalid {key}: {value!r}") from exc
            coerced[key] = value
        return coerced
