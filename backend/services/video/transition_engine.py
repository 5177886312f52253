"""TransitionEngine — picks the transition rendered between two adjacent segments."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from backend.services.video.types import RenderPriority, Segment, TransitionType

logger = logging.getLogger("timeline_studio.video.transition_engine")

# ffmpeg xfade transition names
_XFADE_NAMES = {
    TransitionType.FADE: "fade",
    TransitionType.DISSOLVE: "dissolve",
    TransitionType.MORPH: "distance",
    TransitionType.WARP: "zoomin",
}


@dataclass
class TransitionConfig:
    """Configuration for a single transition between two clips.

    Attributes:
        transition_type: The chosen :class:`TransitionType`.
        duration_sec: Overlap in seconds; 0.0 means a hard cut.
        notes: Optional description.
    """
    transition_type: TransitionType
    duration_sec: float = 0.5
    notes: str = ""

    @property
    def xfade_name(self) -> Optional[str]:
        """ffmpeg ``xfade`` transition name, ``None`` for a hard cut."""
        if self.duration_sec <= 0:
            return None
        return _XFADE_NAMES.get(self.transition_type)


class TransitionEngine:
    """Selects transitions from the outgoing segment's settings.

    Selection logic:
    - ``none`` → hard cut (0 s)
    - Duration by the outgoing segment's priority tier
    - Preview tier → morph / warp downgrade to fade
    - Never longer than half of the shorter of the two clips

    Usage::

        engine = TransitionEngine()
        config = engine.select_transition(segment_a, segment_b)
    """

    # Default transition duration by priority tier (seconds)
    _DEFAULT_DURATIONS = {
        RenderPriority.PREVIEW: 0.3,
        RenderPriority.STANDARD: 0.5,
        RenderPriority.HIGH: 0.75,
    }

    def select_transition(self, segment_a: Segment, segment_b: Segment) -> TransitionConfig:
        """Select the transition for the boundary ``segment_a`` → ``segment_b``.

        Args:
            segment_a: The outgoing segment; its ``transition`` and
                ``priority`` drive the choice.
            segment_b: The incoming segment.

        Returns:
            :class:`TransitionConfig` with the selected type and duration.
        """
        kind = segment_a.transition
        if kind is TransitionType.NONE:
            return TransitionConfig(transition_type=kind, duration_sec=0.0, notes="hard cut")

        notes = ""
        if segment_a.priority is RenderPriority.PREVIEW and kind in (TransitionType.MORPH, TransitionType.WARP):
            notes = f"{kind.value} downgraded to fade for preview"
            kind = TransitionType.FADE

        duration = self._DEFAULT_DURATIONS.get(segment_a.priority, 0.5)
        ceiling = min(segment_a.duration_sec, segment_b.duration_sec) / 2
        if duration > ceiling:
            duration = ceiling
            notes = notes or "shortened to fit clip length"

        logger.debug(
            "Transition %d → %d: %s (%.2fs)",
            segment_a.segment_id, segment_b.segment_id, kind.value, duration,
        )
        return TransitionConfig(transition_type=kind, duration_sec=round(duration, 3), notes=notes)
