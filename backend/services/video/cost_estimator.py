"""CostEstimator — token and time estimates for generating a timeline."""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import List

from backend.services.video.capabilities import CapabilityRegistry
from backend.services.video.types import Segment, Timeline

logger = logging.getLogger("timeline_studio.video.cost_estimator")


@dataclass
class SegmentEstimate:
    segment_id: int
    model: str
    tokens: int
    time_sec: float
    known_model: bool = True


@dataclass
class TimelineEstimate:
    total_tokens: int
    total_time_sec: float
    segments: List[SegmentEstimate] = field(default_factory=list)
    unknown_models: List[str] = field(default_factory=list)


class CostEstimator:
    """Estimates token cost and generation time from registry figures.

    - Tokens: ``cost_per_second × duration``, rounded up
    - Time: the model's ``avg_generation_time`` per segment
    - Unknown models count as zero and are listed separately

    Usage::

        est = CostEstimator(registry)
        seg = est.estimate_segment(segment)
        total = est.estimate_timeline(timeline)
    """

    def __init__(self, registry: CapabilityRegistry):
        self._registry = registry

    def estimate_segment(self, segment: Segment) -> SegmentEstimate:
        """Estimate one segment on its currently assigned model."""
        cap = self._registry.lookup(segment.model)
        if cap is None:
            return SegmentEstimate(
                segment_id=segment.segment_id, model=segment.model,
                tokens=0, time_sec=0.0, known_model=False,
            )
        return SegmentEstimate(
            segment_id=segment.segment_id,
            model=cap.model_id,
            tokens=math.ceil(round(cap.cost_per_second * segment.duration_sec, 6)),
            time_sec=cap.avg_generation_time,
        )

    def estimate_timeline(self, timeline: Timeline) -> TimelineEstimate:
        """Sum of per-segment estimates for a full sequential run."""
        estimates = [self.estimate_segment(s) for s in timeline.segments]
        unknown = sorted({e.model for e in estimates if not e.known_model})
        if unknown:
            logger.warning("Estimate for timeline %s skips unknown models: %s", timeline.timeline_id, unknown)
        return TimelineEstimate(
            total_tokens=sum(e.tokens for e in estimates),
            total_time_sec=round(sum(e.time_sec for e in estimates), 3),
            segments=estimates,
            unknown_models=unknown,
        )
