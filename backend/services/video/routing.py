"""RoutingEngine — decides whether a segment's backend is usable as-is."""
from __future__ import annotations

import logging
import math
from typing import Iterable, List, Optional, Sequence

from backend.services.video.capabilities import CapabilityRegistry
from backend.services.video.types import (
    DEFAULT_MODEL_ID,
    ModelCapability,
    RoutingDecision,
    Segment,
    Timeline,
)

logger = logging.getLogger("timeline_studio.video.routing")

_DEFAULT_GENERIC_FALLBACKS = ("wan-2.5-i2v", "stable-video-diffusion")
_DEFAULT_FALLBACK_PRIORITY = (
    "kling-2.5-i2v-pro",
    "luma-dream-machine",
    "wan-2.5-i2v",
    "runway-gen3",
)
_SUITABLE = "Model is suitable for this segment"


class RoutingEngine:
    """Validates a segment against its backend's capabilities.

    Decision logic (first match wins for the recommendation, warnings
    accumulate):
    1. Unknown model → fixed safe default plus generic fallbacks; stop
    2. Duration over ``max_duration`` → ``requires_split`` with a part count
       (under ``min_duration`` only warns; some backends clamp)
    3. Middle segment on a model without last-frame support → switch to the
       best available model that supports both boundary frames
    4. First segment with a first frame the model cannot take → warn and list
       first-frame-capable fallbacks, no forced swap
    5. Model unavailable → switch to an available model of similar quality

    The engine is advisory: it never mutates the segment.

    Usage::

        engine = RoutingEngine(registry)
        decision = engine.decide(segment, prev_segment, next_segment)
        if decision.requires_split:
            parts = AutoSplitter(registry).split(segment)
    """

    def __init__(
        self,
        registry: CapabilityRegistry,
        default_model: str = DEFAULT_MODEL_ID,
        generic_fallbacks: Sequence[str] = _DEFAULT_GENERIC_FALLBACKS,
        quality_tolerance: int = 2,
        fallback_priority: Sequence[str] = _DEFAULT_FALLBACK_PRIORITY,
    ):
        self._registry = registry
        self._default_model = default_model
        self._generic_fallbacks = tuple(generic_fallbacks)
        self._quality_tolerance = quality_tolerance
        self._fallback_priority = tuple(fallback_priority)

    # ── public ────────────────────────────────────────────────────────────────

    def decide(
        self,
        segment: Segment,
        prev_segment: Optional[Segment] = None,
        next_segment: Optional[Segment] = None,
    ) -> RoutingDecision:
        """Return the advisory :class:`RoutingDecision` for ``segment``."""
        capability = self._registry.lookup(segment.model)
        if capability is None:
            return self._unknown_model_decision(segment)

        warnings: List[str] = []
        fallbacks: List[str] = []
        recommended = capability.model_id
        reason = _SUITABLE
        requires_split = False
        suggested: Optional[int] = None

        # 2. duration bounds
        if segment.duration_sec > capability.max_duration:
            requires_split = True
            suggested = math.ceil(segment.duration_sec / capability.max_duration)
            overage = round(segment.duration_sec - capability.max_duration, 3)
            warnings.append(
                f"Duration {segment.duration_sec}s exceeds model limit of "
                f"{capability.max_duration}s by {overage}s"
            )
            reason = f"Segment needs to be split into {suggested} parts"
        elif segment.duration_sec < capability.min_duration:
            warnings.append(
                f"Duration {segment.duration_sec}s is below model minimum of "
                f"{capability.min_duration}s"
            )

        # 3. middle segments need both boundary constraints
        if prev_segment is not None and next_segment is not None and not capability.supports_last_frame:
            warnings.append(
                "Model does not support last-frame constraint for middle segment editing"
            )
            compatible = self._ranked(
                c for c in self._registry.list_available() if c.supports_full_chaining
            )
            fallbacks.extend(c.model_id for c in compatible)
            if compatible:
                best = compatible[0]
                recommended = best.model_id
                reason = (
                    f"Switched to {best.display_name}: middle segments need both "
                    f"first- and last-frame constraints to keep continuity"
                )
            else:
                logger.warning(
                    "No available model supports both frame constraints for segment %d",
                    segment.segment_id,
                )

        # 4. first segment with an uploaded first frame
        if prev_segment is None and segment.first_frame and not capability.supports_first_frame:
            warnings.append("Model does not support first-frame input")
            compatible = self._ranked(
                c for c in self._registry.list_available() if c.supports_first_frame
            )
            fallbacks.extend(c.model_id for c in compatible)

        # 5. availability
        if not capability.is_available:
            warnings.append("Selected model is currently unavailable")
            if recommended == capability.model_id:
                substitute = self._similar_quality(capability)
                if substitute is not None:
                    recommended = substitute.model_id
                    reason = (
                        f"{capability.display_name} is unavailable; switched to "
                        f"{substitute.display_name} (quality {substitute.quality_score} "
                        f"vs {capability.quality_score})"
                    )
                    fallbacks.append(substitute.model_id)

        if warnings:
            logger.debug("Routing segment %d: %s", segment.segment_id, "; ".join(warnings))

        return RoutingDecision(
            recommended_model=recommended,
            reason=reason,
            requires_split=requires_split,
            suggested_segments=suggested,
            warnings=warnings,
            fallback_models=_dedupe(fallbacks),
        )

    def decide_in(self, timeline: Timeline, segment_id: int) -> Optional[RoutingDecision]:
        """Decide for a segment using its array neighbours; ``None`` if absent."""
        idx = timeline.index_of(segment_id)
        if idx < 0:
            return None
        segments = timeline.segments
        prev_seg = segments[idx - 1] if idx > 0 else None
        next_seg = segments[idx + 1] if idx < len(segments) - 1 else None
        return self.decide(segments[idx], prev_seg, next_seg)

    def select_fallback_model(self, original_model_id: str, requires_last_frame: bool) -> str:
        """Pick the first available model from the fixed priority list.

        Returns ``original_model_id`` when nothing in the list qualifies.
        """
        for model_id in self._fallback_priority:
            cap = self._registry.lookup(model_id)
            if cap is None or not cap.is_available:
                continue
            if not requires_last_frame or cap.supports_last_frame:
                return model_id
        return original_model_id

    # ── internal ──────────────────────────────────────────────────────────────

    def _unknown_model_decision(self, segment: Segment) -> RoutingDecision:
        logger.warning("Segment %d references unknown model %r", segment.segment_id, segment.model)
        default = self._safe_default()
        fallbacks = [m for m in self._generic_fallbacks if m in self._registry]
        for cap in self._ranked(self._registry.list_available()):
            if len(fallbacks) >= 2:
                break
            fallbacks.append(cap.model_id)
        return RoutingDecision(
            recommended_model=default,
            reason="Selected model not found, using default",
            warnings=[f"Unknown model selected: {segment.model!r}"],
            fallback_models=_dedupe(fallbacks),
        )

    def _safe_default(self) -> str:
        cap = self._registry.lookup(self._default_model)
        if cap is not None and cap.is_available:
            return cap.model_id
        ranked = self._ranked(self._registry.list_available()) or self._ranked(self._registry.list_all())
        return ranked[0].model_id

    def _similar_quality(self, original: ModelCapability) -> Optional[ModelCapability]:
        candidates = [
            c for c in self._registry.list_available()
            if c.model_id != original.model_id
            and abs(c.quality_score - original.quality_score) <= self._quality_tolerance
        ]
        if not candidates:
            return None
        # closest score first, higher score breaks ties
        candidates.sort(key=lambda c: (abs(c.quality_score - original.quality_score), -c.quality_score))
        return candidates[0]

    @staticmethod
    def _ranked(capabilities: Iterable[ModelCapability]) -> List[ModelCapability]:
        return sorted(capabilities, key=lambda c: -c.quality_score)


def _dedupe(items: Iterable[str]) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out
