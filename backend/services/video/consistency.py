"""ConsistencyChecker — cheap heuristic story-continuity report over prompts."""
from __future__ import annotations

import logging
import re
from typing import List, Optional, Set

from backend.services.video.types import ConsistencyIssue, ConsistencyReport, Timeline

logger = logging.getLogger("timeline_studio.video.consistency")

CHARACTER_TERMS = ("man", "woman", "person", "character", "hero", "protagonist")
LIGHTING_TERMS = ("day", "night", "sunset", "sunrise", "dark", "bright", "sunny")

_CHARACTER_RE = re.compile(r"\b(" + "|".join(CHARACTER_TERMS) + r")\b")
# word-initial match: "daytime" counts as day, "today" does not
_LIGHTING_RE = re.compile(r"\b(" + "|".join(LIGHTING_TERMS) + r")")
_OPPOSING_LIGHT = {"day": "night", "night": "day"}

_MAX_DISTINCT_CHARACTERS = 3
_MIN_PROMPT_CHARS = 10

_CHARACTER_PENALTY = 10
_LIGHTING_PENALTY = 20
_SHORT_PROMPT_PENALTY = 15


class ConsistencyChecker:
    """Advisory prompt-level checks, starting from a score of 100.

    - More than three distinct character nouns across the timeline → -10
      (``character_mismatch``, medium)
    - A day/night flip between adjacent segments → -20
      (``lighting_inconsistency``, high; reported once)
    - Each prompt shorter than 10 characters → -15 (``temporal_gap``, high)

    The score never drops below 0.  Nothing here blocks generation.

    Usage::

        report = ConsistencyChecker().check(timeline)
        if not report.is_consistent:
            for issue in report.issues: ...
    """

    def check(self, timeline: Timeline) -> ConsistencyReport:
        issues: List[ConsistencyIssue] = []
        score = 100
        prompts = [(s.prompt or "").lower() for s in timeline.segments]

        characters: Set[str] = set()
        for prompt in prompts:
            characters.update(_CHARACTER_RE.findall(prompt))
        if len(characters) > _MAX_DISTINCT_CHARACTERS:
            issues.append(ConsistencyIssue(
                segment_id=None,
                issue_type="character_mismatch",
                description=(
                    "Multiple different character descriptions detected across segments: "
                    + ", ".join(sorted(characters))
                ),
                severity="medium",
                suggestion="Consider using consistent character descriptions throughout",
            ))
            score -= _CHARACTER_PENALTY

        flip_at = self._first_lighting_flip(timeline, prompts)
        if flip_at is not None:
            issues.append(ConsistencyIssue(
                segment_id=flip_at,
                issue_type="lighting_inconsistency",
                description="Sudden lighting changes detected between segments",
                severity="high",
                suggestion="Add transition segments or adjust lighting descriptions",
            ))
            score -= _LIGHTING_PENALTY

        for idx, segment in enumerate(timeline.segments):
            if len((segment.prompt or "").strip()) < _MIN_PROMPT_CHARS:
                issues.append(ConsistencyIssue(
                    segment_id=segment.segment_id,
                    issue_type="temporal_gap",
                    description=f"Segment {idx + 1} has an empty or very short prompt",
                    severity="high",
                    suggestion="Add a detailed description for better results",
                ))
                score -= _SHORT_PROMPT_PENALTY

        if issues:
            logger.debug("Timeline %s: %d consistency issue(s)", timeline.timeline_id, len(issues))
        return ConsistencyReport(
            is_consistent=not issues,
            issues=issues,
            overall_score=max(0, score),
        )

    @staticmethod
    def _first_lighting_flip(timeline: Timeline, prompts: List[str]) -> Optional[int]:
        """Segment id where a day/night flip first occurs, if any."""
        mentions = [set(_LIGHTING_RE.findall(p)) for p in prompts]
        for idx in range(1, len(mentions)):
            for term in mentions[idx]:
                opposite = _OPPOSING_LIGHT.get(term)
                if opposite and opposite in mentions[idx - 1]:
                    return timeline.segments[idx].segment_id
        return None
