"""Segment status state machine.

Every mutator (editor, orchestrator, splitter) goes through this module so
the transition rules live in exactly one place::

    pending   → generating | modified
    modified  → generating | modified
    generating→ generated  | error
    generated → modified
    error     → modified
"""
from __future__ import annotations

from typing import Dict, FrozenSet, Optional

from backend.services.video.types import Segment, SegmentStatus, utc_now

_S = SegmentStatus

_ALLOWED: Dict[SegmentStatus, FrozenSet[SegmentStatus]] = {
    _S.PENDING: frozenset({_S.GENERATING, _S.MODIFIED}),
    _S.MODIFIED: frozenset({_S.GENERATING, _S.MODIFIED}),
    _S.GENERATING: frozenset({_S.GENERATED, _S.ERROR}),
    _S.GENERATED: frozenset({_S.MODIFIED}),
    _S.ERROR: frozenset({_S.MODIFIED}),
}


class InvalidTransitionError(ValueError):
    """Raised when a status change is not allowed from the current status."""


class SegmentBusyError(RuntimeError):
    """Raised when a segment is edited while it is generating."""


def can_transition(current: SegmentStatus, target: SegmentStatus) -> bool:
    return target in _ALLOWED.get(current, frozenset())


def touch(segment: Segment) -> None:
    segment.updated_at = utc_now()


def transition(
    segment: Segment,
    target: SegmentStatus,
    error_message: Optional[str] = None,
) -> None:
    """Move ``segment`` to ``target``.

    ``error_message`` is kept only in the ``error`` state and cleared
    otherwise.

    Raises:
        InvalidTransitionError: If the move is not allowed.
    """
    if not can_transition(segment.status, target):
        raise InvalidTransitionError(
            f"Segment {segment.segment_id}: cannot go from "
            f"{segment.status.value!r} to {target.value!r}"
        )
    segment.status = target
    segment.error_message = error_message if target is _S.ERROR else None
    touch(segment)


def mark_edited(segment: Segment) -> None:
    """Record a field edit: any non-generating segment becomes ``modified``.

    A ``generated`` segment reverting to ``modified`` stops acting as a
    frame-chaining source until it is regenerated.

    Raises:
        SegmentBusyError: If the segment is currently generating.
    """
    if segment.status is _S.GENERATING:
        raise SegmentBusyError(f"Segment {segment.segment_id} is generating and cannot be edited")
    transition(segment, _S.MODIFIED)


def requeue(segment: Segment) -> None:
    """Make a finished (generated or failed) segment eligible to run again."""
    if segment.status in (_S.GENERATED, _S.ERROR):
        transition(segment, _S.MODIFIED)


def begin_generation(segment: Segment) -> None:
    """Enter ``generating``, requeueing a finished segment first."""
    requeue(segment)
    transition(segment, _S.GENERATING)
