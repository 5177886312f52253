"""Data types for the Timeline Studio long-form video engine."""
from __future__ import annotations

import enum
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple

DEFAULT_MODEL_ID = "wan-2.5-i2v"
DEFAULT_SEGMENT_DURATION_SEC = 5.0


def utc_now() -> str:
    """ISO-8601 UTC timestamp used for every created/updated field."""
    return datetime.now(timezone.utc).isoformat()


def new_timeline_id() -> str:
    return uuid.uuid4().hex[:12]


class SegmentStatus(str, enum.Enum):
    PENDING = "pending"
    GENERATING = "generating"
    GENERATED = "generated"
    MODIFIED = "modified"
    ERROR = "error"


class TransitionType(str, enum.Enum):
    NONE = "none"
    FADE = "fade"
    MORPH = "morph"
    WARP = "warp"
    DISSOLVE = "dissolve"


class MotionProfile(str, enum.Enum):
    SMOOTH = "smooth"
    FAST = "fast"
    CINEMATIC = "cinematic"
    DRAMATIC = "dramatic"
    GENTLE = "gentle"


class CameraPath(str, enum.Enum):
    STATIC = "static"
    PAN = "pan"
    ZOOM = "zoom"
    ORBIT = "orbit"
    DOLLY = "dolly"
    FLYOVER = "flyover"
    CHASE = "chase"
    CUSTOM = "custom"


class RenderPriority(str, enum.Enum):
    PREVIEW = "preview"
    STANDARD = "standard"
    HIGH = "high"


class RenderJobStatus(str, enum.Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class BoundaryFrame(str, enum.Enum):
    """Which end of a clip a boundary frame is taken from."""
    FIRST = "first"
    LAST = "last"


# ── Registry ──────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ModelCapability:
    """Constraints a single generation backend exposes.

    ``quality_score`` is ordinal (1-10) and is only used to rank fallbacks.
    """
    model_id: str
    display_name: str
    provider: str
    min_duration: float
    max_duration: float
    supports_first_frame: bool
    supports_last_frame: bool
    supports_negative_prompt: bool
    resolution: str
    supported_resolutions: Tuple[str, ...] = ()
    backend: str = ""
    priority: RenderPriority = RenderPriority.STANDARD
    cost_per_second: float = 0.0
    avg_generation_time: float = 0.0
    quality_score: int = 5
    style_presets: Tuple[str, ...] = ()
    motion_profiles: Tuple[str, ...] = ()
    camera_paths: Tuple[str, ...] = ()
    is_preview_model: bool = False
    is_available: bool = True

    def __post_init__(self) -> None:
        if self.min_duration > self.max_duration:
            raise ValueError(
                f"Model {self.model_id!r}: min_duration {self.min_duration} "
                f"exceeds max_duration {self.max_duration}"
            )

    @property
    def supports_full_chaining(self) -> bool:
        return self.supports_first_frame and self.supports_last_frame


# ── Timeline model ────────────────────────────────────────────────────────────


@dataclass
class Segment:
    """One generation request within a timeline.

    ``first_frame`` / ``last_frame`` are opaque image references (URL or data
    URI); ``None`` means the boundary is unconstrained.
    """
    segment_id: int
    duration_sec: float = DEFAULT_SEGMENT_DURATION_SEC
    model: str = DEFAULT_MODEL_ID
    prompt: str = ""
    negative_prompt: Optional[str] = None
    first_frame: Optional[str] = None
    last_frame: Optional[str] = None
    generated_video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    preview_video_url: Optional[str] = None
    status: SegmentStatus = SegmentStatus.PENDING
    transition: TransitionType = TransitionType.FADE
    motion_profile: MotionProfile = MotionProfile.SMOOTH
    camera_path: CameraPath = CameraPath.STATIC
    priority: RenderPriority = RenderPriority.STANDARD
    seed: Optional[int] = None
    style_preset: Optional[str] = None
    error_message: Optional[str] = None
    first_frame_pinned: bool = False
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)


@dataclass
class Timeline:
    """An ordered list of segments composing one video.

    Array position defines adjacency for frame chaining.
    """
    timeline_id: str
    name: str
    segments: List[Segment]
    description: str = ""
    version: str = "1.0"
    target_resolution: str = "1080p"
    global_style: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    is_template: bool = False
    user_id: Optional[str] = None
    scenario_id: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    updated_at: str = field(default_factory=utc_now)

    def __post_init__(self) -> None:
        if not self.segments:
            raise ValueError("A timeline must contain at least one segment")

    @property
    def total_duration_sec(self) -> float:
        return round(sum(s.duration_sec for s in self.segments), 3)

    def index_of(self, segment_id: int) -> int:
        """Array position of ``segment_id``, or -1."""
        for i, seg in enumerate(self.segments):
            if seg.segment_id == segment_id:
                return i
        return -1


def create_empty_segment(segment_id: int, model: str = DEFAULT_MODEL_ID) -> Segment:
    return Segment(segment_id=segment_id, model=model)


def create_timeline(name: str = "Untitled Timeline", model: str = DEFAULT_MODEL_ID) -> Timeline:
    """New timeline holding a single empty 5-second segment."""
    return Timeline(
        timeline_id=new_timeline_id(),
        name=name,
        segments=[create_empty_segment(1, model=model)],
    )


# ── Derived results ───────────────────────────────────────────────────────────


@dataclass
class RoutingDecision:
    """Advisory output of the routing engine. Never persisted."""
    recommended_model: str
    reason: str
    requires_split: bool = False
    suggested_segments: Optional[int] = None
    warnings: List[str] = field(default_factory=list)
    fallback_models: List[str] = field(default_factory=list)


@dataclass
class GenerationResult:
    """Outcome of one per-segment generation attempt."""
    success: bool
    segment_id: int
    model_used: str
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    last_frame: Optional[str] = None
    duration_actual: Optional[float] = None
    generation_time_ms: int = 0
    tokens_used: int = 0
    error: Optional[str] = None


@dataclass
class TimelineRunResult:
    """Aggregate of a full (or preview) run over a timeline."""
    success: bool
    results: List[GenerationResult]
    total_time_ms: int
    total_tokens: int


@dataclass
class FrameExtractionResult:
    success: bool
    frame_image: str = ""
    timestamp_sec: float = 0.0
    resolution: str = ""
    which: BoundaryFrame = BoundaryFrame.LAST
    error: Optional[str] = None


@dataclass
class ConsistencyIssue:
    segment_id: Optional[int]       # None = timeline-wide
    issue_type: str                 # "character_mismatch" | "lighting_inconsistency" | "temporal_gap"
    description: str
    severity: str                   # "low" | "medium" | "high"
    suggestion: str


@dataclass
class ConsistencyReport:
    is_consistent: bool
    issues: List[ConsistencyIssue]
    overall_score: int


@dataclass
class RenderJob:
    """Lifecycle record of one final render attempt. Never reused."""
    job_id: str
    timeline_id: str
    status: RenderJobStatus = RenderJobStatus.QUEUED
    progress_percent: int = 0
    current_segment: int = 0
    total_segments: int = 0
    output_url: Optional[str] = None
    error: Optional[str] = None
    created_at: str = field(default_factory=utc_now)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


@dataclass
class RenderClip:
    """A generated segment clip ready for composition."""
    file_path: str
    duration_sec: float
    segment_id: int


@dataclass
class ImportResult:
    """Outcome of importing a serialized timeline."""
    success: bool
    timeline: Optional[Timeline] = None
    error: Optional[str] = None
