"""Abstract GenerationBackend interface — all video generation providers implement this."""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from backend.services.video.types import ModelCapability, Segment


class BackendError(RuntimeError):
    """Transport or provider failure raised by a generation backend.

    The orchestrator converts it into ``GenerationResult(success=False)``.
    """


@dataclass
class GenerationRequest:
    """One clip request sent to a generation provider."""
    prompt: str
    model_id: str
    duration_sec: float
    negative_prompt: Optional[str] = None
    first_frame: Optional[str] = None
    last_frame: Optional[str] = None
    motion_profile: Optional[str] = None
    camera_path: Optional[str] = None
    style_preset: Optional[str] = None
    seed: Optional[int] = None

    @classmethod
    def from_segment(
        cls,
        segment: Segment,
        model_id: str,
        capability: Optional[ModelCapability] = None,
    ) -> "GenerationRequest":
        """Build a request from a segment.

        When ``capability`` is given, inputs the model cannot take
        (negative prompt, boundary frames) are left out of the request.
        """
        negative = segment.negative_prompt or None
        first = segment.first_frame
        last = segment.last_frame
        if capability is not None:
            if not capability.supports_negative_prompt:
                negative = None
            if not capability.supports_first_frame:
                first = None
            if not capability.supports_last_frame:
                last = None
        return cls(
            prompt=segment.prompt,
            model_id=model_id,
            duration_sec=segment.duration_sec,
            negative_prompt=negative,
            first_frame=first,
            last_frame=last,
            motion_profile=segment.motion_profile.value,
            camera_path=segment.camera_path.value,
            style_preset=segment.style_preset,
            seed=segment.seed,
        )

    def to_payload(self) -> Dict[str, Any]:
        """Provider JSON body; ``None`` fields are dropped."""
        data = asdict(self)
        data["model"] = data.pop("model_id")
        data["duration"] = data.pop("duration_sec")
        return {k: v for k, v in data.items() if v is not None}


@dataclass
class BackendOutput:
    """What a provider hands back for one finished clip."""
    video_url: str
    thumbnail_url: Optional[str] = None
    last_frame: Optional[str] = None
    duration_sec: Optional[float] = None
    tokens_used: int = 0


class GenerationBackend(ABC):
    """Abstract base for all video generation providers.

    Each backend wraps one provider endpoint (or a fake in tests) and is
    responsible for:
    - Reporting whether it is configured and reachable
    - Turning a :class:`GenerationRequest` into a finished clip
    - Enforcing its own timeout; a timeout is reported as :class:`BackendError`
    """

    @abstractmethod
    def name(self) -> str:
        """Short identifier for this backend (e.g. "provider_api")."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return True if this backend can accept requests right now."""

    @abstractmethod
    async def generate(self, request: GenerationRequest) -> BackendOutput:
        """Generate one clip.

        Raises:
            BackendError: On transport failure, provider failure or timeout.
        """
