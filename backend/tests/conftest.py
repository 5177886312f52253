"""Shared test fixtures for Timeline Studio."""
import shutil
import tempfile
from pathlib import Path
from typing import Generator, List, Optional, Set

import pytest
import yaml

from backend.services.video.backends.base import (
    BackendError,
    BackendOutput,
    GenerationBackend,
    GenerationRequest,
)
from backend.services.video.capabilities import CapabilityRegistry
from backend.services.video.frame_extractor import (
    FrameExtractionError,
    FrameExtractor,
    RasterFrame,
    TimestampPolicy,
)
from backend.services.video.types import ModelCapability, Segment, Timeline


@pytest.fixture(scope="session")
def project_root() -> Path:
    return Path(__file__).parent.parent.parent


@pytest.fixture
def tmp_dir() -> Generator[Path, None, None]:
    d = Path(tempfile.mkdtemp())
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def sample_settings(tmp_dir: Path) -> Path:
    """Write a minimal settings.yaml to a temp dir and return its path."""
    settings = {
        "logging": {"level": "DEBUG", "file": str(tmp_dir / "test.log")},
        "storage": {"timeline_db": str(tmp_dir / "timelines.db")},
        "registry": {
            "path": str(tmp_dir / "video_models.yaml"),
            "default_model": "model-y",
            "generic_fallbacks": ["model-y", "legacy"],
            "fallback_priority": ["model-z", "model-y"],
            "preview_model": "preview-fast",
            "high_quality_threshold": 7,
            "quality_tolerance": 2,
        },
        "generation": {
            "api_base_url_env": "TS_TEST_VIDEO_API_BASE_URL",
            "api_token_env": "TS_TEST_VIDEO_API_TOKEN",
            "request_timeout_sec": 5,
            "poll_interval_sec": 0,
            "preview_concurrency": 1,
        },
        "frames": {"boundary_offset_sec": 0.1, "ffmpeg_timeout_sec": 5},
        "render": {"output_dir": str(tmp_dir / "renders"), "fps": 24},
    }
    cfg_path = tmp_dir / "settings.yaml"
    cfg_path.write_text(yaml.dump(settings))
    return cfg_path


# ─────────────────────────────────────────────────────────────────────────────
# Registry
# ─────────────────────────────────────────────────────────────────────────────


def _cap(model_id: str, **overrides) -> ModelCapability:
    fields = dict(
        model_id=model_id,
        display_name=model_id.replace("-", " ").title(),
        provider="test",
        min_duration=1.0,
        max_duration=5.0,
        supports_first_frame=True,
        supports_last_frame=True,
        supports_negative_prompt=True,
        resolution="720p",
        cost_per_second=2.0,
        avg_generation_time=30.0,
        quality_score=7,
    )
    fields.update(overrides)
    return ModelCapability(**fields)


@pytest.fixture
def small_registry() -> CapabilityRegistry:
    """Five-model registry covering every routing branch.

    - model-x: 4 s max, no last-frame support
    - model-y: 10 s max, both frames, best available quality
    - model-z: both frames but unavailable
    - preview-fast: preview model, first frame only, no negative prompt
    - legacy: neither frame constraint
    """
    return CapabilityRegistry([
        _cap("model-x", max_duration=4.0, supports_last_frame=False, quality_score=7),
        _cap("model-y", max_duration=10.0, quality_score=9, cost_per_second=3.5, avg_generation_time=60.0),
        _cap("model-z", quality_score=8, is_available=False),
        _cap("preview-fast", max_duration=3.0, supports_last_frame=False,
             supports_negative_prompt=False, quality_score=4, is_preview_model=True,
             cost_per_second=0.5, avg_generation_time=5.0),
        _cap("legacy", supports_first_frame=False, supports_last_frame=False, quality_score=6),
    ])


@pytest.fixture
def registry_yaml(tmp_dir: Path, small_registry: CapabilityRegistry) -> Path:
    """The small registry written as a models YAML file."""
    models = []
    for cap in small_registry.list_all():
        models.append({
            "model_id": cap.model_id,
            "display_name": cap.display_name,
            "provider": cap.provider,
            "min_duration": cap.min_duration,
            "max_duration": cap.max_duration,
            "supports_first_frame": cap.supports_first_frame,
            "supports_last_frame": cap.supports_last_frame,
            "supports_negative_prompt": cap.supports_negative_prompt,
            "resolution": cap.resolution,
            "cost_per_second": cap.cost_per_second,
            "avg_generation_time": cap.avg_generation_time,
            "quality_score": cap.quality_score,
            "is_preview_model": cap.is_preview_model,
            "is_available": cap.is_available,
        })
    path = tmp_dir / "video_models.yaml"
    path.write_text(yaml.dump({"models": models}))
    return path


# ─────────────────────────────────────────────────────────────────────────────
# Timeline builders
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def make_timeline():
    """Factory: ``make_timeline([(duration, model, prompt), ...])``."""
    def _make(specs, name: str = "Test Timeline", timeline_id: str = "tl-test") -> Timeline:
        segments = [
            Segment(segment_id=i + 1, duration_sec=d, model=m, prompt=p)
            for i, (d, m, p) in enumerate(specs)
        ]
        return Timeline(timeline_id=timeline_id, name=name, segments=segments)
    return _make


# ─────────────────────────────────────────────────────────────────────────────
# Generation backend / frame extractor fakes
# ─────────────────────────────────────────────────────────────────────────────


class FakeBackend(GenerationBackend):
    """Deterministic in-memory generation backend.

    Requests whose prompt is in ``fail_prompts`` raise :class:`BackendError`.
    Outputs carry a last frame unless ``emit_last_frame`` is False.
    """

    def __init__(self, fail_prompts: Optional[Set[str]] = None, emit_last_frame: bool = True):
        self.fail_prompts = set(fail_prompts or ())
        self.emit_last_frame = emit_last_frame
        self.requests: List[GenerationRequest] = []

    def name(self) -> str:
        return "fake"

    def is_available(self) -> bool:
        return True

    async def generate(self, request: GenerationRequest) -> BackendOutput:
        self.requests.append(request)
        n = len(self.requests)
        if request.prompt in self.fail_prompts:
            raise BackendError(f"provider rejected {request.prompt!r}")
        return BackendOutput(
            video_url=f"https://cdn.test/{request.model_id}/{n}.mp4",
            thumbnail_url=f"https://cdn.test/{request.model_id}/{n}.jpg",
            last_frame=f"frame:{n}" if self.emit_last_frame else None,
            duration_sec=request.duration_sec,
            tokens_used=10,
        )


class FakeExtractor(FrameExtractor):
    """Returns ``extracted:<ref>:<policy>`` frames; refs in ``broken`` fail."""

    def __init__(self, broken: Optional[Set[str]] = None):
        self.broken = set(broken or ())
        self.calls: List[tuple] = []

    async def decode_and_seek(self, video_ref: str, policy: TimestampPolicy) -> RasterFrame:
        self.calls.append((video_ref, policy))
        if video_ref in self.broken:
            raise FrameExtractionError(f"cannot decode {video_ref}")
        return RasterFrame(
            image=f"extracted:{video_ref}:{policy.value}",
            timestamp_sec=4.9 if policy is TimestampPolicy.NEAR_END else 0.1,
            width=1280,
            height=720,
        )


@pytest.fixture
def fake_backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
def fake_extractor() -> FakeExtractor:
    return FakeExtractor()


@pytest.fixture
def backend_factory():
    """The :class:`FakeBackend` class, for tests that need custom failures."""
    return FakeBackend


@pytest.fixture
def extractor_factory():
    """The :class:`FakeExtractor` class, for tests that need broken refs."""
    return FakeExtractor
