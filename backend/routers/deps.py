"""Shared service singletons for the routers.

Every service is built lazily from ``settings.yaml`` on first use.  Tests
swap in fakes with the ``set_*`` helpers and call :func:`reset` between
cases.
"""
from __future__ import annotations

import logging
import threading
from typing import Optional, Set

from backend.services.shared.config import get_config
from backend.services.shared.timeline_store import TimelineStore
from backend.services.video.auto_split import AutoSplitter
from backend.services.video.backends.base import GenerationBackend
from backend.services.video.backends.provider_api import ProviderAPIBackend
from backend.services.video.capabilities import CapabilityRegistry
from backend.services.video.consistency import ConsistencyChecker
from backend.services.video.cost_estimator import CostEstimator
from backend.services.video.frame_chaining import FrameChainingEngine
from backend.services.video.frame_extractor import FFmpegFrameExtractor, FrameExtractor
from backend.services.video.orchestrator import GenerationOrchestrator
from backend.services.video.render_jobs import RenderJobManager
from backend.services.video.routing import RoutingEngine

logger = logging.getLogger("timeline_studio.routers.deps")

_registry: Optional[CapabilityRegistry] = None
_store: Optional[TimelineStore] = None
_backend: Optional[GenerationBackend] = None
_extractor: Optional[FrameExtractor] = None
_render_manager: Optional[RenderJobManager] = None

_active_runs: Set[str] = set()
_runs_lock = threading.Lock()


# ── Singletons ────────────────────────────────────────────────────────────────


def get_registry() -> CapabilityRegistry:
    global _registry
    if _registry is None:
        _registry = CapabilityRegistry.from_yaml(str(get_config().resolve_path("registry.path")))
    return _registry


def get_store() -> TimelineStore:
    global _store
    if _store is None:
        _store = TimelineStore(db_path=str(get_config().resolve_path("storage.timeline_db")))
    return _store


def get_backend() -> GenerationBackend:
    global _backend
    if _backend is None:
        cfg = get_config()
        _backend = ProviderAPIBackend(
            base_url=cfg.get_env(cfg.get("generation.api_base_url_env", "VIDEO_API_BASE_URL")),
            api_token=cfg.get_env(cfg.get("generation.api_token_env", "VIDEO_API_TOKEN")),
            timeout_sec=cfg.get_float("generation.request_timeout_sec", 600),
            poll_interval_sec=cfg.get_float("generation.poll_interval_sec", 5),
        )
        if not _backend.is_available():
            logger.warning("Video provider is not configured; generation requests will fail")
    return _backend


def get_extractor() -> FrameExtractor:
    global _extractor
    if _extractor is None:
        cfg = get_config()
        _extractor = FFmpegFrameExtractor(
            boundary_offset_sec=cfg.get_float("frames.boundary_offset_sec", 0.1),
            timeout_sec=cfg.get_float("frames.ffmpeg_timeout_sec", 30),
        )
    return _extractor


def get_render_manager() -> RenderJobManager:
    global _render_manager
    if _render_manager is None:
        cfg = get_config()
        _render_manager = RenderJobManager(
            output_dir=str(cfg.resolve_path("render.output_dir")),
            fps=cfg.get_int("render.fps", 24),
        )
    return _render_manager


# ── Stateless services (cheap to build per request) ──────────────────────────


def get_routing() -> RoutingEngine:
    cfg = get_config()
    kwargs = {"quality_tolerance": cfg.get_int("registry.quality_tolerance", 2)}
    if cfg.get("registry.default_model"):
        kwargs["default_model"] = cfg.get("registry.default_model")
    for key in ("generic_fallbacks", "fallback_priority"):
        values = cfg.get_list(f"registry.{key}")
        if values:
            kwargs[key] = values
    return RoutingEngine(get_registry(), **kwargs)


def get_splitter() -> AutoSplitter:
    return AutoSplitter(get_registry())


def get_chaining() -> FrameChainingEngine:
    return FrameChainingEngine(get_extractor())


def get_orchestrator() -> GenerationOrchestrator:
    cfg = get_config()
    return GenerationOrchestrator(
        backend=get_backend(),
        registry=get_registry(),
        chaining=get_chaining(),
        routing=get_routing(),
        preview_model=cfg.get("registry.preview_model", "animatediff-lightning"),
        preview_concurrency=cfg.get_int("generation.preview_concurrency", 1),
    )


def get_consistency_checker() -> ConsistencyChecker:
    return ConsistencyChecker()


def get_cost_estimator() -> CostEstimator:
    return CostEstimator(get_registry())


# ── Run guard ─────────────────────────────────────────────────────────────────


def claim_run(timeline_id: str) -> bool:
    """Mark a timeline as having a run in flight; False if one already is."""
    with _runs_lock:
        if timeline_id in _active_runs:
            return False
        _active_runs.add(timeline_id)
        return True


def release_run(timeline_id: str) -> None:
    with _runs_lock:
        _active_runs.discard(timeline_id)


def is_running(timeline_id: str) -> bool:
    with _runs_lock:
        return timeline_id in _active_runs


# ── Test hooks ────────────────────────────────────────────────────────────────


def set_registry(registry: Optional[CapabilityRegistry]) -> None:
    global _registry
    _registry = registry


def set_store(store: Optional[TimelineStore]) -> None:
    global _store
    _store = store


def set_backend(backend: Optional[GenerationBackend]) -> None:
    global _backend
    _backend = backend


def set_extractor(extractor: Optional[FrameExtractor]) -> None:
    global _extractor
    _extractor = extractor


def set_render_manager(manager: Optional[RenderJobManager]) -> None:
    global _render_manager
    _render_manager = manager


def reset() -> None:
    """Drop every singleton and clear the run guard."""
    global _registry, _store, _backend, _extractor, _render_manager
    _registry = _store = _backend = _extractor = _render_manager = None
    with _runs_lock:
        _active_runs.clear()
