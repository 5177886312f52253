"""Capability registry — read-only lookup of video generation backends."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import yaml

from backend.services.video.types import ModelCapability, RenderPriority

logger = logging.getLogger("timeline_studio.video.capabilities")

DEFAULT_REGISTRY_PATH = Path(__file__).parent.parent.parent / "config" / "video_models.yaml"


class CapabilityRegistry:
    """Static table describing each backend's constraints.

    Built once (usually from ``video_models.yaml``) and passed explicitly to
    the routing engine, splitter and orchestrator.  A missing id is an
    expected condition (models retire), so :meth:`lookup` returns ``None``
    rather than raising.

    Usage::

        registry = CapabilityRegistry.from_yaml("backend/config/video_models.yaml")
        cap = registry.lookup("wan-2.5-i2v")
        fast = registry.list_preview()
    """

    def __init__(self, capabilities: Iterable[ModelCapability]):
        entries: Dict[str, ModelCapability] = {}
        for cap in capabilities:
            if cap.model_id in entries:
                raise ValueError(f"Duplicate model id in registry: {cap.model_id!r}")
            entries[cap.model_id] = cap
        if not entries:
            raise ValueError("Capability registry must contain at least one model")
        self._entries = entries

    # ── construction ──────────────────────────────────────────────────────────

    @classmethod
    def from_yaml(cls, path: Optional[str] = None) -> "CapabilityRegistry":
        """Load the registry from a YAML file with a top-level ``models`` list."""
        registry_path = Path(path) if path else DEFAULT_REGISTRY_PATH
        with open(registry_path) as f:
            data = yaml.safe_load(f) or {}
        raw = data.get("models", []) or []
        registry = cls(cls._dict_to_capability(d) for d in raw)
        logger.debug("Loaded %d video models from %s", len(registry), registry_path)
        return registry

    # ── queries ───────────────────────────────────────────────────────────────

    def lookup(self, model_id: str) -> Optional[ModelCapability]:
        return self._entries.get(model_id)

    def list_all(self) -> List[ModelCapability]:
        return list(self._entries.values())

    def list_available(self) -> List[ModelCapability]:
        return [c for c in self._entries.values() if c.is_available]

    def list_preview(self) -> List[ModelCapability]:
        return [c for c in self._entries.values() if c.is_preview_model and c.is_available]

    def list_high_quality(self, threshold: int = 7) -> List[ModelCapability]:
        """Available, non-preview models with ``quality_score >= threshold``."""
        return [
            c for c in self._entries.values()
            if not c.is_preview_model and c.is_available and c.quality_score >= threshold
        ]

    def supports_frame_chaining(self, model_id: str) -> Tuple[bool, bool]:
        """Return ``(first, last)`` frame support; unknown ids support neither."""
        cap = self._entries.get(model_id)
        if cap is None:
            return False, False
        return cap.supports_first_frame, cap.supports_last_frame

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # ── private ───────────────────────────────────────────────────────────────

    @staticmethod
    def _dict_to_capability(d: dict) -> ModelCapability:
        return ModelCapability(
            model_id=d["model_id"],
            display_name=d.get("display_name", d["model_id"]),
            provider=d.get("provider", ""),
            min_duration=float(d["min_duration"]),
            max_duration=float(d["max_duration"]),
            supports_first_frame=bool(d.get("supports_first_frame", False)),
            supports_last_frame=bool(d.get("supports_last_frame", False)),
            supports_negative_prompt=bool(d.get("supports_negative_prompt", False)),
            resolution=str(d.get("resolution", "720p")),
            supported_resolutions=tuple(d.get("supported_resolutions") or ()),
            backend=d.get("backend", ""),
            priority=RenderPriority(d.get("priority", "standard")),
            cost_per_second=float(d.get("cost_per_second", 0.0)),
            avg_generation_time=float(d.get("avg_generation_time", 0.0)),
            quality_score=int(d.get("quality_score", 5)),
            style_presets=tuple(d.get("style_presets") or ()),
            motion_profiles=tuple(d.get("motion_profiles") or ()),
            camera_paths=tuple(d.get("camera_paths") or ()),
            is_preview_model=bool(d.get("is_preview_model", False)),
            is_available=bool(d.get("is_available", True)),
        )
