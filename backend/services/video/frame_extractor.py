"""Boundary frame extraction from generated clips (ffmpeg / ffprobe)."""
from __future__ import annotations

import asyncio
import base64
import enum
import json
import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Tuple

logger = logging.getLogger("timeline_studio.video.frame_extractor")


class TimestampPolicy(str, enum.Enum):
    NEAR_START = "near_start"
    NEAR_END = "near_end"


@dataclass
class RasterFrame:
    """A single decoded frame, encoded as an image reference."""
    image: str              # data:image/png;base64,...
    timestamp_sec: float
    width: int
    height: int

    @property
    def resolution(self) -> str:
        return f"{self.width}x{self.height}"


class FrameExtractionError(RuntimeError):
    """Raised when a clip cannot be decoded or seeked."""


class FrameExtractor(ABC):
    """Media frame-extraction interface consumed by the chaining engine."""

    @abstractmethod
    async def decode_and_seek(self, video_ref: str, policy: TimestampPolicy) -> RasterFrame:
        """Decode ``video_ref`` and rasterize the frame selected by ``policy``.

        Raises:
            FrameExtractionError: If the reference is unreachable or malformed.
        """


class FFmpegFrameExtractor(FrameExtractor):
    """Extracts boundary frames with the ffmpeg / ffprobe binaries.

    "Near start" and "near end" stay ``boundary_offset_sec`` away from the
    true boundaries: frame 0 is often black or partially decoded, and the
    exact end timestamp frequently has no frame.

    Subprocess calls are isolated in ``_probe()`` and ``_grab_frame()`` so
    unit tests can mock them.

    Usage::

        extractor = FFmpegFrameExtractor()
        frame = await extractor.decode_and_seek(url, TimestampPolicy.NEAR_END)
    """

    def __init__(self, boundary_offset_sec: float = 0.1, timeout_sec: float = 30.0):
        self._offset = boundary_offset_sec
        self._timeout = timeout_sec

    async def decode_and_seek(self, video_ref: str, policy: TimestampPolicy) -> RasterFrame:
        if not video_ref:
            raise FrameExtractionError("Empty video reference")
        duration, width, height = await asyncio.to_thread(self._probe, video_ref)
        timestamp = self.boundary_timestamp(duration, policy)
        png = await asyncio.to_thread(self._grab_frame, video_ref, timestamp)
        if not png:
            raise FrameExtractionError(f"No frame decoded at {timestamp:.3f}s from {video_ref}")
        image = "data:image/png;base64," + base64.b64encode(png).decode("ascii")
        return RasterFrame(image=image, timestamp_sec=timestamp, width=width, height=height)

    def boundary_timestamp(self, duration_sec: float, policy: TimestampPolicy) -> float:
        if policy is TimestampPolicy.NEAR_START:
            return round(min(self._offset, duration_sec / 2), 3)
        return round(max(duration_sec - self._offset, 0.0), 3)

    # ── Internal — mockable for unit tests ────────────────────────────────────

    def _probe(self, video_ref: str) -> Tuple[float, int, int]:
        """Return ``(duration_sec, width, height)`` of the first video stream."""
        cmd = [
            self._binary("ffprobe"), "-v", "error",
            "-select_streams", "v:0",
            "-show_entries", "stream=width,height:format=duration",
            "-of", "json", video_ref,
        ]
        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=self._timeout)
            info = json.loads(proc.stdout)
            stream = info["streams"][0]
            return float(info["format"]["duration"]), int(stream["width"]), int(stream["height"])
        except (subprocess.SubprocessError, OSError, ValueError, KeyError, IndexError) as exc:
            raise FrameExtractionError(f"ffprobe failed for {video_ref}: {exc}") from exc

    def _grab_frame(self, video_ref: str, timestamp_sec: float) -> bytes:
        """Return PNG bytes of the frame at ``timestamp_sec``."""
        cmd = [
            self._binary("ffmpeg"), "-v", "error",
            "-ss", f"{timestamp_sec:.3f}", "-i", video_ref,
            "-frames:v", "1", "-f", "image2pipe", "-vcodec", "png", "-",
        ]
        try:
            proc = subprocess.run(cmd, capture_output=True, check=True, timeout=self._timeout)
        except (subprocess.SubprocessError, OSError) as exc:
            raise FrameExtractionError(f"ffmpeg failed for {video_ref}: {exc}") from exc
        return proc.stdout

    @staticmethod
    def _binary(name: str) -> str:
        path = shutil.which(name)
        if path is None:
            raise FrameExtractionError(f"{name} not found on PATH")
        return path
