"""TimelineAssembler — composes generated segment clips into one final video."""
from __future__ import annotations

import logging
import re
import shutil
import subprocess
from pathlib import Path
from typing import List, Tuple

from backend.services.video.transition_engine import TransitionConfig
from backend.services.video.types import RenderClip

logger = logging.getLogger("timeline_studio.video.assembler")

_NAMED_RESOLUTIONS = {
    "480p": (854, 480),
    "720p": (1280, 720),
    "1080p": (1920, 1080),
    "1440p": (2560, 1440),
    "2160p": (3840, 2160),
    "4k": (3840, 2160),
}
_WXH = re.compile(r"^\s*(\d+)\s*[x×]\s*(\d+)\s*$")


def resolution_to_size(resolution: str) -> Tuple[int, int]:
    """``"1080p"`` / ``"4k"`` / ``"1280x720"`` → ``(width, height)``.

    Raises:
        ValueError: Unrecognised resolution string.
    """
    key = resolution.strip().lower()
    if key in _NAMED_RESOLUTIONS:
        return _NAMED_RESOLUTIONS[key]
    match = _WXH.match(key)
    if match:
        return int(match.group(1)), int(match.group(2))
    raise ValueError(f"Unrecognised resolution: {resolution!r}")


class TimelineAssembler:
    """Assembles segment clips into a continuous final video.

    Clips are scaled and padded to the target size, then joined left to
    right: an ``xfade`` for every transition with a duration, a ``concat``
    for hard cuts.  Audio from generated clips is dropped.

    The FFmpeg invocation is isolated in ``_run_ffmpeg()`` so unit tests can
    mock it without real files or binaries.

    Usage::

        assembler = TimelineAssembler()
        output = assembler.assemble(
            clips=clips,
            transitions=transitions,
            output_path="/path/to/output.mp4",
        )
    """

    def assemble(
        self,
        clips: List[RenderClip],
        transitions: List[TransitionConfig],
        output_path: str,
        resolution: Tuple[int, int] = (1920, 1080),
        fps: int = 24,
    ) -> str:
        """Assemble clips into a final video.

        Args:
            clips: Ordered list of :class:`RenderClip` objects.
            transitions: Transition configs between clips.
                Must have exactly ``len(clips) - 1`` entries.
            output_path: Destination path for the final video.
            resolution: Target output resolution ``(width, height)``.
            fps: Target frames per second.

        Returns:
            Path to the assembled video file (same as ``output_path``).

        Raises:
            ValueError: No clips, or ``len(transitions) != len(clips) - 1``.
            RuntimeError: FFmpeg failed.
        """
        if not clips:
            raise ValueError("Nothing to assemble: no clips given.")
        expected_transitions = len(clips) - 1
        if len(transitions) != expected_transitions:
            raise ValueError(
                f"Expected {expected_transitions} transitions for {len(clips)} clips, "
                f"got {len(transitions)}."
            )

        logger.info(
            "Assembling %d clips → %s (resolution=%s, fps=%d)",
            len(clips), output_path, resolution, fps,
        )
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        cmd = self.build_command(clips, transitions, output_path, resolution, fps)
        self._run_ffmpeg(cmd)
        return output_path

    def build_command(
        self,
        clips: List[RenderClip],
        transitions: List[TransitionConfig],
        output_path: str,
        resolution: Tuple[int, int],
        fps: int,
    ) -> List[str]:
        """FFmpeg argument list (without the binary) for the given clips."""
        width, height = resolution
        args: List[str] = ["-y"]
        for clip in clips:
            args += ["-i", clip.file_path]

        graph: List[str] = []
        for i in range(len(clips)):
            graph.append(
                f"[{i}:v]scale={width}:{height}:force_original_aspect_ratio=decrease,"
                f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1,fps={fps},format=yuv420p[v{i}]"
            )

        current = "v0"
        elapsed = clips[0].duration_sec
        for k, config in enumerate(transitions):
            nxt = f"v{k + 1}"
            out = f"x{k + 1}"
            name = config.xfade_name
            if name is None:
                graph.append(f"[{current}][{nxt}]concat=n=2:v=1:a=0[{out}]")
                elapsed += clips[k + 1].duration_sec
            else:
                offset = max(elapsed - config.duration_sec, 0.0)
                graph.append(
                    f"[{current}][{nxt}]xfade=transition={name}:"
                    f"duration={config.duration_sec:.3f}:offset={offset:.3f}[{out}]"
                )
                elapsed = offset + clips[k + 1].duration_sec
            current = out

        args += [
            "-filter_complex", ";".join(graph),
            "-map", f"[{current}]",
            "-an",
            "-c:v", "libx264",
            "-pix_fmt", "yuv420p",
            "-r", str(fps),
            output_path,
        ]
        return args

    # ── Internal — mockable for unit tests ────────────────────────────────────

    def _run_ffmpeg(self, args: List[str]) -> None:
        """Run FFmpeg with ``args``; raise RuntimeError on failure."""
        binary = shutil.which("ffmpeg")
        if binary is None:
            raise RuntimeError("ffmpeg not found on PATH")
        proc = subprocess.run([binary, *args], capture_output=True, text=True)
        if proc.returncode != 0:
            tail = (proc.stderr or "").strip().splitlines()[-5:]
            raise RuntimeError("ffmpeg failed: " + " | ".join(tail))
