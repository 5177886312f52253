"""Logging setup for Timeline Studio.

Every logger sits under ``timeline_studio``.  One call to
:func:`setup_logging` attaches the handlers to that namespace root; noisy
subsystems (provider polling, ffmpeg probing) can be given their own level
through ``levels`` without touching the rest of the tree.
"""
from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Set, Union

NAMESPACE = "timeline_studio"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
DEFAULT_MAX_BYTES = 50 * 1024 * 1024
DEFAULT_BACKUP_COUNT = 5

_LEVEL_NAMES = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# loggers given an explicit level by the last setup call
_overridden: Set[str] = set()


def parse_level(level: Union[str, int]) -> int:
    """Map a level name (any case) or a stdlib level number to its number.

    Raises:
        ValueError: Unknown name or number.
    """
    if isinstance(level, int):
        if logging.getLevelName(level) not in _LEVEL_NAMES:
            raise ValueError(f"Invalid log level: {level!r}")
        return level
    name = str(level).strip().upper()
    if name not in _LEVEL_NAMES:
        raise ValueError(f"Invalid log level: {level!r}. Must be one of {', '.join(_LEVEL_NAMES)}")
    return getattr(logging, name)


def qualified_name(name: str) -> str:
    """``"video.routing"`` -> ``"timeline_studio.video.routing"``."""
    if name == NAMESPACE or name.startswith(NAMESPACE + "."):
        return name
    return f"{NAMESPACE}.{name}"


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(qualified_name(name))


def setup_logging(
    level: Union[str, int] = "INFO",
    log_file: Optional[str] = None,
    max_bytes: int = DEFAULT_MAX_BYTES,
    backup_count: int = DEFAULT_BACKUP_COUNT,
    levels: Optional[Mapping[str, Union[str, int]]] = None,
) -> logging.Logger:
    """Install console (and optionally rotating file) handlers.

    Safe to call repeatedly: earlier handlers and per-subsystem levels are
    dropped first.

    Args:
        level: Level of the namespace root.
        log_file: Rotating log file; parent directories are created.
        max_bytes: Rotate once the file reaches this size.
        backup_count: Rotated files to keep.
        levels: Per-subsystem overrides, e.g. ``{"video.backends": "WARNING"}``.

    Returns:
        The namespace root logger.

    Raises:
        ValueError: ``level`` or any override is not a known level.
    """
    root_level = parse_level(level)
    overrides = {qualified_name(k): parse_level(v) for k, v in (levels or {}).items()}

    root = logging.getLogger(NAMESPACE)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    for name in _overridden:
        logging.getLogger(name).setLevel(logging.NOTSET)
    _overridden.clear()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    for handler in _build_handlers(log_file, max_bytes, backup_count):
        handler.setFormatter(formatter)
        root.addHandler(handler)
    root.setLevel(root_level)
    root.propagate = False

    for name, numeric in overrides.items():
        logging.getLogger(name).setLevel(numeric)
        _overridden.add(name)
    return root


def setup_logging_from_config(config: Any) -> logging.Logger:
    """Apply the ``logging.*`` section of a :class:`Config`.

    A relative ``logging.file`` is placed under the project root.
    """
    log_file = config.resolve_path("logging.file") if config.get("logging.file") else None
    levels: Dict[str, Any] = config.get("logging.levels") or {}
    return setup_logging(
        level=config.get("logging.level", "INFO"),
        log_file=str(log_file) if log_file else None,
        max_bytes=config.get_int("logging.max_bytes", DEFAULT_MAX_BYTES),
        backup_count=config.get_int("logging.backup_count", DEFAULT_BACKUP_COUNT),
        levels=levels,
    )


def _build_handlers(log_file: Optional[str], max_bytes: int, backup_count: int) -> List[logging.Handler]:
    # no handler level: a subsystem set to DEBUG must reach the output
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        ))
    return handlers
