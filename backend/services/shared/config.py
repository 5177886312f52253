"""Configuration for Timeline Studio.

Settings come from ``backend/config/settings.yaml``; provider secrets
(endpoint, token) come from the environment, filled from .env files:
  1. Global ~/.config/timeline_studio/.env  (lowest priority)
  2. Local backend/.env                     (overrides global)
  3. Environment variables                  (highest priority)

Relative paths in the settings file (database, registry, render output)
are resolved against the project root, so the backend behaves the same
whatever directory uvicorn is started from.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from dotenv import load_dotenv

_config_instance: Optional["Config"] = None

PROJECT_ROOT = Path(__file__).parent.parent.parent.parent
DEFAULT_SETTINGS_PATH = PROJECT_ROOT / "backend" / "config" / "settings.yaml"

_MISSING = object()


class Config:
    """Settings tree with dot-notation lookups and typed accessors.

    Usage::

        cfg = get_config()
        cfg.get("registry.default_model")           # "wan-2.5-i2v"
        cfg.get_float("generation.poll_interval_sec")
        cfg.resolve_path("storage.timeline_db")     # absolute Path
        cfg.get_env(cfg.get("generation.api_token_env"))
    """

    def __init__(self, config_path: str, root: Optional[Path] = None):
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        with open(path) as f:
            data = yaml.safe_load(f)
        if not isinstance(data, dict):
            raise ValueError(f"Config file must be a YAML mapping, got: {type(data)}")
        self._data: Dict[str, Any] = data
        self._path = path
        self._root = root or PROJECT_ROOT
        self._load_env()

    @property
    def path(self) -> Path:
        return self._path

    # ── private ──────────────────────────────────────────────────────────────

    def _load_env(self) -> None:
        """Load .env files in priority order (global → local)."""
        global_env = Path.home() / ".config" / "timeline_studio" / ".env"
        local_env = self._root / "backend" / ".env"
        if global_env.exists():
            load_dotenv(global_env, override=False)
        if local_env.exists():
            load_dotenv(local_env, override=True)

    def _lookup(self, key: str) -> Any:
        node: Any = self._data
        for part in key.split("."):
            if not isinstance(node, dict) or part not in node:
                return _MISSING
            node = node[part]
        return node

    # ── public ───────────────────────────────────────────────────────────────

    def get(self, key: str, default: Any = None) -> Any:
        """Value at a dotted key such as ``"render.fps"``, or ``default``."""
        value = self._lookup(key)
        return default if value is _MISSING else value

    def section(self, name: str) -> Dict[str, Any]:
        """A top-level section as a dict (empty when absent)."""
        value = self.get(name)
        return dict(value) if isinstance(value, dict) else {}

    def get_int(self, key: str, default: int) -> int:
        return int(self.get(key, default))

    def get_float(self, key: str, default: float) -> float:
        return float(self.get(key, default))

    def get_list(self, key: str) -> List[Any]:
        """A list setting; a scalar becomes a one-element list, absent an empty one."""
        value = self.get(key)
        if value is None:
            return []
        return list(value) if isinstance(value, (list, tuple)) else [value]

    def get_path(self, key: str) -> Path:
        """Return a config value as a Path, exactly as written.

        Raises KeyError if the key does not exist.
        """
        value = self.get(key)
        if value is None:
            raise KeyError(f"Config key not found: {key}")
        return Path(str(value))

    def resolve_path(self, key: str) -> Path:
        """Like :meth:`get_path`, with relative paths anchored at the project root."""
        path = self.get_path(key).expanduser()
        return path if path.is_absolute() else self._root / path

    def get_env(self, name: Optional[str], default: Optional[str] = None) -> Optional[str]:
        """Return an environment variable value (``default`` for a ``None`` name)."""
        if not name:
            return default
        return os.environ.get(name, default)


# ── module-level singleton ────────────────────────────────────────────────────


def get_config(config_path: Optional[str] = None) -> Config:
    """Return the singleton Config instance.

    On first call, ``config_path`` selects the settings file; when omitted the
    packaged ``backend/config/settings.yaml`` is used.  Subsequent calls return
    the existing instance.
    """
    global _config_instance
    if _config_instance is None:
        _config_instance = Config(config_path or str(DEFAULT_SETTINGS_PATH))
    return _config_instance


def reset_config() -> None:
    """Clear the singleton (mainly for testing)."""
    global _config_instance
    _config_instance = None
