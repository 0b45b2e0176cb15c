"""Runtime settings loader.

Settings come from three layers, later layers winning:

    1. built-in defaults (DEFAULTS below)
    2. a JSON file: $VIDSHELF_CONFIG, else configs/vidshelf.json if present
    3. VIDSHELF_<KEY> environment variables (e.g. VIDSHELF_ROOT, VIDSHELF_PORT)

The result is cached; call reset_cache() after changing the environment
(tests do this through a fixture).
"""
import json
import os
import shutil
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Optional

CONFIG_DIR = Path(__file__).parent
PROJECT_DIR = CONFIG_DIR.parent
ENV_PREFIX = "VIDSHELF_"

DEFAULTS: dict[str, Any] = {
    "root": str(PROJECT_DIR / "videos"),
    "host": "127.0.0.1",
    "port": 3000,
    "ffmpeg_binary": shutil.which("ffmpeg") or "ffmpeg",
    "engine_timeout": 3600.0,
    "edit_workers": 2,
    "chunk_size": 64 * 1024,
    "static_dir": str(PROJECT_DIR / "static"),
    "log_level": "INFO",
    "log_file": "",
    "edit_log": str(PROJECT_DIR / "metrics" / "edit_actions.jsonl"),
}

_INT_KEYS = {"port", "edit_workers", "chunk_size"}
_FLOAT_KEYS = {"engine_timeout"}


@dataclass(frozen=True)
class Settings:
    root: Path
    host: str
    port: int
    ffmpeg_binary: str
    engine_timeout: float
    edit_workers: int
    chunk_size: int
    static_dir: Path
    log_level: str
    log_file: Optional[Path]
    edit_log: Path

    @property
    def edited_dir(self) -> Path:
        """Reserved output directory for edited videos."""
        return self.root / "edited"

    def ensure_dirs(self) -> None:
        """Create the sandbox root if it doesn't exist."""
        self.root.mkdir(parents=True, exist_ok=True)

    def with_overrides(self, **overrides: Any) -> "Settings":
        """Return a copy with the non-None overrides applied."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **_coerce(values))


_CACHE: Optional[Settings] = None


def _config_file() -> Optional[Path]:
    explicit = os.environ.get(ENV_PREFIX + "CONFIG", "")
    if explicit:
        return Path(explicit)
    candidate = CONFIG_DIR / "vidshelf.json"
    return candidate if candidate.exists() else None


def _coerce(values: dict[str, Any]) -> dict[str, Any]:
    """Convert raw JSON/env values to the field types of Settings."""
    out: dict[str, Any] = {}
    for key, value in values.items():
        if key in _INT_KEYS:
            out[key] = int(value)
        elif key in _FLOAT_KEYS:
            out[key] = float(value)
        elif key in ("root", "static_dir", "edit_log"):
            out[key] = Path(value).expanduser().resolve()
        elif key == "log_file":
            out[key] = Path(value).expanduser() if value else None
        elif key == "log_level":
            out[key] = str(value).upper()
        else:
            out[key] = str(value)
    return out


def load_settings() -> Settings:
    """Build Settings from defaults, the JSON config file and the environment."""
    values = dict(DEFAULTS)

    path = _config_file()
    if path is not None:
        with open(path, encoding="utf-8") as f:
            file_values = json.load(f)
        unknown = set(file_values) - set(DEFAULTS)
        if unknown:
            raise ValueError(f"unknown settings in {path}: {sorted(unknown)}")
        values.update(file_values)

    for key in DEFAULTS:
        env_value = os.environ.get(ENV_PREFIX + key.upper())
        if env_value is not None:
            values[key] = env_value

    return Settings(**_coerce(values))


def get_settings() -> Settings:
    """Return the cached settings, loading them on first use."""
    global _CACHE
    if _CACHE is None:
        _CACHE = load_settings()
    return _CACHE


def set_settings(settings: Settings) -> None:
    """Replace the cached settings (used by the CLI after parsing flags)."""
    global _CACHE
    _CACHE = settings


def reset_cache() -> None:
    """Clear the settings cache (for testing)."""
    global _CACHE
    _CACHE = None
