"""
Configuration loader for the read-along player.
"""

import copy
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from storyreader.exceptions import ConfigurationError

CONFIG_ENV_VAR = "STORYREADER_CONFIG"


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class Config:
    """Configuration manager for the player."""

    _instance: Optional["Config"] = None
    _config: Dict[str, Any] = {}

    def __new__(cls) -> "Config":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        if not self._config:
            self._load_config()

    def _get_project_root(self) -> Path:
        """Get the project root directory."""
        # Navigate up from storyreader/utils to project root
        current = Path(__file__).resolve()
        return current.parent.parent.parent

    def _default_config_path(self) -> Path:
        env_path = os.environ.get(CONFIG_ENV_VAR)
        if env_path:
            return Path(env_path)
        return self._get_project_root() / "config" / "settings.yaml"

    def _load_config(self, config_path: Optional[Path] = None) -> None:
        """Load configuration from YAML file, layered over the defaults."""
        config_path = Path(config_path) if config_path else self._default_config_path()
        defaults = self._get_defaults()

        if not config_path.exists():
            # Use defaults if config doesn't exist
            self._config = defaults
            self._source = None
            return

        try:
            with open(config_path, "r", encoding="utf-8") as f:
                loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        except OSError as e:
            raise ConfigurationError(f"Could not read {config_path}: {e}") from e

        if not isinstance(loaded, dict):
            raise ConfigurationError(
                f"Invalid settings in {config_path}: root must be a mapping"
            )

        self._config = _deep_merge(defaults, loaded)
        self._source = config_path

    def reload(self, config_path: Optional[Path] = None) -> None:
        """Re-read settings, optionally from an explicit file."""
        self._load_config(config_path)

    def _get_defaults(self) -> Dict[str, Any]:
        """Return default configuration."""
        return {
            "playback": {
                "poll_interval_ms": 50,
                "default_volume": 1.0,
            },
            "audio": {
                "backend": "auto",
                "download_timeout": 30,
                "blocksize": 1024,
            },
            "loader": {
                "base_url": "https://shiqu.zhilehuo.com/",
                "endpoint": "knowledge/article/getArticleDetail",
                "timeout": 30,
                "cookie": None,
                "asset_base_url": "https://test.shiqu.zhilehuo.com",
            },
        }

    def get(self, *keys: str, default: Any = None) -> Any:
        """
        Get a configuration value using dot notation.

        Example:
            config.get("playback", "poll_interval_ms") -> 50
        """
        value = self._config
        for key in keys:
            if isinstance(value, dict):
                value = value.get(key)
            else:
                return default
            if value is None:
                return default
        return value

    def set(self, *keys: str, value: Any) -> None:
        """Override a single value in memory (used for CLI flags)."""
        target = self._config
        for key in keys[:-1]:
            target = target.setdefault(key, {})
        target[keys[-1]] = value

    @property
    def project_root(self) -> Path:
        """Get the project root directory."""
        return self._get_project_root()

    @property
    def source(self) -> Optional[Path]:
        """The settings file in use, or None when running on defaults."""
        return getattr(self, "_source", None)

    @property
    def poll_interval_ms(self) -> int:
        """Get the highlight polling interval."""
        return int(self.get("playback", "poll_interval_ms", default=50))

    @property
    def default_volume(self) -> float:
        """Get the starting volume (0.0 - 1.0)."""
        volume = float(self.get("playback", "default_volume", default=1.0))
        return min(1.0, max(0.0, volume))

    @property
    def audio_backend(self) -> str:
        """Get the audio backend name (auto, sounddevice or clock)."""
        return str(self.get("audio", "backend", default="auto")).lower()

    @property
    def download_timeout(self) -> float:
        return float(self.get("audio", "download_timeout", default=30))

    @property
    def audio_blocksize(self) -> int:
        return int(self.get("audio", "blocksize", default=1024))

    @property
    def loader_base_url(self) -> str:
        return self.get("loader", "base_url", default="https://shiqu.zhilehuo.com/")

    @property
    def loader_endpoint(self) -> str:
        return self.get("loader", "endpoint", default="knowledge/article/getArticleDetail")

    @property
    def loader_timeout(self) -> float:
        return float(self.get("loader", "timeout", default=30))

    @property
    def loader_cookie(self) -> Optional[str]:
        return self.get("loader", "cookie")

    @property
    def asset_base_url(self) -> Optional[str]:
        """Get the host that relative image/audio paths are resolved against."""
        return self.get("loader", "asset_base_url")


# Singleton instance
config = Config()
