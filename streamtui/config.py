"""Configuration management for StreamTUI."""

import logging
import os
import random
import tomllib
from dataclasses import dataclass, field, asdict, fields
from pathlib import Path
from typing import Literal, Optional

import tomli_w

log = logging.getLogger(__name__)

# Bundled TMDB API keys (public freekeys pool)
TMDB_KEY_POOL: tuple[str, ...] = (
    "fb7bb23f03b6994dafc674c074d01761",
    "e55425032d3d0f371fc776f302e7c09b",
    "8301a21598f8b45668d5711a814f01f6",
    "8cf43ad9c085135b9479ad5cf6bbcbda",
    "da63548086e399ffc910fbc08526df05",
    "13e53ff644a8bd4ba37b3e1044ad24f3",
    "269890f657dddf4635473cf4cf456576",
    "a2f888b27315e62e471b2d587048f32e",
    "8476a7ab80ad76f0936744df0430e67c",
    "5622cafbfe8f8cfe358a29c53e19bba0",
    "ae4bd1b6fce2a5648671bfc171d15ba4",
    "257654f35e3dff105574f97fb4b97035",
    "2f4038e83265214a0dcd6ec2eb3276f5",
    "9e43f45f94705cc8e1d5a0400d19a7b7",
    "af6887753365e14160254ac7f4345dd2",
    "06f10fc8741a672af455421c239a1ffc",
    "09ad8ace66eec34302943272db0e8d2c",
)


def get_config_dir() -> Path:
    """Get config directory path."""
    if os.name == "nt":
        base = Path(os.environ.get("APPDATA", Path.home()))
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config")
    return base / "streamtui"


def get_cache_dir() -> Path:
    """Get cache directory path (subtitles, session record, TUI log)."""
    if os.name == "nt":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home()))
    else:
        base = Path(os.environ.get("XDG_CACHE_HOME") or Path.home() / ".cache")
    return base / "streamtui"


@dataclass
class Config:
    """StreamTUI configuration. Every key is optional in config.toml."""
    tmdb_api_key: Optional[str] = None
    default_device: Optional[str] = None
    preferred_quality: str = "1080p"
    subtitle_languages: list[str] = field(default_factory=lambda: ["eng"])
    default_player: Literal["vlc", "mpv"] = "vlc"
    opensubtitles_api_key: Optional[str] = None
    vlc_args: list[str] = field(default_factory=list)
    mpv_args: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "Config":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


class ConfigStore:
    """Single owner of the user configuration and the active TMDB credential."""

    def __init__(self, path: Path | None = None, key_pool: tuple[str, ...] = TMDB_KEY_POOL):
        self.path = path or get_config_dir() / "config.toml"
        self.key_pool = key_pool
        self.config = self._load()
        self._active_key: str | None = None
        self._tried_keys: set[str] = set()

    def _load(self) -> Config:
        if not self.path.exists():
            return Config()
        try:
            with open(self.path, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            log.warning("Failed to load config %s: %s", self.path, e)
            return Config()
        return Config.from_dict(data)

    def save(self) -> bool:
        """Write the config file. Failures are logged, never raised."""
        data = {k: v for k, v in asdict(self.config).items() if v is not None}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "wb") as f:
                tomli_w.dump(data, f)
        except OSError as e:
            log.warning("Failed to save config %s: %s", self.path, e)
            return False
        return True

    def update(self, **changes) -> None:
        for key, value in changes.items():
            if not hasattr(self.config, key):
                raise AttributeError(f"unknown config key {key!r}")
            setattr(self.config, key, value)
        self.save()

    def api_key(self) -> str:
        """
        Get the TMDB API key with fallback chain:
        rotated key, TMDB_API_KEY, cached key, random pool key (cached).
        """
        if self._active_key:
            return self._active_key

        env_key = os.environ.get("TMDB_API_KEY")
        if env_key:
            self._active_key = env_key
        elif self.config.tmdb_api_key:
            self._active_key = self.config.tmdb_api_key
        else:
            self._active_key = random.choice(self.key_pool)
            self.config.tmdb_api_key = self._active_key
            self.save()
        return self._active_key

    def rotate_key(self, failed_key: str) -> str | None:
        """
        Move to the next pool key after `failed_key` and persist it.

        Returns None once rotation wraps back to a key already tried in this process.
        """
        self._tried_keys.add(failed_key)
        if failed_key in self.key_pool:
            start = (self.key_pool.index(failed_key) + 1) % len(self.key_pool)
        else:
            start = 0

        candidate = self.key_pool[start]
        if candidate in self._tried_keys:
            log.warning("All TMDB API keys were rejected")
            return None

        log.warning("TMDB rejected key %s..., rotating to %s...", failed_key[:6], candidate[:6])
        self._active_key = candidate
        self.config.tmdb_api_key = candidate
        self.save()
        return candidate

    def opensubtitles_key(self) -> str | None:
        return os.environ.get("OPENSUBTITLES_API_KEY") or self.config.opensubtitles_api_key
