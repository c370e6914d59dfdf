"""Persisted record of the active playback session."""

import json
import logging
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Any, Literal, Optional

from streamtui.config import get_cache_dir
from streamtui.models import Quality, StreamSource, to_jsonable

log = logging.getLogger(__name__)


@dataclass
class SessionRecord:
    """Enough of a session to control it from another invocation."""
    target: Literal["local", "cast"]
    stream_url: str
    started_at: float
    torrent_pid: Optional[int] = None
    player_pid: Optional[int] = None
    player: Optional[str] = None  # "vlc" or "mpv" for local targets
    device: Optional[str] = None  # catt device name for cast targets
    title: Optional[str] = None
    subtitle_path: Optional[str] = None
    source: Optional[dict[str, Any]] = None

    def stream_source(self) -> StreamSource | None:
        if not self.source:
            return None
        data = dict(self.source)
        data["quality"] = Quality(data.get("quality", Quality.UNKNOWN.value))
        return StreamSource(**data)

    @classmethod
    def from_dict(cls, data: dict) -> "SessionRecord":
        return cls(**data)


def source_to_dict(source: StreamSource) -> dict[str, Any]:
    return to_jsonable(source)


class SessionStore:
    """Single owner of `session.json`."""

    def __init__(self, path: Path | None = None):
        self.path = path or get_cache_dir() / "session.json"

    def load(self) -> SessionRecord | None:
        if not self.path.exists():
            return None
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                return SessionRecord.from_dict(json.load(f))
        except (OSError, ValueError, TypeError) as e:
            log.warning("Ignoring unreadable session file %s: %s", self.path, e)
            return None

    def save(self, record: SessionRecord) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "w", encoding="utf-8") as f:
                json.dump(asdict(record), f, indent=2)
        except OSError as e:
            log.warning("Failed to save session %s: %s", self.path, e)

    def clear(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError as e:
            log.warning("Failed to remove session %s: %s", self.path, e)
