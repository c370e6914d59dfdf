"""Data models for StreamTUI."""

import re
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Optional
from urllib.parse import quote

from streamtui.errors import ProtocolError

IMDB_ID_RE = re.compile(r"^tt\d{7,}$")
INFO_HASH_RE = re.compile(r"^[0-9a-f]{40}$")

FALLBACK_TRACKERS = [
    "udp://tracker.opentrackr.org:1337/announce",
    "udp://open.demonii.com:1337/announce",
    "udp://tracker.openbittorrent.com:6969/announce",
    "udp://exodus.desync.com:6969/announce",
    "udp://tracker.torrent.eu.org:451/announce",
]


def is_imdb_id(value: str) -> bool:
    """Check that a string looks like an IMDb title id (tt + at least 7 digits)."""
    return bool(IMDB_ID_RE.match(value or ""))


class MediaType(str, Enum):
    MOVIE = "movie"
    TV = "tv"

    @property
    def label(self) -> str:
        return "Movie" if self is MediaType.MOVIE else "TV Show"


@dataclass(frozen=True)
class SearchResult:
    """Search/browse result item."""
    id: int
    media_type: MediaType
    title: str
    year: Optional[int] = None
    overview: str = ""
    poster_path: Optional[str] = None
    rating: float = 0.0

    def __str__(self) -> str:
        year = f" ({self.year})" if self.year else ""
        return f"{self.title}{year} [{self.media_type.label}]"


@dataclass
class SeasonSummary:
    """Season info."""
    number: int
    episode_count: int
    name: Optional[str] = None
    air_date: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.name or 'Season'} {self.number} ({self.episode_count} episodes)"


@dataclass
class MovieDetail:
    """Full movie details."""
    id: int
    imdb_id: str
    title: str
    year: Optional[int] = None
    overview: str = ""
    poster_path: Optional[str] = None
    rating: float = 0.0
    genres: list[str] = field(default_factory=list)
    runtime: int = 0

    media_type = MediaType.MOVIE

    def __post_init__(self):
        if not is_imdb_id(self.imdb_id):
            raise ProtocolError(f"invalid IMDb id {self.imdb_id!r} for {self.title!r}")


@dataclass
class TvDetail:
    """Full TV show details with ordered season summaries."""
    id: int
    imdb_id: str
    title: str
    year: Optional[int] = None
    overview: str = ""
    poster_path: Optional[str] = None
    rating: float = 0.0
    genres: list[str] = field(default_factory=list)
    runtime: int = 0
    seasons: list[SeasonSummary] = field(default_factory=list)

    media_type = MediaType.TV

    def __post_init__(self):
        if not is_imdb_id(self.imdb_id):
            raise ProtocolError(f"invalid IMDb id {self.imdb_id!r} for {self.title!r}")
        # Season numbers strictly increase
        by_number: dict[int, SeasonSummary] = {}
        for season in self.seasons:
            by_number.setdefault(season.number, season)
        self.seasons = [by_number[n] for n in sorted(by_number)]


@dataclass
class Episode:
    """Episode data. Season 0 holds specials."""
    season: int
    episode: int
    name: str
    overview: str = ""
    runtime: Optional[int] = None
    imdb_id: Optional[str] = None

    def __str__(self) -> str:
        return f"S{self.season:02d}E{self.episode:02d} - {self.name}"


class Quality(str, Enum):
    UHD_4K = "4K"
    FHD_1080P = "1080p"
    HD_720P = "720p"
    SD_480P = "480p"
    UNKNOWN = "Unknown"

    @property
    def rank(self) -> int:
        return _QUALITY_RANK[self]

    def __str__(self) -> str:
        return self.value


_QUALITY_RANK = {
    Quality.UHD_4K: 4,
    Quality.FHD_1080P: 3,
    Quality.HD_720P: 2,
    Quality.SD_480P: 1,
    Quality.UNKNOWN: 0,
}


@dataclass
class StreamSource:
    """A torrent-backed stream as listed by the stream index."""
    display_name: str
    raw_title: str
    info_hash: str
    file_idx: Optional[int] = None
    seeds: int = 0
    quality: Quality = Quality.UNKNOWN
    size_bytes: Optional[int] = None

    def __post_init__(self):
        self.info_hash = (self.info_hash or "").strip().lower()
        if not INFO_HASH_RE.match(self.info_hash):
            raise ProtocolError(f"invalid info hash {self.info_hash!r}")

    def magnet(self, display_name: str | None = None, trackers: list[str] | None = None) -> str:
        """Build a magnet URI for this source."""
        uri = f"magnet:?xt=urn:btih:{self.info_hash}"
        name = display_name or self.title_line
        if name:
            uri += f"&dn={quote(name)}"
        for tracker in FALLBACK_TRACKERS if trackers is None else trackers:
            uri += f"&tr={quote(tracker, safe='')}"
        return uri

    @property
    def title_line(self) -> str:
        return self.raw_title.splitlines()[0] if self.raw_title else ""

    def format_size(self) -> str:
        if self.size_bytes is None:
            return "? GB"
        if self.size_bytes >= 1024 ** 3:
            return f"{self.size_bytes / 1024 ** 3:.1f} GB"
        if self.size_bytes >= 1024 ** 2:
            return f"{self.size_bytes / 1024 ** 2:.0f} MB"
        return f"{self.size_bytes // 1024} KB"

    def sort_key(self) -> tuple[int, int, str]:
        """Quality descending, then seeds descending, then info hash ascending."""
        return (-self.quality.rank, -self.seeds, self.info_hash)

    def __str__(self) -> str:
        return f"[{self.quality}] {self.format_size()} 👤{self.seeds} {self.title_line}"


class SubtitleFormat(str, Enum):
    SRT = "srt"
    VTT = "vtt"

    @classmethod
    def from_filename(cls, name: str) -> "SubtitleFormat":
        return cls.VTT if name.lower().endswith((".vtt", ".webvtt")) else cls.SRT


@dataclass
class SubtitleDescriptor:
    """A downloadable subtitle."""
    id: str
    url: str
    language: str
    language_name: str
    release: str = ""
    fps: Optional[float] = None
    format: SubtitleFormat = SubtitleFormat.SRT
    downloads: int = 0
    trusted: bool = False
    hearing_impaired: bool = False
    ai_translated: bool = False
    file_id: Optional[int] = None

    def trust_score(self) -> int:
        score = self.downloads
        if self.trusted:
            score += 10000
        if self.ai_translated:
            score = max(0, score - 5000)
        return score

    def __str__(self) -> str:
        flags = ""
        if self.trusted:
            flags += " ✓"
        if self.hearing_impaired:
            flags += " HI"
        if self.ai_translated:
            flags += " AI"
        return f"{self.language_name}: {self.release}{flags} ({self.downloads} downloads)"


@dataclass(frozen=True)
class CastDevice:
    """A network media renderer reachable through the cast helper."""
    id: str
    name: str
    address: str
    port: int = 8009
    model: Optional[str] = None

    def __str__(self) -> str:
        if self.model:
            return f"{self.name} ({self.model}) - {self.address}"
        return f"{self.name} - {self.address}"


class PlaybackState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    BUFFERING = "buffering"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"
    ERROR = "error"


@dataclass
class PlaybackStatus:
    """Transport status. Position and duration are seconds, volume is 0..1."""
    state: PlaybackState = PlaybackState.IDLE
    position: float = 0.0
    duration: float = 0.0
    volume: float = 1.0
    title: Optional[str] = None
    error: Optional[str] = None

    @property
    def progress(self) -> float:
        return self.position / self.duration if self.duration > 0 else 0.0

    def __str__(self) -> str:
        return (
            f"{self.state.value} {format_clock(self.position)} / {format_clock(self.duration)}"
            f" ({round(self.volume * 100)}%)"
        )


def format_clock(seconds: float) -> str:
    total = int(seconds)
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def to_jsonable(value: Any) -> Any:
    """Convert models (and containers of them) to plain JSON-friendly values."""
    if is_dataclass(value) and not isinstance(value, type):
        data = {f.name: to_jsonable(getattr(value, f.name)) for f in fields(value)}
        media_type = getattr(type(value), "media_type", None)
        if isinstance(media_type, MediaType) and "media_type" not in data:
            data["media_type"] = media_type.value
        return data
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value
