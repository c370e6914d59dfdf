"""Subtitle pipeline: search, filter, download, convert to WebVTT and cache."""

import logging
import os
import re
import tempfile
from pathlib import Path

from streamtui.config import get_cache_dir
from streamtui.models import SubtitleDescriptor, SubtitleFormat
from streamtui.providers.base import SubtitleProvider

log = logging.getLogger(__name__)

WEBVTT_HEADER = "WEBVTT\n\n"
TIMESTAMP_SEPARATOR = " --> "

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")
# Lines end at `\n` only; `\r\n` stays intact and other separators are content
_LINE_RE = re.compile(r"[^\n]*\n|[^\n]+\Z")


def srt_to_vtt(text: str) -> str:
    """
    Convert SRT captions to WebVTT.

    Timestamp lines get `,` replaced by `.`; every other line is copied as is.
    A missing final newline is added.
    """
    out = [WEBVTT_HEADER]
    for line in _LINE_RE.findall(text):
        if TIMESTAMP_SEPARATOR in line:
            line = line.replace(",", ".")
        if not line.endswith("\n"):
            line += "\n"
        out.append(line)
    return "".join(out)


def decode_subtitle(data: bytes) -> str:
    """Decode subtitle bytes as UTF-8, falling back to latin-1."""
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError:
        text = data.decode("latin-1")
    return text.removeprefix("\ufeff")


def to_webvtt(text: str, fmt: SubtitleFormat = SubtitleFormat.SRT) -> str:
    if fmt is SubtitleFormat.VTT and text.lstrip().startswith("WEBVTT"):
        return text
    return srt_to_vtt(text)


class SubtitlePipeline:
    """Owns the subtitle cache. Cache files are never evicted."""

    def __init__(self, provider: SubtitleProvider, cache_dir: Path | None = None):
        self.provider = provider
        self.cache_dir = cache_dir or get_cache_dir() / "subtitles"

    async def search(
        self,
        imdb_id: str,
        season: int | None = None,
        episode: int | None = None,
        lang: str | None = None,
        hearing_impaired: bool | None = None,
        trusted_only: bool = False,
    ) -> list[SubtitleDescriptor]:
        """
        Search subtitles for a movie, or for an episode when both season and
        episode are given. Results are ordered by trust score, best first.
        """
        if season is not None and episode is not None:
            results = await self.provider.search_episode(imdb_id, season, episode, lang)
        else:
            results = await self.provider.search_movie(imdb_id, lang)

        if hearing_impaired is not None:
            results = [s for s in results if s.hearing_impaired == hearing_impaired]
        if trusted_only:
            results = [s for s in results if s.trusted]
        return sorted(results, key=lambda s: s.trust_score(), reverse=True)

    def cache_path(self, descriptor: SubtitleDescriptor) -> Path:
        lang = _UNSAFE_CHARS.sub("_", descriptor.language or "und")
        sub_id = _UNSAFE_CHARS.sub("_", descriptor.id)
        return self.cache_dir / f"{lang}_{sub_id}.vtt"

    async def download(self, descriptor: SubtitleDescriptor) -> str:
        """Return the WebVTT text for a subtitle, downloading it on a cache miss."""
        path = self.cache_path(descriptor)
        if path.exists():
            log.debug("Subtitle cache hit: %s", path)
            return path.read_text(encoding="utf-8")

        data = await self.provider.fetch(descriptor)
        contents = to_webvtt(decode_subtitle(data), descriptor.format)
        self._write_atomic(path, contents)
        log.debug("Cached subtitle %s at %s", descriptor.id, path)
        return contents

    async def download_path(self, descriptor: SubtitleDescriptor) -> Path:
        """Ensure the subtitle is cached and return its path on disk."""
        await self.download(descriptor)
        return self.cache_path(descriptor)

    def _write_atomic(self, path: Path, contents: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=".sub_", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
                f.write(contents)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
