"""Providers package."""

from streamtui.providers.base import MetadataProvider, StreamIndexProvider, SubtitleProvider
from streamtui.providers.opensubtitles import OpenSubtitlesProvider
from streamtui.providers.tmdb import TmdbProvider
from streamtui.providers.torrentio import TorrentioProvider

__all__ = [
    "MetadataProvider",
    "StreamIndexProvider",
    "SubtitleProvider",
    "TmdbProvider",
    "TorrentioProvider",
    "OpenSubtitlesProvider",
]
