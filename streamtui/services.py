"""Wires the config store to the gateways, the subtitle pipeline and the dispatcher."""

from dataclasses import dataclass
from pathlib import Path

from streamtui.cast import CastController
from streamtui.config import ConfigStore, get_cache_dir
from streamtui.dispatcher import PlaybackDispatcher
from streamtui.providers import (
    MetadataProvider, OpenSubtitlesProvider, StreamIndexProvider, TmdbProvider, TorrentioProvider
)
from streamtui.session import SessionStore
from streamtui.subtitles import SubtitlePipeline


@dataclass
class Services:
    """Everything the CLI and the TUI talk to."""
    config: ConfigStore
    metadata: MetadataProvider
    streams: StreamIndexProvider
    subtitles: SubtitlePipeline
    cast: CastController
    dispatcher: PlaybackDispatcher

    async def aclose(self) -> None:
        await self.metadata.aclose()
        await self.streams.aclose()
        await self.subtitles.provider.aclose()


def build_services(config: ConfigStore | None = None, cache_dir: Path | None = None) -> Services:
    config = config or ConfigStore()
    cache_dir = cache_dir or get_cache_dir()

    subtitles = SubtitlePipeline(
        OpenSubtitlesProvider(api_key=config.opensubtitles_key()),
        cache_dir / "subtitles",
    )
    cast = CastController()
    dispatcher = PlaybackDispatcher(
        subtitles=subtitles,
        cast=cast,
        store=SessionStore(cache_dir / "session.json"),
        player_args={
            "vlc": config.config.vlc_args,
            "mpv": config.config.mpv_args,
        },
    )
    return Services(
        config=config,
        metadata=TmdbProvider(config),
        streams=TorrentioProvider(),
        subtitles=subtitles,
        cast=cast,
        dispatcher=dispatcher,
    )
