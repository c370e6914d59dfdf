"""
Playback dispatcher.

Owns the single active session: the torrent helper that serves the stream
over HTTP and the process that plays it (a local player or the cast helper).
Transport commands are serialized through one lock so they run in the order
they were issued.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from streamtui import torrent
from streamtui.cast import CastController, build_cast_args
from streamtui.errors import (
    InvalidArgs, NoSession, PlayerUnavailable, StreamTuiError, TorrentFailed,
    TransportError, Unsupported
)
from streamtui.models import (
    PlaybackState, PlaybackStatus, StreamSource, SubtitleDescriptor
)
from streamtui.player import PlayerName, build_player_args, require_player
from streamtui.process import PidHandle, ProcessHandle, Stopwatch, shutdown, spawn
from streamtui.session import SessionRecord, SessionStore, source_to_dict
from streamtui.subtitles import SubtitlePipeline

log = logging.getLogger(__name__)

Spawner = Callable[[list[str], bool], Awaitable[ProcessHandle]]


@dataclass(frozen=True)
class LocalTarget:
    player: PlayerName = "vlc"

    def __str__(self) -> str:
        return self.player.upper() if self.player == "vlc" else self.player


@dataclass(frozen=True)
class CastTarget:
    device: str

    def __str__(self) -> str:
        return self.device


Target = Union[LocalTarget, CastTarget]


@dataclass
class PlaybackSession:
    """The torrent helper, the playback process and what they are playing."""
    target: Target
    stream_url: str
    torrent: Optional[ProcessHandle]
    player: Optional[ProcessHandle]
    clock: Stopwatch = field(default_factory=Stopwatch)
    source: Optional[StreamSource] = None
    subtitle: Optional[SubtitleDescriptor] = None
    subtitle_path: Optional[Path] = None
    title: Optional[str] = None
    last_status: PlaybackStatus = field(default_factory=PlaybackStatus)
    drain_task: Optional[asyncio.Task] = None

    @property
    def is_cast(self) -> bool:
        return isinstance(self.target, CastTarget)

    def to_record(self) -> SessionRecord:
        return SessionRecord(
            target="cast" if self.is_cast else "local",
            stream_url=self.stream_url,
            started_at=self.clock.started_at,
            torrent_pid=self.torrent.pid if self.torrent else None,
            player_pid=self.player.pid if self.player else None,
            player=None if self.is_cast else self.target.player,
            device=self.target.device if self.is_cast else None,
            title=self.title,
            subtitle_path=str(self.subtitle_path) if self.subtitle_path else None,
            source=source_to_dict(self.source) if self.source else None,
        )


class PlaybackDispatcher:
    """Starts, controls and stops the one active playback session."""

    def __init__(
        self,
        subtitles: SubtitlePipeline | None = None,
        cast: CastController | None = None,
        store: SessionStore | None = None,
        spawner: Spawner = spawn,
        player_lookup: Callable[[PlayerName], str] = require_player,
        player_args: dict[str, list[str]] | None = None,
        port: int = torrent.DEFAULT_PORT,
        stream_url_timeout: float = torrent.STREAM_URL_TIMEOUT,
        grace: float = 5.0,
        lan_address: str | None = None,
    ):
        self._subtitles = subtitles
        self._cast = cast or CastController()
        self._store = store
        self._spawn = spawner
        self._player_lookup = player_lookup
        self._player_args = player_args or {}
        self._port = port
        self._stream_url_timeout = stream_url_timeout
        self._grace = grace
        self._lan_address = lan_address
        self._lock = asyncio.Lock()
        self._session: PlaybackSession | None = None

    @property
    def session(self) -> PlaybackSession | None:
        return self._session

    # ------------------------------------------------------------------
    # Start / stop
    # ------------------------------------------------------------------

    async def start(
        self,
        source: StreamSource,
        target: Target,
        subtitle: SubtitleDescriptor | None = None,
        title: str | None = None,
    ) -> PlaybackSession:
        """Stop whatever is playing, then stream `source` to `target`."""
        async with self._lock:
            await self._stop_previous_locked()
            return await self._start_locked(
                magnet=source.magnet(),
                file_idx=source.file_idx,
                target=target,
                source=source,
                subtitle=subtitle,
                title=title or source.title_line,
            )

    async def start_magnet(
        self,
        magnet: str,
        target: Target,
        file_idx: int | None = None,
        subtitle_path: Path | None = None,
        title: str | None = None,
    ) -> PlaybackSession:
        """Like start, for a raw magnet link."""
        if not magnet.startswith("magnet:?"):
            raise InvalidArgs("invalid magnet link, it must start with 'magnet:?'")
        async with self._lock:
            await self._stop_previous_locked()
            return await self._start_locked(
                magnet=magnet,
                file_idx=file_idx,
                target=target,
                subtitle_path=subtitle_path,
                title=title,
            )

    async def _start_locked(
        self,
        magnet: str,
        file_idx: int | None,
        target: Target,
        source: StreamSource | None = None,
        subtitle: SubtitleDescriptor | None = None,
        subtitle_path: Path | None = None,
        title: str | None = None,
    ) -> PlaybackSession:
        player_binary = None
        if isinstance(target, LocalTarget):
            player_binary = self._player_lookup(target.player)

        torrent_proc: ProcessHandle | None = None
        player_proc: ProcessHandle | None = None
        drain_task: asyncio.Task | None = None
        try:
            torrent_proc = await self._spawn_torrent(magnet, file_idx)
            if torrent_proc.stdout is None:
                raise TorrentFailed("torrent helper has no output pipe")
            url = await torrent.wait_for_stream_url(torrent_proc.stdout, self._stream_url_timeout)
            drain_task = asyncio.create_task(torrent.drain(torrent_proc.stdout))
            log.info("Stream URL: %s", url)

            if isinstance(target, CastTarget):
                url = torrent.reachable_url(url, self._lan_address)

            if subtitle is not None and subtitle_path is None:
                if self._subtitles is None:
                    raise InvalidArgs("subtitles requested but no subtitle service is configured")
                subtitle_path = await self._subtitles.download_path(subtitle)

            if isinstance(target, CastTarget):
                argv = build_cast_args(target.device, url, subtitle_path)
            else:
                argv = build_player_args(
                    target.player,
                    url,
                    subtitle_path,
                    self._player_args.get(target.player),
                    binary=player_binary,
                )
            player_proc = await self._spawn_player(argv, target)
        except BaseException:
            if drain_task is not None:
                drain_task.cancel()
            await shutdown(player_proc, self._grace)
            await shutdown(torrent_proc, self._grace)
            raise

        initial = PlaybackState.CONNECTING if isinstance(target, CastTarget) else PlaybackState.PLAYING
        session = PlaybackSession(
            target=target,
            stream_url=url,
            torrent=torrent_proc,
            player=player_proc,
            source=source,
            subtitle=subtitle,
            subtitle_path=subtitle_path,
            title=title,
            last_status=PlaybackStatus(state=initial, title=title),
            drain_task=drain_task,
        )
        self._session = session
        if self._store is not None:
            self._store.save(session.to_record())
        log.info("Playing %s on %s", title or url, target)
        return session

    async def _spawn_torrent(self, magnet: str, file_idx: int | None) -> ProcessHandle:
        binary = torrent.find_webtorrent() or "webtorrent"
        argv = torrent.build_torrent_args(magnet, self._port, file_idx, binary)
        try:
            return await self._spawn(argv, True)
        except FileNotFoundError as e:
            raise TorrentFailed("webtorrent not found. Install with: npm install -g webtorrent-cli") from e
        except OSError as e:
            raise TransportError(e) from e

    async def _spawn_player(self, argv: list[str], target: Target) -> ProcessHandle:
        try:
            return await self._spawn(argv, False)
        except FileNotFoundError as e:
            if isinstance(target, LocalTarget):
                raise PlayerUnavailable(target.player) from e
            raise TransportError("catt not found. Install with: pip install catt") from e
        except OSError as e:
            raise TransportError(e) from e

    async def stop(self, kill_stream: bool = True) -> None:
        """
        Stop playback. With `kill_stream=False` the torrent helper is kept
        running (it is reaped by the next start or a later full stop).
        """
        async with self._lock:
            if kill_stream:
                await self._stop_locked()
                return
            session = self._session
            if session is None:
                return
            await self._stop_playback(session)
            session.player = None
            session.last_status = PlaybackStatus(state=PlaybackState.STOPPED, title=session.title)
            if self._store is not None:
                self._store.save(session.to_record())

    async def _stop_previous_locked(self) -> None:
        # Also covers a session recorded by an earlier invocation
        self.restore()
        await self._stop_locked()

    async def _stop_locked(self) -> None:
        session, self._session = self._session, None
        if session is None:
            return
        log.info("Stopping playback on %s", session.target)
        try:
            await self._stop_playback(session)
        finally:
            # Reap the torrent helper even when the stop itself is cancelled
            if session.drain_task is not None:
                session.drain_task.cancel()
            await shutdown(session.torrent, self._grace)
            if self._store is not None:
                self._store.clear()

    async def _stop_playback(self, session: PlaybackSession) -> None:
        if isinstance(session.target, CastTarget):
            try:
                await self._cast.command(session.target.device, "stop")
            except StreamTuiError as e:
                log.warning("Failed to stop cast device %s: %s", session.target.device, e)
        await shutdown(session.player, self._grace)

    async def aclose(self) -> None:
        await self.stop()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _require_cast(self, command: str) -> PlaybackSession:
        session = self._session
        if session is None:
            raise NoSession()
        if not isinstance(session.target, CastTarget):
            raise Unsupported(f"{command} is not supported for local {session.target.player} playback")
        return session

    async def play(self) -> None:
        async with self._lock:
            session = self._require_cast("play")
            await self._cast.command(session.target.device, "play")
            session.last_status.state = PlaybackState.PLAYING

    async def pause(self) -> None:
        async with self._lock:
            session = self._require_cast("pause")
            await self._cast.command(session.target.device, "pause")
            session.last_status.state = PlaybackState.PAUSED

    async def toggle_pause(self) -> None:
        session = self._session
        if session is not None and session.last_status.state is PlaybackState.PAUSED:
            await self.play()
        else:
            await self.pause()

    async def seek(self, value: float, relative: bool = False) -> float:
        """
        Seek to an absolute position, or by an offset from the last reported
        position. The target is clamped to [0, duration]; returns it in seconds.
        """
        async with self._lock:
            session = self._require_cast("seek")
            last = session.last_status
            position = last.position + value if relative else value
            position = max(0.0, position)
            if last.duration > 0:
                position = min(position, last.duration)
            await self._cast.command(session.target.device, "seek", int(round(position)))
            last.position = position
            return position

    async def set_volume(self, level: int, relative: bool = False) -> int:
        """Set the volume (0-100), absolute or relative to the last status."""
        async with self._lock:
            session = self._require_cast("volume")
            current = round(session.last_status.volume * 100)
            target = current + level if relative else level
            target = min(100, max(0, int(target)))
            await self._cast.command(session.target.device, "volume", target)
            session.last_status.volume = target / 100
            return target

    async def status(self) -> PlaybackStatus:
        """Current status; `Idle` when nothing is playing."""
        session = self._session
        if session is None:
            return PlaybackStatus(state=PlaybackState.IDLE)

        if isinstance(session.target, CastTarget):
            try:
                status = await self._cast.status(session.target.device)
            except StreamTuiError as e:
                log.debug("Cast status unavailable, using last known: %s", e)
                return session.last_status
            status.title = status.title or session.title
            session.last_status = status
            return status

        if session.player is not None and session.player.is_alive():
            state = PlaybackState.PLAYING
        else:
            state = PlaybackState.STOPPED
        session.last_status = PlaybackStatus(
            state=state,
            position=session.clock.elapsed(),
            title=session.title,
        )
        return session.last_status

    async def wait(self) -> None:
        """Return when the session ends by itself (player closed or stream gone)."""
        session = self._session
        if session is None:
            return
        handle = session.torrent if session.is_cast else session.player
        if handle is not None:
            await handle.wait()

    # ------------------------------------------------------------------
    # Cross-invocation control
    # ------------------------------------------------------------------

    def restore(self) -> PlaybackSession | None:
        """Adopt the session a previous invocation recorded, if it is still alive."""
        if self._session is not None:
            return self._session
        if self._store is None:
            return None
        record = self._store.load()
        if record is None:
            return None

        torrent_proc = PidHandle(record.torrent_pid) if record.torrent_pid else None
        player_proc = PidHandle(record.player_pid) if record.player_pid else None
        alive = [h for h in (torrent_proc, player_proc) if h is not None and h.is_alive()]
        if not alive:
            log.debug("Recorded session is gone, clearing it")
            self._store.clear()
            return None

        if record.target == "cast" and record.device:
            target: Target = CastTarget(record.device)
        else:
            target = LocalTarget(record.player or "vlc")

        self._session = PlaybackSession(
            target=target,
            stream_url=record.stream_url,
            torrent=torrent_proc,
            player=player_proc,
            clock=Stopwatch(record.started_at),
            source=record.stream_source(),
            subtitle_path=Path(record.subtitle_path) if record.subtitle_path else None,
            title=record.title,
            last_status=PlaybackStatus(state=PlaybackState.PLAYING, title=record.title),
        )
        return self._session
