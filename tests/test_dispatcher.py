"""Tests for the playback dispatcher, with fake processes and a fake catt."""

from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from streamtui.cast import CastController
import streamtui.dispatcher as dispatcher_module
from streamtui.dispatcher import CastTarget, LocalTarget, PlaybackDispatcher
from streamtui.errors import (
    InvalidArgs, NoSession, PlayerUnavailable, TorrentFailed, TransportError, Unsupported
)
from streamtui.models import PlaybackState, PlaybackStatus, Quality
from streamtui.session import SessionRecord, SessionStore
from streamtui.subtitles import SubtitlePipeline
from tests.conftest import (
    FakeCatt, FakeProcess, FakeSpawner, FakeSubtitleProvider, make_source, make_subtitle
)

LAN = "192.168.1.5"


def make_dispatcher(
    tmp_path: Path,
    spawner: FakeSpawner | None = None,
    catt: FakeCatt | None = None,
    player_lookup=lambda name: f"/usr/bin/{name}",
    subtitles: SubtitlePipeline | None = None,
) -> PlaybackDispatcher:
    return PlaybackDispatcher(
        subtitles=subtitles,
        cast=CastController(catt or FakeCatt()),
        store=SessionStore(tmp_path / "session.json"),
        spawner=spawner or FakeSpawner(),
        player_lookup=player_lookup,
        stream_url_timeout=1,
        grace=0.1,
        lan_address=LAN,
    )


def missing_player(name: str) -> str:
    raise PlayerUnavailable(name)


# ---------------------------------------------------------------------------
# Start
# ---------------------------------------------------------------------------


class TestStartLocal:
    @pytest.mark.asyncio()
    async def test_spawns_torrent_then_player(self, tmp_path: Path) -> None:
        spawner = FakeSpawner()
        dispatcher = make_dispatcher(tmp_path, spawner)
        source = make_source(Quality.FHD_1080P, file_idx=2)

        session = await dispatcher.start(source, LocalTarget("vlc"))

        torrent_argv, player_argv = spawner.calls
        assert torrent_argv[1:3] == ["download", source.magnet()]
        assert torrent_argv[3:] == ["--port", "8888", "-s", "2", "--keep-seeding"]
        assert player_argv == ["/usr/bin/vlc", "http://localhost:8888/0", "--no-video-title-show"]
        assert session.stream_url == "http://localhost:8888/0"
        assert session.title == "Movie.2022.1080p.WEB-DL"
        assert dispatcher.session is session

    @pytest.mark.asyncio()
    async def test_subtitles_are_downloaded_and_passed(self, tmp_path: Path) -> None:
        provider = FakeSubtitleProvider(payload=b"1\n00:00:01,000 --> 00:00:02,000\nHi\n")
        pipeline = SubtitlePipeline(provider, tmp_path / "subs")
        spawner = FakeSpawner()
        dispatcher = make_dispatcher(tmp_path, spawner, subtitles=pipeline)

        session = await dispatcher.start(make_source(), LocalTarget("mpv"), make_subtitle("77"))

        sub_path = tmp_path / "subs" / "en_77.vtt"
        assert session.subtitle_path == sub_path
        assert spawner.calls[1] == [
            "/usr/bin/mpv", "http://localhost:8888/0", f"--sub-file={sub_path}", "--force-window=immediate",
        ]
        assert sub_path.read_text(encoding="utf-8").startswith("WEBVTT")

    @pytest.mark.asyncio()
    async def test_missing_player_spawns_nothing(self, tmp_path: Path) -> None:
        spawner = FakeSpawner()
        dispatcher = make_dispatcher(tmp_path, spawner, player_lookup=missing_player)

        with pytest.raises(PlayerUnavailable):
            await dispatcher.start(make_source(), LocalTarget("mpv"))

        assert spawner.calls == []
        assert dispatcher.session is None

    @pytest.mark.asyncio()
    async def test_player_failing_to_spawn_releases_torrent(self, tmp_path: Path) -> None:
        spawner = FakeSpawner(missing={"/usr/bin/vlc"})
        dispatcher = make_dispatcher(tmp_path, spawner)

        with pytest.raises(PlayerUnavailable):
            await dispatcher.start(make_source(), LocalTarget("vlc"))

        assert spawner.processes[0].terminated
        assert dispatcher.session is None

    @pytest.mark.asyncio()
    async def test_torrent_exiting_without_url(self, tmp_path: Path) -> None:
        spawner = FakeSpawner(torrent_output=b"Error: invalid torrent\n", torrent_eof=True)
        dispatcher = make_dispatcher(tmp_path, spawner)

        with pytest.raises(TorrentFailed):
            await dispatcher.start(make_source(), LocalTarget("vlc"))

        assert len(spawner.calls) == 1
        assert dispatcher.session is None

    @pytest.mark.asyncio()
    async def test_missing_webtorrent(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("streamtui.torrent.find_webtorrent", lambda: None)
        dispatcher = make_dispatcher(tmp_path, FakeSpawner(missing={"webtorrent"}))

        with pytest.raises(TorrentFailed, match="webtorrent not found"):
            await dispatcher.start(make_source(), LocalTarget("vlc"))

    @pytest.mark.asyncio()
    async def test_bad_magnet(self, tmp_path: Path) -> None:
        dispatcher = make_dispatcher(tmp_path)

        with pytest.raises(InvalidArgs):
            await dispatcher.start_magnet("http://not-a-magnet", LocalTarget("vlc"))


class TestStartCast:
    @pytest.mark.asyncio()
    async def test_cast_uses_lan_url(self, tmp_path: Path) -> None:
        spawner = FakeSpawner()
        dispatcher = make_dispatcher(tmp_path, spawner)

        session = await dispatcher.start(make_source(), CastTarget("Living Room"))

        assert spawner.calls[1] == ["catt", "-d", "Living Room", "cast", f"http://{LAN}:8888/0"]
        assert session.stream_url == f"http://{LAN}:8888/0"
        assert session.last_status.state is PlaybackState.CONNECTING

    @pytest.mark.asyncio()
    async def test_session_is_recorded(self, tmp_path: Path) -> None:
        dispatcher = make_dispatcher(tmp_path)

        await dispatcher.start(make_source(), CastTarget("Living Room"), title="The Batman")

        record = SessionStore(tmp_path / "session.json").load()
        assert record.target == "cast"
        assert record.device == "Living Room"
        assert record.title == "The Batman"
        assert record.stream_source() == make_source()

    @pytest.mark.asyncio()
    async def test_cast_helper_missing(self, tmp_path: Path) -> None:
        spawner = FakeSpawner(missing={"catt"})
        dispatcher = make_dispatcher(tmp_path, spawner)

        with pytest.raises(TransportError):
            await dispatcher.start(make_source(), CastTarget("TV"))

        assert spawner.processes[0].terminated


# ---------------------------------------------------------------------------
# Stop
# ---------------------------------------------------------------------------


class TestStop:
    @pytest.mark.asyncio()
    async def test_stop_terminates_both_and_goes_idle(self, tmp_path: Path) -> None:
        spawner = FakeSpawner()
        dispatcher = make_dispatcher(tmp_path, spawner)
        await dispatcher.start(make_source(), LocalTarget("vlc"))

        await dispatcher.stop()

        assert all(p.terminated for p in spawner.processes)
        assert (await dispatcher.status()).state is PlaybackState.IDLE
        assert not (tmp_path / "session.json").exists()

    @pytest.mark.asyncio()
    async def test_cast_stop_sends_catt_stop(self, tmp_path: Path) -> None:
        catt = FakeCatt()
        dispatcher = make_dispatcher(tmp_path, catt=catt)
        await dispatcher.start(make_source(), CastTarget("TV"))

        await dispatcher.stop()

        assert catt.commands() == [["stop"]]

    @pytest.mark.asyncio()
    async def test_keep_stream(self, tmp_path: Path) -> None:
        spawner = FakeSpawner()
        dispatcher = make_dispatcher(tmp_path, spawner)
        await dispatcher.start(make_source(), LocalTarget("vlc"))
        torrent_proc, player_proc = spawner.processes

        await dispatcher.stop(kill_stream=False)

        assert player_proc.terminated
        assert not torrent_proc.terminated
        assert dispatcher.session.last_status.state is PlaybackState.STOPPED

        await dispatcher.stop()
        assert torrent_proc.terminated

    @pytest.mark.asyncio()
    async def test_new_start_replaces_old_session(self, tmp_path: Path) -> None:
        spawner = FakeSpawner()
        dispatcher = make_dispatcher(tmp_path, spawner)
        await dispatcher.start(make_source(n=1), LocalTarget("vlc"))
        first_processes = list(spawner.processes)

        await dispatcher.start(make_source(n=2), LocalTarget("vlc"))

        assert all(p.terminated for p in first_processes)
        assert len(spawner.processes) == 4
        assert not any(p.terminated for p in spawner.processes[2:])

    @pytest.mark.asyncio()
    async def test_player_ignoring_sigterm_is_killed(self, tmp_path: Path) -> None:
        spawner = FakeSpawner(stubborn_player=True)
        dispatcher = make_dispatcher(tmp_path, spawner)
        await dispatcher.start(make_source(), LocalTarget("vlc"))
        torrent_proc, player_proc = spawner.processes

        await dispatcher.stop()

        assert player_proc.terminated
        assert player_proc.killed
        assert torrent_proc.terminated
        assert not torrent_proc.killed

    @pytest.mark.asyncio()
    async def test_cancelled_stop_still_kills_everything(self, tmp_path: Path) -> None:
        spawner = FakeSpawner(stubborn_player=True)
        dispatcher = make_dispatcher(tmp_path, spawner)
        await dispatcher.start(make_source(), LocalTarget("vlc"))
        torrent_proc, player_proc = spawner.processes

        task = asyncio.create_task(dispatcher.stop())
        await asyncio.sleep(0.01)
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)

        assert task.cancelled()
        assert player_proc.killed
        assert not player_proc.is_alive()
        assert torrent_proc.terminated
        assert dispatcher.session is None
        assert not (tmp_path / "session.json").exists()

    @pytest.mark.asyncio()
    async def test_stop_without_session_is_a_no_op(self, tmp_path: Path) -> None:
        await make_dispatcher(tmp_path).stop()


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class TestTransport:
    @pytest.mark.asyncio()
    async def test_seek_clamps_to_duration(self, tmp_path: Path) -> None:
        catt = FakeCatt()
        dispatcher = make_dispatcher(tmp_path, catt=catt)
        await dispatcher.start(make_source(), CastTarget("TV"))
        dispatcher.session.last_status = PlaybackStatus(PlaybackState.PLAYING, position=90, duration=100)

        assert await dispatcher.seek(30, relative=True) == 100
        assert await dispatcher.seek(-500, relative=True) == 0
        assert catt.commands() == [["seek", "100"], ["seek", "0"]]

    @pytest.mark.asyncio()
    async def test_seek_without_duration_has_no_upper_bound(self, tmp_path: Path) -> None:
        dispatcher = make_dispatcher(tmp_path)
        await dispatcher.start(make_source(), CastTarget("TV"))

        assert await dispatcher.seek(5000) == 5000

    @pytest.mark.asyncio()
    async def test_volume_clamps(self, tmp_path: Path) -> None:
        catt = FakeCatt()
        dispatcher = make_dispatcher(tmp_path, catt=catt)
        await dispatcher.start(make_source(), CastTarget("TV"))
        dispatcher.session.last_status.volume = 0.95

        assert await dispatcher.set_volume(10, relative=True) == 100
        assert await dispatcher.set_volume(-150, relative=True) == 0
        assert await dispatcher.set_volume(40) == 40
        assert catt.commands() == [["volume", "100"], ["volume", "0"], ["volume", "40"]]

    @pytest.mark.asyncio()
    async def test_pause_and_toggle(self, tmp_path: Path) -> None:
        catt = FakeCatt()
        dispatcher = make_dispatcher(tmp_path, catt=catt)
        await dispatcher.start(make_source(), CastTarget("TV"))

        await dispatcher.pause()
        await dispatcher.toggle_pause()

        assert catt.commands() == [["pause"], ["play"]]
        assert dispatcher.session.last_status.state is PlaybackState.PLAYING

    @pytest.mark.asyncio()
    async def test_local_transport_is_unsupported(self, tmp_path: Path) -> None:
        dispatcher = make_dispatcher(tmp_path)
        await dispatcher.start(make_source(), LocalTarget("vlc"))

        with pytest.raises(Unsupported):
            await dispatcher.seek(10)
        with pytest.raises(Unsupported):
            await dispatcher.set_volume(50)

    @pytest.mark.asyncio()
    async def test_no_session(self, tmp_path: Path) -> None:
        with pytest.raises(NoSession):
            await make_dispatcher(tmp_path).pause()


class TestStatus:
    @pytest.mark.asyncio()
    async def test_cast_status_is_parsed(self, tmp_path: Path) -> None:
        catt = FakeCatt({"status": (0, "State: PLAYING\nCurrent time: 12\nDuration: 100\nVolume: 50\n")})
        dispatcher = make_dispatcher(tmp_path, catt=catt)
        await dispatcher.start(make_source(), CastTarget("TV"), title="The Batman")

        status = await dispatcher.status()

        assert (status.state, status.position, status.duration, status.volume) == (
            PlaybackState.PLAYING, 12.0, 100.0, 0.5,
        )
        assert status.title == "The Batman"

    @pytest.mark.asyncio()
    async def test_cast_status_failure_keeps_last_known(self, tmp_path: Path) -> None:
        catt = FakeCatt({"status": (1, "timeout")})
        dispatcher = make_dispatcher(tmp_path, catt=catt)
        await dispatcher.start(make_source(), CastTarget("TV"))

        status = await dispatcher.status()

        assert status.state is PlaybackState.CONNECTING

    @pytest.mark.asyncio()
    async def test_local_status_follows_the_player(self, tmp_path: Path) -> None:
        spawner = FakeSpawner()
        dispatcher = make_dispatcher(tmp_path, spawner)
        await dispatcher.start(make_source(), LocalTarget("vlc"))

        assert (await dispatcher.status()).state is PlaybackState.PLAYING
        spawner.processes[1].exit()
        assert (await dispatcher.status()).state is PlaybackState.STOPPED

    @pytest.mark.asyncio()
    async def test_wait_returns_when_player_exits(self, tmp_path: Path) -> None:
        spawner = FakeSpawner()
        dispatcher = make_dispatcher(tmp_path, spawner)
        await dispatcher.start(make_source(), LocalTarget("vlc"))
        spawner.processes[1].exit()

        await dispatcher.wait()


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------


class TestRestore:
    def test_nothing_recorded(self, tmp_path: Path) -> None:
        assert make_dispatcher(tmp_path).restore() is None

    def test_live_session_is_adopted(self, tmp_path: Path) -> None:
        SessionStore(tmp_path / "session.json").save(SessionRecord(
            target="cast",
            stream_url=f"http://{LAN}:8888/0",
            started_at=0.0,
            torrent_pid=os.getpid(),
            device="Living Room",
            title="The Batman",
        ))

        session = make_dispatcher(tmp_path).restore()

        assert session.target == CastTarget("Living Room")
        assert session.title == "The Batman"

    def test_dead_session_is_cleared(self, tmp_path: Path) -> None:
        path = tmp_path / "session.json"
        SessionStore(path).save(SessionRecord(
            target="local", stream_url="http://localhost:8888/0", started_at=0.0,
            torrent_pid=2 ** 30, player_pid=2 ** 30 + 1, player="mpv",
        ))

        assert make_dispatcher(tmp_path).restore() is None
        assert not path.exists()


    @pytest.mark.asyncio()
    async def test_start_stops_recorded_session(self, tmp_path: Path, monkeypatch) -> None:
        old_torrent = FakeProcess(["webtorrent"])
        old_player = FakeProcess(["vlc"])
        handles = {old_torrent.pid: old_torrent, old_player.pid: old_player}
        monkeypatch.setattr(dispatcher_module, "PidHandle", lambda pid: handles[pid])
        store = SessionStore(tmp_path / "session.json")
        store.save(SessionRecord(
            target="local", stream_url="http://localhost:8888/0", started_at=0.0,
            torrent_pid=old_torrent.pid, player_pid=old_player.pid, player="vlc",
        ))
        spawner = FakeSpawner()

        await make_dispatcher(tmp_path, spawner).start(make_source(), LocalTarget("mpv"))

        assert old_torrent.terminated
        assert old_player.terminated
        assert store.load().torrent_pid == spawner.processes[0].pid
