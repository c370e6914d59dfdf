"""Shared test fixtures for the StreamTUI test suite."""

from __future__ import annotations

import asyncio
import itertools
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from streamtui.config import ConfigStore
from streamtui.models import Quality, StreamSource, SubtitleDescriptor
from streamtui.providers.base import SubtitleProvider

STREAM_LINE = b"Server running at: \x1b[32mhttp://localhost:8888/0\x1b[39m\n"


def info_hash(n: int) -> str:
    return f"{n:040x}"


def make_source(
    quality: Quality = Quality.FHD_1080P,
    seeds: int = 10,
    n: int = 1,
    file_idx: int | None = None,
) -> StreamSource:
    return StreamSource(
        display_name=f"Torrentio {quality}",
        raw_title=f"Movie.2022.{quality}.WEB-DL\n👤 {seeds} 💾 2.1 GB",
        info_hash=info_hash(n),
        file_idx=file_idx,
        seeds=seeds,
        quality=quality,
        size_bytes=int(2.1 * 1024 ** 3),
    )


def make_subtitle(
    sub_id: str = "123",
    language: str = "eng",
    downloads: int = 100,
    trusted: bool = False,
    hearing_impaired: bool = False,
    ai_translated: bool = False,
) -> SubtitleDescriptor:
    return SubtitleDescriptor(
        id=sub_id,
        url=f"https://subs.example.com/{sub_id}.srt",
        language=language,
        language_name="English",
        release="Movie.2022.1080p.WEB-DL",
        downloads=downloads,
        trusted=trusted,
        hearing_impaired=hearing_impaired,
        ai_translated=ai_translated,
    )


# ---------------------------------------------------------------------------
# Environment
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolated_dirs(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep config, cache and credentials out of the real home directory."""
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "config"))
    monkeypatch.setenv("XDG_CACHE_HOME", str(tmp_path / "cache"))
    monkeypatch.delenv("TMDB_API_KEY", raising=False)
    monkeypatch.delenv("OPENSUBTITLES_API_KEY", raising=False)


@pytest.fixture()
def config_store(tmp_path: Path) -> ConfigStore:
    return ConfigStore(tmp_path / "config.toml", key_pool=("key-a", "key-b", "key-c"))


# ---------------------------------------------------------------------------
# Fake processes and helpers
# ---------------------------------------------------------------------------


class FakeProcess:
    """In-memory stand-in for a spawned child process."""

    _pids = itertools.count(40000)

    def __init__(
        self, argv: list[str], output: bytes = b"", eof: bool = False, stubborn: bool = False
    ):
        self.argv = argv
        self.stubborn = stubborn
        self.pid = next(self._pids)
        self.stdout = asyncio.StreamReader()
        if output:
            self.stdout.feed_data(output)
        if eof:
            self.stdout.feed_eof()
        self.terminated = False
        self.killed = False
        self._exited = asyncio.Event()

    def is_alive(self) -> bool:
        return not self._exited.is_set()

    def exit(self) -> None:
        if not self._exited.is_set():
            self._exited.set()
            self.stdout.feed_eof()

    def terminate(self) -> None:
        self.terminated = True
        if not self.stubborn:
            self.exit()

    def kill(self) -> None:
        self.killed = True
        self.exit()

    async def wait(self) -> int:
        await self._exited.wait()
        return 0


class FakeSpawner:
    """Records spawned argv lists; the torrent helper prints `torrent_output`."""

    def __init__(
        self,
        torrent_output: bytes = STREAM_LINE,
        torrent_eof: bool = False,
        missing: set[str] | None = None,
        stubborn_player: bool = False,
    ):
        self.torrent_output = torrent_output
        self.stubborn_player = stubborn_player
        self.torrent_eof = torrent_eof
        self.missing = missing or set()
        self.calls: list[list[str]] = []
        self.processes: list[FakeProcess] = []

    async def __call__(self, argv: list[str], capture_stdout: bool = False) -> FakeProcess:
        self.calls.append(argv)
        if argv[0] in self.missing:
            raise FileNotFoundError(argv[0])
        if capture_stdout:
            proc = FakeProcess(argv, self.torrent_output, eof=self.torrent_eof)
        else:
            proc = FakeProcess(argv, stubborn=self.stubborn_player)
        self.processes.append(proc)
        return proc


class FakeCatt:
    """Stands in for running catt; answers per sub-command."""

    def __init__(self, outputs: dict[str, tuple[int, str]] | None = None):
        self.outputs = outputs or {}
        self.calls: list[list[str]] = []

    async def __call__(self, argv: list[str], timeout: float) -> tuple[int, str]:
        self.calls.append(argv)
        command = argv[3] if len(argv) > 3 else argv[1]
        return self.outputs.get(command, (0, ""))

    def commands(self) -> list[list[str]]:
        """Transport commands sent to a device, without the `catt -d <dev>` prefix."""
        return [argv[3:] for argv in self.calls if len(argv) > 3]


class FakeSubtitleProvider(SubtitleProvider):
    def __init__(self, results: list[SubtitleDescriptor] | None = None, payload: bytes = b""):
        self.results = results or []
        self.payload = payload
        self.fetches = 0
        self.searches: list[tuple] = []

    @property
    def name(self) -> str:
        return "Fake"

    async def search_movie(self, imdb_id, lang=None):
        self.searches.append((imdb_id, lang))
        return list(self.results)

    async def search_episode(self, imdb_id, season, episode, lang=None):
        self.searches.append((imdb_id, season, episode, lang))
        return list(self.results)

    async def fetch(self, descriptor):
        self.fetches += 1
        return self.payload


@pytest.fixture()
def fake_services(config_store: ConfigStore) -> SimpleNamespace:
    """Service container with every collaborator mocked."""
    dispatcher = AsyncMock()
    dispatcher.restore = MagicMock(return_value=None)
    return SimpleNamespace(
        config=config_store,
        metadata=AsyncMock(),
        streams=AsyncMock(),
        subtitles=AsyncMock(),
        cast=AsyncMock(),
        dispatcher=dispatcher,
        aclose=AsyncMock(),
    )
