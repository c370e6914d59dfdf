"""Tests for caption conversion and the subtitle cache."""

from __future__ import annotations

from pathlib import Path

import pytest

from streamtui.models import SubtitleFormat
from streamtui.subtitles import SubtitlePipeline, decode_subtitle, srt_to_vtt, to_webvtt
from tests.conftest import FakeSubtitleProvider, make_subtitle

SRT = "1\n00:00:01,000 --> 00:00:02,500\nHello, world\n\n2\n00:01:00,250 --> 00:01:02,000\nBye"


class TestConversion:
    def test_srt_to_vtt(self) -> None:
        assert srt_to_vtt(SRT) == (
            "WEBVTT\n\n"
            "1\n00:00:01.000 --> 00:00:02.500\nHello, world\n\n"
            "2\n00:01:00.250 --> 00:01:02.000\nBye\n"
        )

    def test_crlf_line_endings_are_kept(self) -> None:
        assert srt_to_vtt("1\r\n00:00:01,000 --> 00:00:02,000\r\nHi\r\n") == (
            "WEBVTT\n\n1\r\n00:00:01.000 --> 00:00:02.000\r\nHi\r\n"
        )

    def test_only_newline_ends_a_line(self) -> None:
        text = "1\n00:00:01,000 --> 00:00:02,000\nHello\x0cWorld again\x1cend\n"

        assert srt_to_vtt(text) == (
            "WEBVTT\n\n1\n00:00:01.000 --> 00:00:02.000\nHello\x0cWorld again\x1cend\n"
        )

    def test_vtt_passes_through(self) -> None:
        vtt = "WEBVTT\n\n00:01.000 --> 00:02.000\nHi\n"

        assert to_webvtt(vtt, SubtitleFormat.VTT) == vtt

    def test_decode_falls_back_to_latin1(self) -> None:
        assert decode_subtitle("Olá, ça va".encode("latin-1")) == "Olá, ça va"

    def test_decode_strips_bom(self) -> None:
        assert decode_subtitle("\ufeffHi".encode("utf-8")) == "Hi"


class TestSearch:
    @pytest.mark.asyncio()
    async def test_sorted_by_trust(self, tmp_path: Path) -> None:
        provider = FakeSubtitleProvider([
            make_subtitle("1", downloads=5000),
            make_subtitle("2", downloads=10, trusted=True),
            make_subtitle("3", downloads=9000, ai_translated=True),
        ])
        pipeline = SubtitlePipeline(provider, tmp_path)

        results = await pipeline.search("tt1877830", lang="eng")

        assert [s.id for s in results] == ["2", "1", "3"]
        assert provider.searches == [("tt1877830", "eng")]

    @pytest.mark.asyncio()
    async def test_filters(self, tmp_path: Path) -> None:
        provider = FakeSubtitleProvider([
            make_subtitle("1", hearing_impaired=True, trusted=True),
            make_subtitle("2"),
            make_subtitle("3", trusted=True),
        ])
        pipeline = SubtitlePipeline(provider, tmp_path)

        assert [s.id for s in await pipeline.search("tt1", hearing_impaired=False)] == ["3", "2"]
        assert [s.id for s in await pipeline.search("tt1", trusted_only=True, hearing_impaired=True)] == ["1"]

    @pytest.mark.asyncio()
    async def test_episode_search(self, tmp_path: Path) -> None:
        provider = FakeSubtitleProvider()
        pipeline = SubtitlePipeline(provider, tmp_path)

        await pipeline.search("tt0944947", 1, 2, "eng")

        assert provider.searches == [("tt0944947", 1, 2, "eng")]


class TestDownload:
    @pytest.mark.asyncio()
    async def test_miss_downloads_converts_and_caches(self, tmp_path: Path) -> None:
        provider = FakeSubtitleProvider(payload=SRT.encode("utf-8"))
        pipeline = SubtitlePipeline(provider, tmp_path / "subtitles")
        descriptor = make_subtitle("123", language="eng")

        text = await pipeline.download(descriptor)

        path = tmp_path / "subtitles" / "eng_123.vtt"
        assert text.startswith("WEBVTT\n\n1\n00:00:01.000 --> 00:00:02.500")
        assert path.read_text(encoding="utf-8") == text
        assert [p.name for p in path.parent.iterdir()] == ["eng_123.vtt"]

    @pytest.mark.asyncio()
    async def test_hit_does_not_fetch(self, tmp_path: Path) -> None:
        provider = FakeSubtitleProvider(payload=b"should not be used")
        pipeline = SubtitlePipeline(provider, tmp_path)
        descriptor = make_subtitle("123", language="eng")
        pipeline.cache_path(descriptor).write_text("WEBVTT\n\ncached\n", encoding="utf-8")

        assert await pipeline.download(descriptor) == "WEBVTT\n\ncached\n"
        assert provider.fetches == 0

    @pytest.mark.asyncio()
    async def test_second_download_is_served_from_cache(self, tmp_path: Path) -> None:
        provider = FakeSubtitleProvider(payload=SRT.encode("utf-8"))
        pipeline = SubtitlePipeline(provider, tmp_path)
        descriptor = make_subtitle("9")

        first = await pipeline.download_path(descriptor)
        second = await pipeline.download_path(descriptor)

        assert first == second == tmp_path / "eng_9.vtt"
        assert provider.fetches == 1

    def test_cache_path_is_sanitized(self, tmp_path: Path) -> None:
        pipeline = SubtitlePipeline(FakeSubtitleProvider(), tmp_path)

        path = pipeline.cache_path(make_subtitle("../../etc/passwd", language="pt/BR"))

        assert path.parent == tmp_path
        assert path.name == "pt_BR_.._.._etc_passwd.vtt"
