"""Tests for the App state machine: navigation, key routing and request ownership."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from streamtui.app import (
    App, BrowseView, Cancel, DetailView, Failed, KeyEvent, Loading, PlayingView, Quit,
    Request, RequestKind, SearchView, SourcesView
)
from streamtui.dispatcher import CastTarget, LocalTarget
from streamtui.models import (
    Episode, MediaType, MovieDetail, PlaybackState, PlaybackStatus, SearchResult,
    SeasonSummary, TvDetail
)
from tests.conftest import make_source, make_subtitle

BATMAN = SearchResult(414906, MediaType.MOVIE, "The Batman", 2022, rating=7.7)
GOT = SearchResult(1399, MediaType.TV, "Game of Thrones", 2011, rating=8.4)
BATMAN_DETAIL = MovieDetail(id=414906, imdb_id="tt1877830", title="The Batman", year=2022)
GOT_DETAIL = TvDetail(
    id=1399,
    imdb_id="tt0944947",
    title="Game of Thrones",
    seasons=[SeasonSummary(0, 5, "Specials"), SeasonSummary(1, 10), SeasonSummary(2, 10)],
)


def press(app: App, *keys: str) -> list:
    effects = []
    for key in keys:
        effects.extend(app.handle_key(KeyEvent(key)))
    return effects


def requests(effects: list) -> list[Request]:
    return [e for e in effects if isinstance(e, Request)]


def only_request(effects: list) -> Request:
    found = requests(effects)
    assert len(found) == 1, effects
    return found[0]


def type_text(app: App, text: str) -> list:
    return press(app, *text)


def open_batman(app: App) -> Request:
    """Search, pick the first result and load its detail; returns the detail request."""
    search = only_request(type_text(app, "batman") + press(app, "enter"))
    app.on_result(search.id, [BATMAN, GOT])
    return only_request(press(app, "enter"))


# ---------------------------------------------------------------------------
# Search and browse
# ---------------------------------------------------------------------------


class TestSearch:
    def test_typing_edits_the_query(self) -> None:
        app = App()

        press(app, "b", "t", "left", "a", "end", "m", "home", "delete", "backspace")

        view = app.current
        assert isinstance(view, SearchView)
        assert view.query == "atm"
        assert view.caret == 0

    def test_enter_pushes_browse_and_searches(self) -> None:
        app = App()

        request = only_request(type_text(app, "the batman") + press(app, "enter"))

        assert request.kind is RequestKind.SEARCH
        assert request.params == {"query": "the batman"}
        assert isinstance(app.current, BrowseView)
        assert app.current.load == Loading(RequestKind.SEARCH)

    def test_blank_query_opens_trending(self) -> None:
        app = App()

        request = only_request(press(app, " ", "enter"))

        assert request.kind is RequestKind.TRENDING
        assert app.current.title == "Trending"

    def test_q_is_text_in_search(self) -> None:
        app = App()

        assert press(app, "q") == []
        assert app.current.query == "q"
        assert app.running


class TestBrowse:
    def test_results_populate_the_list(self) -> None:
        app = App()
        request = only_request(type_text(app, "batman") + press(app, "enter"))

        app.on_result(request.id, [BATMAN, GOT])

        view = app.current
        assert view.results == [BATMAN, GOT]
        assert view.loading is None

    def test_cursor_moves_and_clamps(self) -> None:
        app = App()
        request = only_request(type_text(app, "x") + press(app, "enter"))
        app.on_result(request.id, [BATMAN, GOT])

        press(app, "down", "down", "down")
        assert app.current.cursor == 1
        press(app, "home")
        assert app.current.cursor == 0

    def test_hotkey_opens_row(self) -> None:
        app = App()
        request = only_request(type_text(app, "x") + press(app, "enter"))
        app.on_result(request.id, [BATMAN, GOT])

        detail_request = only_request(press(app, "2"))

        assert detail_request.params == {"media_type": MediaType.TV, "id": 1399}
        assert app.current.item is GOT

    def test_back_from_detail_keeps_results(self) -> None:
        app = App()
        open_batman(app)

        press(app, "escape")

        view = app.current
        assert isinstance(view, BrowseView)
        assert view.results == [BATMAN, GOT]
        assert view.cursor == 0


# ---------------------------------------------------------------------------
# Request ownership
# ---------------------------------------------------------------------------


class TestCancellation:
    def test_leaving_a_view_cancels_and_drops_late_results(self) -> None:
        app = App()
        detail_request = open_batman(app)

        effects = press(app, "escape")

        assert Cancel(detail_request.id) in effects
        assert not app.is_live(detail_request.id)
        assert app.on_result(detail_request.id, BATMAN_DETAIL) == []
        assert isinstance(app.current, BrowseView)

    def test_late_error_is_dropped(self) -> None:
        app = App()
        detail_request = open_batman(app)
        press(app, "escape")

        app.on_error(detail_request.id, "NotFound: gone")

        assert app.current.error is None

    def test_same_kind_supersedes(self) -> None:
        app = App()
        detail_request = open_batman(app)
        effects = app.on_result(detail_request.id, GOT_DETAIL)
        first_season = only_request(effects)

        effects = press(app, "down", "down", "enter")

        assert Cancel(first_season.id) in effects
        assert only_request(effects).params == {"tv_id": 1399, "season": 2}
        assert not app.is_live(first_season.id)

    def test_generation_increases_on_every_transition(self) -> None:
        app = App()
        seen = [app.generation]
        open_batman(app)
        seen.append(app.generation)
        press(app, "escape")
        seen.append(app.generation)

        assert seen == sorted(set(seen))

    def test_quit_cancels_everything(self) -> None:
        app = App()
        detail_request = open_batman(app)

        effects = press(app, "ctrl-c")

        assert Cancel(detail_request.id) in effects
        assert effects[-1] == Quit()
        assert not app.running


class TestErrors:
    def test_escape_dismisses_error_before_navigating(self) -> None:
        app = App()
        detail_request = open_batman(app)
        app.on_error(detail_request.id, "ServerError: server returned HTTP 503")
        assert app.current.error == "ServerError: server returned HTTP 503"

        press(app, "escape")
        assert isinstance(app.current, DetailView)
        assert app.current.error is None

        press(app, "escape")
        assert isinstance(app.current, BrowseView)

    def test_q_quits_outside_text_focus(self) -> None:
        app = App()
        open_batman(app)

        assert press(app, "q")[-1] == Quit()


# ---------------------------------------------------------------------------
# Detail and sources
# ---------------------------------------------------------------------------


class TestDetail:
    def test_tv_detail_loads_first_regular_season(self) -> None:
        app = App()
        detail_request = open_batman(app)

        season_request = only_request(app.on_result(detail_request.id, GOT_DETAIL))

        assert season_request.params == {"tv_id": 1399, "season": 1}
        assert app.current.season_cursor == 1

    def test_episode_enter_requests_episode_sources(self) -> None:
        app = App()
        detail_request = open_batman(app)
        season_request = only_request(app.on_result(detail_request.id, GOT_DETAIL))
        app.on_result(season_request.id, [
            Episode(1, 1, "Winter Is Coming"),
            Episode(1, 2, "The Kingsroad"),
        ])
        assert app.current.focus == "episodes"

        streams = only_request(press(app, "down", "enter"))

        assert streams.kind is RequestKind.STREAMS
        assert streams.params == {"imdb_id": "tt0944947", "season": 1, "episode": 2}
        assert isinstance(app.current, SourcesView)
        assert app.current.title == "Game of Thrones S01E02"

    def test_movie_enter_requests_sources(self) -> None:
        app = App()
        detail_request = open_batman(app)
        app.on_result(detail_request.id, BATMAN_DETAIL)

        streams = only_request(press(app, "enter"))

        assert streams.params == {"imdb_id": "tt1877830"}


def at_sources(app: App) -> SourcesView:
    detail_request = open_batman(app)
    app.on_result(detail_request.id, BATMAN_DETAIL)
    streams = only_request(press(app, "enter"))
    app.on_result(streams.id, [make_source(n=1), make_source(n=2)])
    return app.current


class TestSources:
    def test_sources_are_kept_on_the_detail_view(self) -> None:
        app = App()
        view = at_sources(app)

        press(app, "escape")

        assert isinstance(app.current, DetailView)
        assert app.current.sources == view.sources

    def test_pick_with_languages_searches_subtitles(self) -> None:
        app = App(languages=["eng", "spa"])
        at_sources(app)

        request = only_request(press(app, "down", "enter"))

        assert request.kind is RequestKind.SUBTITLES
        assert request.params == {"imdb_id": "tt1877830", "lang": "eng,spa"}
        assert app.current.picked == make_source(n=2)
        assert app.current.focus == "subtitles"

    def test_pick_without_languages_plays(self) -> None:
        app = App()
        at_sources(app)

        request = only_request(press(app, "enter"))

        assert request.kind is RequestKind.PLAY
        assert request.params["source"] == make_source(n=1)
        assert request.params["subtitle"] is None
        assert request.params["target"] == LocalTarget("vlc")
        assert request.params["title"] == "The Batman"

    def test_subtitle_choice(self) -> None:
        app = App(languages=["eng"])
        at_sources(app)
        subtitles = only_request(press(app, "enter"))
        sub = make_subtitle("42")
        app.on_result(subtitles.id, [sub])

        request = only_request(press(app, "down", "enter"))

        assert request.params["subtitle"] is sub

    def test_first_subtitle_row_means_none(self) -> None:
        app = App(languages=["eng"])
        at_sources(app)
        subtitles = only_request(press(app, "enter"))
        app.on_result(subtitles.id, [make_subtitle("42")])

        request = only_request(press(app, "enter"))

        assert request.params["subtitle"] is None

    def test_toggle_target(self) -> None:
        app = App(cast_device="Living Room")
        at_sources(app)

        press(app, "t")
        assert app.target == CastTarget("Living Room")
        press(app, "t")
        assert app.target == LocalTarget("vlc")

    def test_toggle_without_device_stays_local(self) -> None:
        app = App(player="mpv")

        assert app.toggle_target() == LocalTarget("mpv")


# ---------------------------------------------------------------------------
# Playing
# ---------------------------------------------------------------------------


def at_playing(app: App) -> PlayingView:
    at_sources(app)
    play = only_request(press(app, "enter"))
    session = SimpleNamespace(
        title="The Batman",
        target=CastTarget("TV"),
        last_status=PlaybackStatus(PlaybackState.CONNECTING),
    )
    app.on_result(play.id, session)
    return app.current


class TestPlaying:
    def test_play_result_pushes_playing(self) -> None:
        app = App()

        view = at_playing(app)

        assert isinstance(view, PlayingView)
        assert view.title == "The Batman"
        assert view.target == "TV"
        assert view.status.state is PlaybackState.CONNECTING

    @pytest.mark.parametrize(
        ("key", "params"),
        [
            (" ", {"action": "toggle"}),
            ("left", {"action": "seek", "value": -30}),
            ("right", {"action": "seek", "value": 30}),
            ("up", {"action": "volume", "value": 10}),
            ("down", {"action": "volume", "value": -10}),
        ],
    )
    def test_transport_keys(self, key: str, params: dict) -> None:
        app = App()
        at_playing(app)

        request = only_request(press(app, key))

        assert request.kind is RequestKind.TRANSPORT
        assert request.params == params

    def test_transport_commands_queue(self) -> None:
        app = App()
        at_playing(app)

        effects = press(app, "right", "right")

        assert not any(isinstance(e, Cancel) for e in effects)
        assert len(requests(effects)) == 2

    def test_stop_returns_to_sources(self) -> None:
        app = App()
        at_playing(app)

        stop = only_request(press(app, "s"))

        assert stop.kind is RequestKind.STOP
        assert isinstance(app.current, SourcesView)
        assert app.current.sources == [make_source(n=1), make_source(n=2)]

    def test_tick_polls_only_while_playing(self) -> None:
        app = App()
        assert app.tick() == []

        at_playing(app)
        status = only_request(app.tick())

        assert status.kind is RequestKind.STATUS
        assert app.tick() == []

    def test_stopped_status_leaves_playing(self) -> None:
        app = App()
        at_playing(app)
        status = only_request(app.tick())

        effects = app.on_result(status.id, PlaybackStatus(PlaybackState.STOPPED))

        assert only_request(effects).kind is RequestKind.STOP
        assert isinstance(app.current, SourcesView)

    def test_status_error_keeps_last_status(self) -> None:
        app = App()
        view = at_playing(app)
        status = only_request(app.tick())

        app.on_error(status.id, "Transport: timed out")

        assert view.error is None
        assert view.status.state is PlaybackState.CONNECTING

    def test_transport_error_is_shown(self) -> None:
        app = App()
        view = at_playing(app)
        request = only_request(press(app, " "))

        app.on_error(request.id, "Unsupported: pause is not supported for local vlc playback")

        assert isinstance(view.load, Failed)
