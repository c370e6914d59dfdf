"""
Application state machine for the terminal UI.

The App holds a navigation stack of views (Search, Browse, Detail, Sources,
Playing). It never does I/O itself: key presses and request results go in,
effects come out (requests to run, requests to cancel, quit). The runtime
executes the effects and feeds results back through `on_result`/`on_error`.

Every request is owned by the view that issued it. Popping a view cancels its
requests, and a result whose id is no longer owned by a live view is dropped.
"""

import itertools
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

from streamtui.dispatcher import CastTarget, LocalTarget, Target
from streamtui.models import (
    Episode, MovieDetail, PlaybackState, PlaybackStatus, SearchResult,
    StreamSource, SubtitleDescriptor, TvDetail
)

log = logging.getLogger(__name__)

PAGE_SIZE = 10
SEEK_STEP = 30
VOLUME_STEP = 10


class RequestKind(str, Enum):
    SEARCH = "search"
    TRENDING = "trending"
    DETAIL = "detail"
    SEASON = "season"
    STREAMS = "streams"
    SUBTITLES = "subtitles"
    PLAY = "play"
    TRANSPORT = "transport"
    STATUS = "status"
    STOP = "stop"


# Kinds that run without a loading indicator
QUIET_KINDS = {RequestKind.STATUS, RequestKind.TRANSPORT, RequestKind.STOP}

# Kinds that queue up instead of superseding each other
QUEUED_KINDS = {RequestKind.TRANSPORT}


@dataclass
class Request:
    id: int
    kind: RequestKind
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class Cancel:
    request_id: int


@dataclass
class Quit:
    pass


Effect = Union[Request, Cancel, Quit]


@dataclass
class Idle:
    pass


@dataclass
class Loading:
    kind: RequestKind


@dataclass
class Failed:
    message: str


LoadState = Union[Idle, Loading, Failed]


@dataclass
class KeyEvent:
    """A key press. Printable keys are their character, others are named (`enter`, `ctrl-c`)."""
    key: str

    @property
    def is_char(self) -> bool:
        return len(self.key) == 1 and self.key.isprintable()


# ----------------------------------------------------------------------
# Views
# ----------------------------------------------------------------------

@dataclass
class View:
    load: LoadState = field(default_factory=Idle)
    generation: int = 0
    # request id -> kind
    pending: dict[int, RequestKind] = field(default_factory=dict)

    @property
    def error(self) -> str | None:
        return self.load.message if isinstance(self.load, Failed) else None

    @property
    def loading(self) -> RequestKind | None:
        return self.load.kind if isinstance(self.load, Loading) else None


@dataclass
class SearchView(View):
    query: str = ""
    caret: int = 0


@dataclass
class BrowseView(View):
    title: str = ""
    results: list[SearchResult] = field(default_factory=list)
    cursor: int = 0


@dataclass
class DetailView(View):
    item: Optional[SearchResult] = None
    detail: Union[MovieDetail, TvDetail, None] = None
    season: Optional[int] = None
    episodes: list[Episode] = field(default_factory=list)
    focus: str = "seasons"
    season_cursor: int = 0
    episode_cursor: int = 0
    # Last source list fetched from here; kept across playback
    sources: Optional[list[StreamSource]] = None
    sources_episode: Optional[Episode] = None

    @property
    def is_tv(self) -> bool:
        return isinstance(self.detail, TvDetail)


@dataclass
class SourcesView(View):
    detail: Union[MovieDetail, TvDetail, None] = None
    episode: Optional[Episode] = None
    sources: Optional[list[StreamSource]] = None
    cursor: int = 0
    focus: str = "sources"
    picked: Optional[StreamSource] = None
    subtitles: Optional[list[SubtitleDescriptor]] = None
    subtitle_cursor: int = 0

    @property
    def title(self) -> str:
        return playback_title(self.detail, self.episode)


@dataclass
class PlayingView(View):
    session: Any = None
    title: str = ""
    target: str = ""
    status: PlaybackStatus = field(default_factory=PlaybackStatus)


def playback_title(detail: Union[MovieDetail, TvDetail, None], episode: Episode | None) -> str:
    if detail is None:
        return ""
    if episode is not None:
        return f"{detail.title} S{episode.season:02d}E{episode.episode:02d}"
    return detail.title


def move_cursor(cursor: int, size: int, key: str) -> int | None:
    """New cursor position for a list navigation key, or None if the key is not one."""
    if size <= 0:
        return None
    if key == "up":
        return max(0, cursor - 1)
    if key == "down":
        return min(size - 1, cursor + 1)
    if key == "pageup":
        return max(0, cursor - PAGE_SIZE)
    if key == "pagedown":
        return min(size - 1, cursor + PAGE_SIZE)
    if key == "home":
        return 0
    if key == "end":
        return size - 1
    return None


def hotkey_index(key: str) -> int | None:
    """`1`..`9` select the matching row."""
    if len(key) == 1 and "1" <= key <= "9":
        return int(key) - 1
    return None


# ----------------------------------------------------------------------
# App
# ----------------------------------------------------------------------

class App:
    """Navigation stack, key routing and request bookkeeping."""

    def __init__(
        self,
        target: Target | None = None,
        languages: list[str] | None = None,
        cast_device: str | None = None,
        player: str = "vlc",
    ):
        self.stack: list[View] = [SearchView()]
        self.generation = 0
        self.running = True
        self.player = player
        self.cast_device = cast_device
        self.target: Target = target or LocalTarget(player)
        self.languages = languages or []
        self._ids = itertools.count(1)

    @property
    def current(self) -> View:
        return self.stack[-1]

    # -- stack ---------------------------------------------------------

    def _push(self, view: View) -> None:
        self.generation += 1
        view.generation = self.generation
        self.stack.append(view)

    def _pop(self) -> list[Effect]:
        if len(self.stack) <= 1:
            return []
        view = self.stack.pop()
        self.generation += 1
        return [Cancel(rid) for rid in view.pending]

    def _issue(self, view: View, kind: RequestKind, **params: Any) -> list[Effect]:
        """Create a request owned by `view`, superseding any of the same kind."""
        effects: list[Effect] = []
        if kind not in QUEUED_KINDS:
            for old, old_kind in list(view.pending.items()):
                if old_kind == kind:
                    del view.pending[old]
                    effects.append(Cancel(old))
        request = Request(next(self._ids), kind, params)
        view.pending[request.id] = kind
        if kind not in QUIET_KINDS:
            view.load = Loading(kind)
        effects.append(request)
        return effects

    def _detached(self, kind: RequestKind, **params: Any) -> Request:
        """A request no view owns; its result is ignored."""
        return Request(next(self._ids), kind, params)

    def _owner(self, request_id: int) -> tuple[View, RequestKind] | None:
        for view in self.stack:
            kind = view.pending.get(request_id)
            if kind is not None:
                return view, kind
        return None

    def is_live(self, request_id: int) -> bool:
        return self._owner(request_id) is not None

    # -- inputs ----------------------------------------------------------

    def handle_key(self, event: KeyEvent) -> list[Effect]:
        key = event.key
        if key == "ctrl-c":
            return self.quit()

        view = self.current
        if key == "escape":
            if isinstance(view.load, Failed):
                view.load = Idle()
                return []
            return self.back()

        if isinstance(view, SearchView):
            return self._search_key(view, event)
        if key == "q":
            return self.quit()
        if isinstance(view, BrowseView):
            return self._browse_key(view, key)
        if isinstance(view, DetailView):
            return self._detail_key(view, key)
        if isinstance(view, SourcesView):
            return self._sources_key(view, key)
        if isinstance(view, PlayingView):
            return self._playing_key(view, key)
        return []

    def back(self) -> list[Effect]:
        if isinstance(self.current, PlayingView):
            return self._leave_playing()
        return self._pop()

    def quit(self) -> list[Effect]:
        self.running = False
        effects: list[Effect] = [
            Cancel(rid) for view in self.stack for rid in view.pending
        ]
        for view in self.stack:
            view.pending.clear()
        effects.append(Quit())
        return effects

    def tick(self) -> list[Effect]:
        """Status poll timer; only polls while the Playing view is current."""
        view = self.current
        if isinstance(view, PlayingView) and RequestKind.STATUS not in view.pending.values():
            return self._issue(view, RequestKind.STATUS)
        return []

    def on_result(self, request_id: int, value: Any) -> list[Effect]:
        owner = self._owner(request_id)
        if owner is None:
            log.debug("Dropping result of stale request %d", request_id)
            return []
        view, kind = owner
        del view.pending[request_id]
        if isinstance(view.load, Loading) and view.load.kind == kind:
            view.load = Idle()

        if kind in (RequestKind.SEARCH, RequestKind.TRENDING):
            view.results = value
            view.cursor = 0
        elif kind == RequestKind.DETAIL:
            return self._detail_loaded(view, value)
        elif kind == RequestKind.SEASON:
            view.episodes = value
            view.episode_cursor = 0
            if value:
                view.focus = "episodes"
        elif kind == RequestKind.STREAMS:
            self._sources_loaded(view, value)
        elif kind == RequestKind.SUBTITLES:
            view.subtitles = value
            view.subtitle_cursor = 0
        elif kind == RequestKind.PLAY:
            self._push(PlayingView(
                session=value,
                title=getattr(value, "title", None) or view.title,
                target=str(getattr(value, "target", self.target)),
                status=getattr(value, "last_status", None) or PlaybackStatus(),
            ))
        elif kind == RequestKind.STATUS:
            view.status = value
            if value.state is PlaybackState.STOPPED and view is self.current:
                return self._leave_playing()
        return []

    def on_error(self, request_id: int, message: str) -> list[Effect]:
        owner = self._owner(request_id)
        if owner is None:
            log.debug("Dropping error of stale request %d: %s", request_id, message)
            return []
        view, kind = owner
        del view.pending[request_id]
        if kind == RequestKind.STATUS:
            # Polling keeps going; the last status stays on screen
            return []
        view.load = Failed(message)
        return []

    # -- per-view key handling -----------------------------------------

    def _search_key(self, view: SearchView, event: KeyEvent) -> list[Effect]:
        key = event.key
        if event.is_char:
            view.query = view.query[:view.caret] + key + view.query[view.caret:]
            view.caret += 1
        elif key == "backspace":
            if view.caret > 0:
                view.query = view.query[:view.caret - 1] + view.query[view.caret:]
                view.caret -= 1
        elif key == "delete":
            view.query = view.query[:view.caret] + view.query[view.caret + 1:]
        elif key == "left":
            view.caret = max(0, view.caret - 1)
        elif key == "right":
            view.caret = min(len(view.query), view.caret + 1)
        elif key == "home":
            view.caret = 0
        elif key == "end":
            view.caret = len(view.query)
        elif key == "enter":
            return self.submit_search(view.query)
        return []

    def submit_search(self, query: str) -> list[Effect]:
        """Open Browse for `query`; a blank query opens trending instead."""
        query = query.strip()
        if not query:
            browse = BrowseView(title="Trending")
            self._push(browse)
            return self._issue(browse, RequestKind.TRENDING)
        browse = BrowseView(title=f"Results for {query!r}")
        self._push(browse)
        return self._issue(browse, RequestKind.SEARCH, query=query)

    def _browse_key(self, view: BrowseView, key: str) -> list[Effect]:
        moved = move_cursor(view.cursor, len(view.results), key)
        if moved is not None:
            view.cursor = moved
            return []
        index = hotkey_index(key)
        if index is not None and index < len(view.results):
            view.cursor = index
            key = "enter"
        if key == "enter" and view.results:
            return self.open_item(view.results[view.cursor])
        return []

    def open_item(self, item: SearchResult) -> list[Effect]:
        detail = DetailView(item=item)
        self._push(detail)
        return self._issue(detail, RequestKind.DETAIL, media_type=item.media_type, id=item.id)

    def _detail_loaded(self, view: DetailView, detail: Union[MovieDetail, TvDetail]) -> list[Effect]:
        view.detail = detail
        if isinstance(detail, TvDetail) and detail.seasons:
            # Start on the first regular season, specials only if there is nothing else
            regular = [s for s in detail.seasons if s.number > 0]
            first = regular[0] if regular else detail.seasons[0]
            view.season_cursor = detail.seasons.index(first)
            return self.select_season(view, first.number)
        return []

    def select_season(self, view: DetailView, number: int) -> list[Effect]:
        view.season = number
        view.episodes = []
        return self._issue(view, RequestKind.SEASON, tv_id=view.detail.id, season=number)

    def _detail_key(self, view: DetailView, key: str) -> list[Effect]:
        detail = view.detail
        if detail is None:
            return []
        if not isinstance(detail, TvDetail):
            if key in ("enter", "s"):
                return self.request_sources(view)
            return []

        if key == "tab":
            view.focus = "episodes" if view.focus == "seasons" and view.episodes else "seasons"
            return []

        if view.focus == "seasons":
            moved = move_cursor(view.season_cursor, len(detail.seasons), key)
            if moved is not None:
                view.season_cursor = moved
                return []
            if key in ("enter", "right") and detail.seasons:
                return self.select_season(view, detail.seasons[view.season_cursor].number)
            return []

        if key == "left":
            view.focus = "seasons"
            return []
        moved = move_cursor(view.episode_cursor, len(view.episodes), key)
        if moved is not None:
            view.episode_cursor = moved
            return []
        index = hotkey_index(key)
        if index is not None and index < len(view.episodes):
            view.episode_cursor = index
            key = "enter"
        if key in ("enter", "s") and view.episodes:
            return self.request_sources(view, view.episodes[view.episode_cursor])
        return []

    def request_sources(self, view: DetailView, episode: Episode | None = None) -> list[Effect]:
        """Push the Sources view and fetch its list."""
        detail = view.detail
        sources = SourcesView(detail=detail, episode=episode)
        self._push(sources)
        params: dict[str, Any] = {"imdb_id": detail.imdb_id}
        if episode is not None:
            params.update(season=episode.season, episode=episode.episode)
        return self._issue(sources, RequestKind.STREAMS, **params)

    def _sources_loaded(self, view: SourcesView, sources: list[StreamSource]) -> None:
        view.sources = sources
        view.cursor = 0
        index = self.stack.index(view)
        if index > 0 and isinstance(self.stack[index - 1], DetailView):
            parent = self.stack[index - 1]
            parent.sources = sources
            parent.sources_episode = view.episode

    def _sources_key(self, view: SourcesView, key: str) -> list[Effect]:
        if key == "t":
            self.toggle_target()
            return []
        if view.focus == "subtitles":
            return self._subtitle_key(view, key)

        sources = view.sources or []
        moved = move_cursor(view.cursor, len(sources), key)
        if moved is not None:
            view.cursor = moved
            return []
        index = hotkey_index(key)
        if index is not None and index < len(sources):
            view.cursor = index
            key = "enter"
        if not sources:
            return []
        if key == "p":
            view.picked = sources[view.cursor]
            return self.play(view, None)
        if key == "enter":
            return self.pick_source(view, sources[view.cursor])
        return []

    def pick_source(self, view: SourcesView, source: StreamSource) -> list[Effect]:
        view.picked = source
        if not self.languages:
            return self.play(view, None)
        view.focus = "subtitles"
        view.subtitles = None
        params: dict[str, Any] = {"imdb_id": view.detail.imdb_id, "lang": ",".join(self.languages)}
        if view.episode is not None:
            params.update(season=view.episode.season, episode=view.episode.episode)
        return self._issue(view, RequestKind.SUBTITLES, **params)

    def _subtitle_key(self, view: SourcesView, key: str) -> list[Effect]:
        subtitles = view.subtitles or []
        if key in ("left", "tab"):
            view.focus = "sources"
            return []
        # Row 0 is "no subtitles"
        moved = move_cursor(view.subtitle_cursor, len(subtitles) + 1, key)
        if moved is not None:
            view.subtitle_cursor = moved
            return []
        if key == "enter":
            chosen = subtitles[view.subtitle_cursor - 1] if view.subtitle_cursor > 0 else None
            return self.play(view, chosen)
        if key == "p":
            return self.play(view, None)
        return []

    def play(self, view: SourcesView, subtitle: SubtitleDescriptor | None) -> list[Effect]:
        if view.picked is None:
            return []
        return self._issue(
            view,
            RequestKind.PLAY,
            source=view.picked,
            target=self.target,
            subtitle=subtitle,
            title=view.title,
        )

    def toggle_target(self) -> Target:
        """Switch between the local player and the configured cast device."""
        if isinstance(self.target, LocalTarget) and self.cast_device:
            self.target = CastTarget(self.cast_device)
        else:
            self.target = LocalTarget(self.player)
        return self.target

    def _playing_key(self, view: PlayingView, key: str) -> list[Effect]:
        if key == "s":
            return self._leave_playing()
        if key == " ":
            return self._issue(view, RequestKind.TRANSPORT, action="toggle")
        if key == "left":
            return self._issue(view, RequestKind.TRANSPORT, action="seek", value=-SEEK_STEP)
        if key == "right":
            return self._issue(view, RequestKind.TRANSPORT, action="seek", value=SEEK_STEP)
        if key == "up":
            return self._issue(view, RequestKind.TRANSPORT, action="volume", value=VOLUME_STEP)
        if key == "down":
            return self._issue(view, RequestKind.TRANSPORT, action="volume", value=-VOLUME_STEP)
        return []

    def _leave_playing(self) -> list[Effect]:
        """Stop playback and return to the view that started it."""
        effects = self._pop()
        effects.append(self._detached(RequestKind.STOP))
        return effects
