"""Full-screen terminal UI: rich renders the App, prompt_toolkit reads the keys."""

import asyncio
import logging

from prompt_toolkit.input import create_input
from prompt_toolkit.key_binding import KeyPress
from prompt_toolkit.keys import Keys
from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from streamtui import __version__
from streamtui.app import (
    App, BrowseView, DetailView, KeyEvent, PlayingView, RequestKind, SearchView, SourcesView, View
)
from streamtui.models import MovieDetail, TvDetail, format_clock
from streamtui.runtime import Runtime
from streamtui.services import Services

log = logging.getLogger(__name__)

ESCAPE_FLUSH_DELAY = 0.05
VISIBLE_ROWS = 15

_KEY_NAMES = {
    Keys.Up: "up",
    Keys.Down: "down",
    Keys.Left: "left",
    Keys.Right: "right",
    Keys.PageUp: "pageup",
    Keys.PageDown: "pagedown",
    Keys.Home: "home",
    Keys.End: "end",
    Keys.Escape: "escape",
    Keys.ControlC: "ctrl-c",
    Keys.ControlM: "enter",
    Keys.ControlJ: "enter",
    Keys.ControlI: "tab",
    Keys.ControlH: "backspace",
    Keys.Delete: "delete",
}

_LOADING_TEXT = {
    RequestKind.SEARCH: "Searching...",
    RequestKind.TRENDING: "Loading trending...",
    RequestKind.DETAIL: "Loading details...",
    RequestKind.SEASON: "Loading episodes...",
    RequestKind.STREAMS: "Finding sources...",
    RequestKind.SUBTITLES: "Searching subtitles...",
    RequestKind.PLAY: "Starting stream (this can take a minute)...",
}

_HINTS = {
    SearchView: "type to search · enter search (empty: trending) · ctrl-c quit",
    BrowseView: "↑↓ move · enter/1-9 open · esc back · q quit",
    DetailView: "↑↓ move · enter select · tab seasons/episodes · esc back · q quit",
    SourcesView: "↑↓ move · enter pick · p play without subtitles · t local/cast · esc back",
    PlayingView: "space pause · ←→ seek 30s · ↑↓ volume · s stop · q quit",
}


def to_key_event(key_press: KeyPress) -> KeyEvent | None:
    """Map a prompt_toolkit key press to the App's key names."""
    key = key_press.key
    if isinstance(key, Keys):
        name = _KEY_NAMES.get(key)
        return KeyEvent(name) if name else None
    if len(key) == 1 and key.isprintable():
        return KeyEvent(key)
    return None


# ----------------------------------------------------------------------
# Rendering
# ----------------------------------------------------------------------

def _window(cursor: int, size: int, rows: int = VISIBLE_ROWS) -> range:
    """Rows to show so the cursor stays visible."""
    start = max(0, min(cursor - rows // 2, size - rows))
    return range(start, min(size, start + rows))


def _list_table(rows: list[tuple[str, ...]], cursor: int, headers: tuple[str, ...]) -> Table:
    table = Table(expand=True, box=None, show_edge=False, header_style="bold cyan")
    table.add_column("#", style="dim", width=3)
    for header in headers:
        table.add_column(header)
    for i in _window(cursor, len(rows)):
        style = "reverse" if i == cursor else None
        table.add_row(str(i + 1), *rows[i], style=style)
    return table


def _render_search(view: SearchView) -> RenderableType:
    text = Text("🔍 ")
    text.append(view.query[:view.caret])
    text.append(view.query[view.caret:view.caret + 1] or " ", style="reverse")
    text.append(view.query[view.caret + 1:])
    return Panel(text, title="Search movies and TV shows", border_style="cyan")


def _render_browse(view: BrowseView) -> RenderableType:
    if not view.results:
        return Panel(Text("No results" if view.loading is None else "", style="dim"), title=view.title)
    rows = [
        (r.title, str(r.year or ""), r.media_type.label, f"{r.rating:.1f}")
        for r in view.results
    ]
    return Panel(_list_table(rows, view.cursor, ("Title", "Year", "Type", "Rating")), title=view.title)


def _render_detail(view: DetailView) -> RenderableType:
    detail = view.detail
    if detail is None:
        title = view.item.title if view.item else ""
        return Panel(Text("", style="dim"), title=escape(title))

    info = Text()
    info.append(detail.title, style="bold")
    if detail.year:
        info.append(f" ({detail.year})")
    info.append(f"  ⭐ {detail.rating:.1f}", style="yellow")
    if detail.runtime:
        info.append(f"  {detail.runtime} min", style="dim")
    if detail.genres:
        info.append("\n" + ", ".join(detail.genres), style="dim")
    if detail.overview:
        info.append("\n\n" + detail.overview)
    parts: list[RenderableType] = [info]

    if isinstance(detail, TvDetail):
        seasons = [(str(s),) for s in detail.seasons]
        seasons_table = _list_table(seasons, view.season_cursor, ("Season",))
        episodes = [(str(e), f"{e.runtime or '?'} min") for e in view.episodes]
        episodes_table = _list_table(episodes, view.episode_cursor, ("Episode", "Runtime"))
        grid = Table.grid(expand=True)
        grid.add_column(ratio=1)
        grid.add_column(ratio=2)
        grid.add_row(
            Panel(seasons_table, border_style="cyan" if view.focus == "seasons" else "dim"),
            Panel(episodes_table, border_style="cyan" if view.focus == "episodes" else "dim"),
        )
        parts.append(grid)
    elif isinstance(detail, MovieDetail):
        parts.append(Text("\nPress enter to find sources", style="green"))

    return Panel(Group(*parts), title=escape(detail.title))


def _render_sources(view: SourcesView, app: App) -> RenderableType:
    target = Text(f"Target: {app.target}", style="magenta")
    sources = view.sources or []
    if view.sources is not None and not sources:
        body: RenderableType = Text("No sources found", style="dim")
    else:
        rows = [
            (str(s.quality), s.format_size(), str(s.seeds), s.display_name.replace("\n", " "), s.title_line)
            for s in sources
        ]
        body = _list_table(rows, view.cursor, ("Quality", "Size", "Seeds", "Provider", "Release"))
    parts: list[RenderableType] = [target, body]

    if view.focus == "subtitles":
        subs = view.subtitles or []
        rows = [("No subtitles", "", "")] + [
            (s.language_name, s.release, f"{s.downloads}{' ✓' if s.trusted else ''}") for s in subs
        ]
        parts.append(Panel(
            _list_table(rows, view.subtitle_cursor, ("Language", "Release", "Downloads")),
            title="Subtitles",
            border_style="cyan",
        ))
    return Panel(Group(*parts), title=escape(f"Sources: {view.title}"))


def _render_playing(view: PlayingView) -> RenderableType:
    status = view.status
    text = Text()
    text.append(f"{view.title}\n", style="bold")
    text.append(f"on {view.target}\n\n", style="magenta")
    text.append(f"{status.state.value.capitalize()}  ")
    text.append(f"{format_clock(status.position)} / {format_clock(status.duration)}")
    if status.duration > 0:
        width = 40
        filled = int(status.progress * width)
        text.append("\n[" + "█" * filled + "░" * (width - filled) + "]", style="cyan")
    text.append(f"\nVolume {round(status.volume * 100)}%", style="dim")
    return Panel(text, title="Now playing", border_style="green")


def render(app: App) -> RenderableType:
    view = app.current
    header = Text(f"StreamTUI v{__version__}", style="bold cyan")
    header.append("  " + " › ".join(type(v).__name__.removesuffix("View") for v in app.stack), style="dim")

    if isinstance(view, SearchView):
        body = _render_search(view)
    elif isinstance(view, BrowseView):
        body = _render_browse(view)
    elif isinstance(view, DetailView):
        body = _render_detail(view)
    elif isinstance(view, SourcesView):
        body = _render_sources(view, app)
    elif isinstance(view, PlayingView):
        body = _render_playing(view)
    else:
        body = Text("")

    parts: list[RenderableType] = [header, body]
    parts.append(_status_line(view))
    parts.append(Text(_HINTS.get(type(view), ""), style="dim"))
    return Group(*parts)


def _status_line(view: View) -> RenderableType:
    if view.error:
        return Panel(Text(view.error, style="bold red"), title="Error (esc to dismiss)", border_style="red")
    if view.loading is not None:
        return Text(_LOADING_TEXT.get(view.loading, "Loading..."), style="yellow")
    return Text("")


# ----------------------------------------------------------------------
# Event loop
# ----------------------------------------------------------------------

async def run_tui(services: Services, console: Console | None = None) -> None:
    """Run the interactive UI until the user quits."""
    cfg = services.config.config
    app = App(
        languages=list(cfg.subtitle_languages),
        cast_device=cfg.default_device,
        player=cfg.default_player,
    )
    console = console or Console()
    loop = asyncio.get_running_loop()
    keys_input = create_input()

    with Live(render(app), console=console, screen=True, auto_refresh=False) as live:
        def refresh() -> None:
            live.update(render(app), refresh=True)

        runtime = Runtime(app, services, on_change=refresh)
        flush_handle: asyncio.TimerHandle | None = None

        def feed(presses: list[KeyPress]) -> None:
            for press in presses:
                event = to_key_event(press)
                if event is not None:
                    runtime.handle_key(event)

        def flush() -> None:
            # A lone escape stays buffered until flushed
            feed(keys_input.flush_keys())

        def on_input() -> None:
            nonlocal flush_handle
            feed(keys_input.read_keys())
            if flush_handle is not None:
                flush_handle.cancel()
            flush_handle = loop.call_later(ESCAPE_FLUSH_DELAY, flush)

        with keys_input.raw_mode(), keys_input.attach(on_input):
            runtime.start()
            try:
                await runtime.quit_event.wait()
            finally:
                if flush_handle is not None:
                    flush_handle.cancel()
                await runtime.shutdown()
    log.info("TUI closed")
